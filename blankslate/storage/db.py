"""DuckDB storage for blankslate state.

All state lives in a single key-value table holding JSON values:
- groups                               -> list of group dicts
- tracking|<groupId>|<date>|<blockId>  -> {"used_seconds": N}
- pause|<groupId>                      -> {"paused_until": epoch_ms}
- pause_count|<groupId>|<date>         -> {"count": N}
- next_rule_id                         -> int
- rule_id_map                          -> {"<groupId>::<siteId>": rule_id}
"""

import json
import logging
import shutil
import tempfile
from collections.abc import Callable
from datetime import date
from pathlib import Path
from typing import Any, Optional

import duckdb

from blankslate.models import Group, Pause, TrackingEntry

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

GROUPS_KEY = "groups"
NEXT_RULE_ID_KEY = "next_rule_id"
RULE_ID_MAP_KEY = "rule_id_map"
TRACKING_PREFIX = "tracking|"
PAUSE_PREFIX = "pause|"
PAUSE_COUNT_PREFIX = "pause_count|"

ChangeListener = Callable[[set[str]], None]


def tracking_key(group_id: str, day: date, block_id: str) -> str:
    return f"{TRACKING_PREFIX}{group_id}|{day.isoformat()}|{block_id}"


def pause_key(group_id: str) -> str:
    return f"{PAUSE_PREFIX}{group_id}"


def pause_count_key(group_id: str, day: date) -> str:
    return f"{PAUSE_COUNT_PREFIX}{group_id}|{day.isoformat()}"


class StateStore:
    """DuckDB-backed key-value store for groups, budgets, pauses and rule IDs."""

    def __init__(self, db_path: Path, read_only: bool = False) -> None:
        """Initialize the state store.

        Args:
            db_path: Path to the DuckDB database file. Use ":memory:" for in-memory.
            read_only: If True, open in read-only mode.
        """
        self.db_path = db_path
        self.read_only = read_only
        self._conn: Optional[duckdb.DuckDBPyConnection] = None
        self._temp_db_path: Optional[Path] = None
        self._listeners: list[ChangeListener] = []

    def connect(self) -> None:
        """Open database connection and ensure schema exists."""
        db_str = str(self.db_path) if self.db_path != Path(":memory:") else ":memory:"

        if self.read_only and self.db_path != Path(":memory:"):
            if not self.db_path.exists():
                # Nothing written yet: read from an empty in-memory schema
                self._conn = duckdb.connect(":memory:")
                self._ensure_schema()
                return
            try:
                self._conn = duckdb.connect(db_str, read_only=True)
            except (duckdb.IOException, duckdb.ConnectionException):
                # Another connection holds the write lock; read from a snapshot copy
                temp_dir = tempfile.mkdtemp(prefix="blankslate_")
                self._temp_db_path = Path(temp_dir) / self.db_path.name
                shutil.copy2(self.db_path, self._temp_db_path)
                wal_path = Path(str(self.db_path) + ".wal")
                if wal_path.exists():
                    shutil.copy2(wal_path, Path(str(self._temp_db_path) + ".wal"))
                logger.debug(f"Database locked, reading snapshot at {self._temp_db_path}")
                self._conn = duckdb.connect(str(self._temp_db_path), read_only=True)
        else:
            self._conn = duckdb.connect(db_str, read_only=self.read_only)

        if not self.read_only:
            self._ensure_schema()

    def close(self) -> None:
        """Close database connection and drop any snapshot copy."""
        if self._conn:
            self._conn.close()
            self._conn = None
        if self._temp_db_path is not None:
            shutil.rmtree(self._temp_db_path.parent, ignore_errors=True)
            self._temp_db_path = None

    def __enter__(self) -> "StateStore":
        self.connect()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        """Get the database connection, raising if not connected."""
        if self._conn is None:
            raise RuntimeError("StateStore not connected. Call connect() first.")
        return self._conn

    def _ensure_schema(self) -> None:
        """Create tables if they don't exist."""
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        result = self.conn.execute(
            "SELECT MAX(version) FROM schema_version"
        ).fetchone()
        current_version = result[0] if result and result[0] else 0

        if current_version < SCHEMA_VERSION:
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key VARCHAR PRIMARY KEY,
                    value VARCHAR NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            self.conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                [SCHEMA_VERSION]
            )

    # Change notification

    def add_change_listener(self, listener: ChangeListener) -> None:
        """Register a callback receiving the set of keys changed by each write."""
        self._listeners.append(listener)

    def remove_change_listener(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, keys: set[str]) -> None:
        for listener in list(self._listeners):
            try:
                listener(keys)
            except Exception as e:
                logger.warning(f"Change listener failed: {e}")

    # Raw key-value access

    def get(self, key: str, default: Any = None) -> Any:
        """Read a value, returning default if absent or undecodable."""
        row = self.conn.execute("SELECT value FROM kv WHERE key = ?", [key]).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row[0])
        except (TypeError, ValueError) as e:
            logger.warning(f"Ignoring corrupt value for {key}: {e}")
            return default

    def set(self, key: str, value: Any) -> None:
        self.set_many({key: value})

    def set_many(self, values: dict[str, Any]) -> None:
        """Write several keys in one transaction."""
        if not values:
            return
        rows = [(key, json.dumps(value)) for key, value in values.items()]
        self.conn.executemany("""
            INSERT INTO kv (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT (key) DO UPDATE SET
                value = EXCLUDED.value,
                updated_at = EXCLUDED.updated_at
        """, rows)
        self._notify(set(values))

    def remove(self, key: str) -> None:
        self.conn.execute("DELETE FROM kv WHERE key = ?", [key])
        self._notify({key})

    def keys(self, prefix: str = "") -> list[str]:
        """List keys, optionally restricted to a prefix."""
        result = self.conn.execute(
            "SELECT key FROM kv WHERE starts_with(key, ?) ORDER BY key", [prefix]
        ).fetchall()
        return [row[0] for row in result]

    def items(self, prefix: str = "") -> dict[str, Any]:
        """Read all values whose key starts with prefix."""
        result = self.conn.execute(
            "SELECT key, value FROM kv WHERE starts_with(key, ?) ORDER BY key", [prefix]
        ).fetchall()
        items = {}
        for key, raw in result:
            try:
                items[key] = json.loads(raw)
            except (TypeError, ValueError) as e:
                logger.warning(f"Ignoring corrupt value for {key}: {e}")
        return items

    # Groups

    def get_groups(self) -> list[Group]:
        return [Group.from_dict(g) for g in self.get(GROUPS_KEY, [])]

    def save_groups(self, groups: list[Group]) -> None:
        self.set(GROUPS_KEY, [g.to_dict() for g in groups])

    # Time tracking

    def get_tracking_entry(self, group_id: str, day: date, block_id: str) -> TrackingEntry:
        data = self.get(tracking_key(group_id, day, block_id), {})
        return TrackingEntry(used_seconds=int(data.get("used_seconds", 0)))

    def set_tracking_entry(
        self, group_id: str, day: date, block_id: str, entry: TrackingEntry
    ) -> None:
        self.set(tracking_key(group_id, day, block_id), {"used_seconds": entry.used_seconds})

    def get_tracking_for_date(self, day: date) -> dict[tuple[str, str], TrackingEntry]:
        """Return {(group_id, block_id): entry} for every row of a date."""
        entries = {}
        for key, value in self.items(TRACKING_PREFIX).items():
            parts = key[len(TRACKING_PREFIX):].split("|")
            if len(parts) != 3 or parts[1] != day.isoformat():
                continue
            entries[(parts[0], parts[2])] = TrackingEntry(
                used_seconds=int(value.get("used_seconds", 0))
            )
        return entries

    # Pauses

    def get_pause(self, group_id: str) -> Optional[Pause]:
        data = self.get(pause_key(group_id))
        if not data:
            return None
        return Pause(group_id=group_id, paused_until=int(data["paused_until"]))

    def set_pause(self, group_id: str, paused_until: int) -> None:
        self.set(pause_key(group_id), {"paused_until": paused_until})

    def clear_pause(self, group_id: str) -> None:
        self.remove(pause_key(group_id))

    def get_active_pauses(self, now_ms: int) -> dict[str, Pause]:
        """Return unexpired pauses keyed by group ID."""
        pauses = {}
        for key, value in self.items(PAUSE_PREFIX).items():
            group_id = key[len(PAUSE_PREFIX):]
            pause = Pause(group_id=group_id, paused_until=int(value.get("paused_until", 0)))
            if pause.is_active(now_ms):
                pauses[group_id] = pause
        return pauses

    def get_pause_count(self, group_id: str, day: date) -> int:
        return int(self.get(pause_count_key(group_id, day), {}).get("count", 0))

    def increment_pause_count(self, group_id: str, day: date) -> int:
        count = self.get_pause_count(group_id, day) + 1
        self.set(pause_count_key(group_id, day), {"count": count})
        return count

    # Rule ID management

    def get_next_rule_id(self) -> int:
        return int(self.get(NEXT_RULE_ID_KEY, 1))

    def save_next_rule_id(self, rule_id: int) -> None:
        self.set(NEXT_RULE_ID_KEY, rule_id)

    def get_rule_id_map(self) -> dict[str, int]:
        return {k: int(v) for k, v in self.get(RULE_ID_MAP_KEY, {}).items()}

    def save_rule_id_map(self, rule_id_map: dict[str, int]) -> None:
        self.set(RULE_ID_MAP_KEY, rule_id_map)
