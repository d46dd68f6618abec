"""Data models for site-blocking groups, budgets and decisions."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional, Union
from urllib.parse import quote

# Abbreviated day names indexed by datetime.weekday() (Monday=0)
DAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")

# Placeholder in a redirect template that stands for the original request URL
URL_PLACEHOLDER = "\\0"


@dataclass
class Site:
    """A site pattern inside a group.

    Attributes:
        id: Stable identifier
        pattern: Normalized pattern, e.g. "reddit.com" or "reddit.com/r/funny"
    """

    id: str
    pattern: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Site":
        return cls(id=str(data["id"]), pattern=data["pattern"])


@dataclass
class TimeBlock:
    """A weekly window during which limited access is allowed.

    Attributes:
        id: Stable identifier
        days: Abbreviated day names (mon..sun)
        start_time: Start time in HH:MM format (24-hour)
        end_time: End time in HH:MM format (24-hour), inclusive
        all_day: Forces 00:00-23:59
        allowed_minutes: Daily budget for this window
    """

    id: str
    days: list[str]
    start_time: str = "09:00"
    end_time: str = "17:00"
    all_day: bool = False
    allowed_minutes: int = 15

    def __post_init__(self) -> None:
        if self.all_day:
            self.start_time = "00:00"
            self.end_time = "23:59"

    @property
    def allowed_seconds(self) -> int:
        return self.allowed_minutes * 60

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TimeBlock":
        return cls(
            id=str(data["id"]),
            days=list(data.get("days", [])),
            start_time=data.get("start_time", "09:00"),
            end_time=data.get("end_time", "17:00"),
            all_day=bool(data.get("all_day", False)),
            allowed_minutes=int(data.get("allowed_minutes", 15)),
        )


@dataclass
class Group:
    """A named collection of site patterns sharing one blocking policy.

    A group without time blocks is permanently blocked for all its sites.
    """

    id: str
    name: str
    sites: list[Site] = field(default_factory=list)
    allowed_time_blocks: list[TimeBlock] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "sites": [s.to_dict() for s in self.sites],
            "allowed_time_blocks": [b.to_dict() for b in self.allowed_time_blocks],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Group":
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            sites=[Site.from_dict(s) for s in data.get("sites", [])],
            allowed_time_blocks=[
                TimeBlock.from_dict(b) for b in data.get("allowed_time_blocks", [])
            ],
        )


@dataclass(frozen=True)
class Pause:
    """A user-granted override suspending blocking until a timestamp."""

    group_id: str
    paused_until: int  # epoch milliseconds

    def is_active(self, now_ms: int) -> bool:
        return self.paused_until > now_ms


@dataclass(frozen=True)
class TrackingEntry:
    """Usage counter for one (group, date, time block)."""

    used_seconds: int = 0


@dataclass(frozen=True)
class CompiledRule:
    """A redirect rule for the enforcement layer.

    Attributes:
        id: Allocated rule ID, never reused
        url_regex: Regex the request URL must match
        redirect_template: Block notice URL; URL_PLACEHOLDER marks the original URL
    """

    id: int
    url_regex: str
    redirect_template: str

    def redirect_for(self, url: str) -> str:
        """Expand the redirect template for a request URL."""
        return self.redirect_template.replace(URL_PLACEHOLDER, quote(url, safe=""))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CompiledRule":
        return cls(
            id=int(data["id"]),
            url_regex=data["url_regex"],
            redirect_template=data["redirect_template"],
        )


class BlockReason(str, Enum):
    """Why a group is currently blocked."""

    ALWAYS_BLOCKED = "always-blocked"
    OUTSIDE_SCHEDULE = "outside-schedule"
    BUDGET_EXHAUSTED = "budget-exhausted"


@dataclass(frozen=True)
class Blocked:
    reason: BlockReason
    allowed_minutes: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"block": True, "reason": self.reason.value}
        if self.allowed_minutes is not None:
            result["allowedMinutes"] = self.allowed_minutes
        return result


@dataclass(frozen=True)
class Paused:
    paused_until: int  # epoch milliseconds

    def to_dict(self) -> dict[str, Any]:
        return {"block": False, "reason": "paused", "pausedUntil": self.paused_until}


@dataclass(frozen=True)
class Allowed:
    active_block: TimeBlock
    remaining_seconds: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "block": False,
            "reason": "allowed",
            "activeBlock": self.active_block.to_dict(),
            "remainingSeconds": self.remaining_seconds,
        }


Decision = Union[Blocked, Paused, Allowed]
