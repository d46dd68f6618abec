"""CRUD operations for site-blocking groups."""

import logging
import re
import uuid
from typing import Any, Optional

from blankslate.models import DAYS, Group, Site, TimeBlock
from blankslate.policies.patterns import normalize_site_pattern, validate_site_pattern
from blankslate.storage import StateStore

logger = logging.getLogger(__name__)

TIME_FORMAT = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class GroupError(Exception):
    """Raised when a group operation cannot be applied."""


class InvalidPatternError(GroupError):
    """Raised when a site pattern fails validation."""


def new_id() -> str:
    return str(uuid.uuid4())


class GroupManager:
    """Edits the stored group list.

    Every mutation re-reads the groups, applies the change and saves the
    whole list, which notifies change listeners on the store.
    """

    def __init__(self, store: StateStore) -> None:
        self.store = store

    def list_groups(self) -> list[Group]:
        return self.store.get_groups()

    def find(self, name_or_id: str) -> Optional[Group]:
        """Look up a group by ID, falling back to a case-insensitive name match."""
        groups = self.store.get_groups()
        for group in groups:
            if group.id == name_or_id:
                return group
        for group in groups:
            if group.name.lower() == name_or_id.lower():
                return group
        return None

    def _require(self, groups: list[Group], group_id: str) -> Group:
        for group in groups:
            if group.id == group_id:
                return group
        raise GroupError(f"Group not found: {group_id}")

    # Groups

    def create_group(self, name: str) -> Group:
        groups = self.store.get_groups()
        group = Group(id=new_id(), name=name or "New Group")
        groups.append(group)
        self.store.save_groups(groups)
        logger.info(f"Created group '{group.name}' ({group.id})")
        return group

    def rename_group(self, group_id: str, name: str) -> Group:
        groups = self.store.get_groups()
        group = self._require(groups, group_id)
        group.name = name
        self.store.save_groups(groups)
        return group

    def delete_group(self, group_id: str) -> None:
        groups = self.store.get_groups()
        remaining = [g for g in groups if g.id != group_id]
        if len(remaining) == len(groups):
            raise GroupError(f"Group not found: {group_id}")
        self.store.save_groups(remaining)

    def replace_group(self, group: Group) -> None:
        """Insert a group or overwrite the stored group with the same name."""
        groups = self.store.get_groups()
        for i, existing in enumerate(groups):
            if existing.name.lower() == group.name.lower():
                group.id = existing.id
                groups[i] = group
                break
        else:
            groups.append(group)
        self.store.save_groups(groups)

    # Sites

    def add_site(self, group_id: str, raw_pattern: str) -> Site:
        """Normalize, validate and add a site pattern.

        Raises:
            InvalidPatternError: If the pattern is invalid
            GroupError: If the group is missing or already has the pattern
        """
        pattern = normalize_site_pattern(raw_pattern)
        error = validate_site_pattern(pattern)
        if error is not None:
            raise InvalidPatternError(error.message)

        groups = self.store.get_groups()
        group = self._require(groups, group_id)

        if any(site.pattern == pattern for site in group.sites):
            raise GroupError("Site already exists in this group.")

        site = Site(id=new_id(), pattern=pattern)
        group.sites.append(site)
        self.store.save_groups(groups)
        return site

    def remove_site(self, group_id: str, pattern_or_id: str) -> None:
        groups = self.store.get_groups()
        group = self._require(groups, group_id)
        pattern = normalize_site_pattern(pattern_or_id)
        group.sites = [
            s for s in group.sites if s.id != pattern_or_id and s.pattern != pattern
        ]
        self.store.save_groups(groups)

    # Time blocks

    def add_time_block(
        self,
        group_id: str,
        days: list[str],
        start_time: str = "09:00",
        end_time: str = "17:00",
        all_day: bool = False,
        allowed_minutes: int = 15,
    ) -> TimeBlock:
        block = TimeBlock(
            id=new_id(),
            days=[d.lower() for d in days],
            start_time=start_time,
            end_time=end_time,
            all_day=all_day,
            allowed_minutes=allowed_minutes,
        )
        validate_time_block(block)

        groups = self.store.get_groups()
        group = self._require(groups, group_id)
        group.allowed_time_blocks.append(block)
        self.store.save_groups(groups)
        return block

    def update_time_block(self, group_id: str, block_id: str, **updates: Any) -> TimeBlock:
        groups = self.store.get_groups()
        group = self._require(groups, group_id)

        for i, block in enumerate(group.allowed_time_blocks):
            if block.id == block_id:
                updated = TimeBlock.from_dict({**block.to_dict(), **updates, "id": block_id})
                validate_time_block(updated)
                group.allowed_time_blocks[i] = updated
                self.store.save_groups(groups)
                return updated

        raise GroupError(f"Time block not found: {block_id}")

    def remove_time_block(self, group_id: str, block_id: str) -> None:
        groups = self.store.get_groups()
        group = self._require(groups, group_id)
        group.allowed_time_blocks = [
            b for b in group.allowed_time_blocks if b.id != block_id
        ]
        self.store.save_groups(groups)


def validate_time_block(block: TimeBlock) -> None:
    """Raise GroupError if a time block is malformed."""
    unknown = [d for d in block.days if d not in DAYS]
    if unknown:
        raise GroupError(f"Unknown day(s): {', '.join(unknown)}")
    for value in (block.start_time, block.end_time):
        if not TIME_FORMAT.match(value):
            raise GroupError(f"Invalid time '{value}', expected HH:MM")
    if block.start_time > block.end_time:
        raise GroupError("Start time must not be after end time")
    if block.allowed_minutes < 0:
        raise GroupError("Allowed minutes must be >= 0")
