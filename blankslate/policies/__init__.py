"""Site matching, schedules and blocking decisions for blankslate."""

from blankslate.policies.decision import DecisionEngine
from blankslate.policies.group_manager import GroupError, GroupManager, InvalidPatternError
from blankslate.policies.patterns import (
    PatternError,
    find_matching_groups,
    normalize_site_pattern,
    pattern_to_regex,
    site_matches,
    validate_site_pattern,
)
from blankslate.policies.schedule import active_block_for, is_block_active, next_boundary

__all__ = [
    "DecisionEngine",
    "GroupError",
    "GroupManager",
    "InvalidPatternError",
    "PatternError",
    "find_matching_groups",
    "normalize_site_pattern",
    "pattern_to_regex",
    "site_matches",
    "validate_site_pattern",
    "active_block_for",
    "is_block_active",
    "next_boundary",
]
