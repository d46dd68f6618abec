"""Compiles blocked groups into redirect rules for the enforcement layer.

Each rebuild re-derives the complete rule set from the current decisions and
swaps it in with a single sink update. Rule IDs come from a persisted counter
and are never reused, so a rebuild cannot collide with rules left over from an
earlier one.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from urllib.parse import parse_qs, quote, urlencode, urlsplit

from blankslate.enforcement.sinks import RuleSink
from blankslate.models import Blocked, BlockReason, CompiledRule, Group
from blankslate.models.policy import URL_PLACEHOLDER
from blankslate.policies.decision import DecisionEngine
from blankslate.policies.patterns import pattern_to_regex
from blankslate.storage import StateStore

logger = logging.getLogger(__name__)


def _notice_params(
    group_name: str,
    group_id: str,
    reason: BlockReason,
    allowed_minutes: Optional[int],
) -> str:
    return urlencode(
        {
            "group": group_name,
            "groupId": group_id,
            "reason": reason.value,
            "allowedMinutes": "" if allowed_minutes is None else str(allowed_minutes),
        },
        quote_via=quote,
    )


def block_notice_url(
    base_url: str,
    group_name: str,
    group_id: str,
    reason: BlockReason,
    allowed_minutes: Optional[int] = None,
    original_url: str = "",
) -> str:
    """Build the block notice URL shown instead of a blocked page.

    The original URL is always the last query parameter.
    """
    params = _notice_params(group_name, group_id, reason, allowed_minutes)
    return f"{base_url}?{params}&url={quote(original_url, safe='')}"


def redirect_template(
    base_url: str,
    group_name: str,
    group_id: str,
    reason: BlockReason,
    allowed_minutes: Optional[int] = None,
) -> str:
    """Block notice URL with a placeholder where the original URL goes."""
    params = _notice_params(group_name, group_id, reason, allowed_minutes)
    return f"{base_url}?{params}&url={URL_PLACEHOLDER}"


def is_block_notice(url: str, base_url: str) -> bool:
    return url.startswith(base_url + "?")


def parse_block_notice(url: str, base_url: str) -> Optional[str]:
    """Recover the original http(s) URL from a block notice URL."""
    if not is_block_notice(url, base_url):
        return None
    values = parse_qs(urlsplit(url).query).get("url")
    if not values:
        return None
    original = values[0]
    if not original.startswith(("http://", "https://")):
        return None
    return original


@dataclass(frozen=True)
class RebuildResult:
    added_count: int
    removed_count: int


class RuleCompiler:
    """Turns the set of blocked groups into enforcement rules."""

    def __init__(
        self,
        store: StateStore,
        engine: DecisionEngine,
        sink: RuleSink,
        block_page_url: str,
    ) -> None:
        """Initialize compiler.

        Args:
            store: State store holding the rule ID counter and map
            engine: Decision engine used to find blocked groups
            sink: Enforcement layer receiving the rules
            block_page_url: Base URL of the block notice page
        """
        self.store = store
        self.engine = engine
        self.sink = sink
        self.block_page_url = block_page_url

    def compile(self, groups: list[Group], now: datetime) -> tuple[list[CompiledRule], dict[str, int]]:
        """Allocate rules for every site of every blocked group.

        Returns:
            (rules, rule ID map keyed "<groupId>::<siteId>")
        """
        next_id = self.store.get_next_rule_id()
        rules: list[CompiledRule] = []
        rule_id_map: dict[str, int] = {}

        for group in groups:
            decision = self.engine.decide(group, now)
            if not isinstance(decision, Blocked):
                continue

            template = redirect_template(
                self.block_page_url,
                group.name,
                group.id,
                decision.reason,
                decision.allowed_minutes,
            )
            for site in group.sites:
                rules.append(
                    CompiledRule(
                        id=next_id,
                        url_regex=pattern_to_regex(site.pattern),
                        redirect_template=template,
                    )
                )
                rule_id_map[f"{group.id}::{site.id}"] = next_id
                next_id += 1

        self.store.save_next_rule_id(next_id)
        return rules, rule_id_map

    def rebuild(self, groups: list[Group], now: datetime) -> RebuildResult:
        """Replace the installed rule set with a fresh one.

        Args:
            groups: All configured groups
            now: Current local time

        Returns:
            Number of rules added and removed
        """
        rules, rule_id_map = self.compile(groups, now)
        remove_ids = self.sink.get_rule_ids()

        self.sink.update_rules(add_rules=rules, remove_rule_ids=remove_ids)
        self.store.save_rule_id_map(rule_id_map)

        logger.debug(f"Rules rebuilt: +{len(rules)} -{len(remove_ids)}")
        return RebuildResult(added_count=len(rules), removed_count=len(remove_ids))
