"""Enforcement sinks that hold the installed redirect rules.

A sink applies additions and removals in one all-or-nothing update and can
report which rule IDs are currently installed.
"""

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Optional

import httpx

from blankslate.models import CompiledRule

logger = logging.getLogger(__name__)


class RuleSinkError(Exception):
    """Raised when a sink rejects or fails to apply an update."""


class RuleSink:
    """Base class for enforcement sinks."""

    def get_rule_ids(self) -> list[int]:
        raise NotImplementedError

    def get_rules(self) -> list[CompiledRule]:
        raise NotImplementedError

    def update_rules(
        self,
        add_rules: list[CompiledRule],
        remove_rule_ids: list[int],
    ) -> None:
        raise NotImplementedError

    def close(self) -> None:
        """Release any connection the sink holds."""

    def match(self, url: str) -> Optional[CompiledRule]:
        """Return the first installed rule whose regex matches the URL."""
        for rule in self.get_rules():
            if re.search(rule.url_regex, url):
                return rule
        return None


def apply_update(
    current: dict[int, CompiledRule],
    add_rules: list[CompiledRule],
    remove_rule_ids: list[int],
) -> dict[int, CompiledRule]:
    """Compute the rule set after an update without touching the input.

    Raises:
        RuleSinkError: If an added ID is duplicated or still installed
    """
    removed = set(remove_rule_ids)
    updated = {rule_id: rule for rule_id, rule in current.items() if rule_id not in removed}
    for rule in add_rules:
        if rule.id in updated:
            raise RuleSinkError(f"Rule ID {rule.id} is already installed")
        updated[rule.id] = rule
    return updated


class MemoryRuleSink(RuleSink):
    """In-process rule set, used for tests and the `check` command."""

    def __init__(self) -> None:
        self._rules: dict[int, CompiledRule] = {}
        self.update_count = 0

    def get_rule_ids(self) -> list[int]:
        return sorted(self._rules)

    def get_rules(self) -> list[CompiledRule]:
        return [self._rules[rule_id] for rule_id in sorted(self._rules)]

    def update_rules(
        self,
        add_rules: list[CompiledRule],
        remove_rule_ids: list[int],
    ) -> None:
        self._rules = apply_update(self._rules, add_rules, remove_rule_ids)
        self.update_count += 1


class FileRuleSink(RuleSink):
    """Rule set stored as a JSON file for a filtering proxy to load.

    The file is replaced atomically so readers never see a partial update.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def _read(self) -> dict[int, CompiledRule]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read rules file {self.path}: {e}")
            return {}
        rules = [CompiledRule.from_dict(r) for r in data.get("rules", [])]
        return {rule.id: rule for rule in rules}

    def get_rule_ids(self) -> list[int]:
        return sorted(self._read())

    def get_rules(self) -> list[CompiledRule]:
        rules = self._read()
        return [rules[rule_id] for rule_id in sorted(rules)]

    def update_rules(
        self,
        add_rules: list[CompiledRule],
        remove_rule_ids: list[int],
    ) -> None:
        updated = apply_update(self._read(), add_rules, remove_rule_ids)
        payload = {"rules": [updated[rule_id].to_dict() for rule_id in sorted(updated)]}

        self.path.parent.mkdir(parents=True, exist_ok=True)
        tf = tempfile.NamedTemporaryFile(
            "w", delete=False, dir=self.path.parent, suffix=".tmp"
        )
        try:
            with tf:
                json.dump(payload, tf, indent=2)
            os.replace(tf.name, self.path)
        except BaseException:
            Path(tf.name).unlink(missing_ok=True)
            raise


class WebhookRuleSink(RuleSink):
    """Pushes rule updates to a filtering proxy over HTTP.

    Expects the proxy to expose:
        GET  {base_url}/rules         -> {"rules": [CompiledRule, ...]}
        POST {base_url}/rules/update  <- {"addRules": [...], "removeRuleIds": [...]}
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def get_rules(self) -> list[CompiledRule]:
        try:
            resp = self._client.get(f"{self.base_url}/rules")
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise RuleSinkError(f"Failed to read rules: {e}") from e
        return [CompiledRule.from_dict(r) for r in resp.json().get("rules", [])]

    def get_rule_ids(self) -> list[int]:
        return sorted(rule.id for rule in self.get_rules())

    def update_rules(
        self,
        add_rules: list[CompiledRule],
        remove_rule_ids: list[int],
    ) -> None:
        payload = {
            "addRules": [rule.to_dict() for rule in add_rules],
            "removeRuleIds": list(remove_rule_ids),
        }
        try:
            resp = self._client.post(f"{self.base_url}/rules/update", json=payload)
            resp.raise_for_status()
        except httpx.TimeoutException as e:
            raise RuleSinkError("Rule update timed out") from e
        except httpx.HTTPError as e:
            raise RuleSinkError(f"Rule update failed: {e}") from e
