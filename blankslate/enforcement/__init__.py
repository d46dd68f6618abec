"""Rule compilation and enforcement sinks."""

from blankslate.enforcement.compiler import (
    RebuildResult,
    RuleCompiler,
    block_notice_url,
    parse_block_notice,
)
from blankslate.enforcement.sinks import (
    FileRuleSink,
    MemoryRuleSink,
    RuleSink,
    RuleSinkError,
    WebhookRuleSink,
)

__all__ = [
    "RebuildResult",
    "RuleCompiler",
    "block_notice_url",
    "parse_block_notice",
    "FileRuleSink",
    "MemoryRuleSink",
    "RuleSink",
    "RuleSinkError",
    "WebhookRuleSink",
]
