"""Site pattern normalization, validation and URL matching.

A site pattern is a lower-cased domain optionally followed by a path prefix
("reddit.com/r/funny"). Matching is subdomain-inclusive: "reddit.com" matches
"old.reddit.com" but not "notreddit.com".
"""

import re
from enum import Enum
from typing import Optional
from urllib.parse import urlsplit

from blankslate.models import Group, Site

PROTOCOL_PREFIX = re.compile(r"^https?://")
WWW_PREFIX = re.compile(r"^www\.")
TRAILING_SLASHES = re.compile(r"/+$")
WHITESPACE = re.compile(r"\s")
DOMAIN_FORMAT = re.compile(r"^[a-z0-9.-]+\.[a-z]{2,}$")

# Characters that must be escaped when a pattern is embedded in a regex
REGEX_SPECIAL = re.compile(r"[.*+?^${}()|\[\]\\]")


class PatternError(Enum):
    """Reasons a site pattern is rejected."""

    EMPTY = "Pattern cannot be empty."
    NO_DOT = "Enter a valid domain (e.g. facebook.com)."
    HAS_SPACE = "Pattern cannot contain spaces."
    HAS_PROTOCOL = "Do not include http:// or https://."
    BAD_DOMAIN_FORMAT = "Invalid domain format."

    @property
    def message(self) -> str:
        return self.value


def _normalize_once(pattern: str) -> str:
    pattern = pattern.strip().lower()
    pattern = PROTOCOL_PREFIX.sub("", pattern)
    pattern = WWW_PREFIX.sub("", pattern)
    return TRAILING_SLASHES.sub("", pattern)


def normalize_site_pattern(raw: str) -> str:
    """Normalize user input into a site pattern.

    Lower-cases, strips the protocol, a leading "www." and trailing slashes.
    Repeats until nothing changes, so normalizing twice is a no-op.

    Args:
        raw: User-entered pattern or URL

    Returns:
        Normalized pattern
    """
    pattern = raw
    while True:
        normalized = _normalize_once(pattern)
        if normalized == pattern:
            return normalized
        pattern = normalized


def validate_site_pattern(pattern: str) -> Optional[PatternError]:
    """Check a normalized pattern.

    Returns:
        None if the pattern is valid, otherwise the first PatternError found
    """
    if not pattern:
        return PatternError.EMPTY
    if "." not in pattern:
        return PatternError.NO_DOT
    if WHITESPACE.search(pattern):
        return PatternError.HAS_SPACE
    if PROTOCOL_PREFIX.match(pattern):
        return PatternError.HAS_PROTOCOL
    domain, _ = split_pattern(pattern)
    if not DOMAIN_FORMAT.match(domain):
        return PatternError.BAD_DOMAIN_FORMAT
    return None


def split_pattern(pattern: str) -> tuple[str, Optional[str]]:
    """Split a pattern into its domain and optional "/path" prefix."""
    domain, sep, rest = pattern.partition("/")
    return domain, ("/" + rest if sep else None)


def site_matches(hostname: str, pathname: str, site: Site) -> bool:
    """Check whether a hostname/path pair matches a site pattern.

    Args:
        hostname: Request hostname
        pathname: Request path (starting with "/")
        site: Site to match against

    Returns:
        True if the hostname equals or is a subdomain of the pattern's domain,
        and the path starts with the pattern's path (if it has one)
    """
    domain, path = split_pattern(site.pattern)
    host_lower = hostname.lower()
    domain_lower = domain.lower()

    if host_lower != domain_lower and not host_lower.endswith("." + domain_lower):
        return False

    if path is not None and not pathname.lower().startswith(path.lower()):
        return False

    return True


def parse_url(url: str) -> Optional[tuple[str, str]]:
    """Extract (hostname, pathname) from a URL, or None if it is malformed."""
    try:
        parts = urlsplit(url)
        hostname = parts.hostname
    except ValueError:
        return None
    if not hostname:
        return None
    return hostname, parts.path or "/"


def find_matching_groups(url: str, groups: list[Group]) -> list[Group]:
    """Return every group with at least one site matching the URL."""
    parsed = parse_url(url)
    if parsed is None:
        return []

    hostname, pathname = parsed
    return [
        group
        for group in groups
        if any(site_matches(hostname, pathname, site) for site in group.sites)
    ]


def pattern_to_regex(pattern: str) -> str:
    """Compile a site pattern into an enforcement regex.

    "facebook.com"       -> ^https?://([a-zA-Z0-9-]+\\.)*facebook\\.com/
    "reddit.com/r/funny" -> ^https?://([a-zA-Z0-9-]+\\.)*reddit\\.com/r/funny
    """
    domain, path = split_pattern(pattern)
    escaped_domain = REGEX_SPECIAL.sub(r"\\\g<0>", domain)
    escaped_path = REGEX_SPECIAL.sub(r"\\\g<0>", path or "/")
    return rf"^https?://([a-zA-Z0-9-]+\.)*{escaped_domain}{escaped_path}"
