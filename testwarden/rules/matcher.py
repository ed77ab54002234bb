"""Skip-rule matching against a runner's branch and base URL."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

from testwarden.rules.glob import glob_match

if TYPE_CHECKING:
    from testwarden.models.database import SkipRule


@dataclass(frozen=True)
class MatchResult:
    matches: bool
    matched_branch: bool | None = None  # None when the rule has no branch pattern
    matched_env: bool | None = None  # None when the rule has no env pattern


def extract_host(base_url: str | None) -> str | None:
    """Host component of a base URL, or None if absent or unparseable."""
    if not base_url:
        return None
    try:
        return urlsplit(base_url).hostname or None
    except ValueError:
        return None


def match_rule(rule: SkipRule, branch: str | None, base_url: str | None) -> MatchResult:
    """Match one rule. Patterns present on the same rule are ANDed."""
    has_branch = bool(rule.branch_pattern)
    has_env = bool(rule.env_pattern)

    if not has_branch and not has_env:
        return MatchResult(matches=True)

    branch_ok = True
    env_ok = True
    if has_branch:
        branch_ok = bool(branch) and glob_match(branch, rule.branch_pattern)  # type: ignore[arg-type]
    if has_env:
        host = extract_host(base_url)
        env_ok = host is not None and glob_match(host, rule.env_pattern)  # type: ignore[arg-type]

    return MatchResult(
        matches=branch_ok and env_ok,
        matched_branch=branch_ok if has_branch else None,
        matched_env=env_ok if has_env else None,
    )


def first_matching_rule(
    rules: Iterable[SkipRule],
    branch: str | None,
    base_url: str | None,
) -> tuple[SkipRule, MatchResult] | None:
    """Scan rules in the given order and stop at the first match.

    Callers pass rules in creation order (oldest first).
    """
    for rule in rules:
        result = match_rule(rule, branch, base_url)
        if result.matches:
            return rule, result
    return None
