"""Restricted glob matching for skip-rule branch and host patterns.

Supported syntax, always case-insensitive:

* ``*``      any run of characters inside one ``/``-separated segment
* ``?``      exactly one character inside a segment
* ``[abc]``  character class, ``[a-z]`` ranges, ``[!x]`` / ``[^x]`` negation
* ``**``     as a whole segment, zero or more segments
* ``\\x``    literal ``x``

Brace expansion and extglob operators are not supported; ``{``, ``}``, ``@``
and parentheses are plain characters. Matching never compiles to a regex:
segments are matched with a single backtrack point and segment lists with a
set-based pass, so cost stays O(len(pattern) * len(subject)).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache

from testwarden.exceptions import ValidationError

MAX_PATTERN_LENGTH = 255
_VALID_PATTERN_CHARS = re.compile(r"^[\w\-*?/.\[\]{}@]+$")

_STAR = "star"
_ANY = "any"
_LITERAL = "literal"
_CLASS = "class"


@dataclass(frozen=True)
class _Token:
    kind: str
    char: str = ""
    negated: bool = False
    chars: frozenset[str] = frozenset()
    ranges: tuple[tuple[str, str], ...] = ()

    def accepts(self, ch: str) -> bool:
        if self.kind == _ANY:
            return True
        if self.kind == _LITERAL:
            return ch == self.char
        hit = ch in self.chars or any(lo <= ch <= hi for lo, hi in self.ranges)
        return hit != self.negated


_GLOBSTAR: tuple[_Token, ...] | None = None  # marker for a "**" segment


def _parse_class(segment: str, start: int) -> tuple[_Token, int] | None:
    """Parse ``[...]`` starting after the opening bracket. None if unterminated."""
    i = start
    negated = False
    if i < len(segment) and segment[i] in "!^":
        negated = True
        i += 1
    chars: set[str] = set()
    ranges: list[tuple[str, str]] = []
    first = True
    while i < len(segment):
        ch = segment[i]
        if ch == "]" and not first:
            token = _Token(
                kind=_CLASS, negated=negated, chars=frozenset(chars), ranges=tuple(ranges)
            )
            return token, i + 1
        if ch == "\\" and i + 1 < len(segment):
            i += 1
            ch = segment[i]
        if i + 2 < len(segment) and segment[i + 1] == "-" and segment[i + 2] != "]":
            ranges.append((ch, segment[i + 2]))
            i += 3
        else:
            chars.add(ch)
            i += 1
        first = False
    return None


def _tokenize(segment: str) -> tuple[_Token, ...]:
    tokens: list[_Token] = []
    i = 0
    while i < len(segment):
        ch = segment[i]
        if ch == "*":
            # collapse runs of stars
            if not tokens or tokens[-1].kind != _STAR:
                tokens.append(_Token(kind=_STAR))
            i += 1
        elif ch == "?":
            tokens.append(_Token(kind=_ANY))
            i += 1
        elif ch == "[":
            parsed = _parse_class(segment, i + 1)
            if parsed is None:
                tokens.append(_Token(kind=_LITERAL, char="["))
                i += 1
            else:
                token, i = parsed
                tokens.append(token)
        elif ch == "\\" and i + 1 < len(segment):
            tokens.append(_Token(kind=_LITERAL, char=segment[i + 1]))
            i += 2
        else:
            tokens.append(_Token(kind=_LITERAL, char=ch))
            i += 1
    return tuple(tokens)


@lru_cache(maxsize=512)
def _compile(pattern: str) -> tuple[tuple[_Token, ...] | None, ...]:
    return tuple(
        _GLOBSTAR if segment == "**" else _tokenize(segment)
        for segment in pattern.lower().split("/")
    )


def _match_segment(text: str, tokens: tuple[_Token, ...]) -> bool:
    t = p = 0
    star_p = -1
    star_t = 0
    while t < len(text):
        if p < len(tokens) and tokens[p].kind == _STAR:
            star_p = p
            star_t = t
            p += 1
        elif p < len(tokens) and tokens[p].accepts(text[t]):
            t += 1
            p += 1
        elif star_p != -1:
            # let the last star swallow one more character and retry
            star_t += 1
            t = star_t
            p = star_p + 1
        else:
            return False
    while p < len(tokens) and tokens[p].kind == _STAR:
        p += 1
    return p == len(tokens)


def glob_match(subject: str, pattern: str) -> bool:
    """Return True if ``subject`` matches ``pattern`` (case-insensitive)."""
    segments = subject.lower().split("/")
    n = len(segments)
    positions = {0}
    for compiled in _compile(pattern):
        if compiled is _GLOBSTAR:
            positions = set(range(min(positions), n + 1))
        else:
            positions = {
                i + 1 for i in positions if i < n and _match_segment(segments[i], compiled)
            }
        if not positions:
            return False
    return n in positions


def validate_glob_pattern(pattern: str | None) -> str | None:
    """Return the trimmed pattern, or None for an empty one ("match all").

    Raises ValidationError for patterns that are too long, use characters
    outside the allowed set, or leave a character class unterminated.
    """
    if pattern is None or not pattern.strip():
        return None
    trimmed = pattern.strip()
    if len(trimmed) > MAX_PATTERN_LENGTH:
        raise ValidationError(f"Pattern too long (max {MAX_PATTERN_LENGTH} characters)")
    if not _VALID_PATTERN_CHARS.match(trimmed):
        raise ValidationError("Pattern contains invalid characters")
    for segment in trimmed.split("/"):
        opened = segment.find("[")
        while opened != -1:
            parsed = _parse_class(segment, opened + 1)
            if parsed is None:
                raise ValidationError("Invalid glob pattern syntax")
            opened = segment.find("[", parsed[1])
    return trimmed


def validate_patterns(
    branch_pattern: str | None, env_pattern: str | None
) -> tuple[str | None, str | None]:
    """Validate both rule patterns, naming the offending one in the error."""
    try:
        branch = validate_glob_pattern(branch_pattern)
    except ValidationError as e:
        raise ValidationError(f"Branch pattern: {e}") from e
    try:
        env = validate_glob_pattern(env_pattern)
    except ValidationError as e:
        raise ValidationError(f"Environment pattern: {e}") from e
    return branch, env
