import time

import pytest

from testwarden.exceptions import ValidationError
from testwarden.rules.glob import (
    MAX_PATTERN_LENGTH,
    glob_match,
    validate_glob_pattern,
    validate_patterns,
)


@pytest.mark.unit
class TestGlobMatch:
    @pytest.mark.parametrize(
        ("subject", "pattern"),
        [
            ("main", "main"),
            ("release/2.0", "release/*"),
            ("feature/login", "feature/*"),
            ("staging.example.com", "staging.*"),
            ("staging.example.com", "*.example.com"),
            ("pr-42", "pr-??"),
            ("release/2.1", "release/2.[0-9]"),
            ("release/2.x", "release/2.[!0-9]"),
            ("team/a/feature/x", "**/feature/*"),
            ("feature/x", "**/feature/*"),
            ("a/b/c/d", "a/**/d"),
            ("a/d", "a/**/d"),
            ("anything/at/all", "**"),
            ("Release/2.0", "release/*"),
            ("main", "MAIN"),
            ("foo*bar", "foo\\*bar"),
        ],
    )
    def test_matches(self, subject: str, pattern: str) -> None:
        assert glob_match(subject, pattern) is True

    @pytest.mark.parametrize(
        ("subject", "pattern"),
        [
            ("main", "release/*"),
            ("release/2.0/hotfix", "release/*"),
            ("release", "release/*"),
            ("pr-4", "pr-??"),
            ("release/2.x", "release/2.[0-9]"),
            ("a/b/c", "a/**/d"),
            ("fooxbar", "foo\\*bar"),
            ("feature-a", "{feature,fix}-*"),
            ("feature-a", "@(feature)-*"),
        ],
    )
    def test_non_matches(self, subject: str, pattern: str) -> None:
        assert glob_match(subject, pattern) is False

    def test_braces_are_literal(self) -> None:
        assert glob_match("{feature,fix}-a", "{feature,fix}-*") is True

    def test_star_does_not_cross_segments(self) -> None:
        assert glob_match("feature/a/b", "feature/*") is False
        assert glob_match("feature/a/b", "feature/**") is True

    def test_pathological_pattern_stays_fast(self) -> None:
        subject = "a" * 200 + "b"
        pattern = "*a" * 40 + "c"
        started = time.perf_counter()
        assert glob_match(subject, pattern) is False
        assert time.perf_counter() - started < 1.0


@pytest.mark.unit
class TestValidateGlobPattern:
    def test_empty_means_match_all(self) -> None:
        assert validate_glob_pattern(None) is None
        assert validate_glob_pattern("") is None
        assert validate_glob_pattern("   ") is None

    def test_trims_whitespace(self) -> None:
        assert validate_glob_pattern("  release/*  ") == "release/*"

    def test_too_long(self) -> None:
        with pytest.raises(ValidationError, match="too long"):
            validate_glob_pattern("a" * (MAX_PATTERN_LENGTH + 1))

    @pytest.mark.parametrize("pattern", ["main branch", "feat;rm", "a$b", "(x)"])
    def test_invalid_characters(self, pattern: str) -> None:
        with pytest.raises(ValidationError, match="invalid characters"):
            validate_glob_pattern(pattern)

    def test_unterminated_class(self) -> None:
        with pytest.raises(ValidationError, match="syntax"):
            validate_glob_pattern("release/[0-9")

    def test_second_class_checked(self) -> None:
        assert validate_glob_pattern("[ab]-[cd]") == "[ab]-[cd]"
        with pytest.raises(ValidationError):
            validate_glob_pattern("[ab]-[cd")

    def test_errors_name_the_pattern(self) -> None:
        with pytest.raises(ValidationError, match="^Branch pattern: "):
            validate_patterns("bad branch", None)
        with pytest.raises(ValidationError, match="^Environment pattern: "):
            validate_patterns("main", "bad host")

    def test_both_valid(self) -> None:
        assert validate_patterns(" main ", "") == ("main", None)
