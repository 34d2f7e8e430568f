"""Unit tests for version parsing and the major bump gate."""

import pytest

from runtipi_cli.errors import MajorVersionBlocked, VersionParseError
from runtipi_cli.versions import (
    LatestVersion,
    NightlyVersion,
    SpecificVersion,
    ensure_not_major_bump,
    is_major_bump,
    normalize_installed_version,
    parse_version,
)


class TestParseVersion:
    """Tests for parse_version()."""

    def test_sentinels(self):
        assert parse_version("latest") == LatestVersion()
        assert parse_version("nightly") == NightlyVersion()

    def test_sentinels_are_case_sensitive(self):
        with pytest.raises(VersionParseError):
            parse_version("Latest")
        with pytest.raises(VersionParseError):
            parse_version("NIGHTLY")

    @pytest.mark.parametrize("token", ["1.2.3", "v1.2.3", "V1.2.3"])
    def test_prefix_is_optional(self, token):
        assert parse_version(token) == SpecificVersion(1, 2, 3)

    def test_prerelease_and_build(self):
        spec = parse_version("v3.0.0-rc.1+build.7")
        assert spec == SpecificVersion(3, 0, 0, prerelease="rc.1", build="build.7")
        assert str(spec) == "3.0.0-rc.1+build.7"

    @pytest.mark.parametrize(
        "token",
        ["1.2.3", "v0.0.1", "10.20.30", "2.0.0-beta.2", "v1.0.0+20240101"],
    )
    def test_round_trip_is_stable(self, token):
        spec = parse_version(token)
        assert parse_version(str(spec)) == spec

    @pytest.mark.parametrize(
        "token",
        [
            "",
            "v",
            "1.2",
            "1.2.3.4",
            "01.2.3",
            "vv1.2.3",
            " 1.2.3",
            "1.2.3 ",
            "1.2.3\n",
            "1.2.3/extra",
            "latest ",
            "one.two.three",
            "1.2.3-",
        ],
    )
    def test_rejects_invalid_tokens(self, token):
        with pytest.raises(VersionParseError) as exc_info:
            parse_version(token)
        assert exc_info.value.token == token

    def test_parse_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse_version("garbage")


class TestIsMajorBump:
    """Tests for is_major_bump()."""

    def test_major_increase(self):
        assert is_major_bump("1.2.3", "2.0.0") is True

    def test_same_major(self):
        assert is_major_bump("2.0.0", "2.5.0") is False

    def test_downgrade_is_not_a_bump(self):
        assert is_major_bump("2.0.0", "1.9.9") is False

    def test_multi_digit_major_compares_numerically(self):
        # A lexical comparison would say "9" > "10" and let this through
        assert ("9" < "10") is False
        assert is_major_bump("9.0.0", "10.0.0") is True

    def test_multi_digit_major_downgrade(self):
        # Lexically "10" < "9" would block this downgrade as a bump
        assert is_major_bump("10.0.0", "9.0.0") is False

    def test_nightly_is_not_comparable(self):
        assert is_major_bump("3.1.0", "nightly") is False


class TestGate:
    """Tests for ensure_not_major_bump() and installed version parsing."""

    def test_blocked_error_carries_versions_and_hint(self):
        with pytest.raises(MajorVersionBlocked) as exc_info:
            ensure_not_major_bump("1.9.9", "2.0.0")
        assert exc_info.value.current == "1.9.9"
        assert exc_info.value.target == "2.0.0"
        assert "breaking-updates" in (exc_info.value.hint or "")

    def test_allowed_update_passes(self):
        ensure_not_major_bump("1.5.0", "1.0.0")

    @pytest.mark.parametrize("raw,expected", [("v1.5.0", "1.5.0"), ("1.5.0", "1.5.0")])
    def test_normalize_installed_version(self, raw, expected):
        assert normalize_installed_version(raw) == expected
