"""Tests for MAC address normalization."""
import pytest

from wifimgr.errors import InvalidMACError
from wifimgr.vendors.macaddr import (
    format_mac,
    is_valid_mac,
    macs_equal,
    normalize_mac,
    normalize_mac_or_empty,
)


class TestNormalizeMac:
    """Tests for normalize_mac."""

    @pytest.mark.parametrize("value", [
        "00:11:22:aa:bb:cc",
        "00-11-22-AA-BB-CC",
        "0011.22aa.bbcc",
        "001122AABBCC",
        "  00:11:22:aa:bb:cc\n",
    ])
    def test_accepted_notations(self, value):
        """Every accepted notation maps to the same canonical form."""
        assert normalize_mac(value) == "001122aabbcc"

    def test_idempotent(self):
        once = normalize_mac("00:11:22:AA:BB:CC")
        assert normalize_mac(once) == once

    @pytest.mark.parametrize("value", [
        "",
        "00:11:22:33:44",
        "00:11:22:33:44:55:66",
        "00:11-22:33:44:55",
        "gg:11:22:33:44:55",
    ])
    def test_invalid_raises(self, value):
        with pytest.raises(InvalidMACError):
            normalize_mac(value)

    def test_invalid_is_value_error(self):
        """Callers catching ValueError also catch bad MACs."""
        with pytest.raises(ValueError):
            normalize_mac("not-a-mac")

    def test_non_string_is_invalid(self):
        assert is_valid_mac(1122334455) is False


class TestMacHelpers:
    """Tests for formatting and comparison helpers."""

    def test_format_mac(self):
        assert format_mac("001122aabbcc") == "00:11:22:aa:bb:cc"
        assert format_mac("0011.22aa.bbcc", separator="-") == "00-11-22-aa-bb-cc"

    def test_macs_equal_across_notations(self):
        assert macs_equal("00:11:22:33:44:55", "0011.2233.4455")

    def test_macs_equal_invalid_never_matches(self):
        assert not macs_equal("bogus", "bogus")

    def test_normalize_or_empty(self):
        assert normalize_mac_or_empty("bogus") == ""
        assert normalize_mac_or_empty("00:11:22:33:44:55") == "001122334455"
