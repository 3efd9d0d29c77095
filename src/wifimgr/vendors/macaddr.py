"""MAC address normalization.

The canonical form used for every cache key and lookup is lowercase hex
with no separators ("001122334455"). Accepted inputs are colon, hyphen,
Cisco dot and bare notation in any case, with surrounding whitespace.
"""
import re

from ..errors import InvalidMACError

_MAC_FORMATS = (
    re.compile(r"^([0-9A-Fa-f]{2}:){5}[0-9A-Fa-f]{2}$"),
    re.compile(r"^([0-9A-Fa-f]{2}-){5}[0-9A-Fa-f]{2}$"),
    re.compile(r"^([0-9A-Fa-f]{4}\.){2}[0-9A-Fa-f]{4}$"),
    re.compile(r"^[0-9A-Fa-f]{12}$"),
)
_SEPARATORS = re.compile(r"[:\-.]")


def is_valid_mac(value: str) -> bool:
    """Check whether ``value`` is a MAC in any accepted notation."""
    if not isinstance(value, str):
        return False
    value = value.strip()
    return any(p.match(value) for p in _MAC_FORMATS)


def normalize_mac(value: str) -> str:
    """Return the canonical form of a MAC address.

    Idempotent: normalize_mac(normalize_mac(x)) == normalize_mac(x).

    Raises:
        InvalidMACError: If ``value`` is not a MAC address
    """
    if not is_valid_mac(value):
        raise InvalidMACError(value)
    return _SEPARATORS.sub("", value.strip()).lower()


def normalize_mac_or_empty(value: str) -> str:
    """Like normalize_mac but returns "" for invalid input."""
    try:
        return normalize_mac(value)
    except InvalidMACError:
        return ""


def format_mac(value: str, separator: str = ":") -> str:
    """Render a MAC for display, e.g. ``aa:bb:cc:dd:ee:ff``."""
    mac = normalize_mac(value)
    return separator.join(mac[i:i + 2] for i in range(0, 12, 2))


def macs_equal(a: str, b: str) -> bool:
    """Compare two MACs regardless of notation. Invalid input never matches."""
    na, nb = normalize_mac_or_empty(a), normalize_mac_or_empty(b)
    return bool(na) and na == nb
