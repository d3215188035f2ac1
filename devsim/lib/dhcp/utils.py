import re

_MAC_SEPARATED = re.compile(r"^[0-9A-Fa-f]{2}([:-])(?:[0-9A-Fa-f]{2}\1){4}[0-9A-Fa-f]{2}$")
_MAC_DOTTED = re.compile(r"^[0-9A-Fa-f]{4}\.[0-9A-Fa-f]{4}\.[0-9A-Fa-f]{4}$")


def parse_mac(raw_mac: str) -> bytes:
    """Parse a 6-byte hardware address in aa:bb:cc:dd:ee:ff, aa-bb-... or aabb.ccdd.eeff form."""
    raw_mac = raw_mac.strip()
    if not (_MAC_SEPARATED.match(raw_mac) or _MAC_DOTTED.match(raw_mac)):
        raise ValueError(f"Invalid MAC address: {raw_mac!r}")

    return bytes.fromhex("".join(c for c in raw_mac if c.isalnum()))


def format_mac(mac: bytes, delimiter: str = ":") -> str:
    if len(mac) != 6:
        raise ValueError("Invalid MAC address length")

    return delimiter.join(f"{b:02x}" for b in mac)
