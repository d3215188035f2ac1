from typing import Tuple

from pyrad import packet

REPLY_CODE_NAMES = {
    packet.AccessAccept: "Access-Accept",
    packet.AccessReject: "Access-Reject",
    packet.AccessChallenge: "Access-Challenge",
    packet.AccountingResponse: "Accounting-Response",
}


def split_bytes_to_gigawords_octets(total_bytes: int) -> Tuple[int, int]:
    # RADIUS octet counters are 32-bit; anything above 4 GiB goes into Gigawords
    if total_bytes < 0:
        total_bytes = 0

    gigawords = total_bytes >> 32
    remaining_octets = total_bytes & 0xFFFFFFFF

    return gigawords, remaining_octets


def parse_nas_port(raw: str) -> int:
    """NAS-Port as a 32-bit unsigned integer, 0 when it does not parse."""
    try:
        port = int(raw.strip())
    except (ValueError, AttributeError):
        return 0
    if port < 0 or port > 0xFFFFFFFF:
        return 0
    return port


def reply_code_name(code: int) -> str:
    return REPLY_CODE_NAMES.get(code, f"Unexpected-{code}")


def reply_attributes(reply: packet.Packet) -> dict:
    """Decoded reply attributes keyed by dictionary name (or number when unknown)."""
    out = {}
    for key in reply.keys():
        try:
            out[key] = reply[key]
        except (KeyError, TypeError):
            out[key] = reply.get(key)
    return out
