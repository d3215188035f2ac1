import ipaddress
import json
import struct
from dataclasses import dataclass
from typing import List, Literal, Union

import structlog
from pydantic import BaseModel, ValidationError

from devsim.lib.exceptions import PayloadError

log = structlog.get_logger()


class DHCPOptionSpec(BaseModel):
    """One element of the [dhcp] options JSON array."""

    option: int
    value: Union[str, int] = ""
    type: str


@dataclass(frozen=True)
class IpAddrOption:
    code: int
    value: str
    kind: Literal["ipaddr"] = "ipaddr"

    def encode(self) -> bytes:
        try:
            return ipaddress.IPv4Address(self.value.strip()).packed
        except ValueError:
            return b""


@dataclass(frozen=True)
class TextOption:
    code: int
    value: str
    kind: Literal["string"] = "string"

    def encode(self) -> bytes:
        return self.value.encode()


@dataclass(frozen=True)
class IntegerOption:
    code: int
    value: str
    kind: Literal["int"] = "int"

    def encode(self) -> bytes:
        try:
            val = int(self.value.strip())
        except ValueError:
            val = 0
        return struct.pack("!I", val & 0xFFFFFFFF)


@dataclass(frozen=True)
class ByteListOption:
    code: int
    value: str
    kind: Literal["bytes"] = "bytes"

    def encode(self) -> bytes:
        out = bytearray()
        for part in self.value.split(","):
            try:
                val = int(part.strip())
            except ValueError:
                val = 0
            out.append(val & 0xFF)
        return bytes(out)


DHCPOption = Union[IpAddrOption, TextOption, IntegerOption, ByteListOption]

OPTION_TYPES = {
    "ipaddr": IpAddrOption,
    "string": TextOption,
    "int": IntegerOption,
    "bytes": ByteListOption,
}


def parse_dhcp_options(body: str) -> List[DHCPOption]:
    """
    Parse the options JSON array.

    A body that is not a JSON array raises PayloadError. Individual entries with an
    unknown type tag, a missing field or an option code outside 1..254 are skipped
    and logged. Values that do not parse for their type still produce an option,
    encoded as zero/empty.
    """
    try:
        raw = json.loads(body or "[]")
    except json.JSONDecodeError as e:
        raise PayloadError(f"invalid DHCP options JSON: {e}") from e

    if not isinstance(raw, list):
        raise PayloadError("DHCP options must be a JSON array")

    options: List[DHCPOption] = []
    for idx, item in enumerate(raw):
        try:
            entry = DHCPOptionSpec.model_validate(item)
        except ValidationError as e:
            log.warning("Skipping malformed DHCP option", index=idx, error=str(e))
            continue

        option_cls = OPTION_TYPES.get(entry.type)
        if option_cls is None:
            log.warning("Skipping DHCP option with unknown type", index=idx, option=entry.option, type=entry.type)
            continue

        if not 1 <= entry.option <= 254:
            log.warning("Skipping DHCP option with invalid code", index=idx, option=entry.option)
            continue

        options.append(option_cls(code=entry.option, value=str(entry.value)))

    return options
