import ipaddress
import json
from typing import List

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from devsim.lib.exceptions import PayloadError

IP_PROTO_TCP = 6
IP_PROTO_UDP = 17


class TrafficRecord(BaseModel):
    """One element of the [ipfix] traffic JSON array."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    source_ip: ipaddress.IPv4Address = Field(alias="SourceIP")
    destination_ip: ipaddress.IPv4Address = Field(alias="DestinationIP")
    source_port: int = Field(0, alias="SourcePort", ge=0, le=0xFFFF)
    destination_port: int = Field(0, alias="DestinationPort", ge=0, le=0xFFFF)
    packets: int = Field(0, alias="Packets", ge=0, le=0xFFFFFFFFFFFFFFFF)
    octets: int = Field(0, alias="Octets", ge=0, le=0xFFFFFFFFFFFFFFFF)
    protocol: str = Field("TCP", alias="Protocol")

    @property
    def protocol_number(self) -> int:
        # empty means TCP; any name other than TCP is exported as UDP
        name = self.protocol.strip().upper()
        if not name or name == "TCP":
            return IP_PROTO_TCP
        return IP_PROTO_UDP


def parse_traffic_records(body: str) -> List[TrafficRecord]:
    """Parse the traffic JSON array. Any malformed element rejects the whole payload."""
    try:
        raw = json.loads(body or "[]")
    except json.JSONDecodeError as e:
        raise PayloadError(f"invalid IPFIX traffic JSON: {e}") from e

    if not isinstance(raw, list):
        raise PayloadError("IPFIX traffic must be a JSON array")
    if not raw:
        raise PayloadError("no traffic data found")

    try:
        return [TrafficRecord.model_validate(item) for item in raw]
    except ValidationError as e:
        raise PayloadError(f"invalid IPFIX traffic record: {e}") from e
