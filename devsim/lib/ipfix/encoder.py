"""
IPFIX (RFC 7011) message encoder.

Every message is self-contained: 16-byte header, one template set declaring
template 257, and one data set holding a single 93-byte record built from a
TrafficRecord. All integers are big-endian.

    Field                              IE      Len
    ----------------------------------------------
    sourceMacAddress                   56      6
    postSourceMacAddress               81      6
    destinationMacAddress              80      6
    postDestinationMacAddress          57      6
    sourceIPv4Address                  8       4
    destinationIPv4Address             12      4
    sourceTransportPort                7       2
    destinationTransportPort           11      2
    tcpControlBits                     6       1
    flowDirection                      61      1
    packetDeltaCount                   2       8
    flowStartMilliseconds              152     8
    flowEndMilliseconds                153     8
    biflowDirection                    239     1
    newConnectionDeltaCount            278     4
    connectionClientIPv4Address        E12236  4
    connectionClientTransportPort      E12240  2
    connectionServerIPv4Address        E12237  4
    connectionServerTransportPort      E12241  2
    observationPointId                 138     8
    ipVersion                          60      1
    protocolIdentifier                 4       1
    applicationId                      95      4

E = enterprise-specific (high bit set on the wire, followed by the PEN).
"""
import ipaddress
import struct
import time
from dataclasses import dataclass
from typing import Callable, Tuple

from devsim.lib.ipfix.traffic import TrafficRecord

IPFIX_VERSION = 10
IPFIX_HEADER_LEN = 16
SET_HEADER_LEN = 4
TEMPLATE_RECORD_HEADER_LEN = 4

TEMPLATE_SET_ID = 2
TEMPLATE_ID = 257
OBSERVATION_DOMAIN_ID = 257
SEQUENCE_NUMBER = 1

ENTERPRISE_BIT = 0x8000
ENTERPRISE_PEN = 9  # ciscoSystems

PLACEHOLDER_SRC_MAC = bytes.fromhex("00005e005301")
PLACEHOLDER_DST_MAC = bytes.fromhex("00005e005302")

TCP_FLAGS = 0x18  # PSH | ACK
FLOW_DIRECTION_INGRESS = 0
FLOW_DIRECTION_EGRESS = 1
BIFLOW_DIRECTION_INITIATOR = 1
NEW_CONNECTION_DELTA = 1
OBSERVATION_POINT_ID = 1
IP_VERSION = 4
APPLICATION_ID = 0x03000050  # engine 3 (IANA L4 port), selector 80
FLOW_DURATION_MS = 1000


@dataclass(frozen=True)
class FieldSpec:
    name: str
    element_id: int
    length: int
    enterprise: int | None = None

    def encode(self) -> bytes:
        if self.enterprise is not None:
            return struct.pack("!HHI", self.element_id | ENTERPRISE_BIT, self.length, self.enterprise)
        return struct.pack("!HH", self.element_id, self.length)


TEMPLATE_FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec("sourceMacAddress", 56, 6),
    FieldSpec("postSourceMacAddress", 81, 6),
    FieldSpec("destinationMacAddress", 80, 6),
    FieldSpec("postDestinationMacAddress", 57, 6),
    FieldSpec("sourceIPv4Address", 8, 4),
    FieldSpec("destinationIPv4Address", 12, 4),
    FieldSpec("sourceTransportPort", 7, 2),
    FieldSpec("destinationTransportPort", 11, 2),
    FieldSpec("tcpControlBits", 6, 1),
    FieldSpec("flowDirection", 61, 1),
    FieldSpec("packetDeltaCount", 2, 8),
    FieldSpec("flowStartMilliseconds", 152, 8),
    FieldSpec("flowEndMilliseconds", 153, 8),
    FieldSpec("biflowDirection", 239, 1),
    FieldSpec("newConnectionDeltaCount", 278, 4),
    FieldSpec("connectionClientIPv4Address", 12236, 4, ENTERPRISE_PEN),
    FieldSpec("connectionClientTransportPort", 12240, 2, ENTERPRISE_PEN),
    FieldSpec("connectionServerIPv4Address", 12237, 4, ENTERPRISE_PEN),
    FieldSpec("connectionServerTransportPort", 12241, 2, ENTERPRISE_PEN),
    FieldSpec("observationPointId", 138, 8),
    FieldSpec("ipVersion", 60, 1),
    FieldSpec("protocolIdentifier", 4, 1),
    FieldSpec("applicationId", 95, 4),
)

RECORD_LEN = sum(f.length for f in TEMPLATE_FIELDS)

# Same order as TEMPLATE_FIELDS
_RECORD_FORMAT = "!6s6s6s6s4s4sHHBBQQQBI4sH4sHQBBI"


def build_template_set() -> bytes:
    specs = b"".join(f.encode() for f in TEMPLATE_FIELDS)
    length = SET_HEADER_LEN + TEMPLATE_RECORD_HEADER_LEN + len(specs)
    return struct.pack("!HHHH", TEMPLATE_SET_ID, length, TEMPLATE_ID, len(TEMPLATE_FIELDS)) + specs


# The template never changes; encode it once
TEMPLATE_SET = build_template_set()


class IPFIXEncoder:
    """
    Builds IPFIX messages for the simulated device.

    MAC fields come from matching the record's addresses against device_ip: a
    match uses device_mac, anything else the fixed placeholder MACs. The clock
    is read once per message, so a frozen clock gives byte-identical output.
    """

    def __init__(
        self,
        device_mac: bytes,
        device_ip: ipaddress.IPv4Address | None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.device_mac = device_mac
        self.device_ip = device_ip
        self.clock = clock

    def _macs(self, record: TrafficRecord) -> Tuple[bytes, bytes]:
        src_mac = self.device_mac if record.source_ip == self.device_ip else PLACEHOLDER_SRC_MAC
        dst_mac = self.device_mac if record.destination_ip == self.device_ip else PLACEHOLDER_DST_MAC
        return src_mac, dst_mac

    def build_data_set(self, record: TrafficRecord, start_ms: int) -> bytes:
        src_mac, dst_mac = self._macs(record)
        direction = FLOW_DIRECTION_EGRESS if record.source_ip == self.device_ip else FLOW_DIRECTION_INGRESS

        data = struct.pack(
            _RECORD_FORMAT,
            src_mac,
            src_mac,
            dst_mac,
            dst_mac,
            record.source_ip.packed,
            record.destination_ip.packed,
            record.source_port,
            record.destination_port,
            TCP_FLAGS,
            direction,
            record.packets,
            start_ms,
            start_ms + FLOW_DURATION_MS,
            BIFLOW_DIRECTION_INITIATOR,
            NEW_CONNECTION_DELTA,
            record.source_ip.packed,
            record.source_port,
            record.destination_ip.packed,
            record.destination_port,
            OBSERVATION_POINT_ID,
            IP_VERSION,
            record.protocol_number,
            APPLICATION_ID,
        )
        return struct.pack("!HH", TEMPLATE_ID, SET_HEADER_LEN + len(data)) + data

    def encode(self, record: TrafficRecord) -> bytes:
        now = self.clock()
        data_set = self.build_data_set(record, int(now * 1000))

        total_len = IPFIX_HEADER_LEN + len(TEMPLATE_SET) + len(data_set)
        header = struct.pack(
            "!HHIII",
            IPFIX_VERSION,
            total_len,
            int(now) & 0xFFFFFFFF,
            SEQUENCE_NUMBER,
            OBSERVATION_DOMAIN_ID,
        )
        return header + TEMPLATE_SET + data_set
