import ipaddress
import struct
from dataclasses import dataclass, field
from typing import Tuple

from devsim.lib.dhcp.options import DHCPOption

ETH_P_IP = 0x0800
IPV4_HDR_LEN = 20
UDP_HDR_LEN = 8
UDP_PROTO = 17
IP_DEFAULT_TTL = 64

BOOTREQUEST = 1
HTYPE_ETHERNET = 1
BOOTP_FIXED_LEN = 236
BOOTP_FLAG_BROADCAST = 0x8000
DHCP_MAGIC = b"\x63\x82\x53\x63"
DHCP_MIN_PACKET_LEN = 300

DHCP_OPTION_END = 255
DHCP_OPTION_MESSAGE_TYPE = 53

DHCP_CLIENT_PORT = 68
DHCP_SERVER_PORT = 67

DHCP_MSG_REQUEST = 3

IPV4_ZERO = ipaddress.IPv4Address("0.0.0.0")
IPV4_BROADCAST = ipaddress.IPv4Address("255.255.255.255")


def checksum16(data: bytes) -> int:
    if len(data) % 2 == 1:
        data += b"\x00"
    s = 0
    for i in range(0, len(data), 2):
        s += (data[i] << 8) + data[i + 1]
        s = (s & 0xFFFF) + (s >> 16)
    return (~s) & 0xFFFF


def encode_option(code: int, value: bytes) -> bytes:
    if len(value) > 255:
        value = value[:255]
    return bytes([code, len(value)]) + value


@dataclass(frozen=True)
class DHCPLeaseRequest:
    xid: bytes
    client_mac: bytes
    giaddr: ipaddress.IPv4Address = IPV4_ZERO
    ciaddr: ipaddress.IPv4Address | None = None
    broadcast: bool = False
    options: Tuple[DHCPOption, ...] = field(default_factory=tuple)
    message_type: int = DHCP_MSG_REQUEST

    def __post_init__(self) -> None:
        if len(self.xid) != 4:
            raise ValueError("transaction ID must be 4 bytes")
        if len(self.client_mac) != 6:
            raise ValueError("client MAC must be 6 bytes")


def build_dhcp_request(req: DHCPLeaseRequest) -> bytes:
    """BOOTP/DHCP request payload: fixed header, magic cookie, message type option,
    configured options in order, END, zero padding up to the BOOTP minimum size."""
    flags = BOOTP_FLAG_BROADCAST if req.broadcast else 0
    ciaddr = req.ciaddr.packed if req.ciaddr is not None else IPV4_ZERO.packed

    header = struct.pack(
        "!BBBB4sHH4s4s4s4s16s64s128s",
        BOOTREQUEST,
        HTYPE_ETHERNET,
        len(req.client_mac),
        0,  # hops
        req.xid,
        0,  # secs
        flags,
        ciaddr,
        IPV4_ZERO.packed,  # yiaddr
        IPV4_ZERO.packed,  # siaddr
        req.giaddr.packed,
        req.client_mac.ljust(16, b"\x00"),
        b"",
        b"",
    )

    out = bytearray(header)
    out.extend(DHCP_MAGIC)
    out.extend(encode_option(DHCP_OPTION_MESSAGE_TYPE, bytes([req.message_type])))
    for opt in req.options:
        out.extend(encode_option(opt.code, opt.encode()))
    out.append(DHCP_OPTION_END)

    if len(out) < DHCP_MIN_PACKET_LEN:
        out.extend(bytes(DHCP_MIN_PACKET_LEN - len(out)))
    return bytes(out)


@dataclass(frozen=True)
class EthernetFrame:
    dst_mac: bytes
    src_mac: bytes
    payload: bytes
    src_ip: ipaddress.IPv4Address = IPV4_ZERO
    dst_ip: ipaddress.IPv4Address = IPV4_BROADCAST
    src_port: int = DHCP_CLIENT_PORT
    dst_port: int = DHCP_SERVER_PORT

    def to_bytes(self) -> bytes:
        udp_len = UDP_HDR_LEN + len(self.payload)
        pseudo = struct.pack("!4s4sBBH", self.src_ip.packed, self.dst_ip.packed, 0, UDP_PROTO, udp_len)
        udp_no_csum = struct.pack("!HHHH", self.src_port, self.dst_port, udp_len, 0) + self.payload
        udp_csum = checksum16(pseudo + udp_no_csum) or 0xFFFF
        udp = struct.pack("!HHHH", self.src_port, self.dst_port, udp_len, udp_csum) + self.payload

        ip_hdr = struct.pack(
            "!BBHHHBBH4s4s",
            0x45,  # version 4, IHL 5
            0,
            IPV4_HDR_LEN + udp_len,
            0,
            0,
            IP_DEFAULT_TTL,
            UDP_PROTO,
            0,
            self.src_ip.packed,
            self.dst_ip.packed,
        )
        ip_csum = checksum16(ip_hdr)
        ip_hdr = ip_hdr[:10] + struct.pack("!H", ip_csum) + ip_hdr[12:]

        eth_hdr = self.dst_mac + self.src_mac + struct.pack("!H", ETH_P_IP)
        return eth_hdr + ip_hdr + udp


def frame_for_request(
    payload: bytes,
    dst_mac: bytes,
    src_mac: bytes,
    server_ip: ipaddress.IPv4Address | None,
    giaddr: ipaddress.IPv4Address,
) -> EthernetFrame:
    # Relayed requests come from the relay address on the server port (67 -> 67)
    relayed = giaddr != IPV4_ZERO
    dst_ip = server_ip if server_ip is not None and server_ip != IPV4_ZERO else IPV4_BROADCAST

    return EthernetFrame(
        dst_mac=dst_mac,
        src_mac=src_mac,
        payload=payload,
        src_ip=giaddr if relayed else IPV4_ZERO,
        dst_ip=dst_ip,
        src_port=DHCP_SERVER_PORT if relayed else DHCP_CLIENT_PORT,
        dst_port=DHCP_SERVER_PORT,
    )
