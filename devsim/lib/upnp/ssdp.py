import ipaddress
import socket
import struct
import time
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

log = structlog.get_logger()

SSDP_MULTICAST_TTL = 2
MAX_DATAGRAM = 65536

MSEARCH_TEMPLATE = (
    "M-SEARCH * HTTP/1.1\r\n"
    "HOST: {host}:{port}\r\n"
    "ST: {st}\r\n"
    'MAN: "ssdp:discover"\r\n'
    "MX: {mx}\r\n"
    "USER-AGENT: {user_agent}\r\n"
    "\r\n"
)


@dataclass(frozen=True)
class SSDPTarget:
    group: ipaddress.IPv4Address
    port: int
    device_type: str
    user_agent: str


@dataclass(frozen=True)
class DiscoveryResult:
    responses: int
    timed_out: bool
    error: str | None = None


def build_msearch(target: SSDPTarget, mx: int) -> bytes:
    return MSEARCH_TEMPLATE.format(
        host=target.group,
        port=target.port,
        st=target.device_type,
        mx=mx,
        user_agent=target.user_agent,
    ).encode()


def open_multicast_socket(group: ipaddress.IPv4Address, iface_ip: ipaddress.IPv4Address | None) -> socket.socket:
    """UDP socket joined to `group` on the interface owning `iface_ip` (any interface when None)."""
    local = (iface_ip or ipaddress.IPv4Address("0.0.0.0")).packed

    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(("", 0))
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, struct.pack("4s4s", group.packed, local))
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_IF, local)
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, SSDP_MULTICAST_TTL)
    except OSError:
        sock.close()
        raise
    return sock


def discover(
    target: SSDPTarget,
    listen_window: float,
    iface_ip: ipaddress.IPv4Address | None = None,
    socket_factory: Callable[..., socket.socket] = open_multicast_socket,
    on_sent: Optional[Callable[[], None]] = None,
) -> DiscoveryResult:
    """
    One discovery attempt: send M-SEARCH, then read (and discard) responses on the
    same socket until listen_window expires. Responses are counted, not parsed.
    """
    search = build_msearch(target, mx=max(1, int(listen_window)))

    try:
        sock = socket_factory(target.group, iface_ip)
    except OSError as e:
        log.error("Could not open SSDP socket", group=str(target.group), error=str(e))
        return DiscoveryResult(responses=0, timed_out=False, error=str(e))

    responses = 0
    with sock:
        deadline = time.monotonic() + listen_window
        try:
            log.info("Sending search request", device_type=target.device_type)
            sock.settimeout(listen_window)
            sock.sendto(search, (str(target.group), target.port))
            if on_sent is not None:
                on_sent()

            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return DiscoveryResult(responses=responses, timed_out=True)
                sock.settimeout(remaining)
                sock.recvfrom(MAX_DATAGRAM)
                responses += 1
        except socket.timeout:
            return DiscoveryResult(responses=responses, timed_out=True)
        except OSError as e:
            # legitimate error, not a timeout
            log.error("UPnP read failed", error=str(e))
            return DiscoveryResult(responses=responses, timed_out=False, error=str(e))
