import ipaddress
import os
from dataclasses import dataclass
from typing import Callable

from devsim.lib.constants import BROADCAST_MAC, DHCP_DEFAULT_RENEW
from devsim.lib.context import SimulatorContext
from devsim.lib.dhcp.client import RawDHCPClient
from devsim.lib.dhcp.options import parse_dhcp_options
from devsim.lib.dhcp.packet import (
    IPV4_ZERO,
    DHCPLeaseRequest,
    build_dhcp_request,
    frame_for_request,
)
from devsim.lib.dhcp.utils import format_mac, parse_mac
from devsim.lib.services.protocol_loop import LoopState, ProtocolLoop


@dataclass
class DHCPSettings:
    enabled: bool
    server_ip: ipaddress.IPv4Address | None
    giaddr: ipaddress.IPv4Address
    ciaddr: ipaddress.IPv4Address | None
    src_mac: bytes
    dst_mac: bytes
    renew: float
    options: str

    @classmethod
    def from_context(cls, ctx: SimulatorContext) -> "DHCPSettings":
        cfg = ctx.config
        return cls(
            enabled=cfg.get_bool("dhcp", "enabled", False),
            server_ip=cfg.get_ip("dhcp", "server", None),
            giaddr=cfg.get_ip("dhcp", "giaddr", IPV4_ZERO) or IPV4_ZERO,
            ciaddr=cfg.get_ip("dhcp", "ciaddr", None),
            # default to the interface MAC
            src_mac=cfg.get_mac("dhcp", "srcmac", ctx.device.interface.mac),
            dst_mac=cfg.get_mac("dhcp", "dstmac", parse_mac(BROADCAST_MAC)),
            renew=cfg.get_duration("dhcp", "renew", DHCP_DEFAULT_RENEW),
            options=cfg.get_string("dhcp", "options", "[]"),
        )


class DHCPRenewer(ProtocolLoop):
    """
    Retransmits one DHCP Request every renew interval on a raw socket.

    The request (and its transaction ID) is built once in setup() and resent
    unchanged. A send failure raises DHCPSendError, which takes the process down.
    """

    name = "dhcp"

    def __init__(
        self,
        ctx: SimulatorContext,
        settings: DHCPSettings,
        client_factory: Callable[[str], RawDHCPClient] = RawDHCPClient,
        xid: bytes | None = None,
    ) -> None:
        super().__init__(ctx, settings.renew)
        self.settings = settings
        self.client_factory = client_factory
        # generated once per process, see DESIGN.md
        self.xid = xid if xid is not None else os.urandom(4)
        self.payload = b""
        self.client: RawDHCPClient | None = None

    @property
    def broadcast(self) -> bool:
        return self.settings.dst_mac == parse_mac(BROADCAST_MAC)

    def build_request(self) -> DHCPLeaseRequest:
        return DHCPLeaseRequest(
            xid=self.xid,
            client_mac=self.ctx.device.client_mac,
            giaddr=self.settings.giaddr,
            ciaddr=self.settings.ciaddr,
            broadcast=self.broadcast,
            options=tuple(parse_dhcp_options(self.settings.options)),
        )

    async def setup(self) -> None:
        self.payload = build_dhcp_request(self.build_request())
        self.client = self.client_factory(self.ctx.device.interface.name)
        self.log.info(
            "DHCP configured",
            server=str(self.settings.server_ip),
            renew_s=self.settings.renew,
            xid=self.xid.hex(),
            dst_mac=format_mac(self.settings.dst_mac),
            broadcast=self.broadcast,
        )

    def _send(self) -> int | None:
        assert self.client is not None
        frame = frame_for_request(
            self.payload,
            dst_mac=self.settings.dst_mac,
            src_mac=self.settings.src_mac,
            server_ip=self.settings.server_ip,
            giaddr=self.settings.giaddr,
        )
        if not self.ctx.rate_limiter.wait():
            return None
        return self.client.send_frame(frame.to_bytes())

    async def run_once(self) -> float:
        self.set_state(LoopState.SENDING)
        sent = await self.in_executor(self._send)
        if sent is None:
            self.log.debug("Rate limiter closed, DHCP request skipped")
            return self.settings.renew
        self.ctx.metrics.increment_dhcp()
        self.log.info("DHCP request sent", bytes=sent, xid=self.xid.hex())
        return self.settings.renew

    async def teardown(self) -> None:
        if self.client is not None:
            self.client.close()
            self.client = None
