import ipaddress
import socket
from dataclasses import dataclass
from typing import Callable, List

from devsim.lib.constants import IPFIX_DEFAULT_DESTINATION, IPFIX_DEFAULT_PORT, IPFIX_EXPORT_INTERVAL
from devsim.lib.context import SimulatorContext
from devsim.lib.ipfix.encoder import IPFIXEncoder
from devsim.lib.ipfix.traffic import TrafficRecord, parse_traffic_records
from devsim.lib.services.protocol_loop import LoopState, ProtocolLoop


@dataclass
class IPFIXSettings:
    enabled: bool
    destination_ip: ipaddress.IPv4Address
    destination_port: int
    traffic: str
    device_ip: ipaddress.IPv4Address | None

    @classmethod
    def from_context(cls, ctx: SimulatorContext) -> "IPFIXSettings":
        cfg = ctx.config
        # device IP defaults to the interface address, then to the DHCP client IP
        device_ip = ctx.device.interface.ipv4 or cfg.get_ip("dhcp", "ciaddr", None)
        return cls(
            enabled=cfg.get_bool("ipfix", "enabled", False),
            destination_ip=cfg.get_ip("ipfix", "destination_ip", ipaddress.IPv4Address(IPFIX_DEFAULT_DESTINATION))
            or ipaddress.IPv4Address(IPFIX_DEFAULT_DESTINATION),
            destination_port=cfg.get_int("ipfix", "destination_port", IPFIX_DEFAULT_PORT, 1, 65535),
            traffic=cfg.get_string("ipfix", "traffic", "[]"),
            device_ip=cfg.get_ip("ipfix", "device_ip", device_ip),
        )


def open_udp_socket() -> socket.socket:
    return socket.socket(socket.AF_INET, socket.SOCK_DGRAM)


class IPFIXExporter(ProtocolLoop):
    """Every export interval, sends one IPFIX message per configured traffic record."""

    name = "ipfix"

    def __init__(
        self,
        ctx: SimulatorContext,
        settings: IPFIXSettings,
        encoder: IPFIXEncoder | None = None,
        socket_factory: Callable[[], socket.socket] = open_udp_socket,
        interval: float = IPFIX_EXPORT_INTERVAL,
    ) -> None:
        super().__init__(ctx, interval)
        self.settings = settings
        self.encoder = encoder or IPFIXEncoder(ctx.device.client_mac, settings.device_ip)
        self.socket_factory = socket_factory
        self.records: List[TrafficRecord] = []

    @property
    def destination(self) -> tuple[str, int]:
        return str(self.settings.destination_ip), self.settings.destination_port

    async def setup(self) -> None:
        # PayloadError propagates and ends this task only
        self.records = parse_traffic_records(self.settings.traffic)
        self.log.info(
            "IPFIX configured",
            destination=f"{self.destination[0]}:{self.destination[1]}",
            records=len(self.records),
            device_ip=str(self.settings.device_ip),
        )

    def _export(self) -> int:
        sent = 0
        try:
            sock = self.socket_factory()
        except OSError as e:
            self.log.error("Could not open IPFIX socket", error=str(e))
            self.ctx.metrics.increment_errors()
            return sent

        with sock:
            for record in self.records:
                message = self.encoder.encode(record)
                if not self.ctx.rate_limiter.wait():
                    self.log.debug("Rate limiter closed, export cut short")
                    break
                try:
                    sock.sendto(message, self.destination)
                except OSError as e:
                    self.log.error("Error sending IPFIX packet", error=str(e))
                    self.ctx.metrics.increment_errors()
                    continue
                self.ctx.metrics.increment_ipfix()
                sent += 1
        return sent

    async def run_once(self) -> float:
        self.set_state(LoopState.SENDING)
        sent = await self.in_executor(self._export)
        if sent < len(self.records):
            self.failures += 1
        self.log.info("IPFIX packets sent", sent=sent, total=len(self.records))
        return self.interval
