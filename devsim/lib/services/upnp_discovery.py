import ipaddress
from dataclasses import dataclass
from typing import Callable

from devsim.lib.constants import (
    SSDP_DEFAULT_ADDR,
    SSDP_DEFAULT_DEVICE_TYPE,
    SSDP_DEFAULT_PORT,
    SSDP_DEFAULT_USER_AGENT,
    UPNP_DISCOVERY_INTERVAL,
    UPNP_LISTEN_WINDOW,
)
from devsim.lib.context import SimulatorContext
from devsim.lib.services.protocol_loop import LoopState, ProtocolLoop
from devsim.lib.upnp.ssdp import DiscoveryResult, SSDPTarget, discover, open_multicast_socket


@dataclass
class UpnpSettings:
    enabled: bool
    target: SSDPTarget

    @classmethod
    def from_context(cls, ctx: SimulatorContext) -> "UpnpSettings":
        cfg = ctx.config
        default_group = ipaddress.IPv4Address(SSDP_DEFAULT_ADDR)
        return cls(
            enabled=cfg.get_bool("upnp", "enabled", False),
            target=SSDPTarget(
                group=cfg.get_ip("upnp", "ipaddr", default_group) or default_group,
                port=cfg.get_int("upnp", "udpport", SSDP_DEFAULT_PORT, 1, 65535),
                device_type=cfg.get_string("upnp", "devicetype", SSDP_DEFAULT_DEVICE_TYPE),
                user_agent=cfg.get_string("upnp", "useragent", SSDP_DEFAULT_USER_AGENT),
            ),
        )


class UpnpDiscovery(ProtocolLoop):
    name = "upnp"

    def __init__(
        self,
        ctx: SimulatorContext,
        settings: UpnpSettings,
        socket_factory: Callable = open_multicast_socket,
        interval: float = UPNP_DISCOVERY_INTERVAL,
        listen_window: float = UPNP_LISTEN_WINDOW,
    ) -> None:
        super().__init__(ctx, interval)
        self.settings = settings
        self.socket_factory = socket_factory
        self.listen_window = listen_window
        self.last_result: DiscoveryResult | None = None

    async def setup(self) -> None:
        target = self.settings.target
        self.log.info(
            "UPnP configured",
            group=f"{target.group}:{target.port}",
            device_type=target.device_type,
            interface=self.ctx.device.interface.name,
        )

    def _discover(self, on_sent: Callable[[], None]) -> DiscoveryResult | None:
        if not self.ctx.rate_limiter.wait():
            return None
        return discover(
            self.settings.target,
            self.listen_window,
            iface_ip=self.ctx.device.interface.ipv4,
            socket_factory=self.socket_factory,
            on_sent=on_sent,
        )

    async def run_once(self) -> float:
        self.set_state(LoopState.SENDING)
        result = await self.in_executor(self._discover, self.state_callback(LoopState.AWAITING_RESPONSE))
        if result is None:
            self.log.debug("Rate limiter closed, discovery skipped")
            return self.interval

        self.last_result = result
        self.ctx.metrics.increment_upnp()

        if result.error is not None:
            self.failures += 1
            self.ctx.metrics.increment_errors()
        elif result.timed_out:
            self.set_state(LoopState.TIMEOUT)
            self.timeouts += 1
            self.log.info("UPnP discovery window closed", responses=result.responses)
        return self.interval
