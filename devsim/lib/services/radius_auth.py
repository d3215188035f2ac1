from dataclasses import dataclass
from typing import Callable, Tuple

import structlog
from pyrad import packet

from devsim.lib.constants import RADIUS_AUTH_INTERVAL, RADIUS_AUTH_PORT, RADIUS_RETRY_BACKOFF
from devsim.lib.context import SimulatorContext
from devsim.lib.exceptions import RadiusExchangeError, RadiusTimeout
from devsim.lib.radius.packet_builders import RadiusCredentials, build_access_request
from devsim.lib.radius.utils import reply_attributes, reply_code_name
from devsim.lib.services.protocol_loop import LoopState, ProtocolLoop

log = structlog.get_logger()


@dataclass
class RadiusSettings:
    enabled: bool
    credentials: RadiusCredentials

    @classmethod
    def from_context(cls, ctx: SimulatorContext, section: str, default_port: int) -> "RadiusSettings":
        cfg = ctx.config
        enabled = cfg.get_bool(section, "enabled", False)

        server = cfg.get_ip(section, "server", None)
        secret = cfg.get_string(section, "secret", "")
        if enabled and server is None:
            log.warning("Invalid or missing RADIUS server, disabling", section=section)
            enabled = False
        if enabled and not secret:
            log.warning("Empty RADIUS secret, disabling", section=section)
            enabled = False

        creds = RadiusCredentials(
            server_ip=str(server) if server is not None else "",
            secret=secret,
            port=cfg.get_int(section, "port", default_port, 1, 65535),
            called_station_id=cfg.get_string(section, "Called-Station-Id", ""),
            nas_port=cfg.get_string(section, "NAS-Port", ""),
            framed_ip_address=cfg.get_string(section, "Framed-IP-Address", ""),
            nas_identifier=cfg.get_string(section, "NAS-Identifier", ""),
            nas_port_id=cfg.get_string(section, "NAS-Port-Id", ""),
            nas_ip_address=cfg.get_string(section, "NAS-IP-Address", ""),
            acct_session_id=cfg.get_string(section, "Acct-Session-Id", ""),
        )
        return cls(enabled=enabled, credentials=creds)


def radius_auth_settings(ctx: SimulatorContext) -> RadiusSettings:
    return RadiusSettings.from_context(ctx, "authentication", RADIUS_AUTH_PORT)


class RadiusExchangeLoop(ProtocolLoop):
    """Shared exchange step: borrow a client from the pool, run one exchange, give it back.
    Transport errors switch the next sleep to the back-off delay."""

    retry_backoff = RADIUS_RETRY_BACKOFF

    def __init__(self, ctx: SimulatorContext, settings: RadiusSettings, interval: float) -> None:
        super().__init__(ctx, interval)
        self.settings = settings

    @property
    def creds(self) -> RadiusCredentials:
        return self.settings.credentials

    @property
    def pool_key(self) -> Tuple[str, int]:
        return self.creds.server_ip, self.creds.port

    def _exchange(self, pkt: packet.Packet, on_sent: Callable[[], None]) -> packet.Packet | None:
        if not self.ctx.rate_limiter.wait():
            return None

        client = self.ctx.radius_pool.get(self.pool_key)
        try:
            return client.exchange(pkt, on_sent=on_sent)
        finally:
            self.ctx.radius_pool.put(self.pool_key, client)

    async def exchange(self, pkt: packet.Packet) -> packet.Packet | None:
        """Returns the reply, or None when nothing usable came back (already logged)."""
        self.set_state(LoopState.SENDING)
        try:
            reply = await self.in_executor(self._exchange, pkt, self.state_callback(LoopState.AWAITING_RESPONSE))
            if reply is None:
                self.log.debug("Rate limiter closed, exchange skipped")
            return reply
        except RadiusTimeout as e:
            self.set_state(LoopState.TIMEOUT)
            self.timeouts += 1
            self.ctx.metrics.increment_errors()
            self.log.error("RADIUS exchange timed out", server=self.creds.server_ip, error=str(e))
        except RadiusExchangeError as e:
            self.set_state(LoopState.TIMEOUT)
            self.failures += 1
            self.ctx.metrics.increment_errors()
            self.log.error("Error during RADIUS exchange", server=self.creds.server_ip, error=str(e))
        return None


class RadiusAuthenticator(RadiusExchangeLoop):
    """Sends the same Access-Request every interval and logs the outcome."""

    name = "radius-auth"

    def __init__(self, ctx: SimulatorContext, settings: RadiusSettings, interval: float = RADIUS_AUTH_INTERVAL) -> None:
        super().__init__(ctx, settings, interval)
        self.request: packet.AuthPacket | None = None
        self.last_reply_code: int | None = None

    async def setup(self) -> None:
        self.request = build_access_request(self.creds, self.ctx.device.mac_str)
        self.log.info("RADIUS authentication configured", server=self.creds.server_ip, port=self.creds.port)

    async def run_once(self) -> float:
        assert self.request is not None
        reply = await self.exchange(self.request)
        self.ctx.metrics.increment_radius()
        if reply is None:
            return self.retry_backoff

        self.last_reply_code = reply.code
        if reply.code == packet.AccessAccept:
            self.log.info("Authentication successful", server=self.creds.server_ip)
        elif reply.code == packet.AccessReject:
            self.log.warning("Authentication rejected", server=self.creds.server_ip)
        else:
            self.log.warning("Received unexpected response code", code=reply_code_name(reply.code))

        attributes = reply_attributes(reply)
        if attributes:
            self.log.info("Response attributes", attributes=attributes)
        return self.interval
