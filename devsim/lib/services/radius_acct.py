import time
from dataclasses import dataclass

from pyrad import packet

from devsim.lib.constants import RADIUS_ACCT_INTERIM_INTERVAL, RADIUS_ACCT_PORT
from devsim.lib.context import SimulatorContext
from devsim.lib.radius.packet_builders import AccountingCounters, build_acct_interim, build_acct_start
from devsim.lib.radius.utils import reply_code_name
from devsim.lib.services.radius_auth import RadiusExchangeLoop, RadiusSettings


@dataclass
class AccountingDeltas:
    input_octets: int = 0
    output_octets: int = 0
    input_packets: int = 0
    output_packets: int = 0

    @classmethod
    def from_context(cls, ctx: SimulatorContext) -> "AccountingDeltas":
        cfg = ctx.config
        limit = 2**62
        return cls(
            input_octets=cfg.get_int("accounting", "input_octets", 0, 0, limit),
            output_octets=cfg.get_int("accounting", "output_octets", 0, 0, limit),
            input_packets=cfg.get_int("accounting", "input_packets", 0, 0, limit),
            output_packets=cfg.get_int("accounting", "output_packets", 0, 0, limit),
        )


def radius_acct_settings(ctx: SimulatorContext) -> RadiusSettings:
    return RadiusSettings.from_context(ctx, "accounting", RADIUS_ACCT_PORT)


class RadiusAccounting(RadiusExchangeLoop):
    """Accounting-Request Start until one is acknowledged, then Interim-Update every interval."""

    name = "radius-acct"

    def __init__(
        self,
        ctx: SimulatorContext,
        settings: RadiusSettings,
        deltas: AccountingDeltas | None = None,
        interval: float = RADIUS_ACCT_INTERIM_INTERVAL,
    ) -> None:
        super().__init__(ctx, settings, interval)
        self.deltas = deltas or AccountingDeltas()
        self.counters = AccountingCounters(session_start=time.time())
        self.started = False

    async def setup(self) -> None:
        self.counters = AccountingCounters(session_start=time.time())
        self.log.info("RADIUS accounting configured", server=self.creds.server_ip, port=self.creds.port)

    def next_request(self) -> packet.AcctPacket:
        mac = self.ctx.device.mac_str
        if not self.started:
            return build_acct_start(self.creds, mac)

        self.counters.add(
            self.deltas.input_octets,
            self.deltas.output_octets,
            self.deltas.input_packets,
            self.deltas.output_packets,
        )
        return build_acct_interim(self.creds, mac, self.counters)

    async def run_once(self) -> float:
        pkt = self.next_request()
        status = pkt["Acct-Status-Type"][0]

        reply = await self.exchange(pkt)
        self.ctx.metrics.increment_radius_accounting()
        if reply is None:
            return self.retry_backoff

        if reply.code != packet.AccountingResponse:
            self.log.warning("Received unexpected response code", code=reply_code_name(reply.code), status=status)
            return self.interval

        self.started = True
        self.log.info("RADIUS accounting acknowledged", status=status, server=self.creds.server_ip)
        return self.interval
