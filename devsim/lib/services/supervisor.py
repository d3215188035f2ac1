import asyncio
from typing import Dict, List

import structlog

from devsim.lib.context import SimulatorContext
from devsim.lib.exceptions import FatalProtocolError, PayloadError
from devsim.lib.services.dhcp_renewer import DHCPRenewer, DHCPSettings
from devsim.lib.services.ipfix_exporter import IPFIXExporter, IPFIXSettings
from devsim.lib.services.protocol_loop import ProtocolLoop
from devsim.lib.services.radius_acct import AccountingDeltas, RadiusAccounting, radius_acct_settings
from devsim.lib.services.radius_auth import RadiusAuthenticator, radius_auth_settings
from devsim.lib.services.upnp_discovery import UpnpDiscovery, UpnpSettings

log = structlog.get_logger()

SHUTDOWN_TIMEOUT = 5.0


def build_protocol_loops(ctx: SimulatorContext) -> List[ProtocolLoop]:
    """One loop per enabled section. Disabled sections start nothing."""
    loops: List[ProtocolLoop] = []

    upnp = UpnpSettings.from_context(ctx)
    if upnp.enabled:
        loops.append(UpnpDiscovery(ctx, upnp))

    ipfix = IPFIXSettings.from_context(ctx)
    if ipfix.enabled:
        loops.append(IPFIXExporter(ctx, ipfix))

    auth = radius_auth_settings(ctx)
    if auth.enabled:
        loops.append(RadiusAuthenticator(ctx, auth))

    acct = radius_acct_settings(ctx)
    if acct.enabled:
        loops.append(RadiusAccounting(ctx, acct, AccountingDeltas.from_context(ctx)))

    dhcp = DHCPSettings.from_context(ctx)
    if dhcp.enabled:
        loops.append(DHCPRenewer(ctx, dhcp))

    return loops


async def metrics_reporter(ctx: SimulatorContext, stop: asyncio.Event) -> None:
    interval = ctx.metrics_interval
    if interval <= 0:
        return
    while True:
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
            return
        except asyncio.TimeoutError:
            ctx.metrics.log_stats()


class ProtocolSupervisor:
    """
    Runs every protocol loop as its own asyncio task.

    A loop that fails only ends its own task; a FatalProtocolError ends them all.
    run() returns once stop() is called (signal or fatal error), never because
    the last task finished.
    """

    def __init__(self, ctx: SimulatorContext, loops: List[ProtocolLoop]) -> None:
        self.ctx = ctx
        self.loops = loops
        self.stop_event = asyncio.Event()
        self.tasks: Dict[str, asyncio.Task] = {}
        self.fatal: BaseException | None = None

    def start(self) -> None:
        for loop in self.loops:
            self.tasks[loop.name] = asyncio.create_task(self._run_loop(loop), name=loop.name)
        self.tasks["metrics"] = asyncio.create_task(metrics_reporter(self.ctx, self.stop_event), name="metrics")
        log.info("Protocol tasks started", protocols=[loop.name for loop in self.loops])

    def stop(self) -> None:
        if not self.stop_event.is_set():
            log.info("Stopping protocol tasks")
            self.stop_event.set()

    async def _run_loop(self, loop: ProtocolLoop) -> None:
        try:
            await loop.setup()
            await loop.run(self.stop_event)
        except asyncio.CancelledError:
            raise
        except FatalProtocolError as e:
            log.error("Fatal protocol error, shutting down", protocol=loop.name, error=str(e))
            self.ctx.metrics.increment_errors()
            self.fatal = e
            self.stop()
        except PayloadError as e:
            log.error("Task aborted", protocol=loop.name, error=str(e))
            self.ctx.metrics.increment_errors()
        except Exception:
            log.exception("Protocol task crashed", protocol=loop.name)
            self.ctx.metrics.increment_errors()
        else:
            log.info("Protocol task finished", protocol=loop.name)

    async def join(self, timeout: float = SHUTDOWN_TIMEOUT) -> None:
        tasks = list(self.tasks.values())
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            log.warning("Cancelling protocol task", protocol=task.get_name())
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def run(self) -> int:
        self.start()
        await self.stop_event.wait()
        await self.join()
        self.ctx.metrics.log_stats()
        return 1 if self.fatal is not None else 0
