#!/usr/bin/env python3
import argparse
import asyncio
import signal
import sys

import structlog

from devsim.lib.config import ConfigStore
from devsim.lib.constants import DEFAULT_CONFIG_FILE
from devsim.lib.context import SimulatorContext
from devsim.lib.exceptions import ConfigError
from devsim.lib.log import configure_logging
from devsim.lib.services.supervisor import ProtocolSupervisor, build_protocol_loops

log = structlog.get_logger()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Network endpoint simulator (DHCP, RADIUS, UPnP, IPFIX)")
    parser.add_argument("--file", default=DEFAULT_CONFIG_FILE, help="Path to the INI configuration file")
    parser.add_argument("--log-level", default="INFO", help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument("--log-format", choices=["console", "json"], default="console")
    return parser.parse_args(argv)


async def async_main(ctx: SimulatorContext) -> int:
    supervisor = ProtocolSupervisor(ctx, build_protocol_loops(ctx))

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, supervisor.stop)

    log.info(
        "Simulator started",
        interface=ctx.device.interface.name,
        client_mac=ctx.device.mac_str,
        protocols=len(supervisor.loops),
    )
    return await supervisor.run()


def main(argv=None):
    args = parse_args(argv)
    configure_logging(args.log_level, args.log_format)

    try:
        config = ConfigStore(args.file)
        ctx = SimulatorContext.build(config)
    except ConfigError as e:
        log.error("Failed to start simulator", error=str(e))
        sys.exit(1)

    try:
        code = asyncio.run(async_main(ctx))
    finally:
        ctx.close()
    log.info("Simulator stopped", exit_code=code)
    sys.exit(code)


if __name__ == "__main__":
    main()
