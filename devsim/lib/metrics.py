import threading
import time
from typing import Dict

import structlog

log = structlog.get_logger()

COUNTERS = (
    "dhcp_requests",
    "radius_requests",
    "radius_accounting_requests",
    "ipfix_packets",
    "upnp_discoveries",
    "errors",
)


class Metrics:
    """Passive counters the protocol loops report into. Safe to call from any thread."""

    def __init__(self) -> None:
        self.start_time = time.monotonic()
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {name: 0 for name in COUNTERS}

    def _incr(self, name: str) -> None:
        with self._lock:
            self._counters[name] += 1

    def increment_dhcp(self) -> None:
        self._incr("dhcp_requests")

    def increment_radius(self) -> None:
        self._incr("radius_requests")

    def increment_radius_accounting(self) -> None:
        self._incr("radius_accounting_requests")

    def increment_ipfix(self) -> None:
        self._incr("ipfix_packets")

    def increment_upnp(self) -> None:
        self._incr("upnp_discoveries")

    def increment_errors(self) -> None:
        self._incr("errors")

    def uptime(self) -> float:
        return time.monotonic() - self.start_time

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def log_stats(self) -> None:
        log.info("Simulator statistics", uptime_s=round(self.uptime()), **self.snapshot())
