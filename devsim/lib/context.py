from dataclasses import dataclass
from typing import Tuple

import structlog

from devsim.lib.config import ConfigStore
from devsim.lib.constants import DEFAULT_CLIENT_MAC, DEFAULT_RATE_LIMIT, METRICS_DEFAULT_INTERVAL, RADIUS_DEFAULT_POOL_SIZE
from devsim.lib.dhcp.utils import format_mac, parse_mac
from devsim.lib.exceptions import ConfigError
from devsim.lib.interfaces import InterfaceCache, NetInterface
from devsim.lib.metrics import Metrics
from devsim.lib.radius.transport import RadiusClient
from devsim.lib.services.pools import KeyedClientPool, RateLimiter

log = structlog.get_logger()


@dataclass(frozen=True)
class DeviceIdentity:
    client_mac: bytes
    interface: NetInterface

    @property
    def mac_str(self) -> str:
        return format_mac(self.client_mac)


@dataclass
class SimulatorContext:
    """Everything the protocol loops share. Built once at startup and passed down."""

    config: ConfigStore
    interfaces: InterfaceCache
    metrics: Metrics
    radius_pool: KeyedClientPool[Tuple[str, int], RadiusClient]
    rate_limiter: RateLimiter
    device: DeviceIdentity
    metrics_interval: float = METRICS_DEFAULT_INTERVAL

    @classmethod
    def build(cls, config: ConfigStore, interfaces: InterfaceCache | None = None) -> "SimulatorContext":
        """Resolve the device identity. An unknown interface raises ConfigError."""
        interfaces = interfaces or InterfaceCache()

        iface_name = config.get_string("general", "interface", "")
        if not iface_name:
            raise ConfigError("no interface specified in [general]")
        try:
            iface = interfaces.get(iface_name)
        except LookupError as e:
            raise ConfigError(f"failed to find interface {iface_name}: {e}") from e

        client_mac = config.get_mac("general", "clientmac", parse_mac(DEFAULT_CLIENT_MAC))
        if not config.get_string("general", "clientmac", ""):
            log.warning("Using default client MAC address", mac=DEFAULT_CLIENT_MAC)

        pool_size = config.get_int("general", "radius_pool_size", RADIUS_DEFAULT_POOL_SIZE, 1, 64)
        rate = config.get_int("general", "rate_limit", DEFAULT_RATE_LIMIT, 1, 100000)

        return cls(
            config=config,
            interfaces=interfaces,
            metrics=Metrics(),
            radius_pool=KeyedClientPool(lambda key: RadiusClient(*key), max_size=pool_size),
            rate_limiter=RateLimiter(rate),
            device=DeviceIdentity(client_mac=client_mac, interface=iface),
            metrics_interval=config.get_duration("general", "metrics_interval", METRICS_DEFAULT_INTERVAL),
        )

    def close(self) -> None:
        self.rate_limiter.close()
        self.radius_pool.clear()
        self.interfaces.clear()
