import ipaddress
import socket
from dataclasses import dataclass
from typing import Callable, Dict

import psutil

from devsim.lib.dhcp.utils import parse_mac
from devsim.lib.rwlock import ReadWriteLock


@dataclass(frozen=True)
class NetInterface:
    name: str
    index: int
    mac: bytes
    ipv4: ipaddress.IPv4Address | None = None


def lookup_interface(name: str) -> NetInterface:
    """Resolve an interface by name. Raises LookupError if it does not exist."""
    addrs = psutil.net_if_addrs()
    if name not in addrs:
        raise LookupError(f"network interface not found: {name}")

    mac = bytes(6)
    ipv4 = None
    for addr in addrs[name]:
        if addr.family == psutil.AF_LINK and addr.address:
            try:
                mac = parse_mac(addr.address)
            except ValueError:
                pass
        elif addr.family == socket.AF_INET and ipv4 is None:
            ipv4 = ipaddress.IPv4Address(addr.address)

    try:
        index = socket.if_nametoindex(name)
    except OSError as e:
        raise LookupError(f"network interface not found: {name}") from e

    return NetInterface(name=name, index=index, mac=mac, ipv4=ipv4)


class InterfaceCache:
    """Caches interface lookups. Readers share the lock; a miss is promoted to the
    write lock and re-checked before resolving."""

    def __init__(self, resolver: Callable[[str], NetInterface] = lookup_interface) -> None:
        self._resolver = resolver
        self._lock = ReadWriteLock()
        self._interfaces: Dict[str, NetInterface] = {}

    def get(self, name: str) -> NetInterface:
        with self._lock.read():
            intf = self._interfaces.get(name)
        if intf is not None:
            return intf

        with self._lock.write():
            # double check after acquiring the write lock
            intf = self._interfaces.get(name)
            if intf is not None:
                return intf

            intf = self._resolver(name)
            self._interfaces[name] = intf
            return intf

    def clear(self) -> None:
        with self._lock.write():
            self._interfaces = {}
