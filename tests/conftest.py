import ipaddress

import pytest

from devsim.lib.config import ConfigStore
from devsim.lib.context import SimulatorContext
from devsim.lib.interfaces import InterfaceCache, NetInterface

TEST_IFACE = NetInterface(
    name="sim0",
    index=7,
    mac=bytes.fromhex("020000000001"),
    ipv4=ipaddress.IPv4Address("192.0.2.10"),
)

GENERAL = """
[general]
interface = sim0
clientmac = 02:00:00:00:00:aa
metrics_interval = 0
"""


def fake_resolver(name: str) -> NetInterface:
    if name != TEST_IFACE.name:
        raise LookupError(f"network interface not found: {name}")
    return TEST_IFACE


@pytest.fixture
def make_context():
    """Builds a SimulatorContext from INI text against a fake interface table."""
    contexts = []

    def _make(text: str = GENERAL) -> SimulatorContext:
        ctx = SimulatorContext.build(ConfigStore.from_string(text), InterfaceCache(resolver=fake_resolver))
        contexts.append(ctx)
        return ctx

    yield _make

    for ctx in contexts:
        ctx.close()
