import ipaddress

import pytest

from devsim.lib.config import ConfigStore, parse_duration
from devsim.lib.exceptions import ConfigError

SAMPLE = """
[general]
interface = eth0
clientmac = 00-11-22-33-44-55

[dhcp]
enabled = no
renew = 30
srcmac = not-a-mac
server = 10.0.0.300

[ipfix]
enabled = TRUE
destination_port = 99999
traffic = [{"SourceIP": "10.0.0.1"}]

[authentication]
NAS-Port = 12
"""


@pytest.fixture
def store() -> ConfigStore:
    return ConfigStore.from_string(SAMPLE)


def test_bool_values(store: ConfigStore) -> None:
    assert store.get_bool("dhcp", "enabled", True) is False
    assert store.get_bool("ipfix", "enabled", False) is True
    assert store.get_bool("upnp", "enabled", False) is False


def test_int_out_of_range_falls_back(store: ConfigStore) -> None:
    assert store.get_int("ipfix", "destination_port", 4739, 1, 65535) == 4739


def test_duration_bare_seconds(store: ConfigStore) -> None:
    assert store.get_duration("dhcp", "renew", 10.0) == 30.0


def test_invalid_values_use_default(store: ConfigStore) -> None:
    default_mac = bytes.fromhex("deadbeefdead")
    assert store.get_mac("dhcp", "srcmac", default_mac) == default_mac
    assert store.get_ip("dhcp", "server", None) is None


def test_mac_forms(store: ConfigStore) -> None:
    assert store.get_mac("general", "clientmac", b"") == bytes.fromhex("001122334455")
    dotted = ConfigStore.from_string("[general]\nclientmac = 0011.2233.4455\n")
    assert dotted.get_mac("general", "clientmac", b"") == bytes.fromhex("001122334455")


def test_keys_keep_case(store: ConfigStore) -> None:
    assert store.get_string("authentication", "NAS-Port", "") == "12"
    assert store.get_string("ipfix", "traffic", "[]").startswith("[{")


def test_missing_file_raises(tmp_path) -> None:
    with pytest.raises(ConfigError):
        ConfigStore(str(tmp_path / "missing.ini"))


def test_reload_picks_up_changes(tmp_path) -> None:
    path = tmp_path / "config.ini"
    path.write_text("[upnp]\nipaddr = 239.255.255.250\n")
    store = ConfigStore(str(path))
    assert store.get_ip("upnp", "ipaddr", None) == ipaddress.IPv4Address("239.255.255.250")

    path.write_text("[upnp]\nipaddr = 239.1.1.1\n")
    store.reload()
    assert store.get_ip("upnp", "ipaddr", None) == ipaddress.IPv4Address("239.1.1.1")


@pytest.mark.parametrize(
    "value, expected",
    [
        ("45", 45.0),
        ("1m30s", 90.0),
        ("500ms", 0.5),
        ("2h", 7200.0),
    ],
)
def test_parse_duration(value: str, expected: float) -> None:
    assert parse_duration(value) == pytest.approx(expected)


@pytest.mark.parametrize("value", ["", "abc", "10x", "5s junk", "-3"])
def test_parse_duration_rejects(value: str) -> None:
    with pytest.raises(ValueError):
        parse_duration(value)
