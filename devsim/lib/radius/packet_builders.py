import functools
import ipaddress
import time
from dataclasses import dataclass
from pathlib import Path

import structlog
from pyrad import packet
from pyrad.dictionary import Dictionary

from devsim.lib.radius.utils import parse_nas_port, split_bytes_to_gigawords_octets

log = structlog.get_logger()

DICTIONARY_PATH = Path(__file__).with_name("dictionary")


@functools.lru_cache(maxsize=None)
def load_dictionary(path: str = str(DICTIONARY_PATH)) -> Dictionary:
    return Dictionary(path)


@dataclass(frozen=True)
class RadiusCredentials:
    """Server and NAS attributes for one [authentication] / [accounting] section."""

    server_ip: str
    secret: str
    port: int
    called_station_id: str = ""
    nas_port: str = ""
    framed_ip_address: str = ""
    nas_identifier: str = ""
    nas_port_id: str = ""
    nas_ip_address: str = ""
    acct_session_id: str = ""


def _set_address(pkt: packet.Packet, attr: str, value: str) -> None:
    if not value:
        return
    try:
        pkt[attr] = str(ipaddress.IPv4Address(value))
    except ValueError:
        log.warning("Skipping invalid address attribute", attribute=attr, value=value)


def _set_string(pkt: packet.Packet, attr: str, value: str) -> None:
    if value:
        pkt[attr] = value


def _add_nas_attributes(pkt: packet.Packet, creds: RadiusCredentials, mac: str) -> None:
    _set_address(pkt, "NAS-IP-Address", creds.nas_ip_address)
    pkt["Calling-Station-Id"] = mac
    _set_string(pkt, "Called-Station-Id", creds.called_station_id)
    pkt["NAS-Port-Type"] = "Ethernet"
    pkt["NAS-Port"] = parse_nas_port(creds.nas_port)
    _set_address(pkt, "Framed-IP-Address", creds.framed_ip_address)
    _set_string(pkt, "NAS-Identifier", creds.nas_identifier)
    _set_string(pkt, "NAS-Port-Id", creds.nas_port_id)


def build_access_request(creds: RadiusCredentials, mac: str, dictionary: Dictionary | None = None) -> packet.AuthPacket:
    """
    Access-Request for the simulated device.
    User-Name and User-Password are both the device MAC string; this is lab PAP,
    not a security mechanism.
    """
    pkt = packet.AuthPacket(
        code=packet.AccessRequest,
        secret=creds.secret.encode(),
        dict=dictionary or load_dictionary(),
    )
    pkt["User-Name"] = mac
    pkt["User-Password"] = pkt.PwCrypt(mac)
    _add_nas_attributes(pkt, creds, mac)
    return pkt


@dataclass
class AccountingCounters:
    session_start: float
    input_octets: int = 0
    output_octets: int = 0
    input_packets: int = 0
    output_packets: int = 0

    def add(self, input_octets: int, output_octets: int, input_packets: int, output_packets: int) -> None:
        self.input_octets += input_octets
        self.output_octets += output_octets
        self.input_packets += input_packets
        self.output_packets += output_packets


def _new_acct_packet(creds: RadiusCredentials, mac: str, status: str, dictionary: Dictionary | None) -> packet.AcctPacket:
    pkt = packet.AcctPacket(
        code=packet.AccountingRequest,
        secret=creds.secret.encode(),
        dict=dictionary or load_dictionary(),
    )
    pkt["Acct-Status-Type"] = status
    pkt["User-Name"] = mac
    pkt["Acct-Session-Id"] = creds.acct_session_id or mac
    _add_nas_attributes(pkt, creds, mac)
    pkt["Event-Timestamp"] = int(time.time())
    return pkt


def build_acct_start(creds: RadiusCredentials, mac: str, dictionary: Dictionary | None = None) -> packet.AcctPacket:
    return _new_acct_packet(creds, mac, "Start", dictionary)


def build_acct_interim(
    creds: RadiusCredentials,
    mac: str,
    counters: AccountingCounters,
    now: float | None = None,
    dictionary: Dictionary | None = None,
) -> packet.AcctPacket:
    now = time.time() if now is None else now
    pkt = _new_acct_packet(creds, mac, "Interim-Update", dictionary)

    in_gw, in_oct = split_bytes_to_gigawords_octets(counters.input_octets)
    out_gw, out_oct = split_bytes_to_gigawords_octets(counters.output_octets)

    pkt["Acct-Session-Time"] = max(0, int(now - counters.session_start))
    pkt["Acct-Input-Octets"] = in_oct
    pkt["Acct-Input-Gigawords"] = in_gw
    pkt["Acct-Output-Octets"] = out_oct
    pkt["Acct-Output-Gigawords"] = out_gw
    # packets are 32-bit best-effort, there is no gigawords field for them
    pkt["Acct-Input-Packets"] = counters.input_packets & 0xFFFFFFFF
    pkt["Acct-Output-Packets"] = counters.output_packets & 0xFFFFFFFF
    return pkt
