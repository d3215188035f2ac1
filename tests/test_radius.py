import asyncio
import errno
import socket
import threading

import pytest
from pyrad import packet

from devsim.lib.exceptions import RadiusExchangeError, RadiusTimeout
from devsim.lib.radius.packet_builders import (
    AccountingCounters,
    RadiusCredentials,
    build_access_request,
    build_acct_interim,
    load_dictionary,
)
from devsim.lib.radius.transport import RadiusClient
from devsim.lib.radius.utils import parse_nas_port, reply_code_name, split_bytes_to_gigawords_octets
from devsim.lib.services.pools import KeyedClientPool
from devsim.lib.services.protocol_loop import LoopState
from devsim.lib.services.radius_acct import AccountingDeltas, RadiusAccounting, radius_acct_settings
from devsim.lib.services.radius_auth import RadiusAuthenticator, radius_auth_settings
from devsim.lib.services.supervisor import ProtocolSupervisor
from tests.conftest import GENERAL

SECRET = b"testing123"
MAC = "02:00:00:00:00:aa"


class FakeRadiusServer:
    """Loopback UDP peer. `mode` is accept, reject, garbage or silent."""

    def __init__(self, mode: str = "accept") -> None:
        self.mode = mode
        self.requests = []
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.settimeout(0.1)
        self.port = self.sock.getsockname()[1]
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)

    def __enter__(self) -> "FakeRadiusServer":
        self._thread.start()
        return self

    def __exit__(self, *exc) -> None:
        self._stop.set()
        self._thread.join(timeout=2)
        self.sock.close()

    def _decode(self, data: bytes) -> packet.Packet:
        if data[0] == packet.AccountingRequest:
            return packet.AcctPacket(secret=SECRET, dict=load_dictionary(), packet=data)
        return packet.AuthPacket(secret=SECRET, dict=load_dictionary(), packet=data)

    def _serve(self) -> None:
        while not self._stop.is_set():
            try:
                data, addr = self.sock.recvfrom(4096)
            except socket.timeout:
                continue
            except OSError:
                return

            request = self._decode(data)
            self.requests.append(request)
            if self.mode == "silent":
                continue
            if self.mode == "garbage":
                for _ in range(3):
                    self.sock.sendto(b"garbage", addr)
                continue

            reply = request.CreateReply()
            if self.mode == "reject":
                reply.code = packet.AccessReject
            elif request.code == packet.AccessRequest:
                reply["Reply-Message"] = "Welcome"
            self.sock.sendto(reply.ReplyPacket(), addr)


def creds(port: int = 1812) -> RadiusCredentials:
    return RadiusCredentials(
        server_ip="127.0.0.1",
        secret=SECRET.decode(),
        port=port,
        called_station_id="aether-bng",
        nas_port="17",
        framed_ip_address="10.0.0.50",
        nas_identifier="devsim",
        nas_port_id="eth1",
        nas_ip_address="not-an-ip",
    )


def test_access_request_attributes() -> None:
    pkt = build_access_request(creds(), MAC)
    assert pkt.code == packet.AccessRequest
    assert pkt["User-Name"] == [MAC]
    assert pkt["Calling-Station-Id"] == [MAC]
    assert pkt["Called-Station-Id"] == ["aether-bng"]
    assert pkt["NAS-Port"] == [17]
    assert pkt["NAS-Port-Type"] == ["Ethernet"]
    assert pkt["Framed-IP-Address"] == ["10.0.0.50"]
    assert pkt["NAS-Port-Id"] == ["eth1"]
    # invalid address attributes are left out
    assert "NAS-IP-Address" not in pkt


def test_password_is_the_mac() -> None:
    pkt = build_access_request(creds(), MAC)
    raw = pkt.RequestPacket()
    decoded = packet.AuthPacket(secret=SECRET, dict=load_dictionary(), packet=raw)
    # integer keys return the raw (still encrypted) attribute bytes
    assert decoded.PwDecrypt(decoded[2][0]) == MAC


def test_interim_counters_split_gigawords() -> None:
    counters = AccountingCounters(session_start=1000.0)
    counters.add((5 << 32) + 7, 100, 2**32 + 3, 4)
    pkt = build_acct_interim(creds(1813), MAC, counters, now=1090.0)

    assert pkt["Acct-Status-Type"] == ["Interim-Update"]
    assert pkt["Acct-Session-Time"] == [90]
    assert pkt["Acct-Input-Gigawords"] == [5]
    assert pkt["Acct-Input-Octets"] == [7]
    assert pkt["Acct-Output-Octets"] == [100]
    assert pkt["Acct-Input-Packets"] == [3]
    assert pkt["Acct-Session-Id"] == [MAC]


def test_helpers() -> None:
    assert split_bytes_to_gigawords_octets(2**32 + 10) == (1, 10)
    assert split_bytes_to_gigawords_octets(-1) == (0, 0)
    assert parse_nas_port("42") == 42
    assert parse_nas_port("x") == 0
    assert parse_nas_port(str(2**32)) == 0
    assert reply_code_name(packet.AccessAccept) == "Access-Accept"
    assert reply_code_name(99) == "Unexpected-99"


def test_exchange_accept() -> None:
    with FakeRadiusServer("accept") as server:
        client = RadiusClient("127.0.0.1", server.port, retries=2, timeout=1.0)
        reply = client.exchange(build_access_request(creds(), MAC))
    client.close()

    assert reply.code == packet.AccessAccept
    assert reply["Reply-Message"] == ["Welcome"]
    assert len(server.requests) == 1


def test_exchange_garbage_replies_fail() -> None:
    with FakeRadiusServer("garbage") as server:
        client = RadiusClient("127.0.0.1", server.port, retries=3, timeout=1.0, max_packet_errors=2)
        with pytest.raises(RadiusExchangeError) as exc:
            client.exchange(build_access_request(creds(), MAC))
    client.close()

    assert not isinstance(exc.value, RadiusTimeout)


def test_exchange_timeout_after_retries() -> None:
    with FakeRadiusServer("silent") as server:
        client = RadiusClient("127.0.0.1", server.port, retries=2, timeout=0.1)
        with pytest.raises(RadiusTimeout):
            client.exchange(build_access_request(creds(), MAC))
        # the same bytes are retransmitted on each attempt
        assert len(server.requests) == 2
        assert server.requests[0].id == server.requests[1].id
    client.close()


def radius_config(section: str, port: int, secret: str = "testing123") -> str:
    return GENERAL + f"""
[{section}]
enabled = true
server = 127.0.0.1
port = {port}
secret = {secret}
NAS-Port = 5
NAS-Identifier = devsim
"""


def fast_pool(ctx) -> None:
    ctx.radius_pool = KeyedClientPool(lambda key: RadiusClient(*key, retries=1, timeout=0.2), max_size=2)


def test_settings_disable_without_secret(make_context) -> None:
    ctx = make_context(radius_config("authentication", 1812, secret=""))
    assert radius_auth_settings(ctx).enabled is False

    ctx = make_context(GENERAL + "\n[authentication]\nenabled = true\nserver = nope\nsecret = s\n")
    assert radius_auth_settings(ctx).enabled is False


@pytest.mark.asyncio
async def test_authenticator_accept(make_context) -> None:
    with FakeRadiusServer("accept") as server:
        ctx = make_context(radius_config("authentication", server.port))
        fast_pool(ctx)
        settings = radius_auth_settings(ctx)
        assert settings.enabled

        auth = RadiusAuthenticator(ctx, settings)
        await auth.setup()
        delay = await auth.run_once()

    assert delay == 30
    assert auth.last_reply_code == packet.AccessAccept
    assert LoopState.AWAITING_RESPONSE in auth.history
    assert ctx.radius_pool.size(("127.0.0.1", server.port)) == 1
    assert ctx.metrics.snapshot()["radius_requests"] == 1
    assert server.requests[0]["NAS-Identifier"] == ["devsim"]


@pytest.mark.asyncio
async def test_authenticator_reject_is_not_an_error(make_context) -> None:
    with FakeRadiusServer("reject") as server:
        ctx = make_context(radius_config("authentication", server.port))
        fast_pool(ctx)
        auth = RadiusAuthenticator(ctx, radius_auth_settings(ctx))
        await auth.setup()
        await auth.run_once()

    assert auth.last_reply_code == packet.AccessReject
    assert auth.timeouts == 0
    assert ctx.metrics.snapshot()["errors"] == 0


@pytest.mark.asyncio
async def test_authenticator_timeout_backs_off(make_context) -> None:
    with FakeRadiusServer("silent") as server:
        ctx = make_context(radius_config("authentication", server.port))
        fast_pool(ctx)
        auth = RadiusAuthenticator(ctx, radius_auth_settings(ctx))
        auth.retry_backoff = 45
        await auth.setup()
        delay = await auth.run_once()

    assert delay == 45
    assert auth.state is LoopState.TIMEOUT
    assert auth.timeouts == 1
    assert ctx.radius_pool.size(("127.0.0.1", server.port)) == 1
    assert ctx.metrics.snapshot()["errors"] == 1


class NoSocketRadiusClient(RadiusClient):
    """Every socket open fails as if the process ran out of descriptors."""

    def _SocketOpen(self):
        raise OSError(errno.EMFILE, "Too many open files")


def test_exchange_socket_error_is_an_exchange_error() -> None:
    client = NoSocketRadiusClient("127.0.0.1", 1812, retries=1, timeout=0.1)
    with pytest.raises(RadiusExchangeError) as exc:
        client.exchange(build_access_request(creds(), MAC))

    assert not isinstance(exc.value, RadiusTimeout)
    assert "Too many open files" in str(exc.value)
    assert client._socket is None


@pytest.mark.asyncio
async def test_authenticator_states_follow_the_send(make_context) -> None:
    with FakeRadiusServer("accept") as server:
        ctx = make_context(radius_config("authentication", server.port))
        fast_pool(ctx)
        auth = RadiusAuthenticator(ctx, radius_auth_settings(ctx))
        await auth.setup()
        await auth.run_once()

    sending = auth.history.index(LoopState.SENDING)
    assert auth.history.index(LoopState.AWAITING_RESPONSE) == sending + 1


@pytest.mark.asyncio
async def test_authenticator_socket_error_backs_off(make_context) -> None:
    ctx = make_context(radius_config("authentication", 1812))
    ctx.radius_pool = KeyedClientPool(lambda key: NoSocketRadiusClient(*key, retries=1, timeout=0.1), max_size=2)
    auth = RadiusAuthenticator(ctx, radius_auth_settings(ctx))
    auth.retry_backoff = 45
    await auth.setup()
    delay = await auth.run_once()

    assert delay == 45
    assert auth.failures == 1
    assert auth.state is LoopState.TIMEOUT
    # nothing left the socket, so the loop never waited on a reply
    assert LoopState.AWAITING_RESPONSE not in auth.history
    assert ctx.metrics.snapshot()["errors"] == 1


@pytest.mark.asyncio
async def test_authenticator_survives_socket_errors_under_supervisor(make_context) -> None:
    ctx = make_context(radius_config("authentication", 1812))
    ctx.radius_pool = KeyedClientPool(lambda key: NoSocketRadiusClient(*key, retries=1, timeout=0.1), max_size=2)
    auth = RadiusAuthenticator(ctx, radius_auth_settings(ctx), interval=0.01)
    auth.retry_backoff = 0.01

    supervisor = ProtocolSupervisor(ctx, [auth])
    run = asyncio.create_task(supervisor.run())
    await asyncio.sleep(0.3)

    assert not supervisor.tasks["radius-auth"].done()
    assert auth.iterations > 1
    assert auth.failures >= 1

    supervisor.stop()
    assert await asyncio.wait_for(run, timeout=5) == 0
    assert supervisor.fatal is None


@pytest.mark.asyncio
async def test_authenticator_skips_send_when_limiter_closed(make_context) -> None:
    with FakeRadiusServer("accept") as server:
        ctx = make_context(radius_config("authentication", server.port))
        fast_pool(ctx)
        auth = RadiusAuthenticator(ctx, radius_auth_settings(ctx))
        await auth.setup()
        ctx.rate_limiter.close()
        await auth.run_once()

    assert server.requests == []
    assert auth.last_reply_code is None
    assert auth.failures == 0
    assert ctx.radius_pool.size(("127.0.0.1", server.port)) == 0


@pytest.mark.asyncio
async def test_accounting_start_then_interim(make_context) -> None:
    with FakeRadiusServer("accept") as server:
        ctx = make_context(radius_config("accounting", server.port) + "input_octets = 1000\ninput_packets = 10\n")
        fast_pool(ctx)
        settings = radius_acct_settings(ctx)
        deltas = AccountingDeltas.from_context(ctx)
        assert deltas.input_octets == 1000

        acct = RadiusAccounting(ctx, settings, deltas)
        await acct.setup()
        await acct.run_once()
        await acct.run_once()
        await acct.run_once()

    statuses = [r["Acct-Status-Type"][0] for r in server.requests]
    assert statuses == ["Start", "Interim-Update", "Interim-Update"]
    assert server.requests[2]["Acct-Input-Octets"] == [2000]
    assert server.requests[2]["Acct-Input-Packets"] == [20]
    assert ctx.metrics.snapshot()["radius_accounting_requests"] == 3
