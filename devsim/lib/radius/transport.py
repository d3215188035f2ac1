import time
from typing import Callable, Optional

import structlog
from pyrad import packet
from pyrad.client import Client, Timeout

from devsim.lib.constants import RADIUS_MAX_PACKET_ERRORS, RADIUS_RETRIES, RADIUS_TIMEOUT
from devsim.lib.exceptions import RadiusExchangeError, RadiusTimeout
from devsim.lib.radius.packet_builders import load_dictionary

log = structlog.get_logger()


class RadiusClient(Client):
    """
    pyrad client bound to one server and port, reused across exchanges.

    Replies that fail to decode or verify are dropped as pyrad does, but more
    than `max_packet_errors` of them fail the exchange instead of waiting out
    every retry.
    """

    def __init__(
        self,
        server: str,
        port: int,
        retries: int = RADIUS_RETRIES,
        timeout: float = RADIUS_TIMEOUT,
        max_packet_errors: int = RADIUS_MAX_PACKET_ERRORS,
    ) -> None:
        super().__init__(
            server=server,
            authport=port,
            acctport=port,
            dict=load_dictionary(),
            retries=retries,
            timeout=timeout,
        )
        self.max_packet_errors = max_packet_errors
        self.on_sent: Optional[Callable[[], None]] = None

    def _SendPacket(self, pkt, port):
        self._SocketOpen()
        packet_errors = 0

        for attempt in range(self.retries):
            if attempt and pkt.code == packet.AccountingRequest:
                delay = pkt["Acct-Delay-Time"][0] if "Acct-Delay-Time" in pkt else 0
                pkt["Acct-Delay-Time"] = int(delay + self.timeout)

            now = time.time()
            waitto = now + self.timeout

            self._socket.sendto(pkt.RequestPacket(), (self.server, port))
            if self.on_sent is not None:
                self.on_sent()

            while now < waitto:
                ready = self._poll.poll((waitto - now) * 1000)
                if not ready:
                    now = time.time()
                    continue

                rawreply = self._socket.recv(4096)
                try:
                    reply = pkt.CreateReply(packet=rawreply)
                    if pkt.VerifyReply(reply, rawreply):
                        return reply
                    reason = "reply failed verification"
                except packet.PacketError as e:
                    reason = str(e)

                packet_errors += 1
                log.warning("Dropped malformed RADIUS reply", server=self.server, reason=reason, errors=packet_errors)
                if packet_errors > self.max_packet_errors:
                    raise RadiusExchangeError(f"too many malformed replies from {self.server}:{port}")
                now = time.time()

            log.debug("RADIUS request timed out", server=self.server, port=port, attempt=attempt + 1)

        raise Timeout

    def exchange(self, pkt: packet.Packet, on_sent: Optional[Callable[[], None]] = None) -> packet.Packet:
        """SendPacket with transport failures mapped onto RadiusExchangeError / RadiusTimeout.
        on_sent runs after every datagram leaves the socket."""
        self.on_sent = on_sent
        try:
            return self.SendPacket(pkt)
        except Timeout as e:
            raise RadiusTimeout(f"no reply from {self.server} after {self.retries} attempts") from e
        except OSError as e:
            # socket setup, send, poll and receive all land here; drop the socket so
            # the next exchange starts from a fresh one
            self.close()
            raise RadiusExchangeError(f"RADIUS transport error talking to {self.server}: {e}") from e
        finally:
            self.on_sent = None

    def close(self) -> None:
        if self._socket is None:
            return
        sock, self._socket = self._socket, None
        try:
            self._poll.unregister(sock)
        except (KeyError, ValueError):
            # opened but never registered
            pass
        sock.close()
