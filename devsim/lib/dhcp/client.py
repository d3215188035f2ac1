import socket

from devsim.lib.dhcp.packet import ETH_P_IP
from devsim.lib.exceptions import DHCPSendError


class RawDHCPClient:
    """Sends prebuilt Ethernet frames on a raw AF_PACKET socket bound to one interface."""

    def __init__(self, iface_name: str) -> None:
        self.iface_name = iface_name
        try:
            self._sock = socket.socket(socket.AF_PACKET, socket.SOCK_RAW, socket.htons(ETH_P_IP))
            self._sock.bind((iface_name, 0))
        except (OSError, AttributeError) as e:
            raise DHCPSendError(f"cannot open raw socket on {iface_name}: {e}") from e

    def send_frame(self, frame: bytes) -> int:
        try:
            return self._sock.send(frame)
        except OSError as e:
            raise DHCPSendError(f"raw send on {self.iface_name} failed: {e}") from e

    def close(self) -> None:
        self._sock.close()
