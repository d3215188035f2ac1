class DevsimError(Exception):
    """Base class for all simulator errors."""


class ConfigError(DevsimError):
    """Configuration that the process cannot start without (missing file, unknown interface)."""


class FatalProtocolError(DevsimError):
    """Raised from a protocol task when the whole process must stop."""


class DHCPSendError(FatalProtocolError):
    """Raw link-layer send failed. There is no recovery path to a valid link state."""


class PayloadError(DevsimError):
    """Malformed JSON payload (DHCP options, IPFIX traffic). Aborts the owning task only."""


class RadiusExchangeError(DevsimError):
    """RADIUS request/response cycle failed."""


class RadiusTimeout(RadiusExchangeError):
    """No valid reply after all retries."""
