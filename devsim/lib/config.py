import configparser
import ipaddress
import os
import re
from typing import Optional

import structlog

from devsim.lib.dhcp.utils import parse_mac
from devsim.lib.exceptions import ConfigError
from devsim.lib.rwlock import ReadWriteLock

log = structlog.get_logger()

_TRUE_VALUES = ("true", "1", "yes", "on")
_FALSE_VALUES = ("false", "0", "no", "off")

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: str) -> float:
    """
    Parse a duration into seconds.
    Bare integers are seconds; otherwise Go-style strings such as "1m30s" or "500ms".
    """
    value = value.strip()
    if value.isdigit():
        return float(int(value))

    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(value):
        if match.start() != pos:
            raise ValueError(f"Invalid duration: {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos == 0 or pos != len(value):
        raise ValueError(f"Invalid duration: {value!r}")
    return total


def _new_parser() -> configparser.ConfigParser:
    parser = configparser.ConfigParser(interpolation=None)
    # Keys such as "NAS-Port" and "Calling-Station-Id" are case sensitive
    parser.optionxform = str  # type: ignore[assignment]
    return parser


class ConfigStore:
    """
    Read-mostly INI configuration with typed getters.

    Getters never raise: missing, invalid or out of range values are replaced by
    the supplied default (invalid ones with a warning). Reads take a shared lock,
    reload() takes it exclusively.
    """

    def __init__(self, path: str | None = None, text: str | None = None) -> None:
        self.path = path
        self._lock = ReadWriteLock()
        self._parser = _new_parser()

        if path is not None:
            self._parser = self._read_file(path)
        elif text is not None:
            self._parser.read_string(text)

    @classmethod
    def from_string(cls, text: str) -> "ConfigStore":
        return cls(text=text)

    @staticmethod
    def _read_file(path: str) -> configparser.ConfigParser:
        if not os.path.exists(path):
            raise ConfigError(f"configuration file does not exist: {path}")

        parser = _new_parser()
        try:
            with open(path, "r", encoding="utf-8") as f:
                parser.read_file(f)
        except (OSError, configparser.Error) as e:
            raise ConfigError(f"cannot read configuration file {path}: {e}") from e

        log.info("Configuration loaded", path=path)
        return parser

    def reload(self) -> None:
        if self.path is None:
            return
        parser = self._read_file(self.path)
        with self._lock.write():
            self._parser = parser

    def _raw(self, section: str, key: str) -> str:
        with self._lock.read():
            return self._parser.get(section, key, fallback="").strip()

    def get_bool(self, section: str, key: str, default: bool) -> bool:
        val = self._raw(section, key).lower()
        if val in _TRUE_VALUES:
            return True
        if val in _FALSE_VALUES:
            return False
        if val:
            log.warning("Invalid boolean value, using default", section=section, key=key, value=val, default=default)
        return default

    def get_string(self, section: str, key: str, default: str) -> str:
        return self._raw(section, key) or default

    def get_int(self, section: str, key: str, default: int, minimum: int, maximum: int) -> int:
        val = self._raw(section, key)
        if not val:
            return default

        try:
            int_val = int(val)
        except ValueError:
            log.warning("Invalid integer value, using default", section=section, key=key, value=val, default=default)
            return default

        if int_val < minimum or int_val > maximum:
            log.warning(
                "Integer value out of range, using default",
                section=section, key=key, value=int_val, range=[minimum, maximum], default=default,
            )
            return default
        return int_val

    def get_ip(
        self, section: str, key: str, default: Optional[ipaddress.IPv4Address]
    ) -> Optional[ipaddress.IPv4Address]:
        val = self._raw(section, key)
        if not val:
            return default

        try:
            return ipaddress.IPv4Address(val)
        except ValueError:
            log.warning("Invalid IP address, using default", section=section, key=key, value=val, default=str(default))
            return default

    def get_mac(self, section: str, key: str, default: bytes) -> bytes:
        val = self._raw(section, key)
        if not val:
            return default

        try:
            return parse_mac(val)
        except ValueError:
            log.warning("Invalid MAC address, using default", section=section, key=key, value=val)
            return default

    def get_duration(self, section: str, key: str, default: float) -> float:
        val = self._raw(section, key)
        if not val:
            return default

        try:
            return parse_duration(val)
        except ValueError:
            log.warning("Invalid duration, using default", section=section, key=key, value=val, default=default)
            return default
