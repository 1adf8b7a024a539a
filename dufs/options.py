"""Value types shared by the command line and configuration file."""

from __future__ import annotations

import enum
import ipaddress
import os
import zipfile
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Union

IpAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_UNIX_SOCKETS = os.name == "posix"


class ArgsError(ValueError):
    """Raised when options or configuration values are invalid."""


class _ValueEnum(str, enum.Enum):
    def __str__(self) -> str:
        return self.value


class Compress(_ValueEnum):
    """Zip compression level for archive downloads."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    def to_compression(self) -> int:
        """The zipfile compression method for this level."""
        return {
            Compress.NONE: zipfile.ZIP_STORED,
            Compress.LOW: zipfile.ZIP_DEFLATED,
            Compress.MEDIUM: zipfile.ZIP_BZIP2,
            Compress.HIGH: zipfile.ZIP_LZMA,
        }[self]


class SortType(_ValueEnum):
    NAME = "name"
    MTIME = "mtime"
    SIZE = "size"


class Order(_ValueEnum):
    ASCENDING = "asc"
    DESCENDING = "desc"


def _parse_ip(text: str) -> Optional[IpAddress]:
    if "%" in text:
        return None
    try:
        return ipaddress.ip_address(text)
    except ValueError:
        return None


@dataclass(frozen=True)
class BindAddr:
    """An IP address to listen on, or a unix socket path."""

    ip: Optional[IpAddress] = None
    socket_path: Optional[str] = None

    def __post_init__(self) -> None:
        if (self.ip is None) == (self.socket_path is None):
            raise ValueError("exactly one of ip or socket_path must be set")

    def __str__(self) -> str:
        return str(self.ip) if self.ip is not None else str(self.socket_path)

    @classmethod
    def parse_addrs(cls, addrs: Iterable[str]) -> list[BindAddr]:
        """Parse addresses; anything that is not an IP is a unix socket path."""
        result: list[BindAddr] = []
        invalid: list[str] = []
        for addr in addrs:
            ip = _parse_ip(addr)
            if ip is not None:
                result.append(cls(ip=ip))
            elif _UNIX_SOCKETS:
                result.append(cls(socket_path=addr))
            else:
                invalid.append(addr)
        if invalid:
            raise ArgsError(f"Invalid bind address `{','.join(invalid)}`")
        return result

    def sort_key(self) -> tuple[Any, ...]:
        """IPv4 before IPv6 before socket paths, each in natural order."""
        if self.ip is not None:
            return (0, self.ip.version, int(self.ip))
        return (1, 0, self.socket_path)


def default_addrs() -> list[BindAddr]:
    return BindAddr.parse_addrs(["0.0.0.0", "::"])


def default_port() -> int:
    return 8080


def string_or_list(value: Any) -> list[str]:
    """Accept a string or a list of strings, as configuration files allow."""
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)) and all(isinstance(item, str) for item in value):
        return list(value)
    raise ArgsError(f"expected string or list of strings, got {value!r}")