"""Configurable access-log lines built from `$variable` templates."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Union

from dufs.auth import get_auth_user

DEFAULT_LOG_FORMAT = '$remote_addr "$request" $status'

_log = logging.getLogger(__name__)

HeaderSource = Union[Mapping[str, Any], Iterable[tuple[str, Any]]]


class LogElementKind(enum.Enum):
    VARIABLE = "variable"
    HEADER = "header"
    LITERAL = "literal"


@dataclass(frozen=True)
class LogElement:
    """One piece of a log template: a variable, a request header or literal text."""

    kind: LogElementKind
    value: str


def _parse_elements(template: str) -> list[LogElement]:
    elements: list[LogElement] = []
    is_var = False
    cache = ""
    for char in template + " ":
        if char == "$":
            if cache:
                elements.append(LogElement(LogElementKind.LITERAL, cache))
            cache = ""
            is_var = True
        elif is_var and not (char.isalnum() or char == "_"):
            if cache.startswith("$http_"):
                name = cache[len("$http_"):].replace("_", "-")
                elements.append(LogElement(LogElementKind.HEADER, name))
            elif cache.startswith("$"):
                elements.append(LogElement(LogElementKind.VARIABLE, cache[1:]))
            cache = ""
            is_var = False
        cache += char
    cache = cache.strip()
    if cache:
        elements.append(LogElement(LogElementKind.LITERAL, cache))
    return elements


def _header_text(value: Any) -> Optional[str]:
    if isinstance(value, bytes):
        try:
            value = value.decode("ascii")
        except UnicodeDecodeError:
            return None
    if not isinstance(value, str):
        return None
    if all(char == "\t" or 32 <= ord(char) < 127 for char in value):
        return value
    return None


def _get_header(headers: HeaderSource, name: str) -> Any:
    items = headers.items() if hasattr(headers, "items") else headers
    wanted = name.lower()
    for key, value in items:
        if key.lower() == wanted:
            return value
    return None


@dataclass
class HttpLogger:
    """Renders one access-log line per request from a parsed template."""

    elements: list[LogElement] = field(
        default_factory=lambda: _parse_elements(DEFAULT_LOG_FORMAT)
    )

    @classmethod
    def parse(cls, s: str) -> HttpLogger:
        """Build a logger from a template such as `$remote_addr "$request" $status`."""
        return cls(_parse_elements(s))

    def data(self, method: str, uri: str, headers: HeaderSource) -> dict[str, str]:
        """Collect the request-derived values the template refers to."""
        data: dict[str, str] = {}
        for element in self.elements:
            if element.kind is LogElementKind.VARIABLE:
                if element.value == "request":
                    data[element.value] = f"{method} {uri}"
                elif element.value == "remote_user":
                    authorization = _get_header(headers, "authorization")
                    if authorization is not None:
                        user = get_auth_user(authorization)
                        if user is not None:
                            data[element.value] = user
            elif element.kind is LogElementKind.HEADER:
                text = _header_text(_get_header(headers, element.value))
                if text is not None:
                    data[element.value] = text
        return data

    def render(self, data: Mapping[str, str]) -> str:
        """Fill the template; missing values are shown as `-`."""
        return "".join(
            element.value
            if element.kind is LogElementKind.LITERAL
            else data.get(element.value, "-")
            for element in self.elements
        )

    def log(self, data: Mapping[str, str], err: Optional[str] = None) -> None:
        """Emit the line at INFO, or at ERROR with `err` appended."""
        if not self.elements:
            return
        output = self.render(data)
        if err is not None:
            _log.error("%s %s", output, err)
        else:
            _log.info("%s", output)