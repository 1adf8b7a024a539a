"""Access rules, HTTP Basic/Digest authentication and permission lookup."""

from __future__ import annotations

import base64
import binascii
import copy
import enum
import hashlib
import os
import time
import uuid
from contextlib import suppress
from pathlib import Path
from typing import Iterator, Optional, Union

from passlib.hash import sha512_crypt

REALM = "DUFS"
DIGEST_AUTH_TIMEOUT = 604800  # 7 days

_NONCE_START_HASH = hashlib.md5(uuid.uuid4().bytes + (os.getpid() & 0xFFFFFFFF).to_bytes(4, "big"))

_READONLY_METHODS = frozenset({"GET", "OPTIONS", "HEAD", "PROPFIND", "CHECKAUTH", "LOGOUT"})

HeaderInput = Union[str, bytes]


class InvalidAuthError(ValueError):
    """Raised when an auth rule or a nonce is malformed."""


class AccessPerm(enum.IntEnum):
    """Permission attached to a path; ordered from weakest to strongest."""

    INDEX_ONLY = 0
    READ_ONLY = 1
    READ_WRITE = 2

    def indexonly(self) -> bool:
        return self is AccessPerm.INDEX_ONLY

    def readwrite(self) -> bool:
        return self is AccessPerm.READ_WRITE


class AccessPaths:
    """A tree of path segments, each node carrying a permission."""

    def __init__(self, perm: AccessPerm = AccessPerm.INDEX_ONLY) -> None:
        self.perm = perm
        self.children: dict[str, AccessPaths] = {}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AccessPaths):
            return NotImplemented
        return self.perm == other.perm and self.children == other.children

    def __repr__(self) -> str:
        return f"AccessPaths(perm={self.perm.name}, children={self.children!r})"

    def set_perm(self, perm: AccessPerm) -> None:
        """Set the permission unless it is index-only."""
        if not perm.indexonly():
            self.perm = perm

    def merge(self, paths: str) -> None:
        """Add comma separated `path[:ro|:rw]` items; raise on an unknown permission."""
        for item in paths.strip(",").split(","):
            path, sep, perm_text = item.partition(":")
            if not sep or perm_text == "ro":
                perm = AccessPerm.READ_ONLY
            elif perm_text == "rw":
                perm = AccessPerm.READ_WRITE
            else:
                raise InvalidAuthError(f"Invalid permission `{item}`")
            self.add(path, perm)

    def add(self, path: str, perm: AccessPerm) -> None:
        """Grant `perm` on `path`, creating intermediate nodes as needed."""
        path = path.strip("/")
        node = self
        if path:
            for part in path.split("/"):
                node = node.children.setdefault(part, AccessPaths())
        node.set_perm(perm)

    def find(self, path: str, writable: bool) -> Optional[AccessPaths]:
        """Return the effective access for `path`, or None if denied."""
        parts = [part for part in path.strip("/").split("/") if part]
        target = self._find_impl(parts, self.perm)
        if target is None:
            return None
        if writable and not target.perm.readwrite():
            return None
        return target

    def _find_impl(self, parts: list[str], perm: AccessPerm) -> Optional[AccessPaths]:
        node = self
        for part in parts:
            if not node.perm.indexonly():
                perm = node.perm
            child = node.children.get(part)
            if child is None:
                return None if perm.indexonly() else AccessPaths(perm)
            node = child
        if not node.perm.indexonly():
            perm = node.perm
        return copy.deepcopy(node) if perm.indexonly() else AccessPaths(perm)

    def child_names(self) -> list[str]:
        return list(self.children)

    def child_paths(self, base: Union[str, Path]) -> list[Path]:
        """Paths under `base` that carry a real permission."""
        base = Path(base)
        if not self.perm.indexonly():
            return [base]
        return list(self._iter_child_paths(base))

    def _iter_child_paths(self, base: Path) -> Iterator[Path]:
        for name, child in self.children.items():
            path = base / name
            if child.perm.indexonly():
                yield from child._iter_child_paths(path)
            else:
                yield path


class AccessControl:
    """Users, their passwords and accessible paths, plus anonymous access."""

    def __init__(self, raw_rules: list[str] | tuple[str, ...] = ()) -> None:
        self.use_hashed_password = False
        self.users: dict[str, tuple[str, AccessPaths]] = {}
        self.anonymous: Optional[AccessPaths] = AccessPaths(AccessPerm.READ_WRITE)
        if not raw_rules:
            return

        anonymous_paths: Optional[str] = None
        account_rules: list[tuple[str, str, str]] = []
        for rule in split_rules(raw_rules):
            parts = split_account_paths(rule)
            if parts is None:
                raise InvalidAuthError(f"Invalid auth `{rule}`")
            account, paths = parts
            if not account:
                if anonymous_paths is not None:
                    raise InvalidAuthError("Invalid auth, no duplicate anonymous rules")
                anonymous_paths = paths
            elif ":" in account:
                user, _, stored = account.partition(":")
                if not user or not stored:
                    raise InvalidAuthError(f"Invalid auth `{rule}`")
                account_rules.append((user, stored, paths))

        anonymous = None
        if anonymous_paths is not None:
            anonymous = AccessPaths()
            with suppress(InvalidAuthError):
                anonymous.merge(anonymous_paths)

        users: dict[str, tuple[str, AccessPaths]] = {}
        for user, stored, paths in account_rules:
            access_paths = copy.deepcopy(anonymous) if anonymous is not None else AccessPaths()
            try:
                access_paths.merge(paths)
            except InvalidAuthError:
                raise InvalidAuthError(f"Invalid auth `{user}:{stored}@{paths}`") from None
            if stored.startswith("$6$"):
                self.use_hashed_password = True
            users[user] = (stored, access_paths)

        self.users = users
        self.anonymous = anonymous

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AccessControl):
            return NotImplemented
        return (
            self.use_hashed_password == other.use_hashed_password
            and self.users == other.users
            and self.anonymous == other.anonymous
        )

    def __repr__(self) -> str:
        return (
            f"AccessControl(use_hashed_password={self.use_hashed_password}, "
            f"users={list(self.users)!r}, anonymous={self.anonymous!r})"
        )

    def exists(self) -> bool:
        """Whether any user accounts are configured."""
        return bool(self.users)

    def guard(
        self,
        path: str,
        method: str,
        authorization: Optional[HeaderInput],
        guard_options: bool,
    ) -> tuple[Optional[str], Optional[AccessPaths]]:
        """Return the authenticated user (if any) and the access granted for `path`."""
        writable = not is_readonly_method(method)
        if authorization is not None:
            user = get_auth_user(authorization)
            if user is not None and user in self.users:
                stored, paths = self.users[user]
                if method == "OPTIONS":
                    return user, AccessPaths(AccessPerm.READ_ONLY)
                if check_auth(authorization, method, user, stored):
                    return user, paths.find(path, writable)
            return None, None

        if not guard_options and method == "OPTIONS":
            return None, AccessPaths(AccessPerm.READ_ONLY)

        if self.anonymous is not None:
            return None, self.anonymous.find(path, writable)

        return None, None


def www_authenticate(access_control: AccessControl) -> list[str]:
    """Values for the WWW-Authenticate header(s) of a 401 response."""
    basic = f'Basic realm="{REALM}"'
    if access_control.use_hashed_password:
        return [basic]
    digest = f'Digest realm="{REALM}", nonce="{create_nonce()}", qop="auth"'
    return [digest, basic]


def _as_bytes(value: HeaderInput) -> bytes:
    if isinstance(value, bytes):
        return value
    try:
        return value.encode("latin-1")
    except UnicodeEncodeError:
        return value.encode("utf-8")


def _decode_basic(value: bytes) -> Optional[str]:
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, ValueError):
        return None


def get_auth_user(authorization: HeaderInput) -> Optional[str]:
    """Extract the user name from a Basic or Digest Authorization value."""
    raw = _as_bytes(authorization)
    if raw.startswith(b"Basic "):
        decoded = _decode_basic(raw[len(b"Basic "):])
        if decoded is None:
            return None
        return decoded.split(":")[0]
    if raw.startswith(b"Digest "):
        try:
            params = parse_header_params(raw[len(b"Digest "):])
            return params[b"username"].decode("utf-8")
        except (ValueError, KeyError):
            return None
    return None


def _md5_hex(*parts: bytes) -> str:
    return hashlib.md5(b"".join(parts)).hexdigest()


def check_auth(authorization: HeaderInput, method: str, auth_user: str, auth_pass: str) -> bool:
    """Verify the credentials in an Authorization value against one account."""
    raw = _as_bytes(authorization)
    if raw.startswith(b"Basic "):
        decoded = _decode_basic(raw[len(b"Basic "):])
        if decoded is None or ":" not in decoded:
            return False
        user, _, given = decoded.partition(":")
        if user != auth_user:
            return False
        if auth_pass.startswith("$6$"):
            try:
                return bool(sha512_crypt.verify(given, auth_pass))
            except (ValueError, TypeError):
                return False
        return given == auth_pass

    if raw.startswith(b"Digest "):
        try:
            params = parse_header_params(raw[len(b"Digest "):])
            username = params[b"username"].decode("utf-8")
            nonce = params[b"nonce"]
            user_response = params[b"response"]
        except (ValueError, KeyError):
            return False
        try:
            if not validate_nonce(nonce):
                return False
        except InvalidAuthError:
            return False
        if auth_user != username:
            return False

        ha1 = _md5_hex(f"{auth_user}:{REALM}:{auth_pass}".encode())
        ha2 = _md5_hex(method.encode(), b":", params.get(b"uri", b""))
        qop = params.get(b"qop")
        if qop in (b"auth", b"auth-int"):
            expected = _md5_hex(
                ha1.encode(), b":", nonce, b":",
                params.get(b"nc", b""), b":",
                params.get(b"cnonce", b""), b":",
                qop, b":", ha2.encode(),
            )
        else:
            expected = _md5_hex(ha1.encode(), b":", nonce, b":", ha2.encode())
        return expected.encode() == user_response

    return False


def _now_secs() -> int:
    return int(time.time()) & 0xFFFFFFFF


def create_nonce() -> str:
    """A 34-character nonce: 8 hex digits of time followed by a keyed hash."""
    secs = _now_secs()
    h = _NONCE_START_HASH.copy()
    h.update(secs.to_bytes(4, "big"))
    return f"{secs:08x}{h.hexdigest()}"[:34]


def validate_nonce(nonce: HeaderInput) -> bool:
    """Return whether a nonce is still fresh; raise if it was never valid."""
    raw = _as_bytes(nonce)
    if len(raw) != 34:
        raise InvalidAuthError("invalid nonce")
    try:
        text = raw.decode("ascii")
    except UnicodeDecodeError:
        raise InvalidAuthError("invalid nonce") from None
    stamp = text[:8]
    if all(c in "0123456789abcdefABCDEF" for c in stamp):
        secs_nonce = int(stamp, 16)
        elapsed = _now_secs() - secs_nonce
        if elapsed >= 0:
            h = _NONCE_START_HASH.copy()
            h.update(secs_nonce.to_bytes(4, "big"))
            if h.hexdigest()[:26] == text[8:34]:
                return elapsed < DIGEST_AUTH_TIMEOUT
    raise InvalidAuthError("invalid nonce")


def is_readonly_method(method: str) -> bool:
    return method in _READONLY_METHODS


def parse_header_params(header: HeaderInput) -> dict[bytes, bytes]:
    """Parse `key=value, key="value"` pairs of an auth header; raise ValueError if malformed."""
    raw = _as_bytes(header)
    separators: list[int] = []
    assigns: list[int] = []
    escaped = False
    for index, char in enumerate(raw):
        if char == ord('"'):
            escaped = not escaped
        elif not escaped and char == ord("="):
            assigns.append(index)
        elif not escaped and char == ord(","):
            separators.append(index)
    separators.append(len(raw))

    params: dict[bytes, bytes] = {}
    start = 0
    for end, assign in zip(separators, assigns):
        while start < len(raw) and raw[start] == ord(" "):
            start += 1
        if assign <= start or end <= assign + 1:
            raise ValueError("keys and values must contain at least one character")
        key = raw[start:assign]
        if raw[assign + 1] == ord('"') and raw[end - 1] == ord('"'):
            if assign + 2 > end - 1:
                raise ValueError("unterminated quoted value")
            value = raw[assign + 2:end - 1]
        else:
            value = raw[assign + 1:end]
        params[key] = value
        start = end + 1
    return params


def split_account_paths(s: str) -> Optional[tuple[str, str]]:
    """Split `account@/paths` at the first `@/`."""
    index = s.find("@/")
    if index < 0:
        return None
    return s[:index], s[index + 1:]


def split_rules(rules: list[str] | tuple[str, ...]) -> list[str]:
    """Expand `|`-joined compact rules, keeping `|` inside passwords."""
    output: list[str] = []
    for rule in rules:
        parts = rule.split("|")
        pending = ""
        for index, part in enumerate(parts):
            pending += part
            if "@/" in part:
                output.append(pending)
                pending = ""
            elif index < len(parts) - 1:
                pending += "|"
        if pending:
            output.append(pending)
    return output