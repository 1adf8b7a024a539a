"""Command-line and configuration-file options for the file server."""

from __future__ import annotations

import argparse
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Sequence, Union
from urllib.parse import quote

import yaml

from dufs.auth import AccessControl
from dufs.http_logger import HttpLogger
from dufs.options import (
    ArgsError,
    BindAddr,
    Compress,
    Order,
    SortType,
    default_addrs,
    default_port,
    string_or_list,
)

_TRUE_WORDS = frozenset({"y", "yes", "t", "true", "on", "1"})
_FALSE_WORDS = frozenset({"n", "no", "f", "false", "off", "0"})

_VALUE_ENV = {
    "serve_path": "DUFS_SERVE_PATH",
    "config": "DUFS_CONFIG",
    "bind": "DUFS_BIND",
    "port": "DUFS_PORT",
    "path_prefix": "DUFS_PATH_PREFIX",
    "hidden": "DUFS_HIDDEN",
    "auth": "DUFS_AUTH",
    "auth_method": "DUFS_AUTH_METHOD",
    "assets": "DUFS_ASSETS",
    "log_format": "DUFS_LOG_FORMAT",
    "log_file": "DUFS_LOG_FILE",
    "compress": "DUFS_COMPRESS",
    "tls_cert": "DUFS_TLS_CERT",
    "tls_key": "DUFS_TLS_KEY",
}

_FLAG_ENV = {
    "allow_all": "DUFS_ALLOW_ALL",
    "allow_upload": "DUFS_ALLOW_UPLOAD",
    "allow_delete": "DUFS_ALLOW_DELETE",
    "allow_search": "DUFS_ALLOW_SEARCH",
    "allow_symlink": "DUFS_ALLOW_SYMLINK",
    "allow_archive": "DUFS_ALLOW_ARCHIVE",
    "enable_cors": "DUFS_ENABLE_CORS",
    "render_index": "DUFS_RENDER_INDEX",
    "render_try_index": "DUFS_RENDER_TRY_INDEX",
    "render_spa": "DUFS_RENDER_SPA",
}

_PATH_OPTIONS = frozenset({"serve_path", "config", "assets", "log_file", "tls_cert", "tls_key"})
_AUTH_METHODS = ("basic", "digest")


def encode_uri(value: str) -> str:
    """Percent-encode each `/`-separated segment of a path."""
    return "/".join(quote(part, safe="") for part in value.split("/"))


def _port(text: str) -> int:
    try:
        port = int(text)
    except ValueError:
        raise ArgsError(f"invalid port `{text}`") from None
    if not 0 <= port <= 65535:
        raise ArgsError(f"invalid port `{text}`")
    return port


def _cli_port(text: str) -> int:
    try:
        return _port(text)
    except ArgsError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None


def build_cli() -> argparse.ArgumentParser:
    """The argument parser for the server command."""
    parser = argparse.ArgumentParser(
        prog="dufs",
        description="Distinct utility file server",
    )
    parser.add_argument(
        "serve_path", nargs="?", type=Path, metavar="serve-path",
        help="Specific path to serve [default: .]",
    )
    parser.add_argument("-c", "--config", type=Path, metavar="file",
                        help="Specify configuration file")
    parser.add_argument("-b", "--bind", action="append", metavar="addrs",
                        help="Specify bind address or unix socket")
    parser.add_argument("-p", "--port", type=_cli_port, metavar="port",
                        help="Specify port to listen on [default: 5000]")
    parser.add_argument("--path-prefix", metavar="path", help="Specify a path prefix")
    parser.add_argument("--hidden", action="append", metavar="value",
                        help="Hide paths from directory listings, e.g. tmp,*.log,*.lock")
    parser.add_argument("-a", "--auth", action="append", metavar="rules",
                        help="Add auth roles, e.g. user:pass@/dir1:rw,/dir2")
    parser.add_argument("--auth-method", choices=_AUTH_METHODS, metavar="value",
                        help=argparse.SUPPRESS)
    parser.add_argument("-A", "--allow-all", action="store_true", help="Allow all operations")
    parser.add_argument("--allow-upload", action="store_true", help="Allow upload files/folders")
    parser.add_argument("--allow-delete", action="store_true", help="Allow delete files/folders")
    parser.add_argument("--allow-search", action="store_true", help="Allow search files/folders")
    parser.add_argument("--allow-symlink", action="store_true",
                        help="Allow symlink to files/folders outside root directory")
    parser.add_argument("--allow-archive", action="store_true",
                        help="Allow zip archive generation")
    parser.add_argument("--enable-cors", action="store_true",
                        help="Enable CORS, sets `Access-Control-Allow-Origin: *`")
    parser.add_argument("--render-index", action="store_true",
                        help="Serve index.html when requesting a directory, "
                             "returns 404 if not found index.html")
    parser.add_argument("--render-try-index", action="store_true",
                        help="Serve index.html when requesting a directory, "
                             "returns directory listing if not found index.html")
    parser.add_argument("--render-spa", action="store_true",
                        help="Serve SPA(Single Page Application)")
    parser.add_argument("--assets", type=Path, metavar="path",
                        help="Set the path to the assets directory for overriding "
                             "the built-in assets")
    parser.add_argument("--log-format", metavar="format", help="Customize http log format")
    parser.add_argument("--log-file", type=Path, metavar="file",
                        help="Specify the file to save logs to, other than stdout/stderr")
    parser.add_argument("--compress", choices=[c.value for c in Compress], metavar="level",
                        help="Set zip compress level [default: low]")
    parser.add_argument("-D", "--dirs-first", action="store_true", help="List directories first")
    parser.add_argument("-s", "--sort", choices=[s.value for s in SortType], metavar="field",
                        help="Sort by field  [default: name]")
    parser.add_argument("-r", "--reverse", action="store_true", help="Sort path by descending")
    parser.add_argument("--latest", action="store_true", help="Sort by mtime descending order")
    parser.add_argument("--order", choices=[o.value for o in Order], help=argparse.SUPPRESS)
    parser.add_argument("--tls-cert", type=Path, metavar="path",
                        help="Path to an SSL/TLS certificate to serve with HTTPS")
    parser.add_argument("--tls-key", type=Path, metavar="path",
                        help="Path to the SSL/TLS certificate's private key")
    return parser


def _env_flag(name: str) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return False
    word = raw.strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    raise ArgsError(f"invalid value `{raw}` for {name}")


def _env_value(dest: str, raw: str) -> Any:
    if dest in _PATH_OPTIONS:
        return Path(raw)
    if dest == "port":
        return _port(raw)
    if dest in ("bind", "hidden"):
        return [raw]
    if dest == "auth":
        return [raw]
    if dest == "compress" and raw not in {c.value for c in Compress}:
        raise ArgsError(f"invalid compress level `{raw}`")
    if dest == "auth_method" and raw not in _AUTH_METHODS:
        raise ArgsError(f"invalid auth method `{raw}`")
    return raw


def _resolve(matches: Union[argparse.Namespace, Mapping[str, Any]]) -> dict[str, Any]:
    """Merge parsed options with DUFS_* environment variables and derived defaults."""
    values = dict(vars(matches) if isinstance(matches, argparse.Namespace) else matches)
    for dest, env in _VALUE_ENV.items():
        if values.get(dest) is None and env in os.environ:
            values[dest] = _env_value(dest, os.environ[env])
    for dest, env in _FLAG_ENV.items():
        values[dest] = bool(values.get(dest)) or _env_flag(env)
    for dest in ("bind", "hidden"):
        if values.get(dest) is not None:
            values[dest] = [item for value in values[dest] for item in value.split(",")]
    if values.get("auth_method") is None:
        values["auth_method"] = "digest"

    latest = bool(values.get("latest"))
    values["latest"] = latest
    values["dirs_first"] = bool(values.get("dirs_first"))
    values["reverse"] = bool(values.get("reverse")) or latest
    if values.get("sort") is None and latest:
        values["sort"] = SortType.MTIME.value
    if values.get("order") is None and values["reverse"]:
        values["order"] = Order.DESCENDING.value
    return values


def sanitize_path(path: Union[str, os.PathLike]) -> Path:
    """Resolve `path` against the working directory; raise if it does not exist."""
    path = Path(path)
    if not path.exists():
        raise ArgsError(f"Path `{path}` doesn't exist")
    try:
        return (Path.cwd() / path).resolve(strict=True)
    except OSError as exc:
        raise ArgsError(f"Failed to access path `{path}`") from exc


def sanitize_assets_path(path: Union[str, os.PathLike]) -> Path:
    """Resolve an assets directory, which must hold an index.html."""
    resolved = sanitize_path(path)
    if not (resolved / "index.html").exists():
        raise ArgsError(f"Path `{resolved}` doesn't contains index.html")
    return resolved


def _type_error(key: str, expected: str, value: Any) -> ArgsError:
    return ArgsError(f"invalid type for `{key}`: expected {expected}, got {value!r}")


def _bool(key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise _type_error(key, "a boolean", value)
    return value


def _str(key: str, value: Any) -> str:
    if not isinstance(value, str):
        raise _type_error(key, "a string", value)
    return value


def _path(key: str, value: Any) -> Path:
    return Path(_str(key, value))


def _optional_path(key: str, value: Any) -> Optional[Path]:
    return None if value is None else _path(key, value)


def _config_port(key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 65535:
        raise _type_error(key, "a port number", value)
    return value


def _config_addrs(key: str, value: Any) -> list[BindAddr]:
    return BindAddr.parse_addrs(string_or_list(value))


def _config_hidden(key: str, value: Any) -> list[str]:
    return string_or_list(value)


def _config_auth(key: str, value: Any) -> AccessControl:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise _type_error(key, "a list of strings", value)
    return AccessControl(value)


def _config_log_format(key: str, value: Any) -> HttpLogger:
    return HttpLogger.parse(_str(key, value))


def _named(choices: Mapping[str, Any]) -> Callable[[str, Any], Any]:
    def convert(key: str, value: Any) -> Any:
        if isinstance(value, str) and value in choices:
            return choices[value]
        raise _type_error(key, "one of " + ", ".join(choices), value)

    return convert


_CONFIG_FIELDS: dict[str, tuple[str, Callable[[str, Any], Any]]] = {
    "serve-path": ("serve_path", _path),
    "bind": ("addrs", _config_addrs),
    "port": ("port", _config_port),
    "path-prefix": ("path_prefix", _str),
    "hidden": ("hidden", _config_hidden),
    "auth": ("auth", _config_auth),
    "allow-all": ("allow_all", _bool),
    "allow-upload": ("allow_upload", _bool),
    "allow-delete": ("allow_delete", _bool),
    "allow-search": ("allow_search", _bool),
    "allow-symlink": ("allow_symlink", _bool),
    "allow-archive": ("allow_archive", _bool),
    "render-index": ("render_index", _bool),
    "render-spa": ("render_spa", _bool),
    "render-try-index": ("render_try_index", _bool),
    "enable-cors": ("enable_cors", _bool),
    "assets": ("assets", _optional_path),
    "log-format": ("http_logger", _config_log_format),
    "log-file": ("log_file", _optional_path),
    "compress": ("compress", _named({c.value: c for c in Compress})),
    "tls-cert": ("tls_cert", _optional_path),
    "tls-key": ("tls_key", _optional_path),
    "dirs-first": ("dirs_first", _bool),
    "sort": ("sort", _named({"Name": SortType.NAME, "Mtime": SortType.MTIME,
                             "Size": SortType.SIZE})),
    "order": ("order", _named({"Ascending": Order.ASCENDING,
                               "Descending": Order.DESCENDING})),
    "reverse": ("reverse", _bool),
    "latest": ("latest", _bool),
}


@dataclass
class Args:
    """Effective server settings."""

    serve_path: Path = field(default_factory=lambda: Path("."))
    addrs: list[BindAddr] = field(default_factory=default_addrs)
    port: int = field(default_factory=default_port)
    path_is_file: bool = False
    path_prefix: str = ""
    uri_prefix: str = ""
    hidden: list[str] = field(default_factory=list)
    auth: AccessControl = field(default_factory=AccessControl)
    allow_all: bool = False
    allow_upload: bool = False
    allow_delete: bool = False
    allow_search: bool = False
    allow_symlink: bool = False
    allow_archive: bool = False
    render_index: bool = False
    render_spa: bool = False
    render_try_index: bool = False
    enable_cors: bool = False
    assets: Optional[Path] = None
    http_logger: HttpLogger = field(default_factory=HttpLogger)
    log_file: Optional[Path] = None
    compress: Compress = Compress.LOW
    tls_cert: Optional[Path] = None
    tls_key: Optional[Path] = None
    dirs_first: bool = False
    sort: SortType = SortType.NAME
    order: Order = Order.ASCENDING
    reverse: bool = False
    latest: bool = False

    @classmethod
    def from_config(cls, data: Any) -> Args:
        """Build settings from a loaded configuration mapping; unknown keys are ignored."""
        args = cls()
        if data is None:
            return args
        if not isinstance(data, Mapping):
            raise ArgsError("configuration must be a mapping")
        for key, value in data.items():
            entry = _CONFIG_FIELDS.get(key)
            if entry is None:
                continue
            attr, convert = entry
            setattr(args, attr, convert(key, value))
        return args

    @classmethod
    def parse(cls, matches: Union[argparse.Namespace, Mapping[str, Any]]) -> Args:
        """Combine the configuration file, environment and parsed command line."""
        m = _resolve(matches)
        args = cls()

        config_path = m.get("config")
        if config_path is not None:
            try:
                contents = Path(config_path).read_text(encoding="utf-8")
            except OSError as exc:
                raise ArgsError(f"Failed to read config at {config_path}") from exc
            try:
                args = cls.from_config(yaml.safe_load(contents))
            except (yaml.YAMLError, ValueError) as exc:
                raise ArgsError(f"Failed to load config at {config_path}: {exc}") from exc

        if m.get("serve_path") is not None:
            args.serve_path = Path(m["serve_path"])
        args.serve_path = sanitize_path(args.serve_path)

        if m.get("port") is not None:
            args.port = m["port"]

        if m.get("bind") is not None:
            args.addrs = BindAddr.parse_addrs(m["bind"])

        args.path_is_file = args.serve_path.is_file()
        if m.get("path_prefix") is not None:
            args.path_prefix = m["path_prefix"]
        args.path_prefix = args.path_prefix.strip("/")
        args.uri_prefix = f"/{encode_uri(args.path_prefix)}/" if args.path_prefix else "/"

        if m.get("hidden") is not None:
            args.hidden = list(m["hidden"])
        else:
            args.hidden = [part for value in args.hidden for part in value.split(",")]

        args.enable_cors = args.enable_cors or m["enable_cors"]

        if m.get("auth") is not None:
            args.auth = AccessControl(list(m["auth"]))

        args.allow_all = args.allow_all or m["allow_all"]
        allow_all = args.allow_all
        args.allow_upload = args.allow_upload or allow_all or m["allow_upload"]
        args.allow_delete = args.allow_delete or allow_all or m["allow_delete"]
        args.allow_search = args.allow_search or allow_all or m["allow_search"]
        args.allow_symlink = args.allow_symlink or allow_all or m["allow_symlink"]
        args.allow_archive = args.allow_archive or allow_all or m["allow_archive"]
        args.render_index = args.render_index or m["render_index"]
        args.render_try_index = args.render_try_index or m["render_try_index"]
        args.render_spa = args.render_spa or m["render_spa"]

        if m.get("assets") is not None:
            args.assets = Path(m["assets"])
        if args.assets is not None:
            args.assets = sanitize_assets_path(args.assets)

        if m.get("log_format") is not None:
            args.http_logger = HttpLogger.parse(m["log_format"])
        if m.get("log_file") is not None:
            args.log_file = Path(m["log_file"])
        if m.get("compress") is not None:
            args.compress = Compress(m["compress"])

        args.dirs_first = m["dirs_first"]
        if m.get("sort") is not None:
            args.sort = SortType(m["sort"])
        if m.get("order") is not None:
            args.order = Order(m["order"])
        args.reverse = m["reverse"]
        args.latest = m["latest"]

        if m.get("tls_cert") is not None:
            args.tls_cert = Path(m["tls_cert"])
        if m.get("tls_key") is not None:
            args.tls_key = Path(m["tls_key"])
        if args.tls_cert is not None and args.tls_key is None:
            raise ArgsError("No tls-key set")
        if args.tls_cert is None and args.tls_key is not None:
            raise ArgsError("No tls-cert set")

        return args


def parse_args(argv: Optional[Sequence[str]] = None) -> Args:
    """Parse a command line (sys.argv when None) into settings."""
    return Args.parse(build_cli().parse_args(argv))