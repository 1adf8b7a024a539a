# dufs

Building blocks for a small file server: per-path access rules, HTTP Basic
and Digest authentication, access-log formatting, command-line and YAML
configuration parsing, and working out the addresses to listen on.

## What this package does not do

It contains no HTTP server and no request handling: it does not serve,
upload, delete, search or archive files, does not speak WebDAV, and does not
open sockets or set up TLS. There is no command to run. The pieces here are
meant to be used by code that does those things.

## Access rules (`dufs.auth`)

Rules have the form `user:pass@/path[:ro|:rw],/other[:ro|:rw]`. A path
without a suffix is read-only. A rule with an empty account (`@/...`)
grants anonymous access, and named users inherit the anonymous paths.
Several rules may be joined with `|` in one string; a `|` inside a
password is kept (`split_rules`). Without any rules, anonymous users get
read-write access everywhere. Malformed rules raise `InvalidAuthError`.

```python
from dufs.auth import AccessControl

control = AccessControl(["user:pass@/:rw", "@/public"])
control.exists()  # True: at least one named user

user, paths = control.guard("/public/readme.txt", "GET", None, False)
# user is None (anonymous); paths grants READ_ONLY access
```

`guard(path, method, authorization, guard_options)` returns the
authenticated user name (or `None`) and the `AccessPaths` that apply, or
`None` for the paths when access is refused. Methods other than `GET`,
`HEAD`, `OPTIONS`, `PROPFIND`, `CHECKAUTH` and `LOGOUT` need write access
(`is_readonly_method`). Without an Authorization value, `OPTIONS` is
allowed read-only unless `guard_options` is true.

`AccessPaths` is the permission tree behind this; `AccessPerm` is
`INDEX_ONLY`, `READ_ONLY` or `READ_WRITE`. `find(path, writable)` gives the
permission for a path, and `child_paths(base)` lists the paths below `base`
that a partially shared directory exposes.

Passwords starting with `$6$` are SHA-512 crypt hashes checked with passlib;
then `www_authenticate(control)` offers only a Basic challenge. Otherwise it
returns a Digest challenge, with a nonce from `create_nonce()`, followed by
a Basic one. Digest nonces are valid for seven days (`validate_nonce`).
`get_auth_user` and `check_auth` read and verify Authorization values;
`parse_header_params` splits the `key=value` list of a Digest header.

## Request logging (`dufs.http_logger`, `dufs.logger`)

```python
from dufs.http_logger import HttpLogger

logger = HttpLogger.parse('$remote_addr "$request" $status $http_user_agent')
data = logger.data("GET", "/index.html", {"user-agent": "curl"})
data["remote_addr"] = "127.0.0.1"
data["status"] = "200"
logger.render(data)  # '127.0.0.1 "GET /index.html" 200 curl'
```

`$http_<name>` refers to a request header (underscores become dashes),
`$request` and `$remote_user` are filled in by `data`, and values that are
missing are written as `-`. `log(data, err)` emits the line at INFO, or at
ERROR with the error appended; an empty format logs nothing. The default
format is `$remote_addr "$request" $status`.

`dufs.logger.init(log_file=None)` configures the `dufs` logger at INFO with
`LogFormatter` (`<time> <LEVEL> - <message>`), writing warnings and errors
to stderr and the rest to stdout, or everything to an appended log file.

## Options (`dufs.args`, `dufs.options`)

`parse_args(argv)` parses a command line into an `Args` value. A YAML file
given with `-c/--config` is applied first (`Args.from_config`), then
`DUFS_*` environment variables and command-line options on top of it.

```python
from dufs.args import parse_args

args = parse_args(["--hidden", "tmp,*.log", "-p", "3000", "--allow-upload"])
args.port          # 3000
args.hidden        # ['tmp', '*.log']
args.allow_upload  # True
```

By default the current directory is used, on port 8080, bound to both
`0.0.0.0` and `::`. The serve path must exist and is resolved to an absolute
path (`sanitize_path`); an assets directory must hold `index.html`
(`sanitize_assets_path`). `--tls-cert` and `--tls-key` must be given
together. `--latest` implies sorting by mtime in descending order. Invalid
values raise `ArgsError`.

`BindAddr.parse_addrs` takes anything that is not an IP address as a Unix
socket path (on POSIX systems). `Compress` maps `none`, `low`, `medium` and
`high` to zipfile's stored, deflate, bzip2 and LZMA methods; `SortType` and
`Order` choose the listing order.

`dufs.http_utils.length_limited_stream(reader, limit)` yields chunks from a
binary reader up to `limit` bytes.

## Listening addresses (`dufs.listening`)

`check_addrs(args, interfaces)` drops addresses of a family that no local
interface has, and expands unspecified addresses to the interface addresses
from `interface_addrs()`. `print_listening(args, addrs)` formats the
`Listening on ...` message with the right scheme and path prefix.

## Tests

The tests use pytest; install the `test` extra to get it.