import base64
import hashlib
from pathlib import Path
from unittest import mock

import pytest
from passlib.hash import sha512_crypt

from dufs.auth import (
    AccessControl,
    AccessPaths,
    AccessPerm,
    InvalidAuthError,
    check_auth,
    create_nonce,
    get_auth_user,
    is_readonly_method,
    parse_header_params,
    split_account_paths,
    split_rules,
    validate_nonce,
    www_authenticate,
)


def _basic(user, secret):
    return "Basic " + base64.b64encode(f"{user}:{secret}".encode()).decode()


def _md5(text):
    return hashlib.md5(text.encode()).hexdigest()


def _digest(user, secret, method, uri, nonce, qop=True):
    ha1 = _md5(f"{user}:DUFS:{secret}")
    ha2 = _md5(f"{method}:{uri}")
    if qop:
        response = _md5(f"{ha1}:{nonce}:00000001:abc:auth:{ha2}")
        return (
            f'Digest username="{user}", realm="DUFS", nonce="{nonce}", uri="{uri}", '
            f'qop=auth, nc=00000001, cnonce="abc", response="{response}"'
        )
    response = _md5(f"{ha1}:{nonce}:{ha2}")
    return f'Digest username="{user}", realm="DUFS", nonce="{nonce}", uri="{uri}", response="{response}"'


def test_split_account_paths():
    assert split_account_paths("user:password@/:rw") == ("user:password", "/:rw")
    assert split_account_paths("user:password@@/:rw") == ("user:password@", "/:rw")
    assert split_account_paths("user:password@1@/:rw") == ("user:password@1", "/:rw")
    assert split_account_paths("no-paths") is None


def test_compact_split_rules():
    assert split_rules(["user1:password@/:rw|user2:password@/:rw"]) == [
        "user1:password@/:rw",
        "user2:password@/:rw",
    ]
    assert split_rules(["user1:pa|ss1@/:rw|user2:pa|ss2@/:rw"]) == [
        "user1:pa|ss1@/:rw",
        "user2:pa|ss2@/:rw",
    ]
    assert split_rules(["user1:pa|ss1@/:rw|@/"]) == ["user1:pa|ss1@/:rw", "@/"]


def test_access_paths():
    paths = AccessPaths()
    paths.add("/dir1", AccessPerm.READ_WRITE)
    paths.add("/dir2/dir21", AccessPerm.READ_WRITE)
    paths.add("/dir2/dir21/dir211", AccessPerm.READ_ONLY)
    paths.add("/dir2/dir22", AccessPerm.READ_ONLY)
    paths.add("/dir2/dir22/dir221", AccessPerm.READ_WRITE)
    paths.add("/dir2/dir23/dir231", AccessPerm.READ_WRITE)
    assert paths.child_paths(Path("/tmp")) == [
        Path("/tmp/dir1"),
        Path("/tmp/dir2/dir21"),
        Path("/tmp/dir2/dir22"),
        Path("/tmp/dir2/dir23/dir231"),
    ]
    dir2 = paths.find("dir2", False)
    assert dir2.child_paths(Path("/tmp/dir2")) == [
        Path("/tmp/dir2/dir21"),
        Path("/tmp/dir2/dir22"),
        Path("/tmp/dir2/dir23/dir231"),
    ]
    assert paths.find("dir2", True) is None
    assert paths.find("dir1/file", True) == AccessPaths(AccessPerm.READ_WRITE)
    assert paths.find("dir2/dir21/file", True) == AccessPaths(AccessPerm.READ_WRITE)
    assert paths.find("dir2/dir21/dir211/file", False) == AccessPaths(AccessPerm.READ_ONLY)
    assert paths.find("dir2/dir21/dir211/file", True) is None


def test_child_names_and_unknown_path():
    paths = AccessPaths()
    paths.merge("/dir1:rw,/dir2")
    assert paths.child_names() == ["dir1", "dir2"]
    assert paths.find("dir3", False) is None
    assert paths.find("dir2/x", False) == AccessPaths(AccessPerm.READ_ONLY)


def test_merge_invalid_perm():
    with pytest.raises(InvalidAuthError):
        AccessPaths().merge("/dir1:xx")


def test_set_perm_ignores_index_only():
    paths = AccessPaths(AccessPerm.READ_ONLY)
    paths.set_perm(AccessPerm.INDEX_ONLY)
    assert paths.perm is AccessPerm.READ_ONLY


def test_access_perm_predicates():
    assert AccessPerm.INDEX_ONLY.indexonly()
    assert not AccessPerm.READ_ONLY.readwrite()
    assert AccessPerm.READ_WRITE.readwrite()
    assert AccessPerm.INDEX_ONLY < AccessPerm.READ_ONLY < AccessPerm.READ_WRITE


def test_default_access_control():
    control = AccessControl([])
    assert not control.exists()
    assert control.guard("/any", "PUT", None, False) == (None, AccessPaths(AccessPerm.READ_WRITE))


@pytest.mark.parametrize(
    "rules",
    [["@/", "@/dir"], ["user:@/"], [":password@/"], ["nopaths"], ["user:password@/:xx"]],
)
def test_invalid_rules(rules):
    with pytest.raises(InvalidAuthError):
        AccessControl(rules)


def test_guard_anonymous_and_user():
    password = "password"
    control = AccessControl(["user:password@/:rw", "@/"])
    assert control.exists()
    assert control.guard("/", "GET", None, False) == (None, AccessPaths(AccessPerm.READ_ONLY))
    assert control.guard("/file1", "PUT", None, False) == (None, None)
    header = _basic("user", password)
    assert control.guard("/file1", "PUT", header, False) == ("user", AccessPaths(AccessPerm.READ_WRITE))
    assert control.guard("/file1", "PUT", _basic("user", "-"), False) == (None, None)
    assert control.guard("/file1", "GET", _basic("-", password), False) == (None, None)


def test_guard_options():
    control = AccessControl(["user:password@/:rw"])
    assert control.guard("/index.html", "OPTIONS", None, False) == (
        None,
        AccessPaths(AccessPerm.READ_ONLY),
    )
    assert control.guard("/index.html", "OPTIONS", None, True) == (None, None)
    assert control.guard("/index.html", "GET", None, False) == (None, None)


def test_guard_nested_user_paths():
    password = "password"
    control = AccessControl(["user:password@/dir1:rw,/dir1/test.txt"])
    header = _basic("user", password)
    assert control.guard("/dir1/test.txt", "PUT", header, False) == ("user", None)
    assert control.guard("/dir1/file1", "PUT", header, False) == (
        "user",
        AccessPaths(AccessPerm.READ_WRITE),
    )


def test_user_inherits_anonymous_paths():
    control = AccessControl(["@/dir-assets", "user:password@/dir1:rw"])
    _, paths = control.users["user"]
    assert paths.child_names() == ["dir-assets", "dir1"]


def test_www_authenticate_plain():
    values = www_authenticate(AccessControl(["user:password@/:rw"]))
    assert len(values) == 2
    assert values[0].startswith('Digest realm="DUFS", nonce="')
    assert values[0].endswith('", qop="auth"')
    assert values[1] == 'Basic realm="DUFS"'


def test_hashed_password():
    password = "password"
    hashed = sha512_crypt.using(rounds=5000).hash(password)
    control = AccessControl([f"user:{hashed}@/:rw"])
    assert control.use_hashed_password
    assert www_authenticate(control) == ['Basic realm="DUFS"']
    assert check_auth(_basic("user", password), "PUT", "user", hashed)
    assert not check_auth(_basic("user", "secret"), "PUT", "user", hashed)


def test_get_auth_user():
    password = "password"
    assert get_auth_user(_basic("alice", password)) == "alice"
    assert get_auth_user('Digest username="alice", realm="DUFS"') == "alice"
    assert get_auth_user("Bearer token") is None
    assert get_auth_user("Basic token") is None


def test_check_auth_basic():
    password = "password"
    assert check_auth(_basic("user", password), "GET", "user", password)
    assert not check_auth(_basic("user", "secret"), "GET", "user", password)
    assert not check_auth(_basic("other", password), "GET", "user", password)
    assert not check_auth(_basic("", ""), "GET", "user", password)
    assert not check_auth("Basic token", "GET", "user", password)


@pytest.mark.parametrize("qop", [True, False])
def test_check_auth_digest(qop):
    password = "password"
    nonce = create_nonce()
    header = _digest("user", password, "PUT", "/file1", nonce, qop=qop)
    assert check_auth(header, "PUT", "user", password)
    assert not check_auth(header, "PUT", "user", "secret")
    assert not check_auth(header, "GET", "user", password)
    assert not check_auth(header, "PUT", "other", password)


def test_check_auth_digest_bad_nonce():
    password = "password"
    header = _digest("user", password, "GET", "/", "0" * 34)
    assert not check_auth(header, "GET", "user", password)


def test_nonce_shape_and_validity():
    nonce = create_nonce()
    assert len(nonce) == 34
    assert all(c in "0123456789abcdef" for c in nonce)
    assert validate_nonce(nonce) is True
    assert validate_nonce(nonce.encode()) is True


def test_nonce_expiry():
    start = 1_700_000_000
    with mock.patch("dufs.auth.time.time", return_value=start):
        nonce = create_nonce()
    assert nonce.startswith(f"{start:08x}")
    with mock.patch("dufs.auth.time.time", return_value=start + 604799):
        assert validate_nonce(nonce) is True
    with mock.patch("dufs.auth.time.time", return_value=start + 604800):
        assert validate_nonce(nonce) is False
    with mock.patch("dufs.auth.time.time", return_value=start - 1):
        with pytest.raises(InvalidAuthError):
            validate_nonce(nonce)


@pytest.mark.parametrize("nonce", ["short", "z" * 34, "0" * 34])
def test_invalid_nonce(nonce):
    with pytest.raises(InvalidAuthError):
        validate_nonce(nonce)


def test_is_readonly_method():
    for method in ["GET", "OPTIONS", "HEAD", "PROPFIND", "CHECKAUTH", "LOGOUT"]:
        assert is_readonly_method(method)
    for method in ["PUT", "DELETE", "MOVE", "COPY", "MKCOL", "get"]:
        assert not is_readonly_method(method)


def test_parse_header_params():
    params = parse_header_params(b'username="a", nonce="x,y=z", qop=auth')
    assert params == {b"username": b"a", b"nonce": b"x,y=z", b"qop": b"auth"}


@pytest.mark.parametrize("header", [b"=x", b"key=", b"a=1, =2"])
def test_parse_header_params_invalid(header):
    with pytest.raises(ValueError):
        parse_header_params(header)