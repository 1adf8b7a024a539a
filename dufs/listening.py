"""Working out which addresses to listen on and announcing them."""

from __future__ import annotations

import ipaddress
import socket
from typing import Iterable, Optional

import psutil

from dufs.args import Args
from dufs.options import BindAddr

Interfaces = tuple[list[BindAddr], list[BindAddr]]


def _interface_ip(address: str) -> Optional[BindAddr]:
    text = address.split("%", 1)[0]
    try:
        return BindAddr(ip=ipaddress.ip_address(text))
    except ValueError:
        return None


def interface_addrs() -> Interfaces:
    """The IPv4 and IPv6 addresses of the local network interfaces."""
    try:
        interfaces = psutil.net_if_addrs()
    except (OSError, RuntimeError) as exc:
        raise OSError("Failed to get local interface addresses") from exc

    ipv4_addrs: list[BindAddr] = []
    ipv6_addrs: list[BindAddr] = []
    for entries in interfaces.values():
        for entry in entries:
            if entry.family not in (socket.AF_INET, socket.AF_INET6):
                continue
            bind_addr = _interface_ip(entry.address)
            if bind_addr is None:
                continue
            if bind_addr.ip.version == 4:
                ipv4_addrs.append(bind_addr)
            else:
                ipv6_addrs.append(bind_addr)
    return ipv4_addrs, ipv6_addrs


def check_addrs(
    args: Args, interfaces: Optional[Interfaces] = None
) -> tuple[list[BindAddr], list[BindAddr]]:
    """Split configured addresses into those to bind and those to announce.

    Addresses of a family that no local interface has are dropped; an
    unspecified address is announced as every interface address of its family.
    """
    ipv4_addrs, ipv6_addrs = interfaces if interfaces is not None else interface_addrs()
    new_addrs: list[BindAddr] = []
    print_addrs: list[BindAddr] = []
    for bind_addr in args.addrs:
        ip = bind_addr.ip
        if ip is None:
            new_addrs.append(bind_addr)
            print_addrs.append(bind_addr)
            continue
        pool = ipv4_addrs if ip.version == 4 else ipv6_addrs
        if not pool:
            continue
        new_addrs.append(bind_addr)
        if ip.is_unspecified:
            print_addrs.extend(pool)
        else:
            print_addrs.append(bind_addr)
    print_addrs.sort(key=BindAddr.sort_key)
    return new_addrs, print_addrs


def _url(args: Args, bind_addr: BindAddr) -> str:
    ip = bind_addr.ip
    if ip is None:
        return str(bind_addr.socket_path)
    host = f"{ip}:{args.port}" if ip.version == 4 else f"[{ip}]:{args.port}"
    protocol = "https" if args.tls_cert is not None else "http"
    return f"{protocol}://{host}{args.uri_prefix}"


def print_listening(args: Args, print_addrs: Iterable[BindAddr]) -> str:
    """The start-up message naming every URL the server answers on."""
    urls = [_url(args, bind_addr) for bind_addr in print_addrs]
    if len(urls) == 1:
        return f"Listening on {urls[0]}"
    info = "\n".join(f"  {url}" for url in urls)
    return f"Listening on:\n{info}\n"