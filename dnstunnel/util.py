"""Host helpers: system resolver lookup and routing-table selection."""

from __future__ import annotations

import socket
import sys
from typing import Optional

__all__ = [
    "RESOLV_CONF",
    "SO_RTABLE",
    "get_resolvconf_addr",
    "parse_resolvconf",
    "socket_setrtable",
]

RESOLV_CONF = "/etc/resolv.conf"

#: Socket option selecting the routing table on OpenBSD.
SO_RTABLE = 0x1021

_MAX_ADDR_LEN = 15
_KEYWORD = "nameserver"


def parse_resolvconf(text: str) -> Optional[str]:
    """Return the first nameserver in resolv.conf ``text``, or None.

    The address is cut to fifteen characters, the length of a dotted quad.
    """
    for line in text.splitlines():
        if not line.startswith(_KEYWORD):
            continue
        words = line[len(_KEYWORD):].split()
        if words:
            return words[0][:_MAX_ADDR_LEN]
    return None


def get_resolvconf_addr(path: str = RESOLV_CONF) -> Optional[str]:
    """Read the first configured nameserver from the file at ``path``."""
    with open(path, encoding="utf-8", errors="replace") as handle:
        return parse_resolvconf(handle.read())


def socket_setrtable(sock: socket.socket, rtable: int) -> None:
    """Bind ``sock`` to routing table ``rtable``.

    Only OpenBSD has routing domains; elsewhere a notice is printed.
    Raises OSError when the kernel refuses the table.
    """
    if not sys.platform.startswith("openbsd"):
        print("Routing domain support was not available at compile time.", file=sys.stderr)
        return
    try:
        sock.setsockopt(socket.IPPROTO_IP, SO_RTABLE, rtable)
    except OSError as exc:
        raise OSError(exc.errno, f"Failed to set routing table {rtable}: {exc.strerror}") from exc