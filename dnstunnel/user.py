"""Table of tunnel users served by one server."""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from enum import IntEnum
from ipaddress import IPv4Address
from typing import Any, Iterator, Optional, Union

__all__ = [
    "DNSCACHE_LEN",
    "OUTPACKETQ_LEN",
    "QMEMDATA_LEN",
    "QMEMPING_LEN",
    "USERS",
    "Connection",
    "User",
    "UserTable",
]

USERS = 16
OUTPACKETQ_LEN = 4
DNSCACHE_LEN = 4
QMEMPING_LEN = 30
QMEMDATA_LEN = 15

USER_TIMEOUT = 60
DEFAULT_FRAGSIZE = 4096

AddressLike = Union[str, int, IPv4Address]


class Connection(IntEnum):
    """How a user's traffic reaches the server."""

    RAW_UDP = 0
    DNS_NULL = 1


@dataclass
class User:
    """State kept for one tunnel user."""

    id: int
    tun_ip: IPv4Address
    active: bool = False
    authenticated: bool = False
    authenticated_raw: bool = False
    options_locked: bool = False
    disabled: bool = False
    last_pkt: float = 0
    seed: int = 0
    host: Optional[tuple] = None
    encoder: Any = None
    downenc: str = ""
    lazy: bool = False
    fragsize: int = 0
    conn: Connection = Connection.RAW_UDP
    inpacket: bytes = b""
    outpacket: bytes = b""
    outfragresent: int = 0
    out_acked_seqno: int = 0
    out_acked_fragment: int = 0
    outpacketq: deque = field(default_factory=lambda: deque(maxlen=OUTPACKETQ_LEN))
    dnscache: deque = field(default_factory=lambda: deque(maxlen=DNSCACHE_LEN))
    qmemping: deque = field(default_factory=lambda: deque(maxlen=QMEMPING_LEN))
    qmemdata: deque = field(default_factory=lambda: deque(maxlen=QMEMDATA_LEN))

    def seen_since(self, now: float) -> bool:
        """True if the user sent a packet within the timeout before ``now``."""
        return self.last_pkt + USER_TIMEOUT > now


class UserTable:
    """Fixed set of user slots, each with its own tunnel address."""

    def __init__(self, my_ip: AddressLike, netbits: int) -> None:
        if not 0 <= netbits <= 30:
            raise ValueError(f"netbits must be between 0 and 30, got {netbits}")
        server_ip = int(IPv4Address(my_ip))
        netmask = (0xFFFFFFFF << (32 - netbits)) & 0xFFFFFFFF
        ipstart = server_ip & netmask
        # Network address, broadcast address and the server's own address.
        count = min((1 << (32 - netbits)) - 3, USERS)

        self._users: list[User] = []
        skip = 0
        for userid in range(count):
            ip = ipstart + userid + skip + 1
            if ip == server_ip and skip == 0:
                skip += 1
                ip += 1
            self._users.append(User(id=userid, tun_ip=IPv4Address(ip)))

    def __len__(self) -> int:
        return len(self._users)

    def __getitem__(self, userid: int) -> User:
        return self._users[userid]

    def __iter__(self) -> Iterator[User]:
        return iter(self._users)

    def first_ip(self) -> str:
        """Tunnel address of the first user slot."""
        return str(self._users[0].tun_ip)

    def find_user_by_ip(self, ip: AddressLike) -> Optional[int]:
        """Id of the live, authenticated user owning ``ip``, or None."""
        target = IPv4Address(ip)
        now = time.time()
        for user in self._users:
            if (
                user.active
                and user.authenticated
                and not user.disabled
                and user.seen_since(now)
                and user.tun_ip == target
            ):
                return user.id
        return None

    def all_users_waiting_to_send(self) -> bool:
        """True when no live user could take another packet right now.

        While this holds, reading from the tunnel device is paused.
        """
        now = time.time()
        for user in self._users:
            if user.active and not user.disabled and user.seen_since(now):
                if user.conn == Connection.RAW_UDP:
                    return False
                if user.conn == Connection.DNS_NULL and not user.outpacketq:
                    return False
        return True

    def find_available_user(self) -> Optional[int]:
        """Claim a free or timed-out slot and return its id, or None."""
        now = time.time()
        for user in self._users:
            idle = not user.active or user.last_pkt + USER_TIMEOUT < now
            if idle and not user.disabled:
                user.active = True
                user.authenticated = False
                user.authenticated_raw = False
                user.options_locked = False
                user.last_pkt = now
                user.fragsize = DEFAULT_FRAGSIZE
                user.conn = Connection.DNS_NULL
                return user.id
        return None

    def switch_codec(self, userid: int, encoder: Any) -> None:
        """Set the user's upstream encoder; unknown ids are ignored."""
        if 0 <= userid < len(self._users):
            self._users[userid].encoder = encoder

    def set_conn_type(self, userid: int, conn: Union[int, Connection]) -> None:
        """Set the user's connection type; unknown ids or types are ignored."""
        if not 0 <= userid < len(self._users):
            return
        try:
            connection = Connection(conn)
        except ValueError:
            return
        self._users[userid].conn = connection