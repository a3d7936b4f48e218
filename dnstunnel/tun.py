"""Opening and configuring the tunnel network device."""

from __future__ import annotations

import errno
import os
import re
import socket
import struct
import subprocess
import sys
from ipaddress import IPv4Address
from typing import Optional

__all__ = [
    "LINUX_HEADER",
    "BSD_HEADER",
    "FRAME_HEADER_SIZE",
    "TUN_MAX_TRY",
    "TunDevice",
    "ifconfig_commands",
    "netmask_from_bits",
    "open_tun",
]

#: Number of device names tried when none is given.
TUN_MAX_TRY = 50

#: Every frame handed to or returned from a device starts with four bytes.
FRAME_HEADER_SIZE = 4

#: Linux prefixes packets with flags and the ethertype (IPv4).
LINUX_HEADER = b"\x00\x00\x08\x00"

#: BSD systems prefix packets with the address family (AF_INET).
BSD_HEADER = b"\x00\x00\x00\x02"

_NO_HEADER = b"\x00\x00\x00\x00"

_TUNSETIFF = 0x400454CA
_IFF_TUN = 0x0001
_IFNAMSIZ = 16
_IFREQ = struct.Struct("16sH22x")

_UTUN_CONTROL_NAME = b"com.apple.net.utun_control"
_UTUN_OPT_IFNAME = 2
_CTLIOCGINFO = 0xC0644E03
_CTL_INFO = struct.Struct("I96s")


def _family(system: str) -> str:
    """Map a ``sys.platform`` style string to the family of tun behaviour."""
    for prefix, family in (
        ("linux", "linux"),
        ("android", "android"),
        ("freebsd", "freebsd"),
        ("netbsd", "netbsd"),
        ("openbsd", "openbsd"),
        ("darwin", "darwin"),
        ("win32", "windows"),
        ("cygwin", "windows"),
    ):
        if system.startswith(prefix):
            return family
    return "openbsd"


def _command_env(system: str) -> dict:
    path = "/system/bin" if _family(system) == "android" else "/sbin:/bin"
    return dict(os.environ, PATH=path)


def netmask_from_bits(netbits: int) -> IPv4Address:
    """Return the netmask with ``netbits`` leading one bits."""
    if not 0 <= netbits <= 32:
        raise ValueError(f"netbits must be between 0 and 32, got {netbits}")
    return IPv4Address((0xFFFFFFFF << (32 - netbits)) & 0xFFFFFFFF)


def ifconfig_commands(
    if_name: str,
    ip: str,
    other_ip: Optional[str],
    netbits: int,
    system: str = sys.platform,
) -> list[list[str]]:
    """Return the commands that give interface ``if_name`` its address.

    Linux needs one ifconfig call; the BSDs also need a route to the
    tunnel network; Windows uses netsh. Raises ValueError for a bad IP.
    """
    netmask = netmask_from_bits(netbits)
    try:
        address = IPv4Address(ip)
    except ValueError:
        raise ValueError(f"Invalid IP: {ip}!") from None

    family = _family(system)
    if family == "windows":
        return [
            ["netsh", "interface", "ip", "set", "address", if_name, "static", ip, str(netmask)]
        ]

    if family == "freebsd":
        if other_ip is None:
            raise ValueError("the peer IP is required on this system")
        display_ip = other_ip
    else:
        display_ip = ip

    commands = [["ifconfig", if_name, ip, display_ip, "netmask", str(netmask)]]
    if family not in ("linux", "android"):
        network = IPv4Address(int(address) & int(netmask))
        commands.append(["route", "add", f"{network}/{netbits}", ip])
    return commands


class TunDevice:
    """An open tunnel device.

    Frames read from and written to the device carry a four-byte prefix
    in front of the IP packet, whether or not the device itself uses one.
    """

    def __init__(self, fd: int, name: str, system: str = sys.platform) -> None:
        self._fd = fd
        self.name = name
        self.system = system

    def __repr__(self) -> str:
        return f"TunDevice(fd={self._fd}, name={self.name!r})"

    def fileno(self) -> int:
        """The file descriptor, or -1 once closed."""
        return self._fd

    def uses_header(self) -> bool:
        """True if the device itself prefixes packets with four bytes."""
        family = _family(self.system)
        if family in ("freebsd", "netbsd", "windows"):
            return False
        if family == "darwin":
            return self.name.startswith("utun")
        return True

    def _header(self) -> bytes:
        return LINUX_HEADER if _family(self.system) in ("linux", "android") else BSD_HEADER

    def close(self) -> None:
        """Close the device; closing twice does nothing."""
        if self._fd >= 0:
            os.close(self._fd)
            self._fd = -1

    def write(self, packet: bytes) -> None:
        """Write one frame: four prefix bytes followed by an IP packet.

        The prefix is replaced by what the device expects, or dropped.
        """
        if len(packet) < FRAME_HEADER_SIZE:
            raise ValueError("frame is shorter than its four-byte prefix")
        payload = bytes(packet[FRAME_HEADER_SIZE:])
        data = self._header() + payload if self.uses_header() else payload
        written = os.write(self._fd, data)
        if written != len(data):
            raise OSError(f"write_tun: short write ({written} of {len(data)} bytes)")

    def read(self, size: int = 64 * 1024) -> bytes:
        """Read one frame of at most ``size`` bytes, prefix included."""
        if size < FRAME_HEADER_SIZE:
            raise ValueError("size must leave room for the four-byte prefix")
        if self.uses_header():
            return os.read(self._fd, size)
        return _NO_HEADER + os.read(self._fd, size - FRAME_HEADER_SIZE)

    def set_ip(self, ip: str, other_ip: Optional[str], netbits: int) -> None:
        """Assign the tunnel address, adding a route where needed.

        Raises subprocess.CalledProcessError when a command fails.
        """
        commands = ifconfig_commands(self.name, ip, other_ip, netbits, self.system)
        env = _command_env(self.system)
        print(f"Setting IP of {self.name} to {ip}", file=sys.stderr)
        for command in commands:
            if command[0] == "route":
                print(f"Adding route {command[2]} to {ip}", file=sys.stderr)
            subprocess.run(command, check=True, env=env)

    def set_mtu(self, mtu: int) -> None:
        """Set the interface MTU; it must be above 200 and at most 1500."""
        if _family(self.system) == "windows":
            return
        if not 200 < mtu <= 1500:
            raise ValueError(f"MTU out of range: {mtu}")
        print(f"Setting MTU of {self.name} to {mtu}", file=sys.stderr)
        subprocess.run(
            ["ifconfig", self.name, "mtu", str(mtu)],
            check=True,
            env=_command_env(self.system),
        )

    def __enter__(self) -> "TunDevice":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _utun_unit(dev: str) -> int:
    """Unit for a utun name: 0 to auto-assign, or the number plus one."""
    match = re.search(r"\d+", dev)
    return int(match.group()) + 1 if match else 0


def _open_linux(tun_device: Optional[str], system: str) -> TunDevice:
    import fcntl

    path = "/dev/tun" if _family(system) == "android" else "/dev/net/tun"
    try:
        fd = os.open(path, os.O_RDWR)
    except OSError as exc:
        raise OSError(exc.errno, f"open_tun: {path}: {exc.strerror}") from exc

    names = [tun_device] if tun_device is not None else [f"dns{i}" for i in range(TUN_MAX_TRY)]
    for name in names:
        request = _IFREQ.pack(name.encode()[: _IFNAMSIZ - 1], _IFF_TUN)
        try:
            reply = fcntl.ioctl(fd, _TUNSETIFF, request)
        except OSError as exc:
            if exc.errno != errno.EBUSY:
                os.close(fd)
                raise OSError(exc.errno, f"open_tun: ioctl[TUNSETIFF]: {exc.strerror}") from exc
            continue
        opened = _IFREQ.unpack(reply)[0].rstrip(b"\0").decode()
        print(f"Opened {opened}", file=sys.stderr)
        return TunDevice(fd, name, system)

    os.close(fd)
    if tun_device is None:
        raise OSError("open_tun: Couldn't set interface name")
    raise OSError(errno.EBUSY, f"error when opening tun: {tun_device} is busy")


def _open_utun(dev: str, system: str) -> TunDevice:
    import fcntl

    sock = socket.socket(socket.PF_SYSTEM, socket.SOCK_DGRAM, socket.SYSPROTO_CONTROL)
    try:
        info = fcntl.ioctl(sock.fileno(), _CTLIOCGINFO, _CTL_INFO.pack(0, _UTUN_CONTROL_NAME))
        ctl_id = _CTL_INFO.unpack(info)[0]
        sock.connect((ctl_id, _utun_unit(dev)))
        raw_name = sock.getsockopt(socket.SYSPROTO_CONTROL, _UTUN_OPT_IFNAME, 10)
    except OSError:
        sock.close()
        raise
    name = raw_name.rstrip(b"\0").decode()
    print(f"Opened {name}", file=sys.stderr)
    return TunDevice(sock.detach(), name, system)


def _open_bsd(tun_device: Optional[str], system: str) -> TunDevice:
    darwin = _family(system) == "darwin" and hasattr(socket, "PF_SYSTEM")

    if tun_device is not None:
        if darwin and tun_device.startswith("utun"):
            try:
                return _open_utun(tun_device, system)
            except OSError:
                pass
        path = f"/dev/{tun_device}"
        try:
            fd = os.open(path, os.O_RDWR)
        except OSError as exc:
            raise OSError(exc.errno, f"open_tun: {path}: {exc.strerror}") from exc
        print(f"Opened {path}", file=sys.stderr)
        return TunDevice(fd, tun_device, system)

    for i in range(TUN_MAX_TRY):
        path = f"/dev/tun{i}"
        try:
            fd = os.open(path, os.O_RDWR)
        except OSError as exc:
            if exc.errno == errno.ENOENT:
                break
            continue
        print(f"Opened {path}", file=sys.stderr)
        return TunDevice(fd, f"tun{i}", system)

    if darwin:
        print("No tun devices found, trying utun", file=sys.stderr)
        for i in range(TUN_MAX_TRY):
            try:
                return _open_utun(f"utun{i}", system)
            except OSError:
                continue

    raise OSError("open_tun: Failed to open tunneling device")


def open_tun(tun_device: Optional[str] = None) -> TunDevice:
    """Open the named tunnel device, or the first free one.

    Raises OSError when no device can be opened.
    """
    system = sys.platform
    family = _family(system)
    if family == "windows":
        raise OSError("open_tun: TAP adapters are not supported on this platform")
    if family in ("linux", "android"):
        return _open_linux(tun_device, system)
    return _open_bsd(tun_device, system)