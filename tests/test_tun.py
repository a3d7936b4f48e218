import socket
import subprocess
from ipaddress import IPv4Address, ip_network
from unittest import mock

import pytest

from dnstunnel.tun import (
    BSD_HEADER,
    LINUX_HEADER,
    TunDevice,
    ifconfig_commands,
    netmask_from_bits,
)


@pytest.fixture
def pair():
    ours, theirs = socket.socketpair(socket.AF_UNIX, socket.SOCK_DGRAM)
    yield ours, theirs
    ours.close()
    theirs.close()


def make_device(sock, name, system):
    return TunDevice(sock.detach(), name, system)


@pytest.mark.parametrize("bits", range(33))
def test_netmask_has_leading_ones(bits):
    value = int(netmask_from_bits(bits))
    assert bin(value).count("1") == bits
    inverted = (~value) & 0xFFFFFFFF
    assert inverted & (inverted + 1) == 0


def test_netmask_24():
    assert netmask_from_bits(24) == IPv4Address("255.255.255.0")


@pytest.mark.parametrize("bits", [-1, 33])
def test_netmask_out_of_range(bits):
    with pytest.raises(ValueError):
        netmask_from_bits(bits)


def test_ifconfig_linux_single_command():
    cmds = ifconfig_commands("dns0", "10.0.0.1", "10.0.0.2", 27, "linux")
    assert cmds == [
        ["ifconfig", "dns0", "10.0.0.1", "10.0.0.1", "netmask", str(netmask_from_bits(27))]
    ]


def test_ifconfig_freebsd_uses_peer_and_route():
    cmds = ifconfig_commands("tun0", "10.0.0.1", "10.0.0.2", 27, "freebsd13")
    assert cmds[0][3] == "10.0.0.2"
    network = ip_network("10.0.0.1/27", strict=False)
    assert cmds[1] == ["route", "add", str(network), "10.0.0.1"]


def test_ifconfig_openbsd_uses_own_ip_and_route():
    cmds = ifconfig_commands("tun0", "192.168.5.9", "192.168.5.1", 24, "openbsd7")
    assert cmds[0][2] == cmds[0][3] == "192.168.5.9"
    assert len(cmds) == 2
    assert cmds[1][2] == str(ip_network("192.168.5.9/24", strict=False))


def test_ifconfig_windows_netsh():
    cmds = ifconfig_commands("Local Area", "10.0.0.1", None, 27, "win32")
    assert cmds == [
        [
            "netsh", "interface", "ip", "set", "address", "Local Area",
            "static", "10.0.0.1", str(netmask_from_bits(27)),
        ]
    ]


def test_ifconfig_invalid_ip():
    with pytest.raises(ValueError, match="Invalid IP"):
        ifconfig_commands("dns0", "not.an.ip", None, 27, "linux")


def test_linux_write_and_read(pair):
    ours, theirs = pair
    dev = make_device(ours, "dns0", "linux")
    payload = b"\x45\x00 packet body"
    dev.write(b"\xff\xff\xff\xff" + payload)
    assert theirs.recv(100) == LINUX_HEADER + payload
    theirs.send(LINUX_HEADER + payload)
    assert dev.read(100) == LINUX_HEADER + payload
    dev.close()


def test_freebsd_has_no_header(pair):
    ours, theirs = pair
    dev = make_device(ours, "tun0", "freebsd13")
    assert dev.uses_header() is False
    dev.write(b"abcd" + b"data")
    assert theirs.recv(100) == b"data"
    theirs.send(b"incoming")
    assert dev.read(100) == b"\x00\x00\x00\x00incoming"
    dev.close()


def test_openbsd_header(pair):
    ours, theirs = pair
    dev = make_device(ours, "tun0", "openbsd7")
    assert dev.uses_header() is True
    dev.write(b"\x00\x00\x00\x00xyz")
    assert theirs.recv(100) == BSD_HEADER + b"xyz"
    theirs.send(BSD_HEADER + b"reply")
    assert dev.read(100) == BSD_HEADER + b"reply"
    dev.close()


def test_darwin_header_depends_on_name():
    assert TunDevice(-1, "utun3", "darwin").uses_header() is True
    assert TunDevice(-1, "tun0", "darwin").uses_header() is False


def test_write_short_frame_rejected():
    with pytest.raises(ValueError):
        TunDevice(-1, "dns0", "linux").write(b"ab")


def test_close_and_context_manager(pair):
    ours, _ = pair
    with make_device(ours, "dns0", "linux") as dev:
        assert dev.fileno() >= 0
    assert dev.fileno() == -1
    dev.close()
    assert dev.fileno() == -1


@pytest.mark.parametrize("mtu", [200, 1501, 0])
def test_set_mtu_out_of_range(mtu):
    with pytest.raises(ValueError, match="MTU out of range"):
        TunDevice(-1, "dns0", "linux").set_mtu(mtu)


def test_set_mtu_runs_ifconfig():
    dev = TunDevice(-1, "dns0", "linux")
    with mock.patch("dnstunnel.tun.subprocess.run") as run:
        dev.set_mtu(1130)
    ran = run.call_args.args[0]
    expected_prefix = ifconfig_commands("dns0", "10.0.0.1", None, 27, "linux")[0][:2]
    assert ran[:2] == expected_prefix
    assert ran == ["ifconfig", "dns0", "mtu", "1130"]
    assert run.call_args.kwargs["check"] is True


def test_set_ip_runs_all_commands():
    dev = TunDevice(-1, "tun0", "openbsd7")
    with mock.patch("dnstunnel.tun.subprocess.run") as run:
        dev.set_ip("10.0.0.1", "10.0.0.2", 27)
    ran = [call.args[0] for call in run.call_args_list]
    assert ran == ifconfig_commands("tun0", "10.0.0.1", "10.0.0.2", 27, "openbsd7")


def test_set_ip_stops_after_failure():
    dev = TunDevice(-1, "tun0", "openbsd7")
    failure = subprocess.CalledProcessError(1, ["ifconfig"])
    with mock.patch("dnstunnel.tun.subprocess.run", side_effect=failure) as run:
        with pytest.raises(subprocess.CalledProcessError):
            dev.set_ip("10.0.0.1", "10.0.0.2", 27)
    assert run.call_count == 1