# dnstunnel

Pieces for carrying IP traffic inside DNS queries and answers: the DNS
message header, the server-side table of tunnel users, the tun network
device, and a few host helpers.

The package is a library; it ships no command-line programs.

## Modules

### `dnstunnel.dnsheader`

- `DnsHeader` — a dataclass for the fixed 12-byte DNS header. `pack()` returns
  the header in network byte order and raises `ValueError` when a field does
  not fit its bit width; `DnsHeader.unpack(data)` parses the first 12 bytes of
  `data` and raises `ValueError` when fewer are given.
- `RCode` — response codes (`NOERROR` to `REFUSED`).
- `QType` — record types (`A`, `NS`, `CNAME`, `NULL`, `MX`, `TXT`, `SRV`).
- Constants `PROTOCOL_VERSION`, `C_IN` and `HEADER_SIZE`.

### `dnstunnel.user`

`UserTable(my_ip, netbits)` creates up to `USERS` (16) user slots, each with a
tunnel address inside the network given by `my_ip` and `netbits`, skipping the
network address, the broadcast address and the server's own address. The
table supports `len()`, indexing by user id and iteration over `User` entries.

- `find_available_user()` claims a slot that is unused or idle for more than
  60 seconds and returns its id, or `None`.
- `find_user_by_ip(ip)` returns the id of the active, authenticated,
  recently seen user that owns `ip`, or `None`.
- `all_users_waiting_to_send()` is true when no live user could accept another
  packet (a raw UDP user always can; a DNS user can while its outgoing queue
  is empty).
- `switch_codec(userid, encoder)` and `set_conn_type(userid, conn)` change a
  user's settings; unknown ids or connection types are ignored.
- `first_ip()` returns the address of the first slot as a string.

`Connection` names the connection kinds (`RAW_UDP`, `DNS_NULL`).

### `dnstunnel.tun`

- `open_tun(tun_device=None)` opens the named tun device, or the first free
  one, and returns a `TunDevice`. It raises `OSError` when no device can be
  opened. Linux, Android, the BSDs and macOS (including `utun`) are handled;
  Windows TAP adapters are not.
- `TunDevice` is a context manager with `read(size)`, `write(packet)`,
  `set_ip(ip, other_ip, netbits)`, `set_mtu(mtu)`, `uses_header()`,
  `fileno()` and `close()`. Frames passed to `write` and returned by `read`
  always start with a four-byte prefix, whether or not the device uses one.
  `set_ip` and `set_mtu` run `ifconfig`/`route` and raise
  `subprocess.CalledProcessError` when a command fails; `set_mtu` raises
  `ValueError` unless the MTU is above 200 and at most 1500.
- `netmask_from_bits(netbits)` and `ifconfig_commands(if_name, ip, other_ip, netbits, system)`
  build the interface setup commands without running them.

### `dnstunnel.util`

- `parse_resolvconf(text)` and `get_resolvconf_addr(path="/etc/resolv.conf")`
  return the first configured nameserver, or `None`.
- `socket_setrtable(sock, rtable)` selects an OpenBSD routing table; on other
  systems it only prints a notice.

## Example

```python
from dnstunnel.user import UserTable

table = UserTable("10.0.0.1", 27)
print(table.first_ip())          # 10.0.0.2
userid = table.find_available_user()
```

Opening a tun device and setting its address needs root privileges:

```python
from dnstunnel.tun import open_tun

with open_tun(None) as tun:
    tun.set_ip("10.0.0.1", "10.0.0.2", 27)
    tun.set_mtu(1130)
    frame = tun.read(64 * 1024)
```

## What it does not do

There is no tunnel client or server here: nothing encodes data into query
names, builds or parses full DNS messages beyond the header, handles logins,
or runs an event loop. The package provides the parts listed above for such a
program to use.

## Tests

```
pip install .[test]
pytest
```