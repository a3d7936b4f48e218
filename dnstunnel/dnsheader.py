"""DNS message header and the protocol constants the tunnel relies on."""

from __future__ import annotations

import struct
from dataclasses import dataclass, fields
from enum import IntEnum

__all__ = [
    "C_IN",
    "HEADER_SIZE",
    "PROTOCOL_VERSION",
    "DnsHeader",
    "QType",
    "RCode",
]

#: Version of the tunnel's network protocol.
PROTOCOL_VERSION = 0x00000502

#: The Internet class.
C_IN = 1

#: Size of a packed DNS header in bytes.
HEADER_SIZE = 12

_HEADER = struct.Struct("!HBBHHHH")

_FIELD_BITS = {
    "id": 16,
    "qr": 1,
    "opcode": 4,
    "aa": 1,
    "tc": 1,
    "rd": 1,
    "ra": 1,
    "z": 1,
    "ad": 1,
    "cd": 1,
    "rcode": 4,
    "qdcount": 16,
    "ancount": 16,
    "nscount": 16,
    "arcount": 16,
}


class RCode(IntEnum):
    """DNS response codes."""

    NOERROR = 0
    FORMERR = 1
    SERVFAIL = 2
    NXDOMAIN = 3
    NOTIMP = 4
    REFUSED = 5


class QType(IntEnum):
    """DNS record types used by the tunnel."""

    A = 1
    NS = 2
    CNAME = 5
    NULL = 10
    MX = 15
    TXT = 16
    SRV = 33


@dataclass
class DnsHeader:
    """The fixed twelve-byte header at the start of every DNS message."""

    id: int = 0
    qr: int = 0
    opcode: int = 0
    aa: int = 0
    tc: int = 0
    rd: int = 0
    ra: int = 0
    z: int = 0
    ad: int = 0
    cd: int = 0
    rcode: int = 0
    qdcount: int = 0
    ancount: int = 0
    nscount: int = 0
    arcount: int = 0

    def pack(self) -> bytes:
        """Return the header in network byte order.

        Raises ValueError if a field does not fit its bit width.
        """
        for f in fields(self):
            value = getattr(self, f.name)
            bits = _FIELD_BITS[f.name]
            if not 0 <= value < (1 << bits):
                raise ValueError(f"{f.name}={value} does not fit in {bits} bits")
        flags_high = (
            (self.qr << 7) | (self.opcode << 3) | (self.aa << 2) | (self.tc << 1) | self.rd
        )
        flags_low = (
            (self.ra << 7) | (self.z << 6) | (self.ad << 5) | (self.cd << 4) | self.rcode
        )
        return _HEADER.pack(
            self.id,
            flags_high,
            flags_low,
            self.qdcount,
            self.ancount,
            self.nscount,
            self.arcount,
        )

    @classmethod
    def unpack(cls, data: bytes) -> "DnsHeader":
        """Parse the header from the first twelve bytes of ``data``."""
        if len(data) < HEADER_SIZE:
            raise ValueError(
                f"DNS header needs {HEADER_SIZE} bytes, got {len(data)}"
            )
        ident, high, low, qd, an, ns, ar = _HEADER.unpack_from(data)
        return cls(
            id=ident,
            qr=(high >> 7) & 1,
            opcode=(high >> 3) & 0xF,
            aa=(high >> 2) & 1,
            tc=(high >> 1) & 1,
            rd=high & 1,
            ra=(low >> 7) & 1,
            z=(low >> 6) & 1,
            ad=(low >> 5) & 1,
            cd=(low >> 4) & 1,
            rcode=low & 0xF,
            qdcount=qd,
            ancount=an,
            nscount=ns,
            arcount=ar,
        )