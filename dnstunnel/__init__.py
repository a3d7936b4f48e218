"""Building blocks for tunnelling IP traffic over DNS: header, users, tun device, host helpers."""

__version__ = "0.1.0"
__all__ = ["dnsheader", "user", "util", "tun"]