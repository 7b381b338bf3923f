"""Proxy client components: configuration, DNS encoding, TUN settings, emergency mode, SOCKS5 and a management CLI."""

__version__ = "0.2.0"

__all__ = ["config", "doh", "tun", "emergency", "socks5", "cli"]