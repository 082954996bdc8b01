"""Loopback-only operator surface: rate-limit status / unlock and security events."""
