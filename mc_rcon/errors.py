# mc_rcon/errors.py
"""Exception hierarchy for the RCON client.

Everything derives from RconError. The concrete kinds also derive from the
matching builtin so ``except ConnectionError`` / ``except TimeoutError`` keep
working for callers that don't know about this package.
"""
from __future__ import annotations


class RconError(Exception):
    """Base class for all RCON failures."""


class RconConnectionError(RconError, ConnectionError):
    """Socket-level failure: refused, reset, unreachable."""

    def __init__(self, reason: str, host: str = "", port: int = 0):
        self.reason = reason
        self.host = host
        self.port = port
        where = f" ({host}:{port})" if host else ""
        super().__init__(f"RCON connection error: {reason}{where}")


class ConnectionClosedError(RconConnectionError):
    """The connection went away while a request was still waiting."""

    def __init__(self, reason: str = "connection closed", host: str = "", port: int = 0):
        super().__init__(reason, host, port)


class AuthenticationError(RconError, PermissionError):
    """Server answered the auth packet with id -1."""


class RconTimeoutError(RconError, TimeoutError):
    """A command or the auth handshake ran past its deadline."""

    def __init__(self, what: str, timeout: float):
        self.what = what
        self.timeout = timeout
        super().__init__(f"RCON timeout after {timeout:g}s: {what}")


class ProtocolError(RconError):
    """Byte stream can't be framed into packets any more.

    Attributes:
        data_preview: first 16 bytes of the offending data
    """

    def __init__(self, reason: str, data: bytes = b""):
        self.reason = reason
        self.data_preview = data[:16]
        super().__init__(f"RCON protocol error: {reason}")


class NotReadyError(RconError):
    """send() called before authentication or after disconnect."""
