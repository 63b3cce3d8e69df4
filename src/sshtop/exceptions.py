"""Exception hierarchy for sshtop."""

from __future__ import annotations


class SshtopError(Exception):
    """Base exception for all sshtop errors."""


class ConfigError(SshtopError):
    """Configuration file is missing or cannot be parsed."""


class SampleError(SshtopError):
    """A poll of the remote host failed; no data was produced."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        self.cause = cause
        super().__init__(message)


class ConnectError(SampleError):
    """Host unreachable, connection refused, timed out or handshake failed."""


class AuthError(SampleError):
    """The remote host rejected the credential, or the key could not be used."""


class ExecError(SampleError):
    """A remote command failed or its output stream broke."""
