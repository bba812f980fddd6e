"""Typed errors surfaced by the wallet mirror services.

Every user-visible failure is one of these kinds. The thin API layer maps
``status_code`` straight onto its HTTP response.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    INVALID_ADDRESS = "invalid_address"
    INVALID_INDEX = "invalid_index"
    INVALID_TIMEFRAME = "invalid_timeframe"
    FETCH_ERROR = "fetch_error"
    PARSE_ERROR = "parse_error"
    RATE_LIMITED = "rate_limited"


class MirrorError(Exception):
    """Base exception for all wallet mirror errors."""

    kind: ErrorKind = ErrorKind.FETCH_ERROR
    status_code: int = 500


class InvalidAddressError(MirrorError):
    """Raised for a malformed pubkey or a signer missing from a transaction."""

    kind = ErrorKind.INVALID_ADDRESS
    status_code = 400


class InvalidPageError(MirrorError):
    """Raised when a ``start-end`` page expression cannot be parsed."""

    kind = ErrorKind.INVALID_INDEX
    status_code = 400


class InvalidTimeframeError(MirrorError):
    """Raised for an unsupported bucket unit or an out-of-bound range."""

    kind = ErrorKind.INVALID_TIMEFRAME
    status_code = 400


class FetchError(MirrorError):
    """Raised when an RPC or HTTP call fails at the transport level."""

    kind = ErrorKind.FETCH_ERROR
    status_code = 500


class AccountNotFoundError(FetchError):
    """Raised when an account the caller asked for does not exist on chain."""

    status_code = 404


class RateLimitedError(FetchError):
    """Raised when an upstream signals HTTP 429 / too many requests."""

    kind = ErrorKind.RATE_LIMITED
    status_code = 429


class ParseError(MirrorError):
    """Raised for malformed responses and binary layout decode failures."""

    kind = ErrorKind.PARSE_ERROR
    status_code = 500


__all__ = [
    "AccountNotFoundError",
    "ErrorKind",
    "FetchError",
    "InvalidAddressError",
    "InvalidPageError",
    "InvalidTimeframeError",
    "MirrorError",
    "ParseError",
    "RateLimitedError",
]
