"""Typed failures raised across the inscription toolkit."""

from __future__ import annotations


class InscribeError(RuntimeError):
    """Base class for every error surfaced by :mod:`bsv_inscribe`."""


class InsufficientFunds(InscribeError):
    """Raised when the spendable set cannot cover payment plus fee."""

    def __init__(self, required: int, available: int) -> None:
        super().__init__(
            f"Insufficient funds: need {required} sats, only {available} sats available"
        )
        self.required = required
        self.available = available


class SizeLimitExceeded(InscribeError):
    """Raised when a transaction or payload would exceed the ledger size cap."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"Transaction size {size} bytes exceeds limit of {limit} bytes")
        self.size = size
        self.limit = limit


class EncodingError(InscribeError):
    """Raised when a script or push-data field cannot be encoded or decoded."""


class EncryptionError(InscribeError):
    """Raised when content cannot be encrypted for the requested level."""


class DecryptionError(InscribeError):
    """Raised on authentication failure, wrong key, or a malformed envelope."""


class NetworkError(InscribeError):
    """Raised when the ledger service is unreachable or answers garbage."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ReconstructionError(InscribeError):
    """Raised when a chunked payload cannot be reassembled."""

    def __init__(self, message: str, chunk_index: int | None = None, chunk_ref: str | None = None) -> None:
        super().__init__(message)
        self.chunk_index = chunk_index
        self.chunk_ref = chunk_ref


class CooldownActive(InscribeError):
    """Raised when a submission is attempted inside the cooldown window."""

    def __init__(self, remaining: float) -> None:
        super().__init__(f"Please wait {remaining:.1f}s before the next submission")
        self.remaining = remaining


class FeeConvergenceError(InscribeError):
    """Raised when fee re-estimation keeps changing the selected input count."""


class OperationInProgress(InscribeError):
    """Raised when a second operation starts while one is still in flight."""


class ConfigurationError(InscribeError):
    """Raised when configuration is invalid."""
