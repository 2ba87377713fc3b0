"""Exception hierarchy for the mnemo memory subsystem.

Design Principles:
    - All exceptions inherit from MnemoError
    - Exceptions preserve context (original error, timestamps, details)
    - Exceptions are categorized by recoverability

Exception Hierarchy:
    MnemoError (base)
    ├── ConfigurationError (unrecoverable - fix config)
    ├── StorageError (may be recoverable - caller decides)
    │   ├── StoreNotOpenError
    │   ├── DuplicateKeyError
    │   └── DimensionMismatchError
    └── EmbeddingProviderError (recoverable - queue retries)

"Not found" is never an exception in this package: lookups return None
or an empty list.
"""
from datetime import datetime, timezone
from typing import Any, Optional

# ============================================
# Base Exception
# ============================================


class MnemoError(Exception):
    """Base exception for all mnemo errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "DUPLICATE_KEY")
        details: Additional context as a dictionary
        timestamp: When the error occurred
        cause: The original exception that caused this error
        recoverable: Whether this error might be recoverable with retry
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__.upper()
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)
        self.cause = cause
        self.recoverable = recoverable

        if cause:
            self.__cause__ = cause

    def __str__(self) -> str:
        parts = [self.message]
        if self.code:
            parts.insert(0, f"[{self.code}]")
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"({detail_str})")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"details={self.details!r}, "
            f"recoverable={self.recoverable})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "recoverable": self.recoverable,
            "cause": str(self.cause) if self.cause else None,
        }


# ============================================
# Configuration Errors (Unrecoverable)
# ============================================


class ConfigurationError(MnemoError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list[str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )


# ============================================
# Storage Errors
# ============================================


class StorageError(MnemoError):
    """Base class for vector store errors.

    Storage errors are never retried inside this package; they propagate
    to the caller, who decides whether to retry the whole operation.
    """

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("code", "STORAGE_ERROR")
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)


class StoreNotOpenError(StorageError):
    """Raised when an operation is attempted on a closed store."""

    def __init__(self, message: str = "Vector store is not open", **kwargs):
        super().__init__(message, code="STORE_NOT_OPEN", recoverable=False, **kwargs)


class DuplicateKeyError(StorageError):
    """Raised when an insert collides on id or on the (path, line) location."""

    def __init__(
        self,
        message: str = "Embedding record already exists",
        path: Optional[str] = None,
        line: Optional[int] = None,
        record_id: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if path is not None:
            details["path"] = path
        if line is not None:
            details["line"] = line
        if record_id is not None:
            details["id"] = record_id
        super().__init__(
            message,
            code="DUPLICATE_KEY",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.path = path
        self.line = line
        self.record_id = record_id


class DimensionMismatchError(StorageError):
    """Raised when vectors of different dimensionality are mixed."""

    def __init__(self, expected: int, actual: int, **kwargs):
        details = kwargs.pop("details", {})
        details["expected"] = expected
        details["actual"] = actual
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}",
            code="DIMENSION_MISMATCH",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.expected = expected
        self.actual = actual


# ============================================
# Embedding Provider Errors
# ============================================


class EmbeddingProviderError(MnemoError):
    """Raised by embedding provider adapters.

    The embedding queue treats every provider failure as potentially
    transient and applies its retry policy uniformly.
    """

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if provider:
            details["provider"] = provider
        if status_code:
            details["status_code"] = status_code
        kwargs.setdefault("recoverable", True)
        super().__init__(
            message,
            code="EMBEDDING_PROVIDER_ERROR",
            details=details,
            **kwargs,
        )
        self.provider = provider
        self.status_code = status_code


__all__ = [
    "MnemoError",
    "ConfigurationError",
    "StorageError",
    "StoreNotOpenError",
    "DuplicateKeyError",
    "DimensionMismatchError",
    "EmbeddingProviderError",
]
