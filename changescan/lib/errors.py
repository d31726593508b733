"""Structured exception hierarchy for catalog scans.

Per-entity and per-table failures are absorbed by the scheduler and
reported in the scan result; connection failures abort the scan.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

__all__ = [
    "ScanError",
    "UpdateTimeNotFound",
    "CatalogListingFailure",
    "CatalogConnectionFailure",
    "ConfigurationError",
]


class ScanError(Exception):
    """Base exception for all scan errors.

    Provides structured error information for debugging.
    """

    def __init__(
        self,
        message: str,
        *,
        database: Optional[str] = None,
        table: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.message = message
        self.database = database
        self.table = table
        self.details = details or {}
        self.suggestion = suggestion

        parts = [message]

        if database or table:
            parts.insert(0, f"[{database or '?'}@{table or '?'}]")

        if self.details:
            parts.append("\nDetails:")
            parts.extend(f"  {k}: {v}" for k, v in self.details.items())

        if suggestion:
            parts.append(f"\nSuggestion: {suggestion}")

        super().__init__("\n".join(parts) if len(parts) > 1 else message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "database": self.database,
            "table": self.table,
            "details": self.details,
            "suggestion": self.suggestion,
        }


class UpdateTimeNotFound(ScanError):
    """The entity carries no usable update timestamp.

    Raised by update-time providers; the scheduler skips the entity.
    """

    def __init__(
        self,
        message: str,
        *,
        entity: Optional[str] = None,
        cause: Optional[Exception] = None,
        **kwargs: Any,
    ) -> None:
        self.entity = entity
        self.cause = cause

        details = kwargs.pop("details", {})
        if entity:
            details["entity"] = entity
        if cause:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        super().__init__(message, details=details, **kwargs)


class CatalogListingFailure(ScanError):
    """Listing databases, tables or partitions failed for one subtree."""

    def __init__(
        self,
        message: str,
        *,
        cause: Optional[Exception] = None,
        **kwargs: Any,
    ) -> None:
        self.cause = cause

        details = kwargs.pop("details", {})
        if cause:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        super().__init__(message, details=details, **kwargs)


class CatalogConnectionFailure(ScanError):
    """A catalog client lease could not be acquired.

    Fatal for the whole scan: no further catalog calls can be made.
    """

    def __init__(
        self,
        message: str,
        *,
        cause: Optional[Exception] = None,
        **kwargs: Any,
    ) -> None:
        self.cause = cause

        details = kwargs.pop("details", {})
        if cause:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        suggestion = kwargs.pop("suggestion", None)
        if not suggestion:
            suggestion = (
                "Check that the metastore is reachable and that the client "
                "pool is large enough for the configured max_workers."
            )

        super().__init__(message, details=details, suggestion=suggestion, **kwargs)


class ConfigurationError(ScanError):
    """Error in scan configuration."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Any = None,
        **kwargs: Any,
    ) -> None:
        self.field = field
        self.value = value

        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)

        super().__init__(message, details=details, **kwargs)
