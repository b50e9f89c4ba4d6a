"""
Exceptions raised by the class record engine.

Expected data gaps (invalid weights, missing exam scores, unknown courses)
are never raised; functions return None or empty results instead.
"""

from typing import Any, Dict, Optional


class ClassRecordError(Exception):
    """Base exception for all class record errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}


class ValidationError(ClassRecordError):
    """Raised when an inbound payload cannot be turned into a record."""

    pass


class ConfigurationError(ClassRecordError):
    """Raised when environment configuration is invalid."""

    pass


class StoreError(ClassRecordError):
    """Raised when a storage call or transaction fails."""

    pass


class StoreTimeoutError(StoreError):
    """Raised when a storage call exceeds its time budget."""

    pass
