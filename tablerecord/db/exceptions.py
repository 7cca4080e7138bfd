"""
Errors raised by records and the connection layer.

Write failures are fatal and carry the driver's code and message; select
failures never reach callers (see ``Record.select``).
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    SCHEMA_MISSING = "schema_missing"
    OTHER = "other"


class StatementExecutionError(Exception):
    """A prepared statement failed inside the driver."""

    def __init__(
        self,
        message: str,
        *,
        code: Any = None,
        kind: ErrorKind = ErrorKind.OTHER,
        original: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.kind = kind
        self.original = original

    @property
    def is_schema_missing(self) -> bool:
        return self.kind is ErrorKind.SCHEMA_MISSING


class RecordError(Exception):
    """Base class for record level failures."""


class PermissionDeniedError(RecordError):
    def __init__(self, operation: str) -> None:
        super().__init__(f"It's not allowed to {operation} data.")
        self.operation = operation


class UnauthorizedColumnError(RecordError):
    def __init__(self, column: str) -> None:
        super().__init__(f"Column '{column}' is not allowed to insert data.")
        self.column = column


class EmptyResultError(RecordError, LookupError):
    """Row-mode field access with no selected rows."""


class WriteFailedError(RecordError):
    def __init__(self, operation: str, code: Any = None, message: str = "") -> None:
        super().__init__(f"[{code}] Error on {operation} data | {message}")
        self.operation = operation
        self.code = code
        self.message = message


class SchemaMissingError(WriteFailedError):
    """The target table is missing and could not be created."""
