"""Persistence layer: connection provider, statement helpers and records."""

from tablerecord.db.database import Database, FetchMode, PreparedStatement, get_database, reset_database
from tablerecord.db.exceptions import (
    EmptyResultError,
    ErrorKind,
    PermissionDeniedError,
    RecordError,
    SchemaMissingError,
    StatementExecutionError,
    UnauthorizedColumnError,
    WriteFailedError,
)
from tablerecord.db.record import Record
from tablerecord.db.schemas import Relationship
from tablerecord.db.table_schema import TableSchema

__all__ = [
    "Database",
    "EmptyResultError",
    "ErrorKind",
    "FetchMode",
    "PermissionDeniedError",
    "PreparedStatement",
    "Record",
    "RecordError",
    "Relationship",
    "SchemaMissingError",
    "StatementExecutionError",
    "TableSchema",
    "UnauthorizedColumnError",
    "WriteFailedError",
    "get_database",
    "reset_database",
]
