"""
Database engine and statement execution.

Builds the SQLAlchemy engine from environment configuration with a test
fallback (SQLite in-memory) and wraps it in ``Database``, the connection
provider records prepare and execute their statements against.
"""
from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from enum import Enum
from types import SimpleNamespace
from typing import Any, Dict, Generator, List, Mapping, Optional, Sequence, Union

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import StatementError
from sqlalchemy.pool import StaticPool

from tablerecord.db.exceptions import ErrorKind, StatementExecutionError
from tablerecord.utils.settings import echo_sql

logger = logging.getLogger(__name__)

# undefined_table (PostgreSQL) and base table not found (ANSI / MySQL)
SCHEMA_MISSING_SQLSTATES = frozenset({"42P01", "42S02"})
MYSQL_NO_SUCH_TABLE = 1146
SQLITE_NO_SUCH_TABLE = "no such table"

Params = Union[Mapping[str, Any], Sequence[Mapping[str, Any]]]


class FetchMode(str, Enum):
    """Shape of each fetched row."""
    ASSOC = "assoc"
    OBJECT = "object"


def _get_database_url() -> str:
    # If DATABASE_URL is explicitly set, use it
    if os.getenv("DATABASE_URL"):
        return os.getenv("DATABASE_URL")

    db_user = os.getenv("POSTGRES_USER")
    db_password = os.getenv("POSTGRES_PASSWORD")
    db_host = os.getenv("POSTGRES_HOST")
    db_port = os.getenv("POSTGRES_PORT")
    db_name = os.getenv("POSTGRES_DB")

    if not all([db_user, db_password, db_host, db_port, db_name]):
        missing = []
        if not db_user: missing.append("POSTGRES_USER")
        if not db_password: missing.append("POSTGRES_PASSWORD")
        if not db_host: missing.append("POSTGRES_HOST")
        if not db_port: missing.append("POSTGRES_PORT")
        if not db_name: missing.append("POSTGRES_DB")
        raise ValueError(f"Missing required database environment variables: {', '.join(missing)}")

    return f"postgresql://{db_user}:{db_password}@{db_host}:{db_port}/{db_name}"


def _is_pytest_runtime() -> bool:
    """Best-effort detection that we're executing under pytest."""
    if os.getenv("PYTEST_RUNNING") == "1":
        return True
    if "PYTEST_CURRENT_TEST" in os.environ:
        return True
    return "pytest" in sys.modules


def _engine_kwargs(url: str) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url:
            # schema must persist across connections
            kwargs["poolclass"] = StaticPool
    if echo_sql():
        kwargs["echo"] = True
    return kwargs


def resolve_database_url() -> str:
    """Return the configured URL.

    Order: TABLERECORD_TEST_DB, then DATABASE_URL / POSTGRES_* components.
    Under pytest with nothing configured an in-memory SQLite is used.
    """
    explicit_test_db = os.getenv("TABLERECORD_TEST_DB")
    if explicit_test_db:
        return explicit_test_db
    try:
        return _get_database_url()
    except ValueError:
        if _is_pytest_runtime():
            return "sqlite+pysqlite:///:memory:"
        raise


def _error_code(exc: StatementError) -> Any:
    orig = getattr(exc, "orig", None)
    if orig is None:
        return None
    for attr in ("pgcode", "sqlstate"):
        code = getattr(orig, attr, None)
        if code:
            return code
    args = getattr(orig, "args", ())
    if args and isinstance(args[0], int):
        return args[0]
    return getattr(orig, "sqlite_errorname", None)


def _has_driver_code(code: Any) -> bool:
    if code is None:
        return False
    return not (isinstance(code, str) and code.startswith("SQLITE_"))


def classify_error(exc: StatementError) -> StatementExecutionError:
    """Translate a SQLAlchemy failure into a structured execution error."""
    orig = getattr(exc, "orig", None)
    message = str(orig) if orig is not None else str(exc)
    code = _error_code(exc)
    kind = ErrorKind.OTHER
    if _has_driver_code(code):
        if code in SCHEMA_MISSING_SQLSTATES or code == MYSQL_NO_SUCH_TABLE:
            kind = ErrorKind.SCHEMA_MISSING
    elif SQLITE_NO_SUCH_TABLE in message.lower():
        # sqlite reports every missing object as SQLITE_ERROR
        kind = ErrorKind.SCHEMA_MISSING
    return StatementExecutionError(message, code=code, kind=kind, original=exc)


class PreparedStatement:
    """A statement bound to a database, executed on demand."""

    def __init__(self, database: "Database", statement) -> None:
        self.database = database
        self.statement = statement
        self.rowcount: int = -1
        self._rows: List[Dict[str, Any]] = []

    def execute(self, params: Optional[Params] = None) -> "PreparedStatement":
        """Run the statement; a list of parameter dicts executes as one batch."""
        if isinstance(params, Sequence) and not isinstance(params, (str, bytes)):
            params = [dict(p) for p in params]
        try:
            with self.database.transaction() as conn:
                if params is None:
                    result = conn.execute(self.statement)
                else:
                    result = conn.execute(self.statement, params)
                self._rows = [dict(row) for row in result.mappings()] if result.returns_rows else []
                self.rowcount = result.rowcount
        except StatementError as exc:
            raise classify_error(exc) from exc
        logger.debug("Executed %s (%s rows)", type(self.statement).__name__, self.rowcount)
        return self

    def fetch_all(self, fetch_mode: FetchMode = FetchMode.ASSOC) -> list:
        if FetchMode(fetch_mode) is FetchMode.OBJECT:
            return [SimpleNamespace(**row) for row in self._rows]
        return [dict(row) for row in self._rows]


class Database:
    """
    Connection provider shared by records.

    Every execution runs inside ``transaction()``, which commits on success and
    rolls back on failure. Executions issued while a transaction is already
    open join it.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._connection: Optional[Connection] = None

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "Database":
        options = _engine_kwargs(url)
        options.update(kwargs)
        return cls(create_engine(url, **options))

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @contextmanager
    def transaction(self) -> Generator[Connection, None, None]:
        if self._connection is not None:
            yield self._connection
            return
        with self.engine.begin() as conn:
            self._connection = conn
            try:
                yield conn
            finally:
                self._connection = None

    def prepare(self, statement) -> PreparedStatement:
        return PreparedStatement(self, statement)

    def query(self, statement, params: Optional[Params] = None) -> PreparedStatement:
        """Prepare and execute immediately."""
        return self.prepare(statement).execute(params)

    def dispose(self) -> None:
        self.engine.dispose()


# -- module default -------------------------------------------------------------

_default_database: Optional[Database] = None


def get_database(url: Optional[str] = None) -> Database:
    """Return (and lazily create) the module-level Database."""
    global _default_database
    if _default_database is None:
        _default_database = Database.from_url(url or resolve_database_url())
    return _default_database


def reset_database() -> None:
    """Dispose and discard the module-level Database (useful in tests)."""
    global _default_database
    if _default_database is not None:
        _default_database.dispose()
        _default_database = None
