"""
Lazy table creation for records.

A ``TableSchema`` holds the SQLAlchemy ``Table`` a record writes to plus any
trigger DDL that must accompany it. Records only call it from the insert
retry path, when the first insert finds the table missing.
"""
from __future__ import annotations

import logging
from typing import Optional, Sequence, Union

from sqlalchemy import Table, text
from sqlalchemy.exc import StatementError
from sqlalchemy.schema import DDLElement

from tablerecord.db.database import Database, classify_error

logger = logging.getLogger(__name__)

TriggerDDL = Union[str, DDLElement]


class TableSchema:
    def __init__(
        self,
        table: Table,
        *,
        triggers: Sequence[TriggerDDL] = (),
        database: Optional[Database] = None,
    ) -> None:
        self.table = table
        self.triggers = list(triggers)
        self.database = database

    @classmethod
    def from_model(cls, model, **kwargs) -> "TableSchema":
        """Build from a declarative model class."""
        return cls(model.__table__, **kwargs)

    @property
    def name(self) -> str:
        return self.table.name

    def bind(self, database: Database) -> "TableSchema":
        self.database = database
        return self

    def _require_database(self) -> Database:
        if self.database is None:
            raise RuntimeError(f"TableSchema for '{self.name}' is not bound to a database")
        return self.database

    def create(self) -> None:
        """Create the table if it does not exist yet."""
        database = self._require_database()
        try:
            with database.transaction() as conn:
                self.table.create(bind=conn, checkfirst=True)
        except StatementError as exc:
            raise classify_error(exc) from exc
        logger.info("Created table %s", self.name)

    def create_triggers(self) -> None:
        database = self._require_database()
        if not self.triggers:
            return
        try:
            with database.transaction() as conn:
                for ddl in self.triggers:
                    conn.execute(text(ddl) if isinstance(ddl, str) else ddl)
        except StatementError as exc:
            raise classify_error(exc) from exc
        logger.info("Created %d trigger(s) for %s", len(self.triggers), self.name)
