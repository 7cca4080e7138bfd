"""
ActiveRecord-style access to one logical table.

A ``Record`` carries the table metadata (columns, aliases, joins, write
whitelists), the rows loaded by the last select with a cursor over them, and
three queues of pending writes that only reach the database on ``commit*``.

Typical use::

    users = Record("users", "u", database=db)
    users.set_primary_key("id").set_columns(["id", "name", "email"])
    users.set_columns_allow_insert(["name", "email"])

    users.start_inserting_mode()
    users["name"] = "Ana"
    users.insert().commit_insert()
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Union

from sqlalchemy.sql.expression import ColumnElement, FromClause, Select

from tablerecord.db import statements
from tablerecord.db.database import Database, FetchMode, get_database
from tablerecord.db.exceptions import (
    EmptyResultError,
    PermissionDeniedError,
    SchemaMissingError,
    StatementExecutionError,
    UnauthorizedColumnError,
    WriteFailedError,
)
from tablerecord.db.schemas import Relationship
from tablerecord.db.table_schema import TableSchema
from tablerecord.utils.keys import KeyGenerator, generate_key
from tablerecord.utils.settings import schema_repair_enabled

RelationshipSpec = Union["Record", Relationship, Mapping[str, Any]]


def _row_to_dict(row) -> Dict[str, Any]:
    if isinstance(row, Mapping):
        return dict(row)
    return dict(vars(row))


def _read_field(row, key: str):
    if isinstance(row, Mapping):
        return row[key]
    return getattr(row, key)


def _write_field(row, key: str, value) -> None:
    if isinstance(row, dict):
        row[key] = value
    else:
        setattr(row, key, value)


class Record:
    """One logical table, its loaded rows and its pending writes."""

    allow_select: bool = True
    allow_insert: bool = True
    allow_update: bool = True
    allow_delete: bool = True

    # Version of the model; bump when the table definition changes.
    version: str = "0.0.0"

    def __init__(
        self,
        table: str,
        alias: Optional[str] = None,
        *,
        database: Optional[Database] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._database = database
        self.logger = logger or logging.getLogger(__name__)

        self._table = ""
        self._alias: Optional[str] = None
        self._primary_key: Optional[str] = None
        self._columns: Dict[str, str] = {}
        self._selected_columns: List[str] = []
        self._alias_columns: Dict[str, str] = {}
        self._columns_alias: Dict[str, str] = {}
        self._columns_allow_insert: List[str] = []
        self._columns_allow_update: List[str] = []
        self._relationships: Dict[str, RelationshipSpec] = {}
        self._table_schema: Optional[TableSchema] = None
        self._key_generator: KeyGenerator = generate_key

        self._selected_data: list = []
        self._inserting_mode = False
        self._inserting_data: Dict[str, Any] = {}
        self._pending_inserts: List[Dict[str, Any]] = []
        self._pending_updates: List[Dict[str, Any]] = []
        self._pending_deletes: List[Any] = []

        self._fetch_mode = FetchMode.ASSOC
        self._page = 0
        self._rows_limit = 0
        self._offset = 0
        self._current_index = 0
        self._max_index = 0
        self._committed = False
        self._limited_select = True

        self._query_select: Optional[Select] = None
        self._query_insert = None
        self._insert_columns: List[str] = []
        self._query_update = None
        self._update_columns: List[str] = []
        self._query_delete = None

        self.set_table_name(table, alias)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._table} rows={self._max_index} index={self._current_index}>"

    # -- field access ---------------------------------------------------------

    def __getitem__(self, key: str):
        return self.get(key)

    def __setitem__(self, key: str, value) -> None:
        self.set(key, value)

    def __iter__(self) -> Iterator["Record"]:
        """Yield this record positioned on each loaded row in turn."""
        for index in range(self._max_index):
            self._current_index = index
            yield self
        self._current_index = 0

    def _check_insert_column(self, key: str) -> None:
        if key not in self._columns_allow_insert:
            raise UnauthorizedColumnError(key)

    def _require_current_data(self):
        if self.is_empty():
            raise EmptyResultError(f"No selected rows in {self._table}")
        return self._selected_data[self._current_index]

    def get(self, key: str):
        if self._inserting_mode:
            self._check_insert_column(key)
            return self._inserting_data.get(key)
        return _read_field(self._require_current_data(), key)

    def set(self, key: str, value) -> "Record":
        if self._inserting_mode:
            self._check_insert_column(key)
            self._inserting_data[key] = value
            return self
        _write_field(self._require_current_data(), key, value)
        return self

    # -- metadata -------------------------------------------------------------

    def get_database(self) -> Database:
        if self._database is None:
            return get_database()
        return self._database

    def set_database(self, database: Database) -> "Record":
        self._database = database
        return self

    def get_table_name(self) -> str:
        return self._table

    def get_table_alias(self) -> Optional[str]:
        return self._alias

    def set_table_name(self, table: str, alias: Optional[str] = None) -> "Record":
        self._table = table
        if alias:
            self.set_table_alias(alias)
        return self

    def set_table_alias(self, alias: str) -> "Record":
        self._alias = alias
        return self

    @property
    def source_alias(self) -> str:
        """Name the table is referenced by inside statements."""
        return self._alias or self._table

    def set_primary_key(self, primary_key: str) -> "Record":
        self._primary_key = primary_key
        return self

    def get_primary_key(self) -> Optional[str]:
        return self._primary_key

    def set_columns(self, columns: Union[Sequence[str], Mapping[str, str]]) -> "Record":
        """Set the columns of the table.

        Accepts a list of column names, or a mapping of logical name to
        physical column reference (``{"group": "g.name"}``). Order is the
        select order.
        """
        if isinstance(columns, Mapping):
            self._columns = dict(columns)
        else:
            self._columns = {name: name for name in columns}
        return self

    def get_columns(self) -> Dict[str, str]:
        return dict(self._columns)

    def get_selected_columns(self) -> List[str]:
        return list(self._selected_columns)

    def set_columns_alias(self, columns_alias: Mapping[str, str]) -> "Record":
        """Set aliases for columns: key = alias, value = column name."""
        self._alias_columns = dict(columns_alias)
        self._columns_alias = {column: alias for alias, column in self._alias_columns.items()}
        return self

    def get_columns_alias(self) -> Dict[str, str]:
        return dict(self._alias_columns)

    def set_columns_allow_insert(self, columns: Sequence[str]) -> "Record":
        self._columns_allow_insert = list(columns)
        return self

    def get_columns_allow_insert(self) -> List[str]:
        return list(self._columns_allow_insert)

    def set_columns_allow_update(self, columns: Sequence[str]) -> "Record":
        self._columns_allow_update = list(columns)
        return self

    def get_columns_allow_update(self) -> List[str]:
        return list(self._columns_allow_update)

    def set_columns_relationships(self, relationships: Mapping[str, RelationshipSpec]) -> "Record":
        """Set the joins of the table.

        key = local column name, value = either another ``Record`` (LEFT JOIN on
        its primary key) or ``{"type": "left"|"inner", "table": ..., "alias": ...,
        "condition": ...}``.
        """
        self._relationships = dict(relationships)
        return self

    def add_column_relationship(self, column: str, relationship: RelationshipSpec) -> "Record":
        self._relationships[column] = relationship
        return self

    def get_columns_relationships(self) -> Dict[str, RelationshipSpec]:
        return dict(self._relationships)

    def set_rows_limit(self, rows_limit: int) -> "Record":
        self._rows_limit = rows_limit
        return self

    def get_rows_limit(self) -> Optional[int]:
        return self._rows_limit or None

    def set_offset(self, offset: int) -> "Record":
        self._offset = offset
        return self

    def get_offset(self) -> Optional[int]:
        return self._offset or None

    def set_page(self, page: int) -> "Record":
        self._page = page
        return self

    def get_page(self) -> int:
        return self._page

    def set_fetch_mode(self, fetch_mode: Union[FetchMode, str]) -> "Record":
        self._fetch_mode = FetchMode(fetch_mode)
        return self

    def get_fetch_mode(self) -> FetchMode:
        return self._fetch_mode

    def set_committed(self, committed: bool = True) -> "Record":
        self._committed = committed
        return self

    def is_committed(self) -> bool:
        return self._committed

    def set_limited_select(self, limited_select: bool = True) -> "Record":
        self._limited_select = limited_select
        return self

    def is_limited_select(self) -> bool:
        return self._limited_select

    def set_key_generator(self, generator: KeyGenerator) -> "Record":
        self._key_generator = generator
        return self

    def set_table_schema(self, table_schema: TableSchema) -> "Record":
        self._table_schema = table_schema
        return self

    def build_table_schema(self) -> Optional[TableSchema]:
        """Table definition used to create the table on first insert.

        Subclasses override this; it is about table creation, not the
        selected columns.
        """
        return None

    def get_table_schema(self) -> Optional[TableSchema]:
        if self._table_schema is None:
            self._table_schema = self.build_table_schema()
        return self._table_schema

    def _label_for(self, logical: str, physical: str) -> str:
        return self._columns_alias.get(physical) or self._columns_alias.get(logical) or logical

    def _row_by_column(self, row) -> Dict[str, Any]:
        """Key a row by logical column name, undoing select aliases."""
        physical_to_logical = {physical: logical for logical, physical in self._columns.items()}
        data = {}
        for key, value in _row_to_dict(row).items():
            name = self._alias_columns.get(key, key)
            data[physical_to_logical.get(name, name)] = value
        return data

    # -- select ---------------------------------------------------------------

    def get_query_select(self) -> Select:
        if self._query_select is None:
            self._query_select = self.prepare_query_select()
        return self._query_select

    def _qualify(self, physical: str) -> str:
        # bare names belong to this table; joined tables may share them
        if "." in physical or "(" in physical:
            return physical
        return f"{self.source_alias}.{physical}"

    def _prepare_columns_query_select(self) -> List[tuple]:
        return [
            (self._qualify(physical), self._label_for(logical, physical))
            for logical, physical in self._columns.items()
        ]

    def _add_join_from_record(self, source: FromClause, column: str, record: "Record") -> FromClause:
        """LEFT JOIN ``record`` on this table's ``column`` = its primary key."""
        column_local = f"{self.source_alias}.{column}"
        column_reference = f"{record.source_alias}.{record.get_primary_key()}"
        target = statements.table_ref(record.get_table_name(), record.get_table_alias())
        condition = statements.equals(column_local, column_reference)
        return statements.join_source(source, target, condition, outer=True)

    def _prepare_joins_query_select(self, source: FromClause) -> FromClause:
        for column, relationship in self._relationships.items():
            if isinstance(relationship, Record):
                source = self._add_join_from_record(source, column, relationship)
                continue
            if not isinstance(relationship, Relationship):
                relationship = Relationship.model_validate(relationship)
            target = statements.table_ref(relationship.table, relationship.alias)
            source = statements.join_source(
                source, target, relationship.condition, outer=relationship.is_outer
            )
        return source

    def select_conditions(self) -> ColumnElement:
        """Conditions always applied to the select query.

        Override to narrow the visible rows, e.g. only valid values, only one
        type of user, or rows that are not soft-deleted.
        """
        return statements.tautology()

    def prepare_query_select(self) -> Select:
        source = statements.table_ref(self._table, self._alias)
        source = self._prepare_joins_query_select(source)
        return statements.build_select(
            source, self._prepare_columns_query_select(), self.select_conditions()
        )

    def find_by_id(self, id) -> "Record":
        """Load the single row whose primary key equals ``id``."""
        reference = f"{self.source_alias}.{self._primary_key}"
        return self._run_select(statements.with_primary_key(self.get_query_select(), reference, id))

    def select(self) -> "Record":
        return self._run_select(self.get_query_select())

    def _run_select(self, stmt: Select) -> "Record":
        if not self.allow_select:
            raise PermissionDeniedError("select")
        if self._limited_select:
            stmt = statements.paginate(stmt, self.get_rows_limit(), self.get_offset())

        stm = self.get_database().prepare(stmt)
        try:
            stm.execute()
        except StatementExecutionError as exc:
            self.clear_selected_data()
            self._record_exception(exc, "select")
            return self

        return self.load_data(stm.fetch_all(self._fetch_mode))

    def clear_selected_data(self) -> "Record":
        self._selected_data = []
        self._current_index = 0
        self._max_index = 0
        return self

    def load_data(self, data: Sequence) -> "Record":
        """Load rows into the record, replacing any previous rows.

        Each item is one row, a dict keyed by column (or alias) or an object
        with those attributes.
        """
        self.clear_selected_data()
        if not data:
            return self

        self._selected_data = list(data)
        self._selected_columns = list(_row_to_dict(self._selected_data[0]).keys())
        self._max_index = len(self._selected_data)
        return self

    # -- cursor ---------------------------------------------------------------

    def next(self) -> Optional["Record"]:
        """Move to the next row; past the last row rewinds and returns None."""
        self._current_index += 1
        if self._current_index >= self.num_selected_rows():
            self._current_index = 0
            return None
        return self

    def prev(self) -> Optional["Record"]:
        """Move to the previous row; before the first row returns None."""
        self._current_index -= 1
        if self._current_index < 0:
            self._current_index = 0
            return None
        return self

    def next_page(self) -> Optional["Record"]:
        self.set_page(self._page + 1)
        self.set_offset(self._rows_limit * self._page)
        self.select()

        if self.is_empty():
            self._page = 0
            self._offset = 0
            return None
        return self

    def get_current_data(self):
        if self.is_empty():
            return None
        return self._selected_data[self._current_index]

    def get_current_index(self) -> int:
        return self._current_index

    def num_selected_rows(self) -> int:
        return self._max_index

    def is_empty(self) -> bool:
        return self.num_selected_rows() == 0

    # -- inserting mode -------------------------------------------------------

    def set_inserting_mode(self, inserting_mode: bool = True) -> "Record":
        self._inserting_mode = inserting_mode
        return self

    def start_inserting_mode(self) -> "Record":
        return self.set_inserting_mode(True)

    def stop_inserting_mode(self) -> "Record":
        return self.set_inserting_mode(False)

    def is_inserting_mode(self) -> bool:
        return self._inserting_mode

    # -- pending writes -------------------------------------------------------

    @property
    def pending_inserts(self) -> List[Dict[str, Any]]:
        return [dict(row) for row in self._pending_inserts]

    @property
    def pending_updates(self) -> List[Dict[str, Any]]:
        return [dict(row) for row in self._pending_updates]

    @property
    def pending_deletes(self) -> List[Any]:
        return list(self._pending_deletes)

    def has_pending_writes(self) -> bool:
        return bool(self._pending_inserts or self._pending_updates or self._pending_deletes)

    def _record_exception(self, exc: Exception, operation: str) -> None:
        self.logger.error("Error on %s for table %s: %s", operation, self._table, exc, exc_info=exc)

    # -- insert ---------------------------------------------------------------

    def insert(self, data: Optional[Mapping[str, Any]] = None) -> "Record":
        """Queue a row for insertion.

        Without ``data`` the row built in inserting mode is queued and the
        staging buffer cleared.
        """
        if not self._inserting_data and not data:
            return self

        if not data:
            self._pending_inserts.append(dict(self._inserting_data))
            self._inserting_data = {}
            return self

        self._pending_inserts.append(dict(data))
        return self

    def insert_from_current_data(self) -> "Record":
        return self.insert(self._row_by_column(self._require_current_data()))

    def get_query_insert(self):
        """INSERT shaped by the first pending row; columns stay fixed afterwards."""
        if self._query_insert is None:
            columns = [name for name in self._pending_inserts[0] if name != self._primary_key]
            self._insert_columns = columns + [self._primary_key]
            self._query_insert = statements.build_insert(self._table, self._insert_columns)
        return self._query_insert

    def _insert_params(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        params = {name: row.get(name, "") for name in self._insert_columns if name != self._primary_key}
        params[self._primary_key] = self._key_generator()
        return params

    def commit_insert(self) -> "Record":
        return self._commit_insert(repair_schema=True)

    def _commit_insert(self, *, repair_schema: bool) -> "Record":
        if not self.allow_insert:
            raise PermissionDeniedError("insert")

        if not self._pending_inserts:
            return self

        query = self.get_query_insert()
        params = [self._insert_params(row) for row in self._pending_inserts]
        stm = self.get_database().prepare(query)

        try:
            stm.execute(params)
        except StatementExecutionError as exc:
            self._record_exception(exc, "insert")
            if exc.is_schema_missing:
                if repair_schema and self._can_repair_schema():
                    try:
                        self._repair_schema()
                    except StatementExecutionError as repair_exc:
                        self._record_exception(repair_exc, "create table")
                        raise SchemaMissingError("insert", repair_exc.code, repair_exc.message) from repair_exc
                    return self._commit_insert(repair_schema=False)
                raise SchemaMissingError("insert", exc.code, exc.message) from exc
            raise WriteFailedError("insert", exc.code, exc.message) from exc

        self._pending_inserts = []
        return self

    def _can_repair_schema(self) -> bool:
        return schema_repair_enabled() and self.get_table_schema() is not None

    def _repair_schema(self) -> None:
        table_schema = self.get_table_schema()
        if table_schema.database is None:
            table_schema.bind(self.get_database())
        self.logger.warning("Table %s does not exist; creating it and its triggers", self._table)
        table_schema.create()
        table_schema.create_triggers()

    # -- update ---------------------------------------------------------------

    def update(self) -> "Record":
        """Queue a snapshot of the current row for update."""
        self._pending_updates.append(_row_to_dict(self._require_current_data()))
        return self

    def get_query_update(self):
        if self._query_update is None:
            self._update_columns = [name for name in self._columns_allow_update if name != self._primary_key]
            self._query_update = statements.build_update(self._table, self._update_columns, self._primary_key)
        return self._query_update

    def _update_params(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        data = self._row_by_column(row)
        params = {
            f"{statements.SET_PARAM_PREFIX}{name}": data[name]
            for name in self._update_columns
            if name in data
        }
        params[statements.PRIMARY_KEY_PARAM] = data.get(self._primary_key)
        return params

    def commit_update(self) -> "Record":
        """Apply queued updates in one transaction; whitelisted columns only.

        Every column in the update whitelist is part of the SET clause, so each
        staged row must carry all of them. A row missing one fails the whole
        call with ``WriteFailedError`` and the queue is kept.
        """
        if not self.allow_update:
            raise PermissionDeniedError("update")

        if not self._pending_updates:
            return self

        query = self.get_query_update()
        database = self.get_database()

        try:
            with database.transaction():
                for row in self._pending_updates:
                    database.prepare(query).execute(self._update_params(row))
        except StatementExecutionError as exc:
            self._record_exception(exc, "update")
            raise WriteFailedError("update", exc.code, exc.message) from exc

        self._pending_updates = []
        return self

    # -- delete ---------------------------------------------------------------

    def delete(self) -> "Record":
        """Queue the primary key of the current row for deletion."""
        row = self._row_by_column(self._require_current_data())
        self._pending_deletes.append(row[self._primary_key])
        return self

    def get_query_delete(self):
        if self._query_delete is None:
            self._query_delete = statements.build_delete(self._table, self._primary_key)
        return self._query_delete

    def commit_delete(self) -> "Record":
        if not self.allow_delete:
            raise PermissionDeniedError("delete")

        if not self._pending_deletes:
            return self

        query = self.get_query_delete()
        database = self.get_database()

        for key in self._pending_deletes:
            try:
                database.prepare(query).execute({statements.PRIMARY_KEY_PARAM: key})
            except StatementExecutionError as exc:
                self._record_exception(exc, "delete")
                raise WriteFailedError("delete", exc.code, exc.message) from exc

        self._pending_deletes = []
        return self

    # -- commit ---------------------------------------------------------------

    def commit(self) -> "Record":
        """Commit inserts, then updates, then deletes.

        Each stage commits on its own; a failing stage does not undo the
        stages before it.
        """
        self.commit_insert()
        self.commit_update()
        self.commit_delete()
        return self.set_committed(True)
