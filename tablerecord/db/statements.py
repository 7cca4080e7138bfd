"""
Statement construction helpers over SQLAlchemy Core.

Records describe tables with plain strings (table names, aliases, physical
column references such as ``u.name`` and textual join conditions). These
helpers turn that metadata into lightweight ``table()`` / ``literal_column()``
constructs so no declarative model is required to query a table.
"""
from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import (
    bindparam,
    column,
    delete,
    insert,
    literal_column,
    select,
    table,
    text,
    true,
    update,
)
from sqlalchemy.sql.expression import ColumnElement, FromClause, Select

PRIMARY_KEY_PARAM = "pk_key"
SET_PARAM_PREFIX = "set_"


def table_ref(name: str, alias: Optional[str] = None) -> FromClause:
    source = table(name)
    if alias:
        return source.alias(alias)
    return source


def qualified(alias: str, column_name: str) -> ColumnElement:
    return literal_column(f"{alias}.{column_name}")


def select_columns(columns: Sequence[Tuple[str, str]]) -> List[ColumnElement]:
    """Build labelled select columns from ``(physical reference, label)`` pairs."""
    return [literal_column(reference).label(label) for reference, label in columns]


def join_source(
    source: FromClause,
    target: FromClause,
    condition,
    *,
    outer: bool = True,
) -> FromClause:
    if isinstance(condition, str):
        condition = text(condition)
    return source.join(target, condition, isouter=outer)


def equals(left: str, right: str) -> ColumnElement:
    return literal_column(left) == literal_column(right)


def tautology() -> ColumnElement:
    return true()


def build_select(source: FromClause, columns: Sequence[Tuple[str, str]], condition=None) -> Select:
    stmt = select(*select_columns(columns)).select_from(source)
    if condition is not None:
        stmt = stmt.where(condition)
    return stmt


def with_primary_key(stmt: Select, reference: str, value) -> Select:
    """Narrow ``stmt`` to the row whose primary key equals ``value``."""
    return stmt.where(literal_column(reference) == bindparam(PRIMARY_KEY_PARAM, value))


def paginate(stmt: Select, limit: Optional[int], offset: Optional[int]) -> Select:
    if limit:
        stmt = stmt.limit(limit)
    if offset:
        stmt = stmt.offset(offset)
    return stmt


def build_insert(table_name: str, columns: Iterable[str]):
    target = table(table_name, *[column(name) for name in columns])
    return insert(target)


def build_update(table_name: str, set_columns: Sequence[str], primary_key: str):
    """UPDATE limited to one row: SET only ``set_columns``, keyed by primary key."""
    target = table(table_name, *[column(name) for name in (*set_columns, primary_key)])
    values = {name: bindparam(f"{SET_PARAM_PREFIX}{name}") for name in set_columns}
    return (
        update(target)
        .where(target.c[primary_key] == bindparam(PRIMARY_KEY_PARAM))
        .values(values)
        .with_dialect_options(mysql_limit=1)
    )


def build_delete(table_name: str, primary_key: str):
    # keyed by primary key, so at most one row is affected
    target = table(table_name, column(primary_key))
    return delete(target).where(target.c[primary_key] == bindparam(PRIMARY_KEY_PARAM))
