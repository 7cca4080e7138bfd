import pytest
from sqlalchemy import Column, MetaData, String, Table, create_engine, insert, select
from sqlalchemy.pool import StaticPool

from tablerecord.db import Database, Record, TableSchema
from tablerecord.utils.settings import refresh_settings_cache

_SETTING_ENV_VARS = (
    "TABLERECORD_ECHO_SQL",
    "TABLERECORD_SCHEMA_REPAIR_ENABLED",
    "TABLERECORD_KEY_LENGTH",
)


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch):
    """Clear env + cached settings for each test to avoid cross-contamination."""
    for env_name in _SETTING_ENV_VARS:
        monkeypatch.delenv(env_name, raising=False)
    refresh_settings_cache()
    yield
    refresh_settings_cache()


@pytest.fixture
def engine():
    # In-memory SQLite with StaticPool so the schema persists across connections
    eng = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture
def database(engine):
    return Database(engine)


@pytest.fixture
def metadata():
    return MetaData()


@pytest.fixture
def users_table(metadata):
    return Table(
        "users",
        metadata,
        Column("id", String(40), primary_key=True),
        Column("name", String(100), nullable=False),
        Column("email", String(255)),
        Column("team_id", String(40), nullable=True),
        Column("deleted_at", String(40), nullable=True),
    )


@pytest.fixture
def teams_table(metadata):
    return Table(
        "teams",
        metadata,
        Column("id", String(40), primary_key=True),
        Column("title", String(100)),
    )


@pytest.fixture
def users_schema(users_table, database):
    return TableSchema(users_table, database=database)


@pytest.fixture
def create_tables(metadata, engine, users_table, teams_table):
    metadata.create_all(bind=engine)
    return metadata


@pytest.fixture
def seed(database, create_tables):
    """Insert raw rows into a table, bypassing records."""
    def _seed(table_name: str, *rows):
        table = create_tables.tables[table_name]
        with database.transaction() as conn:
            conn.execute(insert(table), [dict(row) for row in rows])
    return _seed


@pytest.fixture
def fetch_rows(database, metadata):
    """Read a table back as a list of dicts ordered by primary key."""
    def _fetch(table_name: str):
        table = metadata.tables[table_name]
        with database.transaction() as conn:
            result = conn.execute(select(table).order_by(table.c.id))
            return [dict(row) for row in result.mappings()]
    return _fetch


@pytest.fixture
def users(database):
    return (
        Record("users", "u", database=database)
        .set_primary_key("id")
        .set_columns(["id", "name", "email"])
        .set_columns_allow_insert(["name", "email"])
        .set_columns_allow_update(["name"])
    )
