import logging

import pytest
from sqlalchemy import literal_column

from tablerecord.db import FetchMode, Record


def _five_users(seed):
    seed(
        "users",
        *[
            {"id": str(i), "name": f"user{i}", "email": f"u{i}@x.com"}
            for i in range(1, 6)
        ],
    )


def test_select_loads_rows_and_resets_cursor(users, seed):
    _five_users(seed)
    users.select()
    assert users.num_selected_rows() == 5
    assert users.get_current_index() == 0
    assert users.get_selected_columns() == ["id", "name", "email"]
    assert users.get("name") == "user1"


def test_select_statement_is_built_once(users, seed):
    _five_users(seed)
    first = users.get_query_select()
    users.select()
    users.select()
    assert users.get_query_select() is first


def test_select_applies_column_aliases(users, seed):
    _five_users(seed)
    users.set_columns_alias({"full_name": "name"}).select()
    assert users.get_selected_columns() == ["id", "full_name", "email"]
    assert users.get("full_name") == "user1"


def test_select_object_fetch_mode(users, seed):
    _five_users(seed)
    users.set_fetch_mode(FetchMode.OBJECT).select()
    assert users.get_current_data().email == "u1@x.com"


def test_find_by_id_loads_single_row(users, seed):
    _five_users(seed)
    users.find_by_id("3")
    assert users.num_selected_rows() == 1
    assert users.get("name") == "user3"

    # later lookups do not accumulate conditions
    users.find_by_id("4")
    assert users.get("name") == "user4"

    users.select()
    assert users.num_selected_rows() == 5


def test_find_by_id_unknown_key_is_empty(users, seed):
    _five_users(seed)
    assert users.find_by_id("nope").is_empty()


def test_next_page_walks_pages_then_resets(users, seed):
    _five_users(seed)
    users.set_rows_limit(2).select()
    assert [row.get("id") for row in users] == ["1", "2"]

    assert users.next_page() is users
    assert users.get_page() == 1 and users.get_offset() == 2
    assert [row.get("id") for row in users] == ["3", "4"]

    assert users.next_page() is users
    assert [row.get("id") for row in users] == ["5"]

    assert users.next_page() is None
    assert users.get_page() == 0
    assert users.get_offset() is None
    assert users.is_empty()


def test_unlimited_select_ignores_rows_limit(users, seed):
    _five_users(seed)
    users.set_rows_limit(2).set_limited_select(False).select()
    assert users.num_selected_rows() == 5


def test_select_failure_is_soft(users, database, caplog):
    users.load_data([{"id": "1", "name": "stale", "email": None}])
    with caplog.at_level(logging.ERROR, logger="tablerecord.db.record"):
        result = users.select()
    assert result is users
    assert users.is_empty()
    assert any("Error on select for table users" in message for message in caplog.messages)


def test_select_uses_injected_logger(database, caplog):
    custom = logging.getLogger("tests.custom_record_logger")
    record = Record("users", database=database, logger=custom).set_columns(["id"])
    with caplog.at_level(logging.ERROR, logger="tests.custom_record_logger"):
        record.select()
    assert [r.name for r in caplog.records] == ["tests.custom_record_logger"]


def test_join_derived_from_related_record(database, seed):
    seed("teams", {"id": "g1", "title": "Admins"})
    seed(
        "users",
        {"id": "1", "name": "Ana", "email": "a@x.com", "team_id": "g1"},
        {"id": "2", "name": "Bea", "email": "b@x.com", "team_id": None},
    )
    teams = Record("teams", "g", database=database).set_primary_key("id")
    users = (
        Record("users", "u", database=database)
        .set_primary_key("id")
        .set_columns({"id": "id", "name": "name", "group_title": "g.title"})
        .set_columns_relationships({"team_id": teams})
    )
    users.select()
    assert [(row.get("name"), row.get("group_title")) for row in users] == [("Ana", "Admins"), ("Bea", None)]


def test_explicit_inner_join(database, seed):
    seed("teams", {"id": "g1", "title": "Admins"})
    seed(
        "users",
        {"id": "1", "name": "Ana", "email": "a@x.com", "team_id": "g1"},
        {"id": "2", "name": "Bea", "email": "b@x.com", "team_id": None},
    )
    users = (
        Record("users", "u", database=database)
        .set_primary_key("id")
        .set_columns({"id": "id", "name": "name", "group_title": "grp.title"})
        .add_column_relationship(
            "team_id",
            {"type": "inner", "table": "teams", "alias": "grp", "condition": "u.team_id = grp.id"},
        )
    )
    users.select()
    assert users.num_selected_rows() == 1
    assert users.get("group_title") == "Admins"


class ActiveUsers(Record):
    def select_conditions(self):
        return literal_column("u.deleted_at").is_(None)


def test_select_conditions_hook_narrows_rows(database, seed):
    seed(
        "users",
        {"id": "1", "name": "Ana", "email": "a@x.com", "deleted_at": None},
        {"id": "2", "name": "Bea", "email": "b@x.com", "deleted_at": "2024-01-01"},
    )
    record = ActiveUsers("users", "u", database=database).set_primary_key("id").set_columns(["id", "name"])
    record.select()
    assert [row.get("name") for row in record] == ["Ana"]
    assert record.find_by_id("2").is_empty()


@pytest.mark.parametrize("rows_limit", [1, 3])
def test_next_page_on_last_page_signals_no_more_pages(users, seed, rows_limit):
    _five_users(seed)
    users.set_rows_limit(rows_limit).select()
    pages = 1
    while users.next_page() is not None:
        pages += 1
    assert pages == -(-5 // rows_limit)
    assert users.get_page() == 0 and users.get_offset() is None
