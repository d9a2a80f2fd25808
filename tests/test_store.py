"""
Tests del adapter PostgreSQL sin base real.

Verifica que:
- La validación previa de tipos produce errores tipados con el campo exacto
- Las cláusulas WHERE manejan NULL y excluyen campos omitidos
- Los errores de psycopg2 se traducen a la taxonomía de escritura
"""

import os
import sys

import pytest
from psycopg2 import errors as pg_errors
from psycopg2 import sql

# === RESOLUCIÓN DE PATH ===
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from engine.errors import (
    NumericTypeMismatchError,
    RecordNotFoundError,
    UnknownWriteError,
    WriteOverflowError,
)
from engine.fields import OMIT
from engine.payload import UpsertPayload
from engine.store import PostgresStore, _where_clause
from helpers import run

COLUMN_TYPES = {
    "id": "text",
    "size": "integer",
    "rank": "smallint",
    "legacyId": "bigint",
    "price": "numeric",
    "ratio": "double precision",
    "name": "text",
}


# === HELPERS ===


def render(composable) -> str:
    """Texto de un sql.Composable sin conexión (identificadores entre comillas dobles)."""
    if isinstance(composable, sql.Composed):
        return "".join(render(part) for part in composable.seq)
    if isinstance(composable, sql.Identifier):
        return ".".join(f'"{name}"' for name in composable.strings)
    return composable.string


class FakeCursor:
    def __init__(self, columns=None):
        self.columns = columns or {}
        self.executed = []

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def execute(self, query, params=None):
        self.executed.append((query, params))

    def fetchall(self):
        return [{"column_name": name, "data_type": kind} for name, kind in self.columns.items()]


class FakeConnection:
    def __init__(self, columns=None):
        self.cursor_obj = FakeCursor(columns)
        self.commits = 0
        self.rollbacks = 0

    def cursor(self, cursor_factory=None):
        return self.cursor_obj

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


class FakePool:
    def __init__(self, connection):
        self.connection = connection
        self.returned = 0
        self.closed = False

    def getconn(self):
        return self.connection

    def putconn(self, connection):
        self.returned += 1


def pooled_store(columns=None):
    connection = FakeConnection(columns)
    pool = FakePool(connection)
    return PostgresStore(_pool=pool), connection, pool


def raising(error):
    def fn(cursor):
        raise error

    return fn


# === VALIDACIÓN PREVIA DE TIPOS ===


def test_int4_overflow_names_the_field():
    print("\n=== TEST: overflow int4 con campo ===")
    with pytest.raises(WriteOverflowError) as excinfo:
        PostgresStore.check_payload_types("Parent", COLUMN_TYPES, {"id": "p1", "size": 2**31})

    assert excinfo.value.field == "size"
    assert excinfo.value.model == "Parent"
    assert "INT" in str(excinfo.value)
    print("✅ WriteOverflowError(field='size')")


@pytest.mark.parametrize(
    "column, value",
    [("size", -(2**31) - 1), ("rank", 40000)],
)
def test_out_of_range_for_column_width(column, value):
    with pytest.raises(WriteOverflowError) as excinfo:
        PostgresStore.check_payload_types("Parent", COLUMN_TYPES, {column: value})

    assert excinfo.value.field == column


def test_numeric_strings_report_expected_types():
    data = {"size": "12", "price": "9.50", "name": "texto", "legacyId": 30054321}

    with pytest.raises(NumericTypeMismatchError) as excinfo:
        PostgresStore.check_payload_types("Parent", COLUMN_TYPES, data)

    assert excinfo.value.field_types == {"size": "INT", "price": "DECIMAL"}


def test_values_that_fit_pass_through():
    data = {
        "size": 2**31 - 1,
        "legacyId": 2**40,
        "rank": True,
        "price": None,
        "ratio": 1e300,
        "name": "12",
        "extra": "sin tipo conocido",
    }

    assert PostgresStore.check_payload_types("Parent", COLUMN_TYPES, data) is None


def test_upsert_validates_before_writing():
    """El upsert rechaza el string antes de emitir el INSERT."""
    connection = FakeConnection(COLUMN_TYPES)
    store = PostgresStore(_pool=FakePool(connection), _conn=connection)
    payload = UpsertPayload(where={"id": "p1"}, update={"size": "7"}, create={"id": "p1", "size": "7"})

    with pytest.raises(NumericTypeMismatchError) as excinfo:
        run(store.upsert("Parent", "id", payload))

    assert excinfo.value.field_types == {"size": "INT"}
    # solo la consulta a information_schema llegó a ejecutarse
    assert len(connection.cursor_obj.executed) == 1
    assert store._columns["Parent"] == COLUMN_TYPES


# === CLÁUSULAS WHERE ===


def test_where_clause_null_and_values():
    clause, params = _where_clause({"id": "a", "parentId": None})

    assert render(clause) == ' WHERE "id" = %s AND "parentId" IS NULL'
    assert params == ["a"]


def test_where_clause_exclude_skips_omitted_and_null():
    clause, params = _where_clause({"name": "Uno"}, {"id": OMIT, "legacyId": None})

    assert render(clause) == ' WHERE "name" = %s'
    assert params == ["Uno"]


def test_where_clause_exclude_current_row():
    clause, params = _where_clause({"name": "Uno"}, {"id": "p1"})

    assert render(clause) == ' WHERE "name" = %s AND "id" <> %s'
    assert params == ["Uno", "p1"]


def test_where_clause_empty():
    clause, params = _where_clause(None)

    assert render(clause) == ""
    assert params == []


# === TRADUCCIÓN DE ERRORES ===


@pytest.mark.parametrize(
    "raised, expected",
    [
        (pg_errors.NumericValueOutOfRange("integer out of range\n"), WriteOverflowError),
        (pg_errors.InvalidTextRepresentation('invalid input syntax for type integer: "abc"\n'), NumericTypeMismatchError),
        (pg_errors.UniqueViolation("duplicate key value violates unique constraint\n"), UnknownWriteError),
        (pg_errors.QueryCanceled("canceling statement due to statement timeout\n"), UnknownWriteError),
    ],
)
def test_psycopg2_errors_are_translated(raised, expected):
    store, connection, pool = pooled_store()

    with pytest.raises(expected) as excinfo:
        run(store._call(raising(raised), "Parent"))

    error = excinfo.value
    assert type(error) is expected
    assert error.model == "Parent"
    assert error.__cause__ is raised
    assert str(error) == str(raised).strip()
    assert connection.rollbacks == 1
    assert pool.returned == 1


def test_engine_errors_pass_through_untranslated():
    store, connection, _ = pooled_store()

    with pytest.raises(RecordNotFoundError):
        run(store._call(raising(RecordNotFoundError("Parent {'id': 'x'} no existe", "Parent")), "Parent"))

    assert connection.rollbacks == 1


def test_successful_call_commits():
    store, connection, pool = pooled_store()

    result = run(store._call(lambda cursor: "ok", "Parent"))

    assert result == "ok"
    assert connection.commits == 1
    assert connection.rollbacks == 0
    assert pool.returned == 1
