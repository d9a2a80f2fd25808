"""
Capa de persistencia consumida por el motor.

Store define el contrato (find_first / find_many / upsert / update /
transaction) y PostgresStore lo implementa sobre psycopg2.

Los errores de psycopg2 se traducen en el borde del adapter:
- NumericValueOutOfRange → WriteOverflowError
- InvalidTextRepresentation → NumericTypeMismatchError
- cualquier otro → UnknownWriteError

Además, antes de cada escritura se valida el payload contra los tipos de
columna (information_schema), de modo que los errores tipados llevan el
campo exacto y el tipo numérico esperado.
"""

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2 import sql
from psycopg2.extras import Json, RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from engine.errors import (
    NumericTypeMismatchError,
    RecordNotFoundError,
    UnknownWriteError,
    WriteOverflowError,
)
from engine.fields import OMIT, strip_omitted

logger = logging.getLogger(__name__)

# information_schema.data_type → (tipo esperado, rango entero)
NUMERIC_COLUMN_TYPES = {
    "smallint": ("SMALLINT", (-(2**15), 2**15 - 1)),
    "integer": ("INT", (-(2**31), 2**31 - 1)),
    "bigint": ("BIGINT", (-(2**63), 2**63 - 1)),
    "real": ("REAL", None),
    "double precision": ("DOUBLE", None),
    "numeric": ("DECIMAL", None),
}
JSON_COLUMN_TYPES = ("json", "jsonb")


@dataclass
class UpsertResult:
    row: dict
    created: bool


class Store(ABC):
    """Contrato de la capa de persistencia."""

    @abstractmethod
    async def find_first(self, model: str, where: dict, exclude: dict = None):
        """Primera fila que coincide con where (y no con exclude), o None."""

    @abstractmethod
    async def find_many(self, model: str, where: dict = None, fields=None) -> list:
        """Todas las filas que coinciden con where, con las columnas pedidas."""

    @abstractmethod
    async def upsert(self, model: str, id_field: str, payload) -> UpsertResult:
        """Inserta payload.create o actualiza con payload.update si el id existe."""

    @abstractmethod
    async def update(self, model: str, where: dict, data: dict) -> dict:
        """UPDATE de una fila existente. RecordNotFoundError si no existe."""

    @abstractmethod
    def transaction(self):
        """Context manager async que entrega un Store ligado a una transacción."""

    async def close(self) -> None:
        return None


def _where_clause(where: dict, exclude: dict = None):
    parts = []
    params = []
    for column, value in (where or {}).items():
        if value is None:
            parts.append(sql.SQL("{} IS NULL").format(sql.Identifier(column)))
        else:
            parts.append(sql.SQL("{} = %s").format(sql.Identifier(column)))
            params.append(value)
    for column, value in (exclude or {}).items():
        if value is None or value is OMIT:
            continue
        parts.append(sql.SQL("{} <> %s").format(sql.Identifier(column)))
        params.append(value)
    if not parts:
        return sql.SQL(""), params
    return sql.SQL(" WHERE ") + sql.SQL(" AND ").join(parts), params


class PostgresStore(Store):
    """
    Store sobre psycopg2 con pool de conexiones.

    Las llamadas bloqueantes corren en threads (asyncio.to_thread), así los
    lotes de una ola avanzan en paralelo mientras esperan a la base.

    Args:
        dsn: DATABASE_URL (si está vacío se usa connect_kwargs)
        connect_kwargs: dict estilo config.POSTGRES_CONFIG
        schema: Schema destino (default 'public')
        max_connections: Tamaño máximo del pool
    """

    def __init__(self, dsn=None, connect_kwargs=None, schema="public", max_connections=11,
                 _pool=None, _conn=None, _columns=None):
        self.schema = schema
        if _pool is None:
            if dsn:
                _pool = ThreadedConnectionPool(1, max_connections, dsn=dsn)
            else:
                _pool = ThreadedConnectionPool(1, max_connections, **(connect_kwargs or {}))
        self._pool = _pool
        self._conn = _conn
        self._columns = _columns if _columns is not None else {}
        self._columns_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: dict) -> "PostgresStore":
        return cls(
            dsn=settings.get("DATABASE_URL"),
            connect_kwargs=settings.get("POSTGRES_CONFIG"),
            schema=settings.get("POSTGRES_SCHEMA") or "public",
            max_connections=int(settings.get("CONCURRENCY_LIMIT") or 10) + 1,
        )

    def _table(self, model: str):
        return sql.Identifier(self.schema, model)

    # =========================================================================
    # EJECUCIÓN
    # =========================================================================

    def _run(self, fn):
        """Ejecuta fn(cursor) en la conexión ligada o en una del pool."""
        if self._conn is not None:
            with self._conn.cursor(cursor_factory=RealDictCursor) as cursor:
                return fn(cursor)

        conn = self._pool.getconn()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                result = fn(cursor)
            conn.commit()
            return result
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    async def _call(self, fn, model: str = None):
        try:
            return await asyncio.to_thread(self._run, fn)
        except pg_errors.NumericValueOutOfRange as e:
            raise WriteOverflowError(str(e).strip(), model) from e
        except pg_errors.InvalidTextRepresentation as e:
            raise NumericTypeMismatchError(str(e).strip(), model) from e
        except psycopg2.Error as e:
            raise UnknownWriteError(str(e).strip(), model) from e

    def _column_types(self, cursor, model: str) -> dict:
        with self._columns_lock:
            if model in self._columns:
                return self._columns[model]
        cursor.execute(
            """
            SELECT column_name, data_type
            FROM information_schema.columns
            WHERE table_schema = %s AND table_name = %s
            """,
            (self.schema, model),
        )
        types = {row["column_name"]: row["data_type"] for row in cursor.fetchall()}
        with self._columns_lock:
            self._columns[model] = types
        return types

    # =========================================================================
    # VALIDACIÓN PREVIA DE TIPOS
    # =========================================================================

    @staticmethod
    def check_payload_types(model: str, column_types: dict, data: dict) -> None:
        """
        Valida valores numéricos contra los tipos de columna.

        Raises:
            WriteOverflowError: entero fuera del rango de la columna
            NumericTypeMismatchError: string en columna numérica
        """
        mismatched = {}
        for column, value in data.items():
            numeric = NUMERIC_COLUMN_TYPES.get(column_types.get(column))
            if numeric is None or value is None:
                continue
            expected, bounds = numeric
            if isinstance(value, str):
                mismatched[column] = expected
            elif bounds and isinstance(value, int) and not isinstance(value, bool):
                if not bounds[0] <= value <= bounds[1]:
                    raise WriteOverflowError(
                        f"Unable to fit integer value {value} into {expected} column '{column}'",
                        model,
                        field=column,
                    )
        if mismatched:
            details = ", ".join(f"{name}: expected {kind}" for name, kind in mismatched.items())
            raise NumericTypeMismatchError(
                f"String value provided for numeric column ({details})",
                model,
                field_types=mismatched,
            )

    @staticmethod
    def _adapt(column_types: dict, data: dict) -> dict:
        adapted = {}
        for column, value in data.items():
            if column_types.get(column) in JSON_COLUMN_TYPES or isinstance(value, dict):
                adapted[column] = Json(value) if value is not None else None
            else:
                adapted[column] = value
        return adapted

    # =========================================================================
    # OPERACIONES
    # =========================================================================

    async def find_first(self, model, where, exclude=None):
        clause, params = _where_clause(where, exclude)
        query = sql.SQL("SELECT * FROM {}{} LIMIT 1").format(self._table(model), clause)

        def fn(cursor):
            cursor.execute(query, params)
            row = cursor.fetchone()
            return dict(row) if row else None

        return await self._call(fn, model)

    async def find_many(self, model, where=None, fields=None):
        columns = (
            sql.SQL(", ").join(sql.Identifier(f) for f in fields) if fields else sql.SQL("*")
        )
        clause, params = _where_clause(where)
        query = sql.SQL("SELECT {} FROM {}{}").format(columns, self._table(model), clause)

        def fn(cursor):
            cursor.execute(query, params)
            return [dict(row) for row in cursor.fetchall()]

        return await self._call(fn, model)

    async def upsert(self, model, id_field, payload):
        create = strip_omitted(payload.create)
        update = strip_omitted(payload.update)
        update.pop(id_field, None)
        has_id = payload.where.get(id_field, OMIT) is not OMIT

        def fn(cursor):
            column_types = self._column_types(cursor, model)
            self.check_payload_types(model, column_types, create)
            self.check_payload_types(model, column_types, update)
            values = self._adapt(column_types, create)
            changes = self._adapt(column_types, update)

            insert = sql.SQL("INSERT INTO {} ({}) VALUES ({})").format(
                self._table(model),
                sql.SQL(", ").join(sql.Identifier(c) for c in values),
                sql.SQL(", ").join(sql.Placeholder() for _ in values),
            )
            params = list(values.values())

            if has_id:
                if not changes:
                    changes = {id_field: payload.where[id_field]}
                assignments = sql.SQL(", ").join(
                    sql.SQL("{} = %s").format(sql.Identifier(c)) for c in changes
                )
                insert = insert + sql.SQL(" ON CONFLICT ({}) DO UPDATE SET {}").format(
                    sql.Identifier(id_field), assignments
                )
                params.extend(changes.values())

            query = insert + sql.SQL(' RETURNING *, (xmax = 0) AS "_inserted"')

            if self._conn is not None:
                cursor.execute("SAVEPOINT migration_upsert")
                try:
                    cursor.execute(query, params)
                except psycopg2.Error:
                    cursor.execute("ROLLBACK TO SAVEPOINT migration_upsert")
                    raise
                cursor.execute("RELEASE SAVEPOINT migration_upsert")
            else:
                cursor.execute(query, params)

            row = dict(cursor.fetchone())
            created = bool(row.pop("_inserted", True))
            return UpsertResult(row=row, created=created)

        return await self._call(fn, model)

    async def update(self, model, where, data):
        changes = strip_omitted(data)
        clause, where_params = _where_clause(where)

        def fn(cursor):
            column_types = self._column_types(cursor, model)
            self.check_payload_types(model, column_types, changes)
            adapted = self._adapt(column_types, changes)
            assignments = sql.SQL(", ").join(
                sql.SQL("{} = %s").format(sql.Identifier(c)) for c in adapted
            )
            query = sql.SQL("UPDATE {} SET {}{} RETURNING *").format(
                self._table(model), assignments, clause
            )
            cursor.execute(query, list(adapted.values()) + where_params)
            row = cursor.fetchone()
            if row is None:
                raise RecordNotFoundError(f"{model} {where!r} no existe", model)
            return dict(row)

        return await self._call(fn, model)

    @asynccontextmanager
    async def transaction(self):
        """
        Entrega un PostgresStore ligado a una conexión con transacción abierta.

        Commit al salir sin errores; rollback ante cualquier excepción.
        """
        conn = await asyncio.to_thread(self._pool.getconn)
        session = PostgresStore(
            schema=self.schema, _pool=self._pool, _conn=conn, _columns=self._columns
        )
        try:
            yield session
        except BaseException:
            await asyncio.to_thread(conn.rollback)
            raise
        else:
            await asyncio.to_thread(conn.commit)
        finally:
            self._pool.putconn(conn)

    async def close(self):
        if self._conn is None and not self._pool.closed:
            await asyncio.to_thread(self._pool.closeall)
