"""
Funciones helper compartidas para todos los tests.

Proporciona:
- FakeStore: store en memoria con transacciones, overflow int4 y errores
  tipados de columnas numéricas (no requiere PostgreSQL)
- Descriptores mínimos de prueba (Parent / Child)
- Escritores de archivos fuente (JSON array y search-index)
"""

import asyncio
import json
import os
import sys
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone

# Agregar directorio raíz al path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import config
from engine.errors import (
    NumericTypeMismatchError,
    RecordNotFoundError,
    UnknownWriteError,
    WriteOverflowError,
)
from engine.fields import OMIT, strip_omitted
from engine.store import Store, UpsertResult
from engine.upsert import INT32_MAX, INT32_MIN

# === STORE EN MEMORIA ===


def _matches(row: dict, where: dict) -> bool:
    return all(row.get(key) == value for key, value in (where or {}).items())


class FakeStore(Store):
    """
    Store en memoria que imita el contrato de PostgresStore.

    Args:
        int_columns: {modelo: {campo, ...}} columnas int4 (overflow fuera de int32)
        numeric_columns: {modelo: {campo: TIPO}} columnas que rechazan strings
        fail_when: fn(model, payload) → bool; True lanza UnknownWriteError
    """

    def __init__(self, int_columns=None, numeric_columns=None, fail_when=None, _root=None):
        self._root = _root
        self.int_columns = int_columns or {}
        self.numeric_columns = numeric_columns or {}
        self.fail_when = fail_when
        self.tables = defaultdict(dict)
        self.upsert_calls = []
        self.commits = 0
        self.rollbacks = 0
        self.closed = False
        self._pending = defaultdict(dict)

    @property
    def root(self) -> "FakeStore":
        return self._root or self

    def rows(self, model: str) -> list:
        return list(self.root.tables[model].values())

    def _view(self, model: str) -> dict:
        view = dict(self.root.tables[model])
        if self._root is not None:
            view.update(self._pending[model])
        return view

    def _write(self, model: str, key, row: dict) -> None:
        if self._root is not None:
            self._pending[model][key] = row
        else:
            self.tables[model][key] = row

    def _check(self, model: str, data: dict) -> None:
        root = self.root
        for name, value in data.items():
            if (
                name in root.int_columns.get(model, ())
                and isinstance(value, int)
                and not isinstance(value, bool)
                and not INT32_MIN <= value <= INT32_MAX
            ):
                raise WriteOverflowError(f"valor fuera de rango para '{name}'", model, name)
            expected = root.numeric_columns.get(model, {}).get(name)
            if expected and isinstance(value, str):
                raise NumericTypeMismatchError(
                    f"Argument `{name}`: Invalid value provided. Expected {expected}, provided String.",
                    model,
                    {name: expected},
                )

    async def find_first(self, model, where, exclude=None):
        await asyncio.sleep(0)
        for row in self._view(model).values():
            if _matches(row, where) and not (exclude and _matches(row, exclude)):
                return dict(row)
        return None

    async def find_many(self, model, where=None, fields=None):
        await asyncio.sleep(0)
        rows = [row for row in self._view(model).values() if _matches(row, where)]
        if fields:
            return [{name: row.get(name) for name in fields} for row in rows]
        return [dict(row) for row in rows]

    async def upsert(self, model, id_field, payload):
        await asyncio.sleep(0)
        root = self.root
        root.upsert_calls.append((model, payload.copy()))
        if root.fail_when is not None and root.fail_when(model, payload):
            raise UnknownWriteError(f"fallo simulado en {model}", model)

        key = payload.where.get(id_field, OMIT)
        existing = None if key is OMIT else self._view(model).get(key)
        now = datetime.now(timezone.utc)

        if existing is None:
            data = strip_omitted(payload.create)
            self._check(model, data)
            row = dict(data)
            row.setdefault("createdAt", now)
            row.setdefault("updatedAt", now)
            created = True
        else:
            data = strip_omitted(payload.update)
            self._check(model, data)
            row = {**existing, **data}
            created = False

        self._write(model, row[id_field], row)
        return UpsertResult(row=dict(row), created=created)

    async def update(self, model, where, data):
        await asyncio.sleep(0)
        changes = strip_omitted(data)
        self._check(model, changes)
        for key, row in self._view(model).items():
            if _matches(row, where):
                updated = {**row, **changes}
                self._write(model, key, updated)
                return dict(updated)
        raise RecordNotFoundError(f"{model} {where!r} no existe", model)

    @asynccontextmanager
    async def transaction(self):
        session = FakeStore(_root=self.root)
        try:
            yield session
        except BaseException:
            self.root.rollbacks += 1
            raise
        for model, rows in session._pending.items():
            self.root.tables[model].update(rows)
        self.root.commits += 1

    async def close(self):
        self.closed = True


# === CONFIGURACIÓN DE PRUEBA ===

TEST_MIGRATORS = {
    "Parent": {
        "id_field": "id",
        "priority": 1,
        "required_fields": ["id", "name", "createdBy", "updatedBy"],
        "optional_fields": ["size", "description"],
        "has_defaults": ["id"],
        "unique_constraints": [{"name": "name", "fields": ["name"]}],
        "default_values": {"createdBy": "migration", "updatedBy": "migration"},
        "source": "json_array",
        "filename": "parents.json",
    },
    "Child": {
        "id_field": "id",
        "priority": 2,
        "required_fields": ["id", "parentId", "label"],
        "optional_fields": ["weight"],
        "has_defaults": ["id"],
        "dependencies": [{"name": "Parent", "fkey": "parentId"}],
        "source": "nested",
    },
}


def make_settings(data_directory=None, migrators=None, **overrides) -> dict:
    """
    Snapshot de settings aislado del entorno.

    Ejemplo:
        settings = make_settings(tmp_path, BATCH_SIZE=2)
    """
    settings = config.get_settings()
    settings.update(
        {
            "DATA_DIRECTORY": str(data_directory) if data_directory is not None else None,
            "BATCH_SIZE": 100,
            "CONCURRENCY_LIMIT": 10,
            "SKIP_MISSING_REQUIRED": False,
            "USE_TRANSACTIONS": True,
            "FAIL_FAST": True,
            "COLLECT_UPSERT_STATS": True,
            "CHALLENGE_COUNTERS_ONLY": False,
            "MIGRATORS_ONLY": [],
            "INCREMENTAL_SINCE_DATE": None,
            "INCREMENTAL_FIELDS": [],
            "INCREMENTAL_DATE_FIELDS": ["updatedAt", "updated"],
            "MISSING_DATE_FIELD_BEHAVIOR": "skip",
            "INVALID_DATE_FIELD_BEHAVIOR": "skip",
            "MIGRATORS": {
                name: dict(cfg)
                for name, cfg in (migrators if migrators is not None else TEST_MIGRATORS).items()
            },
        }
    )
    settings.update(overrides)
    return settings


# === ARCHIVOS FUENTE ===


def write_json_array(directory, filename: str, records: list) -> str:
    path = os.path.join(str(directory), filename)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(records, f)
    return path


def write_search_index(directory, filename: str, records: list, bom=False, trailing_newline=True) -> str:
    """Escribe un export line-delimited con cada registro bajo '_source'."""
    lines = [json.dumps({"_index": "challenge", "_id": str(i), "_source": r}) for i, r in enumerate(records)]
    text = "\n".join(lines) + ("\n" if trailing_newline else "")
    path = os.path.join(str(directory), filename)
    with open(path, "wb") as f:
        if bom:
            f.write(b"\xef\xbb\xbf")
        f.write(text.encode("utf-8"))
    return path


def run(coro):
    return asyncio.run(coro)
