"""
Tests del BatchEngine: lotes, olas, atomicidad por lote y FAIL_FAST (activo por defecto).
"""

import asyncio
import os
import sys

import pytest

# === RESOLUCIÓN DE PATH ===
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from engine.batch import BatchEngine, chunk_records
from engine.errors import UnknownWriteError
from engine.payload import UpsertPayload
from helpers import FakeStore, run


def writer(fail_on=None):
    """process_batch que escribe cada registro; fail_on lanza UnknownWriteError."""

    async def process_batch(batch, context):
        for record in batch:
            if record["id"] == fail_on:
                raise UnknownWriteError(f"registro {fail_on} rompió el lote", "Item")
            payload = UpsertPayload(where={"id": record["id"]}, update={}, create=dict(record))
            await context.store.upsert("Item", "id", payload)
            context.processed += 1

    return process_batch


def items(count):
    return [{"id": i} for i in range(1, count + 1)]


def test_chunk_records():
    assert chunk_records(list(range(5)), 2) == [[0, 1], [2, 3], [4]]
    assert chunk_records([], 3) == []


def test_all_batches_processed():
    store = FakeStore()
    engine = BatchEngine(store, batch_size=7, concurrency_limit=3)

    result = run(engine.run(items(50), writer()))

    assert result.processed == 50
    assert result.failed == 0
    assert len(store.rows("Item")) == 50
    assert store.commits == 8


def test_failed_batch_rolls_back_entirely():
    """El registro 50 de un lote de 100 revierte los 100 registros."""
    print("\n=== TEST: atomicidad por lote ===")
    store = FakeStore()
    engine = BatchEngine(store, batch_size=100, concurrency_limit=2, fail_fast=False)

    result = run(engine.run(items(200), writer(fail_on=50)))

    ids = {row["id"] for row in store.rows("Item")}
    assert not ids & set(range(1, 101))
    assert ids == set(range(101, 201))
    assert result.processed == 100
    assert result.failed == 100
    assert result.failed_batches == 1
    assert store.rollbacks == 1
    print("✅ Lote 1 revertido, lote 2 confirmado")


def test_without_transactions_partial_progress_persists():
    store = FakeStore()
    engine = BatchEngine(store, batch_size=10, use_transactions=False, fail_fast=False)

    result = run(engine.run(items(10), writer(fail_on=4)))

    assert {row["id"] for row in store.rows("Item")} == {1, 2, 3}
    assert result.processed == 3
    assert result.failed == 7


def test_fail_fast_reraises_after_wave():
    store = FakeStore()
    engine = BatchEngine(store, batch_size=5, concurrency_limit=2, fail_fast=True)

    with pytest.raises(UnknownWriteError):
        run(engine.run(items(30), writer(fail_on=2)))

    # la ola 1 (lotes 1 y 2) terminó; el lote 2 quedó confirmado y no hubo ola 2
    assert {row["id"] for row in store.rows("Item")} == set(range(6, 11))


def test_failed_batch_aborts_by_default():
    """Sin configurar fail_fast, un lote fallido corta el resto de las olas."""
    store = FakeStore()
    engine = BatchEngine(store, batch_size=5, concurrency_limit=1)

    with pytest.raises(UnknownWriteError):
        run(engine.run(items(20), writer(fail_on=7)))

    assert {row["id"] for row in store.rows("Item")} == set(range(1, 6))
    assert store.rollbacks == 1


def test_waves_are_sequential():
    """Ningún lote de la ola N+1 empieza antes de que termine la ola N."""
    events = []

    async def process_batch(batch, context):
        events.append(("start", context.index))
        await asyncio.sleep(0.01 if context.index % 2 else 0)
        events.append(("end", context.index))
        context.processed += len(batch)

    engine = BatchEngine(FakeStore(), batch_size=1, concurrency_limit=2)
    result = run(engine.run(items(6), process_batch))

    assert result.processed == 6
    for wave_start in (3, 5):
        first_start = events.index(("start", wave_start))
        previous_ends = [events.index(("end", i)) for i in range(1, wave_start)]
        assert max(previous_ends) < first_start


def test_deferred_actions_run_only_on_commit():
    confirmed = []

    async def process_batch(batch, context):
        for record in batch:
            context.defer(lambda value=record["id"]: confirmed.append(value))
            if record["id"] == 3:
                raise UnknownWriteError("falla", "Item")

    engine = BatchEngine(FakeStore(), batch_size=2, fail_fast=False)
    run(engine.run(items(4), process_batch))

    # el lote 2 (ids 3 y 4) se revirtió: sus acciones diferidas se descartan
    assert confirmed == [1, 2]
