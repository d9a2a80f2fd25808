"""
Motor de ejecución por lotes.

Divide los registros en lotes de tamaño fijo y los ejecuta en olas de hasta
CONCURRENCY_LIMIT lotes concurrentes. Cada ola termina completa (commit o
rollback de todos sus lotes) antes de empezar la siguiente.

Con transacciones activas, un error no manejado dentro de un lote revierte
TODAS las escrituras de ese lote. Lotes más chicos reducen el impacto de un
registro fatal.
"""

import asyncio
import logging
from dataclasses import dataclass, field

from engine.registry import UniqueConstraintTracker

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    failed_batches: int = 0


@dataclass
class BatchContext:
    """
    Estado de un lote en ejecución.

    Attributes:
        index: Número de lote (desde 1)
        store: Store a usar (ligado a la transacción del lote si aplica)
        tracker: UniqueConstraintTracker propio del lote
        transactional: True si las escrituras se confirman al final del lote
    """

    index: int
    store: object
    tracker: UniqueConstraintTracker
    transactional: bool = False
    processed: int = 0
    skipped: int = 0
    _deferred: list = field(default_factory=list)

    def defer(self, action) -> None:
        """
        Ejecuta action cuando las escrituras del lote son definitivas.

        En modo transaccional espera al commit (y se descarta si hay
        rollback); sin transacciones se ejecuta en el momento.
        """
        if self.transactional:
            self._deferred.append(action)
        else:
            action()

    def flush(self) -> None:
        actions, self._deferred = self._deferred, []
        for action in actions:
            action()


def chunk_records(records: list, size: int) -> list:
    """
    Divide la lista en lotes de tamaño fijo.

    Ejemplo:
        >>> chunk_records([1, 2, 3, 4, 5], 2)
        [[1, 2], [3, 4], [5]]
    """
    size = max(1, int(size))
    return [records[i : i + size] for i in range(0, len(records), size)]


class BatchEngine:
    """
    Ejecuta una función de procesamiento sobre lotes con concurrencia acotada.

    Args:
        store: Store de la corrida
        batch_size: Registros por lote
        concurrency_limit: Lotes simultáneos por ola
        use_transactions: Una transacción por lote
        fail_fast: Re-lanzar el primer lote fallido al terminar la ola (False: contenerlo y seguir)
        model_logger: Logger (o adapter) del migrador
    """

    def __init__(self, store, batch_size=100, concurrency_limit=10, use_transactions=True,
                 fail_fast=True, model_logger=None):
        self.store = store
        self.batch_size = max(1, int(batch_size))
        self.concurrency_limit = max(1, int(concurrency_limit))
        self.use_transactions = use_transactions
        self.fail_fast = fail_fast
        self.logger = model_logger or logger

    async def _run_batch(self, context: BatchContext, batch: list, process_batch) -> BatchContext:
        if not self.use_transactions:
            await process_batch(batch, context)
            return context

        async with self.store.transaction() as session:
            context.store = session
            context.transactional = True
            await process_batch(batch, context)
        context.flush()
        return context

    async def run(self, records: list, process_batch) -> BatchResult:
        """
        Procesa todos los registros.

        Args:
            records: Registros a procesar
            process_batch: async fn(batch, context) que actualiza
                context.processed / context.skipped

        Returns:
            BatchResult: Totales agregados de todos los lotes
        """
        batches = chunk_records(records, self.batch_size)
        result = BatchResult()
        total_waves = (len(batches) + self.concurrency_limit - 1) // self.concurrency_limit

        for wave_number, start in enumerate(range(0, len(batches), self.concurrency_limit), 1):
            wave = batches[start : start + self.concurrency_limit]
            self.logger.debug(
                "Ola %d/%d: %d lotes de hasta %d registros",
                wave_number, total_waves, len(wave), self.batch_size,
            )
            contexts = [
                BatchContext(start + offset + 1, self.store, UniqueConstraintTracker())
                for offset in range(len(wave))
            ]
            outcomes = await asyncio.gather(
                *(
                    self._run_batch(context, batch, process_batch)
                    for context, batch in zip(contexts, wave)
                ),
                return_exceptions=True,
            )

            first_error = None
            for context, batch, outcome in zip(contexts, wave, outcomes):
                if isinstance(outcome, BatchContext):
                    result.processed += outcome.processed
                    result.skipped += outcome.skipped
                    continue
                if not isinstance(outcome, Exception):
                    raise outcome

                if context.transactional:
                    failed = len(batch)
                else:
                    # sin transacción lo ya escrito queda persistido
                    result.processed += context.processed
                    result.skipped += context.skipped
                    failed = len(batch) - context.processed - context.skipped
                result.failed += failed
                result.failed_batches += 1
                self.logger.error(
                    "Lote %d falló (%s: %s); %d registros sin migrar",
                    context.index, type(outcome).__name__, outcome, failed,
                )
                if first_error is None:
                    first_error = outcome

            if first_error is not None and self.fail_fast:
                raise first_error

        return result
