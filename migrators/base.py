"""
Migrador genérico y tabla de hooks por modelo.

Cada modelo destino se describe con:
- Su descriptor (config.MIGRATORS → MigratorDescriptor)
- Una tabla de hooks (MigratorHooks) con funciones puras opcionales

Un único Migrator ejecuta el pipeline para cualquier modelo; los hooks
reciben el migrador como primer argumento y no hay subclases por modelo.

Pipeline por registro (cada paso puede descartar el registro):
1. before_validation(migrator, record) → record
2. Resolución de campos requeridos (handle_missing)
3. Defaults de campos opcionales
4. Unique constraints (tracker del lote + lookup en la base)
5. Dependencias (DependencyRegistry)
6. validate_record(migrator, record, data) → bool
7. customize_record_data(migrator, data, record) → data
8. Payload → customize_upsert_data(migrator, payload, record) → upsert →
   after_upsert(migrator, context, row, record)

Ejemplo:
    hooks = MigratorHooks(**PARENT_HOOKS, customize_record_data=mi_hook)
    manager.register_migrator(Migrator("ChallengeType", hooks))
"""

import time
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from engine.errors import RecordSkipped
from engine.fields import OMIT, FieldState, field_state
from engine.payload import PayloadBuilder
from engine.stats import MigrationStats
from engine.upsert import UpsertExecutor, UpsertStats


# =============================================================================
# HOOKS COMPARTIDOS
# =============================================================================


def ensure_id(migrator, data: dict, record: dict) -> dict:
    """Genera un uuid4 cuando el id quedó en OMIT o None."""
    id_field = migrator.id_field
    value = data.get(id_field, OMIT)
    if value is OMIT or value is None:
        data[id_field] = str(uuid.uuid4())
    return data


async def preload_existing_ids(migrator, records: list) -> list:
    """
    Carga los ids ya presentes en la tabla como ids válidos.

    Permite que los hijos referencien filas migradas en corridas previas
    aunque esta corrida las filtre (modo incremental).
    """
    rows = await migrator.manager.store.find_many(migrator.model_name, fields=[migrator.id_field])
    migrator.valid_ids.update(row[migrator.id_field] for row in rows)
    migrator.logger.info("%d ids existentes precargados", len(rows))
    return records


def track_written_id(migrator, context, row: dict, record: dict) -> None:
    migrator.mark_valid(context, row[migrator.id_field])


def register_valid_ids(migrator, stats: MigrationStats) -> None:
    migrator.manager.register_dependency(migrator.model_name, migrator.valid_ids)
    migrator.logger.info("%d ids válidos registrados para dependientes", len(migrator.valid_ids))


def audit_fields(row: dict) -> dict:
    """Campos de auditoría que un hijo hereda de la fila del padre."""
    return {
        "createdAt": row.get("createdAt"),
        "updatedAt": row.get("updatedAt"),
        "createdBy": row.get("createdBy"),
        "updatedBy": row.get("updatedBy"),
    }


# Modelos que otros referencian: precargan, registran lo escrito y publican
# su set de ids al terminar.
PARENT_HOOKS = {
    "before_migration": preload_existing_ids,
    "after_upsert": track_written_id,
    "after_migration": register_valid_ids,
}


@dataclass
class MigratorHooks:
    """
    Capacidades opcionales de un modelo. None = comportamiento por defecto.

    Attributes:
        load_data: async (migrator) → list de registros
        before_migration: async (migrator, records) → records
        before_validation: (migrator, record) → record
        validate_record: (migrator, record, data) → bool
        customize_record_data: (migrator, data, record) → data
        customize_upsert_data: (migrator, payload, record) → payload
        after_upsert: (migrator, context, row, record) → None
        after_migration: (migrator, stats) → None
        migrate: async (migrator) → MigrationStats (reemplaza el pipeline)
    """

    load_data: Optional[Callable] = None
    before_migration: Optional[Callable] = None
    before_validation: Optional[Callable] = None
    validate_record: Optional[Callable] = None
    customize_record_data: Optional[Callable] = ensure_id
    customize_upsert_data: Optional[Callable] = None
    after_upsert: Optional[Callable] = None
    after_migration: Optional[Callable] = None
    migrate: Optional[Callable] = None


# =============================================================================
# MIGRADOR GENÉRICO
# =============================================================================


class Migrator:
    """
    Unidad de migración de un modelo destino.

    Args:
        model_name: Nombre del modelo (key en config.MIGRATORS)
        hooks: MigratorHooks del modelo

    Attributes:
        valid_ids: Ids confirmados durante la corrida (precargados + escritos)
    """

    def __init__(self, model_name: str, hooks: MigratorHooks = None):
        self.model_name = model_name
        self.hooks = hooks or MigratorHooks()
        self.manager = None
        self.descriptor = None
        self.logger = None
        self.valid_ids = set()
        self.payload_builder = None
        self.executor = None

    def __repr__(self):
        return f"Migrator({self.model_name!r})"

    def set_manager(self, manager) -> None:
        self.manager = manager
        self.descriptor = manager.get_descriptor(self.model_name)
        self.logger = manager.get_logger(self.model_name)

    @property
    def priority(self) -> int:
        return self.descriptor.priority

    @property
    def id_field(self) -> str:
        return self.descriptor.id_field

    # =========================================================================
    # CICLO DE VIDA
    # =========================================================================

    def prepare(self) -> None:
        """Crea el builder de payloads y el executor para esta corrida."""
        settings = self.manager.settings
        self.payload_builder = PayloadBuilder(
            self.model_name,
            self.id_field,
            incremental=self.manager.is_incremental_mode(),
            incremental_fields=settings.get("INCREMENTAL_FIELDS"),
            model_logger=self.logger,
        )
        upsert_stats = UpsertStats() if settings.get("COLLECT_UPSERT_STATS") else None
        self.executor = UpsertExecutor(self.descriptor, self.logger, upsert_stats)

    async def migrate(self) -> MigrationStats:
        if self.hooks.migrate is not None:
            return await self.hooks.migrate(self)
        return await self.run_pipeline()

    async def run_pipeline(self) -> MigrationStats:
        """
        Carga, pre-procesa y migra todos los registros del modelo en lotes.

        Returns:
            MigrationStats: Resultado del modelo

        Raises:
            Exception: Errores de carga, before_migration o de un lote con FAIL_FAST (abortan la corrida)
        """
        started = time.perf_counter()
        self.prepare()
        builder = self.payload_builder
        incremental = builder.incremental and bool(builder.incremental_fields)
        stats = MigrationStats(self.model_name, mode="incremental" if incremental else "full")

        records = await self.load_data()
        stats.loaded = len(records)
        records = await self.before_migration(records)

        if records:
            engine = self.manager.create_batch_engine(self.logger)
            result = await engine.run(records, self.process_batch)
            stats.processed = result.processed
            stats.skipped = result.skipped
            stats.failed = result.failed
            stats.failed_batches = result.failed_batches
        else:
            self.logger.info("Sin registros para migrar")

        if incremental:
            stats.incremental = builder.field_stats
        stats.upserts = self.executor.stats

        if self.hooks.after_migration is not None:
            self.hooks.after_migration(self, stats)

        stats.duration = time.perf_counter() - started
        return stats

    async def load_data(self) -> list:
        if self.hooks.load_data is not None:
            return await self.hooks.load_data(self)
        return await self.manager.load_source(self.descriptor, self.logger)

    async def before_migration(self, records: list) -> list:
        if self.hooks.before_migration is None:
            return records
        processed = await self.hooks.before_migration(self, records)
        return records if processed is None else processed

    # =========================================================================
    # PROCESAMIENTO POR REGISTRO
    # =========================================================================

    async def process_batch(self, batch: list, context) -> None:
        """Procesa un lote; los RecordSkipped se cuentan y el lote sigue."""
        for record in batch:
            try:
                await self.process_record(record, context)
            except RecordSkipped as skip:
                context.skipped += 1
                record_id = skip.record_id
                if record_id is None or record_id is OMIT:
                    record_id = record.get(self.id_field)
                self.logger.warning("Omitiendo registro [id: %s]: %s", record_id, skip.reason)
                continue
            context.processed += 1

    async def process_record(self, record: dict, context):
        hooks = self.hooks

        if hooks.before_validation is not None:
            record = hooks.before_validation(self, record)

        data = self.resolve_required_fields(record)
        self.apply_optional_fields(record, data)
        await self.check_unique_constraints(data, context)
        self.check_dependencies(data)

        if hooks.validate_record is not None and not hooks.validate_record(self, record, data):
            raise RecordSkipped("validación personalizada fallida", data.get(self.id_field))

        if hooks.customize_record_data is not None:
            data = hooks.customize_record_data(self, data, record)

        payload = self.payload_builder.build(data)
        if hooks.customize_upsert_data is not None:
            payload = hooks.customize_upsert_data(self, payload, record)

        outcome = await self.executor.execute(context.store, payload)

        if hooks.after_upsert is not None and outcome.row:
            hooks.after_upsert(self, context, outcome.row, record)
        return outcome

    def resolve_required_fields(self, record: dict) -> dict:
        """
        Resuelve los campos requeridos del registro.

        Un valor None o ausente se resuelve con handle_missing. Si queda en
        OMIT y la base no tiene default, el registro se descarta.

        Raises:
            RecordSkipped: Campo requerido faltante sin resolución
        """
        data = {}
        skip_missing = self.manager.settings.get("SKIP_MISSING_REQUIRED")
        record_id = record.get(self.id_field)

        for name in self.descriptor.required_fields:
            state = field_state(record, name)
            if state is FieldState.ABSENT and skip_missing:
                raise RecordSkipped(f"falta el campo requerido '{name}'", record_id)

            if state is FieldState.EXPLICIT:
                value = record[name]
            else:
                value = self.manager.handle_missing(self.model_name, name, record)

            if value is OMIT and not self.descriptor.has_schema_default(name):
                raise RecordSkipped(f"falta el campo requerido '{name}'", record_id)
            data[name] = value
        return data

    def apply_optional_fields(self, record: dict, data: dict) -> dict:
        for name in self.descriptor.optional_fields:
            if field_state(record, name) is FieldState.EXPLICIT:
                data[name] = record[name]
            else:
                data[name] = self.manager.handle_missing(self.model_name, name, record)
        return data

    async def check_unique_constraints(self, data: dict, context) -> None:
        """
        Verifica cada unique constraint contra el lote y contra la base.

        Un constraint con algún campo en OMIT no es determinable y no se
        verifica. La clave compuesta se registra en el tracker del lote solo
        si el registro pasa ambas verificaciones.
        """
        record_id = data.get(self.id_field, OMIT)
        for constraint in self.descriptor.unique_constraints:
            values = [data.get(name, OMIT) for name in constraint.fields]
            if any(value is OMIT for value in values):
                continue

            key = "_".join(str(value) for value in values)
            if not key:
                continue

            if context.tracker.seen(constraint.name, key):
                raise RecordSkipped(
                    f"unique constraint '{constraint.name}' repetido en el lote ({key})",
                    record_id,
                )

            exclude = None if record_id is OMIT or record_id is None else {self.id_field: record_id}
            existing = await context.store.find_first(
                self.model_name, dict(zip(constraint.fields, values)), exclude
            )
            if existing:
                raise RecordSkipped(
                    f"unique constraint '{constraint.name}' ya existe en la base ({key})",
                    record_id,
                )
            context.tracker.add(constraint.name, key)

    def check_dependencies(self, data: dict) -> None:
        for dependency in self.descriptor.dependencies:
            value = data.get(dependency.foreign_key, OMIT)
            if value is OMIT or not self.manager.is_valid_dependency(dependency.parent_model, value):
                raise RecordSkipped(
                    f"referencia a {dependency.parent_model} inexistente "
                    f"({dependency.foreign_key}={value!r})",
                    data.get(self.id_field),
                )

    # =========================================================================
    # EFECTOS DIFERIDOS AL COMMIT
    # =========================================================================

    def mark_valid(self, context, value) -> None:
        """Agrega un id al set de válidos cuando el lote confirma."""
        context.defer(lambda: self.valid_ids.add(value))

    def stage(self, context, model_name: str, data) -> None:
        """Deja registros hijos en staging cuando el lote confirma."""
        context.defer(lambda: self.manager.store_nested_data(model_name, data))
