"""
Orquestador de la migración.

Ordena los migradores registrados por prioridad (ascendente, estable) y
ejecuta cada uno hasta completarlo antes de empezar el siguiente. Mantiene
los registros compartidos de la corrida (DependencyRegistry y
NestedDataStaging) y resuelve los campos faltantes (handle_missing).

Un error que escapa de un migrador (carga, before_migration o un lote con
FAIL_FAST) aborta la corrida con RunFatalError, que lleva las estadísticas
de los modelos ya completados.

Nota: la prioridad no es un orden topológico. Las prioridades deben
asignarse a mano de forma coherente con las dependencias; el manager no
detecta contradicciones.
"""

import logging
import time

import config
from engine.batch import BatchEngine
from engine.data_loader import FilterOptions, load_data, log_summary
from engine.descriptor import MigratorDescriptor
from engine.errors import ConfigurationError, RunFatalError
from engine.fields import OMIT
from engine.logging_setup import get_model_logger
from engine.registry import DependencyRegistry, NestedDataStaging
from engine.stats import RunStats

logger = logging.getLogger(__name__)


class MigrationManager:
    """
    Contexto de una corrida de migración.

    Args:
        settings: dict de configuración (default: config.get_settings())
        store: Store a usar (default: PostgresStore creado al correr)

    Ejemplo:
        manager = MigrationManager()
        load_all_migrators(manager)
        stats = asyncio.run(manager.run())
    """

    def __init__(self, settings: dict = None, store=None):
        self.settings = settings if settings is not None else config.get_settings()
        self.store = store
        self._owns_store = False
        self.migrators = []
        self.registry = DependencyRegistry()
        self.staging = NestedDataStaging()
        self.descriptors = self._build_descriptors(self.settings.get("MIGRATORS") or {})

    @staticmethod
    def _build_descriptors(raw: dict) -> dict:
        descriptors = {}
        errors = []
        for model_name, cfg in raw.items():
            try:
                descriptor = MigratorDescriptor.from_config(model_name, cfg)
            except (KeyError, TypeError, ValueError) as e:
                errors.append(f"{model_name}: descriptor inválido ({e})")
                continue
            errors.extend(descriptor.validate())
            descriptors[model_name] = descriptor
        if errors:
            raise ConfigurationError("Configuración de migradores inválida:\n  " + "\n  ".join(errors))
        return descriptors

    # =========================================================================
    # REGISTRO Y CONSULTAS
    # =========================================================================

    def register_migrator(self, migrator) -> None:
        migrator.set_manager(self)
        self.migrators.append(migrator)

    def get_descriptor(self, model_name: str) -> MigratorDescriptor:
        if model_name not in self.descriptors:
            raise ConfigurationError(f"Modelo '{model_name}' sin descriptor en config.MIGRATORS")
        return self.descriptors[model_name]

    def get_logger(self, model_name: str):
        return get_model_logger(model_name)

    def is_incremental_mode(self) -> bool:
        return bool(self.settings.get("INCREMENTAL_SINCE_DATE"))

    def store_nested_data(self, model_name: str, data) -> None:
        self.staging.store(model_name, data)

    def get_nested_data(self, model_name: str) -> list:
        return self.staging.get(model_name)

    def register_dependency(self, model_name: str, ids) -> None:
        self.registry.register(model_name, ids)

    def is_valid_dependency(self, model_name: str, value) -> bool:
        return self.registry.is_valid(model_name, value)

    def handle_missing(self, model_name: str, field_name: str, record: dict):
        """
        Resuelve el valor de un campo ausente.

        Orden de resolución:
        1. OMIT si SKIP_MISSING_REQUIRED y el campo es requerido
        2. OMIT si el schema tiene default para el campo
        3. Default estático de default_values
        4. OMIT si el campo es opcional
        5. Requerido sin default: log de error y OMIT (el registro se descarta)
        """
        descriptor = self.get_descriptor(model_name)
        if self.settings.get("SKIP_MISSING_REQUIRED") and descriptor.is_required(field_name):
            return OMIT
        if descriptor.has_schema_default(field_name):
            return OMIT
        if field_name in descriptor.default_values:
            return descriptor.default_values[field_name]
        if descriptor.is_optional(field_name):
            return OMIT
        get_model_logger(model_name).error(
            "Campo requerido '%s' sin valor ni default [id: %s]",
            field_name,
            record.get(descriptor.id_field),
        )
        return OMIT

    # =========================================================================
    # CARGA Y EJECUCIÓN
    # =========================================================================

    async def load_source(self, descriptor: MigratorDescriptor, model_logger=None) -> list:
        """
        Carga los registros de un modelo según su source.

        'nested' lee el staging del padre; los demás formatos leen el
        archivo con el filtro incremental de la corrida.
        """
        log = model_logger or logger
        if descriptor.source == "nested":
            records = self.get_nested_data(descriptor.model_name)
            log.debug("%d registros en staging para %s", len(records), descriptor.model_name)
            return records

        options = FilterOptions.from_settings(self.settings, self.is_incremental_mode())
        records, summary = await load_data(
            self.settings.get("DATA_DIRECTORY"),
            descriptor.filename,
            descriptor.source,
            options,
            log,
        )
        log_summary(summary, options, log)
        return records

    def create_batch_engine(self, model_logger=None) -> BatchEngine:
        return BatchEngine(
            self.store,
            batch_size=self.settings.get("BATCH_SIZE", 100),
            concurrency_limit=self.settings.get("CONCURRENCY_LIMIT", 10),
            use_transactions=self.settings.get("USE_TRANSACTIONS", True),
            fail_fast=self.settings.get("FAIL_FAST", True),
            model_logger=model_logger,
        )

    def _ensure_store(self) -> None:
        if self.store is None:
            from engine.store import PostgresStore

            self.store = PostgresStore.from_settings(self.settings)
            self._owns_store = True

    async def run(self) -> RunStats:
        """
        Ejecuta todos los migradores registrados en orden de prioridad.

        Returns:
            RunStats: Estadísticas por modelo

        Raises:
            RunFatalError: Si un migrador falla; e.stats tiene lo completado
        """
        run_stats = RunStats()
        if not self.migrators:
            logger.warning("No hay migradores registrados; nada para migrar")
            return run_stats

        started = time.perf_counter()
        self._ensure_store()
        ordered = sorted(self.migrators, key=lambda m: m.priority)
        logger.info("Orden de migración: %s", ", ".join(m.model_name for m in ordered))

        try:
            for migrator in ordered:
                logger.info("Migrando %s (prioridad %d)", migrator.model_name, migrator.priority)
                try:
                    stats = await migrator.migrate()
                except RunFatalError as e:
                    run_stats.aborted = True
                    e.stats = run_stats
                    raise
                except Exception as e:
                    run_stats.aborted = True
                    raise RunFatalError(f"{migrator.model_name}: {e}", run_stats) from e
                run_stats.add(stats)
                logger.info("Completado %s", stats.summary_line())
        finally:
            run_stats.duration = time.perf_counter() - started
            if self._owns_store:
                await self.store.close()
                self.store = None
                self._owns_store = False

        return run_stats
