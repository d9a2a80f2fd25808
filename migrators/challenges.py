"""
Migrador de Challenge (export search-index, un documento por línea).

Además del pipeline estándar:
- Normaliza alias legacy (overview, task, created/updated) y los campos
  projectId, legacyId y tags antes de validar
- Mapea el status legacy al enum ChallengeStatusEnum
- Deja en staging las colecciones embebidas (billing, legacy, events, ...)
  con el challengeId generado y los campos de auditoría de la fila escrita

Modo solo contadores (CHALLENGE_COUNTERS_ONLY):
    Solo actualiza numOfRegistrants / numOfSubmissions de challenges ya
    existentes, sin pasar por el pipeline de upsert.
"""

import math
import time
from decimal import Decimal

from engine.errors import RecordNotFoundError, WriteError
from engine.fields import OMIT
from engine.stats import MigrationStats
from engine.upsert import INTEGER_PATTERN
from migrators.base import (
    Migrator,
    MigratorHooks,
    audit_fields,
    ensure_id,
    preload_existing_ids,
    register_valid_ids,
)

STATUS_MAP = {
    "New": "NEW",
    "Draft": "DRAFT",
    "Approved": "APPROVED",
    "Active": "ACTIVE",
    "Completed": "COMPLETED",
    "Deleted": "DELETED",
    "Cancelled": "CANCELLED",
    "Cancelled - Failed Review": "CANCELLED_FAILED_REVIEW",
    "Cancelled - Failed Screening": "CANCELLED_FAILED_SCREENING",
    "Cancelled - Zero Submissions": "CANCELLED_ZERO_SUBMISSIONS",
    "Cancelled - Winner Unresponsive": "CANCELLED_WINNER_UNRESPONSIVE",
    "Cancelled - Client Request": "CANCELLED_CLIENT_REQUEST",
    "Cancelled - Requirements Infeasible": "CANCELLED_REQUIREMENTS_INFEASIBLE",
    "Cancelled - Zero Registrations": "CANCELLED_ZERO_REGISTRATIONS",
    "Cancelled - Payment Failed": "CANCELLED_PAYMENT_FAILED",
}

# (key en el documento, modelo hijo, es lista)
NESTED_COLLECTIONS = (
    ("billing", "ChallengeBilling", False),
    ("legacy", "ChallengeLegacy", False),
    ("events", "ChallengeEvent", True),
    ("discussions", "ChallengeDiscussion", True),
    ("metadata", "ChallengeMetadata", True),
    ("phases", "ChallengePhase", True),
    ("prizeSets", "ChallengePrizeSet", True),
    ("winners", "ChallengeWinner", True),
    ("terms", "ChallengeTerm", True),
    ("skills", "ChallengeSkill", True),
    ("constraints", "ChallengeConstraint", False),
)

COUNTER_FIELDS = ("numOfRegistrants", "numOfSubmissions")


def to_number(value):
    """
    Interpreta un valor como número finito.

    Returns:
        int | float | Decimal | None: None si no es numérico

    Ejemplo:
        >>> to_number(" 42 ")
        42
        >>> to_number("abc") is None
        True
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, str):
        text = value.strip()
        if INTEGER_PATTERN.fullmatch(text):
            return int(text)
        try:
            parsed = float(text)
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def _is_integral(number) -> bool:
    if isinstance(number, int):
        return True
    if isinstance(number, Decimal):
        return number == number.to_integral_value()
    return float(number).is_integer()


def _is_null_text(value) -> bool:
    return isinstance(value, str) and (not value.strip() or value.strip().lower() == "null")


# =============================================================================
# NORMALIZACIÓN PREVIA A LA VALIDACIÓN
# =============================================================================


def normalize_project_id(migrator, record: dict) -> None:
    if record.get("projectId") is None:
        return
    value = record["projectId"]
    if _is_null_text(value):
        record["projectId"] = None
        return

    number = to_number(value)
    if number is not None and _is_integral(number):
        record["projectId"] = int(number)
        return
    migrator.logger.warning(
        "Omitiendo projectId del challenge %s; valor no entero '%s'",
        record.get(migrator.id_field), value,
    )
    record["projectId"] = OMIT


def normalize_legacy_id(migrator, record: dict) -> None:
    if record.get("legacyId") is None:
        return
    value = record["legacyId"]
    if _is_null_text(value):
        record["legacyId"] = None
        return

    number = to_number(value)
    if number is not None:
        record["legacyId"] = int(number) if _is_integral(number) else number
        return
    migrator.logger.warning(
        "Omitiendo legacyId del challenge %s; valor no numérico '%s'",
        record.get(migrator.id_field), value,
    )
    record["legacyId"] = OMIT


def normalize_tags(migrator, record: dict) -> None:
    if "tags" not in record:
        return
    tags = record["tags"]
    record_id = record.get(migrator.id_field)

    if isinstance(tags, list):
        cleaned = []
        for tag in tags:
            if tag is None:
                continue
            if not isinstance(tag, str):
                migrator.logger.warning(
                    "Tag inválido en challenge %s; se esperaba string, se recibió %s",
                    record_id, type(tag).__name__,
                )
                continue
            if not _is_null_text(tag):
                cleaned.append(tag.strip())
        record["tags"] = cleaned
    elif tags is None:
        record["tags"] = []
    elif isinstance(tags, str):
        record["tags"] = [] if _is_null_text(tags) else [tags.strip()]
    else:
        migrator.logger.warning(
            "Valor de tags inesperado en challenge %s; se usa lista vacía", record_id
        )
        record["tags"] = []


def before_validation(migrator, record: dict) -> dict:
    """Copia alias legacy a las columnas destino y normaliza tipos."""
    overview = record.get("overview")
    if overview:
        record["overviewTotalPrizes"] = overview.get("totalPrizes")

    task = record.get("task")
    if task:
        record["taskIsTask"] = task.get("isTask")
        record["taskIsAssigned"] = task.get("isAssigned")
        member_id = task.get("memberId")
        record["taskMemberId"] = None if member_id is None else str(member_id)

    if record.get("created"):
        record["createdAt"] = record["created"]
    if record.get("updated"):
        record["updatedAt"] = record["updated"]

    normalize_project_id(migrator, record)
    normalize_legacy_id(migrator, record)
    normalize_tags(migrator, record)
    return record


def customize_record_data(migrator, data: dict, record: dict) -> dict:
    ensure_id(migrator, data, record)

    status = data.get("status")
    if status and status is not OMIT:
        data["status"] = STATUS_MAP.get(status, OMIT)

    # todos los challenges legacy quedan habilitados para Wipro
    data["wiproAllowed"] = True
    return data


def after_upsert(migrator, context, row: dict, record: dict) -> None:
    """Marca el challenge como válido y deja en staging sus colecciones hijas."""
    challenge_id = row[migrator.id_field]
    migrator.mark_valid(context, challenge_id)
    inherited = {"challengeId": challenge_id, **audit_fields(row)}

    for key, model_name, is_list in NESTED_COLLECTIONS:
        value = record.get(key)
        if not value:
            continue
        items = value if is_list and isinstance(value, list) else [value]

        staged = []
        for item in items:
            if not isinstance(item, dict):
                migrator.logger.warning(
                    "Elemento de '%s' ignorado en challenge %s; se esperaba un objeto",
                    key, challenge_id,
                )
                continue
            child = {**item, **inherited}
            if model_name == "ChallengeLegacy":
                child["legacySystemId"] = record.get("legacyId")
            staged.append(child)

        if staged:
            migrator.stage(context, model_name, staged)


# =============================================================================
# MODO SOLO CONTADORES
# =============================================================================


def counter_updates(migrator, record: dict) -> dict:
    changes = {}
    record_id = record.get(migrator.id_field)
    for name in COUNTER_FIELDS:
        raw = record.get(name)
        if raw is None:
            continue
        number = to_number(raw)
        if number is None:
            migrator.logger.warning(
                "Omitiendo %s del challenge %s; se esperaba un número, se recibió '%s'",
                name, record_id, raw,
            )
            continue
        changes[name] = int(number) if _is_integral(number) else number
    return changes


async def migrate_counters(migrator) -> MigrationStats:
    """
    Actualiza solo los contadores de challenges existentes.

    Un challenge inexistente en la base se omite con warning; cualquier otro
    error de escritura se registra en stats.errors y la corrida sigue.
    """
    counters_only = migrator.descriptor.counters_only or migrator.manager.settings.get(
        "CHALLENGE_COUNTERS_ONLY"
    )
    if not counters_only:
        return await migrator.run_pipeline()

    started = time.perf_counter()
    migrator.logger.info("Modo solo contadores (%s)", ", ".join(COUNTER_FIELDS))
    stats = MigrationStats(migrator.model_name, mode="counters")
    store = migrator.manager.store
    id_field = migrator.id_field

    records = await migrator.load_data()
    stats.loaded = len(records)
    records = await migrator.before_migration(records)

    for record in records:
        record_id = record.get(id_field)
        if not record_id:
            migrator.logger.warning("Omitiendo challenge sin id al actualizar contadores")
            stats.skipped += 1
            continue

        changes = counter_updates(migrator, record)
        if not changes:
            migrator.logger.debug("Challenge %s sin contadores para actualizar", record_id)
            stats.skipped += 1
            continue

        try:
            await store.update(migrator.model_name, {id_field: record_id}, changes)
        except RecordNotFoundError:
            migrator.logger.warning(
                "Omitiendo challenge %s; no existe en la base al actualizar contadores", record_id
            )
            stats.skipped += 1
            continue
        except WriteError as e:
            migrator.logger.error("Falló la actualización de contadores del challenge %s: %s", record_id, e)
            stats.errors.append({"id": record_id, "message": str(e)})
            stats.skipped += 1
            continue

        migrator.valid_ids.add(record_id)
        stats.processed += 1

    register_valid_ids(migrator, stats)
    stats.duration = time.perf_counter() - started
    migrator.logger.info(
        "Contadores actualizados en %d challenges (%d omitidos)", stats.processed, stats.skipped
    )
    return stats


def build_migrators() -> list:
    return [
        Migrator(
            "Challenge",
            MigratorHooks(
                before_migration=preload_existing_ids,
                before_validation=before_validation,
                customize_record_data=customize_record_data,
                after_upsert=after_upsert,
                after_migration=register_valid_ids,
                migrate=migrate_counters,
            ),
        ),
    ]
