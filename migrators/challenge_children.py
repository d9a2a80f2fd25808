"""
Migradores de las colecciones hijas de Challenge (prioridad 3) y de sus
nietos (prioridad 4). Todos leen sus registros del staging que dejó el padre.

Hijos que a su vez son padres (ChallengePhase, ChallengePrizeSet,
ChallengeDiscussion) precargan sus ids, los publican y dejan en staging a
sus propios hijos.
"""

import math
import re

from engine.fields import OMIT
from migrators.base import (
    PARENT_HOOKS,
    Migrator,
    MigratorHooks,
    audit_fields,
    ensure_id,
)

DISCUSSION_TYPE_MAP = {"challenge": "CHALLENGE"}

PRIZE_SET_TYPE_MAP = {
    "placement": "PLACEMENT",
    "copilot": "COPILOT",
    "reviewer": "REVIEWER",
    "checkpoint": "CHECKPOINT",
}

DEFAULT_REVIEW_TYPE = "INTERNAL"
VALID_REVIEW_TYPES = {"INTERNAL", "COMMUNITY"}
REVIEW_TYPE_MAP = {
    "internal": "INTERNAL",
    "community": "COMMUNITY",
    "system": "INTERNAL",
}

SIGNED_INTEGER = re.compile(r"-?\d+", re.ASCII)


def _map_enum(data: dict, field_name: str, mapping: dict) -> None:
    """Traduce un valor legacy; lo que no tiene mapeo queda en OMIT."""
    value = data.get(field_name)
    if value and value is not OMIT:
        data[field_name] = mapping.get(value, OMIT)


def alias_id(target_field: str):
    """
    Hook before_validation que mueve 'id' a target_field.

    Los elementos embebidos traen el id de la entidad referenciada
    (discusión, término, skill), no el de la fila de relación.
    """

    def before_validation(migrator, record: dict) -> dict:
        if not record.get(target_field) and record.get("id"):
            record[target_field] = record["id"]
            record["id"] = OMIT
        return record

    return before_validation


# =============================================================================
# CHALLENGE BILLING / METADATA
# =============================================================================


def customize_billing(migrator, data: dict, record: dict) -> dict:
    ensure_id(migrator, data, record)
    value = data.get("billingAccountId", OMIT)
    if value is not OMIT and value is not None:
        data["billingAccountId"] = str(value) or None
    return data


def customize_metadata(migrator, data: dict, record: dict) -> dict:
    """La columna value es texto: booleanos y números se guardan como string."""
    ensure_id(migrator, data, record)
    value = data.get("value", OMIT)
    if isinstance(value, bool):
        data["value"] = "true" if value else "false"
    elif isinstance(value, int) or (isinstance(value, float) and math.isfinite(value)):
        data["value"] = str(value)
    return data


# =============================================================================
# CHALLENGE LEGACY
# =============================================================================


def make_legacy_customizer():
    """
    Crea el hook de ChallengeLegacy con su propio registro de reviewTypes
    desconocidos (un warning por valor distinto).
    """
    warned = set()

    def normalize_review_type(migrator, data: dict) -> None:
        original = data.get("reviewType")
        if isinstance(original, str):
            text = original.strip()
            mapped = REVIEW_TYPE_MAP.get(text.lower())
            if mapped:
                data["reviewType"] = mapped
                return
            if text.upper() in VALID_REVIEW_TYPES:
                data["reviewType"] = text.upper()
                return
            original = text
        elif original in VALID_REVIEW_TYPES:
            return

        data["reviewType"] = DEFAULT_REVIEW_TYPE
        if original is None or original is OMIT or original == DEFAULT_REVIEW_TYPE:
            return
        label = str(original)
        if label not in warned:
            warned.add(label)
            migrator.logger.warning(
                "reviewType '%s' no soportado en ChallengeLegacy %s; se usa %s",
                label, data.get("challengeId"), DEFAULT_REVIEW_TYPE,
            )

    def normalize_direct_project_id(migrator, data: dict) -> None:
        value = data.get("directProjectId", OMIT)
        if value is OMIT or value is None:
            return
        if isinstance(value, int) and not isinstance(value, bool):
            return
        if isinstance(value, str):
            text = value.strip()
            if not text:
                data.pop("directProjectId")
                return
            if SIGNED_INTEGER.fullmatch(text):
                data["directProjectId"] = int(text)
                return
        migrator.logger.warning(
            "ChallengeLegacy %s: directProjectId '%s' no es entero; se omite",
            data.get("challengeId"), value,
        )
        data.pop("directProjectId")

    def customize_legacy(migrator, data: dict, record: dict) -> dict:
        ensure_id(migrator, data, record)
        normalize_review_type(migrator, data)
        normalize_direct_project_id(migrator, data)
        return data

    return customize_legacy


# =============================================================================
# CHALLENGE DISCUSSION
# =============================================================================


def customize_discussion(migrator, data: dict, record: dict) -> dict:
    ensure_id(migrator, data, record)
    _map_enum(data, "type", DISCUSSION_TYPE_MAP)
    return data


def stage_discussion_options(migrator, context, row: dict, record: dict) -> None:
    discussion_id = row[migrator.id_field]
    migrator.mark_valid(context, discussion_id)

    options = record.get("options")
    if not options:
        return
    items = options if isinstance(options, list) else [options]
    inherited = {"discussionId": discussion_id, **audit_fields(row)}
    staged = [{**option, **inherited} for option in items if isinstance(option, dict)]
    if staged:
        migrator.stage(context, "ChallengeDiscussionOption", staged)


# =============================================================================
# PRIZE SETS / WINNERS
# =============================================================================


def customize_prize_set(migrator, data: dict, record: dict) -> dict:
    ensure_id(migrator, data, record)
    _map_enum(data, "type", PRIZE_SET_TYPE_MAP)
    return data


def stage_prizes(migrator, context, row: dict, record: dict) -> None:
    prize_set_id = row[migrator.id_field]
    migrator.mark_valid(context, prize_set_id)

    inherited = {"prizeSetId": prize_set_id, **audit_fields(row)}
    staged = [
        {**prize, **inherited}
        for prize in record.get("prizes") or []
        if isinstance(prize, dict)
    ]
    if staged:
        migrator.stage(context, "Prize", staged)


def default_winner_type(migrator, record: dict) -> dict:
    if not record.get("type"):
        record["type"] = "placement"
    return record


def customize_winner(migrator, data: dict, record: dict) -> dict:
    ensure_id(migrator, data, record)
    for name in ("userId", "placement"):
        value = data.get(name)
        if isinstance(value, str) and SIGNED_INTEGER.fullmatch(value.strip()):
            data[name] = int(value.strip())
    _map_enum(data, "type", PRIZE_SET_TYPE_MAP)
    return data


# =============================================================================
# CHALLENGE PHASE
# =============================================================================


def stage_phase_constraints(migrator, context, row: dict, record: dict) -> None:
    phase_id = row[migrator.id_field]
    migrator.mark_valid(context, phase_id)

    staged = [
        {**constraint, "challengePhaseId": phase_id}
        for constraint in record.get("constraints") or []
        if isinstance(constraint, dict)
    ]
    if staged:
        migrator.stage(context, "ChallengePhaseConstraint", staged)


def build_migrators() -> list:
    parent = dict(PARENT_HOOKS)
    return [
        Migrator("ChallengeBilling", MigratorHooks(customize_record_data=customize_billing)),
        Migrator("ChallengeConstraint"),
        Migrator("ChallengeLegacy", MigratorHooks(customize_record_data=make_legacy_customizer())),
        Migrator("ChallengeEvent"),
        Migrator(
            "ChallengeDiscussion",
            MigratorHooks(
                before_migration=parent["before_migration"],
                before_validation=alias_id("discussionId"),
                customize_record_data=customize_discussion,
                after_upsert=stage_discussion_options,
                after_migration=parent["after_migration"],
            ),
        ),
        Migrator("ChallengeMetadata", MigratorHooks(customize_record_data=customize_metadata)),
        Migrator(
            "ChallengePrizeSet",
            MigratorHooks(
                before_migration=parent["before_migration"],
                customize_record_data=customize_prize_set,
                after_upsert=stage_prizes,
                after_migration=parent["after_migration"],
            ),
        ),
        Migrator(
            "ChallengePhase",
            MigratorHooks(
                before_migration=parent["before_migration"],
                after_upsert=stage_phase_constraints,
                after_migration=parent["after_migration"],
            ),
        ),
        Migrator(
            "ChallengeWinner",
            MigratorHooks(before_validation=default_winner_type, customize_record_data=customize_winner),
        ),
        Migrator("ChallengeTerm", MigratorHooks(before_validation=alias_id("termId"))),
        Migrator("ChallengeSkill", MigratorHooks(before_validation=alias_id("skillId"))),
        Migrator("ChallengePhaseConstraint"),
        Migrator("Prize"),
        Migrator("ChallengeDiscussionOption"),
    ]
