"""
Configuración centralizada para la migración de datos legacy de challenges → PostgreSQL.

ARQUITECTURA:
Cada modelo destino (tabla) tiene un migrador con su descriptor en MIGRATORS:
- Prioridad 1: catálogos (ChallengeType, ChallengeTrack, TimelineTemplate, Phase)
- Prioridad 2: entidades que referencian catálogos (Challenge, ChallengeTimelineTemplate, ...)
- Prioridad 3: hijos de Challenge cargados desde staging (billing, legacy, phases, ...)
- Prioridad 4: nietos (Prize, ChallengePhaseConstraint, ChallengeDiscussionOption)

FLUJO DE MIGRACIÓN:
1. Los migradores corren en orden ascendente de priority
2. Cada migrador registra sus ids válidos para los migradores dependientes
3. Los hijos (source='nested') leen lo que el padre dejó en staging

USO DE LAS FUNCIONES HELPER:
    # Obtener descriptor crudo de un modelo
    cfg = get_migrator_config('Challenge')
    print(cfg['priority'])  # 2

    # Snapshot de settings para el MigrationManager
    settings = get_settings()
    settings['BATCH_SIZE'] = 10
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Carga las variables del archivo .env en las variables de entorno del sistema
load_dotenv(override=True)

PROJECT_ROOT = Path(__file__).resolve().parent


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _env_list(name: str, default: list = None) -> list:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return list(default or [])
    return [item.strip() for item in value.split(",") if item.strip()]


# --- Configuración de PostgreSQL (Destino) ---
DATABASE_URL = os.getenv("DATABASE_URL") or ""
POSTGRES_CONFIG = {
    "dbname": os.getenv("POSTGRES_DB") or "",
    "user": os.getenv("POSTGRES_USER") or "",
    "password": os.getenv("POSTGRES_PASSWORD") or "",
    "host": os.getenv("POSTGRES_HOST") or "localhost",
    "port": os.getenv("POSTGRES_PORT") or "5432",
}
POSTGRES_SCHEMA = os.getenv("POSTGRES_SCHEMA") or "public"

# --- Configuración de Migración ---
DATA_DIRECTORY = os.getenv("DATA_DIRECTORY") or str(PROJECT_ROOT / "data")
BATCH_SIZE = _env_int("BATCH_SIZE", 100)  # Registros por lote
CONCURRENCY_LIMIT = _env_int("CONCURRENCY_LIMIT", 10)  # Lotes simultáneos por ola
SKIP_MISSING_REQUIRED = _env_bool("SKIP_MISSING_REQUIRED", False)
USE_TRANSACTIONS = _env_bool("USE_TRANSACTIONS", True)
FAIL_FAST = _env_bool("FAIL_FAST", True)  # Un lote fallido aborta la corrida
COLLECT_UPSERT_STATS = _env_bool("COLLECT_UPSERT_STATS", False)
CHALLENGE_COUNTERS_ONLY = _env_bool("CHALLENGE_COUNTERS_ONLY", False)
MIGRATORS_ONLY = _env_list("MIGRATORS_ONLY")

# --- Atribución ---
CREATED_BY = os.getenv("CREATED_BY") or "migration"
UPDATED_BY = os.getenv("UPDATED_BY") or "migration"

# --- Sincronización incremental ---
INCREMENTAL_SINCE_DATE = os.getenv("INCREMENTAL_SINCE_DATE") or None
INCREMENTAL_FIELDS = _env_list("INCREMENTAL_FIELDS")
INCREMENTAL_DATE_FIELDS = _env_list("INCREMENTAL_DATE_FIELDS", ["updatedAt", "updated"])
MISSING_DATE_FIELD_BEHAVIOR = os.getenv("MISSING_DATE_FIELD_BEHAVIOR") or "skip"
INVALID_DATE_FIELD_BEHAVIOR = os.getenv("INVALID_DATE_FIELD_BEHAVIOR") or "skip"
SUMMARY_LOG_LIMIT = _env_int("SUMMARY_LOG_LIMIT", 5)

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL") or "info"
LOG_FILE = os.getenv("LOG_FILE", str(PROJECT_ROOT / "logs" / "migration.log"))
LOG_FORMAT = os.getenv("LOG_FORMAT") or "text"

# --- Archivos fuente ---
CHALLENGE_FILE = os.getenv("CHALLENGE_FILE") or "challenge-api.challenge.json"

_ATTRIBUTION_DEFAULTS = {"createdBy": CREATED_BY, "updatedBy": UPDATED_BY}
_AUDIT_FIELDS = ["createdAt", "createdBy", "updatedAt", "updatedBy"]

# --- Descriptores por modelo ---
# Cada modelo define:
# - id_field: Columna PK (clave del upsert)
# - priority: Orden de ejecución (menor corre primero)
# - required_fields / optional_fields: Campos que forman el payload
# - has_defaults: Campos con default en el schema (se omiten si faltan)
# - unique_constraints: [{name, fields}] verificados por lote + lookup en DB
# - dependencies: [{name, fkey}] modelo padre y campo FK
# - default_values: Defaults estáticos para campos faltantes
# - source: 'json_array' | 'search_index' | 'nested' (staging del padre)
# - filename: Archivo dentro de DATA_DIRECTORY (no aplica a 'nested')

MIGRATORS = {
    # === PRIORIDAD 1: CATÁLOGOS ===
    "ChallengeType": {
        "id_field": "id",
        "priority": 1,
        "required_fields": ["id", "name", "isActive", "isTask", "abbreviation"] + _AUDIT_FIELDS,
        "optional_fields": ["description"],
        "has_defaults": ["id", "isActive", "isTask", "createdAt", "updatedAt"],
        "default_values": dict(_ATTRIBUTION_DEFAULTS),
        "source": "json_array",
        "filename": os.getenv("CHALLENGE_TYPE_FILE") or "ChallengeType_dynamo_data.json",
    },
    "ChallengeTrack": {
        "id_field": "id",
        "priority": 1,
        "required_fields": ["id", "name", "isActive", "abbreviation"] + _AUDIT_FIELDS,
        "optional_fields": ["description", "legacyId", "track"],
        "has_defaults": ["id", "createdAt", "updatedAt"],
        "default_values": dict(_ATTRIBUTION_DEFAULTS),
        "source": "json_array",
        "filename": os.getenv("CHALLENGE_TRACK_FILE") or "ChallengeTrack_dynamo_data.json",
    },
    "TimelineTemplate": {
        "id_field": "id",
        "priority": 1,
        "required_fields": ["id", "name", "isActive"] + _AUDIT_FIELDS,
        "optional_fields": ["description"],
        "has_defaults": ["id", "isActive", "createdAt", "updatedAt"],
        "unique_constraints": [{"name": "name", "fields": ["name"]}],
        "default_values": dict(_ATTRIBUTION_DEFAULTS),
        "source": "json_array",
        "filename": os.getenv("TIMELINE_TEMPLATE_FILE") or "TimelineTemplate_dynamo_data.json",
    },
    "Phase": {
        "id_field": "id",
        "priority": 1,
        "required_fields": ["id", "name", "isOpen", "duration"] + _AUDIT_FIELDS,
        "optional_fields": ["description"],
        "has_defaults": ["id", "createdAt", "updatedAt"],
        "unique_constraints": [{"name": "name", "fields": ["name"]}],
        "default_values": dict(_ATTRIBUTION_DEFAULTS),
        "source": "json_array",
        "filename": os.getenv("PHASE_FILE") or "Phase_dynamo_data.json",
    },
    # === PRIORIDAD 2: ENTIDADES PRINCIPALES ===
    "TimelineTemplatePhase": {
        "id_field": "id",
        "priority": 2,
        "required_fields": ["id", "timelineTemplateId", "phaseId", "defaultDuration"] + _AUDIT_FIELDS,
        "optional_fields": ["predecessor"],
        "has_defaults": ["id", "createdAt", "updatedAt"],
        "default_values": dict(_ATTRIBUTION_DEFAULTS),
        "source": "nested",
    },
    "ChallengeTimelineTemplate": {
        "id_field": "id",
        "priority": 2,
        "required_fields": ["id", "typeId", "trackId", "timelineTemplateId", "isDefault"] + _AUDIT_FIELDS,
        "has_defaults": ["id", "isDefault", "createdAt", "updatedAt"],
        "dependencies": [
            {"name": "ChallengeType", "fkey": "typeId"},
            {"name": "ChallengeTrack", "fkey": "trackId"},
            {"name": "TimelineTemplate", "fkey": "timelineTemplateId"},
        ],
        "default_values": dict(_ATTRIBUTION_DEFAULTS),
        "source": "json_array",
        "filename": os.getenv("CHALLENGE_TIMELINE_TEMPLATE_FILE")
        or "ChallengeTimelineTemplate_dynamo_data.json",
    },
    "Challenge": {
        "id_field": "id",
        "priority": 2,
        "required_fields": [
            "id", "name", "typeId", "trackId", "currentPhaseNames", "tags", "groups",
            "taskIsTask", "taskIsAssigned", "status",
        ] + _AUDIT_FIELDS,
        "optional_fields": [
            "description", "privateDescription", "descriptionFormat", "challengeSource",
            "projectId", "timelineTemplateId", "overviewTotalPrizes", "taskMemberId",
            "submissionStartDate", "submissionEndDate", "registrationStartDate",
            "registrationEndDate", "startDate", "endDate", "legacyId",
            "numOfRegistrants", "numOfSubmissions", "numOfCheckpointSubmissions",
        ],
        "has_defaults": [
            "id", "taskIsTask", "taskIsAssigned", "status", "createdAt", "updatedAt", "wiproAllowed",
        ],
        "dependencies": [
            {"name": "ChallengeType", "fkey": "typeId"},
            {"name": "ChallengeTrack", "fkey": "trackId"},
            {"name": "TimelineTemplate", "fkey": "timelineTemplateId"},
        ],
        "default_values": dict(_ATTRIBUTION_DEFAULTS),
        "counters_only": CHALLENGE_COUNTERS_ONLY,
        "source": "search_index",
        "filename": CHALLENGE_FILE,
    },
    # === PRIORIDAD 3: HIJOS DE CHALLENGE (staging) ===
    "ChallengeBilling": {
        "id_field": "id",
        "priority": 3,
        "required_fields": ["id", "challengeId"] + _AUDIT_FIELDS,
        "optional_fields": ["billingAccountId", "markup", "clientBillingRate"],
        "has_defaults": ["id", "createdAt", "updatedAt"],
        "dependencies": [{"name": "Challenge", "fkey": "challengeId"}],
        "unique_constraints": [{"name": "challengeId", "fields": ["challengeId"]}],
        "default_values": dict(_ATTRIBUTION_DEFAULTS),
        "source": "nested",
    },
    "ChallengeConstraint": {
        "id_field": "id",
        "priority": 3,
        "required_fields": ["id", "challengeId", "allowedRegistrants"] + _AUDIT_FIELDS,
        "has_defaults": ["id", "allowedRegistrants", "createdAt", "updatedAt"],
        "dependencies": [{"name": "Challenge", "fkey": "challengeId"}],
        "unique_constraints": [{"name": "challengeId", "fields": ["challengeId"]}],
        "default_values": dict(_ATTRIBUTION_DEFAULTS),
        "source": "nested",
    },
    "ChallengeLegacy": {
        "id_field": "id",
        "priority": 3,
        "required_fields": [
            "id", "reviewType", "confidentialityType", "isTask", "useSchedulingAPI",
            "pureV5Task", "pureV5", "selfService", "challengeId",
        ] + _AUDIT_FIELDS,
        "optional_fields": [
            "forumId", "directProjectId", "screeningScorecardId", "reviewScorecardId",
            "selfServiceCopilot", "track", "subTrack", "legacySystemId",
        ],
        "has_defaults": [
            "id", "confidentialityType", "isTask", "useSchedulingAPI", "pureV5Task",
            "pureV5", "selfService", "createdAt", "updatedAt",
        ],
        "dependencies": [{"name": "Challenge", "fkey": "challengeId"}],
        "unique_constraints": [{"name": "challengeId", "fields": ["challengeId"]}],
        "default_values": dict(_ATTRIBUTION_DEFAULTS),
        "source": "nested",
    },
    "ChallengeEvent": {
        "id_field": "id",
        "priority": 3,
        "required_fields": ["id", "challengeId", "eventId"] + _AUDIT_FIELDS,
        "optional_fields": ["name", "key"],
        "has_defaults": ["id", "createdAt", "updatedAt"],
        "dependencies": [{"name": "Challenge", "fkey": "challengeId"}],
        "default_values": dict(_ATTRIBUTION_DEFAULTS),
        "source": "nested",
    },
    "ChallengeDiscussion": {
        "id_field": "id",
        "priority": 3,
        "required_fields": ["id", "challengeId", "name", "type", "provider"] + _AUDIT_FIELDS,
        "optional_fields": ["discussionId", "url"],
        "has_defaults": ["id", "createdAt", "updatedAt"],
        "dependencies": [{"name": "Challenge", "fkey": "challengeId"}],
        "default_values": dict(_ATTRIBUTION_DEFAULTS),
        "source": "nested",
    },
    "ChallengeMetadata": {
        "id_field": "id",
        "priority": 3,
        "required_fields": ["id", "challengeId", "name", "value"] + _AUDIT_FIELDS,
        "has_defaults": ["id", "createdAt", "updatedAt"],
        "dependencies": [{"name": "Challenge", "fkey": "challengeId"}],
        "default_values": dict(_ATTRIBUTION_DEFAULTS),
        "source": "nested",
    },
    "ChallengePrizeSet": {
        "id_field": "id",
        "priority": 3,
        "required_fields": ["id", "challengeId", "type"] + _AUDIT_FIELDS,
        "optional_fields": ["description"],
        "has_defaults": ["id", "createdAt", "updatedAt"],
        "dependencies": [{"name": "Challenge", "fkey": "challengeId"}],
        "default_values": dict(_ATTRIBUTION_DEFAULTS),
        "source": "nested",
    },
    "ChallengePhase": {
        "id_field": "id",
        "priority": 3,
        "required_fields": ["id", "challengeId", "phaseId", "name"] + _AUDIT_FIELDS,
        "optional_fields": [
            "description", "isOpen", "predecessor", "duration", "scheduledStartDate",
            "scheduledEndDate", "actualStartDate", "actualEndDate",
        ],
        "has_defaults": ["id", "isOpen", "createdAt", "updatedAt"],
        "dependencies": [
            {"name": "Challenge", "fkey": "challengeId"},
            {"name": "Phase", "fkey": "phaseId"},
        ],
        "default_values": dict(_ATTRIBUTION_DEFAULTS),
        "source": "nested",
    },
    "ChallengeWinner": {
        "id_field": "id",
        "priority": 3,
        "required_fields": ["id", "challengeId", "userId", "handle", "placement", "type"] + _AUDIT_FIELDS,
        "has_defaults": ["id", "createdAt", "updatedAt"],
        "dependencies": [{"name": "Challenge", "fkey": "challengeId"}],
        "default_values": dict(_ATTRIBUTION_DEFAULTS),
        "source": "nested",
    },
    "ChallengeTerm": {
        "id_field": "id",
        "priority": 3,
        "required_fields": ["id", "challengeId", "termId", "roleId"] + _AUDIT_FIELDS,
        "has_defaults": ["id", "createdAt", "updatedAt"],
        "dependencies": [{"name": "Challenge", "fkey": "challengeId"}],
        "default_values": dict(_ATTRIBUTION_DEFAULTS),
        "source": "nested",
    },
    "ChallengeSkill": {
        "id_field": "id",
        "priority": 3,
        "required_fields": ["id", "challengeId", "skillId"] + _AUDIT_FIELDS,
        "has_defaults": ["id", "createdAt", "updatedAt"],
        "dependencies": [{"name": "Challenge", "fkey": "challengeId"}],
        "default_values": dict(_ATTRIBUTION_DEFAULTS),
        "source": "nested",
    },
    # === PRIORIDAD 4: NIETOS ===
    "ChallengePhaseConstraint": {
        "id_field": "id",
        "priority": 4,
        "required_fields": ["id", "challengePhaseId", "name", "value"] + _AUDIT_FIELDS,
        "has_defaults": ["id", "createdAt", "updatedAt"],
        "dependencies": [{"name": "ChallengePhase", "fkey": "challengePhaseId"}],
        "default_values": dict(_ATTRIBUTION_DEFAULTS),
        "source": "nested",
    },
    "Prize": {
        "id_field": "id",
        "priority": 4,
        "required_fields": ["id", "prizeSetId", "type", "value"] + _AUDIT_FIELDS,
        "optional_fields": ["description"],
        "has_defaults": ["id", "createdAt", "updatedAt"],
        "dependencies": [{"name": "ChallengePrizeSet", "fkey": "prizeSetId"}],
        "default_values": dict(_ATTRIBUTION_DEFAULTS),
        "source": "nested",
    },
    "ChallengeDiscussionOption": {
        "id_field": "id",
        "priority": 4,
        "required_fields": ["id", "discussionId", "optionKey", "optionValue"] + _AUDIT_FIELDS,
        "has_defaults": ["id", "createdAt", "updatedAt"],
        "dependencies": [{"name": "ChallengeDiscussion", "fkey": "discussionId"}],
        "default_values": dict(_ATTRIBUTION_DEFAULTS),
        "source": "nested",
    },
}


# --- Funciones Helper ---


def get_migrator_config(model_name: str) -> dict:
    """
    Obtiene el descriptor crudo de un modelo por nombre.

    Args:
        model_name: Nombre del modelo destino (ej: 'Challenge')

    Returns:
        dict: Descriptor con keys id_field, priority, required_fields, ...

    Raises:
        KeyError: Si el modelo no está configurado

    Ejemplo:
        >>> get_migrator_config('Prize')['priority']
        4
    """
    if model_name not in MIGRATORS:
        available = ", ".join(MIGRATORS.keys())
        raise KeyError(
            f"Modelo '{model_name}' no está configurado.\n"
            f"Modelos disponibles: {available}"
        )
    return MIGRATORS[model_name]


def get_settings() -> dict:
    """
    Retorna un snapshot (copia) de la configuración de la corrida.

    El MigrationManager trabaja sobre este dict, de modo que los tests
    pueden sobreescribir valores sin tocar variables de entorno.

    Ejemplo:
        >>> settings = get_settings()
        >>> settings['BATCH_SIZE']
        100
    """
    return {
        "DATABASE_URL": DATABASE_URL,
        "POSTGRES_CONFIG": dict(POSTGRES_CONFIG),
        "POSTGRES_SCHEMA": POSTGRES_SCHEMA,
        "DATA_DIRECTORY": DATA_DIRECTORY,
        "BATCH_SIZE": BATCH_SIZE,
        "CONCURRENCY_LIMIT": CONCURRENCY_LIMIT,
        "SKIP_MISSING_REQUIRED": SKIP_MISSING_REQUIRED,
        "USE_TRANSACTIONS": USE_TRANSACTIONS,
        "FAIL_FAST": FAIL_FAST,
        "COLLECT_UPSERT_STATS": COLLECT_UPSERT_STATS,
        "CHALLENGE_COUNTERS_ONLY": CHALLENGE_COUNTERS_ONLY,
        "MIGRATORS_ONLY": list(MIGRATORS_ONLY),
        "CREATED_BY": CREATED_BY,
        "UPDATED_BY": UPDATED_BY,
        "INCREMENTAL_SINCE_DATE": INCREMENTAL_SINCE_DATE,
        "INCREMENTAL_FIELDS": list(INCREMENTAL_FIELDS),
        "INCREMENTAL_DATE_FIELDS": list(INCREMENTAL_DATE_FIELDS),
        "MISSING_DATE_FIELD_BEHAVIOR": MISSING_DATE_FIELD_BEHAVIOR,
        "INVALID_DATE_FIELD_BEHAVIOR": INVALID_DATE_FIELD_BEHAVIOR,
        "SUMMARY_LOG_LIMIT": SUMMARY_LOG_LIMIT,
        "LOG_LEVEL": LOG_LEVEL,
        "LOG_FILE": LOG_FILE,
        "LOG_FORMAT": LOG_FORMAT,
        "MIGRATORS": {name: dict(cfg) for name, cfg in MIGRATORS.items()},
    }
