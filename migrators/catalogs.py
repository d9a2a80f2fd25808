"""
Migradores de catálogos: ChallengeType, ChallengeTrack, Phase y la tabla
de relación ChallengeTimelineTemplate.

Los catálogos se leen de exports JSON (array de objetos) y publican sus ids
para que Challenge y sus hijos validen las FKs.
"""

from engine.fields import OMIT
from migrators.base import PARENT_HOOKS, Migrator, MigratorHooks, ensure_id

# Nombre del track legacy → enum ChallengeTrackEnum
TRACK_MAP = {
    "Development": "DEVELOP",
    "Data Science": "DATA_SCIENCE",
    "Design": "DESIGN",
    "Quality Assurance": "QA",
}


def customize_track(migrator, data: dict, record: dict) -> dict:
    """
    Deriva el enum 'track' desde el nombre del track.

    Un nombre sin mapeo deja 'track' en OMIT (default de la base).
    """
    ensure_id(migrator, data, record)
    data["track"] = TRACK_MAP.get(data.get("name"), OMIT)
    return data


def build_migrators() -> list:
    return [
        Migrator("ChallengeType", MigratorHooks(**PARENT_HOOKS)),
        Migrator("ChallengeTrack", MigratorHooks(**PARENT_HOOKS, customize_record_data=customize_track)),
        Migrator("Phase", MigratorHooks(**PARENT_HOOKS)),
        Migrator("ChallengeTimelineTemplate"),
    ]
