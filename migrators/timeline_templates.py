"""
Migradores de TimelineTemplate y sus fases (TimelineTemplatePhase).

Las fases vienen embebidas en cada template, como lista o como string JSON,
y se pasan por staging una vez que el template quedó escrito.
"""

from engine.fields import parse_string_array
from migrators.base import Migrator, MigratorHooks, preload_existing_ids, register_valid_ids


def stage_template_phases(migrator, context, row: dict, record: dict) -> None:
    template_id = row[migrator.id_field]
    migrator.mark_valid(context, template_id)

    phases = [
        {**phase, "timelineTemplateId": template_id}
        for phase in parse_string_array(record.get("phases"))
        if isinstance(phase, dict)
    ]
    if phases:
        migrator.stage(context, "TimelineTemplatePhase", phases)


def build_migrators() -> list:
    return [
        Migrator(
            "TimelineTemplate",
            MigratorHooks(
                before_migration=preload_existing_ids,
                after_upsert=stage_template_phases,
                after_migration=register_valid_ids,
            ),
        ),
        Migrator("TimelineTemplatePhase"),
    ]
