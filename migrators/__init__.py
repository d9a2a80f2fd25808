"""
Migradores por modelo destino.

Cada módulo expone build_migrators() con las instancias de Migrator de una
familia de modelos; load_all_migrators() los importa dinámicamente con
importlib y registra en el manager los que pasan el filtro MIGRATORS_ONLY.

Estructura:
    base.py: Migrator genérico, MigratorHooks y hooks compartidos
    catalogs.py: ChallengeType, ChallengeTrack, Phase, ChallengeTimelineTemplate
    timeline_templates.py: TimelineTemplate, TimelineTemplatePhase
    challenges.py: Challenge (incluye modo solo contadores)
    challenge_children.py: hijos (prioridad 3) y nietos (prioridad 4)

El orden de registro no importa: el manager ordena por prioridad.
"""

import importlib
import logging

logger = logging.getLogger(__name__)

MIGRATOR_MODULES = [
    "catalogs",
    "timeline_templates",
    "challenges",
    "challenge_children",
]


def matches_filter(model_name: str, only) -> bool:
    """
    Indica si un modelo pasa el filtro MIGRATORS_ONLY.

    Acepta el nombre del modelo, '<Modelo>Migrator' o ese nombre sin el
    sufijo, sin distinguir mayúsculas.

    Ejemplo:
        >>> matches_filter("Challenge", ["challengemigrator"])
        True
        >>> matches_filter("Prize", ["Challenge"])
        False
    """
    if not only:
        return True
    candidates = {model_name.lower(), f"{model_name}Migrator".lower()}
    for entry in only:
        name = entry.strip().lower()
        if name.endswith("migrator"):
            name_without_suffix = name[: -len("migrator")]
        else:
            name_without_suffix = name
        if name in candidates or name_without_suffix in candidates:
            return True
    return False


def build_all_migrators() -> list:
    migrators = []
    for module_name in MIGRATOR_MODULES:
        module = importlib.import_module(f"migrators.{module_name}")
        migrators.extend(module.build_migrators())
    return migrators


def load_all_migrators(manager, only=None) -> list:
    """
    Registra en el manager todos los migradores que pasan el filtro.

    Args:
        manager: MigrationManager de la corrida
        only: Lista de nombres (default: settings['MIGRATORS_ONLY'])

    Returns:
        list: Migradores registrados
    """
    if only is None:
        only = manager.settings.get("MIGRATORS_ONLY") or []

    registered = []
    for migrator in build_all_migrators():
        if not matches_filter(migrator.model_name, only):
            logger.debug("Migrador %s excluido por MIGRATORS_ONLY", migrator.model_name)
            continue
        manager.register_migrator(migrator)
        registered.append(migrator)

    if only and not registered:
        logger.warning("MIGRATORS_ONLY=%s no coincide con ningún migrador", ",".join(only))
    return registered
