r"""
Script principal de migración de datos legacy de challenges a PostgreSQL.

Arquitectura:
- challengemigra.py: Punto de entrada (logging, registro de migradores, exit code)
- engine/: Motor genérico (carga, pipeline, upserts, lotes, orquestación)
- migrators/*.py: Hooks específicos por modelo
- config.py: Configuración centralizada y descriptores por modelo

Flujo de ejecución:
1. Configurar logging (consola + archivo opcional)
2. Registrar migradores (filtrados por MIGRATORS_ONLY)
3. Ejecutar por prioridad: catálogos → challenges → hijos → nietos
4. Mostrar resumen por modelo

Prerrequisitos:
- Base PostgreSQL con el schema destino creado
- Exports fuente en DATA_DIRECTORY

Uso:
    python challengemigra.py

    # Solo algunos modelos
    MIGRATORS_ONLY=ChallengeType,ChallengeTrack python challengemigra.py

    # Sincronización incremental
    INCREMENTAL_SINCE_DATE=2025-01-01T00:00:00Z INCREMENTAL_FIELDS=status,updatedAt \
        python challengemigra.py
"""

import asyncio
import logging
import sys
import traceback
from pathlib import Path

# Asegurar que el directorio raíz esté en sys.path para imports dinámicos
project_root = Path(__file__).resolve().parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

import config
from engine.errors import RunFatalError
from engine.logging_setup import setup_logging
from engine.manager import MigrationManager
from migrators import load_all_migrators

logger = logging.getLogger("challengemigra")


def main():
    """
    Función principal que coordina la corrida completa.

    Exit Codes:
        0: Éxito (o nada para migrar)
        1: Corrida abortada o error inesperado
    """
    setup_logging(config.LOG_LEVEL, config.LOG_FILE, config.LOG_FORMAT)

    print("=" * 70)
    print("🚀 MIGRACIÓN DE CHALLENGES → POSTGRESQL")
    print("=" * 70)
    print(f"📍 Datos: {config.DATA_DIRECTORY}")
    if config.DATABASE_URL:
        print("📍 PostgreSQL: DATABASE_URL")
    else:
        print(f"📍 PostgreSQL: {config.POSTGRES_CONFIG['host']}/{config.POSTGRES_CONFIG['dbname']}")
    if config.INCREMENTAL_SINCE_DATE:
        print(f"🔄 Modo incremental desde {config.INCREMENTAL_SINCE_DATE}")

    try:
        manager = MigrationManager()
        registered = load_all_migrators(manager)
        if not registered:
            logger.warning("No hay migradores para ejecutar")
            return 0

        print(f"📦 Migradores: {', '.join(m.model_name for m in registered)}")
        stats = asyncio.run(manager.run())

    except RunFatalError as e:
        print(f"\n❌ Migración abortada: {e}", file=sys.stderr)
        if e.stats is not None:
            print(e.stats.display())
        return 1

    except Exception as e:
        print(f"\n❌ Error inesperado durante la migración: {e}", file=sys.stderr)
        traceback.print_exc()
        return 1

    print(stats.display())
    print("✅ PROCESO COMPLETADO")
    return 0


if __name__ == "__main__":
    sys.exit(main())
