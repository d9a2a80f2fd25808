"""
Test de sintaxis para todos los módulos del proyecto.

Valida que no hay errores de sintaxis Python antes de ejecutar migraciones.
Útil para detectar errores introducidos durante refactoring.
"""

import py_compile
import os
import sys

# Agregar directorio raíz al path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from migrators import MIGRATOR_MODULES


def test_syntax():
    """Compila todos los .py del proyecto sin ejecutarlos."""
    project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    errors = []

    # Archivos core (siempre validar)
    core_files = [
        "challengemigra.py",
        "config.py",
        "migrators/__init__.py",
        "migrators/base.py",
    ]
    engine_files = sorted(
        f"engine/{name}" for name in os.listdir(os.path.join(project_root, "engine")) if name.endswith(".py")
    )
    migrator_files = [f"migrators/{name}.py" for name in MIGRATOR_MODULES]

    files_to_check = core_files + engine_files + migrator_files

    print("🔍 Validando sintaxis de archivos Python...")
    print(f"   Total archivos: {len(files_to_check)}")

    for filepath in files_to_check:
        full_path = os.path.join(project_root, filepath)

        if not os.path.exists(full_path):
            errors.append(f"Archivo no encontrado: {filepath}")
            print(f"   ❌ {filepath} (no existe)")
            continue

        try:
            py_compile.compile(full_path, doraise=True)
            print(f"   ✅ {filepath}")
        except py_compile.PyCompileError as e:
            errors.append(f"{filepath}: {e.msg}")
            print(f"   ❌ {filepath}")

    assert not errors, "\n".join(errors)
