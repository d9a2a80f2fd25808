"""
Registros compartidos entre migradores durante una corrida.

- DependencyRegistry: modelo → ids válidos (escritura única por modelo)
- NestedDataStaging: modelo hijo → registros dejados por el padre
- UniqueConstraintTracker: claves compuestas vistas en UN lote
"""

from collections import defaultdict
from collections.abc import Hashable


class DependencyRegistry:
    """
    Ids confirmados por modelo.

    Un modelo registra su set una sola vez (en after_migration); los
    modelos dependientes solo leen.
    """

    def __init__(self):
        self._valid_ids = {}

    def register(self, model_name: str, ids) -> None:
        if self.is_registered(model_name):
            raise ValueError(f"Dependencias de '{model_name}' ya registradas")
        self._valid_ids[model_name] = frozenset(ids)

    def is_registered(self, model_name: str) -> bool:
        return model_name in self._valid_ids

    def is_valid(self, model_name: str, value) -> bool:
        if not isinstance(value, Hashable):
            return False
        return value in self._valid_ids.get(model_name, ())


class NestedDataStaging:
    """Staging append-only de registros hijos, por modelo destino."""

    def __init__(self):
        self._data = defaultdict(list)

    def store(self, model_name: str, data) -> None:
        if isinstance(data, list):
            self._data[model_name].extend(data)
        else:
            self._data[model_name].append(data)

    def get(self, model_name: str) -> list:
        return list(self._data.get(model_name, []))


class UniqueConstraintTracker:
    """Claves compuestas vistas dentro de un lote, por nombre de constraint."""

    def __init__(self):
        self._seen = defaultdict(set)

    def seen(self, constraint_name: str, key: str) -> bool:
        return key in self._seen[constraint_name]

    def add(self, constraint_name: str, key: str) -> None:
        self._seen[constraint_name].add(key)
