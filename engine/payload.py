"""
Construcción de payloads de upsert (modo completo e incremental).

Modo completo:
    update = todos los campos resueltos menos el id + updatedAt/updatedBy
    create = todos los campos resueltos + createdAt

Modo incremental:
    update = solo INCREMENTAL_FIELDS (los faltantes quedan en OMIT) + updatedAt/updatedBy
    create = igual que en modo completo (filas nuevas se escriben completas)
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone

from engine.fields import OMIT, parse_datetime

logger = logging.getLogger(__name__)


@dataclass
class UpsertPayload:
    where: dict
    update: dict
    create: dict

    def copy(self) -> "UpsertPayload":
        return UpsertPayload(dict(self.where), dict(self.update), dict(self.create))


@dataclass
class IncrementalFieldStats:
    """Cobertura de campos incrementales para un modelo."""

    records: int = 0
    present: Counter = field(default_factory=Counter)
    missing: Counter = field(default_factory=Counter)

    def coverage(self, field_name: str) -> float:
        if not self.records:
            return 0.0
        return self.present[field_name] / self.records

    def summary_lines(self) -> list:
        lines = []
        for name in sorted(set(self.present) | set(self.missing)):
            lines.append(
                f"{name}: {self.present[name]}/{self.records} "
                f"({self.coverage(name):.0%}), faltante en {self.missing[name]}"
            )
        return lines


def _timestamp_or_now(value) -> datetime:
    return parse_datetime(value) or datetime.now(timezone.utc)


class PayloadBuilder:
    """
    Construye UpsertPayload para un modelo.

    Args:
        model_name: Nombre del modelo (para logs)
        id_field: Columna PK
        incremental: True si la corrida tiene INCREMENTAL_SINCE_DATE
        incremental_fields: Lista de campos a actualizar en modo incremental
        model_logger: Logger (o adapter) del migrador
    """

    def __init__(self, model_name, id_field, incremental=False, incremental_fields=None, model_logger=None):
        self.model_name = model_name
        self.id_field = id_field
        self.incremental_fields = [f for f in (incremental_fields or []) if f != id_field]
        self.incremental = incremental
        self.logger = model_logger or logger
        self.field_stats = IncrementalFieldStats()
        self._fallback_warned = False
        self._missing_warned = set()

    @property
    def mode(self) -> str:
        return "incremental" if self.incremental else "full"

    def build(self, data: dict) -> UpsertPayload:
        if not self.incremental:
            return self.build_full(data)
        if not self.incremental_fields:
            if not self._fallback_warned:
                self._fallback_warned = True
                self.logger.warning(
                    "Modo incremental sin INCREMENTAL_FIELDS configurados; "
                    "se usa el modo completo para %s",
                    self.model_name,
                )
            return self.build_full(data)
        return self.build_incremental(data)

    def _create_section(self, data: dict) -> dict:
        create = dict(data)
        create["createdAt"] = _timestamp_or_now(data.get("createdAt"))
        create["updatedAt"] = _timestamp_or_now(data.get("updatedAt"))
        return create

    def build_full(self, data: dict) -> UpsertPayload:
        update = {key: value for key, value in data.items() if key != self.id_field}
        update["updatedAt"] = _timestamp_or_now(data.get("updatedAt"))
        update["updatedBy"] = data.get("updatedBy", OMIT)
        return UpsertPayload(
            where={self.id_field: data.get(self.id_field, OMIT)},
            update=update,
            create=self._create_section(data),
        )

    def build_incremental(self, data: dict) -> UpsertPayload:
        update = {}
        self.field_stats.records += 1

        for name in self.incremental_fields:
            if data.get(name, OMIT) is not OMIT:
                update[name] = data[name]
                self.field_stats.present[name] += 1
            else:
                update[name] = OMIT
                self.field_stats.missing[name] += 1
                if name not in self._missing_warned:
                    self._missing_warned.add(name)
                    self.logger.warning(
                        "El campo incremental '%s' falta en algunos registros de %s; "
                        "no se actualizará para esos registros",
                        name,
                        self.model_name,
                    )

        update["updatedAt"] = _timestamp_or_now(data.get("updatedAt"))
        update["updatedBy"] = data.get("updatedBy", OMIT)
        return UpsertPayload(
            where={self.id_field: data.get(self.id_field, OMIT)},
            update=update,
            create=self._create_section(data),
        )
