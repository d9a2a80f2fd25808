"""
Ejecución de upserts con recuperación de errores tipados.

Clasificación de fallos del store:
- WriteOverflowError: valor fuera de rango int32. Se eliminan los campos
  desbordados (opcionales o no declarados); si el campo es requerido el
  registro se descarta sin reintentar.
- TypedWriteError / NumericTypeMismatchError: string en columna numérica.
  Se convierten los strings que léxicamente son números del tipo esperado.
- Cualquier otro WriteError: se propaga (aborta el lote).

Nunca hay más de un reintento; si el reintento falla el registro se descarta.
"""

import logging
import math
import re
from dataclasses import dataclass, fields
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from engine.errors import (
    RecordSkipped,
    RecoverableWriteError,
    TypedWriteError,
    WriteError,
    WriteOverflowError,
)
from engine.payload import UpsertPayload

logger = logging.getLogger(__name__)

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1

INTEGER_PATTERN = re.compile(r"[+-]?\d+", re.ASCII)
FLOAT_PATTERN = re.compile(r"[+-]?(?:\d+(\.\d+)?|\.\d+)(?:[eE][+-]?\d+)?", re.ASCII)

# Fallback para stores que solo reportan texto (formato estilo Prisma)
NUMERIC_ARGUMENT_PATTERN = re.compile(
    r"Argument\s+(?:[\"'`])?([A-Za-z0-9_.\[\]]+)(?:[\"'`])?\s*:\s*Invalid value provided\.?"
    r"\s*Expected\s+([A-Za-z0-9]+)[^,]*,\s*provided\s+String",
    re.IGNORECASE,
)


@dataclass
class UpsertStats:
    attempts: int = 0
    created: int = 0
    updated: int = 0
    retried: int = 0
    retry_succeeded: int = 0
    retry_failed: int = 0
    overflow_fixes: int = 0
    numeric_conversions: int = 0
    skipped: int = 0

    def as_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def describe_payload(payload: UpsertPayload, id_field: str) -> str:
    """Etiqueta legible del registro destino para logs."""
    if id_field in payload.where:
        return f"[{id_field}: {payload.where[id_field]}]"
    return f"[where: {payload.where!r}]"


def _is_number(value) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and math.isfinite(value)


def sanitize_overflow(payload: UpsertPayload, descriptor, model_logger=None):
    """
    Elimina valores que desbordan int32 de update y create.

    Returns:
        tuple: (payload_saneado, modified, skip)
            - skip=True si algún campo requerido desborda
    """
    log = model_logger or logger
    label = describe_payload(payload, descriptor.id_field)
    modified = False
    skip = False

    def prune(section: dict, section_name: str) -> dict:
        nonlocal modified, skip
        sanitized = dict(section)
        for key, value in section.items():
            if not _is_number(value) or INT32_MIN <= value <= INT32_MAX:
                continue
            if descriptor.is_optional(key):
                del sanitized[key]
                modified = True
                log.warning(
                    "%s: campo opcional '%s' (%s) eliminado de %s por overflow",
                    label, key, value, section_name,
                )
            elif descriptor.is_required(key):
                skip = True
                log.error(
                    "%s: el campo requerido '%s' desborda (%s); no se puede migrar",
                    label, key, value,
                )
            else:
                del sanitized[key]
                modified = True
                log.warning(
                    "%s: campo '%s' (%s) eliminado de %s por overflow",
                    label, key, value, section_name,
                )
        return sanitized

    sanitized = UpsertPayload(
        where=dict(payload.where),
        update=prune(payload.update, "update"),
        create=prune(payload.create, "create"),
    )
    return sanitized, modified, skip


def try_convert_numeric_string(value, expected_type: str):
    """
    Convierte un string numérico al tipo esperado.

    Args:
        value: String a convertir
        expected_type: BIGINT, INT, SMALLINT, FLOAT, DOUBLE, REAL, DECIMAL, NUMERIC
            (otro valor: entero si parece entero, si no float)

    Returns:
        int | float | Decimal | None: None si el string no es un número válido del tipo

    Ejemplo:
        >>> try_convert_numeric_string(" 42 ", "Int")
        42
        >>> try_convert_numeric_string("4.2", "Int") is None
        True
    """
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None

    kind = (expected_type or "").upper()

    if kind in ("BIGINT", "INT", "INTEGER", "SMALLINT"):
        return int(text) if INTEGER_PATTERN.fullmatch(text) else None

    if kind in ("FLOAT", "DOUBLE", "REAL"):
        if not FLOAT_PATTERN.fullmatch(text):
            return None
        number = float(text)
        return number if math.isfinite(number) else None

    if kind in ("DECIMAL", "NUMERIC"):
        if not FLOAT_PATTERN.fullmatch(text):
            return None
        try:
            return Decimal(text)
        except InvalidOperation:
            return None

    if INTEGER_PATTERN.fullmatch(text):
        return int(text)
    if FLOAT_PATTERN.fullmatch(text):
        number = float(text)
        return number if math.isfinite(number) else None
    return None


def convert_numeric_strings(payload: UpsertPayload, field_types: dict):
    """
    Recorre where/update/create (recursivamente) convirtiendo strings numéricos.

    Returns:
        tuple: (payload, convertidos) donde convertidos es la lista
               'campo (TIPO)' de conversiones aplicadas
    """
    targets = {name: (kind or "").upper() for name, kind in (field_types or {}).items() if name}
    if not targets:
        return payload, []

    converted = []

    def walk(value):
        if isinstance(value, (datetime, date, Decimal)) or value is None:
            return value
        if isinstance(value, list):
            return [walk(item) for item in value]
        if isinstance(value, dict):
            result = {}
            for key, entry in value.items():
                expected = targets.get(key)
                if expected and isinstance(entry, str):
                    number = try_convert_numeric_string(entry, expected)
                    if number is not None:
                        entry = number
                        label = f"{key} ({expected})"
                        if label not in converted:
                            converted.append(label)
                result[key] = walk(entry)
            return result
        return value

    result = UpsertPayload(
        where=walk(payload.where),
        update=walk(payload.update),
        create=walk(payload.create),
    )
    if not converted:
        return payload, []
    return result, converted


def normalize_error_field_path(raw_path: str):
    """'data.create.legacyId' → 'legacyId'; 'items[0].value' → 'value'."""
    if not raw_path or not isinstance(raw_path, str):
        return None
    segments = [s.strip() for s in re.sub(r"\[\d+\]", ".", raw_path).split(".") if s.strip()]
    return segments[-1] if segments else None


def parse_numeric_field_types(message: str) -> dict:
    """
    Fallback: extrae {campo: TIPO} del texto de un error de validación.

    Es best-effort: si el texto no coincide retorna {} y el valor queda sin
    convertir.
    """
    field_types = {}
    for match in NUMERIC_ARGUMENT_PATTERN.finditer(message or ""):
        name = normalize_error_field_path(match.group(1))
        if name and name not in field_types:
            field_types[name] = match.group(2).upper()
    return field_types


@dataclass
class UpsertOutcome:
    row: dict
    created: bool
    retried: bool = False


class UpsertExecutor:
    """
    Ejecuta el upsert de un registro con un único reintento saneado.

    Args:
        descriptor: MigratorDescriptor del modelo
        model_logger: Logger (o adapter) del migrador
        stats: UpsertStats donde acumular (None = no recolectar)
    """

    def __init__(self, descriptor, model_logger=None, stats: UpsertStats = None):
        self.descriptor = descriptor
        self.logger = model_logger or logger
        self.stats = stats

    def _count(self, name: str, amount: int = 1) -> None:
        if self.stats is not None:
            setattr(self.stats, name, getattr(self.stats, name) + amount)

    def recover(self, error: RecoverableWriteError, payload: UpsertPayload):
        """
        Decide la acción ante un error recuperable.

        Returns:
            UpsertPayload | None: payload para reintentar, o None si no hay
            forma de corregirlo y el error debe propagarse

        Raises:
            RecordSkipped: si el registro debe descartarse
        """
        label = describe_payload(payload, self.descriptor.id_field)
        record_id = payload.where.get(self.descriptor.id_field)

        if isinstance(error, WriteOverflowError):
            self.logger.warning("Overflow de entero en %s: %s", label, error)
            sanitized, modified, skip = sanitize_overflow(payload, self.descriptor, self.logger)
            if skip:
                raise RecordSkipped("overflow en campo requerido", record_id)
            if modified:
                self._count("overflow_fixes")
                self.logger.warning("Reintentando %s sin los valores desbordados", label)
                return sanitized
            raise RecordSkipped("overflow sin corrección posible", record_id)

        if isinstance(error, TypedWriteError):
            field_types = error.field_types or parse_numeric_field_types(str(error))
            converted_payload, converted = convert_numeric_strings(payload, field_types)
            if converted:
                self._count("numeric_conversions", len(converted))
                self.logger.warning(
                    "%s: strings convertidos en %s; reintentando upsert",
                    label, ", ".join(converted),
                )
                return converted_payload

        return None

    async def execute(self, store, payload: UpsertPayload) -> UpsertOutcome:
        model = self.descriptor.model_name
        id_field = self.descriptor.id_field
        self._count("attempts")

        try:
            result = await store.upsert(model, id_field, payload)
        except RecoverableWriteError as error:
            try:
                retry_payload = self.recover(error, payload)
            except RecordSkipped:
                self._count("skipped")
                raise
            if retry_payload is None:
                raise

            self._count("retried")
            try:
                result = await store.upsert(model, id_field, retry_payload)
            except WriteError as retry_error:
                self._count("retry_failed")
                self._count("skipped")
                self.logger.error(
                    "Falló el reintento de upsert %s: %s",
                    describe_payload(payload, id_field), retry_error,
                )
                raise RecordSkipped(
                    "falló el reintento de upsert", payload.where.get(id_field)
                ) from retry_error

            self._count("retry_succeeded")
            self._count("created" if result.created else "updated")
            return UpsertOutcome(row=result.row, created=result.created, retried=True)

        self._count("created" if result.created else "updated")
        return UpsertOutcome(row=result.row, created=result.created)
