"""
Utilidades de campos compartidas por todo el motor.

El centinela OMIT indica "no escribir este campo, que la base aplique su
propio default". Es distinto de None (que se escribe como NULL) y de la
ausencia de la key en el registro.
"""

import enum
import json
from datetime import datetime, timezone


class Omit(enum.Enum):
    """Marcador de omisión. Única instancia: Omit.OMIT."""

    OMIT = "omit"

    def __repr__(self):
        return "OMIT"


OMIT = Omit.OMIT


class FieldState(enum.Enum):
    """Estado de un campo dentro de un registro fuente."""

    ABSENT = "absent"
    NULL = "null"
    EXPLICIT = "explicit"


def field_state(record: dict, field: str) -> FieldState:
    """
    Clasifica un campo del registro en ABSENT, NULL o EXPLICIT.

    Ejemplo:
        >>> field_state({"a": None}, "a")
        <FieldState.NULL: 'null'>
        >>> field_state({}, "a")
        <FieldState.ABSENT: 'absent'>
    """
    if field not in record:
        return FieldState.ABSENT
    if record[field] is None:
        return FieldState.NULL
    return FieldState.EXPLICIT


def strip_omitted(data: dict) -> dict:
    """Retorna una copia del dict sin las keys cuyo valor es OMIT."""
    return {key: value for key, value in data.items() if value is not OMIT}


def parse_datetime(value):
    """
    Convierte un valor de fecha a datetime con zona horaria (UTC si es naive).

    Acepta datetime, epoch en milisegundos (int/float) o string ISO-8601
    (con sufijo 'Z' incluido).

    Returns:
        datetime | None: None si el valor no es interpretable
    """
    if value is None or value is OMIT or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        try:
            parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_string_array(value) -> list:
    """
    Normaliza un array que puede venir serializado como string JSON.

    Ejemplo:
        >>> parse_string_array('[{"phaseId": "p1"}]')
        [{'phaseId': 'p1'}]
        >>> parse_string_array(None)
        []
    """
    if value is None or value is OMIT:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            return []
        return parsed if isinstance(parsed, list) else []
    return []
