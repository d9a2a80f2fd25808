"""
Lectura de archivos fuente y filtro incremental por fecha.

Formatos soportados:
- search_index: un objeto JSON por línea, el registro real va en '_source'
  (export de índice de búsqueda). Se lee en chunks de 1 MB con buffer de
  líneas; se tolera BOM en el primer chunk y una última línea sin '\\n'.
- json_array: un único array JSON de nivel superior. Se parsea elemento a
  elemento (JSONDecoder.raw_decode) sin cargar el archivo completo.

Los wrappers de Extended JSON de Mongo ($oid, $date, $numberLong,
$numberDecimal) se decodifican con bson.json_util.

Filtro incremental (solo con INCREMENTAL_SINCE_DATE válido):
- Se usa el primer campo de fecha presente según INCREMENTAL_DATE_FIELDS
- Sin campo de fecha → MISSING_DATE_FIELD_BEHAVIOR
- Fecha inválida, futura o anterior al año 2000 → INVALID_DATE_FIELD_BEHAVIOR
- Fecha válida estrictamente anterior al corte → excluido siempre
"""

import asyncio
import codecs
import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import NamedTuple

from bson import Decimal128, ObjectId, json_util
from bson.json_util import JSONOptions

from engine.errors import ConfigurationError, SourceParseError
from engine.fields import parse_datetime

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
SANITY_YEAR = 2000
DEFAULT_DATE_FIELDS = ["updatedAt", "updated"]
IDENTIFIER_KEYS = ("id", "challengeId", "legacyId", "name", "slug", "referenceId")

EXTENDED_JSON_OPTIONS = JSONOptions(tz_aware=True, tzinfo=timezone.utc)


# =========================================================================
# POLÍTICAS DE FECHA
# =========================================================================


class DateBehavior(NamedTuple):
    strategy: str
    warn: bool
    include: bool


BEHAVIORS = {
    "skip": DateBehavior("skip", warn=False, include=False),
    "include": DateBehavior("include", warn=False, include=True),
    "warn-and-skip": DateBehavior("warn-and-skip", warn=True, include=False),
    "warn-and-include": DateBehavior("warn-and-include", warn=True, include=True),
}


def parse_behavior(value) -> DateBehavior:
    """Normaliza el nombre de política; valores desconocidos → 'skip'."""
    return BEHAVIORS.get((value or "").strip().lower(), BEHAVIORS["skip"])


@dataclass
class FilterOptions:
    since_date: str = None
    date_fields: list = field(default_factory=lambda: list(DEFAULT_DATE_FIELDS))
    missing_behavior: DateBehavior = BEHAVIORS["skip"]
    invalid_behavior: DateBehavior = BEHAVIORS["skip"]
    summary_limit: int = 5

    @classmethod
    def from_settings(cls, settings: dict, incremental: bool) -> "FilterOptions":
        return cls(
            since_date=settings.get("INCREMENTAL_SINCE_DATE") if incremental else None,
            date_fields=list(settings.get("INCREMENTAL_DATE_FIELDS") or DEFAULT_DATE_FIELDS),
            missing_behavior=parse_behavior(settings.get("MISSING_DATE_FIELD_BEHAVIOR")),
            invalid_behavior=parse_behavior(settings.get("INVALID_DATE_FIELD_BEHAVIOR")),
            summary_limit=max(0, int(settings.get("SUMMARY_LOG_LIMIT", 5))),
        )


@dataclass
class LoadSummary:
    """Contadores advisory de una carga. No afectan la corrección."""

    file_name: str
    since_date: str = None
    cutoff: datetime = None
    scanned: int = 0
    retained: int = 0
    parse_errors: int = 0
    missing_date: int = 0
    missing_included: int = 0
    missing_skipped: int = 0
    missing_examples: list = field(default_factory=list)
    invalid_date: int = 0
    invalid_included: int = 0
    invalid_skipped: int = 0
    invalid_examples: list = field(default_factory=list)
    future_dates: int = 0
    future_examples: list = field(default_factory=list)
    ancient_dates: int = 0
    ancient_examples: list = field(default_factory=list)
    out_of_window: int = 0
    field_usage: Counter = field(default_factory=Counter)
    field_usage_retained: Counter = field(default_factory=Counter)
    with_all_fields: int = 0
    with_some_fields: int = 0
    with_no_fields: int = 0
    min_date: datetime = None
    max_date: datetime = None
    histogram: Counter = field(default_factory=Counter)

    @property
    def filtered(self) -> int:
        return self.scanned - self.retained

    @property
    def has_cutoff(self) -> bool:
        return self.cutoff is not None


def get_record_identifier(record):
    if not isinstance(record, dict):
        return "unknown"
    for key in IDENTIFIER_KEYS:
        if record.get(key) is not None:
            return record[key]
    return "unknown"


def _add_example(examples: list, value, limit: int) -> None:
    if len(examples) < (limit or 5):
        examples.append(value)


class IncrementalFilter:
    """
    Evalúa registros contra la ventana incremental y acumula el resumen.

    Args:
        options: FilterOptions de la corrida
        file_name: Archivo en proceso (para logs)
        filter_logger: Logger destino
        now: Instante de referencia para fechas futuras (default: ahora UTC)
    """

    def __init__(self, options: FilterOptions, file_name: str, filter_logger=None, now=None):
        self.options = options
        self.logger = filter_logger or logger
        self.now = now or datetime.now(timezone.utc)
        self.summary = LoadSummary(file_name=file_name, since_date=options.since_date)

        if options.since_date:
            cutoff = parse_datetime(options.since_date)
            if cutoff is None:
                self.logger.warning(
                    "INCREMENTAL_SINCE_DATE inválida para %s: %s (no se filtra)",
                    file_name, options.since_date,
                )
            self.summary.cutoff = cutoff

    def _apply(self, behavior: DateBehavior, message: str, *args) -> bool:
        if behavior.warn:
            self.logger.warning(message + "; estrategia=%s", *args, behavior.strategy)
        return behavior.include

    def _evaluate(self, record: dict):
        """Retorna (incluir, campo_usado, fecha_parseada)."""
        summary = self.summary
        limit = self.options.summary_limit
        date_fields = self.options.date_fields
        identifier = get_record_identifier(record)

        available = [name for name in date_fields if record.get(name) is not None]
        if available and len(available) == len(date_fields):
            summary.with_all_fields += 1
        elif available:
            summary.with_some_fields += 1
        else:
            summary.with_no_fields += 1

        if not summary.has_cutoff:
            parsed = parse_datetime(record[available[0]]) if available else None
            return True, (available[0] if available else None), parsed

        if not available:
            summary.missing_date += 1
            _add_example(summary.missing_examples, identifier, limit)
            include = self._apply(
                self.options.missing_behavior,
                "%s: registro %s sin campos de fecha (%s)",
                summary.file_name, identifier, ", ".join(date_fields),
            )
            if include:
                summary.missing_included += 1
            else:
                summary.missing_skipped += 1
            return include, None, None

        used_field = available[0]
        raw_value = record[used_field]
        parsed = parse_datetime(raw_value)

        if parsed is None:
            summary.invalid_date += 1
            _add_example(summary.invalid_examples, f"{identifier}:{raw_value}", limit)
            include = self._apply(
                self.options.invalid_behavior,
                "%s: registro %s con fecha inválida '%s' en %s",
                summary.file_name, identifier, raw_value, used_field,
            )
            if include:
                summary.invalid_included += 1
            else:
                summary.invalid_skipped += 1
            return include, used_field, None

        reasons = []
        if parsed > self.now:
            summary.future_dates += 1
            reasons.append("fecha futura")
            _add_example(summary.future_examples, f"{identifier}:{parsed.isoformat()}", limit)
        if parsed.year < SANITY_YEAR:
            summary.ancient_dates += 1
            reasons.append(f"fecha anterior a {SANITY_YEAR}")
            _add_example(summary.ancient_examples, f"{identifier}:{parsed.isoformat()}", limit)

        if reasons:
            include = self._apply(
                self.options.invalid_behavior,
                "%s: registro %s con %s (%s)",
                summary.file_name, identifier, " y ".join(reasons), parsed.isoformat(),
            )
            if not include:
                summary.invalid_skipped += 1
                return False, used_field, parsed
            summary.invalid_included += 1

        if parsed < summary.cutoff:
            summary.out_of_window += 1
            return False, used_field, parsed

        return True, used_field, parsed

    def evaluate(self, record: dict) -> bool:
        """Evalúa un registro; True si debe conservarse."""
        summary = self.summary
        summary.scanned += 1
        include, used_field, parsed = self._evaluate(record)

        if used_field:
            summary.field_usage[used_field] += 1
        if not include:
            return False

        summary.retained += 1
        if used_field:
            summary.field_usage_retained[used_field] += 1
        if parsed is not None:
            if summary.min_date is None or parsed < summary.min_date:
                summary.min_date = parsed
            if summary.max_date is None or parsed > summary.max_date:
                summary.max_date = parsed
            summary.histogram[parsed.date().isoformat()] += 1
        return True


# =========================================================================
# PARSERS
# =========================================================================


def decode_extended_json(obj: dict):
    """object_hook: Extended JSON → tipos Python planos (str, datetime, int, Decimal)."""
    value = json_util.object_hook(obj, json_options=EXTENDED_JSON_OPTIONS)
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if isinstance(value, int) and not isinstance(value, bool) and type(value) is not int:
        return int(value)
    return value


def iter_search_index_records(path, summary: LoadSummary = None, chunk_size: int = CHUNK_SIZE,
                              source_logger=None):
    """
    Itera los '_source' de un export línea a línea.

    Las líneas malformadas (o con un '_source' que no es objeto) se cuentan
    en summary.parse_errors y se saltean; las líneas sin '_source' se ignoran.
    """
    log = source_logger or logger
    file_name = Path(path).name
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    line_number = 0
    first_chunk = True

    def report(error: SourceParseError):
        if summary is not None:
            summary.parse_errors += 1
        log.warning("JSON malformado en %s, línea %d: %s", file_name, error.line_number, error)

    def parse(line: str):
        text = line.strip()
        if not text:
            return None
        try:
            parsed = json.loads(text, object_hook=decode_extended_json)
        except json.JSONDecodeError as e:
            report(SourceParseError(str(e), line_number))
            return None
        if not isinstance(parsed, dict) or "_source" not in parsed:
            return None
        source = parsed["_source"]
        if not isinstance(source, dict):
            report(SourceParseError(f"'_source' no es un objeto ({type(source).__name__})", line_number))
            return None
        return source

    with open(path, "rb") as handle:
        while True:
            chunk = handle.read(chunk_size)
            if not chunk:
                break
            buffer += decoder.decode(chunk)
            if first_chunk:
                if buffer.startswith("\ufeff"):
                    buffer = buffer[1:]
                first_chunk = False
            lines = buffer.split("\n")
            buffer = lines.pop()
            for line in lines:
                line_number += 1
                record = parse(line)
                if record is not None:
                    yield record

    buffer += decoder.decode(b"", final=True)
    if buffer:
        line_number += 1
        record = parse(buffer)
        if record is not None:
            yield record


def _skip_whitespace(text: str, position: int) -> int:
    while position < len(text) and text[position] in " \t\r\n":
        position += 1
    return position


def _find_element_end(text: str, position: int) -> int:
    """
    Busca el próximo ',' o ']' de nivel superior fuera de strings.

    Returns:
        int: Índice del separador, o -1 si el buffer no lo contiene todavía
    """
    depth = 0
    in_string = False
    escaped = False
    for index in range(position, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char in "{[":
            depth += 1
        elif char in "}]":
            if depth == 0 and char == "]":
                return index
            depth = max(0, depth - 1)
        elif char == "," and depth == 0:
            return index
    return -1


def iter_json_array_records(path, summary: LoadSummary = None, chunk_size: int = CHUNK_SIZE,
                            source_logger=None):
    """
    Itera los elementos de un array JSON de nivel superior, uno por vez.

    Un elemento malformado se cuenta como error de parseo y la lectura se
    resincroniza en el siguiente separador de nivel superior. Elementos que
    no son objetos se saltean.

    Ejemplo:
        [{"id": "a"}, {"id": }, {"id": "c"}]  →  "a", "c" (parse_errors = 1)
    """
    log = source_logger or logger
    file_name = Path(path).name
    decoder = json.JSONDecoder(object_hook=decode_extended_json)
    buffer = ""
    position = 0
    state = "start"
    element = 0

    def report(message):
        if summary is not None:
            summary.parse_errors += 1
        log.warning("JSON malformado en %s, elemento %d: %s", file_name, element + 1, message)

    with open(path, "r", encoding="utf-8-sig") as handle:
        eof = False
        while state != "done":
            chunk = handle.read(chunk_size)
            if chunk:
                buffer = buffer[position:] + chunk
                position = 0
            else:
                eof = True

            while state != "done":
                position = _skip_whitespace(buffer, position)
                if position >= len(buffer):
                    break
                char = buffer[position]

                if state == "start":
                    if char != "[":
                        raise SourceParseError(f"{file_name}: se esperaba un array JSON")
                    position += 1
                    state = "first"
                elif state == "separator":
                    if char == ",":
                        position += 1
                        state = "value"
                    elif char == "]":
                        state = "done"
                    else:
                        report(f"separador inesperado {char!r}")
                        state = "resync"
                elif state == "resync":
                    boundary = _find_element_end(buffer, position)
                    if boundary < 0:
                        if eof:
                            state = "done"
                        break
                    position = boundary
                    state = "separator"
                elif state == "first" and char == "]":
                    state = "done"
                else:
                    try:
                        value, end = decoder.raw_decode(buffer, position)
                    except json.JSONDecodeError as e:
                        # Sin separador a la vista puede ser solo un elemento truncado
                        boundary = _find_element_end(buffer, position)
                        if boundary >= 0:
                            report(e)
                            element += 1
                            position = boundary
                            state = "separator"
                            continue
                        if eof:
                            report(e)
                            state = "done"
                        break
                    if end >= len(buffer) and not eof:
                        break
                    position = end
                    state = "separator"
                    element += 1
                    if isinstance(value, dict):
                        yield value
                    else:
                        report(f"elemento no es un objeto ({type(value).__name__})")

            if eof and state != "done":
                if state not in ("start", "resync"):
                    report("array sin cerrar")
                break


PARSERS = {
    "search_index": iter_search_index_records,
    "json_array": iter_json_array_records,
}


# =========================================================================
# CARGA
# =========================================================================


def load_records(data_directory, file_name, source_format, options: FilterOptions = None,
                 loader_logger=None, now=None):
    """
    Carga y filtra los registros de un archivo.

    Args:
        data_directory: Directorio de datos
        file_name: Archivo dentro del directorio
        source_format: 'search_index' o 'json_array'
        options: FilterOptions (None = sin filtro)

    Returns:
        tuple: (records, LoadSummary)

    Raises:
        ConfigurationError: Directorio/archivo faltante o formato desconocido
    """
    log = loader_logger or logger
    if not data_directory:
        raise ConfigurationError("DATA_DIRECTORY no configurado")
    if not file_name:
        raise ConfigurationError("filename no configurado")
    parser = PARSERS.get(source_format)
    if parser is None:
        raise ConfigurationError(f"Formato de fuente no soportado: {source_format}")

    path = Path(data_directory) / file_name
    if not path.is_file():
        raise ConfigurationError(f"Archivo fuente no encontrado: {path}")

    record_filter = IncrementalFilter(options or FilterOptions(), file_name, log, now=now)
    records = [
        record
        for record in parser(path, record_filter.summary, source_logger=log)
        if record_filter.evaluate(record)
    ]
    return records, record_filter.summary


async def load_data(data_directory, file_name, source_format, options=None, loader_logger=None):
    """Versión async de load_records (lectura en un thread)."""
    return await asyncio.to_thread(
        load_records, data_directory, file_name, source_format, options, loader_logger
    )


def log_summary(summary: LoadSummary, options: FilterOptions, summary_logger=None) -> None:
    """Emite el resumen de la carga (conteos, ejemplos, rango e histograma)."""
    log = summary_logger or logger
    name = summary.file_name
    limit = options.summary_limit

    if summary.has_cutoff:
        log.info(
            "Filtrado %s: %d/%d registros (%d descartados) desde %s",
            name, summary.retained, summary.scanned, summary.filtered, summary.since_date,
        )
    elif summary.since_date:
        log.info(
            "Cargado %s: %d/%d registros (fecha de corte inválida, sin filtro)",
            name, summary.retained, summary.scanned,
        )
    else:
        log.info("Cargado %s: %d registros (sin filtro de fecha)", name, summary.scanned)

    if summary.retained == 0:
        log.warning("%s: ningún registro pasó el filtro", name)
    elif summary.has_cutoff and summary.filtered == 0:
        log.warning(
            "%s: el 100%% de los registros pasó el filtro incremental; revisar INCREMENTAL_SINCE_DATE (%s)",
            name, summary.since_date,
        )

    if summary.missing_date:
        log.warning(
            "%s: %d registros sin campo de fecha (%s); incluidos=%d, omitidos=%d. Ejemplos: %s",
            name, summary.missing_date, options.missing_behavior.strategy,
            summary.missing_included, summary.missing_skipped,
            ", ".join(map(str, summary.missing_examples)) or "ninguno",
        )
    if summary.invalid_date or summary.invalid_skipped:
        log.warning(
            "%s: %d registros con fecha inválida; incluidos=%d, omitidos=%d. Ejemplos: %s",
            name, summary.invalid_date, summary.invalid_included, summary.invalid_skipped,
            ", ".join(summary.invalid_examples) or "ninguno",
        )
    if summary.future_dates:
        log.warning(
            "%s: %d registros con fecha futura. Ejemplos: %s",
            name, summary.future_dates, ", ".join(summary.future_examples),
        )
    if summary.ancient_dates:
        log.warning(
            "%s: %d registros con fecha anterior a %d. Ejemplos: %s",
            name, summary.ancient_dates, SANITY_YEAR, ", ".join(summary.ancient_examples),
        )

    if summary.field_usage_retained:
        entries = [f"{k}={v}" for k, v in summary.field_usage_retained.most_common()]
        note = ""
        if limit and len(entries) > limit:
            entries, note = entries[:limit], " (truncado)"
        log.info("%s: campos de fecha usados -> %s%s", name, ", ".join(entries), note)
    if summary.field_usage:
        log.debug(
            "%s: campos de fecha presentes -> %s",
            name, ", ".join(f"{k}={v}" for k, v in summary.field_usage.most_common()),
        )

    log.info(
        "%s: registros con todos los campos de fecha=%d, parcial=%d, ninguno=%d",
        name, summary.with_all_fields, summary.with_some_fields, summary.with_no_fields,
    )
    if summary.min_date is not None:
        log.info(
            "%s: rango de fechas %s a %s",
            name, summary.min_date.isoformat(), summary.max_date.isoformat(),
        )
    if summary.histogram and limit:
        top = summary.histogram.most_common(limit)
        note = " (truncado)" if len(summary.histogram) > limit else ""
        log.info(
            "%s: distribución diaria (top %d) -> %s%s",
            name, limit, ", ".join(f"{day}={count}" for day, count in top), note,
        )
    if summary.parse_errors:
        log.warning("%s: %d líneas omitidas por JSON malformado", name, summary.parse_errors)
