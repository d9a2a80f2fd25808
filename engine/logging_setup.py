"""
Configuración de logging de la migración.

Formato texto: '<timestamp> [LEVEL] [Modelo] mensaje'
Formato json:  python-json-logger con timestamp, level, logger y model.

Los migradores loguean a través de un ModelLoggerAdapter que inyecta el
nombre del modelo; el filtro ModelFilter completa 'model' con '-' para los
logs del motor.
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from pythonjsonlogger.json import JsonFormatter

TEXT_FORMAT = "%(asctime)s [%(levelname)s] [%(model)s] %(message)s"

LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


class ModelFilter(logging.Filter):
    """Garantiza el atributo 'model' en todos los records."""

    def filter(self, record):
        if not hasattr(record, "model"):
            record.model = "-"
        return True


class MigrationJsonFormatter(JsonFormatter):
    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["model"] = getattr(record, "model", "-")
        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)


class ModelLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter que agrega extra={'model': <nombre>} a cada llamada."""

    def process(self, msg, kwargs):
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("model", self.extra["model"])
        kwargs["extra"] = extra
        return msg, kwargs


def get_model_logger(model_name: str, name: str = "migration") -> ModelLoggerAdapter:
    return ModelLoggerAdapter(logging.getLogger(name), {"model": model_name})


def setup_logging(level: str = "info", log_file: str = None, log_format: str = "text") -> None:
    """
    Configura el logger raíz (stdout + archivo opcional).

    Args:
        level: error | warning | info | debug
        log_file: Ruta del archivo espejo (None o '' para desactivar)
        log_format: 'text' o 'json'
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(LEVELS.get((level or "info").lower(), logging.INFO))
    root_logger.handlers.clear()

    if log_format == "json":
        formatter = MigrationJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
    else:
        formatter = logging.Formatter(TEXT_FORMAT)

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(ModelFilter())
        root_logger.addHandler(handler)

    logging.getLogger("psycopg2").setLevel(logging.WARNING)
