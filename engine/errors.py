"""
Taxonomía de errores del motor de migración.

- RecordSkipped: el registro se descarta (se cuenta y se loguea, nunca es fatal)
- RecoverableWriteError: overflow o string numérico, admite un reintento saneado
- UnknownWriteError: cualquier otro fallo del store; aborta el lote
- SourceParseError: línea o fragmento JSON malformado en la fuente
- RunFatalError: aborta la corrida completa, conserva estadísticas parciales
"""


class MigrationError(Exception):
    """Base de todos los errores del motor."""


class RecordSkipped(MigrationError):
    """
    Señala que un registro debe descartarse.

    Args:
        reason: Motivo legible del descarte
        record_id: Valor del id del registro (si existe)
    """

    def __init__(self, reason: str, record_id=None):
        super().__init__(reason)
        self.reason = reason
        self.record_id = record_id


# === ERRORES DE ESCRITURA ===


class WriteError(MigrationError):
    """Fallo reportado por la capa de persistencia."""

    def __init__(self, message: str, model: str = None):
        super().__init__(message)
        self.model = model


class RecoverableWriteError(WriteError):
    """Fallo tipado que admite un reintento con payload saneado."""


class WriteOverflowError(RecoverableWriteError):
    """Un valor numérico no cabe en la columna destino."""

    def __init__(self, message: str, model: str = None, field: str = None):
        super().__init__(message, model)
        self.field = field


class TypedWriteError(RecoverableWriteError):
    """
    Error con metadata estructurada campo → tipo esperado.

    Attributes:
        field_types: dict {campo: tipo} (ej: {'legacyId': 'Int'})
    """

    def __init__(self, message: str, model: str = None, field_types: dict = None):
        super().__init__(message, model)
        self.field_types = dict(field_types or {})


class NumericTypeMismatchError(TypedWriteError):
    """El store rechazó un string en una columna numérica."""


class UnknownWriteError(WriteError):
    """Fallo no clasificado del store. No se reintenta."""


class RecordNotFoundError(WriteError):
    """UPDATE sobre una fila inexistente."""


# === ERRORES DE FUENTE Y DE CORRIDA ===


class SourceParseError(MigrationError):
    def __init__(self, message: str, line_number: int = None):
        super().__init__(message)
        self.line_number = line_number


class RunFatalError(MigrationError):
    """
    Aborta la corrida completa.

    Attributes:
        stats: RunStats con los modelos completados hasta el fallo
    """

    def __init__(self, message: str, stats=None):
        super().__init__(message)
        self.stats = stats


class ConfigurationError(RunFatalError):
    """Configuración faltante o inválida (directorio, filename, descriptor)."""
