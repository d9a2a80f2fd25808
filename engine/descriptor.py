"""
Descriptor inmutable por modelo, construido desde config.MIGRATORS.

La validación ocurre una sola vez al arrancar (validate), no por registro:
campos declarados, FKs, constraints y formato de fuente.
"""

from dataclasses import dataclass, field

SOURCE_FORMATS = ("json_array", "search_index", "nested")


@dataclass(frozen=True)
class UniqueConstraint:
    name: str
    fields: tuple


@dataclass(frozen=True)
class Dependency:
    parent_model: str
    foreign_key: str


@dataclass(frozen=True)
class MigratorDescriptor:
    """
    Configuración estática de un modelo destino.

    Attributes:
        model_name: Nombre del modelo (también nombre de la tabla)
        priority: Orden de ejecución (menor corre primero)
        id_field: Columna PK usada en el where del upsert
        required_fields / optional_fields: Campos que forman el payload
        has_schema_defaults: Campos que la base completa si se omiten
        unique_constraints: Tupla de UniqueConstraint
        dependencies: Tupla de Dependency
        default_values: Defaults estáticos
        source: 'json_array' | 'search_index' | 'nested'
        filename: Archivo fuente (None para 'nested')
    """

    model_name: str
    priority: int
    id_field: str = "id"
    required_fields: tuple = ()
    optional_fields: tuple = ()
    has_schema_defaults: frozenset = frozenset()
    unique_constraints: tuple = ()
    dependencies: tuple = ()
    default_values: dict = field(default_factory=dict, hash=False, compare=False)
    source: str = "json_array"
    filename: str = None
    counters_only: bool = False

    @classmethod
    def from_config(cls, model_name: str, cfg: dict) -> "MigratorDescriptor":
        """
        Construye el descriptor desde una entrada de config.MIGRATORS.

        Ejemplo:
            >>> d = MigratorDescriptor.from_config('Phase', config.MIGRATORS['Phase'])
            >>> d.unique_constraints[0].fields
            ('name',)
        """
        return cls(
            model_name=model_name,
            priority=int(cfg.get("priority", 0)),
            id_field=cfg.get("id_field", "id"),
            required_fields=tuple(cfg.get("required_fields", ())),
            optional_fields=tuple(cfg.get("optional_fields", ())),
            has_schema_defaults=frozenset(cfg.get("has_defaults", ())),
            unique_constraints=tuple(
                UniqueConstraint(name=uc["name"], fields=tuple(uc["fields"]))
                for uc in cfg.get("unique_constraints", ())
            ),
            dependencies=tuple(
                Dependency(parent_model=dep["name"], foreign_key=dep["fkey"])
                for dep in cfg.get("dependencies", ())
            ),
            default_values=dict(cfg.get("default_values", {})),
            source=cfg.get("source", "json_array"),
            filename=cfg.get("filename"),
            counters_only=bool(cfg.get("counters_only", False)),
        )

    @property
    def fields(self) -> tuple:
        return self.required_fields + tuple(
            f for f in self.optional_fields if f not in self.required_fields
        )

    def is_required(self, field_name: str) -> bool:
        return field_name in self.required_fields

    def is_optional(self, field_name: str) -> bool:
        return field_name in self.optional_fields

    def has_schema_default(self, field_name: str) -> bool:
        return field_name in self.has_schema_defaults

    def validate(self) -> list:
        """
        Valida la coherencia del descriptor.

        Returns:
            list: Mensajes de error (vacía si el descriptor es válido)
        """
        errors = []
        declared = set(self.fields)

        if self.id_field not in declared:
            errors.append(f"{self.model_name}: id_field '{self.id_field}' no está declarado")

        for constraint in self.unique_constraints:
            if not constraint.fields:
                errors.append(f"{self.model_name}: constraint '{constraint.name}' sin campos")
            for name in constraint.fields:
                if name not in declared:
                    errors.append(
                        f"{self.model_name}: constraint '{constraint.name}' usa campo no declarado '{name}'"
                    )

        for dep in self.dependencies:
            if dep.foreign_key not in declared:
                errors.append(
                    f"{self.model_name}: FK '{dep.foreign_key}' → {dep.parent_model} no está declarada"
                )

        if self.source not in SOURCE_FORMATS:
            errors.append(f"{self.model_name}: source '{self.source}' no soportado")
        elif self.source != "nested" and not self.filename:
            errors.append(f"{self.model_name}: falta filename")

        return errors
