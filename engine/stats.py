"""
Estadísticas de una corrida: por modelo (MigrationStats) y agregadas (RunStats).

Son valores de retorno: cada migrador devuelve su MigrationStats y el
manager los agrega. Nada se persiste.
"""

from dataclasses import dataclass, field

from engine.payload import IncrementalFieldStats
from engine.upsert import UpsertStats


@dataclass
class MigrationStats:
    model: str
    mode: str = "full"
    loaded: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    failed_batches: int = 0
    duration: float = 0.0
    errors: list = field(default_factory=list)
    incremental: IncrementalFieldStats = None
    upserts: UpsertStats = None

    def summary_line(self) -> str:
        line = (
            f"{self.model}: {self.processed} procesados, {self.skipped} omitidos"
            f" (modo {self.mode}, {self.duration:.2f}s)"
        )
        if self.failed or self.failed_batches:
            line += f", {self.failed} fallidos en {self.failed_batches} lotes"
        return line


@dataclass
class RunStats:
    models: dict = field(default_factory=dict)
    duration: float = 0.0
    aborted: bool = False

    def add(self, stats: MigrationStats) -> None:
        self.models[stats.model] = stats

    @property
    def processed(self) -> int:
        return sum(s.processed for s in self.models.values())

    @property
    def skipped(self) -> int:
        return sum(s.skipped for s in self.models.values())

    @property
    def failed(self) -> int:
        return sum(s.failed for s in self.models.values())

    def display(self) -> str:
        """Bloque de resumen legible para stdout."""
        lines = ["=" * 70, "📊 RESUMEN DE MIGRACIÓN", "=" * 70]
        for stats in self.models.values():
            lines.append(f"   {stats.summary_line()}")
            if stats.incremental is not None and stats.incremental.records:
                for detail in stats.incremental.summary_lines():
                    lines.append(f"      └─ {detail}")
            if stats.upserts is not None:
                counters = ", ".join(f"{k}={v}" for k, v in stats.upserts.as_dict().items() if v)
                if counters:
                    lines.append(f"      └─ upserts: {counters}")
        lines.append("-" * 70)
        lines.append(
            f"   Total: {self.processed} procesados, {self.skipped} omitidos,"
            f" {self.failed} fallidos en {self.duration:.2f}s"
        )
        if self.aborted:
            lines.append("   ⚠️  La corrida fue abortada")
        lines.append("=" * 70)
        return "\n".join(lines)
