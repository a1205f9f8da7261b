"""Logs de auditoría por ejecución (borrado de proyectos, limpieza de claves).

Un fichero por ejecución con marca temporal en el nombre
(`project_deletion_%Y%m%d_%H%M%S.log`). Cada línea:
`<ISO timestamp> <STATUS> <target> [detalle]`.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from adapters.key_writer import file_lock


def timestamped_log_path(log_dir: Path, stem: str, *, now: datetime | None = None) -> Path:
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    return log_dir / f"{stem}_{stamp}.log"


class RunLog:
    def __init__(self, path: Path) -> None:
        self.path = path

    @classmethod
    def create(cls, log_dir: Path, stem: str) -> "RunLog":
        return cls(timestamped_log_path(log_dir, stem))

    def record(self, status: str, target: str, detail: str | None = None) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        line = f"{datetime.now().isoformat(timespec='seconds')} {status.upper()} {target}"
        if detail:
            line += f" {detail}"
        with file_lock(self.path):
            with open(self.path, "a", encoding="utf-8") as handle:
                handle.write(line + "\n")
