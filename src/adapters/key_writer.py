"""Concurrent-Safe File Writer.

Añade credenciales a dos ficheros a la vez:
- fichero de líneas: un valor por línea;
- fichero de comas: valores separados por `,`, sin coma inicial ni final.

Reglas:
- Todo el ciclo "leer si el fichero de comas tiene contenido + escribir"
  ocurre dentro de un lock exclusivo (`fcntl.flock`) sobre
  `<fichero_de_líneas>.lock`. El lock lo comparten hilos, corrutinas y
  otros procesos que escriban en el mismo par de ficheros.
- Solo se añade; nunca se trunca.
- El lock es POSIX (fcntl).
"""

from __future__ import annotations

import fcntl
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from core.domain.models import OutputRecord
from core.log import get_logger

logger = get_logger(__name__)


def lock_path_for(path: Path) -> Path:
    return path.with_name(path.name + ".lock")


@contextmanager
def file_lock(path: Path) -> Iterator[None]:
    """Lock exclusivo bloqueante asociado a `path` (se libera en cualquier salida)."""

    lock_file = lock_path_for(path)
    lock_file.parent.mkdir(parents=True, exist_ok=True)
    with open(lock_file, "a") as handle:
        fcntl.flock(handle, fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(handle, fcntl.LOCK_UN)


class KeyFileWriter:
    def __init__(self, line_file: Path, comma_file: Path) -> None:
        self.line_file = line_file
        self.comma_file = comma_file

    @property
    def targets(self) -> list[Path]:
        return [self.line_file, self.comma_file]

    def append_record(self, value: str) -> OutputRecord:
        value = (value or "").strip()
        if not value:
            raise ValueError("refusing to write an empty credential")

        self.line_file.parent.mkdir(parents=True, exist_ok=True)
        self.comma_file.parent.mkdir(parents=True, exist_ok=True)

        with file_lock(self.line_file):
            with open(self.line_file, "a", encoding="utf-8") as handle:
                handle.write(value + "\n")

            has_content = self.comma_file.exists() and self.comma_file.stat().st_size > 0
            with open(self.comma_file, "a", encoding="utf-8") as handle:
                handle.write(f",{value}" if has_content else value)

        logger.debug("credential appended", line_file=str(self.line_file))
        return OutputRecord(value=value, targets=self.targets)
