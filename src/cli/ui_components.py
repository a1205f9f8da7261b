"""Componentes de UI para CLI (Rich).

Tablas, paneles y la barra de progreso viven aquí para no mezclar lógica de
comandos con detalles visuales.
"""

from __future__ import annotations

from typing import Sequence

from rich.align import Align
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table
from rich.text import Text

from core.domain.models import ItemOutcome, ItemStatus, ProjectStatus, WorkflowResult
from core.services.workflow_common import WorkflowHooks

_STATUS_STYLE = {
    ItemStatus.SUCCEEDED: "green",
    ItemStatus.FAILED: "red",
    ItemStatus.SKIPPED: "yellow",
}


def print_banner(console: Console) -> None:
    """Imprime el banner de bienvenida (no se muestra en modo no interactivo)."""

    title = Text("keysmith", style="bold cyan")
    subtitle = Text("Google Cloud projects • Gemini API keys • Vertex AI service accounts", style="dim")
    body = Align.center(Text.assemble(title, "\n", subtitle), vertical="middle")
    console.print(Panel(body, border_style="cyan", padding=(1, 4)))


def build_risk_panel() -> Panel:
    body = Text()
    body.append("Creating projects, enabling APIs and linking billing accounts may incur charges.\n")
    body.append("Bulk project creation can breach provider terms or trigger account review.\n")
    body.append("Generated keys are written in plain text: protect the output and key directories.")
    return Panel(body, title=Text("Before you continue", style="bold yellow"), border_style="yellow")


def build_summary_table(result: WorkflowResult, *, show_items: bool = True) -> Table:
    title = f"{result.workflow}: {result.succeeded} ok / {result.failed} failed / {result.skipped} skipped"
    if result.cancelled:
        title += " (cancelled)"
    table = Table(title=title)
    table.add_column("Project", style="cyan", no_wrap=True)
    table.add_column("Status", style="white")
    table.add_column("State", style="dim")
    table.add_column("Details", style="white")
    if not show_items:
        return table
    for item in result.items:
        table.add_row(
            item.target,
            Text(item.status.value, style=_STATUS_STYLE[item.status]),
            item.state.value,
            _details(item),
        )
    return table


def _details(item: ItemOutcome) -> str:
    parts: list[str] = []
    if item.error:
        parts.append(item.error)
    if item.key_file:
        parts.append(str(item.key_file))
    parts.extend(item.notes)
    return "; ".join(parts)


def build_status_table(rows: Sequence[ProjectStatus], *, key_dir: str) -> Table:
    table = Table(title=f"Vertex AI projects ({len(rows)}) • keys in {key_dir}")
    table.add_column("Project", style="cyan", no_wrap=True)
    table.add_column("Billing account", style="white")
    table.add_column("Vertex API", style="green")
    table.add_column("Service account", style="white")
    table.add_column("Local keys", style="magenta", justify="right")
    for row in rows:
        if row.service_account_exists is None:
            account = Text("unknown", style="yellow")
        elif row.service_account_exists:
            account = Text("present", style="green")
        else:
            account = Text("missing", style="red")
        table.add_row(
            row.project_id,
            row.billing_account or "-",
            "enabled" if row.vertex_enabled else "disabled",
            account,
            str(row.local_key_files),
        )
    return table


class ProgressReporter:
    """Barra de progreso Rich alimentada por `WorkflowHooks`."""

    def __init__(self, console: Console) -> None:
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=console,
        )
        self._task_id = None
        self._started = False

    def hooks(self) -> WorkflowHooks:
        return WorkflowHooks(start=self.start, advance=self.advance, warning=self.warning)

    def start(self, workflow: str, total: int) -> None:
        if not self._started:
            self._progress.start()
            self._started = True
        self._task_id = self._progress.add_task(workflow, total=total)

    def advance(self, outcome: ItemOutcome) -> None:
        if self._task_id is not None:
            self._progress.advance(self._task_id)

    def warning(self, message: str) -> None:
        self._progress.console.print(f"[yellow]![/yellow] {message}")

    def stop(self) -> None:
        if self._started:
            self._progress.stop()
            self._started = False
