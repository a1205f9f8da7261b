"""Command-line entry point.

Commands:
- `keysmith gemini create|keys|delete`
- `keysmith vertex status|provision|create`
- `keysmith plan run FILE`
- `keysmith config show|set`
- `keysmith doctor run|setup`

Exit codes: 0 normal (an operator decline included), 1 fatal environment
problem or a workflow-level remote failure, 2 invalid input, 130 interrupted.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, TypeVar

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from adapters.json_exporter import export_results_json
from adapters.plan_loader import load_plan
from cli import doctor
from cli.prompts import TerminalGate
from cli.ui_components import (
    ProgressReporter,
    build_risk_panel,
    build_status_table,
    build_summary_table,
    print_banner,
)
from core.config import AppSettings, env_var_name, get_user_env_file, write_user_env_vars
from core.domain.errors import EnvironmentFatalError, KeysmithError, OperationCancelled
from core.domain.models import KeyPolicy, ProjectStatus, WorkflowResult
from core.log import get_logger, setup_logging
from core.services.dispatch import WORKFLOWS, build_request, dispatch
from core.services.gemini_workflows import GeminiCreateRequest, GeminiDeleteRequest, GeminiKeysRequest
from core.services.runtime import ExecutionContext, check_environment, open_session
from core.services.vertex_workflows import VertexCreateRequest, VertexProvisionRequest, vertex_status

T = TypeVar("T")

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help="Bulk Google Cloud provisioning: projects, Gemini API keys and Vertex AI service accounts.",
)
gemini_app = typer.Typer(no_args_is_help=True, help="Gemini API key workflows.")
vertex_app = typer.Typer(no_args_is_help=True, help="Vertex AI service-account workflows.")
plan_app = typer.Typer(no_args_is_help=True, help="Run several workflows from a JSON plan.")
config_app = typer.Typer(no_args_is_help=True, help="Show or persist configuration.")

app.add_typer(gemini_app, name="gemini")
app.add_typer(vertex_app, name="vertex")
app.add_typer(plan_app, name="plan")
app.add_typer(config_app, name="config")
app.add_typer(doctor.app, name="doctor")

_console = Console()
logger = get_logger(__name__)


@dataclass
class CliState:
    assume_yes: bool = False
    non_interactive: bool = False
    log_level: str | None = None


@app.callback()
def main_callback(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Answer yes to cost confirmations (never to destructive phrases)."),
    non_interactive: bool = typer.Option(
        False, "--non-interactive", help="Never prompt; confirmations take their safe default."
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING or ERROR."),
) -> None:
    ctx.obj = CliState(assume_yes=yes, non_interactive=non_interactive, log_level=log_level)


def _state(ctx: typer.Context) -> CliState:
    return ctx.obj if isinstance(ctx.obj, CliState) else CliState()


def _load_settings(state: CliState) -> AppSettings:
    try:
        settings = AppSettings()
    except ValidationError as exc:
        _console.print(f"[red]Invalid configuration:[/red]\n{exc}")
        raise typer.Exit(code=1) from exc
    if state.log_level:
        level = state.log_level.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise typer.BadParameter(f"unknown log level: {state.log_level}", param_hint="--log-level")
        settings = settings.model_copy(update={"log_level": level})
    setup_logging(settings.log_level, settings.log_file)
    return settings


def _gate(state: CliState, *, phrase_answer: str | None = None) -> TerminalGate:
    return TerminalGate(
        interactive=False if state.non_interactive else None,
        assume_yes=state.assume_yes,
        phrase_answer=phrase_answer,
        console=_console,
    )


def _execute(
    state: CliState,
    job: Callable[[ExecutionContext], Awaitable[T]],
    *,
    gate: TerminalGate | None = None,
    show_risks: bool = False,
) -> T:
    """Abre la sesión, verifica el entorno y ejecuta `job` traduciendo errores a exit codes."""

    settings = _load_settings(state)
    gate = gate or _gate(state)
    reporter = ProgressReporter(_console)

    if gate.interactive:
        print_banner(_console)
        if show_risks:
            _console.print(build_risk_panel())

    async def runner() -> T:
        with open_session(settings, gate, hooks=reporter.hooks()) as ctx:
            await check_environment(ctx.client)
            return await job(ctx)

    try:
        return asyncio.run(runner())
    except KeyboardInterrupt:
        logger.warning("interrupted by operator")
        _console.print("\n[yellow]Interrupted.[/yellow] Output files keep every record written so far.")
        raise typer.Exit(code=130)
    except EnvironmentFatalError as exc:
        _console.print(f"[red]Fatal:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    except OperationCancelled as exc:
        _console.print(f"[yellow]Cancelled:[/yellow] {exc}")
        raise typer.Exit(code=0) from exc
    except KeysmithError as exc:
        logger.error("workflow aborted", error=str(exc))
        _console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    finally:
        reporter.stop()


def _finish(results: list[WorkflowResult], report: Path | None) -> None:
    for result in results:
        _console.print(build_summary_table(result))
        if result.cancelled:
            _console.print(f"[yellow]Cancelled:[/yellow] {result.metadata.get('cancel_reason', 'declined')}")
        for output in result.outputs:
            _console.print(f"[dim]output:[/dim] {output}")
    if report:
        path = export_results_json(results=results, output_path=report)
        _console.print(f"[green]Report written to:[/green] {path}")


def _clean(values: list[str] | None) -> list[str] | None:
    cleaned = [v.strip() for v in values or [] if v.strip()]
    return cleaned or None


async def _pick_projects(ctx: ExecutionContext, gate: TerminalGate, title: str) -> list[str] | None:
    """Selector interactivo; `None` deja que el workflow use todos los proyectos."""

    if not gate.interactive:
        return None
    projects = await ctx.client.list_projects()
    if not projects:
        return None
    selected = gate.select_many(title, projects, columns=("Project",))
    return selected


async def _pick_billing_accounts(ctx: ExecutionContext, gate: TerminalGate, title: str) -> list[str]:
    if not gate.interactive:
        return []
    accounts = await ctx.client.billing_accounts()
    rows = [f"{a.account_id}\t{a.display_name}" for a in accounts]
    return gate.select_many(title, rows, columns=("Account", "Name"))


# ----------------------------------------------------------------------
# gemini
# ----------------------------------------------------------------------


@gemini_app.command("create")
def gemini_create_cmd(
    ctx: typer.Context,
    count: int | None = typer.Option(None, "--count", "-n", min=1, help="Projects to create (default from config)."),
    prefix: str | None = typer.Option(None, "--prefix", help="Project id prefix."),
    report: Path | None = typer.Option(None, "--report", help="Write a JSON run report."),
) -> None:
    """Create new projects, enable the Gemini API and collect one API key per project."""

    state = _state(ctx)
    request = GeminiCreateRequest(count=count, prefix=prefix)
    result = _execute(state, lambda c: dispatch(c, "gemini-create", request), show_risks=True)
    _finish([result], report)


@gemini_app.command("keys")
def gemini_keys_cmd(
    ctx: typer.Context,
    projects: list[str] | None = typer.Option(None, "--project", "-p", help="Project id (repeatable)."),
    all_projects: bool = typer.Option(False, "--all", help="Use every visible project without asking."),
    report: Path | None = typer.Option(None, "--report", help="Write a JSON run report."),
) -> None:
    """Collect Gemini API keys from existing projects (reusing keys when present)."""

    state = _state(ctx)
    gate = _gate(state)
    explicit = _clean(projects)

    async def job(c: ExecutionContext) -> WorkflowResult:
        selection = explicit
        if selection is None and not all_projects:
            selection = await _pick_projects(c, gate, "Projects to extract keys from")
            if selection == []:
                gate.notify("Nothing selected.")
                return WorkflowResult(workflow="gemini-keys", cancelled=True)
        return await dispatch(c, "gemini-keys", GeminiKeysRequest(projects=selection))

    result = _execute(state, job, gate=gate)
    _finish([result], report)


@gemini_app.command("delete")
def gemini_delete_cmd(
    ctx: typer.Context,
    projects: list[str] | None = typer.Option(None, "--project", "-p", help="Project id (repeatable)."),
    all_projects: bool = typer.Option(False, "--all", help="Target every visible project."),
    confirm_phrase: str | None = typer.Option(
        None, "--confirm-phrase", help="Destructive confirmation phrase for non-interactive runs."
    ),
    report: Path | None = typer.Option(None, "--report", help="Write a JSON run report."),
) -> None:
    """Delete projects. Requires typing DELETE-ALL."""

    state = _state(ctx)
    gate = _gate(state, phrase_answer=confirm_phrase)
    explicit = _clean(projects)
    if explicit is None and not all_projects and state.non_interactive:
        raise typer.BadParameter("pass --project or --all in non-interactive mode")

    async def job(c: ExecutionContext) -> WorkflowResult:
        selection = explicit
        if selection is None and not all_projects:
            selection = await _pick_projects(c, gate, "Projects to delete")
            if not selection:
                gate.notify("Nothing selected.")
                return WorkflowResult(workflow="gemini-delete", cancelled=True)
        return await dispatch(c, "gemini-delete", GeminiDeleteRequest(projects=selection))

    result = _execute(state, job, gate=gate)
    _finish([result], report)


# ----------------------------------------------------------------------
# vertex
# ----------------------------------------------------------------------


@vertex_app.command("status")
def vertex_status_cmd(ctx: typer.Context) -> None:
    """Show projects with Vertex AI enabled and their service-account state."""

    state = _state(ctx)

    async def job(c: ExecutionContext) -> tuple[list[ProjectStatus], Path]:
        return await vertex_status(c), c.settings.key_dir

    rows, key_dir = _execute(state, job)
    if not rows:
        _console.print("No projects with Vertex AI enabled were found.")
        return
    _console.print(build_status_table(rows, key_dir=str(key_dir)))


@vertex_app.command("provision")
def vertex_provision_cmd(
    ctx: typer.Context,
    projects: list[str] | None = typer.Option(None, "--project", "-p", help="Project id (repeatable)."),
    billing_account: str | None = typer.Option(None, "--billing-account", help="Use the projects linked to this account."),
    create_accounts: bool = typer.Option(
        True, "--create-accounts/--no-create-accounts", help="Create the service account when missing."
    ),
    key_policy: KeyPolicy = typer.Option(
        KeyPolicy.KEEP, "--key-policy", case_sensitive=False, help="Existing keys: keep, replace or skip."
    ),
    report: Path | None = typer.Option(None, "--report", help="Write a JSON run report."),
) -> None:
    """Configure Vertex AI on existing projects and issue service-account keys."""

    state = _state(ctx)
    gate = _gate(state)
    explicit = _clean(projects)

    async def job(c: ExecutionContext) -> WorkflowResult:
        account = billing_account
        if explicit is None and account is None and c.settings.billing_account is None:
            chosen = await _pick_billing_accounts(c, gate, "Billing account whose projects to configure")
            account = chosen[0] if chosen else None
        request = VertexProvisionRequest(
            projects=explicit,
            billing_account=account,
            create_missing_accounts=create_accounts,
            key_policy=key_policy,
        )
        return await dispatch(c, "vertex-provision", request)

    result = _execute(state, job, gate=gate, show_risks=True)
    _finish([result], report)


@vertex_app.command("create")
def vertex_create_cmd(
    ctx: typer.Context,
    billing_accounts: list[str] | None = typer.Option(
        None, "--billing-account", "-b", help="Billing account id (repeatable)."
    ),
    count: int | None = typer.Option(None, "--count", "-n", min=1, help="Projects per billing account."),
    prefix: str | None = typer.Option(None, "--prefix", help="Project id prefix."),
    continue_without_billing: bool = typer.Option(
        False, "--continue-without-billing", help="Keep a project whose billing link failed."
    ),
    report: Path | None = typer.Option(None, "--report", help="Write a JSON run report."),
) -> None:
    """Create Vertex AI projects per billing account, up to the per-account limit."""

    state = _state(ctx)
    gate = _gate(state)
    explicit = _clean(billing_accounts)

    async def job(c: ExecutionContext) -> WorkflowResult:
        accounts = explicit
        if accounts is None and c.settings.billing_account is None:
            accounts = await _pick_billing_accounts(c, gate, "Billing accounts to use") or None
        request = VertexCreateRequest(
            billing_accounts=accounts,
            count=count,
            prefix=prefix,
            continue_without_billing=continue_without_billing,
        )
        return await dispatch(c, "vertex-create", request)

    result = _execute(state, job, gate=gate, show_risks=True)
    _finish([result], report)


# ----------------------------------------------------------------------
# plan
# ----------------------------------------------------------------------


@plan_app.command("run")
def plan_run_cmd(
    ctx: typer.Context,
    plan_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON plan file."),
    confirm_phrase: str | None = typer.Option(None, "--confirm-phrase", help="Phrase for destructive steps."),
    report: Path | None = typer.Option(None, "--report", help="Write a JSON run report."),
) -> None:
    """Run the workflows listed in a JSON plan, in order."""

    state = _state(ctx)
    try:
        plan = load_plan(plan_file)
        requests = [(step.workflow, build_request(step.workflow, step.params)) for step in plan.steps]
    except (OSError, json.JSONDecodeError, ValidationError, KeysmithError) as exc:
        _console.print(f"[red]Invalid plan:[/red] {exc}")
        raise typer.Exit(code=2) from exc

    async def job(c: ExecutionContext) -> list[WorkflowResult]:
        results: list[WorkflowResult] = []
        for name, request in requests:
            results.append(await dispatch(c, name, request))
        return results

    gate = _gate(state, phrase_answer=confirm_phrase)
    results = _execute(state, job, gate=gate, show_risks=True)
    _finish(results, report)


@plan_app.command("workflows")
def plan_workflows_cmd() -> None:
    """List the workflow names a plan can use."""

    table = Table(title="Workflows")
    table.add_column("Name", style="bright_green", no_wrap=True)
    table.add_column("Description", style="white")
    table.add_column("Params", style="dim")
    for name, spec in WORKFLOWS.items():
        table.add_row(name, spec.summary, ", ".join(spec.request_model.model_fields))
    _console.print(table)


# ----------------------------------------------------------------------
# config
# ----------------------------------------------------------------------


@config_app.command("show")
def config_show_cmd() -> None:
    """Print the effective settings and the variables that control them."""

    settings = AppSettings()
    table = Table(title=f"Settings (user file: {get_user_env_file()})")
    table.add_column("Field", style="bright_green", no_wrap=True)
    table.add_column("Value", style="white")
    table.add_column("Variable", style="dim")
    for name, value in settings.model_dump(mode="json").items():
        table.add_row(name, "" if value is None else str(value), env_var_name(name))
    _console.print(table)


@config_app.command("set")
def config_set_cmd(
    field: str = typer.Argument(..., help="Settings field, e.g. billing_account."),
    value: str = typer.Argument(...),
) -> None:
    """Persist one setting in the per-user .env file."""

    name = field.strip().lower().replace("-", "_")
    if name not in AppSettings.model_fields:
        raise typer.BadParameter(f"unknown setting '{field}'", param_hint="FIELD")
    try:
        AppSettings.model_validate({**AppSettings().model_dump(), name: value})
    except ValidationError as exc:
        raise typer.BadParameter(str(exc), param_hint="VALUE") from exc
    path = write_user_env_vars({env_var_name(name): value})
    _console.print(f"[green]Saved[/green] {env_var_name(name)} to {path}")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
