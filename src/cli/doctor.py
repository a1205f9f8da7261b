"""Doctor command for environment diagnostics."""

from __future__ import annotations

import asyncio
import os
import tempfile
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from adapters.gcloud_runner import GcloudRunner
from adapters.http_client import check_reachable
from core.config import AppSettings, env_var_name, write_user_env_vars
from core.services.runtime import build_client

app = typer.Typer(no_args_is_help=True, help="Environment diagnostics and configuration checks.")

_console = Console()

RESOURCE_MANAGER_URL = "https://cloudresourcemanager.googleapis.com/"


def _check_key_dir(key_dir: Path) -> tuple[bool, str]:
    """Create the key directory if needed and prove it is writable."""

    try:
        key_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(dir=key_dir, prefix=".doctor-", delete=True):
            pass
        mode = oct(key_dir.stat().st_mode & 0o777)
        return True, f"{key_dir.resolve()} (mode {mode})"
    except OSError as exc:
        return False, str(exc)


async def _gcloud_identity(settings: AppSettings) -> tuple[str | None, str | None]:
    client = build_client(settings, GcloudRunner(settings))
    return await client.active_account(), await client.current_project()


@app.command()
def run() -> None:
    """Run baseline diagnostics and show recommended fixes."""

    settings = AppSettings()

    table = Table(title="keysmith Doctor")
    table.add_column("Check", style="bright_green", no_wrap=True)
    table.add_column("Status", style="white")
    table.add_column("Details", style="dim")

    runner = GcloudRunner(settings)
    has_gcloud = runner.available()
    table.add_row(
        "gcloud",
        "OK" if has_gcloud else "FAIL",
        settings.gcloud_binary if has_gcloud else f"'{settings.gcloud_binary}' not found on PATH",
    )

    account: str | None = None
    if has_gcloud:
        account, project = asyncio.run(_gcloud_identity(settings))
        table.add_row("Active account", "OK" if account else "FAIL", account or "run `gcloud auth login`")
        table.add_row(
            "Current project",
            "OK" if project else "OPTIONAL",
            project or "unset -> the project quota check will be skipped",
        )

    ok_keys, detail_keys = _check_key_dir(settings.key_dir)
    table.add_row("Key directory", "OK" if ok_keys else "FAIL", detail_keys)

    # Connectivity (best-effort)
    ok_http, detail_http = asyncio.run(check_reachable(RESOURCE_MANAGER_URL, settings))
    table.add_row("HTTPS connectivity", "OK" if ok_http else "FAIL", detail_http)

    table.add_row("Billing account", "OK" if settings.billing_account else "OPTIONAL", settings.billing_account or "-")
    table.add_row(
        "Retries",
        "OK",
        f"{settings.max_retry_attempts} attempts, {settings.retry_base_delay_seconds:g}s base"
        + (", transient errors only" if settings.retry_transient_only else ""),
    )
    table.add_row("Concurrency", "OK", str(settings.concurrency))

    _console.print(table)

    if not has_gcloud or not account:
        _console.print(
            "\n[yellow]Note:[/yellow] Every workflow needs the Google Cloud SDK and an authenticated account "
            "(`gcloud auth login`)."
        )
        raise typer.Exit(code=1)


@app.command(name="setup")
def setup() -> None:
    """Interactive setup (stores config in the user config .env)."""

    settings = AppSettings()

    billing = typer.prompt(
        "Default billing account (empty for none)",
        default=settings.billing_account or "",
        show_default=True,
    ).strip()
    key_dir = typer.prompt("Service-account key directory", default=str(settings.key_dir), show_default=True).strip()
    output_dir = typer.prompt("API key output directory", default=str(settings.output_dir), show_default=True).strip()
    concurrency = typer.prompt("Parallel items per workflow", default=settings.concurrency, type=int)
    gemini_prefix = typer.prompt(
        "Gemini project prefix",
        default=settings.gemini_project_prefix,
        show_default=True,
    ).strip()

    values = {
        "key_dir": key_dir,
        "output_dir": output_dir,
        "concurrency": str(concurrency),
        "gemini_project_prefix": gemini_prefix,
    }
    if billing:
        values["billing_account"] = billing

    try:
        AppSettings.model_validate({**settings.model_dump(), **values})
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    env_path = write_user_env_vars({env_var_name(k): v for k, v in values.items()})
    if os.name == "posix":
        os.chmod(env_path, 0o600)

    _console.print(f"[green]Saved config to:[/green] {env_path}")
