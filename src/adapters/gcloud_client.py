"""Cliente de alto nivel sobre `gcloud`.

Responsabilidad:
- Construir cada comando del proveedor en un solo sitio.
- Lecturas de existencia -> `StateChecker` (una invocación, sin reintento).
- Mutaciones y listados obligatorios -> `RetryExecutor` (lanzan
  `RemoteCommandError` tras agotar intentos).
- Parseo de respuestas -> `response_parser`.

Los workflows nunca construyen argumentos de gcloud por su cuenta.
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

from pydantic import ValidationError

from core.domain.errors import ResponseParseError
from core.domain.models import BillingAccount, CommandResult, QuotaCheck, QuotaSource
from core.interfaces.runner import CommandRunner
from core.log import get_logger
from core.services import response_parser
from core.services.retry import RetryExecutor
from core.services.state_checker import ResourceSelector, StateChecker

logger = get_logger(__name__)

GEMINI_SERVICE = "generativelanguage.googleapis.com"
VERTEX_SERVICE = "aiplatform.googleapis.com"
VERTEX_SERVICES = (
    VERTEX_SERVICE,
    "iam.googleapis.com",
    "iamcredentials.googleapis.com",
    "cloudresourcemanager.googleapis.com",
)
QUOTA_SERVICE = "cloudresourcemanager.googleapis.com"
QUOTA_METRIC = "cloudresourcemanager.googleapis.com/project_create_requests"


def service_account_email(project_id: str, account_name: str) -> str:
    return f"{account_name}@{project_id}.iam.gserviceaccount.com"


def policy_has_binding(policy_json: str, member: str, role: str) -> bool:
    """True si la política IAM (JSON) ya contiene `member` en `role`."""

    document = response_parser.load_json(policy_json)
    if not isinstance(document, dict):
        return False
    for binding in document.get("bindings") or []:
        if not isinstance(binding, dict) or binding.get("role") != role:
            continue
        if member in (binding.get("members") or []):
            return True
    return False


class GcloudClient:
    def __init__(
        self,
        runner: CommandRunner,
        retry: RetryExecutor,
        checker: StateChecker | None = None,
    ) -> None:
        self._runner = runner
        self._retry = retry
        self._checker = checker or StateChecker(runner)

    @property
    def runner(self) -> CommandRunner:
        return self._runner

    def available(self) -> bool:
        return self._runner.available()

    async def _call(self, args: Sequence[str], *, description: str) -> CommandResult:
        async def operation() -> CommandResult:
            result = await self._runner.invoke(list(args))
            return result.raise_for_status()

        return await self._retry.call(operation, description=description)

    async def _read(self, args: Sequence[str]) -> CommandResult:
        return await self._runner.invoke(list(args))

    # ------------------------------------------------------------------
    # Entorno
    # ------------------------------------------------------------------

    async def active_account(self) -> str | None:
        result = await self._read(["auth", "list", "--filter=status:ACTIVE", "--format=value(account)"])
        if not result.ok:
            return None
        accounts = response_parser.split_lines(result.stdout)
        return accounts[0] if accounts else None

    async def current_project(self) -> str | None:
        result = await self._read(["config", "get-value", "project"])
        if not result.ok:
            return None
        lines = response_parser.split_lines(result.stdout)
        if not lines or lines[0] == "(unset)":
            return None
        return lines[0]

    # ------------------------------------------------------------------
    # Proyectos
    # ------------------------------------------------------------------

    async def list_projects(self) -> list[str]:
        result = await self._call(
            ["projects", "list", "--format=value(projectId)", "--filter=projectId!~^sys-", "--quiet"],
            description="list projects",
        )
        return response_parser.split_lines(result.stdout)

    def project_selector(self, project_id: str) -> ResourceSelector:
        return ResourceSelector(
            description=f"project {project_id}",
            args=["projects", "list", f"--filter=projectId={project_id}", "--format=value(projectId)"],
        )

    async def project_exists(self, project_id: str) -> bool | None:
        return await self._checker.exists(self.project_selector(project_id))

    async def create_project(self, project_id: str) -> None:
        await self._call(
            ["projects", "create", project_id, f"--name={project_id}", "--quiet"],
            description=f"create project {project_id}",
        )

    async def delete_project(self, project_id: str) -> None:
        await self._call(
            ["projects", "delete", project_id, "--quiet"],
            description=f"delete project {project_id}",
        )

    # ------------------------------------------------------------------
    # Servicios
    # ------------------------------------------------------------------

    def service_selector(self, project_id: str, service: str) -> ResourceSelector:
        return ResourceSelector(
            description=f"service {service} on {project_id}",
            args=[
                "services",
                "list",
                "--enabled",
                f"--project={project_id}",
                f"--filter=config.name={service}",
                "--format=value(config.name)",
            ],
        )

    async def service_enabled(self, project_id: str, service: str) -> bool | None:
        return await self._checker.exists(self.service_selector(project_id, service))

    async def enable_service(self, project_id: str, service: str) -> None:
        await self._call(
            ["services", "enable", service, f"--project={project_id}", "--quiet"],
            description=f"enable {service} on {project_id}",
        )

    # ------------------------------------------------------------------
    # API keys
    # ------------------------------------------------------------------

    async def list_api_keys(self, project_id: str) -> list[str]:
        """Nombres de recurso de las API keys del proyecto (vacío si la query falla)."""

        result = await self._read(["services", "api-keys", "list", f"--project={project_id}", "--format=json"])
        if not result.ok:
            logger.warning("api key listing failed", project=project_id, exit_code=result.exit_code)
            return []
        return response_parser.extract_list(result.stdout, "name")

    async def get_key_string(self, project_id: str, key_name: str) -> str | None:
        result = await self._read(
            ["services", "api-keys", "get-key-string", key_name, f"--project={project_id}", "--format=json"]
        )
        if not result.ok:
            return None
        return response_parser.extract(result.stdout, ".keyString")

    async def existing_key_string(self, project_id: str) -> str | None:
        """Primera key string legible entre las API keys ya existentes."""

        for name in await self.list_api_keys(project_id):
            value = await self.get_key_string(project_id, name)
            if value:
                return value
        return None

    async def create_api_key(
        self,
        project_id: str,
        *,
        display_name: str = "Gemini API Key",
        service: str = GEMINI_SERVICE,
    ) -> str:
        result = await self._call(
            [
                "services",
                "api-keys",
                "create",
                f"--project={project_id}",
                f"--display-name={display_name}",
                f"--api-target=service={service}",
                "--format=json",
                "--quiet",
            ],
            description=f"create api key on {project_id}",
        )
        parsed = response_parser.extract_field(result.stdout, ".keyString")
        if not parsed.ok:
            raise ResponseParseError("keyString", f"api-keys create ({project_id})")
        logger.debug("api key parsed", project=project_id, strategy=parsed.strategy)
        return parsed.value or ""

    # ------------------------------------------------------------------
    # Facturación
    # ------------------------------------------------------------------

    async def billing_accounts(self) -> list[BillingAccount]:
        result = await self._call(
            ["billing", "accounts", "list", "--filter=open=true", "--format=json"],
            description="list billing accounts",
        )
        document = response_parser.load_json(result.stdout)
        accounts: list[BillingAccount] = []
        for item in document if isinstance(document, list) else []:
            try:
                accounts.append(BillingAccount.model_validate(item))
            except ValidationError:
                logger.warning("skipping malformed billing account entry", entry=str(item)[:120])
        return accounts

    async def billing_projects(self, account_id: str) -> list[str]:
        result = await self._call(
            ["billing", "projects", "list", f"--billing-account={account_id}", "--format=value(projectId)"],
            description=f"list projects of billing account {account_id}",
        )
        return response_parser.split_lines(result.stdout)

    async def project_billing_account(self, project_id: str) -> str | None:
        result = await self._read(
            ["billing", "projects", "describe", project_id, "--format=value(billingAccountName)"]
        )
        if not result.ok:
            return None
        lines = response_parser.split_lines(result.stdout)
        if not lines:
            return None
        return lines[0].removeprefix("billingAccounts/")

    async def link_billing(self, project_id: str, account_id: str) -> None:
        await self._call(
            ["billing", "projects", "link", project_id, f"--billing-account={account_id}", "--quiet"],
            description=f"link {project_id} to billing account {account_id}",
        )

    # ------------------------------------------------------------------
    # IAM
    # ------------------------------------------------------------------

    def service_account_selector(self, project_id: str, email: str) -> ResourceSelector:
        return ResourceSelector(
            description=f"service account {email}",
            args=[
                "iam",
                "service-accounts",
                "list",
                f"--project={project_id}",
                f"--filter=email={email}",
                "--format=value(email)",
            ],
        )

    async def service_account_exists(self, project_id: str, email: str) -> bool | None:
        return await self._checker.exists(self.service_account_selector(project_id, email))

    async def create_service_account(self, project_id: str, name: str, display_name: str) -> None:
        await self._call(
            [
                "iam",
                "service-accounts",
                "create",
                name,
                f"--display-name={display_name}",
                f"--project={project_id}",
                "--quiet",
            ],
            description=f"create service account {name} on {project_id}",
        )

    async def iam_policy(self, project_id: str) -> str:
        result = await self._call(
            ["projects", "get-iam-policy", project_id, "--format=json"],
            description=f"read iam policy of {project_id}",
        )
        return result.stdout

    async def add_iam_binding(self, project_id: str, member: str, role: str) -> None:
        await self._call(
            ["projects", "add-iam-policy-binding", project_id, f"--member={member}", f"--role={role}", "--quiet"],
            description=f"bind {role} on {project_id}",
        )

    async def list_service_account_keys(self, email: str) -> list[str]:
        """Ids de las claves gestionadas por el usuario (último segmento del nombre)."""

        result = await self._call(
            ["iam", "service-accounts", "keys", "list", f"--iam-account={email}", "--managed-by=user", "--format=value(name)"],
            description=f"list keys of {email}",
        )
        return [line.rsplit("/", 1)[-1] for line in response_parser.split_lines(result.stdout)]

    async def delete_service_account_key(self, email: str, key_id: str) -> None:
        await self._call(
            ["iam", "service-accounts", "keys", "delete", key_id, f"--iam-account={email}", "--quiet"],
            description=f"delete key {key_id} of {email}",
        )

    async def create_service_account_key(self, project_id: str, email: str, destination: Path) -> None:
        await self._call(
            [
                "iam",
                "service-accounts",
                "keys",
                "create",
                str(destination),
                f"--iam-account={email}",
                f"--project={project_id}",
                "--quiet",
            ],
            description=f"create key for {email}",
        )

    # ------------------------------------------------------------------
    # Cuota
    # ------------------------------------------------------------------

    async def project_create_quota(self, consumer_project: str) -> QuotaCheck:
        """Límite de `project_create_requests` (comando GA y, si falla, alpha)."""

        ga_args = [
            "services",
            "quota",
            "list",
            f"--service={QUOTA_SERVICE}",
            f"--consumer=projects/{consumer_project}",
            f"--filter=metric={QUOTA_METRIC}",
            "--format=json",
        ]
        alpha_args = [
            "alpha",
            "services",
            "quota",
            "list",
            f"--service={QUOTA_SERVICE}",
            f"--consumer=projects/{consumer_project}",
            f"--filter=metric({QUOTA_METRIC})",
            "--format=json",
        ]

        attempts = ((QuotaSource.GA, ga_args, "effectiveLimit"), (QuotaSource.ALPHA, alpha_args, "INT64"))
        last_error = ""
        for source, args, field in attempts:
            result = await self._read(args)
            if not result.ok:
                error_lines = (result.stderr or "").strip().splitlines()
                if error_lines:
                    last_error = error_lines[-1]
                logger.info("quota query failed", source=source.value, exit_code=result.exit_code)
                continue
            raw = response_parser.extract(result.stdout, field)
            if raw is None or not raw.isdigit():
                return QuotaCheck(source=source, detail=f"no numeric {field} in response")
            return QuotaCheck(limit=int(raw), source=source)
        return QuotaCheck(source=QuotaSource.UNAVAILABLE, detail=last_error or "quota commands failed")

