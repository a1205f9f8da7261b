"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Sequence

import pytest

# Add src directory to Python path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from adapters.gcloud_runner import classify_stderr  # noqa: E402
from core.config import AppSettings  # noqa: E402
from core.domain.models import CommandResult  # noqa: E402
from core.services.runtime import ExecutionContext, build_client  # noqa: E402
from core.services.workflow_common import WorkflowHooks  # noqa: E402

Matcher = str | Callable[[list[str]], bool]
Output = str | Callable[[list[str]], str]


@dataclass
class Rule:
    matchers: tuple[Matcher, ...]
    stdout: Output = ""
    stderr: str = ""
    exit_code: int = 0
    side_effect: Callable[[list[str]], None] | None = None
    times: int | None = None

    def matches(self, args: list[str]) -> bool:
        if self.times is not None and self.times <= 0:
            return False
        line = " ".join(args)
        for matcher in self.matchers:
            if callable(matcher):
                if not matcher(args):
                    return False
            elif matcher not in line:
                return False
        return True


class FakeRunner:
    """Scripted stand-in for gcloud.

    Rules are checked newest first; every string matcher must be a substring
    of the joined arguments and every callable matcher must return True.
    Unmatched invocations succeed with empty output ("nothing exists").
    """

    def __init__(self) -> None:
        self.rules: list[Rule] = []
        self.calls: list[list[str]] = []
        self.binary_present = True

    def on(
        self,
        *matchers: Matcher,
        stdout: Output = "",
        stderr: str = "",
        exit_code: int = 0,
        side_effect: Callable[[list[str]], None] | None = None,
        times: int | None = None,
    ) -> "FakeRunner":
        self.rules.append(Rule(matchers, stdout, stderr, exit_code, side_effect, times))
        return self

    def available(self) -> bool:
        return self.binary_present

    async def invoke(self, args: Sequence[str]) -> CommandResult:
        argv = [str(a) for a in args]
        self.calls.append(argv)
        for rule in reversed(self.rules):
            if not rule.matches(argv):
                continue
            if rule.times is not None:
                rule.times -= 1
            if rule.side_effect:
                rule.side_effect(argv)
            stdout = rule.stdout(argv) if callable(rule.stdout) else rule.stdout
            kind = classify_stderr(rule.stderr) if rule.exit_code else None
            return CommandResult(
                args=argv,
                exit_code=rule.exit_code,
                stdout=stdout,
                stderr=rule.stderr,
                failure_kind=kind,
            )
        return CommandResult(args=argv)

    def calls_matching(self, *tokens: str) -> list[list[str]]:
        return [call for call in self.calls if all(t in " ".join(call) for t in tokens)]


class StubGate:
    """Gate with canned answers; records every prompt it receives."""

    def __init__(
        self,
        *,
        confirm: bool | None = True,
        phrase: str | None = None,
        choice: str | None = None,
    ) -> None:
        self.confirm_answer = confirm
        self.phrase_answer = phrase
        self.choice = choice
        self.prompts: list[str] = []
        self.messages: list[str] = []

    def confirm(self, prompt: str, *, default: bool = False) -> bool:
        self.prompts.append(prompt)
        return default if self.confirm_answer is None else self.confirm_answer

    def confirm_phrase(self, prompt: str, phrase: str) -> bool:
        self.prompts.append(prompt)
        return self.phrase_answer == phrase

    def choose(self, prompt: str, options: Sequence[str], *, default: str) -> str:
        self.prompts.append(prompt)
        return self.choice or default

    def notify(self, message: str) -> None:
        self.messages.append(message)


@pytest.fixture
def settings(tmp_path: Path) -> AppSettings:
    return AppSettings(
        _env_file=None,
        key_dir=tmp_path / "keys",
        output_dir=tmp_path / "out",
        log_dir=tmp_path / "logs",
        retry_base_delay_seconds=0,
        retry_jitter_seconds=0,
        concurrency=4,
    )


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def gate() -> StubGate:
    return StubGate()


@pytest.fixture
def make_context(settings: AppSettings, runner: FakeRunner, gate: StubGate, tmp_path: Path):
    def factory(**overrides: Any) -> ExecutionContext:
        effective = overrides.get("settings", settings)
        workspace = tmp_path / "workspace"
        workspace.mkdir(exist_ok=True)
        return ExecutionContext(
            settings=effective,
            client=build_client(effective, overrides.get("runner", runner)),
            gate=overrides.get("gate", gate),
            workspace=workspace,
            hooks=overrides.get("hooks", WorkflowHooks()),
        )

    return factory
