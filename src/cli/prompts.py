"""Terminal implementation of the confirmation gate.

Interactive means stdin is attached to a TTY (overridable with
`--non-interactive`). Without a terminal nothing blocks: `confirm` returns
the caller's default, `choose` returns its default and `confirm_phrase`
compares the phrase supplied up-front with `--confirm-phrase`.
"""

from __future__ import annotations

import sys
from typing import Callable, Sequence

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from core.domain.models import ConfirmationDecision
from core.log import get_logger

logger = get_logger(__name__)

Reader = Callable[[str], str]

_YES = {"y", "yes"}


def _typer_reader(prompt: str) -> str:
    return typer.prompt(prompt, default="", show_default=False)


def parse_selection(text: str, size: int) -> list[int]:
    """Parse `1,3,5-7` or `all` into zero-based indices. Raises `ValueError`."""

    cleaned = text.strip().lower()
    if cleaned in ("all", "*"):
        return list(range(size))

    indices: list[int] = []
    for token in cleaned.replace(" ", ",").split(","):
        if not token:
            continue
        if "-" in token:
            start_text, end_text = token.split("-", 1)
            start, end = int(start_text), int(end_text)
            if start > end:
                start, end = end, start
            chosen = range(start, end + 1)
        else:
            chosen = range(int(token), int(token) + 1)
        for number in chosen:
            if not 1 <= number <= size:
                raise ValueError(f"{number} is out of range 1-{size}")
            if number - 1 not in indices:
                indices.append(number - 1)
    return indices


class TerminalGate:
    def __init__(
        self,
        *,
        interactive: bool | None = None,
        assume_yes: bool = False,
        phrase_answer: str | None = None,
        reader: Reader | None = None,
        console: Console | None = None,
    ) -> None:
        self.interactive = sys.stdin.isatty() if interactive is None else interactive
        self.assume_yes = assume_yes
        self.phrase_answer = phrase_answer
        self.decisions: list[ConfirmationDecision] = []
        self._reader = reader or _typer_reader
        self._console = console or Console(stderr=True)

    def _record(self, prompt: str, accepted: bool, answer: str | None) -> bool:
        self.decisions.append(
            ConfirmationDecision(prompt=prompt, accepted=accepted, interactive=self.interactive, answer=answer)
        )
        logger.debug("confirmation", prompt=prompt, accepted=accepted, interactive=self.interactive)
        return accepted

    def confirm(self, prompt: str, *, default: bool = False) -> bool:
        if self.assume_yes:
            return self._record(prompt, True, "--yes")
        if not self.interactive:
            return self._record(prompt, default, None)

        suffix = "[Y/n]" if default else "[y/N]"
        answer = self._reader(f"{prompt} {suffix}").strip().lower()
        if not answer:
            return self._record(prompt, default, answer)
        return self._record(prompt, answer in _YES, answer)

    def confirm_phrase(self, prompt: str, phrase: str) -> bool:
        if not self.interactive:
            answer = self.phrase_answer
        else:
            self._console.print(Panel(prompt, title="Irreversible action", border_style="red"))
            answer = self._reader(f"Type {phrase} to continue").strip()
        accepted = answer == phrase
        if not accepted:
            logger.info("confirmation phrase mismatch, cancelling")
        return self._record(prompt, accepted, answer)

    def choose(self, prompt: str, options: Sequence[str], *, default: str) -> str:
        if not self.interactive:
            return default
        for number, option in enumerate(options, start=1):
            self._console.print(f"  {number}. {option}")
        answer = self._reader(f"{prompt} [{'/'.join(options)}] (default {default})").strip().lower()
        if answer in options:
            return answer
        if answer.isdigit() and 1 <= int(answer) <= len(options):
            return options[int(answer) - 1]
        return default

    def notify(self, message: str) -> None:
        self._console.print(message)

    def select_many(self, title: str, items: Sequence[str], *, columns: Sequence[str] = ("Item",)) -> list[str]:
        """Numbered picker for the CLI. Empty input selects nothing."""

        if not self.interactive or not items:
            return []

        table = Table(title=title)
        table.add_column("#", style="bright_green", justify="right")
        for column in columns:
            table.add_column(column, style="white")
        for number, item in enumerate(items, start=1):
            table.add_row(str(number), *item.split("\t", len(columns) - 1))
        self._console.print(table)

        while True:
            answer = self._reader("Select (e.g. 1,3,5-7 or all; empty to cancel)")
            if not answer.strip():
                return []
            try:
                indices = parse_selection(answer, len(items))
            except ValueError as exc:
                self._console.print(f"[yellow]Invalid selection:[/yellow] {exc}")
                continue
            return [items[i].split("\t", 1)[0] for i in indices]
