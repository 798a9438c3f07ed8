# The MIT License (MIT)
# Copyright © 2025 Entrius

"""
Blocking prompts used while resolving a backport.

Both prompts wait for the operator without a timeout; a non-interactive
session never blocks (choices raise AmbiguousInputError, conflicts are
deferred).
"""

import sys
from enum import Enum
from typing import List, Optional, Protocol, Sequence

import click
from rich.console import Console

from backport.errors import AmbiguousInputError


class ConflictDecision(Enum):
    CONTINUE = 'continue'
    ABORT = 'abort'
    DEFER = 'defer'


class Prompter(Protocol):
    def choose(self, prompt: str, choices: Sequence[str], allow_multiple: bool = False) -> List[str]:
        """Return the selected choices, in the order the user selected them."""
        ...

    def wait_for_resolution(self, branch: str, local_branch: str, files: Sequence[str]) -> ConflictDecision:
        """Block until the user resolved the conflicts, or gave up."""
        ...


def _is_interactive() -> bool:
    """Return True if stdin is a TTY (interactive session)."""
    return getattr(sys.stdin, 'isatty', lambda: False)()


def parse_selection(raw: str, count: int, allow_multiple: bool) -> List[int]:
    """Parse '2, 1' into zero-based indices, keeping the typed order.

    Raises click.BadParameter on anything out of range or malformed.
    """
    parts = [p.strip() for p in raw.replace(' ', ',').split(',') if p.strip()]
    if not parts:
        raise click.BadParameter('Select at least one entry')
    if len(parts) > 1 and not allow_multiple:
        raise click.BadParameter('Select a single entry')

    indices: List[int] = []
    for part in parts:
        if not part.isdigit() or not 1 <= int(part) <= count:
            raise click.BadParameter(f'{part} is not a number between 1 and {count}')
        index = int(part) - 1
        if index not in indices:
            indices.append(index)
    return indices


class ClickPrompter:
    """Prompts on the terminal with click, listing choices with rich."""

    def __init__(self, console: Optional[Console] = None, interactive: Optional[bool] = None):
        self.console = console or Console()
        self.interactive = _is_interactive() if interactive is None else interactive

    def choose(self, prompt: str, choices: Sequence[str], allow_multiple: bool = False) -> List[str]:
        if not choices:
            return []
        if not self.interactive:
            raise AmbiguousInputError(f'{prompt}: a choice is required but the session is not interactive')

        self.console.print(f'\n[bold cyan]{prompt}[/bold cyan]')
        for number, choice in enumerate(choices, start=1):
            self.console.print(f'  [cyan]{number:>2}[/cyan]  {choice}')

        hint = 'Numbers, comma separated, in order' if allow_multiple else 'Number'
        while True:
            raw = click.prompt(hint, type=str, default='1')
            try:
                indices = parse_selection(raw, len(choices), allow_multiple)
            except click.BadParameter as e:
                self.console.print(f'[red]{e.format_message()}[/red]')
                continue
            return [choices[i] for i in indices]

    def wait_for_resolution(self, branch: str, local_branch: str, files: Sequence[str]) -> ConflictDecision:
        if not self.interactive:
            return ConflictDecision.DEFER

        answer = click.prompt(
            f'Resolve the conflicts on {local_branch}, then type "continue" (or "abort" to skip {branch})',
            type=click.Choice([ConflictDecision.CONTINUE.value, ConflictDecision.ABORT.value], case_sensitive=False),
            default=ConflictDecision.CONTINUE.value,
        )
        return ConflictDecision(answer.lower())
