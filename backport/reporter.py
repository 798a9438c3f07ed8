# The MIT License (MIT)
# Copyright © 2025 Entrius

"""
Progress output and the final summary of a backport job.
"""

from enum import Enum
from typing import Dict, List, Optional, Sequence

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from backport.classes import BranchOutcome, BranchState, JobReport, JobStatus, TargetBranch

STATE_COLORS: Dict[BranchState, str] = {
    BranchState.SUCCEEDED: 'green',
    BranchState.CONFLICTED: 'yellow',
    BranchState.FAILED: 'red',
}

STATE_SYMBOLS: Dict[BranchState, str] = {
    BranchState.SUCCEEDED: '✓',
    BranchState.CONFLICTED: '!',
    BranchState.FAILED: '✗',
}


class ExitPolicy(Enum):
    ANY_SUCCESS = 'any'  # success if at least one branch succeeded
    ALL_SUCCESS = 'all'  # success only if every branch succeeded


def outcome_detail(outcome: BranchOutcome) -> str:
    """One line describing what happened on the branch."""
    if outcome.state is BranchState.SUCCEEDED:
        detail = outcome.pull_request_url or f'#{outcome.pull_request_number}'
        if outcome.warnings:
            detail += f' ({"; ".join(outcome.warnings)})'
        return detail
    if outcome.state is BranchState.CONFLICTED:
        files = ', '.join(outcome.conflicting_files)
        if outcome.warnings:
            return f'conflicts in {files} ({"; ".join(outcome.warnings)})'
        return f'conflicts in {files} (branch {outcome.local_branch} left in place)'
    return outcome.error or 'failed'


class ResultReporter:
    def __init__(self, console: Optional[Console] = None, exit_policy: ExitPolicy = ExitPolicy.ANY_SUCCESS):
        self.console = console or Console()
        self.exit_policy = exit_policy

    # -------------------------------------------------------------------------
    # Progress
    # -------------------------------------------------------------------------

    def branch_started(self, branch: TargetBranch) -> None:
        self.console.print(f'\n[bold cyan]Backporting to {escape(branch.name)}[/bold cyan]')

    def conflict_detected(self, branch: TargetBranch, local_branch: str, files: Sequence[str]) -> None:
        self.console.print(f'\n  [yellow]Conflicts while backporting to {escape(branch.name)}[/yellow]')
        self.console.print(f'  [dim]Local branch: {escape(local_branch)}[/dim]')
        for path in files:
            self.console.print(f'    [red]{escape(path)}[/red]')
        self.console.print('  Fix the files above, then continue. Abort to skip this branch.')

    def branch_finished(self, outcome: BranchOutcome) -> None:
        color = STATE_COLORS[outcome.state]
        symbol = STATE_SYMBOLS[outcome.state]
        self.console.print(f'  [{color}]{symbol}[/{color}] {escape(outcome_detail(outcome))}')

    # -------------------------------------------------------------------------
    # Summary
    # -------------------------------------------------------------------------

    @staticmethod
    def summarize(report: JobReport) -> List[str]:
        """Plain status lines, one per target branch, in processing order."""
        return [
            f'{STATE_SYMBOLS[o.state]} {o.branch.name}: {o.state.value} - {outcome_detail(o)}' for o in report.outcomes
        ]

    def print_report(self, report: JobReport) -> None:
        table = Table(show_header=True, header_style='bold magenta', title='Backport summary')
        table.add_column('Branch', style='cyan')
        table.add_column('Status')
        table.add_column('Details')

        for outcome in report.outcomes:
            color = STATE_COLORS[outcome.state]
            table.add_row(
                escape(outcome.branch.name),
                f'[{color}]{outcome.state.value}[/{color}]',
                escape(outcome_detail(outcome)),
            )

        self.console.print()
        self.console.print(table)

        status = report.status
        if status is JobStatus.SUCCESS:
            self.console.print('\n  [green]✓[/green] All branches backported\n')
        elif status is JobStatus.PARTIAL:
            self.console.print(
                f'\n  [yellow]![/yellow] {len(report.succeeded)} of {len(report.outcomes)} branches backported\n'
            )
        else:
            self.console.print('\n  [red]✗[/red] Backport failed on every branch\n')

    def exit_code(self, report: JobReport) -> int:
        if self.exit_policy is ExitPolicy.ALL_SUCCESS:
            return 0 if report.status is JobStatus.SUCCESS else 1
        return 0 if report.status is not JobStatus.FAILED else 1
