# The MIT License (MIT)
# Copyright © 2025 Entrius

"""
The backport command: resolve commits and branches, port, open pull requests.
"""

import sys
from typing import Optional, Tuple

import click
from rich.console import Console

from backport.classes import BackportJob, JobReport
from backport.config import BackportConfig, load_config
from backport.constants import BACKPORT_DIR, REPOSITORIES_DIR
from backport.engine import BackportEngine
from backport.errors import BackportError
from backport.prompts import ClickPrompter, Prompter
from backport.reporter import ExitPolicy, ResultReporter
from backport.selection import CommitSource, SelectionResolver
from backport.utils.github_api_tools import GithubClient
from backport.utils.logging import setup_logging
from backport.working_copy import WorkingCopy

console = Console()


def print_error(message: str) -> None:
    """Print a standardized error message."""
    console.print(f'\n  [red]✗[/red] {message}\n')


def execute_backport(
    config: BackportConfig,
    source: CommitSource,
    prompter: Prompter,
    reporter: ResultReporter,
    explicit_branches: Tuple[str, ...] = (),
    client: Optional[GithubClient] = None,
    working_copy: Optional[WorkingCopy] = None,
) -> JobReport:
    """Run one backport job end to end.

    Raises BackportError when the job cannot start (nothing resolved, clone
    failed); once branches are being ported every failure lands in the report.
    """
    client = client or GithubClient(config.owner, config.repo_name)
    client.set_access_token(config.access_token)

    resolver = SelectionResolver(client, prompter)
    commits = resolver.resolve_commits(source, allow_multiple=config.multiple_commits)
    if explicit_branches:
        branches = resolver.branches_from_names(explicit_branches)
    else:
        branches = resolver.resolve_branches(config.branches, allow_multiple=config.multiple_branches)

    job = BackportJob(
        owner=config.owner,
        repo_name=config.repo_name,
        commits=tuple(commits),
        branches=tuple(branches),
        username=config.username,
        labels=config.labels,
    )

    working_copy = working_copy or WorkingCopy(config.owner, config.repo_name, repositories_dir=REPOSITORIES_DIR)
    working_copy.ensure_cloned(config.access_token, config.username)

    engine = BackportEngine(client, working_copy, prompter, reporter=reporter)
    return engine.run(job)


@click.command('run')
@click.option('--upstream', default=None, help='Upstream repository in owner/repo format')
@click.option('--branch', '-b', 'branches', multiple=True, help='Target branch (repeatable, skips the prompt)')
@click.option('--sha', default=None, help='Backport this commit')
@click.option('--pr', 'pull_number', type=int, default=None, help='Backport the merge commit of this pull request')
@click.option('--from-pr', 'from_pr', is_flag=True, help='Backport the commits of a pull request (--pr or prompt)')
@click.option('--query', '-q', default=None, help='Search commit messages')
@click.option('--own', is_flag=True, help='Only offer your own commits')
@click.option('--multiple-commits/--single-commit', 'multiple_commits', default=None, help='Select several commits')
@click.option(
    '--multiple-branches/--single-branch', 'multiple_branches', default=None, help='Select several target branches'
)
@click.option('--label', '-l', 'labels', multiple=True, help='Label to add to the pull requests (repeatable)')
@click.option('--username', default=None, help='GitHub username (owner of the fork)')
@click.option('--access-token', envvar='BACKPORT_ACCESS_TOKEN', default=None, help='GitHub access token')
@click.option('--strict', is_flag=True, help='Exit with an error unless every branch succeeded')
@click.option('--verbose', '-v', is_flag=True, help='Log git commands and API calls to stderr')
def run_command(
    upstream: Optional[str],
    branches: Tuple[str, ...],
    sha: Optional[str],
    pull_number: Optional[int],
    from_pr: bool,
    query: Optional[str],
    own: bool,
    multiple_commits: Optional[bool],
    multiple_branches: Optional[bool],
    labels: Tuple[str, ...],
    username: Optional[str],
    access_token: Optional[str],
    strict: bool,
    verbose: bool,
):
    """
    Backport commits to maintenance branches.

    \b
    Examples:
        backport run --sha 2e2b1ed -b 6.1
        backport run --pr 1337 -b 6.x -b 6.1
        backport run --from-pr --pr 1337 --multiple-commits
        backport run --own -q "fix typo"
    """
    setup_logging(BACKPORT_DIR, verbose=verbose)
    prompter = ClickPrompter(console=console)

    overrides = {
        'upstream': upstream,
        'username': username,
        'accessToken': access_token,
        'labels': labels,
        'multipleCommits': multiple_commits,
        'multipleBranches': multiple_branches,
    }
    try:
        config = load_config(prompter, overrides)
    except BackportError as e:
        print_error(str(e))
        sys.exit(1)

    source = CommitSource(
        sha=sha,
        pull_number=pull_number,
        commits_in_pull_request=from_pr,
        query=query,
        author=config.username if own else None,
    )
    reporter = ResultReporter(console, ExitPolicy.ALL_SUCCESS if strict else ExitPolicy.ANY_SUCCESS)

    try:
        report = execute_backport(config, source, prompter, reporter, explicit_branches=branches)
    except BackportError as e:
        print_error(str(e))
        sys.exit(1)

    reporter.print_report(report)
    sys.exit(reporter.exit_code(report))
