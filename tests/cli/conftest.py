# The MIT License (MIT)
# Copyright © 2025 Entrius

"""Shared fixtures for CLI tests."""

import pytest
from click.testing import CliRunner

from backport.classes import BranchOutcome, JobReport, PullRequest
from backport.config import BackportConfig


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def cli_root():
    from backport.cli import cli

    return cli


@pytest.fixture
def backport_config():
    return BackportConfig(
        upstream='elastic/kibana',
        username='sqren',
        access_token='secret-token',
        branches=('6.x', '6.1', '6.0'),
    )


@pytest.fixture
def report_factory(job_factory, commit_abc):
    """Build a finalized report; each entry is (branch name, 'ok' or an error message)."""

    def factory(*entries):
        job = job_factory([commit_abc], [name for name, _ in entries])
        report = JobReport(job)
        for branch, (_, result) in zip(job.branches, entries):
            if result == 'ok':
                pull_request = PullRequest(
                    number=100 + branch.position,
                    title='t',
                    url=f'https://github.com/elastic/kibana/pull/{100 + branch.position}',
                )
                report.record(BranchOutcome.succeeded(branch, pull_request, f'backport/{branch.name}/pr-1337'))
            else:
                report.record(BranchOutcome.failed(branch, result))
        return report.finalize()

    return factory
