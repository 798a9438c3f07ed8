# The MIT License (MIT)
# Copyright © 2025 Entrius

"""
Backport engine

Ports every commit of a job onto every target branch, one branch at a time,
and opens a pull request per branch. A branch that fails (git error, push
rejected, API error, user abort) is recorded as Failed and the next branch is
still attempted; pull requests already opened for earlier branches are left
in place.

Per branch: Pending -> Porting -> Succeeded | Conflicted | Failed
"""

import logging
from typing import Dict, List, Optional

from backport.classes import (
    BackportJob,
    BranchOutcome,
    BranchState,
    CommitRef,
    JobReport,
    PortResult,
    PullRequest,
    TargetBranch,
    backport_branch_name,
)
from backport.constants import ABORTED_BY_USER, CONFLICT_DISCARDED
from backport.errors import BackportError, RemoteApiError
from backport.prompts import ConflictDecision, Prompter
from backport.utils.github_api_tools import GithubClient
from backport.working_copy import WorkingCopy

ALLOWED_TRANSITIONS: Dict[BranchState, tuple] = {
    BranchState.PENDING: (BranchState.PORTING,),
    BranchState.PORTING: (BranchState.SUCCEEDED, BranchState.CONFLICTED, BranchState.FAILED),
}


class _BranchStopped(Exception):
    """Ends the work on one branch with a final outcome."""

    def __init__(self, outcome: BranchOutcome):
        super().__init__(outcome.error or outcome.state.value)
        self.outcome = outcome


def pull_request_title(branch: str, commits: List[CommitRef]) -> str:
    return f'[{branch}] ' + ' | '.join(commit.subject for commit in commits)


def pull_request_body(branch: str, commits: List[CommitRef]) -> str:
    lines = [f'Backports the following commits to {branch}:']
    for commit in commits:
        ref = f'#{commit.pull_number}' if commit.pull_number else commit.sha
        lines.append(f' - {commit.subject} ({ref})')
    return '\n'.join(lines)


class BackportEngine:
    """Runs a BackportJob against one working copy and one remote repository."""

    def __init__(self, client: GithubClient, working_copy: WorkingCopy, prompter: Prompter, reporter=None):
        self.client = client
        self.working_copy = working_copy
        self.prompter = prompter
        self.reporter = reporter
        self.states: List[BranchState] = []
        self.logger = logging.getLogger(__name__)

    def _transition(self, branch: TargetBranch, state: BranchState) -> None:
        current = self.states[branch.position]
        if state not in ALLOWED_TRANSITIONS.get(current, ()):
            raise RuntimeError(f'Illegal transition for {branch.name}: {current.value} -> {state.value}')
        self.states[branch.position] = state
        self.logger.info(f'{branch.name}: {current.value} -> {state.value}')

    def _notify(self, hook: str, *args) -> None:
        if self.reporter is not None:
            getattr(self.reporter, hook)(*args)

    def run(self, job: BackportJob) -> JobReport:
        """Process every target branch in order and return the finalized report."""
        self.states = [BranchState.PENDING for _ in job.branches]
        report = JobReport(job=job)
        self.logger.info(
            f'Backporting {[c.short_sha for c in job.commits]} to {[b.name for b in job.branches]} on {job.upstream}'
        )

        for branch in job.branches:
            self._transition(branch, BranchState.PORTING)
            self._notify('branch_started', branch)
            outcome = self._port_branch(job, branch)
            self._transition(branch, outcome.state)
            report.record(outcome)
            self._notify('branch_finished', outcome)

        report.finalize()
        self.logger.info(
            f'Job finished: {len(report.succeeded)} succeeded, {len(report.conflicted)} conflicted, '
            f'{len(report.failed)} failed'
        )
        return report

    def _port_branch(self, job: BackportJob, branch: TargetBranch) -> BranchOutcome:
        local_branch = backport_branch_name(branch.name, job.commits)
        # the next branch checks out over the shared clone
        keeps_tree = branch.position == len(job.branches) - 1
        try:
            for index, commit in enumerate(job.commits):
                if index == 0:
                    result = self.working_copy.check_out_and_port(branch.name, commit, local_branch)
                else:
                    result = self.working_copy.cherry_pick(commit)
                self._resolve_conflicts(branch, result, keeps_tree)
            return self._open_pull_request(job, branch, local_branch)
        except _BranchStopped as stopped:
            return stopped.outcome
        except BackportError as e:
            self.logger.error(f'Backport to {branch.name} failed: {e}')
            return BranchOutcome.failed(branch, str(e), local_branch=local_branch)
        except Exception as e:
            self.logger.exception(f'Unexpected error while backporting to {branch.name}')
            return BranchOutcome.failed(branch, f'Unexpected error: {e}', local_branch=local_branch)

    def _resolve_conflicts(self, branch: TargetBranch, result: PortResult, keeps_tree: bool = True) -> None:
        """Block on the user until the commit is applied, or stop the branch.

        A deferred conflict stays on disk only when no later branch will
        check out over it; otherwise the outcome says it was discarded.
        """
        while result.is_conflict:
            self._notify('conflict_detected', branch, result.local_branch, result.conflicting_files)
            decision = self.prompter.wait_for_resolution(branch.name, result.local_branch, result.conflicting_files)

            if decision is ConflictDecision.ABORT:
                self.working_copy.abort_port()
                raise _BranchStopped(BranchOutcome.failed(branch, ABORTED_BY_USER, local_branch=result.local_branch))
            if decision is ConflictDecision.DEFER:
                warnings = () if keeps_tree else (CONFLICT_DISCARDED,)
                raise _BranchStopped(
                    BranchOutcome.conflicted(branch, result.conflicting_files, result.local_branch, warnings)
                )

            result = self.working_copy.continue_port()

    def _open_pull_request(self, job: BackportJob, branch: TargetBranch, local_branch: str) -> BranchOutcome:
        commits = list(job.commits)
        head = f'{job.username}:{local_branch}'

        self.working_copy.push(local_branch, job.username)

        pull_request: Optional[PullRequest] = self.client.find_open_pull_request(branch.name, head)
        if pull_request:
            self.logger.info(f'Reusing open pull request #{pull_request.number} for {head}')
        else:
            pull_request = self.client.create_pull_request(
                base=branch.name,
                head=head,
                title=pull_request_title(branch.name, commits),
                body=pull_request_body(branch.name, commits),
            )

        warnings = []
        if job.labels:
            try:
                self.client.add_labels(pull_request.number, job.labels)
            except RemoteApiError as e:
                self.logger.warning(f'Could not label #{pull_request.number}: {e}')
                warnings.append(f'labels not applied: {e.message}')

        return BranchOutcome.succeeded(branch, pull_request, local_branch, warnings=warnings)
