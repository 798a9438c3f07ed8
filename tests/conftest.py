# The MIT License (MIT)
# Copyright © 2025 Entrius

"""Shared fixtures: in-memory working copy, scripted prompter, mocked GitHub client."""

from typing import Dict, List, Optional, Sequence, Tuple
from unittest.mock import Mock

import pytest

from backport.classes import BackportJob, CommitRef, PortResult, PullRequest, TargetBranch
from backport.errors import PushRejectedError, WorkingCopyError
from backport.prompts import ConflictDecision
from backport.utils.github_api_tools import GithubClient


class FakeWorkingCopy:
    """Records every tree operation instead of running git.

    conflicts: (target branch, sha) -> conflicting files
    failures: target branch -> error raised on checkout
    push_failures: target branches whose push is rejected
    unresolved_rounds: target branch -> number of continue attempts that still find markers
    """

    def __init__(
        self,
        conflicts: Optional[Dict[Tuple[str, str], Sequence[str]]] = None,
        failures: Optional[Dict[str, str]] = None,
        push_failures: Sequence[str] = (),
        unresolved_rounds: Optional[Dict[str, int]] = None,
    ):
        self.conflicts = conflicts or {}
        self.failures = failures or {}
        self.push_failures = set(push_failures)
        self.unresolved_rounds = dict(unresolved_rounds or {})
        self.calls: List[tuple] = []
        self.local_branches: List[str] = []
        self.current_local: Optional[str] = None
        self.current_target: Optional[str] = None
        self._pending_conflict: Tuple[str, ...] = ()

    def ensure_cloned(self, access_token: str, username: str) -> None:
        self.calls.append(('ensure_cloned', username))

    def check_out_branch(self, target_branch: str, local_branch: str) -> None:
        self.calls.append(('check_out', target_branch, local_branch))
        if target_branch in self.failures:
            raise WorkingCopyError(self.failures[target_branch])
        if local_branch not in self.local_branches:
            self.local_branches.append(local_branch)
        self.current_local = local_branch
        self.current_target = target_branch

    def cherry_pick(self, commit: CommitRef) -> PortResult:
        self.calls.append(('cherry_pick', self.current_target, commit.sha))
        files = self.conflicts.get((self.current_target, commit.sha))
        if files:
            self._pending_conflict = tuple(files)
            return PortResult.conflict(self.current_local, files)
        return PortResult.clean(self.current_local)

    def check_out_and_port(self, target_branch: str, commit: CommitRef, local_branch: str) -> PortResult:
        self.check_out_branch(target_branch, local_branch)
        return self.cherry_pick(commit)

    def continue_port(self) -> PortResult:
        self.calls.append(('continue', self.current_target))
        remaining = self.unresolved_rounds.get(self.current_target, 0)
        if remaining:
            self.unresolved_rounds[self.current_target] = remaining - 1
            return PortResult.conflict(self.current_local, self._pending_conflict)
        return PortResult.clean(self.current_local)

    def abort_port(self) -> None:
        self.calls.append(('abort', self.current_target))

    def push(self, local_branch: str, remote: str) -> None:
        self.calls.append(('push', local_branch, remote))
        if self.current_target in self.push_failures:
            raise PushRejectedError(f'Push of {local_branch} to {remote} was rejected: protected branch')

    def calls_named(self, name: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == name]


class ScriptedPrompter:
    """Answers prompts from prepared lists, in order."""

    def __init__(self, choices: Sequence[List[str]] = (), decisions: Sequence[ConflictDecision] = ()):
        self.choices = list(choices)
        self.decisions = list(decisions)
        self.choose_calls: List[tuple] = []
        self.resolution_calls: List[tuple] = []

    def choose(self, prompt: str, choices: Sequence[str], allow_multiple: bool = False) -> List[str]:
        self.choose_calls.append((prompt, list(choices), allow_multiple))
        return self.choices.pop(0)

    def wait_for_resolution(self, branch: str, local_branch: str, files: Sequence[str]) -> ConflictDecision:
        self.resolution_calls.append((branch, local_branch, tuple(files)))
        return self.decisions.pop(0)


def make_commit(sha: str, message: str = 'Fix bug', pull_number: Optional[int] = None, author: str = 'sqren'):
    return CommitRef(sha=sha.ljust(40, '0'), message=message, author=author, pull_number=pull_number)


def make_job(commits: Sequence[CommitRef], branch_names: Sequence[str], labels: Sequence[str] = ()) -> BackportJob:
    return BackportJob(
        owner='elastic',
        repo_name='kibana',
        commits=tuple(commits),
        branches=tuple(TargetBranch(name, position) for position, name in enumerate(branch_names)),
        username='sqren',
        labels=tuple(labels),
    )


@pytest.fixture
def make_working_copy():
    return FakeWorkingCopy


@pytest.fixture
def make_prompter():
    return ScriptedPrompter


@pytest.fixture
def github_client():
    """GithubClient mock opening pull requests #100, #101, ... in order."""
    client = Mock(spec=GithubClient)
    client.repository = 'elastic/kibana'
    client.find_open_pull_request.return_value = None
    counter = {'number': 100}

    def create_pull_request(base, head, title, body):
        number = counter['number']
        counter['number'] += 1
        return PullRequest(
            number=number,
            title=title,
            url=f'https://github.com/elastic/kibana/pull/{number}',
            author='sqren',
        )

    client.create_pull_request.side_effect = create_pull_request
    return client


@pytest.fixture
def commit_abc():
    return make_commit('abc123', 'Fix memory leak in dashboard', pull_number=1337)


@pytest.fixture
def commit_def():
    return make_commit('def456', 'Update a.js handling')


@pytest.fixture
def commit_factory():
    return make_commit


@pytest.fixture
def job_factory():
    return make_job
