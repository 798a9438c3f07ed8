# The MIT License (MIT)
# Copyright © 2025 Entrius

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from backport.constants import BACKPORT_BRANCH_PREFIX


@dataclass(frozen=True)
class CommitRef:
    """A single source commit to backport"""

    sha: str
    message: str
    author: Optional[str] = None
    pull_number: Optional[int] = None

    @property
    def short_sha(self) -> str:
        return self.sha[:7]

    @property
    def subject(self) -> str:
        """First line of the commit message."""
        return self.message.split('\n', 1)[0].strip()

    @property
    def label(self) -> str:
        """Text shown when the commit is offered as a choice."""
        pr_suffix = f' (#{self.pull_number})' if self.pull_number else ''
        return f'{self.short_sha} {self.subject}{pr_suffix}'

    @property
    def ref_name(self) -> str:
        """Identity used in branch names: the pull request if known, else the commit."""
        if self.pull_number:
            return f'pr-{self.pull_number}'
        return f'commit-{self.short_sha}'

    @classmethod
    def from_github_commit(cls, data: Dict[str, Any], pull_number: Optional[int] = None) -> 'CommitRef':
        """Build from a REST commit payload (commits listing, search or single commit)."""
        commit = data.get('commit') or {}
        author = (data.get('author') or {}).get('login') or (commit.get('author') or {}).get('name')
        return cls(
            sha=data['sha'],
            message=commit.get('message', ''),
            author=author,
            pull_number=pull_number,
        )


@dataclass(frozen=True)
class PullRequest:
    """A pull request on the upstream repository"""

    number: int
    title: str
    url: str
    author: Optional[str] = None
    merge_commit_sha: Optional[str] = None

    @property
    def label(self) -> str:
        return f'#{self.number} {self.title}'

    @classmethod
    def from_github_response(cls, data: Dict[str, Any]) -> 'PullRequest':
        return cls(
            number=data['number'],
            title=data.get('title', ''),
            url=data.get('html_url', ''),
            author=(data.get('user') or {}).get('login'),
            merge_commit_sha=data.get('merge_commit_sha'),
        )


@dataclass(frozen=True)
class TargetBranch:
    """A branch to backport to, with its position in the selection order"""

    name: str
    position: int


@dataclass(frozen=True)
class BackportJob:
    """Everything one invocation backports: which commits, where, as whom"""

    owner: str
    repo_name: str
    commits: Tuple[CommitRef, ...]
    branches: Tuple[TargetBranch, ...]
    username: str
    labels: Tuple[str, ...] = ()

    def __post_init__(self):
        if not self.commits:
            raise ValueError('A backport job needs at least one commit')
        if not self.branches:
            raise ValueError('A backport job needs at least one target branch')

    @property
    def upstream(self) -> str:
        return f'{self.owner}/{self.repo_name}'


class BranchState(Enum):
    """Lifecycle of one target branch within a job"""

    PENDING = 'pending'
    PORTING = 'porting'
    SUCCEEDED = 'succeeded'
    CONFLICTED = 'conflicted'
    FAILED = 'failed'

    @property
    def is_terminal(self) -> bool:
        return self in (BranchState.SUCCEEDED, BranchState.CONFLICTED, BranchState.FAILED)


class PortStatus(Enum):
    CLEAN = 'clean'
    CONFLICT = 'conflict'


@dataclass(frozen=True)
class PortResult:
    """Result of applying a commit to the working copy."""

    status: PortStatus
    local_branch: str
    conflicting_files: Tuple[str, ...] = ()

    @property
    def is_conflict(self) -> bool:
        return self.status is PortStatus.CONFLICT

    @classmethod
    def clean(cls, local_branch: str) -> 'PortResult':
        return cls(PortStatus.CLEAN, local_branch)

    @classmethod
    def conflict(cls, local_branch: str, files: Sequence[str]) -> 'PortResult':
        return cls(PortStatus.CONFLICT, local_branch, tuple(files))


@dataclass(frozen=True)
class BranchOutcome:
    """Final result for one target branch"""

    branch: TargetBranch
    state: BranchState
    pull_request_url: Optional[str] = None
    pull_request_number: Optional[int] = None
    conflicting_files: Tuple[str, ...] = ()
    local_branch: Optional[str] = None
    error: Optional[str] = None
    warnings: Tuple[str, ...] = ()

    def __post_init__(self):
        if not self.state.is_terminal:
            raise ValueError(f'Branch outcome must be terminal, got {self.state.value}')

    @classmethod
    def succeeded(
        cls, branch: TargetBranch, pull_request: PullRequest, local_branch: str, warnings: Sequence[str] = ()
    ) -> 'BranchOutcome':
        return cls(
            branch=branch,
            state=BranchState.SUCCEEDED,
            pull_request_url=pull_request.url,
            pull_request_number=pull_request.number,
            local_branch=local_branch,
            warnings=tuple(warnings),
        )

    @classmethod
    def conflicted(
        cls, branch: TargetBranch, files: Sequence[str], local_branch: str, warnings: Sequence[str] = ()
    ) -> 'BranchOutcome':
        return cls(
            branch=branch,
            state=BranchState.CONFLICTED,
            conflicting_files=tuple(files),
            local_branch=local_branch,
            warnings=tuple(warnings),
        )

    @classmethod
    def failed(cls, branch: TargetBranch, error: str, local_branch: Optional[str] = None) -> 'BranchOutcome':
        return cls(branch=branch, state=BranchState.FAILED, error=error, local_branch=local_branch)


class JobStatus(Enum):
    SUCCESS = 'success'
    PARTIAL = 'partial'
    FAILED = 'failed'


@dataclass
class JobReport:
    """Outcomes of a job, one per target branch, in processing order"""

    job: BackportJob
    outcomes: List[BranchOutcome] = field(default_factory=list)
    finalized: bool = False

    def record(self, outcome: BranchOutcome) -> None:
        if self.finalized:
            raise RuntimeError('Cannot record an outcome on a finalized report')
        expected = self.job.branches[len(self.outcomes)] if len(self.outcomes) < len(self.job.branches) else None
        if outcome.branch != expected:
            raise RuntimeError(f'Outcome for {outcome.branch.name} recorded out of order')
        self.outcomes.append(outcome)

    def finalize(self) -> 'JobReport':
        if len(self.outcomes) != len(self.job.branches):
            raise RuntimeError(
                f'Report has {len(self.outcomes)} outcomes for {len(self.job.branches)} target branches'
            )
        self.finalized = True
        return self

    def _with_state(self, state: BranchState) -> List[BranchOutcome]:
        return [o for o in self.outcomes if o.state is state]

    @property
    def succeeded(self) -> List[BranchOutcome]:
        return self._with_state(BranchState.SUCCEEDED)

    @property
    def conflicted(self) -> List[BranchOutcome]:
        return self._with_state(BranchState.CONFLICTED)

    @property
    def failed(self) -> List[BranchOutcome]:
        return self._with_state(BranchState.FAILED)

    @property
    def status(self) -> JobStatus:
        succeeded = len(self.succeeded)
        if succeeded == 0:
            return JobStatus.FAILED
        if succeeded == len(self.outcomes):
            return JobStatus.SUCCESS
        return JobStatus.PARTIAL


def backport_branch_name(target_branch: str, commits: Sequence[CommitRef]) -> str:
    """Deterministic local branch name, so a re-run reuses the same branch."""
    # commits of one pull request share a ref
    refs = '_'.join(dict.fromkeys(commit.ref_name for commit in commits))
    return f'{BACKPORT_BRANCH_PREFIX}/{target_branch}/{refs}'
