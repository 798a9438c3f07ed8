# The MIT License (MIT)
# Copyright © 2025 Entrius

"""
Turns what the user asked for into concrete commits and target branches.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from backport.classes import CommitRef, TargetBranch
from backport.errors import AmbiguousInputError, NoBranchesConfiguredError, NotFoundError, RemoteApiError
from backport.prompts import Prompter
from backport.utils.github_api_tools import GithubClient

NOT_FOUND_STATUSES = (404, 422)


@dataclass(frozen=True)
class CommitSource:
    """What to backport, as given on the command line.

    Exactly one mode applies, checked in this order: ``sha``; ``pull_number``
    with ``commits_in_pull_request`` (the PR's own commits); ``pull_number``
    alone (the PR's merge commit); ``commits_in_pull_request`` alone (PR
    picked by prompt); otherwise a free-text search over ``query``, limited to
    ``author`` when given.
    """

    sha: Optional[str] = None
    pull_number: Optional[int] = None
    commits_in_pull_request: bool = False
    query: Optional[str] = None
    author: Optional[str] = None


def _dedupe_commits(commits: Sequence[CommitRef]) -> List[CommitRef]:
    seen = set()
    unique = []
    for commit in commits:
        if commit.sha not in seen:
            seen.add(commit.sha)
            unique.append(commit)
    return unique


class SelectionResolver:
    def __init__(self, client: GithubClient, prompter: Prompter):
        self.client = client
        self.prompter = prompter
        self.logger = logging.getLogger(__name__)

    # -------------------------------------------------------------------------
    # Commits
    # -------------------------------------------------------------------------

    def resolve_commits(self, source: CommitSource, allow_multiple: bool = False) -> List[CommitRef]:
        """Resolve the source into a non-empty ordered list of commits.

        Raises:
            NotFoundError: nothing matched.
            AmbiguousInputError: several commits match equally well and no
                human choice is possible.
        """
        if source.sha:
            commits = [self._get_commit(source.sha)]
        elif source.pull_number and source.commits_in_pull_request:
            commits = self._commits_in_pull_request(source.pull_number, allow_multiple)
        elif source.pull_number:
            commits = [self._merge_commit_of(source.pull_number)]
        elif source.commits_in_pull_request:
            pull_number = self._choose_pull_request(source.author)
            commits = self._commits_in_pull_request(pull_number, allow_multiple)
        else:
            commits = self._search_commits(source.query, source.author, allow_multiple)

        commits = _dedupe_commits(commits)
        if not commits:
            raise NotFoundError('No commits selected')
        self.logger.info(f'Resolved commits: {[c.short_sha for c in commits]}')
        return commits

    def _get_commit(self, sha: str) -> CommitRef:
        try:
            return self.client.get_commit_by_sha(sha)
        except RemoteApiError as e:
            if e.status in NOT_FOUND_STATUSES:
                raise NotFoundError(f'No commit found on {self.client.repository} with sha "{sha}"') from e
            raise

    def _merge_commit_of(self, pull_number: int) -> CommitRef:
        try:
            pull_request = self.client.get_pull_request(pull_number)
        except RemoteApiError as e:
            if e.status in NOT_FOUND_STATUSES:
                raise NotFoundError(f'Pull request #{pull_number} not found on {self.client.repository}') from e
            raise
        if not pull_request.merge_commit_sha:
            raise NotFoundError(f'Pull request #{pull_number} has not been merged')

        commit = self._get_commit(pull_request.merge_commit_sha)
        return CommitRef(sha=commit.sha, message=commit.message, author=commit.author, pull_number=pull_number)

    def _commits_in_pull_request(self, pull_number: int, allow_multiple: bool) -> List[CommitRef]:
        try:
            commits = self.client.find_commits_in_pull_request(pull_number)
        except RemoteApiError as e:
            if e.status in NOT_FOUND_STATUSES:
                raise NotFoundError(f'Pull request #{pull_number} not found on {self.client.repository}') from e
            raise
        if not commits:
            raise NotFoundError(f'Pull request #{pull_number} has no commits')
        if allow_multiple and len(commits) > 1:
            return self._choose_commits(f'Select commits from #{pull_number}', commits)
        return commits

    def _choose_pull_request(self, author: Optional[str]) -> int:
        pull_requests = self.client.find_pull_requests_by_query(author=author)
        if not pull_requests:
            raise NotFoundError(f'No merged pull requests found on {self.client.repository}')
        if len(pull_requests) == 1:
            return pull_requests[0].number

        by_label = {pr.label: pr for pr in pull_requests}
        selected = self.prompter.choose('Select pull request', list(by_label))
        if not selected:
            raise NotFoundError('No pull request selected')
        return by_label[selected[0]].number

    def _search_commits(self, query: Optional[str], author: Optional[str], allow_multiple: bool) -> List[CommitRef]:
        commits = self.client.find_commits_by_query(query=query, author=author)
        if not commits:
            scope = f' by {author}' if author else ''
            match = f' matching "{query}"' if query else ''
            raise NotFoundError(f'No commits{match}{scope} found on {self.client.repository}')
        if len(commits) == 1:
            return commits
        if allow_multiple:
            return self._choose_commits('Select commits to backport', commits)

        if query:
            exact = [c for c in commits if c.subject.lower() == query.strip().lower()]
            if len(exact) > 1:
                raise AmbiguousInputError(
                    f'{len(exact)} commits have the message "{query}": '
                    f'{", ".join(c.short_sha for c in exact)}. Pass --sha or --multiple-commits'
                )
            if exact:
                return exact
        # results come newest first
        return commits[:1]

    def _choose_commits(self, prompt: str, commits: Sequence[CommitRef]) -> List[CommitRef]:
        by_label: Dict[str, CommitRef] = {commit.label: commit for commit in commits}
        selected = self.prompter.choose(prompt, list(by_label), allow_multiple=True)
        return [by_label[label] for label in selected]

    # -------------------------------------------------------------------------
    # Branches
    # -------------------------------------------------------------------------

    def resolve_branches(self, configured_branches: Sequence[str], allow_multiple: bool) -> List[TargetBranch]:
        """Pick the target branches from the configured ones, prompting when there is a real choice."""
        names = list(dict.fromkeys(configured_branches))
        if not names:
            raise NoBranchesConfiguredError(
                'No target branches configured. Add "branches" to .backportrc.json or pass --branch'
            )

        if len(names) == 1 or not allow_multiple:
            selected = names[:1]
        else:
            selected = self.prompter.choose('Select branch(es) to backport to', names, allow_multiple=True)
            if not selected:
                raise NoBranchesConfiguredError('No target branch was selected')

        return self.branches_from_names(selected)

    @staticmethod
    def branches_from_names(names: Sequence[str]) -> List[TargetBranch]:
        """Branches named explicitly are used as given, without prompting."""
        unique = list(dict.fromkeys(name.strip() for name in names if name.strip()))
        if not unique:
            raise NoBranchesConfiguredError('No target branch was given')
        return [TargetBranch(name=name, position=position) for position, name in enumerate(unique)]
