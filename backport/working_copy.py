# The MIT License (MIT)
# Copyright © 2025 Entrius

"""
Local clone of the upstream repository.

A WorkingCopy is the handle to the one on-disk clone used for a job. Only the
engine that owns the handle writes to it, one git command at a time; two
processes working on the same clone at once are not supported.
"""

import logging
import os
import re
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

from backport.classes import CommitRef, PortResult
from backport.constants import GITHUB_REMOTE_TEMPLATE, REPOSITORIES_DIR
from backport.errors import PushRejectedError, WorkingCopyError

CONFLICT_MARKERS = ('<<<<<<< ', '>>>>>>> ')
URL_CREDENTIALS = re.compile(r'(https?://)[^@/\s]+@')
# shorter tokens would match inside ordinary words
MIN_REDACTED_TOKEN_LENGTH = 8


class WorkingCopy:
    """Owns the local clone at <repositories_dir>/<owner>/<repo_name>."""

    def __init__(
        self,
        owner: str,
        repo_name: str,
        repositories_dir: Optional[Path] = None,
        remote_url_template: str = GITHUB_REMOTE_TEMPLATE,
    ):
        self.owner = owner
        self.repo_name = repo_name
        self.path = Path(repositories_dir or REPOSITORIES_DIR) / owner / repo_name
        self.remote_url_template = remote_url_template
        self.logger = logging.getLogger(__name__)
        self._access_token: Optional[str] = None

    def remote_url(self, owner: str) -> str:
        return self.remote_url_template.format(token=self._access_token or '', owner=owner, repo=self.repo_name)

    def exists(self) -> bool:
        return (self.path / '.git').is_dir()

    def _redact(self, text: str) -> str:
        """Hide credentials embedded in remote URLs, and the token itself when it is long enough to be unambiguous."""
        text = URL_CREDENTIALS.sub(r'\1***@', text)
        if self._access_token and len(self._access_token) >= MIN_REDACTED_TOKEN_LENGTH:
            text = text.replace(self._access_token, '***')
        return text

    def _run_git_command(
        self, args: Sequence[str], cwd: Optional[Path] = None, check: bool = True
    ) -> subprocess.CompletedProcess:
        """Run a git command; raise WorkingCopyError on failure unless check is False."""
        cmd = ['git', *args]
        printable = self._redact(' '.join(cmd))
        self.logger.debug(f'Running: {printable}')
        env = {**os.environ, 'GIT_EDITOR': 'true', 'GIT_TERMINAL_PROMPT': '0'}
        try:
            result = subprocess.run(
                cmd,
                cwd=cwd or self.path,
                capture_output=True,
                text=True,
                env=env,
            )
        except OSError as e:
            raise WorkingCopyError(f'Could not run git: {e}', command=[printable]) from e

        if check and result.returncode != 0:
            stderr = self._redact((result.stderr or '').strip())
            self.logger.error(f'Git command failed: {printable}, Error: {stderr}')
            raise WorkingCopyError(
                f'`{printable}` failed: {stderr or result.returncode}',
                command=[printable],
                returncode=result.returncode,
                stderr=stderr,
            )
        return result

    # -------------------------------------------------------------------------
    # Clone
    # -------------------------------------------------------------------------

    def ensure_cloned(self, access_token: str, username: str) -> None:
        """Clone the upstream repository if needed and make sure the fork remote exists."""
        self._access_token = access_token

        if not self.exists():
            self.logger.info(f'Cloning {self.owner}/{self.repo_name} into {self.path}')
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._run_git_command(['clone', self.remote_url(self.owner), str(self.path)], cwd=self.path.parent)
        else:
            self.logger.info(f'Using existing clone at {self.path}')

        remotes = self._run_git_command(['remote']).stdout.split()
        if username not in remotes:
            self._run_git_command(['remote', 'add', username, self.remote_url(username)])
        else:
            # the token may have changed since the remote was added
            self._run_git_command(['remote', 'set-url', username, self.remote_url(username)])

    # -------------------------------------------------------------------------
    # Porting
    # -------------------------------------------------------------------------

    def _cherry_pick_in_progress(self) -> bool:
        return (self.path / '.git' / 'CHERRY_PICK_HEAD').exists()

    def check_out_branch(self, target_branch: str, local_branch: str) -> None:
        """Create (or re-create) local_branch from the freshly fetched upstream target branch."""
        if self._cherry_pick_in_progress():
            self.logger.warning('Aborting a cherry-pick left over from a previous run')
            self.abort_port()
        self._run_git_command(['reset', '--hard'])

        self._run_git_command(['fetch', 'origin', '--prune'])
        remote_ref = f'origin/{target_branch}'
        verify = self._run_git_command(['rev-parse', '--verify', '--quiet', f'refs/remotes/{remote_ref}'], check=False)
        if verify.returncode != 0:
            raise WorkingCopyError(f'Branch {target_branch} does not exist on {self.owner}/{self.repo_name}')

        self._run_git_command(['checkout', '-B', local_branch, remote_ref])
        self.logger.info(f'Checked out {local_branch} from {remote_ref}')

    def is_merge_commit(self, sha: str) -> bool:
        """True when the commit has more than one parent (a PR merged with a merge commit)."""
        result = self._run_git_command(['rev-list', '--parents', '-n', '1', sha], check=False)
        # "<sha> <parent> [<parent>...]"; an unknown sha is left for cherry-pick to report
        return result.returncode == 0 and len(result.stdout.split()) > 2

    def cherry_pick(self, commit: CommitRef) -> PortResult:
        """Apply one commit on the current branch; conflicts are returned, not raised.

        Merge commits are replayed against their first parent, the branch the
        pull request was merged into, so only the pull request's changes apply.
        """
        local_branch = self.current_branch()
        args = ['cherry-pick', commit.sha]
        if self.is_merge_commit(commit.sha):
            args = ['cherry-pick', '-m', '1', commit.sha]
        result = self._run_git_command(args, check=False)
        if result.returncode == 0:
            self.logger.info(f'Cherry-picked {commit.short_sha} onto {local_branch}')
            return PortResult.clean(local_branch)

        conflicts = self.conflicting_files()
        if conflicts:
            self.logger.info(f'Cherry-pick of {commit.short_sha} onto {local_branch} conflicts: {conflicts}')
            return PortResult.conflict(local_branch, conflicts)

        stderr = self._redact((result.stderr or result.stdout or '').strip())
        if self._cherry_pick_in_progress():
            self.abort_port()
        raise WorkingCopyError(
            f'Cherry-pick of {commit.short_sha} failed: {stderr}',
            command=['git', *args],
            returncode=result.returncode,
            stderr=stderr,
        )

    def check_out_and_port(self, target_branch: str, commit: CommitRef, local_branch: str) -> PortResult:
        """Start local_branch from the upstream target branch and apply the commit to it."""
        self.check_out_branch(target_branch, local_branch)
        return self.cherry_pick(commit)

    def conflicting_files(self) -> List[str]:
        """Paths git still reports as unmerged."""
        result = self._run_git_command(['diff', '--name-only', '--diff-filter=U'])
        return [line for line in result.stdout.splitlines() if line.strip()]

    def files_with_conflict_markers(self, paths: Sequence[str]) -> List[str]:
        remaining = []
        for path in paths:
            file_path = self.path / path
            if not file_path.is_file():
                continue
            with open(file_path, 'r', errors='replace') as f:
                if any(line.startswith(CONFLICT_MARKERS) for line in f):
                    remaining.append(path)
        return remaining

    def continue_port(self) -> PortResult:
        """Commit the human-resolved cherry-pick, unless conflict markers remain."""
        local_branch = self.current_branch()
        if not self._cherry_pick_in_progress():
            # the user already committed the resolution
            return PortResult.clean(local_branch)

        unresolved = self.files_with_conflict_markers(self.conflicting_files())
        if unresolved:
            return PortResult.conflict(local_branch, unresolved)

        self._run_git_command(['add', '--all'])
        self._run_git_command(['cherry-pick', '--continue'])
        self.logger.info(f'Continued cherry-pick on {local_branch}')
        return PortResult.clean(local_branch)

    def abort_port(self) -> None:
        result = self._run_git_command(['cherry-pick', '--abort'], check=False)
        if result.returncode != 0:
            self.logger.warning(f'cherry-pick --abort failed: {result.stderr.strip()}')

    def current_branch(self) -> str:
        return self._run_git_command(['rev-parse', '--abbrev-ref', 'HEAD']).stdout.strip()

    # -------------------------------------------------------------------------
    # Push
    # -------------------------------------------------------------------------

    def push(self, local_branch: str, remote: str) -> None:
        """Force-push local_branch to the same name on remote (the user's fork)."""
        try:
            self._run_git_command(['push', '--force', remote, f'{local_branch}:refs/heads/{local_branch}'])
        except WorkingCopyError as e:
            raise PushRejectedError(
                f'Push of {local_branch} to {remote} was rejected: {e.stderr or e}',
                command=e.command,
                returncode=e.returncode,
                stderr=e.stderr,
            ) from e
        self.logger.info(f'Pushed {local_branch} to {remote}')
