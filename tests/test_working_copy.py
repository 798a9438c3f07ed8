# The MIT License (MIT)
# Copyright © 2025 Entrius

"""
Tests for the local clone: git error mapping with a mocked subprocess, and an
end-to-end run against throwaway local repositories.
"""

import os
import shutil
import subprocess
from unittest.mock import Mock, patch

import pytest

from backport.classes import CommitRef, PortStatus
from backport.errors import PushRejectedError, WorkingCopyError
from backport.working_copy import WorkingCopy


def _completed(returncode=0, stdout='', stderr=''):
    return Mock(returncode=returncode, stdout=stdout, stderr=stderr)


# ============================================================================
# Mocked git
# ============================================================================


class TestRunGitCommand:
    @patch('backport.working_copy.subprocess.run')
    def test_non_interactive_environment(self, mock_run, tmp_path):
        mock_run.return_value = _completed()
        working_copy = WorkingCopy('elastic', 'kibana', repositories_dir=tmp_path)

        working_copy._run_git_command(['status'])

        env = mock_run.call_args[1]['env']
        assert env['GIT_TERMINAL_PROMPT'] == '0'
        assert env['GIT_EDITOR'] == 'true'
        assert mock_run.call_args[1]['cwd'] == tmp_path / 'elastic' / 'kibana'

    @patch('backport.working_copy.subprocess.run')
    def test_failure_raises_with_stderr(self, mock_run, tmp_path):
        mock_run.return_value = _completed(128, stderr='fatal: not a git repository')
        working_copy = WorkingCopy('elastic', 'kibana', repositories_dir=tmp_path)

        with pytest.raises(WorkingCopyError) as exc_info:
            working_copy._run_git_command(['status'])

        assert exc_info.value.returncode == 128
        assert 'not a git repository' in exc_info.value.stderr

    @patch('backport.working_copy.subprocess.run')
    def test_unchecked_failure_is_returned(self, mock_run, tmp_path):
        mock_run.return_value = _completed(1)
        working_copy = WorkingCopy('elastic', 'kibana', repositories_dir=tmp_path)

        assert working_copy._run_git_command(['status'], check=False).returncode == 1

    @patch('backport.working_copy.subprocess.run')
    def test_access_token_is_redacted(self, mock_run, tmp_path):
        mock_run.return_value = _completed(128, stderr='fatal: unable to access https://s3cr3t@github.com/')
        working_copy = WorkingCopy('elastic', 'kibana', repositories_dir=tmp_path)
        working_copy._access_token = 's3cr3t'

        with pytest.raises(WorkingCopyError) as exc_info:
            working_copy._run_git_command(['fetch', working_copy.remote_url('elastic')])

        assert 's3cr3t' not in str(exc_info.value)
        assert 's3cr3t' not in ' '.join(exc_info.value.command)

    @patch('backport.working_copy.subprocess.run')
    def test_short_token_does_not_mangle_messages(self, mock_run, tmp_path):
        mock_run.return_value = _completed(1, stderr='error: could not apply commit abc1234 to https://t@github.com/')
        working_copy = WorkingCopy('elastic', 'kibana', repositories_dir=tmp_path)
        working_copy._access_token = 't'

        with pytest.raises(WorkingCopyError) as exc_info:
            working_copy._run_git_command(['cherry-pick', 'abc1234'])

        assert 'could not apply commit abc1234' in exc_info.value.stderr
        assert 'https://***@github.com/' in exc_info.value.stderr

    @patch('backport.working_copy.subprocess.run')
    def test_long_token_redacted_anywhere(self, mock_run, tmp_path):
        mock_run.return_value = _completed(128, stderr='fatal: token ghp_abcdefgh1234 rejected')
        working_copy = WorkingCopy('elastic', 'kibana', repositories_dir=tmp_path)
        working_copy._access_token = 'ghp_abcdefgh1234'

        with pytest.raises(WorkingCopyError) as exc_info:
            working_copy._run_git_command(['fetch'])

        assert exc_info.value.stderr == 'fatal: token *** rejected'

    @patch('backport.working_copy.subprocess.run')
    def test_missing_git_binary(self, mock_run, tmp_path):
        mock_run.side_effect = FileNotFoundError('git')
        working_copy = WorkingCopy('elastic', 'kibana', repositories_dir=tmp_path)

        with pytest.raises(WorkingCopyError, match='Could not run git'):
            working_copy._run_git_command(['status'])


class TestMockedOperations:
    @pytest.fixture
    def working_copy(self, tmp_path):
        return WorkingCopy('elastic', 'kibana', repositories_dir=tmp_path)

    def test_cherry_pick_failure_without_conflicts_raises(self, working_copy):
        def run(cmd, **kwargs):
            if cmd[1] == 'rev-parse':
                return _completed(stdout='backport/6.1/pr-1\n')
            if cmd[1] == 'cherry-pick':
                return _completed(128, stderr='fatal: bad object abc')
            return _completed()

        with patch('backport.working_copy.subprocess.run', side_effect=run):
            with pytest.raises(WorkingCopyError, match='bad object'):
                working_copy.cherry_pick(CommitRef(sha='abc', message='Fix'))

    def test_cherry_pick_conflict_is_a_result(self, working_copy):
        def run(cmd, **kwargs):
            if cmd[1] == 'rev-parse':
                return _completed(stdout='backport/6.1/pr-1\n')
            if cmd[1] == 'cherry-pick':
                return _completed(1, stderr='error: could not apply abc')
            if cmd[1] == 'diff':
                return _completed(stdout='src/a.js\nsrc/b.js\n')
            return _completed()

        with patch('backport.working_copy.subprocess.run', side_effect=run):
            result = working_copy.cherry_pick(CommitRef(sha='abc', message='Fix'))

        assert result.status is PortStatus.CONFLICT
        assert result.conflicting_files == ('src/a.js', 'src/b.js')
        assert result.local_branch == 'backport/6.1/pr-1'

    def test_merge_commit_is_picked_against_first_parent(self, working_copy):
        commands = []

        def run(cmd, **kwargs):
            commands.append(cmd)
            if cmd[1] == 'rev-parse':
                return _completed(stdout='backport/6.1/pr-12\n')
            if cmd[1] == 'rev-list':
                return _completed(stdout='mmm111 ppp222 fff333\n')
            return _completed()

        with patch('backport.working_copy.subprocess.run', side_effect=run):
            result = working_copy.cherry_pick(CommitRef(sha='mmm111', message='Merge pull request #12', pull_number=12))

        assert result.status is PortStatus.CLEAN
        assert ['git', 'cherry-pick', '-m', '1', 'mmm111'] in commands

    @patch('backport.working_copy.subprocess.run')
    def test_push_rejection(self, mock_run, working_copy):
        mock_run.return_value = _completed(1, stderr='! [remote rejected] (protected branch hook declined)')

        with pytest.raises(PushRejectedError, match='protected branch'):
            working_copy.push('backport/6.1/pr-1', 'sqren')

        assert mock_run.call_args[0][0] == [
            'git',
            'push',
            '--force',
            'sqren',
            'backport/6.1/pr-1:refs/heads/backport/6.1/pr-1',
        ]

    @patch('backport.working_copy.subprocess.run')
    def test_missing_target_branch(self, mock_run, working_copy):
        def run(cmd, **kwargs):
            if cmd[1] == 'rev-parse':
                return _completed(1)
            return _completed()

        mock_run.side_effect = run

        with pytest.raises(WorkingCopyError, match='Branch 7.x does not exist'):
            working_copy.check_out_branch('7.x', 'backport/7.x/pr-1')

    def test_files_with_conflict_markers(self, working_copy):
        working_copy.path.mkdir(parents=True)
        (working_copy.path / 'resolved.js').write_text('const a = 1;\n')
        (working_copy.path / 'conflicted.js').write_text('<<<<<<< HEAD\na\n=======\nb\n>>>>>>> abc\n')

        remaining = working_copy.files_with_conflict_markers(['resolved.js', 'conflicted.js', 'deleted.js'])

        assert remaining == ['conflicted.js']


# ============================================================================
# Real git
# ============================================================================


def _git(*args, cwd):
    return subprocess.run(['git', *args], cwd=cwd, check=True, capture_output=True, text=True).stdout.strip()


@pytest.mark.git
@pytest.mark.skipif(shutil.which('git') is None, reason='git is not installed')
class TestWithRealRepositories:
    """Upstream and fork are bare repositories under tmp_path; nothing touches the network."""

    @pytest.fixture(autouse=True)
    def git_identity(self, tmp_path, monkeypatch):
        monkeypatch.setenv('HOME', str(tmp_path))
        monkeypatch.setenv('GIT_CONFIG_NOSYSTEM', '1')
        for key in ('GIT_AUTHOR_NAME', 'GIT_COMMITTER_NAME'):
            monkeypatch.setenv(key, 'Backport Test')
        for key in ('GIT_AUTHOR_EMAIL', 'GIT_COMMITTER_EMAIL'):
            monkeypatch.setenv(key, 'backport@example.com')

    @pytest.fixture
    def remotes(self, tmp_path):
        """Upstream with `main` and `6.1`; returns the shas of two fixes made on main."""
        root = tmp_path / 'remotes'
        upstream = root / 'elastic' / 'kibana.git'
        fork = root / 'sqren' / 'kibana.git'
        for bare in (upstream, fork):
            bare.mkdir(parents=True)
            _git('init', '--bare', cwd=bare)
            _git('symbolic-ref', 'HEAD', 'refs/heads/main', cwd=bare)

        seed = tmp_path / 'seed'
        seed.mkdir()
        _git('init', cwd=seed)
        _git('symbolic-ref', 'HEAD', 'refs/heads/main', cwd=seed)
        (seed / 'a.js').write_text('one\n')
        _git('add', 'a.js', cwd=seed)
        _git('commit', '-m', 'Initial commit', cwd=seed)
        _git('branch', '6.1', cwd=seed)

        (seed / 'a.js').write_text('two\n')
        _git('commit', '-am', 'Change a.js', cwd=seed)
        conflicting_sha = _git('rev-parse', 'HEAD', cwd=seed)

        (seed / 'b.txt').write_text('new file\n')
        _git('add', 'b.txt', cwd=seed)
        _git('commit', '-m', 'Add b.txt', cwd=seed)
        clean_sha = _git('rev-parse', 'HEAD', cwd=seed)

        # pull request #12 merged with a merge commit
        _git('checkout', '-b', 'feature', cwd=seed)
        (seed / 'c.txt').write_text('feature\n')
        _git('add', 'c.txt', cwd=seed)
        _git('commit', '-m', 'Add c.txt', cwd=seed)
        _git('checkout', 'main', cwd=seed)
        _git('merge', '--no-ff', '--no-edit', '-m', 'Merge pull request #12 from sqren/feature', 'feature', cwd=seed)
        merge_sha = _git('rev-parse', 'HEAD', cwd=seed)

        _git('checkout', '6.1', cwd=seed)
        (seed / 'a.js').write_text('three\n')
        _git('commit', '-am', 'Diverge a.js on 6.1', cwd=seed)

        _git('push', str(upstream), 'main', '6.1', cwd=seed)
        return {'root': root, 'fork': fork, 'clean': clean_sha, 'conflicting': conflicting_sha, 'merge': merge_sha}

    @pytest.fixture
    def working_copy(self, tmp_path, remotes):
        template = str(remotes['root']) + '/{owner}/{repo}.git'
        working_copy = WorkingCopy(
            'elastic', 'kibana', repositories_dir=tmp_path / 'repositories', remote_url_template=template
        )
        working_copy.ensure_cloned('token', 'sqren')
        return working_copy

    def test_clone_adds_fork_remote(self, working_copy):
        assert working_copy.exists()
        remotes = _git('remote', cwd=working_copy.path).split()
        assert sorted(remotes) == ['origin', 'sqren']

    def test_second_ensure_cloned_reuses_clone(self, working_copy):
        working_copy.ensure_cloned('token', 'sqren')

        assert sorted(_git('remote', cwd=working_copy.path).split()) == ['origin', 'sqren']

    def test_clean_port_and_push(self, working_copy, remotes):
        commit = CommitRef(sha=remotes['clean'], message='Add b.txt')

        result = working_copy.check_out_and_port('6.1', commit, 'backport/6.1/commit-clean')
        working_copy.push('backport/6.1/commit-clean', 'sqren')

        assert result.status is PortStatus.CLEAN
        assert result.local_branch == 'backport/6.1/commit-clean'
        assert (working_copy.path / 'b.txt').read_text() == 'new file\n'
        pushed = _git('rev-parse', 'refs/heads/backport/6.1/commit-clean', cwd=remotes['fork'])
        assert pushed == _git('rev-parse', 'HEAD', cwd=working_copy.path)

    def test_merge_commit_of_pull_request(self, working_copy, remotes):
        commit = CommitRef(sha=remotes['merge'], message='Merge pull request #12 from sqren/feature', pull_number=12)

        assert working_copy.is_merge_commit(remotes['merge'])
        assert not working_copy.is_merge_commit(remotes['clean'])

        result = working_copy.check_out_and_port('6.1', commit, 'backport/6.1/pr-12')

        assert result.status is PortStatus.CLEAN
        assert (working_copy.path / 'c.txt').read_text() == 'feature\n'
        # only the pull request's changes, not the rest of main
        assert not (working_copy.path / 'b.txt').exists()
        assert (working_copy.path / 'a.js').read_text() == 'three\n'

    def test_conflict_resolved_by_hand(self, working_copy, remotes):
        commit = CommitRef(sha=remotes['conflicting'], message='Change a.js')

        result = working_copy.check_out_and_port('6.1', commit, 'backport/6.1/commit-conflict')
        assert result.status is PortStatus.CONFLICT
        assert result.conflicting_files == ('a.js',)

        still_conflicted = working_copy.continue_port()
        assert still_conflicted.conflicting_files == ('a.js',)

        (working_copy.path / 'a.js').write_text('two\n')
        resolved = working_copy.continue_port()

        assert resolved.status is PortStatus.CLEAN
        assert _git('log', '-1', '--format=%s', cwd=working_copy.path) == 'Change a.js'

    def test_rerun_starts_from_fresh_target(self, working_copy, remotes):
        commit = CommitRef(sha=remotes['clean'], message='Add b.txt')
        working_copy.check_out_and_port('6.1', commit, 'backport/6.1/commit-clean')
        first_head = _git('rev-parse', 'HEAD^', cwd=working_copy.path)

        result = working_copy.check_out_and_port('6.1', commit, 'backport/6.1/commit-clean')

        assert result.status is PortStatus.CLEAN
        assert _git('rev-parse', 'HEAD^', cwd=working_copy.path) == first_head

    def test_leftover_conflict_is_cleared_on_checkout(self, working_copy, remotes):
        conflicting = CommitRef(sha=remotes['conflicting'], message='Change a.js')
        working_copy.check_out_and_port('6.1', conflicting, 'backport/6.1/commit-conflict')

        clean = CommitRef(sha=remotes['clean'], message='Add b.txt')
        result = working_copy.check_out_and_port('6.1', clean, 'backport/6.1/commit-clean')

        assert result.status is PortStatus.CLEAN
        assert not os.path.exists(working_copy.path / '.git' / 'CHERRY_PICK_HEAD')

    def test_unknown_branch(self, working_copy):
        with pytest.raises(WorkingCopyError, match='does not exist'):
            working_copy.check_out_branch('7.x', 'backport/7.x/commit-x')
