# The MIT License (MIT)
# Copyright © 2025 Entrius

"""
Errors raised by the backport tool.

Selection and configuration errors abort the whole run before any branch is
touched. Working-copy and remote API errors only end the branch being ported.
Conflicts are not errors: they are reported as PortResult values.
"""

from typing import Optional, Sequence


class BackportError(Exception):
    """Base class for all backport errors."""


class NotFoundError(BackportError):
    """No commit or pull request matched the given input."""


class AmbiguousInputError(BackportError):
    """The selection could not be resolved without a human choice."""


class NoBranchesConfiguredError(BackportError):
    """There is no target branch to backport to."""


class InvalidConfigError(BackportError):
    """A configuration file or the merged configuration is not valid."""


class WorkingCopyError(BackportError):
    """A git command failed for a reason other than conflicts."""

    def __init__(
        self,
        message: str,
        command: Optional[Sequence[str]] = None,
        returncode: Optional[int] = None,
        stderr: str = '',
    ):
        super().__init__(message)
        self.command = list(command) if command else []
        self.returncode = returncode
        self.stderr = stderr


class PushRejectedError(WorkingCopyError):
    """The remote refused the pushed branch (protected branch, auth failure...)."""


class RemoteApiError(BackportError):
    """The hosting API answered with an error, or could not be reached."""

    def __init__(self, status: Optional[int], message: str):
        super().__init__(f'GitHub API error ({status}): {message}' if status else f'GitHub API error: {message}')
        self.status = status
        self.message = message
