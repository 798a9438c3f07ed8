# Entrius 2025
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import requests

from backport.classes import CommitRef, PullRequest
from backport.constants import (
    BASE_GITHUB_API_URL,
    COMMIT_CHOICE_LIMIT,
    GITHUB_API_TIMEOUT,
    PULL_REQUEST_CHOICE_LIMIT,
    PULL_REQUEST_COMMITS_LIMIT,
    RATE_LIMIT_MIN_REMAINING,
)
from backport.errors import RemoteApiError

logger = logging.getLogger(__name__)


@dataclass
class RateLimitInfo:
    """Represents GitHub API rate limit information extracted from response headers."""

    limit: int  # Maximum requests allowed per hour
    remaining: int  # Requests remaining in current window
    reset_timestamp: int  # Unix timestamp when the rate limit resets
    used: int  # Requests used in current window

    @property
    def seconds_until_reset(self) -> int:
        """Calculate seconds until rate limit resets."""
        current_time = int(time.time())
        return max(0, self.reset_timestamp - current_time)

    def __str__(self) -> str:
        return f"RateLimit(remaining={self.remaining}/{self.limit}, resets_in={self.seconds_until_reset}s)"


def parse_rate_limit_headers(response: requests.Response) -> Optional[RateLimitInfo]:
    """
    Parse GitHub API rate limit information from response headers.

    Args:
        response: The HTTP response from GitHub API

    Returns:
        RateLimitInfo object if headers are present, None otherwise
    """
    headers = response.headers

    try:
        limit = int(headers.get('X-RateLimit-Limit', 0))
        remaining = int(headers.get('X-RateLimit-Remaining', 0))
        reset_timestamp = int(headers.get('X-RateLimit-Reset', 0))
        used = int(headers.get('X-RateLimit-Used', 0))
    except (ValueError, TypeError) as e:
        logger.debug(f"Could not parse rate limit headers: {e}")
        return None

    if limit == 0 and reset_timestamp == 0:
        return None

    return RateLimitInfo(limit=limit, remaining=remaining, reset_timestamp=reset_timestamp, used=used)


def check_preemptive_rate_limit(response: requests.Response) -> None:
    """
    Log a warning when we are close to the rate limit.

    Requests are never retried or delayed here; the warning tells the user why
    the next call might fail.
    """
    rate_limit_info = parse_rate_limit_headers(response)

    if rate_limit_info and rate_limit_info.remaining <= RATE_LIMIT_MIN_REMAINING:
        logger.warning(
            f"Approaching GitHub API rate limit: {rate_limit_info.remaining} requests remaining, "
            f"resets in {rate_limit_info.seconds_until_reset}s"
        )


def make_headers(token: str) -> Dict[str, str]:
    """Build standard GitHub HTTP headers for a bearer token.

    Args:
        token (str): GitHub access token
    Returns:
        Dict[str, str]: Mapping of HTTP header names to values.
    """
    return {
        "Authorization": f"Bearer {token}",
        "Accept": "application/vnd.github+json",
    }


def _error_message(response: requests.Response) -> str:
    """GitHub's own error message, falling back to the raw body."""
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason or 'unknown error'
    if isinstance(data, dict) and data.get('message'):
        message = data['message']
        details = [e.get('message') for e in data.get('errors', []) if isinstance(e, dict) and e.get('message')]
        return f"{message}: {'; '.join(details)}" if details else message
    return response.text


class GithubClient:
    """Typed access to the upstream repository on GitHub.

    Every call is single-shot: failures raise RemoteApiError carrying the HTTP
    status and GitHub's message, and the caller decides what to do with it.
    """

    def __init__(self, owner: str, repo_name: str, api_url: str = BASE_GITHUB_API_URL):
        self.owner = owner
        self.repo_name = repo_name
        self.api_url = api_url.rstrip('/')
        self._access_token: Optional[str] = None

    @property
    def repository(self) -> str:
        return f'{self.owner}/{self.repo_name}'

    def set_access_token(self, token: str) -> None:
        self._access_token = token

    def _request(self, method: str, path: str, **kwargs) -> Any:
        if not self._access_token:
            raise RemoteApiError(401, 'No access token set')

        url = f'{self.api_url}{path}'
        logger.debug(f'{method} {url}')
        try:
            response = requests.request(
                method,
                url,
                headers=make_headers(self._access_token),
                timeout=GITHUB_API_TIMEOUT,
                **kwargs,
            )
        except requests.exceptions.RequestException as e:
            raise RemoteApiError(None, str(e)) from e

        if response.status_code >= 400:
            message = _error_message(response)
            logger.warning(f'{method} {path} failed with status {response.status_code}: {message}')
            raise RemoteApiError(response.status_code, message)

        check_preemptive_rate_limit(response)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # -------------------------------------------------------------------------
    # Pull requests
    # -------------------------------------------------------------------------

    def find_pull_requests_by_query(
        self, query: Optional[str] = None, author: Optional[str] = None, limit: int = PULL_REQUEST_CHOICE_LIMIT
    ) -> List[PullRequest]:
        """Merged pull requests of the repository, most recently updated first."""
        terms = [f'repo:{self.repository}', 'type:pr', 'is:merged']
        if author:
            terms.append(f'author:{author}')
        if query:
            terms.append(query)
        data = self._request(
            'GET',
            '/search/issues',
            params={'q': ' '.join(terms), 'sort': 'updated', 'order': 'desc', 'per_page': limit},
        )
        return [PullRequest.from_github_response(item) for item in data.get('items', [])]

    def get_pull_request(self, number: int) -> PullRequest:
        data = self._request('GET', f'/repos/{self.repository}/pulls/{number}')
        return PullRequest.from_github_response(data)

    def find_open_pull_request(self, base: str, head: str) -> Optional[PullRequest]:
        """The open pull request from ``head`` (``user:branch``) into ``base``, if any."""
        data = self._request(
            'GET',
            f'/repos/{self.repository}/pulls',
            params={'state': 'open', 'base': base, 'head': head},
        )
        return PullRequest.from_github_response(data[0]) if data else None

    def create_pull_request(self, base: str, head: str, title: str, body: str) -> PullRequest:
        data = self._request(
            'POST',
            f'/repos/{self.repository}/pulls',
            json={'base': base, 'head': head, 'title': title, 'body': body},
        )
        pull_request = PullRequest.from_github_response(data)
        logger.info(f'Created pull request #{pull_request.number} {head} -> {base}')
        return pull_request

    def add_labels(self, pr_number: int, labels: Sequence[str]) -> None:
        self._request(
            'POST',
            f'/repos/{self.repository}/issues/{pr_number}/labels',
            json={'labels': list(labels)},
        )

    # -------------------------------------------------------------------------
    # Commits
    # -------------------------------------------------------------------------

    def find_commits_by_query(
        self, query: Optional[str] = None, author: Optional[str] = None, limit: int = COMMIT_CHOICE_LIMIT
    ) -> List[CommitRef]:
        """Commits matching a free-text query (or the latest commits), newest first.

        Args:
            query (Optional[str]): Text searched in commit messages. Without it the
                default branch history is listed.
            author (Optional[str]): Only commits authored by this GitHub login.
            limit (int): Maximum number of commits returned.
        """
        if query:
            terms = [f'repo:{self.repository}', query]
            if author:
                terms.append(f'author:{author}')
            data = self._request(
                'GET',
                '/search/commits',
                params={'q': ' '.join(terms), 'sort': 'committer-date', 'order': 'desc', 'per_page': limit},
            )
            items = data.get('items', [])
        else:
            params: Dict[str, Any] = {'per_page': limit}
            if author:
                params['author'] = author
            items = self._request('GET', f'/repos/{self.repository}/commits', params=params)
        return [CommitRef.from_github_commit(item) for item in items[:limit]]

    def find_commits_in_pull_request(self, pr_number: int) -> List[CommitRef]:
        """Commits of a pull request, in the order they were made."""
        items = self._request(
            'GET',
            f'/repos/{self.repository}/pulls/{pr_number}/commits',
            params={'per_page': PULL_REQUEST_COMMITS_LIMIT},
        )
        return [CommitRef.from_github_commit(item, pull_number=pr_number) for item in items]

    def get_commit_by_sha(self, sha: str) -> CommitRef:
        data = self._request('GET', f'/repos/{self.repository}/commits/{sha}')
        return CommitRef.from_github_commit(data)
