# The MIT License (MIT)
# Copyright © 2025 Entrius

from pathlib import Path

# =============================================================================
# GitHub API
# =============================================================================
BASE_GITHUB_API_URL = 'https://api.github.com'
GITHUB_API_TIMEOUT = 30  # seconds
GITHUB_REMOTE_TEMPLATE = 'https://{token}@github.com/{owner}/{repo}.git'
RATE_LIMIT_MIN_REMAINING = 10  # warn below this many remaining requests

# =============================================================================
# Selection
# =============================================================================
COMMIT_CHOICE_LIMIT = 10
PULL_REQUEST_CHOICE_LIMIT = 10
PULL_REQUEST_COMMITS_LIMIT = 100  # GitHub caps /pulls/{n}/commits pages at 100

# =============================================================================
# Local paths
# =============================================================================
BACKPORT_DIR = Path.home() / '.backport'
GLOBAL_CONFIG_FILE = BACKPORT_DIR / 'config.json'
REPOSITORIES_DIR = BACKPORT_DIR / 'repositories'
LOG_FILE_NAME = 'backport.log'
PROJECT_CONFIG_FILE_NAME = '.backportrc.json'

# =============================================================================
# Pull requests
# =============================================================================
BACKPORT_BRANCH_PREFIX = 'backport'
ABORTED_BY_USER = 'aborted by user'
CONFLICT_DISCARDED = 'conflicted tree discarded to port the next branch; re-run backport for this branch'

DOCUMENTATION_URL = 'https://github.com/sqren/backport#global-configuration'
