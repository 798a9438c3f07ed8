# The MIT License (MIT)
# Copyright © 2025 Entrius

"""
Configuration loading for backport.

Two JSON files are read:

- the global config (~/.backport/config.json): access token, username, and
  optional per-project entries under "projects"
- the project config (.backportrc.json), found by walking up from the
  current directory: upstream repository, target branches, labels

Merge order, last wins: global defaults, project config, then the global
"projects" entry for the same upstream. Command-line options override the
result, which is validated once into a BackportConfig.
"""

import json
import logging
import os
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from backport.constants import (
    BACKPORT_DIR,
    DOCUMENTATION_URL,
    GLOBAL_CONFIG_FILE,
    PROJECT_CONFIG_FILE_NAME,
    REPOSITORIES_DIR,
)
from backport.errors import InvalidConfigError
from backport.prompts import Prompter

logger = logging.getLogger(__name__)

# key -> (type, element type for lists)
PROJECT_CONFIG_SCHEMA: Dict[str, Tuple[type, Optional[type]]] = {
    'upstream': (str, None),
    'branches': (list, str),
    'labels': (list, str),
    'multipleCommits': (bool, None),
    'multipleBranches': (bool, None),
}

GLOBAL_CONFIG_SCHEMA: Dict[str, Tuple[type, Optional[type]]] = {
    'accessToken': (str, None),
    'username': (str, None),
    'projects': (list, dict),
    'labels': (list, str),
    'multipleCommits': (bool, None),
    'multipleBranches': (bool, None),
}

GLOBAL_CONFIG_TEMPLATE: Dict[str, Any] = {
    'accessToken': '',
    'username': '',
    'projects': [],
}


def _schema_errors(data: Any, schema: Dict[str, Tuple[type, Optional[type]]], required: Tuple[str, ...]) -> List[str]:
    if not isinstance(data, dict):
        return ['expected a JSON object']

    errors = []
    for key in required:
        if key not in data:
            errors.append(f'"{key}" is required')

    for key, value in data.items():
        if key not in schema:
            errors.append(f'"{key}" is not a known setting')
            continue
        expected, element_type = schema[key]
        if not isinstance(value, expected):
            errors.append(f'"{key}" must be of type {expected.__name__}, got {type(value).__name__}')
        elif element_type is not None and not all(isinstance(item, element_type) for item in value):
            errors.append(f'"{key}" must only contain values of type {element_type.__name__}')
    return errors


def read_config_file(path: Path) -> Any:
    try:
        with open(path, 'r') as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise InvalidConfigError(f'The config file ({path}) is not valid JSON: {e}') from e


# ---------------------------------------------------------------------------
# Project config
# ---------------------------------------------------------------------------


def find_project_config(start: Optional[Path] = None) -> Optional[Path]:
    """Closest .backportrc.json in start or any of its parents."""
    directory = Path(start or Path.cwd()).resolve()
    for candidate_dir in (directory, *directory.parents):
        candidate = candidate_dir / PROJECT_CONFIG_FILE_NAME
        if candidate.is_file():
            return candidate
    return None


def validate_project_config(config: Any, path: Path) -> Dict[str, Any]:
    errors = _schema_errors(config, PROJECT_CONFIG_SCHEMA, required=('upstream',))
    if isinstance(config, dict) and isinstance(config.get('upstream'), str) and '/' not in config['upstream']:
        errors.append('"upstream" must be in owner/repo format')
    if errors:
        raise InvalidConfigError(f'The project config file ({path}) is not valid: ' + '; '.join(errors))
    return config


def get_project_config(start: Optional[Path] = None) -> Optional[Dict[str, Any]]:
    """Load and validate the project config, or None when there is none."""
    path = find_project_config(start)
    if path is None:
        return None
    logger.info(f'Using project config {path}')
    return validate_project_config(read_config_file(path), path)


# ---------------------------------------------------------------------------
# Global config
# ---------------------------------------------------------------------------


def maybe_create_global_config(path: Path = GLOBAL_CONFIG_FILE) -> bool:
    """Write the config template, readable by the owner only. Returns False if it already existed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    except FileExistsError:
        return False
    with os.fdopen(fd, 'w') as f:
        f.write(json.dumps(GLOBAL_CONFIG_TEMPLATE, indent=2))
    logger.info(f'Created global config template at {path}')
    return True


def check_config_permissions(path: Path) -> None:
    """The file holds an access token: refuse it when group or others can read it."""
    if os.name == 'nt':
        return
    mode = stat.S_IMODE(os.stat(path).st_mode)
    if mode & 0o077:
        raise InvalidConfigError(
            f'Config file at {path} needs to have more restrictive permissions. '
            f'Run the following to limit access to the file to just your user account:\n'
            f'  chmod 600 "{path}"'
        )


def validate_global_config(config: Any, path: Path) -> Dict[str, Any]:
    check_config_permissions(path)
    errors = _schema_errors(config, GLOBAL_CONFIG_SCHEMA, required=())
    if isinstance(config, dict) and isinstance(config.get('projects'), list):
        for index, project in enumerate(config['projects']):
            for error in _schema_errors(project, PROJECT_CONFIG_SCHEMA, required=('upstream',)):
                errors.append(f'projects[{index}]: {error}')
    if errors:
        raise InvalidConfigError(f'The global config file ({path}) is not valid: ' + '; '.join(errors))
    return config


def get_global_config(backport_dir: Path = BACKPORT_DIR) -> Dict[str, Any]:
    """Create ~/.backport (config template and repositories dir) if needed, then load the config."""
    backport_dir = Path(backport_dir)
    (backport_dir / REPOSITORIES_DIR.name).mkdir(parents=True, exist_ok=True)
    path = backport_dir / GLOBAL_CONFIG_FILE.name
    maybe_create_global_config(path)
    return validate_global_config(read_config_file(path), path)


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------


def merge_configs(
    project_config: Optional[Dict[str, Any]], global_config: Dict[str, Any], upstream: str
) -> Dict[str, Any]:
    """Global defaults, then the project config, then the matching global project entry."""
    defaults = {key: value for key, value in global_config.items() if key != 'projects'}
    global_project = next(
        (p for p in global_config.get('projects', []) if p.get('upstream') == upstream),
        {},
    )
    return {**defaults, **(project_config or {}), **global_project}


def get_combined_config(
    project_config: Optional[Dict[str, Any]],
    global_config: Dict[str, Any],
    prompter: Prompter,
    global_config_path: Path = GLOBAL_CONFIG_FILE,
) -> Dict[str, Any]:
    if project_config:
        return merge_configs(project_config, global_config, project_config['upstream'])

    projects = global_config.get('projects') or []
    if projects:
        upstreams = [p['upstream'] for p in projects]
        selected = prompter.choose('Select a project', upstreams) if len(upstreams) > 1 else upstreams
        if not selected:
            raise InvalidConfigError('No project selected')
        return merge_configs(None, global_config, selected[0])

    raise InvalidConfigError(
        f'Global config ({global_config_path}) does not contain any valid projects, '
        f'and no project config ({PROJECT_CONFIG_FILE_NAME}) was found.\n'
        f'Documentation: {DOCUMENTATION_URL}'
    )


# ---------------------------------------------------------------------------
# Typed result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BackportConfig:
    """Validated settings for one backport run"""

    upstream: str
    username: str
    access_token: str
    branches: Tuple[str, ...] = ()
    labels: Tuple[str, ...] = ()
    multiple_commits: bool = False
    multiple_branches: bool = True

    @property
    def owner(self) -> str:
        return self.upstream.split('/', 1)[0]

    @property
    def repo_name(self) -> str:
        return self.upstream.split('/', 1)[1]

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'BackportConfig':
        errors = []
        for key in ('upstream', 'username', 'accessToken'):
            if not config.get(key):
                errors.append(f'"{key}" is missing')
        upstream = config.get('upstream') or ''
        if upstream and (upstream.count('/') != 1 or upstream.startswith('/') or upstream.endswith('/')):
            errors.append(f'"upstream" must be in owner/repo format (got "{upstream}")')
        if errors:
            raise InvalidConfigError(
                'The configuration is not valid: ' + '; '.join(errors) + f'\nDocumentation: {DOCUMENTATION_URL}'
            )

        return cls(
            upstream=upstream,
            username=config['username'],
            access_token=config['accessToken'],
            branches=tuple(config.get('branches', ())),
            labels=tuple(config.get('labels', ())),
            multiple_commits=bool(config.get('multipleCommits', False)),
            multiple_branches=bool(config.get('multipleBranches', True)),
        )


def apply_overrides(config: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Command-line values win over file values; None and empty lists mean 'not given'."""
    merged = dict(config)
    for key, value in overrides.items():
        if value is None or (isinstance(value, (list, tuple)) and not value):
            continue
        merged[key] = list(value) if isinstance(value, tuple) else value
    return merged


def load_config(
    prompter: Prompter,
    overrides: Optional[Dict[str, Any]] = None,
    backport_dir: Path = BACKPORT_DIR,
    cwd: Optional[Path] = None,
) -> BackportConfig:
    """Load, merge and validate the configuration for a run.

    An upstream given on the command line skips the project lookup prompt,
    and a project config for a different upstream is not merged in.
    """
    overrides = overrides or {}
    global_path = Path(backport_dir) / GLOBAL_CONFIG_FILE.name
    global_config = get_global_config(backport_dir)
    project_config = get_project_config(cwd)

    upstream = overrides.get('upstream')
    if upstream:
        if project_config and project_config['upstream'] != upstream:
            logger.info(f'Ignoring project config for {project_config["upstream"]}: --upstream is {upstream}')
            project_config = None
        combined = merge_configs(project_config, global_config, upstream)
    else:
        combined = get_combined_config(project_config, global_config, prompter, global_path)

    return BackportConfig.from_dict(apply_overrides(combined, overrides))
