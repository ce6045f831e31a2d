"""
Resolution of the "owner/repo" path that repository-scoped commands act on.
"""

from __future__ import annotations

import logging
import re
import subprocess

logger = logging.getLogger(__name__)

_OWNER_REPO_PATTERN = re.compile(
    r"^[a-zA-Z0-9_][a-zA-Z0-9_.-]*[a-zA-Z0-9_]/[a-zA-Z0-9_][a-zA-Z0-9_.-]*[a-zA-Z0-9_]$"
)

_PROJECT_URL_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^https?://bitbucket\.org/(.+?)/?(?:\.git)?/?$"),
    re.compile(r"^git@bitbucket\.org:(.+?)\.git$"),
)

_REMOTE_ORIGIN_PATTERN = re.compile(r"bitbucket\.org[:,/](.+?)\.git")


class RepositoryError(Exception):
    """Raised when the target repository cannot be determined."""


def parse_project(project: str) -> str:
    """
    Parse a --project value into "owner/repo".

    Args:
        project: "owner/repo", "https://bitbucket.org/owner/repo[.git]" or
            "git@bitbucket.org:owner/repo.git".

    Returns:
        The "owner/repo" path.

    Raises:
        RepositoryError: If the value matches none of the accepted formats.
    """
    if _OWNER_REPO_PATTERN.match(project):
        return project

    for pattern in _PROJECT_URL_PATTERNS:
        match = pattern.match(project)
        if match:
            return match.group(1).rstrip("/")

    raise RepositoryError(
        'Invalid repository format. Expected: "owner/repo" or "https://bitbucket.org/owner/repo"'
    )


def _remote_origin_url() -> str:
    try:
        completed = subprocess.run(
            ["git", "config", "--get", "remote.origin.url"],
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as git_error:
        logger.debug("Cannot run git: %s", git_error)
        return ""
    return completed.stdout.strip()


def resolve_repo_path(project: str | None = None) -> str:
    """
    Determine the repository to act on.

    Args:
        project: Value of --project, if given; otherwise the origin remote
            of the git repository in the working directory is used.

    Returns:
        The "owner/repo" path.

    Raises:
        RepositoryError: If neither source yields a Bitbucket repository.
    """
    if project is not None:
        return parse_project(project)

    match = _REMOTE_ORIGIN_PATTERN.search(_remote_origin_url())
    if match is None:
        raise RepositoryError(
            "No Bitbucket remote found. Run from a repo with a bitbucket.org origin, "
            "or pass --project owner/repo."
        )
    return match.group(1)
