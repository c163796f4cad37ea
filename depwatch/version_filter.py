"""
Version filtering for publish events.

A repository is affected by an event when the npm-style range it declares
for the published package matches the published version.
"""

from typing import List, Optional

from semantic_version import NpmSpec, Version

from .logger import get_logger
from .models import PublishedEvent, Repository

logger = get_logger()


def parse_constraint(constraint: str) -> Optional[NpmSpec]:
    """Parse an npm range, returning None when it is not valid."""
    try:
        return NpmSpec(constraint.strip())
    except ValueError:
        return None


def parse_version(version: str) -> Optional[Version]:
    try:
        return Version(version.strip().lstrip("v"))
    except ValueError:
        return None


def is_affected(repository: Repository, event: PublishedEvent) -> bool:
    constraint = repository.constraint_for(event.name)
    if constraint is None:
        return False

    spec = parse_constraint(constraint)
    if spec is None:
        logger.warning(
            "Ignoring unparseable constraint",
            repository=repository.name,
            package=event.name,
            constraint=constraint,
        )
        return False

    version = parse_version(event.version)
    if version is None:
        return False
    return spec.match(version)


def filter_by_version(
    repositories: List[Repository],
    event: PublishedEvent,
) -> List[Repository]:
    """
    Narrow a repository list to those affected by a published version.

    Args:
        repositories: Candidate repositories, usually every repository that
            declares a dependency on event.name
        event: The publish event

    Returns:
        The affected repositories, in input order
    """
    if parse_version(event.version) is None:
        logger.warning(
            "Published version is not a valid semver, nothing affected",
            package=event.name,
            version=event.version,
        )
        return []
    return [repo for repo in repositories if is_affected(repo, event)]
