from typing import List

from .models import Job, JobState, PublishedDependency, Repository
from .version_filter import parse_constraint


def _is_non_empty_str(v) -> bool:
    return isinstance(v, str) and v.strip() != ""


def validate_job(job: Job) -> List[str]:
    """
    Returns a list of validation error messages. Empty list means valid.
    """
    errors: List[str] = []

    if not _is_non_empty_str(job.name):
        errors.append("Field 'name' must be a non-empty string")

    if not isinstance(job.state, JobState):
        errors.append(f"Field 'state' must be one of: {', '.join(s.value for s in JobState)}")

    for i, dep in enumerate(job.dependencies):
        if not isinstance(dep, PublishedDependency):
            errors.append(f"Dependency #{i} must be a published dependency")
            continue
        if not _is_non_empty_str(dep.name):
            errors.append(f"Dependency #{i} is missing a package name")
        if not _is_non_empty_str(dep.version):
            errors.append(f"Dependency #{i} is missing a version")

    return errors


def validate_repository(repository: Repository) -> List[str]:
    """
    Returns a list of validation error messages. Empty list means valid.
    Constraints must be valid npm ranges.
    """
    errors: List[str] = []

    if not _is_non_empty_str(repository.name):
        errors.append("Field 'name' must be a non-empty string")

    if not isinstance(repository.dependencies, dict):
        errors.append("Field 'dependencies' must be a mapping of package to constraint")
        return errors

    for package, constraint in repository.dependencies.items():
        if not _is_non_empty_str(package):
            errors.append("Dependency package names must be non-empty strings")
            continue
        if not _is_non_empty_str(constraint):
            errors.append(f"Constraint for '{package}' must be a non-empty string")
        elif parse_constraint(constraint) is None:
            errors.append(f"Constraint for '{package}' is not a valid range: {constraint}")

    return errors
