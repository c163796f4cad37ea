"""
Job lifecycle rules.

States: pending -> in_progress (set by the executor) -> completed/failed
(set by the executor), or in_progress -> locked (set here).

The only transition owned by depwatch is in_progress -> locked: a running
job that receives a newer dependency is marked superseded and a fresh job
takes the dependency instead. Nothing here moves a job into in_progress or
out of locked.
"""

from .errors import InvalidTransitionError
from .models import Job, JobState, PublishedDependency


def is_running(job: Job) -> bool:
    return job.state == JobState.IN_PROGRESS


def lock(job: Job) -> Job:
    """Mark a running job as superseded, in place."""
    if not is_running(job):
        raise InvalidTransitionError(
            f"Cannot lock job '{job.name}' in state '{job.state.value}'"
        )
    job.state = JobState.LOCKED
    return job


def append_dependency(job: Job, dependency: PublishedDependency) -> Job:
    """Append a dependency fact to a job that is not running.

    Facts are never deduplicated; two identical events produce two entries.
    """
    if is_running(job):
        raise InvalidTransitionError(
            f"Job '{job.name}' is running and cannot absorb {dependency.name}@{dependency.version}"
        )
    job.dependencies.append(dependency)
    return job
