"""
Job and repository services.

Thin facades over the stores: validate, write, then read back the stored
form. JobService also turns publish events into job mutations.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .errors import PartialBatchError, ValidationError
from .logger import get_logger
from .models import Job, PublishedEvent, Repository
from .reconciler import JobMutation, JobReconciler
from .schema import validate_job, validate_repository
from .stores import JobStore, RepositoryStore
from .version_filter import filter_by_version

logger = get_logger()


class JobService:
    def __init__(
        self,
        job_store: JobStore,
        repository_store: RepositoryStore,
        reconciler: Optional[JobReconciler] = None,
    ):
        self.job_store = job_store
        self.repository_store = repository_store
        self.reconciler = reconciler or JobReconciler(job_store)

    def get(self, job_id: int) -> Job:
        return self.job_store.get(job_id)

    def get_by_name(self, name: str) -> Job:
        return self.job_store.get_by_name(name)

    def affected_repositories(self, event: PublishedEvent) -> List[Repository]:
        """Repositories whose constraint on event.name matches event.version."""
        candidates = self.repository_store.query_by_dependency(event.name)
        affected = filter_by_version(candidates, event)
        logger.record_event(len(affected))
        logger.info(
            "Publish event received",
            package=event.name,
            version=event.version,
            candidates=len(candidates),
            affected=[repo.name for repo in affected],
        )
        return affected

    def plan_event(self, event: PublishedEvent) -> List[JobMutation]:
        """Decide the job mutations a publish event implies without writing them."""
        return self.reconciler.plan(self.affected_repositories(event), event)

    def create_jobs_from_dependency(self, event: PublishedEvent) -> List[Job]:
        """
        Compute the jobs implied by a publish event without writing them.

        For a running job the list holds the locked job followed by its
        replacement.
        """
        return [mutation.job for mutation in self.plan_event(event)]

    def handle_event(self, event: PublishedEvent) -> List[Job]:
        """Reconcile a publish event and persist the resulting jobs."""
        return self.reconciler.reconcile(self.affected_repositories(event), event)

    def create(self, job: Job) -> Job:
        errors = validate_job(job)
        if errors:
            raise ValidationError(errors)
        self.job_store.create(job)
        return self.job_store.get(job.id)

    def update(self, job_id: int, job: Job) -> Job:
        errors = validate_job(job)
        if errors:
            raise ValidationError(errors)
        self.job_store.update(job_id, job)
        return self.job_store.get(job_id)

    def delete(self, job_id: int) -> Job:
        job = self.job_store.get(job_id)
        self.job_store.delete(job_id)
        return job

    def count(self) -> int:
        return self.job_store.count()

    def query(self, offset: int, limit: int) -> List[Job]:
        return self.job_store.query(offset, limit)


@dataclass
class PatchResult:
    """Outcome of a bulk repository patch.

    `repositories` is the post-patch state of every named repository that
    exists; `errors` maps each repository that failed to its error.
    """

    repositories: List[Repository]
    errors: Dict[str, Exception] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


class RepositoryService:
    def __init__(self, repository_store: RepositoryStore):
        self.repository_store = repository_store

    def get(self, name: str) -> Repository:
        return self.repository_store.get(name)

    def create(self, repository: Repository) -> Repository:
        errors = validate_repository(repository)
        if errors:
            raise ValidationError(errors)
        self.repository_store.create(repository)
        return self.repository_store.get(repository.name)

    def update(self, name: str, repository: Repository) -> Repository:
        errors = validate_repository(repository)
        if repository.name != name:
            errors.append(f"Repository name '{repository.name}' does not match '{name}'")
        if errors:
            raise ValidationError(errors)
        self.repository_store.update(name, repository)
        return self.repository_store.get(name)

    def patch(self, repositories: List[Repository]) -> PatchResult:
        """
        Bulk update repositories.

        Every item is validated before anything is written. If every write
        fails a PartialBatchError carrying the per-item errors is raised.

        Raises:
            ValidationError: an item is invalid; nothing was written
            PartialBatchError: all items failed
        """
        for repository in repositories:
            errors = validate_repository(repository)
            if errors:
                raise ValidationError([f"{repository.name}: {e}" for e in errors])

        if not repositories:
            return PatchResult(repositories=[])

        error_list = self.repository_store.patch(repositories)
        failed = {
            repository.name: error
            for repository, error in zip(repositories, error_list)
            if error is not None
        }
        if all(error is not None for error in error_list):
            raise PartialBatchError(error_list)

        for name, error in failed.items():
            logger.warning("Repository patch failed", repository=name, error=str(error))

        updated = self.repository_store.query_by_name([repo.name for repo in repositories])
        return PatchResult(repositories=updated, errors=failed)

    def delete(self, name: str) -> Repository:
        repository = self.repository_store.get(name)
        self.repository_store.delete(name)
        return repository

    def count(self) -> int:
        return self.repository_store.count()

    def query(self, offset: int, limit: int) -> List[Repository]:
        return self.repository_store.query(offset, limit)
