"""
Dependency-event reconciliation.

Turns one publish event, already narrowed to the affected repositories,
into job mutations:

- no job for the repository: create one seeded with the new dependency
- job is running: lock it and create a fresh job with only the new dependency
- any other job: append the dependency to it

plan() only decides; apply() writes; reconcile() does both per repository
under a per-repository lock, retrying the step when the job store reports
an optimistic-concurrency conflict.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List

from . import lifecycle
from .errors import ConflictError, NotFoundError
from .logger import get_logger
from .models import Job, PublishedEvent, Repository
from .retry import RetryError, exponential_backoff
from .stores import JobStore

logger = get_logger()


class JobAction(str, Enum):
    CREATE = "create"
    MERGE = "merge"
    LOCK = "lock"


@dataclass
class JobMutation:
    action: JobAction
    job: Job


class KeyedLock:
    """One threading.Lock per key, dropped once nobody holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, list] = {}  # key -> [lock, holders + waiters]

    @contextmanager
    def __call__(self, key: str):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class JobReconciler:
    def __init__(
        self,
        job_store: JobStore,
        conflict_retries: int = 3,
        retry_delay: float = 0.05,
    ):
        self.job_store = job_store
        self.conflict_retries = conflict_retries
        self.retry_delay = retry_delay
        self._locks = KeyedLock()

    def decide(self, repository: Repository, event: PublishedEvent) -> List[JobMutation]:
        """
        Decide what one event does to one repository's job. Never writes.

        NotFoundError from the job store means the repository has no job
        yet; every other store error propagates unchanged.
        """
        dependency = event.to_dependency()
        try:
            job = self.job_store.get_by_name(repository.name)
        except NotFoundError:
            return [JobMutation(JobAction.CREATE, Job.from_repository(repository, [dependency]))]

        if lifecycle.is_running(job):
            lifecycle.lock(job)
            fresh = Job.from_repository(repository, [dependency])
            return [JobMutation(JobAction.LOCK, job), JobMutation(JobAction.CREATE, fresh)]

        lifecycle.append_dependency(job, dependency)
        return [JobMutation(JobAction.MERGE, job)]

    def plan(self, repositories: List[Repository], event: PublishedEvent) -> List[JobMutation]:
        """
        Decide mutations for every affected repository, in order.

        Fail-fast: the first lookup error is raised and the mutations decided
        so far are discarded. Nothing has been written at that point.
        """
        mutations: List[JobMutation] = []
        for repository in repositories:
            mutations.extend(self.decide(repository, event))
        return mutations

    def apply(self, mutations: List[JobMutation]) -> List[Job]:
        """
        Persist mutations in order; returns the jobs with store-assigned ids and revisions.

        A LOCK is always followed by the CREATE of its replacement; the pair
        is written with job_store.fork so both land together.
        """
        jobs = []
        pending = iter(mutations)
        for mutation in pending:
            if mutation.action == JobAction.LOCK:
                replacement = next(pending)
                self.job_store.fork(mutation.job, replacement.job)
                written = [mutation, replacement]
            elif mutation.action == JobAction.CREATE:
                self.job_store.create(mutation.job)
                written = [mutation]
            else:
                self.job_store.update(mutation.job.id, mutation.job)
                written = [mutation]

            for done in written:
                logger.record_job_action(done.action.value)
                logger.info(
                    f"Job {done.action.value}",
                    job=done.job.name,
                    job_id=done.job.id,
                    state=done.job.state.value,
                    dependencies=len(done.job.dependencies),
                )
                jobs.append(done.job)
        return jobs

    def reconcile(self, repositories: List[Repository], event: PublishedEvent) -> List[Job]:
        """
        Decide and persist, one repository at a time.

        A failure on repository k raises; repositories before k stay
        persisted and the ones after k are not looked at. When conflicts
        outlast the retries the last ConflictError is raised.
        """
        step = exponential_backoff(
            max_retries=self.conflict_retries,
            base_delay=self.retry_delay,
            exceptions=(ConflictError,),
            on_retry=self._on_conflict,
        )(self._reconcile_one)

        jobs: List[Job] = []
        for repository in repositories:
            try:
                jobs.extend(step(repository, event))
            except RetryError as e:
                logger.record_error(type(e.__cause__).__name__)
                logger.error("Giving up on repository after conflicts", repository=repository.name, error=str(e))
                raise e.__cause__
        return jobs

    def _reconcile_one(self, repository: Repository, event: PublishedEvent) -> List[Job]:
        with self._locks(repository.name):
            return self.apply(self.decide(repository, event))

    def _on_conflict(self, attempt: int, error: Exception, delay: float):
        logger.record_error(type(error).__name__)
        logger.warning(
            "Job changed concurrently, retrying",
            attempt=attempt,
            delay=delay,
            error=str(error),
        )
