"""
Pytest configuration and shared fixtures.
"""

import pytest
from pathlib import Path
from typing import Dict, List

from depwatch.logger import get_logger

# Created before any depwatch module grabs the global logger, so test runs
# do not write log files into the working directory.
get_logger(enable_file=False)

from depwatch.database import init_database, session_factory  # noqa: E402
from depwatch.errors import NotFoundError  # noqa: E402
from depwatch.models import Job, JobState, PublishedDependency, PublishedEvent, Repository  # noqa: E402
from depwatch.stores import SqlJobStore, SqlRepositoryStore  # noqa: E402


class FakeJobStore:
    """In-memory JobStore with hooks for injecting lookup failures."""

    def __init__(self, jobs: List[Job] = None, failures: Dict[str, Exception] = None):
        self.jobs: Dict[int, Job] = {}
        self.failures = failures or {}
        self.lookups: List[str] = []
        self._next_id = 1
        for job in jobs or []:
            self.create(job)

    def get(self, job_id: int) -> Job:
        if job_id not in self.jobs:
            raise NotFoundError("job", job_id)
        return self.jobs[job_id]

    def get_by_name(self, name: str) -> Job:
        self.lookups.append(name)
        if name in self.failures:
            raise self.failures[name]
        matches = [job for job in self.jobs.values() if job.name == name]
        if not matches:
            raise NotFoundError("job", name)
        return max(matches, key=lambda job: job.id)

    def count(self) -> int:
        return len(self.jobs)

    def query(self, offset: int, limit: int) -> List[Job]:
        return sorted(self.jobs.values(), key=lambda job: job.id)[offset:offset + limit]

    def create(self, job: Job) -> None:
        job.id = self._next_id
        job.revision = 1
        self._next_id += 1
        self.jobs[job.id] = job

    def update(self, job_id: int, job: Job) -> None:
        if job_id not in self.jobs:
            raise NotFoundError("job", job_id)
        job.revision += 1
        self.jobs[job_id] = job

    def fork(self, locked: Job, fresh: Job) -> None:
        self.update(locked.id, locked)
        self.create(fresh)

    def delete(self, job_id: int) -> None:
        if job_id not in self.jobs:
            raise NotFoundError("job", job_id)
        del self.jobs[job_id]


@pytest.fixture
def db_path(tmp_path) -> Path:
    """Create a temporary SQLite database with all tables."""
    path = tmp_path / "depwatch.db"
    init_database(path)
    return path


@pytest.fixture
def job_store(db_path) -> SqlJobStore:
    return SqlJobStore(session_factory(db_path))


@pytest.fixture
def repository_store(db_path) -> SqlRepositoryStore:
    return SqlRepositoryStore(session_factory(db_path))


@pytest.fixture
def left_pad_event() -> PublishedEvent:
    return PublishedEvent(name="left-pad", version="1.2.3")


@pytest.fixture
def repositories() -> List[Repository]:
    """Fixed-order repositories; only 'left-pad' and 'webapp' accept left-pad@1.2.3."""
    return [
        Repository(name="left-pad", dependencies={"left-pad": "^1.0.0"}),
        Repository(name="legacy", dependencies={"left-pad": "^0.9.0"}),
        Repository(name="webapp", dependencies={"left-pad": "~1.2.0", "react": "^18.0.0"}),
    ]


@pytest.fixture
def running_job() -> Job:
    return Job(
        name="left-pad",
        state=JobState.IN_PROGRESS,
        dependencies=[PublishedDependency("left-pad", "1.2.2")],
    )


@pytest.fixture
def fake_store_cls():
    """The in-memory FakeJobStore class, for tests that build their own."""
    return FakeJobStore
