"""
Job and repository stores.

The reconciler and the services depend only on the JobStore and
RepositoryStore protocols; the SQLAlchemy implementations below are the
production backends.

Job updates are conditional on the revision the caller read, and a
repository can have only one job that is not locked, so two processes
reconciling the same repository cannot both write it.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, List, Optional, Protocol

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .errors import ConflictError, DepwatchError, NotFoundError, StoreError
from .models import Job, JobState, PublishedDependency, Repository
from .database import JobRow, RepositoryDependencyRow, RepositoryRow


class JobStore(Protocol):
    def get(self, job_id: int) -> Job: ...

    def get_by_name(self, name: str) -> Job: ...

    def count(self) -> int: ...

    def query(self, offset: int, limit: int) -> List[Job]: ...

    def create(self, job: Job) -> None: ...

    def update(self, job_id: int, job: Job) -> None: ...

    def fork(self, locked: Job, fresh: Job) -> None: ...

    def delete(self, job_id: int) -> None: ...


class RepositoryStore(Protocol):
    def get(self, name: str) -> Repository: ...

    def count(self) -> int: ...

    def query(self, offset: int, limit: int) -> List[Repository]: ...

    def create(self, repository: Repository) -> None: ...

    def update(self, name: str, repository: Repository) -> None: ...

    def delete(self, name: str) -> None: ...

    def query_by_dependency(self, package: str) -> List[Repository]: ...

    def query_by_name(self, names: Iterable[str]) -> List[Repository]: ...

    def patch(self, repositories: List[Repository]) -> List[Optional[Exception]]: ...


class _SqlStore:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    @contextmanager
    def _session(self):
        """One session per call: commit on success, roll back on any error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreError(str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def _to_job(row: JobRow) -> Job:
    return Job(
        id=row.id,
        name=row.name,
        state=JobState(row.state),
        dependencies=[PublishedDependency.from_dict(d) for d in row.dependencies or []],
        revision=row.revision,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_repository(row: RepositoryRow) -> Repository:
    return Repository(
        name=row.name,
        dependencies={d.package: d.version_range for d in row.dependencies},
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SqlJobStore(_SqlStore):
    """SQLAlchemy-backed JobStore."""

    def get(self, job_id: int) -> Job:
        with self._session() as session:
            row = session.get(JobRow, job_id)
            if row is None:
                raise NotFoundError("job", job_id)
            return _to_job(row)

    def get_by_name(self, name: str) -> Job:
        """Return the newest job recorded for a repository name."""
        with self._session() as session:
            row = (
                session.query(JobRow)
                .filter_by(name=name)
                .order_by(JobRow.id.desc())
                .first()
            )
            if row is None:
                raise NotFoundError("job", name)
            return _to_job(row)

    def count(self) -> int:
        with self._session() as session:
            return session.query(JobRow).count()

    def query(self, offset: int, limit: int) -> List[Job]:
        with self._session() as session:
            rows = session.query(JobRow).order_by(JobRow.id).offset(offset).limit(limit).all()
            return [_to_job(row) for row in rows]

    def create(self, job: Job) -> None:
        """
        Insert a job; assigns job.id and starts job.revision at 1.

        Raises:
            ConflictError: the repository already has a job that is not locked
        """
        with self._session() as session:
            inserted = self._insert(session, job)
        job.id, job.revision, job.created_at, job.updated_at = inserted

    def update(self, job_id: int, job: Job) -> None:
        """
        Overwrite a job if nobody changed it since job.revision was read.

        Raises:
            NotFoundError: no job with this id
            ConflictError: the stored revision differs from job.revision
        """
        now = datetime.now()
        with self._session() as session:
            self._conditional_update(session, job_id, job, now)
        job.revision += 1
        job.updated_at = now

    def fork(self, locked: Job, fresh: Job) -> None:
        """
        Write a locked job and insert its replacement in one transaction.

        Either both writes land or neither does, so no reader ever sees the
        locked job as the newest job for its repository.

        Raises:
            NotFoundError: the locked job no longer exists
            ConflictError: the locked job changed since it was read, or
                another writer already created a replacement
        """
        now = datetime.now()
        with self._session() as session:
            self._conditional_update(session, locked.id, locked, now)
            inserted = self._insert(session, fresh)
        locked.revision += 1
        locked.updated_at = now
        fresh.id, fresh.revision, fresh.created_at, fresh.updated_at = inserted

    @staticmethod
    def _insert(session, job: Job):
        row = JobRow(
            name=job.name,
            state=job.state.value,
            dependencies=[d.to_dict() for d in job.dependencies],
            revision=1,
        )
        session.add(row)
        try:
            session.flush()
        except IntegrityError as e:
            raise ConflictError(f"job '{job.name}' already has a current job") from e
        return row.id, row.revision, row.created_at, row.updated_at

    @staticmethod
    def _conditional_update(session, job_id: int, job: Job, now: datetime) -> None:
        try:
            result = session.execute(
                update(JobRow)
                .where(JobRow.id == job_id, JobRow.revision == job.revision)
                .values(
                    name=job.name,
                    state=job.state.value,
                    dependencies=[d.to_dict() for d in job.dependencies],
                    revision=JobRow.revision + 1,
                    updated_at=now,
                )
            )
        except IntegrityError as e:
            raise ConflictError(f"job '{job.name}' already has a current job", job_id) from e
        if result.rowcount == 0:
            if session.get(JobRow, job_id) is None:
                raise NotFoundError("job", job_id)
            raise ConflictError(f"job {job_id} changed since revision {job.revision}", job_id)

    def delete(self, job_id: int) -> None:
        with self._session() as session:
            row = session.get(JobRow, job_id)
            if row is None:
                raise NotFoundError("job", job_id)
            session.delete(row)


class SqlRepositoryStore(_SqlStore):
    """SQLAlchemy-backed RepositoryStore."""

    def get(self, name: str) -> Repository:
        with self._session() as session:
            row = session.get(RepositoryRow, name)
            if row is None:
                raise NotFoundError("repository", name)
            return _to_repository(row)

    def count(self) -> int:
        with self._session() as session:
            return session.query(RepositoryRow).count()

    def query(self, offset: int, limit: int) -> List[Repository]:
        with self._session() as session:
            rows = (
                session.query(RepositoryRow)
                .order_by(RepositoryRow.name)
                .offset(offset)
                .limit(limit)
                .all()
            )
            return [_to_repository(row) for row in rows]

    def create(self, repository: Repository) -> None:
        with self._session() as session:
            row = RepositoryRow(
                name=repository.name,
                dependencies=[
                    RepositoryDependencyRow(package=package, version_range=version_range)
                    for package, version_range in repository.dependencies.items()
                ],
            )
            session.add(row)

    def update(self, name: str, repository: Repository) -> None:
        with self._session() as session:
            row = session.get(RepositoryRow, name)
            if row is None:
                raise NotFoundError("repository", name)

            # Edit rows in place: a delete+insert of the same package would
            # hit the (repository_name, package) unique constraint.
            existing = {d.package: d for d in row.dependencies}
            for package, dep in existing.items():
                if package not in repository.dependencies:
                    row.dependencies.remove(dep)
            for package, version_range in repository.dependencies.items():
                if package in existing:
                    existing[package].version_range = version_range
                else:
                    row.dependencies.append(
                        RepositoryDependencyRow(package=package, version_range=version_range)
                    )
            row.updated_at = datetime.now()

    def delete(self, name: str) -> None:
        with self._session() as session:
            row = session.get(RepositoryRow, name)
            if row is None:
                raise NotFoundError("repository", name)
            session.delete(row)

    def query_by_dependency(self, package: str) -> List[Repository]:
        """Repositories declaring any constraint on `package`, by name."""
        with self._session() as session:
            rows = (
                session.query(RepositoryRow)
                .join(RepositoryRow.dependencies)
                .filter(RepositoryDependencyRow.package == package)
                .order_by(RepositoryRow.name)
                .all()
            )
            return [_to_repository(row) for row in rows]

    def query_by_name(self, names: Iterable[str]) -> List[Repository]:
        """Repositories with the given names, in the order asked for. Unknown names are skipped."""
        names = list(names)
        with self._session() as session:
            rows = session.query(RepositoryRow).filter(RepositoryRow.name.in_(names)).all()
            by_name = {row.name: _to_repository(row) for row in rows}
        return [by_name[name] for name in names if name in by_name]

    def patch(self, repositories: List[Repository]) -> List[Optional[Exception]]:
        """Update each repository in its own transaction; one error slot per item."""
        errors: List[Optional[Exception]] = []
        for repository in repositories:
            try:
                self.update(repository.name, repository)
            except DepwatchError as e:
                errors.append(e)
            else:
                errors.append(None)
        return errors
