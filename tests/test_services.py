"""
Tests for services.py - facades over the stores.
"""

import pytest

from depwatch.errors import NotFoundError, PartialBatchError, ValidationError
from depwatch.models import Job, JobState, PublishedDependency, PublishedEvent, Repository
from depwatch.reconciler import JobAction
from depwatch.services import JobService, RepositoryService


@pytest.fixture
def job_service(job_store, repository_store, repositories):
    for repo in repositories:
        repository_store.create(repo)
    return JobService(job_store, repository_store)


@pytest.fixture
def repository_service(repository_store):
    return RepositoryService(repository_store)


class TestJobServiceEvents:
    """Publish events through the service."""

    def test_create_jobs_from_dependency_for_new_repositories(self, job_service, job_store, left_pad_event):
        jobs = job_service.create_jobs_from_dependency(left_pad_event)

        assert [j.name for j in jobs] == ["left-pad", "webapp"]
        assert all(j.id is None for j in jobs)
        assert all(j.dependencies == [PublishedDependency("left-pad", "1.2.3")] for j in jobs)
        assert job_store.count() == 0

    def test_create_jobs_from_dependency_locked_job_comes_first(self, job_service, job_store, left_pad_event):
        job_store.create(Job(name="webapp", state=JobState.IN_PROGRESS))

        jobs = job_service.create_jobs_from_dependency(left_pad_event)

        assert [(j.name, j.state) for j in jobs] == [
            ("left-pad", JobState.PENDING),
            ("webapp", JobState.LOCKED),
            ("webapp", JobState.PENDING),
        ]
        # planning does not persist the lock
        assert job_store.get_by_name("webapp").state == JobState.IN_PROGRESS

    def test_plan_event_reports_actions(self, job_service, job_store, left_pad_event):
        job_store.create(Job(name="webapp", state=JobState.LOCKED))

        mutations = job_service.plan_event(left_pad_event)

        assert [(m.action, m.job.name) for m in mutations] == [
            (JobAction.CREATE, "left-pad"),
            (JobAction.MERGE, "webapp"),
        ]

    def test_handle_event_persists(self, job_service, job_store, left_pad_event):
        job_store.create(Job(name="webapp", dependencies=[PublishedDependency("react", "18.2.0")]))

        jobs = job_service.handle_event(left_pad_event)

        assert len(jobs) == 2
        webapp = job_store.get_by_name("webapp")
        assert webapp.dependencies == [
            PublishedDependency("react", "18.2.0"),
            PublishedDependency("left-pad", "1.2.3"),
        ]
        assert job_store.get_by_name("left-pad").state == JobState.PENDING

    def test_unmatched_version_touches_nothing(self, job_service, job_store):
        jobs = job_service.handle_event(PublishedEvent(name="left-pad", version="2.0.0"))

        assert jobs == []
        assert job_store.count() == 0

    def test_unknown_package_touches_nothing(self, job_service, job_store):
        assert job_service.handle_event(PublishedEvent(name="is-odd", version="1.0.0")) == []


class TestJobServiceCrud:

    def test_create_returns_stored_form(self, job_service):
        job = job_service.create(Job(name="webapp"))
        assert job.id is not None
        assert job.revision == 1

    def test_create_invalid_is_rejected_before_storage(self, job_service, job_store):
        with pytest.raises(ValidationError):
            job_service.create(Job(name=""))
        assert job_store.count() == 0

    def test_update(self, job_service):
        job = job_service.create(Job(name="webapp"))
        job.state = JobState.FAILED

        updated = job_service.update(job.id, job)

        assert updated.state == JobState.FAILED
        assert updated.revision == 2

    def test_delete_returns_deleted_job(self, job_service):
        job = job_service.create(Job(name="webapp"))

        deleted = job_service.delete(job.id)

        assert deleted.id == job.id
        assert job_service.count() == 0
        with pytest.raises(NotFoundError):
            job_service.get(job.id)

    def test_query(self, job_service):
        for name in ["a", "b", "c"]:
            job_service.create(Job(name=name))
        assert [j.name for j in job_service.query(0, 2)] == ["a", "b"]


class TestRepositoryService:

    def test_create_validates_constraints(self, repository_service, repository_store):
        with pytest.raises(ValidationError) as exc:
            repository_service.create(Repository(name="webapp", dependencies={"react": "not a range!"}))
        assert any("react" in e for e in exc.value.errors)
        assert repository_store.count() == 0

    def test_update_rejects_name_mismatch(self, repository_service):
        repository_service.create(Repository(name="webapp"))
        with pytest.raises(ValidationError):
            repository_service.update("webapp", Repository(name="api"))

    def test_update_returns_stored_form(self, repository_service):
        repository_service.create(Repository(name="webapp", dependencies={"react": "^17.0.0"}))

        repo = repository_service.update("webapp", Repository(name="webapp", dependencies={"react": "^18.0.0"}))

        assert repo.dependencies == {"react": "^18.0.0"}

    def test_patch_partial_failure_reports_per_item(self, repository_service):
        repository_service.create(Repository(name="webapp", dependencies={"react": "^17.0.0"}))

        result = repository_service.patch([
            Repository(name="webapp", dependencies={"react": "^18.0.0"}),
            Repository(name="missing", dependencies={"react": "^18.0.0"}),
        ])

        assert not result.ok
        assert [r.name for r in result.repositories] == ["webapp"]
        assert result.repositories[0].dependencies == {"react": "^18.0.0"}
        assert set(result.errors) == {"missing"}
        assert isinstance(result.errors["missing"], NotFoundError)

    def test_patch_all_fail_raises(self, repository_service):
        with pytest.raises(PartialBatchError) as exc:
            repository_service.patch([Repository(name="a"), Repository(name="b")])
        assert len(exc.value.errors) == 2

    def test_patch_invalid_item_writes_nothing(self, repository_service):
        repository_service.create(Repository(name="webapp", dependencies={"react": "^17.0.0"}))

        with pytest.raises(ValidationError):
            repository_service.patch([
                Repository(name="webapp", dependencies={"react": "^18.0.0"}),
                Repository(name="", dependencies={}),
            ])

        assert repository_service.get("webapp").dependencies == {"react": "^17.0.0"}

    def test_delete_returns_deleted_repository(self, repository_service):
        repository_service.create(Repository(name="webapp"))

        deleted = repository_service.delete("webapp")

        assert deleted.name == "webapp"
        assert repository_service.count() == 0
