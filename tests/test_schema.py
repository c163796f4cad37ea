"""
Tests for schema validation and model construction.
"""

import pytest

from depwatch.errors import ValidationError
from depwatch.models import Job, PublishedDependency, PublishedEvent, Repository
from depwatch.schema import validate_job, validate_repository


class TestValidateJob:

    def test_valid_job(self):
        job = Job(name="webapp", dependencies=[PublishedDependency("react", "18.2.0")])
        assert validate_job(job) == []

    def test_missing_name(self):
        errors = validate_job(Job(name="  "))
        assert any("name" in err.lower() for err in errors)

    def test_bad_state(self):
        errors = validate_job(Job(name="webapp", state="running"))
        assert any("state" in err.lower() for err in errors)

    def test_bad_dependency(self):
        job = Job(name="webapp", dependencies=[PublishedDependency("react", ""), {"name": "x"}])
        errors = validate_job(job)
        assert len(errors) == 2


class TestValidateRepository:

    def test_valid_repository(self):
        repo = Repository(name="webapp", dependencies={"react": "^18.0.0", "left-pad": "1.x"})
        assert validate_repository(repo) == []

    def test_invalid_range(self):
        errors = validate_repository(Repository(name="webapp", dependencies={"react": "latest please"}))
        assert any("react" in err for err in errors)

    def test_empty_constraint(self):
        errors = validate_repository(Repository(name="webapp", dependencies={"react": ""}))
        assert len(errors) == 1

    def test_dependencies_must_be_mapping(self):
        errors = validate_repository(Repository(name="webapp", dependencies=["react"]))
        assert any("mapping" in err for err in errors)


class TestPublishedEvent:

    def test_from_dict(self):
        event = PublishedEvent.from_dict({"name": " left-pad ", "version": "1.2.3", "extra": True})
        assert event == PublishedEvent("left-pad", "1.2.3")

    def test_from_dict_missing_fields(self):
        with pytest.raises(ValidationError) as exc:
            PublishedEvent.from_dict({"name": "left-pad"})
        assert len(exc.value.errors) == 1

    def test_from_dict_not_a_mapping(self):
        with pytest.raises(ValidationError):
            PublishedEvent.from_dict(["left-pad", "1.2.3"])

    def test_to_dependency(self):
        assert PublishedEvent("left-pad", "1.2.3").to_dependency() == PublishedDependency("left-pad", "1.2.3")

    def test_dependency_is_immutable(self):
        dep = PublishedDependency("left-pad", "1.2.3")
        with pytest.raises(AttributeError):
            dep.version = "9.9.9"
