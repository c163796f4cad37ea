"""
Domain objects shared by the reconciler, the stores and the services.

Jobs and repositories are plain dataclasses; the SQLAlchemy rows in
database.py are mapped to and from them by the stores.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import ValidationError


class JobState(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    LOCKED = "locked"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class PublishedDependency:
    """One {name, version} publication fact recorded on a job."""

    name: str
    version: str

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "version": self.version}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PublishedDependency":
        return cls(name=data["name"], version=data["version"])


@dataclass(frozen=True)
class PublishedEvent:
    """A hook payload: package `name` reached `version`."""

    name: str
    version: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PublishedEvent":
        """Build an event from a decoded hook body.

        Raises:
            ValidationError: if name or version is missing or blank
        """
        errors = []
        for key in ("name", "version"):
            value = data.get(key) if isinstance(data, dict) else None
            if not isinstance(value, str) or not value.strip():
                errors.append(f"Field '{key}' must be a non-empty string")
        if errors:
            raise ValidationError(errors)
        return cls(name=data["name"].strip(), version=data["version"].strip())

    def to_dependency(self) -> PublishedDependency:
        return PublishedDependency(name=self.name, version=self.version)


@dataclass
class Repository:
    """A tracked repository and the version constraints it declares."""

    name: str
    dependencies: Dict[str, str] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def constraint_for(self, package: str) -> Optional[str]:
        return self.dependencies.get(package)


@dataclass
class Job:
    """A build/test job for one repository.

    `id` is assigned by the job store on create; `revision` is the
    optimistic-concurrency counter the store checks on update.
    """

    name: str
    state: JobState = JobState.PENDING
    dependencies: List[PublishedDependency] = field(default_factory=list)
    id: Optional[int] = None
    revision: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_repository(
        cls,
        repository: Repository,
        dependencies: List[PublishedDependency],
    ) -> "Job":
        return cls(name=repository.name, dependencies=list(dependencies))
