"""
Database schema and connection management.

Uses SQLite with SQLAlchemy for job and repository storage.
"""

from datetime import datetime
from functools import lru_cache
from pathlib import Path
from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    text,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

Base = declarative_base()


class JobRow(Base):
    """Build job for one repository."""

    __tablename__ = "jobs"
    # At most one job per repository name that is not locked: the current one.
    __table_args__ = (
        Index(
            "uq_jobs_current_name",
            "name",
            unique=True,
            sqlite_where=text("state != 'locked'"),
            postgresql_where=text("state != 'locked'"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, index=True)  # repository name
    state = Column(String, nullable=False, default="pending")
    dependencies = Column(JSON, nullable=False, default=list)  # [{"name", "version"}, ...] in arrival order
    revision = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)


class RepositoryRow(Base):
    """Tracked repository."""

    __tablename__ = "repositories"

    name = Column(String, primary_key=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    dependencies = relationship(
        "RepositoryDependencyRow",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="RepositoryDependencyRow.package",
    )


class RepositoryDependencyRow(Base):
    """Version range a repository declares for one package."""

    __tablename__ = "repository_dependencies"
    __table_args__ = (UniqueConstraint("repository_name", "package"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    repository_name = Column(
        String, ForeignKey("repositories.name", ondelete="CASCADE"), nullable=False
    )
    package = Column(String, nullable=False, index=True)
    version_range = Column(String, nullable=False)


def init_database(db_path: Path) -> None:
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    Base.metadata.create_all(_engine(str(db_path)))


@lru_cache(maxsize=None)
def _engine(db_path: str):
    return create_engine(f"sqlite:///{db_path}")


def session_factory(db_path: Path) -> sessionmaker:
    """
    Get a session factory bound to one engine per database file.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy sessionmaker
    """
    return sessionmaker(bind=_engine(str(db_path)))


def get_session(db_path: Path):
    """
    Get database session.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy session
    """
    return session_factory(db_path)()
