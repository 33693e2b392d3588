import asyncio
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Engine,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    make_url,
    select,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import CommitRecord, CommitStatus, Project

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProjectRow(Base):
    __tablename__ = "projects"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    repo_url = Column(String(1024), nullable=False)
    credentials_ref = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class CommitRow(Base):
    __tablename__ = "commits"
    __table_args__ = (UniqueConstraint("project_id", "sha", name="uq_commits_project_sha"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(64), ForeignKey("projects.id"), nullable=False, index=True)
    sha = Column(String(64), nullable=False)
    author = Column(String(255), nullable=True)
    author_avatar = Column(String(1024), nullable=True)
    message = Column(Text, nullable=False, default="")
    committed_at = Column(DateTime(timezone=True), nullable=True)
    summary = Column(Text, nullable=True)
    used_fallback = Column(Boolean, nullable=True)
    status = Column(String(16), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


def create_db_engine(url: str) -> Engine:
    kwargs = {}
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False}  # used from worker threads
        if parsed.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        else:
            Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(url, **kwargs)


def _record_fields(record: CommitRecord) -> dict:
    fields = record.model_dump()
    fields["status"] = record.status.value
    return fields


def _to_record(row: CommitRow) -> CommitRecord:
    return CommitRecord(
        project_id=row.project_id,
        sha=row.sha,
        author=row.author,
        author_avatar=row.author_avatar,
        message=row.message,
        committed_at=row.committed_at,
        summary=row.summary,
        used_fallback=row.used_fallback,
        status=CommitStatus(row.status),
    )


class SqlCommitStore:
    """CommitStore backed by SQLAlchemy.

    Calls run in worker threads so a slow database does not stall the event
    loop. Uniqueness of (project_id, sha) is enforced by the schema.
    """

    def __init__(self, engine: Engine):
        self._engine = engine
        self._sessions = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    @classmethod
    def from_url(cls, url: str) -> "SqlCommitStore":
        store = cls(create_db_engine(url))
        store.init_schema()
        return store

    def init_schema(self) -> None:
        Base.metadata.create_all(bind=self._engine)

    def close(self) -> None:
        self._engine.dispose()

    # Projects

    def register_project(self, project: Project) -> Project:
        with self._sessions() as session:
            row = session.get(ProjectRow, project.id)
            if row is None:
                session.add(ProjectRow(**project.model_dump()))
            else:
                row.name = project.name
                row.repo_url = project.repo_url
                row.credentials_ref = project.credentials_ref
            session.commit()
        return project

    def list_projects(self) -> list[Project]:
        with self._sessions() as session:
            rows = session.execute(select(ProjectRow).order_by(ProjectRow.id)).scalars()
            return [
                Project(id=r.id, name=r.name, repo_url=r.repo_url, credentials_ref=r.credentials_ref)
                for r in rows
            ]

    async def find_project(self, project_id: str) -> Project | None:
        return await asyncio.to_thread(self._find_project, project_id)

    def _find_project(self, project_id: str) -> Project | None:
        with self._sessions() as session:
            row = session.get(ProjectRow, project_id)
            if row is None:
                return None
            return Project(
                id=row.id, name=row.name, repo_url=row.repo_url, credentials_ref=row.credentials_ref
            )

    # Commits

    async def list_commit_hashes(self, project_id: str) -> set[str]:
        return await asyncio.to_thread(self._list_commit_hashes, project_id)

    def _list_commit_hashes(self, project_id: str) -> set[str]:
        with self._sessions() as session:
            rows = session.execute(select(CommitRow.sha).where(CommitRow.project_id == project_id))
            return {sha for (sha,) in rows}

    async def latest_commit_hash(self, project_id: str) -> str | None:
        return await asyncio.to_thread(self._latest_commit_hash, project_id)

    def _latest_commit_hash(self, project_id: str) -> str | None:
        # Commits are inserted oldest-first, so insertion order is history order.
        with self._sessions() as session:
            return session.execute(
                select(CommitRow.sha)
                .where(CommitRow.project_id == project_id)
                .order_by(CommitRow.id.desc())
                .limit(1)
            ).scalar_one_or_none()

    async def get_commit_record(self, project_id: str, sha: str) -> CommitRecord | None:
        return await asyncio.to_thread(self._get_commit_record, project_id, sha)

    def _get_commit_record(self, project_id: str, sha: str) -> CommitRecord | None:
        with self._sessions() as session:
            row = session.execute(
                select(CommitRow).where(CommitRow.project_id == project_id, CommitRow.sha == sha)
            ).scalar_one_or_none()
            return _to_record(row) if row is not None else None

    async def insert_commit_record(self, record: CommitRecord) -> bool:
        return await asyncio.to_thread(self._insert_commit_record, record)

    def _insert_commit_record(self, record: CommitRecord) -> bool:
        with self._sessions() as session:
            session.add(CommitRow(**_record_fields(record)))
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return False
        return True

    async def upsert_commit_record(self, record: CommitRecord) -> None:
        await asyncio.to_thread(self._upsert_commit_record, record)

    def _upsert_commit_record(self, record: CommitRecord) -> None:
        fields = _record_fields(record)
        with self._sessions() as session:
            row = session.execute(
                select(CommitRow).where(
                    CommitRow.project_id == record.project_id, CommitRow.sha == record.sha
                )
            ).scalar_one_or_none()
            if row is None:
                session.add(CommitRow(**fields))
            else:
                for key, value in fields.items():
                    setattr(row, key, value)
            session.commit()

    def list_commit_records(self, project_id: str) -> list[CommitRecord]:
        with self._sessions() as session:
            rows = session.execute(
                select(CommitRow).where(CommitRow.project_id == project_id).order_by(CommitRow.id)
            ).scalars()
            return [_to_record(row) for row in rows]

    async def list_failed_commits(self, project_id: str) -> list[CommitRecord]:
        return await asyncio.to_thread(self._list_failed_commits, project_id)

    def _list_failed_commits(self, project_id: str) -> list[CommitRecord]:
        with self._sessions() as session:
            rows = session.execute(
                select(CommitRow)
                .where(CommitRow.project_id == project_id, CommitRow.status == CommitStatus.FAILED.value)
                .order_by(CommitRow.id)
            ).scalars()
            return [_to_record(row) for row in rows]
