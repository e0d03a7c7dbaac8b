"""
SQLAlchemy ORM Models for DevDex

Portfolio catalog models:
- Project: A tracked software project with human and AI-derived metadata
- ProjectFile: An uploaded document (README, docs, config, image) owned by a project
- AIJob: One analysis attempt for a project (queued -> running -> done|error)
"""

from sqlalchemy import (
    Column, String, Float, Text, TIMESTAMP, ForeignKey, BigInteger,
    Index, JSON, TypeDecorator, text,
)
from sqlalchemy.orm import relationship, declarative_base
from sqlalchemy.dialects.postgresql import UUID as PostgreSQL_UUID, JSONB
import uuid
from datetime import datetime, timezone

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the TIMESTAMP columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# UUID type that works with both PostgreSQL and SQLite
class UUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL's UUID type when available, otherwise stores as String(36).
    """
    impl = String
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(PostgreSQL_UUID(as_uuid=True))
        return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        if value is None or dialect.name == 'postgresql':
            return value
        if isinstance(value, uuid.UUID):
            return str(value)
        return str(uuid.UUID(value))

    def process_result_value(self, value, dialect):
        if value is None or dialect.name == 'postgresql':
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(value)


# =============================================================================
# Project
# =============================================================================

class Project(Base):
    """A catalog entry for one software project."""
    __tablename__ = "projects"
    __table_args__ = (
        Index('idx_projects_last_touched', 'last_touched_at'),
    )

    project_id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), default='', nullable=False)
    type = Column(String(20), default='Web', nullable=False)           # dApp, Tool, Web, Library, Other
    status = Column(String(20), default='Idea', nullable=False)        # Active, Paused, Archived, Idea

    # Human content
    summary_human = Column(Text, nullable=True)
    demo_url = Column(String(2048), nullable=True)
    repo_url = Column(String(2048), nullable=True)
    lessons_learned = Column(JSONType, default=list)
    next_steps = Column(Text, nullable=True)

    # AI-derived, replaced as a batch by each successful analysis
    one_liner_ai = Column(Text, nullable=True)
    description_ai = Column(Text, nullable=True)
    features_ai = Column(JSONType, default=list)
    stack_ai = Column(JSONType, default=list)
    chains_ai = Column(JSONType, default=list)
    target_users_ai = Column(JSONType, default=list)
    tags_ai = Column(JSONType, default=list)
    run_commands_ai = Column(JSONType, default=list)
    key_decisions_ai = Column(JSONType, default=list)
    deploy_status_ai = Column(String(20), nullable=True)              # production, testnet, local, unknown
    confidence_score = Column(Float, nullable=True)
    ai_updated_at = Column(TIMESTAMP, nullable=True)

    created_at = Column(TIMESTAMP, default=utcnow, nullable=False)
    last_touched_at = Column(TIMESTAMP, default=utcnow, nullable=False)

    # Relationships
    files = relationship("ProjectFile", back_populates="project", cascade="all, delete-orphan")
    jobs = relationship("AIJob", back_populates="project", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Project(project_id={self.project_id}, name='{self.name}', status='{self.status}')>"


class ProjectFile(Base):
    """One uploaded document. Immutable after creation."""
    __tablename__ = "project_files"
    __table_args__ = (
        Index('idx_project_files_project', 'project_id', 'created_at'),
    )

    file_id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    project_id = Column(UUID(), ForeignKey("projects.project_id", ondelete="CASCADE"), nullable=False)
    name = Column(String(1024), nullable=False)
    bucket = Column(String(255), nullable=False)
    path = Column(String(2048), nullable=True)          # NULL when only inline content was kept
    kind = Column(String(20), nullable=False)           # readme, docs, config, image
    size = Column(BigInteger, default=0, nullable=False)
    content = Column(Text, nullable=True)               # inline text cache
    created_at = Column(TIMESTAMP, default=utcnow, nullable=False)

    project = relationship("Project", back_populates="files")

    def __repr__(self):
        return f"<ProjectFile(file_id={self.file_id}, name='{self.name}', kind='{self.kind}')>"


class AIJob(Base):
    """One tracked analysis attempt.

    At most one queued and at most one running job exist per project;
    both rules are enforced by partial unique indexes so concurrent
    writers collide in the database instead of racing in Python.
    """
    __tablename__ = "ai_jobs"
    __table_args__ = (
        Index('idx_ai_jobs_project_status', 'project_id', 'status'),
        Index(
            'uq_ai_jobs_one_queued', 'project_id', unique=True,
            postgresql_where=text("status = 'queued'"),
            sqlite_where=text("status = 'queued'"),
        ),
        Index(
            'uq_ai_jobs_one_running', 'project_id', unique=True,
            postgresql_where=text("status = 'running'"),
            sqlite_where=text("status = 'running'"),
        ),
    )

    job_id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    project_id = Column(UUID(), ForeignKey("projects.project_id", ondelete="CASCADE"), nullable=False)
    file_ids = Column(JSONType, default=list, nullable=False)          # ordered, de-duplicated
    status = Column(String(20), default='queued', nullable=False)      # queued|running|done|error
    model = Column(String(100), nullable=False)
    result = Column(JSONType, nullable=True)                           # AIAnalysisResult as JSON
    error = Column(Text, nullable=True)
    created_at = Column(TIMESTAMP, default=utcnow, nullable=False)
    updated_at = Column(TIMESTAMP, default=utcnow, nullable=False)

    project = relationship("Project", back_populates="jobs")

    def __repr__(self):
        return f"<AIJob(job_id={self.job_id}, status='{self.status}', project={self.project_id})>"
