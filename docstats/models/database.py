"""
Statistics Database Models
PostgreSQL with SQLAlchemy ORM
"""

from datetime import datetime
from enum import Enum as PyEnum
from uuid import uuid4

from sqlalchemy import (
    Column, String, Integer, DateTime, ForeignKey, Enum, JSON, Index, Uuid
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import relationship

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON everywhere else
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


# ============================================================================
# ENUMS
# ============================================================================

class ProjectStatus(str, PyEnum):
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"
    DELETED = "DELETED"


# ============================================================================
# PROJECTS
# ============================================================================

class Project(Base):
    """Document-generation project owning one statistics record"""
    __tablename__ = "projects"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(255), nullable=False)
    status = Column(Enum(ProjectStatus), default=ProjectStatus.ACTIVE, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    statistics = relationship(
        "ProjectStatistics",
        back_populates="project",
        uselist=False,
        cascade="all, delete-orphan",
    )


# ============================================================================
# STATISTICS
# ============================================================================

class ProjectStatistics(Base):
    """Costs, performance, usage and metadata for one project (1:1)"""
    __tablename__ = "project_statistics"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    costs = Column(JSONDocument, nullable=False, default=dict)
    performance = Column(JSONDocument, nullable=False, default=dict)
    usage = Column(JSONDocument, nullable=False, default=dict)
    # "metadata" is reserved on declarative classes
    stats_metadata = Column("metadata", JSONDocument, nullable=False, default=dict)

    # Optimistic concurrency counter, bumped on every write
    version = Column(Integer, nullable=False, default=1)

    last_updated = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    project = relationship("Project", back_populates="statistics")

    __table_args__ = (
        Index("ix_project_statistics_last_updated", "last_updated"),
    )
