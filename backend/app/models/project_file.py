"""
Project Files Model - Current file map of a generated project plus its history
"""

from sqlalchemy import Column, String, DateTime, Integer, Index
from datetime import datetime

from app.core.database import Base
from app.core.types import GUID, FileMap, generate_uuid


class ProjectFiles(Base):
    """The one current path -> content map for a project"""
    __tablename__ = "project_files"

    project_id = Column(String(100), primary_key=True)
    files = Column(FileMap, nullable=False, default=dict)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<ProjectFiles {self.project_id} ({len(self.files or {})} files)>"


class FileSnapshot(Base):
    """
    Immutable copy of a project's file map.

    title records what produced it: "AI Update" after a generation,
    "Ghost Fix" after an applied preview repair.
    """
    __tablename__ = "file_snapshots"

    __table_args__ = (
        Index('ix_file_snapshots_project_id', 'project_id'),
        Index('ix_file_snapshots_created_at', 'created_at'),
    )

    id = Column(GUID, primary_key=True, default=generate_uuid)
    chat_id = Column(GUID, nullable=True)
    project_id = Column(String(100), nullable=False)

    title = Column(String(255), nullable=False)
    files = Column(FileMap, nullable=False, default=dict)
    file_count = Column(Integer, default=0)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<FileSnapshot {self.title} ({self.file_count} files)>"
