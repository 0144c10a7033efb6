"""
Generation Model - Durable record of one streamed model response
Used for: reconnect catch-up, restart recovery, generation history
"""

from sqlalchemy import Column, String, DateTime, Text, Index
from datetime import datetime
import enum

from app.core.database import Base
from app.core.types import GUID, generate_uuid


class GenerationStatus(str, enum.Enum):
    """Forward-only lifecycle of a generation"""
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not GenerationStatus.STREAMING


class Generation(Base):
    """
    One row per model response.

    content is flushed from the in-memory session every couple of seconds
    while streaming and written a final time on completion, error or cancel.
    """
    __tablename__ = "generations"

    __table_args__ = (
        Index('ix_generations_chat_user', 'chat_id', 'user_id'),
        Index('ix_generations_status', 'status'),
    )

    id = Column(GUID, primary_key=True, default=generate_uuid)
    chat_id = Column(GUID, nullable=False)
    user_id = Column(String(100), nullable=False)
    project_id = Column(String(100), nullable=True)

    status = Column(String(20), nullable=False, default=GenerationStatus.STREAMING.value)
    content = Column(Text, nullable=False, default="")
    error = Column(Text, nullable=True)

    model_id = Column(String(100), nullable=True)
    provider = Column(String(50), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<Generation {self.id} ({self.status})>"
