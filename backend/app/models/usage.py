"""
Usage Log Model - Token usage per generation
"""

from sqlalchemy import Column, String, DateTime, Integer, Float, Index
from datetime import datetime

from app.core.database import Base
from app.core.types import GUID, generate_uuid


class UsageLog(Base):
    """Estimated token usage and cost of one completed generation"""
    __tablename__ = "usage_logs"

    __table_args__ = (
        Index('ix_usage_logs_user_id', 'user_id'),
        Index('ix_usage_logs_created_at', 'created_at'),
    )

    id = Column(GUID, primary_key=True, default=generate_uuid)
    user_id = Column(String(100), nullable=False)
    project_id = Column(String(100), nullable=True)

    model = Column(String(100), nullable=True)
    input_tokens = Column(Integer, default=0)
    output_tokens = Column(Integer, default=0)
    cost_usd = Column(Float, default=0.0)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<UsageLog {self.model}: {self.input_tokens}+{self.output_tokens} tokens>"
