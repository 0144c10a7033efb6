"""
Chat Models - Conversations between a user and the generator
Used for: chat history, generation context, chat title in the sidebar
"""

from sqlalchemy import Column, String, DateTime, Text, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from app.core.database import Base
from app.core.types import GUID, generate_uuid


class MessageRole(str, enum.Enum):
    """Message sender role"""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Chat(Base):
    """A conversation owned by one user, optionally bound to a project"""
    __tablename__ = "chats"

    __table_args__ = (
        Index('ix_chats_user_id', 'user_id'),
    )

    id = Column(GUID, primary_key=True, default=generate_uuid)
    user_id = Column(String(100), nullable=False)
    project_id = Column(String(100), nullable=True)
    title = Column(String(255), nullable=False, default="New Chat")

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    messages = relationship(
        "ChatMessage",
        back_populates="chat",
        cascade="all, delete-orphan",
        order_by="ChatMessage.created_at",
    )

    def __repr__(self):
        return f"<Chat {self.id}: {self.title}>"


class ChatMessage(Base):
    """One message in a chat; assistant messages hold the tool-activity-free text"""
    __tablename__ = "chat_messages"

    __table_args__ = (
        Index('ix_chat_messages_chat_id', 'chat_id'),
        Index('ix_chat_messages_created_at', 'created_at'),
    )

    id = Column(GUID, primary_key=True, default=generate_uuid)
    chat_id = Column(GUID, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False)

    # String rather than SQLEnum to avoid enum type creation on PostgreSQL
    role = Column(String(20), nullable=False)
    content = Column(Text, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    chat = relationship("Chat", back_populates="messages")

    def __repr__(self):
        return f"<ChatMessage {self.role}: {self.content[:50]}...>"
