# Re-export all models for convenient imports
from app.models.chat import Chat, ChatMessage, MessageRole
from app.models.generation import Generation, GenerationStatus
from app.models.project_file import ProjectFiles, FileSnapshot
from app.models.usage import UsageLog

__all__ = [
    # Chat
    "Chat",
    "ChatMessage",
    "MessageRole",
    # Generation
    "Generation",
    "GenerationStatus",
    # Files
    "ProjectFiles",
    "FileSnapshot",
    # Usage
    "UsageLog",
]
