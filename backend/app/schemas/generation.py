"""
Pydantic schemas for chat generation, ghost-fix and preview endpoints
"""

from pydantic import BaseModel, Field
from typing import Any, List, Optional, Dict, Literal


class ChatMessageIn(BaseModel):
    """One message of the conversation sent by the client"""
    role: Literal["user", "assistant", "system"] = Field(..., description="Message role")
    content: Any = Field(..., description="Text or a list of content parts")


class ChatRequest(BaseModel):
    """Request to start a streaming generation"""
    chat_id: str = Field(..., description="Chat ID")
    project_id: Optional[str] = Field(None, description="Project the generated files belong to")
    messages: List[ChatMessageIn] = Field(..., min_length=1, description="Conversation so far")
    model_id: Optional[str] = Field(None, description="Model override")
    provider: str = Field(default="anthropic", description="Model provider")
    project_context: Optional[str] = Field(None, description="Current project files summary")
    plan_mode: bool = Field(default=False, description="Ask for a plan instead of code")


class ChatResponse(BaseModel):
    """Response to a chat request"""
    generation_id: str = Field(..., description="ID to stream, cancel or resume")


class CancelResponse(BaseModel):
    ok: bool
    error: Optional[str] = None


class ActiveGenerationResponse(BaseModel):
    """Active generation lookup result"""
    generation_id: Optional[str] = Field(None, description="Streaming generation, if any")
    status: Optional[str] = None
    content: Optional[str] = Field(None, description="Partial content of a recovered generation")
    error: Optional[str] = None


class PreviewErrorIn(BaseModel):
    """Error reported by the live preview"""
    message: str = Field(..., description="Error message")
    is_build_error: bool = Field(default=False, alias="isBuildError")
    stack: Optional[str] = None
    line: Optional[int] = None
    col: Optional[int] = None

    model_config = {"populate_by_name": True}


class FixAttemptSchema(BaseModel):
    error: str
    attempt_number: int = Field(..., alias="attemptNumber")

    model_config = {"populate_by_name": True}


class GhostFixRequest(BaseModel):
    """Request for a single ghost-fix generation"""
    error: PreviewErrorIn
    files: Dict[str, str] = Field(default_factory=dict, description="Current project files")
    previous_attempts: List[FixAttemptSchema] = Field(default_factory=list, alias="previousAttempts")
    build_pipeline_context: Optional[str] = Field(None, alias="buildPipelineContext")
    classification_context: Optional[str] = Field(
        None,
        alias="classificationContext",
        description="Computed from the error and files when omitted",
    )
    model_id: Optional[str] = Field(None, alias="modelId")

    model_config = {"populate_by_name": True}


class PreviewHealthIn(BaseModel):
    healthy: bool = Field(..., description="Last reload produced no errors")


class PreviewFilesIn(BaseModel):
    files: Dict[str, str] = Field(..., description="Full file map of the preview")
    merge: bool = Field(default=False, description="Merge over the current files instead of replacing them")


class GhostFixStateResponse(BaseModel):
    """Fix engine state for one preview"""
    project_id: str
    status: str
    attempts: int
    max_attempts: int
    history: List[FixAttemptSchema] = Field(default_factory=list)
    errors: int = Field(0, description="Outstanding preview errors")
    preview_healthy: bool = False

    model_config = {"populate_by_name": True}
