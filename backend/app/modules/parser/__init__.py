"""
Streaming parser for the artifact/action protocol
"""

from app.modules.parser.actions import (
    Action,
    ActionType,
    ArtifactInfo,
    FileAction,
    ParserEvent,
    ParserEventKind,
    PlanInfo,
    SearchReplaceAction,
    ShellAction,
    StartAction,
    ToolActivity,
    ToolActivityStatus,
)
from app.modules.parser.message_parser import (
    CollectingCallbacks,
    MessageParser,
    ParserCallbacks,
    extract_files,
    strip_tool_activity,
)

__all__ = [
    "Action",
    "ActionType",
    "ArtifactInfo",
    "FileAction",
    "SearchReplaceAction",
    "ShellAction",
    "StartAction",
    "PlanInfo",
    "ToolActivity",
    "ToolActivityStatus",
    "ParserEvent",
    "ParserEventKind",
    "ParserCallbacks",
    "CollectingCallbacks",
    "MessageParser",
    "extract_files",
    "strip_tool_activity",
]
