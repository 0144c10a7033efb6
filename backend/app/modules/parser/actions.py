"""
Action types produced by the streaming message parser
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union


class ActionType(str, Enum):
    FILE = "file"
    SEARCH_REPLACE = "search-replace"
    SHELL = "shell"
    START = "start"


@dataclass
class FileAction:
    """Full contents of one file"""
    file_path: str
    content: str = ""
    type: ActionType = field(default=ActionType.FILE, init=False)


@dataclass
class SearchReplaceAction:
    """Textual patch: replace search_block with replace_block in file_path"""
    file_path: str
    search_block: str = ""
    replace_block: str = ""
    type: ActionType = field(default=ActionType.SEARCH_REPLACE, init=False)


@dataclass
class ShellAction:
    command: str = ""
    type: ActionType = field(default=ActionType.SHELL, init=False)


@dataclass
class StartAction:
    """Command that starts a long-running process such as a dev server"""
    command: str = ""
    type: ActionType = field(default=ActionType.START, init=False)


Action = Union[FileAction, SearchReplaceAction, ShellAction, StartAction]


@dataclass
class ArtifactInfo:
    id: str
    title: str


@dataclass
class PlanInfo:
    title: str


class ToolActivityStatus(str, Enum):
    CALLING = "calling"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class ToolActivity:
    """Self-closing <tool-activity /> marker with its attributes unescaped"""
    name: str
    status: str
    args: Optional[str] = None
    result: Optional[str] = None


class ParserEventKind(str, Enum):
    TEXT = "text"
    ARTIFACT_OPEN = "artifact_open"
    ARTIFACT_CLOSE = "artifact_close"
    ACTION_OPEN = "action_open"
    ACTION_STREAM = "action_stream"
    ACTION_CLOSE = "action_close"
    PLAN_OPEN = "plan_open"
    PLAN_CONTENT = "plan_content"
    PLAN_CLOSE = "plan_close"
    SUGGESTIONS_CLOSE = "suggestions_close"
    TOOL_ACTIVITY = "tool_activity"


@dataclass
class ParserEvent:
    """One callback invocation recorded as data"""
    kind: ParserEventKind
    artifact_id: Optional[str] = None
    payload: Union[str, Action, ArtifactInfo, PlanInfo, ToolActivity, List[str], None] = None
