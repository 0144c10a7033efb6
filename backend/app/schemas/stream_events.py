"""
Events yielded by the model stream.

The generation manager only depends on this shape; it never looks at
Anthropic SDK objects directly.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Union


@dataclass
class TextDelta:
    text: str


@dataclass
class ToolCall:
    tool_name: str
    input: Dict[str, Any] = field(default_factory=dict)
    tool_use_id: str = ""


@dataclass
class ToolResult:
    tool_name: str
    output: Any = None
    tool_use_id: str = ""


@dataclass
class ToolError:
    tool_name: str
    error: str = ""
    tool_use_id: str = ""


StreamEvent = Union[TextDelta, ToolCall, ToolResult, ToolError]
