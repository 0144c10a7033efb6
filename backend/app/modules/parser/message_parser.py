"""
Streaming Message Parser
Extracts artifacts, actions, plans, suggestions and tool-activity markers
from a model response that arrives in arbitrarily split chunks.

State machine:
    text -> tag -> {artifact, action, plan, suggestions} -> tag -> ...

Every push() advances as far as the buffered bytes allow and never
re-scans consumed input. Malformed or truncated markup degrades to plain
text; the parser never raises on its input.
"""

import re
from typing import Dict, List, Optional

from app.core.config import settings
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
)


ARTIFACT_OPEN_RE = re.compile(r'^<artifact\s+title="([^"]*?)"\s+id="([^"]*?)"\s*>')
FILE_ACTION_OPEN_RE = re.compile(r'^<action\s+type="(file)"\s+filePath="([^"]*?)"\s*>')
SEARCH_REPLACE_OPEN_RE = re.compile(r'^<action\s+type="(search-replace)"\s+filePath="([^"]*?)"\s*>')
COMMAND_ACTION_OPEN_RE = re.compile(r'^<action\s+type="(shell|start)"\s*>')
PLAN_OPEN_RE = re.compile(r'^<plan\s+title="([^"]*?)"\s*>')
TOOL_ACTIVITY_RE = re.compile(
    r'^<tool-activity\s+name="([^"]*?)"\s+status="([^"]*?)"'
    r'(?:\s+args="([^"]*?)")?(?:\s+result="([^"]*?)")?\s*/>'
)
SEARCH_REPLACE_BODY_RE = re.compile(r'<<<SEARCH\n([\s\S]*?)\n===\n([\s\S]*?)\n>>>')
TOOL_ACTIVITY_STRIP_RE = re.compile(r'<tool-activity\b(?:"[^"]*"|[^">])*?/>\n?')
SUGGESTION_BULLET_RE = re.compile(r'^[\s-]*')

ARTIFACT_CLOSE = "</artifact>"
ACTION_CLOSE = "</action>"
PLAN_CLOSE = "</plan>"
SUGGESTIONS_OPEN = "<suggestions>"
SUGGESTIONS_CLOSE = "</suggestions>"


class ParserCallbacks:
    """
    Receiver for parser events. Override the methods you care about;
    the defaults ignore the event.
    """

    def on_text(self, text: str) -> None:
        pass

    def on_artifact_open(self, artifact: ArtifactInfo) -> None:
        pass

    def on_artifact_close(self, artifact_id: str) -> None:
        pass

    def on_action_open(self, artifact_id: str, action: Action) -> None:
        pass

    def on_action_stream(self, artifact_id: str, content: str) -> None:
        pass

    def on_action_close(self, artifact_id: str, action: Action) -> None:
        pass

    def on_plan_open(self, plan: PlanInfo) -> None:
        pass

    def on_plan_content(self, content: str) -> None:
        pass

    def on_plan_close(self) -> None:
        pass

    def on_suggestions_close(self, suggestions: List[str]) -> None:
        pass

    def on_tool_activity(self, activity: ToolActivity) -> None:
        pass


class CollectingCallbacks(ParserCallbacks):
    """Records every event in order as a ParserEvent"""

    def __init__(self):
        self.events: List[ParserEvent] = []

    def on_text(self, text):
        self.events.append(ParserEvent(ParserEventKind.TEXT, payload=text))

    def on_artifact_open(self, artifact):
        self.events.append(ParserEvent(ParserEventKind.ARTIFACT_OPEN, artifact.id, artifact))

    def on_artifact_close(self, artifact_id):
        self.events.append(ParserEvent(ParserEventKind.ARTIFACT_CLOSE, artifact_id))

    def on_action_open(self, artifact_id, action):
        self.events.append(ParserEvent(ParserEventKind.ACTION_OPEN, artifact_id, action))

    def on_action_stream(self, artifact_id, content):
        self.events.append(ParserEvent(ParserEventKind.ACTION_STREAM, artifact_id, content))

    def on_action_close(self, artifact_id, action):
        self.events.append(ParserEvent(ParserEventKind.ACTION_CLOSE, artifact_id, action))

    def on_plan_open(self, plan):
        self.events.append(ParserEvent(ParserEventKind.PLAN_OPEN, payload=plan))

    def on_plan_content(self, content):
        self.events.append(ParserEvent(ParserEventKind.PLAN_CONTENT, payload=content))

    def on_plan_close(self):
        self.events.append(ParserEvent(ParserEventKind.PLAN_CLOSE))

    def on_suggestions_close(self, suggestions):
        self.events.append(ParserEvent(ParserEventKind.SUGGESTIONS_CLOSE, payload=suggestions))

    def on_tool_activity(self, activity):
        self.events.append(ParserEvent(ParserEventKind.TOOL_ACTIVITY, payload=activity))

    @property
    def text(self) -> str:
        return "".join(e.payload for e in self.events if e.kind == ParserEventKind.TEXT)

    @property
    def closed_actions(self) -> List[Action]:
        return [e.payload for e in self.events if e.kind == ParserEventKind.ACTION_CLOSE]

    def of_kind(self, kind: ParserEventKind) -> List[ParserEvent]:
        return [e for e in self.events if e.kind == kind]


def _unescape_attr(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.replace("&quot;", '"')


def _partial_suffix_len(buffer: str, closing: str) -> int:
    """Length of the longest buffer suffix that is a proper prefix of closing"""
    for size in range(min(len(closing) - 1, len(buffer)), 0, -1):
        if buffer.endswith(closing[:size]):
            return size
    return 0


class MessageParser:
    """
    Chunk-fed parser for the artifact/action wire grammar.

    One instance per response; not safe for concurrent use.

    Usage:
        parser = MessageParser(callbacks)
        for chunk in stream:
            parser.push(chunk)
        parser.end()
    """

    def __init__(self, callbacks: Optional[ParserCallbacks] = None, lookahead: Optional[int] = None):
        self.callbacks = callbacks or ParserCallbacks()
        self.lookahead = lookahead if lookahead is not None else settings.PARSER_TAG_LOOKAHEAD

        self._buffer = ""
        self._state = "text"
        self._in_artifact = False
        self._artifact_id = ""
        self._artifact_title = ""
        self._action_type: Optional[ActionType] = None
        self._action_file_path = ""
        self._action_content = ""
        self._plan_content = ""
        self._suggestions_content = ""
        self._skip_newline = False

    def push(self, chunk: str) -> None:
        if not chunk:
            return
        self._buffer += chunk
        if self._skip_newline:
            self._skip_newline = False
            if self._buffer.startswith("\n"):
                self._buffer = self._buffer[1:]
        self._process()

    def end(self) -> None:
        """Flush whatever is still buffered as plain text"""
        if self._buffer:
            self.callbacks.on_text(self._buffer)
            self._buffer = ""
        self._skip_newline = False

    def _process(self) -> None:
        handlers = {
            "text": self._process_text,
            "tag": self._process_tag,
            "artifact": self._process_artifact,
            "action": self._process_action,
            "plan": self._process_plan,
            "suggestions": self._process_suggestions,
        }
        while self._buffer:
            if not handlers[self._state]():
                return

    def _process_text(self) -> bool:
        tag_start = self._buffer.find("<")

        if tag_start == -1:
            self.callbacks.on_text(self._buffer)
            self._buffer = ""
            return False

        if tag_start > 0:
            self.callbacks.on_text(self._buffer[:tag_start])
            self._buffer = self._buffer[tag_start:]

        self._state = "tag"
        return True

    def _process_tag(self) -> bool:
        buf = self._buffer

        match = ARTIFACT_OPEN_RE.match(buf)
        if match:
            self._artifact_title, self._artifact_id = match.group(1), match.group(2)
            self._in_artifact = True
            self._consume(len(match.group(0)), "artifact")
            self.callbacks.on_artifact_open(ArtifactInfo(id=self._artifact_id, title=self._artifact_title))
            return True

        if buf.startswith(ARTIFACT_CLOSE):
            artifact_id = self._artifact_id
            self._in_artifact = False
            self._artifact_id = ""
            self._artifact_title = ""
            self._consume(len(ARTIFACT_CLOSE), "text")
            self.callbacks.on_artifact_close(artifact_id)
            return True

        match = FILE_ACTION_OPEN_RE.match(buf) or SEARCH_REPLACE_OPEN_RE.match(buf)
        if match:
            self._open_action(ActionType(match.group(1)), match.group(2), len(match.group(0)))
            return True

        match = COMMAND_ACTION_OPEN_RE.match(buf)
        if match:
            self._open_action(ActionType(match.group(1)), "", len(match.group(0)))
            return True

        match = PLAN_OPEN_RE.match(buf)
        if match:
            self._plan_content = ""
            self._consume(len(match.group(0)), "plan")
            self.callbacks.on_plan_open(PlanInfo(title=match.group(1)))
            return True

        if buf.startswith(PLAN_CLOSE):
            self._plan_content = ""
            self._consume(len(PLAN_CLOSE), "text")
            self.callbacks.on_plan_close()
            return True

        match = TOOL_ACTIVITY_RE.match(buf)
        if match:
            self._consume(len(match.group(0)), "text")
            # One trailing newline belongs to the marker
            if self._buffer.startswith("\n"):
                self._buffer = self._buffer[1:]
            elif not self._buffer:
                self._skip_newline = True
            self.callbacks.on_tool_activity(ToolActivity(
                name=match.group(1),
                status=match.group(2),
                args=_unescape_attr(match.group(3)),
                result=_unescape_attr(match.group(4)),
            ))
            return True

        if buf.startswith(SUGGESTIONS_OPEN):
            self._suggestions_content = ""
            self._consume(len(SUGGESTIONS_OPEN), "suggestions")
            return True

        if buf.startswith(SUGGESTIONS_CLOSE):
            suggestions = [
                SUGGESTION_BULLET_RE.sub("", line).strip()
                for line in self._suggestions_content.split("\n")
            ]
            self._suggestions_content = ""
            self._consume(len(SUGGESTIONS_CLOSE), "text")
            self.callbacks.on_suggestions_close([s for s in suggestions if s])
            return True

        if buf.startswith(ACTION_CLOSE):
            action = self._build_action()
            artifact_id = self._artifact_id
            self._action_type = None
            self._action_file_path = ""
            self._action_content = ""
            self._consume(len(ACTION_CLOSE), "artifact" if self._in_artifact else "text")
            self.callbacks.on_action_close(artifact_id, action)
            return True

        if buf.startswith("<"):
            if len(buf) > self.lookahead:
                # Long enough to rule out a split tag: emit one char and move on
                self.callbacks.on_text(buf[0])
                self._consume(1, "text")
                return True
            return False

        self._state = "text"
        return True

    def _process_artifact(self) -> bool:
        tag_start = self._buffer.find("<")
        if tag_start == -1:
            # Whitespace between actions
            self._buffer = ""
            return False

        self._buffer = self._buffer[tag_start:]
        self._state = "tag"
        return True

    def _process_action(self) -> bool:
        content = self._take_until(ACTION_CLOSE)
        if content is None:
            return False
        self._action_content += content
        if content:
            self.callbacks.on_action_stream(self._artifact_id, content)
        return True

    def _process_plan(self) -> bool:
        content = self._take_until(PLAN_CLOSE)
        if content is None:
            return False
        self._plan_content += content
        if content:
            self.callbacks.on_plan_content(content)
        return True

    def _process_suggestions(self) -> bool:
        content = self._take_until(SUGGESTIONS_CLOSE)
        if content is None:
            return False
        self._suggestions_content += content
        return True

    def _take_until(self, closing: str) -> Optional[str]:
        """
        Body states: return everything before the closing tag and switch to
        the tag state. Without a closing tag, stream the buffer as partial
        content (holding back a possible split closing tag) and return None.
        """
        index = self._buffer.find(closing)
        if index != -1:
            content = self._buffer[:index]
            self._consume(index, "tag")
            return content

        held = _partial_suffix_len(self._buffer, closing)
        partial = self._buffer[:len(self._buffer) - held]
        self._buffer = self._buffer[len(self._buffer) - held:]
        if partial:
            if self._state == "action":
                self._action_content += partial
                self.callbacks.on_action_stream(self._artifact_id, partial)
            elif self._state == "plan":
                self._plan_content += partial
                self.callbacks.on_plan_content(partial)
            else:
                self._suggestions_content += partial
        return None

    def _open_action(self, action_type: ActionType, file_path: str, tag_length: int) -> None:
        self._action_type = action_type
        self._action_file_path = file_path
        self._action_content = ""
        self._consume(tag_length, "action")

        if action_type == ActionType.FILE:
            action = FileAction(file_path=file_path)
        elif action_type == ActionType.SEARCH_REPLACE:
            action = SearchReplaceAction(file_path=file_path)
        elif action_type == ActionType.SHELL:
            action = ShellAction()
        else:
            action = StartAction()
        self.callbacks.on_action_open(self._artifact_id, action)

    def _build_action(self) -> Action:
        content = self._action_content.strip()

        if self._action_type == ActionType.FILE:
            return FileAction(file_path=self._action_file_path, content=content)

        if self._action_type == ActionType.SEARCH_REPLACE:
            match = SEARCH_REPLACE_BODY_RE.search(content)
            if match:
                return SearchReplaceAction(
                    file_path=self._action_file_path,
                    search_block=match.group(1),
                    replace_block=match.group(2),
                )
            # Malformed patch body degrades to a whole-file write
            return FileAction(file_path=self._action_file_path, content=content)

        if self._action_type == ActionType.START:
            return StartAction(command=content)

        return ShellAction(command=content)

    def _consume(self, length: int, next_state: str) -> None:
        self._buffer = self._buffer[length:]
        self._state = next_state


def extract_files(content: str) -> Dict[str, str]:
    """
    Parse a complete response and return its non-empty file actions keyed
    by path. A later action for the same path replaces an earlier one.
    """
    callbacks = CollectingCallbacks()
    parser = MessageParser(callbacks)
    parser.push(content)
    parser.end()

    files: Dict[str, str] = {}
    for action in callbacks.closed_actions:
        if isinstance(action, FileAction) and action.file_path and action.content:
            files[action.file_path] = action.content
    return files


def strip_tool_activity(content: str) -> str:
    """Remove <tool-activity ... /> markers and the newline that follows each"""
    return TOOL_ACTIVITY_STRIP_RE.sub("", content)
