"""
Mock Claude Client for Testing
Provides scripted streams without calling the actual API
"""
import asyncio
from typing import Any, AsyncGenerator, Dict, List, Optional

from app.schemas.stream_events import StreamEvent, TextDelta

END = object()


class MockClaudeClient:
    """
    Mock client with the same streaming surface as ClaudeClient.

    stream_chat() pulls from a queue so a test decides when each event
    arrives: feed() events, then finish() or fail(). stream_text() replays
    canned responses from text_responses, one per call.
    """

    def __init__(self):
        self.queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self.call_count = 0
        self.last_messages: Optional[List[Dict[str, Any]]] = None
        self.last_system: Optional[str] = None
        self.last_tools: Optional[List[Dict[str, Any]]] = None
        self.last_max_tokens: Optional[int] = None
        self.text_responses: List[List[str]] = []
        self.closed = False

    def feed(self, *events: StreamEvent) -> None:
        for event in events:
            self.queue.put_nowait(event)

    def feed_text(self, *chunks: str) -> None:
        self.feed(*(TextDelta(text=c) for c in chunks))

    def finish(self) -> None:
        self.queue.put_nowait(END)

    def fail(self, error: Exception) -> None:
        self.queue.put_nowait(error)

    def script(self, *chunks: str) -> None:
        """Whole response available up front"""
        self.feed_text(*chunks)
        self.finish()

    async def stream_chat(
        self,
        messages: List[Dict[str, Any]],
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncGenerator[StreamEvent, None]:
        """Mock streaming chat"""
        self.call_count += 1
        self.last_messages = messages
        self.last_system = system_prompt
        self.last_tools = tools
        try:
            while True:
                item = await self.queue.get()
                if cancel_event is not None and cancel_event.is_set():
                    raise asyncio.CancelledError()
                if item is END:
                    return
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            self.closed = True

    async def stream_text(
        self,
        messages: List[Dict[str, Any]],
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncGenerator[str, None]:
        """Mock text-only stream"""
        self.call_count += 1
        self.last_messages = messages
        self.last_system = system_prompt
        self.last_max_tokens = max_tokens
        chunks = self.text_responses.pop(0) if self.text_responses else []
        for chunk in chunks:
            await asyncio.sleep(0)
            yield chunk
