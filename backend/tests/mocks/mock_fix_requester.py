"""
Scripted fix requester for GhostFixEngine tests
"""
import asyncio
from typing import AsyncGenerator, List, Optional, Union

from app.schemas.generation import GhostFixRequest


def file_fix(path: str, content: str) -> str:
    return (
        '<artifact title="Fix preview error" id="ghost-fix">\n'
        f'<action type="file" filePath="{path}">\n{content}\n</action>\n'
        "</artifact>"
    )


class MockFixRequester:
    """
    Each call pops the next response: a string (streamed in two halves) or an
    exception (raised before anything is yielded). When `gate` is set, the
    stream waits for it before yielding.
    """

    def __init__(self, *responses: Union[str, Exception]):
        self.responses: List[Union[str, Exception]] = list(responses)
        self.requests: List[GhostFixRequest] = []
        self.gate: Optional[asyncio.Event] = None

    @property
    def call_count(self) -> int:
        return len(self.requests)

    async def __call__(self, request: GhostFixRequest) -> AsyncGenerator[str, None]:
        self.requests.append(request)
        response = self.responses.pop(0) if self.responses else ""
        if self.gate is not None:
            await self.gate.wait()
        if isinstance(response, Exception):
            raise response
        middle = len(response) // 2
        for part in (response[:middle], response[middle:]):
            await asyncio.sleep(0)
            yield part
