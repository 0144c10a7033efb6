"""
Ghost Fix Service - builds and streams a single fix request

No DB writes and no tool handling: the caller buffers the raw text and
extracts file actions from it.
"""

from typing import AsyncGenerator, Optional

from app.core.config import settings
from app.core.logging_config import logger
from app.schemas.generation import GhostFixRequest
from app.services.error_classifier import ErrorClassifier
from app.utils.system_prompts import get_ghost_fix_system_prompt

STACK_MAX_CHARS = 2000


def build_fix_message(request: GhostFixRequest) -> str:
    """User message carrying the error, failed attempts, classification and files"""
    error = request.error
    detail = [
        f"Type: {'Build error' if error.is_build_error else 'Runtime error'}",
        f"Message: {error.message}",
    ]
    if error.line:
        detail.append(f"Line: {error.line}")
    if error.col:
        detail.append(f"Column: {error.col}")
    if error.stack:
        detail.append(f"Stack (truncated):\n{error.stack[:STACK_MAX_CHARS]}")

    previous = ""
    if request.previous_attempts:
        previous = "\n\nPrevious fix attempts that FAILED (do NOT repeat these):\n" + "\n".join(
            f"Attempt {a.attempt_number}: {a.error}" for a in request.previous_attempts
        )

    classification = request.classification_context
    if classification is None:
        classification = ErrorClassifier.build_fix_context(error.message, request.files)

    files = "\n\n".join(f"--- {path} ---\n{content}" for path, content in request.files.items())

    return (
        "Fix this preview error.\n\n"
        f"ERROR:\n{chr(10).join(detail)}\n"
        f"{previous}\n\n"
        f"CLASSIFICATION:\n{classification}\n\n"
        f"FILES:\n{files}"
    )


class GhostFixService:
    """Streams fix responses from the model client"""

    def __init__(self, client, max_output_tokens: Optional[int] = None):
        self.client = client
        self.max_output_tokens = max_output_tokens or settings.GHOST_FIX_MAX_OUTPUT_TOKENS

    async def stream_fix(self, request: GhostFixRequest) -> AsyncGenerator[str, None]:
        logger.info(
            f"[GhostFixService] Fix request: {len(request.files)} file(s), "
            f"{len(request.previous_attempts)} previous attempt(s)"
        )
        async for text in self.client.stream_text(
            [{"role": "user", "content": build_fix_message(request)}],
            system_prompt=get_ghost_fix_system_prompt(request.build_pipeline_context),
            model=request.model_id,
            max_tokens=self.max_output_tokens,
        ):
            yield text
