from anthropic import AsyncAnthropic, APIStatusError, APIError, APIConnectionError, APITimeoutError, Timeout
from typing import Optional, Dict, List, Any, AsyncGenerator
import asyncio
import json
import random
import httpx
from app.core.config import settings
from app.core.logging_config import logger
from app.schemas.stream_events import StreamEvent, TextDelta, ToolCall, ToolResult, ToolError

# Retry configuration - loaded from settings
MAX_RETRIES = settings.CLAUDE_MAX_RETRIES
BASE_DELAY = settings.CLAUDE_RETRY_BASE_DELAY
MAX_DELAY = settings.CLAUDE_RETRY_MAX_DELAY
REQUEST_TIMEOUT = float(settings.CLAUDE_REQUEST_TIMEOUT)
CONNECT_TIMEOUT = float(settings.CLAUDE_CONNECT_TIMEOUT)
RETRYABLE_ERRORS = ['overloaded_error', 'rate_limit_error', 'server_error']

# Cost per 1M tokens (USD), approximate
MODEL_COSTS: Dict[str, Dict[str, float]] = {
    "claude-sonnet-4-20250514": {"input": 3.00, "output": 15.00},
    "claude-opus-4-20250514": {"input": 15.00, "output": 75.00},
    "claude-3-5-haiku-20241022": {"input": 0.80, "output": 4.00},
}
DEFAULT_MODEL_COST = {"input": 3.00, "output": 15.00}

TOOL_USE_BLOCKS = ("tool_use", "server_tool_use")


def chat_tools() -> List[Dict[str, Any]]:
    """Server-side tools offered to the chat model"""
    if not settings.CLAUDE_ENABLE_WEB_SEARCH:
        return []
    return [{
        "type": "web_search_20250305",
        "name": "web_search",
        "max_uses": settings.CLAUDE_WEB_SEARCH_MAX_USES,
    }]


def _dump(value: Any) -> Any:
    if hasattr(value, "model_dump"):
        return value.model_dump()
    if isinstance(value, list):
        return [_dump(v) for v in value]
    return value


class ClaudeClient:
    """Claude API client wrapper for streaming chat requests"""

    def __init__(self):
        client_kwargs = {"api_key": settings.ANTHROPIC_API_KEY}

        # Only set base_url if it's a non-empty string with actual content
        if settings.ANTHROPIC_BASE_URL and settings.ANTHROPIC_BASE_URL.strip():
            client_kwargs["base_url"] = settings.ANTHROPIC_BASE_URL.strip()
            logger.info(f"Using custom Claude API base URL: {settings.ANTHROPIC_BASE_URL}")

        client_kwargs["timeout"] = Timeout(
            connect=CONNECT_TIMEOUT,
            read=REQUEST_TIMEOUT,
            write=REQUEST_TIMEOUT,
            pool=REQUEST_TIMEOUT
        )

        self.async_client = AsyncAnthropic(**client_kwargs)
        self.default_model = settings.CLAUDE_DEFAULT_MODEL

        logger.info(f"Claude client initialized: timeout={REQUEST_TIMEOUT}s, model={self.default_model}")

    def _is_retryable_error(self, error: Exception) -> bool:
        """Check if an error is retryable (overload, rate limit, network issues, etc.)"""
        error_str = str(error).lower()

        if isinstance(error, (APIConnectionError, APITimeoutError)):
            logger.warning(f"Network error detected (retryable): {type(error).__name__}")
            return True

        if isinstance(error, (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError)):
            logger.warning(f"HTTPX network error detected (retryable): {type(error).__name__}")
            return True

        if isinstance(error, (APIStatusError, APIError)):
            if hasattr(error, 'body') and isinstance(error.body, dict):
                error_type = error.body.get('error', {}).get('type', '')
                return error_type in RETRYABLE_ERRORS
            if hasattr(error, 'status_code'):
                return error.status_code in [429, 500, 502, 503, 529]

        network_errors = ['overload', 'rate_limit', '529', '503', 'capacity',
                          'connection', 'timeout', 'network', 'dns', 'socket']
        return any(err in error_str for err in network_errors)

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate delay with exponential backoff and jitter"""
        delay = min(BASE_DELAY * (2 ** attempt), MAX_DELAY)
        jitter = delay * random.uniform(0, 0.25)
        return delay + jitter

    def _convert_block(self, block: Any, tool_names: Dict[str, str]) -> Optional[StreamEvent]:
        """Map a finished content block to a tool event, if it is one"""
        block_type = getattr(block, "type", "")

        if block_type in TOOL_USE_BLOCKS:
            tool_names[block.id] = block.name
            return ToolCall(tool_name=block.name, input=dict(block.input or {}), tool_use_id=block.id)

        if block_type.endswith("_tool_result"):
            tool_use_id = getattr(block, "tool_use_id", "")
            name = tool_names.get(tool_use_id, block_type[:-len("_tool_result")])
            content = getattr(block, "content", None)
            if str(getattr(content, "type", "")).endswith("_error"):
                return ToolError(
                    tool_name=name,
                    error=str(getattr(content, "error_code", "error")),
                    tool_use_id=tool_use_id,
                )
            return ToolResult(tool_name=name, output=_dump(content), tool_use_id=tool_use_id)

        return None

    async def stream_chat(
        self,
        messages: List[Dict[str, Any]],
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: int = None,
        temperature: float = None,
        tools: Optional[List[Dict[str, Any]]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncGenerator[StreamEvent, None]:
        """
        Stream a chat completion as TextDelta / ToolCall / ToolResult / ToolError events

        Args:
            messages: Conversation as [{"role", "content"}]
            system_prompt: System prompt
            model: Model id, defaults to CLAUDE_DEFAULT_MODEL
            max_tokens: Maximum tokens to generate
            temperature: Temperature for generation
            tools: Tool definitions passed through to the API
            cancel_event: Set by the caller to abort; raises CancelledError at the next event

        Yields:
            StreamEvent instances in arrival order
        """
        model_name = model or self.default_model
        if max_tokens is None:
            max_tokens = settings.CLAUDE_MAX_TOKENS
        if temperature is None:
            temperature = settings.CLAUDE_TEMPERATURE

        logger.info(f"Claude Streaming: model={model_name}, max_tokens={max_tokens}, messages={len(messages)}")

        request_kwargs: Dict[str, Any] = {
            "model": model_name,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "system": system_prompt if system_prompt else "",
            "messages": messages,
        }
        if tools:
            request_kwargs["tools"] = tools

        last_error = None
        for attempt in range(MAX_RETRIES + 1):
            has_yielded = False
            try:
                tool_names: Dict[str, str] = {}
                async with self.async_client.messages.stream(**request_kwargs) as stream:
                    async for event in stream:
                        if cancel_event is not None and cancel_event.is_set():
                            raise asyncio.CancelledError()

                        converted: Optional[StreamEvent] = None
                        if event.type == "text":
                            converted = TextDelta(text=event.text)
                        elif event.type == "content_block_stop":
                            converted = self._convert_block(event.content_block, tool_names)

                        if converted is not None:
                            has_yielded = True
                            yield converted

                    final_message = await stream.get_final_message()

                total_tokens = final_message.usage.input_tokens + final_message.usage.output_tokens
                logger.log_agent_event(
                    "claude",
                    f"stream complete id={final_message.id} stop={final_message.stop_reason}",
                    tokens_used=total_tokens,
                )
                return

            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                error_type = type(e).__name__
                # Only retry if we haven't started yielding yet (can't recover mid-stream)
                if not has_yielded and self._is_retryable_error(e) and attempt < MAX_RETRIES:
                    delay = self._calculate_retry_delay(attempt)
                    logger.warning(
                        f"Claude Streaming API error [{error_type}] (attempt {attempt + 1}/{MAX_RETRIES + 1}), retrying in {delay:.1f}s...",
                        extra={
                            "event_type": "claude_stream_retry",
                            "error_type": error_type,
                            "attempt": attempt + 1,
                            "retry_delay": delay
                        }
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(
                        f"Claude Streaming API error (non-retryable): {error_type}: {e}",
                        extra={
                            "event_type": "claude_stream_error",
                            "error_type": error_type,
                            "error_message": str(e),
                            "has_yielded": has_yielded,
                            "attempt": attempt + 1
                        }
                    )
                    raise

        if last_error:
            raise last_error

    async def stream_text(
        self,
        messages: List[Dict[str, Any]],
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: int = None,
    ) -> AsyncGenerator[str, None]:
        """Text deltas only; tool events are dropped"""
        async for event in self.stream_chat(messages, system_prompt=system_prompt, model=model, max_tokens=max_tokens):
            if isinstance(event, TextDelta):
                yield event.text


def calculate_cost(input_tokens: int, output_tokens: int, model: str) -> float:
    """Estimated cost in USD from the per-model price table"""
    costs = MODEL_COSTS.get(model, DEFAULT_MODEL_COST)
    return (input_tokens / 1_000_000) * costs["input"] + (output_tokens / 1_000_000) * costs["output"]


def serialize_tool_output(output: Any) -> str:
    """Tool outputs travel as strings inside tool-activity markers"""
    if isinstance(output, str):
        return output
    return json.dumps(output, default=str, separators=(",", ":"))
