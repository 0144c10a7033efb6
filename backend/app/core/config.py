from pydantic_settings import BaseSettings
from typing import List, Any
import json


def parse_cors_origins(v: Any) -> List[str]:
    """Parse CORS origins from string or list"""
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        # Try JSON parsing first
        if v.startswith('['):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        # Fall back to comma-separated
        return [origin.strip() for origin in v.split(',') if origin.strip()]
    return []


class Settings(BaseSettings):
    """Application settings - all configurable via environment variables"""

    # ==========================================
    # Application
    # ==========================================
    APP_NAME: str = "SparkBuild"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    API_VERSION: str = "v1"

    # Server Configuration
    SERVER_HOST: str = "0.0.0.0"
    SERVER_PORT: int = 8000

    # ==========================================
    # Logging
    # ==========================================
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # ==========================================
    # Database
    # ==========================================
    DATABASE_URL: str = "sqlite+aiosqlite:///./sparkbuild.db"
    DB_ECHO: bool = False

    # ==========================================
    # Claude AI
    # ==========================================
    ANTHROPIC_API_KEY: str = ""
    ANTHROPIC_BASE_URL: str = ""  # Empty means use default Anthropic URL
    CLAUDE_DEFAULT_MODEL: str = "claude-sonnet-4-20250514"
    CLAUDE_MAX_TOKENS: int = 16384
    CLAUDE_TEMPERATURE: float = 0.7
    CLAUDE_REQUEST_TIMEOUT: int = 300  # 5 minutes for long generations
    CLAUDE_CONNECT_TIMEOUT: int = 60  # seconds
    CLAUDE_MAX_RETRIES: int = 3
    CLAUDE_RETRY_BASE_DELAY: float = 2.0  # seconds
    CLAUDE_RETRY_MAX_DELAY: float = 30.0  # seconds
    CLAUDE_ENABLE_WEB_SEARCH: bool = True
    CLAUDE_WEB_SEARCH_MAX_USES: int = 5

    # ==========================================
    # Generation Sessions
    # ==========================================
    GENERATION_DB_FLUSH_INTERVAL: float = 2.0  # seconds between debounced content flushes
    GENERATION_CLEANUP_DELAY: float = 300.0  # 5 minutes after a terminal status
    GENERATION_TOOL_RESULT_MAX_CHARS: int = 200
    DEFAULT_CHAT_TITLE: str = "New Chat"

    # ==========================================
    # Protocol Parser
    # ==========================================
    PARSER_TAG_LOOKAHEAD: int = 100  # chars buffered before an unknown "<" becomes text

    # ==========================================
    # Ghost Fix (preview auto-repair)
    # ==========================================
    GHOST_FIX_MAX_ATTEMPTS: int = 3
    GHOST_FIX_DEBOUNCE_SECONDS: float = 2.0
    GHOST_FIX_VERIFY_TIMEOUT_SECONDS: float = 5.0
    GHOST_FIX_SUCCESS_DISPLAY_SECONDS: float = 3.0
    GHOST_FIX_MAX_OUTPUT_TOKENS: int = 8192

    # ==========================================
    # CORS (stored as comma-separated string, parsed to list)
    # ==========================================
    CORS_ORIGINS_STR: str = "http://localhost:3000,http://127.0.0.1:3000"

    @property
    def CORS_ORIGINS(self) -> List[str]:
        return parse_cors_origins(self.CORS_ORIGINS_STR)

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields in .env that aren't defined in Settings


# Create settings instance
settings = Settings()
