"""
Shared FastAPI dependencies.

Authentication is handled upstream; the caller's identity arrives in the
X-User-Id header. Services are built once in the application lifespan and
read from app.state.
"""

from typing import Optional

from fastapi import Header, Request

from app.core.exceptions import AuthenticationError
from app.core.logging_config import set_user_id
from app.services.generation_manager import GenerationManager
from app.services.generation_repository import GenerationRepository
from app.services.ghost_fix_service import GhostFixService
from app.services.preview_state import PreviewSessionRegistry


async def get_current_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    """Caller's user id, 401 when missing"""
    if not x_user_id or not x_user_id.strip():
        raise AuthenticationError()
    user_id = x_user_id.strip()
    set_user_id(user_id)
    return user_id


def get_generation_manager(request: Request) -> GenerationManager:
    return request.app.state.generation_manager


def get_repository(request: Request) -> GenerationRepository:
    return request.app.state.repository


def get_preview_registry(request: Request) -> PreviewSessionRegistry:
    return request.app.state.preview_registry


def get_ghost_fix_service(request: Request) -> GhostFixService:
    return request.app.state.ghost_fix_service
