"""Registered user REST API router.

Endpoints:
    GET /users/{user_id}      - Get a registered user
    PUT /users/{user_id}/ban  - Set or clear a user's ban flag
"""
import logging

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from app.delivery import get_relay
from app.errors import PersistenceError
from app.storage import RegisteredUser, run_blocking

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


class BanUpdate(BaseModel):
    """Request model for changing a ban flag."""
    banned: bool = Field(..., description="True to ban, False to lift the ban")


@router.get("/{user_id}", response_model=RegisteredUser)
async def get_user(user_id: str) -> RegisteredUser:
    """Get a registered user.

    Raises:
        HTTPException: 404 if the user is not registered, 503 on storage failure.
    """
    try:
        user = await run_blocking(get_relay().users.get, user_id)
    except PersistenceError as exc:
        raise HTTPException(status_code=503, detail=exc.message)
    if user is None:
        raise HTTPException(status_code=404, detail=f"User {user_id} is not registered")
    return user


@router.put("/{user_id}/ban", response_model=RegisteredUser)
async def set_ban(user_id: str, request: BanUpdate) -> RegisteredUser:
    """Ban or unban a registered user.

    Banned users can still connect and receive messages, but their direct
    and global messages are rejected.
    """
    try:
        user = await run_blocking(get_relay().users.set_banned, user_id, request.banned)
    except PersistenceError as exc:
        raise HTTPException(status_code=503, detail=exc.message)
    if user is None:
        raise HTTPException(status_code=404, detail=f"User {user_id} is not registered")
    logger.info(f"Set banned={request.banned} for user {user_id}")
    return user
