"""Read endpoints served through the compatibility layer."""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException

from ...models.record import ReadResult
from ...services.migration_registry import MigrationRegistry
from ..models import ReadResultListResponse, ReadResultResponse
from .migrations import get_registry

router = APIRouter()


def _listing(results: List[ReadResult]) -> ReadResultListResponse:
    return ReadResultListResponse(
        results=[ReadResultResponse(**r.to_dict()) for r in results],
        total=len(results),
    )


@router.get("/trades", response_model=ReadResultListResponse)
async def trades_by_user(user_id: str, registry: MigrationRegistry = Depends(get_registry)):
    """Trades a user created or joined, newest first."""
    return _listing(await registry.trades.query_by_user(user_id))


@router.get("/trades/by-skill", response_model=ReadResultListResponse)
async def trades_by_skill(
    skill: str,
    side: str = "offered",
    status: Optional[str] = "active",
    registry: MigrationRegistry = Depends(get_registry),
):
    """Trades offering or wanting a skill."""
    return _listing(await registry.trades.query_by_skill(skill, side, status))


@router.get("/trades/{trade_id}", response_model=ReadResultResponse)
async def get_trade(trade_id: str, registry: MigrationRegistry = Depends(get_registry)):
    """One trade in the dual shape."""
    result = await registry.trades.get(trade_id)
    if not result.found:
        raise HTTPException(status_code=404, detail="Trade not found")
    return ReadResultResponse(**result.to_dict())


@router.get("/conversations", response_model=ReadResultListResponse)
async def conversations_by_user(
    user_id: str,
    limit: int = 50,
    registry: MigrationRegistry = Depends(get_registry),
):
    """Conversations of a user, most recently updated first."""
    return _listing(await registry.chat.query_by_user(user_id, limit))


@router.get("/conversations/{conversation_id}/messages", response_model=ReadResultListResponse)
async def conversation_messages(
    conversation_id: str,
    limit: int = 50,
    before: Optional[str] = None,
    registry: MigrationRegistry = Depends(get_registry),
):
    """Messages of a conversation in chronological order."""
    return _listing(await registry.chat.get_messages(conversation_id, limit, before))
