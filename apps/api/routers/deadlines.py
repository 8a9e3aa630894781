"""
Deadlines API - list and summarize a user's deadlines, record keep / return / reopen
"""
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, Query

from apps.api.dependencies import get_context
from packages.common.context import AppContext
from packages.common.schemas.deadlines import (
    Deadline,
    DeadlineDecision,
    DeadlineDecisionRequest,
    DeadlineStatus,
    DecisionAction,
    UserSummary,
)

logger = structlog.get_logger()
router = APIRouter()


@router.get("", response_model=List[Deadline])
async def list_deadlines(
    user: str = Query(..., min_length=1),
    status: Optional[DeadlineStatus] = Query(None, description="Filter by status"),
    ctx: AppContext = Depends(get_context),
) -> List[Deadline]:
    return await ctx.deadlines.list_for_user(user, status=status)


@router.get("/summary", response_model=UserSummary)
async def user_summary(
    user: str = Query(..., min_length=1),
    ctx: AppContext = Depends(get_context),
) -> UserSummary:
    """Receipt count plus open, kept and returned deadline counts"""
    return UserSummary(
        user=user,
        receipts=await ctx.receipts.count_for_user(user),
        deadlines=await ctx.deadlines.count_for_user(user),
    )


@router.post("/{deadline_id}/decision", response_model=Deadline)
async def decide(
    deadline_id: str,
    request: DeadlineDecisionRequest,
    ctx: AppContext = Depends(get_context),
) -> Deadline:
    """
    keep / return close an open deadline; reopen clears the decision and
    both milestone gates so reminders can go out again.

    404 when the deadline does not belong to the user, 409 when the action
    does not fit the current status.
    """
    if request.action == DecisionAction.REOPEN:
        return await ctx.deadlines.reopen(deadline_id, request.user)

    return await ctx.deadlines.record_decision(
        deadline_id,
        request.user,
        DeadlineDecision(request.action.value),
        request.note,
        ctx.clock(),
    )
