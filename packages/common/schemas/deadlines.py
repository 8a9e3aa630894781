"""
Deadline schemas - tracked return / price-adjust dates and their notification gates
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class DeadlineType(str, Enum):
    RETURN = "return"
    PRICE_ADJUST = "price_adjust"


class DeadlineStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class DeadlineDecision(str, Enum):
    """What the user chose; closes the deadline"""
    KEEP = "keep"
    RETURN = "return"


class DecisionAction(str, Enum):
    """Actions accepted by the decision endpoint"""
    KEEP = "keep"
    RETURN = "return"
    REOPEN = "reopen"


class Milestone(str, Enum):
    """Notification trigger points, each with its own gate"""
    DUE_TODAY = "due_today"
    HEADS_UP = "heads_up"


class Deadline(BaseModel):
    """A persisted deadline with both milestone gates"""
    id: str
    user_id: str
    receipt_id: str
    type: DeadlineType
    due_at: datetime
    status: DeadlineStatus = DeadlineStatus.OPEN
    decision: Optional[DeadlineDecision] = None
    decision_note: Optional[str] = None
    closed_at: Optional[datetime] = None
    due_today_notified_at: Optional[datetime] = None
    heads_up_notified_at: Optional[datetime] = None


class DueNotice(BaseModel):
    """
    A deadline selected for a milestone, joined with what the message needs.
    """
    deadline_id: str
    user_id: str
    receipt_id: str
    deadline_type: DeadlineType
    due_at: datetime
    merchant: Optional[str] = None
    order_id: Optional[str] = None
    purchase_date: Optional[datetime] = None
    total_cents: Optional[int] = None
    currency: str = "USD"
    email: Optional[str] = Field(None, description="Recipient from the user's profile")


class DeadlineDecisionRequest(BaseModel):
    """Request to record a keep/return decision or reopen a deadline"""
    user: str = Field(..., min_length=1)
    action: DecisionAction
    note: Optional[str] = Field(None, max_length=2000)


class DeadlineCounts(BaseModel):
    """Per-user deadline tallies"""
    open: int = 0
    kept: int = 0
    returned: int = 0


class UserSummary(BaseModel):
    """Receipt and deadline counts shown on the user's overview"""
    ok: bool = True
    user: str
    receipts: int
    deadlines: DeadlineCounts
