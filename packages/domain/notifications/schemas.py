"""
Data schemas for notification delivery
"""
from pydantic import BaseModel, ConfigDict, Field

from packages.common.schemas.deadlines import Milestone


class NotificationMessage(BaseModel):
    """A composed plain-text email"""
    model_config = ConfigDict(frozen=True)

    subject: str
    body: str


class SchedulerRunResult(BaseModel):
    """Counters for one scheduler invocation"""
    milestone: Milestone
    processed: int = Field(default=0, description="Due items looked at")
    sent: int = Field(default=0, description="Messages delivered and gated")
    skipped: int = Field(default=0, description="Claimed elsewhere or no recipient")
    failed: int = Field(default=0, description="Transport rejected; gate left unset")
