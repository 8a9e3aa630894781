"""
Notification Scheduler - at-most-once milestone reminders

Triggered by Celery beat (at-least-once, possibly overlapping). For each open
deadline due inside the milestone's UTC day window with its gate unset:

1. claim      - conditional UPDATE takes a lease; losing means someone else has it
2. recipient  - profile email, else the fallback address when enabled
3. send       - message includes the current decision suggestion
4. confirm    - conditional UPDATE sets the gate and drops the lease

A SendError releases the lease so the next run retries. A database error on
any step is logged and the batch moves on; the lease expires on its own.
"""
from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple

import structlog
from sqlalchemy.exc import SQLAlchemyError

from packages.common.deadline_repository import DeadlineRepository
from packages.common.exceptions import SendError
from packages.common.metrics import (
    NOTIFICATIONS_FAILED,
    NOTIFICATIONS_SENT,
    NOTIFICATIONS_SKIPPED,
)
from packages.common.schemas.deadlines import DueNotice, Milestone
from packages.common.timeutils import utc_day_window, utcnow
from packages.domain.decisions.engine import preview_decision
from packages.domain.decisions.schemas import ReceiptLite
from packages.domain.notifications.messages import compose_milestone_message
from packages.domain.notifications.notifier import Notifier
from packages.domain.notifications.schemas import SchedulerRunResult
from packages.domain.policies.catalog import PolicyCatalog, policy_catalog

logger = structlog.get_logger()

# Days ahead of today each milestone looks at
MILESTONE_OFFSET_DAYS = {
    Milestone.DUE_TODAY: 0,
    Milestone.HEADS_UP: 7,
}


def milestone_window(milestone: Milestone, now: datetime) -> Tuple[datetime, datetime]:
    """Half-open UTC day window of due_at values a milestone covers"""
    return utc_day_window(now, MILESTONE_OFFSET_DAYS[Milestone(milestone)])


class NotificationScheduler:
    """Select, claim, send, confirm"""

    def __init__(
        self,
        deadlines: DeadlineRepository,
        notifier: Notifier,
        catalog: PolicyCatalog = policy_catalog,
        clock: Callable[[], datetime] = utcnow,
        fallback_address: Optional[str] = None,
        claim_lease_seconds: int = 900,
        batch_limit: int = 500,
    ):
        self.deadlines = deadlines
        self.notifier = notifier
        self.catalog = catalog
        self.clock = clock
        self.fallback_address = fallback_address
        self.claim_lease = timedelta(seconds=claim_lease_seconds)
        self.batch_limit = batch_limit

    def resolve_recipient(self, notice: DueNotice) -> Optional[str]:
        email = (notice.email or "").strip()
        if email:
            return email
        return self.fallback_address or None

    async def run(self, milestone: Milestone) -> SchedulerRunResult:
        milestone = Milestone(milestone)
        now = self.clock()
        start, end = milestone_window(milestone, now)
        result = SchedulerRunResult(milestone=milestone)

        logger.info("notification_run_started",
                   milestone=milestone.value,
                   window_start=start.isoformat(),
                   window_end=end.isoformat())

        notices = await self.deadlines.find_due(milestone, start, end, limit=self.batch_limit)

        for notice in notices:
            result.processed += 1
            outcome = await self._process(milestone, notice)
            if outcome == "sent":
                result.sent += 1
            elif outcome == "failed":
                result.failed += 1
            elif outcome == "skipped":
                result.skipped += 1

        logger.info("notification_run_completed",
                   milestone=milestone.value,
                   processed=result.processed,
                   sent=result.sent,
                   skipped=result.skipped,
                   failed=result.failed)
        return result

    async def _process(self, milestone: Milestone, notice: DueNotice) -> Optional[str]:
        """
        Handle one due item.

        Returns "sent", "failed", "skipped", or None when a database error
        cut the item short.
        """
        log = logger.bind(milestone=milestone.value,
                          deadline_id=notice.deadline_id,
                          user_id=notice.user_id)

        claimed_at = self.clock()
        try:
            claimed = await self.deadlines.claim(notice.deadline_id, milestone, claimed_at, self.claim_lease)
        except SQLAlchemyError as e:
            log.error("notification_claim_failed", error=str(e))
            return None

        if not claimed:
            log.info("notification_claimed_elsewhere")
            NOTIFICATIONS_SKIPPED.labels(milestone=milestone.value, reason="claimed").inc()
            return "skipped"

        to = self.resolve_recipient(notice)
        if not to:
            log.warning("notification_no_recipient")
            NOTIFICATIONS_SKIPPED.labels(milestone=milestone.value, reason="no_recipient").inc()
            await self._release(log, notice, milestone, claimed_at)
            return "skipped"

        preview = preview_decision(
            ReceiptLite(
                merchant=notice.merchant,
                purchase_date=notice.purchase_date,
                total_cents=notice.total_cents,
            ),
            claimed_at,
            catalog=self.catalog,
        )
        message = compose_milestone_message(milestone, notice, preview)

        try:
            await self.notifier.send(to, message.subject, message.body)
        except SendError as e:
            log.error("notification_send_failed", error=str(e), status_code=e.status_code)
            NOTIFICATIONS_FAILED.labels(milestone=milestone.value).inc()
            await self._release(log, notice, milestone, claimed_at)
            return "failed"

        try:
            confirmed = await self.deadlines.confirm_sent(notice.deadline_id, milestone, self.clock())
        except SQLAlchemyError as e:
            # Delivered but not gated; the lease keeps other runs off it until it expires
            log.error("notification_confirm_failed", error=str(e))
            return None

        if not confirmed:
            log.warning("notification_gate_already_set")

        NOTIFICATIONS_SENT.labels(milestone=milestone.value).inc()
        log.info("notification_sent", suggestion=preview.suggestion.value)
        return "sent"

    async def _release(self, log, notice: DueNotice, milestone: Milestone, claimed_at: datetime):
        try:
            await self.deadlines.release_claim(notice.deadline_id, milestone, claimed_at)
        except SQLAlchemyError as e:
            log.error("notification_release_failed", error=str(e))
