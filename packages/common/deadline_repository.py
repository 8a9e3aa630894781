"""
Deadline Repository - deadline rows, milestone gates and claim leases

Every state change is a single conditional UPDATE whose affected row count
tells the caller whether it won. Nothing here reads a row and then writes
based on what it saw.

Per milestone:
- <milestone>_claimed_at: lease taken just before sending
- <milestone>_notified_at: gate, set once the message was delivered
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import structlog
from sqlalchemy import func, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from packages.common.database import DatabaseSessionManager
from packages.common.exceptions import DeadlineNotFound, DeadlineStateConflict
from packages.common.models import DeadlineRecord, ProfileRecord, ReceiptRecord
from packages.common.schemas.deadlines import (
    Deadline,
    DeadlineCounts,
    DeadlineDecision,
    DeadlineStatus,
    DueNotice,
    Milestone,
)
from packages.common.timeutils import ensure_utc

logger = structlog.get_logger()


# milestone → (gate column, claim column)
MILESTONE_COLUMNS: Dict[Milestone, Tuple[str, str]] = {
    Milestone.DUE_TODAY: ("due_today_notified_at", "due_today_claimed_at"),
    Milestone.HEADS_UP: ("heads_up_notified_at", "heads_up_claimed_at"),
}


def _columns(milestone: Milestone):
    gate_name, claim_name = MILESTONE_COLUMNS[Milestone(milestone)]
    return getattr(DeadlineRecord, gate_name), getattr(DeadlineRecord, claim_name)


def _opt_utc(value: Optional[datetime]) -> Optional[datetime]:
    return ensure_utc(value) if value is not None else None


def _to_deadline(row: DeadlineRecord) -> Deadline:
    return Deadline(
        id=row.id,
        user_id=row.user_id,
        receipt_id=row.receipt_id,
        type=row.type,
        due_at=ensure_utc(row.due_at),
        status=row.status,
        decision=row.decision,
        decision_note=row.decision_note,
        closed_at=_opt_utc(row.closed_at),
        due_today_notified_at=_opt_utc(row.due_today_notified_at),
        heads_up_notified_at=_opt_utc(row.heads_up_notified_at),
    )


class DeadlineRepository:
    """Database operations for the deadlines table"""

    def __init__(self, db: DatabaseSessionManager):
        self._db = db

    async def create_many(
        self,
        deadlines: List[Dict[str, Any]],
        session: Optional[AsyncSession] = None,
    ) -> int:
        """
        Bulk insert deadline rows; each dict needs id, user_id, receipt_id, type, due_at, created_at.

        Pass session to write inside the caller's transaction.
        """
        if not deadlines:
            return 0
        async with self._db.scoped(session) as session:
            await session.execute(insert(DeadlineRecord), deadlines)
        logger.info("deadlines_created", count=len(deadlines))
        return len(deadlines)

    async def get(self, deadline_id: str) -> Optional[Deadline]:
        async with self._db.session() as session:
            row = await session.get(DeadlineRecord, deadline_id)
            return _to_deadline(row) if row else None

    async def list_for_user(self, user_id: str, status: Optional[DeadlineStatus] = None) -> List[Deadline]:
        stmt = select(DeadlineRecord).where(DeadlineRecord.user_id == user_id)
        if status is not None:
            stmt = stmt.where(DeadlineRecord.status == DeadlineStatus(status).value)
        stmt = stmt.order_by(DeadlineRecord.due_at, DeadlineRecord.id)

        async with self._db.session() as session:
            result = await session.execute(stmt)
            return [_to_deadline(row) for row in result.scalars().all()]

    async def find_due(
        self,
        milestone: Milestone,
        start: datetime,
        end: datetime,
        limit: int = 500,
    ) -> List[DueNotice]:
        """
        Open deadlines due in [start, end) whose gate for milestone is unset.

        Receipt context and the profile email come back in the same query.
        """
        gate, _ = _columns(milestone)
        stmt = (
            select(DeadlineRecord, ReceiptRecord, ProfileRecord.email)
            .join(ReceiptRecord, ReceiptRecord.id == DeadlineRecord.receipt_id)
            .outerjoin(ProfileRecord, ProfileRecord.id == DeadlineRecord.user_id)
            .where(
                DeadlineRecord.status == DeadlineStatus.OPEN.value,
                DeadlineRecord.due_at >= ensure_utc(start),
                DeadlineRecord.due_at < ensure_utc(end),
                gate.is_(None),
            )
            .order_by(DeadlineRecord.due_at, DeadlineRecord.id)
            .limit(limit)
        )

        async with self._db.session() as session:
            result = await session.execute(stmt)
            rows = result.all()

        return [
            DueNotice(
                deadline_id=deadline.id,
                user_id=deadline.user_id,
                receipt_id=deadline.receipt_id,
                deadline_type=deadline.type,
                due_at=ensure_utc(deadline.due_at),
                merchant=receipt.merchant,
                order_id=receipt.order_id,
                purchase_date=_opt_utc(receipt.purchase_date),
                total_cents=receipt.total_cents,
                currency=receipt.currency or "USD",
                email=email,
            )
            for deadline, receipt, email in rows
        ]

    async def claim(
        self,
        deadline_id: str,
        milestone: Milestone,
        now: datetime,
        lease: timedelta,
    ) -> bool:
        """
        Take the send lease for one milestone.

        Succeeds only while the deadline is open, the gate is unset and no
        unexpired claim exists. False means another run owns the item.
        """
        gate, claim_col = _columns(milestone)
        now = ensure_utc(now)
        stmt = (
            update(DeadlineRecord)
            .where(
                DeadlineRecord.id == deadline_id,
                DeadlineRecord.status == DeadlineStatus.OPEN.value,
                gate.is_(None),
                or_(claim_col.is_(None), claim_col < now - lease),
            )
            .values({claim_col: now})
            .execution_options(synchronize_session=False)
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return result.rowcount == 1

    async def confirm_sent(self, deadline_id: str, milestone: Milestone, now: datetime) -> bool:
        """Set the gate (only if still unset) and drop the claim"""
        gate, claim_col = _columns(milestone)
        stmt = (
            update(DeadlineRecord)
            .where(DeadlineRecord.id == deadline_id, gate.is_(None))
            .values({gate: ensure_utc(now), claim_col: None})
            .execution_options(synchronize_session=False)
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return result.rowcount == 1

    async def release_claim(self, deadline_id: str, milestone: Milestone, claimed_at: datetime) -> bool:
        """Drop our claim so a later run can retry; a newer claim is left alone"""
        gate, claim_col = _columns(milestone)
        stmt = (
            update(DeadlineRecord)
            .where(
                DeadlineRecord.id == deadline_id,
                gate.is_(None),
                claim_col == ensure_utc(claimed_at),
            )
            .values({claim_col: None})
            .execution_options(synchronize_session=False)
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return result.rowcount == 1

    async def record_decision(
        self,
        deadline_id: str,
        user_id: str,
        decision: DeadlineDecision,
        note: Optional[str],
        now: datetime,
    ) -> Deadline:
        """
        open → closed with the user's keep/return decision.

        Raises:
            DeadlineNotFound: no such deadline for this user
            DeadlineStateConflict: the deadline is already closed
        """
        decision = DeadlineDecision(decision)
        stmt = (
            update(DeadlineRecord)
            .where(
                DeadlineRecord.id == deadline_id,
                DeadlineRecord.user_id == user_id,
                DeadlineRecord.status == DeadlineStatus.OPEN.value,
            )
            .values(
                status=DeadlineStatus.CLOSED.value,
                decision=decision.value,
                decision_note=note,
                closed_at=ensure_utc(now),
            )
            .execution_options(synchronize_session=False)
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            if result.rowcount != 1:
                await self._raise_missing_or_conflict(session, deadline_id, user_id)
            row = await session.get(DeadlineRecord, deadline_id)
            deadline = _to_deadline(row)

        logger.info("deadline_decision_recorded",
                   deadline_id=deadline_id,
                   user_id=user_id,
                   decision=decision.value)
        return deadline

    async def reopen(self, deadline_id: str, user_id: str) -> Deadline:
        """
        closed → open. Clears the decision, its note and both milestone gates.

        Raises:
            DeadlineNotFound: no such deadline for this user
            DeadlineStateConflict: the deadline is already open
        """
        stmt = (
            update(DeadlineRecord)
            .where(
                DeadlineRecord.id == deadline_id,
                DeadlineRecord.user_id == user_id,
                DeadlineRecord.status == DeadlineStatus.CLOSED.value,
            )
            .values(
                status=DeadlineStatus.OPEN.value,
                decision=None,
                decision_note=None,
                closed_at=None,
                due_today_notified_at=None,
                due_today_claimed_at=None,
                heads_up_notified_at=None,
                heads_up_claimed_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            if result.rowcount != 1:
                await self._raise_missing_or_conflict(session, deadline_id, user_id)
            row = await session.get(DeadlineRecord, deadline_id)
            deadline = _to_deadline(row)

        logger.info("deadline_reopened", deadline_id=deadline_id, user_id=user_id)
        return deadline

    @staticmethod
    async def _raise_missing_or_conflict(session, deadline_id: str, user_id: str):
        result = await session.execute(
            select(DeadlineRecord.status).where(
                DeadlineRecord.id == deadline_id,
                DeadlineRecord.user_id == user_id,
            )
        )
        status = result.scalar_one_or_none()
        if status is None:
            raise DeadlineNotFound(f"deadline {deadline_id} not found")
        raise DeadlineStateConflict(f"deadline {deadline_id} is {status}", status=status)

    async def count_for_user(self, user_id: str) -> DeadlineCounts:
        """Open deadlines plus kept / returned decisions, in one grouped query"""
        stmt = (
            select(DeadlineRecord.status, DeadlineRecord.decision, func.count())
            .where(DeadlineRecord.user_id == user_id)
            .group_by(DeadlineRecord.status, DeadlineRecord.decision)
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            rows = result.all()

        counts = DeadlineCounts()
        for status, decision, count in rows:
            if status == DeadlineStatus.OPEN.value:
                counts.open += count
            if decision == DeadlineDecision.KEEP.value:
                counts.kept += count
            elif decision == DeadlineDecision.RETURN.value:
                counts.returned += count
        return counts
