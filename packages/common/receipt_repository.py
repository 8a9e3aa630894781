"""
Receipt Repository - persistence for ingested receipts

Deduplication is enforced by the database: the unique dedupe_key column plus
INSERT ... ON CONFLICT DO NOTHING makes concurrent deliveries of the same
receipt resolve to a single row. Receipts without a key are always inserted.
"""

from typing import Any, Dict, Optional

import structlog
from sqlalchemy import func, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from packages.common.database import DatabaseSessionManager
from packages.common.models import ReceiptRecord
from packages.common.schemas.receipts import StoredReceipt
from packages.common.timeutils import ensure_utc

logger = structlog.get_logger()


def _to_stored(row: ReceiptRecord) -> StoredReceipt:
    return StoredReceipt(
        id=row.id,
        user_id=row.user_id,
        merchant=row.merchant,
        order_id=row.order_id,
        purchase_date=ensure_utc(row.purchase_date) if row.purchase_date else None,
        currency=row.currency,
        total_cents=row.total_cents,
        dedupe_key=row.dedupe_key,
        source=row.source,
    )


class ReceiptRepository:
    """Database operations for the receipts table"""

    def __init__(self, db: DatabaseSessionManager):
        self._db = db

    def transaction(self):
        """Session whose writes commit together (pass it as session= to join)"""
        return self._db.session()

    async def insert_if_absent(
        self,
        values: Dict[str, Any],
        session: Optional[AsyncSession] = None,
    ) -> bool:
        """
        Insert a receipt unless its dedupe key already exists.

        Args:
            values: Column values; must include id and created_at
            session: Transaction to join; a new one is opened when omitted

        Returns:
            True if a new row was written, False if the key was taken
        """
        async with self._db.scoped(session) as session:
            if values.get("dedupe_key") is None:
                await session.execute(insert(ReceiptRecord).values(**values))
                return True

            stmt = (
                self._db.conflict_insert(ReceiptRecord)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["dedupe_key"])
            )
            result = await session.execute(stmt)
            created = result.rowcount == 1

        logger.debug("receipt_insert_if_absent",
                    receipt_id=values["id"],
                    dedupe_key=values["dedupe_key"],
                    created=created)
        return created

    async def get(self, receipt_id: str) -> Optional[StoredReceipt]:
        async with self._db.session() as session:
            row = await session.get(ReceiptRecord, receipt_id)
            return _to_stored(row) if row else None

    async def find_by_dedupe_key(self, dedupe_key: str) -> Optional[StoredReceipt]:
        async with self._db.session() as session:
            result = await session.execute(
                select(ReceiptRecord).where(ReceiptRecord.dedupe_key == dedupe_key)
            )
            row = result.scalar_one_or_none()
            return _to_stored(row) if row else None

    async def count_for_user(self, user_id: str) -> int:
        async with self._db.session() as session:
            result = await session.execute(
                select(func.count()).select_from(ReceiptRecord).where(ReceiptRecord.user_id == user_id)
            )
            return result.scalar_one()
