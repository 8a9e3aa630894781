"""
Receipt Ingestion Service - dedupe an extracted receipt, store it, open its deadlines

Flow:
1. Build a ReceiptIdentity and derive the dedupe key (skipped when the
   receipt has neither an order id nor a usable purchase day)
2. Resolve the merchant policy and plan a return deadline, plus a
   price_adjust deadline when the merchant offers one
3. In one transaction: insert-or-ignore on the key, then the deadlines.
   A duplicate delivery writes nothing; a failed deadline insert rolls the
   receipt back so a retried delivery starts over
"""
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

import structlog

from packages.common.deadline_repository import DeadlineRepository
from packages.common.receipt_repository import ReceiptRepository
from packages.common.schemas.deadlines import DeadlineStatus, DeadlineType
from packages.common.schemas.receipts import (
    ExtractedReceipt,
    IngestionResult,
    ReceiptSource,
)
from packages.common.timeutils import parse_timestamp, utcnow
from packages.domain.policies.catalog import PolicyCatalog, policy_catalog
from packages.domain.receipts.identity import (
    IdentityHasher,
    ReceiptIdentity,
    identity_hasher,
)

logger = structlog.get_logger()


class ReceiptIngestionService:
    """Turn extractor output into a stored receipt plus its deadlines"""

    def __init__(
        self,
        receipts: ReceiptRepository,
        deadlines: DeadlineRepository,
        catalog: PolicyCatalog = policy_catalog,
        hasher: IdentityHasher = identity_hasher,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.receipts = receipts
        self.deadlines = deadlines
        self.catalog = catalog
        self.hasher = hasher
        self.clock = clock

    def dedupe_key_for(self, user_id: str, extracted: ExtractedReceipt) -> Optional[str]:
        identity = ReceiptIdentity(
            user_id=user_id,
            merchant=extracted.merchant,
            order_id=extracted.order_id,
            purchase_date=extracted.purchase_date,
            currency=extracted.currency,
            total_amount=extracted.total_cents,
        )
        if not self.hasher.is_dedupable(identity):
            return None
        return self.hasher.hash(identity)

    def plan_deadlines(
        self,
        user_id: str,
        receipt_id: str,
        merchant: Optional[str],
        purchase_at: Optional[datetime],
        now: datetime,
    ) -> List[Dict[str, Any]]:
        """Deadline rows implied by the merchant policy (none without a purchase date)"""
        if purchase_at is None:
            return []

        policy = self.catalog.resolve(merchant)
        windows = [(DeadlineType.RETURN, policy.return_window_days)]
        if policy.price_adjust_window_days > 0:
            windows.append((DeadlineType.PRICE_ADJUST, policy.price_adjust_window_days))

        return [
            {
                "id": str(uuid4()),
                "user_id": user_id,
                "receipt_id": receipt_id,
                "type": deadline_type.value,
                "due_at": purchase_at + timedelta(days=days),
                "status": DeadlineStatus.OPEN.value,
                "created_at": now,
            }
            for deadline_type, days in windows
        ]

    async def ingest(
        self,
        user_id: str,
        extracted: ExtractedReceipt,
        source: ReceiptSource = ReceiptSource.MANUAL,
    ) -> IngestionResult:
        """
        Store one extracted receipt exactly once.

        Returns:
            IngestionResult; created=False means the dedupe key already existed
            and nothing was written
        """
        now = self.clock()
        dedupe_key = self.dedupe_key_for(user_id, extracted)

        if dedupe_key is not None:
            existing = await self.receipts.find_by_dedupe_key(dedupe_key)
            if existing is not None:
                logger.info("receipt_duplicate_skipped",
                           user_id=user_id,
                           receipt_id=existing.id,
                           dedupe_key=dedupe_key)
                return IngestionResult(receipt_id=existing.id, created=False, dedupe_key=dedupe_key)

        purchase_at = parse_timestamp(extracted.purchase_date)
        receipt_id = str(uuid4())
        planned = self.plan_deadlines(user_id, receipt_id, extracted.merchant, purchase_at, now)

        # Receipt and deadlines commit together: a stored dedupe key always has its deadlines
        async with self.receipts.transaction() as session:
            created = await self.receipts.insert_if_absent({
                "id": receipt_id,
                "user_id": user_id,
                "merchant": extracted.merchant,
                "order_id": extracted.order_id,
                "purchase_date": purchase_at,
                "currency": self.hasher.resolve_currency(extracted.currency),
                "total_cents": extracted.total_cents,
                "dedupe_key": dedupe_key,
                "source": ReceiptSource(source).value,
                "created_at": now,
            }, session=session)
            if created:
                await self.deadlines.create_many(planned, session=session)

        if not created:
            # Lost the insert race to a concurrent delivery
            winner = await self.receipts.find_by_dedupe_key(dedupe_key)
            logger.info("receipt_duplicate_skipped",
                       user_id=user_id,
                       receipt_id=winner.id if winner else None,
                       dedupe_key=dedupe_key)
            return IngestionResult(
                receipt_id=winner.id if winner else receipt_id,
                created=False,
                dedupe_key=dedupe_key,
            )

        logger.info("receipt_ingested",
                   user_id=user_id,
                   receipt_id=receipt_id,
                   merchant=extracted.merchant,
                   source=ReceiptSource(source).value,
                   deduped=dedupe_key is not None,
                   deadlines=len(planned))

        return IngestionResult(
            receipt_id=receipt_id,
            created=True,
            dedupe_key=dedupe_key,
            deadline_ids=[d["id"] for d in planned],
        )
