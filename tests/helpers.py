"""Fakes and seeding helpers shared by the test modules"""
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

from packages.common.database import DatabaseSessionManager
from packages.common.exceptions import SendError
from packages.common.models import DeadlineRecord, ProfileRecord, ReceiptRecord
from packages.common.schemas.credentials import Credential

NOW = datetime(2025, 3, 10, 9, 30, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock; call it like utcnow()"""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float):
        self.delays.append(delay)


class RecordingNotifier:
    """Notifier that records messages; fail=True rejects every send"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[Tuple[str, str, str]] = []
        self.attempts = 0

    async def send(self, to: str, subject: str, body: str) -> None:
        self.attempts += 1
        if self.fail:
            raise SendError("transport rejected message", status_code=422)
        self.sent.append((to, subject, body))


class InMemoryCredentialStore:
    def __init__(self, *credentials: Credential):
        self.rows: Dict[Tuple[str, str], Credential] = {
            (c.user_id, c.provider): c for c in credentials
        }
        self.puts: List[Credential] = []

    async def get(self, user_id: str, provider: str) -> Optional[Credential]:
        return self.rows.get((user_id, provider))

    async def put(self, credential: Credential) -> bool:
        """Conditional on the version, like CredentialRepository.put"""
        key = (credential.user_id, credential.provider)
        current = self.rows.get(key)
        if credential.version != (current.version if current else 0):
            return False
        self.rows[key] = credential.model_copy(update={"version": credential.version + 1})
        self.puts.append(credential)
        return True


@asynccontextmanager
async def sqlite_db(path):
    """Fresh schema in a temporary SQLite file"""
    db = DatabaseSessionManager()
    await db.init(f"sqlite:///{path}")
    await db.create_all()
    try:
        yield db
    finally:
        await db.close()


async def seed_receipt(
    db: DatabaseSessionManager,
    user_id: str = "user-1",
    merchant: str = "Best Buy",
    purchase_date: datetime = NOW - timedelta(days=5),
    total_cents: int = 34999,
    order_id: str = "BBY01-1001",
    email: Optional[str] = "shopper@example.com",
) -> str:
    receipt_id = str(uuid4())
    async with db.session() as session:
        if email is not None and await session.get(ProfileRecord, user_id) is None:
            session.add(ProfileRecord(id=user_id, email=email))
        session.add(ReceiptRecord(
            id=receipt_id,
            user_id=user_id,
            merchant=merchant,
            order_id=order_id,
            purchase_date=purchase_date,
            currency="USD",
            total_cents=total_cents,
            source="manual",
            created_at=NOW,
        ))
    return receipt_id


async def seed_deadline(
    db: DatabaseSessionManager,
    receipt_id: str,
    due_at: datetime,
    user_id: str = "user-1",
    type: str = "return",
    status: str = "open",
) -> str:
    deadline_id = str(uuid4())
    async with db.session() as session:
        session.add(DeadlineRecord(
            id=deadline_id,
            user_id=user_id,
            receipt_id=receipt_id,
            type=type,
            due_at=due_at,
            status=status,
            created_at=NOW,
        ))
    return deadline_id
