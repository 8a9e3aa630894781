"""
Profile Repository - notification addresses per user
"""

from typing import Optional

from sqlalchemy import select

from packages.common.database import DatabaseSessionManager
from packages.common.models import ProfileRecord


class ProfileRepository:

    def __init__(self, db: DatabaseSessionManager):
        self._db = db

    async def get_email(self, user_id: str) -> Optional[str]:
        async with self._db.session() as session:
            result = await session.execute(
                select(ProfileRecord.email).where(ProfileRecord.id == user_id)
            )
            return result.scalar_one_or_none()

    async def set_email(self, user_id: str, email: Optional[str]) -> None:
        async with self._db.session() as session:
            row = await session.get(ProfileRecord, user_id)
            if row is None:
                session.add(ProfileRecord(id=user_id, email=email))
            else:
                row.email = email
