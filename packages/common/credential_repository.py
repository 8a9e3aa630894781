"""
Credential Repository - one connector credential per (user, provider)
"""

from typing import Optional

import structlog
from sqlalchemy import update

from packages.common.database import DatabaseSessionManager
from packages.common.models import CredentialRecord
from packages.common.schemas.credentials import Credential
from packages.common.timeutils import ensure_utc

logger = structlog.get_logger()


class CredentialRepository:
    """Load and store Credential snapshots with optimistic versioning"""

    def __init__(self, db: DatabaseSessionManager):
        self._db = db

    async def get(self, user_id: str, provider: str) -> Optional[Credential]:
        async with self._db.session() as session:
            row = await session.get(CredentialRecord, (user_id, provider))
            if row is None:
                return None
            return Credential(
                user_id=row.user_id,
                provider=row.provider,
                refresh_token=row.refresh_token,
                access_token=row.access_token,
                access_token_expires_at=(
                    ensure_utc(row.access_token_expires_at)
                    if row.access_token_expires_at else None
                ),
                granted_scopes=list(row.granted_scopes or []),
                status=row.status,
                updated_at=ensure_utc(row.updated_at) if row.updated_at else None,
                version=row.version,
            )

    async def put(self, credential: Credential) -> bool:
        """
        Write credential if the row is still at the version it was read at.

        A credential with version 0 is inserted only when no row exists yet;
        any other version updates the row only while it still holds that
        version, and bumps it.

        Returns:
            True if written, False if a concurrent writer got there first
        """
        values = {
            "refresh_token": credential.refresh_token,
            "access_token": credential.access_token,
            "access_token_expires_at": credential.access_token_expires_at,
            "granted_scopes": list(credential.granted_scopes),
            "status": credential.status.value,
            "updated_at": credential.updated_at,
        }

        if credential.version == 0:
            stmt = (
                self._db.conflict_insert(CredentialRecord)
                .values(user_id=credential.user_id, provider=credential.provider, version=1, **values)
                .on_conflict_do_nothing(index_elements=["user_id", "provider"])
            )
        else:
            stmt = (
                update(CredentialRecord)
                .where(
                    CredentialRecord.user_id == credential.user_id,
                    CredentialRecord.provider == credential.provider,
                    CredentialRecord.version == credential.version,
                )
                .values(version=CredentialRecord.version + 1, **values)
                .execution_options(synchronize_session=False)
            )

        async with self._db.session() as session:
            result = await session.execute(stmt)
            stored = result.rowcount == 1

        logger.debug("credential_stored",
                    user_id=credential.user_id,
                    provider=credential.provider,
                    status=credential.status.value,
                    read_version=credential.version,
                    stored=stored)
        return stored
