"""
Credential lifecycle - explicit states and named transitions

State is derived from the stored credential and the clock, never guessed
from scattered null checks at call sites:

    no_credential ──complete_authorization──▶ active
    active ──(expiry within skew)──▶ expiring ──refresh ok──▶ active
    expiring ──invalid_grant──▶ reauth_required
    any ──reauthorize──▶ reauth_required ──complete_authorization──▶ active

Transitions are pure: they take a Credential and return a new one.
"""
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from packages.common.schemas.credentials import Credential, CredentialStatus, TokenGrant
from packages.common.timeutils import ensure_utc


class CredentialState(str, Enum):
    NO_CREDENTIAL = "no_credential"
    ACTIVE = "active"
    EXPIRING = "expiring"
    REAUTH_REQUIRED = "reauth_required"


def classify(credential: Optional[Credential], now: datetime, skew: timedelta) -> CredentialState:
    """Current lifecycle state of a stored credential"""
    if credential is None:
        return CredentialState.NO_CREDENTIAL
    if credential.status == CredentialStatus.REAUTH_REQUIRED or not credential.refresh_token:
        return CredentialState.REAUTH_REQUIRED
    if credential.access_token and credential.access_token_expires_at is not None:
        if ensure_utc(credential.access_token_expires_at) - skew > ensure_utc(now):
            return CredentialState.ACTIVE
    return CredentialState.EXPIRING


def apply_refresh(credential: Credential, grant: TokenGrant, now: datetime) -> Credential:
    """expiring → active with a freshly refreshed access token"""
    return credential.model_copy(update={
        "access_token": grant.access_token,
        "access_token_expires_at": grant.expires_at,
        # Providers may omit scope on refresh; keep what was granted
        "granted_scopes": grant.granted_scopes or credential.granted_scopes,
        # Some providers rotate refresh tokens
        "refresh_token": grant.refresh_token or credential.refresh_token,
        "status": CredentialStatus.ACTIVE,
        "updated_at": now,
    })


def require_reauthorization(credential: Credential, now: datetime) -> Credential:
    """
    any → reauth_required.

    The refresh token stays so an in-flight authorization callback can still
    overwrite it; the access token is dropped immediately.
    """
    return credential.model_copy(update={
        "access_token": None,
        "access_token_expires_at": None,
        "status": CredentialStatus.REAUTH_REQUIRED,
        "updated_at": now,
    })


def empty_reauth_credential(user_id: str, provider: str, now: datetime) -> Credential:
    """Placeholder row for a user who has never connected"""
    return Credential(
        user_id=user_id,
        provider=provider,
        refresh_token=None,
        access_token=None,
        access_token_expires_at=None,
        granted_scopes=[],
        status=CredentialStatus.REAUTH_REQUIRED,
        updated_at=now,
    )


def authorize(
    credential: Optional[Credential],
    user_id: str,
    provider: str,
    grant: TokenGrant,
    now: datetime,
) -> Credential:
    """no_credential / reauth_required → active after a completed consent flow"""
    previous_refresh = credential.refresh_token if credential else None
    return Credential(
        user_id=user_id,
        provider=provider,
        refresh_token=grant.refresh_token or previous_refresh,
        access_token=grant.access_token,
        access_token_expires_at=grant.expires_at,
        granted_scopes=grant.granted_scopes,
        status=CredentialStatus.ACTIVE,
        updated_at=now,
        version=credential.version if credential else 0,
    )
