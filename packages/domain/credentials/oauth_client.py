"""
Google OAuth client - token refresh, consent URL, authorization-code exchange

Error mapping:
- 4xx with error=invalid_grant → ReauthorizeNeeded (refresh token revoked/expired)
- any other non-2xx → UpstreamError(status_code) (429/5xx get retried upstream)
- 2xx without a usable access_token/expires_in → UpstreamError (malformed, no status)
"""
import base64
import json
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx
import structlog

from packages.common.exceptions import ReauthorizeNeeded, UpstreamError
from packages.common.schemas.credentials import TokenGrant

logger = structlog.get_logger()


def normalize_scopes(value: Any) -> List[str]:
    """Space-delimited string or list → de-duplicated list, order kept"""
    if not value:
        return []
    if isinstance(value, str):
        items = value.split()
    elif isinstance(value, (list, tuple)):
        items = [s.strip() for s in value if isinstance(s, str)]
    else:
        return []
    return list(dict.fromkeys(s for s in items if s))


def parse_expires_in(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        parsed = int(value.strip())
        return parsed if parsed > 0 else None
    return None


def encode_state(user_id: str) -> str:
    """OAuth state parameter carrying the user id (base64url JSON, unpadded)"""
    raw = json.dumps({"user": user_id}, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_state(state: Optional[str]) -> Optional[str]:
    """User id from an OAuth state parameter, or None when it is malformed"""
    if not state:
        return None
    padded = state + "=" * (-len(state) % 4)
    try:
        payload = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    except (ValueError, UnicodeError):
        return None
    user = payload.get("user") if isinstance(payload, dict) else None
    if isinstance(user, str) and user.strip():
        return user.strip()
    return None


class GoogleOAuthClient:
    """Thin async client for Google's OAuth 2.0 token endpoints"""

    provider = "google"

    def __init__(
        self,
        http: httpx.AsyncClient,
        client_id: Optional[str],
        client_secret: Optional[str],
        redirect_uri: Optional[str] = None,
        token_endpoint: str = "https://oauth2.googleapis.com/token",
        auth_endpoint: str = "https://accounts.google.com/o/oauth2/v2/auth",
        scopes: Optional[List[str]] = None,
    ):
        self.http = http
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.token_endpoint = token_endpoint
        self.auth_endpoint = auth_endpoint
        self.scopes = scopes or []

    def _require_configured(self):
        if not self.client_id or not self.client_secret:
            raise UpstreamError("Google OAuth client is not configured (GOOGLE_CLIENT_ID/SECRET)")

    def authorization_url(self, state: str) -> str:
        """Consent URL that yields a refresh token (offline + forced prompt)"""
        self._require_configured()
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri or "",
            "response_type": "code",
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "false",
            "scope": " ".join(self.scopes),
            "state": state,
        }
        return f"{self.auth_endpoint}?{urlencode(params)}"

    async def refresh(self, refresh_token: str, now: datetime) -> TokenGrant:
        """Exchange a refresh token for a new access token"""
        self._require_configured()
        return await self._token_request({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }, now)

    async def exchange_code(self, code: str, now: datetime) -> TokenGrant:
        """Exchange an authorization code from the consent callback"""
        self._require_configured()
        return await self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri or "",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }, now)

    async def _token_request(self, form: Dict[str, Any], now: datetime) -> TokenGrant:
        response = await self.http.post(
            self.token_endpoint,
            data=form,
            headers={"Accept": "application/json"},
        )

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        if response.status_code >= 400:
            error_code = payload.get("error")
            logger.warning("oauth_token_request_failed",
                          provider=self.provider,
                          grant_type=form.get("grant_type"),
                          status_code=response.status_code,
                          error=error_code)
            if error_code == "invalid_grant":
                raise ReauthorizeNeeded("refresh token rejected by Google", provider=self.provider)
            description = payload.get("error_description") or "token request failed"
            raise UpstreamError(f"Google token endpoint: {description}", status_code=response.status_code)

        access_token = payload.get("access_token")
        expires_in = parse_expires_in(payload.get("expires_in"))
        if not isinstance(access_token, str) or not access_token or expires_in is None:
            raise UpstreamError("Google token response missing access_token or expires_in")

        refresh_token = payload.get("refresh_token")
        return TokenGrant(
            access_token=access_token,
            expires_at=now + timedelta(seconds=expires_in),
            refresh_token=refresh_token if isinstance(refresh_token, str) and refresh_token else None,
            granted_scopes=normalize_scopes(payload.get("scope")),
        )
