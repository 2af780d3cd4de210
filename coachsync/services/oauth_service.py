from __future__ import annotations

import base64
import binascii
import datetime as dt
import hashlib
import hmac
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlencode

import httpx

from coachsync.config import Settings, get_settings
from coachsync.exceptions import (
    OAuthExchangeError,
    TokenRefreshError,
    Unauthorized,
    UnsupportedProvider,
)
from coachsync.models.enums import Provider

logger = logging.getLogger(__name__)

STRAVA_AUTHORIZE_URL = "https://www.strava.com/oauth/authorize"
STRAVA_TOKEN_URL = "https://www.strava.com/oauth/token"
STRAVA_REVOKE_URL = "https://www.strava.com/oauth/deauthorize"

MYFITNESSPAL_AUTHORIZE_URL = "https://www.myfitnesspal.com/oauth2/authorize"
MYFITNESSPAL_TOKEN_URL = "https://www.myfitnesspal.com/oauth2/token"

CALLBACK_PATH = "/api/integrations/oauth/callback"

# Issued tokens are a few hundred characters
MAX_STATE_LENGTH = 1024


@dataclass(frozen=True)
class OAuthConfig:
    authorization_url: str
    token_url: str
    client_id: str
    client_secret: str
    scopes: List[str]
    revoke_url: Optional[str] = None
    extra_authorize_params: Dict[str, str] = field(default_factory=dict)


@dataclass
class TokenResponse:
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[dt.datetime] = None
    token_type: str = "Bearer"
    scopes: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class OAuthState:
    user_id: uuid.UUID
    provider: Provider
    timestamp: int
    nonce: str


def build_oauth_configs(settings: Settings) -> Dict[Provider, OAuthConfig]:
    """Per-provider OAuth configuration; one entry per Provider member."""
    configs: Dict[Provider, OAuthConfig] = {}
    for provider in Provider:
        if provider is Provider.STRAVA:
            configs[provider] = OAuthConfig(
                authorization_url=STRAVA_AUTHORIZE_URL,
                token_url=STRAVA_TOKEN_URL,
                revoke_url=STRAVA_REVOKE_URL,
                client_id=settings.strava_client_id,
                client_secret=settings.strava_client_secret,
                scopes=["read", "activity:read_all"],
                extra_authorize_params={"approval_prompt": "auto"},
            )
        elif provider is Provider.MYFITNESSPAL:
            configs[provider] = OAuthConfig(
                authorization_url=MYFITNESSPAL_AUTHORIZE_URL,
                token_url=MYFITNESSPAL_TOKEN_URL,
                client_id=settings.myfitnesspal_client_id,
                client_secret=settings.myfitnesspal_client_secret,
                scopes=["diary"],
            )
        else:
            raise UnsupportedProvider(f"No OAuth configuration for {provider}")
    return configs


# ---------------------------------------------------------------------------
# State token helpers
# ---------------------------------------------------------------------------


def _sign_state(fields: Dict[str, Any], secret: str) -> str:
    message = json.dumps(fields, separators=(",", ":"), sort_keys=True).encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def encode_state(
    user_id: uuid.UUID,
    provider: Provider,
    secret: str,
    timestamp: Optional[int] = None,
    nonce: Optional[str] = None,
) -> str:
    """Serialize {user_id, provider, timestamp, nonce} into a signed base64 token."""
    fields = {
        "user_id": str(user_id),
        "provider": provider.value,
        "timestamp": int(time.time()) if timestamp is None else int(timestamp),
        "nonce": nonce or uuid.uuid4().hex,
    }
    payload = dict(fields, sig=_sign_state(fields, secret))
    raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode_state(state: str, secret: str, max_age_seconds: Optional[int] = None) -> OAuthState:
    """Decode and verify a state token; any defect raises Unauthorized."""
    if len(state) > MAX_STATE_LENGTH:
        raise Unauthorized("Invalid state parameter")
    try:
        encoded = state.encode("ascii")
        raw = base64.urlsafe_b64decode(encoded)
        # Reject alternate encodings of the same bytes
        if base64.urlsafe_b64encode(raw) != encoded:
            raise ValueError("non-canonical state encoding")
        payload = json.loads(raw.decode("utf-8"))
        if not isinstance(payload, dict):
            raise ValueError("state is not an object")

        signature = payload.pop("sig")
        if set(payload) != {"user_id", "provider", "timestamp", "nonce"}:
            raise ValueError("unexpected state fields")
        if not isinstance(signature, str) or not hmac.compare_digest(
            signature, _sign_state(payload, secret)
        ):
            raise ValueError("state signature mismatch")

        decoded = OAuthState(
            user_id=uuid.UUID(payload["user_id"]),
            provider=Provider(payload["provider"]),
            timestamp=int(payload["timestamp"]),
            nonce=str(payload["nonce"]),
        )
    except (
        UnicodeError,
        binascii.Error,
        ValueError,
        KeyError,
        TypeError,
        AttributeError,
        RecursionError,
    ):
        raise Unauthorized("Invalid state parameter") from None

    if max_age_seconds is not None and time.time() - decoded.timestamp > max_age_seconds:
        raise Unauthorized("Invalid state parameter")
    return decoded


def _parse_token_payload(payload: Dict[str, Any]) -> TokenResponse:
    access_token = payload.get("access_token")
    if not access_token:
        raise ValueError("token response has no access_token")

    expires_at: Optional[dt.datetime] = None
    if payload.get("expires_at") is not None:
        expires_at = dt.datetime.fromtimestamp(int(payload["expires_at"]), tz=dt.timezone.utc)
    elif payload.get("expires_in") is not None:
        expires_at = dt.datetime.now(dt.timezone.utc) + dt.timedelta(
            seconds=int(payload["expires_in"])
        )

    scope = payload.get("scope") or ""
    return TokenResponse(
        access_token=access_token,
        refresh_token=payload.get("refresh_token") or None,
        expires_at=expires_at,
        token_type=payload.get("token_type") or "Bearer",
        scopes=[s for s in scope.split(",") if s],
    )


# ---------------------------------------------------------------------------
# OAuth broker
# ---------------------------------------------------------------------------


class OAuthService:
    """Stateless OAuth2 client for every supported provider."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.configs = build_oauth_configs(self.settings)
        self._client = client

    def _get_config(self, provider: Provider) -> OAuthConfig:
        config = self.configs.get(provider)
        if config is None:
            raise UnsupportedProvider(f"Integration type {provider} is not supported")
        return config

    async def _post_form(self, url: str, data: Dict[str, str]) -> httpx.Response:
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        if self._client is not None:
            return await self._client.post(url, data=data, headers=headers)
        async with httpx.AsyncClient(timeout=self.settings.http_timeout_seconds) as client:
            return await client.post(url, data=data, headers=headers)

    def generate_authorization_url(
        self,
        provider: Provider,
        user_id: uuid.UUID,
        redirect_url: Optional[str] = None,
    ) -> str:
        """Build the provider authorize URL with a signed state token."""
        config = self._get_config(provider)
        state = encode_state(user_id, provider, self.settings.oauth_state_secret)

        params = {
            "client_id": config.client_id,
            "response_type": "code",
            "redirect_uri": redirect_url or f"{self.settings.base_url}{CALLBACK_PATH}",
            "scope": ",".join(config.scopes),
            "state": state,
        }
        params.update(config.extra_authorize_params)
        return f"{config.authorization_url}?{urlencode(params, quote_via=quote)}"

    def decode_state(self, state: str) -> OAuthState:
        return decode_state(
            state,
            self.settings.oauth_state_secret,
            max_age_seconds=self.settings.oauth_state_ttl_seconds,
        )

    async def exchange_code_for_token(self, provider: Provider, code: str, state: str) -> TokenResponse:
        config = self._get_config(provider)
        data = {
            "client_id": config.client_id,
            "client_secret": config.client_secret,
            "code": code,
            "grant_type": "authorization_code",
        }
        try:
            response = await self._post_form(config.token_url, data)
        except httpx.HTTPError as e:
            logger.error(f"OAuth token exchange for {provider.value} failed: {e}")
            raise OAuthExchangeError("OAuth token exchange failed") from e

        if not response.is_success:
            logger.error(
                f"OAuth token exchange failed: {response.status_code} - {response.text}"
            )
            raise OAuthExchangeError(
                f"OAuth token exchange failed: {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            return _parse_token_payload(response.json())
        except (ValueError, TypeError) as e:
            logger.error(f"Malformed token response from {provider.value}: {e}")
            raise OAuthExchangeError("OAuth token exchange returned an invalid response") from e

    async def refresh_access_token(self, provider: Provider, refresh_token: str) -> TokenResponse:
        config = self._get_config(provider)
        data = {
            "client_id": config.client_id,
            "client_secret": config.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        try:
            response = await self._post_form(config.token_url, data)
        except httpx.HTTPError as e:
            logger.error(f"OAuth token refresh for {provider.value} failed: {e}")
            raise TokenRefreshError("OAuth token refresh failed") from e

        if not response.is_success:
            logger.error(f"OAuth token refresh failed: {response.status_code} - {response.text}")
            raise TokenRefreshError(
                f"OAuth token refresh failed: {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            return _parse_token_payload(response.json())
        except (ValueError, TypeError) as e:
            logger.error(f"Malformed refresh response from {provider.value}: {e}")
            raise TokenRefreshError("OAuth token refresh returned an invalid response") from e

    async def revoke_token(self, provider: Provider, access_token: str) -> bool:
        """Revoke a token with the provider. Returns False instead of raising."""
        config = self.configs.get(provider)
        if config is None or not config.revoke_url:
            return False

        try:
            response = await self._post_form(config.revoke_url, {"access_token": access_token})
        except httpx.HTTPError as e:
            logger.warning(f"Token revocation request to {provider.value} failed: {e}")
            return False
        return response.is_success


# Factory function for dependency injection
def create_oauth_service() -> OAuthService:
    return OAuthService()
