"""
Cached OAuth credentials for the Code Assist backend.

The interactive browser login lives outside the runtime; this module only
reads the credentials file it leaves behind (``oauth_creds.json``) and
refreshes the access token with the refresh-token grant.
"""

from __future__ import annotations

import json
import os
import time
from dataclasses import asdict, dataclass
from pathlib import Path

import httpx

from agent_runtime.errors import ConfigError, TransportError
from agent_runtime.logging import get_logger

logger = get_logger("adapters.oauth")

TOKEN_URL = "https://oauth2.googleapis.com/token"
DEFAULT_CREDENTIALS_PATH = Path("~/.agent-runtime/oauth_creds.json")

# Refresh this many seconds before the token actually expires
_EXPIRY_MARGIN = 60


@dataclass
class OAuthToken:
    access_token: str
    refresh_token: str | None = None
    token_type: str = "Bearer"
    expiry_date: int | None = None  # epoch milliseconds

    def expired(self, now: float | None = None) -> bool:
        if self.expiry_date is None:
            return False
        now = time.time() if now is None else now
        return self.expiry_date / 1000 - _EXPIRY_MARGIN <= now


class OAuthCredentials:
    """Loads, refreshes and re-caches an OAuth token from a JSON file."""

    def __init__(
        self,
        path: Path | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.path = (path or DEFAULT_CREDENTIALS_PATH).expanduser()
        self.client_id = client_id or os.environ.get("GOOGLE_OAUTH_CLIENT_ID")
        self.client_secret = client_secret or os.environ.get("GOOGLE_OAUTH_CLIENT_SECRET")
        self._client = client
        self._token: OAuthToken | None = None

    def load(self) -> OAuthToken:
        """Read the cached token file."""
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise ConfigError(
                f"No cached OAuth credentials at {self.path}; log in first."
            ) from e
        except json.JSONDecodeError as e:
            raise ConfigError(f"Corrupt OAuth credentials file {self.path}: {e}") from e
        if not data.get("access_token"):
            raise ConfigError(f"OAuth credentials file {self.path} has no access_token")
        self._token = OAuthToken(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            token_type=data.get("token_type", "Bearer"),
            expiry_date=data.get("expiry_date"),
        )
        return self._token

    def save(self, token: OAuthToken) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(asdict(token), indent=2), encoding="utf-8")
        os.chmod(self.path, 0o600)

    async def refresh(self, token: OAuthToken) -> OAuthToken:
        """Exchange the refresh token for a new access token and cache it."""
        if not token.refresh_token:
            raise ConfigError("OAuth access token expired and no refresh token is available")
        if not self.client_id:
            raise ConfigError("GOOGLE_OAUTH_CLIENT_ID is required to refresh OAuth tokens")

        form = {
            "grant_type": "refresh_token",
            "refresh_token": token.refresh_token,
            "client_id": self.client_id,
        }
        if self.client_secret:
            form["client_secret"] = self.client_secret

        client = self._client or httpx.AsyncClient()
        try:
            response = await client.post(TOKEN_URL, data=form)
        except httpx.HTTPError as e:
            raise TransportError(f"OAuth token refresh failed: {e}") from e
        finally:
            if self._client is None:
                await client.aclose()
        if response.status_code >= 400:
            raise TransportError(
                f"OAuth token refresh failed with HTTP {response.status_code}",
                status_code=response.status_code,
            )

        data = response.json()
        refreshed = OAuthToken(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token", token.refresh_token),
            token_type=data.get("token_type", "Bearer"),
            expiry_date=int((time.time() + data.get("expires_in", 3600)) * 1000),
        )
        self.save(refreshed)
        logger.info("Refreshed OAuth access token")
        self._token = refreshed
        return refreshed

    async def get_access_token(self) -> str:
        token = self._token or self.load()
        if token.expired():
            token = await self.refresh(token)
        return token.access_token

    async def auth_headers(self) -> dict[str, str]:
        token = await self.get_access_token()
        return {"Authorization": f"Bearer {token}"}
