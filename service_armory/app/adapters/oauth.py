"""
OAuth2 client-credentials support shared by Battle.net and Warcraft Logs.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from shared.errors import DecodeError

from .upstream import UpstreamClient

# Refresh a service token this long before the upstream says it expires.
EXPIRY_MARGIN_SECONDS = 60.0


@dataclass(frozen=True)
class ClientCredentials:
    """Process-wide upstream credential; immutable once loaded."""

    client_id: str
    client_secret: str
    token_url: str


class ClientCredentialsTokenSource(UpstreamClient):
    """Obtains and reuses a service access token via the client-credentials grant."""

    def __init__(self, credentials: ClientCredentials, *, service_name: str, **kwargs):
        self.service_name = service_name
        super().__init__(**kwargs)
        self.credentials = credentials

        self._lock = asyncio.Lock()
        self._access_token: Optional[str] = None
        self._expires_at = 0.0

    async def token(self, timeout: Optional[float] = None) -> str:
        """Return a valid access token, fetching a new one when needed."""
        async with self._lock:
            if self._access_token and time.monotonic() < self._expires_at:
                return self._access_token

            request = self._client.build_request(
                "POST",
                self.credentials.token_url,
                data={"grant_type": "client_credentials"},
            )
            response = await self._execute(
                request,
                timeout=self._timeout(timeout),
                auth=basic_auth(self.credentials),
            )
            payload = self._decode_json(response)

            access_token = payload.get("access_token") if isinstance(payload, dict) else None
            if not access_token:
                raise DecodeError(self.service_name, "token response missing 'access_token'")

            expires_in = float(payload.get("expires_in") or 0)
            self._access_token = access_token
            self._expires_at = time.monotonic() + max(0.0, expires_in - EXPIRY_MARGIN_SECONDS)
            self.logger.info("Obtained client-credentials token", expires_in=expires_in)
            return access_token

    def invalidate(self) -> None:
        """Forget the cached token, e.g. after the upstream rejected it."""
        self._access_token = None
        self._expires_at = 0.0


def bearer(token: str) -> str:
    return f"Bearer {token}"


def basic_auth(credentials: ClientCredentials) -> httpx.BasicAuth:
    return httpx.BasicAuth(credentials.client_id, credentials.client_secret)
