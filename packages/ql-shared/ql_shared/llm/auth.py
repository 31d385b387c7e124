"""Bearer token cache for the cloud reasoning model.

The provider hands out short-lived access tokens in exchange for client
credentials (OAuth2 client-credentials grant, HTTP Basic auth). One token is
kept per endpoint and refreshed a fixed margin before it expires.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from ..errors import AuthUnavailable

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_MARGIN_SECONDS = 300


@dataclass(frozen=True)
class AuthToken:
    """An access token and its absolute expiry (epoch seconds)."""
    value: str
    expires_at: float
    issued_at: Optional[float] = None

    def is_fresh(self, now: float, margin: float) -> bool:
        """True while the token is outside the refresh window.

        Tokens that live less than twice the margin are renewed at half
        their lifetime instead, so they are still reused in between.
        """
        if self.issued_at is not None:
            margin = min(margin, max(0.0, (self.expires_at - self.issued_at) / 2))
        return now < self.expires_at - margin


class AuthTokenCache:
    """Process-wide, time-bounded cache for one model endpoint's token.

    ``get_token()`` is the only way to read the token. When the cache is
    empty or the token is inside the refresh margin, the first caller starts
    a refresh task and every concurrent caller awaits that same task, so N
    simultaneous requests produce exactly one credential exchange. The
    cached value only changes when an exchange fully succeeds.
    """

    def __init__(
        self,
        auth_url: str,
        client_id: str,
        client_secret: str,
        scope: Optional[str] = None,
        refresh_margin: float = DEFAULT_REFRESH_MARGIN_SECONDS,
        verify: bool | str = True,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the cache.

        Args:
            auth_url: OAuth token endpoint
            client_id: Client identifier (Basic auth user)
            client_secret: Client secret (Basic auth password)
            scope: Provider-specific scope sent with the grant, if any
            refresh_margin: Seconds before expiry at which the token is renewed
            verify: TLS verification flag or CA bundle path
            timeout: Timeout for the credential exchange in seconds
            transport: Optional httpx transport (tests, proxies)
            clock: Source of "now" in epoch seconds
        """
        self.auth_url = auth_url
        self.scope = scope
        self.refresh_margin = refresh_margin
        self.verify = verify
        self.timeout = timeout
        self._credentials = (client_id, client_secret)
        self._transport = transport
        self._clock = clock
        self._token: Optional[AuthToken] = None
        self._inflight: Optional[asyncio.Future] = None

    @classmethod
    def from_settings(cls, settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> "AuthTokenCache":
        return cls(
            auth_url=settings.llm_auth_url,
            client_id=settings.llm_client_id,
            client_secret=settings.llm_client_secret,
            scope=settings.llm_auth_scope or None,
            refresh_margin=settings.token_refresh_margin_seconds,
            verify=settings.tls_verify,
            timeout=settings.auth_timeout_seconds,
            transport=transport,
        )

    async def get_token(self) -> str:
        """Return a token that is not inside its refresh window.

        Raises:
            AuthUnavailable: If the credential exchange fails.
        """
        token = self._token
        if token is not None and token.is_fresh(self._clock(), self.refresh_margin):
            return token.value

        # Single event loop: there is no suspension point between the check
        # and the assignment, so only one refresh task can be created.
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._refresh())
        # shield() keeps one cancelled caller from cancelling everyone's refresh
        token = await asyncio.shield(self._inflight)
        return token.value

    def invalidate(self) -> None:
        """Drop the cached token so the next caller refreshes it."""
        self._token = None

    async def _refresh(self) -> AuthToken:
        try:
            token = await self._exchange()
            self._token = token
            return token
        finally:
            self._inflight = None

    async def _exchange(self) -> AuthToken:
        client_id, client_secret = self._credentials
        if not client_id or not client_secret:
            raise AuthUnavailable("Model API credentials are not configured")

        form = {"grant_type": "client_credentials"}
        if self.scope:
            form["scope"] = self.scope

        headers = {
            "Accept": "application/json",
            "RqUID": str(uuid.uuid4()),
        }

        logger.info("Requesting model API token from %s", self.auth_url)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                verify=self.verify,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    self.auth_url,
                    data=form,
                    headers=headers,
                    auth=httpx.BasicAuth(client_id, client_secret),
                )
        except httpx.HTTPError as e:
            logger.error("Token request failed: %s", e)
            raise AuthUnavailable(f"Token request failed: {e}") from e

        if response.status_code != 200:
            logger.error(
                "Token endpoint returned HTTP %d: %s",
                response.status_code, response.text[:500],
            )
            raise AuthUnavailable(f"Token endpoint returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise AuthUnavailable("Token endpoint returned invalid JSON") from e

        value = data.get("access_token")
        if not value:
            raise AuthUnavailable("Token endpoint response has no access_token")

        now = self._clock()
        if "expires_in" in data:
            expires_at = now + float(data["expires_in"])
        elif "expires_at" in data:
            # Some providers return an absolute expiry in epoch milliseconds
            expires_at = float(data["expires_at"]) / 1000.0
        else:
            raise AuthUnavailable("Token endpoint response has no expiry")

        logger.info("Refreshed model API token, expires in %.0f seconds", expires_at - now)
        return AuthToken(value=value, expires_at=expires_at, issued_at=now)
