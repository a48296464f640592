from __future__ import annotations

import time
from collections.abc import Callable, Generator
from threading import Lock

import httpx


class CredentialsError(RuntimeError):
    # Raised when the identity stack refuses to issue an access token.
    pass


class OAuthCredentials(httpx.Auth):
    """Client-credentials token provider for engine requests.

    Fetches a bearer token from the identity stack's token endpoint on first
    use and re-fetches it shortly before it expires.
    """

    # Refresh slightly early so in-flight requests never carry an expired token.
    EXPIRY_MARGIN_SECONDS = 10.0

    def __init__(
        self,
        *,
        token_url: str,
        client_id: str,
        client_secret: str,
        audience: str,
        transport: httpx.BaseTransport | None = None,
        timeout: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.audience = audience
        self._transport = transport
        self._timeout = timeout
        self._clock = clock
        self._lock = Lock()
        self._token: str | None = None
        self._expires_at = 0.0

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = f"Bearer {self.access_token()}"
        yield request

    def access_token(self) -> str:
        with self._lock:
            if self._token is None or self._clock() >= self._expires_at:
                self._token, lifetime = self._fetch_token()
                self._expires_at = self._clock() + max(lifetime - self.EXPIRY_MARGIN_SECONDS, 0.0)
            return self._token

    def _fetch_token(self) -> tuple[str, float]:
        form = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "audience": self.audience,
        }
        with httpx.Client(transport=self._transport, timeout=self._timeout) as client:
            try:
                response = client.post(self.token_url, data=form)
                response.raise_for_status()
            except httpx.HTTPError as exc:
                raise CredentialsError(f"Token request to {self.token_url} failed: {exc}") from exc
        payload = response.json()
        token = payload.get("access_token")
        if not isinstance(token, str) or not token:
            raise CredentialsError("Token response has no access_token")
        return token, float(payload.get("expires_in", 300))
