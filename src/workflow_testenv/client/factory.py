from __future__ import annotations

import httpx

from workflow_testenv.client.credentials import OAuthCredentials
from workflow_testenv.client.engine import EngineClient
from workflow_testenv.config.models import CredentialsSettings


class ClientFactory:
    # Builds per-test engine clients; retries/backoff are left to the client itself.
    def __init__(self, *, transport: httpx.BaseTransport | None = None, timeout: float = 30.0) -> None:
        self._transport = transport
        self._timeout = timeout

    def build_client(
        self,
        address: str,
        isolation_key: str | None,
        credentials: OAuthCredentials | None = None,
    ) -> EngineClient:
        # Plain (unauthenticated) channel unless a credential provider is given.
        return EngineClient(
            address,
            isolation_key=isolation_key,
            auth=credentials,
            transport=self._transport,
            timeout=self._timeout,
        )

    def build_credentials(self, token_url: str, settings: CredentialsSettings) -> OAuthCredentials:
        return OAuthCredentials(
            token_url=token_url,
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            audience=settings.audience,
            transport=self._transport,
        )


def build_client(
    address: str,
    isolation_key: str | None,
    credentials: OAuthCredentials | None = None,
) -> EngineClient:
    return ClientFactory().build_client(address, isolation_key, credentials)
