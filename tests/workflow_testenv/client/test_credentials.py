from __future__ import annotations

import httpx
import pytest

from workflow_testenv.client.credentials import CredentialsError, OAuthCredentials
from workflow_testenv.client.factory import ClientFactory
from workflow_testenv.config.models import CredentialsSettings

TOKEN_URL = "http://127.0.0.1:18080/auth/realms/camunda-platform/protocol/openid-connect/token"


class _IdentityStack:
    # Serves the token endpoint and a protected engine endpoint on one MockTransport.
    def __init__(self, *, expires_in: int = 60) -> None:
        self.expires_in = expires_in
        self.token_requests: list[httpx.Request] = []
        self.engine_requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/token"):
            self.token_requests.append(request)
            token = f"token-{len(self.token_requests)}"
            return httpx.Response(200, json={"access_token": token, "expires_in": self.expires_in})
        self.engine_requests.append(request)
        return httpx.Response(200, json={"brokers": []})


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _credentials(stack: _IdentityStack, clock: _Clock) -> OAuthCredentials:
    return OAuthCredentials(
        token_url=TOKEN_URL,
        client_id="zeebe",
        client_secret="zecret",
        audience="zeebe-api",
        transport=httpx.MockTransport(stack),
        clock=clock,
    )


def test_token_request_uses_client_credentials_grant() -> None:
    stack = _IdentityStack()
    assert _credentials(stack, _Clock()).access_token() == "token-1"
    form = stack.token_requests[0].content.decode()
    assert "grant_type=client_credentials" in form
    assert "client_id=zeebe" in form
    assert "client_secret=zecret" in form
    assert "audience=zeebe-api" in form


def test_token_is_cached_until_shortly_before_expiry() -> None:
    stack = _IdentityStack(expires_in=60)
    clock = _Clock()
    credentials = _credentials(stack, clock)

    assert credentials.access_token() == "token-1"
    clock.now = 49.0
    assert credentials.access_token() == "token-1"
    clock.now = 50.0
    assert credentials.access_token() == "token-2"
    assert len(stack.token_requests) == 2


def test_engine_requests_carry_bearer_token() -> None:
    stack = _IdentityStack()
    factory = ClientFactory(transport=httpx.MockTransport(stack))
    credentials = factory.build_credentials(TOKEN_URL, CredentialsSettings())
    client = factory.build_client("127.0.0.1:8080", "Foo_bar", credentials)

    client.topology()
    client.topology()

    assert [r.headers["authorization"] for r in stack.engine_requests] == ["Bearer token-1", "Bearer token-1"]
    assert len(stack.token_requests) == 1


def test_rejected_token_request_raises() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(401, json={"error": "unauthorized_client"}))
    credentials = OAuthCredentials(
        token_url=TOKEN_URL, client_id="x", client_secret="y", audience="z", transport=transport
    )
    with pytest.raises(CredentialsError):
        credentials.access_token()


def test_missing_access_token_raises() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"expires_in": 60}))
    credentials = OAuthCredentials(
        token_url=TOKEN_URL, client_id="x", client_secret="y", audience="z", transport=transport
    )
    with pytest.raises(CredentialsError):
        credentials.access_token()
