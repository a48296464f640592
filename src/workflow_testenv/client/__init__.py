from workflow_testenv.client.credentials import CredentialsError, OAuthCredentials
from workflow_testenv.client.engine import EngineClient, EngineRequestError
from workflow_testenv.client.factory import ClientFactory, build_client

__all__ = [
    "ClientFactory",
    "CredentialsError",
    "EngineClient",
    "EngineRequestError",
    "OAuthCredentials",
    "build_client",
]
