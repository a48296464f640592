from __future__ import annotations

import json

import httpx
import pytest

from workflow_testenv.client.engine import EngineClient, EngineRequestError
from workflow_testenv.client.factory import ClientFactory


class _Recorder:
    # MockTransport handler that records requests and replays canned responses.
    def __init__(self, response: httpx.Response | None = None) -> None:
        self.requests: list[httpx.Request] = []
        self._response = response

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self._response is not None:
            return self._response
        return httpx.Response(200, json={"key": "2251799813685249"})


def _client(recorder: _Recorder, key: str = "OrderTest_ship") -> EngineClient:
    return EngineClient("127.0.0.1:8080", isolation_key=key, transport=httpx.MockTransport(recorder))


def test_deploy_resource_is_tagged_with_isolation_key() -> None:
    recorder = _Recorder()
    with _client(recorder) as client:
        client.deploy_resource("order.bpmn", "<definitions/>")

    request = recorder.requests[0]
    assert request.method == "POST"
    assert request.url == "http://127.0.0.1:8080/v2/deployments"
    body = request.content
    assert b'name="tenantId"' in body
    assert b"OrderTest_ship" in body
    assert b'filename="order.bpmn"' in body
    assert b"<definitions/>" in body


def test_create_process_instance_body() -> None:
    recorder = _Recorder()
    client = _client(recorder)
    result = client.create_process_instance("order", variables={"id": 7}, await_completion=True)

    payload = json.loads(recorder.requests[0].content)
    assert payload == {
        "processDefinitionId": "order",
        "processDefinitionVersion": -1,
        "variables": {"id": 7},
        "tenantId": "OrderTest_ship",
        "awaitCompletion": True,
    }
    assert result == {"key": "2251799813685249"}


def test_search_scopes_filter_to_tenant() -> None:
    recorder = _Recorder(httpx.Response(200, json={"items": [{"processInstanceKey": 1}]}))
    client = _client(recorder)
    items = client.search_process_instances(criteria={"processDefinitionId": "order"})

    payload = json.loads(recorder.requests[0].content)
    assert payload == {"filter": {"processDefinitionId": "order", "tenantId": "OrderTest_ship"}}
    assert items == [{"processInstanceKey": 1}]


def test_complete_user_task_accepts_empty_response() -> None:
    recorder = _Recorder(httpx.Response(204))
    client = _client(recorder)
    assert client.complete_user_task(42, variables={"approved": True}) is None
    assert recorder.requests[0].url.path == "/v2/user-tasks/42/completion"


def test_topology_passes_through_https_address() -> None:
    recorder = _Recorder(httpx.Response(200, json={"brokers": []}))
    client = EngineClient("https://engine.local", isolation_key="k", transport=httpx.MockTransport(recorder))
    assert client.topology() == {"brokers": []}
    assert str(recorder.requests[0].url) == "https://engine.local/v2/topology"


def test_error_status_raises_engine_request_error() -> None:
    recorder = _Recorder(httpx.Response(400, text="unknown process"))
    client = _client(recorder)
    with pytest.raises(EngineRequestError) as excinfo:
        client.create_process_instance("missing")
    assert excinfo.value.status_code == 400
    assert excinfo.value.operation == "create_process_instance"
    assert "unknown process" in excinfo.value.detail


def test_transport_error_raises_engine_request_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = EngineClient("127.0.0.1:1", isolation_key="k", transport=httpx.MockTransport(handler))
    with pytest.raises(EngineRequestError) as excinfo:
        client.topology()
    assert excinfo.value.status_code is None


def test_close_and_validation() -> None:
    client = _client(_Recorder())
    assert client.tenant_id == "OrderTest_ship"
    assert not client.closed
    client.close()
    assert client.closed
    with pytest.raises(ValueError):
        EngineClient("", isolation_key="k")
    with pytest.raises(ValueError):
        EngineClient("127.0.0.1:8080", isolation_key="")


def test_factory_builds_unauthenticated_client() -> None:
    recorder = _Recorder()
    client = ClientFactory(transport=httpx.MockTransport(recorder)).build_client("127.0.0.1:8080", "Foo_bar")
    client.topology()
    assert client.isolation_key == "Foo_bar"
    assert client.auth is None
    assert "authorization" not in recorder.requests[0].headers


def test_activate_jobs_is_limited_to_the_tenant() -> None:
    jobs = [{"jobKey": 7, "type": "ship", "tenantId": "OrderTest_ship"}]
    recorder = _Recorder(httpx.Response(200, json={"jobs": jobs}))
    client = _client(recorder)

    assert client.activate_jobs("ship", max_jobs=3, timeout_ms=5_000) == jobs

    request = recorder.requests[0]
    assert request.url.path == "/v2/jobs/activation"
    assert json.loads(request.content) == {
        "type": "ship",
        "maxJobsToActivate": 3,
        "timeout": 5_000,
        "worker": "workflow-testenv",
        "tenantIds": ["OrderTest_ship"],
    }


def test_activate_jobs_without_jobs_returns_empty_list() -> None:
    client = _client(_Recorder(httpx.Response(200, json={})))
    assert client.activate_jobs("ship") == []


def test_complete_and_fail_job() -> None:
    recorder = _Recorder(httpx.Response(204))
    client = _client(recorder)

    client.complete_job(7, variables={"shipped": True})
    client.fail_job("8", retries=2, error_message="carrier down")

    complete, fail = recorder.requests
    assert complete.url.path == "/v2/jobs/7/completion"
    assert json.loads(complete.content) == {"variables": {"shipped": True}}
    assert fail.url.path == "/v2/jobs/8/failure"
    assert json.loads(fail.content) == {"retries": 2, "errorMessage": "carrier down"}


def test_client_without_isolation_key_uses_default_tenant() -> None:
    recorder = _Recorder(httpx.Response(200, json={"jobs": []}))
    client = EngineClient("127.0.0.1:8080", transport=httpx.MockTransport(recorder))

    client.create_process_instance("order")
    client.activate_jobs("ship")
    client.search_process_instances()
    client.deploy_resource("order.bpmn", "<definitions/>")

    create, activate, search, deploy = recorder.requests
    assert "tenantId" not in json.loads(create.content)
    assert "tenantIds" not in json.loads(activate.content)
    assert json.loads(search.content) == {"filter": {}}
    assert b'name="tenantId"' not in deploy.content
    assert client.tenant_id is None
