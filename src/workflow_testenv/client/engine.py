from __future__ import annotations

from typing import Any

import httpx


class EngineRequestError(RuntimeError):
    # Raised when the engine rejects a command or query.
    def __init__(self, operation: str, status_code: int | None, detail: str) -> None:
        super().__init__(f"{operation} failed ({status_code}): {detail}")
        self.operation = operation
        self.status_code = status_code
        self.detail = detail


class EngineClient:
    # REST client for the workflow engine. With an isolation key, every command, query and
    # job activation is scoped to that tenant; without one, the engine's default tenant is used.
    DEFAULT_WORKER = "workflow-testenv"

    def __init__(
        self,
        address: str,
        *,
        isolation_key: str | None = None,
        auth: httpx.Auth | None = None,
        transport: httpx.BaseTransport | None = None,
        timeout: float = 30.0,
    ) -> None:
        if not address:
            raise ValueError("EngineClient requires a non-empty address")
        if isolation_key is not None and not isolation_key:
            raise ValueError("EngineClient isolation key must be non-empty when given")
        self.address = address
        self.isolation_key = isolation_key
        self.auth = auth
        base_url = address if address.startswith(("http://", "https://")) else f"http://{address}"
        self._client = httpx.Client(
            base_url=base_url,
            auth=auth,
            transport=transport,
            timeout=timeout,
        )

    @property
    def tenant_id(self) -> str | None:
        return self.isolation_key

    @property
    def closed(self) -> bool:
        return self._client.is_closed

    def topology(self) -> dict[str, Any]:
        return self._send("topology", "GET", "/v2/topology")

    def deploy_resource(self, name: str, content: bytes | str) -> dict[str, Any]:
        data = content.encode("utf-8") if isinstance(content, str) else content
        return self._send(
            "deploy_resource",
            "POST",
            "/v2/deployments",
            files={"resources": (name, data, "application/octet-stream")},
            data=self._tenant({}),
        )

    def create_process_instance(
        self,
        process_id: str,
        *,
        variables: dict[str, Any] | None = None,
        await_completion: bool = False,
        version: int = -1,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "processDefinitionId": process_id,
            "processDefinitionVersion": version,
            "variables": variables or {},
        }
        if await_completion:
            body["awaitCompletion"] = True
        return self._send("create_process_instance", "POST", "/v2/process-instances", json=self._tenant(body))

    def complete_user_task(self, user_task_key: int | str, *, variables: dict[str, Any] | None = None) -> None:
        self._send(
            "complete_user_task",
            "POST",
            f"/v2/user-tasks/{user_task_key}/completion",
            json={"variables": variables or {}},
        )

    def activate_jobs(
        self,
        job_type: str,
        *,
        max_jobs: int = 10,
        timeout_ms: int = 30_000,
        worker: str = DEFAULT_WORKER,
    ) -> list[dict[str, Any]]:
        # Job workers only see jobs of their own tenant.
        body: dict[str, Any] = {
            "type": job_type,
            "maxJobsToActivate": max_jobs,
            "timeout": timeout_ms,
            "worker": worker,
        }
        if self.isolation_key is not None:
            body["tenantIds"] = [self.isolation_key]
        payload = self._send("activate_jobs", "POST", "/v2/jobs/activation", json=body)
        jobs = payload.get("jobs", [])
        return jobs if isinstance(jobs, list) else []

    def complete_job(self, job_key: int | str, *, variables: dict[str, Any] | None = None) -> None:
        self._send("complete_job", "POST", f"/v2/jobs/{job_key}/completion", json={"variables": variables or {}})

    def fail_job(self, job_key: int | str, *, retries: int, error_message: str = "") -> None:
        self._send(
            "fail_job",
            "POST",
            f"/v2/jobs/{job_key}/failure",
            json={"retries": retries, "errorMessage": error_message},
        )

    def search_process_instances(self, criteria: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        payload = self._send(
            "search_process_instances",
            "POST",
            "/v2/process-instances/search",
            json={"filter": self._tenant(dict(criteria or {}))},
        )
        items = payload.get("items", [])
        return items if isinstance(items, list) else []

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "EngineClient":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"EngineClient(address={self.address!r}, isolation_key={self.isolation_key!r})"

    def _tenant(self, body: dict[str, Any]) -> dict[str, Any]:
        if self.isolation_key is not None:
            body.setdefault("tenantId", self.isolation_key)
        return body

    def _send(self, operation: str, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise EngineRequestError(operation, None, str(exc)) from exc
        if response.is_error:
            raise EngineRequestError(operation, response.status_code, response.text)
        if response.status_code == 204 or not response.content:
            return {}
        body = response.json()
        return body if isinstance(body, dict) else {"items": body}
