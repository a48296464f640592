from __future__ import annotations

from collections.abc import Callable, Mapping
from threading import Lock

from workflow_testenv.client.engine import EngineClient
from workflow_testenv.client.factory import ClientFactory
from workflow_testenv.config.models import EnvironmentSettings
from workflow_testenv.context.inject import (
    CapabilityRegistry,
    InjectionContext,
    InjectionTarget,
    RunningTest,
    find_injection_targets,
    inject,
)
from workflow_testenv.context.isolation import derive_isolation_key
from workflow_testenv.context.scope_cache import ScopeCache, ScopeKey, with_connector_secrets
from workflow_testenv.lifecycle.orchestrator import EnvironmentHandle, LifecyclePolicy
from workflow_testenv.observability.logging import EventLog, build_log_sink
from workflow_testenv.runtime.contracts import ServiceRuntime
from workflow_testenv.topology.builder import TopologyBuilder, TopologyVariant
from workflow_testenv.topology.descriptors import KEYCLOAK

RuntimeFactory = Callable[[], ServiceRuntime]


def default_runtime_factory() -> ServiceRuntime:
    # Docker is only touched when an environment is actually built.
    from workflow_testenv.runtime.containers import ContainerServiceRuntime

    return ContainerServiceRuntime()


class EnvironmentHarness:
    """Composition root for test environments.

    Owns the scope cache; test-framework glue asks it for the environment
    of a scope and for injection into test instances, and tells it when a
    scope ends.
    """

    def __init__(
        self,
        settings: EnvironmentSettings | None = None,
        *,
        runtime_factory: RuntimeFactory = default_runtime_factory,
        client_factory: ClientFactory | None = None,
        log: EventLog | None = None,
    ) -> None:
        self.settings = settings or EnvironmentSettings()
        self._runtime_factory = runtime_factory
        self._runtime: ServiceRuntime | None = None
        self._runtime_lock = Lock()
        self._client_factory = client_factory or ClientFactory()
        self._log = log or EventLog(build_log_sink(self.settings.logging))
        self._builder = TopologyBuilder(self.settings)
        self._policy = LifecyclePolicy.from_settings(self.settings.lifecycle)
        self._cache: ScopeCache[EnvironmentHandle] = ScopeCache(log=self._log)
        self.registry = self._default_registry()

    @property
    def cache(self) -> ScopeCache[EnvironmentHandle]:
        return self._cache

    def default_variant(self) -> TopologyVariant:
        return TopologyVariant.from_settings(self.settings.variant)

    def environment(
        self,
        scope_key: ScopeKey,
        variant: TopologyVariant | None = None,
        *,
        connector_secrets: Mapping[str, str] | None = None,
        add_finalizer: Callable[[Callable[[], None]], None] | None = None,
    ) -> EnvironmentHandle:
        # Get or build+start the scope's environment; the release hook is registered on creation only.
        chosen = variant or self.default_variant()
        cache_key = with_connector_secrets(scope_key, connector_secrets)

        def _factory() -> EnvironmentHandle:
            descriptors = self._builder.build(chosen, connector_secrets=connector_secrets)
            handle = EnvironmentHandle(descriptors, self._get_runtime(), policy=self._policy, log=self._log)
            handle.start()
            if add_finalizer is not None:
                add_finalizer(lambda: self._cache.release(cache_key))
            return handle

        return self._cache.get_or_create(cache_key, _factory, release=lambda handle: handle.stop())

    def needs_injection(self, cls: type) -> bool:
        return bool(find_injection_targets(cls, self.registry))

    def inject(
        self,
        instance: object,
        *,
        scope_key: ScopeKey,
        test: RunningTest,
        variant: TopologyVariant | None = None,
        connector_secrets: Mapping[str, str] | None = None,
        add_finalizer: Callable[[Callable[[], None]], None] | None = None,
    ) -> list[InjectionTarget]:
        context = InjectionContext(
            test=test,
            environment=lambda: self.environment(
                scope_key,
                variant,
                connector_secrets=connector_secrets,
                add_finalizer=add_finalizer,
            ),
        )
        return inject(instance, context, self.registry)

    def client_for(self, environment: EnvironmentHandle, test: RunningTest) -> EngineClient:
        isolation_key = derive_isolation_key(test.class_name, test.method_name)
        return self._build_client(environment, isolation_key)

    def shared_client_for(self, environment: EnvironmentHandle) -> EngineClient:
        # One client for a whole class or run; commands go to the default tenant.
        return self._build_client(environment, None)

    def release(self, scope_key: ScopeKey, *, connector_secrets: Mapping[str, str] | None = None) -> None:
        self._cache.release(with_connector_secrets(scope_key, connector_secrets))

    def close(self) -> None:
        try:
            self._cache.release_all()
        finally:
            if self._runtime is not None:
                self._runtime.close()

    def _build_client(self, environment: EnvironmentHandle, isolation_key: str | None) -> EngineClient:
        credentials = None
        if environment.has_role(KEYCLOAK):
            token_url = environment.token_endpoint(self.settings.credentials.realm)
            credentials = self._client_factory.build_credentials(token_url, self.settings.credentials)
        return self._client_factory.build_client(environment.engine_rest_address(), isolation_key, credentials)

    def _get_runtime(self) -> ServiceRuntime:
        with self._runtime_lock:
            if self._runtime is None:
                self._runtime = self._runtime_factory()
            return self._runtime

    def _default_registry(self) -> CapabilityRegistry:
        registry = CapabilityRegistry()
        registry.register(EnvironmentHandle, lambda ctx: ctx.environment())
        registry.register(EngineClient, lambda ctx: self.client_for(ctx.environment(), ctx.test))
        return registry
