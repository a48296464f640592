from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from workflow_testenv.client.engine import EngineClient
from workflow_testenv.config.loader import load_settings
from workflow_testenv.context.inject import RunningTest
from workflow_testenv.context.scope_cache import ScopeKey, class_scope_key, session_scope_key
from workflow_testenv.harness import EnvironmentHarness
from workflow_testenv.lifecycle.orchestrator import EnvironmentHandle
from workflow_testenv.topology.builder import TopologyVariant

HARNESS_KEY = pytest.StashKey[EnvironmentHarness]()

MARKER = "testenv"


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("testenv", "workflow engine test environments")
    group.addoption(
        "--testenv-config",
        action="store",
        default=None,
        help="YAML settings file for test environments (default: $TESTENV_CONFIG)",
    )
    group.addoption(
        "--testenv-scope",
        action="store",
        choices=["class", "session"],
        default=None,
        help="Share one environment per test class or across the whole run",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        f"{MARKER}(web_apps=..., connectors=..., identity=..., connector_secrets={{...}}): "
        "request a topology variant for the test class",
    )


def pytest_unconfigure(config: pytest.Config) -> None:
    harness = config.stash.get(HARNESS_KEY, None)
    if harness is not None:
        harness.close()


def get_harness(config: pytest.Config) -> EnvironmentHarness:
    # Built on first use so runs without environment tests never read settings.
    harness = config.stash.get(HARNESS_KEY, None)
    if harness is None:
        path = config.getoption("--testenv-config")
        settings = load_settings(Path(path) if path else None)
        scope = config.getoption("--testenv-scope")
        if scope:
            settings = settings.model_copy(update={"scope": scope})
        harness = EnvironmentHarness(settings)
        config.stash[HARNESS_KEY] = harness
    return harness


def running_test(item: Any) -> RunningTest:
    cls = getattr(item, "cls", None)
    if cls is not None:
        class_name = cls.__name__
    else:
        class_name = item.module.__name__.rsplit(".", 1)[-1]
    # originalname drops the parametrize suffix, matching the declared method name.
    method_name = getattr(item, "originalname", None) or item.name
    return RunningTest(class_name=class_name, method_name=method_name)


def requested_variant(item: Any, default: TopologyVariant) -> tuple[TopologyVariant, dict[str, str]]:
    marker = item.get_closest_marker(MARKER)
    if marker is None:
        return default, {}
    toggles = dict(marker.kwargs)
    secrets = toggles.pop("connector_secrets", None) or {}
    return default.override(**toggles), dict(secrets)


def scope_for(item: Any, scope: str, variant: TopologyVariant) -> tuple[ScopeKey, Callable[[Callable[[], None]], None]]:
    # Scope key plus the finalizer registration of the node that owns the scope.
    if scope == "session":
        return session_scope_key(variant), item.session.addfinalizer
    owner = item.getparent(pytest.Class) or item.getparent(pytest.Module)
    return class_scope_key(owner.nodeid, variant), owner.addfinalizer


@pytest.fixture(autouse=True)
def _testenv_inject(request: pytest.FixtureRequest) -> None:
    instance = request.instance
    if instance is None:
        return
    harness = get_harness(request.config)
    if not harness.needs_injection(type(instance)):
        return
    item = request.node
    variant, secrets = requested_variant(item, harness.default_variant())
    scope_key, add_finalizer = scope_for(item, harness.settings.scope, variant)
    targets = harness.inject(
        instance,
        scope_key=scope_key,
        test=running_test(item),
        variant=variant,
        connector_secrets=secrets,
        add_finalizer=add_finalizer,
    )
    for target in targets:
        value = getattr(instance, target.name, None)
        if isinstance(value, EngineClient):
            request.addfinalizer(value.close)


def scope_environment(request: pytest.FixtureRequest) -> EnvironmentHandle:
    # request.node is the test item, or the class/module node for class-scoped fixtures.
    harness = get_harness(request.config)
    node = request.node
    variant, secrets = requested_variant(node, harness.default_variant())
    scope_key, add_finalizer = scope_for(node, harness.settings.scope, variant)
    return harness.environment(scope_key, variant, connector_secrets=secrets, add_finalizer=add_finalizer)


@pytest.fixture
def testenv(request: pytest.FixtureRequest) -> EnvironmentHandle:
    return scope_environment(request)


@pytest.fixture
def engine_client(request: pytest.FixtureRequest, testenv: EnvironmentHandle) -> Iterator[EngineClient]:
    harness = get_harness(request.config)
    client = harness.client_for(testenv, running_test(request.node))
    yield client
    client.close()


@pytest.fixture(scope="class")
def class_engine_client(request: pytest.FixtureRequest) -> Iterator[EngineClient]:
    # Shared by every test of a class; not tenant-scoped.
    harness = get_harness(request.config)
    client = harness.shared_client_for(scope_environment(request))
    yield client
    client.close()
