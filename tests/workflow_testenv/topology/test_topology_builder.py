from __future__ import annotations

import pytest

from workflow_testenv.config.models import EnvironmentSettings, RoleSettings
from workflow_testenv.topology.builder import TopologyBuilder, TopologyVariant
from workflow_testenv.topology.dag import InvalidTopologyError
from workflow_testenv.topology.descriptors import (
    CONNECTORS,
    ENGINE,
    IDENTITY,
    INDEX_STORE,
    KEYCLOAK,
    OPERATE,
    RELATIONAL_STORE,
    TASKLIST,
    ReadinessCheck,
    ServiceDescriptor,
)


def test_minimal_variant_starts_engine_and_index_store_together() -> None:
    plan = TopologyBuilder().build(TopologyVariant.minimal())
    assert plan.tiers == [[INDEX_STORE, ENGINE]]


def test_default_variant_starts_web_apps_after_engine_and_index_store() -> None:
    plan = TopologyBuilder().build(TopologyVariant.default())
    assert plan.tiers == [[INDEX_STORE, ENGINE], [OPERATE, TASKLIST]]
    assert set(plan[OPERATE].requires) == {INDEX_STORE, ENGINE}


def test_connectors_depend_on_engine_and_primary_web_app() -> None:
    plan = TopologyBuilder().build(TopologyVariant.with_connectors())
    assert plan.tiers[-1] == [CONNECTORS]
    assert plan[CONNECTORS].requires == (ENGINE, OPERATE)
    assert plan[CONNECTORS].env["CAMUNDA_OPERATE_CLIENT_URL"] == "http://operate:8080"


def test_connectors_without_web_apps_only_need_engine() -> None:
    plan = TopologyBuilder().build(TopologyVariant(web_apps=False, connectors=True))
    assert plan[CONNECTORS].requires == (ENGINE,)
    assert plan.tiers == [[INDEX_STORE, ENGINE], [CONNECTORS]]


def test_identity_variant_orders_relational_store_identity_then_engine() -> None:
    plan = TopologyBuilder().build(TopologyVariant.with_identity())
    order = plan.start_order
    assert order.index(RELATIONAL_STORE) < order.index(KEYCLOAK) < order.index(IDENTITY) < order.index(ENGINE)
    # The index store has no identity dependency and starts in the first tier.
    assert INDEX_STORE in plan.tiers[0]
    assert plan[ENGINE].env["ZEEBE_BROKER_GATEWAY_MULTITENANCY_ENABLED"] == "true"


def test_engine_is_the_only_role_with_graceful_shutdown() -> None:
    plan = TopologyBuilder().build(TopologyVariant(connectors=True, identity=True))
    graceful = [d.role for d in plan if d.graceful_shutdown]
    assert graceful == [ENGINE]


def test_connector_secrets_are_merged_into_connector_env() -> None:
    settings = EnvironmentSettings(connector_secrets={"SLACK_TOKEN": "from-config"})
    plan = TopologyBuilder(settings).build(
        TopologyVariant.with_connectors(),
        connector_secrets={"CONNECTOR_SLACK_OUTBOUND_TYPE": "io.camunda:slack:1_disabled"},
    )
    env = plan[CONNECTORS].env
    assert env["SLACK_TOKEN"] == "from-config"
    assert env["CONNECTOR_SLACK_OUTBOUND_TYPE"] == "io.camunda:slack:1_disabled"


def test_role_overrides_replace_image_and_extend_env() -> None:
    settings = EnvironmentSettings(
        roles={
            ENGINE: RoleSettings(image="camunda/zeebe:8.6.0", env={"ZEEBE_LOG_LEVEL": "debug"}, startup_timeout_seconds=5),
        }
    )
    plan = TopologyBuilder(settings).build(TopologyVariant.minimal())
    engine = plan[ENGINE]
    assert engine.image == "camunda/zeebe:8.6.0"
    assert engine.env["ZEEBE_LOG_LEVEL"] == "debug"
    assert "ZEEBE_BROKER_EXPORTERS_ELASTICSEARCH_ARGS_URL" in engine.env
    assert engine.startup_timeout_seconds == 5


def test_engine_without_index_store_has_no_exporter() -> None:
    plan = TopologyBuilder().build(TopologyVariant(index_store=False, web_apps=False))
    assert plan.roles == [ENGINE]
    assert not any(key.startswith("ZEEBE_BROKER_EXPORTERS") for key in plan[ENGINE].env)


@pytest.mark.parametrize(
    "variant",
    [
        TopologyVariant(engine=False, connectors=True, web_apps=False),
        TopologyVariant(engine=False),
        TopologyVariant(index_store=False, web_apps=True),
        TopologyVariant(engine=False, index_store=False, web_apps=False),
    ],
)
def test_unsupported_combinations_are_invalid(variant: TopologyVariant) -> None:
    with pytest.raises(InvalidTopologyError):
        TopologyBuilder().build(variant)


def test_variant_override_rejects_unknown_toggles() -> None:
    assert TopologyVariant.minimal().override(connectors=True).connectors is True
    with pytest.raises(InvalidTopologyError):
        TopologyVariant().override(kafka=True)


@pytest.mark.parametrize(
    "variant",
    [
        TopologyVariant.minimal(),
        TopologyVariant.default(),
        TopologyVariant.with_connectors(),
        TopologyVariant.with_identity(),
    ],
)
def test_every_role_has_service_level_readiness(variant: TopologyVariant) -> None:
    for descriptor in TopologyBuilder().build(variant):
        readiness = descriptor.readiness
        assert readiness is not None, descriptor.role
        if readiness.is_http:
            assert readiness.port in descriptor.ports
            assert readiness.path.startswith("/")
        else:
            assert readiness.log_line


def test_engine_readiness_uses_monitoring_endpoint() -> None:
    plan = TopologyBuilder().build(TopologyVariant.default())
    assert plan[ENGINE].readiness == ReadinessCheck.http(9600, "/ready")
    assert plan[OPERATE].readiness == ReadinessCheck.http(9600, "/actuator/health/readiness")
    assert plan[INDEX_STORE].readiness.path.startswith("/_cluster/health")


def test_overrides_keep_readiness() -> None:
    settings = EnvironmentSettings(roles={ENGINE: RoleSettings(image="camunda/zeebe:SNAPSHOT")})
    plan = TopologyBuilder(settings).build(TopologyVariant.minimal())
    assert plan[ENGINE].readiness == ReadinessCheck.http(9600, "/ready")


def test_readiness_validation() -> None:
    with pytest.raises(ValueError):
        ReadinessCheck()
    with pytest.raises(ValueError):
        ReadinessCheck(port=9600, path="/ready", log_line="started")
    with pytest.raises(ValueError):
        ReadinessCheck.http(9600, "ready")
    assert not ReadinessCheck.log("started").is_http
    with pytest.raises(ValueError):
        ServiceDescriptor(
            role="engine",
            image="camunda/zeebe:8.5.0",
            alias="zeebe",
            ports=(26500,),
            readiness=ReadinessCheck.http(9600, "/ready"),
        )
