from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace

from workflow_testenv.config.models import EnvironmentSettings, VariantSettings
from workflow_testenv.topology.dag import InvalidTopologyError, build_dependency_graph, start_tiers
from workflow_testenv.topology.descriptors import (
    CONNECTORS,
    ENGINE,
    IDENTITY,
    INDEX_STORE,
    KEYCLOAK,
    OPERATE,
    RELATIONAL_STORE,
    TASKLIST,
    DescriptorSet,
    ReadinessCheck,
    ServiceDescriptor,
)

DEFAULT_IMAGES = {
    INDEX_STORE: "elasticsearch:8.13.0",
    ENGINE: "camunda/zeebe:SNAPSHOT",
    OPERATE: "camunda/operate:SNAPSHOT",
    TASKLIST: "camunda/tasklist:SNAPSHOT",
    CONNECTORS: "camunda/connectors-bundle:SNAPSHOT",
    RELATIONAL_STORE: "postgres:16-alpine",
    KEYCLOAK: "bitnami/keycloak:21.1.2",
    IDENTITY: "camunda/identity:SNAPSHOT",
}

ENGINE_GATEWAY_PORT = 26500
ENGINE_REST_PORT = 8080
ENGINE_MONITORING_PORT = 9600
KEYCLOAK_PORT = 8080
# Spring Boot management port of operate/tasklist, and of identity.
WEB_APP_MANAGEMENT_PORT = 9600
IDENTITY_MANAGEMENT_PORT = 8082


@dataclass(frozen=True, slots=True)
class TopologyVariant:
    # Which optional role groups a test environment needs.
    engine: bool = True
    index_store: bool = True
    web_apps: bool = True
    connectors: bool = False
    identity: bool = False

    @classmethod
    def minimal(cls) -> "TopologyVariant":
        return cls(web_apps=False)

    @classmethod
    def default(cls) -> "TopologyVariant":
        return cls()

    @classmethod
    def with_connectors(cls) -> "TopologyVariant":
        return cls(connectors=True)

    @classmethod
    def with_identity(cls) -> "TopologyVariant":
        return cls(identity=True)

    @classmethod
    def from_settings(cls, settings: VariantSettings) -> "TopologyVariant":
        return cls(
            engine=settings.engine,
            index_store=settings.index_store,
            web_apps=settings.web_apps,
            connectors=settings.connectors,
            identity=settings.identity,
        )

    def override(self, **toggles: bool) -> "TopologyVariant":
        unknown = set(toggles) - {"engine", "index_store", "web_apps", "connectors", "identity"}
        if unknown:
            raise InvalidTopologyError(f"Unknown variant toggles: {sorted(unknown)}")
        return replace(self, **toggles)

    def describe(self) -> str:
        enabled = [name for name in ("engine", "index_store", "web_apps", "connectors", "identity") if getattr(self, name)]
        return "+".join(enabled) or "empty"


class TopologyBuilder:
    # Selects roles for a variant and produces descriptors plus a tiered start order.
    def __init__(self, settings: EnvironmentSettings | None = None) -> None:
        self._settings = settings or EnvironmentSettings()

    def build(
        self,
        variant: TopologyVariant,
        *,
        connector_secrets: Mapping[str, str] | None = None,
    ) -> DescriptorSet:
        _validate_variant(variant)
        secrets = dict(self._settings.connector_secrets)
        secrets.update(connector_secrets or {})

        descriptors: list[ServiceDescriptor] = []
        if variant.identity:
            descriptors.extend(_identity_stack())
        if variant.index_store:
            descriptors.append(_index_store())
        if variant.engine:
            descriptors.append(_engine(variant))
        if variant.web_apps:
            descriptors.append(_operate(variant))
            descriptors.append(_tasklist(variant))
        if variant.connectors:
            descriptors.append(_connectors(variant, secrets))

        descriptors = [self._apply_overrides(d) for d in descriptors]
        graph = build_dependency_graph(descriptors)
        return DescriptorSet(
            descriptors={d.role: d for d in descriptors},
            tiers=start_tiers(graph),
        )

    def _apply_overrides(self, descriptor: ServiceDescriptor) -> ServiceDescriptor:
        role_settings = self._settings.role(descriptor.role)
        env = dict(descriptor.env)
        env.update(role_settings.env)
        return replace(
            descriptor,
            image=role_settings.image or descriptor.image,
            env=env,
            startup_timeout_seconds=role_settings.startup_timeout_seconds or descriptor.startup_timeout_seconds,
        )


def _validate_variant(variant: TopologyVariant) -> None:
    if not variant.engine:
        needs_engine = [
            name for name in ("web_apps", "connectors", "identity") if getattr(variant, name)
        ]
        if needs_engine:
            raise InvalidTopologyError(f"Variant toggles {needs_engine} require the engine role")
    if variant.web_apps and not variant.index_store:
        raise InvalidTopologyError("Web apps read from the index store; enable index_store")
    if not (variant.engine or variant.index_store):
        raise InvalidTopologyError("Variant selects no roles")


def _index_store() -> ServiceDescriptor:
    return ServiceDescriptor(
        role=INDEX_STORE,
        image=DEFAULT_IMAGES[INDEX_STORE],
        alias="elasticsearch",
        ports=(9200,),
        env={
            "xpack.security.enabled": "false",
            "discovery.type": "single-node",
        },
        readiness=ReadinessCheck.http(9200, "/_cluster/health?wait_for_status=yellow&timeout=1s"),
    )


def _engine(variant: TopologyVariant) -> ServiceDescriptor:
    env: dict[str, str] = {}
    requires: tuple[str, ...] = ()
    if variant.index_store:
        env.update(
            {
                "ZEEBE_BROKER_EXPORTERS_ELASTICSEARCH_CLASSNAME": "io.camunda.zeebe.exporter.ElasticsearchExporter",
                "ZEEBE_BROKER_EXPORTERS_ELASTICSEARCH_ARGS_URL": "http://elasticsearch:9200",
                "ZEEBE_BROKER_EXPORTERS_ELASTICSEARCH_ARGS_BULK_SIZE": "1",
            }
        )
    if variant.identity:
        # Auth config references identity, so identity must be ready first.
        requires = (IDENTITY,)
        env.update(
            {
                "ZEEBE_BROKER_GATEWAY_SECURITY_AUTHENTICATION_MODE": "identity",
                "ZEEBE_BROKER_GATEWAY_SECURITY_AUTHENTICATION_IDENTITY_ISSUERBACKENDURL": (
                    "http://keycloak:8080/auth/realms/camunda-platform"
                ),
                "ZEEBE_BROKER_GATEWAY_SECURITY_AUTHENTICATION_IDENTITY_AUDIENCE": "zeebe-api",
                "ZEEBE_BROKER_GATEWAY_SECURITY_AUTHENTICATION_IDENTITY_BASEURL": "http://identity:8084",
                "ZEEBE_BROKER_GATEWAY_MULTITENANCY_ENABLED": "true",
            }
        )
    return ServiceDescriptor(
        role=ENGINE,
        image=DEFAULT_IMAGES[ENGINE],
        alias="zeebe",
        ports=(ENGINE_GATEWAY_PORT, ENGINE_REST_PORT, ENGINE_MONITORING_PORT),
        env=env,
        requires=requires,
        graceful_shutdown=True,
        readiness=ReadinessCheck.http(ENGINE_MONITORING_PORT, "/ready"),
    )


def _web_app_env(prefix: str, variant: TopologyVariant) -> dict[str, str]:
    env = {
        f"{prefix}_ZEEBE_GATEWAYADDRESS": "zeebe:26500",
        f"{prefix}_ELASTICSEARCH_URL": "http://elasticsearch:9200",
        f"{prefix}_ZEEBEELASTICSEARCH_URL": "http://elasticsearch:9200",
    }
    if variant.identity:
        env[f"{prefix}_MULTITENANCY_ENABLED"] = "true"
        env[f"{prefix}_IDENTITY_ISSUERBACKENDURL"] = "http://keycloak:8080/auth/realms/camunda-platform"
        env[f"{prefix}_IDENTITY_BASEURL"] = "http://identity:8084"
    return env


def _operate(variant: TopologyVariant) -> ServiceDescriptor:
    return ServiceDescriptor(
        role=OPERATE,
        image=DEFAULT_IMAGES[OPERATE],
        alias="operate",
        ports=(8080, WEB_APP_MANAGEMENT_PORT),
        env=_web_app_env("CAMUNDA_OPERATE", variant),
        requires=(INDEX_STORE, ENGINE),
        readiness=ReadinessCheck.http(WEB_APP_MANAGEMENT_PORT, "/actuator/health/readiness"),
    )


def _tasklist(variant: TopologyVariant) -> ServiceDescriptor:
    env = _web_app_env("CAMUNDA_TASKLIST", variant)
    env["CAMUNDA_TASKLIST_ZEEBE_RESTADDRESS"] = "http://zeebe:8080"
    # CSRF protection would block the REST calls tests make.
    env["CAMUNDA_TASKLIST_CSRFPREVENTIONENABLED"] = "false"
    return ServiceDescriptor(
        role=TASKLIST,
        image=DEFAULT_IMAGES[TASKLIST],
        alias="tasklist",
        ports=(8080, WEB_APP_MANAGEMENT_PORT),
        env=env,
        requires=(INDEX_STORE, ENGINE),
        readiness=ReadinessCheck.http(WEB_APP_MANAGEMENT_PORT, "/actuator/health/readiness"),
    )


def _connectors(variant: TopologyVariant, secrets: Mapping[str, str]) -> ServiceDescriptor:
    env = {
        "ZEEBE_CLIENT_BROKER_GATEWAY-ADDRESS": "zeebe:26500",
        "ZEEBE_CLIENT_SECURITY_PLAINTEXT": "true",
    }
    requires: tuple[str, ...] = (ENGINE,)
    if variant.web_apps:
        env.update(
            {
                "CAMUNDA_OPERATE_CLIENT_URL": "http://operate:8080",
                "CAMUNDA_OPERATE_CLIENT_USERNAME": "demo",
                "CAMUNDA_OPERATE_CLIENT_PASSWORD": "demo",
            }
        )
        requires = (ENGINE, OPERATE)
    # Secrets are plain env entries on the connectors container.
    env.update(secrets)
    return ServiceDescriptor(
        role=CONNECTORS,
        image=DEFAULT_IMAGES[CONNECTORS],
        alias="connectors",
        ports=(8080,),
        env=env,
        requires=requires,
        readiness=ReadinessCheck.http(8080, "/actuator/health/readiness"),
    )


def _identity_stack() -> list[ServiceDescriptor]:
    postgres = ServiceDescriptor(
        role=RELATIONAL_STORE,
        image=DEFAULT_IMAGES[RELATIONAL_STORE],
        alias="postgres",
        ports=(5432,),
        env={
            "POSTGRES_DB": "bitnami_keycloak",
            "POSTGRES_USER": "bn_keycloak",
            "POSTGRES_PASSWORD": "#3]O?4RGj)DE7Z!9SA5",
        },
        readiness=ReadinessCheck.log('listening on IPv4 address "0.0.0.0", port 5432'),
    )
    keycloak = ServiceDescriptor(
        role=KEYCLOAK,
        image=DEFAULT_IMAGES[KEYCLOAK],
        alias="keycloak",
        ports=(KEYCLOAK_PORT,),
        env={
            "KEYCLOAK_HTTP_RELATIVE_PATH": "/auth",
            "KEYCLOAK_DATABASE_HOST": "postgres",
            "KEYCLOAK_DATABASE_PASSWORD": "#3]O?4RGj)DE7Z!9SA5",
            "KEYCLOAK_ADMIN_USER": "admin",
            "KEYCLOAK_ADMIN_PASSWORD": "admin",
        },
        requires=(RELATIONAL_STORE,),
        readiness=ReadinessCheck.http(KEYCLOAK_PORT, "/auth/realms/master"),
    )
    identity = ServiceDescriptor(
        role=IDENTITY,
        image=DEFAULT_IMAGES[IDENTITY],
        alias="identity",
        ports=(8084, IDENTITY_MANAGEMENT_PORT),
        env={
            "SERVER_PORT": "8084",
            "KEYCLOAK_URL": "http://keycloak:8080/auth",
            "IDENTITY_AUTH_PROVIDER_BACKEND_URL": "http://keycloak:8080/auth/realms/camunda-platform",
            "IDENTITY_DATABASE_HOST": "postgres",
            "MULTITENANCY_ENABLED": "true",
            "KEYCLOAK_INIT_ZEEBE_SECRET": "zecret",
            "KEYCLOAK_USERS_0_USERNAME": "demo",
            "KEYCLOAK_USERS_0_PASSWORD": "demo",
        },
        requires=(KEYCLOAK,),
        readiness=ReadinessCheck.http(IDENTITY_MANAGEMENT_PORT, "/actuator/health"),
    )
    return [postgres, keycloak, identity]
