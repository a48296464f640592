from __future__ import annotations

import argparse
import sys
import time
from collections.abc import Callable
from pathlib import Path

from workflow_testenv.config.loader import ConfigError, load_settings
from workflow_testenv.config.models import EnvironmentSettings
from workflow_testenv.lifecycle.orchestrator import EnvironmentHandle, LifecyclePolicy, LifecycleError
from workflow_testenv.observability.logging import EventLog, build_log_sink
from workflow_testenv.runtime.contracts import ServiceRuntime
from workflow_testenv.topology.builder import TopologyBuilder, TopologyVariant
from workflow_testenv.topology.dag import InvalidTopologyError
from workflow_testenv.topology.descriptors import DescriptorSet


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="workflow-testenv")
    sub = parser.add_subparsers(dest="command", required=True)
    for name, help_text in (
        ("plan", "print the start tiers of a topology variant"),
        ("up", "start a topology variant and keep it running until interrupted"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--config")
        cmd.add_argument("--minimal", action="store_true", help="engine and index store only")
        cmd.add_argument("--no-web-apps", action="store_true")
        cmd.add_argument("--connectors", action="store_true")
        cmd.add_argument("--identity", action="store_true")
        cmd.add_argument("--secret", action="append", default=[], metavar="KEY=VALUE")
    return parser


def parse_args(argv: list[str]) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def resolve_variant(settings: EnvironmentSettings, args: argparse.Namespace) -> TopologyVariant:
    # CLI flags override the configured variant.
    variant = TopologyVariant.minimal() if args.minimal else TopologyVariant.from_settings(settings.variant)
    toggles: dict[str, bool] = {}
    if args.no_web_apps:
        toggles["web_apps"] = False
    if args.connectors:
        toggles["connectors"] = True
    if args.identity:
        toggles["identity"] = True
    return variant.override(**toggles) if toggles else variant


def parse_secrets(pairs: list[str]) -> dict[str, str]:
    secrets: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"--secret expects KEY=VALUE, got {pair!r}")
        secrets[key] = value
    return secrets


def format_plan(descriptors: DescriptorSet) -> list[str]:
    lines: list[str] = []
    for index, tier in enumerate(descriptors.tiers):
        lines.append(f"tier {index}:")
        for role in tier:
            descriptor = descriptors[role]
            requires = ", ".join(descriptor.requires) or "-"
            lines.append(f"  {role:<17} {descriptor.image:<40} requires: {requires}")
    return lines


def _wait_for_interrupt() -> None:
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        return


def _default_runtime() -> ServiceRuntime:
    from workflow_testenv.runtime.containers import ContainerServiceRuntime

    return ContainerServiceRuntime()


def main(
    argv: list[str] | None = None,
    *,
    runtime_factory: Callable[[], ServiceRuntime] = _default_runtime,
    wait: Callable[[], None] = _wait_for_interrupt,
) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    try:
        settings = load_settings(Path(args.config) if args.config else None)
        variant = resolve_variant(settings, args)
        descriptors = TopologyBuilder(settings).build(variant, connector_secrets=parse_secrets(args.secret))
    except (ConfigError, InvalidTopologyError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    print(f"variant: {variant.describe()}")
    for line in format_plan(descriptors):
        print(line)
    if args.command == "plan":
        return 0

    runtime = runtime_factory()
    handle = EnvironmentHandle(
        descriptors,
        runtime,
        policy=LifecyclePolicy.from_settings(settings.lifecycle),
        log=EventLog(build_log_sink(settings.logging)),
    )
    try:
        with handle:
            for role, address in handle.addresses().items():
                print(f"{role:<17} {address}")
            print("environment running; press Ctrl+C to stop")
            wait()
    except LifecycleError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    finally:
        runtime.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
