from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from workflow_testenv.topology.descriptors import ServiceDescriptor


class InvalidTopologyError(ValueError):
    # Raised when a requested role combination has no valid dependency graph.
    pass


class MissingDependencyError(InvalidTopologyError):
    # Raised when a role requires another role that is not part of the topology.
    pass


class CycleError(InvalidTopologyError):
    # Raised when role dependencies form a directed cycle.
    pass


@dataclass(frozen=True, slots=True)
class DependencyGraph:
    # Roles in declaration order plus (dependency, dependent) edges.
    roles: list[str]
    edges: list[tuple[str, str]]

    def dependencies_of(self, role: str) -> list[str]:
        return [src for src, dst in self.edges if dst == role]


def build_dependency_graph(descriptors: Sequence[ServiceDescriptor]) -> DependencyGraph:
    if not descriptors:
        raise InvalidTopologyError("Topology must contain at least one role")

    by_role: dict[str, ServiceDescriptor] = {}
    for descriptor in descriptors:
        if descriptor.role in by_role:
            raise InvalidTopologyError(f"Duplicate role '{descriptor.role}'")
        by_role[descriptor.role] = descriptor

    # Edges in deterministic order (declaration order of dependents, then of requires).
    edges: list[tuple[str, str]] = []
    for descriptor in descriptors:
        for dependency in descriptor.requires:
            if dependency not in by_role:
                raise MissingDependencyError(
                    f"Role '{descriptor.role}' requires '{dependency}' which is not in the topology"
                )
            edge = (dependency, descriptor.role)
            if edge not in edges:
                edges.append(edge)

    if any(src == dst for src, dst in edges):
        raise CycleError("Self-loop detected in role dependencies")

    roles = list(by_role)
    _assert_acyclic(roles, edges)
    return DependencyGraph(roles=roles, edges=edges)


def start_tiers(graph: DependencyGraph) -> list[list[str]]:
    # Kahn layering: tier N holds roles whose dependencies all sit in tiers < N.
    pending: dict[str, set[str]] = {role: set() for role in graph.roles}
    for src, dst in graph.edges:
        pending[dst].add(src)

    tiers: list[list[str]] = []
    placed: set[str] = set()
    while len(placed) < len(graph.roles):
        tier = [role for role in graph.roles if role not in placed and pending[role] <= placed]
        if not tier:
            raise CycleError("Role dependencies cannot be ordered")
        tiers.append(tier)
        placed.update(tier)
    return tiers


def _assert_acyclic(nodes: Iterable[str], edges: Iterable[tuple[str, str]]) -> None:
    # Depth-first cycle detection on the role graph.
    adjacency: dict[str, list[str]] = {name: [] for name in nodes}
    for src, dst in edges:
        adjacency.setdefault(src, []).append(dst)
        adjacency.setdefault(dst, [])

    visiting: set[str] = set()
    visited: set[str] = set()

    def _visit(node: str) -> None:
        if node in visiting:
            raise CycleError(f"Cycle detected at role '{node}'")
        if node in visited:
            return
        visiting.add(node)
        for nxt in adjacency.get(node, []):
            _visit(nxt)
        visiting.remove(node)
        visited.add(node)

    for node in list(adjacency.keys()):
        if node not in visited:
            _visit(node)
