from workflow_testenv.topology.builder import TopologyBuilder, TopologyVariant
from workflow_testenv.topology.dag import (
    CycleError,
    DependencyGraph,
    InvalidTopologyError,
    MissingDependencyError,
    build_dependency_graph,
    start_tiers,
)
from workflow_testenv.topology.descriptors import DescriptorSet, ReadinessCheck, ServiceDescriptor

__all__ = [
    "CycleError",
    "DependencyGraph",
    "DescriptorSet",
    "InvalidTopologyError",
    "MissingDependencyError",
    "ReadinessCheck",
    "ServiceDescriptor",
    "TopologyBuilder",
    "TopologyVariant",
    "build_dependency_graph",
    "start_tiers",
]
