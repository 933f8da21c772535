"""Build runtime: leaf discovery, generation, setup commands and provenance."""

from planforge.generator.build import NO_LEAVES_ERROR, BuildOptions, BuildResult, run_build
from planforge.generator.commands import (
    CommandAllowList,
    CommandError,
    CommandRejected,
    CommandResult,
    CommandRunner,
    CommandTimeout,
)
from planforge.generator.discover import (
    LeafNode,
    discover_leaf_nodes,
    get_all_node_paths,
    is_leaf_node,
)
from planforge.generator.execute import ExecuteOptions, LeafExecution, execute_generator
from planforge.generator.headers import add_provenance_header, provenance_header
from planforge.generator.oplog import OperationLog, OperationType

__all__ = [
    "NO_LEAVES_ERROR",
    "BuildOptions",
    "BuildResult",
    "CommandAllowList",
    "CommandError",
    "CommandRejected",
    "CommandResult",
    "CommandRunner",
    "CommandTimeout",
    "ExecuteOptions",
    "LeafExecution",
    "LeafNode",
    "OperationLog",
    "OperationType",
    "add_provenance_header",
    "discover_leaf_nodes",
    "execute_generator",
    "get_all_node_paths",
    "is_leaf_node",
    "provenance_header",
    "run_build",
]
