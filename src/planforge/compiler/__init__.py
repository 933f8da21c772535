"""Compilation engine: context propagation, caching, guards and the recursive walk."""

from planforge.compiler.compile_node import (
    CompileOptions,
    compile_node,
    compile_root_node,
    is_small_spec,
)
from planforge.compiler.context_builder import (
    build_child_context,
    build_node_path,
    create_root_context,
    format_context,
    is_empty_context,
    merge_contexts,
)
from planforge.compiler.differ import (
    DiffResult,
    create_cache_metadata,
    diff_node,
    hash_content,
    hash_context,
    summarize_changes,
)
from planforge.compiler.driver import RunSummary, compile_tree
from planforge.compiler.negotiation import (
    ActionLoopResult,
    ActionOutcome,
    ActionSession,
    LoopState,
    OracleAction,
    run_action_loop,
)
from planforge.compiler.registries import (
    ChildNameRegistry,
    CollisionError,
    FileOwnershipRegistry,
    RecursionGuardError,
    Registries,
)
from planforge.compiler.source_map import SourceMap, SourceMapBuilder
from planforge.compiler.state import CompilationState, GovernorExceeded, GovernorLimit, Governors
from planforge.compiler.writer import ArtifactIOError, ContextArtifact, NodeQuestions

__all__ = [
    "ActionLoopResult",
    "ActionOutcome",
    "ActionSession",
    "ArtifactIOError",
    "ChildNameRegistry",
    "CollisionError",
    "CompilationState",
    "CompileOptions",
    "ContextArtifact",
    "DiffResult",
    "FileOwnershipRegistry",
    "GovernorExceeded",
    "GovernorLimit",
    "Governors",
    "LoopState",
    "NodeQuestions",
    "OracleAction",
    "RecursionGuardError",
    "Registries",
    "RunSummary",
    "SourceMap",
    "SourceMapBuilder",
    "build_child_context",
    "build_node_path",
    "compile_node",
    "compile_root_node",
    "compile_tree",
    "create_cache_metadata",
    "create_root_context",
    "diff_node",
    "format_context",
    "hash_content",
    "hash_context",
    "is_empty_context",
    "is_small_spec",
    "merge_contexts",
    "run_action_loop",
    "summarize_changes",
]
