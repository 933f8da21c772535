"""Domain types: the typed spec tree and the compiler's persisted models."""

from planforge.domain.models import (
    CacheRecord,
    ChildSpec,
    CompiledNode,
    Consideration,
    ConstraintEntry,
    GeneratedFile,
    InterfaceEntry,
    LeafArtifact,
    NodeContext,
    Question,
    Rejection,
    SuggestionEntry,
    UtilityEntry,
)
from planforge.domain.spec_tree import (
    IncludeNode,
    ModuleNode,
    ParameterNode,
    ProseNode,
    QueryFilterNode,
    RootNode,
    SourceRange,
    SpecNode,
)

__all__ = [
    "CacheRecord",
    "ChildSpec",
    "CompiledNode",
    "Consideration",
    "ConstraintEntry",
    "GeneratedFile",
    "IncludeNode",
    "InterfaceEntry",
    "LeafArtifact",
    "ModuleNode",
    "NodeContext",
    "ParameterNode",
    "ProseNode",
    "QueryFilterNode",
    "Question",
    "Rejection",
    "RootNode",
    "SourceRange",
    "SpecNode",
    "SuggestionEntry",
    "UtilityEntry",
]
