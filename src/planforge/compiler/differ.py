"""Content and context hashing that decides whether a node must be recompiled."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Final

from planforge.compiler.writer import read_context_file, read_plan_file
from planforge.domain.models import CacheRecord, utc_now_iso
from planforge.utils.hashing import canonical_json, short_hash

if TYPE_CHECKING:
    from planforge.compiler.writer import ContextArtifact
    from planforge.domain.models import NodeContext

REASON_NOT_CACHED: Final[str] = "No cached compilation found"
REASON_SPEC_CHANGED: Final[str] = "Spec content has changed"
REASON_NO_METADATA: Final[str] = "No cache metadata"
REASON_CONTEXT_CHANGED: Final[str] = "Parent context has changed"
REASON_VALID: Final[str] = "Cached compilation is valid"
REASON_DEPTH_LIMIT: Final[str] = "Cached decomposition is below the depth limit"

_SUMMARY_RULE_CHARS: Final[int] = 50


@dataclass(frozen=True, slots=True)
class DiffResult:
    needs_recompile: bool
    reason: str
    spec_hash: str
    context_hash: str
    cached: ContextArtifact | None = None


def hash_content(text: str) -> str:
    """Return the first 16 hex characters of the SHA-256 of ``text``."""

    return short_hash(text)


def hash_context(context: NodeContext) -> str:
    """Hash the parts of a context that affect compilation, independent of order.

    Ancestry is excluded: it is already encoded in the node's storage location.
    """

    canonical = {
        "interfaces": {
            name: context.interfaces[name].to_dict() for name in sorted(context.interfaces)
        },
        "constraints": sorted(
            (entry.to_dict() for entry in context.constraints),
            key=lambda item: (item["rule"], item["declaring_node"]),
        ),
        "suggestions": sorted(
            (entry.to_dict() for entry in context.suggestions),
            key=lambda item: (item["rule"], item["declaring_node"]),
        ),
        "utilities": sorted(
            (entry.to_dict() for entry in context.utilities),
            key=lambda item: (f"{item['name']}:{item['signature']}", item["declaring_node"]),
        ),
        "parameters": {key: context.parameters[key] for key in sorted(context.parameters)},
        "query_matches": sorted(context.query_matches),
    }
    return hash_content(canonical_json(canonical))


def diff_node(
    node_path: str,
    spec_text: str,
    parent_context: NodeContext,
    storage_root: str | Path,
) -> DiffResult:
    """Compare the node's current inputs with what was persisted on the last compile."""

    spec_hash = hash_content(spec_text)
    context_hash = hash_context(parent_context)

    existing_spec = read_plan_file(storage_root, node_path)
    if existing_spec is None:
        return DiffResult(True, REASON_NOT_CACHED, spec_hash, context_hash)
    if hash_content(existing_spec) != spec_hash:
        return DiffResult(True, REASON_SPEC_CHANGED, spec_hash, context_hash)

    artifact = read_context_file(storage_root, node_path)
    if artifact is None or artifact.cache is None:
        return DiffResult(True, REASON_NO_METADATA, spec_hash, context_hash)
    if artifact.cache.spec_hash != spec_hash:
        return DiffResult(True, REASON_SPEC_CHANGED, spec_hash, context_hash)
    if artifact.cache.context_hash != context_hash:
        return DiffResult(True, REASON_CONTEXT_CHANGED, spec_hash, context_hash)

    return DiffResult(False, REASON_VALID, spec_hash, context_hash, cached=artifact)


def create_cache_metadata(spec_hash: str, context_hash: str) -> CacheRecord:
    return CacheRecord(spec_hash=spec_hash, context_hash=context_hash, compiled_at=utc_now_iso())


def summarize_changes(old: NodeContext | None, new: NodeContext) -> list[str]:
    """Describe how ``new`` differs from ``old`` for diagnostics."""

    if old is None:
        return ["New node (no previous compilation)"]

    changes: list[str] = []
    old_interfaces = set(old.interfaces)
    new_interfaces = set(new.interfaces)
    changes.extend(f"Added interface: {name}" for name in sorted(new_interfaces - old_interfaces))
    changes.extend(f"Removed interface: {name}" for name in sorted(old_interfaces - new_interfaces))

    old_rules = {entry.rule for entry in old.constraints}
    new_rules = {entry.rule for entry in new.constraints}
    changes.extend(
        f"Added constraint: {rule[:_SUMMARY_RULE_CHARS]}..." for rule in sorted(new_rules - old_rules)
    )
    changes.extend(
        f"Removed constraint: {rule[:_SUMMARY_RULE_CHARS]}..." for rule in sorted(old_rules - new_rules)
    )

    old_utilities = {entry.name for entry in old.utilities}
    new_utilities = {entry.name for entry in new.utilities}
    changes.extend(f"Added utility: {name}" for name in sorted(new_utilities - old_utilities))
    changes.extend(f"Removed utility: {name}" for name in sorted(old_utilities - new_utilities))

    if not changes:
        changes.append("Minor changes (no interface/constraint/utility changes)")
    return changes


__all__ = [
    "REASON_CONTEXT_CHANGED",
    "REASON_DEPTH_LIMIT",
    "REASON_NOT_CACHED",
    "REASON_NO_METADATA",
    "REASON_SPEC_CHANGED",
    "REASON_VALID",
    "DiffResult",
    "create_cache_metadata",
    "diff_node",
    "hash_content",
    "hash_context",
    "summarize_changes",
]
