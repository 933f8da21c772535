"""Dataclass domain models for propagated context, compiled nodes and plan artifacts."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, NoReturn, TypeAlias

from planforge.constants import ROOT_SENTINEL

if TYPE_CHECKING:
    from planforge.domain.spec_tree import ParameterValue, SpecNode

JSONScalar: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _expect_object(value: object, path: str) -> Mapping[str, object]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")
    return value


def _as_str(value: object, path: str, *, allow_empty: bool = False) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    if not allow_empty and not value.strip():
        _fail(path, "must not be empty")
    return value


def _as_optional_str(value: object, path: str) -> str | None:
    if value is None:
        return None
    return _as_str(value, path, allow_empty=True)


def _as_bool(value: object, path: str) -> bool:
    if not isinstance(value, bool):
        _fail(path, f"expected boolean, got {type(value).__name__}")
    return value


def _as_str_tuple(value: object, path: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str) or not isinstance(value, Sequence):
        _fail(path, "expected array of strings")
    return tuple(_as_str(item, f"{path}[{index}]") for index, item in enumerate(value))


def _as_list(value: object, path: str) -> Sequence[object]:
    if value is None:
        return ()
    if isinstance(value, str) or not isinstance(value, Sequence):
        _fail(path, "expected array")
    return value


def _as_parameter_value(value: object, path: str) -> ParameterValue:
    if isinstance(value, (str, bool, int, float)):
        return value
    _fail(path, f"expected string, number or boolean, got {type(value).__name__}")


def utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat().replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Context entries
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class InterfaceEntry:
    definition: str
    declaring_node: str

    def to_dict(self) -> dict[str, JSONValue]:
        return {"definition": self.definition, "declaring_node": self.declaring_node}

    @classmethod
    def from_dict(cls, data: object, path: str = "InterfaceEntry") -> InterfaceEntry:
        parsed = _expect_object(data, path)
        return cls(
            definition=_as_str(parsed.get("definition", ""), f"{path}.definition", allow_empty=True),
            declaring_node=_as_str(
                parsed.get("declaring_node", ROOT_SENTINEL), f"{path}.declaring_node"
            ),
        )


@dataclass(frozen=True, slots=True)
class ConstraintEntry:
    rule: str
    declaring_node: str
    important: bool = False

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "rule": self.rule,
            "declaring_node": self.declaring_node,
            "important": self.important,
        }

    @classmethod
    def from_dict(cls, data: object, path: str = "ConstraintEntry") -> ConstraintEntry:
        parsed = _expect_object(data, path)
        return cls(
            rule=_as_str(parsed.get("rule"), f"{path}.rule"),
            declaring_node=_as_str(
                parsed.get("declaring_node", ROOT_SENTINEL), f"{path}.declaring_node"
            ),
            important=_as_bool(parsed.get("important", False), f"{path}.important"),
        )


@dataclass(frozen=True, slots=True)
class SuggestionEntry:
    rule: str
    declaring_node: str

    def to_dict(self) -> dict[str, JSONValue]:
        return {"rule": self.rule, "declaring_node": self.declaring_node}

    @classmethod
    def from_dict(cls, data: object, path: str = "SuggestionEntry") -> SuggestionEntry:
        parsed = _expect_object(data, path)
        return cls(
            rule=_as_str(parsed.get("rule"), f"{path}.rule"),
            declaring_node=_as_str(
                parsed.get("declaring_node", ROOT_SENTINEL), f"{path}.declaring_node"
            ),
        )


@dataclass(frozen=True, slots=True)
class UtilityEntry:
    name: str
    signature: str
    location: str
    declaring_node: str

    @property
    def key(self) -> str:
        return f"{self.name}:{self.signature}"

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "name": self.name,
            "signature": self.signature,
            "location": self.location,
            "declaring_node": self.declaring_node,
        }

    @classmethod
    def from_dict(cls, data: object, path: str = "UtilityEntry") -> UtilityEntry:
        parsed = _expect_object(data, path)
        return cls(
            name=_as_str(parsed.get("name"), f"{path}.name"),
            signature=_as_str(parsed.get("signature", ""), f"{path}.signature", allow_empty=True),
            location=_as_str(parsed.get("location", ""), f"{path}.location", allow_empty=True),
            declaring_node=_as_str(
                parsed.get("declaring_node", ROOT_SENTINEL), f"{path}.declaring_node"
            ),
        )


# ---------------------------------------------------------------------------
# Propagated knowledge
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class NodeContext:
    """Knowledge a node inherits from its parent.

    Instances are never mutated; the context builder always returns a new object
    for each child.
    """

    ancestry: tuple[str, ...] = (ROOT_SENTINEL,)
    parameters: Mapping[str, ParameterValue] = field(default_factory=dict)
    interfaces: Mapping[str, InterfaceEntry] = field(default_factory=dict)
    constraints: tuple[ConstraintEntry, ...] = ()
    suggestions: tuple[SuggestionEntry, ...] = ()
    utilities: tuple[UtilityEntry, ...] = ()
    query_matches: tuple[str, ...] = ()

    @property
    def module(self) -> str:
        return self.ancestry[-1] if self.ancestry else ROOT_SENTINEL

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "ancestry": list(self.ancestry),
            "parameters": dict(self.parameters),
            "interfaces": {name: entry.to_dict() for name, entry in self.interfaces.items()},
            "constraints": [entry.to_dict() for entry in self.constraints],
            "suggestions": [entry.to_dict() for entry in self.suggestions],
            "utilities": [entry.to_dict() for entry in self.utilities],
            "query_matches": list(self.query_matches),
        }

    @classmethod
    def from_dict(cls, data: object, path: str = "NodeContext") -> NodeContext:
        parsed = _expect_object(data, path)
        ancestry = _as_str_tuple(parsed.get("ancestry", [ROOT_SENTINEL]), f"{path}.ancestry")
        raw_parameters = _expect_object(parsed.get("parameters", {}), f"{path}.parameters")
        raw_interfaces = _expect_object(parsed.get("interfaces", {}), f"{path}.interfaces")
        return cls(
            ancestry=ancestry or (ROOT_SENTINEL,),
            parameters={
                str(key): _as_parameter_value(value, f"{path}.parameters.{key}")
                for key, value in raw_parameters.items()
            },
            interfaces={
                str(name): InterfaceEntry.from_dict(entry, f"{path}.interfaces.{name}")
                for name, entry in raw_interfaces.items()
            },
            constraints=tuple(
                ConstraintEntry.from_dict(item, f"{path}.constraints[{index}]")
                for index, item in enumerate(_as_list(parsed.get("constraints"), f"{path}.constraints"))
            ),
            suggestions=tuple(
                SuggestionEntry.from_dict(item, f"{path}.suggestions[{index}]")
                for index, item in enumerate(_as_list(parsed.get("suggestions"), f"{path}.suggestions"))
            ),
            utilities=tuple(
                UtilityEntry.from_dict(item, f"{path}.utilities[{index}]")
                for index, item in enumerate(_as_list(parsed.get("utilities"), f"{path}.utilities"))
            ),
            query_matches=_as_str_tuple(parsed.get("query_matches"), f"{path}.query_matches"),
        )


# ---------------------------------------------------------------------------
# Questions raised by the oracle
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Question:
    id: str
    question: str
    context: str = ""
    assumption: str = ""
    impact: str = ""
    options: tuple[str, ...] = ()
    answer: str | None = None

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {
            "id": self.id,
            "question": self.question,
            "context": self.context,
            "assumption": self.assumption,
            "impact": self.impact,
            "options": list(self.options),
        }
        if self.answer is not None:
            payload["answer"] = self.answer
        return payload

    @classmethod
    def from_dict(cls, data: object, path: str = "Question") -> Question:
        parsed = _expect_object(data, path)
        return cls(
            id=_as_str(parsed.get("id"), f"{path}.id"),
            question=_as_str(parsed.get("question"), f"{path}.question"),
            context=_as_str(parsed.get("context", ""), f"{path}.context", allow_empty=True),
            assumption=_as_str(parsed.get("assumption", ""), f"{path}.assumption", allow_empty=True),
            impact=_as_str(parsed.get("impact", ""), f"{path}.impact", allow_empty=True),
            options=_as_str_tuple(parsed.get("options"), f"{path}.options"),
            answer=_as_optional_str(parsed.get("answer"), f"{path}.answer"),
        )


@dataclass(frozen=True, slots=True)
class Consideration:
    id: str
    note: str
    blocking: bool = False

    def to_dict(self) -> dict[str, JSONValue]:
        return {"id": self.id, "note": self.note, "blocking": self.blocking}

    @classmethod
    def from_dict(cls, data: object, path: str = "Consideration") -> Consideration:
        parsed = _expect_object(data, path)
        return cls(
            id=_as_str(parsed.get("id"), f"{path}.id"),
            note=_as_str(parsed.get("note"), f"{path}.note"),
            blocking=_as_bool(parsed.get("blocking", False), f"{path}.blocking"),
        )


# ---------------------------------------------------------------------------
# Compilation outputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ChildSpec:
    """Instruction to materialize a child and, unless it is a leaf, recurse into it."""

    name: str
    is_leaf: bool
    spec_text: str
    context: NodeContext | None = None
    files: tuple[str, ...] = ()
    commands: tuple[str, ...] = ()
    output_path: str = ""
    source_node: SpecNode | None = field(default=None, compare=False, repr=False)

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {
            "name": self.name,
            "is_leaf": self.is_leaf,
            "spec": self.spec_text,
            "files": list(self.files),
            "commands": list(self.commands),
            "output_path": self.output_path,
        }
        if self.context is not None:
            payload["context"] = self.context.to_dict()
        return payload

    @classmethod
    def from_dict(cls, data: object, path: str = "ChildSpec") -> ChildSpec:
        parsed = _expect_object(data, path)
        raw_context = parsed.get("context")
        return cls(
            name=_as_str(parsed.get("name"), f"{path}.name"),
            is_leaf=_as_bool(parsed.get("is_leaf", False), f"{path}.is_leaf"),
            spec_text=_as_str(parsed.get("spec", ""), f"{path}.spec", allow_empty=True),
            context=None if raw_context is None else NodeContext.from_dict(raw_context, f"{path}.context"),
            files=_as_str_tuple(parsed.get("files"), f"{path}.files"),
            commands=_as_str_tuple(parsed.get("commands"), f"{path}.commands"),
            output_path=_as_str(parsed.get("output_path", ""), f"{path}.output_path", allow_empty=True),
        )


@dataclass(frozen=True, slots=True)
class Rejection:
    """Structured refusal of an oracle-proposed child."""

    child_name: str
    kind: str
    reason: str

    def to_dict(self) -> dict[str, JSONValue]:
        return {"child_name": self.child_name, "kind": self.kind, "reason": self.reason}


@dataclass(frozen=True, slots=True)
class CompiledNode:
    node_path: str
    is_leaf: bool
    children: tuple[ChildSpec, ...] = ()
    questions: tuple[Question, ...] = ()
    considerations: tuple[Consideration, ...] = ()
    declared_interfaces: Mapping[str, InterfaceEntry] = field(default_factory=dict)
    declared_constraints: tuple[ConstraintEntry, ...] = ()
    declared_suggestions: tuple[SuggestionEntry, ...] = ()
    declared_utilities: tuple[UtilityEntry, ...] = ()
    errors: tuple[str, ...] = ()
    rejections: tuple[Rejection, ...] = ()
    skipped: bool = False
    cache_status: str = ""
    oracle_calls: int = 0
    context: NodeContext | None = None


@dataclass(frozen=True, slots=True)
class CacheRecord:
    spec_hash: str
    context_hash: str
    compiled_at: str

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "spec_hash": self.spec_hash,
            "context_hash": self.context_hash,
            "compiled_at": self.compiled_at,
        }

    @classmethod
    def from_dict(cls, data: object, path: str = "CacheRecord") -> CacheRecord:
        parsed = _expect_object(data, path)
        return cls(
            spec_hash=_as_str(parsed.get("spec_hash"), f"{path}.spec_hash"),
            context_hash=_as_str(parsed.get("context_hash"), f"{path}.context_hash"),
            compiled_at=_as_str(parsed.get("compiled_at"), f"{path}.compiled_at"),
        )


@dataclass(frozen=True, slots=True)
class LeafArtifact:
    """Persisted description of what a leaf must produce at build time."""

    name: str
    output_path: str
    source_spec_ref: str
    generation_prompt: str
    required_files: tuple[str, ...] = ()
    allowed_commands: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "name": self.name,
            "output_path": self.output_path,
            "source_spec_ref": self.source_spec_ref,
            "generation_prompt": self.generation_prompt,
            "required_files": list(self.required_files),
            "allowed_commands": list(self.allowed_commands),
        }

    @classmethod
    def from_dict(cls, data: object, path: str = "LeafArtifact") -> LeafArtifact:
        parsed = _expect_object(data, path)
        return cls(
            name=_as_str(parsed.get("name"), f"{path}.name"),
            output_path=_as_str(parsed.get("output_path", ""), f"{path}.output_path", allow_empty=True),
            source_spec_ref=_as_str(parsed.get("source_spec_ref"), f"{path}.source_spec_ref"),
            generation_prompt=_as_str(
                parsed.get("generation_prompt", ""), f"{path}.generation_prompt", allow_empty=True
            ),
            required_files=_as_str_tuple(parsed.get("required_files"), f"{path}.required_files"),
            allowed_commands=_as_str_tuple(parsed.get("allowed_commands"), f"{path}.allowed_commands"),
        )


@dataclass(frozen=True, slots=True)
class GeneratedFile:
    path: str
    content: str

    def to_dict(self) -> dict[str, JSONValue]:
        return {"path": self.path, "content": self.content}


__all__ = [
    "CacheRecord",
    "ChildSpec",
    "CompiledNode",
    "Consideration",
    "ConstraintEntry",
    "GeneratedFile",
    "InterfaceEntry",
    "JSONValue",
    "LeafArtifact",
    "NodeContext",
    "Question",
    "Rejection",
    "SuggestionEntry",
    "UtilityEntry",
    "utc_now_iso",
]
