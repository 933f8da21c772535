"""
planforge: provider base models and shared utilities

File: src/planforge/providers/base.py

Purpose
- Abstract oracle interface plus the request/result models exchanged with it.

What should be included in this file
- Compile requests (decompose one node) and generate requests (produce leaf files).
- Error taxonomy with retryability classification.
- A registry of provider factories addressable by name.

Functional requirements
- Concrete providers never need to touch compiler code.
- Session-capable providers additionally expose the action-loop protocol.
"""

from __future__ import annotations

import abc
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from planforge.domain.models import NodeContext

if TYPE_CHECKING:
    from planforge.compiler.negotiation import ActionSession
    from planforge.domain.models import (
        ChildSpec,
        Consideration,
        ConstraintEntry,
        GeneratedFile,
        InterfaceEntry,
        JSONValue,
        Question,
        SuggestionEntry,
        UtilityEntry,
    )


def _validate_non_empty_str(value: str, field_name: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string")
    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{field_name} cannot be empty")
    return normalized


@dataclass(frozen=True, slots=True)
class CompileRequest:
    """Ask the oracle to decompose one node."""

    spec: str
    node_path: str
    context: NodeContext = field(default_factory=NodeContext)
    allow_nodes: bool = True

    def __post_init__(self) -> None:
        _validate_non_empty_str(self.node_path, "node_path")

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "spec": self.spec,
            "node_path": self.node_path,
            "context": self.context.to_dict(),
            "allow_nodes": self.allow_nodes,
        }


@dataclass(frozen=True, slots=True)
class CompileResult:
    children: tuple[ChildSpec, ...] = ()
    questions: tuple[Question, ...] = ()
    considerations: tuple[Consideration, ...] = ()
    interfaces: Mapping[str, InterfaceEntry] = field(default_factory=dict)
    constraints: tuple[ConstraintEntry, ...] = ()
    suggestions: tuple[SuggestionEntry, ...] = ()
    utilities: tuple[UtilityEntry, ...] = ()


@dataclass(frozen=True, slots=True)
class GenerateRequest:
    """Ask the oracle to produce the files of one leaf."""

    spec: str
    node_path: str
    context: NodeContext = field(default_factory=NodeContext)
    required_files: tuple[str, ...] = ()
    output_path: str = ""

    def __post_init__(self) -> None:
        _validate_non_empty_str(self.node_path, "node_path")

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "spec": self.spec,
            "node_path": self.node_path,
            "context": self.context.to_dict(),
            "required_files": list(self.required_files),
            "output_path": self.output_path,
        }


@dataclass(frozen=True, slots=True)
class GenerateResult:
    files: tuple[GeneratedFile, ...] = ()
    questions: tuple[Question, ...] = ()
    considerations: tuple[Consideration, ...] = ()


class BaseProvider(abc.ABC):
    """Provider-agnostic abstract oracle."""

    provider_name: str = "provider"
    model: str = "default"

    @abc.abstractmethod
    async def compile(self, request: CompileRequest) -> CompileResult:
        """Decompose one node into children and declarations."""

    @abc.abstractmethod
    async def generate(self, request: GenerateRequest) -> GenerateResult:
        """Produce the files for one leaf."""

    async def test_connection(self) -> bool:
        return True


@runtime_checkable
class ProviderProtocol(Protocol):
    """Protocol implemented by every oracle adapter."""

    async def compile(self, request: CompileRequest) -> CompileResult:
        """Decompose one node."""

    async def generate(self, request: GenerateRequest) -> GenerateResult:
        """Produce leaf files."""

    async def test_connection(self) -> bool:
        """Return ``True`` when the oracle is reachable."""


@runtime_checkable
class SessionProvider(Protocol):
    """Optional capability: converse through structured actions instead of one reply."""

    def open_session(self, request: CompileRequest) -> ActionSession:
        """Start an action conversation for ``request``."""


class ProviderError(RuntimeError):
    """Base normalized provider error with deterministic machine-readable fields."""

    def __init__(
        self,
        *,
        provider: str,
        code: str,
        detail: str,
        retryable: bool,
    ) -> None:
        self.provider = _validate_non_empty_str(provider, "provider")
        self.code = _validate_non_empty_str(code, "code")
        self.detail = _normalize_detail(detail)
        self.retryable = bool(retryable)
        super().__init__(
            f"provider={self.provider} code={self.code} "
            f"retryable={str(self.retryable).lower()} detail={self.detail}"
        )


class ProviderUnavailableError(ProviderError):
    """Raised when a provider is not registered or cannot be reached."""

    def __init__(self, detail: str, *, provider: str = "provider") -> None:
        super().__init__(provider=provider, code="unavailable", detail=detail, retryable=False)


class ProviderTimeoutError(ProviderError):
    """Provider timeout failures (retryable)."""

    def __init__(self, detail: str, *, provider: str = "provider") -> None:
        super().__init__(provider=provider, code="timeout", detail=detail, retryable=True)


class ProviderResponseError(ProviderError):
    """Raised when oracle output cannot be coerced into the expected schema."""

    def __init__(self, detail: str, *, provider: str = "provider") -> None:
        super().__init__(provider=provider, code="response_invalid", detail=detail, retryable=False)


def _normalize_detail(value: object) -> str:
    text = str(value).strip()
    if not text:
        return "unknown error"
    return " ".join(text.split())


__all__ = [
    "BaseProvider",
    "CompileRequest",
    "CompileResult",
    "GenerateRequest",
    "GenerateResult",
    "ProviderError",
    "ProviderProtocol",
    "ProviderResponseError",
    "ProviderTimeoutError",
    "ProviderUnavailableError",
    "SessionProvider",
]
