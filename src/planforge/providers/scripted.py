"""
planforge: scripted oracle

File: src/planforge/providers/scripted.py

Purpose
- Deterministic oracle fed from a YAML/JSON document keyed by node path, used
  for offline runs and tests.

Document shape
- ``compile``: node path -> compile payload (same schema the completion
  provider parses from a live reply).
- ``generate``: node path -> generate payload.
- ``actions``: node path -> list of turns, each a list of ``gen_node`` /
  ``gen_leaf`` actions. Present only for session-style scripts.
- ``failures``: node path -> message; compiling that node raises a provider error.

Functional requirements
- A node without a compile entry yields no children.
- Every request is recorded so callers can assert what the oracle saw.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

import yaml

from planforge.compiler.negotiation import ActionKind, OracleAction
from planforge.providers.base import (
    BaseProvider,
    CompileRequest,
    CompileResult,
    GenerateRequest,
    GenerateResult,
    ProviderError,
)
from planforge.providers.response_parser import (
    compile_result_from_payload,
    generate_result_from_payload,
)

if TYPE_CHECKING:
    from planforge.compiler.negotiation import ActionOutcome

_SECTIONS: Final[frozenset[str]] = frozenset({"compile", "generate", "actions", "failures"})


class ScriptLoadError(ValueError):
    """Raised when a script document is malformed."""


@dataclass(frozen=True, slots=True)
class OracleScript:
    compile: Mapping[str, Mapping[str, object]] = field(default_factory=dict)
    generate: Mapping[str, Mapping[str, object]] = field(default_factory=dict)
    actions: Mapping[str, tuple[tuple[OracleAction, ...], ...]] = field(default_factory=dict)
    failures: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, document: Mapping[str, object]) -> OracleScript:
        unknown = sorted(set(map(str, document)) - _SECTIONS)
        if unknown:
            raise ScriptLoadError(f"unknown script sections: {', '.join(unknown)}")
        return cls(
            compile=_payloads(document.get("compile"), "compile"),
            generate=_payloads(document.get("generate"), "generate"),
            actions=_action_scripts(document.get("actions")),
            failures={
                str(key): str(value)
                for key, value in _mapping(document.get("failures"), "failures").items()
            },
        )


def _mapping(value: object, section: str) -> Mapping[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ScriptLoadError(f"{section}: expected mapping keyed by node path")
    return {str(key): item for key, item in value.items()}


def _payloads(value: object, section: str) -> dict[str, Mapping[str, object]]:
    payloads: dict[str, Mapping[str, object]] = {}
    for node_path, payload in _mapping(value, section).items():
        if payload is None:
            payload = {}
        if not isinstance(payload, Mapping):
            raise ScriptLoadError(f"{section}.{node_path}: expected mapping")
        payloads[node_path] = {str(key): item for key, item in payload.items()}
    return payloads


def _action_scripts(value: object) -> dict[str, tuple[tuple[OracleAction, ...], ...]]:
    scripts: dict[str, tuple[tuple[OracleAction, ...], ...]] = {}
    for node_path, turns in _mapping(value, "actions").items():
        if isinstance(turns, (str, bytes)) or not isinstance(turns, Sequence):
            raise ScriptLoadError(f"actions.{node_path}: expected list of turns")
        parsed: list[tuple[OracleAction, ...]] = []
        for index, turn in enumerate(turns):
            if isinstance(turn, Mapping):
                turn = [turn]
            if isinstance(turn, (str, bytes)) or not isinstance(turn, Sequence):
                raise ScriptLoadError(f"actions.{node_path}[{index}]: expected list of actions")
            parsed.append(tuple(OracleAction.from_dict(action) for action in turn))
        scripts[node_path] = tuple(parsed)
    return scripts


class ScriptedSession:
    """Replays one node's scripted turns, remembering the outcomes it was shown."""

    def __init__(self, turns: Sequence[Sequence[OracleAction]]) -> None:
        self._turns = [tuple(turn) for turn in turns]
        self.received: list[tuple[ActionOutcome, ...]] = []

    async def next_actions(self, outcomes: Sequence[ActionOutcome]) -> Sequence[OracleAction]:
        self.received.append(tuple(outcomes))
        if not self._turns:
            return ()
        return self._turns.pop(0)


class ScriptedProvider(BaseProvider):
    """Single-reply oracle answering from an ``OracleScript``."""

    provider_name = "scripted"
    model = "script"

    def __init__(self, script: OracleScript | None = None, *, delay_seconds: float = 0.0) -> None:
        self.script = script if script is not None else OracleScript()
        self._delay_seconds = delay_seconds
        self.compile_requests: list[CompileRequest] = []
        self.generate_requests: list[GenerateRequest] = []
        self.in_flight = 0
        self.peak_in_flight = 0

    @classmethod
    def from_mapping(cls, document: Mapping[str, object], **kwargs: Any) -> ScriptedProvider:
        script = OracleScript.from_mapping(document)
        provider_type = ScriptedSessionProvider if script.actions else cls
        return provider_type(script, **kwargs)

    @classmethod
    def from_file(cls, path: str | Path, **kwargs: Any) -> ScriptedProvider:
        source = Path(path)
        try:
            text = source.read_text(encoding="utf-8")
        except OSError as exc:
            raise ScriptLoadError(f"unable to read script {source}: {exc}") from exc
        try:
            if source.suffix.lower() == ".json":
                document = json.loads(text)
            else:
                document = yaml.safe_load(text)
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            raise ScriptLoadError(f"invalid script {source}: {exc}") from exc
        if document is None:
            document = {}
        if not isinstance(document, Mapping):
            raise ScriptLoadError(f"script {source} must contain a mapping")
        return cls.from_mapping(document, **kwargs)

    @property
    def compiled_paths(self) -> list[str]:
        return [request.node_path for request in self.compile_requests]

    async def compile(self, request: CompileRequest) -> CompileResult:
        self.compile_requests.append(request)
        await self._simulate_latency()
        failure = self.script.failures.get(request.node_path)
        if failure is not None:
            raise ProviderError(
                provider=self.provider_name,
                code="scripted_failure",
                detail=failure,
                retryable=False,
            )
        payload = self.script.compile.get(request.node_path, {})
        return compile_result_from_payload(payload, node_path=request.node_path)

    async def generate(self, request: GenerateRequest) -> GenerateResult:
        self.generate_requests.append(request)
        await self._simulate_latency()
        payload = self.script.generate.get(request.node_path, {})
        return generate_result_from_payload(payload)

    async def _simulate_latency(self) -> None:
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self._delay_seconds)
        finally:
            self.in_flight -= 1


class ScriptedSessionProvider(ScriptedProvider):
    """Scripted oracle that answers through the structured action loop."""

    def __init__(self, script: OracleScript | None = None, *, delay_seconds: float = 0.0) -> None:
        super().__init__(script, delay_seconds=delay_seconds)
        self.sessions: dict[str, ScriptedSession] = {}

    def open_session(self, request: CompileRequest) -> ScriptedSession:
        self.compile_requests.append(request)
        turns = self.script.actions.get(request.node_path)
        if turns is None:
            turns = (_actions_from_payload(self.script.compile.get(request.node_path, {})),)
        session = ScriptedSession(turns)
        self.sessions[request.node_path] = session
        return session


def _actions_from_payload(payload: Mapping[str, object]) -> tuple[OracleAction, ...]:
    children = payload.get("children")
    if not isinstance(children, Sequence) or isinstance(children, (str, bytes)):
        return ()
    actions: list[OracleAction] = []
    for child in children:
        if not isinstance(child, Mapping):
            continue
        is_leaf = bool(child.get("is_leaf", child.get("isLeaf", False)))
        kind = ActionKind.GEN_LEAF if is_leaf else ActionKind.GEN_NODE
        actions.append(OracleAction.from_dict({**child, "kind": kind.value}))
    return tuple(actions)


__all__ = [
    "OracleScript",
    "ScriptLoadError",
    "ScriptedProvider",
    "ScriptedSession",
    "ScriptedSessionProvider",
]
