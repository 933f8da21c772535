"""
planforge: single-node compilation

File: src/planforge/compiler/compile_node.py

Purpose
- Compile one unit of the spec tree: check the cache, decide leaf versus
  decompose, consult the oracle when needed, admit the proposed children and
  persist the node's plan artifacts.

Per-node state machine
- entered -> cache-checked -> (skipped | leaf-persisted | decomposed)
  The driver owns children-dispatched -> joined.

Functional requirements
- Oracle and artifact IO failures never propagate; the node is recorded as an
  errored, inert leaf and the walk continues.
- Refused children become structured rejections instead of exceptions.
- ``GovernorExceeded`` does propagate so the driver can stop scheduling.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeAlias

import structlog

from planforge.compiler.context_builder import (
    build_child_context,
    build_node_path,
    create_root_context,
)
from planforge.compiler.differ import (
    REASON_DEPTH_LIMIT,
    create_cache_metadata,
    diff_node,
    hash_content,
    hash_context,
)
from planforge.compiler.negotiation import (
    ActionKind,
    ActionOutcome,
    OracleAction,
    run_action_loop,
)
from planforge.compiler.registries import AdmissionError, Registries
from planforge.compiler.source_map import SourceMapBuilder
from planforge.compiler.state import CompilationState, GovernorExceeded, depth_of
from planforge.compiler.writer import (
    ArtifactIOError,
    ContextArtifact,
    NodeQuestions,
    leaf_artifact_path,
    plan_path,
    prune_stale_children,
    questions_path,
    remove_artifact,
    write_context_file,
    write_leaf_artifact,
    write_plan_file,
    write_questions_file,
    write_source_map,
)
from planforge.constants import (
    DEFAULT_MAX_ACTION_STEPS,
    LEAF_PARAMETER,
    ROOT_SENTINEL,
    SMALL_SPEC_MAX_CHARS,
)
from planforge.domain.models import ChildSpec, CompiledNode, LeafArtifact, Rejection
from planforge.domain.spec_tree import (
    ModuleNode,
    QueryFilterNode,
    RootNode,
    has_nested_blocks,
    is_pure_container,
)
from planforge.providers.base import CompileRequest, CompileResult, ProviderError, SessionProvider
from planforge.spec_ingestion.serializer import serialize_node

if TYPE_CHECKING:
    from collections.abc import Sequence

    from planforge.compiler.negotiation import ActionSession
    from planforge.domain.models import CacheRecord, NodeContext
    from planforge.domain.spec_tree import SpecNode
    from planforge.providers.base import ProviderProtocol

CompileUnit: TypeAlias = "SpecNode | ChildSpec"

STATUS_LEAF_MARKED = "Marked as leaf by parent"
STATUS_LEAF_PARAMETER = "Leaf node (explicit leaf parameter)"
STATUS_LEAF_SMALL = "Leaf node (no compilation needed)"
STATUS_LEAF_DEPTH = "Leaf node (maximum depth reached)"
STATUS_LEAF_NO_CHILDREN = "Leaf node (oracle returned no children)"
STATUS_STRUCTURAL = "Decomposed structurally"
STATUS_COMPILED = "Compiled successfully"
STATUS_FAILED = "Compilation failed"


@dataclass(frozen=True, slots=True)
class CompileOptions:
    use_cache: bool = True
    max_action_steps: int = DEFAULT_MAX_ACTION_STEPS
    verbose: bool = False


def is_small_spec(spec_text: str) -> bool:
    """Short spec text without block syntax can be generated directly."""

    return len(spec_text) < SMALL_SPEC_MAX_CHARS and "{" not in spec_text


def _parameters_of(node: SpecNode | None) -> dict[str, object]:
    if isinstance(node, (ModuleNode, QueryFilterNode)):
        return {parameter.name: parameter.value for parameter in node.parameters}
    return {}


def _module_children(node: SpecNode | None) -> dict[str, ModuleNode]:
    if not isinstance(node, (RootNode, ModuleNode, QueryFilterNode)):
        return {}
    children: dict[str, ModuleNode] = {}
    for child in node.children:
        if isinstance(child, ModuleNode):
            children.setdefault(child.name, child)
    return children


def _attach_sources(children: Sequence[ChildSpec], node: SpecNode | None) -> tuple[ChildSpec, ...]:
    """Re-link children to the spec-tree modules of the same name."""

    modules = _module_children(node)
    attached: list[ChildSpec] = []
    for child in children:
        module = modules.get(child.name)
        if module is not None and child.source_node is None:
            child = replace(child, source_node=module)
        attached.append(child)
    return tuple(attached)


class _MeteredSession:
    """Counts each turn against the call governor and the oracle slot limit."""

    def __init__(self, inner: ActionSession, state: CompilationState) -> None:
        self._inner = inner
        self._state = state
        self.turns = 0
        self.halted = False

    async def next_actions(self, outcomes: Sequence[ActionOutcome]) -> Sequence[OracleAction]:
        try:
            self._state.reserve_call()
        except GovernorExceeded:
            if self.turns == 0:
                raise
            self.halted = True
            return ()
        self.turns += 1
        async with self._state.oracle_slot():
            return await self._inner.next_actions(outcomes)


class _NodeCompiler:
    """Carries the per-node inputs through one compilation."""

    def __init__(
        self,
        unit: CompileUnit,
        parent_context: NodeContext,
        provider: ProviderProtocol,
        storage_root: Path,
        options: CompileOptions,
        state: CompilationState,
        registries: Registries,
        logger: Any,
    ) -> None:
        self.unit = unit
        self.context = parent_context
        self.provider = provider
        self.storage_root = storage_root
        self.options = options
        self.state = state
        self.registries = registries
        self.log = logger

        if isinstance(unit, ChildSpec):
            self.source_node: SpecNode | None = unit.source_node
            self.marked_leaf = unit.is_leaf
        else:
            self.source_node = unit
            self.marked_leaf = False
        self.node_path = build_node_path(parent_context.ancestry)
        self.name = parent_context.module
        self.depth = depth_of(parent_context.ancestry)
        if self.source_node is not None:
            self.spec_text = serialize_node(self.source_node)
        else:
            self.spec_text = unit.spec_text if isinstance(unit, ChildSpec) else ""
        self.parameters = _parameters_of(self.source_node)
        self.errors: list[str] = []
        self.oracle_calls = 0
        self.cache_record: CacheRecord | None = None

    # -- entry point -------------------------------------------------------

    async def run(self) -> CompiledNode:
        if self.options.use_cache:
            diff = diff_node(self.node_path, self.spec_text, self.context, self.storage_root)
            spec_hash, context_hash = diff.spec_hash, diff.context_hash
            reason = diff.reason
            if (
                not diff.needs_recompile
                and diff.cached is not None
                and not diff.cached.is_leaf
                and self.depth >= self.state.max_depth
            ):
                # decomposed under a deeper limit than this run allows
                reason = REASON_DEPTH_LIMIT
            elif not diff.needs_recompile and diff.cached is not None:
                self.log.info("compile_node_cached", node_path=self.node_path, reason=diff.reason)
                cached = diff.cached
                return CompiledNode(
                    node_path=self.node_path,
                    is_leaf=cached.is_leaf,
                    children=_attach_sources(cached.children, self.source_node),
                    declared_interfaces=cached.declared_interfaces,
                    declared_constraints=cached.declared_constraints,
                    declared_suggestions=cached.declared_suggestions,
                    declared_utilities=cached.declared_utilities,
                    skipped=True,
                    cache_status=diff.reason,
                    context=self.context,
                )
            self.log.debug("compile_node_stale", node_path=self.node_path, reason=reason)
        else:
            spec_hash, context_hash = hash_content(self.spec_text), hash_context(self.context)
        self.cache_record = create_cache_metadata(spec_hash, context_hash)

        try:
            write_plan_file(self.storage_root, self.node_path, self.spec_text)
            self._write_source_map()
        except ArtifactIOError as exc:
            self.errors.append(f"Failed to write plan for {self.node_path}: {exc}")
            return self._result(is_leaf=True, status=STATUS_FAILED)

        leaf_status = self._leaf_status()
        if leaf_status is not None:
            return self._finish_leaf(leaf_status)

        if self.source_node is not None and is_pure_container(self.source_node):
            return self._finish_structural()

        return await self._finish_with_oracle()

    # -- decisions ---------------------------------------------------------

    def _leaf_status(self) -> str | None:
        if self.marked_leaf:
            return STATUS_LEAF_MARKED
        if LEAF_PARAMETER in self.parameters:
            return STATUS_LEAF_PARAMETER
        if not self._has_nested_blocks() and is_small_spec(self.spec_text):
            return STATUS_LEAF_SMALL
        if self.depth >= self.state.max_depth:
            return STATUS_LEAF_DEPTH
        return None

    def _has_nested_blocks(self) -> bool:
        return self.source_node is not None and has_nested_blocks(self.source_node)

    def _child_depth_allows_nodes(self) -> bool:
        return self.depth + 1 < self.state.max_depth

    def _scope_context(self) -> NodeContext:
        """The context children build on: what this node received plus its own parameters."""

        parameters = dict(self.context.parameters)
        parameters.update(
            (key, value) for key, value in self.parameters.items() if key != LEAF_PARAMETER
        )
        query_matches = self.context.query_matches
        if isinstance(self.source_node, QueryFilterNode):
            if self.source_node.question not in query_matches:
                query_matches = (*query_matches, self.source_node.question)
        return replace(self.context, parameters=parameters, query_matches=query_matches)

    # -- outcomes ----------------------------------------------------------

    def _finish_leaf(
        self,
        status: str,
        result: CompileResult | None = None,
        rejections: tuple[Rejection, ...] = (),
        *,
        cache: bool = True,
    ) -> CompiledNode:
        result = result if result is not None else CompileResult()
        unit = self.unit if isinstance(self.unit, ChildSpec) else None
        artifact = ContextArtifact(
            context=self.context,
            is_leaf=True,
            declared_interfaces=result.interfaces,
            declared_constraints=result.constraints,
            declared_suggestions=result.suggestions,
            declared_utilities=result.utilities,
            cache=self.cache_record if cache else None,
        )
        leaf = LeafArtifact(
            name=self.name,
            output_path=unit.output_path if unit is not None else "",
            source_spec_ref=plan_path(self.storage_root, self.node_path)
            .relative_to(self.storage_root)
            .as_posix(),
            generation_prompt=self.spec_text,
            required_files=unit.files if unit is not None else (),
            allowed_commands=unit.commands if unit is not None else (),
        )
        try:
            write_context_file(self.storage_root, self.node_path, artifact)
            write_leaf_artifact(self.storage_root, self.node_path, leaf)
            self._write_questions(result)
            prune_stale_children(self.storage_root, self.node_path, keep=set())
        except ArtifactIOError as exc:
            self.errors.append(f"Failed to persist leaf {self.node_path}: {exc}")
            status = STATUS_FAILED
        self.log.info("compile_node_leaf", node_path=self.node_path, status=status)
        return self._result(is_leaf=True, status=status, compile_result=result, rejections=rejections)

    def _finish_structural(self) -> CompiledNode:
        modules = [
            child for child in self.source_node.children if isinstance(child, ModuleNode)
        ]
        rejections: list[Rejection] = []
        admitted: list[ChildSpec] = []
        for module in modules:
            child = ChildSpec(
                name=module.name,
                is_leaf=False,
                spec_text=serialize_node(module),
                source_node=module,
            )
            try:
                self.registries.admit(self.node_path, self.name, child, check_similarity=False)
            except AdmissionError as exc:
                rejections.append(exc.to_rejection())
                continue
            admitted.append(child)
        self.log.info(
            "compile_node_structural",
            node_path=self.node_path,
            children=[child.name for child in admitted],
        )
        return self._finish_decomposed(
            CompileResult(), admitted, tuple(rejections), STATUS_STRUCTURAL
        )

    async def _finish_with_oracle(self) -> CompiledNode:
        request = CompileRequest(
            spec=self.spec_text,
            node_path=self.node_path,
            context=self.context,
            allow_nodes=self._child_depth_allows_nodes(),
        )
        rejections: list[Rejection] = []
        try:
            if isinstance(self.provider, SessionProvider):
                result, admitted = await self._negotiate(request, rejections)
            else:
                result = await self._compile_once(request)
                admitted = self._admit_all(result.children, rejections)
        except GovernorExceeded:
            raise
        except ProviderError as exc:
            return self._oracle_failed(exc)
        except Exception as exc:  # noqa: BLE001 - oracle boundary
            return self._oracle_failed(exc)

        for rejection in rejections:
            self.log.info(
                "compile_child_rejected",
                node_path=self.node_path,
                child=rejection.child_name,
                kind=rejection.kind,
                reason=rejection.reason,
            )
        if not admitted:
            return self._finish_leaf(STATUS_LEAF_NO_CHILDREN, result, tuple(rejections))
        return self._finish_decomposed(result, admitted, tuple(rejections), STATUS_COMPILED)

    async def _compile_once(self, request: CompileRequest) -> CompileResult:
        self.state.reserve_call()
        self.oracle_calls += 1
        async with self.state.oracle_slot():
            return await self.provider.compile(request)

    def _admit_all(
        self, proposed: Sequence[ChildSpec], rejections: list[Rejection]
    ) -> list[ChildSpec]:
        admitted: list[ChildSpec] = []
        for child in _attach_sources(proposed, self.source_node):
            if not child.is_leaf and not self._child_depth_allows_nodes():
                child = replace(child, is_leaf=True)
            try:
                self.registries.admit(
                    self.node_path,
                    self.name,
                    child,
                    check_similarity=self.node_path != ROOT_SENTINEL,
                )
            except AdmissionError as exc:
                rejections.append(exc.to_rejection())
                continue
            admitted.append(child)
        return admitted

    async def _negotiate(
        self, request: CompileRequest, rejections: list[Rejection]
    ) -> tuple[CompileResult, list[ChildSpec]]:
        admitted: list[ChildSpec] = []
        session = _MeteredSession(self.provider.open_session(request), self.state)

        def apply(action: OracleAction) -> ActionOutcome:
            child = self._child_from_action(action)
            try:
                self.registries.admit(
                    self.node_path,
                    self.name,
                    child,
                    check_similarity=self.node_path != ROOT_SENTINEL,
                )
            except AdmissionError as exc:
                rejections.append(exc.to_rejection())
                return ActionOutcome(action=action, accepted=False, detail=str(exc))
            admitted.append(child)
            return ActionOutcome(
                action=action,
                accepted=True,
                detail=build_node_path((*self.context.ancestry, child.name)),
            )

        try:
            loop = await run_action_loop(
                session, apply, max_steps=self.options.max_action_steps, logger=self.log
            )
        finally:
            self.oracle_calls += session.turns
        for outcome in loop.rejected:
            if not any(item.child_name == outcome.action.name for item in rejections):
                rejections.append(
                    Rejection(
                        child_name=outcome.action.name,
                        kind="invalid_action",
                        reason=outcome.detail,
                    )
                )
        if session.halted:
            self.errors.append(f"Call limit reached while negotiating {self.node_path}")
        if loop.exhausted:
            self.errors.append(
                f"Action loop for {self.node_path} stopped after {loop.steps} steps"
            )
        return CompileResult(), _attach_sources(admitted, self.source_node)

    def _child_from_action(self, action: OracleAction) -> ChildSpec:
        if action.kind == ActionKind.GEN_NODE:
            if not action.name or not action.spec:
                raise ValueError("gen_node requires name and content")
            if not self._child_depth_allows_nodes():
                raise ValueError("Maximum depth reached; use gen_leaf")
            return ChildSpec(name=action.name, is_leaf=False, spec_text=action.spec)
        if action.kind == ActionKind.GEN_LEAF:
            if not action.name or not action.spec or not action.files:
                raise ValueError("gen_leaf requires name, prompt, and files")
            return ChildSpec(
                name=action.name,
                is_leaf=True,
                spec_text=action.spec,
                files=action.files,
                commands=action.commands,
                output_path=action.output_path,
            )
        raise ValueError(f"Unknown action: {action.kind}")

    def _oracle_failed(self, exc: BaseException) -> CompiledNode:
        message = f"Provider compilation failed for {self.node_path}: {exc}"
        self.errors.append(message)
        self.log.warning("compile_node_oracle_failed", node_path=self.node_path, error=str(exc))
        # No cache record, so the next run retries this node.
        compiled = self._finish_leaf(STATUS_FAILED, cache=False)
        return replace(compiled, cache_status=STATUS_FAILED)

    def _finish_decomposed(
        self,
        result: CompileResult,
        admitted: Sequence[ChildSpec],
        rejections: tuple[Rejection, ...],
        status: str,
    ) -> CompiledNode:
        scope = self._scope_context()
        preliminary = CompiledNode(
            node_path=self.node_path,
            is_leaf=False,
            children=tuple(admitted),
            declared_interfaces=result.interfaces,
            declared_constraints=result.constraints,
            declared_suggestions=result.suggestions,
            declared_utilities=result.utilities,
        )
        children = tuple(
            replace(child, context=build_child_context(scope, preliminary, child.name))
            for child in admitted
        )
        artifact = ContextArtifact(
            context=self.context,
            is_leaf=False,
            declared_interfaces=result.interfaces,
            declared_constraints=result.constraints,
            declared_suggestions=result.suggestions,
            declared_utilities=result.utilities,
            children=children,
            cache=self.cache_record,
        )
        try:
            write_context_file(self.storage_root, self.node_path, artifact)
            remove_artifact(leaf_artifact_path(self.storage_root, self.node_path))
            self._write_questions(result)
            prune_stale_children(
                self.storage_root, self.node_path, keep={child.name for child in children}
            )
        except ArtifactIOError as exc:
            self.errors.append(f"Failed to persist {self.node_path}: {exc}")
            return self._result(is_leaf=True, status=STATUS_FAILED, rejections=rejections)

        self.log.info(
            "compile_node_decomposed",
            node_path=self.node_path,
            status=status,
            children=len(children),
            rejected=len(rejections),
        )
        return self._result(
            is_leaf=False,
            status=status,
            compile_result=result,
            children=children,
            rejections=rejections,
        )

    # -- persistence helpers -----------------------------------------------

    def _write_source_map(self) -> None:
        if self.source_node is None:
            return
        source = self.source_node.source
        target = plan_path(self.storage_root, self.node_path)
        builder = SourceMapBuilder(file=target.name)
        line_count = self.spec_text.count("\n") + 1
        builder.add_range_mapping(1, line_count, source.file, source.start_line, source.end_line)
        write_source_map(self.storage_root, self.node_path, builder.build())

    def _write_questions(self, result: CompileResult) -> None:
        if result.questions or result.considerations:
            write_questions_file(
                self.storage_root,
                self.node_path,
                NodeQuestions(
                    node_path=self.node_path,
                    questions=result.questions,
                    considerations=result.considerations,
                ),
            )
        else:
            remove_artifact(questions_path(self.storage_root, self.node_path))

    def _result(
        self,
        *,
        is_leaf: bool,
        status: str,
        compile_result: CompileResult | None = None,
        children: tuple[ChildSpec, ...] = (),
        rejections: tuple[Rejection, ...] = (),
    ) -> CompiledNode:
        result = compile_result if compile_result is not None else CompileResult()
        return CompiledNode(
            node_path=self.node_path,
            is_leaf=is_leaf,
            children=children,
            questions=result.questions,
            considerations=result.considerations,
            declared_interfaces=result.interfaces,
            declared_constraints=result.constraints,
            declared_suggestions=result.suggestions,
            declared_utilities=result.utilities,
            errors=tuple(self.errors),
            rejections=rejections,
            cache_status=status,
            oracle_calls=self.oracle_calls,
            context=self.context,
        )


async def compile_node(
    unit: CompileUnit,
    parent_context: NodeContext,
    provider: ProviderProtocol,
    storage_root: str | Path,
    options: CompileOptions | None = None,
    *,
    state: CompilationState | None = None,
    registries: Registries | None = None,
    logger: Any | None = None,
) -> CompiledNode:
    """Compile one unit whose inherited context is ``parent_context``.

    ``parent_context.ancestry`` already ends with this node's name. Children in
    the result carry the full context each of them inherits.
    """

    compiler = _NodeCompiler(
        unit,
        parent_context,
        provider,
        Path(storage_root),
        options if options is not None else CompileOptions(),
        state if state is not None else CompilationState(),
        registries if registries is not None else Registries(),
        logger if logger is not None else structlog.get_logger(__name__),
    )
    return await compiler.run()


async def compile_root_node(
    root_node: RootNode,
    provider: ProviderProtocol,
    storage_root: str | Path,
    options: CompileOptions | None = None,
    **kwargs: Any,
) -> CompiledNode:
    return await compile_node(
        root_node, create_root_context(root_node), provider, storage_root, options, **kwargs
    )


__all__ = [
    "CompileOptions",
    "CompileUnit",
    "compile_node",
    "compile_root_node",
    "is_small_spec",
]
