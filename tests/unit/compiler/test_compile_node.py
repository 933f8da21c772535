"""
planforge: unit tests for single-node compilation

File: tests/unit/compiler/test_compile_node.py

Purpose
- Validate the per-node decision chain: cache, leaf shortcuts, structural
  decomposition, oracle decomposition and failure handling.

What this test file should cover
- Every leaf status and when the oracle is (not) consulted.
- Child admission: recursion guard, depth coercion, invalid actions.
- Persisted artifacts for leaves, decomposed nodes and failed nodes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from planforge.compiler.compile_node import (
    STATUS_COMPILED,
    STATUS_FAILED,
    STATUS_LEAF_DEPTH,
    STATUS_LEAF_MARKED,
    STATUS_LEAF_NO_CHILDREN,
    STATUS_LEAF_PARAMETER,
    STATUS_LEAF_SMALL,
    STATUS_STRUCTURAL,
    CompileOptions,
    compile_node,
    compile_root_node,
    is_small_spec,
)
from planforge.compiler.differ import REASON_VALID
from planforge.compiler.state import CompilationState, GovernorExceeded, Governors
from planforge.compiler.writer import (
    read_context_file,
    read_leaf_artifact,
    read_plan_file,
    read_questions_file,
    read_source_map,
)
from planforge.domain.models import ChildSpec, NodeContext, Rejection
from planforge.domain.spec_tree import (
    ModuleNode,
    ParameterNode,
    ProseNode,
    RootNode,
    SourceRange,
)
from planforge.providers.scripted import ScriptedProvider

if TYPE_CHECKING:
    from pathlib import Path


def _module(name: str, *prose: str, parameters: tuple[ParameterNode, ...] = ()) -> ModuleNode:
    return ModuleNode(
        name=name,
        parameters=parameters,
        children=tuple(ProseNode(content=text) for text in prose),
    )


def _context(*names: str) -> NodeContext:
    return NodeContext(ancestry=("root", *names))


def test_is_small_spec() -> None:
    assert is_small_spec("Format dates as ISO strings")
    assert not is_small_spec("x" * 100)
    assert not is_small_spec("svc { a }")


@pytest.mark.asyncio
async def test_short_child_spec_is_a_leaf_without_oracle(tmp_path: Path) -> None:
    provider = ScriptedProvider()
    state = CompilationState()
    unit = ChildSpec(name="utils", is_leaf=False, spec_text="Small helper functions")

    compiled = await compile_node(unit, _context("utils"), provider, tmp_path, state=state)

    assert compiled.is_leaf
    assert compiled.cache_status == STATUS_LEAF_SMALL
    assert compiled.oracle_calls == 0
    assert provider.compile_requests == []
    assert state.ai_calls == 0
    assert read_plan_file(tmp_path, "utils") == "Small helper functions"
    leaf = read_leaf_artifact(tmp_path, "utils")
    assert leaf is not None
    assert leaf.source_spec_ref == "utils/node.plan"


@pytest.mark.asyncio
async def test_marked_leaf_persists_build_instructions(tmp_path: Path) -> None:
    unit = ChildSpec(
        name="models",
        is_leaf=True,
        spec_text="Define models {" + "x" * 200 + "}",
        files=("models.py",),
        commands=("npm install",),
        output_path="src/api",
    )

    compiled = await compile_node(unit, _context("api", "models"), ScriptedProvider(), tmp_path)

    assert compiled.cache_status == STATUS_LEAF_MARKED
    leaf = read_leaf_artifact(tmp_path, "api/models")
    assert leaf is not None
    assert leaf.name == "models"
    assert leaf.required_files == ("models.py",)
    assert leaf.allowed_commands == ("npm install",)
    assert leaf.output_path == "src/api"
    artifact = read_context_file(tmp_path, "api/models")
    assert artifact is not None
    assert artifact.is_leaf
    assert artifact.cache is not None


@pytest.mark.asyncio
async def test_explicit_leaf_parameter(tmp_path: Path) -> None:
    module = _module("cli", "A command line front end", parameters=(ParameterNode("leaf", True),))
    provider = ScriptedProvider()

    compiled = await compile_node(module, _context("cli"), provider, tmp_path)

    assert compiled.cache_status == STATUS_LEAF_PARAMETER
    assert provider.compile_requests == []


@pytest.mark.asyncio
async def test_maximum_depth_forces_leaf(tmp_path: Path) -> None:
    module = _module("deep", "Something that would otherwise need decomposing")
    state = CompilationState(Governors(max_depth=2))
    provider = ScriptedProvider()

    compiled = await compile_node(module, _context("a", "deep"), provider, tmp_path, state=state)

    assert compiled.cache_status == STATUS_LEAF_DEPTH
    assert provider.compile_requests == []


@pytest.mark.asyncio
async def test_pure_container_is_decomposed_structurally(tmp_path: Path) -> None:
    root = RootNode(
        children=(
            ParameterNode("language", "python"),
            _module("api", "Expose REST endpoints"),
            _module("db", "Persist records"),
        )
    )
    provider = ScriptedProvider()
    state = CompilationState()

    compiled = await compile_root_node(root, provider, tmp_path, state=state)

    assert compiled.cache_status == STATUS_STRUCTURAL
    assert not compiled.is_leaf
    assert [child.name for child in compiled.children] == ["api", "db"]
    assert all(isinstance(child.source_node, ModuleNode) for child in compiled.children)
    assert compiled.children[0].context is not None
    assert compiled.children[0].context.ancestry == ("root", "api")
    assert provider.compile_requests == []
    assert state.ai_calls == 0
    assert (tmp_path / "root.plan").is_file()
    assert read_leaf_artifact(tmp_path, "root") is None


@pytest.mark.asyncio
async def test_oracle_decomposition_propagates_declarations(tmp_path: Path) -> None:
    provider = ScriptedProvider.from_mapping(
        {
            "compile": {
                "api": {
                    "children": [
                        {"name": "routes", "spec": "routes { list, create, delete }"},
                        {"name": "schemas", "is_leaf": True, "spec": "Pydantic schemas", "files": ["schemas.py"]},
                    ],
                    "interfaces": {"Todo": "class Todo: id: int; title: str"},
                    "constraints": ["Return JSON bodies only"],
                    "questions": [{"question": "Is pagination required?", "assumption": "No"}],
                }
            }
        }
    )
    state = CompilationState()

    compiled = await compile_node(
        _module("api", "Expose REST endpoints for todos"), _context("api"), provider, tmp_path, state=state
    )

    assert compiled.cache_status == STATUS_COMPILED
    assert compiled.oracle_calls == 1
    assert state.ai_calls == 1
    assert [child.name for child in compiled.children] == ["routes", "schemas"]
    routes_context = compiled.children[0].context
    assert routes_context is not None
    assert routes_context.ancestry == ("root", "api", "routes")
    assert routes_context.interfaces["Todo"].declaring_node == "api"
    assert [entry.rule for entry in routes_context.constraints] == ["Return JSON bodies only"]
    request = provider.compile_requests[0]
    assert request.node_path == "api"
    assert request.allow_nodes
    assert request.spec.startswith("api {")
    questions = read_questions_file(tmp_path, "api")
    assert questions is not None
    assert questions.questions[0].id == "q1"
    source_map = read_source_map(tmp_path, "api")
    assert source_map is not None
    assert source_map.file == "node.plan"


@pytest.mark.asyncio
async def test_similar_child_names_are_rejected(tmp_path: Path) -> None:
    provider = ScriptedProvider.from_mapping(
        {
            "compile": {
                "api": {
                    "children": [
                        {"name": "api_routes", "spec": "routes { x }"},
                        {"name": "handlers", "spec": "handlers { y }"},
                        {"name": "handlers", "spec": "handlers { z }"},
                        {"name": "../escape", "spec": "nope"},
                    ]
                }
            }
        }
    )

    compiled = await compile_node(_module("api", "Expose endpoints"), _context("api"), provider, tmp_path)

    assert [child.name for child in compiled.children] == ["handlers"]
    assert [(item.child_name, item.kind) for item in compiled.rejections] == [
        ("api_routes", "recursion"),
        ("handlers", "collision"),
        ("../escape", "invalid_name"),
    ]


@pytest.mark.asyncio
async def test_children_become_leaves_one_level_above_max_depth(tmp_path: Path) -> None:
    provider = ScriptedProvider.from_mapping(
        {"compile": {"api": {"children": [{"name": "routes", "spec": "routes { x }"}]}}}
    )
    state = CompilationState(Governors(max_depth=2))

    compiled = await compile_node(
        _module("api", "Expose endpoints"), _context("api"), provider, tmp_path, state=state
    )

    assert not provider.compile_requests[0].allow_nodes
    (child,) = compiled.children
    assert child.is_leaf


@pytest.mark.asyncio
async def test_no_children_makes_the_node_a_leaf(tmp_path: Path) -> None:
    compiled = await compile_node(
        _module("api", "Expose endpoints"), _context("api"), ScriptedProvider(), tmp_path
    )

    assert compiled.is_leaf
    assert compiled.cache_status == STATUS_LEAF_NO_CHILDREN
    assert compiled.oracle_calls == 1


@pytest.mark.asyncio
async def test_oracle_failure_becomes_an_uncached_leaf(tmp_path: Path) -> None:
    provider = ScriptedProvider.from_mapping({"failures": {"api": "upstream unavailable"}})

    compiled = await compile_node(_module("api", "Expose endpoints"), _context("api"), provider, tmp_path)

    assert compiled.is_leaf
    assert compiled.cache_status == STATUS_FAILED
    (error,) = compiled.errors
    assert error.startswith("Provider compilation failed for api:")
    assert "upstream unavailable" in error
    artifact = read_context_file(tmp_path, "api")
    assert artifact is not None
    assert artifact.cache is None

    await compile_node(_module("api", "Expose endpoints"), _context("api"), provider, tmp_path)
    assert provider.compiled_paths == ["api", "api"]


@pytest.mark.asyncio
async def test_unchanged_node_is_skipped_on_recompile(tmp_path: Path) -> None:
    provider = ScriptedProvider.from_mapping(
        {"compile": {"api": {"children": [{"name": "routes", "spec": "routes { x }"}]}}}
    )
    module = _module("api", "Expose endpoints")

    first = await compile_node(module, _context("api"), provider, tmp_path)
    second = await compile_node(module, _context("api"), provider, tmp_path)

    assert not first.skipped
    assert second.skipped
    assert second.cache_status == REASON_VALID
    assert [child.name for child in second.children] == ["routes"]
    assert second.children[0].context == first.children[0].context
    assert provider.compiled_paths == ["api"]

    uncached = await compile_node(
        module, _context("api"), provider, tmp_path, CompileOptions(use_cache=False)
    )
    assert not uncached.skipped
    assert provider.compiled_paths == ["api", "api"]


@pytest.mark.asyncio
async def test_session_turns_are_metered_and_invalid_actions_rejected(tmp_path: Path) -> None:
    provider = ScriptedProvider.from_mapping(
        {
            "actions": {
                "api": [
                    [
                        {"kind": "gen_node", "name": "routes", "spec": "routes { x }"},
                        {"kind": "gen_leaf", "name": "schemas", "spec": "Schemas"},
                    ],
                    [{"kind": "gen_leaf", "name": "schemas", "spec": "Schemas", "files": ["schemas.py"]}],
                ]
            }
        }
    )
    state = CompilationState()

    compiled = await compile_node(
        _module("api", "Expose endpoints"), _context("api"), provider, tmp_path, state=state
    )

    assert compiled.cache_status == STATUS_COMPILED
    assert [child.name for child in compiled.children] == ["routes", "schemas"]
    assert compiled.children[1].files == ("schemas.py",)
    assert compiled.oracle_calls == 3
    assert state.ai_calls == 3
    assert compiled.rejections == (
        Rejection("schemas", "invalid_action", "gen_leaf requires name, prompt, and files"),
    )
    session = provider.sessions["api"]
    assert [outcome.accepted for outcome in session.received[1]] == [True, False]
    assert session.received[1][0].detail == "api/routes"


@pytest.mark.asyncio
async def test_call_ceiling_propagates_to_the_driver(tmp_path: Path) -> None:
    state = CompilationState(Governors(max_calls=0))

    with pytest.raises(GovernorExceeded):
        await compile_node(
            _module("api", "Expose endpoints"), _context("api"), ScriptedProvider(), tmp_path, state=state
        )


@pytest.mark.asyncio
async def test_source_map_points_at_spec_lines(tmp_path: Path) -> None:
    module = ModuleNode(
        name="api",
        children=(ProseNode("Expose endpoints"),),
        source=SourceRange(file="spec.yaml", start_line=4, end_line=9),
    )

    await compile_node(module, _context("api"), ScriptedProvider(), tmp_path)

    source_map = read_source_map(tmp_path, "api")
    assert source_map is not None
    assert source_map.sources == ("spec.yaml",)
    assert source_map.mappings[0].source_line == 4
    assert len(source_map.mappings) == 3
