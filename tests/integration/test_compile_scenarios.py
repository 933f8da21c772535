"""
planforge: end-to-end compile scenarios

File: tests/integration/test_compile_scenarios.py

Purpose
- Drive ``compile_tree`` over specs loaded from disk with a scripted oracle and
  check the persisted plan tree, not just the returned summary.

What this test file should cover
- Oracle decomposition with declared constraints flowing into the child context.
- A second identical run that reuses every cached node without oracle calls.
- The node governor halting a run after the root.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from planforge.compiler.compile_node import (
    STATUS_COMPILED,
    STATUS_LEAF_MARKED,
    STATUS_LEAF_NO_CHILDREN,
    STATUS_STRUCTURAL,
)
from planforge.compiler.differ import REASON_VALID
from planforge.compiler.driver import compile_tree
from planforge.compiler.state import Governors
from planforge.compiler.writer import read_context_file, read_leaf_artifact, read_plan_file
from planforge.domain.models import Rejection
from planforge.generator.discover import discover_leaf_nodes
from planforge.providers.scripted import ScriptedProvider
from planforge.spec_ingestion.loader import load_spec_tree, parse_spec_tree
from planforge.spec_ingestion.serializer import serialize_node

if TYPE_CHECKING:
    from pathlib import Path

pytestmark = pytest.mark.integration

_SERVER_SPEC = """\
- module: server
  children:
    - Handles requests
"""

_SERVER_SCRIPT = {
    "compile": {
        "server": {
            "children": [{"name": "router", "is_leaf": True, "spec": "Route requests"}],
            "constraints": ["Must validate input"],
        }
    }
}

_TWO_SERVICES_SPEC = """\
- module: api
  children:
    - Expose the todo endpoints
- module: db
  children:
    - Persist todos
"""

_TWO_SERVICES_SCRIPT = {
    "compile": {
        "api": {"children": [{"name": "routes", "is_leaf": True, "spec": "Define routes"}]},
        "db": {"children": [{"name": "schema", "is_leaf": True, "spec": "Define tables"}]},
    }
}


def _spec_file(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "app.spec.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def _snapshot(root: Path) -> dict[str, bytes]:
    return {
        path.relative_to(root).as_posix(): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


async def test_oracle_children_inherit_declared_constraints(tmp_path: Path) -> None:
    root = load_spec_tree(_spec_file(tmp_path, _SERVER_SPEC))
    storage = tmp_path / "plan"
    provider = ScriptedProvider.from_mapping(_SERVER_SCRIPT)

    summary = await compile_tree(root, provider, storage)

    assert summary.exit_status == 0
    assert summary.ai_calls == 1
    assert provider.compiled_paths == ["server"]
    assert summary.node_status == {
        "root": STATUS_STRUCTURAL,
        "server": STATUS_COMPILED,
        "server/router": STATUS_LEAF_MARKED,
    }
    assert summary.leaf_nodes == ("server/router",)

    server = read_context_file(storage, "server")
    assert server is not None
    assert server.is_leaf is False
    assert [child.name for child in server.children] == ["router"]
    assert read_plan_file(storage, "server") == serialize_node(root.children[0])

    router = read_context_file(storage, "server/router")
    assert router is not None
    assert router.is_leaf is True
    assert router.context.ancestry == ("root", "server", "router")
    assert [(entry.rule, entry.declaring_node) for entry in router.context.constraints] == [
        ("Must validate input", "server")
    ]
    leaf = read_leaf_artifact(storage, "server/router")
    assert leaf is not None
    assert leaf.generation_prompt == "Route requests"
    assert [node.node_path for node in discover_leaf_nodes(storage)] == ["server/router"]


async def test_identical_second_run_is_served_from_cache(tmp_path: Path) -> None:
    spec = _spec_file(tmp_path, _SERVER_SPEC)
    storage = tmp_path / "plan"
    first = await compile_tree(
        load_spec_tree(spec), ScriptedProvider.from_mapping(_SERVER_SCRIPT), storage
    )
    before = _snapshot(storage)

    provider = ScriptedProvider.from_mapping(_SERVER_SCRIPT)
    second = await compile_tree(load_spec_tree(spec), provider, storage)

    assert second.ai_calls == 0
    assert provider.compiled_paths == []
    assert second.completed_nodes == first.completed_nodes == 3
    assert second.skipped_nodes == 3
    assert set(second.node_status.values()) == {REASON_VALID}
    assert second.leaf_nodes == first.leaf_nodes
    assert _snapshot(storage) == before


async def test_node_governor_halts_after_root(tmp_path: Path) -> None:
    spec = _spec_file(tmp_path, _TWO_SERVICES_SPEC)

    unbounded = await compile_tree(
        load_spec_tree(spec),
        ScriptedProvider.from_mapping(_TWO_SERVICES_SCRIPT),
        tmp_path / "unbounded",
    )
    assert unbounded.completed_nodes == 5
    assert unbounded.leaf_nodes == ("api/routes", "db/schema")

    provider = ScriptedProvider.from_mapping(_TWO_SERVICES_SCRIPT)
    summary = await compile_tree(
        load_spec_tree(spec),
        provider,
        tmp_path / "bounded",
        governors=Governors(max_nodes=1),
    )

    assert summary.completed_nodes == 1
    assert summary.total_nodes == 1
    assert summary.limit_reached == "nodes"
    assert summary.exit_status == 1
    assert summary.to_dict()["exit_status"] == 1
    assert provider.compiled_paths == []
    assert list(summary.node_status) == ["root"]


async def test_empty_oracle_answer_becomes_a_buildable_leaf(tmp_path: Path) -> None:
    root = load_spec_tree(_spec_file(tmp_path, "- module: docs\n  children:\n    - Write the guide\n"))
    storage = tmp_path / "plan"

    summary = await compile_tree(root, ScriptedProvider(), storage)

    assert summary.node_status["docs"] == STATUS_LEAF_NO_CHILDREN
    assert summary.leaf_nodes == ("docs",)
    assert [node.node_path for node in discover_leaf_nodes(storage)] == ["docs"]


async def test_children_named_like_the_root_are_refused(tmp_path: Path) -> None:
    root = load_spec_tree(
        _spec_file(
            tmp_path,
            "- module: root\n  children: [Run the inner service]\n"
            "- module: other\n  children: [Handle the rest]\n",
        )
    )
    storage = tmp_path / "plan"

    summary = await compile_tree(root, ScriptedProvider(), storage)

    assert summary.node_status == {"root": STATUS_STRUCTURAL, "other": STATUS_LEAF_NO_CHILDREN}
    assert summary.leaf_nodes == ("other",)
    assert summary.rejections == (
        ("root", Rejection("root", "invalid_name", "Invalid node name: 'root'")),
    )
    assert read_plan_file(storage, "root") == serialize_node(root)


async def test_oracle_child_named_dot_is_refused(tmp_path: Path) -> None:
    provider = ScriptedProvider.from_mapping(
        {
            "compile": {
                "api": {
                    "children": [
                        {"name": ".", "is_leaf": True, "spec": "Everything"},
                        {"name": "routes", "is_leaf": True, "spec": "Define routes"},
                    ]
                }
            }
        }
    )
    storage = tmp_path / "plan"

    summary = await compile_tree(
        parse_spec_tree("- module: api\n  children: [Expose endpoints]\n"), provider, storage
    )

    assert summary.leaf_nodes == ("api/routes",)
    assert [(parent, rejection.kind) for parent, rejection in summary.rejections] == [
        ("api", "invalid_name")
    ]
    assert [node.node_path for node in discover_leaf_nodes(storage)] == ["api/routes"]
