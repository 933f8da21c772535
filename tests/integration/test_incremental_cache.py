"""
planforge: incremental recompilation across runs

File: tests/integration/test_incremental_cache.py

Purpose
- Verify that edits recompile only what they affect: a changed module and its
  descendants, never its untouched siblings.

What this test file should cover
- Local invalidation when one module's own text changes.
- Propagated invalidation when an ancestor's parameters change the inherited
  context while the descendant's text stays the same.
- Failed nodes carry no cache record and are retried on the next run.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from planforge.compiler.compile_node import STATUS_COMPILED, STATUS_FAILED, STATUS_LEAF_MARKED
from planforge.compiler.differ import (
    REASON_CONTEXT_CHANGED,
    REASON_SPEC_CHANGED,
    REASON_VALID,
    diff_node,
)
from planforge.compiler.driver import compile_tree
from planforge.compiler.writer import context_path, read_context_file
from planforge.domain.models import NodeContext
from planforge.providers.scripted import ScriptedProvider
from planforge.spec_ingestion.loader import parse_spec_tree
from planforge.spec_ingestion.serializer import serialize_node

if TYPE_CHECKING:
    from pathlib import Path

pytestmark = pytest.mark.integration

_SERVICES = """\
- module: api
  children:
    - {api_prose}
- module: db
  children:
    - Persist todos in sqlite
"""

_SERVICES_SCRIPT = {
    "compile": {
        "api": {"children": [{"name": "routes", "is_leaf": True, "spec": "Define routes"}]},
        "db": {"children": [{"name": "schema", "is_leaf": True, "spec": "Define tables"}]},
    }
}

_PARAMETERIZED = """\
- module: app
  parameters:
    language: {language}
  children:
    - module: api
      children:
        - Expose endpoints
    - module: worker
      children:
        - Process jobs
- module: docs
  children:
    - Write the docs
"""

_PARAMETERIZED_SCRIPT = {
    "compile": {
        "app/api": {"children": [{"name": "routes", "is_leaf": True, "spec": "Define routes"}]},
        "app/worker": {"children": [{"name": "queue", "is_leaf": True, "spec": "Drain the queue"}]},
    }
}


async def test_editing_one_module_leaves_its_sibling_cached(tmp_path: Path) -> None:
    storage = tmp_path / "plan"
    await compile_tree(
        parse_spec_tree(_SERVICES.format(api_prose="Expose the todo endpoints")),
        ScriptedProvider.from_mapping(_SERVICES_SCRIPT),
        storage,
    )
    db_before = context_path(storage, "db").read_bytes()

    edited = parse_spec_tree(_SERVICES.format(api_prose="Expose the todo endpoints with paging"))
    api_module = edited.children[0]
    stale = diff_node(
        "api", serialize_node(api_module), NodeContext(ancestry=("root", "api")), storage
    )
    assert stale.needs_recompile
    assert stale.reason == REASON_SPEC_CHANGED

    provider = ScriptedProvider.from_mapping(_SERVICES_SCRIPT)
    summary = await compile_tree(edited, provider, storage)

    assert provider.compiled_paths == ["api"]
    assert summary.ai_calls == 1
    assert summary.node_status["api"] == STATUS_COMPILED
    assert summary.node_status["db"] == REASON_VALID
    assert summary.node_status["db/schema"] == REASON_VALID
    assert summary.node_status["api/routes"] == REASON_VALID
    assert context_path(storage, "db").read_bytes() == db_before


async def test_parameter_change_invalidates_descendants_only(tmp_path: Path) -> None:
    storage = tmp_path / "plan"
    first = await compile_tree(
        parse_spec_tree(_PARAMETERIZED.format(language="python")),
        ScriptedProvider.from_mapping(_PARAMETERIZED_SCRIPT),
        storage,
    )
    assert first.leaf_nodes == ("app/api/routes", "app/worker/queue", "docs")

    changed = parse_spec_tree(_PARAMETERIZED.format(language="go"))
    api_module = changed.children[0].children[0]
    api_context = NodeContext(ancestry=("root", "app", "api"), parameters={"language": "go"})
    diff = diff_node("app/api", serialize_node(api_module), api_context, storage)
    assert diff.reason == REASON_CONTEXT_CHANGED
    docs = diff_node(
        "docs", serialize_node(changed.children[1]), NodeContext(ancestry=("root", "docs")), storage
    )
    assert docs.reason == REASON_VALID

    provider = ScriptedProvider.from_mapping(_PARAMETERIZED_SCRIPT)
    summary = await compile_tree(changed, provider, storage)

    assert sorted(provider.compiled_paths) == ["app/api", "app/worker"]
    assert summary.node_status["docs"] == REASON_VALID
    assert summary.node_status["app/api/routes"] == STATUS_LEAF_MARKED
    routes = read_context_file(storage, "app/api/routes")
    assert routes is not None
    assert routes.context.parameters == {"language": "go"}


async def test_failed_node_is_retried_on_next_run(tmp_path: Path) -> None:
    storage = tmp_path / "plan"
    spec = _SERVICES.format(api_prose="Expose the todo endpoints")
    failing = ScriptedProvider.from_mapping(
        {**_SERVICES_SCRIPT, "failures": {"api": "upstream unavailable"}}
    )

    first = await compile_tree(parse_spec_tree(spec), failing, storage)

    assert first.node_status["api"] == STATUS_FAILED
    assert first.exit_status == 1
    assert any("Provider compilation failed for api" in error for error in first.errors)
    artifact = read_context_file(storage, "api")
    assert artifact is not None
    assert artifact.cache is None

    provider = ScriptedProvider.from_mapping(_SERVICES_SCRIPT)
    second = await compile_tree(parse_spec_tree(spec), provider, storage)

    assert provider.compiled_paths == ["api"]
    assert second.node_status["api"] == STATUS_COMPILED
    assert second.node_status["db"] == REASON_VALID
    assert second.exit_status == 0


_DECLARING = """\
- module: app
  children:
    - {app_prose}
- module: docs
  children:
    - Write the docs
"""


def _declaring_script(rule: str) -> dict[str, object]:
    return {
        "compile": {
            "app": {
                "children": [
                    {"name": "api", "is_leaf": False, "spec": "api { Expose the endpoints }"}
                ],
                "constraints": [rule],
            },
            "app/api": {"children": [{"name": "routes", "is_leaf": True, "spec": "Define routes"}]},
        }
    }


async def test_declared_constraint_change_recompiles_every_descendant(tmp_path: Path) -> None:
    storage = tmp_path / "plan"
    first = await compile_tree(
        parse_spec_tree(_DECLARING.format(app_prose="Build the app in python")),
        ScriptedProvider.from_mapping(_declaring_script("Use python")),
        storage,
    )
    assert first.leaf_nodes == ("app/api/routes", "docs")

    provider = ScriptedProvider.from_mapping(_declaring_script("Use go"))
    summary = await compile_tree(
        parse_spec_tree(_DECLARING.format(app_prose="Build the app in go")), provider, storage
    )

    assert sorted(provider.compiled_paths) == ["app", "app/api"]
    assert summary.node_status["app/api"] == STATUS_COMPILED
    assert summary.node_status["app/api/routes"] == STATUS_LEAF_MARKED
    assert summary.node_status["docs"] == REASON_VALID
    for node_path in ("app/api", "app/api/routes"):
        artifact = read_context_file(storage, node_path)
        assert artifact is not None
        assert [(entry.rule, entry.declaring_node) for entry in artifact.context.constraints] == [
            ("Use go", "app")
        ]
