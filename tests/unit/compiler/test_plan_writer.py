"""
planforge: unit tests for plan tree persistence

File: tests/unit/compiler/test_plan_writer.py

Purpose
- Validate the on-disk layout of plan artifacts and their read-back behavior.

What this test file should cover
- Root versus nested node path scheme.
- Read-back of every artifact kind; ``None`` for missing or corrupt files.
- Pruning of stale child node directories.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from planforge.compiler.writer import (
    ContextArtifact,
    NodeQuestions,
    context_path,
    leaf_artifact_path,
    plan_path,
    prune_stale_children,
    questions_path,
    read_context_file,
    read_leaf_artifact,
    read_plan_file,
    read_questions_file,
    source_map_path,
    write_context_file,
    write_leaf_artifact,
    write_plan_file,
    write_questions_file,
)
from planforge.domain.models import (
    CacheRecord,
    ChildSpec,
    ConstraintEntry,
    LeafArtifact,
    NodeContext,
    Question,
)

if TYPE_CHECKING:
    from pathlib import Path


def test_path_scheme_for_root_and_nested_nodes(tmp_path: Path) -> None:
    assert plan_path(tmp_path, "root") == tmp_path / "root.plan"
    assert context_path(tmp_path, "root") == tmp_path / "root.plan.context.json"
    assert questions_path(tmp_path, "root") == tmp_path / "root.plan.questions.json"
    assert source_map_path(tmp_path, "root") == tmp_path / "root.plan.map.json"
    assert plan_path(tmp_path, "api/routes") == tmp_path / "api" / "routes" / "node.plan"
    assert leaf_artifact_path(tmp_path, "api/routes") == (
        tmp_path / "api" / "routes" / "node.plan.leaf.json"
    )


def test_context_artifact_round_trip(tmp_path: Path) -> None:
    artifact = ContextArtifact(
        context=NodeContext(ancestry=("root", "api"), parameters={"port": 8080, "debug": False}),
        is_leaf=False,
        declared_constraints=(ConstraintEntry("Validate input", "api", important=True),),
        children=(
            ChildSpec(
                name="routes",
                is_leaf=True,
                spec_text="Expose CRUD routes",
                files=("routes.py",),
                output_path="src/api",
                context=NodeContext(ancestry=("root", "api", "routes")),
            ),
        ),
        cache=CacheRecord(spec_hash="a" * 16, context_hash="b" * 16, compiled_at="2026-01-01T00:00:00Z"),
    )

    write_context_file(tmp_path, "api", artifact)
    loaded = read_context_file(tmp_path, "api")

    assert loaded == artifact
    payload = json.loads(context_path(tmp_path, "api").read_text(encoding="utf-8"))
    assert payload["schema_version"] == 1
    assert payload["children"][0]["spec"] == "Expose CRUD routes"


def test_missing_or_corrupt_artifacts_read_as_none(tmp_path: Path) -> None:
    assert read_plan_file(tmp_path, "api") is None
    assert read_context_file(tmp_path, "api") is None

    target = context_path(tmp_path, "api")
    target.parent.mkdir(parents=True)
    target.write_text("{not json", encoding="utf-8")
    assert read_context_file(tmp_path, "api") is None

    target.write_text(json.dumps({"schema_version": 99, "is_leaf": True}), encoding="utf-8")
    assert read_context_file(tmp_path, "api") is None


def test_plan_questions_and_leaf_artifacts(tmp_path: Path) -> None:
    write_plan_file(tmp_path, "api/models", "Define the ORM models")
    write_questions_file(
        tmp_path,
        "api/models",
        NodeQuestions(node_path="api/models", questions=(Question(id="q1", question="Which database?"),)),
    )
    leaf = LeafArtifact(
        name="models",
        output_path="src",
        source_spec_ref="api/models/node.plan",
        generation_prompt="Define the ORM models",
        required_files=("models.py",),
    )
    write_leaf_artifact(tmp_path, "api/models", leaf)

    assert read_plan_file(tmp_path, "api/models") == "Define the ORM models"
    questions = read_questions_file(tmp_path, "api/models")
    assert questions is not None
    assert questions.questions[0].question == "Which database?"
    assert read_leaf_artifact(tmp_path, "api/models") == leaf


def test_prune_stale_children_only_removes_plan_nodes(tmp_path: Path) -> None:
    context = ContextArtifact(context=NodeContext(), is_leaf=True)
    for name in ("keep", "stale"):
        write_context_file(tmp_path, f"api/{name}", context)
    (tmp_path / "api" / "notes").mkdir()

    pruned = prune_stale_children(tmp_path, "api", keep={"keep"})

    assert pruned == ["stale"]
    assert (tmp_path / "api" / "keep").is_dir()
    assert (tmp_path / "api" / "notes").is_dir()
    assert not (tmp_path / "api" / "stale").exists()
    assert prune_stale_children(tmp_path, "missing", keep=set()) == []
