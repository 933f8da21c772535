"""
planforge: build phase

File: src/planforge/generator/build.py

Purpose
- Discover every compiled leaf and generate them all with bounded parallelism.

Functional requirements
- One leaf's failure never aborts the others.
- All leaves of one build share a file-ownership registry, so two leaves can
  never write the same file.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from planforge.compiler.registries import FileOwnershipRegistry
from planforge.constants import (
    DEFAULT_BUILD_PARALLELISM,
    DEFAULT_COMMAND_ALLOW_LIST,
    DEFAULT_COMMAND_TIMEOUT_SECONDS,
)
from planforge.generator.commands import CommandAllowList, CommandRunner
from planforge.generator.discover import discover_leaf_nodes
from planforge.generator.execute import ExecuteOptions, LeafExecution, execute_generator
from planforge.generator.oplog import OperationLog
from planforge.utils.concurrency import WorkerPool
from planforge.utils.fs import safe_delete

if TYPE_CHECKING:
    from planforge.domain.models import Consideration, GeneratedFile, Question
    from planforge.providers.base import ProviderProtocol

NO_LEAVES_ERROR = "No leaf nodes found"


@dataclass(frozen=True, slots=True)
class BuildOptions:
    parallelism: int = DEFAULT_BUILD_PARALLELISM
    clean: bool = False
    add_source_headers: bool = True
    run_commands: bool = False
    command_allow_list: tuple[str, ...] = DEFAULT_COMMAND_ALLOW_LIST
    command_timeout_seconds: float = DEFAULT_COMMAND_TIMEOUT_SECONDS
    verbose: bool = False

    def __post_init__(self) -> None:
        if self.parallelism < 1:
            raise ValueError("parallelism must be >= 1")


@dataclass(frozen=True, slots=True)
class BuildResult:
    total_leaves: int
    success_count: int
    failure_count: int
    files: tuple[GeneratedFile, ...] = ()
    questions: tuple[Question, ...] = ()
    considerations: tuple[Consideration, ...] = ()
    errors: tuple[str, ...] = ()
    results: tuple[LeafExecution, ...] = field(default=(), repr=False)

    @property
    def exit_status(self) -> int:
        return 0 if self.failure_count == 0 and not self.errors else 1

    def to_dict(self) -> dict[str, object]:
        return {
            "total_leaves": self.total_leaves,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "files": [file.path for file in self.files],
            "questions": [question.to_dict() for question in self.questions],
            "considerations": [item.to_dict() for item in self.considerations],
            "errors": list(self.errors),
        }


async def run_build(
    provider: ProviderProtocol,
    storage_root: str | Path,
    build_root: str | Path,
    options: BuildOptions | None = None,
    *,
    logger: Any | None = None,
) -> BuildResult:
    """Generate every leaf under ``storage_root`` into ``build_root``."""

    opts = options if options is not None else BuildOptions()
    log = logger if logger is not None else structlog.get_logger(__name__)
    plan_root = Path(storage_root)
    target = Path(build_root)

    if opts.clean and target.exists():
        log.info("build_clean", build_root=str(target))
        safe_delete(target, target.parent)
    target.mkdir(parents=True, exist_ok=True)

    leaves = discover_leaf_nodes(plan_root)
    if not leaves:
        log.warning("build_no_leaves", storage_root=str(plan_root))
        return BuildResult(total_leaves=0, success_count=0, failure_count=0, errors=(NO_LEAVES_ERROR,))

    log.info("build_started", leaves=len(leaves), parallelism=opts.parallelism)
    operation_log = OperationLog(plan_root)
    file_owners = FileOwnershipRegistry()
    runner = (
        CommandRunner(
            CommandAllowList(opts.command_allow_list),
            timeout_seconds=opts.command_timeout_seconds,
            operation_log=operation_log,
            logger=log,
        )
        if opts.run_commands
        else None
    )
    execute_options = ExecuteOptions(
        add_source_headers=opts.add_source_headers,
        run_commands=opts.run_commands,
        verbose=opts.verbose,
    )

    pool: WorkerPool[LeafExecution] = WorkerPool(opts.parallelism)
    results = await pool.gather(
        execute_generator(
            leaf.node_path,
            provider,
            plan_root,
            target,
            execute_options,
            file_owners=file_owners,
            command_runner=runner,
            operation_log=operation_log,
            logger=log,
        )
        for leaf in leaves
    )
    results.sort(key=lambda item: item.node_path)

    for result in results:
        if not result.success:
            log.warning("build_leaf_failed", node_path=result.node_path, errors=list(result.errors))

    summary = BuildResult(
        total_leaves=len(leaves),
        success_count=sum(1 for result in results if result.success),
        failure_count=sum(1 for result in results if not result.success),
        files=tuple(file for result in results for file in result.files),
        questions=tuple(question for result in results for question in result.questions),
        considerations=tuple(item for result in results for item in result.considerations),
        errors=tuple(error for result in results for error in result.errors),
        results=tuple(results),
    )
    log.info(
        "build_finished",
        total_leaves=summary.total_leaves,
        success_count=summary.success_count,
        failure_count=summary.failure_count,
        files=len(summary.files),
    )
    return summary


__all__ = ["NO_LEAVES_ERROR", "BuildOptions", "BuildResult", "run_build"]
