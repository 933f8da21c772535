"""
planforge: single-leaf generation

File: src/planforge/generator/execute.py

Purpose
- Turn one compiled leaf into files: read its plan, run its allow-listed setup
  commands, ask the oracle for the implementation and write the result.

Functional requirements
- Failures are collected on the returned ``LeafExecution``; nothing raises past
  this boundary, so one leaf never aborts a build.
- Generated paths must stay beneath the leaf's output directory.
- A file is written only after its owner claim succeeds.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any

import structlog

from planforge.compiler.registries import CollisionError, FileOwnershipRegistry
from planforge.compiler.writer import (
    ArtifactIOError,
    NodeQuestions,
    read_context_file,
    read_leaf_artifact,
    read_plan_file,
    read_questions_file,
    write_questions_file,
)
from planforge.domain.models import GeneratedFile, NodeContext
from planforge.generator.commands import CommandError
from planforge.generator.headers import add_provenance_header
from planforge.providers.base import GenerateRequest, GenerateResult, ProviderError
from planforge.utils.fs import atomic_write, is_within

if TYPE_CHECKING:
    from planforge.domain.models import Consideration, LeafArtifact, Question
    from planforge.generator.commands import CommandRunner
    from planforge.generator.oplog import OperationLog
    from planforge.providers.base import ProviderProtocol


@dataclass(frozen=True, slots=True)
class ExecuteOptions:
    add_source_headers: bool = True
    run_commands: bool = False
    verbose: bool = False


@dataclass(frozen=True, slots=True)
class LeafExecution:
    node_path: str
    success: bool
    files: tuple[GeneratedFile, ...] = ()
    questions: tuple[Question, ...] = ()
    considerations: tuple[Consideration, ...] = ()
    errors: tuple[str, ...] = ()


class _LeafRun:
    def __init__(
        self,
        node_path: str,
        provider: ProviderProtocol,
        storage_root: Path,
        build_root: Path,
        options: ExecuteOptions,
        file_owners: FileOwnershipRegistry,
        command_runner: CommandRunner | None,
        operation_log: OperationLog | None,
        logger: Any,
    ) -> None:
        self.node_path = node_path
        self.provider = provider
        self.storage_root = storage_root
        self.build_root = build_root
        self.options = options
        self.file_owners = file_owners
        self.command_runner = command_runner
        self.operation_log = operation_log
        self.log = logger
        self.errors: list[str] = []

    def fail(self, message: str) -> None:
        self.errors.append(message)
        if self.operation_log is not None:
            self.operation_log.record_error(self.node_path, message)

    async def run(self) -> LeafExecution:
        spec = read_plan_file(self.storage_root, self.node_path)
        if spec is None:
            self.fail(f"No plan file found for {self.node_path}")
            return LeafExecution(self.node_path, success=False, errors=tuple(self.errors))

        artifact = read_context_file(self.storage_root, self.node_path)
        context = artifact.context if artifact is not None else NodeContext()
        leaf = read_leaf_artifact(self.storage_root, self.node_path)
        output_path = leaf.output_path if leaf is not None else ""
        output_dir = self.build_root / output_path if output_path else self.build_root
        if not is_within(output_dir, self.build_root):
            self.fail(f"Output path escapes the build root for {self.node_path}: {output_path}")
            return LeafExecution(self.node_path, success=False, errors=tuple(self.errors))

        if self.options.run_commands and leaf is not None:
            await self._run_commands(leaf, output_dir)

        self.log.info("build_leaf_generating", node_path=self.node_path, output_path=output_path)
        result = await self._generate(spec, context, leaf)
        if result is None:
            return LeafExecution(self.node_path, success=False, errors=tuple(self.errors))

        written = self._write_files(result.files, output_path, output_dir)
        if leaf is not None:
            produced = {file.path for file in result.files}
            for required in leaf.required_files:
                if required not in produced:
                    self.fail(f"Required file {required} was not generated for {self.node_path}")
        self._persist_questions(result)

        return LeafExecution(
            node_path=self.node_path,
            success=not self.errors,
            files=tuple(written),
            questions=result.questions,
            considerations=result.considerations,
            errors=tuple(self.errors),
        )

    async def _run_commands(self, leaf: LeafArtifact, output_dir: Path) -> None:
        if self.command_runner is None:
            return
        for command in leaf.allowed_commands:
            try:
                completed = await self.command_runner.run(
                    command, cwd=output_dir, node_path=self.node_path
                )
            except CommandError as exc:
                self.errors.append(f"Command failed for {self.node_path}: {exc}")
                continue
            if not completed.succeeded:
                self.errors.append(
                    f"Command {command!r} exited with {completed.returncode} for {self.node_path}"
                )

    async def _generate(
        self, spec: str, context: NodeContext, leaf: LeafArtifact | None
    ) -> GenerateResult | None:
        request = GenerateRequest(
            spec=spec,
            node_path=self.node_path,
            context=context,
            required_files=leaf.required_files if leaf is not None else (),
            output_path=leaf.output_path if leaf is not None else "",
        )
        try:
            result = await self.provider.generate(request)
        except ProviderError as exc:
            return self._generation_failed(exc)
        except Exception as exc:  # noqa: BLE001 - oracle boundary
            return self._generation_failed(exc)
        if self.operation_log is not None:
            self.operation_log.record_generation_call(
                self.node_path, success=True, files=len(result.files)
            )
        return result

    def _generation_failed(self, exc: BaseException) -> None:
        message = f"Provider generation failed for {self.node_path}: {exc}"
        self.errors.append(message)
        self.log.warning("build_leaf_generation_failed", node_path=self.node_path, error=str(exc))
        if self.operation_log is not None:
            self.operation_log.record_generation_call(self.node_path, success=False, error=message)
        return None

    def _write_files(
        self, files: tuple[GeneratedFile, ...], output_path: str, output_dir: Path
    ) -> list[GeneratedFile]:
        written: list[GeneratedFile] = []
        for generated in files:
            relative = PurePosixPath(generated.path)
            target = output_dir.joinpath(*relative.parts)
            if relative.is_absolute() or not is_within(target, output_dir):
                self.fail(f"Refusing to write outside the output directory: {generated.path}")
                continue
            try:
                self.file_owners.register(output_path, generated.path, self.node_path)
            except CollisionError as exc:
                self.fail(str(exc))
                continue

            content = generated.content
            if self.options.add_source_headers:
                content = add_provenance_header(content, generated.path, self.node_path)
            try:
                atomic_write(target, content)
            except OSError as exc:
                self.fail(f"Failed to write {generated.path}: {exc}")
                continue
            if self.operation_log is not None:
                self.operation_log.record_file_write(
                    self.node_path,
                    target.relative_to(self.build_root).as_posix(),
                    len(content.encode("utf-8")),
                )
            if self.options.verbose:
                self.log.info("build_file_written", node_path=self.node_path, path=generated.path)
            written.append(GeneratedFile(path=generated.path, content=content))
        return written

    def _persist_questions(self, result: GenerateResult) -> None:
        if not result.questions and not result.considerations:
            return
        existing = read_questions_file(self.storage_root, self.node_path)
        questions = list(existing.questions) if existing is not None else []
        considerations = list(existing.considerations) if existing is not None else []
        known_questions = {question.id for question in questions}
        known_considerations = {item.id for item in considerations}
        questions.extend(item for item in result.questions if item.id not in known_questions)
        considerations.extend(
            item for item in result.considerations if item.id not in known_considerations
        )
        try:
            write_questions_file(
                self.storage_root,
                self.node_path,
                NodeQuestions(
                    node_path=self.node_path,
                    questions=tuple(questions),
                    considerations=tuple(considerations),
                ),
            )
        except ArtifactIOError as exc:
            self.fail(f"Failed to write questions for {self.node_path}: {exc}")


async def execute_generator(
    node_path: str,
    provider: ProviderProtocol,
    storage_root: str | Path,
    build_root: str | Path,
    options: ExecuteOptions | None = None,
    *,
    file_owners: FileOwnershipRegistry | None = None,
    command_runner: CommandRunner | None = None,
    operation_log: OperationLog | None = None,
    logger: Any | None = None,
) -> LeafExecution:
    """Generate the files of the leaf at ``node_path`` beneath ``build_root``."""

    run = _LeafRun(
        node_path,
        provider,
        Path(storage_root),
        Path(build_root),
        options if options is not None else ExecuteOptions(),
        file_owners if file_owners is not None else FileOwnershipRegistry(),
        command_runner,
        operation_log,
        logger if logger is not None else structlog.get_logger(__name__),
    )
    return await run.run()


__all__ = ["ExecuteOptions", "LeafExecution", "execute_generator"]
