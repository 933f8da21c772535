"""Command-line interface router for planforge."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from planforge.compiler import CompileOptions, Governors, compile_tree
from planforge.config import ConfigLoadError, ConfigValidationError, load_config
from planforge.domain.ids import generate_run_id
from planforge.generator import BuildOptions, discover_leaf_nodes, run_build
from planforge.main import ExitCode
from planforge.observability import setup_logging, shutdown_logging
from planforge.providers import ProviderUnavailableError, ScriptedProvider, ScriptLoadError
from planforge.spec_ingestion import SpecLoadError, load_spec_tree
from planforge.ui.render import CLIRenderer, color_allowed, create_renderer


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = ExitCode.RUN_FAILED

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="planforge",
        description=(
            "planforge - recursive spec-to-plan compiler.\n\n"
            "Common workflows:\n"
            "  planforge compile spec.yaml --script oracle.yaml   Compile a plan tree\n"
            "  planforge leaves                                   List compiled leaves\n"
            "  planforge build --script oracle.yaml               Generate leaf outputs\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to planforge TOML config (default: ./planforge.toml if present).",
    )
    common.add_argument(
        "--storage-root",
        default=None,
        help="Plan tree directory (default: paths.storage_root from config).",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output and debug logs.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )
    common.add_argument("--json", action="store_true", help="Emit deterministic JSON output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # compile -------------------------------------------------------------
    compile_parser = subparsers.add_parser(
        "compile",
        parents=[common],
        help="Compile a spec tree into a cached plan tree",
        description=(
            "Walk the spec tree top-down, consulting the oracle for every node that\n"
            "changed since the previous run.\n\n"
            "Examples:\n"
            "  planforge compile spec.yaml --script oracle.yaml\n"
            "  planforge compile spec.yaml --script oracle.yaml --no-cache --max-depth 3\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    compile_parser.add_argument("spec_path", help="Path to the YAML/JSON spec tree")
    compile_parser.add_argument("--script", default=None, help="Scripted oracle document (YAML/JSON)")
    compile_parser.add_argument(
        "--no-cache",
        action="store_true",
        default=False,
        help="Recompile every node even when its inputs are unchanged",
    )
    compile_parser.add_argument("--max-nodes", type=int, default=None, help="Node ceiling per run")
    compile_parser.add_argument("--max-calls", type=int, default=None, help="Oracle call ceiling per run")
    compile_parser.add_argument(
        "--max-parallel", type=int, default=None, help="Concurrent oracle calls"
    )
    compile_parser.add_argument("--max-depth", type=int, default=None, help="Maximum nesting depth")
    compile_parser.set_defaults(handler=_cmd_compile)

    # build ---------------------------------------------------------------
    build_parser_ = subparsers.add_parser(
        "build",
        parents=[common],
        help="Generate outputs for every compiled leaf",
        description=(
            "Discover leaves in the plan tree and generate their files into the build root.\n\n"
            "Examples:\n"
            "  planforge build --script oracle.yaml\n"
            "  planforge build --script oracle.yaml --clean --parallelism 2\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    build_parser_.add_argument("--script", default=None, help="Scripted oracle document (YAML/JSON)")
    build_parser_.add_argument("--build-root", default=None, help="Output directory")
    build_parser_.add_argument("--parallelism", type=int, default=None, help="Concurrent leaves")
    build_parser_.add_argument(
        "--clean", action="store_true", default=None, help="Delete the build root first"
    )
    build_parser_.add_argument(
        "--no-headers",
        action="store_true",
        default=False,
        help="Do not prepend provenance headers to generated files",
    )
    build_parser_.add_argument(
        "--run-commands",
        action="store_true",
        default=None,
        help="Run allow-listed setup commands declared by leaves",
    )
    build_parser_.set_defaults(handler=_cmd_build)

    # leaves --------------------------------------------------------------
    leaves_parser = subparsers.add_parser(
        "leaves",
        parents=[common],
        help="List leaves discovered in the plan tree",
    )
    leaves_parser.set_defaults(handler=_cmd_leaves)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return ExitCode.CONFIG_ERROR

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_compile(args: argparse.Namespace) -> int:
    config = _load_effective_config(
        args,
        {
            "governors.max_nodes": args.max_nodes,
            "governors.max_calls": args.max_calls,
            "governors.max_parallel": args.max_parallel,
            "governors.max_depth": args.max_depth,
            "cache.enabled": False if args.no_cache else None,
        },
    )
    spec_path = _resolve_existing_file(args.spec_path, "spec")
    try:
        root = load_spec_tree(spec_path)
    except SpecLoadError as exc:
        raise CLIError(str(exc), exit_code=ExitCode.CONFIG_ERROR) from exc

    provider = _load_provider(args)
    storage_root = Path(config["paths"]["storage_root"])
    options = CompileOptions(use_cache=bool(config["cache"]["enabled"]), verbose=_flag(args, "verbose"))
    governors = Governors(**config["governors"])

    with _logging_session(args, config) as logger:
        summary = asyncio.run(
            compile_tree(
                root,
                provider,
                storage_root,
                options=options,
                governors=governors,
                logger=logger,
            )
        )

    if _flag(args, "json"):
        _emit_json({"command": "compile", "storage_root": str(storage_root), **summary.to_dict()})
        return summary.exit_status

    renderer = _get_renderer(args)
    renderer.kv("Storage root", storage_root)
    renderer.kv("Nodes", f"{summary.completed_nodes}/{summary.total_nodes}")
    renderer.kv("Oracle calls", summary.ai_calls)
    renderer.kv("Cached nodes", summary.skipped_nodes)
    renderer.kv("Questions raised", summary.questions_raised)
    renderer.kv("Leaves", len(summary.leaf_nodes))
    if renderer.verbose and summary.node_status:
        rows = [[node_path, status] for node_path, status in summary.node_status.items()]
        renderer.table(["NODE", "STATUS"], rows, title="Node status:")
    if summary.rejections:
        renderer.section("Rejected actions:")
        renderer.items([f"{node_path}: {item.child_name} ({item.reason})" for node_path, item in summary.rejections])
    if summary.limit_reached is not None:
        renderer.warning(f"governor limit reached: {summary.limit_reached}")
    if summary.errors:
        renderer.section("Errors:")
        renderer.items(list(summary.errors))
    if summary.exit_status == 0:
        renderer.next_steps(["planforge leaves", "planforge build --script <oracle>"])
    return summary.exit_status


def _cmd_build(args: argparse.Namespace) -> int:
    config = _load_effective_config(
        args,
        {
            "paths.build_root": _absolute_or_none(args.build_root),
            "build.parallelism": args.parallelism,
            "build.clean": args.clean,
            "build.add_source_headers": False if args.no_headers else None,
            "build.run_commands": args.run_commands,
        },
    )
    provider = _load_provider(args)
    storage_root = Path(config["paths"]["storage_root"])
    build_root = Path(config["paths"]["build_root"])
    build_config = config["build"]
    options = BuildOptions(
        parallelism=build_config["parallelism"],
        clean=build_config["clean"],
        add_source_headers=build_config["add_source_headers"],
        run_commands=build_config["run_commands"],
        command_allow_list=tuple(config["commands"]["allow_list"]),
        command_timeout_seconds=build_config["command_timeout_seconds"],
        verbose=_flag(args, "verbose"),
    )

    with _logging_session(args, config) as logger:
        result = asyncio.run(run_build(provider, storage_root, build_root, options, logger=logger))

    if _flag(args, "json"):
        _emit_json({"command": "build", "build_root": str(build_root), **result.to_dict()})
        return result.exit_status

    renderer = _get_renderer(args)
    renderer.kv("Build root", build_root)
    renderer.kv("Leaves", result.total_leaves)
    renderer.kv("Succeeded", result.success_count)
    renderer.kv("Failed", result.failure_count)
    renderer.kv("Files", len(result.files))
    if renderer.verbose and result.files:
        renderer.table(["FILE"], [[file.path] for file in result.files], title="Generated files:")
    if result.questions:
        renderer.section("Questions:")
        renderer.items([f"{question.id}: {question.question}" for question in result.questions])
    if result.errors:
        renderer.section("Errors:")
        renderer.items(list(result.errors))
    return result.exit_status


def _cmd_leaves(args: argparse.Namespace) -> int:
    config = _load_effective_config(args, {})
    storage_root = Path(config["paths"]["storage_root"])
    leaves = discover_leaf_nodes(storage_root)

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "leaves",
                "storage_root": str(storage_root),
                "leaves": [leaf.node_path for leaf in leaves],
            }
        )
        return ExitCode.SUCCESS

    renderer = _get_renderer(args)
    if not leaves:
        renderer.text(f"No leaf nodes found under {storage_root}")
        return ExitCode.SUCCESS
    for leaf in leaves:
        renderer.text(leaf.node_path)
    return ExitCode.SUCCESS


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=_flag(args, "no_color"), verbose=_flag(args, "verbose"))


def _load_effective_config(
    args: argparse.Namespace, overrides: Mapping[str, object]
) -> dict[str, Any]:
    cli_overrides: dict[str, object] = {
        "paths.storage_root": _absolute_or_none(getattr(args, "storage_root", None)),
        **overrides,
    }
    if _flag(args, "verbose"):
        cli_overrides["observability.log_level"] = "DEBUG"

    try:
        return load_config(getattr(args, "config_path", None), cli_overrides=cli_overrides)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=ExitCode.CONFIG_ERROR) from exc


def _load_provider(args: argparse.Namespace) -> ScriptedProvider:
    script = getattr(args, "script", None)
    if script is None:
        raise ProviderUnavailableError("no oracle configured; pass --script PATH", provider="cli")
    path = _resolve_existing_file(script, "script")
    try:
        return ScriptedProvider.from_file(path)
    except ScriptLoadError as exc:
        raise CLIError(str(exc), exit_code=ExitCode.CONFIG_ERROR) from exc


@contextmanager
def _logging_session(args: argparse.Namespace, config: Mapping[str, Any]) -> Iterator[Any]:
    """Scope logging setup to a single command run."""

    handle = setup_logging(
        config["observability"],
        run_id=generate_run_id(),
        log_dir=config["paths"]["log_dir"],
        colors=color_allowed(_flag(args, "no_color")),
    )
    try:
        yield structlog.get_logger("planforge.cli")
    finally:
        shutdown_logging(handle)


def _resolve_existing_file(raw: str, label: str) -> Path:
    candidate = Path(raw).expanduser().resolve()
    if not candidate.exists() or not candidate.is_file():
        raise CLIError(
            f"{label} file not found: {candidate}", exit_code=ExitCode.CONFIG_ERROR
        )
    return candidate


def _absolute_or_none(raw: object) -> str | None:
    if not isinstance(raw, str) or not raw.strip():
        return None
    return Path(raw).expanduser().resolve().as_posix()


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = ["CLIError", "build_parser", "run_cli"]


if __name__ == "__main__":
    raise SystemExit(run_cli())
