"""Stable constants shared across the compiler, plan tree and build runtime."""

from __future__ import annotations

from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
CONTEXT_ARTIFACT_SCHEMA_VERSION: Final[int] = 1
SOURCE_MAP_VERSION: Final[int] = 3

# Plan tree layout.
ROOT_SENTINEL: Final[str] = "root"
ROOT_PLAN_STEM: Final[str] = "root.plan"
NODE_PLAN_STEM: Final[str] = "node.plan"
CONTEXT_SUFFIX: Final[str] = ".context.json"
QUESTIONS_SUFFIX: Final[str] = ".questions.json"
SOURCE_MAP_SUFFIX: Final[str] = ".map.json"
LEAF_SUFFIX: Final[str] = ".leaf.json"
OPERATION_LOG_FILENAME: Final[str] = "operations.jsonl"
CALL_LOG_FILENAME: Final[str] = "calls.jsonl"

# Governors.
DEFAULT_MAX_NODES: Final[int] = 100
DEFAULT_MAX_CALLS: Final[int] = 100
DEFAULT_MAX_PARALLEL: Final[int] = 5
DEFAULT_MAX_DEPTH: Final[int] = 5
DEFAULT_MAX_ACTION_STEPS: Final[int] = 50

# Leaf detection without an oracle call.
SMALL_SPEC_MAX_CHARS: Final[int] = 100
LEAF_PARAMETER: Final[str] = "leaf"

# Build runtime.
DEFAULT_BUILD_PARALLELISM: Final[int] = 5
DEFAULT_COMMAND_TIMEOUT_SECONDS: Final[float] = 120.0
DEFAULT_COMMAND_ALLOW_LIST: Final[tuple[str, ...]] = (
    "npm init",
    "npm install",
    "bun install",
    "yarn install",
)
PROVENANCE_BRAND: Final[str] = "planforge"

__all__ = [
    "CALL_LOG_FILENAME",
    "CONFIG_SCHEMA_VERSION",
    "CONTEXT_ARTIFACT_SCHEMA_VERSION",
    "CONTEXT_SUFFIX",
    "DEFAULT_BUILD_PARALLELISM",
    "DEFAULT_COMMAND_ALLOW_LIST",
    "DEFAULT_COMMAND_TIMEOUT_SECONDS",
    "DEFAULT_MAX_ACTION_STEPS",
    "DEFAULT_MAX_CALLS",
    "DEFAULT_MAX_DEPTH",
    "DEFAULT_MAX_NODES",
    "DEFAULT_MAX_PARALLEL",
    "LEAF_PARAMETER",
    "LEAF_SUFFIX",
    "NODE_PLAN_STEM",
    "OPERATION_LOG_FILENAME",
    "PROVENANCE_BRAND",
    "QUESTIONS_SUFFIX",
    "ROOT_PLAN_STEM",
    "ROOT_SENTINEL",
    "SMALL_SPEC_MAX_CHARS",
    "SOURCE_MAP_SUFFIX",
    "SOURCE_MAP_VERSION",
]
