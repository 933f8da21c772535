"""
planforge: configuration schema and validation.

File: src/planforge/config/schema.py

Purpose
- Define authoritative configuration defaults and strict validation rules.

What should be included in this file
- Schema versioning with migration guidance.
- Per-field type, range and enum rules for every section.
- Deterministic deep-merge helpers and redacted dumps.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Reject unknown keys; reject keys that look like embedded secrets with a
  dedicated message.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from planforge.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_BUILD_PARALLELISM,
    DEFAULT_COMMAND_ALLOW_LIST,
    DEFAULT_COMMAND_TIMEOUT_SECONDS,
    DEFAULT_MAX_CALLS,
    DEFAULT_MAX_DEPTH,
    DEFAULT_MAX_NODES,
    DEFAULT_MAX_PARALLEL,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {"secret", "token", "password", "passwd", "apikey", "private", "credential", "credentials"}
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = (
    "api_key",
    "access_token",
    "client_secret",
    "private_key",
    "password",
    "secret",
)

# Config paths that are normalized relative to the config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("paths", "storage_root"),
    ("paths", "build_root"),
    ("paths", "log_dir"),
)


class MetaConfig(TypedDict):
    schema_version: int


class GovernorsConfig(TypedDict):
    max_nodes: int
    max_calls: int
    max_parallel: int
    max_depth: int


class CacheConfig(TypedDict):
    enabled: bool


class BuildConfig(TypedDict):
    parallelism: int
    add_source_headers: bool
    clean: bool
    run_commands: bool
    command_timeout_seconds: float


class CommandsConfig(TypedDict):
    allow_list: list[str]


class PathsConfig(TypedDict):
    storage_root: str
    build_root: str
    log_dir: str


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_to_file: bool


class PlanforgeConfig(TypedDict):
    meta: MetaConfig
    governors: GovernorsConfig
    cache: CacheConfig
    build: BuildConfig
    commands: CommandsConfig
    paths: PathsConfig
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[PlanforgeConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "governors": {
        "max_nodes": DEFAULT_MAX_NODES,
        "max_calls": DEFAULT_MAX_CALLS,
        "max_parallel": DEFAULT_MAX_PARALLEL,
        "max_depth": DEFAULT_MAX_DEPTH,
    },
    "cache": {
        "enabled": True,
    },
    "build": {
        "parallelism": DEFAULT_BUILD_PARALLELISM,
        "add_source_headers": True,
        "clean": False,
        "run_commands": False,
        "command_timeout_seconds": DEFAULT_COMMAND_TIMEOUT_SECONDS,
    },
    "commands": {
        "allow_list": list(DEFAULT_COMMAND_ALLOW_LIST),
    },
    "paths": {
        "storage_root": ".plan",
        "build_root": "build",
        "log_dir": "logs",
    },
    "observability": {
        "log_level": "INFO",
        "log_to_file": False,
    },
}


FieldKind = Literal["int", "float", "bool", "path", "enum", "str_list"]


@dataclass(frozen=True, slots=True)
class _Field:
    kind: FieldKind
    minimum: float | None = None
    choices: tuple[str, ...] = ()


_SCHEMA: Final[dict[str, dict[str, _Field]]] = {
    "meta": {"schema_version": _Field("int", minimum=1)},
    "governors": {
        "max_nodes": _Field("int", minimum=1),
        "max_calls": _Field("int", minimum=0),
        "max_parallel": _Field("int", minimum=1),
        "max_depth": _Field("int", minimum=0),
    },
    "cache": {"enabled": _Field("bool")},
    "build": {
        "parallelism": _Field("int", minimum=1),
        "add_source_headers": _Field("bool"),
        "clean": _Field("bool"),
        "run_commands": _Field("bool"),
        "command_timeout_seconds": _Field("float", minimum=0.001),
    },
    "commands": {"allow_list": _Field("str_list")},
    "paths": {
        "storage_root": _Field("path"),
        "build_root": _Field("path"),
        "log_dir": _Field("path"),
    },
    "observability": {
        "log_level": _Field("enum", choices=LOG_LEVELS),
        "log_to_file": _Field("bool"),
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> PlanforgeConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def field_kind(path: tuple[str, ...]) -> FieldKind | None:
    """Schema kind of a ``(section, key)`` path, or ``None`` if unknown."""

    if len(path) != 2:
        return None
    spec = _SCHEMA.get(path[0], {}).get(path[1])
    return None if spec is None else spec.kind


def migration_guidance(found_version: int) -> str:
    """Return deterministic migration guidance for schema version mismatch."""

    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade planforge.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the planforge runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    _reject_unknown_keys(root, set(_SCHEMA), "", issues)
    normalized: dict[str, Any] = {}
    for section_name in sorted(_SCHEMA):
        if section_name not in root:
            issues.add(section_name, "missing required section")
            continue
        section = _as_object(root[section_name], section_name, issues)
        if section is None:
            continue
        normalized[section_name] = _validate_section(section, section_name, issues)

    meta = normalized.get("meta", {})
    version = meta.get("schema_version")
    if isinstance(version, int) and version != ConfigSchemaVersion:
        issues.add("meta.schema_version", migration_guidance(version))

    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return deterministic redacted representation for logs."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config)
    return redacted if isinstance(redacted, dict) else {}


def _validate_section(
    payload: Mapping[str, object], section_name: str, issues: _IssueCollector
) -> dict[str, Any]:
    fields = _SCHEMA[section_name]
    _reject_unknown_keys(payload, set(fields), section_name, issues)
    out: dict[str, Any] = {}
    for key in sorted(fields):
        path = _join(section_name, key)
        if key not in payload:
            issues.add(path, "missing required field")
            continue
        parsed = _parse_field(payload[key], fields[key], path, issues)
        if parsed is not None:
            out[key] = parsed
    return out


def _parse_field(value: object, spec: _Field, path: str, issues: _IssueCollector) -> object | None:
    if spec.kind == "int":
        minimum = None if spec.minimum is None else int(spec.minimum)
        return _as_int(value, path, issues, minimum=minimum)
    if spec.kind == "float":
        return _as_float(value, path, issues, minimum=spec.minimum)
    if spec.kind == "bool":
        return _as_bool(value, path, issues)
    if spec.kind == "path":
        return _as_path_text(value, path, issues)
    if spec.kind == "enum":
        return _as_enum(value, path, issues, allowed_values=spec.choices)
    return _as_str_list(value, path, issues)


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _as_str_list(value: object, path: str, issues: _IssueCollector) -> list[str] | None:
    if isinstance(value, str) or not isinstance(value, Sequence):
        issues.add(path, f"expected array of strings, got {type(value).__name__}")
        return None
    out: list[str] = []
    for index, item in enumerate(value):
        parsed = _as_str(item, f"{path}[{index}]", issues)
        if parsed is not None:
            out.append(parsed)
    return out


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key in allowed:
            continue
        key_path = _join(path, key)
        if _looks_sensitive_key(key):
            issues.add(key_path, "embedded secret values are forbidden in config files")
        else:
            issues.add(key_path, "unknown field")


def _looks_sensitive_key(key: str) -> bool:
    normalized = _normalize_key(key)
    if any(phrase in normalized for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    tokens = tuple(token for token in normalized.split("_") if token)
    return any(token in _SENSITIVE_KEY_TOKENS for token in tokens)


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            else:
                nested: dict[str, Any] = {}
                _merge_into(nested, value)
                target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    return {key: copy.deepcopy(value[key]) for key in sorted(value)}


def _redact_value(value: object) -> object:
    if isinstance(value, Mapping):
        return {
            key: "<redacted>" if _looks_sensitive_key(str(key)) else _redact_value(value[key])
            for key in sorted(value)
        }
    if isinstance(value, (list, tuple)):
        return [_redact_value(item) for item in value]
    return value


__all__ = [
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "PlanforgeConfig",
    "assert_valid_config",
    "default_config",
    "field_kind",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
