"""
planforge: unit tests for config loader

File: tests/unit/config/test_loader.py

Purpose
- Validate deterministic config loading from defaults, TOML, env overrides, and CLI overrides.

What this test file should cover
- Precedence: CLI > env > file > defaults.
- Deterministic env var path mapping and type coercion.
- Path normalization relative to the config file.
- Redacted effective config dumping.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from planforge.config.loader import (
    ConfigLoadError,
    dump_effective_config,
    load_config,
)
from planforge.config.schema import ConfigValidationError


def _write_config(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def test_loader_precedence_default_file_env_cli(tmp_path: Path) -> None:
    config_path = tmp_path / "planforge.toml"
    _write_config(
        config_path,
        """
[governors]
max_depth = 4
max_nodes = 40
max_calls = 30
""".strip(),
    )

    config = load_config(
        config_path,
        environ={"PLANFORGE_GOVERNORS_MAX_NODES": "20", "PLANFORGE_GOVERNORS_MAX_CALLS": "10"},
        cli_overrides={"governors.max_calls": 5, "governors.max_parallel": None},
    )

    assert config["governors"]["max_depth"] == 4
    assert config["governors"]["max_nodes"] == 20
    assert config["governors"]["max_calls"] == 5
    assert config["governors"]["max_parallel"] == 5


def test_default_file_is_optional(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    config = load_config(environ={})

    assert config["governors"]["max_depth"] == 5
    assert config["paths"]["storage_root"] == (tmp_path.resolve() / ".plan").as_posix()


def test_default_file_is_picked_up_from_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _write_config(tmp_path / "planforge.toml", "[cache]\nenabled = false\n")
    monkeypatch.chdir(tmp_path)

    config = load_config(environ={})

    assert config["cache"]["enabled"] is False


def test_explicit_missing_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="config file not found"):
        load_config(tmp_path / "absent.toml", environ={})


def test_invalid_toml_is_an_error(tmp_path: Path) -> None:
    config_path = tmp_path / "planforge.toml"
    _write_config(config_path, "[governors\nmax_depth = ")

    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(config_path, environ={})


def test_file_values_are_validated(tmp_path: Path) -> None:
    config_path = tmp_path / "planforge.toml"
    _write_config(config_path, "[governors]\nmax_parallel = 0\n")

    with pytest.raises(ConfigValidationError, match="governors.max_parallel: must be >= 1"):
        load_config(config_path, environ={})


def test_env_coercion_of_each_kind(tmp_path: Path) -> None:
    config_path = tmp_path / "planforge.toml"
    _write_config(config_path, "")

    config = load_config(
        config_path,
        environ={
            "PLANFORGE_CACHE_ENABLED": "off",
            "PLANFORGE_BUILD_RUN_COMMANDS": "yes",
            "PLANFORGE_BUILD_COMMAND_TIMEOUT_SECONDS": "2.5",
            "PLANFORGE_COMMANDS_ALLOW_LIST": "npm install, make build ,",
            "PLANFORGE_OBSERVABILITY_LOG_LEVEL": "DEBUG",
        },
    )

    assert config["cache"]["enabled"] is False
    assert config["build"]["run_commands"] is True
    assert config["build"]["command_timeout_seconds"] == 2.5
    assert config["commands"]["allow_list"] == ["npm install", "make build"]
    assert config["observability"]["log_level"] == "DEBUG"


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("PLANFORGE_GOVERNORS_MAX_DEPTH", "deep", "must be an integer"),
        ("PLANFORGE_BUILD_COMMAND_TIMEOUT_SECONDS", "soon", "must be a number"),
        ("PLANFORGE_CACHE_ENABLED", "maybe", "must be a boolean"),
    ],
)
def test_env_coercion_errors(tmp_path: Path, name: str, value: str, message: str) -> None:
    config_path = tmp_path / "planforge.toml"
    _write_config(config_path, "")

    with pytest.raises(ConfigLoadError, match=message):
        load_config(config_path, environ={name: value})


def test_paths_are_normalized_relative_to_config_file(tmp_path: Path) -> None:
    config_dir = tmp_path / "project" / "conf"
    config_path = config_dir / "planforge.toml"
    _write_config(
        config_path,
        """
[paths]
storage_root = "../plan"
build_root = "out/../dist"
log_dir = "/var/tmp/planforge-logs"
""".strip(),
    )

    config = load_config(config_path, environ={})

    project = (tmp_path / "project").resolve()
    assert config["paths"]["storage_root"] == (project / "plan").as_posix()
    assert config["paths"]["build_root"] == (project / "conf" / "dist").as_posix()
    assert config["paths"]["log_dir"] == "/var/tmp/planforge-logs"


def test_dump_effective_config_is_deterministic(tmp_path: Path) -> None:
    config_path = tmp_path / "planforge.toml"
    _write_config(config_path, "")

    first = dump_effective_config(load_config(config_path, environ={}))
    second = dump_effective_config(load_config(config_path, environ={}))

    assert first == second
    assert list(json.loads(first)) == sorted(json.loads(first))
