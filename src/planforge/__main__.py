"""Module entrypoint for ``python -m planforge``."""

from __future__ import annotations

from planforge.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
