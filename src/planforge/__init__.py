"""
planforge: recursive spec-to-plan compiler

File: src/planforge/__init__.py

Purpose
- Package root. Turns a typed specification tree into a cached plan tree by
  consulting an oracle, then builds leaf outputs from that plan.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
