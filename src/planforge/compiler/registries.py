"""
planforge: admission guards for proposed children

File: src/planforge/compiler/registries.py

Purpose
- Own the two run-scoped registries (child names per parent, output-file owners)
  and the name checks every proposed child passes before it is admitted.

Functional requirements
- Every insert is an atomic check-and-set; the first claimant wins.
- Registries are plain objects injected into the compiler, never module state.
- Locks guard only in-memory dictionaries and are never held across an await.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from planforge.constants import ROOT_SENTINEL
from planforge.domain.models import Rejection

if TYPE_CHECKING:
    from planforge.domain.models import ChildSpec


class AdmissionError(Exception):
    """Base class for refusals of a proposed child."""

    kind = "rejected"

    def __init__(self, child_name: str, message: str) -> None:
        self.child_name = child_name
        super().__init__(message)

    def to_rejection(self) -> Rejection:
        return Rejection(child_name=self.child_name, kind=self.kind, reason=str(self))


class InvalidNameError(AdmissionError):
    kind = "invalid_name"


class RecursionGuardError(AdmissionError):
    kind = "recursion"


class CollisionError(AdmissionError):
    """Duplicate child name under one parent, or a second owner for one output file."""

    kind = "collision"


@dataclass(slots=True)
class ChildNameRegistry:
    """Insert-if-absent set of child names per parent node path."""

    _claimed: dict[str, dict[str, str]] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def claim(self, parent_path: str, name: str) -> None:
        with self._lock:
            names = self._claimed.setdefault(parent_path, {})
            if name in names:
                raise CollisionError(name, f"Duplicate child name: {name} under {parent_path}")
            names[name] = parent_path

    def release(self, parent_path: str, name: str) -> None:
        with self._lock:
            self._claimed.get(parent_path, {}).pop(name, None)

    def names(self, parent_path: str) -> tuple[str, ...]:
        with self._lock:
            return tuple(self._claimed.get(parent_path, {}))


@dataclass(slots=True)
class FileOwnershipRegistry:
    """First-writer-wins ownership of ``(output_path, filename)`` pairs."""

    _owners: dict[tuple[str, str], str] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def register(self, output_path: str, filename: str, owner: str) -> None:
        key = (_normalize_output_path(output_path), filename)
        with self._lock:
            existing = self._owners.get(key)
            if existing is not None:
                raise CollisionError(owner, f"File collision: {filename} already owned by {existing}")
            self._owners[key] = owner

    def release(self, output_path: str, filename: str, owner: str) -> None:
        key = (_normalize_output_path(output_path), filename)
        with self._lock:
            if self._owners.get(key) == owner:
                del self._owners[key]

    def owner_of(self, output_path: str, filename: str) -> str | None:
        with self._lock:
            return self._owners.get((_normalize_output_path(output_path), filename))

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return {
                "/".join(part for part in key if part): owner
                for key, owner in sorted(self._owners.items())
            }


def _normalize_output_path(output_path: str) -> str:
    return output_path.strip().strip("/")


def validate_child_name(name: str) -> None:
    """Refuse names that cannot map to a distinct node path.

    ``root`` is the root sentinel and ``.`` resolves to the storage root, so both
    would write over another node's artifacts.
    """

    stripped = name.strip()
    if not stripped or stripped in {ROOT_SENTINEL, "."} or "/" in name or ".." in name:
        raise InvalidNameError(name, f"Invalid node name: {name!r}")


def check_recursion(parent_name: str, child_name: str) -> None:
    """Reject a child whose name equals, contains, or is contained in its parent's."""

    parent = parent_name.casefold()
    child = child_name.casefold()
    if child == parent or parent in child or child in parent:
        raise RecursionGuardError(
            child_name,
            f"Recursion detected: {child_name} is too similar to parent {parent_name}. "
            "Use a leaf instead.",
        )


@dataclass(slots=True)
class Registries:
    """The run-scoped registries handed to the compiler."""

    child_names: ChildNameRegistry = field(default_factory=ChildNameRegistry)
    file_owners: FileOwnershipRegistry = field(default_factory=FileOwnershipRegistry)

    def admit(
        self,
        parent_path: str,
        parent_name: str,
        child: ChildSpec,
        *,
        check_similarity: bool,
    ) -> None:
        """Run every guard for ``child``; raises an ``AdmissionError`` on refusal.

        A refused child leaves no claims behind, so the oracle may retry it.
        """

        validate_child_name(child.name)
        if check_similarity:
            check_recursion(parent_name, child.name)
        self.child_names.claim(parent_path, child.name)
        if not child.is_leaf:
            return

        owner = child.name if parent_path == ROOT_SENTINEL else f"{parent_path}/{child.name}"
        registered: list[str] = []
        try:
            for filename in child.files:
                self.file_owners.register(child.output_path, filename, owner)
                registered.append(filename)
        except CollisionError:
            for filename in registered:
                self.file_owners.release(child.output_path, filename, owner)
            self.child_names.release(parent_path, child.name)
            raise


__all__ = [
    "AdmissionError",
    "ChildNameRegistry",
    "CollisionError",
    "FileOwnershipRegistry",
    "InvalidNameError",
    "RecursionGuardError",
    "Registries",
    "check_recursion",
    "validate_child_name",
]
