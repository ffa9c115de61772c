"""
Structural differ for snapshot verification.

This module compares two deserialized values and produces an ordered list of
changes. It never guesses renames or moves: a value removed at one path and
created at another is reported as two independent changes.
"""
from __future__ import annotations

import copy
import enum
import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Optional


class ChangeKind(str, enum.Enum):
    CREATE = "CREATE"
    REMOVE = "REMOVE"
    CHANGE = "CHANGE"


@dataclass(frozen=True)
class Change:
    """One difference between two values."""

    path: tuple[Any, ...]
    kind: ChangeKind
    value: Any = None
    old_value: Any = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"path": list(self.path), "type": self.kind.value}
        if self.kind in (ChangeKind.CREATE, ChangeKind.CHANGE):
            data["value"] = self.value
        if self.kind in (ChangeKind.REMOVE, ChangeKind.CHANGE):
            data["old_value"] = self.old_value
        return data

    def __str__(self) -> str:
        location = ".".join(str(part) for part in self.path) or "<root>"
        if self.kind is ChangeKind.CREATE:
            return f"{self.kind.value} {location}: {self.value!r}"
        if self.kind is ChangeKind.REMOVE:
            return f"{self.kind.value} {location}: {self.old_value!r}"
        return f"{self.kind.value} {location}: {self.old_value!r} -> {self.value!r}"


@dataclass
class DiffConfig:
    """Configuration for primitive comparisons."""

    rtol: float = 0.0
    atol: float = 0.0
    equal_nan: bool = True


def _py_isclose(a: float, b: float, rtol: float, atol: float, equal_nan: bool) -> bool:
    """Pure Python implementation of numpy.isclose for scalars."""
    if math.isnan(a) or math.isnan(b):
        return equal_nan and math.isnan(a) and math.isnan(b)

    # inf == inf, -inf == -inf, but inf != -inf
    if math.isinf(a) or math.isinf(b):
        return a == b

    return abs(a - b) <= atol + rtol * abs(b)


def _container_kind(value: Any) -> Optional[str]:
    if isinstance(value, Mapping):
        return "mapping"
    if isinstance(value, list):
        return "list"
    if isinstance(value, tuple):
        return "tuple"
    return None


class Differ:
    """Computes structural differences with a configurable tolerance."""

    def __init__(self, config: Optional[DiffConfig] = None):
        self.config = config or DiffConfig()

    def diff(self, a: Any, b: Any) -> list[Change]:
        """Return the changes that turn `a` into `b`."""
        changes: list[Change] = []
        self._diff(a, b, (), changes)
        return changes

    def _diff(self, a: Any, b: Any, path: tuple[Any, ...], changes: list[Change]) -> None:
        kind_a = _container_kind(a)
        kind_b = _container_kind(b)

        if kind_a is None or kind_a != kind_b:
            if not self.values_equal(a, b):
                changes.append(Change(path, ChangeKind.CHANGE, value=b, old_value=a))
            return

        if kind_a == "mapping":
            for key, old in a.items():
                if key not in b:
                    changes.append(Change(path + (key,), ChangeKind.REMOVE, old_value=old))
                else:
                    self._diff(old, b[key], path + (key,), changes)
            for key, new in b.items():
                if key not in a:
                    changes.append(Change(path + (key,), ChangeKind.CREATE, value=new))
            return

        for index in range(max(len(a), len(b))):
            if index >= len(a):
                changes.append(Change(path + (index,), ChangeKind.CREATE, value=b[index]))
            elif index >= len(b):
                changes.append(Change(path + (index,), ChangeKind.REMOVE, old_value=a[index]))
            else:
                self._diff(a[index], b[index], path + (index,), changes)

    def values_equal(self, a: Any, b: Any) -> bool:
        """Compare two non-container values."""
        # bool is an int subclass but never equal to a number here
        if isinstance(a, bool) or isinstance(b, bool):
            return type(a) is type(b) and a == b

        if isinstance(a, (int, float)) and isinstance(b, (int, float)):
            if isinstance(a, int) and isinstance(b, int):
                return a == b
            return _py_isclose(float(a), float(b), self.config.rtol, self.config.atol, self.config.equal_nan)

        if _container_kind(a) != _container_kind(b):
            return False

        try:
            return bool(a == b)
        except Exception:
            return False


def diff(a: Any, b: Any, config: Optional[DiffConfig] = None) -> list[Change]:
    """Return the ordered list of changes that turn `a` into `b`."""
    return Differ(config).diff(a, b)


def apply_changes(value: Any, changes: list[Change]) -> Any:
    """Apply a change list to a deep copy of `value` and return the result.

    Removals are applied last and in reverse order, so trailing sequence
    indices are dropped from the highest one down.
    """
    result = copy.deepcopy(value)
    removals = [c for c in changes if c.kind is ChangeKind.REMOVE]
    others = [c for c in changes if c.kind is not ChangeKind.REMOVE]

    for change in others + removals[::-1]:
        if not change.path:
            result = copy.deepcopy(change.value)
        else:
            result = _apply_at(result, change.path, change)
    return result


def _apply_at(container: Any, path: tuple[Any, ...], change: Change) -> Any:
    key = path[0]
    if len(path) > 1:
        return _replace(container, key, _apply_at(container[key], path[1:], change))

    if change.kind is ChangeKind.REMOVE:
        if isinstance(container, tuple):
            return container[:key] + container[key + 1:]
        del container[key]
        return container

    new_value = copy.deepcopy(change.value)
    if change.kind is ChangeKind.CREATE and isinstance(container, (list, tuple)):
        if isinstance(container, tuple):
            return container[:key] + (new_value,) + container[key:]
        container.insert(key, new_value)
        return container
    return _replace(container, key, new_value)


def _replace(container: Any, key: Any, value: Any) -> Any:
    if isinstance(container, tuple):
        return container[:key] + (value,) + container[key + 1:]
    container[key] = value
    return container
