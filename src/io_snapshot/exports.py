"""
Static export discovery for Python modules.

This module parses source files to find the names a module exports: the
entries of a literal ``__all__`` when the module defines one, otherwise every
top-level binding whose name does not start with an underscore.
"""
from __future__ import annotations

import ast
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

FunctionNode = (ast.FunctionDef, ast.AsyncFunctionDef)


@dataclass
class ModuleExports:
    """Exported names found in one module."""

    path: Path
    names: set[str] = field(default_factory=set)
    declared_all: Optional[list[str]] = None

    def exports(self, name: str) -> bool:
        return name in self.names


def literal_all(tree: ast.Module) -> Optional[list[str]]:
    """Return the names of a literal ``__all__``, or None when undefined.

    Handles plain and annotated assignment plus ``+=`` extension; entries that
    are not string constants are ignored.
    """
    names: Optional[list[str]] = None
    for node in tree.body:
        value = None
        extend = False
        if isinstance(node, ast.Assign):
            if any(isinstance(t, ast.Name) and t.id == "__all__" for t in node.targets):
                value = node.value
        elif isinstance(node, ast.AnnAssign):
            if isinstance(node.target, ast.Name) and node.target.id == "__all__":
                value = node.value
        elif isinstance(node, ast.AugAssign):
            if isinstance(node.target, ast.Name) and node.target.id == "__all__":
                value = node.value
                extend = True

        if value is None:
            continue

        entries = []
        if isinstance(value, (ast.List, ast.Tuple)):
            for elt in value.elts:
                if isinstance(elt, ast.Constant) and isinstance(elt.value, str):
                    entries.append(elt.value)

        if extend and names is not None:
            names.extend(entries)
        else:
            names = entries
    return names


def bound_names(node: ast.stmt) -> list[str]:
    """Top-level names bound by a statement."""
    if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
        return [node.name]
    if isinstance(node, ast.Assign):
        names = []
        for target in node.targets:
            names.extend(_target_names(target))
        return names
    if isinstance(node, (ast.AnnAssign, ast.AugAssign)):
        return _target_names(node.target)
    if isinstance(node, (ast.Import, ast.ImportFrom)):
        names = []
        for alias in node.names:
            if alias.name == "*":
                continue
            names.append(alias.asname or alias.name.split(".")[0])
        return names
    return []


def _target_names(target: ast.expr) -> list[str]:
    if isinstance(target, ast.Name):
        return [target.id]
    if isinstance(target, (ast.Tuple, ast.List)):
        names = []
        for elt in target.elts:
            names.extend(_target_names(elt))
        return names
    if isinstance(target, ast.Starred):
        return _target_names(target.value)
    return []


def top_level_names(tree: ast.Module) -> list[str]:
    names = []
    for node in tree.body:
        for name in bound_names(node):
            if name not in names:
                names.append(name)
    return names


def exported_names(tree: ast.Module) -> set[str]:
    """Names the module exports."""
    declared = literal_all(tree)
    if declared is not None:
        return set(declared)
    return {name for name in top_level_names(tree) if not name.startswith("_")}


class ExportScanner:
    """Scans source files for their exported names."""

    def scan_source(self, source: str, path: Path) -> ModuleExports:
        tree = ast.parse(source, filename=str(path))
        return ModuleExports(path=path, names=exported_names(tree), declared_all=literal_all(tree))

    def scan_file(self, path: Path) -> Optional[ModuleExports]:
        """Scan one file; None when it cannot be read or parsed."""
        try:
            with open(path, encoding="utf-8") as f:
                source = f.read()
            return self.scan_source(source, Path(path))
        except (OSError, SyntaxError, ValueError, UnicodeDecodeError) as e:
            logger.warning(f"Failed to parse {path}: {e}")
            return None

    def scan_files(self, paths: list[Path]) -> list[ModuleExports]:
        results = []
        for path in paths:
            exports = self.scan_file(path)
            if exports is not None:
                results.append(exports)
        return results
