# SPDX-License-Identifier: Apache-2.0
"""
Structural verification of a mutated source file against its original.

Checks run in a fixed order. ``compile`` is fatal and short-circuits the
rest; every later check is always evaluated so the report names every
problem at once. Nothing is executed: compilation stops at bytecode.
"""

from __future__ import annotations

import ast
import re
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Sequence, Set, Tuple


@dataclass(frozen=True)
class DangerPattern:
    name: str
    pattern: re.Pattern[str]
    description: str


DEFAULT_DANGER_PATTERNS: Tuple[DangerPattern, ...] = (
    DangerPattern("eval", re.compile(r"\beval\s*\("), "dynamic code evaluation"),
    DangerPattern("exec", re.compile(r"\bexec\s*\("), "dynamic code execution"),
    DangerPattern("rm_rf", re.compile(r"\brm\s+-(?:rf|fr)\b"), "destructive shell invocation"),
    DangerPattern(
        "process_exit",
        re.compile(r"\b(?:sys\.exit|os\._exit|os\.kill|os\.abort)\s*\("),
        "arbitrary process termination",
    ),
    DangerPattern(
        "shell_command",
        re.compile(r"\bos\.(?:system|popen)\s*\(|\bshell\s*=\s*True\b"),
        "unchecked dynamic command execution",
    ),
)


@dataclass(frozen=True)
class VerificationCheck:
    name: str
    passed: bool
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "passed": self.passed, "reason": self.reason}


@dataclass(frozen=True)
class VerificationReport:
    file: str
    checks: Tuple[VerificationCheck, ...]

    @property
    def passed(self) -> bool:
        return all(check.passed for check in self.checks)

    @property
    def failed_checks(self) -> Tuple[VerificationCheck, ...]:
        return tuple(check for check in self.checks if not check.passed)

    @property
    def reason(self) -> str:
        failed = self.failed_checks
        if not failed:
            return ""
        return "; ".join(f"{check.name}: {check.reason}" if check.reason else check.name for check in failed)

    def summary(self) -> str:
        if self.passed:
            return f"passed {len(self.checks)} checks"
        return f"failed {len(self.failed_checks)}/{len(self.checks)} checks: {self.reason}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file": self.file,
            "passed": self.passed,
            "checks": [check.to_dict() for check in self.checks],
        }


def compile_source(source: str, filename: str = "<mutation>") -> Tuple[bool, str]:
    try:
        compile(source, filename, "exec", dont_inherit=True)
    except SyntaxError as exc:
        return False, f"{exc.__class__.__name__} at line {exc.lineno}: {exc.msg}"
    except ValueError as exc:
        return False, f"{exc.__class__.__name__}: {exc}"
    return True, ""


def _parse(source: str) -> ast.Module | None:
    try:
        return ast.parse(source)
    except (SyntaxError, ValueError):
        return None


def _declared_all(tree: ast.Module) -> List[str] | None:
    for node in tree.body:
        if isinstance(node, (ast.Assign, ast.AnnAssign)):
            targets = node.targets if isinstance(node, ast.Assign) else [node.target]
            if any(isinstance(target, ast.Name) and target.id == "__all__" for target in targets):
                value = node.value
                if isinstance(value, (ast.List, ast.Tuple)):
                    return [elt.value for elt in value.elts if isinstance(elt, ast.Constant) and isinstance(elt.value, str)]
    return None


def _target_names(target: ast.expr) -> Iterable[str]:
    if isinstance(target, ast.Name):
        yield target.id
    elif isinstance(target, (ast.Tuple, ast.List)):
        for element in target.elts:
            yield from _target_names(element)


def module_exports(tree: ast.Module) -> Set[str]:
    """``__all__`` when declared as a literal, otherwise public top-level bindings."""
    declared = _declared_all(tree)
    if declared is not None:
        return set(declared)
    names: Set[str] = set()
    for node in tree.body:
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            names.add(node.name)
        elif isinstance(node, ast.Assign):
            for target in node.targets:
                names.update(_target_names(target))
        elif isinstance(node, ast.AnnAssign):
            names.update(_target_names(node.target))
    return {name for name in names if not name.startswith("_")}


def count_functions(tree: ast.AST) -> int:
    return sum(isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.Lambda)) for node in ast.walk(tree))


class FormalVerifier:
    def __init__(
        self,
        function_floor_ratio: float = 0.8,
        size_delta_bound: float = 0.2,
        danger_patterns: Sequence[DangerPattern] = DEFAULT_DANGER_PATTERNS,
    ) -> None:
        self.function_floor_ratio = function_floor_ratio
        self.size_delta_bound = size_delta_bound
        self.danger_patterns = tuple(danger_patterns)
        self._lock = threading.Lock()
        self._stats = {"verified": 0, "passed": 0, "failed": 0}

    def verify(self, original: str, mutated: str, file_identifier: str = "<mutation>") -> VerificationReport:
        checks: List[VerificationCheck] = []
        ok, reason = compile_source(mutated, file_identifier)
        checks.append(VerificationCheck("compile", ok, reason))
        if ok:
            original_tree = _parse(original)
            mutated_tree = _parse(mutated)
            checks.append(self._check_exports(original_tree, mutated_tree))
            checks.append(self._check_functions(original_tree, mutated_tree))
            checks.append(self._check_size(original, mutated))
            checks.extend(self._check_danger(original, mutated))
        report = VerificationReport(file=file_identifier, checks=tuple(checks))
        self._record(report.passed)
        return report

    def compiles(self, source: str, file_identifier: str = "<mutation>") -> bool:
        return compile_source(source, file_identifier)[0]

    def check_snippet(self, code: str, label: str = "<snippet>") -> VerificationReport:
        """Compile and denylist checks for a standalone snippet with no original."""
        ok, reason = compile_source(code, label)
        checks = [VerificationCheck("compile", ok, reason)]
        if ok:
            checks.extend(self._check_danger("", code))
        return VerificationReport(file=label, checks=tuple(checks))

    def _check_exports(self, original_tree: ast.Module | None, mutated_tree: ast.Module | None) -> VerificationCheck:
        if original_tree is None or mutated_tree is None:
            return VerificationCheck("exports", True, "original_unparseable")
        missing = module_exports(original_tree) - module_exports(mutated_tree)
        if missing:
            return VerificationCheck("exports", False, f"missing exports: {', '.join(sorted(missing))}")
        return VerificationCheck("exports", True)

    def _check_functions(self, original_tree: ast.Module | None, mutated_tree: ast.Module | None) -> VerificationCheck:
        if original_tree is None or mutated_tree is None:
            return VerificationCheck("functions", True, "original_unparseable")
        before = count_functions(original_tree)
        after = count_functions(mutated_tree)
        if after < before * self.function_floor_ratio:
            return VerificationCheck(
                "functions",
                False,
                f"function count dropped from {before} to {after} (floor {self.function_floor_ratio:.0%})",
            )
        return VerificationCheck("functions", True)

    def _check_size(self, original: str, mutated: str) -> VerificationCheck:
        if not original:
            if mutated:
                return VerificationCheck("size", False, "original is empty")
            return VerificationCheck("size", True)
        delta = abs(len(mutated) - len(original)) / len(original)
        if delta > self.size_delta_bound:
            return VerificationCheck(
                "size",
                False,
                f"size changed by {delta:.0%} (bound {self.size_delta_bound:.0%})",
            )
        return VerificationCheck("size", True)

    def _check_danger(self, original: str, mutated: str) -> List[VerificationCheck]:
        checks = []
        for danger in self.danger_patterns:
            introduced = bool(danger.pattern.search(mutated)) and not danger.pattern.search(original)
            checks.append(
                VerificationCheck(
                    f"danger:{danger.name}",
                    not introduced,
                    f"introduces {danger.description}" if introduced else "",
                )
            )
        return checks

    def _record(self, passed: bool) -> None:
        with self._lock:
            self._stats["verified"] += 1
            self._stats["passed" if passed else "failed"] += 1

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._stats)


__all__ = [
    "DEFAULT_DANGER_PATTERNS",
    "DangerPattern",
    "FormalVerifier",
    "VerificationCheck",
    "VerificationReport",
    "compile_source",
    "count_functions",
    "module_exports",
]
