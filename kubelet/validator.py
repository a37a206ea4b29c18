#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Fixed six-step checklist for a candidate kubelet flag file.
Фиксированный список из шести проверок для файла флагов kubelet.

Check names and their order are stable: operators grep the log for them.
All checks run every time, a failing one does not stop the rest.
"""

import re
from collections import Counter
from dataclasses import dataclass
from typing import List, Optional

from kubelet.flag_file import FEATURE_GATES_FLAG, QUOTES, ConfigurationDocument
from kubelet.patch_planner import (
    BIN_DIR_FLAG,
    CONFIG_FLAG,
    MANAGED_FLAGS,
    DesiredState,
    parse_bool,
)

CHECK_CONFIG_PATH = "credential-provider-config"
CHECK_BIN_DIR = "credential-provider-bin-dir"
CHECK_FEATURE_GATES = "feature-gates"
CHECK_SYNTAX = "flag-line-syntax"
CHECK_OBSOLETE_CONFIG = "obsolete-config-path"
CHECK_OBSOLETE_BIN_DIR = "obsolete-bin-dir"

CHECK_ORDER = (
    CHECK_CONFIG_PATH,
    CHECK_BIN_DIR,
    CHECK_FEATURE_GATES,
    CHECK_SYNTAX,
    CHECK_OBSOLETE_CONFIG,
    CHECK_OBSOLETE_BIN_DIR,
)

NOT_SET = "NOT SET"


@dataclass(frozen=True)
class CheckResult:
    name: str
    passed: bool
    observed: str
    expected: str = ""

    def line(self) -> str:
        mark = "✓" if self.passed else "✗"
        if self.expected:
            return f"{mark} {self.name}: expected {self.expected}, actual {self.observed}"
        return f"{mark} {self.name}: {self.observed}"


@dataclass
class ValidationReport:
    checks: List[CheckResult]

    @property
    def passed(self) -> bool:
        return all(check.passed for check in self.checks)

    def failed(self) -> List[CheckResult]:
        return [check for check in self.checks if not check.passed]

    def get(self, name: str) -> Optional[CheckResult]:
        return next((check for check in self.checks if check.name == name), None)

    def summary(self) -> str:
        return "\n".join(check.line() for check in self.checks)


def path_occurs(text: str, path: str) -> bool:
    """
    True when `path` shows up in `text` as a whole path (or a parent dir of one).
    /var/lib/kubelet/credential-provider does not match inside
    /var/lib/kubelet/credential-provider-config.yaml.
    """
    path = path.rstrip("/") or "/"
    pattern = rf"(?<![^\s=\"',:]){re.escape(path)}(?=$|[\s\"',:/])"
    return re.search(pattern, text, re.MULTILINE) is not None


def _check_flag(doc: ConfigurationDocument, name: str, flag: str, expected: str) -> CheckResult:
    actual = doc.get_flag(flag)
    return CheckResult(name, actual == expected, actual if actual is not None else NOT_SET, expected)


def _check_gates(doc: ConfigurationDocument, desired: DesiredState) -> CheckResult:
    value = doc.get_flag(FEATURE_GATES_FLAG)
    expected = ",".join(desired.gate_tokens())
    gates = {}
    for key, val in doc.feature_gates():
        gates.setdefault(key, val)
    ok = all(
        key in gates and parse_bool(gates[key]) == want
        for key, want in desired.required_feature_gates.items()
    )
    return CheckResult(CHECK_FEATURE_GATES, ok, value if value is not None else NOT_SET, expected)


def _syntax_problems(doc: ConfigurationDocument, desired: DesiredState) -> List[str]:
    line = doc.flag_line
    if line is None:
        return [f"no {doc.flags_variable}= line"]

    problems = []
    if not line.terminated:
        problems.append(f"unterminated {line.quote} quote")
    for q in QUOTES:
        if q in line.body:
            problems.append(f"stray {q} inside flags")
    tail = line.tail.strip()
    if tail and not tail.startswith("#"):
        problems.append(f"unexpected text after closing quote: {tail}")

    counts = Counter(name for name, _ in line.flags())
    for flag in MANAGED_FLAGS:
        if counts[flag] > 1:
            problems.append(f"--{flag} given {counts[flag]} times")

    # only managed gates must be unique
    gate_counts = Counter(key for key, _ in doc.feature_gates())
    for key in desired.required_feature_gates:
        n = gate_counts[key]
        if n > 1:
            problems.append(f"feature gate {key} given {n} times")
    return problems


def _check_syntax(doc: ConfigurationDocument, desired: DesiredState) -> CheckResult:
    problems = _syntax_problems(doc, desired)
    return CheckResult(CHECK_SYNTAX, not problems, "; ".join(problems) if problems else "well-formed")


def _check_absent(name: str, text: str, path: Optional[str]) -> CheckResult:
    if not path:
        return CheckResult(name, True, "not configured")
    found = path_occurs(text, path)
    observed = f"{path} present" if found else f"{path} absent"
    return CheckResult(name, not found, observed, f"{path} absent")


def validate(candidate: ConfigurationDocument, desired: DesiredState) -> ValidationReport:
    text = candidate.serialize()
    checks = [
        _check_flag(candidate, CHECK_CONFIG_PATH, CONFIG_FLAG, desired.config_path),
        _check_flag(candidate, CHECK_BIN_DIR, BIN_DIR_FLAG, desired.bin_dir),
        _check_gates(candidate, desired),
        _check_syntax(candidate, desired),
        _check_absent(CHECK_OBSOLETE_CONFIG, text, desired.obsolete_config_path),
        _check_absent(CHECK_OBSOLETE_BIN_DIR, text, desired.obsolete_bin_dir),
    ]
    return ValidationReport(checks)
