#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Compute the kubelet flag patch for the image credential provider.
Вычисляет патч флагов kubelet для image credential provider.

plan() never touches the document it receives: it edits a copy and records
every change as a DiffEntry. Planning an already patched document gives an
empty diff.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from kubelet.flag_file import (
    FEATURE_GATES_FLAG,
    ConfigurationDocument,
    gate_pairs,
    split_feature_gates,
)

BIN_DIR_FLAG = "image-credential-provider-bin-dir"
CONFIG_FLAG = "image-credential-provider-config"
MANAGED_FLAGS = (BIN_DIR_FLAG, CONFIG_FLAG, FEATURE_GATES_FLAG)

ADDED = "added"
CHANGED = "changed"
REMOVED = "removed"

_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}


def parse_bool(value) -> Optional[bool]:
    """Go strconv.ParseBool semantics, which is what kubelet uses for gates. None if unparsable."""
    if isinstance(value, bool):
        return value
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    return None


def format_bool(value: bool) -> str:
    return "true" if value else "false"


@dataclass(frozen=True)
class DesiredState:
    bin_dir: str
    config_path: str
    required_feature_gates: Dict[str, bool] = field(default_factory=dict)
    obsolete_bin_dir: Optional[str] = None
    obsolete_config_path: Optional[str] = None

    def gate_tokens(self) -> List[str]:
        return [f"{key}={format_bool(val)}" for key, val in self.required_feature_gates.items()]


@dataclass(frozen=True)
class DiffEntry:
    action: str
    key: str
    old: Optional[str] = None
    new: Optional[str] = None

    def __str__(self):
        if self.action == ADDED:
            return f"+ {self.key}={self.new}"
        if self.action == REMOVED:
            return f"- {self.key}={self.old}"
        return f"~ {self.key}: {self.old} -> {self.new}"


@dataclass
class PatchResult:
    candidate: ConfigurationDocument
    diff: List[DiffEntry]

    @property
    def changed(self) -> bool:
        return bool(self.diff)

    def describe(self) -> str:
        return "\n".join(str(entry) for entry in self.diff) if self.diff else "no changes"


def _set_flag(doc: ConfigurationDocument, name: str, value: str, diff: List[DiffEntry]) -> None:
    old_values = doc.flag_values(name)
    old, dropped = doc.set_flag(name, value)
    if old is None:
        diff.append(DiffEntry(ADDED, f"--{name}", None, value))
    elif old != value:
        diff.append(DiffEntry(CHANGED, f"--{name}", old, value))
    for dup in old_values[1:1 + dropped]:
        diff.append(DiffEntry(REMOVED, f"--{name}", dup, None))


def _merge_gates(entries: List[str], required: Dict[str, bool]) -> Tuple[List[str], List[DiffEntry]]:
    """
    Merge required gates into the existing comma list.
    Different value -> overwrite in place, absent -> append, same value -> untouched.
    Later entries repeating a required key are dropped.
    """
    diff = []
    merged = []
    seen = set()
    for entry, (key, val) in zip(entries, gate_pairs(entries)):
        if key not in required:
            merged.append(entry)
            continue
        if key in seen:
            diff.append(DiffEntry(REMOVED, f"feature-gate {key}", val, None))
            continue
        seen.add(key)
        want = required[key]
        if parse_bool(val) == want:
            merged.append(entry)
        else:
            new = f"{key}={format_bool(want)}"
            merged.append(new)
            diff.append(DiffEntry(CHANGED, f"feature-gate {key}", val, format_bool(want)))

    for key, want in required.items():
        if key not in seen:
            merged.append(f"{key}={format_bool(want)}")
            diff.append(DiffEntry(ADDED, f"feature-gate {key}", None, format_bool(want)))
    return merged, diff


def plan(current: ConfigurationDocument, desired: DesiredState) -> PatchResult:
    candidate = current.copy()
    diff: List[DiffEntry] = []

    if not candidate.has_flag_line:
        tokens = [f"--{BIN_DIR_FLAG}={desired.bin_dir}", f"--{CONFIG_FLAG}={desired.config_path}"]
        if desired.required_feature_gates:
            tokens.append(f"--{FEATURE_GATES_FLAG}={','.join(desired.gate_tokens())}")
        candidate.add_flag_line(tokens)
        for token in tokens:
            name, value = token[2:].split("=", 1)
            diff.append(DiffEntry(ADDED, f"--{name}", None, value))
        return PatchResult(candidate, diff)

    _set_flag(candidate, BIN_DIR_FLAG, desired.bin_dir, diff)
    _set_flag(candidate, CONFIG_FLAG, desired.config_path, diff)

    # repeated --feature-gates flags are folded into the first one, in order
    existing = candidate.flag_values(FEATURE_GATES_FLAG)
    entries = [entry for value in existing for entry in split_feature_gates(value)]
    if desired.required_feature_gates:
        merged, gate_diff = _merge_gates(entries, desired.required_feature_gates)
    else:
        merged, gate_diff = entries, []
    if gate_diff or len(existing) > 1:
        value = ",".join(merged)
        old, dropped = candidate.set_flag(FEATURE_GATES_FLAG, value)
        if old is None:
            diff.append(DiffEntry(ADDED, f"--{FEATURE_GATES_FLAG}", None, value))
        elif gate_diff:
            diff.extend(gate_diff)
        elif old != value:
            diff.append(DiffEntry(CHANGED, f"--{FEATURE_GATES_FLAG}", old, value))
        for dup in existing[1:1 + dropped]:
            diff.append(DiffEntry(REMOVED, f"--{FEATURE_GATES_FLAG}", dup, None))

    return PatchResult(candidate, diff)
