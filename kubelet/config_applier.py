#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Apply the credential provider flags to kubelet with backup, verification and rollback.
Применение флагов credential provider к kubelet с бэкапом, проверкой и откатом.

    CHECK_SENTINEL -> SKIP | PARSE -> PLAN -> VALIDATE -> ABORT | BACKUP -> WRITE -> RESTART
        -> VERIFY_OK -> SENTINEL_SET -> DONE
        -> VERIFY_FAIL -> ROLLBACK -> RESTART_AGAIN -> FAILED

No disk write happens before validation passes, and the sentinel is written
only after kubelet reports active.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from host.backup import BackupError, BackupManager, BackupRecord
from host.systemctl import RestartOutcome
from kubelet.flag_file import FLAGS_VARIABLE, ParseError, read_document
from kubelet.patch_planner import DesiredState, PatchResult, plan
from kubelet.validator import ValidationReport, validate
from utils.logger import log, log_block


class ApplyState(str, Enum):
    CHECK_SENTINEL = "CHECK_SENTINEL"
    SKIP = "SKIP"
    PARSE = "PARSE"
    PLAN = "PLAN"
    VALIDATE = "VALIDATE"
    PLANNED = "PLANNED"
    ABORT = "ABORT"
    BACKUP = "BACKUP"
    WRITE = "WRITE"
    RESTART = "RESTART"
    VERIFY_OK = "VERIFY_OK"
    SENTINEL_SET = "SENTINEL_SET"
    DONE = "DONE"
    VERIFY_FAIL = "VERIFY_FAIL"
    ROLLBACK = "ROLLBACK"
    RESTART_AGAIN = "RESTART_AGAIN"
    FAILED = "FAILED"


SUCCESS_STATES = {ApplyState.SKIP, ApplyState.DONE, ApplyState.PLANNED}


@dataclass
class ApplyResult:
    state: ApplyState = ApplyState.CHECK_SENTINEL
    transitions: List[ApplyState] = field(default_factory=list)
    patch: Optional[PatchResult] = None
    report: Optional[ValidationReport] = None
    backup: Optional[BackupRecord] = None
    restart: Optional[RestartOutcome] = None
    recovery: Optional[RestartOutcome] = None
    error: Optional[str] = None
    service_down: bool = False

    @property
    def ok(self) -> bool:
        return self.state in SUCCESS_STATES

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1


class ConfigApplier:
    def __init__(
        self,
        fs,
        service_controller,
        sentinel,
        desired: DesiredState,
        flags_file,
        service: str = "kubelet",
        flags_variable: str = FLAGS_VARIABLE,
        backups: Optional[BackupManager] = None,
        required_files: Sequence[Tuple[str, Path, bool]] = (),
        dry_run: bool = False,
    ):
        """
        required_files: (label, path, must_be_executable) artifacts that must be on
        disk before kubelet is pointed at them (provider binary, descriptor).
        """
        self.fs = fs
        self.services = service_controller
        self.sentinel = sentinel
        self.desired = desired
        self.flags_file = Path(flags_file)
        self.service = service
        self.flags_variable = flags_variable
        self.backups = backups or BackupManager(fs)
        self.required_files = list(required_files)
        self.dry_run = dry_run

    def _enter(self, result: ApplyResult, state: ApplyState) -> None:
        result.state = state
        result.transitions.append(state)
        level = {
            ApplyState.ABORT: "error",
            ApplyState.FAILED: "error",
            ApplyState.VERIFY_FAIL: "error",
            ApplyState.ROLLBACK: "warn",
            ApplyState.DONE: "ok",
            ApplyState.SKIP: "ok",
            ApplyState.PLANNED: "ok",
        }.get(state, "step")
        log(f"state={state.value}", level)

    def _stop(self, result: ApplyResult, state: ApplyState, error: str = None) -> ApplyResult:
        if error:
            result.error = error
            log(error, "error")
        self._enter(result, state)
        return result

    def _missing_artifacts(self) -> List[str]:
        missing = []
        for label, path, executable in self.required_files:
            if executable and not self.fs.is_executable(path):
                missing.append(f"{label} {path} missing or not executable")
            elif not executable and not self.fs.exists(path):
                missing.append(f"{label} {path} missing")
        return missing

    def apply(self) -> ApplyResult:
        result = ApplyResult()

        self._enter(result, ApplyState.CHECK_SENTINEL)
        if self.sentinel.is_set():
            log(f"Sentinel {self.sentinel.path} exists, node already configured", "ok")
            return self._stop(result, ApplyState.SKIP)

        self._enter(result, ApplyState.PARSE)
        missing = self._missing_artifacts()
        if missing:
            return self._stop(result, ApplyState.ABORT, "; ".join(missing))
        try:
            current = read_document(self.fs, self.flags_file, self.flags_variable)
        except ParseError as e:
            return self._stop(result, ApplyState.ABORT, str(e))
        log_block(f"Current {self.flags_file}:", current.serialize())

        self._enter(result, ApplyState.PLAN)
        patch = plan(current, self.desired)
        result.patch = patch
        log_block("Planned changes:", patch.describe())

        self._enter(result, ApplyState.VALIDATE)
        report = validate(patch.candidate, self.desired)
        result.report = report
        log_block("Validation checks:", report.summary(), "info" if report.passed else "error")
        if not report.passed:
            names = ", ".join(check.name for check in report.failed())
            return self._stop(result, ApplyState.ABORT, f"Validation failed ({names}), configuration not applied")

        if self.dry_run:
            log_block("Candidate flag file:", patch.candidate.serialize())
            return self._stop(result, ApplyState.PLANNED)

        self._enter(result, ApplyState.BACKUP)
        try:
            result.backup = self.backups.ensure_backup(self.flags_file)
        except BackupError as e:
            return self._stop(result, ApplyState.ABORT, str(e))

        self._enter(result, ApplyState.WRITE)
        if patch.changed:
            try:
                self.fs.write_atomic(self.flags_file, patch.candidate.to_bytes())
            except OSError as e:
                return self._stop(result, ApplyState.ABORT, f"cannot write {self.flags_file}: {e}")
            log(f"Configuration written to {self.flags_file}", "ok")
        else:
            log(f"{self.flags_file} already up to date, restarting {self.service} to pick it up", "info")

        self._enter(result, ApplyState.RESTART)
        result.restart = self.services.restart(self.service)
        if result.restart.started:
            return self._finish(result)
        return self._rollback(result)

    def _finish(self, result: ApplyResult) -> ApplyResult:
        self._enter(result, ApplyState.VERIFY_OK)
        try:
            self.sentinel.mark()
        except OSError as e:
            # конфигурация уже применена, следующий запуск будет no-op по diff
            log(f"Could not write sentinel {self.sentinel.path}: {e}", "warn")
        else:
            self._enter(result, ApplyState.SENTINEL_SET)
        return self._stop(result, ApplyState.DONE)

    def _rollback(self, result: ApplyResult) -> ApplyResult:
        self._enter(result, ApplyState.VERIFY_FAIL)
        log_block(f"{self.service} logs:", result.restart.logs_tail, "error")

        self._enter(result, ApplyState.ROLLBACK)
        try:
            self.backups.restore(result.backup)
        except BackupError as e:
            result.service_down = True
            return self._stop(result, ApplyState.FAILED, f"Rollback failed, {self.service} is down: {e}")

        self._enter(result, ApplyState.RESTART_AGAIN)
        result.recovery = self.services.restart(self.service)
        if result.recovery.started:
            return self._stop(
                result,
                ApplyState.FAILED,
                f"{self.service} failed to start with the new flags; restored {result.backup.path} and {self.service} is running again",
            )

        result.service_down = True
        log_block(f"{self.service} logs after rollback:", result.recovery.logs_tail, "error")
        return self._stop(
            result,
            ApplyState.FAILED,
            f"!!! {self.flags_file} left in backup state but {self.service} is still down, manual intervention required !!!",
        )
