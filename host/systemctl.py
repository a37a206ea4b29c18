#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Restart a systemd service and wait until it is active again.
Перезапуск systemd-сервиса с ожиданием перехода в состояние active.
"""

import subprocess
import time
from dataclasses import dataclass
from datetime import datetime

from utils.logger import log

SETTLE_SECONDS = 10
TIMEOUT_SECONDS = 60
POLL_SECONDS = 2
COMMAND_TIMEOUT = 30
JOURNAL_LINES = 20


@dataclass(frozen=True)
class RestartOutcome:
    started: bool
    state: str
    logs_tail: str = ""


class ServiceController:
    def __init__(
        self,
        settle_seconds: float = SETTLE_SECONDS,
        timeout_seconds: float = TIMEOUT_SECONDS,
        poll_seconds: float = POLL_SECONDS,
        journal_lines: int = JOURNAL_LINES,
        runner=subprocess.run,
        sleep=time.sleep,
        clock=time.monotonic,
    ):
        self.settle_seconds = settle_seconds
        self.timeout_seconds = timeout_seconds
        self.poll_seconds = poll_seconds
        self.journal_lines = journal_lines
        self._run = runner
        self._sleep = sleep
        self._clock = clock

    def _command(self, cmd):
        """
        Run a command, never raising: returns (returncode, stdout, stderr).
        Missing binary or a hung command is reported as returncode None.
        """
        try:
            result = self._run(cmd, capture_output=True, text=True, timeout=COMMAND_TIMEOUT)
        except FileNotFoundError as e:
            return None, "", str(e)
        except subprocess.TimeoutExpired:
            return None, "", f"timed out after {COMMAND_TIMEOUT}s"
        return result.returncode, (result.stdout or "").strip(), (result.stderr or "").strip()

    def status(self, service: str) -> str:
        code, out, err = self._command(["systemctl", "is-active", service])
        if code is None:
            log(f"Cannot query {service} state: {err}", "warn")
            return "unknown"
        return out or "unknown"

    def logs_tail(self, service: str, since: str = None) -> str:
        cmd = ["journalctl", "-u", service, "--no-pager", "-n", str(self.journal_lines)]
        if since:
            cmd += ["--since", since]
        code, out, err = self._command(cmd)
        if code is None:
            return f"journalctl unavailable: {err}"
        return out

    def restart(self, service: str) -> RestartOutcome:
        since = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

        self._command(["systemctl", "daemon-reload"])
        code, _, err = self._command(["systemctl", "restart", service])
        if code != 0:
            # not fatal by itself, only "not active after the wait" is
            log(f"systemctl restart {service} returned {code}: {err}", "warn")

        log(f"Waiting up to {self.settle_seconds + self.timeout_seconds:g}s for {service} to become active...", "info")
        self._sleep(self.settle_seconds)

        deadline = self._clock() + self.timeout_seconds
        state = self.status(service)
        while state != "active" and self._clock() < deadline:
            self._sleep(self.poll_seconds)
            state = self.status(service)

        if state == "active":
            log(f"{service} is active", "ok")
            return RestartOutcome(True, state)

        log(f"{service} did not become active (state: {state})", "error")
        return RestartOutcome(False, state, self.logs_tail(service, since=since))
