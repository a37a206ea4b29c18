#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Read-only check of the credential provider setup on this node.
Проверка настройки credential provider на ноде без каких-либо изменений.

Runs the six flag-file checks against the live file, then looks at the
binary, the descriptor, the kubelet service and the sentinel.

    python3 kubelet/check_kubelet_config.py [--config settings.yaml]
"""

import argparse
import os
import sys
from typing import List

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from host.filesystem import HostFilesystem  # noqa: E402
from host.sentinel import SentinelStore  # noqa: E402
from host.systemctl import ServiceController  # noqa: E402
from kubelet.flag_file import ParseError, decode, read_document  # noqa: E402
from kubelet.validator import CHECK_ORDER, CheckResult, validate  # noqa: E402
from provider.render_config import DescriptorError, check_descriptor  # noqa: E402
from utils.logger import log, log_block  # noqa: E402
from utils.settings import SettingsError, load_settings  # noqa: E402


def _flag_checks(fs, settings) -> List[CheckResult]:
    try:
        doc = read_document(fs, settings.flags_file, settings.flags_variable)
    except ParseError as e:
        return [CheckResult(name, False, str(e)) for name in CHECK_ORDER]
    return validate(doc, settings.desired_state()).checks


def _descriptor_check(fs, settings) -> CheckResult:
    path = settings.config_path
    if not fs.exists(path):
        return CheckResult("descriptor-valid", False, f"{path} not found")
    try:
        check_descriptor(decode(fs.read_bytes(path)))
    except (OSError, DescriptorError) as e:
        return CheckResult("descriptor-valid", False, str(e))
    return CheckResult("descriptor-valid", True, f"{path} ok")


def run_checks(fs, services, settings) -> List[CheckResult]:
    results = _flag_checks(fs, settings)

    binary = settings.binary_path
    results.append(CheckResult(
        "binary-executable",
        fs.is_executable(binary),
        f"{binary} {'executable' if fs.is_executable(binary) else 'not found or not executable'}",
    ))

    results.append(_descriptor_check(fs, settings))

    state = services.status(settings.service)
    results.append(CheckResult("service-active", state == "active", f"{settings.service} {state}"))
    if state != "active":
        log_block(f"Last {settings.service} log lines:", services.logs_tail(settings.service))

    sentinel = SentinelStore(fs, settings.sentinel_path)
    results.append(CheckResult(
        "sentinel-present",
        sentinel.is_set(),
        f"{sentinel.path} {'exists' if sentinel.is_set() else 'missing'}",
    ))
    return results


def report(results: List[CheckResult]) -> bool:
    for result in results:
        log(result.line(), "ok" if result.passed else "error")
    passed = sum(1 for r in results if r.passed)
    all_ok = passed == len(results)
    log(f"Checks passed: {passed}/{len(results)}", "ok" if all_ok else "warn")
    log("Result: ALL CHECKS PASSED" if all_ok else "Result: SOME CHECKS FAILED", "ok" if all_ok else "error")
    return all_ok


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Check kubelet credential provider configuration")
    parser.add_argument("--config", help="settings YAML merged over data/defaults.yaml")
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args.config)
    except SettingsError as e:
        log(str(e), "error")
        return 1

    log("=== Kubelet Credential Provider Check ===", "info")
    ok = report(run_checks(HostFilesystem(), ServiceController(), settings))
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
