#!/usr/bin/env python3
# PYTHON_ARGCOMPLETE_OK
"""
Configure kubelet on this node to use an external image credential provider.
Настройка kubelet на ноде для работы с внешним image credential provider.

    sudo python3 main.py apply --registry myacr
    python3 main.py plan
    python3 main.py check
"""

import argparse
import os
import sys

import argcomplete

from host.backup import BackupManager
from host.filesystem import HostFilesystem
from host.sentinel import SentinelStore
from host.systemctl import POLL_SECONDS, ServiceController
from kubelet import check_kubelet_config
from kubelet.config_applier import ConfigApplier
from provider.install_binary import InstallError, install_binary
from provider.render_config import DescriptorError, write_descriptor
from utils.logger import log
from utils.settings import SettingsError, load_settings, parse_gate

COMMANDS = ["apply", "plan", "check"]


class StepFailed(Exception):
    """Step finished with a non-success result."""


def step_install_binary(ctx):
    install_binary(ctx["fs"], ctx["settings"], source=ctx["args"].binary_source, force=ctx["args"].force_download)


def step_render_descriptor(ctx):
    write_descriptor(ctx["fs"], ctx["settings"])


def step_configure_kubelet(ctx):
    result = build_applier(ctx["fs"], ctx["settings"]).apply()
    ctx["result"] = result
    if not result.ok:
        raise StepFailed(f"terminal state {result.state.value}: {result.error}")


# Очерёдность шагов для apply
APPLY_STEPS = [
    ("Install credential provider binary", step_install_binary),
    ("Render credential provider config", step_render_descriptor),
    ("Configure kubelet flags", step_configure_kubelet),
]


def build_applier(fs, settings, dry_run=False, services=None):
    services = services or ServiceController(
        settle_seconds=settings.restart_settle_seconds,
        timeout_seconds=settings.restart_timeout_seconds,
        poll_seconds=POLL_SECONDS,
    )
    required = [] if dry_run else [
        ("credential provider binary", settings.binary_path, True),
        ("credential provider config", settings.config_path, False),
    ]
    return ConfigApplier(
        fs=fs,
        service_controller=services,
        sentinel=SentinelStore(fs, settings.sentinel_path),
        desired=settings.desired_state(),
        flags_file=settings.flags_file,
        service=settings.service,
        flags_variable=settings.flags_variable,
        backups=BackupManager(fs),
        required_files=required,
        dry_run=dry_run,
    )


def run_step(title, func, ctx):
    log(f"==> {title}", "step")
    try:
        func(ctx)
    except (InstallError, DescriptorError, StepFailed, OSError) as e:
        log(f"Step failed: {title}: {e}", "error")
        sys.exit(1)
    log(f"Finished: {title}", "ok")


def build_parser():
    parser = argparse.ArgumentParser(description="Configure kubelet image credential provider")
    parser.add_argument("command", choices=COMMANDS, help="apply: configure the node, plan: dry run, check: read-only report")
    parser.add_argument("--config", help="settings YAML merged over data/defaults.yaml")
    parser.add_argument("--flags-file", help="kubelet flag file (default /etc/default/kubelet)")
    parser.add_argument("--service", help="service to restart (default kubelet)")
    parser.add_argument("--bin-dir", help="credential provider bin dir")
    parser.add_argument("--config-path", help="credential provider config descriptor path")
    parser.add_argument("--feature-gate", action="append", default=[], metavar="KEY=BOOL",
                        help="required kubelet feature gate, may be repeated")
    parser.add_argument("--registry", help="registry name or host added to matchImages (myacr -> myacr.azurecr.io)")
    parser.add_argument("--mirror-source", help="registry mirrored to --registry, e.g. mcr.microsoft.com")
    parser.add_argument("--sentinel", help="sentinel file path")
    parser.add_argument("--binary-source", help="install the binary from this local file instead of downloading")
    parser.add_argument("--force-download", action="store_true", help="reinstall the binary even if present")
    parser.add_argument("--allow-non-root", action="store_true", help="do not require root for apply")

    # Автодополнение только если переменная окружения выставлена
    if "_ARGCOMPLETE" in os.environ:
        argcomplete.autocomplete(parser)
    return parser


def settings_from_args(args):
    gates = dict(parse_gate(g) for g in args.feature_gate) or None
    overrides = {
        "flags_file": args.flags_file,
        "service": args.service,
        "bin_dir": args.bin_dir,
        "config_path": args.config_path,
        "feature_gates": gates,
        "registry": args.registry,
        "mirror_source": args.mirror_source,
        "sentinel_path": args.sentinel,
    }
    return load_settings(args.config, overrides)


def cli(argv=None):
    args = build_parser().parse_args(argv)
    try:
        settings = settings_from_args(args)
    except SettingsError as e:
        log(str(e), "error")
        sys.exit(1)

    fs = HostFilesystem()

    if args.command == "check":
        log("=== Kubelet Credential Provider Check ===", "info")
        ok = check_kubelet_config.report(check_kubelet_config.run_checks(fs, ServiceController(), settings))
        sys.exit(0 if ok else 1)

    if args.command == "plan":
        result = build_applier(fs, settings, dry_run=True).apply()
        sys.exit(result.exit_code)

    if not args.allow_non_root and os.geteuid() != 0:
        log("This command must be run as root (use sudo)", "error")
        sys.exit(1)

    sentinel = SentinelStore(fs, settings.sentinel_path)
    if sentinel.is_set():
        log(f"Sentinel {sentinel.path} exists, node already configured, nothing to do", "ok")
        sys.exit(0)

    log("Credential provider setup started", "info")
    ctx = {"fs": fs, "settings": settings, "args": args}
    for title, func in APPLY_STEPS:
        run_step(title, func, ctx)
    log("Setup completed successfully", "ok")
    sys.exit(0)


if __name__ == "__main__":
    cli()
