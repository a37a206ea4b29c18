#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Load tool settings: data/defaults.yaml, then an optional operator file, then CLI overrides.
Загрузка настроек: data/defaults.yaml, затем файл оператора, затем флаги CLI.
"""

import copy
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from kubelet.patch_planner import DesiredState, parse_bool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
DEFAULTS_FILE = PROJECT_ROOT / "data" / "defaults.yaml"
ACR_SUFFIX = ".azurecr.io"
UNSAFE_FLAG_CHARS = re.compile(r"[\s\"']")
UNSAFE_GATE_CHARS = re.compile(r"[\s\"',=]")


class SettingsError(Exception):
    """Settings file unreadable or values invalid."""


@dataclass
class Settings:
    flags_file: Path
    flags_variable: str
    service: str
    restart_settle_seconds: float
    restart_timeout_seconds: float
    binary_name: str
    bin_dir: str
    config_path: str
    feature_gates: Dict[str, bool]
    obsolete_bin_dir: Optional[str] = None
    obsolete_config_path: Optional[str] = None
    match_images: List[str] = field(default_factory=list)
    cache_duration: str = "10m"
    args: List[str] = field(default_factory=list)
    registry: Optional[str] = None
    mirror_source: Optional[str] = None
    download_url: Optional[str] = None
    download_timeout: float = 60
    sentinel_path: Path = Path("/opt/credential-provider-configured")

    @property
    def binary_path(self) -> Path:
        return Path(self.bin_dir) / self.binary_name

    @property
    def registry_host(self) -> Optional[str]:
        """`myacr` -> `myacr.azurecr.io`; anything with a dot is taken as a full host."""
        if not self.registry:
            return None
        return self.registry if "." in self.registry else f"{self.registry}{ACR_SUFFIX}"

    def desired_state(self) -> DesiredState:
        return DesiredState(
            bin_dir=self.bin_dir,
            config_path=self.config_path,
            required_feature_gates=dict(self.feature_gates),
            obsolete_bin_dir=self.obsolete_bin_dir,
            obsolete_config_path=self.obsolete_config_path,
        )


def _read_yaml(path: Path) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise SettingsError(f"cannot read settings {path}: {e}") from e
    if not isinstance(data, dict):
        raise SettingsError(f"settings {path} must be a mapping")
    return data


def _merge(base: dict, extra: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def parse_gate(text: str):
    """`Key=true` -> ("Key", True)."""
    if "=" not in text:
        raise SettingsError(f"feature gate must look like KEY=BOOL: {text}")
    key, value = text.split("=", 1)
    as_bool = parse_bool(value)
    if not key or as_bool is None:
        raise SettingsError(f"feature gate must look like KEY=BOOL: {text}")
    return key, as_bool


def _gates(raw) -> Dict[str, bool]:
    gates = {}
    for key, value in (raw or {}).items():
        as_bool = parse_bool(value if isinstance(value, bool) else str(value))
        if as_bool is None:
            raise SettingsError(f"feature gate {key} must be a boolean, got {value!r}")
        gates[str(key)] = as_bool
    return gates


def _check(settings: Settings) -> Settings:
    for name in ("bin_dir", "config_path", "obsolete_bin_dir", "obsolete_config_path"):
        value = getattr(settings, name)
        if value is not None and not str(value).startswith("/"):
            raise SettingsError(f"{name} must be an absolute path: {value}")
    # these values end up as tokens of the kubelet flag line
    for name in ("bin_dir", "config_path"):
        value = getattr(settings, name)
        if UNSAFE_FLAG_CHARS.search(value):
            raise SettingsError(f"{name} must not contain whitespace or quotes: {value!r}")
    for key in settings.feature_gates:
        if not key or UNSAFE_GATE_CHARS.search(key):
            raise SettingsError(f"invalid feature gate name: {key!r}")
    if not str(settings.flags_file).startswith("/"):
        raise SettingsError(f"flags_file must be an absolute path: {settings.flags_file}")
    if settings.obsolete_bin_dir and settings.obsolete_bin_dir.rstrip("/") == settings.bin_dir.rstrip("/"):
        raise SettingsError("obsolete_bin_dir is the same as bin_dir")
    if settings.obsolete_config_path and settings.obsolete_config_path == settings.config_path:
        raise SettingsError("obsolete_config_path is the same as config_path")
    if "/" in settings.binary_name:
        raise SettingsError(f"binary_name must be a file name: {settings.binary_name}")
    if settings.restart_timeout_seconds <= 0:
        raise SettingsError("restart_timeout_seconds must be positive")
    if settings.restart_settle_seconds < 0:
        raise SettingsError("restart_settle_seconds must not be negative")
    return settings


def load_settings(path=None, overrides: Optional[dict] = None) -> Settings:
    """
    overrides use the flat Settings field names (bin_dir, feature_gates, ...);
    None values are ignored, feature_gates are merged over the configured ones.
    """
    raw = _read_yaml(DEFAULTS_FILE)
    if path:
        raw = _merge(raw, _read_yaml(Path(path)))

    kubelet = raw.get("kubelet") or {}
    provider = raw.get("credential_provider") or {}
    try:
        values = {
            "flags_file": Path(kubelet["flags_file"]),
            "flags_variable": kubelet.get("flags_variable", "KUBELET_FLAGS"),
            "service": kubelet.get("service", "kubelet"),
            "restart_settle_seconds": float(kubelet.get("restart_settle_seconds", 10)),
            "restart_timeout_seconds": float(kubelet.get("restart_timeout_seconds", 60)),
            "binary_name": provider["binary_name"],
            "bin_dir": provider["bin_dir"],
            "config_path": provider["config_path"],
            "feature_gates": _gates(provider.get("feature_gates")),
            "obsolete_bin_dir": provider.get("obsolete_bin_dir"),
            "obsolete_config_path": provider.get("obsolete_config_path"),
            "match_images": list(provider.get("match_images") or []),
            "cache_duration": str(provider.get("cache_duration", "10m")),
            "args": [str(a) for a in provider.get("args") or []],
            "registry": provider.get("registry"),
            "mirror_source": provider.get("mirror_source"),
            "download_url": provider.get("download_url"),
            "download_timeout": float(provider.get("download_timeout", 60)),
            "sentinel_path": Path(raw.get("sentinel_path", "/opt/credential-provider-configured")),
        }
    except KeyError as e:
        raise SettingsError(f"missing required setting: {e}") from e
    except (TypeError, ValueError) as e:
        raise SettingsError(f"invalid setting: {e}") from e

    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if key not in values:
            raise SettingsError(f"unknown setting: {key}")
        if key == "feature_gates":
            values[key] = {**values[key], **value}
        elif key in ("flags_file", "sentinel_path"):
            values[key] = Path(value)
        else:
            values[key] = value

    return _check(Settings(**values))
