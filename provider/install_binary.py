#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Install the credential provider binary into the configured bin dir.
Установка бинарника credential provider в bin dir.

Best effort: one download attempt (or a copy of a local file), no retries.
The kubelet patch step refuses to run when the binary is missing afterwards.
"""

import platform
from pathlib import Path
from typing import Optional

import requests

from utils.logger import log

ARCH_MAP = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
}
CHUNK_SIZE = 1024 * 1024


class InstallError(Exception):
    """Binary could not be installed."""


def detect_arch(machine: Optional[str] = None) -> str:
    machine = machine or platform.machine()
    arch = ARCH_MAP.get(machine.lower())
    if arch is None:
        raise InstallError(f"unsupported architecture: {machine}")
    return arch


def download(url: str, timeout: float) -> bytes:
    log(f"Downloading {url}...", "info")
    try:
        with requests.get(url, stream=True, timeout=timeout) as resp:
            resp.raise_for_status()
            chunks = [chunk for chunk in resp.iter_content(chunk_size=CHUNK_SIZE) if chunk]
    except requests.exceptions.RequestException as e:
        raise InstallError(f"download of {url} failed: {e}") from e
    data = b"".join(chunks)
    if not data:
        raise InstallError(f"download of {url} returned an empty body")
    return data


def install_binary(fs, settings, source: Optional[str] = None, force: bool = False) -> bool:
    """
    Put the binary at settings.binary_path with mode 0755.
    source: local file to copy instead of downloading.
    Returns True when something was installed, False when it was already there.
    """
    target = settings.binary_path
    if not force and fs.is_executable(target):
        log(f"Binary already installed: {target}", "ok")
        return False

    if source:
        try:
            data = fs.read_bytes(Path(source))
        except OSError as e:
            raise InstallError(f"cannot read {source}: {e}") from e
    else:
        if not settings.download_url:
            raise InstallError(f"{target} is missing and no download_url is configured")
        url = settings.download_url.format(arch=detect_arch())
        data = download(url, settings.download_timeout)

    try:
        fs.write_atomic(target, data, mode=0o755)
    except OSError as e:
        raise InstallError(f"cannot write {target}: {e}") from e
    log(f"Installed {target} ({len(data)} bytes)", "ok")
    return True
