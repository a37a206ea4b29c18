#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
One-time backup of the kubelet flag file.
Однократная резервная копия файла флагов kubelet.

<path>.bak is created before the first patch on a node and is never
overwritten or deleted afterwards: its existence means "the original is saved".
"""

from dataclasses import dataclass
from pathlib import Path

from utils.logger import log

BACKUP_SUFFIX = ".bak"


class BackupError(Exception):
    """Backup could not be created or restored."""


@dataclass(frozen=True)
class BackupRecord:
    source: Path
    path: Path
    created: bool = False


class BackupManager:
    def __init__(self, fs, suffix: str = BACKUP_SUFFIX):
        self.fs = fs
        self.suffix = suffix

    def backup_path(self, path) -> Path:
        return Path(f"{path}{self.suffix}")

    def ensure_backup(self, path) -> BackupRecord:
        source = Path(path)
        backup = self.backup_path(source)
        if self.fs.exists(backup):
            log(f"Backup already exists: {backup}", "ok")
            return BackupRecord(source, backup, created=False)

        try:
            data = self.fs.read_bytes(source)
            self.fs.write_atomic(backup, data, mode=self.fs.mode(source))
        except OSError as e:
            raise BackupError(f"cannot back up {source} to {backup}: {e}") from e

        log(f"Created backup: {backup}", "ok")
        return BackupRecord(source, backup, created=True)

    def restore(self, record: BackupRecord) -> None:
        try:
            data = self.fs.read_bytes(record.path)
            self.fs.write_atomic(record.source, data)
        except OSError as e:
            raise BackupError(f"cannot restore {record.source} from {record.path}: {e}") from e
        log(f"Restored {record.source} from {record.path}", "warn")
