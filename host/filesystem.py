#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Handle for node-local files touched by the configuration engine.
Доступ к локальным файлам ноды, которые меняет движок конфигурации.

Every read and write of the kubelet flag file, its backup, the sentinel and the
provider artifacts goes through one HostFilesystem instance, so tests can pass
an in-memory substitute instead of touching /etc.
"""

import os
import stat
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Optional


class HostFilesystem:
    """Real node filesystem."""

    def exists(self, path) -> bool:
        return Path(path).exists()

    def is_executable(self, path) -> bool:
        p = Path(path)
        return p.is_file() and os.access(p, os.X_OK)

    def mode(self, path) -> Optional[int]:
        """Permission bits of an existing file, None when it does not exist."""
        try:
            return stat.S_IMODE(os.stat(path).st_mode)
        except FileNotFoundError:
            return None

    def read_bytes(self, path) -> bytes:
        return Path(path).read_bytes()

    def write_atomic(self, path, data: bytes, mode: Optional[int] = None) -> None:
        """
        Atomically write bytes to file (tmp -> fsync -> replace), then chmod.
        The previous file mode is kept unless `mode` is given.

        Атомарная запись байтов в файл (tmp -> fsync -> replace), затем chmod.
        Права старого файла сохраняются, если `mode` не передан.
        """
        dst = Path(path)
        if mode is None:
            mode = self.mode(dst)
        if mode is None:
            mode = 0o644
        dst.parent.mkdir(parents=True, exist_ok=True)
        with NamedTemporaryFile(dir=str(dst.parent), prefix=f".{dst.name}.", delete=False) as tmp:
            tmp_path = Path(tmp.name)
            try:
                tmp.write(data)
                tmp.flush()
                os.fsync(tmp.fileno())
            except OSError:
                tmp.close()
                tmp_path.unlink(missing_ok=True)
                raise
        try:
            os.chmod(tmp_path, mode)
            os.replace(tmp_path, dst)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise
