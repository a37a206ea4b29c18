#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
"Already configured" marker for this node.
Маркер «нода уже настроена».

Written only after kubelet came back up with the new flags. Only its existence
matters; deleting it re-enables configuration on the next run.
"""

import socket
from datetime import datetime, timezone
from pathlib import Path

SENTINEL_PATH = Path("/opt/credential-provider-configured")


class SentinelStore:
    def __init__(self, fs, path=SENTINEL_PATH):
        self.fs = fs
        self.path = Path(path)

    def is_set(self) -> bool:
        return self.fs.exists(self.path)

    def mark(self) -> None:
        stamp = datetime.now(timezone.utc).isoformat()
        content = f"node={socket.gethostname()}\nconfigured_at={stamp}\n"
        self.fs.write_atomic(self.path, content.encode(), mode=0o644)
