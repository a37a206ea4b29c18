# utils/logger.py

import os
import sys

COLORS = {
    "info": "\033[94m",    # синий
    "step": "\033[95m",    # фиолетовый
    "warn": "\033[93m",    # жёлтый
    "error": "\033[91m",   # красный
    "ok": "\033[92m",      # зелёный
}
RESET = "\033[0m"


def _use_color() -> bool:
    if os.environ.get("NO_COLOR"):
        return False
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def log(text, level="info"):
    if _use_color():
        color = COLORS.get(level, RESET)
        print(f"{color}[{level.upper()}] {text}{RESET}")
    else:
        print(f"[{level.upper()}] {text}")


def log_block(title, text, level="info"):
    """
    Log a multi-line artifact (file content, diff, journal tail) indented by two spaces.
    Выводит многострочный фрагмент (файл, diff, журнал) с отступом в два пробела.
    """
    log(title, level)
    lines = text.splitlines() or ["<empty>"]
    for line in lines:
        print(f"  {line}")
