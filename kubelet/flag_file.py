#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Parse and re-serialize the kubelet flag file (/etc/default/kubelet).
Разбор и обратная сборка файла флагов kubelet (/etc/default/kubelet).

The file is kept as an ordered list of raw lines. Only one line is interpreted:
the first assignment of the flags variable, e.g.

    KUBELET_FLAGS="--image-credential-provider-bin-dir=/opt --feature-gates=A=true,B=false"

That line is split into prefix, quote, body, closing quote and tail, so an
untouched document serializes back byte for byte.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

FLAGS_VARIABLE = "KUBELET_FLAGS"
FEATURE_GATES_FLAG = "feature-gates"
FILE_ENCODING = "utf-8"
FILE_ERRORS = "surrogateescape"

FLAG_TOKEN_RE = re.compile(r"--(?P<name>[A-Za-z0-9][A-Za-z0-9_.-]*)=(?P<value>\S*)\Z")
TOKEN_RE = re.compile(r"\S+")
QUOTES = ("\"", "'")


class ParseError(Exception):
    """The flag file could not be read at all."""


@dataclass
class FlagLine:
    prefix: str          # "KUBELET_FLAGS=" with optional indentation / "export "
    quote: str           # '"', "'" or ""
    body: str            # space separated flags between the quotes
    terminated: bool     # closing quote found
    tail: str            # text after the closing quote (comment, garbage)
    eol: str             # "\n", "\r\n" or ""

    def render(self) -> str:
        closing = self.quote if self.quote and self.terminated else ""
        return f"{self.prefix}{self.quote}{self.body}{closing}{self.tail}{self.eol}"

    def tokens(self) -> List[str]:
        return TOKEN_RE.findall(self.body)

    def flags(self) -> List[Tuple[str, str]]:
        """All `--name=value` tokens as (name, value) pairs, in order."""
        found = []
        for token in self.tokens():
            m = FLAG_TOKEN_RE.match(token)
            if m:
                found.append((m.group("name"), m.group("value")))
        return found

    def replace_flag(self, name: str, value: str) -> Tuple[Optional[str], int]:
        """
        Set the first `--name=` token to `value` and drop the later ones.
        Returns the old value of the first occurrence and how many copies were dropped.
        """
        old = None
        dropped = 0
        pieces = []
        pos = 0
        for m in TOKEN_RE.finditer(self.body):
            flag = FLAG_TOKEN_RE.match(m.group(0))
            if not flag or flag.group("name") != name:
                continue
            if old is None:
                old = flag.group("value")
                pieces.append(self.body[pos:m.start()])
                pieces.append(f"--{name}={value}")
            else:
                # вырезаем дубликат вместе с предшествующим пробелом
                start = m.start()
                while start > pos and self.body[start - 1].isspace():
                    start -= 1
                pieces.append(self.body[pos:start])
                dropped += 1
            pos = m.end()
        pieces.append(self.body[pos:])
        self.body = "".join(pieces)
        return old, dropped

    def append_token(self, token: str) -> None:
        stripped = self.body.rstrip()
        trailing = self.body[len(stripped):]
        sep = " " if stripped else ""
        self.body = f"{stripped}{sep}{token}{trailing}"


def split_feature_gates(value: str) -> List[str]:
    return [entry for entry in value.split(",") if entry != ""] if value else []


def gate_pairs(entries: List[str]) -> List[Tuple[str, Optional[str]]]:
    pairs = []
    for entry in entries:
        if "=" in entry:
            key, val = entry.split("=", 1)
            pairs.append((key, val))
        else:
            pairs.append((entry, None))
    return pairs


def _split_eol(line: str) -> Tuple[str, str]:
    if line.endswith("\r\n"):
        return line[:-2], "\r\n"
    if line.endswith("\n"):
        return line[:-1], "\n"
    return line, ""


def parse_flag_line(line: str, flags_variable: str = FLAGS_VARIABLE) -> Optional[FlagLine]:
    content, eol = _split_eol(line)
    m = re.match(rf"(\s*(?:export\s+)?{re.escape(flags_variable)}=)", content)
    if not m:
        return None
    prefix = m.group(1)
    rest = content[m.end():]

    if rest[:1] in QUOTES:
        quote = rest[0]
        closing = rest.find(quote, 1)
        if closing == -1:
            return FlagLine(prefix, quote, rest[1:], False, "", eol)
        return FlagLine(prefix, quote, rest[1:closing], True, rest[closing + 1:], eol)

    return FlagLine(prefix, "", rest, True, "", eol)


class ConfigurationDocument:
    """
    In-memory kubelet flag file.
    Файл флагов kubelet в памяти: строки как есть плюс разобранная строка флагов.
    """

    def __init__(self, lines: List[str], flags_variable: str = FLAGS_VARIABLE):
        self.lines = list(lines)
        self.flags_variable = flags_variable
        self.flag_line_index: Optional[int] = None
        self.flag_line: Optional[FlagLine] = None
        for i, line in enumerate(self.lines):
            parsed = parse_flag_line(line, flags_variable)
            if parsed is not None:
                self.flag_line_index = i
                self.flag_line = parsed
                break

    # --- read side ---

    @property
    def has_flag_line(self) -> bool:
        return self.flag_line is not None

    def serialize(self) -> str:
        if self.flag_line is None:
            return "".join(self.lines)
        lines = list(self.lines)
        lines[self.flag_line_index] = self.flag_line.render()
        return "".join(lines)

    def to_bytes(self) -> bytes:
        return self.serialize().encode(FILE_ENCODING, FILE_ERRORS)

    def flag_values(self, name: str) -> List[str]:
        if self.flag_line is None:
            return []
        return [value for flag, value in self.flag_line.flags() if flag == name]

    def get_flag(self, name: str) -> Optional[str]:
        values = self.flag_values(name)
        return values[0] if values else None

    def feature_gate_entries(self) -> List[str]:
        value = self.get_flag(FEATURE_GATES_FLAG)
        return split_feature_gates(value) if value is not None else []

    def feature_gates(self) -> List[Tuple[str, Optional[str]]]:
        return gate_pairs(self.feature_gate_entries())

    def copy(self) -> "ConfigurationDocument":
        return ConfigurationDocument(self.serialize().splitlines(keepends=True), self.flags_variable)

    # --- write side (used by the planner on a copy) ---

    def set_flag(self, name: str, value: str) -> Tuple[Optional[str], int]:
        """
        Replace the value of `--name=` in the flag line, appending the flag when absent.
        Returns (old value or None, number of removed duplicates).
        """
        if self.flag_line is None:
            raise ValueError("document has no flag line")
        old, dropped = self.flag_line.replace_flag(name, value)
        if old is None:
            self.flag_line.append_token(f"--{name}={value}")
        return old, dropped

    def add_flag_line(self, tokens: List[str]) -> None:
        """Append a new double-quoted flags line at the end of the file."""
        if self.flag_line is not None:
            raise ValueError("document already has a flag line")
        if self.lines and not self.lines[-1].endswith("\n"):
            self.lines[-1] += "\n"
        line = FlagLine(f"{self.flags_variable}=", "\"", " ".join(tokens), True, "", "\n")
        self.lines.append(line.render())
        self.flag_line_index = len(self.lines) - 1
        self.flag_line = line


def parse(raw_text: str, flags_variable: str = FLAGS_VARIABLE) -> ConfigurationDocument:
    """Malformed content is never an error: missing pieces simply read as absent."""
    return ConfigurationDocument(raw_text.splitlines(keepends=True), flags_variable)


def decode(data: bytes) -> str:
    return data.decode(FILE_ENCODING, FILE_ERRORS)


def read_document(fs, path, flags_variable: str = FLAGS_VARIABLE) -> ConfigurationDocument:
    try:
        data = fs.read_bytes(path)
    except OSError as e:
        raise ParseError(f"cannot read {path}: {e}") from e
    return parse(decode(data), flags_variable)
