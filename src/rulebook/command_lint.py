"""Block-list lint for shell commands in rule and skill files.

Scans ``.sh`` files in full and the ``bash``/``sh``/``shell`` fenced blocks of
``.md`` files. Comment lines are scanned like any other line. Everything not
on the block-list is allowed.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from rulebook.io_utils import read_text

# Command key -> token pattern inserted into the command regex as-is.
BLOCKED_COMMANDS: dict[str, str] = {
    "rm": "rm",                         # deletes files
    "sudo": "sudo",                     # privilege escalation
    "chmod": "chmod",
    "chown": "chown",
    "dd": "dd",                         # raw disk writes
    "mkfs": r"mkfs(?:\.[\w+-]+)?",      # mkfs, mkfs.ext4, ...
    "fdisk": "fdisk",
    "gdisk": "gdisk",
    "parted": "parted",
    "kill": "kill",
    "killall": "killall",
    "pkill": "pkill",
    "eval": "eval",
    "passwd": "passwd",
    "useradd": "useradd",
    "userdel": "userdel",
    "usermod": "usermod",
    "groupadd": "groupadd",
    "crontab": "crontab",
    "reboot": "reboot",
    "shutdown": "shutdown",
    "halt": "halt",
    "poweroff": "poweroff",
    "mount": "mount",
    "umount": "umount",
    "iptables": "iptables",
    "nft": "nft",
    "ufw": "ufw",
}

# Bare or path-prefixed command (rm, /bin/rm, ./rm, ../bin/rm) as a whole
# word, so "framework" never matches "rm".
BLOCKED_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = tuple(
    (
        cmd,
        re.compile(
            r"(?:^|[\s|;&`$(])(?:[./][\w./-]*/)?"
            + token
            + r"(?=[\s|;&`$()><!]|$)"
        ),
    )
    for cmd, token in BLOCKED_COMMANDS.items()
)

_SHELL_FENCE_RE = re.compile(r"^```(bash|sh|shell)\s*$", re.IGNORECASE)
_CLOSE_FENCE_RE = re.compile(r"^```\s*$")


@dataclass(frozen=True, slots=True)
class Violation:
    file: str
    line: int       # 1-based line in the file
    command: str
    content: str    # the trimmed offending line

    def format(self) -> str:
        return f"{self.file}:{self.line}  [{self.command}]\n    {self.content}"


@dataclass(frozen=True, slots=True)
class ShellBlock:
    code: str
    start_line: int     # 0-based index of the first content line


def scan_lines(text: str, file: str, line_offset: int = 0) -> list[Violation]:
    """Scan text line by line; at most one violation per line.

    ``line_offset`` is the 0-based index of the text's first line within the
    parent file.
    """
    violations: list[Violation] = []
    for i, line in enumerate(text.split("\n")):
        trimmed = line.strip()
        if not trimmed:
            continue
        for cmd, pattern in BLOCKED_PATTERNS:
            if pattern.search(line):
                violations.append(Violation(
                    file=file,
                    line=line_offset + i + 1,
                    command=cmd,
                    content=trimmed,
                ))
                break
    return violations


def extract_shell_blocks(markdown: str) -> list[ShellBlock]:
    """Contents of every bash/sh/shell fenced block, with start lines."""
    blocks: list[ShellBlock] = []
    in_block = False
    block_lines: list[str] = []
    block_start = 0
    for i, line in enumerate(markdown.split("\n")):
        if not in_block:
            if _SHELL_FENCE_RE.match(line.strip()):
                in_block = True
                block_lines = []
                block_start = i + 1
        elif _CLOSE_FENCE_RE.match(line.strip()):
            blocks.append(ShellBlock(code="\n".join(block_lines), start_line=block_start))
            in_block = False
            block_lines = []
        else:
            block_lines.append(line)
    return blocks


def lint_markdown(text: str, file: str) -> list[Violation]:
    violations: list[Violation] = []
    for block in extract_shell_blocks(text):
        violations.extend(scan_lines(block.code, file, block.start_line))
    return violations


def lint_shell_script(text: str, file: str) -> list[Violation]:
    return scan_lines(text, file, 0)


def lint_paths(root: Path) -> tuple[int, list[Violation]]:
    """Lint every ``.sh`` and ``.md`` file under ``root`` (recursive).

    Returns (files checked, violations). Paths in violations are relative to
    ``root``.
    """
    files = sorted(
        p for p in root.rglob("*")
        if p.is_file() and p.suffix in (".sh", ".md")
    )
    violations: list[Violation] = []
    for path in files:
        rel = path.relative_to(root).as_posix()
        text = read_text(path).replace("\r\n", "\n")
        if path.suffix == ".sh":
            violations.extend(lint_shell_script(text, rel))
        else:
            violations.extend(lint_markdown(text, rel))
    return len(files), violations
