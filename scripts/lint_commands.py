#!/usr/bin/env python3
"""Lint rule/skill files for block-listed shell commands.

Checks every ``.sh`` file in full and every bash/sh/shell code block inside
``.md`` files under the given directory. Exit 1 if any block-listed command
(rm, sudo, chmod, ...) appears; see ``rulebook.command_lint.BLOCKED_COMMANDS``.

Usage:
    python3 scripts/lint_commands.py rules/
    python3 scripts/lint_commands.py skills/ --json
"""
from __future__ import annotations

import argparse
import sys
from dataclasses import asdict
from pathlib import Path

from rulebook.command_lint import lint_paths
from rulebook.io_utils import dumps_json


def log(msg: str) -> None:
    print(msg, file=sys.stderr, flush=True)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Lint Markdown/shell files for block-listed shell commands."
    )
    parser.add_argument("root", type=Path, help="Directory to scan (recursive)")
    parser.add_argument("--json", action="store_true", help="Emit violations as JSON to stdout")
    args = parser.parse_args(argv)

    if not args.root.is_dir():
        log(f"Not a directory: {args.root}")
        return 2

    checked, violations = lint_paths(args.root)

    if args.json:
        payload = {
            "files_checked": checked,
            "violations": [asdict(v) for v in violations],
        }
        print(dumps_json(payload).decode("utf-8"))

    if not violations:
        log(f"Checked {checked} file(s), no disallowed commands found.")
        return 0

    log(f"\nFound {len(violations)} disallowed command(s) in {checked} file(s) checked:\n")
    for v in violations:
        log(f"  {v.format()}")
    log(
        "\nThe commands above are not permitted in rule files because they can\n"
        "cause irreversible harm to a user's system."
    )
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
