"""I/O utilities for JSON and text file operations.

JSON goes through orjson with sorted keys so every artifact the pipeline
writes is byte-stable across runs.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any

import orjson


def load_json(path: Path) -> Any:
    """Load JSON from a file."""
    return orjson.loads(path.read_bytes())


def save_json(obj: Any, path: Path, *, pretty: bool = True) -> None:
    """Save an object as JSON (sorted keys, 2-space indent when pretty)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    opts = (
        orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS
        if pretty
        else orjson.OPT_SORT_KEYS
    )
    path.write_bytes(orjson.dumps(obj, option=opts))


def dumps_json(obj: Any) -> bytes:
    return orjson.dumps(obj, option=orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS)


def read_text(path: Path) -> str:
    """Read a UTF-8 text file without newline translation.

    ``Path.read_text`` would turn CRLF into LF; rule bodies must round-trip
    byte for byte, so decode the raw bytes instead.
    """
    return path.read_bytes().decode("utf-8")
