"""Parser for rule Markdown files.

A rule file has three consecutive parts, each kept as raw text:

    ---                                 front matter  (optional for legacy files)
    title: Promise.all() for Independent Operations
    impact: CRITICAL
    impactDescription: 2-10x improvement
    tags: async, parallelization
    ---

    ## Promise.all() for Independent Operations      header
    **Impact: CRITICAL (2-10x improvement)**

    Explanation prose ...                           body
    **Incorrect (sequential execution):**
    ```typescript
    ...
    ```
    **Correct (parallel execution):**
    ...
    Reference: [MDN](https://developer.mozilla.org/)

Front-matter values win over the header; the header fills in what the front
matter lacks. The body is split into blocks at example labels and reference
lines but block contents are never interpreted, so
``front_matter + header + body`` is the original file, byte for byte.

Pure functions only -- ``parse_rule_file`` is the one place that reads disk.
"""
from __future__ import annotations

import re
from pathlib import Path, PurePosixPath

from rulebook.io_utils import read_text
from rulebook.rule_types import (
    BlockKind,
    BodyBlock,
    Err,
    ErrorKind,
    Impact,
    Ok,
    ParseError,
    Result,
    RuleRecord,
)

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

_FENCE_RE = re.compile(r"^\s*(```|~~~)")

_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")

# "**Impact: CRITICAL (2-10x improvement)**" and "**Impact:** HIGH".
# The description may itself contain parentheses ("O(n) to O(1)"), hence the
# greedy group up to the last ')'.
_IMPACT_LINE_RE = re.compile(
    r"^\*\*Impact:(?:\*\*)?\s*"
    r"([A-Za-z][A-Za-z_-]*(?:[ _-][A-Za-z]+)?)"
    r"\s*(?:\((.*)\))?\s*(?:\*\*)?\s*$"
)

# Example label on its own line: "**Incorrect (O(n) per lookup):**".
# Distinguishes block labels from inline bold text ("**Note:** some text").
_LABEL_RE = re.compile(r"^\*\*([^:*][^:]*?):\*{0,2}\s*$")

_REFERENCE_RE = re.compile(r"^(?:\*\*)?References?:")

_QUOTE_RE = re.compile(r"^[\"']|[\"']$")

REQUIRED_FIELDS: tuple[str, ...] = ("title", "impact")


def _strip_eol(line: str) -> str:
    return line.rstrip("\r\n")


def _err(kind: ErrorKind, message: str, source: str, subject: str = "") -> Err[ParseError]:
    return Err(ParseError(kind=kind, message=message, source=source, subject=subject))


# ---------------------------------------------------------------------------
# Front matter
# ---------------------------------------------------------------------------

def split_front_matter(
    lines: list[str], source: str,
) -> Result[tuple[dict[str, str], int], ParseError]:
    """Parse a leading ``---`` block.

    Returns the key/value map and the number of lines the block spans
    (0 when the file has no front matter). Empty values are treated as
    absent so a blank required field surfaces as MissingField.
    """
    if not lines or _strip_eol(lines[0]).strip() != "---":
        return Ok(({}, 0))

    end = -1
    for i in range(1, len(lines)):
        if _strip_eol(lines[i]).strip() == "---":
            end = i
            break
    if end == -1:
        return _err(
            ErrorKind.MALFORMED_FRONT_MATTER,
            "Unclosed front-matter block (missing closing ---)",
            source,
        )

    fields: dict[str, str] = {}
    for i in range(1, end):
        line = _strip_eol(lines[i]).strip()
        if not line:
            continue
        sep = line.find(":")
        if sep == -1:
            return _err(
                ErrorKind.MALFORMED_FRONT_MATTER,
                f'Invalid front-matter line {i + 1}: "{line}" (expected key: value)',
                source,
            )
        key = line[:sep].strip()
        if not key:
            return _err(
                ErrorKind.MALFORMED_FRONT_MATTER,
                f"Invalid front-matter line {i + 1}: empty key",
                source,
            )
        value = _QUOTE_RE.sub("", line[sep + 1:].strip())
        if value:
            fields[key] = value
    return Ok((fields, end + 1))


# ---------------------------------------------------------------------------
# Header (heading + impact line)
# ---------------------------------------------------------------------------

def _is_title_heading(level: int, text: str, front_matter_title: str) -> bool:
    """Whether a leading heading is the rule's title heading.

    Without a front-matter title the first heading is the title. Otherwise
    only a level-2 heading or one repeating the title is; anything else
    (``### Background``) is body content.
    """
    if not front_matter_title:
        return True
    return level == 2 or text == front_matter_title


def _split_header(
    lines: list[str], front_matter_title: str = "",
) -> tuple[int, str, tuple[str, str] | None]:
    """Consume leading blank lines, the title heading and the first impact line.

    Returns (lines consumed, heading title, (impact literal, description)).
    """
    title = ""
    impact: tuple[str, str] | None = None
    i = 0
    while i < len(lines):
        text = _strip_eol(lines[i]).strip()
        if not text:
            i += 1
            continue
        if not title:
            m = _HEADING_RE.match(text)
            if m and _is_title_heading(len(m.group(1)), m.group(2).strip(), front_matter_title):
                title = m.group(2).strip()
                i += 1
                continue
        if impact is None and text.startswith("**Impact:"):
            m = _IMPACT_LINE_RE.match(text)
            if m:
                impact = (m.group(1).strip(), (m.group(2) or "").strip())
                i += 1
                continue
        break
    return i, title, impact


# ---------------------------------------------------------------------------
# Body blocks
# ---------------------------------------------------------------------------

def classify_label(label: str) -> BlockKind:
    """Map an example label to a block kind.

    "incorrect" is checked first since it contains "correct".
    """
    low = label.lower()
    if "incorrect" in low or "wrong" in low or "bad" in low:
        return BlockKind.INCORRECT
    if "correct" in low or "good" in low:
        return BlockKind.CORRECT
    return BlockKind.EXAMPLE


def split_body(body_lines: list[str]) -> tuple[BodyBlock, ...]:
    """Split body lines into verbatim blocks.

    Boundaries are recognised only outside fenced code, so a ``**Label:**``
    line inside an example never starts a new block.
    """
    blocks: list[BodyBlock] = []
    kind = BlockKind.PROSE
    label = ""
    current: list[str] = []
    in_fence = False

    def flush() -> None:
        if current:
            blocks.append(BodyBlock(kind=kind, text="".join(current), label=label))

    for line in body_lines:
        text = _strip_eol(line)
        if _FENCE_RE.match(text):
            in_fence = not in_fence
        elif not in_fence:
            if _REFERENCE_RE.match(text):
                flush()
                current = []
                kind, label = BlockKind.REFERENCES, ""
            else:
                m = _LABEL_RE.match(text)
                if m:
                    flush()
                    current = []
                    label = m.group(1).strip()
                    kind = classify_label(label)
        current.append(line)
    flush()
    return tuple(blocks)


def parse_tags(raw: str) -> frozenset[str]:
    """Comma-split, trim, drop empties; duplicates collapse case-sensitively."""
    return frozenset(t.strip() for t in raw.split(",") if t.strip())


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse_rule_source(
    text: str,
    source_path: str,
    *,
    rule_id: str | None = None,
) -> Result[RuleRecord, ParseError]:
    """Parse the raw text of one rule file into a RuleRecord."""
    lines = text.splitlines(keepends=True)

    fm_result = split_front_matter(lines, source_path)
    if isinstance(fm_result, Err):
        return fm_result
    fields, fm_len = fm_result.value

    rest = lines[fm_len:]
    header_len, heading_title, header_impact = _split_header(rest, fields.get("title", ""))

    title = fields.get("title") or heading_title
    impact_literal = fields.get("impact") or (header_impact[0] if header_impact else "")
    impact_description = fields.get("impactDescription") or (
        header_impact[1] if header_impact else ""
    )

    present = {"title": title, "impact": impact_literal}
    missing = [name for name in REQUIRED_FIELDS if not present[name]]
    if missing:
        return _err(
            ErrorKind.MISSING_FIELD,
            f"Missing required field(s): {', '.join(missing)}",
            source_path,
            subject=", ".join(missing),
        )

    impact = Impact.parse(impact_literal)
    if impact is None:
        return _err(
            ErrorKind.UNKNOWN_IMPACT_LEVEL,
            f'Unknown impact level "{impact_literal}". Must be one of: '
            + ", ".join(i.value for i in Impact),
            source_path,
            subject=impact_literal,
        )

    return Ok(RuleRecord(
        rule_id=rule_id or PurePosixPath(source_path).stem,
        title=title,
        impact=impact,
        impact_description=impact_description,
        tags=parse_tags(fields.get("tags", "")),
        body=split_body(rest[header_len:]),
        source_path=source_path,
        front_matter="".join(lines[:fm_len]),
        header="".join(rest[:header_len]),
        heading_title=heading_title,
        section_hint=fields.get("section", ""),
        front_matter_keys=frozenset(fields),
    ))


def parse_rule_file(path: Path, root: Path | None = None) -> Result[RuleRecord, ParseError]:
    """Read and parse one rule file.

    ``source_path`` is the path relative to ``root`` (POSIX separators) when
    given, so diagnostics and output do not depend on the checkout location.
    """
    source = path.relative_to(root).as_posix() if root is not None else path.as_posix()
    return parse_rule_source(read_text(path), source, rule_id=path.stem)
