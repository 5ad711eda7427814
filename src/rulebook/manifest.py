"""Section manifest loading and rule-to-section binding.

The manifest lists sections in document order. Markdown form (the usual
``_sections.md`` next to the rule files)::

    ## 1. Eliminating Waterfalls (async)

    **Impact:** CRITICAL
    **Description:** Waterfalls are the #1 performance killer.
    **Prefixes:** async, await          (optional, defaults to the id)
    **Rules:** async-parallel, async-defer-await   (optional, explicit order)

JSON form (``*.json``)::

    {"sections": [{"id": "async", "displayName": "Eliminating Waterfalls",
                   "impact": "CRITICAL", "description": "...",
                   "prefixes": ["async"], "rules": ["async-parallel"]}]}

``order`` is the position in the manifest; numbers written in headings are
decoration and ignored.
"""
from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import replace
from pathlib import Path
from typing import Any, TypeAlias

import orjson

from rulebook.io_utils import read_text
from rulebook.rule_types import (
    Err,
    ErrorKind,
    Impact,
    Ok,
    ParseError,
    Result,
    RuleRecord,
    Section,
)

_SECTION_HEADING_RE = re.compile(
    r"^##\s+(?:\d+(?:\.\d+)*\.?\s+)?(.*?)\s*(?:\(([^()]+)\))?\s*$"
)
_FIELD_RE = re.compile(
    r"^\*\*(Impact|Description|Prefixes|Rules):\*\*\s*(.*?)\s*$",
    re.IGNORECASE,
)

ManifestResult: TypeAlias = Result[tuple[Section, ...], tuple[ParseError, ...]]


def _split_list(raw: str) -> tuple[str, ...]:
    out: list[str] = []
    for item in raw.split(","):
        item = item.strip().strip("`")
        if item and item not in out:
            out.append(item)
    return tuple(out)


# ---------------------------------------------------------------------------
# Raw entries → Section descriptors
# ---------------------------------------------------------------------------

def _build_sections(
    entries: Sequence[dict[str, Any]], source: str,
) -> ManifestResult:
    """Validate raw section entries and assign positional order.

    Every problem is collected; any problem makes the whole manifest fail.
    """
    issues: list[ParseError] = []
    sections: list[Section] = []
    seen: dict[str, int] = {}

    for order, entry in enumerate(entries):
        sid = str(entry.get("id") or "").strip()
        name = str(entry.get("displayName") or "").strip()
        impact_raw = str(entry.get("impact") or "").strip()
        label = sid or name or f"#{order + 1}"

        missing = [
            field for field, value in (
                ("id", sid), ("displayName", name), ("impact", impact_raw),
            )
            if not value
        ]
        if missing:
            issues.append(ParseError(
                kind=ErrorKind.MISSING_FIELD,
                message=f"Section {label} is missing: {', '.join(missing)}",
                source=source,
                subject=label,
            ))

        impact = Impact.parse(impact_raw) if impact_raw else None
        if impact_raw and impact is None:
            issues.append(ParseError(
                kind=ErrorKind.UNKNOWN_IMPACT_LEVEL,
                message=f'Section {label} has unknown impact level "{impact_raw}"',
                source=source,
                subject=impact_raw,
            ))

        if sid:
            if sid in seen:
                issues.append(ParseError(
                    kind=ErrorKind.DUPLICATE_SECTION_ID,
                    message=(
                        f'Section id "{sid}" is declared at positions '
                        f"{seen[sid] + 1} and {order + 1}"
                    ),
                    source=source,
                    subject=sid,
                ))
                continue
            seen[sid] = order

        if missing or impact is None:
            continue

        rules = tuple(str(r) for r in entry.get("rules") or ())
        sections.append(Section(
            id=sid,
            order=order,
            display_name=name,
            impact=impact,
            description=str(entry.get("description") or "").strip(),
            rule_refs=rules,
            prefixes=tuple(str(p) for p in entry.get("prefixes") or ()) or (sid,),
            explicit_refs=bool(rules),
            source=source,
        ))

    if issues:
        return Err(tuple(issues))
    return Ok(tuple(sections))


# ---------------------------------------------------------------------------
# Markdown manifest
# ---------------------------------------------------------------------------

def _markdown_entries(text: str) -> list[dict[str, Any]]:
    entries: list[dict[str, Any]] = []
    current: dict[str, Any] | None = None
    last_field = ""

    for raw in text.splitlines():
        line = raw.strip()
        if raw.startswith("## "):
            m = _SECTION_HEADING_RE.match(raw.rstrip())
            name, sid = (m.group(1), m.group(2) or "") if m else (raw[3:], "")
            current = {"id": sid.strip(), "displayName": name.strip()}
            entries.append(current)
            last_field = ""
            continue
        if current is None:
            continue
        if not line or line == "---":
            last_field = ""
            continue
        m = _FIELD_RE.match(line)
        if m:
            key, value = m.group(1).lower(), m.group(2)
            if key in ("prefixes", "rules"):
                current[key] = _split_list(value)
            else:
                current[key] = value
            last_field = key
        elif last_field == "description":
            # Wrapped description lines continue the field.
            current["description"] = f"{current['description']} {line}".strip()
    return entries


def load_manifest_text(text: str, source: str = "_sections.md") -> ManifestResult:
    """Parse a Markdown manifest into ordered Section descriptors."""
    return _build_sections(_markdown_entries(text), source)


# ---------------------------------------------------------------------------
# JSON manifest
# ---------------------------------------------------------------------------

def load_manifest_data(data: Any, source: str = "manifest.json") -> ManifestResult:
    """Build sections from an already-decoded JSON manifest."""
    raw_sections = data.get("sections") if isinstance(data, dict) else data
    if not isinstance(raw_sections, list):
        return Err((ParseError(
            kind=ErrorKind.MISSING_FIELD,
            message='Manifest must contain a "sections" list',
            source=source,
            subject="sections",
        ),))
    entries: list[dict[str, Any]] = []
    for item in raw_sections:
        if not isinstance(item, dict):
            item = {}
        entries.append({
            "id": item.get("id"),
            "displayName": item.get("displayName") or item.get("display_name"),
            "impact": item.get("impact"),
            "description": item.get("description"),
            "prefixes": item.get("prefixes"),
            "rules": item.get("rules") or item.get("ruleRefs"),
        })
    return _build_sections(entries, source)


def load_manifest(path: Path, *, source: str | None = None) -> ManifestResult:
    """Load a manifest file; ``.json`` files are JSON, anything else Markdown."""
    src = source or path.as_posix()
    text = read_text(path)
    if path.suffix.lower() == ".json":
        try:
            data = orjson.loads(text)
        except orjson.JSONDecodeError as exc:
            return Err((ParseError(
                kind=ErrorKind.MALFORMED_MANIFEST,
                message=f"Invalid JSON manifest: {exc}",
                source=src,
            ),))
        return load_manifest_data(data, src)
    return load_manifest_text(text, src)


# ---------------------------------------------------------------------------
# Binding
# ---------------------------------------------------------------------------

def matched_prefix_length(record: RuleRecord, section: Section) -> int:
    """Length of the longest ``section`` prefix the rule id starts with (0 if none)."""
    return max(
        (len(p) for p in section.prefixes if record.rule_id.startswith(f"{p}-")),
        default=0,
    )


def rule_binds_to(record: RuleRecord, section: Section, longest: int = 0) -> bool:
    """True if a record belongs to a section by front matter or file prefix.

    A front-matter ``section`` value (section id, or 1-based section number)
    overrides prefix matching entirely. ``longest`` is the longest prefix the
    rule matches in any section; a shorter match does not bind, so
    ``js-dom-query`` goes to ``js-dom`` and not to ``js``.
    """
    hint = record.section_hint
    if hint:
        if hint.isdigit():
            return int(hint) == section.order + 1
        return hint == section.id
    matched = matched_prefix_length(record, section)
    return matched > 0 and matched >= longest


def bind_rules(
    sections: Iterable[Section], records: Iterable[RuleRecord],
) -> tuple[Section, ...]:
    """Populate ``rule_refs`` for sections without an explicit rule list.

    Bound rules are ordered by title, then rule id, so the result never
    depends on file-system enumeration order. A rule id appears at most once
    per bound section. Explicit lists are kept as written.
    """
    section_list = list(sections)
    pool = sorted(records, key=lambda r: (r.title.casefold(), r.title, r.rule_id))
    bindable = [s for s in section_list if not s.explicit_refs]
    longest = {
        r.rule_id: max((matched_prefix_length(r, s) for s in bindable), default=0)
        for r in pool
    }
    out: list[Section] = []
    for section in section_list:
        if section.explicit_refs:
            out.append(section)
            continue
        refs = tuple(dict.fromkeys(
            r.rule_id for r in pool if rule_binds_to(r, section, longest[r.rule_id])
        ))
        out.append(replace(section, rule_refs=refs))
    return tuple(out)
