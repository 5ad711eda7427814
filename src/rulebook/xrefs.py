"""Internal cross-reference resolution (post-pass over a built document).

An internal reference is a Markdown link whose target is a bare fragment,
``[Promise.all()](#promise-all-for-independent-operations)``, anywhere in a
rule body outside fenced code. Anchors are only all known once the document
is assembled, so resolution runs after ``compiler.build_document``. Broken
links are warnings: compilation still succeeds.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

from rulebook.rule_types import (
    WARNING,
    CompiledDocument,
    ErrorKind,
    Issue,
    ValidationReport,
)

_FENCE_RE = re.compile(r"^\s*(```|~~~)")

# Image links ("![alt](#x)") are not references.
_FRAGMENT_LINK_RE = re.compile(r"(?<!!)\[([^\]\n]*)\]\(#([^)\s]+)\)")

_INLINE_CODE_RE = re.compile(r"`[^`\n]*`")


@dataclass(frozen=True, slots=True)
class InternalLink:
    label: str
    fragment: str
    line: int       # 1-based line within the body


def find_internal_links(body: str) -> list[InternalLink]:
    """Fragment links in ``body``, skipping fenced code and inline code."""
    links: list[InternalLink] = []
    in_fence = False
    for i, line in enumerate(body.splitlines(), start=1):
        if _FENCE_RE.match(line):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        for m in _FRAGMENT_LINK_RE.finditer(_INLINE_CODE_RE.sub("", line)):
            links.append(InternalLink(label=m.group(1), fragment=m.group(2), line=i))
    return links


def resolve_cross_references(doc: CompiledDocument) -> ValidationReport:
    """Report every internal link whose fragment is not a document anchor."""
    anchors = doc.anchors
    issues: list[Issue] = []
    for compiled in doc.iter_rules():
        record = compiled.record
        for link in find_internal_links(record.body_text):
            if link.fragment in anchors:
                continue
            issues.append(Issue(
                kind=ErrorKind.BROKEN_CROSS_REFERENCE,
                message=(
                    f'Link "[{link.label}](#{link.fragment})" on body line '
                    f"{link.line} does not match any section or rule anchor"
                ),
                source=record.source_path,
                subject=record.title,
                severity=WARNING,
            ))
    return ValidationReport.from_issues(issues)
