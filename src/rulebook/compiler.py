"""Aggregate validated sections and rules into a CompiledDocument.

One depth-first pass: sections in ``order``, rules in each section's
``rule_refs`` order. The same pass numbers every entry, builds the TOC and
allocates anchors, threading the ``AnchorState`` accumulator so anchor
assignment stays a pure function of the titles seen so far.

Input must already have passed ``rulebook.validator.validate`` with no fatal
issues; an unresolvable rule reference raises KeyError here.
"""
from __future__ import annotations

from collections.abc import Iterable

from rulebook.anchors import AnchorState, allocate_anchor
from rulebook.rule_types import (
    CompiledDocument,
    CompiledRule,
    CompiledSection,
    DocumentMeta,
    RuleRecord,
    Section,
    TocEntry,
)


def section_label(number: int, section: Section) -> str:
    return f"{number}. {section.display_name}"


def rule_label(number: str, record: RuleRecord) -> str:
    return f"{number} {record.title}"


def build_document(
    sections: Iterable[Section],
    records: Iterable[RuleRecord],
    meta: DocumentMeta | None = None,
) -> CompiledDocument:
    """Build the document; identical inputs always give an equal result."""
    by_id = {r.rule_id: r for r in records}
    state = AnchorState()
    toc: list[TocEntry] = []
    compiled: list[CompiledSection] = []

    for s_num, section in enumerate(sorted(sections, key=lambda s: s.order), start=1):
        s_anchor, state = allocate_anchor(section.display_name, state)
        toc.append(TocEntry(
            anchor=s_anchor,
            label=section_label(s_num, section),
            depth=1,
        ))

        rules: list[CompiledRule] = []
        for r_num, ref in enumerate(section.rule_refs, start=1):
            record = by_id[ref]
            number = f"{s_num}.{r_num}"
            r_anchor, state = allocate_anchor(record.title, state)
            toc.append(TocEntry(
                anchor=r_anchor,
                label=rule_label(number, record),
                depth=2,
                parent_anchor=s_anchor,
            ))
            rules.append(CompiledRule(record=record, anchor=r_anchor, number=number))

        compiled.append(CompiledSection(
            section=section,
            anchor=s_anchor,
            number=s_num,
            rules=tuple(rules),
        ))

    return CompiledDocument(
        meta=meta or DocumentMeta(),
        sections=tuple(compiled),
        toc=tuple(toc),
    )
