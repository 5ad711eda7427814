"""Tests for rulebook.compiler."""
from __future__ import annotations

import pytest

from rulebook.compiler import build_document
from rulebook.rule_types import DocumentMeta, Impact, RuleRecord, Section


def _rule(rule_id: str, title: str) -> RuleRecord:
    return RuleRecord(
        rule_id=rule_id,
        title=title,
        impact=Impact.MEDIUM,
        impact_description="",
        tags=frozenset(),
        body=(),
        source_path=f"{rule_id}.md",
    )


def _section(sid: str, order: int, name: str, refs: tuple[str, ...]) -> Section:
    return Section(
        id=sid, order=order, display_name=name, impact=Impact.HIGH,
        description="", rule_refs=refs,
    )


SECTIONS = (
    _section("bundle", 1, "Bundle Size", ("bundle-imports",)),
    _section("async", 0, "Waterfalls", ("async-defer", "async-parallel")),
)
RECORDS = (
    _rule("async-parallel", "Promise.all() for Independent Operations"),
    _rule("async-defer", "Defer Await"),
    _rule("bundle-imports", "Avoid Barrel Imports"),
)


class TestBuildDocument:
    def test_sections_follow_manifest_order(self) -> None:
        doc = build_document(SECTIONS, RECORDS)
        assert [cs.section.id for cs in doc.sections] == ["async", "bundle"]
        assert [cs.number for cs in doc.sections] == [1, 2]

    def test_rules_follow_rule_refs_order(self) -> None:
        doc = build_document(SECTIONS, RECORDS)
        first = doc.sections[0]
        assert [r.record.rule_id for r in first.rules] == ["async-defer", "async-parallel"]
        assert [r.number for r in first.rules] == ["1.1", "1.2"]
        assert doc.sections[1].rules[0].number == "2.1"

    def test_toc_is_depth_first(self) -> None:
        doc = build_document(SECTIONS, RECORDS)
        assert [(e.depth, e.label) for e in doc.toc] == [
            (1, "1. Waterfalls"),
            (2, "1.1 Defer Await"),
            (2, "1.2 Promise.all() for Independent Operations"),
            (1, "2. Bundle Size"),
            (2, "2.1 Avoid Barrel Imports"),
        ]
        assert doc.toc[1].parent_anchor == "waterfalls"

    def test_toc_anchors_match_entries(self) -> None:
        doc = build_document(SECTIONS, RECORDS)
        toc_anchors = [e.anchor for e in doc.toc]
        placed = []
        for cs in doc.sections:
            placed.append(cs.anchor)
            placed.extend(r.anchor for r in cs.rules)
        assert toc_anchors == placed
        assert len(set(toc_anchors)) == len(toc_anchors)

    def test_rule_and_section_share_anchor_namespace(self) -> None:
        sections = (_section("cache", 0, "Caching", ("cache-one",)),)
        records = (_rule("cache-one", "Caching"),)
        doc = build_document(sections, records)
        assert doc.sections[0].anchor == "caching"
        assert doc.sections[0].rules[0].anchor == "caching-2"

    def test_idempotent(self) -> None:
        first = build_document(SECTIONS, RECORDS)
        second = build_document(tuple(reversed(SECTIONS)), tuple(reversed(RECORDS)))
        assert first == second

    def test_default_meta(self) -> None:
        doc = build_document(SECTIONS, RECORDS)
        assert doc.meta == DocumentMeta()
        custom = build_document(SECTIONS, RECORDS, DocumentMeta(title="React Rules"))
        assert custom.meta.title == "React Rules"

    def test_unvalidated_reference_raises(self) -> None:
        with pytest.raises(KeyError):
            build_document((_section("a", 0, "A", ("missing",)),), ())
