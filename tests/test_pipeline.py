"""End-to-end tests for rulebook.pipeline on a temp rules directory."""
from __future__ import annotations

from pathlib import Path

import orjson
import pytest

from rulebook.config import CompileConfig
from rulebook.pipeline import (
    compile_sources,
    discover_rule_files,
    load_document_meta,
    parse_rule_files,
    run,
)
from rulebook.rule_types import ErrorKind

SECTIONS_MD = """# Sections

## 1. Eliminating Waterfalls (async)

**Impact:** CRITICAL
**Description:** Waterfalls are the #1 performance killer.

## 2. Bundle Size Optimization (bundle)

**Impact:** HIGH
**Description:** Smaller bundles load faster.
"""


def rule_text(title: str, impact: str = "HIGH", extra: str = "") -> str:
    return (
        "---\n"
        f"title: {title}\n"
        f"impact: {impact}\n"
        "impactDescription: faster\n"
        "tags: perf\n"
        "---\n"
        "\n"
        f"## {title}\n"
        "\n"
        f"**Impact: {impact} (faster)**\n"
        "\n"
        f"Explanation for {title}.{extra}\n"
        "\n"
        "**Incorrect:**\n"
        "\n"
        "```ts\nslow()\n```\n"
        "\n"
        "**Correct:**\n"
        "\n"
        "```ts\nfast()\n```\n"
    )


@pytest.fixture()
def rules_dir(tmp_path: Path) -> Path:
    """A valid rules directory: manifest plus three rules in two sections."""
    root = tmp_path / "rules"
    root.mkdir()
    (root / "_sections.md").write_text(SECTIONS_MD, encoding="utf-8")
    (root / "async-parallel.md").write_text(
        rule_text("Promise.all() for Independent Operations", "CRITICAL"), encoding="utf-8",
    )
    (root / "async-defer-await.md").write_text(
        rule_text("Defer Await Until Needed"), encoding="utf-8",
    )
    (root / "bundle-barrel-imports.md").write_text(
        rule_text("Avoid Barrel File Imports"), encoding="utf-8",
    )
    return root


class TestDiscovery:
    def test_skips_underscore_files(self, rules_dir: Path) -> None:
        names = [p.name for p in discover_rule_files(rules_dir)]
        assert names == ["async-defer-await.md", "async-parallel.md", "bundle-barrel-imports.md"]

    def test_parse_order_independent_of_input_order(self, rules_dir: Path) -> None:
        paths = discover_rule_files(rules_dir)
        forward, _ = parse_rule_files(paths, rules_dir, workers=4)
        backward, _ = parse_rule_files(list(reversed(paths)), rules_dir, workers=1)
        assert forward == backward

    def test_unreadable_file_reported(self, rules_dir: Path) -> None:
        (rules_dir / "async-binary.md").write_bytes(b"\xff\xfe\x00garbage")
        records, errors = parse_rule_files(discover_rule_files(rules_dir), rules_dir)
        assert len(records) == 3
        (error,) = errors
        assert error.kind == ErrorKind.UNREADABLE_FILE
        assert error.source == "async-binary.md"


class TestRun:
    def test_compiles_document(self, rules_dir: Path) -> None:
        result = run(CompileConfig(rules_dir=rules_dir))
        assert result.ok
        assert result.report.fatal == ()
        assert result.report.warning == ()
        text = result.text
        assert text is not None
        # Bound rules are ordered by title within a section.
        assert text.index("### 1.1 Defer Await Until Needed") < text.index(
            "### 1.2 Promise.all() for Independent Operations"
        )
        assert "### 2.1 Avoid Barrel File Imports" in text

    def test_output_identical_across_worker_counts(self, rules_dir: Path) -> None:
        one = run(CompileConfig(rules_dir=rules_dir, workers=1))
        many = run(CompileConfig(rules_dir=rules_dir, workers=8))
        assert one.text == many.text

    def test_metadata_title(self, rules_dir: Path, tmp_path: Path) -> None:
        meta_path = tmp_path / "metadata.json"
        meta_path.write_bytes(orjson.dumps({
            "version": "1.0.0",
            "organization": "Engineering",
            "abstract": "Guide.",
            "references": ["https://react.dev"],
        }))
        result = run(CompileConfig(rules_dir=rules_dir, metadata_path=meta_path))
        assert result.text is not None
        assert result.text.startswith("# Best Practices\n\n**Version 1.0.0**")
        assert load_document_meta(meta_path).references == ("https://react.dev",)

    def test_metadata_must_be_object(self, tmp_path: Path) -> None:
        meta_path = tmp_path / "metadata.json"
        meta_path.write_bytes(orjson.dumps([1, 2]))
        with pytest.raises(ValueError, match="JSON object"):
            load_document_meta(meta_path)

    def test_metadata_references_must_be_list(self, tmp_path: Path) -> None:
        meta_path = tmp_path / "metadata.json"
        meta_path.write_bytes(orjson.dumps({"references": "https://react.dev"}))
        with pytest.raises(ValueError, match="references"):
            load_document_meta(meta_path)

    def test_duplicate_rule_id_across_directories(self, rules_dir: Path) -> None:
        nested = rules_dir / "legacy"
        nested.mkdir()
        (nested / "async-parallel.md").write_text(
            rule_text("Parallel Fetching, Legacy"), encoding="utf-8",
        )
        result = run(CompileConfig(rules_dir=rules_dir, rule_glob="**/*.md"))
        assert result.text is None
        (issue,) = result.report.fatal
        assert issue.kind == ErrorKind.DUPLICATE_RULE_ID
        assert issue.subject == "async-parallel"
        assert "legacy/async-parallel.md" in issue.message

    def test_duplicate_title_blocks_output(self, rules_dir: Path) -> None:
        (rules_dir / "async-parallel-copy.md").write_text(
            rule_text("Promise.all() for Independent Operations"), encoding="utf-8",
        )
        result = run(CompileConfig(rules_dir=rules_dir))
        assert not result.ok
        assert result.text is None
        (issue,) = result.report.fatal
        assert issue.kind == ErrorKind.DUPLICATE_RULE_TITLE
        assert "async-parallel.md" in issue.message
        assert "async-parallel-copy.md" in issue.message

    def test_unknown_impact_blocks_output(self, rules_dir: Path) -> None:
        (rules_dir / "async-bad.md").write_text(
            rule_text("Bad Impact", "SUPER-HIGH"), encoding="utf-8",
        )
        result = run(CompileConfig(rules_dir=rules_dir))
        assert result.text is None
        (issue,) = result.report.fatal
        assert issue.kind == ErrorKind.UNKNOWN_IMPACT_LEVEL
        assert issue.subject == "SUPER-HIGH"
        assert issue.source == "async-bad.md"

    def test_dangling_explicit_reference(self, rules_dir: Path) -> None:
        (rules_dir / "_sections.md").write_text(
            SECTIONS_MD.replace(
                "**Description:** Smaller bundles load faster.\n",
                "**Description:** Smaller bundles load faster.\n"
                "**Rules:** bundle-barrel-imports, bundle-ghost\n",
            ),
            encoding="utf-8",
        )
        result = run(CompileConfig(rules_dir=rules_dir))
        assert result.text is None
        (issue,) = result.report.fatal
        assert issue.kind == ErrorKind.DANGLING_RULE_REFERENCE
        assert issue.subject == "bundle-ghost"

    def test_unassigned_rule(self, rules_dir: Path) -> None:
        (rules_dir / "misc-thing.md").write_text(rule_text("Misc Thing"), encoding="utf-8")
        result = run(CompileConfig(rules_dir=rules_dir))
        assert [i.kind for i in result.report.fatal] == [ErrorKind.UNASSIGNED_RULE]

    def test_broken_cross_reference_is_warning(self, rules_dir: Path) -> None:
        (rules_dir / "async-defer-await.md").write_text(
            rule_text(
                "Defer Await Until Needed",
                extra=" See [missing](#nonexistent-rule) and [ok](#eliminating-waterfalls).",
            ),
            encoding="utf-8",
        )
        result = run(CompileConfig(rules_dir=rules_dir))
        assert result.ok
        assert result.text is not None
        (warning,) = result.report.warning
        assert warning.kind == ErrorKind.BROKEN_CROSS_REFERENCE
        assert warning.source == "async-defer-await.md"

    def test_parse_error_is_fatal_but_others_reported(self, rules_dir: Path) -> None:
        (rules_dir / "async-broken.md").write_text("---\ntitle: Broken\n", encoding="utf-8")
        (rules_dir / "stray-rule.md").write_text(rule_text("Stray"), encoding="utf-8")
        result = run(CompileConfig(rules_dir=rules_dir))
        assert result.text is None
        assert sorted(i.kind for i in result.report.fatal) == sorted([
            ErrorKind.MALFORMED_FRONT_MATTER,
            ErrorKind.UNASSIGNED_RULE,
        ])

    def test_missing_manifest(self, rules_dir: Path) -> None:
        (rules_dir / "_sections.md").unlink()
        result = run(CompileConfig(rules_dir=rules_dir))
        assert result.text is None
        (issue,) = result.report.fatal
        assert issue.kind == ErrorKind.UNREADABLE_FILE

    def test_bad_manifest_suppresses_assignment_noise(self, rules_dir: Path) -> None:
        (rules_dir / "_sections.md").write_text(
            SECTIONS_MD.replace("**Impact:** HIGH", "**Impact:** HUGE"), encoding="utf-8",
        )
        result = run(CompileConfig(rules_dir=rules_dir))
        assert [i.kind for i in result.report.fatal] == [ErrorKind.UNKNOWN_IMPACT_LEVEL]


class TestCompileSources:
    def test_no_rules_no_sections(self) -> None:
        result = compile_sources((), ())
        assert result.ok
        assert result.text is not None
        assert "## Table of Contents" in result.text
