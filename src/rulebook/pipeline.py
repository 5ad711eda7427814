"""End-to-end compile: discover → parse (worker pool) → validate → build → render.

Rule files are parsed concurrently; every result is collected before
validation (the record set must be complete) and re-sorted by path so the
output never depends on completion order. A file that fails to parse is
reported and left out; the other files keep going. Any fatal issue stops the
run before aggregation.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from rulebook.compiler import build_document
from rulebook.config import CompileConfig
from rulebook.io_utils import load_json
from rulebook.manifest import bind_rules, load_manifest
from rulebook.renderer import render_document
from rulebook.rule_parser import parse_rule_file
from rulebook.rule_types import (
    CompiledDocument,
    DocumentMeta,
    Err,
    ErrorKind,
    Issue,
    ParseError,
    Result,
    RuleRecord,
    Section,
    ValidationReport,
)
from rulebook.validator import validate
from rulebook.xrefs import resolve_cross_references

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CompileResult:
    """Outcome of one compile. ``text`` is None whenever ``report`` has fatals."""

    report: ValidationReport
    document: CompiledDocument | None = None
    text: str | None = None

    @property
    def ok(self) -> bool:
        return self.report.ok and self.text is not None


# ---------------------------------------------------------------------------
# Input discovery and parsing
# ---------------------------------------------------------------------------

def discover_rule_files(rules_dir: Path, rule_glob: str = "*.md", skip_prefix: str = "_") -> list[Path]:
    """Rule files directly under ``rules_dir``, sorted by name."""
    return sorted(
        p for p in rules_dir.glob(rule_glob)
        if p.is_file() and not (skip_prefix and p.name.startswith(skip_prefix))
    )


def _parse_one(path: Path, root: Path) -> Result[RuleRecord, ParseError]:
    try:
        return parse_rule_file(path, root)
    except (OSError, UnicodeDecodeError) as exc:
        return Err(ParseError(
            kind=ErrorKind.UNREADABLE_FILE,
            message=f"Cannot read rule file: {exc}",
            source=path.relative_to(root).as_posix(),
        ))


def parse_rule_files(
    paths: Sequence[Path], root: Path, *, workers: int = 8,
) -> tuple[list[RuleRecord], list[ParseError]]:
    """Parse files on a thread pool; results come back in ``sorted(paths)`` order."""
    results: dict[Path, Result[RuleRecord, ParseError]] = {}
    with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
        futures = {pool.submit(_parse_one, path, root): path for path in paths}
        for fut in as_completed(futures):
            results[futures[fut]] = fut.result()

    records: list[RuleRecord] = []
    errors: list[ParseError] = []
    for path in sorted(results):
        result = results[path]
        if isinstance(result, Err):
            log.debug("parse failed: %s", result.error.format())
            errors.append(result.error)
        else:
            records.append(result.value)
    return records, errors


def load_document_meta(path: Path | None) -> DocumentMeta:
    """Read ``metadata.json`` (title, version, organization, date, abstract, references).

    Raises ValueError when the file is not a JSON object or ``references`` is
    not a list.
    """
    if path is None:
        return DocumentMeta()
    data = load_json(path)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: metadata must be a JSON object, got {type(data).__name__}")
    if not isinstance(data.get("references") or [], list):
        raise ValueError(f"{path}: metadata \"references\" must be a list")
    return DocumentMeta(
        title=str(data.get("title") or DocumentMeta().title),
        version=str(data.get("version") or ""),
        organization=str(data.get("organization") or ""),
        date=str(data.get("date") or ""),
        abstract=str(data.get("abstract") or ""),
        references=tuple(str(r) for r in data.get("references") or ()),
    )


# ---------------------------------------------------------------------------
# Compile
# ---------------------------------------------------------------------------

def compile_sources(
    sections: Iterable[Section],
    records: Iterable[RuleRecord],
    *,
    meta: DocumentMeta | None = None,
    parse_errors: Iterable[ParseError] = (),
    check_rule_template: bool = True,
) -> CompileResult:
    """Bind, validate, build, resolve cross-references and render.

    Raises RenderError if the renderer meets an unknown body block.
    """
    record_list = list(records)
    parse_error_list = list(parse_errors)
    bound = bind_rules(sections, record_list)

    report = ValidationReport.from_issues(parse_error_list).merged(validate(
        bound,
        record_list,
        failed_rule_ids=[PurePosixPath(e.source).stem for e in parse_error_list],
        check_rule_template=check_rule_template,
    ))
    if not report.ok:
        log.info("validation failed: %d fatal, %d warning", len(report.fatal), len(report.warning))
        return CompileResult(report=report)

    doc = build_document(bound, record_list, meta)
    report = report.merged(resolve_cross_references(doc))
    text = render_document(doc)
    log.info(
        "compiled %d sections, %d rules (%d warnings)",
        len(doc.sections), sum(len(s.rules) for s in doc.sections), len(report.warning),
    )
    return CompileResult(report=report, document=doc, text=text)


def run(config: CompileConfig) -> CompileResult:
    """Compile the rules directory described by ``config``."""
    t0 = time.monotonic()
    paths = discover_rule_files(config.rules_dir, config.rule_glob, config.skip_prefix)
    log.info("Found %d rule files in %s", len(paths), config.rules_dir)

    manifest_issues: list[Issue] = []
    sections: tuple[Section, ...] = ()
    try:
        manifest_result = load_manifest(config.manifest)
    except (OSError, UnicodeDecodeError) as exc:
        manifest_issues.append(ParseError(
            kind=ErrorKind.UNREADABLE_FILE,
            message=f"Cannot read manifest: {exc}",
            source=config.manifest.as_posix(),
        ))
    else:
        if isinstance(manifest_result, Err):
            manifest_issues.extend(manifest_result.error)
        else:
            sections = manifest_result.value
            log.info("Loaded %d sections from %s", len(sections), config.manifest)

    records, parse_errors = parse_rule_files(paths, config.rules_dir, workers=config.workers)
    log.info(
        "Parsed %d rule files (%d failed) in %.2fs",
        len(records), len(parse_errors), time.monotonic() - t0,
    )

    if manifest_issues:
        # Without sections every rule would also be reported as unassigned.
        return CompileResult(report=ValidationReport.from_issues(parse_errors + manifest_issues))

    return compile_sources(
        sections,
        records,
        meta=load_document_meta(config.metadata_path),
        parse_errors=parse_errors,
        check_rule_template=config.check_rule_template,
    )
