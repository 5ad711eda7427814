"""Structural cross-checks between parsed rules and manifest sections.

Checks (all run; none short-circuits, so one pass reports everything):

  fatal    DanglingRuleReference  section lists a rule id that was never parsed
           UnassignedRule         rule belongs to no section
           MultiplyAssignedRule   rule is listed more than once
           DuplicateRuleId        two files share a stem
           DuplicateRuleTitle     two rules in one section share a title
           UnknownImpactLevel     section or rule carries a non-Impact value
  warning  MissingFrontMatter     file has no --- block
           MissingTemplateField   front matter lacks title, impact,
                                  impactDescription or tags
           EmptyTagList           tags given but empty after splitting
           MissingRuleHeading     first content line is not a "## " heading
           TitleHeadingMismatch   front-matter title differs from body heading
           EmptyExplanation       rule has no explanation prose
           MissingExampleBlock    rule lacks an incorrect or a correct example
           MissingCodeExample     example blocks exist but none has fenced code

Section impact and rule impact are independent editorial labels; no
consistency between them is checked. BrokenCrossReference warnings come from
``rulebook.xrefs`` once the document (and therefore every anchor) exists.
"""
from __future__ import annotations

import re
from collections import defaultdict
from collections.abc import Iterable, Sequence

from rulebook.rule_types import (
    WARNING,
    BlockKind,
    ErrorKind,
    Impact,
    Issue,
    RuleRecord,
    Section,
    ValidationReport,
)

# Front-matter keys a template-conformant rule file carries.
TEMPLATE_FIELDS: tuple[str, ...] = ("title", "impact", "impactDescription", "tags")

_FENCE_RE = re.compile(r"^\s*(```|~~~)", re.MULTILINE)

_EXAMPLE_KINDS = frozenset({BlockKind.INCORRECT, BlockKind.CORRECT, BlockKind.EXAMPLE})


def _section_source(section: Section) -> str:
    return f"{section.source}#{section.id}" if section.source else section.id


def check_references(
    sections: Sequence[Section],
    by_id: dict[str, RuleRecord],
    failed_rule_ids: frozenset[str],
) -> list[Issue]:
    """Every ``rule_refs`` entry must resolve to a parsed record.

    Ids whose file failed to parse were already reported by the parser and
    are not reported again.
    """
    issues: list[Issue] = []
    for section in sections:
        for ref in section.rule_refs:
            if ref in by_id or ref in failed_rule_ids:
                continue
            issues.append(Issue(
                kind=ErrorKind.DANGLING_RULE_REFERENCE,
                message=f'Section "{section.id}" references unknown rule "{ref}"',
                source=_section_source(section),
                subject=ref,
            ))
    return issues


def check_assignment(
    sections: Sequence[Section], records: Sequence[RuleRecord],
) -> list[Issue]:
    """Every rule id must be listed by exactly one section, exactly once.

    Records sharing an id are checked once; ``check_duplicate_ids`` reports
    the clash itself.
    """
    owners: dict[str, list[str]] = defaultdict(list)
    for section in sections:
        for ref in section.rule_refs:
            owners[ref].append(section.id)

    issues: list[Issue] = []
    seen: set[str] = set()
    for record in records:
        if record.rule_id in seen:
            continue
        seen.add(record.rule_id)
        where = owners.get(record.rule_id, [])
        if not where:
            issues.append(Issue(
                kind=ErrorKind.UNASSIGNED_RULE,
                message=f'Rule "{record.rule_id}" is not assigned to any section',
                source=record.source_path,
                subject=record.title,
            ))
        elif len(where) > 1:
            issues.append(Issue(
                kind=ErrorKind.MULTIPLY_ASSIGNED_RULE,
                message=(
                    f'Rule "{record.rule_id}" is assigned {len(where)} times '
                    f"(sections: {', '.join(where)})"
                ),
                source=record.source_path,
                subject=record.title,
            ))
    return issues


def check_duplicate_ids(records: Sequence[RuleRecord]) -> list[Issue]:
    """No two rule files may share an id (file stem)."""
    by_id: dict[str, list[RuleRecord]] = defaultdict(list)
    for record in records:
        by_id[record.rule_id].append(record)

    issues: list[Issue] = []
    for rule_id, group in by_id.items():
        if len(group) < 2:
            continue
        paths = [r.source_path for r in group]
        issues.append(Issue(
            kind=ErrorKind.DUPLICATE_RULE_ID,
            message=f'Rule id "{rule_id}" is used by {len(group)} files: {", ".join(paths)}',
            source=", ".join(paths),
            subject=rule_id,
        ))
    return issues


def check_duplicate_titles(
    sections: Sequence[Section], by_id: dict[str, RuleRecord],
) -> list[Issue]:
    """No two distinct records in one section may share a title."""
    issues: list[Issue] = []
    for section in sections:
        by_title: dict[str, list[RuleRecord]] = defaultdict(list)
        seen: set[str] = set()
        for ref in section.rule_refs:
            record = by_id.get(ref)
            if record is None or ref in seen:
                continue
            seen.add(ref)
            by_title[record.title].append(record)
        for title, group in by_title.items():
            if len(group) < 2:
                continue
            paths = [r.source_path for r in group]
            issues.append(Issue(
                kind=ErrorKind.DUPLICATE_RULE_TITLE,
                message=(
                    f'Title "{title}" is used by {len(group)} rules in section '
                    f'"{section.id}": {", ".join(paths)}'
                ),
                source=", ".join(paths),
                subject=title,
            ))
    return issues


def check_impacts(
    sections: Sequence[Section], records: Sequence[RuleRecord],
) -> list[Issue]:
    issues: list[Issue] = []
    for section in sections:
        if not isinstance(section.impact, Impact):
            issues.append(Issue(
                kind=ErrorKind.UNKNOWN_IMPACT_LEVEL,
                message=f'Section "{section.id}" has unknown impact "{section.impact}"',
                source=_section_source(section),
                subject=str(section.impact),
            ))
    for record in records:
        if not isinstance(record.impact, Impact):
            issues.append(Issue(
                kind=ErrorKind.UNKNOWN_IMPACT_LEVEL,
                message=f'Rule has unknown impact "{record.impact}"',
                source=record.source_path,
                subject=str(record.impact),
            ))
    return issues


def _first_content_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line
    return ""


def _template_issues(record: RuleRecord) -> list[tuple[ErrorKind, str]]:
    found: list[tuple[ErrorKind, str]] = []

    if not record.front_matter:
        found.append((
            ErrorKind.MISSING_FRONT_MATTER,
            "Missing front-matter block (must start with ---)",
        ))
    else:
        for name in TEMPLATE_FIELDS:
            if name not in record.front_matter_keys:
                found.append((
                    ErrorKind.MISSING_TEMPLATE_FIELD,
                    f'Missing front-matter field "{name}"',
                ))
        if "tags" in record.front_matter_keys and not record.tags:
            found.append((
                ErrorKind.EMPTY_TAG_LIST,
                'Front-matter "tags" must include at least one comma-separated tag',
            ))

    if not _first_content_line(record.header + record.body_text).startswith("## "):
        found.append((
            ErrorKind.MISSING_RULE_HEADING,
            "Body must start with a level-2 heading (## Rule Title)",
        ))
    if record.heading_title and record.heading_title != record.title:
        found.append((
            ErrorKind.TITLE_HEADING_MISMATCH,
            f'Front-matter title "{record.title}" does not match '
            f'heading "{record.heading_title}"',
        ))

    explanation = "".join(b.text for b in record.body if b.kind == BlockKind.PROSE)
    if not explanation.strip():
        found.append((ErrorKind.EMPTY_EXPLANATION, "Missing or empty explanation"))

    kinds = {b.kind for b in record.body}
    missing = [
        label for label, kind in (
            ("Incorrect", BlockKind.INCORRECT), ("Correct", BlockKind.CORRECT),
        )
        if kind not in kinds
    ]
    if missing:
        found.append((
            ErrorKind.MISSING_EXAMPLE_BLOCK,
            "Missing " + " and ".join(f'"**{m} ...:**"' for m in missing) + " block",
        ))

    examples = [b for b in record.body if b.kind in _EXAMPLE_KINDS]
    if examples and not any(_FENCE_RE.search(b.text) for b in examples):
        found.append((
            ErrorKind.MISSING_CODE_EXAMPLE,
            "Example blocks contain no fenced code",
        ))
    return found


def check_template(records: Sequence[RuleRecord]) -> list[Issue]:
    """Rule-template conformance; warnings only."""
    return [
        Issue(
            kind=kind,
            message=message,
            source=record.source_path,
            subject=record.title,
            severity=WARNING,
        )
        for record in records
        for kind, message in _template_issues(record)
    ]


def validate(
    sections: Iterable[Section],
    records: Iterable[RuleRecord],
    *,
    failed_rule_ids: Iterable[str] = (),
    check_rule_template: bool = True,
) -> ValidationReport:
    """Run every structural check and partition the findings."""
    section_list = sorted(sections, key=lambda s: s.order)
    record_list = sorted(records, key=lambda r: (r.source_path, r.rule_id))
    by_id: dict[str, RuleRecord] = {}
    for record in record_list:
        by_id.setdefault(record.rule_id, record)
    failed = frozenset(failed_rule_ids)

    issues: list[Issue] = []
    issues += check_references(section_list, by_id, failed)
    issues += check_assignment(section_list, record_list)
    issues += check_duplicate_ids(record_list)
    issues += check_duplicate_titles(section_list, by_id)
    issues += check_impacts(section_list, record_list)
    if check_rule_template:
        issues += check_template(record_list)

    return ValidationReport.from_issues(issues)
