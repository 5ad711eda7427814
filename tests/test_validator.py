"""Tests for rulebook.validator."""
from __future__ import annotations

from rulebook.rule_parser import parse_rule_source
from rulebook.rule_types import (
    BlockKind,
    BodyBlock,
    ErrorKind,
    Impact,
    Ok,
    RuleRecord,
    Section,
)
from rulebook.validator import check_template, validate


EXAMPLES = (
    BodyBlock(kind=BlockKind.PROSE, text="Why.\n\n"),
    BodyBlock(kind=BlockKind.INCORRECT, text="**Incorrect:**\n\n```ts\nslow()\n```\n", label="Incorrect"),
    BodyBlock(kind=BlockKind.CORRECT, text="**Correct:**\n\n```ts\nfast()\n```\n", label="Correct"),
)

TEMPLATE_KEYS = frozenset({"title", "impact", "impactDescription", "tags"})


def _rule(rule_id: str, title: str, *, body: tuple[BodyBlock, ...] = EXAMPLES,
          heading: str = "", front_matter: str = "---\n...\n---\n",
          keys: frozenset[str] = TEMPLATE_KEYS, tags: frozenset[str] = frozenset({"perf"}),
          header: str | None = None, source_path: str = "") -> RuleRecord:
    return RuleRecord(
        rule_id=rule_id,
        title=title,
        impact=Impact.HIGH,
        impact_description="",
        tags=tags,
        body=body,
        source_path=source_path or f"{rule_id}.md",
        front_matter=front_matter,
        header=f"\n## {heading or title}\n\n" if header is None else header,
        heading_title=heading,
        front_matter_keys=keys,
    )


def _section(sid: str, order: int, refs: tuple[str, ...]) -> Section:
    return Section(
        id=sid,
        order=order,
        display_name=sid.title(),
        impact=Impact.HIGH,
        description="",
        rule_refs=refs,
        prefixes=(sid,),
        source="_sections.md",
    )


class TestValidate:
    def test_clean_input(self) -> None:
        report = validate(
            [_section("a", 0, ("a-one", "a-two"))],
            [_rule("a-one", "One"), _rule("a-two", "Two")],
        )
        assert report.ok
        assert report.fatal == ()
        assert report.warning == ()

    def test_duplicate_title_names_both_files(self) -> None:
        report = validate(
            [_section("js", 0, ("js-cache-a", "js-cache-b"))],
            [_rule("js-cache-a", "Cache Results"), _rule("js-cache-b", "Cache Results")],
        )
        assert not report.ok
        (issue,) = report.fatal
        assert issue.kind == ErrorKind.DUPLICATE_RULE_TITLE
        assert issue.subject == "Cache Results"
        assert "js-cache-a.md" in issue.message
        assert "js-cache-b.md" in issue.message

    def test_same_title_in_different_sections_is_allowed(self) -> None:
        report = validate(
            [_section("a", 0, ("a-x",)), _section("b", 1, ("b-x",))],
            [_rule("a-x", "Same"), _rule("b-x", "Same")],
        )
        assert report.ok

    def test_dangling_reference(self) -> None:
        report = validate(
            [_section("async", 0, ("async-parallel", "async-ghost"))],
            [_rule("async-parallel", "Parallel")],
        )
        (issue,) = report.fatal
        assert issue.kind == ErrorKind.DANGLING_RULE_REFERENCE
        assert issue.subject == "async-ghost"
        assert issue.source == "_sections.md#async"

    def test_failed_rule_not_reported_as_dangling(self) -> None:
        report = validate(
            [_section("a", 0, ("a-broken",))],
            [],
            failed_rule_ids=["a-broken"],
        )
        assert report.ok

    def test_unassigned_rule(self) -> None:
        report = validate([_section("a", 0, ())], [_rule("orphan", "Orphan")])
        (issue,) = report.fatal
        assert issue.kind == ErrorKind.UNASSIGNED_RULE
        assert issue.source == "orphan.md"

    def test_multiply_assigned_rule(self) -> None:
        report = validate(
            [_section("a", 0, ("x-rule",)), _section("b", 1, ("x-rule",))],
            [_rule("x-rule", "X")],
        )
        (issue,) = report.fatal
        assert issue.kind == ErrorKind.MULTIPLY_ASSIGNED_RULE
        assert "a, b" in issue.message

    def test_duplicate_rule_id_reported_once(self) -> None:
        records = [
            _rule("a-x", "One", source_path="a-x.md"),
            _rule("a-x", "Two", source_path="nested/a-x.md"),
        ]
        report = validate([_section("a", 0, ("a-x",))], records)
        (issue,) = report.fatal
        assert issue.kind == ErrorKind.DUPLICATE_RULE_ID
        assert issue.subject == "a-x"
        assert "a-x.md" in issue.message
        assert "nested/a-x.md" in issue.message

    def test_rule_listed_twice_in_one_section(self) -> None:
        report = validate([_section("a", 0, ("a-x", "a-x"))], [_rule("a-x", "X")])
        (issue,) = report.fatal
        assert issue.kind == ErrorKind.MULTIPLY_ASSIGNED_RULE

    def test_unknown_section_impact(self) -> None:
        bogus = Section(
            id="a", order=0, display_name="A", impact="BOGUS", description="",  # type: ignore[arg-type]
            rule_refs=("a-one",),
        )
        report = validate([bogus], [_rule("a-one", "One")])
        assert [i.kind for i in report.fatal] == [ErrorKind.UNKNOWN_IMPACT_LEVEL]

    def test_every_fatal_issue_reported(self) -> None:
        sections = [
            _section("a", 0, ("a-dup1", "a-dup2", "ghost-1", "shared")),
            _section("b", 1, ("ghost-2", "shared")),
        ]
        records = [
            _rule("a-dup1", "Dup"),
            _rule("a-dup2", "Dup"),
            _rule("shared", "Shared"),
            _rule("lonely", "Lonely"),
        ]
        report = validate(sections, records)
        kinds = sorted(i.kind for i in report.fatal)
        assert kinds == sorted([
            ErrorKind.DANGLING_RULE_REFERENCE,
            ErrorKind.DANGLING_RULE_REFERENCE,
            ErrorKind.MULTIPLY_ASSIGNED_RULE,
            ErrorKind.UNASSIGNED_RULE,
            ErrorKind.DUPLICATE_RULE_TITLE,
        ])

    def test_order_of_input_does_not_change_report(self) -> None:
        sections = [_section("a", 0, ("ghost",)), _section("b", 1, ())]
        records = [_rule("z-rule", "Z"), _rule("y-rule", "Y")]
        forward = validate(sections, records)
        backward = validate(list(reversed(sections)), list(reversed(records)))
        assert forward == backward


class TestTemplateChecks:
    def test_heading_mismatch_is_warning(self) -> None:
        report = validate(
            [_section("a", 0, ("a-one",))],
            [_rule("a-one", "Front Matter Title", heading="Body Heading")],
        )
        assert report.ok
        (issue,) = report.warning
        assert issue.kind == ErrorKind.TITLE_HEADING_MISMATCH

    def test_missing_examples(self) -> None:
        record = _rule("a-one", "One", body=(BodyBlock(kind=BlockKind.PROSE, text="x\n"),))
        (issue,) = check_template([record])
        assert issue.kind == ErrorKind.MISSING_EXAMPLE_BLOCK
        assert "Incorrect" in issue.message
        assert "Correct" in issue.message
        assert not issue.is_fatal

    def test_template_checks_can_be_disabled(self) -> None:
        record = _rule("a-one", "One", body=(), heading="Other")
        report = validate(
            [_section("a", 0, ("a-one",))], [record], check_rule_template=False,
        )
        assert report.warning == ()

    def test_conformant_rule_has_no_warnings(self) -> None:
        assert check_template([_rule("a-one", "One")]) == []

    def test_missing_front_matter(self) -> None:
        record = _rule("a-one", "One", front_matter="", keys=frozenset(), tags=frozenset())
        assert [i.kind for i in check_template([record])] == [ErrorKind.MISSING_FRONT_MATTER]

    def test_missing_template_fields(self) -> None:
        record = _rule("a-one", "One", keys=frozenset({"title", "impact"}), tags=frozenset())
        issues = check_template([record])
        assert [i.kind for i in issues] == [
            ErrorKind.MISSING_TEMPLATE_FIELD,
            ErrorKind.MISSING_TEMPLATE_FIELD,
        ]
        assert '"impactDescription"' in issues[0].message
        assert '"tags"' in issues[1].message
        assert all(not i.is_fatal for i in issues)

    def test_empty_tag_list(self) -> None:
        record = _rule("a-one", "One", tags=frozenset())
        (issue,) = check_template([record])
        assert issue.kind == ErrorKind.EMPTY_TAG_LIST

    def test_body_must_start_with_level_two_heading(self) -> None:
        record = _rule("a-one", "One", header="\n### One\n\n")
        (issue,) = check_template([record])
        assert issue.kind == ErrorKind.MISSING_RULE_HEADING

    def test_empty_explanation(self) -> None:
        record = _rule("a-one", "One", body=(BodyBlock(kind=BlockKind.PROSE, text="\n"),) + EXAMPLES[1:])
        (issue,) = check_template([record])
        assert issue.kind == ErrorKind.EMPTY_EXPLANATION

    def test_examples_without_fenced_code(self) -> None:
        body = (
            EXAMPLES[0],
            BodyBlock(kind=BlockKind.INCORRECT, text="**Incorrect:**\nslow()\n", label="Incorrect"),
            BodyBlock(kind=BlockKind.CORRECT, text="**Correct:**\nfast()\n", label="Correct"),
        )
        (issue,) = check_template([_rule("a-one", "One", body=body)])
        assert issue.kind == ErrorKind.MISSING_CODE_EXAMPLE

    def test_parsed_file_with_template_gaps(self) -> None:
        text = "---\ntitle: T\nimpact: LOW\ntags: ,\n---\n### T\n\n**Correct:**\nplain\n"
        result = parse_rule_source(text, "a-t.md")
        assert isinstance(result, Ok)
        kinds = [i.kind for i in check_template([result.value])]
        assert kinds == [
            ErrorKind.MISSING_TEMPLATE_FIELD,
            ErrorKind.EMPTY_TAG_LIST,
            ErrorKind.MISSING_RULE_HEADING,
            ErrorKind.EMPTY_EXPLANATION,
            ErrorKind.MISSING_EXAMPLE_BLOCK,
            ErrorKind.MISSING_CODE_EXAMPLE,
        ]
