"""Core types for the rule compilation pipeline.

Every stage shares these types. All model dataclasses are frozen and use
slots=True; collections inside them are tuples or frozensets, so a built
CompiledDocument can be handed between stages without copying.

Type hierarchy:
  Ok[T] / Err[E]     - Strict algebraic Result type
  Impact             - Ordered severity enum (CRITICAL highest)
  BlockKind          - Kinds of opaque body blocks
  BodyBlock          - One verbatim block of a rule body
  RuleRecord         - A parsed rule document
  Section            - A manifest section (ordering + bindings)
  TocEntry           - Generated table-of-contents entry
  CompiledRule       - RuleRecord placed in the document (anchor + number)
  CompiledSection    - Section placed in the document with its rules
  DocumentMeta       - Title/abstract block of the compiled document
  CompiledDocument   - The assembled, immutable document
  ErrorKind / Issue  - Structured diagnostics
  ValidationReport   - Fatal/warning partition of issues
  RenderError        - Raised when a body block cannot be rendered
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum
from typing import Generic, TypeAlias, TypeVar

# ---------------------------------------------------------------------------
# Result ADT: strict Ok/Err
# ---------------------------------------------------------------------------

T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Success case of Result[T, E].

    Usage::

        result: Result[RuleRecord, ParseError] = parse_rule_source(text, path)
        match result:
            case Ok(value=record): print(record.title)
            case Err(error=e): print(e.message)
    """
    value: T


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """Failure case of Result[T, E]."""
    error: E


Result: TypeAlias = Ok[T] | Err[E]


# ---------------------------------------------------------------------------
# Impact (ordered severity)
# ---------------------------------------------------------------------------

_IMPACT_SEPARATORS_RE = re.compile(r"[\s_\-]+")


class Impact(StrEnum):
    """Editorial impact level shared by sections and rules."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM_HIGH = "MEDIUM-HIGH"
    MEDIUM = "MEDIUM"
    LOW_MEDIUM = "LOW-MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        """Comparable severity: CRITICAL = 5 ... LOW = 0."""
        return len(_IMPACT_ORDER) - 1 - _IMPACT_ORDER.index(self)

    @classmethod
    def parse(cls, literal: str) -> Impact | None:
        """Parse a literal case-insensitively, normalizing separators to '-'.

        ``"medium_high"``, ``"Medium High"`` and ``"MEDIUM-HIGH"`` all map to
        ``Impact.MEDIUM_HIGH``. Returns None for unknown literals.
        """
        norm = _IMPACT_SEPARATORS_RE.sub("-", literal.strip()).strip("-").upper()
        try:
            return cls(norm)
        except ValueError:
            return None


_IMPACT_ORDER: tuple[Impact, ...] = (
    Impact.CRITICAL,
    Impact.HIGH,
    Impact.MEDIUM_HIGH,
    Impact.MEDIUM,
    Impact.LOW_MEDIUM,
    Impact.LOW,
)


# ---------------------------------------------------------------------------
# Rule body
# ---------------------------------------------------------------------------

class BlockKind(StrEnum):
    """Structural kind of a body block. Contents are never interpreted."""

    PROSE = "prose"
    INCORRECT = "incorrect"
    CORRECT = "correct"
    EXAMPLE = "example"
    REFERENCES = "references"


@dataclass(frozen=True, slots=True)
class BodyBlock:
    """One verbatim block of a rule body.

    ``text`` holds the exact source characters of the block, line endings
    included, so concatenating a record's blocks reproduces its body.
    """

    kind: BlockKind
    text: str
    label: str = ""     # "Incorrect (sequential awaits)" for example blocks


@dataclass(frozen=True, slots=True)
class RuleRecord:
    """A parsed rule document.

    ``front_matter`` and ``header`` keep the raw text that preceded the body
    (the ``---`` metadata block and the heading/impact lines) so the source
    file can be reproduced byte for byte.
    """

    rule_id: str                    # file stem, e.g. "async-parallel"
    title: str
    impact: Impact
    impact_description: str
    tags: frozenset[str]
    body: tuple[BodyBlock, ...]
    source_path: str
    front_matter: str = ""
    header: str = ""
    heading_title: str = ""         # title as written in the body heading
    section_hint: str = ""          # front-matter "section" binding
    front_matter_keys: frozenset[str] = frozenset()     # keys with non-empty values

    def __post_init__(self) -> None:
        """Validate structural invariants at construction time."""
        if not self.title.strip():
            raise ValueError(f"RuleRecord.title must be non-empty ({self.source_path})")

    @property
    def body_text(self) -> str:
        return "".join(b.text for b in self.body)


# ---------------------------------------------------------------------------
# Sections and the compiled document
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Section:
    """A manifest section.

    ``rule_refs`` is empty after loading unless the manifest lists rules
    explicitly (``explicit_refs``); ``manifest.bind_rules`` fills it in.
    """

    id: str
    order: int
    display_name: str
    impact: Impact
    description: str
    rule_refs: tuple[str, ...] = ()
    prefixes: tuple[str, ...] = ()
    explicit_refs: bool = False
    source: str = ""


@dataclass(frozen=True, slots=True)
class TocEntry:
    """Generated table-of-contents entry (depth 1 = section, 2 = rule)."""

    anchor: str
    label: str
    depth: int
    parent_anchor: str = ""

    def __post_init__(self) -> None:
        if self.depth not in (1, 2):
            raise ValueError(f"TocEntry.depth must be 1 or 2, got {self.depth}")


@dataclass(frozen=True, slots=True)
class CompiledRule:
    record: RuleRecord
    anchor: str
    number: str     # "3.2"


@dataclass(frozen=True, slots=True)
class CompiledSection:
    section: Section
    anchor: str
    number: int     # 1-based
    rules: tuple[CompiledRule, ...]


@dataclass(frozen=True, slots=True)
class DocumentMeta:
    """Title/abstract block rendered at the top of the compiled document."""

    title: str = "Best Practices"
    version: str = ""
    organization: str = ""
    date: str = ""
    abstract: str = ""
    references: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class CompiledDocument:
    """Sections with their ordered rules plus the flat TOC.

    Constructed fresh by ``compiler.build_document`` on every compile.
    """

    meta: DocumentMeta
    sections: tuple[CompiledSection, ...]
    toc: tuple[TocEntry, ...]

    @property
    def anchors(self) -> frozenset[str]:
        return frozenset(e.anchor for e in self.toc)

    def iter_rules(self):
        for cs in self.sections:
            yield from cs.rules


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------

class ErrorKind(StrEnum):
    """Stable identifiers for every diagnostic the pipeline produces."""

    # parse / manifest
    MISSING_FIELD = "MissingField"
    UNKNOWN_IMPACT_LEVEL = "UnknownImpactLevel"
    MALFORMED_FRONT_MATTER = "MalformedFrontMatter"
    DUPLICATE_SECTION_ID = "DuplicateSectionId"
    UNREADABLE_FILE = "UnreadableFile"
    MALFORMED_MANIFEST = "MalformedManifest"

    # validation, fatal
    DANGLING_RULE_REFERENCE = "DanglingRuleReference"
    UNASSIGNED_RULE = "UnassignedRule"
    MULTIPLY_ASSIGNED_RULE = "MultiplyAssignedRule"
    DUPLICATE_RULE_TITLE = "DuplicateRuleTitle"
    DUPLICATE_RULE_ID = "DuplicateRuleId"

    # validation, warning
    BROKEN_CROSS_REFERENCE = "BrokenCrossReference"
    TITLE_HEADING_MISMATCH = "TitleHeadingMismatch"
    MISSING_EXAMPLE_BLOCK = "MissingExampleBlock"
    MISSING_FRONT_MATTER = "MissingFrontMatter"
    MISSING_TEMPLATE_FIELD = "MissingTemplateField"
    EMPTY_TAG_LIST = "EmptyTagList"
    MISSING_RULE_HEADING = "MissingRuleHeading"
    EMPTY_EXPLANATION = "EmptyExplanation"
    MISSING_CODE_EXAMPLE = "MissingCodeExample"

    # render
    UNRENDERABLE_BLOCK = "UnrenderableBlock"


FATAL = "fatal"
WARNING = "warning"


@dataclass(frozen=True, slots=True)
class Issue:
    """A single diagnostic.

    - kind:     stable error class (ErrorKind)
    - message:  human-readable description
    - source:   originating file path, or manifest path / section id
    - subject:  title, rule id or offending literal the issue is about
    - severity: "fatal" | "warning"
    """

    kind: ErrorKind
    message: str
    source: str = ""
    subject: str = ""
    severity: str = FATAL

    @property
    def is_fatal(self) -> bool:
        return self.severity == FATAL

    def format(self) -> str:
        where = self.source or "<input>"
        what = f" ({self.subject})" if self.subject else ""
        return f"{where}{what}: [{self.kind}] {self.message}"


# Parse errors are plain fatal issues; the alias names the role.
ParseError = Issue


@dataclass(frozen=True, slots=True)
class ValidationReport:
    """Outcome of validation: fatal issues block compilation, warnings do not."""

    fatal: tuple[Issue, ...] = ()
    warning: tuple[Issue, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.fatal

    @classmethod
    def from_issues(cls, issues: list[Issue] | tuple[Issue, ...]) -> ValidationReport:
        return cls(
            fatal=tuple(i for i in issues if i.is_fatal),
            warning=tuple(i for i in issues if not i.is_fatal),
        )

    def merged(self, other: ValidationReport) -> ValidationReport:
        return ValidationReport(
            fatal=self.fatal + other.fatal,
            warning=self.warning + other.warning,
        )


class RenderError(Exception):
    """Raised when the renderer meets a block it has no writer for.

    Indicates a parser/renderer mismatch, never bad input.
    """

    def __init__(self, issue: Issue) -> None:
        super().__init__(issue.format())
        self.issue = issue
