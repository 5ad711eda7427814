"""Serialize a CompiledDocument to Markdown.

Output order: title/abstract block, table of contents, then every section
(heading, impact, description) followed by its rules (heading, impact line,
verbatim body). Each heading is preceded by an explicit ``<a id>`` so TOC
links and cross-references use the generated anchors regardless of how a
Markdown host derives its own heading ids.

Rule bodies are passed through untouched. A body block whose kind has no
writer raises RenderError at once: it means the parser produced something the
renderer does not know, which is a pipeline bug rather than bad input.
"""
from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path

from rulebook.rule_types import (
    BlockKind,
    BodyBlock,
    CompiledDocument,
    CompiledRule,
    CompiledSection,
    ErrorKind,
    Issue,
    RenderError,
    RuleRecord,
)


def _verbatim(block: BodyBlock) -> str:
    return block.text


_BLOCK_WRITERS: dict[BlockKind, Callable[[BodyBlock], str]] = {
    BlockKind.PROSE: _verbatim,
    BlockKind.INCORRECT: _verbatim,
    BlockKind.CORRECT: _verbatim,
    BlockKind.EXAMPLE: _verbatim,
    BlockKind.REFERENCES: _verbatim,
}


def render_block(block: BodyBlock, record: RuleRecord) -> str:
    writer = _BLOCK_WRITERS.get(block.kind)
    if writer is None:
        raise RenderError(Issue(
            kind=ErrorKind.UNRENDERABLE_BLOCK,
            message=f'No writer for body block kind "{block.kind}"',
            source=record.source_path,
            subject=record.title,
        ))
    return writer(block)


def render_body(record: RuleRecord) -> str:
    """The record's body exactly as parsed."""
    return "".join(render_block(b, record) for b in record.body)


def render_rule_source(record: RuleRecord) -> str:
    """Reassemble the original rule file (front matter + header + body)."""
    return record.front_matter + record.header + render_body(record)


def _link_text(label: str) -> str:
    return label.replace("[", "\\[").replace("]", "\\]")


def impact_annotation(impact: str, description: str = "") -> str:
    if description:
        return f"**Impact: {impact} ({description})**"
    return f"**Impact: {impact}**"


# ---------------------------------------------------------------------------
# Document parts
# ---------------------------------------------------------------------------

def _render_header(doc: CompiledDocument) -> Iterator[str]:
    meta = doc.meta
    yield f"# {meta.title}\n\n"
    byline = [
        line for line in (
            f"**Version {meta.version}**" if meta.version else "",
            meta.organization,
            meta.date,
        )
        if line
    ]
    if byline:
        # Two trailing spaces force Markdown line breaks inside the block.
        yield "  \n".join(byline) + "\n\n"
    if meta.abstract:
        yield "---\n\n## Abstract\n\n"
        yield meta.abstract.rstrip("\n") + "\n\n"
    yield "---\n\n"


def _render_toc(doc: CompiledDocument) -> Iterator[str]:
    impact_by_anchor = {cs.anchor: cs.section.impact for cs in doc.sections}
    yield "## Table of Contents\n\n"
    for entry in doc.toc:
        indent = "   " * (entry.depth - 1)
        line = f"{indent}- [{_link_text(entry.label)}](#{entry.anchor})"
        if entry.depth == 1:
            line += f" — **{impact_by_anchor[entry.anchor]}**"
        yield line + "\n"
    yield "\n---\n\n"


def _render_rule(compiled: CompiledRule) -> Iterator[str]:
    record = compiled.record
    yield f'<a id="{compiled.anchor}"></a>\n\n'
    yield f"### {compiled.number} {record.title}\n\n"
    yield impact_annotation(record.impact, record.impact_description) + "\n\n"
    body = render_body(record)
    if body:
        yield body
        if not body.endswith("\n"):
            yield "\n"
        yield "\n"


def _render_section(compiled: CompiledSection) -> Iterator[str]:
    section = compiled.section
    yield f'<a id="{compiled.anchor}"></a>\n\n'
    yield f"## {compiled.number}. {section.display_name}\n\n"
    yield impact_annotation(section.impact) + "\n\n"
    if section.description:
        yield section.description + "\n\n"
    for rule in compiled.rules:
        yield from _render_rule(rule)
    yield "---\n\n"


def _render_references(doc: CompiledDocument) -> Iterator[str]:
    if not doc.meta.references:
        return
    yield "## References\n\n"
    for i, ref in enumerate(doc.meta.references, start=1):
        yield f"{i}. {ref}\n"
    yield "\n"


def iter_render(doc: CompiledDocument) -> Iterator[str]:
    """Yield the document in chunks (for streaming large documents)."""
    yield from _render_header(doc)
    yield from _render_toc(doc)
    for section in doc.sections:
        yield from _render_section(section)
    yield from _render_references(doc)


def render_document(doc: CompiledDocument) -> str:
    return "".join(iter_render(doc))


def write_document(doc: CompiledDocument, path: Path) -> None:
    """Stream the rendered document to ``path`` without newline translation.

    Rendering errors propagate before the file is replaced; the document is
    written to a sibling temp file first.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    try:
        with tmp.open("w", encoding="utf-8", newline="") as fh:
            for chunk in iter_render(doc):
                fh.write(chunk)
        tmp.replace(path)
    finally:
        tmp.unlink(missing_ok=True)
