"""Title → anchor mapping with deterministic collision resolution.

``slugify`` is a pure function of one title. ``allocate_anchor`` is a pure
function of (title, anchors allocated so far): the caller threads the
returned ``AnchorState`` through its traversal, so the same titles in the
same order always yield the same anchors.

Tie-break: the first title to claim a slug keeps it bare; later titles with
the same slug get ``-2``, ``-3``, ... in encounter order. The compiler walks
sections in manifest order and rules in ``rule_refs`` order, and sections and
rules share one namespace.
"""
from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

# Underscore is a word character for \w but not alphanumeric, so it is
# folded into the separator class explicitly.
_NON_ALNUM_RE = re.compile(r"[\W_]+")

EMPTY_SLUG = "untitled"


def slugify(title: str) -> str:
    """Lower-case, collapse non-alphanumeric runs to '-', strip '-' ends.

    >>> slugify("Use `Promise.all()` for Independent Operations")
    'use-promise-all-for-independent-operations'
    """
    slug = _NON_ALNUM_RE.sub("-", title.lower()).strip("-")
    return slug or EMPTY_SLUG


@dataclass(frozen=True, slots=True)
class AnchorState:
    """Anchors allocated so far plus the next suffix to try per base slug."""

    taken: frozenset[str] = frozenset()
    next_suffix: tuple[tuple[str, int], ...] = field(default=())

    def suffix_for(self, base: str) -> int:
        for slug, n in self.next_suffix:
            if slug == base:
                return n
        return 2


def allocate_anchor(title: str, state: AnchorState) -> tuple[str, AnchorState]:
    """Return the anchor for ``title`` and the state including it."""
    base = slugify(title)
    if base not in state.taken:
        return base, AnchorState(state.taken | {base}, state.next_suffix)

    n = state.suffix_for(base)
    candidate = f"{base}-{n}"
    while candidate in state.taken:
        n += 1
        candidate = f"{base}-{n}"
    counters = tuple(
        (slug, c) for slug, c in state.next_suffix if slug != base
    ) + ((base, n + 1),)
    return candidate, AnchorState(state.taken | {candidate}, counters)


def assign_anchors(titles: Iterable[str]) -> list[str]:
    """Allocate anchors for titles in iteration order."""
    state = AnchorState()
    out: list[str] = []
    for title in titles:
        anchor, state = allocate_anchor(title, state)
        out.append(anchor)
    return out
