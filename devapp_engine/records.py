"""Split a page of fragments into one group per "Dev App No." label.

The label may come back from OCR or PDF extraction as one fragment
("DevAppNo."), two ("Dev App" + "No.") or three ("Dev" + "App" + "No."), and
the final token is often misread ("N0", "N°", '"o'). The token spellings are
configuration data so new misreads can be added without code changes.
"""
from __future__ import annotations

import itertools
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Sequence

from .fuzzy import distance
from .geometry import right_neighbor, row_top, sort_fragments
from .types import AnchorGroup, Rectangle, TextFragment
from .utils import condense_text

logger = logging.getLogger(__name__)

DEFAULT_LABEL_TOKENS: tuple[tuple[str, ...], ...] = (
    ("dev",),
    ("app",),
    ("no", "n0", "n°", '"o', '"0', '"°'),
)


@dataclass
class AnchorLabel:
    """All accepted condensed spellings of a multi-token label."""

    tokens: Sequence[Sequence[str]] = DEFAULT_LABEL_TOKENS
    prefix_length: int = 3
    max_edit_distance: int = 2
    full: frozenset[str] = field(init=False)
    partial: frozenset[str] = field(init=False)
    primary: str = field(init=False)

    def __post_init__(self) -> None:
        tokens = [tuple(condense_text(t) for t in alternates) for alternates in self.tokens]
        if not tokens or not all(tokens):
            raise ValueError("anchor label needs at least one spelling per token")
        self.tokens = tokens
        self.primary = "".join(alternates[0] for alternates in tokens)
        self.full = frozenset("".join(p) for p in itertools.product(*tokens))
        self.partial = frozenset(
            "".join(p) for n in range(1, len(tokens)) for p in itertools.product(*tokens[:n])
        )

    @classmethod
    def from_cfg(cls, anchors_cfg: dict[str, Any]) -> "AnchorLabel":
        return cls(
            tokens=anchors_cfg.get("label_tokens", DEFAULT_LABEL_TOKENS),
            prefix_length=int(anchors_cfg.get("prefix_length", 3)),
            max_edit_distance=int(anchors_cfg.get("max_edit_distance", 2)),
        )

    @property
    def prefix(self) -> str:
        return self.tokens[0][0][: self.prefix_length]

    def is_candidate(self, fragment: TextFragment) -> bool:
        return condense_text(fragment.text).startswith(self.prefix)

    def is_full(self, text: str) -> bool:
        if text in self.full:
            return True
        return (
            self.max_edit_distance > 0
            and len(text) >= len(self.primary)
            and text not in self.partial
            and distance(text, self.primary) <= self.max_edit_distance
        )

    def is_partial(self, text: str) -> bool:
        return text in self.partial


def resolve_anchor(fragments: Sequence[TextFragment], candidate: TextFragment, label: AnchorLabel) -> TextFragment | None:
    """Follow right neighbours from ``candidate`` until the label is complete.

    Returns the fragment holding the end of the label (the application number
    sits to its right), or None when no token sequence spells the label.
    """
    current = candidate
    text = condense_text(candidate.text)
    for _ in range(len(label.tokens)):
        if text in label.full:
            return current
        if not label.is_partial(text):
            return current if label.is_full(text) else None
        nxt = right_neighbor(fragments, current)
        if nxt is None:
            return None
        current = nxt
        text += condense_text(nxt.text)
    return current if label.is_full(text) else None


def find_anchors(fragments: Sequence[TextFragment], label: AnchorLabel) -> list[TextFragment]:
    anchors: list[TextFragment] = []
    seen: set[int] = set()
    for candidate in fragments:
        if not label.is_candidate(candidate):
            continue
        anchor = resolve_anchor(fragments, candidate, label)
        if anchor is None:
            logger.debug("Rejected anchor candidate %r at (%.0f,%.0f)", candidate.text, candidate.x, candidate.y)
            continue
        if id(anchor) in seen:
            continue
        seen.add(id(anchor))
        anchors.append(anchor)
    anchors.sort(key=lambda a: a.y)
    return anchors


def raised(anchor: TextFragment, factor: float) -> Rectangle:
    return Rectangle(anchor.x, anchor.y - factor * anchor.height, anchor.width, anchor.height)


def group_records(
    fragments: Sequence[TextFragment],
    label: AnchorLabel | None = None,
    raise_factor: float = 2.0,
) -> list[AnchorGroup]:
    """One AnchorGroup per resolved label, bounded by consecutive row tops.

    The band above each label is widened by ``raise_factor`` label heights so
    a received date printed above the label still falls inside its group.
    """
    label = label or AnchorLabel()
    ordered = sort_fragments(fragments)
    anchors = find_anchors(ordered, label)

    tops: list[float] = []
    for anchor in anchors:
        top = row_top(ordered, raised(anchor, raise_factor))
        tops.append(max(top, tops[-1]) if tops else top)

    groups: list[AnchorGroup] = []
    for i, anchor in enumerate(anchors):
        top = tops[i]
        next_top = tops[i + 1] if i + 1 < len(tops) else math.inf
        members = tuple(f for f in ordered if top <= f.y < next_top)
        groups.append(AnchorGroup(anchor=anchor, fragments=members))
    return groups
