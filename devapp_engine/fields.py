from __future__ import annotations

import functools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from .address import AddressNormalizer
from .fuzzy import DEFAULT_MAX_DISTANCE, closest_match
from .geometry import area, intersect, leftmost, right_neighbor, vertical_overlap_percent
from .types import AnchorGroup, DevelopmentRecord, ExtractionResult, Found, Rejected, TextFragment
from .utils import condense_text, expand_ligatures, join_text, parse_strict_date, today_iso

logger = logging.getLogger(__name__)

# Share of the middle label's width that the address/number column may reach into.
MIDDLE_MARGIN = 0.2


def banded_order(band: float) -> Callable[[TextFragment, TextFragment], int]:
    """Comparator: rows first (tolerating ``band`` x the taller height), then x."""

    def compare(a: TextFragment, b: TextFragment) -> int:
        tolerance = max(a.height, b.height) * band
        if a.y > b.y + tolerance:
            return 1
        if a.y < b.y - tolerance:
            return -1
        if a.x > b.x:
            return 1
        if a.x < b.x:
            return -1
        return 0

    return compare


def sort_banded(fragments: Sequence[TextFragment], band: float) -> list[TextFragment]:
    return sorted(fragments, key=functools.cmp_to_key(banded_order(band)))


def remove_contained(fragments: Sequence[TextFragment], ratio: float = 0.9, factor: float = 2.0) -> list[TextFragment]:
    """Drop small fragments mostly covered by a much larger one (stray OCR marks such as "r~" or "-")."""
    kept = []
    for f in fragments:
        f_area = area(f)
        covered = f_area > 0 and any(
            area(other) > factor * f_area and area(intersect(f, other)) / f_area > ratio
            for other in fragments
            if other is not f
        )
        if not covered:
            kept.append(f)
    return kept


def prefix_before_gap(fragments: Sequence[TextFragment], gap: float) -> list[TextFragment]:
    """Fragments up to (not including) the first one after a horizontal gap wider than ``gap``."""
    for i in range(1, len(fragments)):
        if fragments[i].x - fragments[i - 1].right > gap:
            return list(fragments[:i])
    return list(fragments)


@dataclass
class FieldExtractor:
    """Turns one AnchorGroup into a DevelopmentRecord (or a rejection reason).

    Layout of one record in the report, relative to the "Dev App No." label
    (the start anchor)::

        Dev App No. 123/2017               1/02/2017   ...
                                           description text
                                           Applicant   ...
        15 Smith RD CALLINGTON 5254
        Assessment Number ...
    """

    normalizer: AddressNormalizer
    information_url: str
    comment_url: str = ""
    fields_cfg: dict[str, Any] = field(default_factory=dict)
    scrape_date: str = field(default_factory=today_iso)

    def __post_init__(self) -> None:
        cfg = self.fields_cfg
        self._assessment_label = str(cfg.get("assessment_label", "Assessment Number"))
        self._middle_labels = [condense_text(t) for t in cfg.get("middle_labels", ["applicant", "builder"])]
        self._max_distance = int(cfg.get("max_edit_distance", DEFAULT_MAX_DISTANCE))
        self._confusables = str(cfg.get("confusable_slash_chars", "IlL[]|’,"))
        self._address_gap = float(cfg.get("address_gap", 50))
        self._containment_ratio = float(cfg.get("containment_ratio", 0.9))
        self._artifact_factor = float(cfg.get("artifact_area_factor", 2.0))
        self._missing_description = str(cfg.get("missing_description", "No description provided"))
        self._require_suburb = bool(cfg.get("require_suburb", True))
        self._slash_table = str.maketrans({c: "/" for c in self._confusables})

    def _matches(self, text: str, label: str) -> bool:
        return closest_match(text, [label], max_distance=self._max_distance) is not None

    def find_assessment_anchor(self, elements: Sequence[TextFragment], start: TextFragment) -> TextFragment | None:
        below = [e for e in elements if e.y > start.y]
        for e in below:
            if self._matches(e.text, self._assessment_label):
                return e

        # The label may be split in two fragments ("Assessment" + "Number").
        first, _, rest = self._assessment_label.partition(" ")
        if not rest:
            return None
        for e in below:
            if not self._matches(e.text, first):
                continue
            neighbour = right_neighbor(elements, e)
            if neighbour is not None and self._matches(neighbour.text, rest):
                return e
        return None

    def find_middle_anchor(self, elements: Sequence[TextFragment], start: TextFragment) -> TextFragment | None:
        for label in self._middle_labels:
            for e in elements:
                if e.y > start.y and condense_text(e.text) == label:
                    return e
        return None

    def application_number(
        self, elements: Sequence[TextFragment], start: TextFragment, middle: TextFragment
    ) -> str:
        row = [
            e
            for e in elements
            if e.x > start.right
            and e.x < middle.x - MIDDLE_MARGIN * middle.width
            and vertical_overlap_percent(e, start) > 50
        ]
        row.sort(key=lambda e: e.x)
        number = "".join(join_text([e.text for e in row]).split())
        # For example "17I2017" -> "17/2017".
        return number.translate(self._slash_table)

    def received_date(
        self, elements: Sequence[TextFragment], start: TextFragment, middle: TextFragment
    ) -> tuple[TextFragment | None, str]:
        # The lodged date is sometimes printed a little above or below the label row.
        dated = [
            e
            for e in elements
            if e.x >= middle.x
            and e.bottom > start.y - start.height
            and e.y < start.y + 2 * start.height
            and parse_strict_date(e.text) is not None
        ]
        # Leftmost favours the lodged date over the decision date.
        chosen = leftmost(dated)
        if chosen is None:
            return None, ""
        parsed = parse_strict_date(chosen.text)
        return chosen, parsed.isoformat() if parsed else ""

    def description(
        self, elements: Sequence[TextFragment], top: TextFragment, middle: TextFragment
    ) -> str:
        parts = [
            e
            for e in elements
            if e.y > top.bottom and e.y < middle.y and e.x > middle.x - MIDDLE_MARGIN * middle.width
        ]
        parts = sort_banded(parts, 2 / 3)
        return expand_ligatures(join_text([e.text for e in parts]))

    def address_fragments(
        self, elements: Sequence[TextFragment], assessment: TextFragment, middle: TextFragment
    ) -> list[TextFragment]:
        def in_column(e: TextFragment) -> bool:
            return e.y < assessment.y - assessment.height and e.x < middle.x - MIDDLE_MARGIN * middle.width

        column = [e for e in elements if in_column(e)]
        if not column:
            return []

        # The address is a single line: the lowest fragment above the assessment number.
        bottom = column[0]
        for e in column[1:]:
            if e.y > bottom.y:
                bottom = e
        line = [e for e in column if e.y >= bottom.y - max(e.height, bottom.height)]
        line = sort_banded(line, 1.0)
        line = remove_contained(line, self._containment_ratio, self._artifact_factor)
        return prefix_before_gap(line, self._address_gap)

    def raw_address(self, fragments: Sequence[TextFragment]) -> str:
        text = expand_ligatures(join_text([e.text for e in fragments]))
        return text.replace("\\/", "V")

    def extract(self, group: AnchorGroup) -> ExtractionResult:
        elements = group.fragments
        start = group.anchor

        middle = self.find_middle_anchor(elements, start)
        number = self.application_number(elements, start, middle) if middle is not None else ""

        assessment = self.find_assessment_anchor(elements, start)
        if assessment is None:
            return Rejected(reason="assessment_number_label_not_found", application_number=number or None)
        if middle is None:
            return Rejected(reason="applicant_or_builder_label_not_found")
        if not number:
            return Rejected(reason="application_number_empty")

        date_fragment, received = self.received_date(elements, start, middle)
        description = self.description(elements, date_fragment or start, middle)

        address_parts = self.address_fragments(elements, assessment, middle)
        if not address_parts:
            return Rejected(reason="address_not_found", application_number=number)

        raw = self.raw_address(address_parts)
        normalized = self.normalizer.normalize(raw)
        if not normalized.text:
            return Rejected(reason="address_empty", application_number=number, details={"raw_address": raw})
        if self._require_suburb and not normalized.recognized:
            return Rejected(
                reason="suburb_not_recognized",
                application_number=number,
                details={"raw_address": raw},
            )

        logger.info("Application %s: address=%r received=%r", number, normalized.text, received)
        return Found(
            DevelopmentRecord(
                application_number=number,
                address=normalized.text,
                description=description or self._missing_description,
                information_url=self.information_url,
                comment_url=self.comment_url,
                scrape_date=self.scrape_date,
                received_date=received,
            )
        )
