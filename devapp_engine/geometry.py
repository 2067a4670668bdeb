from __future__ import annotations

import math
from typing import Iterable, Sequence

from .types import Rectangle, TextFragment

EMPTY = Rectangle(0.0, 0.0, 0.0, 0.0)

# A neighbour may start this far (as a fraction of the element width) to the
# left of the element's right edge and still count as being to its right.
RIGHT_OVERLAP_FACTOR = 0.2


def intersect(r1: Rectangle, r2: Rectangle) -> Rectangle:
    x1 = max(r1.x, r2.x)
    y1 = max(r1.y, r2.y)
    x2 = min(r1.right, r2.right)
    y2 = min(r1.bottom, r2.bottom)
    if x2 >= x1 and y2 >= y1:
        return Rectangle(x1, y1, x2 - x1, y2 - y1)
    return EMPTY


def union(r1: Rectangle, r2: Rectangle) -> Rectangle:
    x1 = min(r1.x, r2.x)
    y1 = min(r1.y, r2.y)
    x2 = max(r1.right, r2.right)
    y2 = max(r1.bottom, r2.bottom)
    return Rectangle(x1, y1, x2 - x1, y2 - y1)


def area(r: Rectangle) -> float:
    return r.width * r.height


def is_vertical_overlap(a: Rectangle, b: Rectangle) -> bool:
    return b.y < a.bottom and b.bottom > a.y


def vertical_overlap_percent(a: Rectangle, b: Rectangle) -> float:
    """Percentage of ``b``'s height that lies within ``a``'s vertical span.

    0 means no shared row, 100 means ``b`` is vertically contained in ``a``.
    Not symmetric.
    """
    if b.height <= 0:
        return 0.0
    y1 = max(a.y, b.y)
    y2 = min(a.bottom, b.bottom)
    if y2 < y1:
        return 0.0
    return (y2 - y1) * 100.0 / b.height


def distance_squared(a: Rectangle, b: Rectangle) -> float:
    """Squared distance from the right-centre of ``a`` to the left-centre of ``b``.

    Returns ``math.inf`` when ``b`` starts clearly to the left of ``a``'s right
    edge (that rules out wrapping back to elements on a previous line).
    """
    x1, y1 = a.right, a.y + a.height / 2
    x2, y2 = b.x, b.y + b.height / 2
    if x2 < x1 - a.width * RIGHT_OVERLAP_FACTOR:
        return math.inf
    return (x2 - x1) * (x2 - x1) + (y2 - y1) * (y2 - y1)


def right_neighbor(fragments: Iterable[TextFragment], element: Rectangle) -> TextFragment | None:
    closest: TextFragment | None = None
    closest_distance = math.inf
    for candidate in fragments:
        if candidate is element or not is_vertical_overlap(element, candidate):
            continue
        d = distance_squared(element, candidate)
        if d < closest_distance:
            closest, closest_distance = candidate, d
    return closest


def row_top(fragments: Iterable[Rectangle], element: Rectangle) -> float:
    """Highest (smallest) y of everything sharing a row with ``element``."""
    top = element.y
    for f in fragments:
        if is_vertical_overlap(element, f) and f.y < top:
            top = f.y
    return top


def reading_order_key(f: Rectangle) -> tuple[float, float]:
    return (f.y, f.x)


def sort_fragments(fragments: Iterable[TextFragment]) -> list[TextFragment]:
    return sorted(fragments, key=reading_order_key)


def leftmost(fragments: Sequence[TextFragment]) -> TextFragment | None:
    best: TextFragment | None = None
    for f in fragments:
        if best is None or f.x < best.x:
            best = f
    return best
