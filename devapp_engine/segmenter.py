"""Whitespace-based image segmentation.

Large page images are mostly white space. Cutting them on long runs of white
rows, then white columns, keeps every recognizer call small. Only the white
bands are removed; every retained rectangle has non-zero area.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator

import numpy as np
from PIL import Image

from .types import Rectangle


@dataclass
class ImageSegment:
    """A crop of a source image plus its offset inside that image.

    Crops are owned by the segment and closed when its ``with`` block ends.
    A pass-through segment (the whole image) does not own the image.
    """

    image: Image.Image
    bounds: Rectangle
    owned: bool = True

    def __enter__(self) -> "ImageSegment":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def close(self) -> None:
        if self.owned:
            self.image.close()


@dataclass
class SegmentationSettings:
    min_area: int = 500 * 500
    white_level: int = 240
    max_dark_pixels: int = 2
    min_band: int = 25

    @classmethod
    def from_cfg(cls, segment_cfg: dict[str, Any] | None) -> "SegmentationSettings":
        cfg = segment_cfg or {}
        return cls(
            min_area=int(cfg.get("min_area", cls.min_area)),
            white_level=int(cfg.get("white_level", cls.white_level)),
            max_dark_pixels=int(cfg.get("max_dark_pixels", cls.max_dark_pixels)),
            min_band=int(cfg.get("min_band", cls.min_band)),
        )


def white_mask(image: Image.Image, white_level: int = 240) -> np.ndarray:
    """Boolean HxW array, True where every RGB channel is above ``white_level``."""
    arr = np.asarray(image.convert("RGB"))
    return np.all(arr > white_level, axis=2)


def _white_runs(is_white: np.ndarray, min_band: int) -> list[tuple[int, int]]:
    """(start, length) of runs of True values at least ``min_band`` long."""
    runs: list[tuple[int, int]] = []
    start: int | None = None
    for i, white in enumerate(is_white.tolist()):
        if white and start is None:
            start = i
        elif not white and start is not None:
            runs.append((start, i - start))
            start = None
    if start is not None:
        runs.append((start, len(is_white) - start))
    return [r for r in runs if r[1] >= min_band]


def _keep_between(runs: list[tuple[int, int]], begin: int, end: int) -> list[tuple[int, int]]:
    """Spans of [begin, end) left over once the white runs are cut out."""
    spans: list[tuple[int, int]] = []
    cursor = begin
    for run_start, run_length in runs:
        if run_start > cursor:
            spans.append((cursor, run_start - cursor))
        cursor = max(cursor, run_start + run_length)
    if end > cursor:
        spans.append((cursor, end - cursor))
    return spans


def split_vertically(mask: np.ndarray, bounds: Rectangle, settings: SegmentationSettings) -> list[Rectangle]:
    """Cut ``bounds`` on bands of consecutive white rows."""
    x0, y0 = int(bounds.x), int(bounds.y)
    x1, y1 = x0 + int(bounds.width), y0 + int(bounds.height)
    dark_per_row = (~mask[y0:y1, x0:x1]).sum(axis=1)
    runs = _white_runs(dark_per_row <= settings.max_dark_pixels, settings.min_band)
    return [
        Rectangle(x0, y0 + start, x1 - x0, length)
        for start, length in _keep_between(runs, 0, y1 - y0)
    ]


def split_horizontally(mask: np.ndarray, bounds: Rectangle, settings: SegmentationSettings) -> list[Rectangle]:
    """Cut ``bounds`` on bands of consecutive white columns."""
    x0, y0 = int(bounds.x), int(bounds.y)
    x1, y1 = x0 + int(bounds.width), y0 + int(bounds.height)
    dark_per_column = (~mask[y0:y1, x0:x1]).sum(axis=0)
    runs = _white_runs(dark_per_column <= settings.max_dark_pixels, settings.min_band)
    return [
        Rectangle(x0 + start, y0, length, y1 - y0)
        for start, length in _keep_between(runs, 0, x1 - x0)
    ]


def segment_rectangles(image: Image.Image, settings: SegmentationSettings | None = None) -> list[Rectangle]:
    """Rectangles to recognise separately; empty when the image should not be split."""
    settings = settings or SegmentationSettings()
    w, h = image.size
    if w * h <= settings.min_area:
        return []

    mask = white_mask(image, settings.white_level)
    rectangles: list[Rectangle] = []
    for band in split_vertically(mask, Rectangle(0, 0, w, h), settings):
        rectangles.extend(split_horizontally(mask, band, settings))
    return [r for r in rectangles if r.width > 0 and r.height > 0]


def iter_segments(image: Image.Image, settings: SegmentationSettings | None = None) -> Iterator[ImageSegment]:
    """Yield segments one at a time; each crop is only created when requested."""
    rectangles = segment_rectangles(image, settings)
    if not rectangles:
        w, h = image.size
        yield ImageSegment(image=image, bounds=Rectangle(0, 0, w, h), owned=False)
        return

    for r in rectangles:
        box = (int(r.x), int(r.y), int(r.right), int(r.bottom))
        yield ImageSegment(image=image.crop(box), bounds=r)
