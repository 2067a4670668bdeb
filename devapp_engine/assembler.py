from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from PIL import Image

from .job import JobPaths, record_error
from .ocr import RecognizedWord, Recognizer
from .segmenter import ImageSegment, SegmentationSettings, iter_segments
from .types import Page, TextFragment

logger = logging.getLogger(__name__)


@dataclass
class AssemblyStats:
    images: int = 0
    segments: int = 0
    failures: int = 0
    fragments: int = 0


def word_to_fragment(word: RecognizedWord, dx: float, dy: float) -> TextFragment | None:
    text = (word.text or "").strip()
    if not text:
        return None
    x0, y0, x1, y1 = word.bbox_xyxy
    return TextFragment(
        x=x0 + dx,
        y=y0 + dy,
        width=max(0.0, x1 - x0),
        height=max(0.0, y1 - y0),
        text=text,
        confidence=float(word.confidence),
        choice_count=len(word.choices),
    )


@dataclass
class FragmentAssembler:
    """Runs the recognizer over every segment of a page image.

    Word boxes come back relative to the segment; they are shifted by the
    segment's offset and by the image's placement on the page.
    """

    recognizer: Recognizer
    paths: JobPaths
    segment_cfg: dict[str, Any] = field(default_factory=dict)
    stats: AssemblyStats = field(default_factory=AssemblyStats)

    def __post_init__(self) -> None:
        self._settings = SegmentationSettings.from_cfg(self.segment_cfg)

    async def _recognize_segment(self, segment: ImageSegment, offset: tuple[float, float]) -> list[TextFragment]:
        words = await self.recognizer.recognize(segment.image)
        dx = offset[0] + segment.bounds.x
        dy = offset[1] + segment.bounds.y
        fragments = []
        for word in words:
            fragment = word_to_fragment(word, dx, dy)
            if fragment is not None:
                fragments.append(fragment)
        return fragments

    async def assemble_image(
        self,
        page: Page,
        image: Image.Image,
        offset: tuple[float, float] = (0.0, 0.0),
    ) -> list[TextFragment]:
        """Fragments for one image in page coordinates.

        Fail-soft: a segmentation or recognition error is recorded and the
        image contributes no fragments.
        """
        self.stats.images += 1
        fragments: list[TextFragment] = []
        try:
            for segment in iter_segments(image, self._settings):
                with segment:
                    self.stats.segments += 1
                    fragments.extend(await self._recognize_segment(segment, offset))
        except Exception as e:
            self.stats.failures += 1
            record_error(
                self.paths,
                page_id=page.page_id,
                stage="ocr",
                message=f"{type(e).__name__}: {e}",
                image_size=list(image.size),
            )
            return []

        self.stats.fragments += len(fragments)
        logger.debug("%s: %d fragment(s) from a %dx%d image", page.page_id, len(fragments), *image.size)
        return fragments
