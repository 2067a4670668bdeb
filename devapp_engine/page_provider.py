from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator

from PIL import Image

from .types import Page, TextFragment
from .utils import load_json

logger = logging.getLogger(__name__)

INPUT_TYPES = ("pdf", "pdf-text", "images")
IMAGE_EXTS = {".png", ".jpg", ".jpeg", ".webp", ".bmp", ".tif", ".tiff"}


@dataclass
class PageImage:
    image: Image.Image
    offset: tuple[float, float]  # top-left of the image in page coordinates


@dataclass
class PageContent:
    """Everything known about one page: embedded images and/or native words.

    Images are closed when the ``with`` block ends so page buffers never
    outlive the page.
    """

    page: Page
    images: list[PageImage] = field(default_factory=list)
    words: list[TextFragment] | None = None  # native text, when available
    errors: list[str] = field(default_factory=list)  # load failures for this page

    def __enter__(self) -> "PageContent":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def close(self) -> None:
        for item in self.images:
            item.image.close()
        self.images = []


@dataclass
class RateLimitPolicy:
    """Minimum spacing between document fetches (plus optional random jitter)."""

    delay_seconds: float = 0.0
    jitter_seconds: float = 0.0
    _last: float | None = field(default=None, repr=False)

    @classmethod
    def from_cfg(cls, source_cfg: dict[str, Any]) -> "RateLimitPolicy":
        return cls(
            delay_seconds=float(source_cfg.get("delay_seconds", 0.0)),
            jitter_seconds=float(source_cfg.get("jitter_seconds", 0.0)),
        )

    async def wait(self) -> None:
        now = time.monotonic()
        if self._last is not None:
            target = self.delay_seconds + random.uniform(0.0, self.jitter_seconds)
            remaining = target - (now - self._last)
            if remaining > 0:
                await asyncio.sleep(remaining)
        self._last = time.monotonic()


def _pixmap_to_image(pix: Any) -> Image.Image:
    import fitz  # PyMuPDF

    if pix.alpha:
        pix = fitz.Pixmap(pix, 0)  # drop alpha
    if pix.n not in (1, 3):
        pix = fitz.Pixmap(fitz.csRGB, pix)
    mode = "L" if pix.n == 1 else "RGB"
    return Image.frombytes(mode, (pix.width, pix.height), pix.samples).convert("RGB")


def _open_rgb(path: Path) -> Image.Image:
    with Image.open(path) as im:
        return im.convert("RGB")


def load_mocked_fragments(mocked_dir: str | Path, page: Page) -> list[TextFragment] | None:
    """Pre-extracted fragments for a page, if a fixture file exists.

    Supported filenames: ``<page_id>.json``, ``<page_id>.fragments.json`` and
    ``page_<index>.json`` (0-based index). Each holds a list of fragment
    objects, or an object with a ``fragments`` list.
    """
    base = Path(mocked_dir)
    for p in (
        base / f"{page.page_id}.json",
        base / f"{page.page_id}.fragments.json",
        base / f"page_{page.page_index}.json",
    ):
        if p.is_file():
            data = load_json(p)
            items = data.get("fragments", []) if isinstance(data, dict) else data
            return [TextFragment.from_dict(item) for item in items]
    return None


@dataclass
class PageProvider:
    input_path: str
    input_type: str  # pdf|pdf-text|images
    rate_limit: RateLimitPolicy = field(default_factory=RateLimitPolicy)

    def __post_init__(self) -> None:
        if self.input_type not in INPUT_TYPES:
            raise ValueError(f"Unknown input_type: {self.input_type}")

    async def iter_pages(self) -> AsyncIterator[PageContent]:
        if self.input_type == "images":
            async for content in self._iter_image_folder():
                yield content
        else:
            async for content in self._iter_pdf_pages():
                yield content

    async def _iter_pdf_pages(self) -> AsyncIterator[PageContent]:
        try:
            import fitz  # PyMuPDF
        except Exception as e:  # pragma: no cover
            raise RuntimeError("PyMuPDF is required for --type pdf. Install pymupdf.") from e

        pdf_path = Path(self.input_path)
        doc = await asyncio.to_thread(fitz.open, pdf_path)
        try:
            for i in range(doc.page_count):
                await self.rate_limit.wait()
                page = Page(page_index=i, page_id=f"page_{i + 1:03d}", source_ref=f"{pdf_path.name}#page={i + 1}")
                if self.input_type == "pdf-text":
                    try:
                        words = await asyncio.to_thread(self._native_words, doc, i)
                    except Exception as e:
                        yield PageContent(page=page, words=[], errors=[f"{type(e).__name__}: {e}"])
                        continue
                    yield PageContent(page=page, words=words)
                else:
                    errors: list[str] = []
                    images = await asyncio.to_thread(self._embedded_images, doc, i, errors)
                    yield PageContent(page=page, images=images, errors=errors)
        finally:
            doc.close()

    @staticmethod
    def _native_words(doc: Any, index: int) -> list[TextFragment]:
        words = []
        for x0, y0, x1, y1, text, *_ in doc.load_page(index).get_text("words"):
            if text.strip():
                words.append(TextFragment(x=x0, y=y0, width=x1 - x0, height=y1 - y0, text=text))
        return words

    @staticmethod
    def _embedded_images(doc: Any, index: int, errors: list[str]) -> list[PageImage]:
        """Every placed raster image on the page, positioned in image-pixel units.

        Word boxes from the recognizer are in the image's pixel grid, so the
        placement origin is scaled by the image's vertical resolution. An image
        that cannot be decoded is skipped and described in ``errors``.
        """
        import fitz  # PyMuPDF

        page = doc.load_page(index)
        images: list[PageImage] = []
        for info in page.get_image_info(xrefs=True):
            xref = int(info.get("xref") or 0)
            if xref <= 0:
                logger.debug("page %d: skipping inline image without xref", index + 1)
                continue
            x0, y0, x1, y1 = info["bbox"]
            try:
                image = _pixmap_to_image(fitz.Pixmap(doc, xref))
            except Exception as e:
                errors.append(f"image xref={xref}: {type(e).__name__}: {e}")
                continue
            scale = image.height / (y1 - y0) if y1 > y0 else 1.0
            images.append(PageImage(image=image, offset=(x0 * scale, y0 * scale)))
        return images

    async def _iter_image_folder(self) -> AsyncIterator[PageContent]:
        folder = Path(self.input_path)
        if not folder.exists() or not folder.is_dir():
            raise ValueError(f"--type images expects a folder: {folder}")

        files = sorted([p for p in folder.iterdir() if p.suffix.lower() in IMAGE_EXTS])
        for i, img_path in enumerate(files):
            await self.rate_limit.wait()
            page = Page(page_index=i, page_id=f"page_{i + 1:03d}", source_ref=f"{folder.name}/{img_path.name}")
            try:
                image = await asyncio.to_thread(_open_rgb, img_path)
            except Exception as e:
                yield PageContent(page=page, errors=[f"{img_path.name}: {type(e).__name__}: {e}"])
                continue
            yield PageContent(page=page, images=[PageImage(image=image, offset=(0.0, 0.0))])
