from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import cv2
import numpy as np
from PIL import Image, ImageEnhance

logger = logging.getLogger(__name__)

ENGINES = ("auto", "easyocr", "paddleocr", "tesseract")


@dataclass(frozen=True)
class RecognizedWord:
    text: str
    confidence: float  # 0..100
    bbox_xyxy: tuple[float, float, float, float]  # relative to the recognised image
    choices: tuple[str, ...] = ()


class Recognizer(Protocol):
    async def recognize(self, image: Image.Image) -> list[RecognizedWord]: ...


def _poly_to_xyxy(poly: list[list[float]] | list[tuple[float, float]]) -> tuple[float, float, float, float]:
    xs = [p[0] for p in poly]
    ys = [p[1] for p in poly]
    return float(min(xs)), float(min(ys)), float(max(xs)), float(max(ys))


@dataclass
class OCRRecognizer:
    """Text recognizer backed by EasyOCR, PaddleOCR or Tesseract.

    Models are loaded lazily on first use and reused for every later call.
    Calls run in a worker thread so the event loop stays responsive, but the
    pipeline awaits them one at a time.
    """

    engine: str = "auto"  # auto|easyocr|paddleocr|tesseract
    lang: str = "en"
    max_retries: int = 2
    preprocess_on_retry: bool = True
    _models: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_cfg(cls, ocr_cfg: dict[str, Any]) -> "OCRRecognizer":
        engine = str(ocr_cfg.get("engine", "auto"))
        if engine not in ENGINES:
            raise ValueError(f"Unknown OCR engine: {engine}")
        return cls(
            engine=engine,
            lang=str(ocr_cfg.get("lang", "en")),
            max_retries=int(ocr_cfg.get("max_retries", 2)),
            preprocess_on_retry=bool(ocr_cfg.get("preprocess_on_retry", True)),
        )

    async def recognize(self, image: Image.Image) -> list[RecognizedWord]:
        return await asyncio.to_thread(self.read, image)

    def _preprocess_image(self, image: Image.Image) -> Image.Image:
        """Binarise, denoise and sharpen a faint scan before a second attempt."""
        gray = cv2.cvtColor(np.array(image.convert("RGB")), cv2.COLOR_RGB2GRAY)
        binary = cv2.adaptiveThreshold(gray, 255, cv2.ADAPTIVE_THRESH_GAUSSIAN_C, cv2.THRESH_BINARY, 11, 2)
        denoised = cv2.fastNlMeansDenoising(binary, None, 10, 7, 21)
        kernel = np.array([[-1, -1, -1], [-1, 9, -1], [-1, -1, -1]])
        sharpened = cv2.filter2D(denoised, -1, kernel)
        processed = ImageEnhance.Contrast(Image.fromarray(sharpened)).enhance(1.5)
        return processed.convert("RGB")

    def read(self, image: Image.Image) -> list[RecognizedWord]:
        """Recognise words in ``image``.

        An empty first pass is retried on a pre-processed copy. Engine errors
        propagate once the retries are used up.
        """
        attempts = max(1, self.max_retries)
        words: list[RecognizedWord] = []
        for attempt in range(attempts):
            source = image
            if attempt > 0 and self.preprocess_on_retry:
                source = self._preprocess_image(image)
            try:
                words = self._read_with_engine(source)
            except Exception:
                if attempt == attempts - 1:
                    raise
                logger.debug("OCR attempt %d failed, retrying", attempt + 1, exc_info=True)
                continue
            finally:
                if source is not image:
                    source.close()
            if words:
                return words
        return words

    def _read_with_engine(self, image: Image.Image) -> list[RecognizedWord]:
        if self.engine == "easyocr":
            return self._read_easyocr(image)
        if self.engine == "paddleocr":
            return self._read_paddleocr(image)
        if self.engine == "tesseract":
            return self._read_tesseract(image)

        # auto: EasyOCR first, PaddleOCR as the fallback.
        try:
            return self._read_easyocr(image)
        except Exception as easy_error:
            logger.info("EasyOCR unavailable (%s); falling back to PaddleOCR", easy_error)
            return self._read_paddleocr(image)

    def _read_easyocr(self, image: Image.Image) -> list[RecognizedWord]:
        import easyocr

        reader = self._models.get("easyocr")
        if reader is None:
            reader = easyocr.Reader(self.lang.split(","), gpu=False)
            self._models["easyocr"] = reader

        words: list[RecognizedWord] = []
        for bbox, text, confidence in reader.readtext(np.array(image.convert("RGB"))):
            words.append(RecognizedWord(text=text, confidence=float(confidence) * 100.0, bbox_xyxy=_poly_to_xyxy(bbox)))
        return words

    def _read_paddleocr(self, image: Image.Image) -> list[RecognizedWord]:
        from paddleocr import PaddleOCR

        ocr = self._models.get("paddleocr")
        if ocr is None:
            ocr = PaddleOCR(use_angle_cls=True, lang=self.lang, show_log=False)
            self._models["paddleocr"] = ocr

        arr = np.array(image.convert("RGB"))
        try:
            result = ocr.ocr(arr, cls=True)
        except TypeError:
            result = ocr.ocr(arr)

        words: list[RecognizedWord] = []
        for line in result or []:
            for item in line or []:
                poly, (text, score) = item
                words.append(RecognizedWord(text=text, confidence=float(score) * 100.0, bbox_xyxy=_poly_to_xyxy(poly)))
        return words

    def _read_tesseract(self, image: Image.Image) -> list[RecognizedWord]:
        import pytesseract
        from pytesseract import Output

        # textord_old_baselines=0 keeps text raised by half a line on its own baseline.
        data = pytesseract.image_to_data(
            image.convert("RGB"),
            lang="eng" if self.lang == "en" else self.lang,
            config="-c textord_old_baselines=0",
            output_type=Output.DICT,
        )
        words: list[RecognizedWord] = []
        for i, text in enumerate(data.get("text", [])):
            text = (text or "").strip()
            confidence = float(data["conf"][i])
            if not text or confidence < 0:
                continue
            left, top = float(data["left"][i]), float(data["top"][i])
            width, height = float(data["width"][i]), float(data["height"][i])
            words.append(
                RecognizedWord(
                    text=text,
                    confidence=confidence,
                    bbox_xyxy=(left, top, left + width, top + height),
                )
            )
        return words
