"""End-to-end runs over synthetic pages (no OCR models, no network)."""
from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import pytest
from PIL import Image

from conftest import record_layout
from devapp_engine.config import config_from_dict
from devapp_engine.fields import FieldExtractor
from devapp_engine.job import create_job_dirs, init_job_outputs
from devapp_engine.ocr import RecognizedWord
from devapp_engine.page_provider import PageProvider, _pixmap_to_image
from devapp_engine.pipeline import EnginePipeline, RunOptions, extract_page_records
from devapp_engine.store import RecordStore
from devapp_engine.types import TextFragment
from devapp_engine.utils import load_json, write_json
from devapp_engine.validator import validate_job_dir


class LayoutRecognizer:
    """Reports the words of a fixed page layout for whatever image it gets."""

    def __init__(self, fragments: list[TextFragment]):
        self.fragments = fragments
        self.calls = 0

    async def recognize(self, image: Image.Image) -> list[RecognizedWord]:
        self.calls += 1
        return [
            RecognizedWord(text=f.text, confidence=95.0, bbox_xyxy=(f.x, f.y, f.right, f.bottom))
            for f in self.fragments
        ]


class PageSequenceRecognizer:
    """Reports a different layout for each image, in call order."""

    def __init__(self, layouts: list[list[TextFragment]]):
        self.layouts = list(layouts)

    async def recognize(self, image: Image.Image) -> list[RecognizedWord]:
        layout = self.layouts.pop(0)
        return [
            RecognizedWord(text=f.text, confidence=95.0, bbox_xyxy=(f.x, f.y, f.right, f.bottom))
            for f in layout
        ]


def _errors(paths) -> list[dict]:
    lines = paths.errors_jsonl.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines if line.strip()]


@pytest.fixture
def images_dir(tmp_path: Path) -> Path:
    folder = tmp_path / "scans"
    folder.mkdir()
    # Below the segmentation threshold so the recognizer sees the whole page.
    Image.new("RGB", (400, 400), color=(255, 255, 255)).save(folder / "page1.png")
    return folder


def _pipeline(tmp_path: Path, dictionaries, opts: RunOptions, recognizer=None, store=None) -> EnginePipeline:
    paths = create_job_dirs(tmp_path / "ws", "job")
    init_job_outputs(paths)
    cfg = config_from_dict({"output": {"comment_url": "mailto:council@example.test"}})
    return EnginePipeline(paths=paths, cfg=cfg, opts=opts, dictionaries=dictionaries, recognizer=recognizer, store=store)


class TestEnginePipeline:
    def test_ocr_pages_produce_records(self, tmp_path, dictionaries, images_dir):
        layout = record_layout("123/2017", y=100) + record_layout("124/2017", y=300, with_address=False)
        recognizer = LayoutRecognizer(layout)
        opts = RunOptions(input_path=str(images_dir), input_type="images", information_url="http://example.test/r.pdf")
        pipeline = _pipeline(tmp_path, dictionaries, opts, recognizer=recognizer)

        records = asyncio.run(pipeline.run("job"))

        assert recognizer.calls == 1
        assert [r["application_number"] for r in records] == ["123/2017"]
        assert records[0]["address"] == "Smith Road, Callington"
        assert records[0]["comment_url"] == "mailto:council@example.test"
        assert records[0]["page_id"] == "page_001"

        paths = pipeline.paths
        result = load_json(paths.result_json)
        assert result["job"]["finished"] is True
        assert result["records"] == records

        review = load_json(paths.review_json)["items"]
        assert len(review) == 1
        assert review[0]["application_number"] == "124/2017"
        assert review[0]["page_number"] == 1

        metrics = load_json(paths.metrics_json)
        assert metrics["finished"] is True
        assert metrics["pages_total"] == metrics["pages_processed"] == 1
        assert metrics["anchors_total"] == 2
        assert metrics["records_total"] == 1
        assert metrics["records_rejected"] == 1

        errors = paths.errors_jsonl.read_text(encoding="utf-8")
        assert '"stage": "extract"' in errors

        staged = load_json(paths.stage_fragments_dir / "page_001.json")
        assert len(staged["fragments"]) == len(layout)

    def test_ocr_and_native_text_agree(self, tmp_path, dictionaries, images_dir, normalizer):
        layout = record_layout("123/2017", y=100)
        opts = RunOptions(input_path=str(images_dir), input_type="images", information_url="u")
        pipeline = _pipeline(tmp_path, dictionaries, opts, recognizer=LayoutRecognizer(layout))
        ocr_records = asyncio.run(pipeline.run("job"))

        extractor = FieldExtractor(normalizer=normalizer, information_url="u", comment_url="mailto:council@example.test")
        native = extract_page_records(layout, extractor)

        assert [{**f.record.to_dict(), "page_id": "page_001"} for f in native.records] == ocr_records

    def test_mocked_fragments_skip_recognizer(self, tmp_path, dictionaries, images_dir):
        mocked = tmp_path / "mocked"
        write_json(mocked / "page_001.json", {"fragments": [f.to_dict() for f in record_layout("55/2018")]})
        recognizer = LayoutRecognizer([])
        opts = RunOptions(
            input_path=str(images_dir),
            input_type="images",
            information_url="u",
            mocked_fragments_dir=str(mocked),
        )
        records = asyncio.run(_pipeline(tmp_path, dictionaries, opts, recognizer=recognizer).run("job"))

        assert recognizer.calls == 0
        assert [r["application_number"] for r in records] == ["55/2018"]

    def test_store_insert_is_idempotent_across_runs(self, tmp_path, dictionaries, images_dir):
        opts = RunOptions(input_path=str(images_dir), input_type="images", information_url="u")
        layout = record_layout()
        with RecordStore(tmp_path / "data.sqlite") as store:
            first = _pipeline(tmp_path / "a", dictionaries, opts, LayoutRecognizer(layout), store)
            asyncio.run(first.run("job"))
            second = _pipeline(tmp_path / "b", dictionaries, opts, LayoutRecognizer(layout), store)
            asyncio.run(second.run("job"))
            assert store.count() == 1

        assert load_json(first.paths.metrics_json)["records_inserted"] == 1
        assert load_json(second.paths.metrics_json)["records_inserted"] == 0

    def test_page_without_anchors(self, tmp_path, dictionaries, images_dir):
        opts = RunOptions(input_path=str(images_dir), input_type="images", information_url="u")
        pipeline = _pipeline(tmp_path, dictionaries, opts, recognizer=LayoutRecognizer([]))

        assert asyncio.run(pipeline.run("job")) == []
        assert load_json(pipeline.paths.metrics_json)["pages_processed"] == 1

    def test_unknown_input_type(self, tmp_path, dictionaries):
        opts = RunOptions(input_path=str(tmp_path), input_type="html", information_url="u")
        with pytest.raises(ValueError):
            _pipeline(tmp_path, dictionaries, opts, recognizer=LayoutRecognizer([]))


class TestPdfText:
    def test_native_words_become_fragments(self, tmp_path):
        fitz = pytest.importorskip("fitz")

        pdf_path = tmp_path / "report.pdf"
        doc = fitz.open()
        page = doc.new_page()
        page.insert_text((72, 100), "Dev App No. 123/2017")
        doc.save(pdf_path)
        doc.close()

        async def collect():
            out = []
            async for content in PageProvider(str(pdf_path), "pdf-text").iter_pages():
                with content:
                    out.append((content.page, content.words))
            return out

        pages = asyncio.run(collect())

        assert len(pages) == 1
        page_info, words = pages[0]
        assert page_info.source_ref == "report.pdf#page=1"
        assert [w.text for w in words] == ["Dev", "App", "No.", "123/2017"]
        assert all(w.width > 0 and w.height > 0 for w in words)


# ═══════════════════════════════════════════════════════════════════════════════
# FAIL-SOFT PAGES AND DUPLICATES
# ═══════════════════════════════════════════════════════════════════════════════

class TestFailSoftRun:
    def test_unreadable_page_recorded_and_run_continues(self, tmp_path, dictionaries):
        folder = tmp_path / "scans"
        folder.mkdir()
        Image.new("RGB", (400, 400), color=(255, 255, 255)).save(folder / "page1.png")
        (folder / "page2.png").write_bytes(b"not an image")
        Image.new("RGB", (400, 400), color=(255, 255, 255)).save(folder / "page3.png")

        recognizer = PageSequenceRecognizer([record_layout("123/2017"), record_layout("125/2017")])
        opts = RunOptions(input_path=str(folder), input_type="images", information_url="u")
        pipeline = _pipeline(tmp_path, dictionaries, opts, recognizer=recognizer)

        records = asyncio.run(pipeline.run("job"))

        assert [(r["application_number"], r["page_id"]) for r in records] == [
            ("123/2017", "page_001"),
            ("125/2017", "page_003"),
        ]
        metrics = load_json(pipeline.paths.metrics_json)
        assert metrics["finished"] is True
        assert metrics["pages_total"] == 3
        assert metrics["images_total"] == 2

        page_errors = [e for e in _errors(pipeline.paths) if e["stage"] == "page"]
        assert [e["page_id"] for e in page_errors] == ["page_002"]
        assert "page2.png" in page_errors[0]["message"]

    def test_repeated_application_kept_once(self, tmp_path, dictionaries, images_dir):
        Image.new("RGB", (400, 400), color=(255, 255, 255)).save(images_dir / "page2.png")
        opts = RunOptions(input_path=str(images_dir), input_type="images", information_url="u")
        pipeline = _pipeline(tmp_path, dictionaries, opts, recognizer=LayoutRecognizer(record_layout("123/2017")))

        records = asyncio.run(pipeline.run("job"))

        assert [(r["application_number"], r["page_id"]) for r in records] == [("123/2017", "page_001")]
        metrics = load_json(pipeline.paths.metrics_json)
        assert metrics["records_total"] == 1
        assert metrics["records_duplicate"] == 1

        ok, summary = validate_job_dir(pipeline.paths.job_dir)
        assert ok, summary["errors"]

    def test_skipped_group_logged_at_info(self, tmp_path, dictionaries, images_dir, caplog):
        layout = record_layout("124/2017", with_address=False)
        opts = RunOptions(input_path=str(images_dir), input_type="images", information_url="u")
        pipeline = _pipeline(tmp_path, dictionaries, opts, recognizer=LayoutRecognizer(layout))

        with caplog.at_level(logging.DEBUG, logger="devapp_engine"):
            asyncio.run(pipeline.run("job"))

        skipped = [r for r in caplog.records if r.name == "devapp_engine.job" and "extract" in r.getMessage()]
        assert len(skipped) == 1
        assert skipped[0].levelno == logging.INFO
        logged = _errors(pipeline.paths)
        assert [(e["stage"], e["application_number"]) for e in logged] == [("extract", "124/2017")]


# ═══════════════════════════════════════════════════════════════════════════════
# SCANNED PDF PAGES
# ═══════════════════════════════════════════════════════════════════════════════

class TestPixmapConversion:
    def test_rgba_pixmap_keeps_colour(self):
        fitz = pytest.importorskip("fitz")
        pix = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, 4, 2), 1)
        pix.set_rect(pix.irect, (10, 200, 30, 255))

        image = _pixmap_to_image(pix)

        assert image.mode == "RGB"
        assert image.size == (4, 2)
        assert set(image.getdata()) == {(10, 200, 30)}

    def test_gray_alpha_pixmap_becomes_gray_rgb(self):
        fitz = pytest.importorskip("fitz")
        pix = fitz.Pixmap(fitz.csGRAY, fitz.IRect(0, 0, 4, 2), 1)
        pix.set_rect(pix.irect, (90, 255))

        assert set(_pixmap_to_image(pix).getdata()) == {(90, 90, 90)}

    def test_rgb_pixmap_unchanged(self):
        fitz = pytest.importorskip("fitz")
        pix = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, 3, 3), 0)
        pix.set_rect(pix.irect, (1, 2, 3))

        assert set(_pixmap_to_image(pix).getdata()) == {(1, 2, 3)}


@pytest.fixture
def scanned_pdf(tmp_path: Path) -> Path:
    """One page with a 100x50 scan placed at (72, 144) and drawn 200x100 points."""
    fitz = pytest.importorskip("fitz")
    png = tmp_path / "scan.png"
    Image.new("RGB", (100, 50), color=(200, 30, 30)).save(png)

    pdf_path = tmp_path / "scanned.pdf"
    doc = fitz.open()
    page = doc.new_page()
    page.insert_image(fitz.Rect(72, 144, 272, 244), filename=str(png))
    doc.save(pdf_path)
    doc.close()
    return pdf_path


class TestScannedPdf:
    def test_embedded_image_offset_in_image_pixels(self, scanned_pdf):
        async def collect():
            out = []
            async for content in PageProvider(str(scanned_pdf), "pdf").iter_pages():
                with content:
                    out.append((content.page, [(i.image.size, i.offset) for i in content.images], content.errors))
            return out

        pages = asyncio.run(collect())

        assert len(pages) == 1
        page_info, images, errors = pages[0]
        assert page_info.source_ref == "scanned.pdf#page=1"
        assert errors == []
        # Half an image pixel per point, so the origin (72, 144) becomes (36, 72).
        assert images == [((100, 50), (36.0, 72.0))]

    def test_recognized_boxes_shifted_onto_page(self, tmp_path, dictionaries, scanned_pdf):
        word = TextFragment(x=5, y=5, width=20, height=10, text="Dev")
        opts = RunOptions(input_path=str(scanned_pdf), input_type="pdf", information_url="u")
        pipeline = _pipeline(tmp_path, dictionaries, opts, recognizer=LayoutRecognizer([word]))

        asyncio.run(pipeline.run("job"))

        staged = load_json(pipeline.paths.stage_fragments_dir / "page_001.json")["fragments"]
        assert [(f["text"], f["x"], f["y"], f["width"], f["height"]) for f in staged] == [
            ("Dev", 41.0, 77.0, 20.0, 10.0)
        ]
        metrics = load_json(pipeline.paths.metrics_json)
        assert metrics["images_total"] == 1
        assert metrics["segments_total"] == 1
