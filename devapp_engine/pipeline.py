from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Sequence

from .address import AddressDictionaries, AddressNormalizer
from .assembler import FragmentAssembler
from .config import EngineConfig
from .fields import FieldExtractor
from .job import JobPaths, empty_metrics, record_error, write_final
from .ocr import OCRRecognizer, Recognizer
from .page_provider import PageContent, PageProvider, RateLimitPolicy, load_mocked_fragments
from .records import AnchorLabel, group_records
from .store import RecordStore
from .types import Found, Page, Rejected, TextFragment
from .utils import write_json

logger = logging.getLogger(__name__)


@dataclass
class RunOptions:
    input_path: str
    input_type: str
    information_url: str
    comment_url: str = ""
    mocked_fragments_dir: str | None = None


@dataclass
class PageOutcome:
    records: list[Found]
    rejections: list[tuple[Rejected, TextFragment]]
    anchors: int


def extract_page_records(
    fragments: Sequence[TextFragment],
    extractor: FieldExtractor,
    label: AnchorLabel | None = None,
    raise_factor: float = 2.0,
) -> PageOutcome:
    """Group one page's fragments by anchor and extract a record from each group."""
    groups = group_records(fragments, label, raise_factor=raise_factor)
    found: list[Found] = []
    rejected: list[tuple[Rejected, TextFragment]] = []
    for group in groups:
        result = extractor.extract(group)
        if isinstance(result, Found):
            found.append(result)
        else:
            rejected.append((result, group.anchor))
    return PageOutcome(records=found, rejections=rejected, anchors=len(groups))


def review_item(page: Page, rejection: Rejected, anchor: TextFragment) -> dict[str, Any]:
    return {
        "page_id": page.page_id,
        "page_number": page.page_number,
        "source_ref": page.source_ref,
        "review_reason": rejection.reason,
        "application_number": rejection.application_number,
        "anchor": {"text": anchor.text, "x": anchor.x, "y": anchor.y},
        **rejection.details,
    }


class EnginePipeline:
    def __init__(
        self,
        paths: JobPaths,
        cfg: EngineConfig,
        opts: RunOptions,
        dictionaries: AddressDictionaries,
        recognizer: Recognizer | None = None,
        store: RecordStore | None = None,
    ):
        self.paths = paths
        self.cfg = cfg
        self.opts = opts
        self.store = store

        self.page_provider = PageProvider(
            input_path=opts.input_path,
            input_type=opts.input_type,
            rate_limit=RateLimitPolicy.from_cfg(cfg.source),
        )
        self.assembler = FragmentAssembler(
            recognizer=recognizer if recognizer is not None else OCRRecognizer.from_cfg(cfg.ocr),
            paths=paths,
            segment_cfg=cfg.segment,
        )
        self.label = AnchorLabel.from_cfg(cfg.anchors)
        self.raise_factor = float(cfg.anchors.get("raise_factor", 2.0))
        self.extractor = FieldExtractor(
            normalizer=AddressNormalizer(dictionaries, cfg.address),
            information_url=opts.information_url,
            comment_url=opts.comment_url or str(cfg.output.get("comment_url", "")),
            fields_cfg=cfg.fields,
        )

    async def page_fragments(self, content: PageContent) -> list[TextFragment]:
        page = content.page
        if self.opts.mocked_fragments_dir:
            mocked = load_mocked_fragments(self.opts.mocked_fragments_dir, page)
            if mocked is not None:
                return mocked
            record_error(self.paths, page_id=page.page_id, stage="mocked_fragments", message="mocked_fragments_missing")

        if content.words is not None:
            return list(content.words)

        fragments: list[TextFragment] = []
        for item in content.images:
            fragments.extend(await self.assembler.assemble_image(page, item.image, item.offset))
        return fragments

    async def run(self, job_id: str) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        seen_numbers: set[str] = set()
        review_items: list[dict[str, Any]] = []
        metrics = empty_metrics()

        job_meta = {
            "job_id": job_id,
            "input": {"type": self.opts.input_type, "path": self.opts.input_path},
            "information_url": self.extractor.information_url,
            "created_at": metrics["created_at"],
        }
        write_fragments = bool(self.cfg.output.get("write_fragments", True))

        async for content in self.page_provider.iter_pages():
            with content:
                page = content.page
                metrics["pages_total"] += 1
                try:
                    for message in content.errors:
                        record_error(self.paths, page_id=page.page_id, stage="page", message=message)
                    fragments = await self.page_fragments(content)
                    if write_fragments:
                        write_json(
                            self.paths.stage_fragments_dir / f"{page.page_id}.json",
                            {"page_id": page.page_id, "fragments": [f.to_dict() for f in fragments]},
                        )
                    metrics["fragments_total"] += len(fragments)

                    outcome = extract_page_records(fragments, self.extractor, self.label, self.raise_factor)
                    metrics["anchors_total"] += outcome.anchors

                    for found in outcome.records:
                        number = found.record.application_number
                        if number in seen_numbers:
                            logger.info("[%s] skipping repeated application %s", page.page_id, number)
                            metrics["records_duplicate"] += 1
                            continue
                        seen_numbers.add(number)
                        records.append({**found.record.to_dict(), "page_id": page.page_id})
                        if self.store is not None and self.store.upsert(found.record):
                            metrics["records_inserted"] += 1

                    for rejection, anchor in outcome.rejections:
                        review_items.append(review_item(page, rejection, anchor))
                        record_error(
                            self.paths,
                            page_id=page.page_id,
                            stage="extract",
                            message=rejection.reason,
                            level=logging.INFO,
                            page_number=page.page_number,
                            application_number=rejection.application_number,
                        )

                    metrics["pages_processed"] += 1
                except Exception as e:
                    record_error(self.paths, page_id=page.page_id, stage="page", message=f"{type(e).__name__}: {e}")

        stats = self.assembler.stats
        metrics["images_total"] = stats.images
        metrics["segments_total"] = stats.segments
        metrics["ocr_failures"] = stats.failures
        metrics["records_total"] = len(records)
        metrics["records_rejected"] = len(review_items)

        write_final(self.paths, job_meta=job_meta, records=records, review_items=review_items, metrics=metrics)
        logger.info("Parsed %d development application(s) from %s", len(records), self.opts.input_path)
        return records
