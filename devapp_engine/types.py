from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class Rectangle:
    x: float
    y: float
    width: float
    height: float

    def __post_init__(self) -> None:
        if self.width < 0 or self.height < 0:
            raise ValueError(f"negative rectangle size: {self.width}x{self.height}")

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height


@dataclass(frozen=True)
class TextFragment(Rectangle):
    text: str
    confidence: float | None = None  # 0..100
    choice_count: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TextFragment":
        return cls(
            x=float(data["x"]),
            y=float(data["y"]),
            width=float(data["width"]),
            height=float(data["height"]),
            text=str(data.get("text") or ""),
            confidence=None if data.get("confidence") is None else float(data["confidence"]),
            choice_count=None if data.get("choice_count") is None else int(data["choice_count"]),
        )


@dataclass(frozen=True)
class Page:
    page_index: int  # 0-based
    page_id: str  # e.g. page_003
    source_ref: str  # e.g. report.pdf#page=3

    @property
    def page_number(self) -> int:
        return self.page_index + 1


@dataclass(frozen=True)
class AnchorGroup:
    anchor: TextFragment
    fragments: tuple[TextFragment, ...]


@dataclass(frozen=True)
class DevelopmentRecord:
    application_number: str
    address: str
    description: str
    information_url: str
    comment_url: str
    scrape_date: str  # YYYY-MM-DD
    received_date: str = ""  # YYYY-MM-DD or empty

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Found:
    record: DevelopmentRecord


@dataclass(frozen=True)
class Rejected:
    reason: str
    application_number: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


ExtractionResult = Union[Found, Rejected]
