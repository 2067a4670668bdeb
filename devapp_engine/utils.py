from __future__ import annotations

import json
import re
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

_CONDENSE_RE = re.compile(r"[\s.,\-_]")
_SPACES_RE = re.compile(r"\s\s+")
_DATE_RE = re.compile(r"(\d{1,2})/(\d{2})/(\d{4})")

LIGATURES = {
    "ﬀ": "ff",
    "ﬁ": "fi",
    "ﬂ": "fl",
    "ﬃ": "ffi",
    "ﬄ": "ffl",
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def today_iso() -> str:
    return date.today().isoformat()


def ensure_dir(path: str | Path) -> None:
    Path(path).mkdir(parents=True, exist_ok=True)


def write_json(path: str | Path, data: Any) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)


def append_jsonl(path: str | Path, obj: dict[str, Any]) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        f.write(json.dumps(obj, ensure_ascii=False) + "\n")


def load_json(path: str | Path) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def condense_text(text: str | None) -> str:
    """Lowercase text with whitespace and ``. , - _`` removed ("Dev App No." -> "devappno")."""
    if not text:
        return ""
    return _CONDENSE_RE.sub("", text.strip()).lower()


def collapse_spaces(text: str) -> str:
    return _SPACES_RE.sub(" ", text.strip())


def expand_ligatures(text: str) -> str:
    for glyph, letters in LIGATURES.items():
        text = text.replace(glyph, letters)
    return text


def join_text(parts: list[str]) -> str:
    return collapse_spaces(" ".join(parts))


def parse_strict_date(text: str) -> date | None:
    """Parse ``D/MM/YYYY`` (day may be one or two digits, month exactly two)."""
    m = _DATE_RE.fullmatch(text.strip())
    if not m:
        return None
    day, month, year = (int(g) for g in m.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_iso_date(text: str) -> date | None:
    try:
        return date.fromisoformat(text.strip())
    except ValueError:
        return None
