from __future__ import annotations

from pathlib import Path

import pytest

from devapp_engine.address import AddressDictionaries, AddressNormalizer, load_dictionaries
from devapp_engine.types import TextFragment


def frag(text: str, x: float, y: float, width: float, height: float = 10) -> TextFragment:
    return TextFragment(x=x, y=y, width=width, height=height, text=text)


def record_layout(
    number: str = "123/2017",
    *,
    y: float = 100,
    with_address: bool = True,
    address_tokens: list[tuple[str, float, float]] | None = None,
) -> list[TextFragment]:
    """One report record laid out like the council's "Dev App No." listing.

    ``y`` is the label row; everything else is placed relative to it.
    """
    fragments = [
        frag("Dev", 10, y, 30),
        frag("App", 45, y, 30),
        frag("No.", 80, y, 20),
        frag(number, 110, y, 60),
        frag("1/02/2017", 300, y, 60),
        frag("New", 300, y + 20, 30),
        frag("Dwelling", 335, y + 20, 60),
        frag("Applicant", 300, y + 40, 60),
        frag("Assessment Number", 10, y + 85, 120),
    ]
    if with_address:
        tokens = address_tokens or [
            ("15", 10, 15),
            ("Smith", 30, 40),
            ("RD", 75, 20),
            ("CALLINGTON", 100, 80),
            ("5254", 185, 30),
        ]
        fragments.extend(frag(text, x, y + 60, w) for text, x, w in tokens)
    return fragments


def write_dictionaries(data_dir: Path) -> Path:
    data_dir.mkdir(parents=True, exist_ok=True)
    (data_dir / "suburbnames.txt").write_text(
        "CALLINGTON,Callington\nMURRAY BRIDGE,Murray Bridge SA 5253\n", encoding="utf-8"
    )
    (data_dir / "streetnames.txt").write_text(
        "Smith Road,CALLINGTON\nBremer Range Road,CALLINGTON\nBridge Street,MURRAY BRIDGE\n",
        encoding="utf-8",
    )
    (data_dir / "streetsuffixes.txt").write_text("RD,Road\nST,Street\nAVE,Avenue\n", encoding="utf-8")
    return data_dir


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return write_dictionaries(tmp_path / "data")


@pytest.fixture
def dictionaries(data_dir: Path) -> AddressDictionaries:
    return load_dictionaries(data_dir)


@pytest.fixture
def normalizer(dictionaries: AddressDictionaries) -> AddressNormalizer:
    return AddressNormalizer(dictionaries)
