"""Address dictionaries and the address normaliser.

The reference data is three comma-separated text files, one record per line:

- ``streetnames.txt``    ``Street Name,SUBURB``   (a street may be listed for several suburbs)
- ``streetsuffixes.txt`` ``ABBREVIATION,Full Word``
- ``suburbnames.txt``    ``SUBURB,Display Name [STATE POSTCODE]``

They are loaded once into an :class:`AddressDictionaries` object and never
mutated afterwards.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterator, Mapping

from .fuzzy import DEFAULT_MAX_DISTANCE, closest_match

logger = logging.getLogger(__name__)

STREET_NAMES_FILE = "streetnames.txt"
STREET_SUFFIXES_FILE = "streetsuffixes.txt"
SUBURB_NAMES_FILE = "suburbnames.txt"

_POSTCODE_RE = re.compile(r"[0-9]{4}")
_STATE_POSTCODE_RE = re.compile(r"^(.*?)\s+([A-Z]{2,3})\s+([0-9]{4})$")

# Damaged trailing postcodes seen in reports (for example "Bremer Range RD CALLINGTON 0").
DEFAULT_DAMAGED_POSTCODES = ("0", "O", "D")


@dataclass(frozen=True)
class SuburbEntry:
    display: str
    state: str = ""
    postcode: str = ""


@dataclass(frozen=True)
class AddressDictionaries:
    suburbs: Mapping[str, SuburbEntry]  # lowercased suburb name -> entry
    streets: Mapping[str, tuple[str, ...]]  # canonical street name -> suburbs
    suffixes: Mapping[str, str]  # lowercased abbreviation -> full word
    suburb_keys: tuple[str, ...] = field(init=False)
    street_keys: tuple[str, ...] = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "suburbs", MappingProxyType(dict(self.suburbs)))
        object.__setattr__(self, "streets", MappingProxyType(dict(self.streets)))
        object.__setattr__(self, "suffixes", MappingProxyType(dict(self.suffixes)))
        object.__setattr__(self, "suburb_keys", tuple(self.suburbs.keys()))
        object.__setattr__(self, "street_keys", tuple(self.streets.keys()))


def parse_suburb_value(value: str) -> SuburbEntry:
    value = value.strip()
    m = _STATE_POSTCODE_RE.match(value)
    if m:
        return SuburbEntry(display=m.group(1).strip(), state=m.group(2), postcode=m.group(3))
    return SuburbEntry(display=value)


def _iter_pairs(path: Path) -> Iterator[tuple[str, str]]:
    text = path.read_text(encoding="utf-8").replace("\r", "")
    for lineno, line in enumerate(text.strip().split("\n"), start=1):
        if not line.strip():
            continue
        parts = line.split(",", 1)
        if len(parts) != 2:
            logger.warning("%s:%d: expected two comma-separated values: %r", path.name, lineno, line)
            continue
        yield parts[0].strip(), parts[1].strip()


def load_dictionaries(data_dir: str | Path) -> AddressDictionaries:
    """Load the three reference tables. A missing file raises FileNotFoundError."""
    base = Path(data_dir)

    streets: dict[str, list[str]] = {}
    for street, suburb in _iter_pairs(base / STREET_NAMES_FILE):
        streets.setdefault(street, []).append(suburb)

    suffixes: dict[str, str] = {}
    for abbreviation, word in _iter_pairs(base / STREET_SUFFIXES_FILE):
        suffixes[abbreviation.lower()] = word

    suburbs: dict[str, SuburbEntry] = {}
    for suburb, value in _iter_pairs(base / SUBURB_NAMES_FILE):
        suburbs[suburb.lower()] = parse_suburb_value(value)

    logger.info(
        "Loaded %d street names, %d street suffixes and %d suburb names from %s",
        len(streets),
        len(suffixes),
        len(suburbs),
        base,
    )
    return AddressDictionaries(
        suburbs=suburbs,
        streets={k: tuple(v) for k, v in streets.items()},
        suffixes=suffixes,
    )


@dataclass(frozen=True)
class NormalizedAddress:
    text: str
    suburb: SuburbEntry | None = None
    street_matched: bool = False
    postcode: str = ""
    street_suburbs: tuple[str, ...] = ()

    @property
    def recognized(self) -> bool:
        return self.suburb is not None


@dataclass
class AddressNormalizer:
    dictionaries: AddressDictionaries
    address_cfg: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._max_distance = int(self.address_cfg.get("max_edit_distance", DEFAULT_MAX_DISTANCE))
        self._max_suburb_tokens = int(self.address_cfg.get("max_suburb_tokens", 4))
        self._damaged_postcodes = set(self.address_cfg.get("damaged_postcodes", DEFAULT_DAMAGED_POSTCODES))
        self._append_state_postcode = bool(self.address_cfg.get("append_state_postcode", False))

    def _match(self, text: str, keys: tuple[str, ...]) -> str | None:
        return closest_match(text, keys, max_distance=self._max_distance)

    def _split_postcode(self, tokens: list[str]) -> tuple[list[str], str]:
        if not tokens:
            return tokens, ""
        last = tokens[-1]
        if _POSTCODE_RE.fullmatch(last):
            return tokens[:-1], last
        if last in self._damaged_postcodes:
            return tokens[:-1], ""
        return tokens, ""

    def _find_suburb(self, tokens: list[str]) -> tuple[list[str], SuburbEntry | None]:
        for count in range(1, min(self._max_suburb_tokens, len(tokens)) + 1):
            key = self._match(" ".join(tokens[-count:]), self.dictionaries.suburb_keys)
            if key is not None:
                return tokens[:-count], self.dictionaries.suburbs[key]
        return tokens, None

    def _find_street(self, tokens: list[str], suffix: str) -> tuple[str, bool, tuple[str, ...]]:
        # Leading tokens that stop a match (house or lot numbers, stray marks)
        # are dropped one at a time; at least one name token is always kept.
        full = " ".join(tokens + [suffix]).strip()
        for start in range(max(1, len(tokens))):
            candidate = " ".join(tokens[start:] + [suffix]).strip()
            if not candidate:
                break
            key = self._match(candidate, self.dictionaries.street_keys)
            if key is not None:
                return key, True, self.dictionaries.streets[key]
        return full, False, ()

    def _display(self, suburb: SuburbEntry) -> str:
        if self._append_state_postcode and suburb.state:
            return f"{suburb.display} {suburb.state} {suburb.postcode}".strip()
        return suburb.display

    def normalize(self, address: str) -> NormalizedAddress:
        tokens = address.split()
        if not tokens:
            return NormalizedAddress(text="")

        tokens, postcode = self._split_postcode(tokens)
        tokens, suburb = self._find_suburb(tokens)
        if suburb is None:
            return NormalizedAddress(text=" ".join(tokens), postcode=postcode)

        abbreviation = tokens.pop() if tokens else ""
        suffix = self.dictionaries.suffixes.get(abbreviation.lower(), abbreviation)
        street, matched, street_suburbs = self._find_street(tokens, suffix)

        logger.debug(
            "Address %r: street=%r suffix=%r suburb=%r street_suburbs=%r postcode=%r",
            address,
            street,
            suffix,
            suburb.display,
            street_suburbs,
            postcode,
        )

        text = (street + (", " if street else "") + self._display(suburb)).strip()
        return NormalizedAddress(
            text=text,
            suburb=suburb,
            street_matched=matched,
            postcode=postcode,
            street_suburbs=street_suburbs,
        )
