# extract.py
# Heuristic "sector name + percentage" scanner over scraped markdown / PDF text.
#
# Handles three shapes on a per-line basis:
#   | Financials | 23.4% |        (markdown or PDF-derived table rows)
#   Financials 23.4%              (inline text)
#   Financials: 23.4              (colon separated)
# Table rows are read cell by cell first; anything that does not parse that way
# falls through to the loose per-sector regex.
from __future__ import annotations

import re
from typing import Dict, List, Optional, Tuple

from .models import SectorWeight
from .sectors import KNOWN_SECTOR_NAMES, is_canonical, normalize_sector

_NUMBER = r"\d{1,3}(?:\.\d{1,2})?"

_SECTOR_PATTERNS: Tuple[Tuple[str, "re.Pattern[str]"], ...] = tuple(
    (
        name,
        re.compile(
            r"(?:\|?\s*)(" + re.escape(name) + r")\s*(?:\|?|:?)\s*(" + _NUMBER + r")%?",
            re.IGNORECASE,
        ),
    )
    for name in KNOWN_SECTOR_NAMES
)

_KNOWN_LOWER = frozenset(n.lower() for n in KNOWN_SECTOR_NAMES)
_PCT_CELL_RE = re.compile(r"^(" + _NUMBER + r")\s*%$")
_NUM_CELL_RE = re.compile(r"^(" + _NUMBER + r")$")
_SEPARATOR_ROW_RE = re.compile(r"^\|?[\s:\-|]+\|?$")


def _split_table_row(line: str) -> Optional[List[str]]:
    if line.count("|") < 2 or _SEPARATOR_ROW_RE.match(line):
        return None
    return [c.strip().strip("*_").strip() for c in line.strip().strip("|").split("|")]


def _first_number(cells: List[str]) -> Optional[str]:
    for c in cells:
        m = _PCT_CELL_RE.match(c)
        if m:
            return m.group(1)
    for c in cells:
        m = _NUM_CELL_RE.match(c)
        if m:
            return m.group(1)
    return None


def _match_table_row(line: str) -> List[Tuple[str, str]]:
    """(sector label, number) for every sector cell in a pipe-table row.

    Each sector cell takes the first number among the cells up to the next
    sector cell, so side-by-side panels yield one pair per sector.
    """
    cells = _split_table_row(line)
    if not cells:
        return []
    starts = [i for i, c in enumerate(cells) if c.lower() in _KNOWN_LOWER]
    pairs = []
    for n, idx in enumerate(starts):
        end = starts[n + 1] if n + 1 < len(starts) else len(cells)
        number = _first_number(cells[idx + 1:end])
        if number is not None:
            pairs.append((cells[idx], number))
    return pairs


def _to_fraction(number: str) -> Optional[float]:
    value = float(number) / 100.0
    if value < 0 or value > 1:
        return None
    return value


def extract_sectors(text: str) -> List[SectorWeight]:
    """Pull normalized (sector, weight) pairs out of free text.

    First match per normalized sector wins; labels that do not normalize onto
    the canonical taxonomy are dropped; the result is sorted by descending
    weight. An empty list means "no data found", not an error.
    """
    found: Dict[str, float] = {}

    def _record(raw_label: str, number: str) -> None:
        sector = normalize_sector(raw_label)
        if sector in found:
            return
        weight = _to_fraction(number)
        if weight is None:
            return
        found[sector] = weight

    for line in (text or "").split("\n"):
        trimmed = line.strip()
        if not trimmed:
            continue

        pairs = _match_table_row(trimmed)
        if pairs:
            for label, number in pairs:
                _record(label, number)
            continue

        for _name, pattern in _SECTOR_PATTERNS:
            m = pattern.search(trimmed)
            if m:
                _record(m.group(1), m.group(2))

    out = [SectorWeight(sector=s, weight=w) for s, w in found.items() if is_canonical(s)]
    out.sort(key=lambda sw: sw.weight, reverse=True)
    return out
