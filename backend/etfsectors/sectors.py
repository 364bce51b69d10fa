# sectors.py
# Canonical sector taxonomy and the alias table that folds provider labels onto it.
from __future__ import annotations

from types import MappingProxyType
from typing import Mapping, Tuple

SECTORS: Tuple[str, ...] = (
    "Technology",
    "Consumer Discretionary",
    "Communications",
    "Materials",
    "Industrials",
    "Health Care",
    "Consumer Staples",
    "Financials",
    "Utilities",
    "Real Estate",
    "Energy",
    "Cash",
)

SECTOR_ALIASES: Mapping[str, str] = MappingProxyType({
    "Information Technology": "Technology",
    "Tech": "Technology",
    "Consumer Cyclical": "Consumer Discretionary",
    "Communication Services": "Communications",
    "Telecommunications": "Communications",
    "Basic Materials": "Materials",
    "Industrial": "Industrials",
    "Healthcare": "Health Care",
    "Consumer Defensive": "Consumer Staples",
    "Financial Services": "Financials",
    "Real Estate": "Real Estate",
    "Energy": "Energy",
    "Utilities": "Utilities",
    "Cash": "Cash",
    "Liquidity": "Cash",
    "Others": "Others",  # not in SECTORS; dropped by the extractor
})

_ALIASES_LOWER = MappingProxyType({k.lower(): v for k, v in SECTOR_ALIASES.items()})
_SECTORS_LOWER = MappingProxyType({s.lower(): s for s in SECTORS})

# Every label the extractor scans for, canonical names first.
KNOWN_SECTOR_NAMES: Tuple[str, ...] = SECTORS + tuple(
    k for k in SECTOR_ALIASES if k not in SECTORS
)


def normalize_sector(raw: str) -> str:
    """Map a raw provider label onto the canonical taxonomy.

    Unknown labels come back trimmed but otherwise unchanged; callers filter
    them with ``is_canonical``.
    """
    cleaned = (raw or "").strip()
    if cleaned in SECTOR_ALIASES:
        return SECTOR_ALIASES[cleaned]
    lower = cleaned.lower()
    if lower in _ALIASES_LOWER:
        return _ALIASES_LOWER[lower]
    if lower in _SECTORS_LOWER:
        return _SECTORS_LOWER[lower]
    return cleaned


def is_canonical(sector: str) -> bool:
    return sector in _SECTORS_LOWER.values()
