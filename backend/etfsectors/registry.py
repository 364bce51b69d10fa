# registry.py
# Static ticker → product page table and the default portfolio sections.
from __future__ import annotations

import re
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

REGIONAL_SUFFIX_RE = re.compile(r"\.(AX|ASX)$", re.IGNORECASE)

ETF_URLS: Mapping[str, str] = MappingProxyType({
    # Vanguard
    "VAP": "https://www.vanguard.com.au/personal/investments/products/VAP/overview",
    "VGS": "https://www.vanguard.com.au/personal/investments/products/VGS/overview",
    "VEU": "https://www.vanguard.com.au/personal/investments/products/VEU/overview",
    "VTS": "https://www.vanguard.com.au/personal/investments/products/VTS/overview",
    "VEQ": "https://www.vanguard.com.au/personal/investments/products/VEQ/overview",

    # State Street (SPDR)
    "DJRE": "https://www.ssga.com/au/en_gb/individual/etfs/funds/spdr-dow-jones-global-real-estate-esg-select-etf-djre",

    # Magellan
    "MGOC": "https://www.magellangroup.com.au/funds/magellan-global-fund-open-class-asx-mgoc/",
    "OPPT": "https://www.magellangroup.com.au/funds/magellan-global-opportunities-fund-oppt/",
    "MICH": "https://www.magellangroup.com.au/funds/magellan-infrastructure-currency-hedged-fund-mich/",

    # Intelligent Investor
    "INIF": "https://www.intelligentinvestor.com.au/invest-with-us/income-fund/inif",
    "IIGF": "https://www.intelligentinvestor.com.au/invest-with-us/growth-fund/iigf",
    "IISV": "https://www.intelligentinvestor.com.au/invest-with-us/select-value-share-fund/iisv",

    # iShares (BlackRock)
    "IEM": "https://www.blackrock.com/au/individual/products/251341/ishares-msci-emerging-markets-etf",

    # BetaShares
    "A200": "https://www.betashares.com.au/fund/australia-200-etf/",
    "F100": "https://www.betashares.com.au/fund/ftse-100-etf/",
    "INCM": "https://www.betashares.com.au/fund/global-income-leaders-etf/",
    "ASIA": "https://www.betashares.com.au/fund/asia-technology-tigers-etf/",

    # L1 Capital
    "LSF": "https://l1capital.com.au/l1-long-short-fund-limited-asx-lsf/",

    # Wilson Asset Management
    "WGB": "https://www.wilsonassetmanagement.com.au/listed-investment-companies/wam-global/",
})


def normalize_ticker(ticker: Optional[str]) -> str:
    """'vgs.ax ' -> 'VGS'."""
    return REGIONAL_SUFFIX_RE.sub("", (ticker or "").strip().upper()).strip()


def lookup_ticker(ticker: Optional[str]) -> Optional[str]:
    clean = normalize_ticker(ticker)
    return ETF_URLS.get(clean) if clean else None


# Default portfolio sections. ``sum`` is the holding's market value in AUD
# (no FX conversion) and drives the value-weighted sector totals.
PORTFOLIO_DEFAULTS: Mapping[str, Mapping[str, object]] = MappingProxyType({
    "cba": MappingProxyType({
        "title": "CBA",
        "description": "ETFs held via CBA",
        "etfs": (
            {"ticker": "VAP", "sum": 28382, "url": "https://www.vanguard.com.au/personal/invest-with-us/etf?portId=8206"},
            {"ticker": "VGS", "sum": 12426, "url": "https://www.vanguard.com.au/personal/invest-with-us/etf?portId=8212"},
            {"ticker": "VEU", "sum": 11624, "url": "https://www.vanguard.com.au/personal/invest-with-us/etf?portId=0991"},
            {"ticker": "VTS", "sum": 23709, "url": "https://www.vanguard.com.au/personal/invest-with-us/etf?portId=0970"},
            {"ticker": "A200", "sum": 30747, "url": "https://www.betashares.com.au/fund/australia-200-etf/"},
            {"ticker": "INCM", "sum": 12253, "url": "https://www.betashares.com.au/fund/global-income-leaders-etf/"},
            {"ticker": "ASIA", "sum": 10733, "url": "https://www.betashares.com.au/fund/asia-technology-tigers-etf/"},
            {"ticker": "VEQ", "sum": 12466, "url": "https://www.vanguard.com.au/personal/invest-with-us/etf?portId=8214"},
        ),
    }),
    "nab": MappingProxyType({
        "title": "NAB",
        "description": "ETFs held via NAB",
        "etfs": (),
    }),
})


def portfolio_section(section_id: str) -> Tuple[dict, ...]:
    """Copies of a default section's rows; KeyError for an unknown section."""
    section = PORTFOLIO_DEFAULTS[section_id]
    return tuple(dict(row) for row in section["etfs"])
