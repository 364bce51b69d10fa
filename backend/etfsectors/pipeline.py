# pipeline.py
"""
Source resolution for one ETF: ticker/URL in, best sector breakdown out.

Stages run strictly in order, each one only when everything before it came up
empty:

1. resolve the target URL (ticker registry, else the caller's URL)
2. ``direct``               scrape the target page and extract sectors
3. ``factsheet``            follow the page's fact-sheet link and extract
4. ``search``               web search for alternate pages, then for each of the
   ``candidate``            top N candidates repeat 2-3
   ``candidate-factsheet``

Every stage returns its own attempts; ``resolve`` concatenates them into the
result's log. A stage that fails (network error, timeout, unreadable PDF) is
recorded and the next fallback runs; only an unknown ticker or a missing URL
end a resolution before any network call.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable, List, Mapping, Optional, Protocol, Tuple
from urllib.parse import urlencode

from .config import Settings, load_settings
from .extract import extract_sectors
from .factsheet import find_factsheet_url
from .fakercrawl import FakerCrawl, ScrapeResult
from .models import (
    STAGE_CANDIDATE,
    STAGE_CANDIDATE_FACTSHEET,
    STAGE_DIRECT,
    STAGE_FACTSHEET,
    STAGE_SEARCH,
    ResolutionResult,
    SourceAttempt,
    StageOutcome,
)
from .registry import ETF_URLS, normalize_ticker
from .search import SEARCH_ENDPOINT, build_search_query, search_candidates

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Resolution cancelled."


class Scraper(Protocol):
    def scrape(self, url: str, formats: Iterable[str] = ..., only_main_content: bool = ...,
               timeout_ms: Optional[int] = ...) -> ScrapeResult: ...


SearchFn = Callable[[str], List[str]]


def _is_cancelled(cancel: Optional[threading.Event]) -> bool:
    return cancel is not None and cancel.is_set()


class SectorResolver:
    """Runs the direct → factsheet → search-candidate fallback chain.

    ``scraper`` and ``search`` are the fetch and web-search collaborators;
    tests swap in fakes, production uses FakerCrawl and DuckDuckGo.
    """

    def __init__(
        self,
        scraper: Optional[Scraper] = None,
        search: Optional[SearchFn] = None,
        *,
        registry: Mapping[str, str] = ETF_URLS,
        timeout_ms: int = 20_000,
        max_candidates: int = 5,
        search_endpoint: str = SEARCH_ENDPOINT,
        prefer_explicit_url: bool = False,
    ):
        self.timeout_ms = timeout_ms
        self.scraper = scraper or FakerCrawl(timeout_ms=timeout_ms)
        self.search_endpoint = search_endpoint
        self.search = search or (
            lambda q: search_candidates(q, endpoint=search_endpoint, timeout=timeout_ms / 1000.0)
        )
        self.registry = registry
        self.max_candidates = max_candidates
        self.prefer_explicit_url = prefer_explicit_url

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "SectorResolver":
        return cls(
            timeout_ms=settings.fetch_timeout_ms,
            max_candidates=settings.max_candidates,
            search_endpoint=settings.search_endpoint,
            **kwargs,
        )

    # ---------------- Target URL ----------------
    def resolve_target(self, ticker: Optional[str], url: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
        """(target_url, error). Known tickers win over an explicit URL unless
        ``prefer_explicit_url`` is set."""
        url = (url or "").strip() or None
        clean = normalize_ticker(ticker)
        if clean:
            mapped = self.registry.get(clean)
            if mapped and not (self.prefer_explicit_url and url):
                return mapped, None
            if not mapped and not url:
                return None, f'Unknown ticker "{ticker.strip()}". Please provide a Direct URL.'
        if not url:
            return None, "No URL provided."
        return url, None

    # ---------------- Stages ----------------
    def _scrape_stage(self, url: str, stage: str) -> StageOutcome:
        try:
            res = self.scraper.scrape(url, formats=["markdown", "links"], timeout_ms=self.timeout_ms)
        except Exception as e:
            logger.warning("[%s] %s failed: %s", stage, url, e)
            return StageOutcome(
                attempts=[SourceAttempt(stage, url, False, error=str(e) or type(e).__name__)],
                url=url,
            )

        markdown = (res or {}).get("markdown") or ""
        links = [l for l in ((res or {}).get("links") or []) if isinstance(l, str)]
        if not markdown.strip():
            logger.info("[%s] %s: no content", stage, url)
            return StageOutcome(attempts=[SourceAttempt(stage, url, False, note="no content")], links=links, url=url)

        sectors = extract_sectors(markdown)
        note = f"{len(sectors)} sectors" if sectors else "no sector data found"
        logger.info("[%s] %s: %s", stage, url, note)
        return StageOutcome(
            attempts=[SourceAttempt(stage, url, bool(sectors), note=note)],
            sectors=sectors,
            markdown=markdown,
            links=links,
            url=url,
        )

    def _factsheet_stage(self, page: StageOutcome, stage: str) -> StageOutcome:
        if not page.url:
            return StageOutcome()
        pdf_url = find_factsheet_url(page.markdown, page.links, page.url)
        if not pdf_url or pdf_url == page.url:
            logger.info("[%s] no fact sheet link on %s", stage, page.url)
            return StageOutcome()
        return self._scrape_stage(pdf_url, stage)

    def _try_page(
        self,
        url: str,
        page_stage: str,
        factsheet_stage: str,
        cancel: Optional[threading.Event],
    ) -> Tuple[List[SourceAttempt], Optional[StageOutcome]]:
        """Scrape one page, then its fact sheet; returns (attempts, outcome with sectors or None)."""
        page = self._scrape_stage(url, page_stage)
        attempts = list(page.attempts)
        if page.sectors:
            return attempts, page
        if _is_cancelled(cancel):
            return attempts, None
        sheet = self._factsheet_stage(page, factsheet_stage)
        attempts.extend(sheet.attempts)
        return attempts, (sheet if sheet.sectors else None)

    def _search_stage(self, query: str, tried: Iterable[str]) -> Tuple[List[SourceAttempt], List[str]]:
        search_url = f"{self.search_endpoint}?{urlencode({'q': query})}"
        try:
            found = self.search(query) or []
        except Exception as e:
            logger.warning("[search] %r failed: %s", query, e)
            return [SourceAttempt(STAGE_SEARCH, search_url, False, error=str(e) or type(e).__name__)], []

        seen = set(tried)
        fresh = []
        for c in found:
            if c in seen:
                continue
            seen.add(c)
            fresh.append(c)
        picked = fresh[: self.max_candidates]
        note = f"{len(found)} candidates, trying {len(picked)}"
        return [SourceAttempt(STAGE_SEARCH, search_url, False, note=note)], picked

    # ---------------- Orchestration ----------------
    def resolve(
        self,
        ticker: Optional[str] = None,
        url: Optional[str] = None,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> ResolutionResult:
        target, error = self.resolve_target(ticker, url)
        if error:
            return ResolutionResult(success=False, error=error)

        log: List[SourceAttempt] = []

        def _success(outcome: StageOutcome) -> ResolutionResult:
            return ResolutionResult(
                success=True,
                sectors=tuple(outcome.sectors),
                source_url=outcome.url,
                attempts=tuple(log),
            )

        def _failure(message: str) -> ResolutionResult:
            return ResolutionResult(success=False, source_url=target, attempts=tuple(log), error=message)

        if _is_cancelled(cancel):
            return _failure(CANCELLED_MESSAGE)

        attempts, hit = self._try_page(target, STAGE_DIRECT, STAGE_FACTSHEET, cancel)
        log.extend(attempts)
        if hit:
            return _success(hit)
        if _is_cancelled(cancel):
            return _failure(CANCELLED_MESSAGE)

        query = build_search_query(normalize_ticker(ticker) or None, target)
        attempts, candidates = self._search_stage(query, tried=[a.url for a in log])
        log.extend(attempts)

        for candidate in candidates:
            if _is_cancelled(cancel):
                return _failure(CANCELLED_MESSAGE)
            attempts, hit = self._try_page(candidate, STAGE_CANDIDATE, STAGE_CANDIDATE_FACTSHEET, cancel)
            log.extend(attempts)
            if hit:
                return _success(hit)

        return _failure(
            "Could not find sector breakdown data on the page, its linked Fact Sheet, "
            f"or {len(candidates)} web search candidate(s) for {target}."
        )


_default_resolver: Optional[SectorResolver] = None
_default_lock = threading.Lock()


def default_resolver() -> SectorResolver:
    """Process-wide resolver built from the environment on first use."""
    global _default_resolver
    with _default_lock:
        if _default_resolver is None:
            _default_resolver = SectorResolver.from_settings(load_settings())
        return _default_resolver


def resolve(
    ticker: Optional[str] = None,
    url: Optional[str] = None,
    *,
    cancel: Optional[threading.Event] = None,
) -> ResolutionResult:
    return default_resolver().resolve(ticker, url, cancel=cancel)
