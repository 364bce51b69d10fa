# search.py
# Candidate discovery: scrape the DuckDuckGo HTML results page for fund pages
# and fact sheets when the direct page and its fact sheet came up empty.
from __future__ import annotations

import logging
from typing import List, Optional
from urllib.parse import parse_qs, parse_qsl, urlencode, urljoin, urlparse, urlunparse

import requests
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

SEARCH_ENDPOINT = "https://html.duckduckgo.com/html/"
SEARCH_ENGINE_HOSTS = ("duckduckgo.com",)
SEARCH_SUFFIX = "ETF sector breakdown fact sheet"
EXCHANGE_PREFIX = "ASX"

# primary layout first, then the legacy / lite layout
RESULT_SELECTORS = ("a.result__a", "a.result-link")

_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def build_search_query(ticker: Optional[str], target_url: Optional[str] = None) -> str:
    """Exchange-qualified ticker when known, else the target page's host."""
    if ticker:
        return f"{EXCHANGE_PREFIX}:{ticker.strip().upper()} {SEARCH_SUFFIX}"
    host = ""
    if target_url:
        try:
            host = urlparse(target_url).hostname or ""
        except ValueError:
            host = ""
    return f"{host} {SEARCH_SUFFIX}".strip()


def decode_redirect(href: str) -> Optional[str]:
    """Unwrap ``//duckduckgo.com/l/?uddg=<encoded>`` style links; plain links pass through."""
    href = (href or "").strip()
    if not href:
        return None
    try:
        absolute = urljoin("https://duckduckgo.com/", href)
        parsed = urlparse(absolute)
    except ValueError:
        return None
    if _is_search_engine_host(parsed.hostname):
        target = parse_qs(parsed.query).get("uddg")
        if target and target[0]:
            return target[0]
    return absolute


def strip_tracking(url: str) -> str:
    """Drop ``utm_*`` query parameters, keep everything else in order."""
    parsed = urlparse(url)
    if not parsed.query:
        return url
    pairs = parse_qsl(parsed.query, keep_blank_values=True)
    kept = [(k, v) for k, v in pairs if not k.lower().startswith("utm_")]
    if len(kept) == len(pairs):
        return url
    return urlunparse(parsed._replace(query=urlencode(kept)))


def _is_search_engine_host(host: Optional[str]) -> bool:
    host = (host or "").lower()
    return any(host == h or host.endswith("." + h) for h in SEARCH_ENGINE_HOSTS)


def parse_results_html(page_html: str) -> List[str]:
    """Ranked, cleaned, de-duplicated result URLs from a results page."""
    soup = BeautifulSoup(page_html or "", "html.parser")
    anchors = []
    for sel in RESULT_SELECTORS:
        anchors.extend(soup.select(sel))

    out: List[str] = []
    seen = set()
    for a in anchors:
        raw = (a.get("href") or "").strip()
        if raw.lower().startswith(("mailto:", "tel:")):
            continue
        url = decode_redirect(raw)
        if not url:
            continue
        try:
            parsed = urlparse(url)
        except ValueError:
            continue
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            continue
        if _is_search_engine_host(parsed.hostname):
            continue
        try:
            cleaned = strip_tracking(url)
        except ValueError:
            continue
        if cleaned in seen:
            continue
        seen.add(cleaned)
        out.append(cleaned)
    return out


def search_candidates(
    query: str,
    *,
    endpoint: str = SEARCH_ENDPOINT,
    timeout: float = 20.0,
    session: Optional[requests.Session] = None,
) -> List[str]:
    """Query the search endpoint; a non-2xx answer is an empty list, not an error.

    Transport failures (timeouts, DNS, refused connections) propagate as
    ``requests.RequestException`` so the caller can log them as a failed stage.
    """
    query = (query or "").strip()
    if not query:
        return []
    http = session or requests
    resp = http.get(
        endpoint,
        params={"q": query},
        headers={"User-Agent": _USER_AGENT, "Accept-Language": "en-AU,en;q=0.9"},
        timeout=timeout,
    )
    if not 200 <= resp.status_code < 300:
        logger.warning("[search] %s returned HTTP %s for %r", endpoint, resp.status_code, query)
        return []
    urls = parse_results_html(resp.text)
    logger.info("[search] %d candidates for %r", len(urls), query)
    return urls
