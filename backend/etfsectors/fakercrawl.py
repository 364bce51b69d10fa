# fakercrawl.py
# Firecrawl-like wrapper that turns a fund page or fact sheet (HTML or PDF) into
# Markdown plus the list of hyperlinks found on it.
# Deps: requests, pymupdf, beautifulsoup4, markdownify
from __future__ import annotations

import html
import logging
import random
import re
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Union
from urllib.parse import urljoin, urlparse

import pymupdf  # use pymupdf, not fitz
import requests
from bs4 import BeautifulSoup
from markdownify import markdownify as md_from_html

from .pdf_tables import extract_page_tables, tables_to_markdown

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("markdown", "links")
DEFAULT_TIMEOUT_MS = 20_000

ScrapeResult = Dict[str, Union[str, List[str]]]


class FakercrawlFetchError(RuntimeError):
    pass


class FakerCrawl:
    """Lightweight URL → Markdown 'crawler' with a Firecrawl-like interface.

    Public API:
        scrape(url, formats=["markdown", "links"], only_main_content=False, timeout_ms=20000)
            -> {"markdown": "...", "links": [...]}

    One GET per call: no retries, a transient failure surfaces as
    FakercrawlFetchError and the caller moves on to its next fallback.
    """

    def __init__(self, timeout_ms: int = DEFAULT_TIMEOUT_MS, session: Optional[requests.Session] = None):
        self.timeout_ms = timeout_ms
        self.session = session

    # ---------------- Public API ----------------
    def scrape(
        self,
        url: str,
        formats: Iterable[str] = ("markdown",),
        only_main_content: bool = False,
        timeout_ms: Optional[int] = None,
    ) -> ScrapeResult:
        formats = [f.lower() for f in (formats or ())]
        unknown = [f for f in formats if f not in SUPPORTED_FORMATS]
        if not formats or unknown:
            raise ValueError(f"FakerCrawl supports formats {list(SUPPORTED_FORMATS)}; got {formats}.")

        t_ms = self.timeout_ms if timeout_ms is None else timeout_ms
        content_bytes, content_type = self._fetch(url, timeout=max(1.0, t_ms / 1000.0))
        logger.debug("[scrape] %s (%s, %d bytes)", url, content_type or "?", len(content_bytes))

        if self._is_pdf(url, content_type, content_bytes):
            md, links = self._pdf_bytes_to_markdown(content_bytes, source_url=url)
        else:
            md, links = self._html_bytes_to_markdown(
                content_bytes,
                source_url=url,
                only_main_content=only_main_content,
            )

        out: ScrapeResult = {}
        if "markdown" in formats:
            out["markdown"] = md
        if "links" in formats:
            out["links"] = links
        return out

    # ---------------- HTTP fetch & type detection ----------------
    @staticmethod
    def _ua_pool() -> list[str]:
        # Small realistic UA pool to dodge naive bot blocks
        return [
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 13_6) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Safari/605.1.15",
            "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/118.0.0.0 Safari/537.36",
        ]

    @staticmethod
    def _base_headers(user_agent: str, referer: str | None = None) -> dict:
        h = {
            "User-Agent": user_agent,
            "Accept": "text/html,application/pdf;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-AU,en;q=0.9",
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
        }
        if referer:
            h["Referer"] = referer
        return h

    def _fetch(self, url: str, timeout: float = 20.0) -> tuple[bytes, str]:
        """Single GET; raises FakercrawlFetchError on any transport or HTTP failure."""
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise FakercrawlFetchError(f"Unsupported URL: {url!r}")
        referer = f"{parsed.scheme}://{parsed.netloc}/"
        timeout_sec = max(1.0, float(timeout))
        connect_timeout = min(10.0, timeout_sec)
        headers = self._base_headers(random.choice(self._ua_pool()), referer=referer)

        try:
            http = self.session or requests
            resp = http.get(url, timeout=(connect_timeout, timeout_sec), headers=headers)
            resp.raise_for_status()
        except requests.Timeout as e:
            raise FakercrawlFetchError(f"Timed out after {timeout_sec:.0f}s fetching {url}") from e
        except requests.RequestException as e:
            raise FakercrawlFetchError(f"Fetch failed for {url} ({type(e).__name__}: {e})") from e

        ct = (resp.headers.get("Content-Type") or "").lower()
        return resp.content, ct

    @staticmethod
    def _is_pdf(url: str, content_type: str, content: bytes) -> bool:
        if "pdf" in (content_type or ""):
            return True
        if urlparse(url).path.lower().endswith(".pdf"):
            return True
        return content.startswith(b"%PDF")

    # ---------------- Common cleaning ----------------
    @staticmethod
    def _slug(s: str) -> str:
        s = s.strip().lower()
        s = re.sub(r"[’'`]", "", s)
        s = re.sub(r"[^a-z0-9]+", "-", s)
        return s.strip("-")

    @staticmethod
    def _clean_text(t: str) -> str:
        t = t or ""
        t = t.replace("\u00ad", "").replace("\u00a0", " ")  # soft hyphen, nbsp
        t = re.sub(r"[ \t]+\n", "\n", t)                    # trim trailing spaces
        t = re.sub(r"[ \t]{2,}", " ", t)                    # collapse spaces
        t = re.sub(r"\n{3,}", "\n\n", t)
        return html.unescape(t).strip()

    @staticmethod
    def _front_matter(title: str, source_url: str, fmt: str) -> List[str]:
        scraped_at = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        return [
            "---",
            f'title: "{title.replace(chr(34), "")}"' if title else 'title: ""',
            f"source_url: {source_url}",
            f"scraped_at: {scraped_at}",
            f"format: {fmt}",
            "---",
            "",
        ]

    @staticmethod
    def _dedupe_links(links: Iterable[str]) -> List[str]:
        seen, out = set(), []
        for u in links:
            if not u or u in seen:
                continue
            if urlparse(u).scheme not in ("http", "https"):
                continue
            seen.add(u)
            out.append(u)
        return out

    # ---------------- PDF path ----------------
    def _pdf_bytes_to_markdown(self, pdf_bytes: bytes, source_url: str) -> tuple[str, List[str]]:
        try:
            doc = pymupdf.open(stream=pdf_bytes, filetype="pdf")
        except Exception as e:
            raise FakercrawlFetchError(f"Unreadable PDF at {source_url}: {e}") from e

        with doc:
            md_lines: List[str] = []
            links: List[str] = []
            title = (doc.metadata or {}).get("title") or ""
            for pg_idx, page in enumerate(doc, start=1):
                md_lines.append(f"<!-- page: {pg_idx} -->")
                for ln in self._clean_text(page.get_text("text")).splitlines():
                    ln = ln.strip()
                    if ln:
                        md_lines.append(ln)
                md_lines.append("")
                for link in page.get_links():
                    uri = link.get("uri")
                    if uri:
                        links.append(urljoin(source_url, uri))

            tables_md = tables_to_markdown(extract_page_tables(doc, max_pages=5))

        if tables_md:
            md_lines += ["## Extracted Tables (auto)", "", tables_md]

        md = "\n".join(self._front_matter(title, source_url, "pdf") + md_lines).strip() + "\n"
        return md, self._dedupe_links(links)

    # ---------------- HTML path ----------------
    def _html_bytes_to_markdown(self, html_bytes: bytes, source_url: str, only_main_content: bool) -> tuple[str, List[str]]:
        text_html = html_bytes.decode("utf-8", errors="replace")
        soup = BeautifulSoup(text_html, "html.parser")

        # Links come from the whole page: fact sheets often sit in nav or footer.
        links = []
        for a in soup.find_all("a", href=True):
            href = a["href"].strip()
            if href.lower().startswith(("mailto:", "tel:", "javascript:", "#")):
                continue
            try:
                absolute = urljoin(source_url, href)
            except ValueError:
                continue
            a["href"] = absolute
            links.append(absolute)

        # Drop obvious non-content
        for tag in soup.find_all(["script", "style", "noscript", "template", "svg"]):
            tag.decompose()
        for tag in soup.find_all(True, attrs={"aria-hidden": "true"}):
            tag.decompose()

        root = soup
        if only_main_content:
            for tag in soup.find_all(["nav", "header", "footer", "aside"]):
                tag.decompose()
            for sel in ["main article", "article", "main", "[role=main]", "#content", ".content", "#main-content"]:
                candidate = soup.select_one(sel)
                if candidate:
                    root = candidate
                    break

        page_title = ""
        if soup.title and soup.title.string:
            page_title = soup.title.string.strip()
        elif root.find("h1"):
            page_title = root.find("h1").get_text(" ", strip=True)

        md_body = md_from_html(
            str(root),
            heading_style="ATX",          # #, ##, ###
            bullets="-",                  # normalize bullets
            strip=["span"],               # ignore generic spans
        )
        md_body = self._clean_text(md_body)

        # Add slugged IDs to headings (H1–H4) for stable anchors
        out_lines = []
        for line in md_body.splitlines():
            m = re.match(r"^(#{1,4})\s+(.+?)\s*$", line)
            if m:
                hashes, text = m.groups()
                out_lines.append(f"{hashes} {text} " + "{#" + self._slug(text) + "}")
            else:
                out_lines.append(line)

        md = "\n".join(self._front_matter(page_title, source_url, "html") + out_lines).strip() + "\n"
        return md, self._dedupe_links(links)


# ---- Module-level alias, mirroring Firecrawl ergonomics ----
def scrape(url: str, formats: Iterable[str] = ("markdown",), **kwargs) -> ScrapeResult:
    """Module-level convenience call: fakercrawl.scrape(url, formats=['markdown', 'links'])."""
    return FakerCrawl().scrape(url, formats=formats, **kwargs)
