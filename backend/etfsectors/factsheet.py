# factsheet.py
# Pick the most likely fact-sheet document link off a scraped fund page.
from __future__ import annotations

import logging
import re
from typing import Iterable, Optional
from urllib.parse import urljoin, urlparse

logger = logging.getLogger(__name__)

_MD_FACTSHEET_LINK_RE = re.compile(
    r"\[[^\]]*?Fact[\s\-]?Sheet[^\]]*?\]\(\s*<?([^)\s>]+)>?(?:\s+\"[^\"]*\")?\s*\)",
    re.IGNORECASE,
)


def _resolve(href: str, base_url: str) -> Optional[str]:
    href = (href or "").strip()
    if not href:
        return None
    try:
        absolute = urljoin(base_url or "", href)
        parsed = urlparse(absolute)
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    return absolute


def score_link(link: str) -> int:
    """Heuristic fact-sheet score for a single href."""
    lower = (link or "").lower()
    path = lower.split("#", 1)[0].split("?", 1)[0]
    score = 0
    if path.endswith(".pdf"):
        score += 2
    if "factsheet" in lower or "fact-sheet" in lower:
        score += 5
    if "pds" in lower or "product-disclosure" in lower:
        score += 1
    if any(w in lower for w in ("download", "resources", "documents")):
        score += 1
    return score


def find_factsheet_url(markdown: str, links: Iterable[str], base_url: str) -> Optional[str]:
    """Return an absolute fact-sheet URL, or None when nothing looks like one.

    A markdown link labelled "Fact Sheet" wins outright; otherwise the
    highest-scoring href wins (ties go to the first seen).
    """
    for m in _MD_FACTSHEET_LINK_RE.finditer(markdown or ""):
        resolved = _resolve(m.group(1), base_url)
        if resolved:
            return resolved

    best, best_score = None, 0
    for link in links or ():
        if not isinstance(link, str):
            continue
        s = score_link(link)
        if s > best_score:
            resolved = _resolve(link, base_url)
            if resolved:
                best, best_score = resolved, s
    if best:
        logger.debug("[factsheet] picked %s (score %d)", best, best_score)
    return best
