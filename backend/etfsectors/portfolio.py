# portfolio.py
# Resolve a list of ETF holdings with a bounded worker pool and roll their
# sector weights up into value-weighted portfolio totals.
from __future__ import annotations

import logging
import math
import re
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .models import ResolutionResult
from .pipeline import CANCELLED_MESSAGE
from .sectors import SECTORS

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 3

ResolveFn = Callable[..., ResolutionResult]


def parse_aud_number(value: Any) -> float:
    """'$12,345' -> 12345.0; blanks and junk -> 0.0."""
    cleaned = re.sub(r"[$,\s]", "", "" if value is None else str(value))
    if not cleaned:
        return 0.0
    try:
        n = float(cleaned)
    except ValueError:
        return 0.0
    return n if math.isfinite(n) else 0.0


@dataclass(frozen=True)
class PortfolioRow:
    ticker: str = ""
    url: str = ""
    value: float = 0.0
    label: str = ""
    enabled: bool = True

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "PortfolioRow":
        return cls(
            ticker=str(d.get("ticker") or "").strip(),
            url=str(d.get("url") or "").strip(),
            value=parse_aud_number(d.get("sum", d.get("value"))),
            label=str(d.get("label") or "").strip(),
            enabled=bool(d.get("enabled", True)),
        )

    @property
    def is_runnable(self) -> bool:
        return self.enabled and bool(self.ticker or self.url)

    def to_dict(self) -> Dict[str, Any]:
        return {"ticker": self.ticker, "url": self.url, "sum": self.value, "label": self.label}


@dataclass(frozen=True)
class SectorTotal:
    sector: str
    value: float
    percent: float

    def to_dict(self) -> Dict[str, Any]:
        return {"sector": self.sector, "value": self.value, "percent": self.percent}


@dataclass(frozen=True)
class PortfolioAggregate:
    rows: Tuple[SectorTotal, ...]
    total_value: float

    def to_dict(self) -> Dict[str, Any]:
        return {"rows": [r.to_dict() for r in self.rows], "totalValue": self.total_value}


def compute_sector_aggregate(results: Iterable[Tuple[PortfolioRow, ResolutionResult]]) -> PortfolioAggregate:
    """Value-weight each successful fund's sectors by its holding value.

    Failed rows and rows without a positive value contribute nothing to either
    the sector sums or the total.
    """
    sums: Dict[str, float] = {s: 0.0 for s in SECTORS}
    total_value = 0.0
    for row, res in results:
        if not res.success or not res.sectors:
            continue
        if row.value <= 0:
            continue
        total_value += row.value
        for datum in res.sectors:
            if datum.sector not in sums:
                continue
            sums[datum.sector] += row.value * datum.weight

    rows = [
        SectorTotal(sector=s, value=v, percent=(v / total_value) if total_value > 0 else 0.0)
        for s, v in sums.items()
        if v > 0
    ]
    rows.sort(key=lambda r: r.value, reverse=True)
    return PortfolioAggregate(rows=tuple(rows), total_value=total_value)


def run_portfolio(
    rows: Sequence[PortfolioRow],
    resolve_fn: ResolveFn,
    *,
    max_workers: int = DEFAULT_CONCURRENCY,
    stop_event: Optional[threading.Event] = None,
    progress_cb: Optional[Callable[[int, int, int], None]] = None,
    row_cb: Optional[Callable[[int, PortfolioRow, ResolutionResult], None]] = None,
) -> List[Tuple[PortfolioRow, ResolutionResult]]:
    """
    Resolve every runnable row with at most ``max_workers`` in flight.
    - Returns (row, result) pairs in input order.
    - ``progress_cb(completed, total, in_flight)`` fires as rows start and finish.
    - Setting ``stop_event`` skips queued rows and stops in-flight ones at their
      next stage boundary.
    """
    runnable = [r for r in rows if r.is_runnable]
    total = len(runnable)
    if not runnable:
        return []

    stop = stop_event or threading.Event()
    lock = threading.Lock()
    counters = {"completed": 0, "in_flight": 0}

    def _notify() -> None:
        if progress_cb is None:
            return
        try:
            progress_cb(counters["completed"], total, counters["in_flight"])
        except Exception as e:
            logger.debug("[portfolio] progress callback failed: %s", e)

    def _worker(idx: int, row: PortfolioRow) -> Tuple[int, ResolutionResult]:
        if stop.is_set():
            return idx, ResolutionResult(success=False, error=CANCELLED_MESSAGE)
        with lock:
            counters["in_flight"] += 1
            _notify()
        try:
            res = resolve_fn(row.ticker or None, row.url or None, cancel=stop)
        finally:
            with lock:
                counters["in_flight"] -= 1
        return idx, res

    results: Dict[int, ResolutionResult] = {}
    with ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="etfresolve") as ex:
        futures: List[Future] = [ex.submit(_worker, i, r) for i, r in enumerate(runnable)]
        try:
            for fut in as_completed(futures):
                try:
                    idx, res = fut.result()
                except Exception as e:
                    logger.error("[portfolio] worker error: %s", e)
                    continue
                results[idx] = res
                with lock:
                    counters["completed"] += 1
                    _notify()
                if row_cb is not None:
                    row_cb(idx, runnable[idx], res)
        except BaseException:
            stop.set()
            for f in futures:
                f.cancel()
            raise

    out = []
    for i, row in enumerate(runnable):
        res = results.get(i) or ResolutionResult(success=False, error="Failed to fetch data.")
        out.append((row, res))
    logger.info("[portfolio] %d/%d rows resolved", sum(1 for _, r in out if r.success), total)
    return out
