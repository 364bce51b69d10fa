#!/usr/bin/env python3
import os, json, time, asyncio, logging, threading
from typing import List, Dict, Optional, Any, Callable
from contextlib import contextmanager
from queue import Empty, Queue

from etfsectors import pipeline
from etfsectors.access import (
    BAD_PASSWORD,
    SESSION_COOKIE,
    SESSION_EXPIRED,
    AccessDenied,
    check_password,
    issue_session_token,
    require_access,
    validate_session_token,
)
from etfsectors.config import ConfigurationError, Settings, load_settings, parse_origins
from etfsectors.models import ResolutionResult
from etfsectors.portfolio import PortfolioRow, compute_sector_aggregate, run_portfolio
from etfsectors.registry import PORTFOLIO_DEFAULTS, portfolio_section

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
import uvicorn


# --- env & logging ---
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("etfsectors.app")

PORTFOLIO_STAGES: Dict[str, Dict[str, str]] = {
    "load_rows": {"headline": "Loading portfolio holdings"},
    "resolve": {
        "headline": "Resolving sector breakdowns",
        "note": "Checking fund pages, fact sheets and the web…",
    },
    "aggregate": {"headline": "Aggregating sector exposure"},
}


class PortfolioObserver:
    """Relays portfolio progress as structured events."""

    def __init__(self, emit: Callable[[Dict[str, Any]], None]) -> None:
        self._emit = emit

    def stage_start(self, stage_id: str) -> None:
        payload = {"type": "stage", "id": stage_id, "state": "start"}
        meta = PORTFOLIO_STAGES.get(stage_id, {})
        for key in ("headline", "note"):
            value = meta.get(key)
            if value:
                payload[key] = value
        self._emit(payload)

    def stage_end(self, stage_id: str, *, duration_ms: Optional[int] = None) -> None:
        payload: Dict[str, Any] = {"type": "stage", "id": stage_id, "state": "end"}
        if duration_ms is not None:
            payload["duration_ms"] = duration_ms
        self._emit(payload)

    def progress(self, done: int, total: int, in_flight: int) -> None:
        self._emit({"type": "progress", "id": "resolve", "done": done, "total": total, "inFlight": in_flight})

    def row(self, index: int, row: PortfolioRow, result: ResolutionResult) -> None:
        self._emit({"type": "row", "index": index, "row": row.to_dict(), "result": result.to_response()})

    def aggregate(self, aggregate: Dict[str, Any]) -> None:
        self._emit({"type": "aggregate", **aggregate})

    def error(self, message: str) -> None:
        self._emit({"type": "error", "message": str(message)})

    def done(self) -> None:
        self._emit({"type": "done"})


@contextmanager
def _stage(observer: Optional[PortfolioObserver], stage_id: str):
    """Context manager to auto-emit stage start/end events."""
    started = time.monotonic()
    if observer:
        observer.stage_start(stage_id)
    try:
        yield
    finally:
        if observer:
            duration_ms = int((time.monotonic() - started) * 1000)
            observer.stage_end(stage_id, duration_ms=duration_ms)


def _sse_format(event: Dict[str, Any]) -> str:
    return f"data: {json.dumps(event, ensure_ascii=False)}\n\n"


def _config_error_response(e: ConfigurationError) -> JSONResponse:
    logger.error("configuration error: %s", e)
    body = ResolutionResult(success=False, error=f"Server configuration error: {e}").to_response()
    return JSONResponse(status_code=500, content=body)


def _has_session(request: Request, settings: Settings) -> bool:
    if settings.is_development:
        return True
    return validate_session_token(request.cookies.get(SESSION_COOKIE), settings.session_secret)


def run_portfolio_rows(
    rows: List[PortfolioRow],
    *,
    concurrency: int,
    observer: Optional[PortfolioObserver] = None,
    stop_event: Optional[threading.Event] = None,
) -> Dict[str, Any]:
    """
    Resolves every runnable row (at most ``concurrency`` at once) and returns
    {"rows": [...per-row results...], "aggregate": {...}}.
    """
    with _stage(observer, "resolve"):
        pairs = run_portfolio(
            rows,
            pipeline.resolve,
            max_workers=concurrency,
            stop_event=stop_event,
            progress_cb=observer.progress if observer else None,
            row_cb=observer.row if observer else None,
        )

    with _stage(observer, "aggregate"):
        aggregate = compute_sector_aggregate(pairs).to_dict()
        if observer:
            observer.aggregate(aggregate)

    return {
        "rows": [{**row.to_dict(), **res.to_response()} for row, res in pairs],
        "aggregate": aggregate,
    }


# ---------------- Web API (FastAPI) ----------------
api = FastAPI(title="ETF Sector Breakdown API", version="1.0.0")

try:
    _ALLOW_ORIGINS = list(load_settings().allow_origins)
except ConfigurationError as e:
    # Requests still get a proper configuration error; CORS falls back to the env list.
    logger.error("configuration error at startup: %s", e)
    _ALLOW_ORIGINS = list(parse_origins(os.getenv("ALLOW_ORIGINS", "*")))

api.add_middleware(
    CORSMiddleware,
    allow_origins=_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@api.post("/api/etf")
def get_etf_sectors(payload: Dict[str, Any], request: Request):
    """
    Body:
      {
        "ticker": "VGS",                  # optional if url given
        "url": "https://...",             # optional if ticker known
        "captchaToken": "..."             # required outside development
      }
    Response:
      {"success": bool, "data": [{"sector", "weight"}], "sourceUrl": "...",
       "sources": [{"stage", "url", "ok", "note"?, "error"?}], "error": "..."}
    """
    payload = payload or {}
    try:
        settings = load_settings()
    except ConfigurationError as e:
        return _config_error_response(e)

    if not settings.is_development:
        try:
            require_access(
                captcha_token=payload.get("captchaToken"),
                session_token=request.cookies.get(SESSION_COOKIE),
                captcha_secret=settings.recaptcha_secret,
                session_secret=settings.session_secret,
            )
        except AccessDenied as e:
            return JSONResponse(status_code=401, content=ResolutionResult(success=False, error=str(e)).to_response())

    ticker = payload.get("ticker")
    url = payload.get("url")
    if ticker is not None and not isinstance(ticker, str):
        raise HTTPException(status_code=400, detail="'ticker' must be a string.")
    if url is not None and not isinstance(url, str):
        raise HTTPException(status_code=400, detail="'url' must be a string.")

    result = pipeline.resolve(ticker, url)
    logger.info("[api] %s -> %s", ticker or url, "ok" if result.success else result.error)
    return result.to_response()


@api.post("/api/login")
def login(payload: Dict[str, Any]):
    try:
        settings = load_settings()
    except ConfigurationError as e:
        return _config_error_response(e)

    if not check_password((payload or {}).get("password"), settings.access_password):
        return JSONResponse(status_code=401, content={"success": False, "error": BAD_PASSWORD})

    token = issue_session_token(settings.session_secret, settings.session_minutes)
    resp = JSONResponse(content={"success": True})
    resp.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=settings.session_minutes * 60,
        httponly=True,
        secure=not settings.is_development,
        samesite="lax",
    )
    return resp


@api.get("/api/session")
def session_status(request: Request):
    try:
        settings = load_settings()
    except ConfigurationError as e:
        return _config_error_response(e)
    return {"authenticated": _has_session(request, settings)}


@api.post("/api/portfolio")
def resolve_portfolio(payload: Dict[str, Any], request: Request):
    """
    Body:
      {
        "rows": [{"ticker": "VGS", "url": "...", "sum": "$12,426"}],   # or
        "section": "cba",                                               # a default section
        "concurrency": 3                                                # optional
      }
    Response:
      {"rows": [{ticker, url, sum, label, success, data?, sourceUrl?, sources, error?}],
       "aggregate": {"rows": [{sector, value, percent}], "totalValue": float}}
    """
    payload = payload or {}
    try:
        settings = load_settings()
    except ConfigurationError as e:
        return _config_error_response(e)
    if not _has_session(request, settings):
        return JSONResponse(status_code=401, content={"success": False, "error": SESSION_EXPIRED})

    raw_rows = payload.get("rows")
    if raw_rows is None and payload.get("section"):
        try:
            raw_rows = portfolio_section(str(payload["section"]))
        except KeyError:
            raise HTTPException(status_code=400, detail=f"Unknown section '{payload['section']}'.")
    if not isinstance(raw_rows, (list, tuple)):
        raise HTTPException(status_code=400, detail="Missing 'rows' list in request body.")

    try:
        concurrency = int(payload.get("concurrency") or settings.concurrency)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="concurrency must be an integer")

    rows = [PortfolioRow.from_dict(r) for r in raw_rows if isinstance(r, dict)]
    return run_portfolio_rows(rows, concurrency=max(1, concurrency))


@api.get("/api/portfolio/stream")
async def stream_portfolio(request: Request, section: str = "cba", concurrency: Optional[int] = None):
    try:
        settings = load_settings()
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=f"Server configuration error: {e}")
    if not _has_session(request, settings):
        raise HTTPException(status_code=401, detail=SESSION_EXPIRED)
    if section not in PORTFOLIO_DEFAULTS:
        raise HTTPException(status_code=400, detail=f"Unknown section '{section}'.")

    workers = max(1, concurrency or settings.concurrency)
    event_queue: Queue[str] = Queue()

    def emit(event: Dict[str, Any]) -> None:
        event_queue.put(_sse_format(event))

    observer = PortfolioObserver(emit)
    done_event = threading.Event()
    stop_event = threading.Event()

    def worker() -> None:
        try:
            with _stage(observer, "load_rows"):
                rows = [PortfolioRow.from_dict(r) for r in portfolio_section(section)]
            run_portfolio_rows(rows, concurrency=workers, observer=observer, stop_event=stop_event)
        except Exception as exc:
            logger.exception("portfolio stream failed")
            observer.error(str(exc))
        finally:
            observer.done()
            done_event.set()

    thread = threading.Thread(target=worker, name="sse-portfolio", daemon=True)
    thread.start()

    heartbeat_comment = ": keep-alive\n\n"

    async def event_generator():
        last_heartbeat = time.monotonic()
        while True:
            if done_event.is_set() and event_queue.empty():
                break
            try:
                item = event_queue.get_nowait()
            except Empty:
                await asyncio.sleep(0.25)
                if await request.is_disconnected():
                    # Client went away: queued rows are skipped, in-flight ones stop at their next stage.
                    stop_event.set()
                    break
                if time.monotonic() - last_heartbeat >= 10:
                    last_heartbeat = time.monotonic()
                    yield heartbeat_comment
                continue
            else:
                last_heartbeat = time.monotonic()
                yield item

        while not event_queue.empty():
            try:
                yield event_queue.get_nowait()
            except Empty:
                break

    headers = {
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",
    }

    return StreamingResponse(event_generator(), media_type="text/event-stream", headers=headers)


def main(argv: Optional[List[str]] = None) -> int:
    import argparse
    ap = argparse.ArgumentParser(description="Look up an ETF's sector breakdown.")
    ap.add_argument("ticker", nargs="?", help="ETF ticker, e.g. VGS (omit if using --url, --portfolio or --serve)")
    ap.add_argument("--url", help="Fund page or fact sheet URL")
    ap.add_argument("--prefer-url", action="store_true", help="Use --url even when the ticker is known")
    ap.add_argument("--portfolio", metavar="SECTION", help="Resolve a default portfolio section (e.g. cba)")
    ap.add_argument("--concurrency", type=int, default=None, help="Portfolio worker limit")
    ap.add_argument("--serve", action="store_true", help="Run FastAPI server instead of CLI")
    ap.add_argument("--host", default="0.0.0.0")
    ap.add_argument("--port", type=int, default=int(os.getenv("PORT", "8000")))
    args = ap.parse_args(argv)

    if args.serve:
        uvicorn.run(api, host=args.host, port=args.port, log_level="info")
        return 0

    try:
        settings = load_settings()
    except ConfigurationError as e:
        ap.error(f"configuration error: {e}")

    if args.portfolio:
        try:
            raw_rows = portfolio_section(args.portfolio)
        except KeyError:
            ap.error(f"unknown portfolio section '{args.portfolio}' (choose from {', '.join(PORTFOLIO_DEFAULTS)})")
        rows = [PortfolioRow.from_dict(r) for r in raw_rows]
        out = run_portfolio_rows(rows, concurrency=max(1, args.concurrency or settings.concurrency))
        print(json.dumps(out, indent=2))
        return 0

    if not args.ticker and not args.url:
        ap.error("ticker or --url is required in CLI mode (or pass --portfolio / --serve)")

    resolver = pipeline.SectorResolver.from_settings(settings, prefer_explicit_url=args.prefer_url)
    result = resolver.resolve(args.ticker, args.url)
    print(json.dumps(result.to_response(), indent=2))
    return 0 if result.success else 1


if __name__ == "__main__":
    raise SystemExit(main())
