# models.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

STAGE_DIRECT = "direct"
STAGE_FACTSHEET = "factsheet"
STAGE_SEARCH = "search"
STAGE_CANDIDATE = "candidate"
STAGE_CANDIDATE_FACTSHEET = "candidate-factsheet"

STAGES = (STAGE_DIRECT, STAGE_FACTSHEET, STAGE_SEARCH, STAGE_CANDIDATE, STAGE_CANDIDATE_FACTSHEET)


@dataclass(frozen=True)
class SectorWeight:
    """One sector slice of a fund; weight is a fraction, not percentage points."""

    sector: str
    weight: float

    def to_dict(self) -> Dict[str, Any]:
        return {"sector": self.sector, "weight": self.weight}


@dataclass(frozen=True)
class SourceAttempt:
    """A single fetch made while resolving one request.

    ``ok`` means the attempt produced sector data; a search attempt only
    produces candidate URLs and is never ``ok``.
    """

    stage: str
    url: str
    ok: bool
    note: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"stage": self.stage, "url": self.url, "ok": self.ok}
        if self.note:
            out["note"] = self.note
        if self.error:
            out["error"] = self.error
        return out


@dataclass(frozen=True)
class ResolutionResult:
    success: bool
    sectors: Tuple[SectorWeight, ...] = ()
    source_url: Optional[str] = None
    attempts: Tuple[SourceAttempt, ...] = ()
    error: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        """Caller-facing shape: {success, data, sourceUrl, sources, error}."""
        out: Dict[str, Any] = {
            "success": self.success,
            "sources": [a.to_dict() for a in self.attempts],
        }
        if self.success:
            out["data"] = [s.to_dict() for s in self.sectors]
        if self.source_url:
            out["sourceUrl"] = self.source_url
        if self.error:
            out["error"] = self.error
        return out


@dataclass
class StageOutcome:
    """What one stage hands back to the orchestrator: its own attempts plus page state."""

    attempts: List[SourceAttempt] = field(default_factory=list)
    sectors: List[SectorWeight] = field(default_factory=list)
    markdown: str = ""
    links: List[str] = field(default_factory=list)
    url: Optional[str] = None
