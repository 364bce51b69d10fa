# pdf_tables.py
# Lightweight table recovery for fund fact sheets (PyMuPDF only).
# Spans are clustered into rows by y, rows split into columns on x gaps, and
# the result rendered as pipe-table rows so the extractor sees
#   | Financials | 23.4% |
# instead of label and value stranded on separate lines.
from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

_COL_GAP = 18.0   # min horizontal gap to consider a new column (points)
_ROW_GAP = 6.5    # max vertical distance to group text runs into one row (points)

_NUMERIC_CELL_RE = re.compile(r"\d")


def _page_spans(page) -> List[Dict[str, Any]]:
    spans = []
    for b in page.get_text("dict").get("blocks", []):
        for l in b.get("lines", []):
            for s in l.get("spans", []):
                t = (s.get("text") or "").strip()
                if not t:
                    continue
                spans.append({"x": float(s["bbox"][0]), "y": float(s["bbox"][1]), "text": t})
    return spans


def _cluster_rows(spans: List[Dict[str, Any]]) -> List[List[Dict[str, Any]]]:
    spans = sorted(spans, key=lambda s: (s["y"], s["x"]))
    rows, cur, last_y = [], [], None
    for s in spans:
        if last_y is None or abs(s["y"] - last_y) <= _ROW_GAP:
            cur.append(s)
            last_y = s["y"] if last_y is None else (last_y + s["y"]) / 2.0
        else:
            rows.append(sorted(cur, key=lambda z: z["x"]))
            cur, last_y = [s], s["y"]
    if cur:
        rows.append(sorted(cur, key=lambda z: z["x"]))
    return rows


def _split_cols(row_spans: List[Dict[str, Any]]) -> List[str]:
    if not row_spans:
        return []
    cols, prev_x = [[]], None
    for s in row_spans:
        if prev_x is None or (s["x"] - prev_x) < _COL_GAP:
            cols[-1].append(s["text"])
        else:
            cols.append([s["text"]])
        prev_x = s["x"]
    return [" ".join(c).strip() for c in cols]


def extract_page_tables(doc, max_pages: Optional[int] = None) -> List[Dict[str, Any]]:
    """[{page, rows}] for every page with at least one multi-column row."""
    n = doc.page_count if max_pages is None else min(max_pages, doc.page_count)
    out = []
    for i in range(n):
        page = doc.load_page(i)
        rows = [_split_cols(r) for r in _cluster_rows(_page_spans(page))]
        rows = [r for r in rows if len(r) >= 2]
        if rows:
            out.append({"page": i + 1, "rows": rows})
    return out


def tables_to_markdown(tables: List[Dict[str, Any]], *, max_cols: int = 8) -> str:
    """Render recovered rows as pipe-table lines; rows without a digit are dropped."""
    blocks: List[str] = []
    for table in tables or []:
        lines = []
        for row in table.get("rows") or []:
            cells = [str(c or "").replace("|", "/").strip() for c in row[:max_cols]]
            if not any(_NUMERIC_CELL_RE.search(c) for c in cells[1:]):
                continue
            lines.append("| " + " | ".join(cells) + " |")
        if lines:
            blocks.append(f"<!-- tables: page {table.get('page')} -->\n" + "\n".join(lines))
    return "\n\n".join(blocks).strip()
