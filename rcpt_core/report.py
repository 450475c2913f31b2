"""Run report export.

Writes a combined JSON summary of a run (batches, job and drain results,
per-receipt final state with history) and a styled Excel workbook with one
`Units` and one `Batches` sheet. File names come from `export.filenames`.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, TYPE_CHECKING

import pandas as pd
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from .config import CFG
from .utils import is_true_flag

if TYPE_CHECKING:
    from .pipeline import RunSummary


logger = logging.getLogger(__name__)

BATCH_COLUMNS = [
    "batch", "receipts", "survivors", "job_parameter", "job_status", "job_polls",
    "drain_stop", "drain_iterations", "confirmed", "leftover", "unreconciled", "abandoned", "error",
]


def _batch_row(br) -> Dict[str, Any]:
    job = br.job
    drain = br.drain
    return {
        "batch": br.batch.index,
        "receipts": len(br.batch),
        "survivors": len(br.survivors),
        "job_parameter": job.parameter if job else "",
        "job_status": (job.status or ("skipped" if job.skipped else "")) if job else "",
        "job_polls": job.polls if job else 0,
        "drain_stop": drain.stop_reason.value if drain else "",
        "drain_iterations": drain.iterations if drain else 0,
        "confirmed": drain.confirmed if drain else 0,
        "leftover": drain.leftover if drain else None,
        "unreconciled": list(drain.unreconciled) if drain else [],
        "abandoned": [str(i) for i in drain.abandoned] if drain else [],
        "error": br.error,
    }


def summary_payload(summary: "RunSummary") -> Dict[str, Any]:
    units: List[Dict[str, Any]] = []
    for rec in summary.states.records():
        units.append({
            "receipt_index": rec.receipt_index,
            "state": rec.state.value,
            "reason": rec.reason,
            "history": [[st.value, why] for st, why in rec.history],
        })
    return {
        "started_at": summary.started_at.isoformat(timespec="seconds"),
        "finished_at": summary.finished_at.isoformat(timespec="seconds") if summary.finished_at else None,
        "ledger": str(summary.ledger.path) if summary.ledger.path else None,
        "blocked": summary.ledger.receipts,
        "state_counts": summary.states.counts(),
        "batches": [_batch_row(br) for br in summary.batches],
        "units": units,
    }


def write_summary_json(summary: "RunSummary", out_path: str | Path) -> str:
    path = Path(out_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(summary_payload(summary), fh, indent=2)
    logger.info("Run summary JSON written to %s", path)
    return str(path)


def _style_sheet(ws, header_fill: str, header_font_color: str, freeze: str, max_width: int) -> None:
    fill = PatternFill(start_color=header_fill, end_color=header_fill, fill_type="solid")
    font = Font(bold=True, color=header_font_color)
    for cell in ws[1]:
        cell.fill = fill
        cell.font = font
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
    for idx, col in enumerate(ws.iter_cols(min_row=1, max_row=ws.max_row), start=1):
        longest = max((len(str(c.value)) for c in col if c.value is not None), default=8)
        ws.column_dimensions[get_column_letter(idx)].width = min(max(10, longest + 2), max_width)
    if freeze:
        ws.freeze_panes = freeze


def write_run_workbook(summary: "RunSummary", out_path: str | Path) -> str:
    payload = summary_payload(summary)
    wb_cfg = (CFG.get("export", {}) or {}).get("workbook", {}) or {}
    style_cfg = wb_cfg.get("style", {}) or {}
    header_fill = str(style_cfg.get("header_fill", "305496")).strip()
    header_font_color = str(style_cfg.get("header_font_color", "FFFFFF")).strip()
    freeze = str(wb_cfg.get("freeze_panes", "A2"))
    max_width = int(wb_cfg.get("max_column_width", 60))

    units_df = pd.DataFrame(
        [
            {
                "Receipt": u["receipt_index"],
                "State": u["state"],
                "Reason": u["reason"],
                "History": " → ".join(st for st, _ in u["history"]),
            }
            for u in payload["units"]
        ],
        columns=["Receipt", "State", "Reason", "History"],
    )
    batches_df = pd.DataFrame(payload["batches"], columns=BATCH_COLUMNS)
    if not batches_df.empty:
        for col in ("unreconciled", "abandoned"):
            batches_df[col] = batches_df[col].map(lambda v: ",".join(str(x) for x in v))

    path = Path(out_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        units_df.to_excel(writer, sheet_name="Units", index=False)
        batches_df.to_excel(writer, sheet_name="Batches", index=False)
        for ws in writer.book.worksheets:
            _style_sheet(ws, header_fill, header_font_color, freeze, max_width)
    logger.info("Run workbook written to %s", path)
    return str(path)


def write_run_report(summary: "RunSummary", out_dir: str | Path, stem: str) -> Dict[str, str]:
    names = (CFG.get("export", {}) or {}).get("filenames", {}) or {}
    ts = summary.started_at.strftime("%Y%m%d_%H%M%S")
    base = Path(out_dir).expanduser()
    json_name = str(names.get("summary_json", "{stem}_run_{ts}.json")).format(stem=stem, ts=ts)
    xlsx_name = str(names.get("workbook", "{stem}_run_{ts}.xlsx")).format(stem=stem, ts=ts)
    out = {"json": write_summary_json(summary, base / json_name)}
    if is_true_flag(((CFG.get("export", {}) or {}).get("workbook", {}) or {}).get("enable", True)):
        out["workbook"] = write_run_workbook(summary, base / xlsx_name)
    return out


__all__ = [
    "summary_payload",
    "write_summary_json",
    "write_run_workbook",
    "write_run_report",
]
