from __future__ import annotations

import json
import math
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from .batch import BatchSummary
from .results import RecompressResult


_SI_UNITS = ["B", "kB", "MB", "GB", "TB", "PB", "EB"]


def format_bytes(n: int) -> str:
    """
    SI (powers of 1000) size string: 500000 -> "500 kB", 1500 -> "1.5 kB".
    """
    if n < 0:
        return "-" + format_bytes(-n)
    if n < 10:
        return f"{n} B"
    e = 0
    while e < len(_SI_UNITS) - 1 and n >= 1000 ** (e + 1):
        e += 1
    val = math.floor(n / (1000 ** e) * 10 + 0.5) / 10
    if val < 10:
        return f"{val:.1f} {_SI_UNITS[e]}"
    return f"{val:.0f} {_SI_UNITS[e]}"


def format_result(r: RecompressResult) -> str:
    if r.failed:
        return f"{r.src_path}: failed: {r.error}"
    if r.skipped_reason == "cancelled":
        return f"{r.src_path}: skipped (cancelled)"
    if not r.replaced:
        return f"{r.src_path}: no savings ({format_bytes(r.out_bytes)} >= {format_bytes(r.src_bytes)}), original kept"
    if r.saved_bytes < 0:
        return f"{r.src_path}: grew by {format_bytes(-r.saved_bytes)} (increased by {-r.saved_percent:.2f}%)"
    return f"{r.src_path}: savings of {format_bytes(r.saved_bytes)} (decreased by {r.saved_percent:.2f}%)"


def format_summary(summary: BatchSummary) -> str:
    return (
        f"All done! {summary.replaced} of {summary.total_files} file(s) recompressed, "
        f"saved {format_bytes(summary.saved_bytes)} ({summary.saved_percent:.1f}%)"
    )


@dataclass(frozen=True)
class FileReport:
    src_path: str
    src_bytes: int
    out_bytes: int
    saved_bytes: int
    saved_percent: float
    replaced: bool
    skipped_reason: Optional[str]
    error: Optional[str]


@dataclass(frozen=True)
class BatchReport:
    created_utc: str
    summary: dict
    error: Optional[str]
    files: List[FileReport]


def build_report(results: List[RecompressResult], summary: BatchSummary, error: Optional[str] = None) -> BatchReport:
    created_utc = datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")

    # completion order is arbitrary; the report is sorted by path
    files: List[FileReport] = []
    for r in sorted(results, key=lambda r: str(r.src_path)):
        files.append(
            FileReport(
                src_path=str(r.src_path),
                src_bytes=r.src_bytes,
                out_bytes=r.out_bytes,
                saved_bytes=r.saved_bytes,
                saved_percent=round(r.saved_percent, 2),
                replaced=r.replaced,
                skipped_reason=r.skipped_reason,
                error=r.error,
            )
        )

    summary_dict = {
        "total_files": summary.total_files,
        "replaced": summary.replaced,
        "skipped": summary.skipped,
        "failed": summary.failed,
        "total_src_bytes": summary.total_src_bytes,
        "total_out_bytes": summary.total_out_bytes,
        "saved_bytes": summary.saved_bytes,
        "saved_percent": round(summary.saved_percent, 2),
    }

    return BatchReport(created_utc=created_utc, summary=summary_dict, error=error, files=files)


def save_report_json(report: BatchReport, path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with path.open("w", encoding="utf-8") as f:
        json.dump(asdict(report), f, indent=2, ensure_ascii=False)
