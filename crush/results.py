from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class RecompressResult:
    """
    Outcome of one task.

    replaced is True only when the source file now holds the recompressed bytes.
    """
    src_path: Path
    src_bytes: int
    out_bytes: int
    replaced: bool
    skipped_reason: Optional[str] = None  # "not_smaller" or "cancelled"
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def saved_bytes(self) -> int:
        return self.src_bytes - self.out_bytes

    @property
    def saved_percent(self) -> float:
        if self.src_bytes <= 0:
            return 0.0
        return (self.saved_bytes / self.src_bytes) * 100.0

    @classmethod
    def cancelled(cls, src_path: Path) -> "RecompressResult":
        return cls(src_path=src_path, src_bytes=0, out_bytes=0, replaced=False, skipped_reason="cancelled")

    @classmethod
    def from_error(cls, src_path: Path, exc: BaseException) -> "RecompressResult":
        return cls(src_path=src_path, src_bytes=0, out_bytes=0, replaced=False, error=str(exc) or type(exc).__name__)
