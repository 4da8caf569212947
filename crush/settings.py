from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Optional, Tuple


# Quality presets understood by jpeg-recompress.
Quality = Literal["low", "medium", "high", "veryhigh"]

DEFAULT_EXTENSIONS = (".jpg",)

TOOL_NAME = "jpeg-recompress.exe" if os.name == "nt" else "jpeg-recompress"


def default_tool_path() -> Path:
    """The recompression binary is expected to sit next to the program."""
    return Path(sys.argv[0]).resolve().parent / TOOL_NAME


def default_workers() -> int:
    return os.cpu_count() or 1


@dataclass(frozen=True)
class CrushSettings:
    """
    Everything a run needs, built once at startup and handed to the
    scheduler and every worker.
    """

    # ----- External tool -----
    tool_path: Path = field(default_factory=default_tool_path)
    quality: Quality = "veryhigh"

    # ----- Scheduling -----
    workers: int = field(default_factory=default_workers)
    cancel_on_error: bool = True  # stop dispatching new work after the first failure
    poll_interval: float = 0.05  # seconds between interrupt checks while a tool runs
    terminate_grace: float = 2.0  # SIGTERM -> SIGKILL delay for an interrupted tool

    # ----- Output handling -----
    only_if_smaller: bool = True
    verify_output: bool = True

    # ----- Task source -----
    extensions: Tuple[str, ...] = DEFAULT_EXTENSIONS

    def __post_init__(self) -> None:
        if self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")
        if self.poll_interval <= 0:
            raise ValueError(f"poll_interval must be > 0, got {self.poll_interval}")


def normalize_extensions(exts: Optional[list[str]]) -> Tuple[str, ...]:
    # "JPG", "jpg" and ".jpg" all mean the same thing
    if not exts:
        return DEFAULT_EXTENSIONS
    return tuple(sorted({"." + e.strip().lstrip(".").lower() for e in exts if e.strip()}))
