from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable, List, Optional


class RunState:
    """
    Shared state of one run.

    Both signals are one-way: once set they stay set. The first recorded
    error is kept as the run's representative error; later ones are ignored.
    """

    def __init__(self) -> None:
        self._cancel = threading.Event()
        self._interrupt = threading.Event()
        self._lock = threading.RLock()  # cancel() may run from a signal handler
        self._first_error: Optional[BaseException] = None
        self._first_error_path: Optional[Path] = None
        self._on_cancel: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    @property
    def interrupted(self) -> bool:
        return self._interrupt.is_set()

    @property
    def first_error(self) -> Optional[BaseException]:
        return self._first_error

    @property
    def first_error_path(self) -> Optional[Path]:
        return self._first_error_path

    def add_cancel_callback(self, fn: Callable[[], None]) -> None:
        """Call fn once the run is cancelled (right away if it already is)."""
        with self._lock:
            self._on_cancel.append(fn)
        if self.cancelled:
            fn()

    def cancel(self) -> None:
        self._cancel.set()
        with self._lock:
            callbacks = list(self._on_cancel)
        for fn in callbacks:
            fn()

    def interrupt(self) -> None:
        """External stop request: also aborts tools that are already running."""
        self._interrupt.set()
        self.cancel()

    def record_error(self, path: Path, exc: BaseException) -> bool:
        """Returns True if this was the first error of the run."""
        with self._lock:
            if self._first_error is not None:
                return False
            self._first_error = exc
            self._first_error_path = path
            return True
