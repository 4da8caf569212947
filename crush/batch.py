from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence
import logging
import threading

from .engine import Cancelled, recompress
from .results import RecompressResult
from .settings import DEFAULT_EXTENSIONS, CrushSettings
from .state import RunState


logger = logging.getLogger(__name__)

Operation = Callable[[Path, CrushSettings, RunState], RecompressResult]


@dataclass(frozen=True)
class BatchSummary:
    total_files: int
    replaced: int
    skipped: int
    failed: int
    total_src_bytes: int
    total_out_bytes: int

    @property
    def saved_bytes(self) -> int:
        return self.total_src_bytes - self.total_out_bytes

    @property
    def saved_percent(self) -> float:
        if self.total_src_bytes <= 0:
            return 0.0
        return (self.saved_bytes / self.total_src_bytes) * 100.0

    @classmethod
    def from_results(cls, results: Iterable[RecompressResult]) -> "BatchSummary":
        total = replaced = skipped = failed = 0
        src_bytes = out_bytes = 0
        for r in results:
            total += 1
            if r.failed:
                failed += 1
            elif r.replaced:
                replaced += 1
                # only replaced files count towards the savings
                src_bytes += r.src_bytes
                out_bytes += r.out_bytes
            else:
                skipped += 1
        return cls(
            total_files=total,
            replaced=replaced,
            skipped=skipped,
            failed=failed,
            total_src_bytes=src_bytes,
            total_out_bytes=out_bytes,
        )


def find_jpegs(directory: Path, extensions: Sequence[str] = DEFAULT_EXTENSIONS) -> List[Path]:
    """
    Non-recursive scan of one directory, sorted by name.

    Matching is on the suffix only and ignores case, so "a.JPG" is picked up.
    An unreadable directory raises OSError.
    """
    wanted = {e.lower() for e in extensions}
    res = []
    for f in sorted(Path(directory).iterdir(), key=lambda p: p.name):
        if f.suffix.lower() not in wanted:
            continue
        if f.is_dir():
            continue
        res.append(f)
    return res


def collect_tasks(args: Sequence[str], settings: CrushSettings) -> List[Path]:
    """
    No arguments: scan the current directory. Otherwise the arguments are
    the tasks, taken as-is; a bad path fails later, in its own task.
    """
    if not args:
        return find_jpegs(Path.cwd(), settings.extensions)

    # "a.jpg" and "/photos/a.jpg" are the same file and must not run twice
    seen = set()
    tasks: List[Path] = []
    for a in args:
        p = Path(a)
        try:
            key = p.resolve()
        except (OSError, RuntimeError):
            # symlink loop; the task itself will fail later
            key = p.absolute()
        if key in seen:
            logger.debug("ignoring duplicate argument %s", a)
            continue
        seen.add(key)
        tasks.append(p)
    return tasks


class AdmissionGate:
    """
    Counting gate with room for ``capacity`` holders.

    Waiters sleep until a permit is released or the run is cancelled; the
    run's cancel callback wakes all of them at once.
    """

    def __init__(self, capacity: int, state: RunState) -> None:
        self.capacity = capacity
        self._free = capacity
        self._state = state
        self._cond = threading.Condition()
        state.add_cancel_callback(self._wake_all)

    def _wake_all(self) -> None:
        with self._cond:
            self._cond.notify_all()

    def acquire(self) -> bool:
        """Take a permit; False if the run was cancelled first."""
        with self._cond:
            while self._free == 0 and not self._state.cancelled:
                self._cond.wait()
            if self._state.cancelled:
                return False
            self._free -= 1
            return True

    def release(self) -> None:
        with self._cond:
            if self._free >= self.capacity:
                raise ValueError("AdmissionGate released too many times")
            self._free += 1
            self._cond.notify()


def process_batch(
    tasks: Sequence[Path],
    settings: CrushSettings,
    state: Optional[RunState] = None,
    operation: Operation = recompress,
    on_result: Optional[Callable[[RecompressResult], None]] = None,
) -> tuple[List[RecompressResult], BatchSummary]:
    """
    Run ``operation`` for every task, at most ``settings.workers`` at a time.

    One thread is started per task; an ``AdmissionGate`` limits how many of
    them are inside ``operation``. The first failure is recorded on ``state``
    and, with ``settings.cancel_on_error``, stops tasks that have not started
    yet. Work already in progress is allowed to finish.

    Every thread is joined before this returns, whatever happened, so callers
    can inspect ``state.first_error`` knowing nothing is still touching files.
    """
    state = state or RunState()
    gate = AdmissionGate(settings.workers, state)
    results: List[RecompressResult] = []
    results_lock = threading.Lock()

    def record(r: RecompressResult) -> None:
        with results_lock:
            results.append(r)
            if on_result:
                on_result(r)

    def fail(src: Path, exc: BaseException) -> None:
        if state.record_error(src, exc):
            if settings.cancel_on_error:
                state.cancel()
        else:
            logger.debug("%s: additional failure after the first one", src)
        logger.error("%s: %s", src, exc)
        record(RecompressResult.from_error(src, exc))

    def worker(src: Path) -> None:
        if not gate.acquire():
            logger.debug("%s: skipped, run cancelled", src)
            record(RecompressResult.cancelled(src))
            return
        try:
            r = operation(src, settings, state)
        except Cancelled as e:
            logger.debug("%s", e)
            r = RecompressResult.cancelled(src)
        except Exception as e:
            fail(src, e)
            return
        finally:
            gate.release()
        record(r)

    threads = [
        threading.Thread(target=worker, args=(Path(src),), name=f"crush-{i}")
        for i, src in enumerate(tasks)
    ]
    for t in threads:
        t.start()

    # Completion barrier
    for t in threads:
        t.join()

    return results, BatchSummary.from_results(results)
