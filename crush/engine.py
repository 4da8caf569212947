from __future__ import annotations

from pathlib import Path
from typing import List, Optional
import logging
import os
import shutil
import signal
import stat
import subprocess
import tempfile

from PIL import Image, UnidentifiedImageError

from .results import RecompressResult
from .settings import CrushSettings
from .state import RunState


logger = logging.getLogger(__name__)

# Keep only the end of a chatty tool's stderr in error messages.
STDERR_TAIL = 400


class RecompressError(Exception):
    """Base class for per-task failures."""


class ToolFailedError(RecompressError):
    def __init__(self, cmd: List[str], returncode: int, stderr: str = "") -> None:
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
        msg = f"{Path(cmd[0]).name} exited with status {returncode}"
        if stderr:
            msg += f": {stderr}"
        super().__init__(msg)


class VerificationError(RecompressError):
    pass


class Cancelled(RecompressError):
    """The task was abandoned because the run is being cancelled."""


def recompress(src_path: Path, s: CrushSettings, state: Optional[RunState] = None) -> RecompressResult:
    """
    Recompress one JPEG in place.

    The tool writes into a temp file next to the source; the source is only
    ever touched by the final os.replace(), so on any failure it is left
    byte-for-byte as it was.
    """
    src_path = Path(src_path)
    state = state or RunState()

    src_stat = src_path.stat()
    if not stat.S_ISREG(src_stat.st_mode):
        raise RecompressError(f"{src_path} is not a regular file ({stat.filemode(src_stat.st_mode)})")
    src_bytes = src_stat.st_size

    if state.cancelled:
        raise Cancelled(f"{src_path}: cancelled before start")

    # Same directory as the source so the final rename never crosses a filesystem
    fd, tmp_name = tempfile.mkstemp(prefix=".crush_", suffix=src_path.suffix or ".jpg", dir=str(src_path.parent))
    os.close(fd)
    tmp_path = Path(tmp_name)
    promoted = False

    try:
        cmd = [str(s.tool_path), "--quality", s.quality, str(src_path), str(tmp_path)]
        run_tool(cmd, s, state)

        if s.verify_output:
            _verify_jpeg(tmp_path)

        out_bytes = tmp_path.stat().st_size

        if s.only_if_smaller and out_bytes >= src_bytes:
            return RecompressResult(
                src_path=src_path,
                src_bytes=src_bytes,
                out_bytes=out_bytes,
                replaced=False,
                skipped_reason="not_smaller",
            )

        # mkstemp creates 0600 files; keep the original's permissions
        shutil.copymode(src_path, tmp_path)
        os.replace(tmp_path, src_path)
        promoted = True

        return RecompressResult(
            src_path=src_path,
            src_bytes=src_bytes,
            out_bytes=out_bytes,
            replaced=True,
        )
    finally:
        if not promoted:
            _remove_temp(tmp_path)


def run_tool(cmd: List[str], s: CrushSettings, state: RunState) -> None:
    """
    Run the external tool and wait for it.

    An interrupt terminates the tool; a plain cancellation lets it finish.
    """
    logger.debug("running %s", " ".join(cmd))
    try:
        p = subprocess.Popen(cmd, stdin=subprocess.DEVNULL, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    except OSError as e:
        raise ToolFailedError(cmd, 127, str(e)) from e

    # communicate() with a timeout keeps draining the pipes between checks
    while True:
        try:
            _out, err = p.communicate(timeout=s.poll_interval)
            break
        except subprocess.TimeoutExpired:
            if state.interrupted:
                _terminate(p, s.terminate_grace)
                raise Cancelled(f"{cmd[-2]}: interrupted")

    if p.returncode != 0:
        # Ctrl-C reaches the whole process group, so the tool may have died
        # from it before our own handler has run
        if p.returncode == -signal.SIGINT:
            state.interrupt()
        if state.interrupted:
            raise Cancelled(f"{cmd[-2]}: interrupted")
        raise ToolFailedError(cmd, p.returncode, _tail(err))


def _terminate(p: subprocess.Popen, grace: float) -> None:
    p.terminate()
    try:
        p.communicate(timeout=grace)
    except subprocess.TimeoutExpired:
        p.kill()
        p.communicate()


def _verify_jpeg(path: Path) -> None:
    try:
        with Image.open(path) as im:
            fmt = im.format
            im.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise VerificationError(f"recompressed output is not a readable image: {e}") from e
    if fmt != "JPEG":
        raise VerificationError(f"recompressed output is {fmt}, expected JPEG")


def _remove_temp(tmp_path: Path) -> None:
    try:
        tmp_path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("could not remove temp file %s: %s", tmp_path, e)


def _tail(data: bytes) -> str:
    text = data.decode(errors="replace").strip()
    if len(text) > STDERR_TAIL:
        text = "..." + text[-STDERR_TAIL:]
    return text
