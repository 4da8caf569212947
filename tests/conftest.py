"""Shared fixtures: JPEG files made with Pillow and a fake jpeg-recompress.

The fake tool is a small Python script with a shebang pointing at the
running interpreter, so it is launched exactly like the real binary.
"""

import os
import stat
import sys
from pathlib import Path

import pytest
from PIL import Image


TOOL_TEMPLATE = """#!{python}
import os
import shutil
import signal
import sys
import time

payloads = {payloads!r}
src, dst = sys.argv[-2], sys.argv[-1]
with open({log!r}, "a") as f:
    f.write("\\t".join(sys.argv[1:]) + "\\n")
time.sleep({delay!r})
if {die_of_sigint!r}:
    signal.signal(signal.SIGINT, signal.SIG_DFL)
    os.kill(os.getpid(), signal.SIGINT)
payload = payloads.get(os.path.basename(src), {default!r})
if payload is None:
    sys.stderr.write("cannot recompress " + src + "\\n")
    sys.exit(3)
shutil.copyfile(payload, dst)
"""


def write_jpeg(path: Path, size=None, color="red") -> Path:
    """Write a small real JPEG, padded with zeros after EOI up to ``size`` bytes."""
    path = Path(path)
    Image.new("RGB", (16, 16), color=color).save(path, format="JPEG", quality=90)
    if size is not None:
        current = path.stat().st_size
        assert size >= current, f"{size} is smaller than the bare JPEG ({current})"
        with path.open("ab") as f:
            f.write(b"\0" * (size - current))
    return path


class FakeTool:
    def __init__(self, directory: Path):
        self.dir = directory
        self.path = directory / "jpeg-recompress"
        self.log = directory / "calls.log"

    def configure(self, payloads=None, default=None, delay=0.0, die_of_sigint=False) -> Path:
        """
        payloads maps a source file name to the file the tool should output;
        None means "fail". Names not listed use ``default``.
        """
        payloads = {k: (str(v) if v is not None else None) for k, v in (payloads or {}).items()}
        script = TOOL_TEMPLATE.format(
            python=sys.executable,
            payloads=payloads,
            log=str(self.log),
            delay=float(delay),
            die_of_sigint=bool(die_of_sigint),
            default=str(default) if default is not None else None,
        )
        self.path.write_text(script, encoding="utf-8")
        self.path.chmod(self.path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return self.path

    def calls(self):
        if not self.log.exists():
            return []
        return [line.split("\t") for line in self.log.read_text(encoding="utf-8").splitlines()]


@pytest.fixture
def fake_tool(tmp_path):
    if os.name == "nt":
        pytest.skip("fake tool relies on a shebang script")
    tool_dir = tmp_path / "tool"
    tool_dir.mkdir()
    return FakeTool(tool_dir)


@pytest.fixture
def photos(tmp_path):
    d = tmp_path / "photos"
    d.mkdir()
    return d


def temp_leftovers(directory: Path):
    return sorted(p.name for p in Path(directory).glob(".crush_*"))
