"""Per-test output capture."""

from __future__ import annotations

import logging
import re
import threading
from pathlib import Path

logger = logging.getLogger(__name__)


def slugify(name: str) -> str:
    """Turn a test name into a file-name-safe slug."""
    slug = re.sub(r"[^A-Za-z0-9]+", "-", name).strip("-").lower()
    return slug or "test"


class OutputSink:
    """Buffers everything a test and its subprocesses write.

    The buffer is only surfaced when the test fails (or when an output
    directory is configured), so passing tests stay quiet.
    """

    def __init__(self, test_name: str) -> None:
        self.test_name = test_name
        self._chunks: list[str] = []
        self._lock = threading.Lock()

    def write(self, text: str) -> None:
        with self._lock:
            self._chunks.append(text)

    def writeline(self, text: str) -> None:
        self.write(text if text.endswith("\n") else text + "\n")

    def getvalue(self) -> str:
        with self._lock:
            return "".join(self._chunks)

    def save(self, output_dir: Path) -> Path:
        """Write the captured output to ``<output_dir>/<slug>.log``."""
        output_dir.mkdir(parents=True, exist_ok=True)
        path = output_dir / f"{slugify(self.test_name)}.log"
        path.write_text(self.getvalue())
        return path

    def dump_to_log(self, level: int = logging.ERROR) -> None:
        captured = self.getvalue()
        if captured:
            logger.log(level, "Output of %s:\n%s", self.test_name, captured)
