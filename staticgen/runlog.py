"""
File-backed run log and progress bar.

Entries are kept in ``log.json`` and the progress state in ``progress.json``
inside the state directory, so ``main.py status`` can poll a run from another
process. Every accepted entry is mirrored to stdlib logging.
"""

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .interfaces import ProgressSink
from .models import LogEntry, LogLevel, ProgressState


logger = logging.getLogger(__name__)

BATCH_THRESHOLD = 10
MAX_ENTRIES = 1000

_LEVEL_MAP = {
    LogLevel.ERROR: logging.ERROR,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.INFO: logging.INFO,
    LogLevel.DEBUG: logging.DEBUG,
}


def _write_json(path: Path, data: Any) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, ensure_ascii=False))
    os.replace(tmp, path)


class RunLog(ProgressSink):
    """Buffered, persisted log of one generation run."""

    def __init__(
        self,
        state_dir: Path,
        debug: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.log_path = self.state_dir / "log.json"
        self.progress_path = self.state_dir / "progress.json"
        self.debug = debug
        self._clock = clock
        self._start: Optional[float] = None
        self._buffer: List[LogEntry] = []
        self._errors = 0

    # ---------------------------------------------- #
    # Timer
    def start_timer(self) -> None:
        self._start = self._clock()

    def _elapsed(self) -> str:
        elapsed = 0.0 if self._start is None else self._clock() - self._start
        return f"+{elapsed:.1f}s"

    # ---------------------------------------------- #
    # Logging
    def log(self, message: str, level: str = "info") -> None:
        lvl = LogLevel(level)
        if lvl is LogLevel.DEBUG and not self.debug:
            return

        logger.log(_LEVEL_MAP[lvl], message)

        entry = LogEntry(level=lvl, message=message, elapsed=self._elapsed())
        self._buffer.append(entry)
        if lvl is LogLevel.ERROR:
            self._errors += 1

        if lvl in (LogLevel.ERROR, LogLevel.WARNING) or len(self._buffer) >= BATCH_THRESHOLD:
            self.flush()

    def error(self, message: str) -> None:
        self.log(message, "error")

    def warning(self, message: str) -> None:
        self.log(message, "warning")

    def info(self, message: str) -> None:
        self.log(message, "info")

    def flush(self) -> None:
        if not self._buffer:
            return
        entries = self._read_entries()
        entries.extend(e.model_dump(mode="json") for e in self._buffer)
        if len(entries) > MAX_ENTRIES:
            entries = entries[-MAX_ENTRIES:]
        try:
            _write_json(self.log_path, entries)
        except OSError as e:
            logger.error(f"Failed to persist run log: {e}")
        self._buffer = []

    def _read_entries(self) -> List[Dict[str, Any]]:
        try:
            data = json.loads(self.log_path.read_text())
        except FileNotFoundError:
            return []
        except (OSError, ValueError) as e:
            logger.warning(f"Discarding unreadable run log: {e}")
            return []
        return data if isinstance(data, list) else []

    def get_logs(self, offset: int = 0) -> List[LogEntry]:
        self.flush()
        return [LogEntry.model_validate(e) for e in self._read_entries()[offset:]]

    def clear_logs(self) -> None:
        self._buffer = []
        self._errors = 0
        self._start = None
        try:
            _write_json(self.log_path, [])
        except OSError as e:
            logger.error(f"Failed to clear run log: {e}")

    def error_count(self) -> int:
        return self._errors

    # ---------------------------------------------- #
    # Progress
    def update_progress(self, current: int, total: int, status: str = "") -> None:
        state = ProgressState.of(current, total, status)
        try:
            _write_json(self.progress_path, state.model_dump())
        except OSError as e:
            logger.debug(f"Failed to persist progress: {e}")

    def get_progress(self) -> ProgressState:
        try:
            return ProgressState.model_validate(json.loads(self.progress_path.read_text()))
        except (OSError, ValueError):
            return ProgressState()

    def clear_progress(self) -> None:
        self.progress_path.unlink(missing_ok=True)
