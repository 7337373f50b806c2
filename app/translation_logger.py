#!/usr/bin/env python3
"""
Translation event log.

Records units that were skipped, failed validation or were served from the
cache. The file-backed variant writes one pipe-separated line per event through
a dedicated ``logging`` logger so it never mixes with console output.
"""

import itertools
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

MAX_SOURCE_LENGTH = 120

_logger_ids = itertools.count()


def truncate(text: Optional[str], limit: int = MAX_SOURCE_LENGTH) -> str:
    """Shorten ``text`` to ``limit`` characters, marking the cut with an ellipsis."""
    if not text:
        return ""
    if len(text) <= limit:
        return text
    return text[:limit] + "…"


class TranslationLogger:
    """Receives per-unit events from the document translator. Does nothing."""

    def skipped(
        self, file: str, unit_id: Optional[str], reason: str, source: str
    ) -> None:
        pass

    def failed(
        self, file: str, unit_id: Optional[str], reason: str, source: str
    ) -> None:
        pass

    def cached(self, file: str, unit_id: Optional[str], source: str) -> None:
        pass

    def close(self) -> None:
        pass


class NullTranslationLogger(TranslationLogger):
    """Discards every event."""


class FileTranslationLogger(TranslationLogger):
    """Appends events to a log file, one line per event."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._logger = logging.getLogger(f"{__name__}.file{next(_logger_ids)}")
        self._logger.setLevel(logging.INFO)
        self._logger.propagate = False

        self._handler = logging.FileHandler(
            self.path, mode="a", encoding="utf-8", delay=True
        )
        self._handler.setFormatter(logging.Formatter("%(message)s"))
        self._logger.addHandler(self._handler)

    def skipped(
        self, file: str, unit_id: Optional[str], reason: str, source: str
    ) -> None:
        self._write("SKIPPED", file, unit_id, reason, source)

    def failed(
        self, file: str, unit_id: Optional[str], reason: str, source: str
    ) -> None:
        self._write("FAILED", file, unit_id, reason, source)

    def cached(self, file: str, unit_id: Optional[str], source: str) -> None:
        self._write("CACHED", file, unit_id, "Cache hit", source)

    def close(self) -> None:
        self._logger.removeHandler(self._handler)
        self._handler.close()

    def _write(
        self,
        level: str,
        file: str,
        unit_id: Optional[str],
        reason: str,
        source: str,
    ) -> None:
        timestamp = datetime.now(timezone.utc).isoformat()
        self._logger.info(
            f"{timestamp} | {level} | {Path(file).name} | {unit_id or '-'} | "
            f"{reason} | {truncate(source)}"
        )
