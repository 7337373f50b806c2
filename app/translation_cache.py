#!/usr/bin/env python3
"""In-memory translation cache shared by every file of a single run."""

import threading
from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class CachedTranslation:
    """
    Protected text written for a unit.

    ``translated`` is False when the text is the untranslated source kept after
    every attempt was rejected.
    """

    text: str
    translated: bool = True


class TranslationCache:
    """
    Maps protected source text to the protected text written for it.

    Lookups are exact: only byte-identical protected text is a hit. The cache
    lives for one run and is never persisted.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, CachedTranslation] = {}
        self._lock = threading.Lock()

    def get(self, protected_text: str) -> Optional[CachedTranslation]:
        with self._lock:
            return self._entries.get(protected_text)

    def put(
        self, protected_text: str, translated_text: str, translated: bool = True
    ) -> None:
        with self._lock:
            self._entries[protected_text] = CachedTranslation(
                translated_text, translated
            )

    def __contains__(self, protected_text: str) -> bool:
        with self._lock:
            return protected_text in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
