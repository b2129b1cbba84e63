"""In-memory registry of known faces."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from facematch.core.matching import LabeledFace

logger = logging.getLogger(__name__)


class FaceRegistry:
    """Thread-safe label -> LabeledFace map.

    Readers get an immutable snapshot, so a scan never observes a
    partially registered entry.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._faces: dict[str, LabeledFace] = {}

    def put(self, label: str, face: LabeledFace) -> LabeledFace:
        """Register ``face`` under ``label``, replacing any previous entry in place."""
        labeled = face.with_label(label)
        with self._lock:
            replaced = label in self._faces
            self._faces[label] = labeled
        if replaced:
            logger.info("Replaced registered face %r", label)
        else:
            logger.info("Registered face %r", label)
        return labeled

    def get(self, label: str) -> LabeledFace | None:
        with self._lock:
            return self._faces.get(label)

    def remove(self, label: str) -> bool:
        with self._lock:
            removed = self._faces.pop(label, None) is not None
        if removed:
            logger.info("Removed registered face %r", label)
        return removed

    def snapshot(self) -> tuple[LabeledFace, ...]:
        """Return registered faces in registration order."""
        with self._lock:
            return tuple(self._faces.values())

    def labels(self) -> list[str]:
        with self._lock:
            return list(self._faces.keys())

    def clear(self) -> None:
        with self._lock:
            self._faces.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._faces)
