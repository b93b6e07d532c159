"""Durable set of already processed message fingerprints."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from task_courier.contracts import write_json_atomic

logger = logging.getLogger(__name__)


class SeenSetStore:
    """JSON-array backed fingerprint set with atomic save."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> set[str]:
        if not self.path.exists():
            logger.info("No seen-set at %s, starting fresh", self.path)
            return set()
        raw = json.loads(self.path.read_text("utf-8"))
        if not isinstance(raw, list) or not all(isinstance(item, str) for item in raw):
            raise ValueError(f"Seen-set at {self.path} must be a JSON array of strings")
        return set(raw)

    def save(self, fingerprints: set[str]) -> None:
        write_json_atomic(self.path, sorted(fingerprints))
