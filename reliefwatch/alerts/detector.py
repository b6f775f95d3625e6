"""
detector.py — Decide which alerts in a fresh Snapshot are "new".

Two strategies share one interface (`detect`, `reset`):

CountDiffDetector (default)
    Remembers only how many alerts the previous poll returned.

        new_count = len(snapshot)
        if new_count > previous_count > 0:
            new = snapshot[: new_count - previous_count]     # head = newest
        else:
            new = []
        previous_count = new_count                            # always

    Depends on the feed returning newest-first and never reordering or
    deduplicating between polls.

KeySetDetector
    Remembers the set of alert keys seen on the previous poll and reports
    every alert whose key is not in it, in snapshot order. Independent of
    ordering and robust to reshuffling.

Both suppress the first poll after construction or `reset()`: with an
empty baseline nothing is new, so switching datasets (demo ↔ live) never
produces an escalation storm.
"""

from __future__ import annotations

import logging
from typing import List, Sequence, Set

from reliefwatch.alerts.models import Alert
from reliefwatch.core.config import settings

logger = logging.getLogger(__name__)


class NewAlertDetector:
    """Interface for new-alert detection strategies."""

    strategy = "base"

    def detect(self, snapshot: Sequence[Alert]) -> List[Alert]:
        raise NotImplementedError

    def reset(self) -> None:
        raise NotImplementedError

    @property
    def has_baseline(self) -> bool:
        raise NotImplementedError


class CountDiffDetector(NewAlertDetector):
    """Count-based heuristic: the head surplus of a longer snapshot is new."""

    strategy = "count"

    def __init__(self) -> None:
        self.previous_count = 0

    @property
    def has_baseline(self) -> bool:
        return self.previous_count > 0

    def detect(self, snapshot: Sequence[Alert]) -> List[Alert]:
        new_count = len(snapshot)
        previous = self.previous_count

        if new_count > previous and previous > 0:
            fresh = list(snapshot[: new_count - previous])
        else:
            fresh = []

        self.previous_count = new_count
        logger.debug(
            "Count detector: %d → %d, %d new", previous, new_count, len(fresh),
            extra={"alert_count": new_count, "new_count": len(fresh)},
        )
        return fresh

    def reset(self) -> None:
        self.previous_count = 0


class KeySetDetector(NewAlertDetector):
    """Key-based set difference against the previous poll."""

    strategy = "keyset"

    def __init__(self) -> None:
        self.previous_keys: Set[str] = set()

    @property
    def has_baseline(self) -> bool:
        return bool(self.previous_keys)

    def detect(self, snapshot: Sequence[Alert]) -> List[Alert]:
        if self.previous_keys:
            fresh = [a for a in snapshot if a.key not in self.previous_keys]
        else:
            fresh = []

        self.previous_keys = {a.key for a in snapshot}
        logger.debug(
            "Key-set detector: %d keys, %d new", len(self.previous_keys), len(fresh),
            extra={"alert_count": len(snapshot), "new_count": len(fresh)},
        )
        return fresh

    def reset(self) -> None:
        self.previous_keys = set()


DETECTORS = {
    CountDiffDetector.strategy: CountDiffDetector,
    KeySetDetector.strategy: KeySetDetector,
}


def build_detector(strategy: str = None) -> NewAlertDetector:
    """Instantiate the configured detection strategy."""
    name = (strategy or settings.DETECTION_STRATEGY).strip().lower()
    try:
        return DETECTORS[name]()
    except KeyError:
        raise ValueError(
            f"Unknown detection strategy '{name}'. "
            f"Must be one of: {sorted(DETECTORS)}"
        ) from None
