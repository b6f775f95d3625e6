"""
escalation.py — Turn severe new alerts into fundraising campaigns.

═══════════════════════════════════════════════════════════════════════════
ESCALATION PIPELINE
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │ 1. Retry pass       │  Alerts whose earlier escalation failed and
    │                     │  that are still in the snapshot without a
    │                     │  campaign are retried first
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │ 2. New-alert pass   │  New alerts with severity in
    │                     │  ESCALATION_SEVERITIES (CRITICAL, HIGH)
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │ 3. Per alert        │  await create → merge campaign id into the
    │    (sequential)     │  snapshot by key → emit CampaignCreatedEvent
    └─────────────────────┘

Calls are awaited one at a time, never gathered, so a burst of new alerts
cannot race against shared backend state. Each key is attempted at most
once per pass.

Failures are logged and swallowed; the alert simply has no campaign_id.
Because a count-based detector will not report the same alert as new
again, failed alerts go into a bounded retry queue instead:

    Setting                      Default   Meaning
    ─────────────────────────    ───────   ─────────────────────────────────
    ESCALATION_RETRY_CAPACITY    50        oldest entry evicted beyond this
    ESCALATION_MAX_ATTEMPTS      3         total attempts before giving up
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set

from reliefwatch.alerts.campaign_client import CampaignClient, CampaignResult
from reliefwatch.alerts.models import Alert, CampaignCreatedEvent, Severity
from reliefwatch.core.config import settings
from reliefwatch.core.errors import EscalationError

logger = logging.getLogger(__name__)

CampaignListener = Callable[[CampaignCreatedEvent], None]


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# Retry Queue
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class PendingEscalation:
    """A failed escalation waiting for another attempt."""
    alert_key: str
    attempts: int
    last_error: str
    queued_at: datetime = field(default_factory=_now)

    def to_dict(self) -> dict:
        return {
            "alert_key": self.alert_key,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "queued_at": self.queued_at.isoformat(),
        }


class EscalationRetryQueue:
    """Bounded, insertion-ordered set of failed escalations keyed by alert key."""

    def __init__(
        self,
        capacity: Optional[int] = None,
        max_attempts: Optional[int] = None,
    ):
        self.capacity = capacity if capacity is not None else settings.ESCALATION_RETRY_CAPACITY
        self.max_attempts = (
            max_attempts if max_attempts is not None else settings.ESCALATION_MAX_ATTEMPTS
        )
        self._pending: "OrderedDict[str, PendingEscalation]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, key: str) -> bool:
        return key in self._pending

    def get(self, key: str) -> Optional[PendingEscalation]:
        return self._pending.get(key)

    def keys(self) -> List[str]:
        return list(self._pending)

    def record_failure(self, alert: Alert, error: str) -> bool:
        """
        Register a failed attempt. Returns True if the alert stays queued,
        False if it has exhausted its attempts (or the queue is disabled).
        """
        if self.capacity <= 0:
            return False

        key = alert.key
        entry = self._pending.pop(key, None)
        attempts = (entry.attempts if entry else 0) + 1

        if attempts >= self.max_attempts:
            logger.error(
                "Giving up on escalation for %s after %d attempts: %s",
                key, attempts, error,
                extra={"alert_key": key, "attempt": attempts},
            )
            return False

        self._pending[key] = PendingEscalation(
            alert_key=key,
            attempts=attempts,
            last_error=error,
            queued_at=entry.queued_at if entry else _now(),
        )
        while len(self._pending) > self.capacity:
            evicted, _ = self._pending.popitem(last=False)
            logger.warning(
                "Escalation retry queue full; dropped %s", evicted,
                extra={"alert_key": evicted},
            )
        return True

    def discard(self, key: str) -> None:
        self._pending.pop(key, None)

    def due(self, snapshot: Sequence[Alert]) -> List[Alert]:
        """
        Alerts to retry now, in queue order.

        Entries whose alert left the snapshot, or which gained a campaign
        some other way, are dropped.
        """
        by_key: Dict[str, Alert] = {}
        for alert in snapshot:
            by_key.setdefault(alert.key, alert)

        ready: List[Alert] = []
        for key in list(self._pending):
            alert = by_key.get(key)
            if alert is None or alert.campaign_id:
                del self._pending[key]
                continue
            ready.append(alert)
        return ready

    def clear(self) -> None:
        self._pending.clear()

    def snapshot(self) -> List[dict]:
        return [p.to_dict() for p in self._pending.values()]


# ═══════════════════════════════════════════════════════════════════════════
# Report
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class EscalationReport:
    """What one escalation pass did."""
    attempted: List[str] = field(default_factory=list)
    created: List[str] = field(default_factory=list)
    duplicates: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    retried: List[str] = field(default_factory=list)

    @property
    def calls(self) -> int:
        return len(self.attempted)

    def to_dict(self) -> dict:
        return {
            "attempted": list(self.attempted),
            "created": list(self.created),
            "duplicates": list(self.duplicates),
            "failed": list(self.failed),
            "retried": list(self.retried),
        }


# ═══════════════════════════════════════════════════════════════════════════
# Trigger
# ═══════════════════════════════════════════════════════════════════════════

def _parse_severities(values: Optional[Iterable]) -> Set[Severity]:
    raw = values if values is not None else settings.ESCALATION_SEVERITIES
    parsed = set()
    for v in raw:
        if isinstance(v, Severity):
            parsed.add(v)
            continue
        try:
            parsed.add(Severity(str(v).strip().upper()))
        except ValueError:
            raise ValueError(f"Unknown escalation severity '{v}'") from None
    return parsed


class EscalationTrigger:
    """
    Creates one campaign per severe new alert, sequentially.

    Usage:
        trigger = EscalationTrigger(CampaignClient())
        trigger.subscribe(lambda event: print(event.campaign_id))
        report = await trigger.escalate(new_alerts, snapshot)
    """

    def __init__(
        self,
        client: CampaignClient,
        *,
        severities: Optional[Iterable] = None,
        retry_queue: Optional[EscalationRetryQueue] = None,
    ):
        self.client = client
        self.severities = _parse_severities(severities)
        self.retry_queue = retry_queue if retry_queue is not None else EscalationRetryQueue()
        self._listeners: List[CampaignListener] = []

    def subscribe(self, listener: CampaignListener) -> Callable[[], None]:
        """Register a listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def should_escalate(self, alert: Alert) -> bool:
        return alert.severity in self.severities and not alert.campaign_id

    async def escalate(
        self,
        new_alerts: Sequence[Alert],
        snapshot: Sequence[Alert],
    ) -> EscalationReport:
        """Run one escalation pass over `new_alerts`, mutating `snapshot`."""
        report = EscalationReport()
        seen: Set[str] = set()

        for alert in self.retry_queue.due(snapshot):
            seen.add(alert.key)
            report.retried.append(alert.key)
            await self._escalate_one(alert, snapshot, report)

        for alert in new_alerts:
            if alert.key in seen or not self.should_escalate(alert):
                continue
            seen.add(alert.key)
            await self._escalate_one(alert, snapshot, report)

        if report.attempted:
            logger.info(
                "Escalation pass: %d attempted, %d created, %d duplicate, %d failed",
                len(report.attempted), len(report.created),
                len(report.duplicates), len(report.failed),
            )
        return report

    async def _escalate_one(
        self,
        alert: Alert,
        snapshot: Sequence[Alert],
        report: EscalationReport,
    ) -> None:
        report.attempted.append(alert.key)
        try:
            result = await self.client.create_emergency_campaign(alert)
        except EscalationError as e:
            report.failed.append(alert.key)
            queued = self.retry_queue.record_failure(alert, e.message)
            logger.error(
                "Escalation failed for %s (%s)%s",
                alert.key, e.message, "; queued for retry" if queued else "",
                extra={"alert_key": alert.key, "severity": alert.severity.value},
            )
            return

        self.retry_queue.discard(alert.key)
        self._merge(alert, result, snapshot)
        if result.duplicate:
            report.duplicates.append(alert.key)
        else:
            report.created.append(alert.key)

        logger.info(
            "Emergency campaign %s for alert %s (%s @ %s)",
            result.campaign_id or "<existing>", alert.key,
            alert.type, alert.location,
            extra={
                "alert_key": alert.key,
                "campaign_id": result.campaign_id,
                "severity": alert.severity.value,
            },
        )
        self._emit(CampaignCreatedEvent(
            alert=alert,
            campaign_id=result.campaign_id,
            campaign=result.campaign,
            duplicate=result.duplicate,
        ))

    @staticmethod
    def _merge(alert: Alert, result: CampaignResult, snapshot: Sequence[Alert]) -> None:
        campaign_id = result.campaign_id
        if campaign_id is None:
            return
        alert.campaign_id = campaign_id
        for candidate in snapshot:
            if candidate.key == alert.key:
                candidate.campaign_id = campaign_id

    def _emit(self, event: CampaignCreatedEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "Campaign listener failed for %s", event.alert.key,
                    extra={"alert_key": event.alert.key},
                )
