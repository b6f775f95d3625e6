"""
store.py — The live alert working set and its refresh pipeline.

═══════════════════════════════════════════════════════════════════════════
REFRESH PIPELINE
═══════════════════════════════════════════════════════════════════════════

    refresh(demo_mode)
        loading = True
        fetch ─┬─ FetchError ─→ fallback snapshot, error set, degraded,
               │                 detector untouched, no escalation
               └─ ok ─→ normalize, note the feed-reported demoMode
                        → reset detector if the demo flag changed
                        → detect new alerts
                        → escalate (sequential, merges campaign ids)
                        → publish snapshot, error cleared
        last_update = now, loading = False

═══════════════════════════════════════════════════════════════════════════
SCHEDULING & IN-FLIGHT GUARD
═══════════════════════════════════════════════════════════════════════════

One polling task per started store calls refresh every
REFRESH_INTERVAL_SECONDS (15 min). Manual refresh goes through the same
`refresh` without touching the polling task.

Refreshes never overlap; they run one at a time behind an asyncio.Lock.

    Caller                    While a refresh is running
    ─────────────────────     ─────────────────────────────────────────
    polling tick              dropped
    refresh(same flag)        joins the running refresh, same result
    refresh(other flag)       waits, then runs
    set_demo_mode(flag)       resets detector baseline, waits, then runs
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

from reliefwatch.alerts.detector import NewAlertDetector
from reliefwatch.alerts.escalation import EscalationReport, EscalationTrigger
from reliefwatch.alerts.models import Alert
from reliefwatch.core.config import settings
from reliefwatch.core.errors import FetchError
from reliefwatch.ingestion.feed_client import AlertFeedClient, fallback_snapshot

logger = logging.getLogger(__name__)

FETCH_ERROR_MESSAGE = "Failed to load disaster alerts. Please try again."

SnapshotListener = Callable[[List[Alert]], None]


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RefreshResult:
    """Outcome of one refresh cycle."""
    alerts: List[Alert]
    demo_mode: bool
    new_alerts: List[Alert] = field(default_factory=list)
    escalation: Optional[EscalationReport] = None
    degraded: bool = False
    error: Optional[str] = None
    completed_at: datetime = field(default_factory=_now)
    duration_ms: float = 0.0
    feed_demo_mode: Optional[bool] = None

    def to_dict(self) -> dict:
        return {
            "alert_count": len(self.alerts),
            "demo_mode": self.demo_mode,
            "new_alert_keys": [a.key for a in self.new_alerts],
            "escalation": self.escalation.to_dict() if self.escalation else None,
            "degraded": self.degraded,
            "error": self.error,
            "completed_at": self.completed_at.isoformat(),
            "duration_ms": round(self.duration_ms, 1),
            "feed_demo_mode": self.feed_demo_mode,
        }


class AlertStore:
    """
    Orchestrates fetch → normalize → detect → escalate → publish.

    Usage:
        store = AlertStore(AlertFeedClient(), build_detector(), trigger)
        store.subscribe(dashboard.on_snapshot)
        await store.start()          # polls every 15 minutes
        await store.refresh()        # manual refresh
        await store.set_demo_mode(True)
        await store.stop()
    """

    def __init__(
        self,
        feed_client: AlertFeedClient,
        detector: NewAlertDetector,
        trigger: EscalationTrigger,
        *,
        demo_mode: Optional[bool] = None,
        refresh_interval: Optional[float] = None,
        fallback: Callable[[], List[Alert]] = fallback_snapshot,
    ):
        self.feed_client = feed_client
        self.detector = detector
        self.trigger = trigger
        self.refresh_interval = (
            refresh_interval if refresh_interval is not None
            else settings.REFRESH_INTERVAL_SECONDS
        )
        self._fallback = fallback

        # Published state
        self.alerts: List[Alert] = []
        self.demo_mode: bool = (
            demo_mode if demo_mode is not None else settings.DEMO_MODE_DEFAULT
        )
        self.last_update: Optional[datetime] = None
        self.loading: bool = False
        self.error: Optional[str] = None
        self.degraded: bool = False
        self.last_result: Optional[RefreshResult] = None
        self.feed_demo_mode: Optional[bool] = None

        self._listeners: List[SnapshotListener] = []
        self._lock = asyncio.Lock()
        self._inflight: Optional[asyncio.Future] = None
        self._inflight_demo: Optional[bool] = None
        self._baseline_demo: Optional[bool] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._running = False
        self.refresh_count = 0
        self.dropped_ticks = 0

    # ── Subscription ──

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register a snapshot listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _publish(self, alerts: List[Alert]) -> None:
        for listener in list(self._listeners):
            try:
                listener(alerts)
            except Exception:
                logger.exception("Snapshot listener failed")

    # ── Refresh ──

    @property
    def refreshing(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def refresh(self, demo_mode: Optional[bool] = None) -> RefreshResult:
        """Run the pipeline, or join an identical refresh already running."""
        target = self.demo_mode if demo_mode is None else bool(demo_mode)

        current = self._inflight
        if current is not None and not current.done() and self._inflight_demo == target:
            logger.info(
                "Refresh already in flight (demo=%s); joining it", target,
                extra={"demo_mode": target},
            )
            return await asyncio.shield(current)

        task = asyncio.ensure_future(self._guarded_refresh(target))
        self._inflight = task
        self._inflight_demo = target
        return await asyncio.shield(task)

    async def set_demo_mode(self, enabled: bool) -> RefreshResult:
        """Switch datasets: re-baseline detection and refresh immediately."""
        enabled = bool(enabled)
        logger.info("Demo mode → %s", enabled, extra={"demo_mode": enabled})
        async with self._lock:
            self.detector.reset()
            self._baseline_demo = enabled
        return await self.refresh(enabled)

    async def _guarded_refresh(self, demo_mode: bool) -> RefreshResult:
        async with self._lock:
            return await self._run_refresh(demo_mode)

    async def _run_refresh(self, demo_mode: bool) -> RefreshResult:
        self.loading = True
        start = time.monotonic()
        try:
            try:
                snapshot = await self.feed_client.fetch_snapshot(demo_mode)
            except FetchError as e:
                return self._publish_degraded(demo_mode, e, start)
            alerts = snapshot.alerts
            self._note_feed_demo_mode(demo_mode, snapshot.reported_demo_mode)

            if self._baseline_demo is not None and self._baseline_demo != demo_mode:
                logger.info(
                    "Demo flag changed (%s → %s); re-baselining detector",
                    self._baseline_demo, demo_mode,
                    extra={"demo_mode": demo_mode},
                )
                self.detector.reset()
            self._baseline_demo = demo_mode

            new_alerts = self.detector.detect(alerts)
            report = await self.trigger.escalate(new_alerts, alerts)

            self.alerts = alerts
            self.demo_mode = demo_mode
            self.error = None
            self.degraded = False
            self.last_update = _now()
            self._publish(alerts)

            result = RefreshResult(
                alerts=alerts,
                demo_mode=demo_mode,
                new_alerts=new_alerts,
                escalation=report,
                completed_at=self.last_update,
                duration_ms=(time.monotonic() - start) * 1000,
                feed_demo_mode=snapshot.reported_demo_mode,
            )
            logger.info(
                "Refresh complete: %d alerts, %d new, %d escalated",
                len(alerts), len(new_alerts), len(report.created),
                extra={
                    "alert_count": len(alerts),
                    "new_count": len(new_alerts),
                    "demo_mode": demo_mode,
                    "duration_ms": result.duration_ms,
                },
            )
            self.last_result = result
            self.refresh_count += 1
            return result
        finally:
            self.loading = False

    def _note_feed_demo_mode(self, requested: bool, reported: Optional[bool]) -> None:
        self.feed_demo_mode = reported
        if reported is not None and reported != requested:
            logger.warning(
                "Feed reported demoMode=%s for a demo=%s request",
                reported, requested,
                extra={"demo_mode": requested},
            )

    def _publish_degraded(self, demo_mode: bool, error: FetchError, start: float) -> RefreshResult:
        logger.warning(
            "Alert feed unavailable, showing fallback alerts: %s", error.message,
            extra={"demo_mode": demo_mode},
        )
        alerts = self._fallback()
        self.alerts = alerts
        self.demo_mode = demo_mode
        self.error = FETCH_ERROR_MESSAGE
        self.degraded = True
        self.feed_demo_mode = None
        self.last_update = _now()
        self._publish(alerts)

        result = RefreshResult(
            alerts=alerts,
            demo_mode=demo_mode,
            degraded=True,
            error=FETCH_ERROR_MESSAGE,
            completed_at=self.last_update,
            duration_ms=(time.monotonic() - start) * 1000,
        )
        self.last_result = result
        self.refresh_count += 1
        return result

    # ── Polling ──

    @property
    def running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def start(self, *, immediate: bool = True) -> None:
        """Start the polling task (one per store)."""
        if self.running:
            return
        self._running = True
        self._poll_task = asyncio.create_task(self._poll_loop(immediate))
        logger.info(
            "Alert polling started (every %.0fs, demo=%s)",
            self.refresh_interval, self.demo_mode,
        )

    async def stop(self) -> None:
        """Cancel the polling task and any refresh still running."""
        self._running = False
        for task in (self._poll_task, self._inflight):
            if task is None or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._poll_task = None
        logger.info("Alert polling stopped")

    async def _tick(self) -> None:
        if self.refreshing:
            self.dropped_ticks += 1
            logger.info("Refresh still running; skipping scheduled tick")
            return
        await self.refresh()

    async def _poll_loop(self, immediate: bool) -> None:
        if immediate:
            await self._safe_tick()
        while self._running:
            await asyncio.sleep(self.refresh_interval)
            await self._safe_tick()

    async def _safe_tick(self) -> None:
        try:
            await self._tick()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Scheduled refresh failed")

    # ── Views ──

    def find(self, key: str) -> Optional[Alert]:
        for alert in self.alerts:
            if alert.key == key:
                return alert
        return None

    def state(self) -> dict:
        return {
            "demo_mode": self.demo_mode,
            "loading": self.loading,
            "error": self.error,
            "degraded": self.degraded,
            "last_update": self.last_update.isoformat() if self.last_update else None,
            "alert_count": len(self.alerts),
            "polling": self.running,
            "detection_strategy": self.detector.strategy,
            "pending_escalations": len(self.trigger.retry_queue),
            "feed_demo_mode": self.feed_demo_mode,
        }
