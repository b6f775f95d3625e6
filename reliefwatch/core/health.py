"""
Health check aggregation — deep health probe for the monitoring pipeline.

Checks:
    • Alert feed freshness (last successful refresh, fallback in use)
    • Polling task running
    • Escalation retry backlog
    • Configured upstream endpoints

Returns a structured health report suitable for:
    - Kubernetes liveness/readiness probes
    - Load balancer health checks
    - Monitoring dashboards
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from reliefwatch.alerts.store import AlertStore
from reliefwatch.core.config import settings

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = settings.APP_VERSION
    environment: str = settings.ENVIRONMENT
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


_start_time = time.monotonic()


def check_feed(store: AlertStore, now: Optional[datetime] = None) -> ComponentHealth:
    """Is the snapshot live and recent?"""
    comp = ComponentHealth(name="alert_feed")
    start = time.monotonic()
    now = now or datetime.now(timezone.utc)

    comp.details = {
        "url": store.feed_client.url,
        "demo_mode": store.demo_mode,
        "alert_count": len(store.alerts),
        "last_update": store.last_update.isoformat() if store.last_update else None,
    }

    if store.last_update is None:
        comp.status = HealthStatus.DEGRADED
        comp.message = "No refresh completed yet"
    elif store.degraded:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Feed unreachable; serving fallback alerts"
    else:
        age = (now - store.last_update).total_seconds()
        comp.details["age_seconds"] = round(age, 1)
        if age > 2 * store.refresh_interval:
            comp.status = HealthStatus.DEGRADED
            comp.message = f"Snapshot is stale ({age / 60:.0f} min old)"
        else:
            comp.message = "Snapshot current"

    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


def check_polling(store: AlertStore, polling_enabled: Optional[bool] = None) -> ComponentHealth:
    """Is the refresh loop alive when it should be?"""
    comp = ComponentHealth(name="polling")
    start = time.monotonic()
    enabled = settings.POLLING_ENABLED if polling_enabled is None else polling_enabled

    comp.details = {
        "enabled": enabled,
        "running": store.running,
        "interval_seconds": store.refresh_interval,
        "dropped_ticks": store.dropped_ticks,
    }
    if not enabled:
        comp.message = "Polling disabled; manual refresh only"
    elif store.running:
        comp.message = f"Refreshing every {store.refresh_interval / 60:.0f} min"
    else:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "Polling task not running"

    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


def check_escalation(store: AlertStore) -> ComponentHealth:
    """How many campaigns are waiting for a retry?"""
    comp = ComponentHealth(name="escalation")
    start = time.monotonic()
    queue = store.trigger.retry_queue

    comp.details = {
        "url": store.trigger.client.url,
        "pending": len(queue),
        "capacity": queue.capacity,
        "severities": sorted(s.value for s in store.trigger.severities),
    }
    if queue.capacity and len(queue) >= queue.capacity:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Retry queue full"
    elif len(queue):
        comp.status = HealthStatus.DEGRADED
        comp.message = f"{len(queue)} escalation(s) awaiting retry"
    else:
        comp.message = "No pending escalations"

    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def run_health_check(
    store: AlertStore,
    *,
    polling_enabled: Optional[bool] = None,
    now: Optional[datetime] = None,
) -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    report.components = [
        check_feed(store, now),
        check_polling(store, polling_enabled),
        check_escalation(store),
    ]

    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    if report.status is not HealthStatus.HEALTHY:
        logger.debug("Health check: %s", report.status.value)
    return report
