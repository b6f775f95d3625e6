"""
dashboard.py — The "Live Disaster Alerts" dashboard as one object.

Ties the store, the filter selection and the map together:

    AlertStore ──snapshot──▶ AlertDashboard ──filtered──▶ GeoVisualizer
    EscalationTrigger ──CampaignCreatedEvent──▶ notifications
    GeoVisualizer ──click──▶ selected_alert

The stats panel always reads the unfiltered snapshot; the map and the list
read the filtered view.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from reliefwatch.alerts.escalation import EscalationTrigger
from reliefwatch.alerts.filters import FilterSelection
from reliefwatch.alerts.models import Alert, CampaignCreatedEvent
from reliefwatch.alerts.stats import AlertStats, compute_stats, time_ago
from reliefwatch.alerts.store import AlertStore
from reliefwatch.core.errors import NotFoundError
from reliefwatch.visualization.geo_visualizer import GeoVisualizer

logger = logging.getLogger(__name__)

DONATE_PATH = "/donate"


def donate_target(alert: Alert) -> str:
    """Where the "Donate Now" button sends the user."""
    if alert.campaign_id:
        return f"{DONATE_PATH}/{alert.campaign_id}"
    return DONATE_PATH


class AlertDashboard:
    """
    Usage:
        dashboard = AlertDashboard(store, visualizer, trigger)
        dashboard.set_filters("FLOOD", "all")
        dashboard.visible_alerts()
        dashboard.drain_notifications()
        dashboard.dispose()
    """

    def __init__(
        self,
        store: AlertStore,
        visualizer: GeoVisualizer,
        trigger: Optional[EscalationTrigger] = None,
    ):
        self.store = store
        self.visualizer = visualizer
        self.selection = FilterSelection()
        self.selected_alert: Optional[Alert] = None
        self._notifications: List[CampaignCreatedEvent] = []
        self._unsubscribers: List[Callable[[], None]] = [
            store.subscribe(self.on_snapshot),
            visualizer.on_select(self.select),
        ]
        if trigger is not None:
            self._unsubscribers.append(trigger.subscribe(self.on_campaign_created))

    # ── Store / trigger callbacks ──

    def on_snapshot(self, alerts: List[Alert]) -> None:
        if self.selected_alert is not None:
            self.selected_alert = next(
                (a for a in alerts if a.key == self.selected_alert.key), None
            )
        self._render()

    def on_campaign_created(self, event: CampaignCreatedEvent) -> None:
        self._notifications.append(event)

    # ── Filters ──

    def set_filters(self, selected_type: str = "all", selected_severity: str = "all") -> FilterSelection:
        selection = FilterSelection.parse(selected_type, selected_severity)
        if selection != self.selection:
            self.selection = selection
            logger.debug("Filters → %s/%s", selection.type, selection.severity)
            self._render()
        return selection

    def clear_filters(self) -> FilterSelection:
        return self.set_filters()

    def visible_alerts(self) -> List[Alert]:
        return self.selection.apply(self.store.alerts)

    # ── Selection ──

    def select(self, alert: Alert) -> None:
        self.selected_alert = alert

    def select_key(self, key: str) -> Alert:
        alert = self.store.find(key)
        if alert is None:
            raise NotFoundError("Alert", key=key)
        self.selected_alert = alert
        return alert

    def clear_selection(self) -> None:
        self.selected_alert = None

    # ── Notifications ──

    @property
    def pending_notifications(self) -> int:
        return len(self._notifications)

    def drain_notifications(self) -> List[CampaignCreatedEvent]:
        drained, self._notifications = self._notifications, []
        return drained

    # ── Views ──

    def stats(self, now: Optional[datetime] = None) -> AlertStats:
        return compute_stats(self.store.alerts, now)

    def alert_card(self, alert: Alert, now: Optional[datetime] = None) -> Dict[str, Any]:
        card = alert.to_dict()
        card["key"] = alert.key
        card["timeAgo"] = time_ago(alert.timestamp, now)
        card["donateUrl"] = donate_target(alert)
        return card

    def state(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        visible = self.visible_alerts()
        return {
            "filters": self.selection.to_dict(),
            "alerts": [self.alert_card(a, now) for a in visible],
            "visible_count": len(visible),
            "total_count": len(self.store.alerts),
            "selected": self.selected_alert.key if self.selected_alert else None,
            "store": self.store.state(),
        }

    # ── Lifecycle ──

    def _render(self) -> None:
        if self.visualizer.disposed:
            return
        self.visualizer.render(self.visible_alerts())

    def dispose(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self.visualizer.dispose()
