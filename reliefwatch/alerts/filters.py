"""
filters.py — Type/severity selection over a Snapshot.

A selection is a pair of strings, each either ``"all"`` or one value of the
closed AlertType / Severity sets:

    matches(alert, t, s) = (t == "all" or alert.type == t)
                       and (s == "all" or alert.severity == s)

Everything here is a pure function of its inputs, so the map, the list
view and the stats panel can recompute the same filtered view at any time
and always agree.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Union

from reliefwatch.alerts.models import Alert, AlertType, Severity
from reliefwatch.core.errors import InvalidFilterError

ALL = "all"

TYPE_OPTIONS = [ALL] + [t.value for t in AlertType]
SEVERITY_OPTIONS = [ALL] + [s.value for s in Severity]


def _selection_value(selection: Union[str, AlertType, Severity, None]) -> str:
    if selection is None:
        return ALL
    if isinstance(selection, (AlertType, Severity)):
        return selection.value
    text = str(selection).strip()
    if text.lower() == ALL:
        return ALL
    return text.upper()


def matches(
    alert: Alert,
    selected_type: Union[str, AlertType, None] = ALL,
    selected_severity: Union[str, Severity, None] = ALL,
) -> bool:
    """True if the alert passes both the type and severity selections."""
    t = _selection_value(selected_type)
    s = _selection_value(selected_severity)
    type_match = t == ALL or alert.type == t
    severity_match = s == ALL or alert.severity.value == s
    return type_match and severity_match


def filter_alerts(
    alerts: Iterable[Alert],
    selected_type: Union[str, AlertType, None] = ALL,
    selected_severity: Union[str, Severity, None] = ALL,
) -> List[Alert]:
    """Order-preserving filter of a Snapshot."""
    return [a for a in alerts if matches(a, selected_type, selected_severity)]


@dataclass(frozen=True)
class FilterSelection:
    """The dashboard's current filter choice."""
    type: str = ALL
    severity: str = ALL

    @classmethod
    def parse(cls, selected_type: str = ALL, selected_severity: str = ALL) -> "FilterSelection":
        """Validate raw selections against the closed sets."""
        t = _selection_value(selected_type)
        s = _selection_value(selected_severity)
        if t not in TYPE_OPTIONS:
            raise InvalidFilterError("type", selected_type)
        if s not in SEVERITY_OPTIONS:
            raise InvalidFilterError("severity", selected_severity)
        return cls(type=t, severity=s)

    @property
    def is_filtered(self) -> bool:
        return self.type != ALL or self.severity != ALL

    def cleared(self) -> "FilterSelection":
        return FilterSelection()

    def apply(self, alerts: Iterable[Alert]) -> List[Alert]:
        return filter_alerts(alerts, self.type, self.severity)

    def to_dict(self) -> dict:
        return {"type": self.type, "severity": self.severity}
