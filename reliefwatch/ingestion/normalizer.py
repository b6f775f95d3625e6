"""
normalizer.py — Coerce raw feed payloads into canonical Alert records.

The feed endpoint has shipped several envelope shapes over time; all of
them must be accepted:

    [ {...}, {...} ]                                   bare array
    { "data": [ ... ] }                                wrapped array
    { "data": { "alerts": [ ... ] } }                  wrapped envelope
    { "alerts": [ ... ], "demoMode": true, ... }       bare envelope
    { "success": true, "data": { "alerts": [...], "demoMode": false } }

Any other shape yields an empty list. Nothing in this module raises:
a malformed payload is a valid "no active disasters" result, not an error.

Timestamp resolution
====================
    1. record["timestamp"]   if present and parseable
    2. record["reportedAt"]  if present and parseable
    3. now (UTC)

Parseable means an ISO-8601 string (a trailing "Z" is accepted), a
`datetime`, or epoch seconds / milliseconds. Naive values are taken as UTC.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from reliefwatch.alerts.models import Alert, Severity
from reliefwatch.spatial.geo import parse_coordinate

logger = logging.getLogger(__name__)

# Epoch values above this are treated as milliseconds
_EPOCH_MS_THRESHOLD = 100_000_000_000


# ---------------------------------------------------------------------------
# Envelope handling
# ---------------------------------------------------------------------------

def _unwrap(raw: Any) -> Any:
    """Strip a single ``{"data": ...}`` wrapper when present."""
    if isinstance(raw, dict) and raw.get("data") is not None:
        return raw["data"]
    return raw


def extract_records(raw: Any) -> List[Any]:
    """Pull the list of raw alert records out of any supported envelope."""
    data = _unwrap(raw)
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        if isinstance(data.get("alerts"), list):
            return data["alerts"]
        if isinstance(data.get("data"), list):
            return data["data"]
    return []


def extract_demo_flag(raw: Any) -> Optional[bool]:
    """The envelope's ``demoMode`` flag, if it carries one."""
    data = _unwrap(raw)
    for candidate in (data, raw):
        if isinstance(candidate, dict) and "demoMode" in candidate:
            return bool(candidate["demoMode"])
    return None


# ---------------------------------------------------------------------------
# Field coercion
# ---------------------------------------------------------------------------

def parse_timestamp(value: Any) -> Optional[datetime]:
    """Best-effort timestamp parse; None when the value is unusable."""
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        seconds = value / 1000.0 if abs(value) >= _EPOCH_MS_THRESHOLD else float(value)
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def resolve_timestamp(record: Dict[str, Any], now: Optional[datetime] = None) -> datetime:
    """timestamp → reportedAt → now."""
    for field_name in ("timestamp", "reportedAt"):
        parsed = parse_timestamp(record.get(field_name))
        if parsed is not None:
            return parsed
    return now or datetime.now(timezone.utc)


def _optional_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _normalize_type(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().upper()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def normalize_record(record: Dict[str, Any], now: Optional[datetime] = None) -> Alert:
    """Turn one raw wire record into an Alert."""
    raw_id = record.get("id")
    alert_id = None if raw_id is None or raw_id == "" else str(raw_id)

    return Alert(
        id=alert_id,
        type=_normalize_type(record.get("type")),
        severity=Severity.parse(record.get("severity")),
        location=str(record.get("location") or ""),
        description=str(record.get("description") or ""),
        source=str(record.get("source") or ""),
        magnitude=_optional_float(record.get("magnitude")),
        coordinates=parse_coordinate(record.get("coordinates")),
        timestamp=resolve_timestamp(record, now),
        campaign_id=_optional_text(record.get("campaignId")),
        affected_area=_optional_text(record.get("affectedArea")),
        estimated_damage=_optional_text(record.get("estimatedDamage")),
    )


def normalize_payload(raw: Any, now: Optional[datetime] = None) -> List[Alert]:
    """
    Normalize a whole feed response into a Snapshot.

    Order is preserved (the feed is assumed newest-first). Entries that are
    not objects are skipped.
    """
    records = extract_records(raw)
    stamp = now or datetime.now(timezone.utc)

    alerts: List[Alert] = []
    skipped = 0
    for record in records:
        if not isinstance(record, dict):
            skipped += 1
            continue
        alerts.append(normalize_record(record, stamp))

    if skipped:
        logger.warning("Skipped %d non-object feed records", skipped)
    logger.debug("Normalized %d alerts", len(alerts), extra={"alert_count": len(alerts)})
    return alerts
