"""
campaign_client.py — Campaign backend client used for escalation.

    POST {CAMPAIGN_BASE_URL}/campaigns/emergency/auto-create
    Headers: Idempotency-Key: <fingerprint(alert)>
    Body:    one Alert wire record

    2xx → Campaign (bare or wrapped in {"data": ...})
    409 → duplicate; the backend already created a campaign for this
          fingerprint. Treated as success; the id is used if the body has one.
    any other outcome → EscalationError

Fingerprint
===========
    sha256( TYPE | normalised location | timestamp floored to the hour )

Two polls reporting the same event produce the same key even if the feed
re-stamps it within the hour, so the backend can no-op the repeat.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from reliefwatch.alerts.models import Alert, Campaign
from reliefwatch.core.config import settings
from reliefwatch.core.errors import EscalationError

logger = logging.getLogger(__name__)

AUTO_CREATE_PATH = "/campaigns/emergency/auto-create"
IDEMPOTENCY_HEADER = "Idempotency-Key"


def fingerprint(alert: Alert) -> str:
    """Stable idempotency key for an alert's escalation."""
    bucket = alert.timestamp.replace(minute=0, second=0, microsecond=0)
    parts = [
        alert.type.upper(),
        " ".join(alert.location.lower().split()),
        bucket.isoformat(),
    ]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()[:32]


@dataclass
class CampaignResult:
    """Outcome of one successful auto-create call."""
    campaign: Optional[Campaign]
    duplicate: bool = False

    @property
    def campaign_id(self) -> Optional[str]:
        return self.campaign.id if self.campaign else None


def _parse_campaign(body: Any) -> Optional[Campaign]:
    try:
        return Campaign.from_dict(body)
    except ValueError:
        return None


class CampaignClient:
    """Async client for the emergency auto-create endpoint."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.CAMPAIGN_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.CAMPAIGN_TIMEOUT_SECONDS
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    @property
    def url(self) -> str:
        return f"{self.base_url}{AUTO_CREATE_PATH}"

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def create_emergency_campaign(self, alert: Alert) -> CampaignResult:
        """
        Ask the backend to create a campaign for `alert`.

        Raises
        ------
        EscalationError
            On transport failure, a non-2xx/409 status, or a 2xx body
            without a campaign id.
        """
        client = await self._get_client()
        key = fingerprint(alert)

        try:
            response = await client.post(
                self.url,
                json=alert.to_dict(),
                headers={IDEMPOTENCY_HEADER: key},
            )
        except httpx.HTTPError as e:
            raise EscalationError(alert.key, f"transport error: {e}") from e

        if response.status_code == 409:
            body = _safe_json(response)
            campaign = _parse_campaign(body) if body is not None else None
            logger.info(
                "Campaign already exists for alert %s (idempotency key %s)",
                alert.key, key,
                extra={"alert_key": alert.key},
            )
            return CampaignResult(campaign=campaign, duplicate=True)

        if not response.is_success:
            raise EscalationError(
                alert.key, f"HTTP {response.status_code}",
                status=response.status_code,
            )

        body = _safe_json(response)
        campaign = _parse_campaign(body)
        if campaign is None:
            raise EscalationError(alert.key, "response carried no campaign id")
        return CampaignResult(campaign=campaign)


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None
