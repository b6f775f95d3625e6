"""
test_store.py — Refresh pipeline, demo mode, degraded mode, in-flight guard.

Covers:
    • Baseline suppression and the Karachi/Lahore/Quetta → Multan scenario
    • Demo-mode re-baseline
    • Fallback snapshot on feed failure
    • Coalescing of overlapping refreshes, dropped polling ticks
    • Polling task start/stop

Run with:
    pytest tests/test_store.py -v
"""

from __future__ import annotations

import asyncio

import httpx
import pytest

from reliefwatch.alerts.campaign_client import CampaignClient
from reliefwatch.alerts.detector import CountDiffDetector, KeySetDetector
from reliefwatch.alerts.escalation import EscalationTrigger
from reliefwatch.alerts.store import FETCH_ERROR_MESSAGE, AlertStore
from reliefwatch.ingestion.feed_client import AlertFeedClient


def _record(location: str, severity: str, alert_type: str = "FLOOD", lat: float = 25.0, lon: float = 68.0) -> dict:
    return {
        "type": alert_type,
        "severity": severity,
        "location": location,
        "description": f"{alert_type.title()} reported in {location}",
        "source": "Test Feed",
        "coordinates": {"latitude": lat, "longitude": lon},
        "timestamp": "2026-10-19T09:00:00Z",
    }


KARACHI = _record("Karachi", "CRITICAL", "HEATWAVE", 24.86, 67.0)
LAHORE = _record("Lahore", "HIGH", "FLOOD", 31.55, 74.34)
QUETTA = _record("Quetta", "LOW", "EARTHQUAKE", 30.18, 66.99)
MULTAN = _record("Multan", "CRITICAL", "FLOOD", 30.16, 71.52)


def _make_store(feed_server, campaign_server, detector=None, **kwargs) -> AlertStore:
    feed = AlertFeedClient("http://feed.test/api", transport=feed_server.transport, max_retries=0)
    campaigns = CampaignClient("http://campaigns.test/api", transport=campaign_server.transport)
    trigger = EscalationTrigger(campaigns)
    return AlertStore(feed, detector or CountDiffDetector(), trigger, **kwargs)


async def _close(store: AlertStore) -> None:
    await store.stop()
    await store.feed_client.close()
    await store.trigger.client.close()


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Detection & escalation through the store
# ═══════════════════════════════════════════════════════════════════════════

class TestRefreshScenario:

    @pytest.mark.parametrize("detector_cls", [CountDiffDetector, KeySetDetector])
    def test_karachi_lahore_quetta_then_multan(self, feed_server, campaign_server, detector_cls):
        store = _make_store(feed_server, campaign_server, detector_cls())

        async def go():
            # Snapshot 0: empty
            r0 = await store.refresh()
            assert r0.new_alerts == []

            # Snapshot 1: baseline only
            feed_server.set_records([KARACHI, LAHORE, QUETTA])
            r1 = await store.refresh()
            assert r1.new_alerts == []
            assert campaign_server.calls == []

            # Snapshot 2: Multan at the head
            feed_server.set_records([MULTAN, KARACHI, LAHORE, QUETTA])
            r2 = await store.refresh()
            await _close(store)
            return r2

        r2 = asyncio.run(go())

        assert [a.location for a in r2.new_alerts] == ["Multan"]
        assert len(campaign_server.calls) == 1
        assert campaign_server.calls[0]["location"] == "Multan"
        assert campaign_server.calls[0]["severity"] == "CRITICAL"
        assert store.alerts[0].campaign_id == "camp-100"
        assert store.find("Multan").campaign_id == "camp-100"

    def test_first_refresh_never_escalates(self, feed_server, campaign_server):
        feed_server.set_records([KARACHI, MULTAN, LAHORE])
        store = _make_store(feed_server, campaign_server)

        async def go():
            await store.refresh()
            await _close(store)

        asyncio.run(go())
        assert campaign_server.calls == []
        assert len(store.alerts) == 3

    def test_state_after_refresh(self, feed_server, campaign_server):
        feed_server.set_records([KARACHI])
        store = _make_store(feed_server, campaign_server)
        published = []
        store.subscribe(published.append)

        async def go():
            await store.refresh()
            await _close(store)

        asyncio.run(go())
        assert store.last_update is not None
        assert store.loading is False
        assert store.error is None
        assert store.degraded is False
        assert len(published) == 1
        assert store.refresh_count == 1


class TestDemoMode:

    def test_toggle_rebaselines(self, feed_server, campaign_server):
        feed_server.set_records([KARACHI])
        feed_server.set_records(
            [_record(f"Demo {i}", "CRITICAL") for i in range(6)], demo=True,
        )
        store = _make_store(feed_server, campaign_server)

        async def go():
            await store.refresh()
            result = await store.set_demo_mode(True)
            await _close(store)
            return result

        result = asyncio.run(go())
        assert result.demo_mode is True
        assert len(result.alerts) == 6
        assert result.new_alerts == []
        assert campaign_server.calls == []
        assert feed_server.requests[-1].url.params["demo"] == "true"

    def test_refresh_with_other_flag_rebaselines(self, feed_server, campaign_server):
        feed_server.set_records([KARACHI])
        feed_server.set_records([_record(f"Demo {i}", "HIGH") for i in range(4)], demo=True)
        store = _make_store(feed_server, campaign_server)

        async def go():
            await store.refresh(False)
            await store.refresh(True)
            await _close(store)

        asyncio.run(go())
        assert campaign_server.calls == []
        assert store.demo_mode is True

    def test_feed_reported_flag_recorded(self, feed_server, campaign_server):
        feed_server.set_records([KARACHI])
        store = _make_store(feed_server, campaign_server)

        async def go():
            result = await store.refresh(False)
            await _close(store)
            return result

        result = asyncio.run(go())
        assert result.feed_demo_mode is False
        assert store.state()["feed_demo_mode"] is False

    def test_feed_flag_mismatch_logged(self, feed_server, campaign_server, caplog):
        feed_server.set_records([KARACHI])
        feed_server.reported_demo = True
        store = _make_store(feed_server, campaign_server)

        async def go():
            result = await store.refresh(False)
            await _close(store)
            return result

        with caplog.at_level("WARNING", logger="reliefwatch.alerts.store"):
            result = asyncio.run(go())

        assert result.feed_demo_mode is True
        assert store.demo_mode is False
        assert any("reported demoMode=True" in r.getMessage() for r in caplog.records)

    def test_toggle_back_and_forth(self, feed_server, campaign_server):
        feed_server.set_records([KARACHI, LAHORE])
        feed_server.set_records([_record("Demo", "CRITICAL")], demo=True)
        store = _make_store(feed_server, campaign_server)

        async def go():
            await store.refresh()
            await store.set_demo_mode(True)
            await store.set_demo_mode(False)
            await _close(store)

        asyncio.run(go())
        assert campaign_server.calls == []


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Degraded mode
# ═══════════════════════════════════════════════════════════════════════════

class TestDegradedMode:

    def test_fallback_snapshot_published(self, feed_server, campaign_server):
        feed_server.fail_status = 503
        store = _make_store(feed_server, campaign_server)
        published = []
        store.subscribe(published.append)

        async def go():
            result = await store.refresh()
            await _close(store)
            return result

        result = asyncio.run(go())
        assert result.degraded
        assert store.error == FETCH_ERROR_MESSAGE
        assert [a.id for a in store.alerts] == ["1", "2", "3"]
        assert len(published) == 1
        assert campaign_server.calls == []

    def test_detector_untouched_by_fallback(self, feed_server, campaign_server):
        feed_server.set_records([KARACHI, LAHORE, QUETTA])
        detector = CountDiffDetector()
        store = _make_store(feed_server, campaign_server, detector)

        async def go():
            await store.refresh()
            feed_server.fail_status = 500
            await store.refresh()
            assert detector.previous_count == 3

            feed_server.fail_status = None
            feed_server.set_records([MULTAN, KARACHI, LAHORE, QUETTA])
            await store.refresh()
            await _close(store)

        asyncio.run(go())
        assert campaign_server.locations == ["Multan"]
        assert store.error is None
        assert store.degraded is False

    def test_listener_failure_does_not_break_refresh(self, feed_server, campaign_server):
        feed_server.set_records([KARACHI])
        store = _make_store(feed_server, campaign_server)

        def boom(alerts):
            raise RuntimeError("render bug")

        store.subscribe(boom)

        async def go():
            result = await store.refresh()
            await _close(store)
            return result

        assert len(asyncio.run(go()).alerts) == 1


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: In-flight guard & polling
# ═══════════════════════════════════════════════════════════════════════════

class _SlowFeed:
    """Feed handler that blocks until released."""

    def __init__(self, records):
        self.records = records
        self.calls = 0
        self.release = None

    async def handler(self, request):
        self.calls += 1
        await self.release.wait()
        return httpx.Response(200, json=self.records)


def _make_slow_store(slow: _SlowFeed, campaign_server) -> AlertStore:
    feed = AlertFeedClient(
        "http://feed.test/api", transport=httpx.MockTransport(slow.handler), max_retries=0,
    )
    trigger = EscalationTrigger(
        CampaignClient("http://campaigns.test/api", transport=campaign_server.transport)
    )
    return AlertStore(feed, CountDiffDetector(), trigger, refresh_interval=3600)


class TestInFlightGuard:

    def test_same_flag_refreshes_coalesce(self, campaign_server):
        slow = _SlowFeed([KARACHI])
        store = _make_slow_store(slow, campaign_server)

        async def go():
            slow.release = asyncio.Event()
            first = asyncio.ensure_future(store.refresh())
            await asyncio.sleep(0.01)
            assert store.refreshing
            second = asyncio.ensure_future(store.refresh())
            await asyncio.sleep(0.01)
            slow.release.set()
            results = await asyncio.gather(first, second)
            await _close(store)
            return results

        r1, r2 = asyncio.run(go())
        assert slow.calls == 1
        assert r1 is r2

    def test_tick_dropped_while_refreshing(self, campaign_server):
        slow = _SlowFeed([KARACHI])
        store = _make_slow_store(slow, campaign_server)

        async def go():
            slow.release = asyncio.Event()
            manual = asyncio.ensure_future(store.refresh())
            await asyncio.sleep(0.01)
            await store._tick()
            slow.release.set()
            await manual
            await _close(store)

        asyncio.run(go())
        assert store.dropped_ticks == 1
        assert slow.calls == 1

    def test_other_flag_waits_then_runs(self, campaign_server):
        slow = _SlowFeed([KARACHI])
        store = _make_slow_store(slow, campaign_server)

        async def go():
            slow.release = asyncio.Event()
            live = asyncio.ensure_future(store.refresh(False))
            await asyncio.sleep(0.01)
            demo = asyncio.ensure_future(store.refresh(True))
            await asyncio.sleep(0.01)
            assert slow.calls == 1
            slow.release.set()
            r_live, r_demo = await asyncio.gather(live, demo)
            await _close(store)
            return r_live, r_demo

        r_live, r_demo = asyncio.run(go())
        assert slow.calls == 2
        assert r_live.demo_mode is False
        assert r_demo.demo_mode is True
        assert store.demo_mode is True


class TestPolling:

    def test_start_refreshes_immediately_and_stop_cancels(self, feed_server, campaign_server):
        feed_server.set_records([KARACHI])
        store = _make_store(feed_server, campaign_server, refresh_interval=3600)

        async def go():
            await store.start()
            assert store.running
            for _ in range(50):
                if store.refresh_count:
                    break
                await asyncio.sleep(0.01)
            await store.stop()
            assert not store.running
            await _close(store)

        asyncio.run(go())
        assert store.refresh_count == 1
        assert len(feed_server.requests) == 1

    def test_polls_on_interval(self, feed_server, campaign_server):
        feed_server.set_records([KARACHI])
        store = _make_store(feed_server, campaign_server, refresh_interval=0.02)

        async def go():
            await store.start(immediate=False)
            await asyncio.sleep(0.15)
            await _close(store)

        asyncio.run(go())
        assert store.refresh_count >= 2

    def test_start_twice_is_one_task(self, feed_server, campaign_server):
        store = _make_store(feed_server, campaign_server, refresh_interval=3600)

        async def go():
            await store.start(immediate=False)
            task = store._poll_task
            await store.start(immediate=False)
            assert store._poll_task is task
            await _close(store)

        asyncio.run(go())

    def test_poll_survives_feed_outage(self, feed_server, campaign_server):
        feed_server.unreachable = True
        store = _make_store(feed_server, campaign_server, refresh_interval=0.02)

        async def go():
            await store.start()
            await asyncio.sleep(0.1)
            running = store.running
            await _close(store)
            return running

        assert asyncio.run(go()) is True
        assert store.degraded
