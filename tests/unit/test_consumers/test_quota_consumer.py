"""Tests for the quota bucket projection."""

from __future__ import annotations

import json

import pytest

from event_pipeline.consumers import QuotaConsumer


@pytest.fixture
def consumer(state_store, projection_settings) -> QuotaConsumer:
    return QuotaConsumer(state_store, settings=projection_settings)


def quota_event(make_envelope, event_type: str, session_id: str = "s1", *, at: float = 0):
    return make_envelope(event_type, {"sessionId": session_id, "bucketId": "b1"}, at=at)


class TestQuotaCounters:
    """Test suite for reserved/filled arithmetic."""

    async def test_reserve_then_finalize(self, consumer, state_store, make_envelope):
        await consumer.handle(quota_event(make_envelope, "quota.reserved"))
        assert await state_store.get_quota("b1") == {"reserved": 1, "filled": 0}

        await consumer.handle(quota_event(make_envelope, "quota.finalized", at=5))
        assert await state_store.get_quota("b1") == {"reserved": 0, "filled": 1}

    async def test_reserve_then_release(self, consumer, state_store, make_envelope):
        await consumer.handle(quota_event(make_envelope, "quota.reserved"))
        await consumer.handle(quota_event(make_envelope, "quota.released", at=5))

        assert await state_store.get_quota("b1") == {"reserved": 0, "filled": 0}

    async def test_finalize_adjusts_both_fields_in_one_round_trip(
        self, consumer, fake_redis, make_envelope
    ):
        """Test that reserved and filled move together in a single transaction."""
        before = fake_redis.round_trips
        await consumer.on_finalized(
            quota_event(make_envelope, "quota.finalized"),
            consumer.registry.decode(quota_event(make_envelope, "quota.finalized")),
        )

        assert fake_redis.hashes["quota:b1"] == {"reserved": "-1", "filled": "1"}
        # hash pipeline, mapping set, survey window pipeline
        assert fake_redis.round_trips - before == 3

    async def test_several_sessions_share_a_bucket(self, consumer, state_store, make_envelope):
        for session_id in ("s1", "s2", "s3"):
            await consumer.handle(quota_event(make_envelope, "quota.reserved", session_id))
        await consumer.handle(quota_event(make_envelope, "quota.finalized", "s2"))
        await consumer.handle(quota_event(make_envelope, "quota.released", "s3"))

        assert await state_store.get_quota("b1") == {"reserved": 1, "filled": 1}


class TestQuotaMappings:
    """Test suite for the per-session quota status mapping."""

    @pytest.mark.parametrize(
        ("event_type", "status"),
        [
            ("quota.reserved", "reserved"),
            ("quota.released", "released"),
            ("quota.finalized", "finalized"),
        ],
    )
    async def test_mapping_records_status(self, consumer, fake_redis, make_envelope, event_type, status):
        await consumer.handle(quota_event(make_envelope, event_type, at=30))

        mapping = json.loads(fake_redis.values["quota:b1:session:s1"])
        assert mapping == {"status": status, "timestamp": "2024-05-01T12:00:30.000Z"}
        assert fake_redis.ttls["quota:b1:session:s1"] == 3600

    async def test_session_id_from_envelope(self, consumer, fake_redis, state_store, make_envelope):
        await consumer.handle(make_envelope("quota.reserved", {"bucketId": "b1"}, session_id="s9"))

        assert "quota:b1:session:s9" in fake_redis.values
        assert await state_store.get_quota("b1") == {"reserved": 1, "filled": 0}


class TestQuotaWindows:
    """Test suite for survey quota analytics."""

    async def test_reserved_and_completed_windows(self, consumer, fake_redis, make_envelope):
        await consumer.handle(quota_event(make_envelope, "quota.reserved"))
        await consumer.handle(quota_event(make_envelope, "quota.finalized"))

        assert fake_redis.values["survey:sv1:quotas:reserved"] == "1"
        assert fake_redis.values["survey:sv1:quotas:completed"] == "1"
        assert not any(key.startswith("tenant:") for key in fake_redis.values)

    async def test_release_does_not_touch_windows(self, consumer, fake_redis, make_envelope):
        await consumer.handle(quota_event(make_envelope, "quota.released"))

        assert not any(key.startswith("survey:") for key in fake_redis.values)


class TestQuotaRedelivery:
    """Test suite for at-least-once delivery."""

    async def test_duplicate_reservation_counts_once(self, consumer, state_store, make_envelope):
        envelope = quota_event(make_envelope, "quota.reserved")

        await consumer.handle(envelope)
        await consumer.handle(envelope)

        assert await state_store.get_quota("b1") == {"reserved": 1, "filled": 0}

    async def test_claim_is_scoped_to_the_bucket(self, consumer, fake_redis, make_envelope):
        await consumer.handle(make_envelope("quota.reserved", {"sessionId": "s1", "bucketId": "b1"}, event_id="e1"))

        assert "processed:quota-consumer-group:b1:e1" in fake_redis.values
