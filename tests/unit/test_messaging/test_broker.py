"""Tests for BrokerClient and ConsumerGroup."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from types import SimpleNamespace

import pytest
from aiokafka.errors import KafkaConnectionError

from event_pipeline.core.events import EventEnvelope
from event_pipeline.core.exceptions import BrokerConnectionError, EventRejectedError, PipelineError, PublishError
from event_pipeline.infra.messaging import BrokerClient, ConnectionState


@pytest.fixture
def envelope() -> EventEnvelope:
    return EventEnvelope(
        event_id="evt-1",
        type="quota.reserved",
        occurred_at=datetime(2024, 5, 1, tzinfo=UTC),
        tenant_id="t1",
        session_id="s1",
        payload={"sessionId": "s1", "bucketId": "b1"},
    )


class TestConnect:
    """Test suite for connection lifecycle."""

    async def test_connect_and_disconnect(self, kafka_settings, fake_kafka):
        client = BrokerClient(kafka_settings, broker=fake_kafka)

        await client.connect()
        assert client.state == ConnectionState.CONNECTED
        assert client.is_connected

        await client.disconnect()
        assert client.state == ConnectionState.DISCONNECTED
        assert fake_kafka.close_calls >= 1

    async def test_transient_failures_are_retried(self, kafka_settings, fake_kafka):
        """Test that network errors are retried with backoff."""
        fake_kafka.start_errors = [KafkaConnectionError(), OSError("refused")]
        client = BrokerClient(kafka_settings, broker=fake_kafka)

        await client.connect()

        assert fake_kafka.start_calls == 3
        assert client.is_connected

    async def test_gives_up_after_retry_attempts(self, kafka_settings, fake_kafka):
        """Test that exhausting retries raises a transient BrokerConnectionError."""
        fake_kafka.start_errors = [KafkaConnectionError() for _ in range(kafka_settings.retry_attempts)]
        client = BrokerClient(kafka_settings, broker=fake_kafka)

        with pytest.raises(BrokerConnectionError) as exc_info:
            await client.connect()

        assert exc_info.value.transient is True
        assert client.state == ConnectionState.FAILED
        assert fake_kafka.start_calls == kafka_settings.retry_attempts

    async def test_configuration_errors_are_not_retried(self, kafka_settings, fake_kafka):
        """Test that authentication/configuration failures fail fast."""
        fake_kafka.start_errors = [ValueError("sasl_mechanism PLAIN requires sasl_plain_username")]
        client = BrokerClient(kafka_settings, broker=fake_kafka)

        with pytest.raises(BrokerConnectionError) as exc_info:
            await client.connect()

        assert exc_info.value.transient is False
        assert exc_info.value.type == "broker-misconfigured"
        assert fake_kafka.start_calls == 1

    async def test_health(self, broker_client, fake_kafka):
        health = await broker_client.check_health()
        assert health["status"] == "healthy"

        fake_kafka.ping_result = False
        assert (await broker_client.check_health())["status"] == "unhealthy"

        await broker_client.disconnect()
        assert (await broker_client.check_health())["status"] == "unavailable"


class TestPublish:
    """Test suite for publish."""

    async def test_publish_sends_body_key_and_headers(self, broker_client, fake_kafka, envelope):
        await broker_client.publish("runtime.quota", "b1", envelope)

        [message] = fake_kafka.published
        assert message["topic"] == "runtime.quota"
        assert message["key"] == b"b1"
        assert message["headers"] == {"eventType": "quota.reserved", "tenantId": "t1", "version": "1"}
        assert json.loads(message["body"])["eventId"] == "evt-1"

    async def test_publish_failure_raises_publish_error(self, broker_client, fake_kafka, envelope):
        fake_kafka.fail_topics.add("runtime.quota")

        with pytest.raises(PublishError) as exc_info:
            await broker_client.publish("runtime.quota", "b1", envelope)

        assert exc_info.value.topic == "runtime.quota"
        assert exc_info.value.key == "b1"

    async def test_publish_requires_connection(self, kafka_settings, fake_kafka, envelope):
        client = BrokerClient(kafka_settings, broker=fake_kafka)

        with pytest.raises(PublishError):
            await client.publish("runtime.quota", "b1", envelope)


class TestConsumerGroup:
    """Test suite for consumer groups."""

    async def test_subscribe_registers_with_group(self, kafka_settings, fake_kafka):
        client = BrokerClient(kafka_settings, broker=fake_kafka)
        group = client.create_consumer("quota-consumer-group")

        async def handler(envelope):
            pass

        group.subscribe(["runtime.quota"], handler)

        [subscription] = fake_kafka.subscriptions
        assert subscription["topics"] == ("runtime.quota",)
        assert subscription["options"]["group_id"] == "quota-consumer-group"
        assert subscription["options"]["auto_commit"] is True
        assert client.create_consumer("quota-consumer-group") is group

    async def test_subscribe_after_connect_is_rejected(self, broker_client):
        group = broker_client.create_consumer("late-group")

        async def handler(envelope):
            pass

        with pytest.raises(PipelineError):
            group.subscribe(["runtime.quota"], handler)

    async def test_subscriber_callback_dispatches_raw_body(self, kafka_settings, fake_kafka, envelope):
        """Test the FastStream callback hands the decoded envelope to the handler."""
        client = BrokerClient(kafka_settings, broker=fake_kafka)
        received = []

        async def handler(env):
            received.append(env)

        client.create_consumer("g").subscribe(["runtime.quota"], handler)
        callback = fake_kafka.subscriptions[0]["handler"]
        message = SimpleNamespace(
            body=envelope.to_json().encode(),
            raw_message=SimpleNamespace(topic="runtime.quota", key=b"b1"),
        )

        await callback(None, message)

        assert [env.event_id for env in received] == ["evt-1"]

    async def test_handler_errors_are_contained(self, broker_client, envelope):
        """Test that a failing handler does not propagate."""
        group = broker_client.create_consumer("g")

        async def handler(env):
            raise RuntimeError("projection failed")

        await group.dispatch(envelope.to_json(), handler, topic="runtime.quota")

    async def test_malformed_message_goes_to_dead_letter(self, broker_client, fake_kafka):
        """Test that undecodable bodies are forwarded to the DLQ with error headers."""
        group = broker_client.create_consumer("g")
        calls = []

        async def handler(env):
            calls.append(env)

        await group.dispatch(b"{not json", handler, topic="runtime.quota", key=b"b1")

        assert calls == []
        [message] = fake_kafka.messages_for("dlq.survey-service")
        assert message["body"] == b"{not json"
        assert message["key"] == b"b1"
        assert message["headers"]["originalTopic"] == "runtime.quota"
        assert message["headers"]["consumerGroup"] == "g"
        assert message["headers"]["errorType"] == "event-rejected"

    async def test_rejected_payload_goes_to_dead_letter(self, broker_client, fake_kafka, envelope):
        """Test that a handler's EventRejectedError is dead-lettered too."""
        group = broker_client.create_consumer("g")

        async def handler(env):
            raise EventRejectedError("Payload does not match QuotaPayload", event_type=env.type)

        await group.dispatch(envelope.to_json(), handler, topic="runtime.quota")

        [message] = fake_kafka.messages_for("dlq.survey-service")
        assert message["headers"]["eventType"] == "quota.reserved"
        assert message["headers"]["error"] == "Payload does not match QuotaPayload"
