"""Tests for the event-pipeline CLI.

Testing approach:
- Uses Click's CliRunner for command invocation
- Mocks the relay, broker and database layer so no service is needed
- Tests option validation and exit codes
"""

from contextlib import asynccontextmanager
import json
from unittest.mock import AsyncMock, MagicMock, patch

from click.testing import CliRunner
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from event_pipeline.cli.main import cli
from event_pipeline.infra.events.outbox import OutboxMetrics

# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def cli_runner():
    """Create Click CLI runner for testing commands."""
    return CliRunner()


@pytest.fixture
def kafka_disabled():
    return MagicMock(enabled=False)


# =============================================================================
# Entry Point
# =============================================================================


class TestCliGroup:
    """Test suite for the top-level command group."""

    def test_help_lists_command_groups(self, cli_runner):
        result = cli_runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        for group in ("relay", "consumers", "outbox"):
            assert group in result.output

    def test_version(self, cli_runner):
        result = cli_runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "event-pipeline" in result.output


# =============================================================================
# relay
# =============================================================================


class TestRelayCommands:
    """Test suite for relay commands."""

    def test_run_refuses_when_kafka_disabled(self, cli_runner, kafka_disabled):
        with (
            patch("event_pipeline.cli.commands.relay.get_kafka_settings", return_value=kafka_disabled),
            patch("event_pipeline.cli.commands.relay.BrokerClient") as broker_cls,
        ):
            result = cli_runner.invoke(cli, ["relay", "run"])

        assert result.exit_code == 1
        assert "Kafka is disabled" in result.output
        broker_cls.assert_not_called()

    def test_metrics_as_json(self, cli_runner):
        counts = OutboxMetrics(pending=3, failed=1, processed=10, dead_lettered=1, total=14)
        relay_instance = MagicMock()
        relay_instance.get_metrics = AsyncMock(return_value=counts)

        with (
            patch("event_pipeline.cli.commands.relay.OutboxRelay", return_value=relay_instance),
            patch("event_pipeline.cli.commands.relay.BrokerClient"),
            patch("event_pipeline.cli.commands.relay.get_session_factory"),
            patch("event_pipeline.cli.commands.relay.close_database", new=AsyncMock()) as close_db,
        ):
            result = cli_runner.invoke(cli, ["relay", "metrics", "--json"])

        assert result.exit_code == 0
        assert json.loads(result.output) == counts.as_dict()
        close_db.assert_awaited_once()

    def test_metrics_failure_exits_non_zero(self, cli_runner):
        relay_instance = MagicMock()
        relay_instance.get_metrics = AsyncMock(side_effect=RuntimeError("database is down"))

        with (
            patch("event_pipeline.cli.commands.relay.OutboxRelay", return_value=relay_instance),
            patch("event_pipeline.cli.commands.relay.BrokerClient"),
            patch("event_pipeline.cli.commands.relay.get_session_factory"),
            patch("event_pipeline.cli.commands.relay.close_database", new=AsyncMock()),
        ):
            result = cli_runner.invoke(cli, ["relay", "metrics"])

        assert result.exit_code == 1
        assert "database is down" in result.output

    def test_cleanup_passes_retention(self, cli_runner):
        relay_instance = MagicMock()
        relay_instance.cleanup_processed = AsyncMock(return_value=4)

        with (
            patch("event_pipeline.cli.commands.relay.OutboxRelay", return_value=relay_instance),
            patch("event_pipeline.cli.commands.relay.BrokerClient"),
            patch("event_pipeline.cli.commands.relay.get_session_factory"),
            patch("event_pipeline.cli.commands.relay.close_database", new=AsyncMock()),
        ):
            result = cli_runner.invoke(cli, ["relay", "cleanup", "--older-than-days", "30"])

        assert result.exit_code == 0
        assert "Deleted 4" in result.output
        relay_instance.cleanup_processed.assert_awaited_once_with(30)

    def test_cleanup_with_nothing_to_delete(self, cli_runner):
        relay_instance = MagicMock()
        relay_instance.cleanup_processed = AsyncMock(return_value=0)

        with (
            patch("event_pipeline.cli.commands.relay.OutboxRelay", return_value=relay_instance),
            patch("event_pipeline.cli.commands.relay.BrokerClient"),
            patch("event_pipeline.cli.commands.relay.get_session_factory"),
            patch("event_pipeline.cli.commands.relay.close_database", new=AsyncMock()),
        ):
            result = cli_runner.invoke(cli, ["relay", "cleanup"])

        assert result.exit_code == 0
        assert "No processed outbox rows" in result.output
        relay_instance.cleanup_processed.assert_awaited_once_with(None)

    def test_cleanup_rejects_zero_days(self, cli_runner):
        result = cli_runner.invoke(cli, ["relay", "cleanup", "--older-than-days", "0"])

        assert result.exit_code == 2


# =============================================================================
# consumers
# =============================================================================


class TestConsumerCommands:
    """Test suite for consumer commands."""

    def test_run_refuses_when_kafka_disabled(self, cli_runner, kafka_disabled):
        with (
            patch("event_pipeline.cli.commands.consumers.get_kafka_settings", return_value=kafka_disabled),
            patch("event_pipeline.cli.commands.consumers.ConsumerRunner") as runner_cls,
        ):
            result = cli_runner.invoke(cli, ["consumers", "run"])

        assert result.exit_code == 1
        runner_cls.assert_not_called()

    def test_run_exits_cleanly_when_redis_is_down(self, cli_runner):
        runner_instance = MagicMock(consumers=[])
        runner_instance.start = AsyncMock(side_effect=RedisConnectionError("Connection refused"))
        runner_instance.stop = AsyncMock()

        with (
            patch("event_pipeline.cli.commands.consumers.get_kafka_settings", return_value=MagicMock(enabled=True)),
            patch("event_pipeline.cli.commands.consumers.BrokerClient"),
            patch("event_pipeline.cli.commands.consumers.StateStore"),
            patch("event_pipeline.cli.commands.consumers.ConsumerRunner", return_value=runner_instance),
        ):
            result = cli_runner.invoke(cli, ["consumers", "run"])

        assert result.exit_code == 1
        assert "Cannot connect to Redis" in result.output
        assert not isinstance(result.exception, RedisConnectionError)
        runner_instance.stop.assert_awaited_once()

    def test_run_rejects_unknown_consumer(self, cli_runner):
        result = cli_runner.invoke(cli, ["consumers", "run", "--only", "billing"])

        assert result.exit_code == 2
        assert "billing" in result.output


# =============================================================================
# outbox
# =============================================================================


class TestOutboxCommands:
    """Test suite for outbox commands."""

    @pytest.mark.parametrize("payload", ["{not json", "[1, 2]"])
    def test_stage_rejects_bad_payload(self, cli_runner, payload):
        result = cli_runner.invoke(
            cli,
            ["outbox", "stage", "session.started", "--tenant-id", "t1", "--payload", payload],
        )

        assert result.exit_code == 2
        assert "--payload" in result.output

    def test_stage_rejects_unknown_event_type(self, cli_runner):
        result = cli_runner.invoke(cli, ["outbox", "stage", "session.paused", "--tenant-id", "t1"])

        assert result.exit_code == 2

    def test_stage_commits_row(self, cli_runner):
        session = AsyncMock()

        @asynccontextmanager
        async def fake_session():
            yield session

        writer = MagicMock()
        writer.stage = AsyncMock(return_value=MagicMock(id="row-1"))

        with (
            patch("event_pipeline.cli.commands.outbox.get_async_session", fake_session),
            patch("event_pipeline.cli.commands.outbox.OutboxWriter", return_value=writer),
            patch("event_pipeline.cli.commands.outbox.close_database", new=AsyncMock()),
        ):
            result = cli_runner.invoke(
                cli,
                [
                    "outbox",
                    "stage",
                    "session.started",
                    "--tenant-id",
                    "t1",
                    "--session-id",
                    "s1",
                    "--payload",
                    '{"sessionId": "s1"}',
                ],
            )

        assert result.exit_code == 0
        assert "row-1" in result.output
        writer.stage.assert_awaited_once_with(
            "session.started",
            tenant_id="t1",
            payload={"sessionId": "s1"},
            survey_id=None,
            session_id="s1",
        )
        session.commit.assert_awaited_once()
