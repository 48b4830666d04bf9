"""
Unit tests for the Eligibility Kafka consumer.
"""

import asyncio
import time

import pytest
from unittest.mock import AsyncMock, patch, MagicMock

from kafka.errors import NoBrokersAvailable
from kafka.structs import TopicPartition

from shared.errors import EligibilityEngineError, StorageError
from service_eligibility.app.kafka.consumer import KafkaConsumerManager, KafkaMessage

TOPIC = "journey.delay.confirmed"


def make_record(offset, partition=0):
    record = MagicMock()
    record.topic = TOPIC
    record.partition = partition
    record.offset = offset
    record.key = None
    record.value = b"{}"
    record.timestamp = None
    record.headers = None
    return record


class TestKafkaConsumerManager:
    """Test cases for KafkaConsumerManager."""

    @pytest.fixture
    def consumer_manager(self):
        """Create KafkaConsumerManager instance."""
        return KafkaConsumerManager("localhost:9092", "eligibility-test")

    @pytest.fixture
    def mock_kafka_record(self):
        """Mock consumer record."""
        message = MagicMock()
        message.topic = "journey.delay.confirmed"
        message.partition = 0
        message.offset = 123
        message.key = b"journey-1"
        message.value = b'{"event_type": "JourneyDelayConfirmed"}'
        message.timestamp = 1768392000000
        message.headers = [("X-Correlation-ID", b"corr-kafka")]
        return message

    @pytest.mark.asyncio
    async def test_start_success(self, consumer_manager):
        with patch('kafka.KafkaConsumer') as mock_consumer_class:
            await consumer_manager.start()

            assert consumer_manager.running is True
            assert consumer_manager.consumer is mock_consumer_class.return_value
            assert mock_consumer_class.call_args.kwargs["group_id"] == "eligibility-test"
            assert mock_consumer_class.call_args.kwargs["enable_auto_commit"] is False

    @pytest.mark.asyncio
    async def test_start_failure(self, consumer_manager):
        with patch('kafka.KafkaConsumer') as mock_consumer_class:
            mock_consumer_class.side_effect = NoBrokersAvailable()

            with pytest.raises(EligibilityEngineError) as exc_info:
                await consumer_manager.start()

            assert exc_info.value.code == "KAFKA_CONSUMER_START_FAILED"
            assert consumer_manager.running is False

    @pytest.mark.asyncio
    async def test_stop_closes_consumer(self, consumer_manager):
        with patch('kafka.KafkaConsumer') as mock_consumer_class:
            mock_consumer = mock_consumer_class.return_value

            await consumer_manager.start()
            await consumer_manager.stop()

            assert consumer_manager.running is False
            assert consumer_manager.consumer is None
            mock_consumer.close.assert_called_once_with(autocommit=False)

    @pytest.mark.asyncio
    async def test_subscribe_to_topic(self, consumer_manager):
        handler = AsyncMock()
        with patch('kafka.KafkaConsumer') as mock_consumer_class:
            await consumer_manager.start()
            consumer_manager.subscribe_to_topic("journey.delay.confirmed", handler)
            consumer_manager.subscribe_to_topic("journey.delay.confirmed", handler)

            assert consumer_manager.subscribed_topics == ["journey.delay.confirmed"]
            assert consumer_manager.message_handlers["journey.delay.confirmed"] is handler
            mock_consumer_class.return_value.subscribe.assert_called_once_with(["journey.delay.confirmed"])

    def test_subscribe_requires_started_consumer(self, consumer_manager):
        with pytest.raises(EligibilityEngineError) as exc_info:
            consumer_manager.subscribe_to_topic("journey.delay.confirmed", AsyncMock())

        assert exc_info.value.code == "KAFKA_CONSUMER_NOT_STARTED"

    @pytest.mark.asyncio
    async def test_dispatch_wraps_record(self, consumer_manager, mock_kafka_record):
        handler = AsyncMock()
        consumer_manager.message_handlers["journey.delay.confirmed"] = handler

        assert await consumer_manager.dispatch(mock_kafka_record) is True

        handler.assert_awaited_once()
        message = handler.call_args.args[0]
        assert isinstance(message, KafkaMessage)
        assert message.offset == 123
        assert message.value == b'{"event_type": "JourneyDelayConfirmed"}'
        assert message.header("X-Correlation-ID") == "corr-kafka"
        assert message.header("missing") is None

    @pytest.mark.asyncio
    async def test_dispatch_ignores_unsubscribed_topic(self, consumer_manager, mock_kafka_record):
        mock_kafka_record.topic = "other.topic"
        handler = AsyncMock()
        consumer_manager.message_handlers["journey.delay.confirmed"] = handler

        await consumer_manager.dispatch(mock_kafka_record)

        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_dispatch_logs_handler_errors(self, consumer_manager, mock_kafka_record):
        consumer_manager.message_handlers["journey.delay.confirmed"] = AsyncMock(
            side_effect=RuntimeError("boom")
        )

        with patch.object(consumer_manager, "logger") as mock_logger:
            assert await consumer_manager.dispatch(mock_kafka_record) is False

        mock_logger.error.assert_called_once()
        assert mock_logger.error.call_args.kwargs["offset"] == 123

    @pytest.mark.asyncio
    async def test_dispatch_batch_all_handled(self, consumer_manager):
        consumer_manager.consumer = MagicMock()
        handler = AsyncMock()
        consumer_manager.message_handlers[TOPIC] = handler
        batch = {TopicPartition(TOPIC, 0): [make_record(10), make_record(11)]}

        assert await consumer_manager.dispatch_batch(batch) is True

        assert handler.await_count == 2
        consumer_manager.consumer.seek.assert_not_called()

    @pytest.mark.asyncio
    async def test_dispatch_batch_rewinds_to_failed_record(self, consumer_manager):
        consumer_manager.consumer = MagicMock()
        handler = AsyncMock(side_effect=[None, StorageError("down")])
        consumer_manager.message_handlers[TOPIC] = handler
        partition = TopicPartition(TOPIC, 0)
        batch = {partition: [make_record(10), make_record(11), make_record(12)]}

        assert await consumer_manager.dispatch_batch(batch) is False

        assert handler.await_count == 2
        consumer_manager.consumer.seek.assert_called_once_with(partition, 11)

    @pytest.mark.asyncio
    async def test_dispatch_batch_failure_rewinds_other_partitions(self, consumer_manager):
        consumer_manager.consumer = MagicMock()
        handler = AsyncMock(side_effect=StorageError("down"))
        consumer_manager.message_handlers[TOPIC] = handler
        first = TopicPartition(TOPIC, 0)
        second = TopicPartition(TOPIC, 1)
        batch = {
            first: [make_record(10)],
            second: [make_record(20, partition=1), make_record(21, partition=1)],
        }

        assert await consumer_manager.dispatch_batch(batch) is False

        handler.assert_awaited_once()
        seeks = [c.args for c in consumer_manager.consumer.seek.call_args_list]
        assert seeks == [(first, 10), (second, 20)]

    @pytest.mark.asyncio
    async def test_consume_loop_commits_after_handling(self, consumer_manager):
        consumer = MagicMock()
        partition = TopicPartition(TOPIC, 0)

        def poll(timeout_ms):
            consumer_manager.running = False
            return {partition: [make_record(5)]}

        consumer.poll.side_effect = poll
        handler = AsyncMock()
        consumer_manager.consumer = consumer
        consumer_manager.message_handlers[TOPIC] = handler
        consumer_manager.running = True

        await consumer_manager._consume_loop()

        handler.assert_awaited_once()
        consumer.commit.assert_called_once_with()
        consumer.seek.assert_not_called()

    @pytest.mark.asyncio
    async def test_consume_loop_redelivers_failed_record(self, consumer_manager):
        consumer = MagicMock()
        partition = TopicPartition(TOPIC, 0)

        def poll(timeout_ms):
            consumer_manager.running = False
            return {partition: [make_record(5)]}

        consumer.poll.side_effect = poll
        consumer_manager.consumer = consumer
        consumer_manager.message_handlers[TOPIC] = AsyncMock(side_effect=StorageError("down"))
        consumer_manager.retry_backoff_seconds = 0
        consumer_manager.running = True

        await consumer_manager._consume_loop()

        consumer.seek.assert_called_once_with(partition, 5)
        consumer.commit.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_batch(self, consumer_manager):
        partition = TopicPartition(TOPIC, 0)
        entered = asyncio.Event()
        release = asyncio.Event()
        completed = []
        polls = []

        def poll(timeout_ms):
            polls.append(timeout_ms)
            if len(polls) == 1:
                return {partition: [make_record(7)]}
            time.sleep(0.01)
            return {}

        async def handler(message):
            entered.set()
            await release.wait()
            completed.append(message.offset)

        with patch('kafka.KafkaConsumer') as mock_consumer_class:
            consumer = mock_consumer_class.return_value
            consumer.poll.side_effect = poll

            await consumer_manager.start()
            consumer_manager.message_handlers[TOPIC] = handler
            consumer_manager.start_consuming()
            task = consumer_manager._consumer_task
            await asyncio.wait_for(entered.wait(), timeout=5)

            stopping = asyncio.ensure_future(consumer_manager.stop())
            await asyncio.sleep(0)
            assert not stopping.done()
            consumer.close.assert_not_called()

            release.set()
            await asyncio.wait_for(stopping, timeout=5)

        assert completed == [7]
        assert not task.cancelled()
        consumer.commit.assert_called_once_with()
        consumer.close.assert_called_once_with(autocommit=False)
