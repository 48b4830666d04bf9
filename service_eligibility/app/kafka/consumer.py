"""
Kafka consumer for the Eligibility Service.
"""

import asyncio
import functools
from typing import Awaitable, Callable, Dict, List, Optional
from dataclasses import dataclass

import kafka
from kafka.errors import KafkaError

from shared.errors import EligibilityEngineError
from shared.logging import get_logger


@dataclass
class KafkaMessage:
    """Kafka message wrapper."""
    topic: str
    partition: int
    offset: int
    key: Optional[bytes]
    value: Optional[bytes]
    timestamp: Optional[int]
    headers: Optional[Dict[str, bytes]]

    def header(self, name: str) -> Optional[str]:
        if not self.headers or name not in self.headers:
            return None
        raw = self.headers[name]
        return raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw


MessageHandler = Callable[[KafkaMessage], Awaitable[None]]


class KafkaConsumerManager:
    """Polls subscribed topics and dispatches each message to its handler."""

    def __init__(self, bootstrap_servers: str, group_id: str, retry_backoff_seconds: float = 5.0):
        self.bootstrap_servers = bootstrap_servers
        self.group_id = group_id
        self.logger = get_logger("eligibility.kafka.consumer")
        self.consumer: Optional[kafka.KafkaConsumer] = None
        self.subscribed_topics: List[str] = []
        self.message_handlers: Dict[str, MessageHandler] = {}
        self.running = False
        self.retry_backoff_seconds = retry_backoff_seconds
        self._consumer_task: Optional[asyncio.Task] = None

    async def start(self, start_loop: bool = False):
        """Start the Kafka consumer."""
        try:
            self.consumer = kafka.KafkaConsumer(
                bootstrap_servers=self.bootstrap_servers,
                group_id=self.group_id,
                value_deserializer=lambda x: x,
                key_deserializer=lambda x: x,
                auto_offset_reset='earliest',
                enable_auto_commit=False,
                max_poll_records=100,
                session_timeout_ms=30000,
                heartbeat_interval_ms=10000
            )

            self.running = True
            if start_loop:
                self.start_consuming()
            self.logger.info("Kafka consumer started", group_id=self.group_id)

        except KafkaError as e:
            self.logger.error("Failed to start Kafka consumer", error=str(e))
            raise EligibilityEngineError("KAFKA_CONSUMER_START_FAILED", str(e)) from e

    def start_consuming(self):
        """Run the poll loop as a background task."""
        if self._consumer_task is None:
            self._consumer_task = asyncio.create_task(self._consume_loop())

    async def stop(self):
        """Stop the Kafka consumer once the in-flight poll and batch are done."""
        self.running = False
        if self._consumer_task:
            await self._consumer_task
            self._consumer_task = None

        if self.consumer:
            # Offsets are committed only after handling, never on close.
            self.consumer.close(autocommit=False)
            self.consumer = None
            self.logger.info("Kafka consumer stopped")

    def subscribe_to_topic(self, topic: str, handler: MessageHandler):
        """Subscribe to a Kafka topic."""
        if topic in self.subscribed_topics:
            self.logger.warning("Already subscribed to topic", topic=topic)
            return

        if not self.consumer:
            raise EligibilityEngineError("KAFKA_CONSUMER_NOT_STARTED", "Consumer not started")

        self.subscribed_topics.append(topic)
        self.message_handlers[topic] = handler
        self.consumer.subscribe(self.subscribed_topics)

        self.logger.info("Subscribed to topic", topic=topic)

    async def _poll(self) -> Dict:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, functools.partial(self.consumer.poll, timeout_ms=1000))

    async def _commit(self):
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, self.consumer.commit)

    async def dispatch(self, message) -> bool:
        """Wrap a raw consumer record and hand it to its topic's handler.

        Returns False when the handler raised, meaning the record must be
        delivered again.
        """
        handler = self.message_handlers.get(message.topic)
        if handler is None:
            return True

        kafka_message = KafkaMessage(
            topic=message.topic,
            partition=message.partition,
            offset=message.offset,
            key=message.key,
            value=message.value,
            timestamp=message.timestamp,
            headers=dict(message.headers) if message.headers else None
        )

        try:
            await handler(kafka_message)
        except Exception as e:
            self.logger.error(
                "Error processing message",
                topic=message.topic,
                offset=message.offset,
                error=str(e),
                exc_info=True
            )
            return False
        return True

    async def dispatch_batch(self, message_batch: Dict) -> bool:
        """
        Dispatch a polled batch in order.

        After the first failure nothing else in the batch is handled, and every
        partition is rewound to its first unhandled record so the next poll
        delivers it again.
        """
        rewind = {}
        for partition, messages in message_batch.items():
            for message in messages:
                if not rewind and await self.dispatch(message):
                    continue
                rewind[partition] = message.offset
                break

        for partition, offset in rewind.items():
            self.consumer.seek(partition, offset)
        return not rewind

    async def _consume_loop(self):
        """Main consumption loop."""
        while self.running:
            try:
                if not self.consumer:
                    await asyncio.sleep(1)
                    continue

                message_batch = await self._poll()
                if not message_batch:
                    continue

                handled = await self.dispatch_batch(message_batch)
                # Commits the consumed position, which stops at any rewound record.
                await self._commit()

                if not handled:
                    self.logger.warning("Batch redelivery scheduled", backoff_seconds=self.retry_backoff_seconds)
                    await asyncio.sleep(self.retry_backoff_seconds)

            except KafkaError as e:
                self.logger.error("Kafka error in consume loop", error=str(e))
                await asyncio.sleep(self.retry_backoff_seconds)

    def is_running(self) -> bool:
        """Check if consumer is running."""
        return self.running
