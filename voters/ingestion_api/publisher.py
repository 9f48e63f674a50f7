"""Durable job queue feeding the dispatch worker."""
import logging
from datetime import datetime, timezone
from typing import Optional

import aio_pika
from aio_pika import DeliveryMode, Message
from aio_pika.pool import Pool

from voters.shared import VoteRecord
from .config import settings

logger = logging.getLogger(__name__)


async def declare_topology(channel: aio_pika.abc.AbstractChannel) -> aio_pika.abc.AbstractExchange:
    """Declare the exchange and the dispatch queue bound to it."""
    exchange = await channel.declare_exchange(
        settings.RABBITMQ_EXCHANGE,
        aio_pika.ExchangeType.TOPIC,
        durable=True
    )
    queue = await channel.declare_queue(settings.RABBITMQ_QUEUE, durable=True)
    await queue.bind(exchange, routing_key=settings.RABBITMQ_ROUTING_KEY)
    return exchange


class RabbitMQPublisher:
    """
    Publishes one persistent job per finalized vote.

    Connections and channels are pooled with aio-pika's Pool. The queue is
    durable and the messages persistent, so a job survives broker and worker
    restarts until a worker acknowledges it.
    """

    def __init__(self, url: Optional[str] = None):
        self.url = url or settings.rabbitmq_url
        self.connection_pool: Optional[Pool] = None
        self.channel_pool: Optional[Pool] = None

    async def _open_connection(self) -> aio_pika.abc.AbstractRobustConnection:
        return await aio_pika.connect_robust(self.url)

    async def _open_channel(self) -> aio_pika.abc.AbstractChannel:
        async with self.connection_pool.acquire() as connection:
            return await connection.channel()

    async def initialize(self):
        """Create the pools and declare the topology."""
        self.connection_pool = Pool(self._open_connection, max_size=settings.RABBITMQ_POOL_SIZE)
        self.channel_pool = Pool(self._open_channel, max_size=settings.RABBITMQ_POOL_SIZE)

        try:
            async with self.channel_pool.acquire() as channel:
                await declare_topology(channel)
        except Exception as e:
            logger.error(f"Failed to declare dispatch topology: {e}")
            raise

        logger.info(
            f"Job publisher ready: {settings.RABBITMQ_EXCHANGE} -> {settings.RABBITMQ_QUEUE} "
            f"({settings.RABBITMQ_ROUTING_KEY})"
        )

    async def publish_job(self, record: VoteRecord) -> bool:
        """
        Enqueue the dispatch job of a finalized vote.

        Returns:
            bool: False when the broker could not take the job; never raises
        """
        message = Message(
            body=record.to_json().encode(),
            content_type="application/json",
            delivery_mode=DeliveryMode.PERSISTENT,
            message_id=record.id,
            timestamp=datetime.now(timezone.utc)
        )

        try:
            async with self.channel_pool.acquire() as channel:
                exchange = await channel.get_exchange(settings.RABBITMQ_EXCHANGE)
                await exchange.publish(message, routing_key=settings.RABBITMQ_ROUTING_KEY)
        except Exception as e:
            logger.error(f"Could not enqueue dispatch job for {record.id}: {e}")
            return False

        logger.debug(f"Dispatch job enqueued: id={record.id}")
        return True

    async def check_health(self) -> bool:
        """True when the dispatch queue can be reached."""
        try:
            async with self.channel_pool.acquire() as channel:
                await channel.declare_queue(settings.RABBITMQ_QUEUE, durable=True, passive=True)
            return True
        except Exception as e:
            logger.error(f"RabbitMQ health check failed: {e}")
            return False

    async def close(self):
        """Close pooled channels, then connections."""
        for pool in (self.channel_pool, self.connection_pool):
            if pool is None:
                continue
            try:
                await pool.close()
            except Exception as e:
                logger.error(f"Error closing RabbitMQ pool: {e}")
        logger.info("Job publisher closed")


# Global publisher instance
publisher = RabbitMQPublisher()
