"""Blocking RabbitMQ consumer for dispatch jobs."""

import logging
import time
from typing import Callable

import pika

from .config import Config

logger = logging.getLogger(__name__)


class RabbitMQClient:
    """
    Consumes the dispatch queue with manual acknowledgements.

    The exchange, queue and binding are declared on connect with the same
    durable settings the ingestion API uses, so either side may start first.
    """

    def __init__(
        self,
        queue: str = Config.DISPATCH_QUEUE,
        prefetch_count: int = Config.PREFETCH_COUNT,
        connect_attempts: int = 5,
        retry_delay: float = 5
    ):
        self.queue = queue
        self.prefetch_count = prefetch_count
        self.connection = None
        self.channel = None
        self.consuming = False
        self._connect(connect_attempts, retry_delay)

    @staticmethod
    def _parameters() -> pika.ConnectionParameters:
        return pika.ConnectionParameters(
            host=Config.RABBITMQ_HOST,
            port=Config.RABBITMQ_PORT,
            virtual_host=Config.RABBITMQ_VHOST,
            credentials=pika.PlainCredentials(Config.RABBITMQ_USER, Config.RABBITMQ_PASS),
            heartbeat=600,
            blocked_connection_timeout=300
        )

    def _connect(self, attempts: int, retry_delay: float):
        """Connect, retrying while the broker is still starting."""
        for attempt in range(1, attempts + 1):
            try:
                self.connection = pika.BlockingConnection(self._parameters())
                break
            except pika.exceptions.AMQPConnectionError as e:
                if attempt == attempts:
                    logger.error(f"Giving up on RabbitMQ after {attempts} attempts: {e}")
                    raise
                logger.warning(f"RabbitMQ not reachable ({attempt}/{attempts}), retrying in {retry_delay}s: {e}")
                time.sleep(retry_delay)

        self.channel = self.connection.channel()
        self.channel.basic_qos(prefetch_count=self.prefetch_count)

        self.channel.exchange_declare(exchange=Config.EXCHANGE, exchange_type='topic', durable=True)
        self.channel.queue_declare(queue=self.queue, durable=True)
        self.channel.queue_bind(queue=self.queue, exchange=Config.EXCHANGE, routing_key=Config.ROUTING_KEY)

        logger.info(
            f"Connected to RabbitMQ, queue {self.queue} bound to "
            f"{Config.EXCHANGE}/{Config.ROUTING_KEY} (prefetch={self.prefetch_count})"
        )

    def consume_jobs(self, callback: Callable):
        """
        Block and hand every job to callback(ch, method, properties, body).

        The callback is responsible for acking or rejecting each delivery.
        Returns once stop_consuming() is called.
        """
        self.channel.basic_consume(queue=self.queue, on_message_callback=callback, auto_ack=False)
        self.consuming = True
        logger.info(f"Consuming dispatch jobs from {self.queue}")
        try:
            self.channel.start_consuming()
        finally:
            self.consuming = False

    def stop_consuming(self):
        if self.consuming and self.channel:
            logger.info("Stopping job consumption")
            self.channel.stop_consuming()

    def ack(self, delivery_tag: int):
        self.channel.basic_ack(delivery_tag=delivery_tag)
        logger.debug(f"Job acked: {delivery_tag}")

    def reject(self, delivery_tag: int, requeue: bool = False):
        """Reject a delivery; without requeue the broker drops it."""
        self.channel.basic_reject(delivery_tag=delivery_tag, requeue=requeue)
        logger.debug(f"Job rejected: {delivery_tag} (requeue={requeue})")

    def close(self):
        """Stop consuming and close the connection."""
        self.stop_consuming()
        if self.connection and not self.connection.is_closed:
            self.connection.close()
            logger.info("RabbitMQ connection closed")
