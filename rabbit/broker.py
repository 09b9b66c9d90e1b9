import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, Optional

import aio_pika
from aio_pika import DeliveryMode, Message
from aio_pika.abc import AbstractChannel, AbstractIncomingMessage, AbstractQueue
from aio_pika.exceptions import AMQPError

from common.config import RABBITMQ_URL
from common.logger import get_logger
from rabbit.models import JobStatus, StatusUpdate

QUEUE_CAPTURE_JOBS = "capture_jobs"
QUEUE_STATUS_UPDATES = "status_updates"

# One capture job keeps a browser busy for minutes, never hand out more.
_CAPTURE_PREFETCH = 1


class RabbitMQClient:
    def __init__(self, url: str = RABBITMQ_URL, prefetch_count: int = _CAPTURE_PREFETCH) -> None:
        self._logger = get_logger(__name__)
        self._url = url
        self._prefetch_count = prefetch_count
        self._connection: Optional[aio_pika.abc.AbstractRobustConnection] = None
        self._channel: Optional[AbstractChannel] = None
        self._queues: Dict[str, AbstractQueue] = {}

    async def connect(self) -> None:
        self._connection = await aio_pika.connect_robust(self._url)
        self._channel = await self._connection.channel()
        await self._channel.set_qos(prefetch_count=self._prefetch_count)

    async def disconnect(self) -> None:
        if self._channel and not self._channel.is_closed:
            await self._channel.close()
        if self._connection and not self._connection.is_closed:
            await self._connection.close()
        self._queues.clear()

    def _require_channel(self) -> AbstractChannel:
        if self._channel is None:
            raise RuntimeError("Not connected to RabbitMQ")
        return self._channel

    async def declare_queue(self, name: str) -> AbstractQueue:
        channel = self._require_channel()
        if name not in self._queues:
            self._queues[name] = await channel.declare_queue(name, durable=True)
        return self._queues[name]

    async def declare_all_queues(self) -> None:
        for queue_name in (QUEUE_CAPTURE_JOBS, QUEUE_STATUS_UPDATES):
            await self.declare_queue(queue_name)

    async def publish(self, queue_name: str, payload: Dict[str, Any]) -> None:
        channel = self._require_channel()
        await self.declare_queue(queue_name)

        message = Message(
            body=json.dumps(payload).encode(),
            delivery_mode=DeliveryMode.PERSISTENT,
            content_type="application/json",
        )
        await channel.default_exchange.publish(message, routing_key=queue_name)
        self._logger.debug("Published message to '%s'", queue_name)

    async def publish_status(
            self,
            job_id: str,
            status: JobStatus,
            **fields: Any,
    ) -> None:
        update = StatusUpdate(job_id=job_id, status=status, **fields)
        await self.publish(QUEUE_STATUS_UPDATES, update.model_dump(mode="json"))

    async def consume(
            self,
            queue_name: str,
            callback: Callable[[AbstractIncomingMessage], Awaitable[None]],
            no_ack: bool = False,
    ) -> str:
        queue = await self.declare_queue(queue_name)
        return await queue.consume(callback, no_ack=no_ack)

    @staticmethod
    def parse_message(message: AbstractIncomingMessage) -> Dict[str, Any]:
        try:
            return json.loads(message.body)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON: {message.body!r}") from exc

    @classmethod
    async def wait_for_broker(
            cls,
            url: str = RABBITMQ_URL,
            retries: int = 12,
            delay: float = 5.0,
            **kwargs: Any,
    ) -> "RabbitMQClient":
        logger = get_logger(__name__)
        for attempt in range(1, retries + 1):
            client = cls(url, **kwargs)
            try:
                await client.connect()
                return client
            except (ConnectionError, OSError, AMQPError) as e:
                logger.warning("RabbitMQ is not reachable (attempt %d/%d): %s", attempt, retries, e)
                if attempt < retries:
                    await asyncio.sleep(delay)

        raise RuntimeError(f"Failed to connect to RabbitMQ after {retries} attempts")

    async def __aenter__(self) -> "RabbitMQClient":
        await self.connect()
        return self

    async def __aexit__(self, *_) -> None:
        await self.disconnect()
