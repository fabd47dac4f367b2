"""
WEBCORE - Redis Streams Pub/Sub Library

Publish/subscribe over Redis Streams, registered as ``pubsub:redis``.
The configured topic is a stream and the subscription a consumer group,
giving at-least-once delivery: a message stays pending until the
receiver acknowledges it.
"""
import asyncio
import json
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import redis.asyncio as aioredis
from redis.asyncio import Redis
from redis.exceptions import ResponseError

from config import PubSubConfig
from core.errors import LibraryContractError, WebcoreError
from core.library import Connector, InstallParams, Library


logger = logging.getLogger("webcore.libraries.pubsub")


@dataclass
class PubSubMessage:
    """A message read from the subscription."""

    id: str
    data: str
    attributes: Dict[str, str] = field(default_factory=dict)
    publish_time: Optional[datetime] = None

    def json(self) -> Any:
        return json.loads(self.data)

    @classmethod
    def from_fields(cls, message_id: str, fields: Dict[str, str]) -> "PubSubMessage":
        published = fields.get("published_at")
        return cls(
            id=message_id,
            data=fields.get("data", ""),
            attributes=json.loads(fields.get("attributes") or "{}"),
            publish_time=datetime.fromisoformat(published) if published else None,
        )


class PubSubReceiver(ABC):
    """Consumer of subscription batches."""

    @abstractmethod
    async def consume(self, messages: List[PubSubMessage]) -> Dict[str, bool]:
        """
        Handle a batch.

        Returns:
            Mapping of message id to True for every message to acknowledge.
            Messages left out or mapped to False stay pending.
        """
        ...


def _encode(message: Any) -> str:
    if isinstance(message, bytes):
        return message.decode("utf-8")
    if isinstance(message, str):
        return message
    return json.dumps(message, default=str)


class RedisPubSub(Library, Connector):
    """Redis Streams publisher and consumer-group subscriber."""

    def __init__(self):
        self.config: Optional[PubSubConfig] = None
        self.consumer_name: str = ""
        self._redis: Optional[Redis] = None
        self._receiver: Optional[PubSubReceiver] = None
        self._task: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()
        self._read_pending = True

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def install(self, params: InstallParams) -> None:
        if not isinstance(params.config, PubSubConfig):
            raise LibraryContractError(
                f"pubsub:redis expects PubSubConfig, got {type(params.config).__name__}",
                library="pubsub:redis",
                offending_type=type(params.config),
            )
        self.config = params.config
        self.consumer_name = self.config.consumer_name or f"webcore-{uuid.uuid4().hex[:8]}"

    async def connect(self) -> None:
        self._redis = aioredis.from_url(self.config.url, decode_responses=True)
        try:
            await self._redis.ping()
            await self._ensure_group()
        except Exception:
            await self._redis.aclose()
            self._redis = None
            raise
        logger.info(
            f"Pub/sub connected: stream={self.config.topic} "
            f"group={self.config.subscription} consumer={self.consumer_name}"
        )

    async def _ensure_group(self) -> None:
        try:
            await self._redis.xgroup_create(
                self.config.topic,
                self.config.subscription,
                id="0",
                mkstream=True,
            )
            logger.info(f"Created consumer group '{self.config.subscription}' for {self.config.topic}")
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

    async def disconnect(self) -> None:
        await self.stop_receiving()
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            logger.info("Pub/sub connection closed")

    async def uninstall(self) -> None:
        self._receiver = None
        self.config = None

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    async def publish(
        self,
        message: Any,
        attributes: Optional[Dict[str, str]] = None,
    ) -> str:
        """
        Publish a message to the topic.

        Strings and bytes are sent as-is, anything else as JSON.

        Returns:
            Message id assigned by Redis
        """
        fields = {
            "data": _encode(message),
            "attributes": json.dumps(attributes or {}),
            "published_at": datetime.now(timezone.utc).isoformat(),
        }
        message_id = await self._redis.xadd(
            self.config.topic,
            fields,
            maxlen=self.config.max_stream_length,
            approximate=True,
        )
        logger.debug(f"Published message {message_id} to {self.config.topic}")
        return message_id

    # -------------------------------------------------------------------------
    # Receiving
    # -------------------------------------------------------------------------

    def register_receiver(self, receiver: PubSubReceiver) -> None:
        if not isinstance(receiver, PubSubReceiver):
            raise LibraryContractError(
                f"Receiver must implement PubSubReceiver, got {type(receiver).__name__}",
                library="pubsub:redis",
                offending_type=type(receiver),
            )
        self._receiver = receiver

    async def receive_once(self) -> int:
        """
        Read one batch, hand it to the receiver and acknowledge what it accepted.

        Returns:
            Number of acknowledged messages
        """
        if self._receiver is None:
            raise WebcoreError("No pub/sub receiver registered")

        messages: List[PubSubMessage] = []
        from_pending = self._read_pending
        if from_pending:
            # Redeliver what this consumer left unacknowledged, then what
            # dead consumers left idle, before reading new messages
            messages = await self._read("0")
            if not messages:
                messages = await self.claim_idle()
            if not messages:
                self._read_pending = from_pending = False
        if not messages:
            messages = await self._read(">")
        if not messages:
            return 0

        # Stays set if the receiver raises
        self._read_pending = True
        results = await self._receiver.consume(messages)
        acked = [message_id for message_id, ok in results.items() if ok]
        if acked:
            await self._redis.xack(self.config.topic, self.config.subscription, *acked)

        if len(acked) < len(messages):
            logger.warning(f"{len(messages) - len(acked)} of {len(messages)} messages left pending")
        elif not from_pending:
            self._read_pending = False
        return len(acked)

    async def _read(self, read_id: str) -> List[PubSubMessage]:
        response = await self._redis.xreadgroup(
            groupname=self.config.subscription,
            consumername=self.consumer_name,
            streams={self.config.topic: read_id},
            count=self.config.batch_size,
            block=self.config.block_timeout_ms if read_id == ">" else None,
        )
        return [
            PubSubMessage.from_fields(message_id, fields)
            for _, entries in response or []
            for message_id, fields in entries
            if fields
        ]

    async def claim_idle(self) -> List[PubSubMessage]:
        """
        Take over messages other consumers of the group left pending.

        Only messages idle for at least ``claim_min_idle_ms`` are claimed.
        """
        response = await self._redis.xautoclaim(
            self.config.topic,
            self.config.subscription,
            self.consumer_name,
            min_idle_time=self.config.claim_min_idle_ms,
            start_id="0-0",
            count=self.config.batch_size,
        )
        claimed = [
            PubSubMessage.from_fields(message_id, fields)
            for message_id, fields in (response[1] if response else [])
            if fields
        ]
        if claimed:
            logger.info(f"Claimed {len(claimed)} idle messages for {self.consumer_name}")
        return claimed

    def start_receiving(self, stop_event: Optional[asyncio.Event] = None) -> asyncio.Task:
        """
        Run the receive loop in a background task.

        The loop ends when ``stop_event`` is set or on ``stop_receiving``.
        """
        if self._receiver is None:
            raise WebcoreError("No pub/sub receiver registered")
        if self._task is None or self._task.done():
            self._stop = stop_event or asyncio.Event()
            self._task = asyncio.create_task(self._receive_loop())
        return self._task

    async def stop_receiving(self) -> None:
        self._stop.set()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _receive_loop(self) -> None:
        logger.info(f"Receiving from {self.config.topic} as {self.config.subscription}/{self.consumer_name}")
        while not self._stop.is_set():
            try:
                await self.receive_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in receive loop: {e}")
                await asyncio.sleep(1)
