"""
Engagement event consumer — Kafka → page-cache invalidation.

The posts / votes services publish one message per like, unlike, comment or
vote on the engagement topic:
  { "user_id": "...", "action": "like", "post_id": "..." }

Each valid message drops the acting user's cached feed pages. The mutation
itself is owned by the publishing service and is not processed here.
"""
import asyncio
import json
import logging
from typing import Optional

from aiokafka import AIOKafkaConsumer
from pydantic import ValidationError

from trendfeed.config import settings
from trendfeed.feed_service import FeedService
from trendfeed.schemas import EngagementEvent

logger = logging.getLogger(__name__)


def _deserialize(raw: bytes):
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None


def process_message(msg: dict, service: FeedService) -> Optional[EngagementEvent]:
    try:
        event = EngagementEvent.model_validate(msg)
    except ValidationError:
        logger.warning("Malformed engagement event: %s", msg)
        return None
    service.record_engagement(event)
    return event


class EngagementConsumer:
    def __init__(self, service: FeedService) -> None:
        self.service = service
        self._consumer: Optional[AIOKafkaConsumer] = None
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        self._consumer = AIOKafkaConsumer(
            settings.kafka_topic_engagements,
            bootstrap_servers=settings.kafka_bootstrap_servers,
            group_id=settings.kafka_consumer_group,
            auto_offset_reset="latest",
            value_deserializer=_deserialize,
        )
        await self._consumer.start()
        self._task = asyncio.create_task(self._run())
        logger.info(
            "Engagement consumer listening on topic '%s'", settings.kafka_topic_engagements
        )

    async def _run(self) -> None:
        async for msg in self._consumer:
            if not isinstance(msg.value, dict):
                logger.warning("Ignoring non-object engagement message: %r", msg.value)
                continue
            process_message(msg.value, self.service)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        if self._consumer:
            await self._consumer.stop()
