import json
from typing import Optional
from redis.asyncio import Redis
from redis.exceptions import RedisError
from core.config import settings
from core.logger import logger


class ProgressEvents:
    """Outbound progression effects. The base class only logs them."""

    async def publish(self, event: str, payload: dict) -> None:
        logger.info("Progress event", progress_event=event, **payload)

    async def module_unlocked(
        self, enrollment_id: int, module_id: int, next_module_id: Optional[int], attempt_id: int
    ) -> None:
        await self.publish("module_unlocked", {
            "enrollment_id": enrollment_id,
            "module_id": module_id,
            "next_module_id": next_module_id,
            "attempt_id": attempt_id,
        })

    async def attempt_graded(
        self,
        attempt_id: int,
        enrollment_id: int,
        quiz_id: int,
        score: int,
        passed: bool,
        retry_available: bool,
    ) -> None:
        await self.publish("attempt_graded", {
            "attempt_id": attempt_id,
            "enrollment_id": enrollment_id,
            "quiz_id": quiz_id,
            "score": score,
            "passed": passed,
            "retry_available": retry_available,
        })


class RedisProgressEvents(ProgressEvents):
    """Publishes events as JSON on a Redis channel for the unlock and notification consumers."""

    def __init__(self, redis: Redis, channel: Optional[str] = None):
        self.redis = redis
        self.channel = channel or settings.PROGRESS_EVENTS_CHANNEL

    async def publish(self, event: str, payload: dict) -> None:
        message = json.dumps({"event": event, **payload})
        try:
            receivers = await self.redis.publish(self.channel, message)
        except RedisError as e:
            # Module progress is already committed; consumers can reconcile from it
            logger.error("Progress event not published", progress_event=event, error=str(e))
            return
        logger.info("Progress event published", progress_event=event, channel=self.channel, receivers=receivers)
