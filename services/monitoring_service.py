from redis.asyncio import Redis

from core.logger import logger
from db.session import AsyncSessionLocal
from services.attempt_service import AttemptService
from services.events import RedisProgressEvents

async def sweep_expired_attempts(redis: Redis, session_factory=AsyncSessionLocal) -> int:
    """
    Periodic task: grade attempts whose deadline passed while the student was away.
    Finalize is idempotent, so overlapping runs or a concurrent student submit are harmless.
    """
    logger.debug("Starting expired attempt sweep...")
    async with session_factory() as db:
        service = AttemptService(db, events=RedisProgressEvents(redis))
        graded = await service.finalize_expired()
    logger.debug("Expired attempt sweep completed.", graded=graded)
    return graded
