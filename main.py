import asyncio
from redis.asyncio import Redis

from core.config import settings
from core.logger import setup_logging, logger
from services.monitoring_service import sweep_expired_attempts
from apscheduler.schedulers.asyncio import AsyncIOScheduler

async def start_api():
    import uvicorn
    from api.main import app
    config = uvicorn.Config(app, host=settings.API_HOST, port=settings.API_PORT, log_level="info")
    server = uvicorn.Server(config)
    await server.serve()

async def main():
    # Parse mode from CLI args first
    import sys
    mode = "all"
    if len(sys.argv) > 1:
        if "api" in sys.argv: mode = "api"
        elif "sweeper" in sys.argv: mode = "sweeper"

    # Setup structured logging
    setup_logging()

    if mode == "api":
        # For scaling, run 'uvicorn api.main:app' directly and one 'sweeper' process
        logger.info("Starting API Only Mode...")
        await start_api()
        return

    redis = Redis.from_url(settings.REDIS_URL, decode_responses=True)

    # Expired attempts are graded lazily on start and by this periodic sweep
    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        sweep_expired_attempts,
        trigger="interval",
        seconds=settings.EXPIRY_SWEEP_SECONDS,
        args=[redis],
        id=settings.EXPIRY_SWEEP_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info("Scheduler started (Expired attempt sweep).", interval=settings.EXPIRY_SWEEP_SECONDS)

    try:
        if mode == "sweeper":
            logger.info("Starting Sweeper Only Mode...", env=settings.ENV)
            await asyncio.Event().wait()
        else: # mode == "all"
            logger.info("Starting All (API + Sweeper)...", env=settings.ENV)
            await start_api()
    finally:
        scheduler.shutdown(wait=False)
        await redis.aclose()

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        logger.info("Application stopped.")
