from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine
from core.config import settings


def build_engine(url: str) -> AsyncEngine:
    kwargs = {"echo": False, "pool_pre_ping": True}
    # SQLite drivers use their own pools and reject the sizing arguments
    if not url.startswith("sqlite"):
        kwargs.update(
            pool_recycle=3600,
            pool_size=20,       # Base connections
            max_overflow=10,    # Burst connections
        )
    return create_async_engine(url, **kwargs)


def build_sessionmaker(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine(settings.DATABASE_URL)

AsyncSessionLocal = build_sessionmaker(engine)

async def get_db():
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_redis():
    from redis.asyncio import Redis
    redis = Redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        yield redis
    finally:
        await redis.aclose()
