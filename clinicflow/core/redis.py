import redis.asyncio as redis
from clinicflow.core.config import settings

class RedisClient:
    def __init__(self, url: str = None):
        self.redis = redis.from_url(url or settings.REDIS_URL, encoding="utf-8", decode_responses=True)

    async def get_service_minutes(self, department: str) -> str | None:
        return await self.redis.get(f"service_minutes:{department}")

    async def close(self):
        await self.redis.aclose()

redis_client = RedisClient()
