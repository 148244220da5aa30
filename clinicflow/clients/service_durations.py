from typing import Dict, Optional

from redis.exceptions import RedisError

from clinicflow.core.config import settings
from clinicflow.core.logger import logger
from clinicflow.core.redis import RedisClient, redis_client


class StaticServiceDurations:
    """Fixed average service minutes, optionally per department."""

    def __init__(self, minutes: Optional[float] = None, per_department: Optional[Dict[str, float]] = None):
        self.minutes = minutes if minutes is not None else settings.DEFAULT_SERVICE_MINUTES
        self.per_department = per_department or {}

    async def average_minutes(self, department: str) -> float:
        return self.per_department.get(department, self.minutes)


class RedisServiceDurations:
    """
    Rolling average service minutes published to Redis by the analytics job
    under ``service_minutes:{department}``. Falls back to the configured
    default when the key is missing, malformed or Redis is unreachable.
    """

    def __init__(self, client: Optional[RedisClient] = None, default_minutes: Optional[float] = None):
        self.client = client or redis_client
        self.default_minutes = default_minutes if default_minutes is not None else settings.DEFAULT_SERVICE_MINUTES

    async def average_minutes(self, department: str) -> float:
        try:
            raw = await self.client.get_service_minutes(department)
        except RedisError as exc:
            logger.warning(f"Service duration lookup failed for {department}: {exc}")
            return self.default_minutes
        if raw is None:
            return self.default_minutes
        try:
            minutes = float(raw)
        except ValueError:
            logger.warning(f"Ignoring malformed service duration for {department}: {raw!r}")
            return self.default_minutes
        return minutes if minutes > 0 else self.default_minutes

service_durations = RedisServiceDurations()
