"""
Dramatiq Redis Broker Configuration
Handles background job queue for PracticePanther sync runs
"""
import logging
import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.middleware import (
    AgeLimit, Callbacks, Pipelines,
    Retries, ShutdownNotifications
)

from mattersync.core.config import settings

logger = logging.getLogger(__name__)

REDIS_URL = settings.redis_url

if not REDIS_URL:
    logger.warning("⚠️  REDIS_URL not set - background jobs will not work")
    redis_broker = RedisBroker()
else:
    # Create broker with explicit middleware (excludes TimeLimit for Python 3.13 compatibility)
    redis_broker = RedisBroker(
        url=REDIS_URL,
        middleware=[
            AgeLimit(),
            Retries(max_retries=3),
            Callbacks(),
            Pipelines(),
            ShutdownNotifications(),
        ]
    )
    logger.info(f"✅ Redis broker initialized: {REDIS_URL[:20]}...")

dramatiq.set_broker(redis_broker)
broker = redis_broker
