"""
Rate Limiting Middleware
Keeps sync triggers from hammering PracticePanther, using slowapi

RATE LIMITS:
- Global: 100 requests/minute per caller (default)
- Sync trigger: 10/hour per caller (set on the route)
"""
import hashlib
import logging
from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

logger = logging.getLogger(__name__)


def rate_limit_key_func(request: Request) -> str:
    """
    Key on the API key when one is sent, else on the client IP.

    The key itself never lands in limiter storage, only a short digest.
    """
    api_key = request.headers.get("X-API-Key")
    if api_key:
        digest = hashlib.sha256(api_key.encode()).hexdigest()[:16]
        return f"key:{digest}"

    ip = get_remote_address(request)
    logger.debug(f"Rate limit key: ip={ip}")
    return f"ip:{ip}"


limiter = Limiter(
    key_func=rate_limit_key_func,
    default_limits=["100/minute"],
    storage_uri="memory://",  # Single instance; point at Redis when scaling out
)
