"""Per-client request limits kept in Redis."""
import logging
import time
from typing import Dict, Tuple

import redis
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from monitoring import rate_limit_exceeded_counter, suspicious_activity_counter

logger = logging.getLogger(__name__)

LOGIN_PATH = "/api/admin/login"

# status code -> (pattern, hits within SUSPICIOUS_WINDOW_SECONDS)
SUSPICIOUS_PATTERNS: Dict[int, Tuple[str, int]] = {
    401: ("credential_stuffing", 5),
    404: ("endpoint_scanning", 10),
}
SUSPICIOUS_WINDOW_SECONDS = 300


def client_ip(request: Request) -> str:
    """First X-Forwarded-For hop when behind a proxy, else the peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RedisRateLimiter(BaseHTTPMiddleware):
    """
    Sliding-window limits on Redis sorted sets, keyed by client IP.

    Every request counts against ``requests_per_minute``; admin login attempts
    additionally count against ``login_requests_per_minute``. When Redis is
    unreachable requests are let through.
    """

    def __init__(
        self,
        app,
        redis_client: redis.Redis,
        requests_per_minute: int = 600,
        login_requests_per_minute: int = 10,
        window_seconds: int = 60
    ):
        super().__init__(app)
        self.redis = redis_client
        self.requests_per_minute = requests_per_minute
        self.login_requests_per_minute = login_requests_per_minute
        self.window_seconds = window_seconds

    def _hit(self, key: str, limit: int) -> Tuple[bool, int]:
        """
        Record one request under ``key`` and compare the window count to ``limit``.

        Returns:
            (allowed, count including this request)
        """
        now = time.time()
        try:
            pipe = self.redis.pipeline()
            pipe.zremrangebyscore(key, 0, now - self.window_seconds)
            pipe.zcard(key)
            # Nanosecond member keeps simultaneous requests distinct
            pipe.zadd(key, {str(time.time_ns()): now})
            pipe.expire(key, self.window_seconds + 1)
            _, seen, _, _ = pipe.execute()
        except redis.RedisError as e:
            logger.error(f"Rate limit check skipped, Redis unavailable: {e}")
            return True, 0
        return seen < limit, seen + 1

    def _too_many(self, tier: str, ip: str, count: int, limit: int) -> JSONResponse:
        rate_limit_exceeded_counter.add(1, {"limit_type": tier})
        logger.warning("Rate limit exceeded", extra={
            "limit_type": tier,
            "client_ip": ip,
            "count": count,
            "limit": limit
        })
        return JSONResponse(
            status_code=429,
            content={
                "success": False,
                "error": "Too Many Requests",
                "message": f"Rate limit exceeded. Maximum {limit} requests per {self.window_seconds} seconds."
            },
            headers={"Retry-After": str(self.window_seconds)}
        )

    async def dispatch(self, request: Request, call_next):
        ip = client_ip(request)

        allowed, count = self._hit(f"rate:ip:{ip}", self.requests_per_minute)
        if not allowed:
            return self._too_many("ip", ip, count, self.requests_per_minute)

        if request.method == "POST" and request.url.path == LOGIN_PATH:
            allowed, count = self._hit(f"rate:login:{ip}", self.login_requests_per_minute)
            if not allowed:
                return self._too_many("login", ip, count, self.login_requests_per_minute)

        response = await call_next(request)
        if response.status_code in SUSPICIOUS_PATTERNS:
            self._track(response.status_code, ip)
        return response

    def _track(self, status_code: int, ip: str) -> None:
        """Count failed logins and unmatched routes per client; flag bursts."""
        pattern, threshold = SUSPICIOUS_PATTERNS[status_code]
        key = f"suspicious:{status_code}:{ip}"
        now = time.time()
        try:
            self.redis.zadd(key, {str(time.time_ns()): now})
            self.redis.expire(key, SUSPICIOUS_WINDOW_SECONDS + 1)
            count = self.redis.zcount(key, now - SUSPICIOUS_WINDOW_SECONDS, now)
        except redis.RedisError as e:
            logger.error(f"Suspicious activity tracking skipped: {e}")
            return

        if count >= threshold:
            suspicious_activity_counter.add(1, {"type": pattern})
            logger.warning("Suspicious activity detected", extra={
                "type": pattern,
                "client_ip": ip,
                "count": count,
                "window_seconds": SUSPICIOUS_WINDOW_SECONDS
            })
