from fastapi import Request
from fastapi.responses import JSONResponse

from app.config import settings
from app.logging_config import setup_logging
from app.rate_limiter import RateLimiter

logger = setup_logging()

# Global rate limiter instance
rate_limiter = RateLimiter(
    max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
    window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS
)


def _client_ip(request: Request) -> str:
    """
    Address the limit is counted against.

    X-Forwarded-For is only honoured when the direct peer is one of
    RATE_LIMIT_TRUSTED_PROXIES; the client is then the right-most hop that
    is not itself a trusted proxy. Entries left of it are client-supplied.
    """
    peer = request.client.host if request.client else "unknown"
    trusted = settings.RATE_LIMIT_TRUSTED_PROXIES
    if peer not in trusted:
        return peer

    forwarded_for = request.headers.get("X-Forwarded-For", "")
    hops = [hop.strip() for hop in forwarded_for.split(",") if hop.strip()]
    for hop in reversed(hops):
        if hop not in trusted:
            return hop
    return peer


async def rate_limit_middleware(request: Request, call_next):
    """
    IP-based rate limiting for the public share endpoints.

    Only paths under RATE_LIMIT_PATH_PREFIXES are counted, so guessing share
    tokens and passwords is throttled while owner uploads are not.
    Returns 429 Too Many Requests if limit exceeded.
    """
    if not settings.RATE_LIMIT_ENABLED:
        return await call_next(request)

    if not request.url.path.startswith(tuple(settings.RATE_LIMIT_PATH_PREFIXES)):
        return await call_next(request)

    ip_address = _client_ip(request)
    is_allowed, retry_after = await rate_limiter.check_rate_limit(ip_address)

    if not is_allowed:
        logger.warning(
            f"Rate limit exceeded: ip={ip_address}, path={request.url.path}, "
            f"tracked_clients={rate_limiter.tracked_clients()}"
        )
        return JSONResponse(
            status_code=429,
            headers={"Retry-After": str(retry_after)},
            content={
                "success": False,
                "error": "Too Many Requests",
                "data": {
                    "retry_after": retry_after
                }
            }
        )

    return await call_next(request)
