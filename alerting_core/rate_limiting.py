"""
API Rate Limiting Module
Protects the decision API from request floods using slowapi. This limits HTTP
callers; alert rate limits are a separate concern of the decision engine.
"""

from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from fastapi import Request
import logging
import os

from alerting_core.auth import verify_token

logger = logging.getLogger(__name__)


# ============================================================================
# Rate Limit Configuration
# ============================================================================

DEFAULT_RATE_LIMIT = os.getenv("API_RATE_LIMIT", "300/minute")

# Endpoints with stricter limits
PROCESS_RATE_LIMIT = os.getenv("API_PROCESS_RATE_LIMIT", "600/minute")
ADMIN_RATE_LIMIT = os.getenv("API_ADMIN_RATE_LIMIT", "30/minute")


# ============================================================================
# Rate Limiter Setup
# ============================================================================

def get_request_identifier(request: Request) -> str:
    """Bearer token subject when the token verifies, otherwise the client address"""
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token:
        payload = verify_token(token.strip(), token_type="access")
        if payload and payload.get("sub"):
            return f"user:{payload['sub']}"
    return get_remote_address(request)



limiter = Limiter(
    key_func=get_request_identifier,
    default_limits=[DEFAULT_RATE_LIMIT],
    storage_uri=os.getenv("RATE_LIMIT_STORAGE_URI", "memory://"),
    strategy="fixed-window",
)


def setup_rate_limiting(app):
    """
    Setup rate limiting for a FastAPI application.

    Usage:
        from alerting_core.rate_limiting import setup_rate_limiting
        app = FastAPI()
        setup_rate_limiting(app)
    """
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    logger.info(f"[SECURITY] API rate limiting enabled (default {DEFAULT_RATE_LIMIT})")
    return limiter
