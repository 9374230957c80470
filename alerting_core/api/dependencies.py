"""
Shared API dependencies: session factory, redis client and error mapping
"""

from fastapi import HTTPException, status
from sqlalchemy.orm import sessionmaker

from alerting_core.database import SessionLocal, get_engine
from alerting_core.errors import (
    AlertNotFoundError, AlertingError, ConcurrencyConflictError, ConfigurationError,
    InvalidTransitionError, RoutingGapError, TimingInvariantError
)

# Injected from main.py during app creation
_redis_client = None


def configure(redis_client):
    """Configure shared dependencies from main.py"""
    global _redis_client
    _redis_client = redis_client


def get_session_factory() -> sessionmaker:
    """Dependency for routes that run their own units of work"""
    get_engine()
    return SessionLocal


def get_redis_client():
    return _redis_client


# Checked in order; TimingInvariantError must precede the generic cases
_STATUS_BY_ERROR = (
    (AlertNotFoundError, status.HTTP_404_NOT_FOUND),
    (TimingInvariantError, status.HTTP_400_BAD_REQUEST),
    (ConfigurationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (ConcurrencyConflictError, status.HTTP_409_CONFLICT),
    (RoutingGapError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def to_http_exception(error: AlertingError) -> HTTPException:
    for error_cls, code in _STATUS_BY_ERROR:
        if isinstance(error, error_cls):
            return HTTPException(status_code=code, detail=str(error))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))
