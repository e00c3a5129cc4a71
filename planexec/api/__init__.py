"""
API package - FastAPI routes and Pydantic schemas.
"""

from planexec.api.routes import router
from planexec.api.schemas import (
    RetryRequest,
    SessionListResponse,
    SessionResponse,
    SessionSummaryResponse,
    StatsResponse,
)

__all__ = [
    "router",
    "RetryRequest",
    "SessionListResponse",
    "SessionResponse",
    "SessionSummaryResponse",
    "StatsResponse",
]
