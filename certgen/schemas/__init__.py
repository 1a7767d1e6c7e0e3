"""
Pydantic schemas for request/response models.
"""

from certgen.schemas.responses import (
    ErrorResponse,
    HealthResponse,
    ReadinessResponse,
    StatusResponse,
)

__all__ = [
    "StatusResponse",
    "ErrorResponse",
    "HealthResponse",
    "ReadinessResponse",
]
