"""
Gatehouse — Response Schemas
==============================

What:  Pydantic models for the wire shapes the governance layer and its
       routes return.
Who:   Used in route `responses=` declarations so the OpenAPI document shows
       the Canonical Error Record, and by tests to validate response bodies.
"""

from typing import Any, List, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    The Canonical Error Record.

    Every handler failure is reported in this shape, with `code` equal to
    the HTTP status of the response.
    """

    code: int = Field(description="HTTP status code")
    message: str = Field(description="Human-readable summary")
    details: Optional[Any] = Field(default=None, description="Structured failure details")
    requestId: str = Field(description="Correlation value, same as the X-Request-ID header")
    timestamp: str = Field(description="ISO-8601 UTC time the failure was classified")
    path: str = Field(description="Request path")


class ViolationDetail(BaseModel):
    property: str
    value: Optional[Any] = None
    constraints: dict = Field(default_factory=dict)
    children: Optional[List["ViolationDetail"]] = None


ViolationDetail.model_rebuild()


class ValidationDetails(BaseModel):
    errors: List[ViolationDetail]


class HealthResponse(BaseModel):
    status: str = Field(description="Always 'ok' while the process is serving")
    version: str
    uptime_seconds: float


class WelcomeResponse(BaseModel):
    message: str
    version: str
    docs: str


COMMON_ERROR_RESPONSES = {
    403: {"description": "Origin not allowed (text/plain 'Not allowed by CORS')"},
    429: {"description": "Rate limit exceeded (text/plain)"},
    500: {"description": "Unexpected failure", "model": ErrorResponse},
}
