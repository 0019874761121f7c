"""
DocDigest Backend: Shared Response Schemas
============================================

What:  Error and health payloads shared by every router.
"""

from typing import Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    Standardized error body for every non-2xx response except entitlement denials.

    Example:
        {
            "error": "upstream_timeout",
            "message": "The summarization service took too long to respond. Please try again shortly.",
            "details": {"reason": "timeout", "retryable": true},
            "request_id": "550e8400-e29b-41d4-a716-446655440000"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    summarizer: str = Field(description="Summarizer status: available, unavailable, circuit_open")
    uptime_seconds: float = Field(description="Seconds since service started")
