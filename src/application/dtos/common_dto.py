"""Common DTOs for API responses and error handling."""
from __future__ import annotations

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response model."""
    detail: str = Field(..., description="Error message describing what went wrong")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Health status", example="healthy")


class RootResponse(BaseModel):
    """Root endpoint response model."""
    status: str = Field(..., description="API status", example="ok")
    service: str = Field(..., description="Service name", example="localcdn-backend")
    version: str = Field(..., description="API version", example="0.1.0")
