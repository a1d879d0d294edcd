"""
Health Check Schemas
Models for system health endpoints
"""
from typing import Optional
from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    database: str
    last_successful_sync: Optional[str] = None
