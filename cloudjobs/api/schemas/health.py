"""Health check schema."""

from typing import Literal

from pydantic import BaseModel, Field


class HealthServices(BaseModel):
    database: bool = Field(..., description="Job store reachable")
    queue: bool = Field(..., description="Queue backing store reachable")


class HealthResponse(BaseModel):
    status: Literal["ok", "error"]
    services: HealthServices
