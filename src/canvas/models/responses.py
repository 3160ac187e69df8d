"""
Response Schemas
================

JSON bodies returned by the HTTP surface.
"""

from pydantic import BaseModel, Field


class UploadResponse(BaseModel):
    """Returned by POST /images."""

    hash: str = Field(..., description="Lowercase hex SHA-256 of the uploaded bytes")

    class Config:
        """Pydantic model configuration."""

        json_schema_extra = {
            "example": {
                "hash": "9f86d081884c7d659a2feaa0c55ad015a3bf4f1b2b0b822cd15d6c15b0f00a08",
            }
        }


class ErrorResponse(BaseModel):
    """Body of every non-2xx response."""

    status_code: int
    message: str


class HealthResponse(BaseModel):
    """Liveness payload."""

    ok: bool = True
