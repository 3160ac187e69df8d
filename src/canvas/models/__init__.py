"""
Data Models
===========

Pydantic models for the Canvas image server.

Models:
    Parameters:
        - ImageFormat: Output encodings (jpeg, webp)
        - TransformParams: Normalized fetch parameters

    Responses:
        - UploadResponse: Result of an upload
        - ErrorResponse: Error body ({"status_code", "message"})
        - HealthResponse: Liveness payload
"""

from canvas.models.params import ImageFormat, TransformParams
from canvas.models.responses import ErrorResponse, HealthResponse, UploadResponse

__all__ = [
    # Parameters
    "ImageFormat",
    "TransformParams",
    # Responses
    "UploadResponse",
    "ErrorResponse",
    "HealthResponse",
]
