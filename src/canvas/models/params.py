"""
Transform Parameters
====================

Normalized parameter set for a fetch request.

The request layer parses query strings into a TransformParams instance
via `TransformParams.from_query`. Everything downstream (cache keys,
pipeline jobs, the transform engine) assumes the parameters are already
validated and normalized:

    - `jpg` is resolved to `jpeg`, format names are case-insensitive
    - `watermark` is True when the query key is present, whatever its value
    - empty `overlay` / `filename` values are treated as absent

Query Contract:
    GET /images/{hash}?width=100&height=100&quality=50&format=jpeg
                      &watermark&overlay=Sale&filename=shoe.jpg
"""

from enum import Enum
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from canvas.errors import InvalidInput


MAX_DIMENSION = 65535
MAX_OVERLAY_LENGTH = 256


class ImageFormat(str, Enum):
    """Supported output encodings."""

    JPEG = "jpeg"
    WEBP = "webp"

    @property
    def content_type(self) -> str:
        return f"image/{self.value}"

    @property
    def extension(self) -> str:
        return "jpg" if self is ImageFormat.JPEG else self.value


_FORMAT_ALIASES = {
    "jpg": ImageFormat.JPEG,
    "jpeg": ImageFormat.JPEG,
    "webp": ImageFormat.WEBP,
}


class TransformParams(BaseModel):
    """
    Validated transform parameters.

    Attributes:
        width: Target box width in pixels
        height: Target box height in pixels
        quality: Encoder quality 1-100
        watermark: Composite the configured watermark
        format: Output encoding
        overlay_text: Text drawn in the top-left corner
        filename: Suggested download name (not part of the render)
    """

    model_config = ConfigDict(frozen=True)

    width: int = Field(default=1024, ge=1, le=MAX_DIMENSION)
    height: int = Field(default=1024, ge=1, le=MAX_DIMENSION)
    quality: int = Field(default=80, ge=1, le=100)
    watermark: bool = False
    format: ImageFormat = ImageFormat.WEBP
    overlay_text: Optional[str] = Field(default=None, max_length=MAX_OVERLAY_LENGTH)
    filename: Optional[str] = Field(default=None, max_length=255)

    @field_validator("format", mode="before")
    @classmethod
    def _resolve_format_alias(cls, value):
        if isinstance(value, str):
            resolved = _FORMAT_ALIASES.get(value.strip().lower())
            if resolved is None:
                raise ValueError(f"unsupported format '{value}' (expected jpeg, jpg or webp)")
            return resolved
        return value

    @field_validator("overlay_text", "filename", mode="before")
    @classmethod
    def _empty_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @classmethod
    def from_query(cls, query: Mapping[str, str]) -> "TransformParams":
        """
        Parse request query parameters.

        Args:
            query: Mapping of query keys to raw string values

        Returns:
            Normalized TransformParams

        Raises:
            InvalidInput: If any value is malformed or out of range
        """
        data = {}
        for key in ("width", "height", "quality", "format", "filename"):
            if key in query:
                data[key] = query[key]
        if "overlay" in query:
            data["overlay_text"] = query["overlay"]
        data["watermark"] = "watermark" in query

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'params'}: {err['msg']}"
                for err in e.errors()
            )
            raise InvalidInput(f"Invalid parameters: {problems}")

    def content_disposition(self) -> Optional[str]:
        """Content-Disposition header value when a filename was requested."""
        if self.filename is None:
            return None
        safe = self.filename.replace('"', "").replace("\\", "").replace("\r", "").replace("\n", "")
        # Header values must stay within latin-1
        safe = safe.encode("ascii", "replace").decode("ascii")
        return f'inline; filename="{safe}"'
