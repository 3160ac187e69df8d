"""
Cache Key Derivation
====================

Deterministic Redis keys for rendered images.

Layout:
    canvas:v1:<hash>:w<width>:h<height>:q<quality>:m<0|1>:f<format>:t<len>:<text>

Every numeric field carries its own tag, and the only free-form field
(overlay text) comes last with a length prefix, so two different
parameter sets can never serialize to the same bytes. `t-` marks the
absence of overlay text. `filename` is deliberately not part of the key.
"""

import hashlib

from canvas.models.params import TransformParams


KEY_PREFIX = "canvas:v1"


def derive_cache_key(content_hash: str, params: TransformParams) -> bytes:
    """
    Derive the cache key for a (original, parameters) combination.

    Args:
        content_hash: Hex digest of the original
        params: Normalized transform parameters

    Returns:
        Key bytes suitable for Redis
    """
    if params.overlay_text is None:
        text_part = "t-"
    else:
        text_part = f"t{len(params.overlay_text)}:{params.overlay_text}"

    key = (
        f"{KEY_PREFIX}:{content_hash}"
        f":w{params.width}"
        f":h{params.height}"
        f":q{params.quality}"
        f":m{int(params.watermark)}"
        f":f{params.format.value}"
        f":{text_part}"
    )
    return key.encode("utf-8")


def etag_for(cache_key: bytes) -> str:
    """Strong ETag header value for a cache key."""
    return '"' + hashlib.sha256(cache_key).hexdigest()[:32] + '"'
