"""
Storage Module
==============

Content-addressed persistence for uploaded originals.
"""

from canvas.storage.content_store import ContentStore

__all__ = [
    "ContentStore",
]
