"""
Infrastructure adapter for part checksums.
"""

import asyncio
import hashlib
import logging

from ..application.domain import Hasher


class Md5Hasher(Hasher):
    """An adapter that implements the Hasher port using MD5."""

    def __init__(self, offload_threshold: int = 1024 * 1024):
        """
        Initializes the hasher.

        Args:
            offload_threshold: Parts at least this large are hashed in a
                worker thread so the event loop keeps serving other parts.
        """
        self.logger = logging.getLogger(self.__class__.__name__)
        self.offload_threshold = offload_threshold

    async def digest(self, content: bytes) -> str:
        if len(content) < self.offload_threshold:
            return hashlib.md5(content).hexdigest()

        def _hash():
            return hashlib.md5(content).hexdigest()

        return await asyncio.to_thread(_hash)
