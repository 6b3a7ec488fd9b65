"""Short-lived cache of remote image digests."""

import time
from typing import Callable, Dict, Optional, Tuple

from infinityinstaller.constants import DIGEST_CACHE_TTL_SECONDS


class ImageDigestCache:
    """Maps an image reference to its remote digest until the entry expires."""

    def __init__(
        self,
        ttl_seconds: float = DIGEST_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}

    def get(self, image: str) -> Optional[str]:
        entry = self._entries.get(image)
        if entry is None:
            return None

        digest, expires_at = entry
        if self.clock() >= expires_at:
            del self._entries[image]
            return None
        return digest

    def put(self, image: str, digest: str):
        self._entries[image] = (digest, self.clock() + self.ttl_seconds)
