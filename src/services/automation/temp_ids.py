"""Identifiers for provisional (not yet persisted) assistant messages."""

from __future__ import annotations

import logging
import random
import time
import uuid
from typing import Protocol


logger = logging.getLogger(__name__)

# Persisted messages use bare UUIDs, so this prefix can never collide.
PROVISIONAL_ID_PREFIX = "temp-"


class RandomSource(Protocol):
    def token(self) -> str: ...


class SecureRandomSource:
    """UUID4 tokens from the operating system's CSPRNG."""

    def token(self) -> str:
        return str(uuid.uuid4())


class TimestampRandomSource:
    """Nanosecond timestamp plus a pseudo-random suffix."""

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def token(self) -> str:
        return f"{time.time_ns():x}-{self._rng.getrandbits(48):012x}"


class TempIdAllocator:
    """Hand out ``temp-`` prefixed ids from the source chosen at construction."""

    def __init__(
        self,
        source: RandomSource,
        *,
        fallback: RandomSource | None = None,
        prefix: str = PROVISIONAL_ID_PREFIX,
    ) -> None:
        self._source = source
        self._fallback = fallback or TimestampRandomSource()
        self.prefix = prefix

    @classmethod
    def default(cls) -> TempIdAllocator:
        """Prefer the secure source; fall back if it cannot produce a token."""
        secure = SecureRandomSource()
        try:
            secure.token()
        except (NotImplementedError, OSError):
            logger.warning("Secure random source unavailable; using timestamp ids")
            return cls(TimestampRandomSource())
        return cls(secure)

    def allocate(self) -> str:
        try:
            token = self._source.token()
        except (NotImplementedError, OSError):
            logger.warning("Random source failed; using timestamp id")
            token = self._fallback.token()
        return f"{self.prefix}{token}"


def is_provisional_id(value: object) -> bool:
    return isinstance(value, str) and value.startswith(PROVISIONAL_ID_PREFIX)
