"""In-memory token introspection cache.

Entries live for at most ``ttl_seconds`` and never past the token's own
``exp``. Expired entries are dropped lazily on read or by ``cleanup()``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from mcpauth.models.tokens import TokenIntrospectionResponse

logger = logging.getLogger(__name__)

TokenValidator = Callable[
    [str], Awaitable[TokenIntrospectionResponse | Mapping[str, Any]]
]


@dataclass
class _CacheEntry:
    info: TokenIntrospectionResponse
    expires_at: float  # Unix timestamp


class TokenCache:
    """Maps access tokens to their introspection result.

    Only active tokens are stored. The cache is not shared between
    processes; construct one per server and inject it where needed.
    """

    def __init__(self, ttl_seconds: float = 60):
        self.ttl_seconds = ttl_seconds
        self._entries: dict[str, _CacheEntry] = {}

    def get(self, token: str) -> TokenIntrospectionResponse | None:
        entry = self._entries.get(token)
        if entry is None:
            return None

        if time.time() > entry.expires_at:
            del self._entries[token]
            return None

        return entry.info

    def set(self, token: str, info: TokenIntrospectionResponse) -> None:
        # Inactive results are never cached
        if not info.active:
            return

        now = time.time()
        expires_at = now + self.ttl_seconds
        if info.exp is not None:
            expires_at = min(float(info.exp), expires_at)

        self._entries[token] = _CacheEntry(info=info, expires_at=expires_at)

    def cleanup(self) -> int:
        """Remove expired entries and return how many were dropped."""
        now = time.time()
        expired = [t for t, entry in self._entries.items() if now > entry.expires_at]
        for token in expired:
            del self._entries[token]
        if expired:
            logger.debug(f"Evicted {len(expired)} expired token cache entries")
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class CachedValidator:
    """Wraps a token validator with a ``TokenCache``.

    Concurrent misses for the same token share a single call to the wrapped
    validator.
    """

    def __init__(self, validator: TokenValidator, cache: TokenCache):
        self.validator = validator
        self.cache = cache
        self._in_flight: dict[str, asyncio.Future[TokenIntrospectionResponse]] = {}

    async def __call__(self, token: str) -> TokenIntrospectionResponse:
        cached = self.cache.get(token)
        if cached is not None:
            return cached

        pending = self._in_flight.get(token)
        if pending is None:
            pending = asyncio.ensure_future(self._validate(token))
            self._in_flight[token] = pending
            pending.add_done_callback(lambda _: self._in_flight.pop(token, None))
        else:
            logger.debug("Joining in-flight token validation")

        # Shielded so one cancelled caller does not cancel the shared call
        return await asyncio.shield(pending)

    async def _validate(self, token: str) -> TokenIntrospectionResponse:
        info = await self.validator(token)
        if not isinstance(info, TokenIntrospectionResponse):
            # Validators may return the raw introspection mapping
            info = TokenIntrospectionResponse.model_validate(info)
        self.cache.set(token, info)
        return info


def create_cached_validator(
    validator: TokenValidator, cache: TokenCache
) -> CachedValidator:
    return CachedValidator(validator, cache)
