"""
Per-bundle memoization of the assembled scripts.

Entries live for the lifetime of the cache (no eviction, no TTL). Concurrent
first-time lookups of one key share a single in-flight extraction.
"""
from __future__ import annotations
import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

if TYPE_CHECKING:
    from .base import PlayerFunctions

log = logging.getLogger("playercipher.decipher.cache")


def functions_key(player_url: str) -> str:
    return f"functions-{player_url}"


class FunctionCache:
    def __init__(self):
        self._entries: dict[str, PlayerFunctions] = {}
        self._inflight: dict[str, asyncio.Future] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[PlayerFunctions]:
        return self._entries.get(key)

    def set(self, key: str, entry: PlayerFunctions) -> None:
        self._entries[key] = entry

    async def get_or_create(
        self,
        key: str,
        factory: Callable[[], Awaitable[PlayerFunctions]],
    ) -> PlayerFunctions:
        """Return the cached entry, running ``factory`` at most once per key.

        Callers arriving while the factory is running await the same future.
        A failing factory is not cached; its exception reaches every waiter.
        """
        cached = self._entries.get(key)
        if cached is not None:
            return cached

        pending = self._inflight.get(key)
        if pending is not None:
            return await pending

        future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            entry = await factory()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unawaited failure does not log noise
            future.exception()
            raise
        else:
            self._entries[key] = entry
            future.set_result(entry)
            log.debug(f"Cached player functions for {key}")
            return entry
        finally:
            del self._inflight[key]
