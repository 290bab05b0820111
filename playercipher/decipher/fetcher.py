"""
HTTP fetcher for player bundles. Wraps aiohttp with the desktop user agent,
a timeout, optional proxy support and relative-path resolution against the
player host.
"""
from __future__ import annotations
import aiohttp
from typing import Optional
from urllib.parse import urljoin

from . import config


class Fetcher:
    def __init__(self, *, timeout: int | None = None, proxy: str | None = None):
        self.timeout = aiohttp.ClientTimeout(
            total=config.FETCH_TIMEOUT if timeout is None else timeout, connect=4)
        self.proxy = proxy
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self.timeout,
                headers={"User-Agent": config.USER_AGENT},
            )
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "Fetcher":
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    async def get(
        self,
        url: str,
        *,
        base_url: str | None = None,
        headers: dict | None = None,
    ) -> str:
        """GET ``url`` (joined onto ``base_url`` when relative) and return the body text."""
        full = urljoin(base_url, url) if base_url else url
        session = await self._get_session()
        async with session.get(
            full,
            headers=headers or {},
            proxy=self.proxy,
        ) as resp:
            resp.raise_for_status()
            return await resp.text()
