"""HTTP asset downloads through yt-dlp's networking stack."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from yt_dlp import YoutubeDL
from yt_dlp.networking import Request
from yt_dlp.networking.exceptions import RequestError

from hls_tube.core.config import Settings
from hls_tube.core.errors import InvalidResponseError
from hls_tube.domain.streams import ByteRange

logger = logging.getLogger(__name__)


class AssetDownloader:
    """Fetches watch pages, player scripts and byte ranges of media resources.

    Notes
    -----
    - yt-dlp's ``urlopen`` is blocking, so every request runs in a worker thread via
      ``asyncio.to_thread`` and the event loop keeps serving other connections.
    - yt-dlp supplies browser-like default headers; callers only add what they need.
    - Transport and HTTP status failures surface as ``InvalidResponseError``.
    """

    def __init__(self, settings: Settings, ydl: Optional[YoutubeDL] = None) -> None:
        self._settings = settings
        ydl_opts: dict[str, Any] = {
            "quiet": True,
            "no_warnings": True,
        }
        self._ydl: YoutubeDL = ydl if ydl is not None else YoutubeDL(ydl_opts)

    def _blocking_fetch(self, url: str, headers: dict[str, str]) -> bytes:
        logger.debug("GET %s %s", url, headers)
        try:
            with self._ydl.urlopen(Request(url, headers=headers)) as response:
                return response.read()
        except RequestError as ex:
            raise InvalidResponseError(f"Request to {url} failed: {ex}") from ex

    async def fetch_bytes(self, url: str, headers: Optional[dict[str, str]] = None) -> bytes:
        return await asyncio.to_thread(self._blocking_fetch, url, dict(headers or {}))

    async def fetch_text(self, url: str) -> str:
        """Download ``url`` and decode its body as UTF-8.

        Raises
        ------
        InvalidResponseError
            If the request fails or the body is empty or not valid UTF-8.
        """

        data: bytes = await self.fetch_bytes(url, {"Accept-Language": self._settings.accept_language})
        if not data:
            raise InvalidResponseError(f"Empty response from {url}")
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as ex:
            raise InvalidResponseError(f"Response from {url} is not UTF-8") from ex

    async def fetch_range(self, url: str, byte_range: ByteRange) -> bytes:
        """Download the inclusive ``byte_range`` of ``url`` with a ``Range`` request."""

        return await self.fetch_bytes(url, {"Range": byte_range.header_value})
