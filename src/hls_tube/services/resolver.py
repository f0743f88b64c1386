"""Resolution and caching of a video's adaptive stream descriptors."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol

from hls_tube.domain.cache import SingleFlight
from hls_tube.domain.streams import StreamDescriptor, descriptor_from_record

logger = logging.getLogger(__name__)


class FormatProvider(Protocol):
    async def fetch_formats(self, video_id: str) -> list[dict[str, str]]: ...


class Decryptor(Protocol):
    async def decrypt(self, signature: str, video_id: str) -> str: ...


def append_query_parameter(url: str, name: str, value: str) -> str:
    separator: str = "&" if "?" in url else "?"
    return f"{url}{separator}{name}={value}"


class StreamResolver:
    """Per-video cache of resolved stream descriptors.

    Notes
    -----
    - The cache maps a video id to its descriptors keyed by itag. A miss populates the
      whole video once, even when several connections ask for it concurrently.
    - Delivery URLs embed signed, expiring parameters, so cached videos expire after
      ``ttl`` seconds (``None`` keeps them forever).
    - Upstream and decryption failures are not cached; the next request retries.
    """

    def __init__(self, provider: FormatProvider, decryptor: Decryptor, ttl: Optional[float] = None) -> None:
        self._provider = provider
        self._decryptor = decryptor
        self._cache: SingleFlight[str, dict[str, StreamDescriptor]] = SingleFlight(ttl=ttl)

    async def resolve(self, video_id: str) -> list[StreamDescriptor]:
        """Return every playable descriptor of ``video_id``.

        Raises
        ------
        UpstreamError
            If the video info cannot be fetched.
        SignatureError
            If a ciphered signature cannot be decrypted.
        """

        streams = await self._cache.get(video_id, lambda: self._populate(video_id))
        return list(streams.values())

    async def _populate(self, video_id: str) -> dict[str, StreamDescriptor]:
        logger.info("Resolving streams for %s", video_id, extra={"video_id": video_id})
        records: list[dict[str, str]] = await self._provider.fetch_formats(video_id)
        descriptors = await asyncio.gather(*(self._resolve_record(record, video_id) for record in records))

        streams: dict[str, StreamDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.url is None:
                logger.debug("Dropping format %s of %s without a delivery URL", descriptor.itag, video_id)
                continue
            if descriptor.itag is None:
                logger.debug("Not caching a format of %s without an itag", video_id)
                continue
            streams[descriptor.itag] = descriptor
        return streams

    async def _resolve_record(self, record: dict[str, str], video_id: str) -> StreamDescriptor:
        """Convert ``record`` and sign its delivery URL."""

        descriptor: StreamDescriptor = descriptor_from_record(record)
        if descriptor.url is None:
            return descriptor

        signature: Optional[str] = record.get("signature")
        encrypted: Optional[str] = record.get("s")
        if signature is not None:
            url = append_query_parameter(descriptor.url, "signature", signature)
        elif encrypted is not None:
            decrypted: str = await self._decryptor.decrypt(encrypted, video_id)
            url = append_query_parameter(descriptor.url, "sig", decrypted)
        else:
            return descriptor
        return descriptor.model_copy(update={"url": url})

    async def invalidate(self, video_id: str) -> None:
        await self._cache.invalidate(video_id)
