"""Entrypoint for the HLS Tube gateway."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from hls_tube.api.server import HLSServer
from hls_tube.core.config import Settings, get_settings
from hls_tube.core.logging_cfg import setup_logging
from hls_tube.infra.downloader import AssetDownloader
from hls_tube.services.cipher import SignatureDecryptor
from hls_tube.services.playlist import PlaylistBuilder
from hls_tube.services.resolver import StreamResolver
from hls_tube.services.video_info import VideoInfoProvider

logger = logging.getLogger(__name__)


def create_server(settings: Optional[Settings] = None) -> HLSServer:
    """Wire the playlist pipeline and return an unstarted server.

    Notes
    -----
    - A single ``AssetDownloader`` is shared by the metadata provider, the cipher engine
      and segment index fetches.
    - Both caches live for the lifetime of the returned server; nothing is persisted.

    Returns
    -------
    HLSServer
        The configured server; call ``serve_forever`` to accept connections.
    """

    settings = settings or get_settings()
    downloader = AssetDownloader(settings)
    provider = VideoInfoProvider(downloader, settings)
    decryptor = SignatureDecryptor(downloader, settings)
    ttl: Optional[float] = settings.stream_cache_ttl or None
    resolver = StreamResolver(provider, decryptor, ttl=ttl)
    builder = PlaylistBuilder(resolver, downloader)
    return HLSServer(builder, settings)


def main() -> None:
    settings: Settings = get_settings()
    setup_logging(settings.debug)
    logger.info("Starting %s on %s:%d", settings.app_name, settings.host, settings.port)
    server = create_server(settings)
    try:
        asyncio.run(server.serve_forever())
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
