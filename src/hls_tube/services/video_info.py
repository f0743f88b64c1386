"""Adaptive format metadata from YouTube's ``get_video_info`` endpoint."""
from __future__ import annotations

import logging
from urllib.parse import unquote

from hls_tube.core.config import Settings
from hls_tube.core.errors import InvalidRequestError, InvalidResponseError
from hls_tube.infra.downloader import AssetDownloader

logger = logging.getLogger(__name__)

# errorcode reported for unknown or unavailable videos
_UNKNOWN_VIDEO_ERROR_CODE: str = "2"


def parse_query_string(text: str) -> dict[str, str]:
    """Decode ``key=value&key=value`` pairs.

    Notes
    -----
    - Values are percent-decoded only; ``+`` is kept as-is because format types are
      spelled ``video/mp4;+codecs="..."`` on the wire.
    - Pairs that do not split into exactly one key and one value are skipped.
    """

    result: dict[str, str] = {}
    for pair in text.split("&"):
        parts = pair.split("=")
        if len(parts) != 2:
            if pair:
                logger.debug("Skipping malformed parameter %r", pair)
            continue
        result[parts[0]] = unquote(parts[1])
    return result


class VideoInfoProvider:
    """Fetches the adaptive format records of a video.

    Notes
    -----
    - One record is returned per adaptive format, as a loosely-typed string dict with keys
      such as ``itag``, ``type``, ``index``, ``init``, ``url`` and ``s``/``signature``.
    """

    def __init__(self, downloader: AssetDownloader, settings: Settings) -> None:
        self._downloader = downloader
        self._settings = settings

    async def fetch_formats(self, video_id: str) -> list[dict[str, str]]:
        """Return the adaptive format records for ``video_id``.

        Raises
        ------
        InvalidRequestError
            If YouTube reports the video as unknown.
        InvalidResponseError
            If the response cannot be fetched or carries no adaptive formats.
        """

        url: str = self._settings.video_info_url_template.format(video_id=video_id)
        body: str = await self._downloader.fetch_text(url)
        info: dict[str, str] = parse_query_string(body)

        if info.get("errorcode") == _UNKNOWN_VIDEO_ERROR_CODE:
            raise InvalidRequestError(f"Unknown video {video_id}")

        adaptive_formats = info.get("adaptive_fmts")
        if not adaptive_formats:
            raise InvalidResponseError(f"No adaptive formats in video info for {video_id}")

        return [parse_query_string(stream) for stream in adaptive_formats.split(",")]
