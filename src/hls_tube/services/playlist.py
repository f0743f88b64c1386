"""HLS master and media playlist generation."""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from hls_tube.core.errors import FormatNotFoundError, SegmentDataUnavailableError
from hls_tube.domain.segments import SegmentIndex
from hls_tube.domain.streams import ByteRange, StreamDescriptor

logger = logging.getLogger(__name__)

PLAYLIST_SUFFIX: str = ".m3u8"
AUDIO_GROUP_ID: str = "aac"


class PlaylistKind(str, enum.Enum):
    MASTER = "master"
    MEDIA = "media"


@dataclass(frozen=True)
class PlaylistRoute:
    kind: PlaylistKind
    video_id: str
    itag: Optional[str] = None


def route(path: str) -> Optional[PlaylistRoute]:
    """Map a request path to the playlist it asks for.

    ``/{videoID}.m3u8`` is a master playlist, ``/{videoID}/{itag}.m3u8`` a media
    playlist. Anything else yields ``None``.
    """

    parts: list[str] = path.split("?", 1)[0].split("/")
    if not parts[-1].endswith(PLAYLIST_SUFFIX):
        return None
    name: str = parts[-1][: -len(PLAYLIST_SUFFIX)]

    if len(parts) == 2 and name:
        return PlaylistRoute(PlaylistKind.MASTER, video_id=name)
    if len(parts) == 3 and parts[1] and name:
        return PlaylistRoute(PlaylistKind.MEDIA, video_id=parts[1], itag=name)
    return None


class StreamSource(Protocol):
    async def resolve(self, video_id: str) -> list[StreamDescriptor]: ...


class RangeFetcher(Protocol):
    async def fetch_range(self, url: str, byte_range: ByteRange) -> bytes: ...


def media_playlist_uri(video_id: str, itag: Optional[str]) -> str:
    return f"{video_id}/{itag}{PLAYLIST_SUFFIX}"


def master_entry(video_id: str, descriptor: StreamDescriptor) -> str:
    """Render the master playlist entry of one descriptor.

    Audio formats become ``EXT-X-MEDIA`` renditions of the ``aac`` group; video formats
    become variants referencing that group.
    """

    uri: str = media_playlist_uri(video_id, descriptor.itag)
    if descriptor.is_audio:
        return (
            f'#EXT-X-MEDIA:TYPE=AUDIO,GROUP-ID="{AUDIO_GROUP_ID}",LANGUAGE="en",NAME="English",'
            f'DEFAULT=YES,AUTOSELECT=YES,URI="{uri}"'
        )
    return (
        f"#EXT-X-STREAM-INF:BANDWIDTH={descriptor.bitrate or 0},CODECS=\"{descriptor.codecs or ''}\","
        f'RESOLUTION={descriptor.width or 0}x{descriptor.height or 0},AUDIO="{AUDIO_GROUP_ID}"\n'
        f"{uri}"
    )


class PlaylistBuilder:
    """Builds playlists from resolved descriptors and their segment indexes."""

    def __init__(self, streams: StreamSource, fetcher: RangeFetcher) -> None:
        self._streams = streams
        self._fetcher = fetcher

    async def master_playlist(self, video_id: str) -> str:
        """Return the master playlist listing every fragmented MP4 format of ``video_id``.

        Notes
        -----
        - HLS byte-range delivery needs fMP4, so WebM formats are left out.
        """

        descriptors = await self._streams.resolve(video_id)
        entries: list[str] = [
            master_entry(video_id, descriptor) for descriptor in descriptors if descriptor.is_fragmented_mp4
        ]
        return "\n".join(["#EXTM3U", "#EXT-X-VERSION:4", "", *entries]) + "\n"

    async def media_playlist(self, video_id: str, itag: str) -> str:
        """Return the byte-range media playlist of format ``itag``.

        Raises
        ------
        FormatNotFoundError
            If zero or several descriptors carry ``itag``.
        SegmentDataUnavailableError
            If the index region cannot be fetched or decoded.
        """

        descriptors = await self._streams.resolve(video_id)
        matches: list[StreamDescriptor] = [d for d in descriptors if d.itag == itag]
        if len(matches) != 1:
            raise FormatNotFoundError(f"Expected one format {itag} for {video_id}, found {len(matches)}")

        descriptor: StreamDescriptor = matches[0]
        if descriptor.url is None or descriptor.index_range is None:
            raise SegmentDataUnavailableError(f"Format {itag} of {video_id} has no segment index")

        data: bytes = await self._fetcher.fetch_range(descriptor.url, descriptor.index_range)
        index: SegmentIndex = SegmentIndex.parse(data, descriptor.index_range.half_open)
        logger.debug(
            "Format %s of %s has %d segments", itag, video_id, len(index.segments),
            extra={"video_id": video_id, "itag": itag},
        )
        return index.to_m3u8(descriptor.url)

    async def render(self, playlist: PlaylistRoute) -> str:
        if playlist.kind is PlaylistKind.MASTER:
            return await self.master_playlist(playlist.video_id)
        return await self.media_playlist(playlist.video_id, playlist.itag or "")
