"""Segment index (``sidx`` box) decoding and HLS sub-playlist rendering.

The index region of a fragmented MP4 resource lists the byte size and duration
of every fragment. Decoding it lets us address fragments with
``EXT-X-BYTERANGE`` directives against the original delivery URL instead of
re-muxing anything.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field

from hls_tube.core.errors import NoSegmentDataError, SegmentIndexDecodeError

DEFAULT_TARGET_DURATION: int = 5


@dataclass(frozen=True)
class Segment:
    """One reference entry of the index box."""

    referenced_size: int
    subsegment_duration: int


class _Reader:
    """Big-endian cursor over a bytes object."""

    def __init__(self, data: bytes) -> None:
        self.data = data
        self.offset = 0

    def skip(self, count: int) -> None:
        self._take(count)

    def read(self, count: int) -> int:
        return int.from_bytes(self._take(count), "big")

    def _take(self, count: int) -> bytes:
        end = self.offset + count
        if end > len(self.data):
            raise SegmentIndexDecodeError(
                f"Segment index truncated: needed {end} bytes, have {len(self.data)}"
            )
        chunk = self.data[self.offset:end]
        self.offset = end
        return chunk


@dataclass
class SegmentIndex:
    """Decoded segment index box.

    Notes
    -----
    - ``index_range`` is the absolute, half-open byte range the box was read from
      inside the media resource. Fragments start right after it.
    - Sizes and durations are unsigned on the wire, so they are never negative.
    """

    version: int
    flags: int
    reference_id: int
    timescale: int
    earliest_presentation_time: int
    first_offset: int
    index_range: range
    segments: list[Segment] = field(default_factory=list)

    @classmethod
    def parse(cls, data: bytes, index_range: range) -> "SegmentIndex":
        """Decode an index box read from ``index_range``.

        Parameters
        ----------
        data: bytes
            The raw bytes of the index region.
        index_range: range
            The declared, half-open byte range of the region in the resource.

        Raises
        ------
        NoSegmentDataError
            If ``data`` is not exactly as long as ``index_range``.
        SegmentIndexDecodeError
            If the box is truncated or does not consume the whole region.
        """

        if len(data) != len(index_range):
            raise NoSegmentDataError(
                f"Expected {len(index_range)} bytes of segment index, got {len(data)}"
            )

        reader = _Reader(data)
        reader.skip(8)  # box size and type

        version = reader.read(1)
        flags = reader.read(3)
        reference_id = reader.read(4)
        timescale = reader.read(4)
        if timescale == 0:
            raise SegmentIndexDecodeError("Segment index declares a zero timescale")
        earliest_presentation_time = reader.read(4 if version == 0 else 8)
        first_offset = reader.read(4)
        reader.skip(2)  # reserved

        segments: list[Segment] = []
        for _ in range(reader.read(2)):
            referenced_size = reader.read(4)
            subsegment_duration = reader.read(4)
            reader.skip(4)  # SAP fields
            segments.append(Segment(referenced_size, subsegment_duration))

        if reader.offset != len(data):
            raise SegmentIndexDecodeError(
                f"Segment index consumed {reader.offset} of {len(data)} bytes"
            )

        return cls(
            version=version,
            flags=flags,
            reference_id=reference_id,
            timescale=timescale,
            earliest_presentation_time=earliest_presentation_time,
            first_offset=first_offset,
            index_range=index_range,
            segments=segments,
        )

    def duration_of(self, segment: Segment) -> float:
        return segment.subsegment_duration / self.timescale

    @property
    def target_duration(self) -> int:
        if not self.segments:
            return DEFAULT_TARGET_DURATION
        return math.ceil(max(self.duration_of(s) for s in self.segments))

    def to_m3u8(self, path: str) -> str:
        """Render the index as a VOD media playlist addressing ``path`` by byte range.

        Notes
        -----
        - The ``EXT-X-MAP`` byte range covers the initialization segment and the index
          region, i.e. everything from offset 0 up to the end of ``index_range``.
        - Fragment offsets are contiguous, starting at the end of ``index_range``.
        """

        offset: int = self.index_range.stop
        lines: list[str] = [
            "#EXTM3U",
            f"#EXT-X-TARGETDURATION:{self.target_duration}",
            "#EXT-X-VERSION:7",
            "#EXT-X-MEDIA-SEQUENCE:0",
            "#EXT-X-PLAYLIST-TYPE:VOD",
            "#EXT-X-INDEPENDENT-SEGMENTS",
            f'#EXT-X-MAP:URI="{path}",BYTERANGE="{offset}@0"',
        ]
        for segment in self.segments:
            lines.append(f"#EXTINF:{self.duration_of(segment):.5f},")
            lines.append(f"#EXT-X-BYTERANGE:{segment.referenced_size}@{offset}")
            lines.append(path)
            offset += segment.referenced_size
        lines.append("#EXT-X-ENDLIST")
        return "\n".join(lines) + "\n"
