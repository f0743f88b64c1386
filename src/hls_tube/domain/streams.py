"""Domain models for adaptive stream descriptors.

A descriptor is the typed view of one adaptive format record returned by the
video info endpoint. Records are loosely typed string dictionaries; anything
missing or malformed becomes ``None`` rather than failing the whole video.
"""
from __future__ import annotations

import re
from typing import Optional

from pydantic import BaseModel, Field

_CODECS_SEPARATOR = re.compile(r";\+?\s*codecs=")


class ByteRange(BaseModel):
    """Inclusive byte range as recorded upstream (``"741-1200"``)."""

    start: int = Field(description="First byte offset")
    end: int = Field(description="Last byte offset, inclusive")

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @property
    def half_open(self) -> range:
        """The same bytes as a half-open ``range``."""

        return range(self.start, self.end + 1)

    @property
    def header_value(self) -> str:
        return f"bytes={self.start}-{self.end}"


class StreamDescriptor(BaseModel):
    """Resolved view of a single adaptive format.

    Notes
    -----
    - ``url`` already carries the access signature once the resolver is done with it.
    - ``audio_channels`` is only present on audio-only formats and is what the playlist
      builder uses to tell audio renditions from video variants.
    """

    itag: Optional[str] = Field(default=None, description="YouTube format identifier")
    url: Optional[str] = Field(default=None, description="Delivery URL")
    mime_type: Optional[str] = Field(default=None, description="Container MIME type, e.g. video/mp4")
    codecs: Optional[str] = Field(default=None, description="RFC 6381 codec string")
    index_range: Optional[ByteRange] = Field(default=None, description="Byte range of the sidx box")
    init_range: Optional[ByteRange] = Field(default=None, description="Byte range of the init segment")
    bitrate: Optional[int] = Field(default=None, description="Peak bitrate in bits per second")
    fps: Optional[int] = Field(default=None, description="Frames per second")
    width: Optional[int] = Field(default=None, description="Frame width in pixels")
    height: Optional[int] = Field(default=None, description="Frame height in pixels")
    quality_label: Optional[str] = Field(default=None, description="Human-readable quality, e.g. 1080p")
    audio_sample_rate: Optional[int] = Field(default=None, description="Audio sample rate in Hz")
    audio_channels: Optional[int] = Field(default=None, description="Number of audio channels")

    @property
    def is_fragmented_mp4(self) -> bool:
        return self.mime_type is not None and "mp4" in self.mime_type

    @property
    def is_audio(self) -> bool:
        return self.audio_channels is not None


def _to_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _to_byte_range(value: Optional[str]) -> Optional[ByteRange]:
    if value is None:
        return None
    parts = value.split("-")
    if len(parts) != 2:
        return None
    start, end = _to_int(parts[0]), _to_int(parts[1])
    if start is None or end is None or end < start:
        return None
    return ByteRange(start=start, end=end)


def _split_type(value: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """Split ``video/mp4;+codecs="avc1.4d401f"`` into MIME type and codec string."""

    if value is None:
        return None, None
    parts = _CODECS_SEPARATOR.split(value, maxsplit=1)
    mime_type = parts[0].strip() or None
    codecs = parts[1].strip().strip('"') if len(parts) == 2 else None
    return mime_type, codecs or None


def _split_size(value: Optional[str]) -> tuple[Optional[int], Optional[int]]:
    if value is None:
        return None, None
    parts = value.split("x")
    if len(parts) != 2:
        return None, None
    return _to_int(parts[0]), _to_int(parts[1])


def descriptor_from_record(record: dict[str, str]) -> StreamDescriptor:
    """Convert a raw adaptive format record into a descriptor.

    The URL is copied verbatim; applying the access signature is up to the resolver.
    """

    mime_type, codecs = _split_type(record.get("type"))
    width, height = _split_size(record.get("size"))

    return StreamDescriptor(
        itag=record.get("itag") or None,
        url=record.get("url") or None,
        mime_type=mime_type,
        codecs=codecs,
        index_range=_to_byte_range(record.get("index")),
        init_range=_to_byte_range(record.get("init")),
        bitrate=_to_int(record.get("bitrate")),
        fps=_to_int(record.get("fps")),
        width=width,
        height=height,
        quality_label=record.get("quality_label"),
        audio_sample_rate=_to_int(record.get("audio_sample_rate")),
        audio_channels=_to_int(record.get("audio_channels")),
    )
