"""Unit tests for the video info provider."""
from __future__ import annotations

import unittest
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import quote

from hls_tube.core.config import Settings
from hls_tube.core.errors import InvalidRequestError, InvalidResponseError
from hls_tube.services.video_info import VideoInfoProvider, parse_query_string


def _encode(params: dict[str, str]) -> str:
    return "&".join(f"{key}={quote(value, safe='+')}" for key, value in params.items())


class TestParseQueryString(unittest.TestCase):
    def test_percent_decodes_and_keeps_plus(self) -> None:
        parsed = parse_query_string("type=video%2Fmp4%3B+codecs%3D%22avc1%22&itag=137")
        self.assertEqual(parsed, {"type": 'video/mp4;+codecs="avc1"', "itag": "137"})

    def test_skips_malformed_pairs(self) -> None:
        parsed = parse_query_string("a=1&broken&b=2=3&c=")
        self.assertEqual(parsed, {"a": "1", "c": ""})


class TestVideoInfoProvider(unittest.IsolatedAsyncioTestCase):
    """Tests for VideoInfoProvider.fetch_formats with a stubbed downloader."""

    def setUp(self) -> None:
        self.settings = Settings(video_info_url_template="https://info/{video_id}")
        self.downloader = MagicMock()
        self.downloader.fetch_text = AsyncMock()
        self.provider = VideoInfoProvider(self.downloader, self.settings)

    async def test_returns_one_record_per_adaptive_format(self) -> None:
        streams = [
            _encode({"itag": "137", "type": 'video/mp4;+codecs="avc1.640028"', "url": "https://v/1?a=b"}),
            _encode({"itag": "140", "type": 'audio/mp4;+codecs="mp4a.40.2"', "s": "ABC"}),
        ]
        self.downloader.fetch_text.return_value = _encode({"status": "ok", "adaptive_fmts": ",".join(streams)})

        records = await self.provider.fetch_formats("vid123")

        self.downloader.fetch_text.assert_awaited_once_with("https://info/vid123")
        self.assertEqual([r["itag"] for r in records], ["137", "140"])
        self.assertEqual(records[0]["url"], "https://v/1?a=b")
        self.assertEqual(records[0]["type"], 'video/mp4;+codecs="avc1.640028"')
        self.assertEqual(records[1]["s"], "ABC")

    async def test_unknown_video(self) -> None:
        self.downloader.fetch_text.return_value = "status=fail&errorcode=2&reason=Invalid+parameters."
        with self.assertRaises(InvalidRequestError):
            await self.provider.fetch_formats("nope")

    async def test_missing_adaptive_formats(self) -> None:
        self.downloader.fetch_text.return_value = "status=ok&title=x"
        with self.assertRaises(InvalidResponseError):
            await self.provider.fetch_formats("vid123")
