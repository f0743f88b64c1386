"""Unit tests for signature cipher extraction, execution and caching."""
from __future__ import annotations

import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from hls_tube.core.config import Settings
from hls_tube.core.errors import (
    DecryptionFailedError,
    DecryptionFunctionNotFoundError,
    DecryptionFunctionNotParsableError,
    HelperObjectNotFoundError,
    HelperObjectNotParsableError,
    InvalidResponseError,
    PlayerNotFoundError,
)
from hls_tube.services.cipher import (
    DECRYPTION_FUNCTION_NAME,
    SignatureDecryptor,
    extract_decryption_program,
    extract_player_path,
    find_function,
    find_function_name,
    find_helper_name,
    find_helper_object,
    run_decryption_program,
)

HELPER = (
    "var Xy={cd:function(a){a.reverse()},"
    "ab:function(a,b){a.splice(0,b)},"
    "ef:function(a,b){var c=a[0];a[0]=a[b%a.length];a[b%a.length]=c}}"
)
FUNCTION_BODY = 'a=a.split("");Xy.cd(a,1);Xy.ab(a,2);Xy.ef(a,3);return a.join("")'
CALL_SITE = "c&&d.set(b,encodeURIComponent(Zq(decodeURIComponent(c))));"

PLAYER = (
    "(function(g){var window=this;"
    + HELPER
    + ";var q=1;Zq=function(a){"
    + FUNCTION_BODY
    + "};g.xy=function(b,c,d){"
    + CALL_SITE
    + "return d};})(_yt_player);"
)
WATCH_PAGE = r'<script>ytplayer.config={"args":{},"assets":{"css":"/s/c.css","js":"\/s\/player\/abc\/base.js"}};</script>'

# "abcdefghij" reversed, first two dropped, then positions 0 and 3 swapped
DECRYPTED = "egfhdcba"


class TestExtractionSteps(unittest.TestCase):
    """Tests for each pattern-matching step."""

    def test_player_path(self) -> None:
        self.assertEqual(extract_player_path(WATCH_PAGE), "/s/player/abc/base.js")

    def test_player_path_missing(self) -> None:
        with self.assertRaises(PlayerNotFoundError):
            extract_player_path("<html>no config</html>")

    def test_function_name(self) -> None:
        self.assertEqual(find_function_name(PLAYER), "Zq")

    def test_function_name_with_dollar(self) -> None:
        code = 's&&a.set(b,encodeURIComponent($x9(c)))'
        self.assertEqual(find_function_name(code), "$x9")

    def test_function_forms(self) -> None:
        """All three declaration forms are recognised."""
        for code in (
            "function Zq(a){%s}" % FUNCTION_BODY,
            ";Zq=function(a){%s}" % FUNCTION_BODY,
            "var Zq = function(a){%s}" % FUNCTION_BODY,
        ):
            with self.subTest(code=code):
                function = find_function("Zq", code)
                self.assertEqual(function.args, "a")
                self.assertEqual(function.body, FUNCTION_BODY)

    def test_function_with_dollar_name_is_escaped(self) -> None:
        function = find_function("$x", ";$x=function(a,b){return a}")
        self.assertEqual(function.args, "a,b")

    def test_helper_name(self) -> None:
        self.assertEqual(find_helper_name(FUNCTION_BODY), "Xy")

    def test_helper_object(self) -> None:
        self.assertEqual(find_helper_object("Xy", PLAYER), HELPER)

    def test_helper_object_unbalanced(self) -> None:
        with self.assertRaises(HelperObjectNotParsableError):
            find_helper_object("Xy", "var Xy={cd:function(a){a.reverse()}")

    def test_program_assembly(self) -> None:
        program = extract_decryption_program(PLAYER)
        self.assertEqual(
            program, f"{HELPER};function {DECRYPTION_FUNCTION_NAME}(a){{{FUNCTION_BODY}}}"
        )

    def test_failures_name_the_step(self) -> None:
        """Each missing piece raises the error of its own step."""
        cases = [
            (PLAYER.replace("encodeURIComponent", "escape"), DecryptionFunctionNotFoundError),
            (PLAYER.replace("Zq=function", "Zq=fn"), DecryptionFunctionNotParsableError),
            (PLAYER.replace("Xy.", "Xy["), HelperObjectNotFoundError),
            (PLAYER.replace("var Xy=", "Xy="), HelperObjectNotParsableError),
        ]
        for player, error in cases:
            with self.subTest(error=error.__name__):
                with self.assertRaises(error):
                    extract_decryption_program(player)


class TestRunDecryptionProgram(unittest.TestCase):
    """Tests for executing the assembled program in the JS interpreter."""

    def test_decrypts(self) -> None:
        program = extract_decryption_program(PLAYER)
        self.assertEqual(run_decryption_program(program, "abcdefghij"), DECRYPTED)

    def test_non_string_result(self) -> None:
        program = f"{HELPER};function {DECRYPTION_FUNCTION_NAME}(a){{a=a.split(\"\");Xy.cd(a);return a.length}}"
        with self.assertRaises(DecryptionFailedError):
            run_decryption_program(program, "abc")

    def test_interpreter_error(self) -> None:
        with self.assertRaises(DecryptionFailedError):
            run_decryption_program("var nothing={};", "abc")


class TestSignatureDecryptor(unittest.IsolatedAsyncioTestCase):
    """Tests for per-video program caching in SignatureDecryptor."""

    def setUp(self) -> None:
        self.settings = Settings(watch_url_template="https://watch/{video_id}", player_base_url="https://yt")
        self.pages: dict[str, str] = {
            "https://watch/vid": WATCH_PAGE,
            "https://yt/s/player/abc/base.js": PLAYER,
        }
        self.downloader = MagicMock()
        self.downloader.fetch_text = AsyncMock(side_effect=self._fetch_text)
        self.decryptor = SignatureDecryptor(self.downloader, self.settings)

    async def _fetch_text(self, url: str) -> str:
        await asyncio.sleep(0)
        return self.pages[url]

    def _fetched(self, url: str) -> int:
        return sum(1 for call in self.downloader.fetch_text.await_args_list if call.args[0] == url)

    async def test_concurrent_requests_extract_once(self) -> None:
        """K concurrent decryptions share one page fetch, one player fetch and one result."""
        results = await asyncio.gather(*(self.decryptor.decrypt("abcdefghij", "vid") for _ in range(8)))
        self.assertEqual(results, [DECRYPTED] * 8)
        self.assertEqual(self._fetched("https://watch/vid"), 1)
        self.assertEqual(self._fetched("https://yt/s/player/abc/base.js"), 1)

        # Later requests reuse the cached program
        self.assertEqual(await self.decryptor.decrypt("abcdefghij", "vid"), DECRYPTED)
        self.assertEqual(self.downloader.fetch_text.await_count, 2)

    async def test_extraction_failure_is_terminal(self) -> None:
        """All waiters see the same failure and later requests do not retry."""
        self.pages["https://yt/s/player/abc/base.js"] = PLAYER.replace("var Xy=", "Xy=")
        results = await asyncio.gather(
            *(self.decryptor.decrypt("abc", "vid") for _ in range(4)), return_exceptions=True
        )
        for result in results:
            self.assertIsInstance(result, HelperObjectNotParsableError)
        self.assertEqual(self.downloader.fetch_text.await_count, 2)

        self.pages["https://yt/s/player/abc/base.js"] = PLAYER
        with self.assertRaises(HelperObjectNotParsableError):
            await self.decryptor.decrypt("abc", "vid")
        self.assertEqual(self.downloader.fetch_text.await_count, 2)

    async def test_download_failure_is_retried(self) -> None:
        """Upstream download failures are not cached."""
        self.downloader.fetch_text.side_effect = [InvalidResponseError("down"), WATCH_PAGE, PLAYER]
        with self.assertRaises(InvalidResponseError):
            await self.decryptor.decrypt("abcdefghij", "vid")
        self.assertEqual(await self.decryptor.decrypt("abcdefghij", "vid"), DECRYPTED)

    async def test_decryption_failure_is_not_cached(self) -> None:
        """A failing signature does not poison the cached program."""
        with patch(
            "hls_tube.services.cipher.run_decryption_program",
            side_effect=[DecryptionFailedError("bad signature"), "plain"],
        ):
            with self.assertRaises(DecryptionFailedError):
                await self.decryptor.decrypt("abc", "vid")
            self.assertEqual(await self.decryptor.decrypt("abc", "vid"), "plain")
        self.assertEqual(self.downloader.fetch_text.await_count, 2)
        program = await self.decryptor.decryption_program("vid")
        self.assertIn(DECRYPTION_FUNCTION_NAME, program)
