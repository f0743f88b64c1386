"""Signature cipher extraction and execution.

Some adaptive formats carry an obfuscated access signature (``s``) instead of a
plain one. The player script contains the routine that reverses it. We locate
that routine with a fixed sequence of regular expressions, reassemble it with
the helper object it delegates to into a tiny standalone program, and run the
program in yt-dlp's JavaScript interpreter.

The patterns target the minifier output of the player at the time of writing.
When YouTube changes that shape, extraction fails closed with a specific error.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, NamedTuple

from yt_dlp.jsinterp import JSInterpreter

from hls_tube.core.config import Settings
from hls_tube.core.errors import (
    DecryptionFailedError,
    DecryptionFunctionNotFoundError,
    DecryptionFunctionNotParsableError,
    HelperObjectNotFoundError,
    HelperObjectNotParsableError,
    PlayerNotFoundError,
    SignatureExtractionError,
)
from hls_tube.domain.cache import SingleFlight
from hls_tube.infra.downloader import AssetDownloader

logger = logging.getLogger(__name__)

DECRYPTION_FUNCTION_NAME: str = "decryptSignature"

_PLAYER_PATH_RE = re.compile(r'"assets":.+?"js":\s*(?P<path>"[^"]+")')

# c&&d.set(b,encodeURIComponent(Xy(decodeURIComponent(c))))
_FUNCTION_NAME_RE = re.compile(
    r"\b[cs]\s*&&\s*[adf]\.set\([^,]+\s*,\s*encodeURIComponent\s*\(\s*(?P<name>[a-zA-Z0-9$]+)\("
)

# a=a.split("");Ab.cd(a,3);...
_HELPER_NAME_RE = re.compile(r";\s?(?P<name>[a-zA-Z_$][\w$]*)\.")


class ExtractedFunction(NamedTuple):
    args: str
    body: str


def extract_player_path(page: str) -> str:
    """Return the player script path referenced by the watch page's asset descriptor."""

    match = _PLAYER_PATH_RE.search(page)
    if match is None:
        raise PlayerNotFoundError("Watch page does not reference a player script")
    try:
        path: Any = json.loads(match.group("path"))
    except json.JSONDecodeError as ex:
        raise PlayerNotFoundError("Player script path is not a valid JSON string") from ex
    if not isinstance(path, str) or not path:
        raise PlayerNotFoundError("Player script path is empty")
    return path


def find_function_name(player_code: str) -> str:
    match = _FUNCTION_NAME_RE.search(player_code)
    if match is None:
        raise DecryptionFunctionNotFoundError("Signature function call site not found")
    return match.group("name")


def find_function(name: str, player_code: str) -> ExtractedFunction:
    """Match the declaration of ``name`` in any of the minifier's three forms.

    ``function Xy(a){...}``, ``;Xy=function(a){...}`` or ``var Xy=function(a){...}``.
    """

    escaped = re.escape(name)
    pattern = re.compile(
        rf"""(?x)
        (?:function\s+{escaped}|[{{;,]\s*{escaped}\s*=\s*function|var\s+{escaped}\s*=\s*function)\s*
        \((?P<args>[^)]*)\)\s*
        \{{(?P<body>[^}}]+)\}}
        """
    )
    match = pattern.search(player_code)
    if match is None:
        raise DecryptionFunctionNotParsableError(f"Declaration of signature function {name} not found")
    return ExtractedFunction(args=match.group("args"), body=match.group("body"))


def find_helper_name(body: str) -> str:
    match = _HELPER_NAME_RE.search(body)
    if match is None:
        raise HelperObjectNotFoundError("Signature function does not delegate to a helper object")
    return match.group("name")


def find_helper_object(name: str, player_code: str) -> str:
    """Cut ``var <name>={...}`` out of the player by balancing braces.

    Notes
    -----
    - Braces inside string literals are counted too; the helper objects seen in practice
      contain none.
    """

    start = re.search(rf"var\s+{re.escape(name)}\s?=\s?", player_code)
    if start is None:
        raise HelperObjectNotParsableError(f"Helper object {name} not found")

    depth: int = 0
    opened: bool = False
    for position in range(start.start(), len(player_code)):
        character = player_code[position]
        if character == "{":
            depth += 1
            opened = True
        elif character == "}":
            depth -= 1
        if opened and depth == 0:
            return player_code[start.start():position + 1]

    raise HelperObjectNotParsableError(f"Helper object {name} has unbalanced braces")


def extract_decryption_program(player_code: str) -> str:
    """Build a standalone program exporting ``decryptSignature`` from the player script.

    Raises
    ------
    SignatureExtractionError
        The subclass names the step that failed.
    """

    function_name = find_function_name(player_code)
    function = find_function(function_name, player_code)
    helper_name = find_helper_name(function.body)
    helper = find_helper_object(helper_name, player_code)
    logger.debug("Extracted signature function %s with helper %s", function_name, helper_name)
    return f"{helper};function {DECRYPTION_FUNCTION_NAME}({function.args}){{{function.body}}}"


def run_decryption_program(program: str, signature: str) -> str:
    """Execute ``program`` in a fresh interpreter and decrypt ``signature``.

    Raises
    ------
    DecryptionFailedError
        If the interpreter fails or the result is not a string.
    """

    try:
        result: Any = JSInterpreter(program).extract_function(DECRYPTION_FUNCTION_NAME)([signature])
    except Exception as ex:  # noqa: BLE001 - interpreter errors come in many shapes
        raise DecryptionFailedError(f"Decryption program raised: {ex}") from ex
    if not isinstance(result, str):
        raise DecryptionFailedError(f"Decryption program returned {type(result).__name__}, expected str")
    return result


class SignatureDecryptor:
    """Decrypts ciphered signatures, extracting the program once per video.

    Notes
    -----
    - Programs are cached per video id in a ``SingleFlight``: concurrent callers share a
      single watch page fetch, player fetch and extraction.
    - ``SignatureExtractionError`` is cached as terminal; download failures are not and
      the next request retries them.
    - Decryption failures are never cached since they concern one signature only.
    """

    def __init__(self, downloader: AssetDownloader, settings: Settings) -> None:
        self._downloader = downloader
        self._settings = settings
        self._programs: SingleFlight[str, str] = SingleFlight(cached_errors=(SignatureExtractionError,))

    async def _extract(self, video_id: str) -> str:
        page: str = await self._downloader.fetch_text(self._settings.watch_url_template.format(video_id=video_id))
        player_url: str = self._settings.player_base_url + extract_player_path(page)
        logger.info(
            "Extracting signature cipher for %s from %s", video_id, player_url, extra={"video_id": video_id}
        )
        player_code: str = await self._downloader.fetch_text(player_url)
        return await asyncio.to_thread(extract_decryption_program, player_code)

    async def decryption_program(self, video_id: str) -> str:
        return await self._programs.get(video_id, lambda: self._extract(video_id))

    async def decrypt(self, signature: str, video_id: str) -> str:
        program: str = await self.decryption_program(video_id)
        return await asyncio.to_thread(run_decryption_program, program, signature)
