"""Minimal HTTP/1.1 front end on a plain asyncio TCP listener.

One request per connection: the request is read, answered with
``Connection: close`` and the socket is closed. Only the request line and
headers are interpreted; request bodies are ignored.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from email.utils import formatdate
from typing import Optional, Protocol

from hls_tube.core.config import Settings
from hls_tube.core.errors import BadRequestError, HlsTubeError
from hls_tube.services.playlist import PlaylistRoute, route

logger = logging.getLogger(__name__)

PLAYLIST_CONTENT_TYPE: str = "application/vnd.apple.mpegurl"
ERROR_CONTENT_TYPE: str = "text/html"
HEADER_DELIMITER: bytes = b"\r\n\r\n"


@dataclass
class HttpRequest:
    method: str
    path: str
    version: str
    headers: dict[str, str] = field(default_factory=dict)


class PlaylistRenderer(Protocol):
    async def render(self, playlist: PlaylistRoute) -> str: ...


def parse_request(text: str) -> HttpRequest:
    """Parse the request line and headers of a raw HTTP request.

    Notes
    -----
    - The request line must be exactly ``METHOD PATH VERSION``.
    - Header lines that do not split into exactly one key and one value on ``": "``
      are dropped.

    Raises
    ------
    BadRequestError
        If the request line does not have three space-separated tokens.
    """

    head: str = text.split("\r\n\r\n", 1)[0]
    lines: list[str] = head.split("\r\n")

    request_line: list[str] = lines[0].split(" ")
    if len(request_line) != 3:
        raise BadRequestError(f"Malformed request line {lines[0]!r}")
    method, path, version = request_line

    headers: dict[str, str] = {}
    for line in lines[1:]:
        key_value = line.split(": ")
        if len(key_value) == 2:
            headers[key_value[0]] = key_value[1]
    return HttpRequest(method=method, path=path, version=version, headers=headers)


def format_response(status: int, reason: str, content_type: str, body: str = "") -> bytes:
    """Serialize a response; ``Content-Length`` is the UTF-8 byte length of ``body``."""

    payload: bytes = body.encode("utf-8")
    head: str = (
        f"HTTP/1.1 {status} {reason}\r\n"
        f"Date: {formatdate(usegmt=True)}\r\n"
        "Connection: close\r\n"
        f"Content-Type: {content_type}\r\n"
        f"Content-Length: {len(payload)}\r\n"
        "\r\n"
    )
    return head.encode("ascii") + payload


def error_response(error: HlsTubeError) -> bytes:
    return format_response(error.status, error.reason, ERROR_CONTENT_TYPE)


NOT_FOUND: bytes = format_response(404, "Not Found", ERROR_CONTENT_TYPE)
INTERNAL_ERROR: bytes = format_response(500, "Internal Server Error", ERROR_CONTENT_TYPE)


async def read_request(reader: asyncio.StreamReader, settings: Settings) -> Optional[bytes]:
    """Read a request off the stream.

    Reading stops at the end of the headers, at EOF or after ``max_request_bytes``.
    Returns ``None`` when fewer than ``min_request_bytes`` arrived.
    """

    data: bytes = b""
    while len(data) < settings.max_request_bytes and HEADER_DELIMITER not in data:
        chunk: bytes = await reader.read(settings.max_request_bytes - len(data))
        if not chunk:
            break
        data += chunk
    if len(data) < settings.min_request_bytes:
        return None
    return data


def _peer_name(writer: asyncio.StreamWriter) -> Optional[str]:
    peername = writer.get_extra_info("peername")
    if not peername:
        return None
    return f"{peername[0]}:{peername[1]}"


class HLSServer:
    """TCP listener answering playlist requests.

    Notes
    -----
    - Each connection is served by its own asyncio task; slow upstream work for one
      connection never blocks another.
    - Read or decode failures abort the connection without a response. Playlist failures
      are answered with the status of the raised ``HlsTubeError`` and an empty body.
    """

    def __init__(self, renderer: PlaylistRenderer, settings: Settings) -> None:
        self._renderer = renderer
        self._settings = settings
        self._server: Optional[asyncio.Server] = None

    async def respond(self, raw: bytes, peer: Optional[str] = None) -> Optional[bytes]:
        """Build the response bytes for one raw request, or ``None`` to send nothing."""

        try:
            text: str = raw.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning("Dropping request that is not valid UTF-8", extra={"peer": peer})
            return None

        try:
            request: HttpRequest = parse_request(text)
        except BadRequestError as ex:
            logger.info("Bad request: %s", ex, extra={"peer": peer, "status": ex.status})
            return error_response(ex)

        context: dict[str, Optional[str]] = {"peer": peer, "path": request.path}
        playlist: Optional[PlaylistRoute] = route(request.path)
        if playlist is None:
            logger.info("No route for %s %s", request.method, request.path, extra={**context, "status": 404})
            return NOT_FOUND

        try:
            body: str = await self._renderer.render(playlist)
        except HlsTubeError as ex:
            logger.warning("Request for %s failed: %s", request.path, ex, extra={**context, "status": ex.status})
            return error_response(ex)
        except Exception:  # noqa: BLE001 - answer the client, keep serving others
            logger.exception("Unexpected failure serving %s", request.path, extra={**context, "status": 500})
            return INTERNAL_ERROR

        logger.info("Served %s", request.path, extra={**context, "status": 200})
        return format_response(200, "OK", PLAYLIST_CONTENT_TYPE, body)

    async def handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            raw: Optional[bytes] = await read_request(reader, self._settings)
            if raw is None:
                logger.debug("Connection closed before a request arrived")
                return
            response: Optional[bytes] = await self.respond(raw, peer=_peer_name(writer))
            if response is not None:
                writer.write(response)
                await writer.drain()
        except ConnectionError as ex:
            logger.debug("Connection dropped: %s", ex)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError:
                pass

    async def start(self) -> None:
        self._server = await asyncio.start_server(
            self.handle_connection, host=self._settings.host, port=self._settings.port
        )
        for sock in self._server.sockets:
            logger.info("Listening on %s", sock.getsockname())

    @property
    def port(self) -> int:
        """Bound port, useful when configured with port 0."""

        if self._server is None:
            raise RuntimeError("Server is not started")
        return self._server.sockets[0].getsockname()[1]

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        assert self._server is not None
        async with self._server:
            await self._server.serve_forever()

    async def close(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
