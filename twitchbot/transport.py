from __future__ import annotations
import asyncio
import ssl
from collections import deque
from typing import Deque, Optional

import websockets

from shared.errors import ConnectFailure, ReadFailure, WriteFailure
from shared.log import get_logger
from twitchbot.config import SessionConfig
from twitchbot.protocol import LINE_TERMINATOR, encode_line

logger = get_logger(__name__)


class LineTransport:
    """
    A bidirectional line stream to the chat server.

    read_line() returns one line without its terminator, write_line()
    appends CRLF. close() may be called any number of times.
    """

    def __init__(self, host: str, port: int, *, tls: bool = False, connect_timeout: float = 10.0) -> None:
        self.host = host
        self.port = port
        self.tls = tls
        self.connect_timeout = connect_timeout

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    async def open(self) -> None:
        raise NotImplementedError

    async def read_line(self) -> str:
        raise NotImplementedError

    async def write_line(self, line: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError


class TcpLineTransport(LineTransport):
    """Plain (or TLS) TCP socket carrying CRLF-terminated IRC lines."""

    def __init__(self, host: str, port: int, *, tls: bool = False, connect_timeout: float = 10.0) -> None:
        super().__init__(host, port, tls=tls, connect_timeout=connect_timeout)
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None

    async def open(self) -> None:
        ssl_context = ssl.create_default_context() if self.tls else None
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port, ssl=ssl_context),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError as e:
            raise ConnectFailure(f"Timed out connecting to {self.address}") from e
        except OSError as e:
            raise ConnectFailure(f"Cannot connect to {self.address}: {e}") from e
        logger.debug("TCP connection open to %s (tls=%s)", self.address, self.tls)

    async def read_line(self) -> str:
        if self._reader is None:
            raise ReadFailure("Transport is not open")
        try:
            raw = await self._reader.readline()
        except (OSError, ValueError) as e:
            # ValueError: line longer than the stream buffer limit
            raise ReadFailure(f"Read from {self.address} failed: {e}") from e
        if not raw:
            raise ReadFailure(f"Connection to {self.address} closed by peer")
        return raw.decode("utf-8", errors="replace").rstrip(LINE_TERMINATOR)

    async def write_line(self, line: str) -> None:
        if self._writer is None or self._writer.is_closing():
            raise WriteFailure("Transport is not open")
        try:
            self._writer.write(encode_line(line).encode("utf-8"))
            await self._writer.drain()
        except OSError as e:
            raise WriteFailure(f"Write to {self.address} failed: {e}") from e

    async def close(self) -> None:
        writer, self._writer, self._reader = self._writer, None, None
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            logger.debug("Error while closing connection to %s: %s", self.address, e)


class WebSocketLineTransport(LineTransport):
    """
    IRC over WebSocket. Every text frame carries one or more CRLF-separated
    lines; they are handed out one at a time.
    """

    def __init__(self, host: str, port: int, *, tls: bool = False, connect_timeout: float = 10.0) -> None:
        super().__init__(host, port, tls=tls, connect_timeout=connect_timeout)
        self.websocket: Optional[websockets.ClientConnection] = None
        self._pending: Deque[str] = deque()

    @property
    def url(self) -> str:
        scheme = "wss" if self.tls else "ws"
        return f"{scheme}://{self.host}:{self.port}"

    async def open(self) -> None:
        try:
            self.websocket = await websockets.connect(
                self.url,
                open_timeout=self.connect_timeout,
                ping_interval=15,
                ping_timeout=45,
            )
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
            raise ConnectFailure(f"Cannot connect to {self.url}: {e}") from e
        self._pending.clear()
        logger.debug("WebSocket connection open to %s", self.url)

    async def read_line(self) -> str:
        if self.websocket is None:
            raise ReadFailure("Transport is not open")
        while not self._pending:
            try:
                frame = await self.websocket.recv()
            except websockets.exceptions.ConnectionClosed as e:
                raise ReadFailure(f"WebSocket {self.url} closed: {e}") from e
            if isinstance(frame, bytes):
                frame = frame.decode("utf-8", errors="replace")
            self._pending.extend(part for part in frame.split(LINE_TERMINATOR) if part)
        return self._pending.popleft()

    async def write_line(self, line: str) -> None:
        if self.websocket is None:
            raise WriteFailure("Transport is not open")
        try:
            await self.websocket.send(encode_line(line))
        except websockets.exceptions.ConnectionClosed as e:
            raise WriteFailure(f"WebSocket {self.url} closed: {e}") from e

    async def close(self) -> None:
        websocket, self.websocket = self.websocket, None
        self._pending.clear()
        if websocket is None:
            return
        await websocket.close(code=1000)


def create_transport(config: SessionConfig) -> LineTransport:
    """Pick the transport named by the session configuration."""
    cls = WebSocketLineTransport if config.transport == "websocket" else TcpLineTransport
    return cls(config.server, config.port, tls=config.tls, connect_timeout=config.connect_timeout)
