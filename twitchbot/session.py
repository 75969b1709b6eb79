from __future__ import annotations
import asyncio
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional

from shared.errors import (
    ConnectFailure,
    CredentialUnavailable,
    EmptyMessage,
    InvalidMessage,
    NotConnectedError,
    ReadFailure,
    WriteFailure,
)
from shared.log import get_logger, log_irc_line
from twitchbot.config import SessionConfig
from twitchbot.credentials import CredentialProvider, Credentials
from twitchbot.protocol import (
    PONG_REPLY,
    LineKind,
    MessageType,
    ProtocolMessage,
    classify_line,
    is_shutdown_command,
    is_single_line,
    join_line,
    nick_line,
    pass_line,
    privmsg_line,
)
from twitchbot.transport import LineTransport, create_transport

logger = get_logger(__name__)


MessageHandler = Callable[[ProtocolMessage], Awaitable[None]]
TransportFactory = Callable[[SessionConfig], LineTransport]
Sleep = Callable[[float], Awaitable[None]]


class ReadLoopState(str, Enum):
    IDLE = "IDLE"
    AWAITING_LINE = "AWAITING_LINE"
    CLASSIFYING = "CLASSIFYING"
    KEEPALIVE_REPLY = "KEEPALIVE_REPLY"
    DISPATCH_MESSAGE = "DISPATCH_MESSAGE"
    IGNORE = "IGNORE"
    CLEAN_SHUTDOWN = "CLEAN_SHUTDOWN"
    READ_ERROR = "READ_ERROR"


class ChatSession:
    """
    One bot identity bound to one channel.

    Owns at most one transport at a time: connect() opens it, the read loop
    (handle_chat) closes it on every way out, disconnect() is safe to repeat.
    """

    def __init__(
        self,
        config: SessionConfig,
        credentials: Optional[Credentials] = None,
        *,
        transport_factory: TransportFactory = create_transport,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.config = config
        self.credentials = credentials
        self.transport: Optional[LineTransport] = None
        self.state = ReadLoopState.IDLE
        self.handlers: Dict[str, MessageHandler] = {}
        self._transport_factory = transport_factory
        self._sleep = sleep
        self._stop_requested = False
        # Lines read since the last successful connect
        self.lines_received = 0

    # ========================================
    #           CONNECTION LIFECYCLE
    # ========================================

    @property
    def connected(self) -> bool:
        return self.transport is not None

    def load_credentials(self, provider: CredentialProvider) -> Credentials:
        self.credentials = provider.load()
        return self.credentials

    async def connect(self) -> bool:
        """Open a transport to the configured server. Returns False on failure."""
        # Never hold two handles at once
        await self.disconnect()
        transport = self._transport_factory(self.config)
        logger.info("Connecting to %s", self.config.address)
        try:
            await transport.open()
        except ConnectFailure as e:
            logger.error("Connection to %s failed: %s", self.config.address, e)
            return False
        self.transport = transport
        self.lines_received = 0
        logger.info("Connected to %s", self.config.address)
        return True

    async def disconnect(self) -> None:
        transport, self.transport = self.transport, None
        if transport is None:
            return
        await transport.close()
        logger.info("Disconnected from %s", self.config.address)

    async def authenticate_and_join(self) -> None:
        """
        Send PASS, NICK and JOIN, in that order. Nothing is awaited back from
        the server; a failed write shows up later as a read failure.
        """
        if self.transport is None:
            raise NotConnectedError("authenticate_and_join() needs a live connection")
        if self.credentials is None:
            raise CredentialUnavailable("No credentials loaded")

        lines = (
            pass_line(self.credentials.password),
            nick_line(self.config.name),
            join_line(self.config.channel),
        )
        try:
            for line in lines:
                await self._write(line)
        except WriteFailure as e:
            logger.warning("Authentication write failed: %s", e)
            return
        logger.info("Joined #%s as %s", self.config.channel, self.config.name)

    # ========================================
    #           OUTBOUND
    # ========================================

    async def say(self, message: str) -> None:
        if not message:
            raise EmptyMessage("Cannot send an empty message")
        if not is_single_line(message):
            raise InvalidMessage("Message must not contain line breaks")
        if self.transport is None:
            raise NotConnectedError("say() needs a live connection")
        await self._write(privmsg_line(self.config.channel, message))

    async def _write(self, line: str) -> None:
        if self.transport is None:
            raise NotConnectedError("No live connection")
        await self.transport.write_line(line)
        log_irc_line(logger, "out", line, channel=self.config.channel, msg_type=line.split(" ", 1)[0])

    # ========================================
    #           READ LOOP
    # ========================================

    def on(self, msg_type: str, handler: MessageHandler) -> None:
        """Register a coroutine called for every inbound message of `msg_type`."""
        self.handlers[msg_type] = handler

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def request_stop(self) -> None:
        """Ask the read loop to return cleanly before reading the next line."""
        self._stop_requested = True

    def _set_state(self, state: ReadLoopState) -> None:
        if state is not self.state:
            logger.debug("Read loop %s -> %s", self.state.value, state.value)
        self.state = state

    async def handle_chat(self) -> None:
        """
        Run the read loop until the owner's shutdown command (returns None)
        or a transport failure (raises ReadFailure). The connection is
        closed on every exit path.
        """
        if self.transport is None:
            raise NotConnectedError("handle_chat() needs a live connection")
        try:
            while True:
                if self._stop_requested:
                    logger.info("Stop requested, leaving #%s", self.config.channel)
                    self._set_state(ReadLoopState.CLEAN_SHUTDOWN)
                    return

                self._set_state(ReadLoopState.AWAITING_LINE)
                try:
                    if self.transport is None:
                        raise ReadFailure("Connection was closed during the read loop")
                    line = await self.transport.read_line()
                except ReadFailure:
                    self._set_state(ReadLoopState.READ_ERROR)
                    raise
                self.lines_received += 1

                self._set_state(ReadLoopState.CLASSIFYING)
                classification = classify_line(line)

                if classification.kind is LineKind.KEEPALIVE:
                    log_irc_line(logger, "in", line, channel=self.config.channel, msg_type=MessageType.PING.value)
                    self._set_state(ReadLoopState.KEEPALIVE_REPLY)
                    try:
                        await self._write(PONG_REPLY)
                    except WriteFailure as e:
                        self._set_state(ReadLoopState.READ_ERROR)
                        raise ReadFailure(f"Connection lost while answering keep-alive: {e}") from e
                    continue

                if classification.message is None:
                    log_irc_line(logger, "in", line, channel=self.config.channel)
                    self._set_state(ReadLoopState.IGNORE)
                else:
                    message = classification.message
                    log_irc_line(logger, "in", line, channel=self.config.channel, msg_type=message.msg_type)
                    self._set_state(ReadLoopState.DISPATCH_MESSAGE)
                    if is_shutdown_command(message, self.config.channel):
                        await self._shutdown(message)
                        return
                    await self._dispatch(message)

                await self._sleep(self.config.message_delay)
        finally:
            await self.disconnect()

    async def _shutdown(self, message: ProtocolMessage) -> None:
        logger.info("Shutdown command from %s in #%s", message.user, self.config.channel)
        try:
            if self.config.farewell:
                await self.say(self.config.farewell)
        except WriteFailure as e:
            logger.warning("Could not send farewell: %s", e)
        await self.disconnect()
        self._set_state(ReadLoopState.CLEAN_SHUTDOWN)

    async def _dispatch(self, message: ProtocolMessage) -> None:
        handler = self.handlers.get(message.msg_type)
        if handler is None:
            return
        try:
            await handler(message)
        except Exception:
            logger.exception("Handler for %s failed", message.msg_type)
