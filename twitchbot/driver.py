from __future__ import annotations
import asyncio
from typing import Awaitable, Callable, Optional

from shared.errors import ConnectFailure, CredentialUnavailable, ReadFailure, RetriesExhausted
from shared.log import get_logger
from twitchbot.config import ReconnectPolicy
from twitchbot.credentials import CredentialProvider
from twitchbot.session import ChatSession

logger = get_logger(__name__)


async def start(
    session: ChatSession,
    provider: CredentialProvider,
    policy: Optional[ReconnectPolicy] = None,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    """
    Keep the bot connected and handling chat.

    Loads credentials once (a failure there is fatal, retrying will not fix a
    bad secret), then loops connect -> join -> read loop. A failed connect or
    a read failure waits per `policy` and starts over; the read loop
    returning normally ends the bot.

    Raises:
        CredentialUnavailable: the provider could not supply a secret
        RetriesExhausted: `policy.max_attempts` consecutive attempts failed
    """
    policy = policy or ReconnectPolicy()

    try:
        session.load_credentials(provider)
    except CredentialUnavailable as e:
        logger.critical("Cannot start without credentials: %s", e)
        raise

    failures = 0
    last_error: Optional[BaseException] = None
    while True:
        if not await session.connect():
            failures += 1
            last_error = ConnectFailure(f"Could not connect to {session.config.address}")
        else:
            await session.authenticate_and_join()
            try:
                await session.handle_chat()
                logger.info("Chat session for #%s ended cleanly", session.config.channel)
                return
            except ReadFailure as e:
                # A connection that delivered at least one line counts as a fresh start
                failures = 1 if session.lines_received else failures + 1
                last_error = e
                # handle_chat already closed the connection; make sure of it
                await session.disconnect()

        if session.stop_requested:
            logger.info("Stop requested, not reconnecting")
            return
        if policy.gives_up_after(failures):
            logger.error("Giving up after %d consecutive failure(s): %s", failures, last_error)
            raise RetriesExhausted(failures, last_error) from last_error

        delay = policy.delay_for(failures)
        await sleep(delay)
        logger.error("Session attempt %d failed: %s. Reconnecting...", failures, last_error)
