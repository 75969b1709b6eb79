#!/usr/bin/env python3

from __future__ import annotations
import asyncio
import os
from contextlib import suppress
from pathlib import Path
from typing import Optional

import typer
from aioconsole import ainput
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from shared.errors import ConfigError, CredentialUnavailable, EmptyMessage, RetriesExhausted, TwitchBotError
from shared.log import configure_root_logging, get_logger
from shared.utils import format_timestamp
from twitchbot.config import ReconnectPolicy, load_config
from twitchbot.credentials import CredentialProvider, FileCredentialProvider, StaticCredentialProvider
from twitchbot.driver import start
from twitchbot.protocol import MessageType, ProtocolMessage, classify_line
from twitchbot.session import ChatSession
from twitchbot.transport import create_transport

app = typer.Typer(help="Minimal Twitch chat bot")
console = Console()
logger = get_logger(__name__)


def _credential_provider(credentials: Optional[Path], oauth: Optional[str]) -> CredentialProvider:
    secret = oauth or os.getenv("TWITCHBOT_OAUTH")
    if secret:
        return StaticCredentialProvider(secret)
    return FileCredentialProvider(credentials)


async def _operator_console(session: ChatSession) -> None:
    """Forward lines typed by the operator to the channel."""
    while True:
        line = (await ainput("")).strip()
        if not line:
            continue
        try:
            await session.say(line)
        except EmptyMessage:
            continue
        except TwitchBotError as e:
            console.print(f"[red]Not sent[/]: {escape(str(e))}")


@app.command()
def run(
    config: Optional[Path] = typer.Option(None, "--config", help="YAML file with session settings"),
    channel: Optional[str] = typer.Option(None, help="Channel to join (without '#')"),
    name: Optional[str] = typer.Option(None, help="Bot display name (NICK)"),
    server: Optional[str] = typer.Option(None, help="Chat server host"),
    port: Optional[int] = typer.Option(None, help="Chat server port"),
    transport: Optional[str] = typer.Option(None, help="'tcp' or 'websocket'"),
    tls: Optional[bool] = typer.Option(None, "--tls/--no-tls", help="Encrypt the connection"),
    message_delay: Optional[float] = typer.Option(None, help="Seconds to wait after each chat line"),
    credentials: Optional[Path] = typer.Option(None, help="Credentials file (YAML/JSON with a 'password' field)"),
    oauth: Optional[str] = typer.Option(None, help="OAuth secret, overrides the credentials file"),
    retry_delay: float = typer.Option(1.0, help="Seconds to wait before reconnecting"),
    max_retries: Optional[int] = typer.Option(None, help="Give up after this many consecutive failures"),
    log_level: str = typer.Option("INFO", help="DEBUG, INFO, WARNING or ERROR"),
    interactive: bool = typer.Option(False, "--interactive", "-i", help="Send lines typed on stdin to the channel"),
):
    """Connect, join the channel and handle chat until the owner sends !tbdown."""
    configure_root_logging(log_level)
    try:
        session_config = load_config(
            config,
            channel=channel,
            name=name,
            server=server,
            port=port,
            transport=transport,
            tls=tls,
            message_delay=message_delay,
        )
        policy = ReconnectPolicy(delay=retry_delay, max_attempts=max_retries)
    except ConfigError as e:
        console.print(f"[red]Invalid configuration[/]: {escape(str(e))}")
        raise typer.Exit(code=1)

    provider = _credential_provider(credentials, oauth)
    session = ChatSession(session_config, transport_factory=create_transport)

    async def print_chat(message: ProtocolMessage) -> None:
        console.print(f"[dim]{format_timestamp()}[/] [bold cyan]{escape(message.user)}[/]: {escape(message.body)}")

    session.on(MessageType.PRIVMSG.value, print_chat)

    async def main_loop() -> None:
        console_task = asyncio.create_task(_operator_console(session)) if interactive else None
        try:
            await start(session, provider, policy)
        finally:
            if console_task is not None:
                console_task.cancel()
                with suppress(asyncio.CancelledError):
                    await console_task

    console.print(f"[bold green]twitchbot starting[/] as {session_config.name} in #{session_config.channel} via {session_config.address}")
    try:
        asyncio.run(main_loop())
    except (CredentialUnavailable, RetriesExhausted) as e:
        console.print(f"[red]{type(e).__name__}[/]: {escape(str(e))}")
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/]")
        raise typer.Exit(code=130)
    console.print("[bold green]Bye[/]")


@app.command()
def classify(line: str = typer.Argument(..., help="Raw protocol line, without CRLF")):
    """Show how the read loop would classify LINE."""
    result = classify_line(line)
    table = Table(title="Line classification")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("kind", result.kind.value)
    if result.message is not None:
        msg = result.message
        table.add_row("type", escape(msg.msg_type))
        table.add_row("user", escape(msg.user))
        table.add_row("ident", escape(msg.ident))
        table.add_row("host", escape(msg.host))
        table.add_row("channel", escape(msg.channel))
        table.add_row("body", escape(msg.body))
    console.print(table)


@app.command("check-credentials")
def check_credentials(
    credentials: Optional[Path] = typer.Option(None, help="Credentials file (YAML/JSON with a 'password' field)"),
):
    """Load the credentials file and print the masked secret."""
    provider = FileCredentialProvider(credentials)
    try:
        creds = provider.load()
    except CredentialUnavailable as e:
        console.print(f"[red]Credentials unavailable[/]: {escape(str(e))}")
        raise typer.Exit(code=1)
    console.print(f"[green]OK[/] {escape(str(provider.path))}: {escape(creds.masked())}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
