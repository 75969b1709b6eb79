from __future__ import annotations

from typing import Iterable, List, Optional, Union

import pytest

from shared.errors import ConnectFailure, ReadFailure, WriteFailure
from twitchbot.config import SessionConfig
from twitchbot.credentials import Credentials
from twitchbot.protocol import encode_line
from twitchbot.transport import LineTransport


Script = Iterable[Union[str, BaseException]]


class FakeTransport(LineTransport):
    """
    Scripted transport: read_line() hands out the scripted lines in order,
    raising any exception found in the script. An exhausted script reads as
    a closed connection.
    """

    def __init__(self, script: Script = (), *, fail_open: bool = False, fail_writes: bool = False) -> None:
        super().__init__("irc.example.test", 6667)
        self.script: List[Union[str, BaseException]] = list(script)
        self.fail_open = fail_open
        self.fail_writes = fail_writes
        self.written: List[str] = []
        self.opened = False
        self.close_calls = 0

    @property
    def wire(self) -> str:
        return "".join(encode_line(line) for line in self.written)

    async def open(self) -> None:
        if self.fail_open:
            raise ConnectFailure("connection refused")
        self.opened = True

    async def read_line(self) -> str:
        if not self.script:
            raise ReadFailure("script exhausted")
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def write_line(self, line: str) -> None:
        if self.fail_writes:
            raise WriteFailure("broken pipe")
        self.written.append(line)

    async def close(self) -> None:
        self.close_calls += 1


class TransportFactory:
    """Hands out prepared transports one connect() at a time and remembers them."""

    def __init__(self, *transports: FakeTransport) -> None:
        self.pending = list(transports)
        self.created: List[FakeTransport] = []
        self.configs: List[SessionConfig] = []

    def __call__(self, config: SessionConfig) -> FakeTransport:
        self.configs.append(config)
        transport = self.pending.pop(0) if self.pending else FakeTransport()
        self.created.append(transport)
        return transport


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _chat_line(user: str, body: Optional[str], channel: str = "streamer", msg_type: str = "PRIVMSG") -> str:
    line = f":{user}!{user}@{user}.tmi.twitch.tv {msg_type} #{channel}"
    if body is not None:
        line += f" :{body}"
    return line


@pytest.fixture
def config() -> SessionConfig:
    return SessionConfig(channel="streamer", name="helperbot", message_delay=0.5)


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(password="oauth:s3cr3t")


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    for var in ("CHANNEL", "NAME", "SERVER", "PORT", "MESSAGE_DELAY", "TRANSPORT", "TLS", "CONNECT_TIMEOUT", "FAREWELL", "OAUTH"):
        monkeypatch.delenv(f"TWITCHBOT_{var}", raising=False)


@pytest.fixture
def fake_transport():
    return FakeTransport


@pytest.fixture
def transport_factory():
    return TransportFactory


@pytest.fixture
def chat_line():
    return _chat_line
