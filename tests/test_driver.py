import pytest

from shared.errors import CredentialUnavailable, ReadFailure, RetriesExhausted
from twitchbot.config import ReconnectPolicy
from twitchbot.credentials import CredentialProvider, StaticCredentialProvider
from twitchbot.driver import start
from twitchbot.session import ChatSession, ReadLoopState


class FailingProvider(CredentialProvider):
    def load(self):
        raise CredentialUnavailable("no such file")


SHUTDOWN = ":streamer!streamer@streamer.tmi.twitch.tv PRIVMSG #streamer :!tbdown"
AUTH = ["PASS oauth:s3cr3t", "NICK helperbot", "JOIN #streamer"]


@pytest.mark.asyncio
async def test_read_failure_triggers_reconnect(config, sleeper, fake_transport, transport_factory, chat_line):
    first = fake_transport([chat_line("viewer", "hi"), ReadFailure("reset by peer")])
    second = fake_transport([SHUTDOWN])
    factory = transport_factory(first, second)
    session = ChatSession(config, transport_factory=factory, sleep=sleeper)

    await start(session, StaticCredentialProvider("oauth:s3cr3t"), sleep=sleeper)

    assert len(factory.created) == 2
    assert first.close_calls == 1
    assert first.written == AUTH
    assert second.written == AUTH + ["PRIVMSG #streamer Shutting down..."]
    # one message delay in the first attempt, then the fixed reconnect delay
    assert sleeper.calls == [0.5, 1.0]
    assert session.state is ReadLoopState.CLEAN_SHUTDOWN


@pytest.mark.asyncio
async def test_clean_shutdown_does_not_reconnect(config, sleeper, fake_transport, transport_factory):
    factory = transport_factory(fake_transport([SHUTDOWN]))
    session = ChatSession(config, transport_factory=factory, sleep=sleeper)

    await start(session, StaticCredentialProvider("oauth:s3cr3t"), sleep=sleeper)

    assert len(factory.created) == 1
    assert sleeper.calls == []


@pytest.mark.asyncio
async def test_missing_credentials_abort_before_connecting(config, sleeper, transport_factory):
    factory = transport_factory()
    session = ChatSession(config, transport_factory=factory, sleep=sleeper)

    with pytest.raises(CredentialUnavailable):
        await start(session, FailingProvider(), sleep=sleeper)

    assert factory.created == []


@pytest.mark.asyncio
async def test_connect_failures_are_retried_with_fixed_delay(config, sleeper, fake_transport, transport_factory):
    factory = transport_factory(
        fake_transport(fail_open=True),
        fake_transport(fail_open=True),
        fake_transport(fail_open=True),
        fake_transport([SHUTDOWN]),
    )
    session = ChatSession(config, transport_factory=factory, sleep=sleeper)

    await start(session, StaticCredentialProvider("oauth:s3cr3t"), sleep=sleeper)

    assert len(factory.created) == 4
    assert sleeper.calls == [1.0, 1.0, 1.0]


@pytest.mark.asyncio
async def test_policy_gives_up_after_max_attempts(config, sleeper, fake_transport, transport_factory):
    factory = transport_factory(*[fake_transport(fail_open=True) for _ in range(5)])
    session = ChatSession(config, transport_factory=factory, sleep=sleeper)
    policy = ReconnectPolicy(delay=2.0, max_attempts=3)

    with pytest.raises(RetriesExhausted) as excinfo:
        await start(session, StaticCredentialProvider("oauth:s3cr3t"), policy, sleep=sleeper)

    assert excinfo.value.attempts == 3
    assert len(factory.created) == 3
    assert sleeper.calls == [2.0, 2.0]


@pytest.mark.asyncio
async def test_policy_backoff_grows_and_is_capped(config, sleeper, fake_transport, transport_factory):
    factory = transport_factory(
        *[fake_transport(fail_open=True) for _ in range(4)],
        fake_transport([SHUTDOWN]),
    )
    session = ChatSession(config, transport_factory=factory, sleep=sleeper)
    policy = ReconnectPolicy(delay=1.0, backoff_factor=2.0, max_delay=5.0)

    await start(session, StaticCredentialProvider("oauth:s3cr3t"), policy, sleep=sleeper)

    assert sleeper.calls == [1.0, 2.0, 4.0, 5.0]


@pytest.mark.asyncio
async def test_session_that_read_lines_resets_failure_count(config, sleeper, fake_transport, transport_factory, chat_line):
    factory = transport_factory(
        fake_transport(fail_open=True),
        fake_transport([chat_line("viewer", "hi"), ReadFailure("dropped")]),
        fake_transport([SHUTDOWN]),
    )
    session = ChatSession(config, transport_factory=factory, sleep=sleeper)
    policy = ReconnectPolicy(delay=1.0, max_attempts=2)

    await start(session, StaticCredentialProvider("oauth:s3cr3t"), policy, sleep=sleeper)

    assert len(factory.created) == 3
    assert sleeper.calls == [1.0, 0.5, 1.0]


@pytest.mark.asyncio
async def test_connections_dropped_before_first_line_count_as_failures(config, sleeper, fake_transport, transport_factory):
    factory = transport_factory(*[fake_transport([ReadFailure("closed by server")]) for _ in range(5)])
    session = ChatSession(config, transport_factory=factory, sleep=sleeper)
    policy = ReconnectPolicy(delay=1.0, max_attempts=2)

    with pytest.raises(RetriesExhausted) as excinfo:
        await start(session, StaticCredentialProvider("oauth:s3cr3t"), policy, sleep=sleeper)

    assert excinfo.value.attempts == 2
    assert len(factory.created) == 2
    assert sleeper.calls == [1.0]
    assert all(t.written == AUTH for t in factory.created)
