import asyncio

from typer.testing import CliRunner

from twitchbot.cli import app

runner = CliRunner()


def test_classify_chat_line():
    result = runner.invoke(app, ["classify", ":viewer!viewer@viewer.tmi.twitch.tv PRIVMSG #streamer :hello"])

    assert result.exit_code == 0
    assert "message" in result.output
    assert "viewer" in result.output
    assert "hello" in result.output


def test_classify_keepalive():
    result = runner.invoke(app, ["classify", "PING :tmi.twitch.tv"])

    assert result.exit_code == 0
    assert "keepalive" in result.output


def test_check_credentials_ok(tmp_path):
    path = tmp_path / "credentials.yaml"
    path.write_text("password: oauth:abcdef123456\n")

    result = runner.invoke(app, ["check-credentials", "--credentials", str(path)])

    assert result.exit_code == 0
    assert "oauth:ab" in result.output
    assert "abcdef123456" not in result.output


def test_check_credentials_missing(tmp_path):
    result = runner.invoke(app, ["check-credentials", "--credentials", str(tmp_path / "missing.yaml")])

    assert result.exit_code == 1


def test_run_rejects_invalid_config():
    result = runner.invoke(app, ["run", "--channel", "streamer", "--name", "bad name"])

    assert result.exit_code == 1
    assert "Invalid configuration" in result.output


def test_run_exits_when_credentials_missing(tmp_path):
    result = runner.invoke(app, [
        "run",
        "--channel", "streamer",
        "--name", "helperbot",
        "--credentials", str(tmp_path / "missing.yaml"),
    ])

    assert result.exit_code == 1
    assert "CredentialUnavailable" in result.output


RUN_ARGS = [
    "run",
    "--channel", "streamer",
    "--name", "helperbot",
    "--oauth", "oauth:s3cr3t",
    "--message-delay", "0",
]


def test_run_handles_chat_until_owner_shutdown(monkeypatch, fake_transport, chat_line):
    transport = fake_transport([
        "PING :tmi.twitch.tv",
        chat_line("viewer", "lol [/] ok [red]x"),
        chat_line("streamer", "!tbdown"),
    ])
    monkeypatch.setattr("twitchbot.cli.create_transport", lambda config: transport)

    result = runner.invoke(app, RUN_ARGS)

    assert result.exit_code == 0, result.output
    assert "lol [/] ok [red]x" in result.output
    assert "Bye" in result.output
    assert transport.written == [
        "PASS oauth:s3cr3t",
        "NICK helperbot",
        "JOIN #streamer",
        "PONG: tmi.twitch.tv",
        "PRIVMSG #streamer Shutting down...",
    ]
    assert transport.close_calls >= 1


def test_run_interactive_forwards_operator_lines(monkeypatch, fake_transport, chat_line):
    transport = fake_transport(
        [chat_line("viewer", f"line {n}") for n in range(10)] + [chat_line("streamer", "!tbdown")]
    )
    monkeypatch.setattr("twitchbot.cli.create_transport", lambda config: transport)
    typed = ["hello from operator"]

    async def fake_ainput(prompt=""):
        while "JOIN #streamer" not in transport.written:
            await asyncio.sleep(0)
        if typed:
            return typed.pop()
        await asyncio.Event().wait()

    monkeypatch.setattr("twitchbot.cli.ainput", fake_ainput)

    result = runner.invoke(app, RUN_ARGS + ["--interactive"])

    assert result.exit_code == 0, result.output
    assert "PRIVMSG #streamer hello from operator" in transport.written
    assert transport.written[-1] == "PRIVMSG #streamer Shutting down..."


def test_run_gives_up_after_max_retries(monkeypatch, fake_transport):
    monkeypatch.setattr("twitchbot.cli.create_transport", lambda config: fake_transport(fail_open=True))

    result = runner.invoke(app, RUN_ARGS + ["--retry-delay", "0", "--max-retries", "2"])

    assert result.exit_code == 1
    assert "RetriesExhausted" in result.output


def test_classify_escapes_markup():
    result = runner.invoke(app, ["classify", ":viewer!viewer@viewer.tmi.twitch.tv PRIVMSG #streamer :[/] [bold]hi"])

    assert result.exit_code == 0
    assert "[/] [bold]hi" in result.output
