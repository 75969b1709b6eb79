from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

LINE_TERMINATOR = "\r\n"

# Keep-alive literals; the reply text is what the server expects from this bot.
PING_PROBE = "PING :tmi.twitch.tv"
PONG_REPLY = "PONG: tmi.twitch.tv"

SHUTDOWN_COMMAND = "!tbdown"

# :<user>!<ident>@<host>.<suffix> <MSGTYPE> #<channel>[ :<body>]
LINE_PATTERN = re.compile(
    r"^:(?P<user>\w+)!(?P<ident>\w+)@(?P<host>[\w-]+)\.(?P<suffix>[\w.-]+)"
    r" (?P<msg_type>[A-Z]+) #(?P<channel>\w+)(?: :(?P<body>.*))?$"
)


class MessageType(str, Enum):
    """IRC commands the bot sends or recognises."""

    # Sent during authentication, in this order
    PASS = "PASS"
    NICK = "NICK"
    JOIN = "JOIN"

    PRIVMSG = "PRIVMSG"      # chat message, both directions
    PING = "PING"


class LineKind(str, Enum):
    KEEPALIVE = "keepalive"
    MESSAGE = "message"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class ProtocolMessage:
    user: str
    ident: str
    host: str
    msg_type: str
    channel: str
    body: str = ""

    @property
    def is_chat(self) -> bool:
        return self.msg_type == MessageType.PRIVMSG.value


@dataclass(frozen=True)
class Classification:
    kind: LineKind
    line: str
    message: Optional[ProtocolMessage] = None


def parse_line(line: str) -> Optional[ProtocolMessage]:
    """Match a line against the protocol pattern; None when it does not fit."""
    match = LINE_PATTERN.match(line)
    if match is None:
        return None
    return ProtocolMessage(
        user=match.group("user"),
        ident=match.group("ident"),
        host=f"{match.group('host')}.{match.group('suffix')}",
        msg_type=match.group("msg_type"),
        channel=match.group("channel"),
        body=match.group("body") or "",
    )


def classify_line(line: str) -> Classification:
    """
    Put an inbound line (CR/LF already stripped) into exactly one bucket:
    keep-alive probe, protocol message, or unrecognized.
    """
    if line == PING_PROBE:
        return Classification(LineKind.KEEPALIVE, line)
    message = parse_line(line)
    if message is None:
        return Classification(LineKind.UNRECOGNIZED, line)
    return Classification(LineKind.MESSAGE, line, message)


def is_shutdown_command(message: ProtocolMessage, owner: str) -> bool:
    """
    True for `!tbdown` sent by the channel owner. The owner is whoever's
    username equals the channel name; both comparisons are exact.
    """
    return message.is_chat and message.user == owner and message.body == SHUTDOWN_COMMAND


# ========================================
#           OUTBOUND LINES
# ========================================

def pass_line(secret: str) -> str:
    return f"{MessageType.PASS.value} {secret}"


def nick_line(name: str) -> str:
    return f"{MessageType.NICK.value} {name}"


def join_line(channel: str) -> str:
    return f"{MessageType.JOIN.value} #{channel}"


def privmsg_line(channel: str, message: str) -> str:
    return f"{MessageType.PRIVMSG.value} #{channel} {message}"


def is_single_line(text: str) -> bool:
    """False when text would spill into a second protocol line."""
    return "\r" not in text and "\n" not in text


def encode_line(line: str) -> str:
    return line + LINE_TERMINATOR
