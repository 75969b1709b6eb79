from __future__ import annotations
from typing import Optional


class TwitchBotError(Exception):
    """Base class for every error raised by the bot."""
    pass


class CredentialUnavailable(TwitchBotError):
    """Raised when the authentication secret is missing or malformed."""
    pass


class ConfigError(TwitchBotError, ValueError):
    """Raised when a session configuration value is invalid."""
    pass


class ConnectFailure(TwitchBotError):
    """Raised by a transport that could not reach the chat server."""
    pass


class ReadFailure(TwitchBotError):
    """Raised when the connection closes or errors while reading."""
    pass


class WriteFailure(TwitchBotError):
    pass


class EmptyMessage(TwitchBotError, ValueError):
    """Raised by say() when there is nothing to send."""
    pass


class InvalidMessage(TwitchBotError, ValueError):
    """Raised for outbound text that would break out of its protocol line."""
    pass


class NotConnectedError(TwitchBotError):
    pass


class RetriesExhausted(TwitchBotError):
    """Raised when the reconnect policy runs out of attempts."""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        super().__init__(f"Gave up after {attempts} failed attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error
