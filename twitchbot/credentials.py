from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from shared.errors import CredentialUnavailable
from shared.log import get_logger

logger = get_logger(__name__)

OAUTH_PREFIX = "oauth:"


def default_credentials_path() -> Path:
    return Path.home() / ".twitchbot" / "credentials.yaml"


@dataclass(frozen=True)
class Credentials:
    password: str = field(repr=False)

    def masked(self) -> str:
        """Show just enough of the secret to recognise it."""
        prefix = OAUTH_PREFIX if self.password.startswith(OAUTH_PREFIX) else ""
        tail = self.password[len(prefix):]
        if len(tail) <= 4:
            return prefix + "*" * len(tail)
        return f"{prefix}{tail[:2]}{'*' * (len(tail) - 4)}{tail[-2:]}"


class CredentialProvider:
    """Supplies the secret used for the PASS line."""

    def load(self) -> Credentials:
        raise NotImplementedError


class StaticCredentialProvider(CredentialProvider):
    def __init__(self, secret: Optional[str]) -> None:
        self.secret = secret

    def load(self) -> Credentials:
        return _validated(self.secret, "static secret")


class FileCredentialProvider(CredentialProvider):
    """
    Reads the secret from a small YAML (or JSON) record:

        password: oauth:abcdef123456

    Missing file, parse errors and a missing or empty `password` field all
    raise CredentialUnavailable.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path is not None else default_credentials_path()

    def load(self) -> Credentials:
        if not self.path.exists():
            raise CredentialUnavailable(f"Credentials file not found: {self.path}")
        try:
            data = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        except OSError as e:
            raise CredentialUnavailable(f"Cannot read credentials file {self.path}: {e}") from e
        except yaml.YAMLError as e:
            raise CredentialUnavailable(f"Malformed credentials file {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise CredentialUnavailable(f"Credentials file {self.path} must contain a mapping with a 'password' field")
        creds = _validated(data.get("password"), str(self.path))
        logger.info("Loaded credentials from %s", self.path)
        return creds


def _validated(secret: object, source: str) -> Credentials:
    if not isinstance(secret, str) or not secret.strip():
        raise CredentialUnavailable(f"No usable 'password' in {source}")
    secret = secret.strip()
    if not secret.startswith(OAUTH_PREFIX):
        logger.warning("Secret from %s does not start with '%s'; the server may reject it", source, OAUTH_PREFIX)
    return Credentials(password=secret)
