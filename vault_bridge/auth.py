"""
Bearer-token authentication for Vault Bridge.

The token lives in a file under the config directory, created with
owner-only permissions on first run. At runtime it is held by a single
TokenHolder; an operator can rotate it without restarting the server.
"""

import hmac
import os
import re
import secrets
import threading
from collections.abc import Mapping
from pathlib import Path

import structlog

from .errors import AuthInvalidError, AuthRequiredError

logger = structlog.get_logger(__name__)

MIN_TOKEN_LENGTH = 20
TOKEN_PATTERN = re.compile(r'^[A-Za-z0-9_-]+$')


class TokenHolder:
    """Single-slot holder for the process-wide bearer token.

    ``None`` means authentication is disabled.
    """

    def __init__(self, token: str | None = None):
        self._token = token or None
        self._lock = threading.Lock()

    def get(self) -> str | None:
        return self._token

    def rotate(self, token: str | None) -> None:
        """Replace the token. Requests checked afterwards see the new value."""
        with self._lock:
            self._token = token or None
        logger.info("auth_token_rotated", enabled=self._token is not None)


def tokens_match(provided: str, expected: str) -> bool:
    """Constant-time comparison; a length mismatch is rejected without comparing bytes."""
    provided_bytes = provided.encode("utf-8")
    expected_bytes = expected.encode("utf-8")
    if len(provided_bytes) != len(expected_bytes):
        return False
    return hmac.compare_digest(provided_bytes, expected_bytes)


class AuthGate:
    """Checks the ``Authorization: Bearer <token>`` header against the holder."""

    def __init__(self, holder: TokenHolder):
        self.holder = holder

    def verify(self, headers: Mapping[str, str]) -> None:
        """Raise unless the headers carry the configured token.

        Raises:
            AuthRequiredError: Header missing or not a well-formed Bearer header
            AuthInvalidError: Well-formed header with the wrong token
        """
        expected = self.holder.get()
        if expected is None:
            return

        header = headers.get("Authorization")
        if not header:
            raise AuthRequiredError()

        scheme, _, token = header.partition(" ")
        if scheme != "Bearer" or not token or " " in token:
            raise AuthRequiredError("Malformed Authorization header, expected 'Bearer <token>'")

        if not tokens_match(token, expected):
            raise AuthInvalidError()

    def check(self, headers: Mapping[str, str]) -> bool:
        try:
            self.verify(headers)
        except (AuthRequiredError, AuthInvalidError):
            return False
        return True


# ============== Token file ==============

def generate_token() -> str:
    return secrets.token_urlsafe(32)


def validate_token_format(token: str) -> tuple[bool, str]:
    """Check a token is long enough and uses only base64url characters."""
    if len(token) < MIN_TOKEN_LENGTH:
        return False, f"Token too short ({len(token)} chars, minimum {MIN_TOKEN_LENGTH})"
    if not TOKEN_PATTERN.match(token):
        return False, "Invalid characters detected"
    return True, f"Valid ({len(token)} characters)"


def load_token(token_path: Path) -> str | None:
    """Read the token file; a missing or empty file yields None."""
    try:
        token = token_path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    return token or None


def save_token(token_path: Path, token: str) -> None:
    """Write the token file readable by its owner only."""
    token_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    fd = os.open(token_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(token)
    os.chmod(token_path, 0o600)
    logger.info("auth_token_saved", path=str(token_path))


def ensure_token(token_path: Path) -> str:
    """Load the token, generating and saving a fresh one on first run."""
    token = load_token(token_path)
    if token is None:
        token = generate_token()
        save_token(token_path, token)
        logger.info("auth_token_created", path=str(token_path))
    else:
        valid, message = validate_token_format(token)
        if not valid:
            logger.warning("auth_token_weak", path=str(token_path), reason=message)
    return token
