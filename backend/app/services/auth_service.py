from __future__ import annotations

import hmac
import logging

import bcrypt

LOGGER = logging.getLogger("athan_notes.auth")

BCRYPT_ROUNDS = 10
BCRYPT_MAX_PASSWORD_BYTES = 72


def normalize_password_hash(raw_hash: str) -> str:
    # Hashes copied into shell-style env files often keep `\$` escapes.
    return raw_hash.replace("\\", "").strip()


def hash_password(password: str, *, rounds: int = BCRYPT_ROUNDS) -> str:
    if not password:
        raise ValueError("password must not be empty")
    if len(password.encode("utf-8")) > BCRYPT_MAX_PASSWORD_BYTES:
        raise ValueError(f"password must be at most {BCRYPT_MAX_PASSWORD_BYTES} bytes")
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("ascii")


class PasswordVerifier:
    def __init__(self, *, username: str | None, password_hash: str | None) -> None:
        self._username = username
        self._password_hash = (
            normalize_password_hash(password_hash) if password_hash is not None else None
        )

    def verify(self, username: str, password: str) -> bool:
        if self._username is None or self._password_hash is None:
            LOGGER.error("authentication credentials are not configured")
            return False

        if not hmac.compare_digest(username.encode("utf-8"), self._username.encode("utf-8")):
            return False
        if len(password.encode("utf-8")) > BCRYPT_MAX_PASSWORD_BYTES:
            return False

        try:
            return bcrypt.checkpw(password.encode("utf-8"), self._password_hash.encode("utf-8"))
        except ValueError:
            LOGGER.error("configured password hash is not a valid bcrypt hash", exc_info=True)
            return False
