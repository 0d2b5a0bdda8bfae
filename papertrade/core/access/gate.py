from __future__ import annotations

import hashlib
import logging
import secrets
from collections.abc import Sequence
from typing import Protocol

logger = logging.getLogger(__name__)

_PBKDF2_ITERATIONS = 120_000


class AuthenticationProvider(Protocol):
    name: str

    def authenticate(self, secret: str | None) -> bool:
        ...


class PinAuthenticationProvider:
    """Numeric PIN check against a salted PBKDF2 hash."""

    name = "pin"

    def __init__(self, pin_hash: str, salt: str, iterations: int = _PBKDF2_ITERATIONS) -> None:
        self.pin_hash = pin_hash
        self.salt = salt
        self.iterations = int(iterations)

    @classmethod
    def from_pin(cls, pin: str, *, salt: str | None = None) -> "PinAuthenticationProvider":
        pin_text = str(pin or "").strip()
        if not pin_text.isdigit() or not 4 <= len(pin_text) <= 8:
            raise ValueError("PIN must be 4 to 8 digits")
        salt_value = salt or secrets.token_hex(16)
        return cls(pin_hash=hash_pin(pin_text, salt_value), salt=salt_value)

    def authenticate(self, secret: str | None) -> bool:
        candidate = str(secret or "").strip()
        if not candidate:
            return False
        digest = hash_pin(candidate, self.salt, iterations=self.iterations)
        return secrets.compare_digest(digest, self.pin_hash)


class StaticAuthenticationProvider:
    """Deterministic provider standing in for a platform biometric prompt."""

    def __init__(self, result: bool, name: str = "static") -> None:
        self.result = bool(result)
        self.name = name
        self.calls = 0

    def authenticate(self, secret: str | None) -> bool:
        self.calls += 1
        return self.result


class AccessGate:
    """Locked until one provider accepts. Has no effect on ledger state."""

    def __init__(self, providers: Sequence[AuthenticationProvider], *, locked: bool = True) -> None:
        if not providers:
            raise ValueError("AccessGate needs at least one authentication provider")
        self.providers = list(providers)
        self.locked = bool(locked)
        self.failed_attempts = 0

    def unlock(self, secret: str | None = None) -> bool:
        for provider in self.providers:
            if provider.authenticate(secret):
                self.locked = False
                self.failed_attempts = 0
                logger.info("Unlocked via %s", provider.name)
                return True
        self.failed_attempts += 1
        logger.info("Unlock attempt failed (%d so far)", self.failed_attempts)
        return False

    def lock(self) -> None:
        self.locked = True


def hash_pin(pin: str, salt: str, iterations: int = _PBKDF2_ITERATIONS) -> str:
    return hashlib.pbkdf2_hmac("sha256", pin.encode("utf-8"), salt.encode("utf-8"), iterations).hex()
