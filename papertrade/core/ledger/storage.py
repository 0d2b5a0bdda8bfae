from __future__ import annotations

import errno
import json
import logging
import os
from pathlib import Path
from typing import Any, Protocol

from pydantic import ValidationError

from papertrade.core.ledger.schema import ACCOUNT_SCHEMA_VERSION, Account

logger = logging.getLogger(__name__)

DEFAULT_ACCOUNT_PATH = ".data/account.json"


class PersistenceError(RuntimeError):
    """Raised when the account blob cannot be written or is unreadable by this version."""


class AccountStorage(Protocol):
    def load(self) -> Account | None:
        """Return the persisted account, or None when nothing usable is stored."""

    def save(self, account: Account) -> None:
        """Persist the account; raise PersistenceError on failure."""

    def clear(self) -> None:
        ...


class MemoryAccountStorage:
    def __init__(self, account: Account | None = None) -> None:
        self._payload: dict[str, Any] | None = None
        self.saves = 0
        if account is not None:
            self.save(account)

    def load(self) -> Account | None:
        if self._payload is None:
            return None
        return account_from_payload(self._payload)

    def save(self, account: Account) -> None:
        self._payload = account_to_payload(account)
        self.saves += 1

    def clear(self) -> None:
        self._payload = None


class JsonFileAccountStorage:
    """Single named JSON blob on disk, replaced atomically on every save."""

    def __init__(self, path: str = DEFAULT_ACCOUNT_PATH) -> None:
        self.path = Path(path)

    def load(self) -> Account | None:
        if not self.path.exists():
            return None
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Unreadable account blob at %s: %s", self.path, exc)
            self._move_aside()
            return None

        if not isinstance(data, dict):
            logger.warning("Account blob at %s is not a JSON object", self.path)
            self._move_aside()
            return None

        try:
            account = account_from_payload(data)
        except ValidationError as exc:
            logger.warning("Account blob at %s failed validation: %s", self.path, exc)
            self._move_aside()
            return None

        if account_to_payload(account) != data:
            self.save(account)
        return account

    def save(self, account: Account) -> None:
        payload = account_to_payload(account)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False, indent=2, sort_keys=True)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            _replace(tmp_path, self.path)
        except OSError as exc:
            raise PersistenceError(f"failed to write account blob {self.path}: {exc}") from exc

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            raise PersistenceError(f"failed to remove account blob {self.path}: {exc}") from exc

    def _move_aside(self) -> None:
        target = self.path.with_name(self.path.name + ".corrupt")
        try:
            os.replace(self.path, target)
        except OSError as exc:
            logger.warning("Could not move unreadable account blob %s aside: %s", self.path, exc)
            return
        logger.warning("Moved unreadable account blob to %s", target)


def account_to_payload(account: Account) -> dict[str, Any]:
    return account.model_dump(mode="json")


def account_from_payload(data: dict[str, Any]) -> Account:
    version = data.get("version", ACCOUNT_SCHEMA_VERSION)
    if isinstance(version, int) and version > ACCOUNT_SCHEMA_VERSION:
        raise PersistenceError(f"account blob version {version} is newer than supported {ACCOUNT_SCHEMA_VERSION}")

    cleaned = dict(data)
    cleaned["version"] = ACCOUNT_SCHEMA_VERSION
    rows = cleaned.get("holdings") or []
    if isinstance(rows, list):
        cleaned["holdings"] = [row for row in rows if not _is_empty_row(row)]
    return Account.model_validate(cleaned)


def _is_empty_row(row: Any) -> bool:
    if not isinstance(row, dict):
        return False
    try:
        return float(row.get("shares", 0.0)) <= 0.0
    except (TypeError, ValueError):
        return False


def _replace(tmp_path: Path, path: Path) -> None:
    try:
        os.replace(tmp_path, path)
    except OSError as exc:
        # Some Docker bind-mounted file targets cannot be atomically replaced.
        if exc.errno not in {errno.EBUSY, errno.EXDEV, errno.EPERM}:
            raise
        with tmp_path.open("r", encoding="utf-8") as src, path.open("w", encoding="utf-8") as dst:
            dst.write(src.read())
        tmp_path.unlink(missing_ok=True)
