"""Monitored accounts and the store that persists them."""

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, SecretStr, field_validator

from .exceptions import AccountNotFoundError

logger = logging.getLogger(__name__)


class MonitoredAccount(BaseModel):
    """An exchange account whose private stream is watched."""
    id: int
    name: str
    api_key: SecretStr
    api_secret: SecretStr
    webhook_url: Optional[str] = None
    active: bool = True

    @field_validator('api_key', 'api_secret', mode='before')
    @classmethod
    def strip_credentials(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator('webhook_url', mode='before')
    @classmethod
    def blank_webhook_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def label(self) -> str:
        return f"{self.name} (ID: {self.id})"

    def masked_key(self) -> str:
        key = self.api_key.get_secret_value()
        if len(key) <= 8:
            return "*" * len(key)
        return f"{key[:4]}...{key[-4:]}"

    def to_record(self) -> Dict[str, Any]:
        record = self.model_dump()
        record['api_key'] = self.api_key.get_secret_value()
        record['api_secret'] = self.api_secret.get_secret_value()
        return record


class AccountStore(ABC):
    """Persistent account records plus the set of accounts with a live connection."""

    @abstractmethod
    async def get_account(self, account_id: int) -> Optional[MonitoredAccount]:
        ...

    @abstractmethod
    async def list_accounts(self) -> List[MonitoredAccount]:
        ...

    @abstractmethod
    async def list_active_ids(self) -> List[int]:
        """Accounts whose connection was active when the process last ran."""

    @abstractmethod
    async def set_active(self, account_id: int, active: bool) -> None:
        """Record (or clear) the connection-active flag. Idempotent."""

    @abstractmethod
    async def add_account(
        self,
        name: str,
        api_key: str,
        api_secret: str,
        webhook_url: Optional[str] = None,
        active: bool = True
    ) -> MonitoredAccount:
        ...

    @abstractmethod
    async def update_account(
        self,
        account_id: int,
        name: Optional[str] = None,
        webhook_url: Optional[str] = None,
        active: Optional[bool] = None
    ) -> MonitoredAccount:
        ...

    @abstractmethod
    async def remove_account(self, account_id: int) -> None:
        ...


class JsonAccountStore(AccountStore):
    """
    Account store backed by a single JSON document.

    Layout::

        {"next_id": 3, "accounts": [...], "active_connections": [1]}

    Writes go to a temporary file that replaces the original, so a crash
    never leaves a truncated document behind.
    """

    def __init__(self, path: str):
        self.path = path
        self._lock = asyncio.Lock()
        logger.info(f"JsonAccountStore initialized at {self.path}")

    def _read(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {"next_id": 1, "accounts": [], "active_connections": []}

        with open(self.path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        data.setdefault("next_id", 1)
        data.setdefault("accounts", [])
        data.setdefault("active_connections", [])
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, self.path)

    @staticmethod
    def _find(data: Dict[str, Any], account_id: int) -> Optional[Dict[str, Any]]:
        for record in data["accounts"]:
            if record["id"] == account_id:
                return record
        return None

    async def get_account(self, account_id: int) -> Optional[MonitoredAccount]:
        async with self._lock:
            record = self._find(self._read(), account_id)
        return MonitoredAccount(**record) if record else None

    async def list_accounts(self) -> List[MonitoredAccount]:
        async with self._lock:
            data = self._read()
        return [MonitoredAccount(**record) for record in data["accounts"]]

    async def list_active_ids(self) -> List[int]:
        async with self._lock:
            data = self._read()
        return list(data["active_connections"])

    async def set_active(self, account_id: int, active: bool) -> None:
        async with self._lock:
            data = self._read()
            connections = data["active_connections"]

            if active and account_id not in connections:
                connections.append(account_id)
            elif not active and account_id in connections:
                connections.remove(account_id)
            else:
                return

            self._write(data)

    async def add_account(
        self,
        name: str,
        api_key: str,
        api_secret: str,
        webhook_url: Optional[str] = None,
        active: bool = True
    ) -> MonitoredAccount:
        async with self._lock:
            data = self._read()
            account = MonitoredAccount(
                id=data["next_id"],
                name=name,
                api_key=api_key,
                api_secret=api_secret,
                webhook_url=webhook_url,
                active=active
            )
            data["accounts"].append(account.to_record())
            data["next_id"] += 1
            self._write(data)

        logger.info(f"Added account {account.label}")
        return account

    async def update_account(
        self,
        account_id: int,
        name: Optional[str] = None,
        webhook_url: Optional[str] = None,
        active: Optional[bool] = None
    ) -> MonitoredAccount:
        async with self._lock:
            data = self._read()
            record = self._find(data, account_id)
            if record is None:
                raise AccountNotFoundError(account_id)

            if name is not None:
                record["name"] = name
            if webhook_url is not None:
                record["webhook_url"] = webhook_url or None
            if active is not None:
                record["active"] = active

            account = MonitoredAccount(**record)
            self._write(data)

        logger.info(f"Updated account {account.label}")
        return account

    async def remove_account(self, account_id: int) -> None:
        async with self._lock:
            data = self._read()
            record = self._find(data, account_id)
            if record is None:
                raise AccountNotFoundError(account_id)

            data["accounts"].remove(record)
            if account_id in data["active_connections"]:
                data["active_connections"].remove(account_id)
            self._write(data)

        logger.info(f"Removed account {account_id}")
