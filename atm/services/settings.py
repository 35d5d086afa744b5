"""Environment-driven settings for the ledger runtime, wallet and price lookups."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from ..defaults import (
    DEFAULT_INITIAL_BALANCE,
    DEFAULT_LEDGER_ADDRESS,
    DEFAULT_LEDGER_OWNER,
    DEFAULT_PRICE_URL,
)


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value, 0)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    return default


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    items = tuple(item.strip() for item in raw.split(",") if item.strip())
    return items


def _default_storage_home() -> Path:
    """Return the storage directory used by the ledger worker."""
    root = Path(__file__).resolve().parent.parent.parent
    return root / ".ledger_state"


@dataclass(frozen=True, slots=True)
class AtmSettings:
    ledger_address: str = DEFAULT_LEDGER_ADDRESS
    ledger_owner: str = DEFAULT_LEDGER_OWNER
    initial_balance: int = DEFAULT_INITIAL_BALANCE
    storage_home: Path = field(default_factory=_default_storage_home)
    wallet_enabled: bool = True
    wallet_accounts: tuple[str, ...] = (DEFAULT_LEDGER_OWNER,)
    price_url: str = DEFAULT_PRICE_URL
    price_timeout: float = 10.0
    worker_rpc_timeout: float = 30.0
    session_max_idle_seconds: float = 900.0
    session_reaper_interval: float = 30.0
    activity_log_max_entries: int = 50

    @classmethod
    def from_env(cls) -> "AtmSettings":
        owner = _env_str("ATM_LEDGER_OWNER", DEFAULT_LEDGER_OWNER)
        storage = os.getenv("ATM_STORAGE_HOME")
        return cls(
            ledger_address=_env_str("ATM_LEDGER_ADDRESS", DEFAULT_LEDGER_ADDRESS),
            ledger_owner=owner,
            initial_balance=max(0, _env_int("ATM_INITIAL_BALANCE_WEI", DEFAULT_INITIAL_BALANCE)),
            storage_home=Path(storage) if storage else _default_storage_home(),
            wallet_enabled=_env_bool("ATM_WALLET_ENABLED", True),
            wallet_accounts=_env_list("ATM_WALLET_ACCOUNTS", (owner,)),
            price_url=_env_str("ATM_PRICE_URL", DEFAULT_PRICE_URL),
            price_timeout=_env_float("ATM_PRICE_TIMEOUT", 10.0),
            worker_rpc_timeout=_env_float("ATM_WORKER_RPC_TIMEOUT", 30.0),
            session_max_idle_seconds=_env_float("ATM_SESSION_MAX_IDLE_SECONDS", 900.0),
            session_reaper_interval=_env_float("ATM_SESSION_REAPER_INTERVAL", 30.0),
            activity_log_max_entries=max(1, _env_int("ATM_ACTIVITY_LOG_MAX_ENTRIES", 50)),
        )


settings = AtmSettings.from_env()
