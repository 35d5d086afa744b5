from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    "LedgerService",
    "LedgerEvent",
    "LedgerError",
    "Unauthorized",
    "InsufficientBalance",
    "InvalidAmount",
    "LedgerInvariantError",
    "LedgerNotDeployedError",
    "LedgerNetwork",
    "LedgerWorker",
    "LedgerWorkerInvocationError",
    "LedgerWorkerTimeoutError",
    "LocalWallet",
    "LedgerBinding",
    "WalletUnavailable",
    "AuthorizationRejected",
    "discover_wallet",
    "PriceClient",
    "PriceUnavailable",
    "ClientSession",
    "SessionPhase",
    "SessionStateError",
    "LedgerRuntime",
    "session_runtime",
    "AtmSettings",
]

_EXPORT_MAP = {
    "ledger": {
        "LedgerService",
        "LedgerEvent",
        "LedgerError",
        "Unauthorized",
        "InsufficientBalance",
        "InvalidAmount",
        "LedgerInvariantError",
        "LedgerNotDeployedError",
    },
    "worker": {
        "LedgerNetwork",
        "LedgerWorker",
        "LedgerWorkerInvocationError",
        "LedgerWorkerTimeoutError",
    },
    "wallet": {
        "LocalWallet",
        "LedgerBinding",
        "WalletUnavailable",
        "AuthorizationRejected",
        "discover_wallet",
    },
    "pricing": {"PriceClient", "PriceUnavailable"},
    "session": {"ClientSession", "SessionPhase", "SessionStateError"},
    "runtime": {"LedgerRuntime", "session_runtime"},
    "settings": {"AtmSettings"},
}


def __getattr__(name: str) -> Any:
    for module_name, symbols in _EXPORT_MAP.items():
        if name in symbols:
            module = import_module(f".{module_name}", __name__)
            value = getattr(module, name)
            globals()[name] = value
            return value
    raise AttributeError(name)
