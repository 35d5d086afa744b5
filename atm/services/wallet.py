"""Development wallet that signs ledger calls on behalf of its accounts."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List

from .ledger import LedgerEvent
from .settings import AtmSettings
from .worker import LedgerNetwork

logger = logging.getLogger(__name__)

ApprovalPrompt = Callable[[List[str]], bool]
NetworkResolver = Callable[[], LedgerNetwork]

READ_FUNCTIONS = frozenset({"get_balance", "owner_of"})
WRITE_FUNCTIONS = frozenset({"deposit", "withdraw", "double_balance"})


class WalletUnavailable(RuntimeError):
    """No wallet collaborator is present in this environment."""

    def __init__(self, message: str = "A wallet is required to connect."):
        super().__init__(message)


class AuthorizationRejected(PermissionError):
    """The wallet refused to expose or sign for an account."""


def _approve_all(_accounts: List[str]) -> bool:
    return True


class LocalWallet:
    """Hold account identities and the subset the app has been authorized to use.

    The app never sees key material: it only learns account identities and
    asks the wallet to submit calls as one of them. The network is resolved
    on every call, so a replaced worker is picked up without rediscovery.
    """

    def __init__(
        self,
        network: NetworkResolver,
        accounts: Iterable[str],
        *,
        authorized: Iterable[str] = (),
        prompt: ApprovalPrompt | None = None,
    ):
        self._network = network
        self._accounts = [item for item in dict.fromkeys(a.strip() for a in accounts) if item]
        if not self._accounts:
            raise ValueError("A wallet needs at least one account.")
        preauthorized = set(authorized)
        unknown = preauthorized - set(self._accounts)
        if unknown:
            raise ValueError(f"Cannot pre-authorize unknown accounts: {sorted(unknown)}")
        self._authorized = [account for account in self._accounts if account in preauthorized]
        self._prompt = prompt or _approve_all

    async def list_accounts(self) -> List[str]:
        """Return the already-authorized accounts without prompting."""
        return list(self._authorized)

    async def request_accounts(self) -> List[str]:
        """Ask the wallet holder to authorize the app; may prompt."""
        if not self._authorized:
            approved = await asyncio.to_thread(self._prompt, list(self._accounts))
            if not approved:
                raise AuthorizationRejected("The wallet rejected the connection request.")
            self._authorized = list(self._accounts)
        return list(self._authorized)

    async def call(self, function: str, address: str):
        if function not in READ_FUNCTIONS:
            raise ValueError(f"'{function}' is not a read-only ledger function.")
        return await asyncio.to_thread(self._dispatch, function, address)

    async def send(self, account: str, function: str, address: str, *args) -> LedgerEvent:
        """Sign and submit a mutating call as `account`; returns once confirmed."""
        if function not in WRITE_FUNCTIONS:
            raise ValueError(f"'{function}' is not a mutating ledger function.")
        if account not in self._authorized:
            raise AuthorizationRejected(f"Account '{account}' is not authorized for this app.")
        return await asyncio.to_thread(self._dispatch, function, address, *args, account)

    def _dispatch(self, function: str, *args):
        return getattr(self._network(), function)(*args)


@dataclass(frozen=True, slots=True)
class LedgerBinding:
    """Callable reference to the ledger at a fixed address with a fixed signer."""

    wallet: LocalWallet
    address: str
    signer: str

    async def get_balance(self) -> int:
        return int(await self.wallet.call("get_balance", self.address))

    async def get_owner(self) -> str:
        return str(await self.wallet.call("owner_of", self.address))

    async def deposit(self, amount: int) -> LedgerEvent:
        return await self.wallet.send(self.signer, "deposit", self.address, amount)

    async def withdraw(self, amount: int) -> LedgerEvent:
        return await self.wallet.send(self.signer, "withdraw", self.address, amount)

    async def double_balance(self) -> LedgerEvent:
        return await self.wallet.send(self.signer, "double_balance", self.address)


def discover_wallet(network: NetworkResolver, settings: AtmSettings) -> LocalWallet | None:
    """Return the configured wallet, or None when no wallet is installed."""
    if not settings.wallet_enabled or not settings.wallet_accounts:
        logger.info("No wallet configured; sessions start without one.")
        return None
    return LocalWallet(network, settings.wallet_accounts)
