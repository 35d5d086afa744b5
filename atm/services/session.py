"""Client-side session state machine for the ATM page.

A session moves strictly forward through its phases::

    NO_WALLET -> WALLET_FOUND -> ACCOUNT_CONNECTED -> LEDGER_BOUND -> BALANCE_LOADED

Only `reset()` goes back, by rediscovering from scratch. Mutations leave
and re-enter BALANCE_LOADED implicitly: the displayed balance is only ever
replaced by a fresh ledger read after the transaction is confirmed.

The USD estimate is a best-effort background task owned by the session. A
refresh or teardown cancels it, so a stale lookup never writes into the
session. A failed lookup is logged and leaves the estimate unset, which the
page renders as "Loading...".
"""

from __future__ import annotations

import asyncio
import enum
import logging
from decimal import Decimal
from typing import Callable

from .ledger import LedgerEvent
from .pricing import PriceClient, PriceUnavailable
from .units import ONE_ETHER, format_ether, format_usd, usd_estimate, wei_to_ether
from .wallet import LedgerBinding, LocalWallet, WalletUnavailable

logger = logging.getLogger(__name__)

WalletDiscovery = Callable[[], LocalWallet | None]


class SessionPhase(str, enum.Enum):
    NO_WALLET = "no_wallet"
    WALLET_FOUND = "wallet_found"
    ACCOUNT_CONNECTED = "account_connected"
    LEDGER_BOUND = "ledger_bound"
    BALANCE_LOADED = "balance_loaded"


_PHASE_ORDER = {phase: index for index, phase in enumerate(SessionPhase)}


class SessionStateError(RuntimeError):
    """An action was requested that the current phase does not allow."""


def describe_event(event: LedgerEvent) -> str:
    """One-line confirmation text for a ledger mutation."""
    if event.kind == "BalanceDoubled":
        return f"Balance doubled to {format_ether(event.value)} ETH."
    return f"{event.kind} of {format_ether(event.value)} ETH confirmed."


class ClientSession:
    """Own the wallet, account, ledger binding and displayed balance for one page."""

    def __init__(
        self,
        discover: WalletDiscovery,
        *,
        address: str,
        price_client: PriceClient,
    ):
        self._discover = discover
        self.address = address
        self._price_client = price_client
        self.phase = SessionPhase.NO_WALLET
        self.wallet: LocalWallet | None = None
        self.account: str | None = None
        self.binding: LedgerBinding | None = None
        self.balance: int | None = None
        self.usd_estimate: Decimal | None = None
        self.price_error: str | None = None
        self.owner: str | None = None
        self._price_task: asyncio.Task | None = None
        self._pending: str | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_action(self) -> str | None:
        return self._pending

    @property
    def balance_text(self) -> str | None:
        if self.balance is None:
            return None
        return format_ether(self.balance)

    @property
    def usd_text(self) -> str | None:
        if self.usd_estimate is None:
            return None
        return format_usd(self.usd_estimate)

    def _advance(self, phase: SessionPhase) -> None:
        if _PHASE_ORDER[phase] < _PHASE_ORDER[self.phase]:
            raise SessionStateError(
                f"Cannot move back from {self.phase.value} to {phase.value}."
            )
        self.phase = phase

    def _require_open(self) -> None:
        if self._closed:
            raise SessionStateError("Session has been closed.")

    async def start(self) -> SessionPhase:
        """Discover the wallet and adopt an already-authorized account."""
        self._require_open()
        if self.phase is not SessionPhase.NO_WALLET or self.wallet is not None:
            return self.phase

        wallet = await asyncio.to_thread(self._discover)
        self._require_open()
        if wallet is None:
            logger.info("No wallet found for session.")
            return self.phase

        self.wallet = wallet
        self._advance(SessionPhase.WALLET_FOUND)
        accounts = await wallet.list_accounts()
        self._adopt_account(accounts)
        return self.phase

    def _adopt_account(self, accounts: list[str]) -> None:
        if not accounts:
            logger.info("No account found")
            return
        self.account = accounts[0]
        logger.info("Account connected: %s", self.account)
        if _PHASE_ORDER[self.phase] < _PHASE_ORDER[SessionPhase.ACCOUNT_CONNECTED]:
            self._advance(SessionPhase.ACCOUNT_CONNECTED)

    async def connect(self) -> SessionPhase:
        """Authorize an account, bind the ledger and load the balance."""
        self._require_open()
        if self.wallet is None:
            raise WalletUnavailable()
        if self.phase not in (SessionPhase.WALLET_FOUND, SessionPhase.ACCOUNT_CONNECTED):
            raise SessionStateError(f"Cannot connect while {self.phase.value}.")

        accounts = await self.wallet.request_accounts()
        self._adopt_account(accounts)
        if self.account is None:
            raise SessionStateError("The wallet did not expose any account.")

        self.binding = LedgerBinding(wallet=self.wallet, address=self.address, signer=self.account)
        self._advance(SessionPhase.LEDGER_BOUND)
        await self.refresh_balance()
        return self.phase

    async def refresh_balance(self) -> int:
        """Re-read the balance and start a fresh USD lookup.

        Also the way out of LEDGER_BOUND when the read made by `connect()`
        failed.
        """
        self._require_open()
        if self.binding is None:
            raise SessionStateError("Ledger is not bound yet.")

        if self.owner is None:
            self.owner = await self.binding.get_owner()
        balance = await self.binding.get_balance()
        self._require_open()
        self.balance = balance
        self._advance(SessionPhase.BALANCE_LOADED)
        self._restart_price_lookup(balance)
        return balance

    def _restart_price_lookup(self, balance: int) -> None:
        self._cancel_price_task()
        self.usd_estimate = None
        self.price_error = None
        self._price_task = asyncio.get_running_loop().create_task(
            self._load_usd_estimate(balance),
            name="atm-usd-estimate",
        )

    async def _load_usd_estimate(self, balance: int) -> Decimal | None:
        try:
            rate = await self._price_client.fetch_rate()
        except PriceUnavailable as exc:
            logger.warning("Error fetching ETH to USD rate: %s", exc)
            if not self._closed:
                self.price_error = str(exc)
            return None

        estimate = usd_estimate(wei_to_ether(balance), rate)
        if self._closed or balance != self.balance:
            return None
        self.usd_estimate = estimate
        return estimate

    async def wait_for_price(self) -> Decimal | None:
        """Wait for the current USD lookup; None when it failed or was cancelled."""
        task = self._price_task
        if task is None:
            return self.usd_estimate
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                return None
            raise

    def _cancel_price_task(self) -> None:
        task = self._price_task
        self._price_task = None
        if task is not None and not task.done():
            task.cancel()

    async def deposit(self, amount: int = ONE_ETHER) -> LedgerEvent:
        return await self._submit("deposit", amount)

    async def withdraw(self, amount: int = ONE_ETHER) -> LedgerEvent:
        return await self._submit("withdraw", amount)

    async def double_balance(self) -> LedgerEvent:
        return await self._submit("double_balance")

    async def _submit(self, action: str, *args) -> LedgerEvent:
        self._require_open()
        if self.phase is not SessionPhase.BALANCE_LOADED or self.binding is None:
            raise SessionStateError(f"Cannot {action} while {self.phase.value}.")
        if self._pending is not None:
            raise SessionStateError(f"A {self._pending} transaction is still pending.")

        self._pending = action
        try:
            event = await getattr(self.binding, action)(*args)
        finally:
            self._pending = None
        logger.info("Confirmed %s %s for %s", event.kind, event.value, self.account)
        await self.refresh_balance()
        return event

    async def reset(self) -> SessionPhase:
        """Drop everything acquired so far and rediscover the wallet."""
        self._require_open()
        if self._pending is not None:
            raise SessionStateError("Cannot reset while a transaction is pending.")
        self._cancel_price_task()
        self.phase = SessionPhase.NO_WALLET
        self.wallet = None
        self.account = None
        self.binding = None
        self.balance = None
        self.usd_estimate = None
        self.price_error = None
        self.owner = None
        return await self.start()

    def close(self) -> None:
        """Tear down the session; pending lookups are cancelled."""
        self._closed = True
        self._cancel_price_task()
