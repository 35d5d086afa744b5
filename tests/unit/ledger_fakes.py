"""In-process stand-ins for the ledger worker and price collaborator."""

from __future__ import annotations

import asyncio
import threading
from decimal import Decimal
from pathlib import Path

from atm.services.ledger import InsufficientBalance, LedgerEvent, Unauthorized
from atm.services.pricing import PriceUnavailable

OWNER = "0xowner"
STRANGER = "0xstranger"


class FakeNetwork:
    """Mirror of LedgerNetwork backed by a plain integer."""

    def __init__(self, owner: str = OWNER, balance: int = 0):
        self.owner = owner
        self.balance = balance
        self.calls: list[tuple] = []
        self.deployed: dict[str, int] = {}
        self.hold: threading.Event | None = None
        self.entered = threading.Event()
        self.read_failures = 0

    def _wait_if_held(self) -> None:
        self.entered.set()
        if self.hold is not None:
            self.hold.wait(timeout=5)

    def ensure_deployed(self, address: str, initial_balance: int) -> bool:
        self.calls.append(("ensure_deployed", address, initial_balance))
        if address in self.deployed:
            return False
        self.deployed[address] = initial_balance
        self.balance = initial_balance
        return True

    def owner_of(self, address: str) -> str:
        return self.owner

    def get_balance(self, address: str) -> int:
        self.calls.append(("get_balance", address))
        if self.read_failures > 0:
            self.read_failures -= 1
            raise RuntimeError("Ledger worker became unavailable.")
        return self.balance

    def deposit(self, address: str, amount: int, signer: str) -> LedgerEvent:
        self.calls.append(("deposit", address, amount, signer))
        self._wait_if_held()
        if signer != self.owner:
            raise Unauthorized(caller=signer, owner=self.owner)
        self.balance += amount
        return LedgerEvent(address=address, kind="Deposit", value=amount, caller=signer)

    def withdraw(self, address: str, amount: int, signer: str) -> LedgerEvent:
        self.calls.append(("withdraw", address, amount, signer))
        self._wait_if_held()
        if signer != self.owner:
            raise Unauthorized(caller=signer, owner=self.owner)
        if amount > self.balance:
            raise InsufficientBalance(balance=self.balance, amount=amount)
        self.balance -= amount
        return LedgerEvent(address=address, kind="Withdraw", value=amount, caller=signer)

    def double_balance(self, address: str, signer: str) -> LedgerEvent:
        self.calls.append(("double_balance", address, signer))
        self._wait_if_held()
        if signer != self.owner:
            raise Unauthorized(caller=signer, owner=self.owner)
        self.balance *= 2
        return LedgerEvent(address=address, kind="BalanceDoubled", value=self.balance, caller=signer)


class FakeWorker:
    """Test double for LedgerWorker that runs in-process."""

    instances: list["FakeWorker"] = []

    def __init__(self, storage_home: Path, deployer: str, rpc_timeout: float | None = None):
        self.storage_home = storage_home
        self.deployer = deployer
        self.rpc_timeout = rpc_timeout
        self.started = False
        self.stopped = False
        self._dead = False
        self.ledger = FakeNetwork(owner=deployer)
        FakeWorker.instances.append(self)

    @property
    def dead(self) -> bool:
        return self._dead

    def start(self) -> None:
        self.started = True

    def invoke(self, command: str, *args, **kwargs):
        if self.stopped:
            raise RuntimeError("Ledger worker has been stopped.")
        handler = getattr(self.ledger, command)
        return handler(*args, **kwargs)

    def stop(self) -> None:
        self.stopped = True
        self._dead = True


class FakePriceClient:
    def __init__(self, rate: str | None = "2000.50", *, blocked: bool = False):
        self.rate = None if rate is None else Decimal(rate)
        self.calls = 0
        self.release = asyncio.Event()
        if not blocked:
            self.release.set()

    async def fetch_rate(self) -> Decimal:
        self.calls += 1
        await self.release.wait()
        if self.rate is None:
            raise PriceUnavailable("price service unreachable")
        return self.rate
