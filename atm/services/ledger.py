from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List

from contracting.client import ContractingClient
from contracting.storage.driver import Driver

from ..defaults import ASSESSMENT_CONTRACT, DEFAULT_LEDGER_OWNER

logger = logging.getLogger(__name__)

EVENT_KINDS = ("Deposit", "Withdraw", "BalanceDoubled")
MUTATING_FUNCTIONS = ("deposit", "withdraw", "double_balance")

_ADDRESS_PATTERN = re.compile(r"^con_[A-Za-z0-9_]{1,60}$")
_FAILURE_PATTERN = re.compile(
    r"(Unauthorized|InvalidAmount|InsufficientBalance|LedgerInvariant):([^\s'\"]*)"
)


def _valid_ledger_address(address: str) -> bool:
    return bool(_ADDRESS_PATTERN.fullmatch(address or ""))


class LedgerError(Exception):
    """Base class for failures reported by the balance ledger."""

    def details(self) -> Dict[str, Any]:
        return {}


class Unauthorized(LedgerError):
    """The caller is not the ledger owner."""

    def __init__(self, caller: str = "", owner: str = ""):
        self.caller = caller
        self.owner = owner
        super().__init__(f"Caller '{caller}' is not the ledger owner.")

    def details(self) -> Dict[str, Any]:
        return {"caller": self.caller, "owner": self.owner}


class InsufficientBalance(LedgerError):
    """A withdrawal asked for more than the ledger holds."""

    def __init__(self, balance: int, amount: int):
        self.balance = balance
        self.amount = amount
        super().__init__(f"Cannot withdraw {amount} from a balance of {balance}.")

    def details(self) -> Dict[str, Any]:
        return {"balance": self.balance, "amount": self.amount}


class InvalidAmount(LedgerError, ValueError):
    def __init__(self, amount: Any):
        self.amount = amount
        super().__init__(f"Amount must be a non-negative integer, got {amount!r}.")

    def details(self) -> Dict[str, Any]:
        return {"amount": self.amount}


class LedgerInvariantError(LedgerError):
    """A post-condition check failed. Never recoverable."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Ledger invariant violated during {operation}.")

    def details(self) -> Dict[str, Any]:
        return {"operation": self.operation}


class LedgerNotDeployedError(LedgerError):
    def __init__(self, address: str):
        self.address = address
        super().__init__(f"No ledger is deployed at '{address}'.")

    def details(self) -> Dict[str, Any]:
        return {"address": self.address}


LEDGER_ERRORS: Dict[str, type[LedgerError]] = {
    cls.__name__: cls
    for cls in (
        Unauthorized,
        InsufficientBalance,
        InvalidAmount,
        LedgerInvariantError,
        LedgerNotDeployedError,
    )
}


def rebuild_ledger_error(type_name: str, details: Dict[str, Any]) -> LedgerError | None:
    """Reconstruct a typed ledger error from its serialized name and details."""
    cls = LEDGER_ERRORS.get(type_name)
    if cls is None:
        return None
    try:
        return cls(**details)
    except TypeError:
        return None


@dataclass(frozen=True, slots=True)
class LedgerEvent:
    address: str
    kind: str
    value: int
    caller: str


LedgerObserver = Callable[[LedgerEvent], None]


def _require_amount(amount: Any) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(amount)
    return amount


def _translate_failure(exc: Exception, *, caller: str, owner: str, operation: str) -> Exception:
    """Map a contract assertion message onto the ledger error taxonomy."""
    match = _FAILURE_PATTERN.search(str(exc))
    if match is None:
        return exc
    code, payload = match.groups()
    if code == "Unauthorized":
        return Unauthorized(caller=caller, owner=owner)
    if code == "InsufficientBalance":
        balance, _, amount = payload.partition(":")
        return InsufficientBalance(balance=int(balance), amount=int(amount))
    if code == "InvalidAmount":
        try:
            return InvalidAmount(int(payload))
        except ValueError:
            return InvalidAmount(payload)
    return LedgerInvariantError(payload or operation)


class LedgerService:
    """Facade around `ContractingClient` hosting the Assessment ledger."""

    def __init__(self, storage_home: Path, deployer: str = DEFAULT_LEDGER_OWNER):
        clean_deployer = (deployer or "").strip()
        if not clean_deployer:
            raise ValueError("Deployer identity cannot be empty.")
        Path(storage_home).mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._deployer = clean_deployer
        self._driver = Driver(storage_home=Path(storage_home))
        self._client = LedgerService._create_client(self._driver, clean_deployer)
        self._events: List[LedgerEvent] = []
        self._observers: List[LedgerObserver] = []

    @staticmethod
    def _create_client(driver: Driver, signer: str) -> ContractingClient:
        return ContractingClient(driver=driver, signer=signer)

    @property
    def deployer(self) -> str:
        return self._deployer

    def is_deployed(self, address: str) -> bool:
        with self._lock:
            return self._driver.get_contract(address) is not None

    def deploy(self, address: str, initial_balance: int) -> None:
        """Deploy the ledger at `address`, owned by the deployer."""
        clean_address = (address or "").strip()
        if not _valid_ledger_address(clean_address):
            raise ValueError(
                "Ledger address must start with 'con_' and contain only letters, digits or underscores."
            )
        balance = _require_amount(initial_balance)
        if balance < 0:
            raise InvalidAmount(balance)

        with self._lock:
            if self._driver.get_contract(clean_address) is not None:
                raise ValueError(f"A contract is already deployed at '{clean_address}'.")
            self._client.submit(
                ASSESSMENT_CONTRACT,
                name=clean_address,
                constructor_args={"initial_balance": balance},
            )
            self._driver.commit()
        logger.info(
            "Deployed ledger at %s owned by %s with balance %s",
            clean_address,
            self._deployer,
            balance,
        )

    def ensure_deployed(self, address: str, initial_balance: int) -> bool:
        """Deploy the ledger unless one already exists at `address`."""
        with self._lock:
            if self.is_deployed(address):
                return False
            self.deploy(address, initial_balance)
            return True

    def owner_of(self, address: str) -> str:
        return str(self._read(address, "get_owner"))

    def get_balance(self, address: str) -> int:
        return int(self._read(address, "get_balance"))

    def deposit(self, address: str, amount: int, signer: str) -> LedgerEvent:
        return self._mutate(address, "deposit", signer, amount=_require_amount(amount))

    def withdraw(self, address: str, amount: int, signer: str) -> LedgerEvent:
        return self._mutate(address, "withdraw", signer, amount=_require_amount(amount))

    def double_balance(self, address: str, signer: str) -> LedgerEvent:
        return self._mutate(address, "double_balance", signer)

    def events(self, address: str | None = None) -> List[LedgerEvent]:
        with self._lock:
            if address is None:
                return list(self._events)
            return [event for event in self._events if event.address == address]

    def subscribe(self, observer: LedgerObserver) -> Callable[[], None]:
        """Register an event observer; returns a callable that removes it."""
        with self._lock:
            self._observers.append(observer)

        def unsubscribe() -> None:
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return unsubscribe

    def _contract(self, address: str):
        contract = self._client.get_contract(address)
        if contract is None:
            raise LedgerNotDeployedError(address)
        return contract

    def _read(self, address: str, function: str) -> Any:
        with self._lock:
            contract = self._contract(address)
            return getattr(contract, function)()

    def _mutate(self, address: str, function: str, signer: str, **kwargs: Any) -> LedgerEvent:
        clean_signer = (signer or "").strip()
        if not clean_signer:
            raise ValueError("Signer cannot be empty.")

        with self._lock:
            contract = self._contract(address)
            try:
                result = getattr(contract, function)(signer=clean_signer, **kwargs)
            except Exception as exc:
                translated = _translate_failure(
                    exc,
                    caller=clean_signer,
                    owner=self.owner_of(address),
                    operation=function,
                )
                if translated is exc:
                    raise
                raise translated from exc
            self._driver.commit()

            event = LedgerEvent(
                address=address,
                kind=str(result["kind"]),
                value=int(result["value"]),
                caller=clean_signer,
            )
            self._events.append(event)
            observers = list(self._observers)

        logger.info("%s %s by %s on %s", event.kind, event.value, clean_signer, address)
        for observer in observers:
            observer(event)
        return event
