from __future__ import annotations

import time
from typing import Dict, List

import reflex as rx

from .services import (
    AuthorizationRejected,
    ClientSession,
    InsufficientBalance,
    LedgerError,
    LedgerWorkerInvocationError,
    SessionPhase,
    Unauthorized,
    WalletUnavailable,
    session_runtime,
)
from .services.session import describe_event
from .services.units import format_ether

ACTIVITY_LOG_MAX_ENTRIES = session_runtime.settings.activity_log_max_entries
LOG_LEVEL_COLORS = {
    "info": "#3b82f6",
    "success": "#10b981",
    "error": "#ef4444",
    "warning": "#f59e0b",
}
TRANSACTION_LABELS = {
    "deposit": "Deposit 1 ETH",
    "withdraw": "Withdraw 1 ETH",
    "double_balance": "Double Balance",
}


def describe_ledger_error(exc: LedgerError) -> str:
    if isinstance(exc, InsufficientBalance):
        return (
            f"Insufficient balance: {format_ether(exc.balance)} ETH available, "
            f"{format_ether(exc.amount)} ETH requested."
        )
    if isinstance(exc, Unauthorized):
        return f"Only the ledger owner can change the balance ({exc.caller} is not the owner)."
    return str(exc)


class AtmState(rx.State):
    """Mirror of the visitor's ClientSession for rendering."""

    session_ready: bool = False
    phase: str = SessionPhase.NO_WALLET.value
    account: str = ""
    owner: str = ""
    balance_text: str = ""
    usd_text: str = ""
    price_failed: bool = False
    pending_action: str = ""
    log_entries: List[Dict[str, str]] = []

    def _token(self) -> str:
        return self.router.session.client_token

    def _session(self) -> ClientSession:
        return session_runtime.open_session(self._token())

    def _sync(self, session: ClientSession) -> None:
        self.phase = session.phase.value
        self.account = session.account or ""
        self.owner = session.owner or ""
        self.balance_text = session.balance_text or ""
        self.usd_text = session.usd_text or ""
        self.price_failed = session.price_error is not None
        self.pending_action = session.pending_action or ""

    def _log_event(self, level: str, action: str, message: str, detail: str = "") -> None:
        normalized_level = (level or "").lower() or "info"
        detail = (detail or "").strip()
        if len(detail) > 4000:
            detail = detail[:4000] + "…"
        entry = {
            "timestamp": time.strftime("%Y-%m-%d %H:%M:%S", time.localtime()),
            "level": normalized_level,
            "level_label": normalized_level.title(),
            "action": action,
            "message": message,
            "detail": detail,
            "color": LOG_LEVEL_COLORS.get(normalized_level, LOG_LEVEL_COLORS["info"]),
        }
        entries = self.log_entries + [entry]
        if len(entries) > ACTIVITY_LOG_MAX_ENTRIES:
            entries = entries[-ACTIVITY_LOG_MAX_ENTRIES:]
        self.log_entries = entries

    def _log_success(self, action: str, message: str, detail: str = "") -> None:
        self._log_event("success", action, message, detail)

    def _log_worker_failure(
        self,
        action: str,
        prefix: str,
        exc: LedgerWorkerInvocationError,
    ) -> str:
        core = exc.remote_message or exc.remote_type
        message = f"{prefix}{core}"
        detail = exc.pretty_remote_traceback()
        self._log_event("error", action, message, detail)
        return message

    def _log_generic_failure(self, action: str, prefix: str, exc: Exception) -> str:
        message = f"{prefix}{exc}"
        self._log_event("error", action, message)
        return message

    def clear_logs(self):
        self.log_entries = []
        return [rx.toast.success("Activity log cleared.")]

    async def on_load(self):
        session = self._session()
        try:
            await session.start()
        except LedgerWorkerInvocationError as exc:
            self.session_ready = True
            message = self._log_worker_failure("wallet", "Wallet discovery failed: ", exc)
            return [rx.toast.error(message)]
        except Exception as exc:
            self.session_ready = True
            message = self._log_generic_failure("wallet", "Wallet discovery failed: ", exc)
            return [rx.toast.error(message)]

        self._sync(session)
        self.session_ready = True
        if session.phase is SessionPhase.NO_WALLET:
            self._log_event("warning", "wallet", "No wallet found.")
        elif session.account:
            self._log_event("info", "wallet", f"Account connected: {session.account}")
        if session.phase is SessionPhase.LEDGER_BOUND:
            return [type(self).retry_balance]
        if session.phase is SessionPhase.BALANCE_LOADED:
            return [type(self).watch_price]
        return []

    async def retry_balance(self):
        session = self._session()
        try:
            await session.refresh_balance()
        except LedgerError as exc:
            message = describe_ledger_error(exc)
            self._log_event("error", "balance", message)
            return [rx.toast.error(message)]
        except LedgerWorkerInvocationError as exc:
            message = self._log_worker_failure("balance", "Balance refresh failed: ", exc)
            return [rx.toast.error(message)]
        except Exception as exc:
            message = self._log_generic_failure("balance", "Balance refresh failed: ", exc)
            return [rx.toast.error(message)]
        finally:
            self._sync(session)
        return [type(self).watch_price]

    async def connect_account(self):
        session = self._session()
        try:
            await session.connect()
        except WalletUnavailable as exc:
            self._log_generic_failure("connect", "", exc)
            return [rx.window_alert(str(exc))]
        except AuthorizationRejected as exc:
            self._log_generic_failure("connect", "", exc)
            return [rx.window_alert(str(exc))]
        except LedgerError as exc:
            message = describe_ledger_error(exc)
            self._log_event("error", "connect", message)
            return [rx.toast.error(message)]
        except LedgerWorkerInvocationError as exc:
            message = self._log_worker_failure("connect", "Connect failed: ", exc)
            return [rx.toast.error(message)]
        except Exception as exc:
            message = self._log_generic_failure("connect", "Connect failed: ", exc)
            return [rx.toast.error(message)]
        finally:
            self._sync(session)

        self._log_success("connect", f"Account connected: {session.account}")
        return [type(self).watch_price]

    async def submit_transaction(self, action: str):
        label = TRANSACTION_LABELS.get(action)
        if label is None:
            return
        session = self._session()
        self.pending_action = action
        yield

        try:
            event = await getattr(session, action)()
        except LedgerError as exc:
            message = describe_ledger_error(exc)
            self._log_event("error", action, f"{label} failed: {message}")
            self._sync(session)
            yield rx.toast.error(message)
            return
        except LedgerWorkerInvocationError as exc:
            message = self._log_worker_failure(action, f"{label} failed: ", exc)
            self._sync(session)
            yield rx.toast.error(message)
            return
        except Exception as exc:
            message = self._log_generic_failure(action, f"{label} failed: ", exc)
            self._sync(session)
            yield rx.toast.error(message)
            return

        # Confirmations are toasted only; the activity log is not a history.
        self._sync(session)
        yield rx.toast.success(describe_event(event))
        yield type(self).watch_price

    async def reset_session(self):
        session = self._session()
        try:
            await session.reset()
        except Exception as exc:
            message = self._log_generic_failure("reset", "Reset failed: ", exc)
            return [rx.toast.error(message)]
        self._sync(session)
        self._log_event("info", "reset", "Session reset.")
        return []

    @rx.event(background=True)
    async def watch_price(self):
        async with self:
            token = self._token()
        session = session_runtime.get_session(token)
        if session is None:
            return
        await session.wait_for_price()
        async with self:
            self._sync(session)
            if session.price_error:
                self._log_event("warning", "price", "USD estimate unavailable.", session.price_error)
