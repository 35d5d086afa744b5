"""Process-wide access to the ledger worker and the per-client sessions."""

from __future__ import annotations

import atexit
import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from .pricing import PriceClient
from .session import ClientSession
from .settings import AtmSettings, settings as default_settings
from .wallet import discover_wallet
from .worker import LedgerNetwork, LedgerWorker

logger = logging.getLogger(__name__)

WorkerFactory = Callable[..., LedgerWorker]


@dataclass
class SessionEntry:
    session: ClientSession
    last_used: float

    def mark_used(self) -> None:
        self.last_used = time.time()

    def is_idle(self, now: float, idle_seconds: float) -> bool:
        if self.session.pending_action is not None:
            return False
        return (now - self.last_used) >= idle_seconds


class LedgerRuntime:
    """Own the ledger worker (the network) and the client sessions using it."""

    def __init__(
        self,
        settings: AtmSettings | None = None,
        *,
        worker_factory: WorkerFactory | None = None,
        price_client: PriceClient | None = None,
    ):
        self._settings = settings or default_settings
        self._worker_factory: WorkerFactory = worker_factory or LedgerWorker
        self._price_client = price_client or PriceClient(
            self._settings.price_url,
            timeout=self._settings.price_timeout,
        )
        self._network: LedgerNetwork | None = None
        self._worker: LedgerWorker | None = None
        self._network_lock = threading.RLock()
        self._sessions: dict[str, SessionEntry] = {}
        self._sessions_lock = threading.RLock()
        self._max_idle_seconds = self._settings.session_max_idle_seconds
        self._reaper_interval = self._settings.session_reaper_interval
        self._reaper_stop = threading.Event()
        self._reaper_thread: threading.Thread | None = None
        if self._max_idle_seconds > 0 and self._reaper_interval > 0:
            self._start_reaper()

    @property
    def settings(self) -> AtmSettings:
        return self._settings

    def network(self) -> LedgerNetwork:
        """Return the ledger network, starting the worker and deploying on first use."""
        with self._network_lock:
            if self._network is not None and self._worker is not None and not self._worker.dead:
                return self._network
            if self._worker is not None:
                logger.warning("Ledger worker died; starting a replacement.")
                self._stop_worker()

            worker = self._worker_factory(
                storage_home=Path(self._settings.storage_home),
                deployer=self._settings.ledger_owner,
                rpc_timeout=self._settings.worker_rpc_timeout,
            )
            worker.start()
            network = LedgerNetwork(worker)
            try:
                deployed = network.ensure_deployed(
                    self._settings.ledger_address,
                    self._settings.initial_balance,
                )
            except Exception:
                try:
                    worker.stop()
                except Exception:
                    logger.exception("Failed to stop worker after deployment error.")
                raise
            if deployed:
                logger.info("Ledger deployed at %s", self._settings.ledger_address)
            self._worker = worker
            self._network = network
            return network

    def open_session(self, token: str) -> ClientSession:
        """Return the session for `token`, creating it when missing or closed."""
        clean = (token or "").strip()
        if not clean:
            raise ValueError("Session token cannot be empty.")
        with self._sessions_lock:
            entry = self._sessions.get(clean)
            if entry is not None and not entry.session.closed:
                entry.mark_used()
                return entry.session
            session = ClientSession(
                self._discover_wallet,
                address=self._settings.ledger_address,
                price_client=self._price_client,
            )
            self._sessions[clean] = SessionEntry(session=session, last_used=time.time())
            return session

    def get_session(self, token: str) -> ClientSession | None:
        with self._sessions_lock:
            entry = self._sessions.get((token or "").strip())
            if entry is None or entry.session.closed:
                return None
            entry.mark_used()
            return entry.session

    def close_session(self, token: str) -> None:
        with self._sessions_lock:
            entry = self._sessions.pop((token or "").strip(), None)
        if entry is not None:
            entry.session.close()

    def session_count(self) -> int:
        with self._sessions_lock:
            return len(self._sessions)

    def shutdown(self) -> None:
        self._stop_reaper()
        with self._sessions_lock:
            entries = list(self._sessions.values())
            self._sessions.clear()
        for entry in entries:
            entry.session.close()
        with self._network_lock:
            self._stop_worker()

    def _discover_wallet(self):
        self.network()
        return discover_wallet(self.network, self._settings)

    def _stop_worker(self) -> None:
        worker = self._worker
        self._worker = None
        self._network = None
        if worker is None:
            return
        try:
            worker.stop()
        except Exception:  # noqa: BLE001
            logger.exception("Failed to stop ledger worker cleanly.")

    def _start_reaper(self) -> None:
        if self._reaper_thread is not None:
            return
        self._reaper_thread = threading.Thread(
            target=self._reaper_loop,
            name="atm-session-reaper",
            daemon=True,
        )
        self._reaper_thread.start()

    def _stop_reaper(self) -> None:
        if self._reaper_thread is None:
            return
        self._reaper_stop.set()
        self._reaper_thread.join(timeout=self._reaper_interval or 1.0)
        self._reaper_thread = None

    def _reaper_loop(self) -> None:
        while not self._reaper_stop.wait(self._reaper_interval):
            try:
                self._reap_idle_sessions()
            except Exception:  # noqa: BLE001
                logger.exception("Failed to reap idle sessions.")

    def _reap_idle_sessions(self) -> None:
        if self._max_idle_seconds <= 0:
            return
        now = time.time()
        victims: list[ClientSession] = []
        with self._sessions_lock:
            for token, entry in list(self._sessions.items()):
                if entry.is_idle(now, self._max_idle_seconds):
                    victims.append(entry.session)
                    self._sessions.pop(token, None)
        for session in victims:
            session.close()
        if victims:
            logger.info("Closed %d idle session(s).", len(victims))


session_runtime = LedgerRuntime()

atexit.register(session_runtime.shutdown)
