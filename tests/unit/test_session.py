from __future__ import annotations

import asyncio
import threading
import unittest
from decimal import Decimal

from atm.services.ledger import InsufficientBalance, Unauthorized
from atm.services.session import ClientSession, SessionPhase, SessionStateError, describe_event
from atm.services.units import ONE_ETHER
from atm.services.wallet import AuthorizationRejected, LocalWallet, WalletUnavailable

from ledger_fakes import OWNER, STRANGER, FakeNetwork, FakePriceClient

ADDRESS = "con_assessment"


class ClientSessionTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.network = FakeNetwork(owner=OWNER, balance=ONE_ETHER)
        self.price = FakePriceClient("2000.50")

    def _session(self, wallet: LocalWallet | None) -> ClientSession:
        session = ClientSession(lambda: wallet, address=ADDRESS, price_client=self.price)
        self.addCleanup(session.close)
        return session

    def _wallet(self, accounts=(OWNER,), **kwargs) -> LocalWallet:
        return LocalWallet(lambda: self.network, accounts, **kwargs)

    async def _loaded_session(self, accounts=(OWNER,)) -> ClientSession:
        session = self._session(self._wallet(accounts))
        await session.start()
        await session.connect()
        return session


class NoWalletTest(ClientSessionTestCase):
    async def test_no_wallet_exposes_no_action(self) -> None:
        session = self._session(None)

        phase = await session.start()

        self.assertIs(phase, SessionPhase.NO_WALLET)
        with self.assertRaises(WalletUnavailable):
            await session.connect()
        with self.assertRaises(SessionStateError):
            await session.deposit()
        with self.assertRaises(SessionStateError):
            await session.refresh_balance()
        self.assertEqual(self.network.calls, [])


class ConnectFlowTest(ClientSessionTestCase):
    async def test_wallet_without_authorized_account_waits_for_connect(self) -> None:
        session = self._session(self._wallet())

        phase = await session.start()

        self.assertIs(phase, SessionPhase.WALLET_FOUND)
        self.assertIsNone(session.account)
        self.assertEqual(self.network.calls, [])

    async def test_preauthorized_account_connects_without_binding(self) -> None:
        session = self._session(self._wallet(authorized=(OWNER,)))

        phase = await session.start()

        self.assertIs(phase, SessionPhase.ACCOUNT_CONNECTED)
        self.assertEqual(session.account, OWNER)
        self.assertIsNone(session.binding)
        self.assertIsNone(session.balance)

    async def test_connect_reaches_balance_loaded(self) -> None:
        session = await self._loaded_session()

        self.assertIs(session.phase, SessionPhase.BALANCE_LOADED)
        self.assertEqual(session.account, OWNER)
        self.assertEqual(session.balance, ONE_ETHER)
        self.assertEqual(session.balance_text, "1")
        self.assertEqual(session.binding.address, ADDRESS)
        self.assertEqual(session.binding.signer, OWNER)
        self.assertEqual(session.owner, OWNER)

        estimate = await session.wait_for_price()
        self.assertEqual(estimate, Decimal("2000.50"))
        self.assertEqual(session.usd_text, "$2000.50")

    async def test_rejected_authorization_keeps_wallet_found(self) -> None:
        session = self._session(self._wallet(prompt=lambda accounts: False))
        await session.start()

        with self.assertRaises(AuthorizationRejected):
            await session.connect()

        self.assertIs(session.phase, SessionPhase.WALLET_FOUND)
        self.assertIsNone(session.binding)

    async def test_discovery_runs_off_the_event_loop(self) -> None:
        loop_thread = threading.get_ident()
        seen = []
        wallet = self._wallet()

        def discover():
            seen.append(threading.get_ident())
            return wallet

        session = ClientSession(discover, address=ADDRESS, price_client=self.price)
        self.addCleanup(session.close)

        self.assertIs(await session.start(), SessionPhase.WALLET_FOUND)
        self.assertEqual(len(seen), 1)
        self.assertNotEqual(seen[0], loop_thread)

    async def test_failed_balance_read_can_be_retried(self) -> None:
        session = self._session(self._wallet())
        await session.start()
        self.network.read_failures = 1

        with self.assertRaises(RuntimeError):
            await session.connect()
        self.assertIs(session.phase, SessionPhase.LEDGER_BOUND)
        self.assertIsNone(session.balance)

        self.assertEqual(await session.refresh_balance(), ONE_ETHER)
        self.assertIs(session.phase, SessionPhase.BALANCE_LOADED)

    async def test_connect_is_not_repeatable_once_bound(self) -> None:
        session = await self._loaded_session()

        with self.assertRaises(SessionStateError):
            await session.connect()


class PriceLookupTest(ClientSessionTestCase):
    async def test_price_failure_leaves_usd_loading(self) -> None:
        self.price = FakePriceClient(None)
        session = await self._loaded_session()

        estimate = await session.wait_for_price()

        self.assertIsNone(estimate)
        self.assertIs(session.phase, SessionPhase.BALANCE_LOADED)
        self.assertEqual(session.balance_text, "1")
        self.assertIsNone(session.usd_estimate)
        self.assertIsNone(session.usd_text)
        self.assertIn("unreachable", session.price_error)

    async def test_balance_is_shown_before_price_resolves(self) -> None:
        self.price = FakePriceClient("3000", blocked=True)
        session = await self._loaded_session()

        self.assertEqual(session.balance, ONE_ETHER)
        self.assertIsNone(session.usd_estimate)

        self.price.release.set()
        self.assertEqual(await session.wait_for_price(), Decimal("3000.00"))

    async def test_close_cancels_pending_lookup(self) -> None:
        self.price = FakePriceClient("3000", blocked=True)
        session = await self._loaded_session()

        session.close()
        self.price.release.set()

        self.assertIsNone(await session.wait_for_price())
        self.assertIsNone(session.usd_estimate)
        with self.assertRaises(SessionStateError):
            await session.deposit()

    async def test_refresh_replaces_previous_lookup(self) -> None:
        self.price = FakePriceClient("3000", blocked=True)
        session = await self._loaded_session()

        await session.refresh_balance()
        self.price.release.set()
        await session.wait_for_price()

        self.assertEqual(self.price.calls, 2)
        self.assertEqual(session.usd_estimate, Decimal("3000.00"))


class MutationTest(ClientSessionTestCase):
    async def test_deposit_refreshes_balance_from_ledger(self) -> None:
        session = await self._loaded_session()
        self.network.calls.clear()

        event = await session.deposit()

        self.assertEqual(event.kind, "Deposit")
        self.assertEqual(event.value, ONE_ETHER)
        self.assertEqual(session.balance, 2 * ONE_ETHER)
        self.assertIs(session.phase, SessionPhase.BALANCE_LOADED)
        self.assertEqual(
            self.network.calls,
            [("deposit", ADDRESS, ONE_ETHER, OWNER), ("get_balance", ADDRESS)],
        )

    async def test_deposit_then_withdraw_restores_balance(self) -> None:
        session = await self._loaded_session()

        await session.deposit()
        await session.withdraw()

        self.assertEqual(session.balance, ONE_ETHER)

    async def test_double_balance_twice(self) -> None:
        session = await self._loaded_session()

        first = await session.double_balance()
        second = await session.double_balance()

        self.assertEqual(first.value, 2 * ONE_ETHER)
        self.assertEqual(second.value, 4 * ONE_ETHER)
        self.assertEqual(session.balance_text, "4")
        self.assertEqual(describe_event(second), "Balance doubled to 4 ETH.")

    async def test_confirmation_text(self) -> None:
        session = await self._loaded_session()

        deposited = await session.deposit()
        withdrawn = await session.withdraw(ONE_ETHER // 2)

        self.assertEqual(describe_event(deposited), "Deposit of 1 ETH confirmed.")
        self.assertEqual(describe_event(withdrawn), "Withdraw of 0.5 ETH confirmed.")

    async def test_no_optimistic_update_while_pending(self) -> None:
        session = await self._loaded_session()
        self.network.hold = threading.Event()

        task = asyncio.create_task(session.deposit())
        loop = asyncio.get_running_loop()
        deadline = loop.time() + 5
        while not self.network.entered.is_set() and loop.time() < deadline:
            await asyncio.sleep(0.01)

        self.assertEqual(session.balance, ONE_ETHER)
        self.assertEqual(session.pending_action, "deposit")
        with self.assertRaises(SessionStateError):
            await session.withdraw()

        self.network.hold.set()
        await task

        self.assertIsNone(session.pending_action)
        self.assertEqual(session.balance, 2 * ONE_ETHER)

    async def test_insufficient_balance_leaves_display_untouched(self) -> None:
        session = await self._loaded_session()
        self.network.calls.clear()

        with self.assertRaises(InsufficientBalance) as ctx:
            await session.withdraw(5 * ONE_ETHER)

        self.assertEqual(ctx.exception.balance, ONE_ETHER)
        self.assertEqual(ctx.exception.amount, 5 * ONE_ETHER)
        self.assertEqual(session.balance, ONE_ETHER)
        self.assertIsNone(session.pending_action)
        self.assertNotIn(("get_balance", ADDRESS), self.network.calls)

    async def test_non_owner_account_is_rejected_by_ledger(self) -> None:
        session = await self._loaded_session(accounts=(STRANGER,))

        for action in ("deposit", "withdraw", "double_balance"):
            with self.subTest(action=action):
                with self.assertRaises(Unauthorized):
                    await getattr(session, action)()
                self.assertEqual(session.balance, ONE_ETHER)
                self.assertEqual(self.network.balance, ONE_ETHER)


class ResetTest(ClientSessionTestCase):
    async def test_reset_rediscovers_from_scratch(self) -> None:
        session = await self._loaded_session()
        await session.wait_for_price()

        phase = await session.reset()

        # The wallet still remembers the authorization granted on connect.
        self.assertIs(phase, SessionPhase.ACCOUNT_CONNECTED)
        self.assertIsNone(session.binding)
        self.assertIsNone(session.balance)
        self.assertIsNone(session.usd_estimate)


if __name__ == "__main__":
    unittest.main()
