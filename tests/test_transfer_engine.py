import asyncio
import unittest
from decimal import Decimal

from credit_ledger.ledger.engine import TransferEngine, build_ledger_entry, normalize_amount
from credit_ledger.ledger.errors import (
    AccountNotFound,
    ConcurrencyConflict,
    DuplicateReference,
    InsufficientCredit,
    InvalidAmount,
    PersistenceFailure,
    SameAccountTransfer,
)
from credit_ledger.ledger.locks import AccountLocks
from credit_ledger.ledger.memory import (
    InMemoryAccountStore,
    InMemoryLedger,
    InMemoryTransactionLog,
    InMemoryUnitOfWork,
)


def factory_with(ledger, accounts_cls=None, log_cls=None, uow_cls=InMemoryUnitOfWork, **kwargs):
    """Unit-of-work factory that swaps in test doubles for the store or the log."""

    calls = []

    def factory():
        uow = uow_cls(ledger)
        if accounts_cls is not None:
            uow.accounts = accounts_cls(ledger, **kwargs)
        if log_cls is not None:
            uow.transactions = log_cls(ledger)
        calls.append(uow)
        return uow

    factory.calls = calls
    return factory


class FailingLog(InMemoryTransactionLog):
    async def append(self, entry):
        raise PersistenceFailure("append transaction record", "disk full")


class FailingCommitUnitOfWork(InMemoryUnitOfWork):
    async def commit(self):
        raise PersistenceFailure("commit", "connection reset")


class SlowSaveStore(InMemoryAccountStore):
    def __init__(self, ledger, delay=0.05, stats=None, started=None):
        super().__init__(ledger)
        self._delay = delay
        self._stats = stats if stats is not None else {"in_flight": 0, "max_in_flight": 0}
        self._started = started

    async def save(self, account):
        self._stats["in_flight"] += 1
        self._stats["max_in_flight"] = max(self._stats["max_in_flight"], self._stats["in_flight"])
        if self._started is not None:
            self._started.set()
        try:
            await asyncio.sleep(self._delay)
        finally:
            self._stats["in_flight"] -= 1
        await super().save(account)


class ConflictingStore(InMemoryAccountStore):
    def __init__(self, ledger, conflicts=None):
        super().__init__(ledger)
        self._conflicts = conflicts

    async def save(self, account):
        if self._conflicts["remaining"] > 0:
            self._conflicts["remaining"] -= 1
            raise ConcurrencyConflict(account.account_number)
        await super().save(account)


class YieldingStore(InMemoryAccountStore):
    async def find_by_account_number(self, account_number, for_update=False):
        account = await super().find_by_account_number(account_number, for_update)
        await asyncio.sleep(0)
        return account


class SlowLookupStore(InMemoryAccountStore):
    async def find_by_account_number(self, account_number, for_update=False):
        await asyncio.sleep(10)
        return await super().find_by_account_number(account_number, for_update)


class TransferEngineTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.ledger = InMemoryLedger()
        self.alice = self.ledger.seed("ACC-A", 1000)
        self.bob = self.ledger.seed("ACC-B", 500)
        self.engine = TransferEngine(self.ledger.unit_of_work, retry_backoff=0)

    def assertUntouched(self):
        self.assertEqual(self.ledger.balance_of("ACC-A"), Decimal("1000"))
        self.assertEqual(self.ledger.balance_of("ACC-B"), Decimal("500"))
        self.assertEqual(self.ledger.get("ACC-A").version, 0)
        self.assertEqual(self.ledger.get("ACC-B").version, 0)
        self.assertEqual(self.ledger.entries, [])

    async def test_transfer_moves_credit_and_records_one_entry(self):
        receipt = await self.engine.transfer("ACC-A", "ACC-B", 300)

        self.assertEqual(self.ledger.balance_of("ACC-A"), Decimal("700"))
        self.assertEqual(self.ledger.balance_of("ACC-B"), Decimal("800"))
        self.assertEqual(self.ledger.total_balance(), Decimal("1500"))

        self.assertEqual(len(self.ledger.entries), 1)
        entry = self.ledger.entries[0]
        self.assertEqual(entry.sender_id, self.alice.id)
        self.assertEqual(entry.receiver_id, self.bob.id)
        self.assertEqual(entry.amount, Decimal("300"))
        self.assertEqual(entry.status, "completed")

        self.assertEqual(receipt.transaction_id, entry.transaction_id)
        self.assertEqual(receipt.sender_balance, Decimal("700"))
        self.assertEqual(receipt.receiver_balance, Decimal("800"))

    async def test_transfer_bumps_account_versions(self):
        await self.engine.transfer("ACC-A", "ACC-B", Decimal("0.01"))
        self.assertEqual(self.ledger.get("ACC-A").version, 1)
        self.assertEqual(self.ledger.get("ACC-B").version, 1)

    async def test_reference_is_kept_and_refs_are_trimmed(self):
        receipt = await self.engine.transfer(" ACC-A ", "ACC-B\n", "12.50", reference="INV-42")
        self.assertEqual(receipt.reference, "INV-42")
        self.assertEqual(receipt.amount, Decimal("12.50"))
        self.assertEqual(self.ledger.entries[0].reference, "INV-42")

    async def test_whole_balance_can_be_moved(self):
        await self.engine.transfer("ACC-A", "ACC-B", 1000)
        self.assertEqual(self.ledger.balance_of("ACC-A"), Decimal("0"))
        self.assertEqual(self.ledger.balance_of("ACC-B"), Decimal("1500"))

    async def test_insufficient_credit_leaves_balances_untouched(self):
        with self.assertRaises(InsufficientCredit) as ctx:
            await self.engine.transfer("ACC-A", "ACC-B", "1000.01")
        self.assertEqual(ctx.exception.available, Decimal("1000"))
        self.assertEqual(ctx.exception.requested, Decimal("1000.01"))
        self.assertUntouched()

    async def test_zero_and_negative_amounts_are_invalid(self):
        for amount in (0, Decimal("0"), -5, "-0.01"):
            with self.subTest(amount=amount):
                with self.assertRaises(InvalidAmount):
                    await self.engine.transfer("ACC-A", "ACC-B", amount)
        self.assertUntouched()

    async def test_non_finite_and_malformed_amounts_are_invalid(self):
        for amount in (float("nan"), float("inf"), "abc", None, True, "0.001", "1e20"):
            with self.subTest(amount=amount):
                with self.assertRaises(InvalidAmount):
                    await self.engine.transfer("ACC-A", "ACC-B", amount)
        self.assertUntouched()

    async def test_unknown_sender_is_not_found(self):
        with self.assertRaises(AccountNotFound) as ctx:
            await self.engine.transfer("ACC-MISSING", "ACC-B", 10)
        self.assertEqual(ctx.exception.role, "sender")
        self.assertUntouched()

    async def test_unknown_receiver_is_not_found(self):
        with self.assertRaises(AccountNotFound) as ctx:
            await self.engine.transfer("ACC-A", "ACC-MISSING", 10)
        self.assertEqual(ctx.exception.role, "receiver")
        self.assertUntouched()

    async def test_blank_reference_is_not_found(self):
        with self.assertRaises(AccountNotFound):
            await self.engine.transfer("   ", "ACC-B", 10)
        self.assertUntouched()

    async def test_transfer_to_same_account_is_rejected(self):
        with self.assertRaises(SameAccountTransfer):
            await self.engine.transfer("ACC-A", "ACC-A", 10)
        self.assertUntouched()

    async def test_repeated_rejections_never_mutate_state(self):
        requests = [
            ("ACC-A", "ACC-B", 0),
            ("ACC-A", "ACC-B", 5000),
            ("ACC-X", "ACC-B", 10),
            ("ACC-A", "ACC-A", 10),
        ]
        for _ in range(5):
            for sender, receiver, amount in requests:
                with self.assertRaises((InvalidAmount, InsufficientCredit, AccountNotFound, SameAccountTransfer)):
                    await self.engine.transfer(sender, receiver, amount)
        self.assertUntouched()

    async def test_reused_reference_is_rejected_before_any_write(self):
        self.ledger.seed("ACC-C", 200)
        self.ledger.seed("ACC-D", 0)
        await self.engine.transfer("ACC-A", "ACC-B", 100, reference="INV-7")

        with self.assertRaises(DuplicateReference) as ctx:
            await self.engine.transfer("ACC-C", "ACC-D", 50, reference="INV-7")
        self.assertEqual(ctx.exception.reference, "INV-7")

        self.assertEqual(self.ledger.balance_of("ACC-C"), Decimal("200"))
        self.assertEqual(self.ledger.balance_of("ACC-D"), Decimal("0"))
        self.assertEqual(self.ledger.get("ACC-C").version, 0)
        self.assertEqual(len(self.ledger.entries), 1)
        self.assertEqual(self.ledger.entries[0].amount, Decimal("100"))

    async def test_log_refuses_a_reference_committed_by_another_unit(self):
        first = self.ledger.unit_of_work()
        second = self.ledger.unit_of_work()
        alice = self.ledger.get("ACC-A")
        bob = self.ledger.get("ACC-B")
        entry = build_ledger_entry(alice, bob, Decimal("1"), "INV-9")

        await first.transactions.append(entry)
        await second.transactions.append(build_ledger_entry(bob, alice, Decimal("2"), "INV-9"))
        with self.assertRaises(DuplicateReference):
            await first.transactions.append(entry)

        await first.commit()
        with self.assertRaises(DuplicateReference):
            await second.commit()
        await second.rollback()

        self.assertEqual(len(self.ledger.entries), 1)
        self.assertEqual(self.ledger.entries[0].amount, Decimal("1"))
        with self.assertRaises(DuplicateReference):
            await self.ledger.unit_of_work().transactions.append(entry)

    async def test_concurrent_overdraft_only_one_succeeds(self):
        ledger = InMemoryLedger()
        ledger.seed("A", 100)
        ledger.seed("B", 0)
        engine = TransferEngine(ledger.unit_of_work, retry_backoff=0)

        results = await asyncio.gather(
            engine.transfer("A", "B", 60),
            engine.transfer("A", "B", 60),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        self.assertEqual(len(failures), 1)
        self.assertIsInstance(failures[0], InsufficientCredit)
        self.assertEqual(ledger.balance_of("A"), Decimal("40"))
        self.assertEqual(ledger.balance_of("B"), Decimal("60"))
        self.assertEqual(len(ledger.entries), 1)

    async def test_separate_processes_are_reconciled_by_version_check(self):
        ledger = InMemoryLedger()
        ledger.seed("A", 100)
        ledger.seed("B", 0)
        factory = factory_with(ledger, accounts_cls=YieldingStore)
        # Separate lock registries: nothing in-process serializes the two.
        first = TransferEngine(factory, locks=AccountLocks(), retry_backoff=0)
        second = TransferEngine(factory, locks=AccountLocks(), retry_backoff=0)

        results = await asyncio.gather(
            first.transfer("A", "B", 60),
            second.transfer("A", "B", 60),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        self.assertEqual(len(failures), 1)
        self.assertIsInstance(failures[0], InsufficientCredit)
        self.assertEqual(ledger.balance_of("A"), Decimal("40"))
        self.assertEqual(ledger.balance_of("B"), Decimal("60"))
        self.assertEqual(len(ledger.entries), 1)
        # The loser had to start over at least once.
        self.assertGreaterEqual(len(factory.calls), 3)

    async def test_disjoint_pairs_run_in_parallel(self):
        self.ledger.seed("ACC-C", 100)
        self.ledger.seed("ACC-D", 100)
        stats = {"in_flight": 0, "max_in_flight": 0}
        engine = TransferEngine(factory_with(self.ledger, accounts_cls=SlowSaveStore, stats=stats))

        await asyncio.gather(
            engine.transfer("ACC-A", "ACC-B", 10),
            engine.transfer("ACC-C", "ACC-D", 10),
        )

        self.assertEqual(stats["max_in_flight"], 2)
        self.assertEqual(self.ledger.balance_of("ACC-A"), Decimal("990"))
        self.assertEqual(self.ledger.balance_of("ACC-D"), Decimal("110"))

    async def test_transfers_sharing_an_account_are_serialized(self):
        self.ledger.seed("ACC-C", 0)
        stats = {"in_flight": 0, "max_in_flight": 0}
        engine = TransferEngine(factory_with(self.ledger, accounts_cls=SlowSaveStore, stats=stats))

        await asyncio.gather(
            engine.transfer("ACC-A", "ACC-B", 10),
            engine.transfer("ACC-A", "ACC-C", 10),
        )

        self.assertEqual(stats["max_in_flight"], 1)
        self.assertEqual(self.ledger.balance_of("ACC-A"), Decimal("980"))

    async def test_failed_log_append_rolls_back_balances(self):
        engine = TransferEngine(factory_with(self.ledger, log_cls=FailingLog))

        with self.assertRaises(PersistenceFailure) as ctx:
            await engine.transfer("ACC-A", "ACC-B", 300)

        self.assertFalse(ctx.exception.in_doubt)
        self.assertTrue(ctx.exception.retryable)
        self.assertUntouched()

    async def test_failed_commit_is_reported_in_doubt(self):
        engine = TransferEngine(factory_with(self.ledger, uow_cls=FailingCommitUnitOfWork))

        with self.assertRaises(PersistenceFailure) as ctx:
            await engine.transfer("ACC-A", "ACC-B", 300, reference="REF-1")

        self.assertTrue(ctx.exception.in_doubt)
        self.assertEqual(ctx.exception.reference, "REF-1")
        self.assertUntouched()

    async def test_slow_save_times_out_as_persistence_failure(self):
        engine = TransferEngine(
            factory_with(self.ledger, accounts_cls=SlowSaveStore, delay=1.0),
            persistence_timeout=0.05,
        )

        with self.assertRaises(PersistenceFailure) as ctx:
            await engine.transfer("ACC-A", "ACC-B", 300)

        self.assertEqual(ctx.exception.operation, "save sender account")
        self.assertUntouched()

    async def test_slow_lookup_times_out_as_persistence_failure(self):
        engine = TransferEngine(
            factory_with(self.ledger, accounts_cls=SlowLookupStore),
            persistence_timeout=0.05,
        )

        with self.assertRaises(PersistenceFailure):
            await engine.transfer("ACC-A", "ACC-B", 300)
        self.assertUntouched()

    async def test_conflict_is_retried(self):
        conflicts = {"remaining": 1}
        factory = factory_with(self.ledger, accounts_cls=ConflictingStore, conflicts=conflicts)
        engine = TransferEngine(factory, retry_backoff=0)

        await engine.transfer("ACC-A", "ACC-B", 300)

        self.assertEqual(len(factory.calls), 2)
        self.assertEqual(self.ledger.balance_of("ACC-A"), Decimal("700"))
        self.assertEqual(len(self.ledger.entries), 1)

    async def test_conflict_retries_are_bounded(self):
        conflicts = {"remaining": 100}
        factory = factory_with(self.ledger, accounts_cls=ConflictingStore, conflicts=conflicts)
        engine = TransferEngine(factory, max_retries=3, retry_backoff=0)

        with self.assertRaises(ConcurrencyConflict):
            await engine.transfer("ACC-A", "ACC-B", 300)

        self.assertEqual(len(factory.calls), 3)
        self.assertUntouched()

    async def test_cancel_during_persistence_still_completes(self):
        started = asyncio.Event()
        engine = TransferEngine(
            factory_with(self.ledger, accounts_cls=SlowSaveStore, started=started)
        )

        task = asyncio.ensure_future(engine.transfer("ACC-A", "ACC-B", 300))
        await started.wait()
        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task

        self.assertEqual(self.ledger.balance_of("ACC-A"), Decimal("700"))
        self.assertEqual(self.ledger.balance_of("ACC-B"), Decimal("800"))
        self.assertEqual(len(self.ledger.entries), 1)

    async def test_repeated_cancel_during_persistence_still_completes(self):
        started = asyncio.Event()
        engine = TransferEngine(
            factory_with(self.ledger, accounts_cls=SlowSaveStore, started=started, delay=0.1)
        )

        task = asyncio.ensure_future(engine.transfer("ACC-A", "ACC-B", 300))
        await started.wait()
        task.cancel()
        await asyncio.sleep(0.02)
        self.assertFalse(task.done())
        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task

        self.assertEqual(self.ledger.balance_of("ACC-A"), Decimal("700"))
        self.assertEqual(self.ledger.balance_of("ACC-B"), Decimal("800"))
        self.assertEqual(self.ledger.get("ACC-A").version, 1)
        self.assertEqual(len(self.ledger.entries), 1)

    async def test_cancel_before_persistence_abandons_transfer(self):
        locks = AccountLocks()
        engine = TransferEngine(factory_with(self.ledger, accounts_cls=SlowLookupStore), locks=locks)

        task = asyncio.ensure_future(engine.transfer("ACC-A", "ACC-B", 300))
        await asyncio.sleep(0.01)
        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task

        self.assertUntouched()
        self.assertEqual(len(locks), 0)


class NormalizeAmountTests(unittest.TestCase):
    def test_accepts_ints_floats_strings_and_decimals(self):
        self.assertEqual(normalize_amount(5), Decimal("5.00"))
        self.assertEqual(normalize_amount(0.1), Decimal("0.10"))
        self.assertEqual(normalize_amount(" 2.5 "), Decimal("2.50"))
        self.assertEqual(normalize_amount(Decimal("7.25")), Decimal("7.25"))

    def test_rejects_sub_cent_precision(self):
        with self.assertRaises(InvalidAmount) as ctx:
            normalize_amount("0.005")
        self.assertIn("two decimal places", ctx.exception.reason)


if __name__ == "__main__":
    unittest.main()
