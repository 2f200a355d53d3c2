"""
Tests for the record ledger.
"""

import threading
import unittest

from bamboohold import (
    AccessControlList,
    ClassificationRecord,
    EncryptedType,
    IndexOutOfBounds,
    InMemoryLedgerStore,
    MockCoprocessor,
    NoSubmission,
    RecordLedger,
    Unauthorized,
)

CONTRACT = "0x" + "b4" * 20
ALICE = "0x" + "a1" * 20
BOB = "0x" + "b0" * 20


class TestRecordLedger(unittest.TestCase):
    """Tests for history, counters and grants issued on append."""

    def setUp(self):
        self.cop = MockCoprocessor()
        self.store = InMemoryLedgerStore()
        self.acl = AccessControlList(self.store)
        self.ledger = RecordLedger(self.store, self.acl, CONTRACT)

    def _handles(self, owned: bool = True):
        handles = [
            self.cop.trivial_encrypt(1, EncryptedType.EUINT16),
            self.cop.trivial_encrypt(2, EncryptedType.EUINT16),
            self.cop.trivial_encrypt(3, EncryptedType.EUINT16),
            self.cop.trivial_encrypt(77, EncryptedType.EUINT32),
            self.cop.trivial_encrypt(0, EncryptedType.EUINT8),
        ]
        if owned:
            for h in handles:
                self.acl.allow_creator(h, CONTRACT)
        return handles

    def _append(self, principal=ALICE, timestamp=1000):
        return self.ledger.append(principal, *self._handles(), timestamp)

    def test_append_returns_sequential_indexes(self):
        self.assertEqual([self._append(timestamp=t) for t in (1, 2, 3)], [0, 1, 2])
        self.assertEqual(self.ledger.count(ALICE), 3)
        self.assertEqual(self.ledger.submission_count(ALICE), 3)

    def test_latest_is_last_appended(self):
        self._append(timestamp=10)
        self._append(timestamp=20)
        self.assertEqual(self.ledger.latest(ALICE).timestamp, 20)
        self.assertEqual(self.ledger.latest(ALICE), self.ledger.history(ALICE)[-1])

    def test_principals_are_isolated(self):
        self._append(ALICE)
        self.assertEqual(self.ledger.count(BOB), 0)
        with self.assertRaises(NoSubmission):
            self.ledger.latest(BOB)

    def test_get_out_of_bounds(self):
        with self.assertRaises(IndexOutOfBounds):
            self.ledger.get(ALICE, 0)
        self._append()
        self.ledger.get(ALICE, 0)
        for index in (-1, 1, 100):
            with self.subTest(index=index):
                with self.assertRaises(IndexOutOfBounds) as ctx:
                    self.ledger.get(ALICE, index)
                self.assertEqual(ctx.exception.length, 1)

    def test_append_grants_principal_and_substrate(self):
        self._append()
        for handle in self.ledger.latest(ALICE).handles():
            self.assertTrue(self.acl.is_authorized(handle, ALICE))
            self.assertTrue(self.acl.is_authorized(handle, CONTRACT))
            self.assertFalse(self.acl.is_authorized(handle, BOB))

    def test_append_is_atomic(self):
        # The substrate holds no rights on these handles, so granting fails
        handles = self._handles(owned=False)
        with self.assertRaises(Unauthorized):
            self.ledger.append(ALICE, *handles, 1000)
        self.assertEqual(self.ledger.count(ALICE), 0)
        self.assertEqual(self.ledger.submission_count(ALICE), 0)
        self.assertFalse(self.acl.is_authorized(handles[0], ALICE))

    def test_summary(self):
        self.assertEqual(self.ledger.summary(ALICE).to_dict(), {"total_submissions": 0, "last_timestamp": 0})
        self._append(timestamp=1234)
        self._append(timestamp=1240)
        self.assertEqual(self.ledger.summary(ALICE).to_dict(), {"total_submissions": 2, "last_timestamp": 1240})

    def test_reauthorize_is_idempotent(self):
        self._append()
        self.assertEqual(self.ledger.reauthorize(ALICE, 0), 0)
        self.assertEqual(self.ledger.reauthorize_all(ALICE), 0)

    def test_reauthorize_restores_missing_grant(self):
        self._append()
        record = self.ledger.latest(ALICE)
        self.store._grants[record.score.id].discard(ALICE)
        self.assertFalse(self.acl.is_authorized(record.score, ALICE))
        self.assertEqual(self.ledger.reauthorize(ALICE, 0), 1)
        self.assertTrue(self.acl.is_authorized(record.score, ALICE))


class TestClassificationRecord(unittest.TestCase):
    """Tests for record validation."""

    def setUp(self):
        cop = MockCoprocessor()
        self.u16 = cop.trivial_encrypt(1, EncryptedType.EUINT16)
        self.u32 = cop.trivial_encrypt(1, EncryptedType.EUINT32)
        self.u8 = cop.trivial_encrypt(1, EncryptedType.EUINT8)

    def test_handle_order(self):
        record = ClassificationRecord(self.u16, self.u16, self.u16, self.u32, self.u8, 5)
        self.assertEqual(record.handles(), [self.u16, self.u16, self.u16, self.u32, self.u8])
        self.assertEqual(ClassificationRecord.from_dict(record.to_dict()), record)

    def test_wrong_widths_rejected(self):
        with self.assertRaises(TypeError):
            ClassificationRecord(self.u16, self.u16, self.u16, self.u16, self.u8, 5)
        with self.assertRaises(TypeError):
            ClassificationRecord(self.u16, self.u16, self.u16, self.u32, self.u16, 5)

    def test_negative_timestamp_rejected(self):
        with self.assertRaises(ValueError):
            ClassificationRecord(self.u16, self.u16, self.u16, self.u32, self.u8, -1)


class TestConcurrentAppends(unittest.TestCase):
    """Appends from several threads are serialized by the store."""

    THREADS = 8
    PER_THREAD = 10

    def test_histories_stay_contiguous(self):
        cop = MockCoprocessor()
        store = InMemoryLedgerStore()
        acl = AccessControlList(store)
        ledger = RecordLedger(store, acl, CONTRACT)
        appended = {ALICE: {}, BOB: {}}
        errors = []

        def worker(n):
            principal = ALICE if n % 2 == 0 else BOB
            try:
                for i in range(self.PER_THREAD):
                    handles = [
                        cop.trivial_encrypt(1, EncryptedType.EUINT16),
                        cop.trivial_encrypt(2, EncryptedType.EUINT16),
                        cop.trivial_encrypt(3, EncryptedType.EUINT16),
                        cop.trivial_encrypt(77, EncryptedType.EUINT32),
                        cop.trivial_encrypt(0, EncryptedType.EUINT8),
                    ]
                    for h in handles:
                        acl.allow_creator(h, CONTRACT)
                    timestamp = n * 1000 + i
                    appended[principal][ledger.append(principal, *handles, timestamp)] = timestamp
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(self.THREADS)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        expected = self.THREADS // 2 * self.PER_THREAD
        for principal, by_index in appended.items():
            self.assertEqual(sorted(by_index), list(range(expected)))
            self.assertEqual(ledger.count(principal), expected)
            self.assertEqual(ledger.submission_count(principal), expected)
            for index, timestamp in by_index.items():
                self.assertEqual(ledger.get(principal, index).timestamp, timestamp)


if __name__ == "__main__":
    unittest.main()
