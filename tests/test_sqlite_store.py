import threading

import pytest

from bamboohold import (
    AccessControlList,
    EncryptedType,
    MockCoprocessor,
    RecordLedger,
    RegistryEvent,
    Unauthorized,
)
from bamboohold_app.db import (
    SqliteCiphertextStore,
    SqliteLedgerStore,
    SqliteNonceStore,
    append_event,
    export_events,
    get_db_stats,
)

CONTRACT = "0x" + "b4" * 20
ALICE = "0x" + "a1" * 20


@pytest.fixture
def store():
    return SqliteLedgerStore()


@pytest.fixture
def coprocessor():
    return MockCoprocessor(store=SqliteCiphertextStore())


def record_handles(coprocessor, acl=None):
    handles = [
        coprocessor.trivial_encrypt(1, EncryptedType.EUINT16),
        coprocessor.trivial_encrypt(2, EncryptedType.EUINT16),
        coprocessor.trivial_encrypt(3, EncryptedType.EUINT16),
        coprocessor.trivial_encrypt(77, EncryptedType.EUINT32),
        coprocessor.trivial_encrypt(0, EncryptedType.EUINT8),
    ]
    if acl is not None:
        for h in handles:
            acl.allow_creator(h, CONTRACT)
    return handles


def test_grants_are_idempotent(store):
    assert store.add_grant("0xabc", ALICE) is True
    assert store.add_grant("0xabc", ALICE) is False
    assert store.has_grant("0xabc", ALICE)
    assert store.grantees("0xabc") == [ALICE]


def test_failed_transaction_rolls_back(store):
    with pytest.raises(RuntimeError):
        with store.transaction():
            store.add_grant("0xabc", ALICE)
            store.increment_submissions(ALICE)
            raise RuntimeError("boom")
    assert not store.has_grant("0xabc", ALICE)
    assert store.submission_count(ALICE) == 0


def test_savepoint_rolls_back_inner_writes_only(store):
    with store.transaction():
        store.add_grant("0x01", ALICE)
        with pytest.raises(ValueError):
            with store.transaction():
                store.add_grant("0x02", ALICE)
                raise ValueError("inner")
    assert store.has_grant("0x01", ALICE)
    assert not store.has_grant("0x02", ALICE)


def test_ledger_persists_records(store, coprocessor):
    acl = AccessControlList(store)
    ledger = RecordLedger(store, acl, CONTRACT)
    handles = record_handles(coprocessor, acl)
    assert ledger.append(ALICE, *handles, 1000) == 0
    assert ledger.append(ALICE, *record_handles(coprocessor, acl), 1010) == 1

    reloaded = RecordLedger(SqliteLedgerStore(), AccessControlList(SqliteLedgerStore()), CONTRACT)
    assert reloaded.count(ALICE) == 2
    assert reloaded.submission_count(ALICE) == 2
    assert reloaded.get(ALICE, 0).handles() == handles
    assert reloaded.latest(ALICE).timestamp == 1010
    assert coprocessor.reveal(reloaded.get(ALICE, 0).score) == 77


def test_ledger_append_is_atomic(store, coprocessor):
    ledger = RecordLedger(store, AccessControlList(store), CONTRACT)
    with pytest.raises(Unauthorized):
        ledger.append(ALICE, *record_handles(coprocessor), 1000)
    assert ledger.count(ALICE) == 0
    assert ledger.submission_count(ALICE) == 0
    assert get_db_stats()["grants_count"] == 0


def test_nonce_store_rejects_reuse():
    nonces = SqliteNonceStore()
    assert nonces.insert("n-1", 4102444800) is True
    assert nonces.insert("n-1", 4102444800) is False
    assert nonces.insert("n-2", 1) is True
    assert nonces.cleanup_expired() == 1


def test_nonce_store_purges_against_caller_clock():
    nonces = SqliteNonceStore()
    # expiry long before wall-clock time
    assert nonces.insert("n-1", 1000, now=500) is True
    assert nonces.insert("n-1", 1000, now=900) is False
    assert nonces.insert("n-1", 2000, now=1001) is True


def test_concurrent_appends_stay_contiguous(store, coprocessor):
    acl = AccessControlList(store)
    ledger = RecordLedger(store, acl, CONTRACT)
    bob = "0x" + "b0" * 20
    appended = {ALICE: {}, bob: {}}
    errors = []

    def worker(n):
        principal = ALICE if n % 2 == 0 else bob
        try:
            for i in range(5):
                timestamp = n * 1000 + i
                index = ledger.append(principal, *record_handles(coprocessor, acl), timestamp)
                appended[principal][index] = timestamp
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    for principal, by_index in appended.items():
        assert sorted(by_index) == list(range(15))
        assert ledger.count(principal) == 15
        assert ledger.submission_count(principal) == 15
        assert [r.timestamp for r in ledger.history(principal)] == [by_index[i] for i in range(15)]


def test_event_log_order():
    append_event(RegistryEvent("RecordSubmitted", ALICE, 10, 0))
    append_event(RegistryEvent("ClassificationUpdated", ALICE, 10))
    append_event(RegistryEvent("RecordSubmitted", "0x" + "b0" * 20, 11, 0))
    events = export_events(ALICE)
    assert [e["event"] for e in events] == ["RecordSubmitted", "ClassificationUpdated"]
    assert events[0]["index"] == 0
    assert len(export_events(limit=2)) == 2
    assert export_events(limit=2)[-1]["timestamp"] == 11
