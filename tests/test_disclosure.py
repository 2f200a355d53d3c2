"""
Tests for the batched disclosure protocol and the decryption oracle.
"""

import dataclasses
import unittest

from bamboohold import (
    DecryptionOracle,
    DecryptionResponse,
    DisclosureClient,
    DisclosureDenied,
    DisclosureFailed,
    DisclosureIncomplete,
    DisclosurePolicy,
    DisclosureSession,
    EncryptedType,
    FailureReason,
    Handle,
    InMemoryNonceStore,
    KmsDecryptionOracle,
    MockCoprocessor,
    RiskRegistry,
    SessionExpired,
    SessionState,
    Signer,
    StatementRejected,
    Unauthorized,
    Wallet,
)

CONTRACT = "0x" + "b4" * 20
DAY = 86400
GARBAGE = "A" * 88


class StaticOracle(DecryptionOracle):
    """Oracle returning a canned response, or raising a canned error."""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def user_decrypt(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.response


class BrokenSigner(Signer):
    """Signer whose user always declines."""

    def __init__(self, wallet):
        self._wallet = wallet

    @property
    def address(self):
        return self._wallet.address

    @property
    def public_key(self):
        return self._wallet.public_key

    def sign(self, payload):
        raise RuntimeError("user rejected the signature request")


class DisclosureTestCase(unittest.TestCase):

    def setUp(self):
        self.now = 1700000000
        clock = lambda: self.now
        self.cop = MockCoprocessor()
        self.registry = RiskRegistry(CONTRACT, self.cop, clock=clock)
        self.oracle = KmsDecryptionOracle(self.cop, self.registry.acl, clock=clock)
        self.alice = Wallet()
        self.bob = Wallet()
        ext = self.cop.create_encrypted_input(CONTRACT, self.alice.address) \
            .add16(45).add16(30).add16(50).encrypt()
        self.registry.submit(self.alice.address, *ext.handles, ext.input_proof)
        self.record = self.registry.get_latest(self.alice.address)

    def client(self, wallet=None, oracle=None, policy=None):
        return DisclosureClient(
            oracle or self.oracle,
            wallet or self.alice,
            policy or DisclosurePolicy(),
            clock=lambda: self.now
        )


class TestDisclosureClient(DisclosureTestCase):
    """End-to-end disclosure against the reference oracle."""

    def test_full_record_with_one_signature(self):
        before = self.alice.signature_count
        values = self.client().disclose(self.record.handles(), CONTRACT)
        self.assertEqual(self.alice.signature_count - before, 1)
        self.assertEqual(
            [values[h.id] for h in self.record.handles()],
            [45, 30, 50, 1590, 1]
        )

    def test_empty_batch_needs_no_signature(self):
        self.assertEqual(self.client().disclose([], CONTRACT), {})
        self.assertEqual(self.alice.signature_count, 0)

    def test_invalid_contract_address(self):
        with self.assertRaises(DisclosureFailed) as ctx:
            self.client().disclose([self.record.score], "registry")
        self.assertEqual(ctx.exception.reason, FailureReason.INVALID_REQUEST)
        self.assertEqual(self.alice.signature_count, 0)

    def test_other_principal_denied(self):
        with self.assertRaises(DisclosureDenied) as ctx:
            self.client(wallet=self.bob).disclose([self.record.score], CONTRACT)
        error = ctx.exception
        self.assertIsInstance(error, Unauthorized)
        self.assertEqual(error.reason, FailureReason.UNAUTHORIZED)
        self.assertEqual(error.state, SessionState.SUBMITTED.value)
        self.assertIn(self.record.score.id, error.denied)

    def test_one_denied_handle_fails_whole_batch(self):
        ext = self.cop.create_encrypted_input(CONTRACT, self.bob.address) \
            .add16(1).add16(2).add16(3).encrypt()
        self.registry.submit(self.bob.address, *ext.handles, ext.input_proof)
        bobs_score = self.registry.get_risk_score(self.bob.address)

        with self.assertRaises(DisclosureDenied) as ctx:
            self.client().disclose([self.record.score, bobs_score], CONTRACT)
        self.assertEqual(list(ctx.exception.denied), [bobs_score.id])

    def test_expired_at_oracle(self):
        late = KmsDecryptionOracle(self.cop, self.registry.acl, clock=lambda: self.now + 2 * DAY)
        client = self.client(oracle=late, policy=DisclosurePolicy(duration_days=1))
        with self.assertRaises(SessionExpired) as ctx:
            client.disclose([self.record.score], CONTRACT)
        self.assertEqual(ctx.exception.reason, FailureReason.SESSION_EXPIRED)

    def test_expired_before_resolve(self):
        test = self

        class SlowOracle(DecryptionOracle):
            def user_decrypt(self, request):
                test.now += 2 * DAY
                return DecryptionResponse(plaintexts={p.handle.id: GARBAGE for p in request.pairs})

        client = self.client(oracle=SlowOracle(), policy=DisclosurePolicy(duration_days=1))
        with self.assertRaises(SessionExpired):
            client.disclose([self.record.score], CONTRACT)

    def test_missing_handle_is_incomplete(self):
        oracle = StaticOracle(response=DecryptionResponse(plaintexts={}))
        with self.assertRaises(DisclosureIncomplete) as ctx:
            self.client(oracle=oracle).disclose([self.record.score, self.record.tier], CONTRACT)
        self.assertEqual(ctx.exception.reason, FailureReason.INCOMPLETE)
        self.assertEqual(sorted(ctx.exception.missing), sorted([self.record.score.id, self.record.tier.id]))

    def test_unopenable_plaintext(self):
        oracle = StaticOracle(response=DecryptionResponse(plaintexts={self.record.score.id: GARBAGE}))
        with self.assertRaises(DisclosureFailed) as ctx:
            self.client(oracle=oracle).disclose([self.record.score], CONTRACT)
        self.assertEqual(ctx.exception.reason, FailureReason.UNSEAL_FAILED)

    def test_signer_error(self):
        oracle = StaticOracle()
        with self.assertRaises(DisclosureFailed) as ctx:
            self.client(wallet=BrokenSigner(self.alice), oracle=oracle).disclose([self.record.score], CONTRACT)
        self.assertEqual(ctx.exception.reason, FailureReason.SIGNER_ERROR)
        self.assertEqual(ctx.exception.state, SessionState.STATEMENT_BUILT.value)
        self.assertEqual(oracle.requests, [])

    def test_oracle_unreachable(self):
        oracle = StaticOracle(error=ConnectionError("connection refused"))
        with self.assertRaises(DisclosureFailed) as ctx:
            self.client(oracle=oracle).disclose([self.record.score], CONTRACT)
        self.assertEqual(ctx.exception.reason, FailureReason.ORACLE_UNREACHABLE)

    def test_statement_rejected(self):
        oracle = StaticOracle(error=StatementRejected("bad statement"))
        with self.assertRaises(DisclosureFailed) as ctx:
            self.client(oracle=oracle).disclose([self.record.score], CONTRACT)
        self.assertEqual(ctx.exception.reason, FailureReason.STATEMENT_REJECTED)

    def test_unexpected_oracle_error(self):
        oracle = StaticOracle(error=ValueError("oracle returned malformed JSON"))
        with self.assertRaises(DisclosureFailed) as ctx:
            self.client(oracle=oracle).disclose([self.record.score], CONTRACT)
        self.assertEqual(ctx.exception.reason, FailureReason.ORACLE_ERROR)
        self.assertEqual(ctx.exception.state, SessionState.SUBMITTED.value)
        self.assertIsInstance(ctx.exception.__cause__, ValueError)

    def test_mistyped_handle_rejected(self):
        mistyped = Handle(id=self.record.score.id, type=EncryptedType.EUINT8)
        with self.assertRaises(DisclosureFailed) as ctx:
            self.client().disclose([mistyped], CONTRACT)
        self.assertEqual(ctx.exception.reason, FailureReason.STATEMENT_REJECTED)
        self.assertEqual(self.cop.operations["reveal"], 0)

    def test_each_disclosure_is_a_new_session(self):
        client = self.client()
        client.disclose([self.record.score], CONTRACT)
        client.disclose([self.record.score], CONTRACT)
        self.assertEqual(self.alice.signature_count, 2)


class TestDisclosureSession(DisclosureTestCase):
    """State machine and oracle checks driven step by step."""

    def _signed_session(self, wallet=None, handles=None):
        wallet = wallet or self.alice
        session = DisclosureSession(handles or [self.record.score], CONTRACT, clock=lambda: self.now)
        session.generate_keypair()
        session.build_statement(wallet)
        session.sign(wallet)
        return session

    def test_states_in_order(self):
        session = DisclosureSession([self.record.score], CONTRACT, clock=lambda: self.now)
        self.assertIs(session.state, SessionState.INIT)
        session.generate_keypair()
        self.assertIs(session.state, SessionState.KEYPAIR_GENERATED)
        session.build_statement(self.alice)
        self.assertIs(session.state, SessionState.STATEMENT_BUILT)
        session.sign(self.alice)
        self.assertIs(session.state, SessionState.SIGNED)
        response = session.submit(self.oracle)
        self.assertIs(session.state, SessionState.SUBMITTED)
        values = session.resolve(response)
        self.assertIs(session.state, SessionState.RESOLVED)
        self.assertTrue(session.terminal)
        self.assertEqual(values, {self.record.score.id: 1590})

    def test_out_of_order_step(self):
        session = DisclosureSession([self.record.score], CONTRACT)
        with self.assertRaises(RuntimeError):
            session.sign(self.alice)
        self.assertIs(session.state, SessionState.INIT)

    def test_build_statement_out_of_order(self):
        session = DisclosureSession([self.record.score], CONTRACT)
        with self.assertRaises(RuntimeError):
            session.build_statement(self.alice)
        self.assertIs(session.state, SessionState.INIT)
        self.assertIsNone(session.statement)

    def test_submit_out_of_order(self):
        session = DisclosureSession([self.record.score], CONTRACT)
        session.generate_keypair()
        with self.assertRaises(RuntimeError):
            session.submit(self.oracle)
        self.assertIs(session.state, SessionState.KEYPAIR_GENERATED)

    def test_empty_session_rejected(self):
        with self.assertRaises(ValueError):
            DisclosureSession([], CONTRACT)

    def test_statement_covers_batch(self):
        session = self._signed_session()
        statement = session.statement
        self.assertEqual(statement.contract_addresses, [CONTRACT])
        self.assertEqual(statement.user_address, self.alice.address)
        self.assertEqual(statement.expires_at, self.now + 365 * DAY)
        self.assertEqual(statement.domain["name"], "BambooHoldDecryption")

    def test_replayed_statement_rejected(self):
        request = self._signed_session().request()
        self.oracle.user_decrypt(request)
        with self.assertRaises(StatementRejected):
            self.oracle.user_decrypt(request)

    def test_tampered_statement_rejected(self):
        request = self._signed_session().request()
        tampered = dataclasses.replace(
            request,
            statement=dataclasses.replace(request.statement, duration_days=30)
        )
        with self.assertRaises(StatementRejected):
            self.oracle.user_decrypt(tampered)

    def test_signer_must_match_user(self):
        request = self._signed_session().request()
        forged = dataclasses.replace(
            request,
            statement=dataclasses.replace(request.statement, user_address=self.bob.address)
        )
        with self.assertRaises(StatementRejected):
            self.oracle.user_decrypt(forged)

    def test_contract_not_in_statement(self):
        request = self._signed_session().request()
        other = dataclasses.replace(request.pairs[0], contract_address="0x" + "cc" * 20)
        with self.assertRaises(StatementRejected):
            self.oracle.user_decrypt(dataclasses.replace(request, pairs=[other]))

    def test_duration_limit(self):
        oracle = KmsDecryptionOracle(self.cop, self.registry.acl, clock=lambda: self.now, max_duration_days=30)
        with self.assertRaises(StatementRejected):
            oracle.user_decrypt(self._signed_session().request())

    def test_future_start_rejected(self):
        request = self._signed_session().request()
        early = KmsDecryptionOracle(self.cop, self.registry.acl, clock=lambda: self.now - 3600)
        with self.assertRaises(StatementRejected):
            early.user_decrypt(request)

    def test_denied_response_carries_no_plaintexts(self):
        request = self._signed_session(wallet=self.bob).request()
        response = self.oracle.user_decrypt(request)
        self.assertEqual(response.plaintexts, {})
        self.assertIn(self.record.score.id, response.denied)

    def test_failed_session_drops_secrets(self):
        session = self._signed_session()
        error = session.fail(DisclosureFailed(FailureReason.ORACLE_UNREACHABLE, "down"))
        self.assertIs(session.state, SessionState.FAILED)
        self.assertEqual(error.state, SessionState.SIGNED.value)
        self.assertIsNone(session.signature)
        self.assertIsNone(session._private_key)


class TestInMemoryNonceStore(unittest.TestCase):
    """Replay protection follows the caller's clock."""

    def test_nonce_kept_until_caller_time_passes_expiry(self):
        store = InMemoryNonceStore()
        # expiry long before wall-clock time
        self.assertTrue(store.insert("n-1", 1000, now=500))
        self.assertFalse(store.insert("n-1", 1000, now=900))
        self.assertTrue(store.insert("n-1", 2000, now=1001))

    def test_cleanup_expired(self):
        store = InMemoryNonceStore()
        store.insert("n-1", 1000, now=0)
        store.insert("n-2", 3000, now=0)
        self.assertEqual(store.cleanup_expired(now=2000), 1)
        self.assertFalse(store.insert("n-2", 3000, now=2000))


if __name__ == "__main__":
    unittest.main()
