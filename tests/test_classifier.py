"""
Tests for the encrypted risk classifier.
"""

import unittest

from bamboohold import (
    DEFAULT_MODEL,
    EncryptedType,
    MockCoprocessor,
    RiskModel,
    RiskTier,
    classify,
    display_score,
    reference_classify,
    tier_for_total,
)

CONTRACT = "0x" + "b4" * 20
USER = "0x" + "a1" * 20


class TestClassifier(unittest.TestCase):
    """Encrypted classification against the plaintext mirror."""

    def setUp(self):
        self.cop = MockCoprocessor()

    def _classify(self, emotional, social, sleep):
        ext = self.cop.create_encrypted_input(CONTRACT, USER) \
            .add16(emotional).add16(social).add16(sleep).encrypt()
        result = classify(self.cop, *ext.handles)
        return self.cop.reveal(result.score), self.cop.reveal(result.tier), result

    def test_output_types(self):
        _, _, result = self._classify(45, 30, 50)
        self.assertIs(result.score.type, EncryptedType.EUINT32)
        self.assertIs(result.tier.type, EncryptedType.EUINT8)

    def test_example_record(self):
        score, tier, _ = self._classify(45, 30, 50)
        self.assertEqual(score, 1590)
        self.assertEqual(tier, RiskTier.MODERATE)
        self.assertEqual(display_score(score), 159)

    def test_bounds(self):
        self.assertEqual(self._classify(0, 0, 0)[:2], (0, RiskTier.SAFE))
        self.assertEqual(self._classify(100, 100, 100)[:2], (3700, RiskTier.HIGH))

    def test_threshold_edges(self):
        cases = [
            ((12, 95, 1), 1109, RiskTier.SAFE),
            ((0, 0, 74), 1110, RiskTier.MODERATE),
            ((72, 97, 1), 1849, RiskTier.MODERATE),
            ((100, 20, 30), 1850, RiskTier.HIGH),
        ]
        for inputs, total, tier in cases:
            with self.subTest(inputs=inputs):
                self.assertEqual(self._classify(*inputs)[:2], (total, tier))
                self.assertEqual(reference_classify(*inputs), (total, tier))

    def test_matches_reference(self):
        for inputs in [(45, 30, 50), (100, 100, 0), (10, 90, 33), (61, 0, 99)]:
            with self.subTest(inputs=inputs):
                score, tier, _ = self._classify(*inputs)
                self.assertEqual((score, RiskTier(tier)), reference_classify(*inputs))

    def test_no_plaintext_reveal_during_classification(self):
        ext = self.cop.create_encrypted_input(CONTRACT, USER) \
            .add16(45).add16(30).add16(50).encrypt()
        classify(self.cop, *ext.handles)
        ops = self.cop.operations
        self.assertEqual(ops["reveal"], 0)
        self.assertEqual(ops["mul"], 3)
        self.assertEqual(ops["add"], 2)
        self.assertEqual(ops["ge"], 2)
        self.assertEqual(ops["select"], 2)

    def test_rejects_wrong_width(self):
        a = self.cop.trivial_encrypt(1, EncryptedType.EUINT8)
        b = self.cop.trivial_encrypt(1, EncryptedType.EUINT16)
        with self.assertRaises(TypeError):
            classify(self.cop, a, b, b)


class TestRiskModel(unittest.TestCase):
    """Tests for model parameters and plaintext helpers."""

    def test_tier_for_total(self):
        self.assertEqual(tier_for_total(1109), RiskTier.SAFE)
        self.assertEqual(tier_for_total(1110), RiskTier.MODERATE)
        self.assertEqual(tier_for_total(1849), RiskTier.MODERATE)
        self.assertEqual(tier_for_total(1850), RiskTier.HIGH)

    def test_max_total(self):
        self.assertEqual(DEFAULT_MODEL.max_total, 3700)

    def test_validate_inputs(self):
        DEFAULT_MODEL.validate_inputs(0, 50, 100)
        for bad in [(-1, 0, 0), (0, 101, 0), (0, 0, 1.5), (True, 0, 0)]:
            with self.subTest(inputs=bad):
                with self.assertRaises(ValueError):
                    DEFAULT_MODEL.validate_inputs(*bad)

    def test_invalid_models(self):
        with self.assertRaises(ValueError):
            RiskModel(moderate_threshold=2000, high_threshold=1000)
        with self.assertRaises(ValueError):
            RiskModel(emotional_weight=1000)

    def test_display_score_rounds_half_up(self):
        self.assertEqual(display_score(1594), 159)
        self.assertEqual(display_score(1595), 160)
        self.assertEqual(display_score(0), 0)

    def test_tier_labels(self):
        self.assertEqual([t.label for t in RiskTier], ["Safe", "Moderate", "High"])


if __name__ == "__main__":
    unittest.main()
