"""Claim-of-receipt tests: re-derivation check before internalizing."""

import unittest

from bsv.hash import hash256

from crowdtoken.errors import DerivationMismatch, MalformedField, PaymentNotAccepted
from crowdtoken.payments.derivation import PaymentRemittance, build_payment_action
from crowdtoken.payments.receipt import claim_payment, verify_payment_output
from crowdtoken.script.transaction import txid_of
from fakes import atomic_beef, beef_v2, make_client, raw_transaction

OTHER_SCRIPT = bytes.fromhex("76a914f0d34949650af161e7cb3f0325a1a8833075165088ac")


class TestClaimPayment(unittest.TestCase):

    def setUp(self):
        self.payer, _ = make_client()
        self.payee, self.payee_wallet = make_client()

    def _payment(self, satoshis: int = 1000):
        action = build_payment_action(
            self.payer, self.payee.identity_key(), max(satoshis, 1), prefix="abcd", suffix="efgh",
        )
        script = bytes.fromhex(action.outputs[0]["lockingScript"])
        tx = raw_transaction([(satoshis, script), (42, OTHER_SCRIPT)])
        return tx, action.remittance

    def test_valid_payment_is_internalized(self):
        tx, remittance = self._payment()
        received = claim_payment(self.payee, tx, remittance)
        self.assertEqual(received.txid, txid_of(tx))
        self.assertEqual(received.satoshis, 1000)
        self.assertEqual(received.sender_identity_key, self.payer.identity_key())

        args = self.payee_wallet.internalized[0]
        self.assertEqual(args["tx"], list(tx))
        self.assertEqual(args["outputs"][0]["outputIndex"], 0)
        self.assertEqual(args["outputs"][0]["protocol"], "wallet payment")
        self.assertEqual(args["outputs"][0]["paymentRemittance"], remittance.to_dict())

    def test_atomic_beef_with_mined_parent(self):
        funding = raw_transaction([(5000, OTHER_SCRIPT)], prev_txid=b"\x22" * 32)
        action = build_payment_action(
            self.payer, self.payee.identity_key(), 1000, prefix="abcd", suffix="efgh",
        )
        script = bytes.fromhex(action.outputs[0]["lockingScript"])
        payment = raw_transaction([(1000, script), (42, OTHER_SCRIPT)], prev_txid=hash256(funding))
        atomic = atomic_beef(payment, beef_v2(funding, payment))

        received = claim_payment(self.payee, atomic, action.remittance)
        self.assertEqual(received.txid, txid_of(payment))
        self.assertEqual(received.satoshis, 1000)
        self.assertEqual(self.payee_wallet.internalized[0]["tx"], list(atomic))

    def test_mismatched_suffix_is_caught_before_internalizing(self):
        tx, remittance = self._payment()
        tampered = PaymentRemittance(
            remittance.derivation_prefix, "efgi", remittance.sender_identity_key,
        )
        with self.assertRaises(DerivationMismatch) as ctx:
            claim_payment(self.payee, tx, tampered)
        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(self.payee_wallet.internalized, [])

    def test_wrong_output_index(self):
        tx, remittance = self._payment()
        with self.assertRaises(DerivationMismatch):
            verify_payment_output(self.payee, tx, remittance, output_index=1)
        with self.assertRaises(DerivationMismatch):
            verify_payment_output(self.payee, tx, remittance, output_index=5)

    def test_zero_value_output(self):
        tx, remittance = self._payment(satoshis=0)
        with self.assertRaises(MalformedField):
            claim_payment(self.payee, tx, remittance)

    def test_rejected_by_wallet(self):
        tx, remittance = self._payment()
        self.payee_wallet.accept_payments = False
        with self.assertRaises(PaymentNotAccepted):
            claim_payment(self.payee, tx, remittance)

    def test_unreadable_transaction(self):
        _, remittance = self._payment()
        with self.assertRaises(MalformedField):
            claim_payment(self.payee, b"\x01\x00", remittance)


if __name__ == "__main__":
    unittest.main()
