"""Claim-of-receipt for derived-key payments.

The payee re-derives the payment key from the remittance, checks that the
output at the agreed index is locked to it, and only then asks the wallet to
internalize the payment as income attributed to the payer.
"""
import logging
from dataclasses import dataclass

from crowdtoken.errors import DerivationMismatch, MalformedField, PaymentNotAccepted
from crowdtoken.payments.derivation import (
    PAYMENT_OUTPUT_INDEX,
    PaymentRemittance,
    derive_payment_key,
    p2pkh_locking_script,
)
from crowdtoken.script.transaction import TxOutput, read_transaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReceivedPayment:
    txid: str
    satoshis: int
    sender_identity_key: str
    output_index: int


def verify_payment_output(wallet, transaction: bytes, remittance: PaymentRemittance,
                          output_index: int = PAYMENT_OUTPUT_INDEX) -> tuple[str, TxOutput]:
    """
    Check the payment output against the re-derived key.

    Returns:
        (txid, output)

    Raises:
        MalformedField: transaction bytes cannot be read
        DerivationMismatch: no output at the index, or it is locked to another key
    """
    tx = read_transaction(transaction)
    if output_index >= len(tx.outputs):
        raise DerivationMismatch(
            f"transaction {tx.txid} has no output {output_index} ({len(tx.outputs)} outputs)"
        )
    output = tx.outputs[output_index]

    derived_key = derive_payment_key(
        wallet,
        remittance.derivation_prefix,
        remittance.derivation_suffix,
        remittance.sender_identity_key,
        for_self=True,
    )
    expected = p2pkh_locking_script(derived_key)
    if output.locking_script.to_bytes() != expected.to_bytes():
        logger.warning(
            f"Derived key {derived_key} does not lock output {output_index} of {tx.txid}"
        )
        raise DerivationMismatch(
            f"output {output_index} of {tx.txid} is not locked to the key derived "
            f"from prefix/suffix for {remittance.sender_identity_key}"
        )
    return tx.txid, output


def claim_payment(wallet, transaction: bytes, remittance: PaymentRemittance,
                  description: str = "Crowdfunding investment",
                  output_index: int = PAYMENT_OUTPUT_INDEX) -> ReceivedPayment:
    """
    Verify and internalize an incoming payment.

    Raises:
        DerivationMismatch: the output does not match the re-derived key
        PaymentNotAccepted: the wallet refused the payment
    """
    txid, output = verify_payment_output(wallet, transaction, remittance, output_index)
    if output.satoshis <= 0:
        raise MalformedField(f"payment output {output_index} of {txid} carries no value")

    accepted = wallet.internalize_payment(
        transaction, output_index, remittance.to_dict(), description
    )
    if not accepted:
        raise PaymentNotAccepted(f"wallet did not accept payment {txid}")

    logger.info(
        f"Payment accepted: txid={txid}, satoshis={output.satoshis}, "
        f"sender={remittance.sender_identity_key}"
    )
    return ReceivedPayment(
        txid=txid,
        satoshis=output.satoshis,
        sender_identity_key=remittance.sender_identity_key,
        output_index=output_index,
    )
