"""Derived-key payments (BRC-29).

Payer and payee agree on a one-time locking key by both deriving it from
the shared protocol id, a key id built from two nonces, and each other's
identity key. The payer derives with ``for_self=False`` against the payee,
the payee with ``for_self=True`` against the payer; both get the same public key.

The key id must be byte-identical on both sides. A prefix or suffix that
differs by a single character yields a different, equally valid-looking key
and no error from the wallet; claim-of-receipt (``receipt.py``) is where that
mismatch gets caught.
"""
import base64
import binascii
import logging
import secrets
from dataclasses import dataclass

from bsv.keys import PublicKey

from crowdtoken.errors import MalformedField
from crowdtoken.script.chunks import (
    OP_CHECKSIG,
    OP_DUP,
    OP_EQUALVERIFY,
    OP_HASH160,
    LockingScript,
    Opcode,
    Push,
)
from crowdtoken.script.codec import encode_compressed_key

logger = logging.getLogger(__name__)

# Protocol constants, MUST match @bsv/sdk wallet payment (BRC-29)
BRC29_PROTOCOL_ID = [2, "3241645161d8"]
PAYMENT_OUTPUT_INDEX = 0
NONCE_BYTES = 16
MIN_NONCE_BYTES = 8


def make_nonce(size: int = NONCE_BYTES) -> tuple[str, str]:
    """Return an independently random (prefix, suffix), base64-encoded."""
    if size < MIN_NONCE_BYTES:
        raise ValueError(f"nonce must carry at least {MIN_NONCE_BYTES} bytes of entropy")
    return (
        base64.b64encode(secrets.token_bytes(size)).decode("ascii"),
        base64.b64encode(secrets.token_bytes(size)).decode("ascii"),
    )


def encode_nonce(text: str) -> str:
    """Content-derived nonce: base64 of the UTF-8 text."""
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def _check_nonce(value: str, name: str) -> None:
    if not value or value != value.strip() or any(c.isspace() for c in value):
        raise MalformedField(f"derivation {name} must be non-empty base64 without whitespace")
    try:
        base64.b64decode(value, validate=True)
    except binascii.Error as e:
        raise MalformedField(f"derivation {name} is not valid base64: {e}") from e


def payment_key_id(prefix: str, suffix: str) -> str:
    """``"<prefix> <suffix>"``, the exact key id both parties must use."""
    _check_nonce(prefix, "prefix")
    _check_nonce(suffix, "suffix")
    return f"{prefix} {suffix}"


@dataclass(frozen=True)
class PaymentRemittance:
    """What the payer hands the payee so the payment key can be re-derived."""
    derivation_prefix: str
    derivation_suffix: str
    sender_identity_key: str

    @property
    def key_id(self) -> str:
        return payment_key_id(self.derivation_prefix, self.derivation_suffix)

    def to_dict(self) -> dict:
        return {
            "derivationPrefix": self.derivation_prefix,
            "derivationSuffix": self.derivation_suffix,
            "senderIdentityKey": self.sender_identity_key,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PaymentRemittance":
        return cls(
            derivation_prefix=data["derivationPrefix"],
            derivation_suffix=data["derivationSuffix"],
            sender_identity_key=data["senderIdentityKey"],
        )


def derive_payment_key(wallet, prefix: str, suffix: str, counterparty: str,
                       for_self: bool) -> str:
    """
    Derive the one-time payment public key.

    Args:
        wallet: WalletClient
        counterparty: the other party's identity key (payee when paying,
            payer when receiving)
        for_self: False on the payer side, True on the payee side
    """
    return wallet.derive_key(
        BRC29_PROTOCOL_ID,
        payment_key_id(prefix, suffix),
        counterparty,
        for_self=for_self,
    )


def p2pkh_locking_script(public_key) -> LockingScript:
    """OP_DUP OP_HASH160 <hash160(key)> OP_EQUALVERIFY OP_CHECKSIG"""
    key = encode_compressed_key(public_key)
    pubkey_hash = PublicKey(key).hash160()
    return LockingScript([
        Opcode(OP_DUP),
        Opcode(OP_HASH160),
        Push(pubkey_hash),
        Opcode(OP_EQUALVERIFY),
        Opcode(OP_CHECKSIG),
    ])


@dataclass(frozen=True)
class PaymentAction:
    """A payer-side payment: the wallet action plus the remittance to send along."""
    outputs: list
    options: dict
    remittance: PaymentRemittance
    derived_key: str


def build_payment_action(wallet, payee_identity_key: str, satoshis: int,
                         description: str = "Crowdfunding investment",
                         prefix: str | None = None, suffix: str | None = None) -> PaymentAction:
    """
    Build the payer's payment output, locked to the derived key at index 0.

    Outputs must not be reordered: the payee claims the payment by index.
    """
    if satoshis <= 0:
        raise ValueError("payment amount must be positive")
    if prefix is None or suffix is None:
        prefix, suffix = make_nonce()
    derived_key = derive_payment_key(wallet, prefix, suffix, payee_identity_key, for_self=False)
    remittance = PaymentRemittance(prefix, suffix, wallet.identity_key())
    outputs = [{
        "lockingScript": p2pkh_locking_script(derived_key).hex(),
        "satoshis": satoshis,
        "outputDescription": description,
    }]
    logger.debug(f"Payment of {satoshis} sats locked to derived key {derived_key}")
    return PaymentAction(
        outputs=outputs,
        options={"randomizeOutputs": False},
        remittance=remittance,
        derived_key=derived_key,
    )


def send_payment(wallet, payee_identity_key: str, satoshis: int,
                 description: str = "Crowdfunding investment") -> tuple[bytes, PaymentRemittance]:
    """Create the payment with the wallet; returns (signed tx bytes, remittance)."""
    action = build_payment_action(wallet, payee_identity_key, satoshis, description)
    result = wallet.create_payment(action.outputs, description, options=action.options)
    tx = result.get("tx")
    if not tx:
        raise RuntimeError("Wallet did not return the signed payment transaction")
    logger.info(f"Payment created: txid={result.get('txid')}, satoshis={satoshis}")
    return bytes(tx), action.remittance
