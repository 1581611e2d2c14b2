"""Narrow adapter over a BRC-100 wallet (py-wallet-toolbox ``Wallet`` or compatible).

The wallet is an external, possibly-failing collaborator. Every call is
logged on failure and the original exception is re-raised.
"""
import logging
from typing import Any

logger = logging.getLogger(__name__)


class WalletClient:
    """
    Usage:
        client = WalletClient(wallet)
        key = client.derive_key([2, "3241645161d8"], "prefix suffix", counterparty)
        txid = client.sign_and_broadcast(outputs, "Distribute tokens")
    """

    def __init__(self, wallet):
        self.wallet = wallet

    def _call(self, method: str, args: dict) -> dict:
        try:
            return getattr(self.wallet, method)(args)
        except Exception as e:
            logger.error(f"Wallet {method} failed: {e}")
            raise

    def identity_key(self) -> str:
        return self._call("get_public_key", {"identityKey": True})["publicKey"]

    def derive_key(self, protocol_id: list, key_id: str, counterparty: str,
                   for_self: bool = False) -> str:
        """Return the hex public key derived for (protocol, key id, counterparty)."""
        result = self._call("get_public_key", {
            "protocolID": protocol_id,
            "keyID": key_id,
            "counterparty": counterparty,
            "forSelf": for_self,
        })
        return result["publicKey"]

    def encrypt(self, plaintext: bytes, protocol_id: list, key_id: str, counterparty: str) -> bytes:
        result = self._call("encrypt", {
            "plaintext": list(plaintext),
            "protocolID": protocol_id,
            "keyID": key_id,
            "counterparty": counterparty,
        })
        return bytes(result["ciphertext"])

    def decrypt(self, ciphertext: bytes, protocol_id: list, key_id: str, counterparty: str) -> bytes:
        result = self._call("decrypt", {
            "ciphertext": list(ciphertext),
            "protocolID": protocol_id,
            "keyID": key_id,
            "counterparty": counterparty,
        })
        return bytes(result["plaintext"])

    def sign_and_broadcast(self, outputs: list[dict], description: str,
                           options: dict | None = None) -> str:
        """Create, sign and broadcast a transaction; returns its txid."""
        args: dict[str, Any] = {"outputs": outputs, "description": description}
        if options:
            args["options"] = options
        result = self._call("create_action", args)
        txid = result.get("txid")
        if not txid:
            raise RuntimeError(f"Wallet did not return a txid for '{description}'")
        return txid

    def create_payment(self, outputs: list[dict], description: str,
                       options: dict | None = None) -> dict:
        """Create a payment and return the wallet result, including the signed ``tx`` bytes."""
        args: dict[str, Any] = {"outputs": outputs, "description": description}
        if options:
            args["options"] = options
        return self._call("create_action", args)

    def internalize_payment(self, tx: bytes, output_index: int, remittance: dict,
                            description: str) -> bool:
        result = self._call("internalize_action", {
            "tx": list(tx),
            "outputs": [{
                "outputIndex": output_index,
                "protocol": "wallet payment",
                "paymentRemittance": remittance,
            }],
            "description": description,
        })
        return bool(result.get("accepted"))

    def list_outputs(self, basket: str) -> list[dict]:
        result = self._call("list_outputs", {"basket": basket, "include": "locking scripts"})
        if isinstance(result, list):
            return result
        return result.get("outputs", [])
