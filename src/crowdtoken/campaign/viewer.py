"""Investor-side view of spendable crowdfunding tokens held in the wallet."""
import json
from dataclasses import dataclass

from crowdtoken.campaign.distribution import TOKEN_BASKET, TOKEN_KEY_ID, TOKEN_PROTOCOL
from crowdtoken.errors import CrowdTokenError, MalformedField
from crowdtoken.logger import log
from crowdtoken.script.parser import ParsedToken, expect_token, parse_hex
from crowdtoken.script.pushdrop import TokenVariant


@dataclass(frozen=True)
class WalletToken:
    txid: str
    output_index: int
    satoshis: int
    owner_key: str
    ciphertext: bytes
    plaintext: dict | None = None

    @property
    def amount(self) -> int | None:
        return self.plaintext.get("amount") if self.plaintext else None


def split_outpoint(outpoint: str) -> tuple[str, int]:
    """``"txid.vout"`` -> (txid, vout)"""
    txid, sep, index = (outpoint or "").rpartition(".")
    if not sep or not txid or not index.isdigit():
        raise MalformedField(f"invalid outpoint {outpoint!r}")
    return txid, int(index)


def decrypt_token(wallet, token: ParsedToken, counterparty: str) -> dict:
    """
    Decrypt the payload of a spendable token.

    Raises:
        MalformedField: the token is not spendable or the plaintext is not a JSON object
    """
    if token.variant is not TokenVariant.SPENDABLE or not token.fields:
        raise MalformedField("only spendable tokens carry an encrypted payload")
    plaintext = wallet.decrypt(token.fields[0], TOKEN_PROTOCOL, TOKEN_KEY_ID, counterparty)
    try:
        payload = json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedField(f"token payload is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise MalformedField("token payload must be a JSON object")
    return payload


def load_wallet_tokens(wallet, counterparty: str, basket: str = TOKEN_BASKET,
                       completion_txid: str | None = None) -> list[WalletToken]:
    """
    List, parse and decrypt the crowdfunding tokens in a wallet basket.

    Outputs that are not spendable PushDrop tokens are skipped. A token whose
    payload cannot be decrypted is still returned, with ``plaintext=None``.

    Args:
        counterparty: identity key of the party that encrypted the tokens
        completion_txid: only keep tokens created by this transaction
    """
    tokens: list[WalletToken] = []
    for output in wallet.list_outputs(basket):
        try:
            txid, index = split_outpoint(output.get("outpoint", ""))
        except MalformedField as e:
            log.warning(f"Skipping wallet output: {e}")
            continue
        if completion_txid and txid != completion_txid:
            continue

        try:
            parsed = expect_token(parse_hex(output.get("lockingScript", "")))
        except CrowdTokenError as e:
            log.debug(f"Skipping {txid}.{index}: {e}")
            continue
        if parsed.variant is not TokenVariant.SPENDABLE:
            continue

        try:
            plaintext = decrypt_token(wallet, parsed, counterparty)
        except Exception as e:
            log.warning(f"Failed to decrypt token {txid}.{index}: {e}")
            plaintext = None

        tokens.append(WalletToken(
            txid=txid,
            output_index=index,
            satoshis=output.get("satoshis", 0),
            owner_key=parsed.owner_key_hex,
            ciphertext=parsed.fields[0],
            plaintext=plaintext,
        ))

    log.info(f"Loaded {len(tokens)} tokens from basket '{basket}'")
    return tokens
