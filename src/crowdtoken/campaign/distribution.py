"""Token distribution at campaign completion.

All tokens go out in one transaction built from a snapshot of the
investor ledger. Every investor included in the broadcast is then marked
redeemed and the completion txid is recorded on the campaign.
"""
import json
import time
from dataclasses import dataclass, replace
from typing import Iterable

from crowdtoken.campaign.store import InvestorRecord, InvestorStore, mark_redeemed
from crowdtoken.errors import CampaignStateError
from crowdtoken.logger import log
from crowdtoken.payments.derivation import p2pkh_locking_script
from crowdtoken.script.pushdrop import (
    InvestmentToken,
    TokenVariant,
    build_investment_token_script,
    build_spendable_token_script,
)

TOKEN_BASKET = "crowdfunding"
TOKEN_PROTOCOL = [0, "token list"]
TOKEN_KEY_ID = "1"
TOKEN_SATOSHIS = 1


@dataclass(frozen=True)
class CompletionResult:
    txid: str
    investors: tuple[InvestorRecord, ...]
    variant: TokenVariant


def token_plaintext(record: InvestorRecord) -> bytes:
    return json.dumps(
        {"amount": record.amount, "investorKey": record.identity_key},
        separators=(",", ":"),
    ).encode("utf-8")


def build_token_outputs(investors: Iterable[InvestorRecord], variant: TokenVariant,
                        wallet=None, campaign_id: str | None = None,
                        now: int | None = None) -> list[dict]:
    """
    Build create_action outputs for a batch of investors.

    DATA yields, per investor, a zero-value data token followed by a P2PKH
    payment of the invested amount. SPENDABLE yields one 1-satoshi token per
    investor whose single field is the wallet-encrypted JSON payload; the
    wallet is required for it.
    """
    outputs: list[dict] = []
    now = int(time.time()) if now is None else now

    for record in investors:
        if variant is TokenVariant.DATA:
            token = InvestmentToken.create(
                amount=record.amount,
                owner_key=record.identity_key,
                campaign_id=campaign_id,
                timestamp=now,
            )
            outputs.append({
                "lockingScript": build_investment_token_script(token).hex(),
                "satoshis": 0,
                "outputDescription": f"Investment token for {record.identity_key[:16]}",
            })
            outputs.append({
                "lockingScript": p2pkh_locking_script(record.identity_key).hex(),
                "satoshis": record.amount,
                "outputDescription": f"Investment payout for {record.identity_key[:16]}",
            })
            continue

        if wallet is None:
            raise ValueError("spendable tokens require a wallet to encrypt the payload")
        ciphertext = wallet.encrypt(
            token_plaintext(record), TOKEN_PROTOCOL, TOKEN_KEY_ID, record.identity_key
        )
        outputs.append({
            "lockingScript": build_spendable_token_script(ciphertext, record.identity_key).hex(),
            "satoshis": TOKEN_SATOSHIS,
            "outputDescription": "Crowdfunding investor token",
            "basket": TOKEN_BASKET,
            "tags": ["crowdfunding"],
        })
    return outputs


def complete_campaign(wallet, store: InvestorStore,
                      variant: TokenVariant = TokenVariant.SPENDABLE,
                      campaign_id: str | None = None) -> CompletionResult:
    """
    Distribute tokens to every unredeemed investor in one transaction.

    Raises:
        CampaignStateError: goal not reached, already complete, or nobody to pay
    """
    with store.snapshot() as investors:
        campaign = store.get_campaign()
        if campaign.is_complete:
            raise CampaignStateError("Crowdfunding already complete")
        if campaign.raised < campaign.goal:
            raise CampaignStateError(
                f"Goal not reached: {campaign.raised}/{campaign.goal} sats"
            )
        pending = tuple(r for r in investors if not r.redeemed)
        if not pending:
            raise CampaignStateError("No unredeemed investors to distribute to")

        outputs = build_token_outputs(pending, variant, wallet=wallet, campaign_id=campaign_id)
        txid = wallet.sign_and_broadcast(
            outputs,
            "Crowdfunding complete - distribute investor tokens",
            options={"randomizeOutputs": False},
        )

        for record in pending:
            mark_redeemed(store, record.identity_key)
        store.put_campaign(replace(campaign, is_complete=True, completion_txid=txid))

    log.info(f"Campaign complete: txid={txid}, {len(pending)} investors, variant={variant.value}")
    return CompletionResult(txid=txid, investors=pending, variant=variant)
