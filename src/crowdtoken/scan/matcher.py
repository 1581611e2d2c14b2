"""Heuristic PushDrop token detection over indexer outputs.

An output "looks like a token" when its script has a drop opcode and
OP_CHECKSIG and it is either low-value or has a long script. This is a
heuristic: ordinary small outputs can be false positives and tokens above
the value threshold with short scripts are missed. Both thresholds live on
ScanConfig so they can be recalibrated.

Tokens lock to a raw public key, not to its hash, so an address-indexed
lookup never returns them. ``scan_address`` therefore always reports
``ScanWarning.P2PK_UNREACHABLE_BY_ADDRESS``; finding the token itself takes
the transaction id of the completion transaction (``scan_transactions``).
"""
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Sequence

from bsv.constants import Network
from bsv.keys import PublicKey

from crowdtoken import config
from crowdtoken.errors import IndexerUnavailable, MalformedField
from crowdtoken.scan.indexer import IndexedOutput
from crowdtoken.script.chunks import LockingScript
from crowdtoken.script.codec import encode_compressed_key
from crowdtoken.script.parser import (
    CHECKSIG_TOKEN,
    DROP_TOKENS,
    AsmPushDrop,
    ParsedToken,
    ParseFailure,
    candidate_owner_key,
    parse_asm,
    parse_hex,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanConfig:
    small_value_threshold_satoshis: int = config.SMALL_VALUE_THRESHOLD_SATOSHIS
    long_script_threshold_bytes: int = config.LONG_SCRIPT_THRESHOLD_BYTES
    concurrency: int = config.SCAN_CONCURRENCY
    network: str = config.NETWORK


class ScanWarning(Enum):
    P2PK_UNREACHABLE_BY_ADDRESS = (
        "PushDrop tokens are locked to a raw public key (P2PK) and cannot be found "
        "by address; a token may exist that this lookup cannot reach. Use the "
        "completion transaction id to locate it."
    )


@dataclass(frozen=True)
class ClassifiedOutput:
    index: int
    satoshis: int
    looks_like_token: bool
    candidate_key: str | None = None
    is_mine: bool = False
    token: ParsedToken | AsmPushDrop | ParseFailure | None = None
    txid: str | None = None


@dataclass(frozen=True)
class TransactionScan:
    txid: str
    outputs: tuple[ClassifiedOutput, ...] = ()
    error: IndexerUnavailable | None = None

    @property
    def status(self) -> str:
        return "unknown" if self.error is not None else "ok"

    @property
    def tokens(self) -> list[ClassifiedOutput]:
        return [o for o in self.outputs if o.looks_like_token]

    @property
    def mine(self) -> list[ClassifiedOutput]:
        return [o for o in self.outputs if o.is_mine]


@dataclass(frozen=True)
class AddressScan:
    identity_key: str
    address: str
    transactions: tuple[TransactionScan, ...]
    history_count: int = 0
    warnings: tuple[ScanWarning, ...] = field(default=(ScanWarning.P2PK_UNREACHABLE_BY_ADDRESS,))

    @property
    def token_count(self) -> int:
        return sum(len(t.tokens) for t in self.transactions)


def _asm_of(output: IndexedOutput) -> str:
    if output.script_asm:
        return output.script_asm
    if output.script_hex:
        try:
            return LockingScript.from_hex(output.script_hex).to_asm()
        except MalformedField:
            return ""
    return ""


def has_drop_opcode(asm: str) -> bool:
    return any(token in DROP_TOKENS for token in (asm or "").split())


def has_checksig_opcode(asm: str) -> bool:
    return CHECKSIG_TOKEN in (asm or "").split()


def looks_like_token(output: IndexedOutput, config: ScanConfig | None = None) -> bool:
    config = config or ScanConfig()
    asm = _asm_of(output)
    script_length = len(output.script_hex) // 2
    return (
        has_drop_opcode(asm)
        and has_checksig_opcode(asm)
        and (
            output.satoshis <= config.small_value_threshold_satoshis
            or script_length > config.long_script_threshold_bytes
        )
    )


def _normalize_key(key: str | None) -> str:
    return (key or "").strip().lower()


def classify_output(output: IndexedOutput, target_identity_key: str,
                    config: ScanConfig | None = None, txid: str | None = None) -> ClassifiedOutput:
    config = config or ScanConfig()
    if not looks_like_token(output, config):
        return ClassifiedOutput(
            index=output.index,
            satoshis=output.satoshis,
            looks_like_token=False,
            txid=txid,
        )

    asm = _asm_of(output)
    candidate = candidate_owner_key(asm)
    token = parse_hex(output.script_hex, expected_protocol=None) if output.script_hex else parse_asm(asm)
    is_mine = candidate is not None and candidate == _normalize_key(target_identity_key)
    if not token:
        logger.debug(f"Output {txid}:{output.index} looks like a token but did not parse: {token.reason.value}")
    return ClassifiedOutput(
        index=output.index,
        satoshis=output.satoshis,
        looks_like_token=True,
        candidate_key=candidate,
        is_mine=is_mine,
        token=token,
        txid=txid,
    )


def classify_outputs(outputs: Iterable[IndexedOutput], target_identity_key: str,
                     config: ScanConfig | None = None, txid: str | None = None) -> list[ClassifiedOutput]:
    """Classify every output; one unparseable output never stops the rest."""
    config = config or ScanConfig()
    return [classify_output(o, target_identity_key, config, txid) for o in outputs]


def identity_address(identity_key: str, network: str = config.NETWORK) -> str:
    """P2PKH address of an identity key, as used by address-indexed lookups."""
    key = PublicKey(encode_compressed_key(identity_key))
    return key.address(network=Network.TESTNET if network == "test" else Network.MAINNET)


async def scan_transactions(indexer, txids: Sequence[str], identity_key: str,
                            config: ScanConfig | None = None) -> list[TransactionScan]:
    """
    Fetch and classify transactions concurrently (at most ``config.concurrency`` in flight).

    Cancelling the calling task cancels every outstanding fetch. An indexer
    failure for one transaction yields an "unknown" TransactionScan for it.
    """
    config = config or ScanConfig()
    semaphore = asyncio.Semaphore(config.concurrency)

    async def scan_one(txid: str) -> TransactionScan:
        async with semaphore:
            try:
                tx = await indexer.fetch_transaction(txid)
            except IndexerUnavailable as e:
                logger.warning(f"Indexer unavailable for {txid}: {e}")
                return TransactionScan(txid=txid, error=e)
        outputs = classify_outputs(tx.outputs, identity_key, config, txid=txid)
        return TransactionScan(txid=txid, outputs=tuple(outputs))

    results = await asyncio.gather(*(scan_one(txid) for txid in txids))
    logger.info(
        f"Scanned {len(results)} transactions: "
        f"{sum(len(r.tokens) for r in results)} likely tokens, "
        f"{sum(len(r.mine) for r in results)} for {identity_key[:16]}"
    )
    return list(results)


async def scan_address(indexer, identity_key: str, address: str | None = None,
                       config: ScanConfig | None = None) -> AddressScan:
    """
    Classify the unspent outputs held at the identity key's address.

    The result always carries P2PK_UNREACHABLE_BY_ADDRESS: tokens locked to
    the raw key are not indexed under the address.

    Raises:
        IndexerUnavailable: the unspent-output lookup itself failed
    """
    config = config or ScanConfig()
    address = address or identity_address(identity_key, config.network)
    utxos, history = await asyncio.gather(
        indexer.fetch_unspent_outputs(address),
        indexer.fetch_history(address),
        return_exceptions=True,
    )
    if isinstance(utxos, BaseException):
        raise utxos
    if isinstance(history, BaseException):
        logger.warning(f"History unavailable for {address}: {history}")
        history = []

    semaphore = asyncio.Semaphore(config.concurrency)

    async def scan_utxo(utxo) -> TransactionScan:
        async with semaphore:
            try:
                tx = await indexer.fetch_transaction(utxo.txid)
            except IndexerUnavailable as e:
                logger.warning(f"Indexer unavailable for {utxo.txid}: {e}")
                return TransactionScan(txid=utxo.txid, error=e)
        matching = [o for o in tx.outputs if o.index == utxo.index]
        outputs = classify_outputs(matching, identity_key, config, txid=utxo.txid)
        return TransactionScan(txid=utxo.txid, outputs=tuple(outputs))

    scans = await asyncio.gather(*(scan_utxo(u) for u in utxos))
    logger.warning(f"{address}: {ScanWarning.P2PK_UNREACHABLE_BY_ADDRESS.value}")
    return AddressScan(
        identity_key=identity_key,
        address=address,
        transactions=tuple(scans),
        history_count=len(history),
    )
