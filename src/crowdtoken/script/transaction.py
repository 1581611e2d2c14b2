"""Read transaction outputs from raw transactions and BEEF envelopes.

Supported inputs:
  - raw transaction bytes
  - BEEF V1 (BRC-62) and BEEF V2 (BRC-96); the last transaction is the subject
  - Atomic BEEF (BRC-95); the subject is named by txid in the header

Decoding is done by bsv-sdk. Merkle paths are attached by the SDK but not
verified here; SPV checks are the wallet's job.
"""
from dataclasses import dataclass

from bsv.hash import hash256
from bsv.transaction import Transaction
from bsv.transaction.beef import ATOMIC_BEEF, BEEF_V1, BEEF_V2, new_beef_from_bytes
from bsv.utils import Reader

from crowdtoken.errors import MalformedField
from crowdtoken.script.chunks import LockingScript


@dataclass(frozen=True)
class TxOutput:
    satoshis: int
    locking_script: LockingScript


@dataclass(frozen=True)
class RawTransaction:
    txid: str
    version: int
    outputs: tuple[TxOutput, ...]
    lock_time: int
    raw: bytes


def txid_of(raw: bytes) -> str:
    return hash256(raw)[::-1].hex()


def _locking_script(script: bytes) -> LockingScript:
    try:
        return LockingScript.from_bytes(script)
    except MalformedField:
        # non-script data in an output still has to round-trip its bytes
        return LockingScript((), raw=script)


def _from_sdk(tx: Transaction, raw: bytes | None = None) -> RawTransaction:
    raw = tx.serialize() if raw is None else raw
    outputs = tuple(
        TxOutput(satoshis=o.satoshis, locking_script=_locking_script(o.locking_script.serialize()))
        for o in tx.outputs
    )
    return RawTransaction(
        txid=tx.txid(),
        version=tx.version,
        outputs=outputs,
        lock_time=tx.locktime,
        raw=raw,
    )


def _with_ancestors(tx: Transaction) -> dict[str, Transaction]:
    found: dict[str, Transaction] = {}
    pending = [tx]
    while pending:
        current = pending.pop()
        txid = current.txid()
        if txid in found:
            continue
        found[txid] = current
        pending.extend(i.source_transaction for i in current.inputs if i.source_transaction is not None)
    return found


def _beef_transactions(data: bytes) -> list[Transaction]:
    """Full transactions of a V1/V2 BEEF, subject last."""
    version = int.from_bytes(data[:4], "little")
    if version == BEEF_V1:
        # from_beef returns the subject with its ancestors linked through inputs
        return list(reversed(_with_ancestors(Transaction.from_beef(data)).values()))
    if version == BEEF_V2:
        beef = new_beef_from_bytes(data)
        return [b.tx_obj for b in beef.txs.values() if b.tx_obj is not None and b.data_format != 2]
    raise MalformedField(f"unsupported BEEF version {version:#010x}")


def _read_raw(data: bytes) -> Transaction:
    reader = Reader(data)
    tx = Transaction.from_reader(reader)
    if not reader.eof():
        raise MalformedField(f"{len(data) - reader.tell()} trailing bytes after transaction")
    return tx


def read_transaction(data: bytes) -> RawTransaction:
    """
    Return the subject transaction of raw / BEEF / Atomic BEEF bytes.

    Raises:
        MalformedField: data is truncated or not a transaction
    """
    data = bytes(data)
    if len(data) < 4:
        raise MalformedField("transaction data too short")
    prefix = int.from_bytes(data[:4], "little")

    try:
        if prefix == ATOMIC_BEEF:
            if len(data) < 40:
                raise MalformedField("atomic BEEF header truncated")
            subject = data[4:36][::-1].hex()
            matches = [tx for tx in _beef_transactions(data[36:]) if tx.txid() == subject]
            if not matches:
                raise MalformedField("atomic BEEF subject transaction not found")
            return _from_sdk(matches[-1])

        if prefix in (BEEF_V1, BEEF_V2):
            transactions = _beef_transactions(data)
            if not transactions:
                raise MalformedField("BEEF carries no full transactions")
            return _from_sdk(transactions[-1])

        return _from_sdk(_read_raw(data), raw=data)
    except (ValueError, TypeError, KeyError, IndexError) as e:
        raise MalformedField(f"invalid transaction data: {e}") from e


def read_transaction_outputs(data: bytes) -> tuple[TxOutput, ...]:
    return read_transaction(data).outputs
