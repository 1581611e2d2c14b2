"""In-process test doubles for the BRC-100 wallet and the chain indexer."""

import hashlib
import struct

from bsv.hash import hash256
from bsv.keys import PrivateKey, PublicKey
from bsv.merkle_path import MerklePath
from bsv.transaction.beef import ATOMIC_BEEF, BEEF_V2

from crowdtoken.errors import IndexerUnavailable
from crowdtoken.wallet.client import WalletClient


class FakeWallet:
    """Dict-call wallet with real BRC-42 key derivation and a reversible cipher."""

    def __init__(self, private_key: PrivateKey | None = None):
        self.key = private_key or PrivateKey()
        self.actions: list[dict] = []
        self.internalized: list[dict] = []
        self.outputs: list[dict] = []
        self.accept_payments = True
        self.next_tx: bytes | None = None

    @property
    def identity_key(self) -> str:
        return self.key.public_key().hex()

    @staticmethod
    def _invoice(args: dict) -> str:
        level, name = args["protocolID"]
        return f"{level}-{name}-{args['keyID']}"

    def get_public_key(self, args: dict) -> dict:
        if args.get("identityKey"):
            return {"publicKey": self.identity_key}
        counterparty = PublicKey(args["counterparty"])
        invoice = self._invoice(args)
        if args.get("forSelf"):
            derived = self.key.derive_child(counterparty, invoice).public_key()
        else:
            derived = counterparty.derive_child(self.key, invoice)
        return {"publicKey": derived.hex()}

    def _pad(self, args: dict, size: int) -> bytes:
        # keyed on the unordered pair of parties so either side can decrypt
        parties = sorted([self.identity_key, PublicKey(args["counterparty"]).hex()])
        seed = "".join(parties).encode() + self._invoice(args).encode()
        pad = b""
        counter = 0
        while len(pad) < size:
            pad += hashlib.sha256(seed + counter.to_bytes(4, "big")).digest()
            counter += 1
        return pad[:size]

    def encrypt(self, args: dict) -> dict:
        plaintext = bytes(args["plaintext"])
        pad = self._pad(args, len(plaintext))
        return {"ciphertext": list(bytes(a ^ b for a, b in zip(plaintext, pad)))}

    def decrypt(self, args: dict) -> dict:
        ciphertext = bytes(args["ciphertext"])
        pad = self._pad(args, len(ciphertext))
        return {"plaintext": list(bytes(a ^ b for a, b in zip(ciphertext, pad)))}

    def create_action(self, args: dict) -> dict:
        self.actions.append(args)
        result = {"txid": f"{len(self.actions):064x}"}
        if self.next_tx is not None:
            result["tx"] = list(self.next_tx)
        return result

    def internalize_action(self, args: dict) -> dict:
        self.internalized.append(args)
        return {"accepted": self.accept_payments}

    def list_outputs(self, args: dict) -> dict:
        return {"totalOutputs": len(self.outputs), "outputs": list(self.outputs)}


def make_client(private_key: PrivateKey | None = None) -> tuple[WalletClient, FakeWallet]:
    wallet = FakeWallet(private_key)
    return WalletClient(wallet), wallet


class FakeIndexer:
    """Indexer double serving canned IndexedTransactions; unknown txids fail."""

    def __init__(self, transactions=None, unspent=None, history=None):
        self.transactions = {tx.txid: tx for tx in (transactions or [])}
        self.unspent = unspent
        self.history = history
        self.fetched: list[str] = []

    async def fetch_transaction(self, txid: str):
        self.fetched.append(txid)
        if txid not in self.transactions:
            raise IndexerUnavailable(f"indexer returned 404 for {txid}", status_code=404)
        return self.transactions[txid]

    async def fetch_unspent_outputs(self, address: str):
        if self.unspent is None:
            raise IndexerUnavailable("unspent lookup failed", status_code=500)
        return list(self.unspent)

    async def fetch_history(self, address: str):
        if self.history is None:
            raise IndexerUnavailable("history lookup failed", status_code=500)
        return list(self.history)


def raw_transaction(outputs: list[tuple[int, bytes]], prev_txid: bytes = b"\x11" * 32) -> bytes:
    """Serialize a one-input transaction carrying the given (satoshis, script) outputs.

    ``prev_txid`` is in internal byte order, i.e. ``hash256(parent_raw)``.
    """
    tx = bytearray(struct.pack("<I", 1))
    tx += b"\x01" + prev_txid + struct.pack("<I", 0)
    tx += b"\x00" + b"\xff\xff\xff\xff"
    tx += bytes([len(outputs)])
    for satoshis, script in outputs:
        tx += struct.pack("<Q", satoshis) + bytes([len(script)]) + script
    tx += struct.pack("<I", 0)
    return bytes(tx)


def mined_bump(raw: bytes, block_height: int = 800000) -> bytes:
    """BUMP proving ``raw`` as the only transaction in its block."""
    path = MerklePath(block_height, [[
        {"offset": 0, "hash_str": hash256(raw)[::-1].hex(), "txid": True},
        {"offset": 1, "duplicate": True},
    ]])
    return path.to_binary()


def beef_v2(mined_parent: bytes, *transactions: bytes) -> bytes:
    """BEEF V2 with one BUMP: the parent as format 1, then plain format 0 entries."""
    beef = bytearray(struct.pack("<I", BEEF_V2))
    beef += b"\x01" + mined_bump(mined_parent)
    beef += bytes([len(transactions) + 1])
    beef += b"\x01\x00" + mined_parent
    for tx in transactions:
        beef += b"\x00" + tx
    return bytes(beef)


def atomic_beef(subject: bytes, envelope: bytes) -> bytes:
    return struct.pack("<I", ATOMIC_BEEF) + hash256(subject) + envelope
