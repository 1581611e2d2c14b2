"""PushDrop locking script construction.

Two token layouts are produced:

    DATA       OP_FALSE OP_RETURN <protocol_id> <amount> <owner_key> <timestamp> [<campaign_id>] [<metadata>]
    SPENDABLE  <field> OP_DROP ... <owner_key> OP_CHECKSIG

The DATA layout is provably unspendable and carries zero satoshis; it is
paired with a plain payment output. The SPENDABLE layout can be redeemed by
whoever holds the private key for ``owner_key``; its fields are advisory data
dropped from the stack before the signature check.
"""
import time
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from crowdtoken.errors import EmptyProtocolId, MalformedField
from crowdtoken.script.chunks import (
    OP_2DROP,
    OP_CHECKSIG,
    OP_DROP,
    OP_FALSE,
    OP_RETURN,
    Chunk,
    LockingScript,
    Opcode,
    Push,
)
from crowdtoken.script.codec import (
    encode_amount,
    encode_compressed_key,
    encode_metadata,
    encode_timestamp,
)

CROWDFUND_PROTOCOL_ID = "CROWDFUND"


class TokenVariant(Enum):
    DATA = "data"
    SPENDABLE = "spendable"


class DropStyle(Enum):
    SINGLE = "single"
    PAIRED = "paired"


@dataclass(frozen=True)
class InvestmentToken:
    """Decoded contents of a DATA token."""
    amount: int
    owner_key: bytes
    timestamp: int
    campaign_id: str | None = None
    metadata: dict | None = None
    protocol_id: str = CROWDFUND_PROTOCOL_ID

    @classmethod
    def create(cls, amount: int, owner_key, campaign_id: str | None = None,
               metadata: dict | None = None, timestamp: int | None = None,
               protocol_id: str = CROWDFUND_PROTOCOL_ID) -> "InvestmentToken":
        return cls(
            amount=amount,
            owner_key=encode_compressed_key(owner_key),
            timestamp=int(time.time()) if timestamp is None else timestamp,
            campaign_id=campaign_id,
            metadata=metadata,
            protocol_id=protocol_id,
        )

    def fields(self) -> list[bytes]:
        """Payload fields in script order, excluding the owner key."""
        fields = [encode_amount(self.amount), encode_timestamp(self.timestamp)]
        # an empty campaign id is treated as absent
        if self.campaign_id:
            fields.append(self.campaign_id.encode("utf-8"))
        if self.metadata is not None:
            if not self.campaign_id:
                # metadata is positional; keep its slot by pushing an empty campaign id
                fields.append(b"")
            fields.append(encode_metadata(self.metadata))
        return fields


def _drop_sequence(n_items: int) -> list[Chunk]:
    drops: list[Chunk] = [Opcode(OP_2DROP)] * (n_items // 2)
    if n_items % 2 == 1:
        drops.append(Opcode(OP_DROP))
    return drops


def _field_chunks(fields: Sequence[bytes], drop_style: DropStyle) -> list[Chunk]:
    chunks: list[Chunk] = []
    if drop_style is DropStyle.SINGLE:
        for field in fields:
            chunks.append(Push(bytes(field)))
            chunks.append(Opcode(OP_DROP))
    else:
        chunks.extend(Push(bytes(field)) for field in fields)
        chunks.extend(_drop_sequence(len(fields)))
    return chunks


def build_locking_script(
    protocol_id: str,
    fields: Sequence[bytes],
    owner_key,
    variant: TokenVariant = TokenVariant.SPENDABLE,
    drop_style: DropStyle = DropStyle.SINGLE,
) -> LockingScript:
    """
    Build a PushDrop locking script.

    Args:
        protocol_id: payload schema tag; pushed only by the DATA variant
        fields: ordered payload fields. For DATA, fields[0] is the amount slot
            and the owner key is pushed right after it.
        owner_key: compressed public key (bytes, hex or bsv PublicKey)
        variant: DATA (unspendable) or SPENDABLE
        drop_style: how SPENDABLE fields are dropped; ignored for DATA

    Returns:
        LockingScript

    Raises:
        InvalidKeyEncoding: owner key is not a 33-byte compressed key
        EmptyProtocolId: DATA variant without a protocol id
        MalformedField: DATA without an amount slot, SPENDABLE without fields
    """
    key = encode_compressed_key(owner_key)

    if variant is TokenVariant.DATA:
        if not protocol_id:
            raise EmptyProtocolId("data-carrying token requires a protocol id")
        if not fields:
            raise MalformedField("data-carrying token requires an amount field")
        chunks: list[Chunk] = [
            Opcode(OP_FALSE),
            Opcode(OP_RETURN),
            Push(protocol_id.encode("utf-8")),
            Push(bytes(fields[0])),
            Push(key),
        ]
        chunks.extend(Push(bytes(field)) for field in fields[1:])
        return LockingScript(chunks)

    if not fields:
        raise MalformedField("spendable token requires at least one field")
    chunks = _field_chunks(fields, drop_style)
    chunks.append(Push(key))
    chunks.append(Opcode(OP_CHECKSIG))
    return LockingScript(chunks)


def build_investment_token_script(token: InvestmentToken) -> LockingScript:
    return build_locking_script(
        token.protocol_id,
        token.fields(),
        token.owner_key,
        variant=TokenVariant.DATA,
    )


def build_spendable_token_script(
    ciphertext: bytes,
    owner_key,
    drop_style: DropStyle = DropStyle.SINGLE,
) -> LockingScript:
    """<ciphertext> OP_DROP <owner_key> OP_CHECKSIG"""
    return build_locking_script("", [ciphertext], owner_key, TokenVariant.SPENDABLE, drop_style)
