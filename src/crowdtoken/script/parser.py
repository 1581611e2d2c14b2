"""PushDrop locking script parsing.

Every entry point returns either a success value or a ``ParseFailure``;
malformed input never raises, so batch callers can skip one bad output and
carry on with the rest. ``expect_token`` turns a failure into the matching
exception for callers that want one.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from crowdtoken.errors import (
    CrowdTokenError,
    InvalidKeyEncoding,
    MalformedField,
    NotPushDropShaped,
    UnrecognizedProtocol,
)
from crowdtoken.script.chunks import (
    OP_2DROP,
    OP_CHECKSIG,
    OP_DROP,
    OP_FALSE,
    OP_RETURN,
    Chunk,
    LockingScript,
    Push,
    chunk_data,
    is_opcode,
)
from crowdtoken.script.codec import (
    COMPRESSED_KEY_SIZE,
    decode_amount,
    decode_metadata,
    decode_text,
    decode_timestamp,
    encode_compressed_key,
    is_compressed_key,
)
from crowdtoken.script.pushdrop import CROWDFUND_PROTOCOL_ID, InvestmentToken, TokenVariant

logger = logging.getLogger(__name__)

DROP_TOKENS = ("OP_DROP", "OP_2DROP")
CHECKSIG_TOKEN = "OP_CHECKSIG"


class FailureReason(Enum):
    TOO_SHORT = "too_short"
    WRONG_PREFIX = "wrong_prefix"
    UNRECOGNIZED_PROTOCOL = "unrecognized_protocol"
    INVALID_KEY_ENCODING = "invalid_key_encoding"
    MALFORMED_FIELD = "malformed_field"
    NOT_PUSHDROP_SHAPED = "not_pushdrop_shaped"


@dataclass(frozen=True)
class ParseFailure:
    reason: FailureReason
    detail: str = ""

    ok = False

    def __bool__(self) -> bool:
        return False


@dataclass(frozen=True)
class ParsedToken:
    variant: TokenVariant
    owner_key: bytes
    fields: tuple[bytes, ...]
    protocol_id: str | None = None
    amount: int | None = None
    timestamp: int | None = None
    campaign_id: str | None = None
    metadata: dict | None = None

    ok = True

    @property
    def owner_key_hex(self) -> str:
        return self.owner_key.hex()

    def to_investment_token(self) -> InvestmentToken:
        if self.variant is not TokenVariant.DATA or self.amount is None:
            raise ValueError("only data-carrying tokens decode to an InvestmentToken")
        return InvestmentToken(
            amount=self.amount,
            owner_key=self.owner_key,
            timestamp=self.timestamp or 0,
            campaign_id=self.campaign_id,
            metadata=self.metadata,
            protocol_id=self.protocol_id or "",
        )


@dataclass(frozen=True)
class AsmPushDrop:
    """Result of the text heuristic: raw ASM tokens, not decoded bytes."""
    owner_key: str
    fields: tuple[str, ...]

    ok = True


ParseResult = ParsedToken | ParseFailure

_ERRORS = {
    FailureReason.INVALID_KEY_ENCODING: InvalidKeyEncoding,
    FailureReason.MALFORMED_FIELD: MalformedField,
    FailureReason.UNRECOGNIZED_PROTOCOL: UnrecognizedProtocol,
}


def expect_token(result):
    """Return a successful parse result, raising the matching CrowdTokenError for a failure."""
    if isinstance(result, ParseFailure):
        error = _ERRORS.get(result.reason, NotPushDropShaped)
        raise error(f"{result.reason.value}: {result.detail}")
    return result


def _failure_from(error: CrowdTokenError) -> ParseFailure:
    if isinstance(error, InvalidKeyEncoding):
        return ParseFailure(FailureReason.INVALID_KEY_ENCODING, str(error))
    if isinstance(error, MalformedField):
        return ParseFailure(FailureReason.MALFORMED_FIELD, str(error))
    return ParseFailure(FailureReason.NOT_PUSHDROP_SHAPED, str(error))


def _is_data_prefix(chunks: Sequence[Chunk]) -> bool:
    return len(chunks) >= 2 and is_opcode(chunks[0], OP_FALSE) and is_opcode(chunks[1], OP_RETURN)


def parse_data_token(
    chunks: Sequence[Chunk],
    expected_protocol: str | None = CROWDFUND_PROTOCOL_ID,
) -> ParseResult:
    """
    Parse OP_FALSE OP_RETURN <protocol> <amount> <key> <timestamp> [<campaign>] [<metadata>].

    Trailing optional chunks may be absent. ``expected_protocol=None``
    accepts any non-empty protocol id.
    """
    chunks = list(chunks)
    if len(chunks) < 2:
        return ParseFailure(FailureReason.TOO_SHORT, f"{len(chunks)} chunks")
    if not _is_data_prefix(chunks):
        return ParseFailure(FailureReason.WRONG_PREFIX, "expected OP_FALSE OP_RETURN")

    values = [chunk_data(c) for c in chunks[2:]]
    if any(v is None for v in values):
        return ParseFailure(FailureReason.NOT_PUSHDROP_SHAPED, "opcode after OP_RETURN marker")

    if not values:
        return ParseFailure(FailureReason.TOO_SHORT, "missing protocol id")
    try:
        protocol_id = decode_text(values[0], "protocol id")
    except MalformedField as e:
        return ParseFailure(FailureReason.UNRECOGNIZED_PROTOCOL, str(e))
    if not protocol_id or (expected_protocol is not None and protocol_id != expected_protocol):
        return ParseFailure(FailureReason.UNRECOGNIZED_PROTOCOL, f"protocol id {protocol_id!r}")

    if len(values) < 3:
        return ParseFailure(FailureReason.TOO_SHORT, "missing amount or owner key")

    try:
        amount = decode_amount(values[1])
        owner_key = encode_compressed_key(values[2])
        timestamp = decode_timestamp(values[3]) if len(values) > 3 else None
        campaign_id = decode_text(values[4], "campaign id") if len(values) > 4 else None
        metadata = decode_metadata(values[5]) if len(values) > 5 else None
    except CrowdTokenError as e:
        return _failure_from(e)

    return ParsedToken(
        variant=TokenVariant.DATA,
        owner_key=owner_key,
        fields=tuple([values[1]] + values[3:]),
        protocol_id=protocol_id,
        amount=amount,
        timestamp=timestamp,
        campaign_id=campaign_id or None,
        metadata=metadata,
    )


def parse_spendable_token(chunks: Sequence[Chunk]) -> ParseResult:
    """Parse <field> OP_DROP|OP_2DROP ... <owner_key> OP_CHECKSIG."""
    chunks = list(chunks)
    if len(chunks) < 3:
        return ParseFailure(FailureReason.TOO_SHORT, f"{len(chunks)} chunks")
    if not is_opcode(chunks[-1], OP_CHECKSIG):
        return ParseFailure(FailureReason.NOT_PUSHDROP_SHAPED, "script does not end in OP_CHECKSIG")
    key_chunk = chunks[-2]
    if not isinstance(key_chunk, Push):
        return ParseFailure(FailureReason.NOT_PUSHDROP_SHAPED, "no key push before OP_CHECKSIG")

    fields: list[bytes] = []
    stack = 0
    for chunk in chunks[:-2]:
        if is_opcode(chunk, OP_DROP, OP_2DROP):
            stack -= 2 if chunk.code == OP_2DROP else 1
            if stack < 0:
                return ParseFailure(FailureReason.NOT_PUSHDROP_SHAPED, "drop without a pushed field")
            continue
        data = chunk_data(chunk)
        if data is None:
            return ParseFailure(FailureReason.NOT_PUSHDROP_SHAPED, f"unexpected opcode {chunk.name}")
        fields.append(data)
        stack += 1

    if not fields or stack != 0:
        return ParseFailure(FailureReason.NOT_PUSHDROP_SHAPED, "fields are not all dropped")
    if not is_compressed_key(key_chunk.data):
        return ParseFailure(
            FailureReason.INVALID_KEY_ENCODING,
            f"owner key is {len(key_chunk.data)} bytes",
        )

    return ParsedToken(
        variant=TokenVariant.SPENDABLE,
        owner_key=key_chunk.data,
        fields=tuple(fields),
    )


def parse_chunks(
    chunks: Sequence[Chunk],
    expected_protocol: str | None = CROWDFUND_PROTOCOL_ID,
) -> ParseResult:
    """Detect the variant from the chunk shape and parse accordingly."""
    chunks = list(chunks)
    if chunks and (is_opcode(chunks[0], OP_RETURN) or _is_data_prefix(chunks)):
        return parse_data_token(chunks, expected_protocol)
    return parse_spendable_token(chunks)


def parse_hex(text: str, expected_protocol: str | None = CROWDFUND_PROTOCOL_ID) -> ParseResult:
    try:
        script = LockingScript.from_hex(text)
    except MalformedField as e:
        return ParseFailure(FailureReason.NOT_PUSHDROP_SHAPED, str(e))
    return parse_chunks(script.chunks, expected_protocol)


def parse_asm(text: str) -> AsmPushDrop | ParseFailure:
    """
    Heuristic PushDrop reader for disassembled scripts from an indexer.

    The token right before OP_CHECKSIG is the owner key; every other
    non-opcode token is a data field, in encounter order. At least one
    OP_DROP or OP_2DROP must come before OP_CHECKSIG, as in the chunk parser.
    """
    tokens = (text or "").split()
    if CHECKSIG_TOKEN not in tokens:
        return ParseFailure(FailureReason.NOT_PUSHDROP_SHAPED, "no OP_CHECKSIG")

    owner_key = None
    fields: list[str] = []
    drops = 0
    for i, token in enumerate(tokens):
        if token in DROP_TOKENS:
            drops += 1
            continue
        if token == CHECKSIG_TOKEN:
            previous = tokens[i - 1] if i > 0 else None
            if previous is not None and not previous.startswith("OP_"):
                owner_key = fields.pop()
            break
        if not token.startswith("OP_"):
            fields.append(token)

    if owner_key is None:
        return ParseFailure(FailureReason.NOT_PUSHDROP_SHAPED, "no key before OP_CHECKSIG")
    if not drops or not fields:
        return ParseFailure(FailureReason.NOT_PUSHDROP_SHAPED, "no dropped field before the key")
    if len(owner_key) != COMPRESSED_KEY_SIZE * 2 or owner_key[:2] not in ("02", "03"):
        return ParseFailure(FailureReason.INVALID_KEY_ENCODING, f"owner key {owner_key!r}")
    return AsmPushDrop(owner_key=owner_key.lower(), fields=tuple(fields))


def candidate_owner_key(asm: str) -> str | None:
    """Token before the first OP_CHECKSIG, trimmed and lower-cased, without validation."""
    tokens = (asm or "").split()
    for i, token in enumerate(tokens):
        if token == CHECKSIG_TOKEN:
            if i > 0 and not tokens[i - 1].startswith("OP_"):
                return tokens[i - 1].strip().lower()
            return None
    return None


def parse(script, expected_protocol: str | None = CROWDFUND_PROTOCOL_ID):
    """
    Parse a PushDrop token from any supported representation.

    Args:
        script: LockingScript or chunk list, raw script bytes, or ASM text

    Returns:
        ParsedToken, AsmPushDrop (ASM input) or ParseFailure
    """
    if isinstance(script, LockingScript):
        return parse_chunks(script.chunks, expected_protocol)
    if isinstance(script, (bytes, bytearray, memoryview)):
        try:
            script = LockingScript.from_bytes(bytes(script))
        except MalformedField as e:
            return ParseFailure(FailureReason.NOT_PUSHDROP_SHAPED, str(e))
        return parse_chunks(script.chunks, expected_protocol)
    if isinstance(script, str):
        return parse_asm(script)
    if isinstance(script, (list, tuple)):
        return parse_chunks(script, expected_protocol)
    logger.debug("Unsupported script representation: %s", type(script).__name__)
    return ParseFailure(FailureReason.NOT_PUSHDROP_SHAPED, f"unsupported input {type(script).__name__}")
