"""Locking script chunks: ``Chunk = Opcode | Push`` with byte and ASM encodings.

Pushes are written with minimal (BIP-62) encoding, the same way ``@bsv/sdk``
serializes PushDrop fields, so scripts built here are byte-identical to
scripts built by the TypeScript wallets that consume them.
"""
import re
import struct
from dataclasses import dataclass
from typing import Iterable, Iterator

from crowdtoken.errors import MalformedField


OP_0 = 0x00
OP_FALSE = OP_0
OP_PUSHDATA1 = 0x4C
OP_PUSHDATA2 = 0x4D
OP_PUSHDATA4 = 0x4E
OP_1NEGATE = 0x4F
OP_1 = 0x51
OP_16 = 0x60
OP_NOP = 0x61
OP_VERIFY = 0x69
OP_RETURN = 0x6A
OP_2DROP = 0x6D
OP_DROP = 0x75
OP_DUP = 0x76
OP_EQUAL = 0x87
OP_EQUALVERIFY = 0x88
OP_SHA256 = 0xA8
OP_HASH160 = 0xA9
OP_CHECKSIG = 0xAC
OP_CHECKSIGVERIFY = 0xAD
OP_CHECKMULTISIG = 0xAE

OPCODE_NAMES = {
    OP_PUSHDATA1: "OP_PUSHDATA1",
    OP_PUSHDATA2: "OP_PUSHDATA2",
    OP_PUSHDATA4: "OP_PUSHDATA4",
    OP_NOP: "OP_NOP",
    0x63: "OP_IF",
    0x64: "OP_NOTIF",
    0x67: "OP_ELSE",
    0x68: "OP_ENDIF",
    OP_VERIFY: "OP_VERIFY",
    OP_RETURN: "OP_RETURN",
    0x6B: "OP_TOALTSTACK",
    0x6C: "OP_FROMALTSTACK",
    OP_2DROP: "OP_2DROP",
    0x6E: "OP_2DUP",
    0x74: "OP_DEPTH",
    OP_DROP: "OP_DROP",
    OP_DUP: "OP_DUP",
    0x77: "OP_NIP",
    0x78: "OP_OVER",
    0x7C: "OP_SWAP",
    0x7E: "OP_CAT",
    0x7F: "OP_SPLIT",
    0x82: "OP_SIZE",
    OP_EQUAL: "OP_EQUAL",
    OP_EQUALVERIFY: "OP_EQUALVERIFY",
    0xA6: "OP_RIPEMD160",
    0xA7: "OP_SHA1",
    OP_SHA256: "OP_SHA256",
    OP_HASH160: "OP_HASH160",
    0xAA: "OP_HASH256",
    OP_CHECKSIG: "OP_CHECKSIG",
    OP_CHECKSIGVERIFY: "OP_CHECKSIGVERIFY",
    OP_CHECKMULTISIG: "OP_CHECKMULTISIG",
    0xAF: "OP_CHECKMULTISIGVERIFY",
}
NAME_TO_OPCODE = {name: code for code, name in OPCODE_NAMES.items()}
NAME_TO_OPCODE.update({
    "OP_0": OP_0,
    "OP_FALSE": OP_FALSE,
    "OP_1NEGATE": OP_1NEGATE,
    "OP_TRUE": OP_1,
})
NAME_TO_OPCODE.update({f"OP_{n}": OP_1 + n - 1 for n in range(1, 17)})

_UNKNOWN_OPCODE = re.compile(r"^OP_UNKNOWN(\d+)$")
_HEX = re.compile(r"^(?:[0-9a-fA-F]{2})+$")


def _minimal_push(data: bytes) -> bytes:
    """Encode data as a Bitcoin script minimal push (BIP-62 compliant).

    OP_0 pushes an empty vector, so a single zero byte keeps a one-byte push.
    """
    n = len(data)
    if n == 0:
        return bytes([OP_0])
    if n == 1 and 1 <= data[0] <= 16:
        return bytes([0x50 + data[0]])  # OP_1 through OP_16
    if n == 1 and data[0] == 0x81:
        return bytes([OP_1NEGATE])
    if n < OP_PUSHDATA1:
        return bytes([n]) + data
    if n <= 0xFF:
        return bytes([OP_PUSHDATA1, n]) + data
    if n <= 0xFFFF:
        return bytes([OP_PUSHDATA2]) + struct.pack("<H", n) + data
    return bytes([OP_PUSHDATA4]) + struct.pack("<I", n) + data


@dataclass(frozen=True)
class Opcode:
    """A chunk carrying no data."""
    code: int

    @property
    def name(self) -> str:
        return opcode_name(self.code)

    def encode(self) -> bytes:
        return bytes([self.code])


@dataclass(frozen=True)
class Push:
    """A data-push chunk."""
    data: bytes

    def encode(self) -> bytes:
        return _minimal_push(self.data)


Chunk = Opcode | Push


def opcode_name(code: int) -> str:
    if code == OP_0:
        return "0"
    if code == OP_1NEGATE:
        return "-1"
    if OP_1 <= code <= OP_16:
        return str(code - 0x50)
    return OPCODE_NAMES.get(code, f"OP_UNKNOWN{code}")


def chunk_data(chunk: Chunk) -> bytes | None:
    """Field bytes carried by a chunk, including the small-integer opcodes a minimal push produces."""
    match chunk:
        case Push(data=data):
            return data
        case Opcode(code=code) if code == OP_0:
            return b""
        case Opcode(code=code) if code == OP_1NEGATE:
            return b"\x81"
        case Opcode(code=code) if OP_1 <= code <= OP_16:
            return bytes([code - 0x50])
        case _:
            return None


def is_opcode(chunk: Chunk, *codes: int) -> bool:
    return isinstance(chunk, Opcode) and chunk.code in codes


def encode_chunks(chunks: Iterable[Chunk]) -> bytes:
    return b"".join(chunk.encode() for chunk in chunks)


def decode_chunks(data: bytes) -> list[Chunk]:
    """Split raw script bytes into chunks. Raises MalformedField on a truncated push."""
    chunks: list[Chunk] = []
    i = 0
    end = len(data)
    while i < end:
        op = data[i]
        i += 1
        if 0 < op < OP_PUSHDATA1:
            n = op
        elif op in (OP_PUSHDATA1, OP_PUSHDATA2, OP_PUSHDATA4):
            width = {OP_PUSHDATA1: 1, OP_PUSHDATA2: 2, OP_PUSHDATA4: 4}[op]
            if i + width > end:
                raise MalformedField(f"truncated push length at offset {i - 1}")
            n = int.from_bytes(data[i:i + width], "little")
            i += width
        else:
            chunks.append(Opcode(op))
            continue
        if i + n > end:
            raise MalformedField(f"push of {n} bytes at offset {i} runs past end of script")
        chunks.append(Push(bytes(data[i:i + n])))
        i += n
    return chunks


def chunks_to_asm(chunks: Iterable[Chunk]) -> str:
    parts = []
    for chunk in chunks:
        match chunk:
            case Push(data=data):
                parts.append(data.hex() if data else "0")
            case Opcode(code=code):
                parts.append(opcode_name(code))
    return " ".join(parts)


def asm_to_chunks(text: str) -> list[Chunk]:
    chunks: list[Chunk] = []
    for token in text.split():
        if token in NAME_TO_OPCODE:
            chunks.append(Opcode(NAME_TO_OPCODE[token]))
        elif token == "0":
            chunks.append(Opcode(OP_0))
        elif token == "-1":
            chunks.append(Opcode(OP_1NEGATE))
        elif token.isdigit() and 1 <= int(token) <= 16:
            chunks.append(Opcode(0x50 + int(token)))
        elif m := _UNKNOWN_OPCODE.match(token):
            chunks.append(Opcode(int(m.group(1))))
        elif _HEX.match(token):
            chunks.append(Push(bytes.fromhex(token)))
        else:
            raise MalformedField(f"unrecognized ASM token {token!r}")
    return chunks


class LockingScript:
    """An ordered sequence of chunks.

    Scripts decoded from bytes remember the original serialization, so
    non-minimal pushes coming off the chain survive a ``to_bytes()`` unchanged.
    """

    def __init__(self, chunks: Iterable[Chunk], raw: bytes | None = None):
        self.chunks: tuple[Chunk, ...] = tuple(chunks)
        self._raw = raw

    @classmethod
    def from_bytes(cls, data: bytes) -> "LockingScript":
        data = bytes(data)
        return cls(decode_chunks(data), raw=data)

    @classmethod
    def from_hex(cls, text: str) -> "LockingScript":
        try:
            data = bytes.fromhex(text.strip())
        except ValueError as e:
            raise MalformedField(f"script is not valid hex: {e}") from e
        return cls.from_bytes(data)

    @classmethod
    def from_asm(cls, text: str) -> "LockingScript":
        return cls(asm_to_chunks(text))

    def to_bytes(self) -> bytes:
        if self._raw is not None:
            return self._raw
        return encode_chunks(self.chunks)

    def hex(self) -> str:
        return self.to_bytes().hex()

    def to_asm(self) -> str:
        return chunks_to_asm(self.chunks)

    @property
    def byte_length(self) -> int:
        return len(self.to_bytes())

    def __iter__(self) -> Iterator[Chunk]:
        return iter(self.chunks)

    def __eq__(self, other) -> bool:
        if not isinstance(other, LockingScript):
            return NotImplemented
        return self.to_bytes() == other.to_bytes()

    def __hash__(self) -> int:
        return hash(self.to_bytes())

    def __repr__(self) -> str:
        return f"LockingScript({self.to_asm()!r})"
