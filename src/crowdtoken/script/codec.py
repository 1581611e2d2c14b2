"""Fixed-width encodings for token fields.

These functions raise MalformedField or InvalidKeyEncoding on bad input.
Only the parser layer is non-raising: ``crowdtoken.script.parser`` turns
those exceptions into a ``ParseFailure`` for each rejected output.
"""
import json
import struct

from crowdtoken.errors import InvalidKeyEncoding, MalformedField

AMOUNT_SIZE = 8
TIMESTAMP_SIZE = 4
COMPRESSED_KEY_SIZE = 33
COMPRESSED_KEY_PREFIXES = (0x02, 0x03)


def encode_amount(value: int) -> bytes:
    """Signed 64-bit little-endian."""
    try:
        return struct.pack("<q", value)
    except struct.error as e:
        raise MalformedField(f"amount {value} does not fit in a signed 64-bit integer") from e


def decode_amount(data: bytes) -> int:
    # Shorter buffers are zero-padded on the right; older tokens pushed
    # variable-length amounts and are still read this way.
    if len(data) > AMOUNT_SIZE:
        raise MalformedField(f"amount field is {len(data)} bytes, expected at most {AMOUNT_SIZE}")
    padded = bytes(data).ljust(AMOUNT_SIZE, b"\x00")
    return struct.unpack("<q", padded)[0]


def encode_timestamp(seconds: int) -> bytes:
    """Unsigned 32-bit little-endian unix seconds."""
    try:
        return struct.pack("<I", seconds)
    except struct.error as e:
        raise MalformedField(f"timestamp {seconds} does not fit in an unsigned 32-bit integer") from e


def decode_timestamp(data: bytes) -> int:
    if len(data) != TIMESTAMP_SIZE:
        raise MalformedField(f"timestamp field is {len(data)} bytes, expected {TIMESTAMP_SIZE}")
    return struct.unpack("<I", bytes(data))[0]


def is_compressed_key(data: bytes) -> bool:
    return len(data) == COMPRESSED_KEY_SIZE and data[0] in COMPRESSED_KEY_PREFIXES


def encode_compressed_key(key) -> bytes:
    """
    Normalize an owner key to its 33-byte compressed form.

    Args:
        key: raw bytes, a hex string, or a ``bsv.keys.PublicKey``

    Raises:
        InvalidKeyEncoding: if the result is not 33 bytes starting with 0x02/0x03
    """
    if hasattr(key, "serialize"):
        data = key.serialize(compressed=True)
    elif isinstance(key, str):
        try:
            data = bytes.fromhex(key.strip())
        except ValueError as e:
            raise InvalidKeyEncoding(f"owner key is not valid hex: {e}") from e
    elif isinstance(key, (bytes, bytearray, memoryview)):
        data = bytes(key)
    else:
        raise InvalidKeyEncoding(f"unsupported owner key type {type(key).__name__}")

    if len(data) != COMPRESSED_KEY_SIZE:
        raise InvalidKeyEncoding(f"owner key is {len(data)} bytes, expected {COMPRESSED_KEY_SIZE}")
    if data[0] not in COMPRESSED_KEY_PREFIXES:
        raise InvalidKeyEncoding(f"owner key prefix 0x{data[0]:02x} is not a compressed key marker")
    return data


def encode_metadata(metadata: dict) -> bytes:
    """Compact UTF-8 JSON, matching JSON.stringify output."""
    return json.dumps(metadata, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def decode_metadata(data: bytes) -> dict:
    try:
        value = json.loads(bytes(data).decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedField(f"metadata is not UTF-8 JSON: {e}") from e
    if not isinstance(value, dict):
        raise MalformedField("metadata must be a JSON object")
    return value


def decode_text(data: bytes, name: str) -> str:
    try:
        return bytes(data).decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedField(f"{name} is not valid UTF-8: {e}") from e
