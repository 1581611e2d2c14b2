"""Script chunk encoding tests: minimal pushes, byte and ASM round trips."""

import struct
import unittest

from crowdtoken.errors import MalformedField
from crowdtoken.script.chunks import (
    OP_0,
    OP_1NEGATE,
    OP_2DROP,
    OP_CHECKSIG,
    OP_DROP,
    OP_PUSHDATA1,
    OP_PUSHDATA2,
    OP_PUSHDATA4,
    OP_RETURN,
    LockingScript,
    Opcode,
    Push,
    _minimal_push,
    chunk_data,
    decode_chunks,
    opcode_name,
)

OWNER_KEY_HEX = "02" + "aa" * 32


# ===========================================================================
# 1. _minimal_push() edge case tests
# ===========================================================================
class TestMinimalPush(unittest.TestCase):
    """BIP-62 minimal push encoding edge cases."""

    # -- OP_0 cases ---------------------------------------------------------
    def test_empty_data(self):
        self.assertEqual(_minimal_push(b""), bytes([0x00]))

    def test_single_zero_byte_is_not_op_0(self):
        # OP_0 would read back as an empty field
        self.assertEqual(_minimal_push(b"\x00"), bytes([0x01, 0x00]))
        self.assertEqual(decode_chunks(_minimal_push(b"\x00")), [Push(b"\x00")])

    # -- OP_1 through OP_16 ------------------------------------------------
    def test_single_bytes_1_through_16(self):
        for v in range(1, 17):
            self.assertEqual(_minimal_push(bytes([v])), bytes([0x50 + v]),
                             f"Failed for value {v}")

    def test_0x81_maps_to_op_1negate(self):
        self.assertEqual(_minimal_push(bytes([0x81])), bytes([OP_1NEGATE]))

    # -- Direct push --------------------------------------------------------
    def test_single_byte_0x11(self):
        # 17 is outside the small-integer range
        self.assertEqual(_minimal_push(bytes([0x11])), bytes([0x01, 0x11]))

    def test_compressed_key_is_direct_push(self):
        key = bytes.fromhex(OWNER_KEY_HEX)
        self.assertEqual(_minimal_push(key), bytes([33]) + key)

    def test_length_75(self):
        data = bytes(range(75))
        result = _minimal_push(data)
        self.assertEqual(result[0], 75)
        self.assertEqual(result[1:], data)

    # -- OP_PUSHDATA1/2/4 ---------------------------------------------------
    def test_length_76(self):
        data = b"\xAB" * 76
        result = _minimal_push(data)
        self.assertEqual(result[:2], bytes([OP_PUSHDATA1, 76]))
        self.assertEqual(result[2:], data)

    def test_length_256(self):
        data = b"\xEF" * 256
        result = _minimal_push(data)
        self.assertEqual(result[0], OP_PUSHDATA2)
        self.assertEqual(result[1:3], struct.pack("<H", 256))
        self.assertEqual(result[3:], data)

    def test_length_65536(self):
        data = b"\x00" * 65536
        result = _minimal_push(data)
        self.assertEqual(result[0], OP_PUSHDATA4)
        self.assertEqual(result[1:5], struct.pack("<I", 65536))


# ===========================================================================
# 2. Decoding raw script bytes
# ===========================================================================
class TestDecodeChunks(unittest.TestCase):

    def test_decode_pushdrop_bytes(self):
        script = bytes([0x03]) + b"abc" + bytes([OP_DROP, 0x21]) + bytes.fromhex(OWNER_KEY_HEX) + bytes([OP_CHECKSIG])
        chunks = decode_chunks(script)
        self.assertEqual(chunks, [
            Push(b"abc"),
            Opcode(OP_DROP),
            Push(bytes.fromhex(OWNER_KEY_HEX)),
            Opcode(OP_CHECKSIG),
        ])

    def test_pushdata1(self):
        data = b"\x01" * 80
        chunks = decode_chunks(bytes([OP_PUSHDATA1, 80]) + data)
        self.assertEqual(chunks, [Push(data)])

    def test_truncated_push_raises(self):
        with self.assertRaises(MalformedField):
            decode_chunks(bytes([0x05, 0x01, 0x02]))

    def test_truncated_pushdata_length_raises(self):
        with self.assertRaises(MalformedField):
            decode_chunks(bytes([OP_PUSHDATA2, 0x01]))

    def test_raw_bytes_survive_non_minimal_push(self):
        # 0x01 0x05 should have been OP_5; decoded scripts keep their bytes
        raw = bytes([0x01, 0x05, OP_DROP])
        script = LockingScript.from_bytes(raw)
        self.assertEqual(script.to_bytes(), raw)


# ===========================================================================
# 3. Small-integer opcodes read back as field bytes
# ===========================================================================
class TestChunkData(unittest.TestCase):

    def test_push(self):
        self.assertEqual(chunk_data(Push(b"xyz")), b"xyz")

    def test_op_0_is_empty_field(self):
        self.assertEqual(chunk_data(Opcode(OP_0)), b"")

    def test_small_integers(self):
        for v in range(1, 17):
            self.assertEqual(chunk_data(Opcode(0x50 + v)), bytes([v]))

    def test_op_1negate(self):
        self.assertEqual(chunk_data(Opcode(OP_1NEGATE)), b"\x81")

    def test_real_opcode_has_no_data(self):
        self.assertIsNone(chunk_data(Opcode(OP_DROP)))
        self.assertIsNone(chunk_data(Opcode(OP_RETURN)))


# ===========================================================================
# 4. ASM
# ===========================================================================
class TestAsm(unittest.TestCase):

    def test_to_asm(self):
        script = LockingScript([
            Push(b"\xde\xad"),
            Opcode(OP_DROP),
            Push(bytes.fromhex(OWNER_KEY_HEX)),
            Opcode(OP_CHECKSIG),
        ])
        self.assertEqual(script.to_asm(), f"dead OP_DROP {OWNER_KEY_HEX} OP_CHECKSIG")

    def test_from_asm_matches_bytes(self):
        asm = f"0 OP_RETURN 434f494e {OWNER_KEY_HEX} OP_2DROP OP_CHECKSIG"
        script = LockingScript.from_asm(asm)
        self.assertEqual(script.to_asm(), asm)
        self.assertEqual(LockingScript.from_bytes(script.to_bytes()), script)

    def test_small_integer_names(self):
        self.assertEqual(opcode_name(OP_0), "0")
        self.assertEqual(opcode_name(OP_1NEGATE), "-1")
        self.assertEqual(opcode_name(0x55), "5")
        self.assertEqual(opcode_name(OP_2DROP), "OP_2DROP")
        self.assertEqual(opcode_name(0xBA), "OP_UNKNOWN186")

    def test_unknown_token_raises(self):
        with self.assertRaises(MalformedField):
            LockingScript.from_asm("OP_DROP not-hex")

    def test_invalid_hex_raises(self):
        with self.assertRaises(MalformedField):
            LockingScript.from_hex("zz")


if __name__ == "__main__":
    unittest.main()
