import struct
import tempfile
import unittest

from pcapstream.core import Endianness, InvalidMagic, TruncatedHeader
from pcapstream.header import decode_global_header, decode_record_header
from pcapstream.source import ByteSource

from pcapfixtures import global_header, record


class TestGlobalHeader(unittest.TestCase):
    def setUp(self):
        self.tmp_fp = tempfile.NamedTemporaryFile()

    def tearDown(self):
        self.tmp_fp.close()

    def _write(self, buf):
        self.tmp_fp.seek(0)
        self.tmp_fp.truncate()
        self.tmp_fp.write(buf)
        self.tmp_fp.flush()
        self.tmp_fp.seek(0)

    def test_little_endian_fields_are_reversed(self):
        buf = global_header("<", version=(2, 4), thiszone=-3600, sigfigs=7,
                            snaplen=0x01020304, linktype=105)
        self._write(buf)
        hdr = decode_global_header(self.tmp_fp)

        self.assertIs(hdr.endianness, Endianness.LITTLE)
        self.assertEqual(hdr.magic, b"\xd4\xc3\xb2\xa1")
        # each field equals its file bytes read back to front
        self.assertEqual(hdr.version_major, int.from_bytes(buf[4:6][::-1], "big"))
        self.assertEqual(hdr.version_minor, int.from_bytes(buf[6:8][::-1], "big"))
        self.assertEqual(hdr.thiszone, int.from_bytes(buf[8:12][::-1], "big", signed=True))
        self.assertEqual(hdr.sigfigs, int.from_bytes(buf[12:16][::-1], "big"))
        self.assertEqual(hdr.snaplen, int.from_bytes(buf[16:20][::-1], "big"))
        self.assertEqual(hdr.linktype, int.from_bytes(buf[20:24][::-1], "big"))
        self.assertEqual((hdr.version_major, hdr.version_minor), (2, 4))
        self.assertEqual(hdr.thiszone, -3600)
        self.assertEqual(hdr.snaplen, 0x01020304)

    def test_big_endian_fields_in_file_order(self):
        buf = global_header(">", version=(2, 4), snaplen=0x01020304, linktype=1)
        hdr = decode_global_header(buf)
        self.assertIs(hdr.endianness, Endianness.BIG)
        self.assertEqual(hdr.snaplen, int.from_bytes(buf[16:20], "big"))
        self.assertEqual(hdr.linktype, int.from_bytes(buf[20:24], "big"))
        self.assertEqual(hdr.version_major, 2)

    def test_big_endian_snaplen_64(self):
        buf = (bytes([0xA1, 0xB2, 0xC3, 0xD4]) + bytes([0, 2, 0, 4])
               + bytes(8) + bytes([0x00, 0x00, 0x00, 0x40]) + bytes([0, 0, 0, 1]))
        hdr = decode_global_header(buf)
        self.assertEqual(hdr.snaplen, 64)
        self.assertEqual(hdr.linktype, 1)

    def test_bad_magic(self):
        for magic in (b"xxxx", b"\x0a\x0d\x0d\x0a", b"\x4d\x3c\xb2\xa1", b"\xa1\xb2\xc3\xd5"):
            self._write(magic + bytes(20))
            with self.assertRaisesRegex(InvalidMagic, "bad byte order magic") as cm:
                decode_global_header(self.tmp_fp)
            self.assertEqual(cm.exception.magic, magic)

    def test_short_magic(self):
        for i in range(4):
            self._write(b"\xd4\xc3\xb2\xa1"[:i])
            with self.assertRaisesRegex(TruncatedHeader, "magic truncated"):
                decode_global_header(self.tmp_fp)

    def test_short_header_zero_filled(self):
        full = global_header("<", snaplen=0x11223344, linktype=1)
        hdr = decode_global_header(full[:18])
        # snaplen lost its two high bytes, linktype is all zero-fill
        self.assertEqual(hdr.snaplen, 0x3344)
        self.assertEqual(hdr.linktype, 0)
        self.assertEqual(hdr.version_major, 2)

    def test_short_header_strict(self):
        full = global_header("<")
        for cut in (4, 10, 23):
            with self.assertRaisesRegex(TruncatedHeader, "global header truncated"):
                decode_global_header(full[:cut], strict=True)

    def test_version_low_byte(self):
        hdr = decode_global_header(global_header("<", version=(0x0102, 0xFF04)))
        self.assertEqual(hdr.version_major, 0x0102)
        self.assertEqual(hdr.version_major_lo, 0x02)
        self.assertEqual(hdr.version_minor_lo, 0x04)


class TestRecordHeader(unittest.TestCase):
    def test_little_endian(self):
        src = ByteSource(record(b"abc", ts_sec=0x01020304, ts_usec=500, orig_len=60))
        rec = decode_record_header(src, Endianness.LITTLE)
        self.assertEqual(rec.ts_sec, 0x01020304)
        self.assertEqual(rec.ts_usec, 500)
        self.assertEqual(rec.incl_len, 3)
        self.assertEqual(rec.orig_len, 60)
        self.assertAlmostEqual(rec.ts, 0x01020304 + 0.0005)
        self.assertEqual(src.offset, 16)

    def test_big_endian(self):
        raw = struct.pack(">IIII", 1, 2, 3, 4)
        rec = decode_record_header(ByteSource(raw), Endianness.BIG)
        self.assertEqual((rec.ts_sec, rec.ts_usec, rec.incl_len, rec.orig_len), (1, 2, 3, 4))

    def test_empty_source(self):
        self.assertIsNone(decode_record_header(ByteSource(b""), Endianness.LITTLE))

    def test_partial_zero_filled(self):
        raw = struct.pack("<IIII", 7, 8, 0x0A0B, 9)[:10]
        rec = decode_record_header(ByteSource(raw), Endianness.LITTLE)
        self.assertEqual((rec.ts_sec, rec.ts_usec, rec.incl_len, rec.orig_len), (7, 8, 0x0A0B, 0))

    def test_partial_strict(self):
        raw = struct.pack("<IIII", 7, 8, 9, 9)[:5]
        with self.assertRaisesRegex(TruncatedHeader, "packet header truncated"):
            decode_record_header(ByteSource(raw), Endianness.LITTLE, strict=True)


if __name__ == '__main__':
    unittest.main()
