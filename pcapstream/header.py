# pcapstream/header.py
"""
Decode the classic pcap global header and per-packet record headers.

https://wiki.wireshark.org/Development/LibpcapFileFormat

Short headers: a magic shorter than 4 bytes always raises TruncatedHeader.
Past the magic, lenient mode zero-fills the missing trailing bytes of a
header and logs a warning; strict mode raises TruncatedHeader instead.
"""
from __future__ import annotations

import struct
from typing import Optional

from .core import (
    GLOBAL_HEADER_LEN, RECORD_HEADER_LEN,
    Endianness, GlobalHeader, PacketRecord, TruncatedHeader,
)
from .source import ByteSource, SourceLike
from .utils import get_logger

log = get_logger("header")

_MAGIC_LEN = 4
_GLOBAL_FIELDS = "HHiIII"   # version_major, version_minor, thiszone, sigfigs, snaplen, linktype
_RECORD_FIELDS = "IIII"     # ts_sec, ts_usec, incl_len, orig_len


def _pad(buf: bytes, size: int, what: str, strict: bool) -> bytes:
    if len(buf) == size:
        return buf
    if strict:
        raise TruncatedHeader(what, size, len(buf))
    log.warning(f"{what} short by {size - len(buf)} bytes, zero-filling")
    return buf + b"\x00" * (size - len(buf))


def read_magic(source: ByteSource) -> bytes:
    """Read the 4 magic bytes and check them; returns the raw magic."""
    magic = source.read(_MAGIC_LEN)
    if len(magic) < _MAGIC_LEN:
        raise TruncatedHeader("magic", _MAGIC_LEN, len(magic))
    Endianness.from_magic(magic)  # raises InvalidMagic
    return magic


def read_header_fields(source: ByteSource, magic: bytes, strict: bool = False) -> GlobalHeader:
    endianness = Endianness.from_magic(magic)
    size = GLOBAL_HEADER_LEN - _MAGIC_LEN
    buf = source.read(size)
    buf = _pad(buf, size, "global header", strict)
    (ver_maj, ver_min, thiszone, sigfigs,
     snaplen, linktype) = struct.unpack(endianness.fmt + _GLOBAL_FIELDS, buf)
    return GlobalHeader(magic=magic, version_major=ver_maj, version_minor=ver_min,
                        thiszone=thiszone, sigfigs=sigfigs, snaplen=snaplen,
                        linktype=linktype, endianness=endianness)


def decode_global_header(source: SourceLike, strict: bool = False) -> GlobalHeader:
    """
    Decode the 24-byte global header. Raises InvalidMagic for anything that
    is not a classic pcap file, TruncatedHeader when the magic is incomplete
    (or, in strict mode, when any header byte is missing).
    """
    source = ByteSource.wrap(source)
    magic = read_magic(source)
    return read_header_fields(source, magic, strict=strict)


def decode_record_header(source: ByteSource, endianness: Endianness,
                         strict: bool = False) -> Optional[PacketRecord]:
    """Returns None when the source had no bytes left at a record boundary."""
    buf = source.read(RECORD_HEADER_LEN)
    if not buf:
        return None
    buf = _pad(buf, RECORD_HEADER_LEN, "packet header", strict)
    ts_sec, ts_usec, incl_len, orig_len = struct.unpack(endianness.fmt + _RECORD_FIELDS, buf)
    return PacketRecord(ts_sec=ts_sec, ts_usec=ts_usec, incl_len=incl_len, orig_len=orig_len)
