# pcapstream/core.py
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable

MAGIC_LE = b"\xd4\xc3\xb2\xa1"  # file written little-endian
MAGIC_BE = b"\xa1\xb2\xc3\xd4"  # file written big-endian
PCAPNG_MAGIC = b"\x0a\x0d\x0d\x0a"

GLOBAL_HEADER_LEN = 24
RECORD_HEADER_LEN = 16
FCS_LEN = 4


class PcapStreamError(Exception):
    pass


class InvalidMagic(PcapStreamError):
    """The source does not start with a classic pcap magic; processing must stop."""

    def __init__(self, magic: bytes):
        self.magic = magic
        super().__init__(f"bad byte order magic: {magic.hex() or '<empty>'}")


class TruncatedHeader(PcapStreamError):
    def __init__(self, what: str, wanted: int, got: int):
        self.what = what
        self.wanted = wanted
        self.got = got
        super().__init__(f"{what} truncated: wanted {wanted} bytes, got {got}")


class EngineFailed(PcapStreamError):
    """Raised by every step after a fatal error until the engine is reset."""


class Endianness(enum.Enum):
    LITTLE = "<"
    BIG = ">"

    @property
    def fmt(self) -> str:
        return self.value

    @classmethod
    def from_magic(cls, magic: bytes) -> "Endianness":
        if magic == MAGIC_LE:
            return cls.LITTLE
        if magic == MAGIC_BE:
            return cls.BIG
        raise InvalidMagic(magic)


@dataclass(frozen=True)
class GlobalHeader:
    magic: bytes
    version_major: int
    version_minor: int
    thiszone: int   # informational, not applied to timestamps
    sigfigs: int    # informational
    snaplen: int
    linktype: int
    endianness: Endianness

    # consumers only ever see the low byte of each version field
    @property
    def version_major_lo(self) -> int:
        return self.version_major & 0xFF

    @property
    def version_minor_lo(self) -> int:
        return self.version_minor & 0xFF


@dataclass(frozen=True)
class PacketRecord:
    ts_sec: int
    ts_usec: int
    incl_len: int  # bytes physically present after the record header
    orig_len: int  # length on the wire, informational

    @property
    def ts(self) -> float:
        return self.ts_sec + self.ts_usec / 1_000_000.0


@dataclass(frozen=True)
class Packet:
    record: PacketRecord
    buf: bytes
    idx: int  # input order index

    @property
    def ts(self) -> float:
        return self.record.ts


class Stage:
    """
    Streaming consumer stage. feed() yields 0..N output packets.
    flush() yields buffered tail packets when input ends.
    """
    def feed(self, pkt: Packet) -> Iterable[Packet]:
        yield pkt

    def flush(self) -> Iterable[Packet]:
        return []
