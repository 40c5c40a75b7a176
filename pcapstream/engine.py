# pcapstream/engine.py
"""
Tick-driven packet stream engine.

Every call to step() is one tick. The engine decodes the global header,
then loops over packet records, presenting one payload byte at a time.
The presented byte stays on the outputs until the consumer ticks with
advance=True, which accepts it and moves on to the next byte (or, after the
last byte, back to the next record header).

States:
    START -> CHECK_MAGIC -> READ_GLOBAL_HEADER -> READ_PACKET_HEADER
    READ_PACKET_HEADER -> PACKET_AVAILABLE -> STREAMING_PACKET -> READ_PACKET_HEADER
    any reading state -> END_OF_STREAM on exhaustion (terminal)
    CHECK_MAGIC -> FAILED on a bad magic (until reset)

Zero-length records are skipped inside READ_PACKET_HEADER and never raise
packet_available.
"""
from __future__ import annotations

import dataclasses
import enum
from dataclasses import dataclass
from typing import Optional

from .core import (
    EngineFailed, GlobalHeader, InvalidMagic, PacketRecord, TruncatedHeader,
)
from .header import decode_record_header, read_header_fields, read_magic
from .source import ByteSource, SourceLike
from .utils import get_logger

log = get_logger("engine")


class State(enum.Enum):
    START = "start"
    CHECK_MAGIC = "check_magic"
    READ_GLOBAL_HEADER = "read_global_header"
    READ_PACKET_HEADER = "read_packet_header"
    PACKET_AVAILABLE = "packet_available"
    STREAMING_PACKET = "streaming_packet"
    END_OF_STREAM = "end_of_stream"
    FAILED = "failed"


@dataclass(frozen=True)
class StepOutput:
    state: State
    eof: bool = False
    link_type: int = 0
    version_major: int = 0  # low byte only
    version_minor: int = 0  # low byte only
    packet_available: bool = False
    packet_length: int = 0
    packet_ts_sec: int = 0
    packet_ts_usec: int = 0
    data: int = 0
    valid: bool = False
    fcs: bool = False


@dataclass
class Registers:
    state: State = State.START
    magic: bytes = b""
    header: Optional[GlobalHeader] = None
    record: Optional[PacketRecord] = None
    remaining: int = 0
    data: int = 0
    valid: bool = False
    packet_available: bool = False
    eof: bool = False
    packets_seen: int = 0


class PacketStreamEngine:
    """
    Single-threaded, consumer-paced pcap decoder.

    fcs is passed through to the outputs untouched; trimming a trailing frame
    check sequence is up to the consumer. strict turns short headers into an
    immediate end of stream instead of zero-filling them.
    """

    def __init__(self, source: SourceLike, fcs: bool = False, strict: bool = False):
        self.source = ByteSource.wrap(source)
        self.fcs = fcs
        self.strict = strict
        self._r = Registers()

    # ---- inspection ----

    @property
    def state(self) -> State:
        return self._r.state

    @property
    def header(self) -> Optional[GlobalHeader]:
        return self._r.header

    @property
    def packets_seen(self) -> int:
        return self._r.packets_seen

    @property
    def record(self) -> Optional[PacketRecord]:
        return self._r.record

    @property
    def remaining(self) -> int:
        return self._r.remaining

    @property
    def registers(self) -> Registers:
        return dataclasses.replace(self._r)

    def output(self) -> StepOutput:
        r = self._r
        hdr = r.header
        rec = r.record if r.packet_available else None
        return StepOutput(
            state=r.state,
            eof=r.eof,
            link_type=hdr.linktype if hdr else 0,
            version_major=hdr.version_major_lo if hdr else 0,
            version_minor=hdr.version_minor_lo if hdr else 0,
            packet_available=r.packet_available,
            packet_length=rec.incl_len if rec else 0,
            packet_ts_sec=rec.ts_sec if rec else 0,
            packet_ts_usec=rec.ts_usec if rec else 0,
            data=r.data if r.valid else 0,
            valid=r.valid,
            fcs=self.fcs,
        )

    # ---- control ----

    def reset(self, source: Optional[SourceLike] = None) -> StepOutput:
        """
        Return every register to its power-on value, discarding any packet in flight.

        With a new source, the old one is closed and decoding restarts on the
        new one. Without one, a source opened from a path is reopened at its
        first byte. Bytes and caller-supplied file objects are never rewound:
        decoding resumes at the current cursor, which normally fails the
        magic check on the next ticks.
        """
        if self._r.state not in (State.START, State.END_OF_STREAM, State.FAILED):
            log.debug(f"reset in state {self._r.state.value} at offset {self.source.offset}")
        if source is not None:
            new = ByteSource.wrap(source)
            if new is not self.source:
                self.source.close()
            self.source = new
        elif self.source.reopenable and (self.source.offset or self.source.exhausted):
            self.source.reopen()
        self._r = Registers()
        return self.output()

    def step(self, advance: bool = False, reset: bool = False) -> StepOutput:
        """One tick. reset wins over advance and behaves like reset() without a new source."""
        if reset:
            return self.reset()

        r = self._r
        st = r.state

        if st is State.FAILED:
            raise EngineFailed("engine stopped after a fatal error; reset required")
        elif st is State.START:
            r.state = State.CHECK_MAGIC
        elif st is State.CHECK_MAGIC:
            self._check_magic()
        elif st is State.READ_GLOBAL_HEADER:
            self._read_global_header()
        elif st is State.READ_PACKET_HEADER:
            self._read_packet_header()
        elif st is State.PACKET_AVAILABLE:
            self._first_byte()
        elif st is State.STREAMING_PACKET:
            if advance:
                self._next_byte()
        # END_OF_STREAM: terminal, nothing to read

        return self.output()

    def close(self):
        self.source.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ---- transitions ----

    def _end_of_stream(self):
        r = self._r
        r.state = State.END_OF_STREAM
        r.eof = True
        r.valid = False
        r.packet_available = False
        r.data = 0
        r.record = None
        r.remaining = 0
        log.debug(f"end of stream at offset {self.source.offset}, packets={r.packets_seen}")

    def _check_magic(self):
        try:
            self._r.magic = read_magic(self.source)
        except TruncatedHeader as e:
            log.info(f"{self.source.name}: {e}, no capture data")
            self._end_of_stream()
            return
        except InvalidMagic as e:
            self._r.state = State.FAILED
            log.error(f"{self.source.name}: {e}")
            raise
        self._r.state = State.READ_GLOBAL_HEADER

    def _read_global_header(self):
        r = self._r
        try:
            r.header = read_header_fields(self.source, r.magic, strict=self.strict)
        except TruncatedHeader as e:
            log.warning(f"{self.source.name}: {e}")
            self._end_of_stream()
            return
        h = r.header
        log.info(f"{self.source.name}: pcap {h.version_major}.{h.version_minor} "
                 f"{h.endianness.name.lower()}-endian linktype={h.linktype} snaplen={h.snaplen}")
        r.state = State.READ_PACKET_HEADER

    def _read_packet_header(self):
        r = self._r
        try:
            rec = decode_record_header(self.source, r.header.endianness, strict=self.strict)
        except TruncatedHeader as e:
            log.warning(f"{self.source.name}: {e} after {r.packets_seen} packets")
            self._end_of_stream()
            return
        if rec is None:
            self._end_of_stream()
            return
        if rec.incl_len == 0:
            log.debug(f"skipping zero-length record at offset {self.source.offset}")
            return
        r.record = rec
        r.remaining = rec.incl_len
        r.state = State.PACKET_AVAILABLE

    def _first_byte(self):
        r = self._r
        b = self.source.read_byte()
        if b is None:
            log.warning(f"{self.source.name}: packet {r.packets_seen} has no payload "
                        f"(wanted {r.record.incl_len} bytes)")
            self._end_of_stream()
            return
        r.data = b
        r.valid = True
        r.packet_available = True
        r.packets_seen += 1
        r.state = State.STREAMING_PACKET

    def _next_byte(self):
        r = self._r
        if r.remaining > 1:
            b = self.source.read_byte()
            if b is None:
                got = r.record.incl_len - r.remaining + 1
                log.warning(f"{self.source.name}: packet {r.packets_seen - 1} truncated "
                            f"at {got}/{r.record.incl_len} bytes")
                self._end_of_stream()
                return
            r.data = b
            r.remaining -= 1
            return
        # last byte accepted
        r.remaining = 0
        r.valid = False
        r.packet_available = False
        r.data = 0
        r.record = None
        r.state = State.READ_PACKET_HEADER
