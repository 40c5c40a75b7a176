# pcapstream/stream.py
from __future__ import annotations

from typing import Callable, Iterator, Optional, Tuple

import dpkt

from .core import MAGIC_BE, MAGIC_LE, PCAPNG_MAGIC, Packet
from .engine import PacketStreamEngine
from .source import SourceLike
from .utils import get_logger

log = get_logger("stream")


def _sniff_kind(path: str) -> str:
    with open(path, "rb") as f:
        head = f.read(4)
    if len(head) < 4:
        return "empty"
    if head in (MAGIC_LE, MAGIC_BE):
        return "pcap"
    if head == PCAPNG_MAGIC:
        return "pcapng"
    raise ValueError(f"Unknown capture format (not pcap/pcapng): {path}")


def run_engine(
    engine: PacketStreamEngine,
    ready: Optional[Callable[[int], bool]] = None,
    max_ticks: Optional[int] = None,
) -> Iterator[Packet]:
    """
    Drive the engine tick by tick and yield each fully delivered packet.

    ready(tick) is asked on every tick where a byte is presented; returning
    False withholds the advance so the engine holds that byte. Packets cut
    short by the end of the source are dropped.
    """
    tick = 0
    idx = 0
    cur: Optional[bytearray] = None
    rec = None

    out = engine.step()
    while not out.eof:
        if max_ticks is not None and tick >= max_ticks:
            return
        advance = False
        if out.valid and (ready is None or ready(tick)):
            if cur is None:
                cur = bytearray()
                rec = engine.record
            cur.append(out.data)
            advance = True
        out = engine.step(advance=advance)
        tick += 1

        if cur is not None and not out.packet_available:
            if len(cur) == rec.incl_len:
                yield Packet(record=rec, buf=bytes(cur), idx=idx)
                idx += 1
            else:
                log.warning(f"dropping partial packet {idx}: {len(cur)}/{rec.incl_len} bytes")
            cur = None
            rec = None


def stream_packets(src: SourceLike, fcs: bool = False, strict: bool = False) -> Iterator[Packet]:
    """Yield every packet in file order, accepting each byte as soon as it is presented."""
    with PacketStreamEngine(src, fcs=fcs, strict=strict) as engine:
        yield from run_engine(engine)


def stream_pcap_packets_dpkt(pcap_path: str) -> Iterator[Tuple[float, bytes]]:
    """Reference reader: yield (ts, pkt_bytes) using dpkt. Used for cross-checking."""
    kind = _sniff_kind(pcap_path)
    if kind != "pcap":
        raise ValueError("dpkt stream supports classic pcap only")
    with open(pcap_path, "rb") as f:
        try:
            reader = dpkt.pcap.Reader(f)
            for ts, pkt_bytes in reader:
                yield ts, pkt_bytes
        except dpkt.UnpackError as e:
            # NeedData included: a cut header ends the capture
            log.warning(f"dpkt stopped reading {pcap_path} at offset {f.tell()}: {e}")


def verify_against_dpkt(pcap_path: str, strict: bool = False) -> dict:
    """
    Compare the engine's packets with dpkt's. Zero-length records are left
    out of the dpkt side since the engine skips them.
    """
    ours = stream_packets(pcap_path, strict=strict)
    theirs = ((ts, b) for ts, b in stream_pcap_packets_dpkt(pcap_path) if b)
    compared = 0
    mismatches = []
    for pkt in ours:
        ref = next(theirs, None)
        if ref is None:
            mismatches.append({"idx": pkt.idx, "reason": "extra packet"})
            break
        ts, buf = ref
        if buf != pkt.buf:
            mismatches.append({"idx": pkt.idx, "reason": "payload differs"})
        elif abs(float(ts) - pkt.ts) > 1e-6:
            mismatches.append({"idx": pkt.idx, "reason": "timestamp differs"})
        compared += 1
    leftover = sum(1 for _ in theirs)
    if leftover:
        mismatches.append({"idx": compared, "reason": f"{leftover} packets missing"})
    return {"compared": compared, "mismatches": mismatches, "ok": not mismatches}
