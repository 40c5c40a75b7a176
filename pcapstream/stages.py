# pcapstream/stages.py
from __future__ import annotations

import ipaddress
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

import dpkt
import numpy as np

from .core import FCS_LEN, Packet, Stage
from .utils import get_logger

log = get_logger("stages")


def parse_l3_addrs(buf: bytes) -> Tuple[Optional[str], Optional[str], str]:
    """
    Best-effort parse Ethernet(+VLAN) -> IPv4/IPv6 addrs.
    """
    try:
        eth = dpkt.ethernet.Ethernet(buf)
        payload = eth.data
        if isinstance(payload, dpkt.ethernet.VLANtag8021Q):
            payload = payload.data

        if isinstance(payload, dpkt.ip.IP):
            src = str(ipaddress.IPv4Address(payload.src))
            dst = str(ipaddress.IPv4Address(payload.dst))
            return src, dst, "ipv4"

        if isinstance(payload, dpkt.ip6.IP6):
            src = str(ipaddress.IPv6Address(payload.src))
            dst = str(ipaddress.IPv6Address(payload.dst))
            return src, dst, "ipv6"

        return None, None, "none"
    except Exception:
        return None, None, "none"


@dataclass
class FcsTrimStage(Stage):
    """Strip the trailing frame check sequence from frames captured with one."""
    enabled: bool = True
    trimmed: int = 0
    too_short: int = 0

    def feed(self, pkt: Packet) -> Iterable[Packet]:
        if not self.enabled:
            return [pkt]
        if len(pkt.buf) < FCS_LEN:
            self.too_short += 1
            return [pkt]
        self.trimmed += 1
        return [Packet(record=pkt.record, buf=pkt.buf[:-FCS_LEN], idx=pkt.idx)]

    def flush(self) -> Iterable[Packet]:
        if self.too_short:
            log.warning(f"{self.too_short} frames shorter than the FCS were left untouched")
        return []


@dataclass
class EthernetSummaryStage(Stage):
    """Attach a one-line L3 summary to every packet, keyed by packet index."""
    linktype: int = dpkt.pcap.DLT_EN10MB
    summaries: Dict[int, str] = field(default_factory=dict)

    def summarize(self, pkt: Packet) -> str:
        if self.linktype != dpkt.pcap.DLT_EN10MB:
            return f"linktype={self.linktype}"
        src, dst, kind = parse_l3_addrs(pkt.buf)
        if kind == "none":
            return "non-ip"
        return f"{kind} {src} -> {dst}"

    def feed(self, pkt: Packet) -> Iterable[Packet]:
        self.summaries[pkt.idx] = self.summarize(pkt)
        return [pkt]


def compute_stats(arr: np.ndarray) -> Dict[str, Any]:
    if arr.size == 0:
        return {"count": 0}

    x = arr.astype(np.float64)
    n = int(x.size)

    mean = float(x.mean())
    var = float(x.var(ddof=1)) if n > 1 else 0.0
    std = float(math.sqrt(var))

    return {
        "count": n,
        "total": int(arr.sum()),
        "mean": mean,
        "std": std,
        "min": float(x.min()),
        "q1": float(np.quantile(x, 0.25)),
        "median": float(np.median(x)),
        "q3": float(np.quantile(x, 0.75)),
        "p95": float(np.quantile(x, 0.95)),
        "max": float(x.max()),
    }


@dataclass
class LengthStatsStage(Stage):
    """Collect captured and on-wire lengths from the record headers, unaffected by FCS trimming."""
    caplens: List[int] = field(default_factory=list)
    wirelens: List[int] = field(default_factory=list)

    def feed(self, pkt: Packet) -> Iterable[Packet]:
        self.caplens.append(pkt.record.incl_len)
        self.wirelens.append(pkt.record.orig_len)
        return [pkt]

    def stats(self) -> Dict[str, Any]:
        cap = np.asarray(self.caplens, dtype=np.int64)
        wire = np.asarray(self.wirelens, dtype=np.int64)
        return {
            "caplen": compute_stats(cap),
            "wirelen": compute_stats(wire),
            "sliced": int(np.count_nonzero(wire > cap)),
        }


def run_stages(packets: Iterable[Packet], stages: List[Stage]) -> Iterable[Packet]:
    """Push packets through the stages in order, then propagate flushed tails."""

    def push_downstream(pkts: List[Packet], rest: List[Stage]) -> List[Packet]:
        for st in rest:
            nxt: List[Packet] = []
            for p in pkts:
                nxt.extend(st.feed(p))
            pkts = nxt
        return pkts

    for pkt in packets:
        yield from push_downstream([pkt], stages)

    for i, st in enumerate(stages):
        flushed = list(st.flush())
        if flushed:
            yield from push_downstream(flushed, stages[i + 1:])
