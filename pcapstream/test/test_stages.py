import unittest

import dpkt
import numpy as np

from pcapstream.core import Packet, PacketRecord, Stage
from pcapstream.stages import (
    EthernetSummaryStage, FcsTrimStage, LengthStatsStage, compute_stats, parse_l3_addrs, run_stages,
)

from pcapfixtures import ETH_FRAME


def _pkt(buf, idx=0, orig_len=None):
    rec = PacketRecord(ts_sec=1, ts_usec=0, incl_len=len(buf),
                       orig_len=len(buf) if orig_len is None else orig_len)
    return Packet(record=rec, buf=buf, idx=idx)


def _udp_frame():
    udp = dpkt.udp.UDP(sport=5353, dport=53, data=b"hi")
    udp.ulen = len(udp)
    ip = dpkt.ip.IP(src=bytes([10, 0, 0, 1]), dst=bytes([10, 0, 0, 2]),
                    p=dpkt.ip.IP_PROTO_UDP, data=udp)
    ip.len = len(ip)
    eth = dpkt.ethernet.Ethernet(src=b"\x02" * 6, dst=b"\x04" * 6,
                                 type=dpkt.ethernet.ETH_TYPE_IP, data=ip)
    return bytes(eth)


class _Dup(Stage):
    def __init__(self):
        self.held = None

    def feed(self, pkt):
        if self.held is None:
            self.held = pkt
            return []
        return [pkt]

    def flush(self):
        return [self.held] if self.held else []


class TestStages(unittest.TestCase):
    def test_fcs_trim(self):
        st = FcsTrimStage()
        out = list(st.feed(_pkt(ETH_FRAME + b"\xde\xad\xbe\xef")))
        self.assertEqual(out[0].buf, ETH_FRAME)
        self.assertEqual(out[0].record.incl_len, 18)
        self.assertEqual(list(st.feed(_pkt(b"ab")))[0].buf, b"ab")
        self.assertEqual((st.trimmed, st.too_short), (1, 1))

    def test_fcs_trim_disabled(self):
        st = FcsTrimStage(enabled=False)
        self.assertEqual(list(st.feed(_pkt(ETH_FRAME)))[0].buf, ETH_FRAME)

    def test_parse_l3(self):
        self.assertEqual(parse_l3_addrs(_udp_frame()), ("10.0.0.1", "10.0.0.2", "ipv4"))
        self.assertEqual(parse_l3_addrs(b"\x00\x01"), (None, None, "none"))

    def test_ethernet_summary(self):
        st = EthernetSummaryStage()
        list(st.feed(_pkt(_udp_frame(), idx=3)))
        self.assertEqual(st.summaries[3], "ipv4 10.0.0.1 -> 10.0.0.2")
        other = EthernetSummaryStage(linktype=101)
        list(other.feed(_pkt(b"\x45", idx=0)))
        self.assertEqual(other.summaries[0], "linktype=101")

    def test_compute_stats(self):
        self.assertEqual(compute_stats(np.asarray([], dtype=np.int64)), {"count": 0})
        s = compute_stats(np.asarray([60, 60, 1514, 100]))
        self.assertEqual(s["count"], 4)
        self.assertEqual(s["total"], 1734)
        self.assertEqual(s["min"], 60.0)
        self.assertEqual(s["max"], 1514.0)
        self.assertEqual(s["median"], 80.0)

    def test_length_stats(self):
        st = LengthStatsStage()
        pkts = [_pkt(b"a" * 60), _pkt(b"b" * 64, orig_len=1500)]
        list(run_stages(pkts, [st]))
        stats = st.stats()
        self.assertEqual(stats["caplen"]["count"], 2)
        self.assertEqual(stats["wirelen"]["max"], 1500.0)
        self.assertEqual(stats["sliced"], 1)

    def test_length_stats_after_fcs_trim(self):
        st = LengthStatsStage()
        pkts = [_pkt(ETH_FRAME + b"\x00" * 4, idx=i) for i in range(2)]
        out = list(run_stages(pkts, [FcsTrimStage(), st]))
        self.assertEqual([len(p.buf) for p in out], [14, 14])
        stats = st.stats()
        self.assertEqual(stats["caplen"]["total"], 36)
        self.assertEqual(stats["sliced"], 0)

    def test_run_stages_flush_propagates(self):
        trim = FcsTrimStage()
        pkts = [_pkt(b"abcdefgh", idx=0), _pkt(b"ijklmnop", idx=1)]
        out = list(run_stages(pkts, [_Dup(), trim]))
        # the held first packet comes out of flush and still goes through the trim stage
        self.assertEqual([p.buf for p in out], [b"ijkl", b"abcd"])
        self.assertEqual(trim.trimmed, 2)


if __name__ == '__main__':
    unittest.main()
