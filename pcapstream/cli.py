# pcapstream/cli.py
import argparse
import json
import sys
from pathlib import Path

from .config import EngineConfig, load_config
from .core import InvalidMagic
from .engine import PacketStreamEngine, State
from .stages import EthernetSummaryStage, FcsTrimStage, LengthStatsStage, run_stages
from .stream import _sniff_kind, run_engine, verify_against_dpkt
from .utils import atomic_write_json, log, now_iso, setup

EXIT_OK = 0
EXIT_IO = 1
EXIT_FORMAT = 2
EXIT_MISMATCH = 3

_HEADER_STATES = (State.START, State.CHECK_MAGIC, State.READ_GLOBAL_HEADER)


def build_config(args) -> EngineConfig:
    cfg = load_config(args.config) if args.config else EngineConfig()
    return cfg.merged(
        source=args.input,
        fcs=True if args.fcs else None,
        strict=True if args.strict else None,
        log_level=args.log_level,
        log_dir=args.log_dir,
    )


def dump(cfg: EngineConfig, hexdump=False, limit=None, out=None) -> dict:
    out = out or sys.stdout
    with PacketStreamEngine(cfg.source, fcs=cfg.fcs, strict=cfg.strict) as engine:
        while engine.state in _HEADER_STATES:
            engine.step()
        hdr = engine.header
        if hdr is not None:
            print(f"# version={hdr.version_major_lo}.{hdr.version_minor_lo} "
                  f"linktype={hdr.linktype} snaplen={hdr.snaplen} "
                  f"endian={hdr.endianness.name.lower()} fcs={cfg.fcs}", file=out)
        else:
            print("# empty capture", file=out)

        summary = EthernetSummaryStage(linktype=hdr.linktype if hdr else 1)
        lengths = LengthStatsStage()
        stages = [FcsTrimStage(enabled=cfg.fcs), summary, lengths]

        shown = 0
        for pkt in run_stages(run_engine(engine), stages):
            if limit is not None and shown >= limit:
                break
            print(f"{pkt.idx}\t{pkt.ts:.6f}\t{len(pkt.buf)}/{pkt.record.orig_len}\t"
                  f"{summary.summaries.get(pkt.idx, '')}", file=out)
            if hexdump:
                print("\t" + pkt.buf.hex(" "), file=out)
            shown += 1

        return {
            "input": str(cfg.source),
            "timestamp": now_iso(),
            "header": None if hdr is None else {
                "version_major": hdr.version_major_lo,
                "version_minor": hdr.version_minor_lo,
                "thiszone": hdr.thiszone,
                "sigfigs": hdr.sigfigs,
                "snaplen": hdr.snaplen,
                "linktype": hdr.linktype,
                "endianness": hdr.endianness.name.lower(),
            },
            "fcs": cfg.fcs,
            "packets": shown,
            "lengths": lengths.stats(),
        }


def main(argv=None) -> int:
    p = argparse.ArgumentParser(prog="pcapstream", description="Stream-decode a classic pcap capture")
    p.add_argument("input", help="input pcap file")
    p.add_argument("--config", help="YAML config file (flags override it)")
    p.add_argument("--fcs", action="store_true", help="frames carry a trailing 4-byte FCS; trim it")
    p.add_argument("--strict", action="store_true", help="end the stream on short headers instead of zero-filling")
    p.add_argument("--hex", action="store_true", help="hex dump every payload")
    p.add_argument("--limit", type=int, default=None)
    p.add_argument("--summary", action="store_true", help="print packet length statistics")
    p.add_argument("--verify", action="store_true", help="cross-check packets against dpkt")
    p.add_argument("--json", dest="json_out", help="write a JSON report")
    p.add_argument("--log-level", default=None)
    p.add_argument("--log-dir", default=None)

    args = p.parse_args(argv)

    try:
        cfg = build_config(args)
    except (OSError, ValueError) as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return EXIT_IO
    setup(log_dir=cfg.log_dir, level=cfg.log_level, console=True)

    try:
        kind = _sniff_kind(cfg.source)
    except OSError as e:
        log.error(f"cannot open {cfg.source}: {e}")
        return EXIT_IO
    except ValueError as e:
        log.error(str(e))
        return EXIT_FORMAT
    if kind not in ("pcap", "empty"):
        log.error(f"{cfg.source}: {kind} captures are not supported, classic pcap only")
        return EXIT_FORMAT

    try:
        report = dump(cfg, hexdump=args.hex, limit=args.limit)
    except InvalidMagic as e:
        log.error(f"{cfg.source}: {e}")
        return EXIT_FORMAT

    if args.summary:
        print(json.dumps(report["lengths"], indent=2))

    rc = EXIT_OK
    if args.verify and kind == "pcap":
        res = verify_against_dpkt(str(cfg.source), strict=cfg.strict)
        report["verify"] = res
        if res["ok"]:
            log.info(f"verify ok: {res['compared']} packets match dpkt")
        else:
            for m in res["mismatches"]:
                log.error(f"verify mismatch at packet {m['idx']}: {m['reason']}")
            rc = EXIT_MISMATCH

    if args.json_out:
        atomic_write_json(Path(args.json_out), report)
    return rc


if __name__ == "__main__":
    raise SystemExit(main())
