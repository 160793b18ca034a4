from __future__ import annotations
import argparse, logging, pathlib, sys
from . import analyze, write
from .config import load_config
from .errors import ChartError

def main(argv=None):
    p = argparse.ArgumentParser(description="BMS chart -> objects + timeline")
    p.add_argument("--in", dest="infile", required=True, help="Input chart (.bms/.bme/.bml)")
    p.add_argument("--out", dest="outfile", required=False, help="Write a YAML summary of the chart")
    p.add_argument("--config", dest="config", default=None, help="YAML config (defaults applied if omitted)")
    p.add_argument("--events", action="store_true", help="Print the timeline events")
    p.add_argument("--objects", action="store_true", help="Include every object in the YAML summary")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging (shows ignored lines)")

    args = p.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    in_path = pathlib.Path(args.infile).expanduser().resolve()
    if not in_path.exists():
        print(f"[cli] ERROR: Input not found: {in_path}", file=sys.stderr)
        sys.exit(1)

    cfg = load_config(args.config)
    print(f"[cli] infile = {in_path}")

    try:
        chart = analyze.load_chart(in_path, cfg)
    except ChartError as exc:
        print(f"[cli] ERROR: {exc}", file=sys.stderr)
        sys.exit(2)

    if args.events:
        for ev in chart.timeline:
            print(f"[cli] {ev.time:>9d} ms  measure {ev.measure:8.3f}  bpm {ev.bpm:7.2f}  len {ev.length:.3f}")

    if args.outfile:
        out_path = pathlib.Path(args.outfile).expanduser().resolve()
        write.write_summary(chart, str(out_path), objects=args.objects)
        print(f"[cli] summary   -> {out_path}")

    print(
        f"[cli] Done. title={chart.title!r} artist={chart.artist!r} "
        f"objects={len(chart.objects)} events={len(chart.timeline)} duration={chart.duration_ms}ms"
    )

if __name__ == "__main__":
    main()
