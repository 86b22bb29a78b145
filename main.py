"""
main.py — Command-Line Entry Point

Subcommands
───────────
  heartbeat SITE       Latest heartbeat from a site, as pretty-printed JSON
  bad-heartbeat SITE   Latest message from a site that failed to decode
  heartbeats SITE      Every heartbeat from a site, as one JSON array
  reassemble PATH...   Reassemble SBD files into one message on stdout
  import ROOT          Copy a filesystem SBD archive into MongoDB
  serve                Run the JSON API under uvicorn

Site subcommands read bursts from --root (or SBD_ROOT) when given, otherwise
from MongoDB.

The JSON API is served at   http://127.0.0.1:5000/atlas
Swagger API docs are at     http://127.0.0.1:5000/docs
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import uvicorn

import database as db
from config import API_HOST, API_PORT, BURST_SOURCE, SBD_ROOT
from message import Reassembler
from packet import Packet
from sbd import FilesystemStorage
from sites import Site, bad_heartbeats, heartbeats, load_bursts

# ── Logging setup ─────────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  [%(levelname)s]  %(name)s — %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


# ── Site subcommands ──────────────────────────────────────────────────────────

def cmd_heartbeat(args) -> int:
    found = heartbeats(load_bursts(args.site, args.root))
    if not found:
        print("No heartbeats available", file=sys.stderr)
        return 1
    print(json.dumps(found[-1].to_dict(), indent=2))
    return 0


def cmd_bad_heartbeat(args) -> int:
    errors = bad_heartbeats(load_bursts(args.site, args.root))
    if not errors:
        print("No bad heartbeats available", file=sys.stderr)
        return 1
    error = errors[-1]
    print(f"{type(error).__name__}: {error}")
    return 0


def cmd_heartbeats(args) -> int:
    found = heartbeats(load_bursts(args.site, args.root))
    print(json.dumps([h.to_dict() for h in found]))
    return 0


# ── Archive subcommands ───────────────────────────────────────────────────────

def cmd_reassemble(args) -> int:
    """
    Reassemble exactly one message from the given SBD files.

    Files are ordered by session time.  Exactly enough files must be given:
    leftovers after the message completes, or running out before it does,
    are both errors.
    """
    packets: List[Packet] = sorted(
        (Packet.from_path(p) for p in args.paths),
        key=lambda p: p.datetime,
    )
    reassembler = Reassembler()
    while packets:
        message = reassembler.add(packets.pop(0))
        if message is not None:
            if packets:
                print("Too many sbd messages.", file=sys.stderr)
                return 1
            sys.stdout.buffer.write(message.data)
            sys.stdout.buffer.flush()
            return 0
    print("Not enough sbd messages.", file=sys.stderr)
    return 1


def cmd_import(args) -> int:
    storage = FilesystemStorage(args.root_dir)
    total = stored = 0
    for imei in storage.imeis():
        bursts = storage.messages_from_imei(imei)
        count = sum(1 for burst in bursts if db.store_burst(burst))
        logger.info("IMEI %s  %d burst(s) read, %d inserted", imei, len(bursts), count)
        total += len(bursts)
        stored += count
    logger.info("Imported %d of %d burst(s) from %s", stored, total, args.root_dir)
    return 0


def cmd_serve(args) -> int:
    # ── Banner ────────────────────────────────────────────────────────────
    print()
    print("=" * 60)
    print("  ATLAS Heartbeat API")
    print("=" * 60)
    print(f"  API       : http://127.0.0.1:{args.port}/atlas")
    print(f"  API docs  : http://127.0.0.1:{args.port}/docs")
    print(f"  Bursts    : {BURST_SOURCE}" + (f" ({SBD_ROOT})" if SBD_ROOT else ""))
    print("=" * 60)
    print()

    # Import here so the site subcommands don't pay for FastAPI start-up
    from api import app as fastapi_app

    uvicorn.run(
        fastapi_app,
        host=args.host,
        port=args.port,
        log_level="warning",   # keep uvicorn noise low; app uses Python logging
    )
    return 0


# ── Argument parsing ──────────────────────────────────────────────────────────

def _site(value: str) -> Site:
    try:
        return Site.from_str(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="ATLAS heartbeats from Iridium SBD bursts")
    sub = ap.add_subparsers(dest="command", required=True)

    for name, func, help_ in (
        ("heartbeat", cmd_heartbeat, "Print the latest heartbeat as JSON"),
        ("bad-heartbeat", cmd_bad_heartbeat, "Print the latest heartbeat decode error"),
        ("heartbeats", cmd_heartbeats, "Print every heartbeat as a JSON array"),
    ):
        p = sub.add_parser(name, help=help_)
        p.add_argument("site", type=_site, help="Site id: north or south")
        p.add_argument("--root", type=Path, default=None,
                       help="Filesystem SBD archive (default: SBD_ROOT, else MongoDB)")
        p.set_defaults(func=func)

    p = sub.add_parser("reassemble", help="Reassemble SBD files into one message")
    p.add_argument("paths", nargs="+", type=Path, metavar="PATH")
    p.set_defaults(func=cmd_reassemble)

    p = sub.add_parser("import", help="Import a filesystem SBD archive into MongoDB")
    p.add_argument("root_dir", type=Path, metavar="ROOT")
    p.set_defaults(func=cmd_import)

    p = sub.add_parser("serve", help="Run the JSON API")
    p.add_argument("--host", default=API_HOST, help=f"Bind address (default: {API_HOST})")
    p.add_argument("--port", type=int, default=API_PORT, help=f"Port (default: {API_PORT})")
    p.set_defaults(func=cmd_serve)
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
