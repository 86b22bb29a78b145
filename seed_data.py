"""
seed_data.py — Populate an Archive with Synthetic ATLAS Heartbeats

Writes 24 hourly heartbeats per site (one day of history) ending at the
current hour, fragmented into Sutron packets and wrapped in SBD bursts
exactly as they would arrive from the field:

  ATLAS North — version 04 heartbeats with a wind block
  ATLAS South — version 04 heartbeats without one

Bursts go to MongoDB by default, or to a filesystem archive with --root.
Re-running against MongoDB is harmless: the dedup index drops bursts that
are already stored.

Usage:
    python seed_data.py                         # both sites, 24 heartbeats each
    python seed_data.py --sites north           # only ATLAS North
    python seed_data.py --heartbeats 48         # two days
    python seed_data.py --max-size 100          # more packets per heartbeat
    python seed_data.py --root /var/iridium     # filesystem archive instead
    python seed_data.py --clear                 # wipe existing bursts first
"""

import argparse
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import database as db
from sbd import FilesystemStorage, MobileOriginatedMessage
from simulator import DEFAULT_MAX_DATA_SIZE, simulate_site
from sites import Site

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  [SEED]  %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


# ── Per-site seed functions ───────────────────────────────────────────────────

def seed_mongodb(site: Site, bursts: List[MobileOriginatedMessage]) -> int:
    stored = sum(1 for burst in bursts if db.store_burst(burst))
    logger.info(
        "  %-12s  bursts: %3d inserted   %3d duplicate",
        site.display_name, stored, len(bursts) - stored,
    )
    return stored


def seed_filesystem(site: Site, bursts: List[MobileOriginatedMessage], root: Path) -> int:
    storage = FilesystemStorage(root)
    for burst in bursts:
        storage.store(burst)
    logger.info("  %-12s  bursts: %3d written under %s", site.display_name, len(bursts), root / site.imei)
    return len(bursts)


def clear_site(site: Site, root: Optional[Path]) -> None:
    """Delete all existing bursts for one site."""
    if root is None:
        deleted = db.clear_bursts(site.imei)
    else:
        deleted = 0
        for path in FilesystemStorage(root).paths_from_imei(site.imei):
            path.unlink()
            deleted += 1
    logger.info("  %-12s  cleared %d burst(s)", site.display_name, deleted)


# ── Entry point ────────────────────────────────────────────────────────────────

def main() -> None:
    ap = argparse.ArgumentParser(
        description="Seed a burst archive with synthetic ATLAS heartbeats"
    )
    ap.add_argument(
        "--sites", nargs="+", default=["north", "south"],
        help="Site ids to seed (default: north south)",
    )
    ap.add_argument(
        "--heartbeats", type=int, default=24,
        help="Hourly heartbeats per site, ending now (default: 24)",
    )
    ap.add_argument(
        "--max-size", type=int, default=DEFAULT_MAX_DATA_SIZE,
        help=f"Data bytes per Sutron packet (default: {DEFAULT_MAX_DATA_SIZE})",
    )
    ap.add_argument(
        "--root", type=Path, default=None,
        help="Write to this filesystem archive instead of MongoDB",
    )
    ap.add_argument(
        "--clear", action="store_true",
        help="Delete existing bursts for the target sites before inserting",
    )
    args = ap.parse_args()

    sites = [Site.from_str(s) for s in args.sites]
    end = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0)
    if args.root is not None:
        args.root.mkdir(parents=True, exist_ok=True)

    print()
    print("=" * 56)
    print("  ATLAS Heartbeats — Seed Data Script")
    print("=" * 56)
    print(f"  Sites      : {', '.join(s.display_name for s in sites)}")
    print(f"  Heartbeats : {args.heartbeats} per site  (hourly, ending {end:%Y-%m-%d %H:%M} UTC)")
    print(f"  Target     : {args.root if args.root is not None else 'MongoDB'}")
    print(f"  Clear first: {'yes' if args.clear else 'no'}")
    print("=" * 56)
    print()

    for site in sites:
        if args.clear:
            logger.info("Clearing existing bursts for %s…", site.display_name)
            clear_site(site, args.root)
        bursts = simulate_site(site, args.heartbeats, end, max_data_size=args.max_size)
        logger.info("Seeding %s (%d bursts)…", site.display_name, len(bursts))
        if args.root is None:
            seed_mongodb(site, bursts)
        else:
            seed_filesystem(site, bursts, args.root)

    print()
    logger.info("Done.  Query the API to see the data:")
    logger.info("  http://127.0.0.1:5000/atlas")
    print()


if __name__ == "__main__":
    main()
