"""
api.py — FastAPI REST API

Endpoints
─────────
  GET /atlas                             → Every ATLAS site with its latest heartbeat
  GET /atlas/{site_id}                   → One site (404 for an unknown id)
  GET /atlas/{site_id}/heartbeats?from=DT&to=DT
                                         → Decoded heartbeats within an ISO-8601 range
  GET /atlas/{site_id}/recycled          → Packets discarded while reassembling
  GET /health/db                         → MongoDB connectivity

Bursts come from the filesystem archive at SBD_ROOT when it is set, otherwise
from MongoDB.  Every request reassembles from scratch; there is no cache.

Interactive API docs are available automatically at:
  http://127.0.0.1:5000/docs   (Swagger UI)
  http://127.0.0.1:5000/redoc  (ReDoc)
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Query, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

import database as db
from message import Reassembly
from packet import Packet, PacketError
from sites import Site, heartbeats, latest_heartbeat, load_bursts

logger = logging.getLogger(__name__)

# ── Application ───────────────────────────────────────────────────────────────
app = FastAPI(
    title="ATLAS Heartbeat API",
    description=(
        "Heartbeats from the ATLAS terrestrial LiDAR stations in Greenland.\n\n"
        "Reassembles Sutron packets from archived Iridium SBD bursts, decodes "
        "the binary heartbeat records, and serves them as JSON."
    ),
    version="1.0.0",
)


# ── Pydantic response models (for Swagger docs) ───────────────────────────────
class SiteRecord(BaseModel):
    id:               str
    name:             str
    url:              str
    latest_heartbeat: Optional[Dict[str, Any]] = None


class HeartbeatsResponse(BaseModel):
    site_id:    str
    count:      int
    heartbeats: List[Dict[str, Any]]


class RecycledPacket(BaseModel):
    type:            str
    id:              Optional[int] = None
    start_byte:      Optional[int] = None
    total_bytes:     Optional[int] = None
    station_name:    Optional[str] = None
    time_of_session: Optional[datetime] = None
    data_hex:        str

    class Config:
        extra = "allow"


class RecycledResponse(BaseModel):
    site_id: str
    count:   int
    packets: List[RecycledPacket]


# ── Helpers ───────────────────────────────────────────────────────────────────

def _site_or_404(site_id: str) -> Site:
    try:
        return Site.from_str(site_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="no site with that id") from None


def _reassembly_failed(site: Site, exc: PacketError) -> HTTPException:
    logger.error("Could not reassemble bursts for %s: %s", site.display_name, exc)
    return HTTPException(status_code=500, detail=f"could not reassemble bursts: {exc}")


def _site_record(site: Site, request: Request) -> Dict[str, Any]:
    try:
        latest = latest_heartbeat(load_bursts(site))
    except PacketError as exc:
        raise _reassembly_failed(site, exc)
    return {
        "id": site.id,
        "name": site.display_name,
        "url": str(request.url_for("get_site", site_id=site.id)),
        "latest_heartbeat": latest.to_dict() if latest is not None else None,
    }


def _recycled_record(packet: Packet) -> Dict[str, Any]:
    sub_header = packet.sub_header
    return {
        "type": packet.type.value,
        "id": sub_header.id if sub_header else None,
        "start_byte": sub_header.start_byte if sub_header else None,
        "total_bytes": sub_header.total_bytes if sub_header else None,
        "station_name": packet.station_name,
        "time_of_session": packet.datetime,
        "data_hex": packet.data.hex(),
    }


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@app.get("/health/db", include_in_schema=False)
def db_health():
    """Ping MongoDB and return connection status, latency, and document counts."""
    result = db.ping_db()
    if result["status"] == "disconnected":
        return JSONResponse(status_code=503, content=result)
    return result


# ── Site endpoints ────────────────────────────────────────────────────────────

@app.get(
    "/atlas",
    response_model=List[SiteRecord],
    summary="ATLAS sites",
    description="Returns every ATLAS site along with its most recent heartbeat.",
)
def get_sites(request: Request):
    return [_site_record(site, request) for site in Site]


@app.get(
    "/atlas/{site_id}",
    response_model=SiteRecord,
    summary="ATLAS site",
    description="Returns one ATLAS site, looked up by its short id (north or south).",
)
def get_site(site_id: str, request: Request):
    return _site_record(_site_or_404(site_id), request)


# ── Heartbeat endpoints ───────────────────────────────────────────────────────

@app.get(
    "/atlas/{site_id}/heartbeats",
    response_model=HeartbeatsResponse,
    summary="Heartbeat history",
    description=(
        "Returns every heartbeat decoded from a site's bursts, oldest first, "
        "optionally restricted to an ISO-8601 datetime range.  Datetimes "
        "without an offset are taken as UTC."
    ),
)
def get_heartbeats(
    site_id: str,
    from_dt: Optional[datetime] = Query(None, alias="from", description="Start datetime", examples=["2018-09-01T00:00:00Z"]),
    to_dt:   Optional[datetime] = Query(None, alias="to",   description="End datetime",   examples=["2018-09-02T00:00:00Z"]),
):
    site = _site_or_404(site_id)
    from_dt, to_dt = _as_utc(from_dt), _as_utc(to_dt)
    if from_dt is not None and to_dt is not None and from_dt > to_dt:
        raise HTTPException(
            status_code=400,
            detail="'from' datetime must be less than or equal to 'to' datetime",
        )
    try:
        found = heartbeats(load_bursts(site))
    except PacketError as exc:
        raise _reassembly_failed(site, exc)
    if from_dt is not None or to_dt is not None:
        found = [
            h for h in found
            if h.datetime is not None
            and (from_dt is None or h.datetime >= from_dt)
            and (to_dt is None or h.datetime <= to_dt)
        ]
    return {
        "site_id": site.id,
        "count": len(found),
        "heartbeats": [h.to_dict() for h in found],
    }


@app.get(
    "/atlas/{site_id}/recycled",
    response_model=RecycledResponse,
    summary="Recycled packets",
    description=(
        "Returns the packets that were discarded because a new start packet "
        "arrived for the same id before their message was complete."
    ),
)
def get_recycled(site_id: str):
    site = _site_or_404(site_id)
    try:
        reassembly = Reassembly(load_bursts(site))
    except PacketError as exc:
        raise _reassembly_failed(site, exc)
    packets = [_recycled_record(p) for p in reassembly.recycle_bin]
    return {"site_id": site.id, "count": len(packets), "packets": packets}
