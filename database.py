"""
database.py — MongoDB Burst Archive

Collections
───────────
  bursts  — Every Iridium SBD mobile-originated message received, one
            document per burst, payload stored as BSON binary.

Indexing Strategy
─────────────────
  bursts:
    { imei: 1, time_of_session: 1 }          compound — per-site reassembly scans
    { imei: 1, momsn: 1, time_of_session: 1 } UNIQUE — deduplication key

Duplicate Burst Handling (Design Decision)
──────────────────────────────────────────
  The gateway retransmits a burst when it doesn't get an acknowledgement, and
  imports from a filesystem archive may be re-run.  A unique compound index on
  (imei, momsn, time_of_session) makes the second insert fail with
  DuplicateKeyError, which is caught and reported as "not stored".  Feeding a
  duplicate continuation packet to the reassembler would corrupt the message
  length, so duplicates must never reach it.
"""

import logging
import time
from typing import Any, Dict, List, Optional

import certifi

from pymongo import MongoClient, ASCENDING
from pymongo.errors import DuplicateKeyError

from config import MONGODB_URI, MONGODB_TLS, DB_NAME, BURSTS_COLLECTION
from sbd import MobileOriginatedMessage

logger = logging.getLogger(__name__)

# ── Lazy-initialised module singletons ───────────────────────────────────────
_client: Optional[MongoClient] = None
_db = None


def get_db():
    """Return the MongoDB database handle; creates it on first call."""
    global _client, _db
    if _client is None:
        options: Dict[str, Any] = {"serverSelectionTimeoutMS": 5000, "tz_aware": True}
        if MONGODB_TLS:
            options.update(tls=True, tlsCAFile=certifi.where())
        _client = MongoClient(MONGODB_URI, **options)
        _db = _client[DB_NAME]
        _create_indexes()
    return _db


def _create_indexes() -> None:
    """Create the burst indexes; create_index is a no-op for ones that exist."""
    try:
        db = _db
        db[BURSTS_COLLECTION].create_index(
            [("imei", ASCENDING), ("time_of_session", ASCENDING)],
            name="imei_session",
        )
        db[BURSTS_COLLECTION].create_index(
            [
                ("imei", ASCENDING),
                ("momsn", ASCENDING),
                ("time_of_session", ASCENDING),
            ],
            unique=True,
            name="burst_dedup",
        )
        logger.info("MongoDB indexes verified / created.")
    except Exception as exc:
        logger.error(f"Index creation error: {exc}")


# ── Conversions ───────────────────────────────────────────────────────────────

def burst_to_document(burst: MobileOriginatedMessage) -> Dict[str, Any]:
    return {
        "imei":              burst.imei,
        "time_of_session":   burst.time_of_session,
        "momsn":             burst.momsn,
        "mtmsn":             burst.mtmsn,
        "cdr_reference":     burst.cdr_reference,
        "session_status":    burst.session_status,
        "protocol_revision": burst.protocol_revision,
        "payload":           bytes(burst.payload),
    }


def document_to_burst(doc: Dict[str, Any]) -> MobileOriginatedMessage:
    return MobileOriginatedMessage(
        imei=doc["imei"],
        time_of_session=doc["time_of_session"],
        payload=bytes(doc["payload"]),
        cdr_reference=doc.get("cdr_reference", 0),
        session_status=doc.get("session_status", 0),
        momsn=doc.get("momsn", 0),
        mtmsn=doc.get("mtmsn", 0),
        protocol_revision=doc.get("protocol_revision", 1),
    )


# ── Write operations ──────────────────────────────────────────────────────────

def store_burst(burst: MobileOriginatedMessage) -> bool:
    """
    Persist one burst.

    Silently ignores duplicates (same imei + momsn + time_of_session).
    Returns True if stored, False if duplicate or on error.
    """
    try:
        doc = {**burst_to_document(burst), "received_at": time.time()}
        get_db()[BURSTS_COLLECTION].insert_one(doc)
        return True
    except DuplicateKeyError:
        logger.debug(
            "Duplicate burst suppressed — imei=%s momsn=%s session=%s",
            burst.imei,
            burst.momsn,
            burst.time_of_session,
        )
        return False
    except Exception as exc:
        logger.error(f"store_burst: {exc}")
        return False


def clear_bursts(imei: Optional[str] = None) -> int:
    """Delete stored bursts (all of them, or one IMEI's). Returns the count removed."""
    try:
        query = {"imei": imei} if imei else {}
        return get_db()[BURSTS_COLLECTION].delete_many(query).deleted_count
    except Exception as exc:
        logger.error(f"clear_bursts: {exc}")
        return 0


# ── Read operations ───────────────────────────────────────────────────────────

def bursts_from_imei(imei: str) -> List[MobileOriginatedMessage]:
    """Return every stored burst for an IMEI, oldest session first."""
    try:
        cursor = get_db()[BURSTS_COLLECTION].find(
            {"imei": imei},
            sort=[("time_of_session", ASCENDING), ("momsn", ASCENDING)],
            projection={"_id": 0, "received_at": 0},
        )
        return [document_to_burst(doc) for doc in cursor]
    except Exception as exc:
        logger.error(f"bursts_from_imei: {exc}")
        return []


def imeis() -> List[str]:
    """Return every IMEI that has at least one stored burst."""
    try:
        return sorted(get_db()[BURSTS_COLLECTION].distinct("imei"))
    except Exception as exc:
        logger.error(f"imeis: {exc}")
        return []


def ping_db() -> Dict[str, Any]:
    """
    Ping MongoDB and return connection health metrics.

    Returns a dict with status, round-trip latency in ms, and the estimated
    document count of the bursts collection.
    """
    try:
        database = get_db()
        t0 = time.time()
        database.command("ping")
        latency_ms = round((time.time() - t0) * 1000, 1)
        burst_count = database[BURSTS_COLLECTION].estimated_document_count()
        return {
            "status": "connected",
            "latency_ms": latency_ms,
            "burst_docs": burst_count,
        }
    except Exception as exc:
        logger.warning("ping_db failed: %s", exc)
        return {"status": "disconnected", "error": str(exc)}
