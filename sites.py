"""
sites.py — ATLAS Installations

ATLAS is a pair of remote terrestrial LiDAR systems in southeast Greenland.
Both transmit regularly-scheduled heartbeats over Iridium SBD; each site is
identified by the IMEI of its modem.

  ATLAS South — installed 2015, no wind sensor
  ATLAS North — installed 2018, has a wind sensor

heartbeats() is the bulk pipeline: reassemble every burst from a site, decode
each message, and keep only the ones that decoded.  bad_heartbeats() keeps
the failures instead, for debugging.
"""

import enum
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

import database
from config import IMEI_NORTH, IMEI_SOUTH, SBD_ROOT
from heartbeat import Heartbeat
from message import Message, reassemble
from raw_heartbeat import HeartbeatError
from sbd import FilesystemStorage, MobileOriginatedMessage

logger = logging.getLogger(__name__)


class Site(enum.Enum):
    SOUTH = "south"
    NORTH = "north"

    @property
    def id(self) -> str:
        return self.value

    @property
    def display_name(self) -> str:
        return f"ATLAS {self.value.capitalize()}"

    @property
    def imei(self) -> str:
        return IMEI_SOUTH if self is Site.SOUTH else IMEI_NORTH

    @classmethod
    def from_str(cls, s: str) -> "Site":
        try:
            return cls(s.lower())
        except ValueError:
            raise ValueError(f"invalid site name: {s}") from None


def load_bursts(site: Site, root: Optional[Union[str, Path]] = None) -> List[MobileOriginatedMessage]:
    """
    Every burst received from ``site``.

    Read from the filesystem archive at ``root`` (or SBD_ROOT) when one is
    given, otherwise from MongoDB.
    """
    root = root or SBD_ROOT
    if root:
        return FilesystemStorage(root).messages_from_imei(site.imei)
    return database.bursts_from_imei(site.imei)


DecodeResult = Tuple[Message, Union[Heartbeat, HeartbeatError]]


def decode_messages(messages: Iterable[Message]) -> List[DecodeResult]:
    """Decode each message, pairing it with its heartbeat or its error."""
    results: List[DecodeResult] = []
    for message in messages:
        try:
            results.append((message, Heartbeat.from_message(message)))
        except HeartbeatError as exc:
            logger.debug("Message at %s is not a heartbeat: %s", message.datetime, exc)
            results.append((message, exc))
    return results


def heartbeats(bursts: Iterable) -> List[Heartbeat]:
    """All heartbeats that could be decoded from ``bursts``, oldest first."""
    results = decode_messages(reassemble(bursts))
    good = [r for _, r in results if isinstance(r, Heartbeat)]
    logger.info("Decoded %d heartbeat(s), rejected %d message(s)", len(good), len(results) - len(good))
    return good


def bad_heartbeats(bursts: Iterable) -> List[HeartbeatError]:
    """Errors for every reassembled message that wasn't a valid heartbeat."""
    return [r for _, r in decode_messages(reassemble(bursts)) if isinstance(r, HeartbeatError)]


def latest_heartbeat(bursts: Iterable) -> Optional[Heartbeat]:
    found = heartbeats(bursts)
    return found[-1] if found else None
