"""
message.py — Sutron Message Reassembly

A message is one complete logical payload from a data logger.  Short
messages fit in a single packet; longer ones are split over several extended
packets that share a sub-header id:

    1,42,0,433:<first chunk>     start packet, declares the total length
    1,42,340:<second chunk>      continuation

The Reassembler keeps one list of packets per id.  A new start packet for an
id that still has packets in flight resets that id; the abandoned packets go
to the recycle bin so they can be inspected later.

Completion only compares the accumulated data length with the declared
total_bytes.  Packets for one id are assumed to arrive in transmission order;
start_byte offsets are not used to reorder them.
"""

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from packet import Packet, session_time

logger = logging.getLogger(__name__)


class ReassemblyError(Exception):
    """Raised when a list of packets can't be turned into a message."""


class NoPackets(ReassemblyError):
    def __init__(self):
        super().__init__("no packets")


class NoTotalBytes(ReassemblyError):
    def __init__(self, packet: Packet):
        self.packet = packet
        super().__init__(
            f"first packet (id={packet.sub_header.id}, start_byte={packet.sub_header.start_byte}) "
            "has no total bytes"
        )


class DataLengthMismatch(ReassemblyError):
    def __init__(self, declared: int, actual: int):
        self.declared = declared
        self.actual = actual
        super().__init__(f"sub-header declares {declared} bytes, packets hold {actual} bytes")


@dataclass
class Message:
    """A message sent from a Sutron data logger."""

    data: bytes
    datetime: Optional[dt.datetime] = None
    packets: List[Packet] = field(default_factory=list)

    @classmethod
    def build(cls, packets: Sequence[Packet]) -> "Message":
        """
        Create a message from packets, in order.

        Raises:
            ReassemblyError: if there are no packets, the first packet is a
                             continuation, or the data length doesn't match
                             the declared total.
        """
        if not packets:
            raise NoPackets()
        start = packets[0]
        if start.sub_header is None:
            return cls(data=start.data, datetime=start.datetime, packets=list(packets))
        total_bytes = start.sub_header.total_bytes
        if total_bytes is None:
            raise NoTotalBytes(start)
        data = b"".join(p.data for p in packets)
        if len(data) != total_bytes:
            raise DataLengthMismatch(total_bytes, len(data))
        return cls(data=data, datetime=start.datetime, packets=list(packets))

    @classmethod
    def from_bytes(cls, data: bytes) -> "Message":
        """Wrap bytes that were never packetized (e.g. a heartbeat file)."""
        return cls(data=bytes(data))


class Reassembler:
    """
    Reassembles packets into messages.

    Usage:
        reassembler = Reassembler()
        for packet in packets:
            message = reassembler.add(packet)
            if message is not None:
                ...

    One instance serves one stream of packets and is not thread-safe.
    """

    def __init__(self):
        self._entries: Dict[int, List[Packet]] = {}
        self.recycle_bin: List[Packet] = []

    def add(self, packet: Packet) -> Optional[Message]:
        """Add a packet, and return a message if one was completed."""
        if packet.sub_header is None:
            return Message.build([packet])

        id_ = packet.sub_header.id
        entry = self._entries.setdefault(id_, [])
        if packet.is_start_packet() and entry:
            logger.debug(
                "New start packet for id=%d; recycling %d in-flight packet(s)", id_, len(entry)
            )
            self.recycle_bin.extend(entry)
            entry.clear()
        entry.append(packet)

        try:
            message = Message.build(entry)
        except ReassemblyError:
            return None
        entry.clear()
        logger.debug("Reassembled id=%d from %d packet(s), %d bytes",
                     id_, len(message.packets), len(message.data))
        return message

    def pending(self, id_: int) -> List[Packet]:
        """Packets currently accumulated for ``id_``."""
        return list(self._entries.get(id_, ()))


def reassemble(bursts: Iterable) -> List[Message]:
    """
    Turn a pile of bursts into messages.

    Bursts are sorted by session time (bursts without one first), parsed and
    fed to a fresh Reassembler.  Messages come back sorted by datetime.

    Raises:
        PacketError: if any burst payload is not a valid packet.
    """
    return Reassembly(bursts).messages


class Reassembly:
    """The outcome of reassembling a batch of bursts: messages plus leftovers."""

    def __init__(self, bursts: Iterable):
        reassembler = Reassembler()
        messages: List[Message] = []
        for burst in sorted(bursts, key=_session_key):
            message = reassembler.add(Packet.from_burst(burst))
            if message is not None:
                messages.append(message)
        messages.sort(key=lambda m: _datetime_key(m.datetime))
        self.messages = messages
        self.recycle_bin = reassembler.recycle_bin


def _datetime_key(value):
    return (value is not None, value or dt.datetime.min.replace(tzinfo=dt.timezone.utc))


def _session_key(burst):
    return _datetime_key(session_time(burst))
