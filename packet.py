"""
packet.py — Sutron Packet Parser

Iridium SBD messages are limited in size, so the Sutron data loggers at the
field stations split longer messages over several bursts.  Each burst payload
is one packet:

  [~ ...]  zero or more look-to-next-byte filler bytes
  T        packet type byte
  [hdr:]   sub-header, terminated by ':'
  data     everything else

Packet type byte:
  '0' '1'  self-timed              '6' '7'  command response
  '2' '3'  entering alarm          '8' '9'  forced transmission
  '4' '5'  exiting alarm           '}'      user defined
  0xFF     binary data             other    reserved

The odd digits '1' '3' '5' '7' '9' are "extended" packets and always carry a
sub-header:

  ,<id>,<start_byte>[,<total_bytes>][,N=<station_name>]:

Non-extended packets may carry only a station name:

  ,N=<station_name>:

A packet with a sub-header but no total_bytes is a continuation of an
earlier packet with the same id.
"""

import datetime as dt
import enum
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Tuple, Union

from sbd import MobileOriginatedMessage

LOOK_TO_NEXT_BYTE_FOR_MEANING = ord("~")
SUB_HEADER_TERMINATOR = ord(":")
STATION_NAME_PREFIX = "N="

_DIGITS = re.compile(r"[0-9]+")


# ── Errors ───────────────────────────────────────────────────────────────────

class PacketError(Exception):
    """Raised when a burst payload cannot be parsed into a packet."""


class MissingTypeByte(PacketError):
    def __init__(self):
        super().__init__("there is no packet type byte")


class LeadingSubHeaderCharacters(PacketError):
    def __init__(self, characters: str):
        self.characters = characters
        super().__init__(f"unexpected leading sub-header characters: {characters}")


class MissingId(PacketError):
    def __init__(self):
        super().__init__("missing id in the sub-header")


class MissingStartByte(PacketError):
    def __init__(self):
        super().__init__("missing start byte in the sub-header")


class InvalidTotalBytes(PacketError):
    def __init__(self, field_: str):
        self.field = field_
        super().__init__(f"total bytes field is not a number: {field_}")


class InvalidStationNameField(PacketError):
    def __init__(self, field_: str):
        self.field = field_
        super().__init__(f"the station name field is incorrectly specified: {field_}")


class TrailingSubHeaderCharacters(PacketError):
    def __init__(self, characters: str):
        self.characters = characters
        super().__init__(f"trailing sub-header characters: {characters}")


class InvalidSubHeaderEncoding(PacketError):
    def __init__(self, raw: bytes):
        self.raw = raw
        super().__init__(f"sub-header is not valid UTF-8: {raw!r}")


# ── Types ────────────────────────────────────────────────────────────────────

class PacketType(enum.Enum):
    SELF_TIMED = "self_timed"
    ENTERING_ALARM = "entering_alarm"
    EXITING_ALARM = "exiting_alarm"
    COMMAND_RESPONSE = "command_response"
    FORCED_TRANSMISSION = "forced_transmission"
    USER_DEFINED = "user_defined"
    BINARY_DATA = "binary_data"
    RESERVED = "reserved"

    @classmethod
    def from_byte(cls, n: int) -> "PacketType":
        return _TYPE_BYTES.get(n, cls.RESERVED)


_TYPE_BYTES = {
    ord("0"): PacketType.SELF_TIMED,
    ord("1"): PacketType.SELF_TIMED,
    ord("2"): PacketType.ENTERING_ALARM,
    ord("3"): PacketType.ENTERING_ALARM,
    ord("4"): PacketType.EXITING_ALARM,
    ord("5"): PacketType.EXITING_ALARM,
    ord("6"): PacketType.COMMAND_RESPONSE,
    ord("7"): PacketType.COMMAND_RESPONSE,
    ord("8"): PacketType.FORCED_TRANSMISSION,
    ord("9"): PacketType.FORCED_TRANSMISSION,
    ord("}"): PacketType.USER_DEFINED,
    0xFF: PacketType.BINARY_DATA,
}


@dataclass(frozen=True)
class SubHeader:
    id: int
    start_byte: int
    total_bytes: Optional[int] = None


@dataclass
class Packet:
    """A single burst payload, which is part of or a whole Sutron message."""

    type_byte: int
    data: bytes
    sub_header: Optional[SubHeader] = None
    station_name: Optional[str] = None
    datetime: Optional[dt.datetime] = None
    burst: Any = field(default=None, repr=False, compare=False)

    @property
    def type(self) -> PacketType:
        return PacketType.from_byte(self.type_byte)

    @property
    def reserved_code(self) -> Optional[int]:
        """The raw type byte of a reserved packet, None for every known type."""
        if self.type is PacketType.RESERVED:
            return self.type_byte
        return None

    def is_start_packet(self) -> bool:
        """True for non-extended packets, or extended packets that declare total_bytes."""
        if self.sub_header is None:
            return True
        return self.sub_header.total_bytes is not None

    @classmethod
    def parse(cls, data: bytes) -> "Packet":
        """
        Parse one burst payload.

        Raises:
            PacketError: on a missing type byte or a malformed sub-header.
        """
        data = bytes(data)
        pos = 0
        while True:
            if pos >= len(data):
                raise MissingTypeByte()
            type_byte = data[pos]
            pos += 1
            if type_byte != LOOK_TO_NEXT_BYTE_FOR_MEANING:
                break

        sub_header = None
        station_name = None
        if is_extended(type_byte):
            raw, pos = _take_sub_header(data, pos)
            try:
                text = raw.decode("utf-8")
            except UnicodeDecodeError:
                raise InvalidSubHeaderEncoding(raw) from None
            sub_header, station_name = parse_sub_header(text)
        else:
            raw, end = _take_sub_header(data, pos)
            name = _station_name_from_non_extended(raw)
            if name is not None:
                station_name = name
                pos = end
            # otherwise the bytes stay in the data, untouched

        return cls(
            type_byte=type_byte,
            data=data[pos:],
            sub_header=sub_header,
            station_name=station_name,
        )

    @classmethod
    def from_burst(cls, burst) -> "Packet":
        """Parse ``burst.payload`` and remember the burst and its session time."""
        packet = cls.parse(burst.payload)
        packet.burst = burst
        packet.datetime = session_time(burst)
        return packet

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "Packet":
        """Read a packet from an archived SBD message file."""
        return cls.from_burst(MobileOriginatedMessage.from_path(path))


def session_time(burst) -> Optional[dt.datetime]:
    """
    Session time of a burst, or None.

    SBD messages call it ``time_of_session``; other burst sources may expose
    ``session_time`` instead.
    """
    value = getattr(burst, "time_of_session", None)
    if value is None:
        value = getattr(burst, "session_time", None)
    return value


def is_extended(n: int) -> bool:
    return ord("0") < n <= ord("9") and n % 2 == 1


def parse_sub_header(text: str) -> Tuple[SubHeader, Optional[str]]:
    """
    Parse the comma-separated sub-header of an extended packet, without its
    terminator.  Returns the sub-header and the station name, if any.
    """
    fields: List[str] = text.split(",")
    first = fields.pop(0)
    if first != "":
        raise LeadingSubHeaderCharacters(first)

    if not fields or not _is_u8(fields[0]):
        raise MissingId()
    id_ = int(fields.pop(0))

    if not fields or not _DIGITS.fullmatch(fields[0]):
        raise MissingStartByte()
    start_byte = int(fields.pop(0))

    total_bytes = None
    station_name = None
    if fields:
        next_ = fields.pop(0)
        station_name = parse_station_name(next_)
        if station_name is None:
            if not _DIGITS.fullmatch(next_):
                raise InvalidTotalBytes(next_)
            total_bytes = int(next_)
    if fields:
        next_ = fields.pop(0)
        # A station name can't follow another station name.
        name = parse_station_name(next_) if station_name is None else None
        if name is None:
            raise InvalidStationNameField(next_)
        station_name = name
    if fields:
        raise TrailingSubHeaderCharacters("," + ",".join(fields))

    return SubHeader(id=id_, start_byte=start_byte, total_bytes=total_bytes), station_name


def parse_station_name(field_: str) -> Optional[str]:
    if field_.startswith(STATION_NAME_PREFIX):
        return field_[len(STATION_NAME_PREFIX):]
    return None


def _take_sub_header(data: bytes, pos: int) -> Tuple[bytes, int]:
    """Bytes up to the terminator, and the position just past it."""
    end = data.find(SUB_HEADER_TERMINATOR, pos)
    if end < 0:
        return data[pos:], len(data)
    return data[pos:end], end + 1


def _station_name_from_non_extended(raw: bytes) -> Optional[str]:
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        return None
    if text.startswith(","):
        return parse_station_name(text[1:])
    return None


def _is_u8(field_: str) -> bool:
    return bool(_DIGITS.fullmatch(field_)) and int(field_) <= 0xFF
