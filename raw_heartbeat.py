"""
raw_heartbeat.py — Raw ATLAS Heartbeat Decoder

Raw heartbeats map more-or-less directly onto the bytes in the heartbeat
messages.  Downstream code should generally use heartbeat.Heartbeat and only
reach in here for fields that aren't promoted to the normalized view.

Record layout (multi-byte numbers are little-endian):

  Offset  Size  Field
  ------  ----  -----
  0       4     Magic          b"ATHB"
  4       2     Version        ASCII digits, "03" or "04"
  6       3     Length         reserved, not interpreted
  9       var   Batteries      bank status byte, or 4 x (status [+ K2 record])
  ..      var   EFOYs          2 x (status [+ EFOY record])
  ..      16    Sensors        4 x float32
  ..      8     Wind           2 x float32, only at sites with a wind sensor
  ..      var   Scanner log    ASCII "power_on=..,start_scan=..,stop_scan=..,skip_scan=.."

Status bytes:
  b'x'  the bus could not be opened   (battery bank level, or an EFOY slot)
  b'g'  the unit responded, a record follows
  b'b'  the unit did not respond

K2 battery record — 18 bytes:   <ffbBBHHHB
  voltage [V], current [A], temperature [C, signed], state of charge [%],
  status, shutdown codes, error codes, warning codes, additional information

EFOY fuel cell record — 23 bytes:   <ffffBfBB
  internal temperature [C], battery voltage [V], output current [A],
  reservoir fluid level [%], current error, methanol consumption [L],
  operating mode, status
  Version 04 appends one byte: the active cartridge port.

Version 03 was transmitted from July 2018 to September 2018, version 04 since.

Nothing in the stream says whether a wind block is present.  The scanner log
is tried first; if that doesn't parse, the decoder rewinds, reads a wind
block, and tries the scanner log again.
"""

import re
import struct
from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, Dict, Optional, Tuple, Union

MAGIC_NUMBER = b"ATHB"

COULD_NOT_OPEN = ord("x")
GOOD = ord("g")
BAD = ord("b")

BATTERY_COUNT = 4
EFOY_COUNT = 2

K2_RECORD = struct.Struct("<ffbBBHHHB")
EFOY_RECORD = struct.Struct("<ffffBfBB")
SENSORS_RECORD = struct.Struct("<ffff")
WIND_RECORD = struct.Struct("<ff")

SCANNER_PATTERN = re.compile(
    r"power_on=(?P<power_on>.*),start_scan=(?P<start_scan>.*),"
    r"stop_scan=(?P<stop_scan>.*),skip_scan=(?P<skip_scan>.*)"
)


# ── Errors ───────────────────────────────────────────────────────────────────

class HeartbeatError(Exception):
    """Raised when bytes can't be decoded into a raw heartbeat."""


class InvalidMagic(HeartbeatError):
    def __init__(self, magic: bytes):
        self.magic = magic
        super().__init__(f"invalid magic number: {magic!r}")


class InvalidVersionField(HeartbeatError):
    def __init__(self, field: bytes):
        self.field = field
        super().__init__(f"version field is not two ASCII digits: {field!r}")


class UnsupportedVersion(HeartbeatError):
    def __init__(self, version: int):
        self.version = version
        super().__init__(f"invalid version: {version}")


class UnexpectedStatusByte(HeartbeatError):
    def __init__(self, byte: int):
        self.byte = byte
        super().__init__(f"unexpected status byte: {byte!r} ({chr(byte)!r})")


class TextGrammarMismatch(HeartbeatError):
    def __init__(self, text: str):
        self.text = text
        super().__init__(f"scanner log did not match: {text!r}")


class TruncatedRecord(HeartbeatError):
    def __init__(self, position: int, needed: int, available: int):
        self.position = position
        self.needed = needed
        self.available = available
        super().__init__(
            f"needed {needed} byte(s) at offset {position}, only {available} left"
        )


# ── Cursor ───────────────────────────────────────────────────────────────────

class ByteCursor:
    """A read position over an in-memory buffer."""

    def __init__(self, data: bytes, position: int = 0):
        self.data = bytes(data)
        self.position = position

    def remaining(self) -> int:
        return len(self.data) - self.position

    def read(self, n: int) -> bytes:
        if n > self.remaining():
            raise TruncatedRecord(self.position, n, self.remaining())
        chunk = self.data[self.position:self.position + n]
        self.position += n
        return chunk

    def read_u8(self) -> int:
        return self.read(1)[0]

    def read_struct(self, record: struct.Struct) -> tuple:
        return record.unpack(self.read(record.size))

    def read_to_end(self) -> bytes:
        return self.read(self.remaining())


# ── Sub-records ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class K2:
    """One K2 battery, as reported over CANBUS through the CAN232 adapter."""

    voltage: float = 0.0
    current: float = 0.0
    temperature: int = 0
    state_of_charge: int = 0
    status: int = 0
    shutdown_codes: int = 0
    error_codes: int = 0
    warning_codes: int = 0
    additional_information: int = 0

    @classmethod
    def read_from(cls, cursor: ByteCursor) -> "K2":
        return cls(*cursor.read_struct(K2_RECORD))


@dataclass(frozen=True)
class Efoy:
    """One EFOY methanol fuel cell, read over MODBUS."""

    internal_temperature: float = 0.0
    battery_voltage: float = 0.0
    output_current: float = 0.0
    reservoir_fluid_level: float = 0.0
    current_error: int = 0
    methanol_consumption: float = 0.0
    mode: int = 0
    status: int = 0

    @classmethod
    def read_from(cls, cursor: ByteCursor) -> "Efoy":
        return cls(*cursor.read_struct(EFOY_RECORD))


@dataclass(frozen=True)
class EfoyV04:
    """Version 04 EFOY data: the version 03 record plus the active cartridge."""

    efoy: Efoy = field(default_factory=Efoy)
    active_cartridge_port: int = 0

    @classmethod
    def read_from(cls, cursor: ByteCursor) -> "EfoyV04":
        efoy = Efoy.read_from(cursor)
        return cls(efoy=efoy, active_cartridge_port=cursor.read_u8())


@dataclass(frozen=True)
class Sensors:
    barometric_pressure: float = 0.0
    power_box_temperature: float = 0.0
    external_temperature: float = 0.0
    relative_humidity: float = 0.0

    @classmethod
    def read_from(cls, cursor: ByteCursor) -> "Sensors":
        return cls(*cursor.read_struct(SENSORS_RECORD))


@dataclass(frozen=True)
class Wind:
    speed: float = 0.0
    direction: float = 0.0

    @classmethod
    def read_from(cls, cursor: ByteCursor) -> "Wind":
        return cls(*cursor.read_struct(WIND_RECORD))


@dataclass(frozen=True)
class Scanner:
    """Log lines the scanner saves to the data logger, transmitted as-is."""

    power_on: str = ""
    start_scan: str = ""
    stop_scan: str = ""
    skip_scan: str = ""

    @classmethod
    def read_from(cls, cursor: ByteCursor) -> "Scanner":
        raw = cursor.read_to_end()
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            raise TextGrammarMismatch(raw.decode("utf-8", errors="replace")) from None
        match = SCANNER_PATTERN.fullmatch(text)
        if match is None:
            raise TextGrammarMismatch(text)
        return cls(**match.groupdict())


# None when the CAN232 adapter couldn't be opened; otherwise one slot per battery.
Batteries = Optional[Tuple[Optional[K2], Optional[K2], Optional[K2], Optional[K2]]]
EfoysV03 = Tuple[Optional[Efoy], Optional[Efoy]]
EfoysV04 = Tuple[Optional[EfoyV04], Optional[EfoyV04]]


def read_batteries(cursor: ByteCursor) -> Batteries:
    if cursor.read_u8() == COULD_NOT_OPEN:
        return None
    cursor.position -= 1
    slots = []
    for _ in range(BATTERY_COUNT):
        status = cursor.read_u8()
        if status == GOOD:
            slots.append(K2.read_from(cursor))
        elif status == BAD:
            slots.append(None)
        else:
            raise UnexpectedStatusByte(status)
    return tuple(slots)


def read_efoys(cursor: ByteCursor, reader) -> tuple:
    slots = []
    for _ in range(EFOY_COUNT):
        status = cursor.read_u8()
        if status == GOOD:
            slots.append(reader(cursor))
        elif status in (BAD, COULD_NOT_OPEN):
            slots.append(None)
        else:
            raise UnexpectedStatusByte(status)
    return tuple(slots)


def read_wind_and_scanner(cursor: ByteCursor) -> Tuple[Optional[Wind], Scanner]:
    position = cursor.position
    try:
        return None, Scanner.read_from(cursor)
    except TextGrammarMismatch:
        cursor.position = position
        # Too short to hold a wind block, so the text was simply wrong.
        if cursor.remaining() < WIND_RECORD.size:
            raise
    wind = Wind.read_from(cursor)
    return wind, Scanner.read_from(cursor)


# ── Versions ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class HeartbeatV03:
    """Version 03 heartbeat, in commission from 2018-07 through 2018-09."""

    version: ClassVar[int] = 3

    batteries: Batteries
    efoys: EfoysV03
    sensors: Sensors
    wind: Optional[Wind]
    scanner: Scanner
    length: bytes = b"000"

    @classmethod
    def read_from(cls, cursor: ByteCursor, length: bytes = b"000") -> "HeartbeatV03":
        batteries = read_batteries(cursor)
        efoys = read_efoys(cursor, Efoy.read_from)
        sensors = Sensors.read_from(cursor)
        wind, scanner = read_wind_and_scanner(cursor)
        return cls(batteries, efoys, sensors, wind, scanner, length)

    def to_dict(self) -> Dict[str, Any]:
        return {"version": self.version, **_asdict(self)}


@dataclass(frozen=True)
class HeartbeatV04:
    """
    Version 04 heartbeat, installed in September 2018.

    Identical to version 03 except that each EFOY carries one extra byte, the
    active cartridge port.
    """

    version: ClassVar[int] = 4

    batteries: Batteries
    efoys: EfoysV04
    sensors: Sensors
    wind: Optional[Wind]
    scanner: Scanner
    length: bytes = b"000"

    @classmethod
    def read_from(cls, cursor: ByteCursor, length: bytes = b"000") -> "HeartbeatV04":
        batteries = read_batteries(cursor)
        efoys = read_efoys(cursor, EfoyV04.read_from)
        sensors = Sensors.read_from(cursor)
        wind, scanner = read_wind_and_scanner(cursor)
        return cls(batteries, efoys, sensors, wind, scanner, length)

    def to_dict(self) -> Dict[str, Any]:
        return {"version": self.version, **_asdict(self)}


RawHeartbeat = Union[HeartbeatV03, HeartbeatV04]

_READERS = {
    HeartbeatV03.version: HeartbeatV03.read_from,
    HeartbeatV04.version: HeartbeatV04.read_from,
}
SUPPORTED_VERSIONS = tuple(sorted(_READERS))


def decode(data: bytes) -> RawHeartbeat:
    """
    Decode a complete heartbeat message.

    Raises:
        HeartbeatError: on a bad header, an unsupported version, an
                        unexpected status byte, a scanner log that doesn't
                        match, or a record that ends early.
    """
    cursor = ByteCursor(data)
    magic = cursor.data[:len(MAGIC_NUMBER)]
    if magic != MAGIC_NUMBER:
        raise InvalidMagic(magic)
    cursor.read(len(MAGIC_NUMBER))

    version_field = cursor.read(2)
    if not (version_field.isascii() and version_field.isdigit()):
        raise InvalidVersionField(version_field)
    version = int(version_field)
    length = cursor.read(3)

    reader = _READERS.get(version)
    if reader is None:
        raise UnsupportedVersion(version)
    return reader(cursor, length)


def _asdict(record) -> Dict[str, Any]:
    d = asdict(record)
    d["length"] = record.length.decode("ascii", errors="replace")
    return d
