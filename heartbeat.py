"""
heartbeat.py — Normalized ATLAS Heartbeats

Reading a heartbeat is a two-step process.  Bytes are first decoded into a
raw heartbeat (raw_heartbeat.decode), which mirrors the record layout of one
particular version.  The raw heartbeat is then normalized into a Heartbeat,
which looks the same for every version:

  • only batteries and fuel cells that responded are listed
  • battery status bytes and error bitmasks become enums
  • battery temperatures are rebased from degrees Celsius to kelvin
  • wind data is copied through unchanged when the site has a wind sensor

The raw heartbeat stays attached for anything not promoted here.

A heartbeat decoded from bare bytes has no datetime; only heartbeats built
from a reassembled Message carry the session time of their first burst.
"""

import datetime as dt
import enum
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import raw_heartbeat
from message import Message
from packet import Packet
from raw_heartbeat import K2, Efoy, EfoyV04, RawHeartbeat, Sensors, Wind

BATTERY_TEMPERATURE_OFFSET = 273.15


class BatteryStatus(enum.Enum):
    IDLE = 0
    DISCHARGE = 1
    CHARGE = 2

    @classmethod
    def from_byte(cls, n: int) -> "BatteryStatus":
        try:
            return cls(n)
        except ValueError:
            return cls.IDLE


class BatteryError(enum.IntFlag):
    """Single-bit conditions in the low byte of a K2 battery's error codes."""

    OVERVOLTAGE = 0x01
    UNDERVOLTAGE = 0x02
    OVERCURRENT_CHARGE = 0x04
    OVERCURRENT_DISCHARGE = 0x08
    OVERTEMPERATURE = 0x10
    UNDERTEMPERATURE = 0x20
    CELL_IMBALANCE = 0x40
    INTERNAL_FAULT = 0x80

    @classmethod
    def decode(cls, codes: int) -> List["BatteryError"]:
        return [flag for flag in cls.__members__.values() if codes & flag]


@dataclass
class Battery:
    voltage: float
    current: float
    temperature: float
    state_of_charge: float
    status: BatteryStatus = BatteryStatus.IDLE
    errors: List[BatteryError] = field(default_factory=list)

    @classmethod
    def from_k2(cls, k2: K2) -> "Battery":
        return cls(
            voltage=k2.voltage,
            current=k2.current,
            temperature=k2.temperature + BATTERY_TEMPERATURE_OFFSET,
            state_of_charge=float(k2.state_of_charge),
            status=BatteryStatus.from_byte(k2.status),
            errors=BatteryError.decode(k2.error_codes),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "voltage": self.voltage,
            "current": self.current,
            "temperature": self.temperature,
            "state_of_charge": self.state_of_charge,
            "status": self.status.name.lower(),
            "errors": [e.name.lower() for e in self.errors],
        }


@dataclass
class FuelCell:
    internal_temperature: float
    battery_voltage: float
    output_current: float
    reservoir_fluid_level: float
    methanol_consumption: float
    active_cartridge_port: Optional[int] = None

    @classmethod
    def from_raw(cls, efoy: Union[Efoy, EfoyV04]) -> "FuelCell":
        port = None
        if isinstance(efoy, EfoyV04):
            port = efoy.active_cartridge_port
            efoy = efoy.efoy
        return cls(
            internal_temperature=efoy.internal_temperature,
            battery_voltage=efoy.battery_voltage,
            output_current=efoy.output_current,
            reservoir_fluid_level=efoy.reservoir_fluid_level,
            methanol_consumption=efoy.methanol_consumption,
            active_cartridge_port=port,
        )


@dataclass
class Heartbeat:
    """An ATLAS heartbeat; any raw version normalizes into this structure."""

    batteries: List[Battery]
    fuel_cells: List[FuelCell]
    sensors: Sensors
    wind: Optional[Wind]
    raw: RawHeartbeat
    datetime: Optional[dt.datetime] = None

    @classmethod
    def from_raw(cls, raw: RawHeartbeat) -> "Heartbeat":
        batteries = [Battery.from_k2(k2) for k2 in (raw.batteries or ()) if k2 is not None]
        fuel_cells = [FuelCell.from_raw(e) for e in raw.efoys if e is not None]
        return cls(
            batteries=batteries,
            fuel_cells=fuel_cells,
            sensors=raw.sensors,
            wind=raw.wind,
            raw=raw,
        )

    @classmethod
    def from_message(cls, message: Message) -> "Heartbeat":
        """
        Decode a reassembled message.

        Raises:
            HeartbeatError: if the message data isn't a valid heartbeat.
        """
        heartbeat = cls.from_raw(raw_heartbeat.decode(message.data))
        heartbeat.datetime = message.datetime
        return heartbeat

    @classmethod
    def from_bytes(cls, data: bytes) -> "Heartbeat":
        return cls.from_message(Message.from_bytes(data))

    @classmethod
    def from_paths(cls, paths: Sequence[Union[str, Path]]) -> "Heartbeat":
        """
        Build a heartbeat from archived SBD files holding all of its packets,
        in reassembly order.
        """
        packets = [Packet.from_path(p) for p in paths]
        return cls.from_message(Message.build(packets))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "datetime": self.datetime.isoformat() if self.datetime else None,
            "batteries": [b.to_dict() for b in self.batteries],
            "fuel_cells": [asdict(f) for f in self.fuel_cells],
            "sensors": asdict(self.sensors),
            "wind": asdict(self.wind) if self.wind is not None else None,
            "raw": self.raw.to_dict(),
        }
