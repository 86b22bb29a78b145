"""
simulator.py — ATLAS Heartbeat Simulator

Builds well-formed heartbeat records, splits them into Sutron packets the way
the data logger does, and wraps each packet in an Iridium SBD MO message.
Everything here is the inverse of a decoder elsewhere in the project:

  encode_heartbeat / build_heartbeat   ↔  raw_heartbeat.decode
  fragment                             ↔  packet.Packet.parse + message.Reassembler
  build_burst                          ↔  sbd.MobileOriginatedMessage.from_bytes

The CLI writes a batch of synthetic heartbeats for one site into a filesystem
archive, laid out exactly like the real one.

Usage:
  python simulator.py /tmp/sbd
  python simulator.py /tmp/sbd --site south --count 12 --version 3 --max-size 120
"""

import argparse
import logging
import random
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Sequence, Union

from packet import is_extended
from raw_heartbeat import (
    BAD,
    COULD_NOT_OPEN,
    EFOY_RECORD,
    GOOD,
    K2_RECORD,
    MAGIC_NUMBER,
    SENSORS_RECORD,
    WIND_RECORD,
    K2,
    Batteries,
    Efoy,
    EfoyV04,
    HeartbeatV03,
    HeartbeatV04,
    RawHeartbeat,
    Scanner,
    Sensors,
    Wind,
)
from sbd import FilesystemStorage, MobileOriginatedMessage
from sites import Site

logger = logging.getLogger(__name__)

# Iridium caps a MO payload at 340 bytes; leave room for the sub-header.
DEFAULT_MAX_DATA_SIZE = 320


# ── Heartbeat builder ─────────────────────────────────────────────────────────

def _encode_batteries(batteries: Batteries) -> bytes:
    if batteries is None:
        return bytes([COULD_NOT_OPEN])
    out = b""
    for k2 in batteries:
        if k2 is None:
            out += bytes([BAD])
        else:
            out += bytes([GOOD]) + K2_RECORD.pack(
                k2.voltage,
                k2.current,
                k2.temperature,
                k2.state_of_charge,
                k2.status,
                k2.shutdown_codes,
                k2.error_codes,
                k2.warning_codes,
                k2.additional_information,
            )
    return out


def _encode_efoy(efoy: Efoy) -> bytes:
    return EFOY_RECORD.pack(
        efoy.internal_temperature,
        efoy.battery_voltage,
        efoy.output_current,
        efoy.reservoir_fluid_level,
        efoy.current_error,
        efoy.methanol_consumption,
        efoy.mode,
        efoy.status,
    )


def _encode_scanner(scanner: Scanner) -> bytes:
    return (
        f"power_on={scanner.power_on},start_scan={scanner.start_scan},"
        f"stop_scan={scanner.stop_scan},skip_scan={scanner.skip_scan}"
    ).encode("utf-8")


def encode_heartbeat(raw: RawHeartbeat) -> bytes:
    """Serialize a raw heartbeat into the bytes the data logger would send."""
    out = MAGIC_NUMBER + f"{raw.version:02d}".encode("ascii") + raw.length
    out += _encode_batteries(raw.batteries)
    for efoy in raw.efoys:
        if efoy is None:
            out += bytes([BAD])
        elif isinstance(efoy, EfoyV04):
            out += bytes([GOOD]) + _encode_efoy(efoy.efoy) + bytes([efoy.active_cartridge_port])
        else:
            out += bytes([GOOD]) + _encode_efoy(efoy)
    out += SENSORS_RECORD.pack(
        raw.sensors.barometric_pressure,
        raw.sensors.power_box_temperature,
        raw.sensors.external_temperature,
        raw.sensors.relative_humidity,
    )
    if raw.wind is not None:
        out += WIND_RECORD.pack(raw.wind.speed, raw.wind.direction)
    return out + _encode_scanner(raw.scanner)


def build_heartbeat(
    version: int = 4,
    batteries: Batteries = (None, None, None, None),
    efoys: Sequence[Optional[Union[Efoy, EfoyV04]]] = (None, None),
    sensors: Sensors = Sensors(),
    wind: Optional[Wind] = None,
    scanner: Scanner = Scanner(),
) -> bytes:
    """
    Build the bytes of a version 03 or 04 heartbeat.

    EFOY slots may be given as either Efoy or EfoyV04; they are converted to
    whatever the version calls for (a plain Efoy gets cartridge port 0).
    """
    if version == 3:
        slots = tuple(e.efoy if isinstance(e, EfoyV04) else e for e in efoys)
        raw = HeartbeatV03(batteries, slots, sensors, wind, scanner)
    elif version == 4:
        slots = tuple(
            EfoyV04(efoy=e) if isinstance(e, Efoy) else e for e in efoys
        )
        raw = HeartbeatV04(batteries, slots, sensors, wind, scanner)
    else:
        raise ValueError(f"cannot build a version {version} heartbeat")
    return encode_heartbeat(raw)


# ── Packetizer ────────────────────────────────────────────────────────────────

def fragment(
    data: bytes,
    id: int,
    max_data_size: int = DEFAULT_MAX_DATA_SIZE,
    type_byte: bytes = b"1",
    station_name: Optional[str] = None,
) -> List[bytes]:
    """
    Split ``data`` into extended Sutron packet payloads sharing ``id``.

    The first packet declares the total length (and the station name, if
    given); the rest are continuations that give only their start byte.
    """
    if len(type_byte) != 1 or not is_extended(type_byte[0]):
        raise ValueError(f"not an extended packet type: {type_byte!r}")
    if not 0 <= id <= 0xFF:
        raise ValueError(f"packet id must fit in one byte: {id}")
    if max_data_size < 1:
        raise ValueError("max_data_size must be positive")

    packets = []
    start = 0
    while True:
        chunk = data[start:start + max_data_size]
        fields = [str(id), str(start)]
        if start == 0:
            fields.append(str(len(data)))
            if station_name is not None:
                fields.append(f"N={station_name}")
        packets.append(type_byte + ("," + ",".join(fields) + ":").encode("utf-8") + chunk)
        start += max_data_size
        if start >= len(data):
            return packets


def build_burst(
    payload: bytes,
    imei: str,
    time_of_session: datetime,
    momsn: int = 0,
    cdr_reference: int = 0,
) -> MobileOriginatedMessage:
    """Wrap one packet payload in a mobile-originated SBD message."""
    return MobileOriginatedMessage(
        imei=imei,
        time_of_session=time_of_session,
        payload=payload,
        cdr_reference=cdr_reference,
        momsn=momsn & 0xFFFF,
    )


def heartbeat_bursts(
    data: bytes,
    imei: str,
    time_of_session: datetime,
    id: int,
    momsn: int = 0,
    max_data_size: int = DEFAULT_MAX_DATA_SIZE,
) -> List[MobileOriginatedMessage]:
    """Fragment ``data`` and wrap each packet in a burst, one second apart."""
    return [
        build_burst(
            payload,
            imei,
            time_of_session + timedelta(seconds=i),
            momsn=momsn + i,
        )
        for i, payload in enumerate(fragment(data, id, max_data_size))
    ]


# ── Synthetic values ──────────────────────────────────────────────────────────

def synthetic_heartbeat(
    rng: random.Random,
    when: datetime,
    version: int = 4,
    wind: bool = False,
) -> bytes:
    """A plausible heartbeat: four healthy K2s, one EFOY running, one idle."""
    batteries = tuple(
        K2(
            voltage=round(rng.uniform(25.0, 28.5), 2),
            current=round(rng.uniform(-4.0, 6.0), 2),
            temperature=rng.randint(-20, 15),
            state_of_charge=rng.randint(40, 100),
            status=rng.choice((0, 1, 2)),
            error_codes=rng.choice((0, 0, 0, 0x10)),
        )
        for _ in range(4)
    )
    efoys = (
        Efoy(
            internal_temperature=round(rng.uniform(20.0, 40.0), 1),
            battery_voltage=round(rng.uniform(25.0, 28.5), 2),
            output_current=round(rng.uniform(0.0, 4.0), 2),
            reservoir_fluid_level=round(rng.uniform(10.0, 100.0), 1),
            methanol_consumption=round(rng.uniform(0.0, 200.0), 1),
            mode=1,
            status=1,
        ),
        None,
    )
    sensors = Sensors(
        barometric_pressure=round(rng.uniform(960.0, 1040.0), 1),
        power_box_temperature=round(rng.uniform(-10.0, 25.0), 1),
        external_temperature=round(rng.uniform(-30.0, 10.0), 1),
        relative_humidity=round(rng.uniform(30.0, 100.0), 1),
    )
    stamp = when.strftime("%Y-%m-%dT%H:%M:%S")
    scanner = Scanner(power_on=stamp, start_scan=stamp, stop_scan=stamp, skip_scan="")
    return build_heartbeat(
        version=version,
        batteries=batteries,
        efoys=efoys,
        sensors=sensors,
        wind=Wind(round(rng.uniform(0.0, 25.0), 1), round(rng.uniform(0.0, 360.0), 1)) if wind else None,
        scanner=scanner,
    )


def simulate_site(
    site: Site,
    count: int,
    end: datetime,
    interval: timedelta = timedelta(hours=1),
    version: int = 4,
    max_data_size: int = DEFAULT_MAX_DATA_SIZE,
    seed: int = 42,
) -> List[MobileOriginatedMessage]:
    """Bursts for ``count`` hourly heartbeats from ``site``, ending at ``end``."""
    rng = random.Random(f"{seed}-{site.id}")
    bursts: List[MobileOriginatedMessage] = []
    momsn = 0
    for i in range(count):
        when = end - (count - 1 - i) * interval
        data = synthetic_heartbeat(rng, when, version=version, wind=site is Site.NORTH)
        chunk = heartbeat_bursts(data, site.imei, when, id=i % 256, momsn=momsn,
                                 max_data_size=max_data_size)
        momsn += len(chunk)
        bursts.extend(chunk)
    return bursts


# ── CLI entry point ───────────────────────────────────────────────────────────
if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s  [SIMULATOR]  %(message)s",
        datefmt="%H:%M:%S",
    )
    ap = argparse.ArgumentParser(
        description="Write simulated ATLAS heartbeat bursts into an SBD archive"
    )
    ap.add_argument("root", type=Path, help="Archive root directory (created if missing)")
    ap.add_argument("--site", default="north", help="Site id: north or south (default: north)")
    ap.add_argument("--count", type=int, default=4, help="Number of heartbeats (default: 4)")
    ap.add_argument("--version", type=int, default=4, choices=(3, 4), help="Heartbeat version (default: 4)")
    ap.add_argument("--max-size", type=int, default=DEFAULT_MAX_DATA_SIZE,
                    help=f"Data bytes per packet (default: {DEFAULT_MAX_DATA_SIZE})")
    args = ap.parse_args()

    args.root.mkdir(parents=True, exist_ok=True)
    storage = FilesystemStorage(args.root)
    site = Site.from_str(args.site)
    now = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0)
    bursts = simulate_site(site, args.count, now, version=args.version, max_data_size=args.max_size)
    for burst in bursts:
        path = storage.store(burst)
        logger.info("momsn=%-5d %3d bytes → %s", burst.momsn, len(burst.payload), path)
    logger.info("Wrote %d burst(s) for %s (IMEI %s)", len(bursts), site.display_name, site.imei)
