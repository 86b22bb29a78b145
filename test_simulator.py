"""
test_simulator.py — Packet fragmenting and synthetic bursts

Run:  pytest test_simulator.py
"""

import random

import pytest

from conftest import SESSION
from heartbeat import Heartbeat
from message import Reassembler, reassemble
from packet import Packet
from simulator import build_burst, fragment, simulate_site, synthetic_heartbeat
from sites import Site


# ── fragment ──────────────────────────────────────────────────────────────────

def test_fragment_layout():
    assert fragment(b"abcdef", 42, 4) == [b"1,42,0,6:abcd", b"1,42,4:ef"]


def test_fragment_single_packet_with_station_name():
    assert fragment(b"abc", 1, 100, type_byte=b"9", station_name="ATLAS") == [b"9,1,0,3,N=ATLAS:abc"]


def test_fragment_empty_data():
    [payload] = fragment(b"", 3, 10)
    assert Reassembler().add(Packet.parse(payload)).data == b""


def test_fragments_reassemble():
    data = bytes(range(256)) * 3
    reassembler = Reassembler()
    results = [reassembler.add(Packet.parse(p)) for p in fragment(data, 200, 100)]
    assert all(r is None for r in results[:-1])
    assert results[-1].data == data


@pytest.mark.parametrize("type_byte", [b"0", b"}", b"11"])
def test_fragment_requires_extended_type(type_byte):
    with pytest.raises(ValueError):
        fragment(b"abc", 1, 10, type_byte=type_byte)


def test_fragment_id_must_fit_in_a_byte():
    with pytest.raises(ValueError):
        fragment(b"abc", 256, 10)


# ── Bursts ────────────────────────────────────────────────────────────────────

def test_build_burst():
    burst = build_burst(b"0x", "300234063554810", SESSION, momsn=70000)
    assert burst.momsn == 70000 & 0xFFFF
    assert burst.time_of_session == SESSION
    assert burst.payload == b"0x"


def test_synthetic_heartbeat_decodes():
    data = synthetic_heartbeat(random.Random(1), SESSION, version=3, wind=True)
    heartbeat = Heartbeat.from_bytes(data)
    assert heartbeat.raw.version == 3
    assert heartbeat.wind is not None
    assert len(heartbeat.batteries) == 4
    assert len(heartbeat.fuel_cells) == 1


def test_simulate_site_momsn_is_sequential():
    bursts = simulate_site(Site.SOUTH, 3, SESSION, max_data_size=80)
    assert [b.momsn for b in bursts] == list(range(len(bursts)))
    assert len(reassemble(bursts)) == 3


def test_simulate_site_is_reproducible():
    first = simulate_site(Site.NORTH, 2, SESSION)
    second = simulate_site(Site.NORTH, 2, SESSION)
    assert [b.payload for b in first] == [b.payload for b in second]
