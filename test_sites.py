"""
test_sites.py — ATLAS sites and the bulk heartbeat pipeline

Run:  pytest test_sites.py
"""

from datetime import timedelta

import pytest

import config
from conftest import SESSION
from message import reassemble
from raw_heartbeat import InvalidMagic
from sbd import FilesystemStorage
from simulator import simulate_site
from sites import Site, bad_heartbeats, decode_messages, heartbeats, latest_heartbeat, load_bursts


# ── Site ──────────────────────────────────────────────────────────────────────

def test_from_str_is_case_insensitive():
    assert Site.from_str("north") is Site.NORTH
    assert Site.from_str("South") is Site.SOUTH
    assert Site.from_str("NORTH") is Site.NORTH


def test_from_str_rejects_unknown_sites():
    with pytest.raises(ValueError, match="invalid site name: ATLAS"):
        Site.from_str("ATLAS")


def test_site_properties():
    assert Site.NORTH.id == "north"
    assert Site.NORTH.display_name == "ATLAS North"
    assert Site.SOUTH.display_name == "ATLAS South"
    assert Site.NORTH.imei == config.IMEI_NORTH
    assert Site.SOUTH.imei == config.IMEI_SOUTH


# ── Pipeline ──────────────────────────────────────────────────────────────────

def test_heartbeats_north_have_wind():
    bursts = simulate_site(Site.NORTH, 3, SESSION, max_data_size=100)
    assert len(bursts) > 3
    found = heartbeats(bursts)
    assert len(found) == 3
    assert all(h.wind is not None for h in found)
    assert [h.datetime for h in found] == [
        SESSION - timedelta(hours=2),
        SESSION - timedelta(hours=1),
        SESSION,
    ]


def test_heartbeats_south_have_no_wind():
    found = heartbeats(simulate_site(Site.SOUTH, 2, SESSION))
    assert len(found) == 2
    assert all(h.wind is None for h in found)


def test_bad_heartbeats(make_burst):
    bursts = simulate_site(Site.NORTH, 1, SESSION) + [make_burst(b"0not a heartbeat", seconds=60)]
    assert len(heartbeats(bursts)) == 1
    errors = bad_heartbeats(bursts)
    assert len(errors) == 1
    assert isinstance(errors[0], InvalidMagic)


def test_decode_messages_pairs_each_message(make_burst):
    messages = reassemble([make_burst(b"0junk")])
    [(message, result)] = decode_messages(messages)
    assert message.data == b"junk"
    assert isinstance(result, InvalidMagic)


def test_latest_heartbeat():
    assert latest_heartbeat([]) is None
    latest = latest_heartbeat(simulate_site(Site.SOUTH, 4, SESSION))
    assert latest.datetime == SESSION


def test_load_bursts_from_filesystem(tmp_path):
    storage = FilesystemStorage(tmp_path)
    for burst in simulate_site(Site.NORTH, 2, SESSION, max_data_size=100):
        storage.store(burst)
    bursts = load_bursts(Site.NORTH, tmp_path)
    assert len(heartbeats(bursts)) == 2
    assert load_bursts(Site.SOUTH, tmp_path) == []
