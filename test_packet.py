"""
test_packet.py — Sutron packet parsing

Run:  pytest test_packet.py
"""

from types import SimpleNamespace

import pytest

from conftest import SESSION
from packet import (
    InvalidStationNameField,
    InvalidSubHeaderEncoding,
    InvalidTotalBytes,
    LeadingSubHeaderCharacters,
    MissingId,
    MissingStartByte,
    MissingTypeByte,
    Packet,
    PacketError,
    PacketType,
    SubHeader,
    TrailingSubHeaderCharacters,
    is_extended,
    parse_station_name,
)


# ── Type byte ─────────────────────────────────────────────────────────────────

def test_empty_payload_has_no_type_byte():
    with pytest.raises(MissingTypeByte):
        Packet.parse(b"")


def test_only_filler_has_no_type_byte():
    with pytest.raises(MissingTypeByte):
        Packet.parse(b"~~~")


def test_filler_bytes_are_skipped():
    packet = Packet.parse(b"~~0hello")
    assert packet.type_byte == ord("0")
    assert packet.data == b"hello"


@pytest.mark.parametrize("raw", [b"0", b"0hello", b"2alarm:data", b"}user", b"\xff\x00\x01"])
def test_plain_packet_loses_no_bytes(raw):
    packet = Packet.parse(raw)
    assert bytes([packet.type_byte]) + packet.data == raw


def test_self_timed_message():
    packet = Packet.parse(b"0self-timed message")
    assert packet.type is PacketType.SELF_TIMED
    assert packet.sub_header is None
    assert packet.station_name is None
    assert packet.data == b"self-timed message"


@pytest.mark.parametrize(
    "raw, expected",
    [
        (b"0", PacketType.SELF_TIMED),
        (b"2", PacketType.ENTERING_ALARM),
        (b"4", PacketType.EXITING_ALARM),
        (b"6", PacketType.COMMAND_RESPONSE),
        (b"8", PacketType.FORCED_TRANSMISSION),
        (b"}", PacketType.USER_DEFINED),
        (b"\xff", PacketType.BINARY_DATA),
        (b"A", PacketType.RESERVED),
    ],
)
def test_packet_types(raw, expected):
    assert Packet.parse(raw).type is expected


def test_reserved_code_keeps_the_type_byte():
    assert Packet.parse(b"A").reserved_code == ord("A")
    assert Packet.parse(b"~;").reserved_code == ord(";")


@pytest.mark.parametrize("raw", [b"0", b"1,1,0,0:", b"}", b"\xff"])
def test_known_types_have_no_reserved_code(raw):
    assert Packet.parse(raw).reserved_code is None


def test_is_extended():
    assert all(is_extended(ord(c)) for c in "13579")
    assert not any(is_extended(ord(c)) for c in "02468")
    assert not is_extended(ord("}"))
    assert not is_extended(0xFF)
    assert not is_extended(ord(";"))


# ── Extended sub-headers ──────────────────────────────────────────────────────

def test_start_packet():
    packet = Packet.parse(b"1,42,0,433:data")
    assert packet.sub_header == SubHeader(id=42, start_byte=0, total_bytes=433)
    assert packet.data == b"data"
    assert packet.is_start_packet()


def test_continuation_packet():
    packet = Packet.parse(b"1,42,340:rest")
    assert packet.sub_header == SubHeader(id=42, start_byte=340)
    assert packet.data == b"rest"
    assert not packet.is_start_packet()


def test_non_extended_packet_is_a_start_packet():
    assert Packet.parse(b"0abc").is_start_packet()


def test_data_may_contain_terminator_and_binary():
    packet = Packet.parse(b"3,7,0,4:a:\xff\x00")
    assert packet.type is PacketType.ENTERING_ALARM
    assert packet.data == b"a:\xff\x00"


def test_missing_terminator_takes_whole_rest():
    packet = Packet.parse(b"1,42,0,3")
    assert packet.sub_header == SubHeader(id=42, start_byte=0, total_bytes=3)
    assert packet.data == b""


def test_leading_sub_header_characters():
    with pytest.raises(LeadingSubHeaderCharacters) as exc:
        Packet.parse(b"12,:")
    assert exc.value.characters == "2"


def test_missing_id():
    with pytest.raises(MissingId):
        Packet.parse(b"1:")
    with pytest.raises(MissingId):
        Packet.parse(b"1,:")


def test_id_must_fit_in_a_byte():
    with pytest.raises(MissingId):
        Packet.parse(b"1,256,0:")
    assert Packet.parse(b"1,255,0,0:").sub_header.id == 255


def test_missing_start_byte():
    with pytest.raises(MissingStartByte):
        Packet.parse(b"1,42:")
    with pytest.raises(MissingStartByte):
        Packet.parse(b"1,42,x:")


def test_invalid_total_bytes():
    with pytest.raises(InvalidTotalBytes) as exc:
        Packet.parse(b"1,42,0,foo:")
    assert exc.value.field == "foo"


def test_invalid_sub_header_encoding():
    with pytest.raises(InvalidSubHeaderEncoding):
        Packet.parse(b"1,42,\xff:")


def test_errors_share_a_base_class():
    with pytest.raises(PacketError):
        Packet.parse(b"1,42:")


# ── Station names ─────────────────────────────────────────────────────────────

def test_station_name_without_total_bytes():
    packet = Packet.parse(b"1,42,16,N=ATLAS:")
    assert packet.station_name == "ATLAS"
    assert packet.sub_header == SubHeader(id=42, start_byte=16)


def test_station_name_with_total_bytes():
    packet = Packet.parse(b"1,42,16,22,N=ATLAS:")
    assert packet.station_name == "ATLAS"
    assert packet.sub_header == SubHeader(id=42, start_byte=16, total_bytes=22)


def test_invalid_station_name_field():
    with pytest.raises(InvalidStationNameField) as exc:
        Packet.parse(b"1,42,16,22,foobar:")
    assert exc.value.field == "foobar"


def test_station_name_cannot_follow_station_name():
    with pytest.raises(InvalidStationNameField):
        Packet.parse(b"1,42,16,N=ATLAS,N=OTHER:")


def test_trailing_sub_header_characters():
    with pytest.raises(TrailingSubHeaderCharacters) as exc:
        Packet.parse(b"1,42,16,22,N=ATLAS,foobar:")
    assert exc.value.characters == ",foobar"


def test_non_extended_station_name():
    packet = Packet.parse(b"0,N=ATLAS:beers")
    assert packet.station_name == "ATLAS"
    assert packet.sub_header is None
    assert packet.data == b"beers"


def test_non_extended_without_station_name_keeps_data():
    packet = Packet.parse(b"0,ATLAS:")
    assert packet.station_name is None
    assert packet.data == b",ATLAS:"


def test_parse_station_name():
    assert parse_station_name("N=ATLAS") == "ATLAS"
    assert parse_station_name("ATLAS") is None


# ── Bursts ────────────────────────────────────────────────────────────────────

def test_from_burst_keeps_session_time(make_burst):
    burst = make_burst(b"1,42,0,2:ab", seconds=5)
    packet = Packet.from_burst(burst)
    assert packet.datetime == burst.time_of_session
    assert packet.datetime > SESSION
    assert packet.burst is burst
    assert packet.data == b"ab"


def test_parse_has_no_datetime():
    assert Packet.parse(b"0x").datetime is None


def test_from_burst_accepts_session_time_attribute():
    burst = SimpleNamespace(payload=b"0x", session_time=SESSION)
    assert Packet.from_burst(burst).datetime == SESSION


def test_from_burst_without_any_session_time():
    assert Packet.from_burst(SimpleNamespace(payload=b"0x")).datetime is None


def test_from_path(tmp_path, make_burst):
    path = tmp_path / "packet.sbd"
    path.write_bytes(make_burst(b"0hello").to_bytes())
    packet = Packet.from_path(path)
    assert packet.data == b"hello"
    assert packet.datetime == SESSION
