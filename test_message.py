"""
test_message.py — Reassembly of Sutron packets into messages

Run:  pytest test_message.py
"""

from types import SimpleNamespace

import pytest

from conftest import SESSION
from message import (
    DataLengthMismatch,
    Message,
    NoPackets,
    NoTotalBytes,
    Reassembler,
    Reassembly,
    reassemble,
)
from packet import MissingTypeByte, Packet


def p(data: bytes) -> Packet:
    return Packet.parse(data)


# ── Reassembler ───────────────────────────────────────────────────────────────

def test_one_message():
    message = Reassembler().add(p(b"0self-timed message"))
    assert message.data == b"self-timed message"


def test_one_extended_packet():
    message = Reassembler().add(p(b"1,42,0,2:ab"))
    assert message.data == b"ab"


def test_one_message_two_packets():
    reassembler = Reassembler()
    assert reassembler.add(p(b"1,42,0,2:a")) is None
    message = reassembler.add(p(b"1,42,1:b"))
    assert message.data == b"ab"
    assert len(message.packets) == 2
    assert reassembler.pending(42) == []


def test_two_messages_interleaved():
    reassembler = Reassembler()
    assert reassembler.add(p(b"1,42,0,2:a")) is None
    assert reassembler.add(p(b"1,43,0,2:c")) is None
    assert reassembler.add(p(b"1,42,1:b")).data == b"ab"
    assert reassembler.add(p(b"1,43,1:d")).data == b"cd"


def test_one_message_with_reset():
    reassembler = Reassembler()
    a = p(b"1,42,0,2:a")
    assert reassembler.add(a) is None
    assert reassembler.add(p(b"1,42,0,2:c")) is None
    assert reassembler.add(p(b"1,42,1:b")).data == b"cb"
    assert reassembler.recycle_bin == [a]


def test_one_message_too_long():
    reassembler = Reassembler()
    b = p(b"1,42,1:bc")
    assert reassembler.add(p(b"1,42,0,2:a")) is None
    assert reassembler.add(b) is None
    assert len(reassembler.pending(42)) == 2
    assert reassembler.add(p(b"1,42,0,3:c")) is None
    assert reassembler.add(b).data == b"cbc"
    assert [x.data for x in reassembler.recycle_bin] == [b"a", b"bc"]


def test_orphan_continuation_waits():
    reassembler = Reassembler()
    assert reassembler.add(p(b"1,42,1:b")) is None
    assert reassembler.pending(42)[0].data == b"b"


def test_non_extended_packet_does_not_touch_entries():
    reassembler = Reassembler()
    assert reassembler.add(p(b"1,42,0,2:a")) is None
    assert reassembler.add(p(b"0hello")).data == b"hello"
    assert reassembler.add(p(b"1,42,1:b")).data == b"ab"


# ── Message.build ─────────────────────────────────────────────────────────────

def test_build_no_packets():
    with pytest.raises(NoPackets):
        Message.build([])


def test_build_first_packet_is_continuation():
    with pytest.raises(NoTotalBytes):
        Message.build([p(b"1,42,1:b")])


def test_build_length_mismatch():
    with pytest.raises(DataLengthMismatch) as exc:
        Message.build([p(b"1,42,0,3:ab")])
    assert (exc.value.declared, exc.value.actual) == (3, 2)


def test_build_non_extended_ignores_the_rest():
    message = Message.build([p(b"0one"), p(b"0two")])
    assert message.data == b"one"


def test_message_from_bytes():
    message = Message.from_bytes(bytes([0, 42]))
    assert message.data == bytes([0, 42])
    assert message.datetime is None
    assert message.packets == []


# ── Bulk reassembly ───────────────────────────────────────────────────────────

def test_reassemble_sorts_bursts_by_session(make_burst):
    bursts = [
        make_burst(b"1,42,1:b", seconds=10),
        make_burst(b"1,42,0,2:a", seconds=5),
        make_burst(b"0early", seconds=-3600),
    ]
    messages = reassemble(bursts)
    assert [m.data for m in messages] == [b"early", b"ab"]
    assert messages[1].datetime == bursts[1].time_of_session


def test_reassemble_bursts_without_session_time_come_first(make_burst):
    bare = SimpleNamespace(payload=b"0bare")
    messages = reassemble([make_burst(b"0timed"), bare])
    assert [m.data for m in messages] == [b"bare", b"timed"]
    assert messages[0].datetime is None
    assert messages[1].datetime == SESSION


def test_reassemble_sorts_bursts_by_session_time_attribute():
    later = SimpleNamespace(payload=b"0later", session_time=SESSION.replace(hour=13))
    earlier = SimpleNamespace(payload=b"0earlier", session_time=SESSION)
    messages = reassemble([later, earlier])
    assert [m.data for m in messages] == [b"earlier", b"later"]
    assert messages[0].datetime == SESSION


def test_reassembly_exposes_recycle_bin(make_burst):
    result = Reassembly([
        make_burst(b"1,42,0,2:a", seconds=0),
        make_burst(b"1,42,0,2:c", seconds=1),
        make_burst(b"1,42,1:b", seconds=2),
    ])
    assert [m.data for m in result.messages] == [b"cb"]
    assert [x.data for x in result.recycle_bin] == [b"a"]


def test_reassemble_propagates_packet_errors(make_burst):
    with pytest.raises(MissingTypeByte):
        reassemble([make_burst(b"")])
