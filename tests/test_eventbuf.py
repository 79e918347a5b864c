from datetime import datetime

from muxagent.domain import Event, EventType
from muxagent.relayws.eventbuf import EventBuffer


def make_event(event_type):
    return Event(type=event_type, at=datetime.now())


def test_push_assigns_sequence():
    buf = EventBuffer(10)
    e1 = buf.push(make_event(EventType.MESSAGE_DELTA))
    e2 = buf.push(make_event(EventType.MESSAGE_FINAL))
    e3 = buf.push(make_event(EventType.TOOL_STARTED))
    assert (e1.seq, e2.seq, e3.seq) == (1, 2, 3)
    assert buf.seq() == 3


def test_push_does_not_modify_argument():
    buf = EventBuffer(10)
    original = make_event(EventType.MESSAGE_DELTA)
    stored = buf.push(original)
    assert original.seq == 0
    assert stored.seq == 1


def test_since_returns_events_after_seq():
    buf = EventBuffer(10)
    buf.push(make_event(EventType.MESSAGE_DELTA))
    buf.push(make_event(EventType.MESSAGE_FINAL))
    buf.push(make_event(EventType.TOOL_STARTED))
    events, complete = buf.since(1)
    assert complete
    assert [e.seq for e in events] == [2, 3]


def test_since_zero_returns_all():
    buf = EventBuffer(10)
    buf.push(make_event(EventType.MESSAGE_DELTA))
    buf.push(make_event(EventType.MESSAGE_FINAL))
    events, complete = buf.since(0)
    assert complete
    assert len(events) == 2


def test_since_caught_up():
    buf = EventBuffer(10)
    buf.push(make_event(EventType.MESSAGE_DELTA))
    buf.push(make_event(EventType.MESSAGE_FINAL))
    events, complete = buf.since(2)
    assert complete
    assert events == []


def test_since_empty():
    events, complete = EventBuffer(10).since(0)
    assert complete
    assert events == []


def test_ring_overwrite():
    buf = EventBuffer(3)
    buf.push(make_event(EventType.MESSAGE_DELTA))
    buf.push(make_event(EventType.MESSAGE_FINAL))
    buf.push(make_event(EventType.TOOL_STARTED))
    buf.push(make_event(EventType.TOOL_COMPLETED))
    events, complete = buf.since(0)
    assert not complete
    assert len(events) == 3
    assert events[0].seq == 2
    assert events[2].seq == 4


def test_ring_overwrite_with_valid_seq():
    buf = EventBuffer(3)
    buf.push(make_event(EventType.MESSAGE_DELTA))
    buf.push(make_event(EventType.MESSAGE_FINAL))
    buf.push(make_event(EventType.TOOL_STARTED))
    buf.push(make_event(EventType.TOOL_COMPLETED))
    events, complete = buf.since(2)
    assert complete
    assert [e.seq for e in events] == [3, 4]
    assert events[1].type == EventType.TOOL_COMPLETED


def test_non_positive_size_uses_default():
    buf = EventBuffer(0)
    for _ in range(1025):
        buf.push(make_event(EventType.REASONING))
    events, complete = buf.since(0)
    assert buf.size == 1024
    assert not complete
    assert len(events) == 1024
    assert events[0].seq == 2