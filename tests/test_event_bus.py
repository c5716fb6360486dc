from vibe.event_bus import EventBus, VibeEvent


def test_event_bus_pub_sub():
    test_bus = EventBus()
    received_events: list[VibeEvent] = []

    def dummy_subscriber(event: VibeEvent):
        received_events.append(event)

    test_bus.subscribe(dummy_subscriber)

    test_bus.emit(
        event_type="TEST_EVENT",
        source="test_agent",
        payload={"key": "value"},
        session_id="s1",
    )

    assert len(received_events) == 1

    event = received_events[0]
    assert event.event_type == "TEST_EVENT"
    assert event.source == "test_agent"
    assert event.session_id == "s1"
    assert event.payload == {"key": "value"}

    # Auto-generated fields
    assert isinstance(event.event_id, str)
    assert event.timestamp is not None


def test_failing_subscriber_does_not_break_emit():
    bus = EventBus()
    seen = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(broken)
    bus.subscribe(seen.append)

    event = bus.emit("ping", source="test")
    assert seen == [event]


def test_unsubscribe():
    bus = EventBus()
    seen = []
    bus.subscribe(seen.append)
    bus.unsubscribe(seen.append)
    bus.emit("ping", source="test")
    assert seen == []
