import json
import logging

from ParkReserve.api.DataAccess.Logger import JsonFormatter, log_event
from ParkReserve.api.events import (
    EventPublisher,
    EventSink,
    InMemoryEventSink,
    build_event,
    to_json
)


def test_build_event_shape():
    event = build_event("reservation.confirmed", {"reservation_id": 7})

    assert event["event_type"] == "reservation.confirmed"
    assert event["data"] == {"reservation_id": 7}
    assert event["event_id"]
    assert event["occurred_at"]
    assert json.loads(to_json(event))["data"]["reservation_id"] == 7


def test_publisher_hands_events_to_sink():
    sink = InMemoryEventSink()
    publisher = EventPublisher(sink)

    publisher.emit("reservation.cancelled", {"reservation_id": 1})
    publisher.emit("reservation.confirmed", {"reservation_id": 2})

    assert [e["event_type"] for e in sink.events] == ["reservation.cancelled", "reservation.confirmed"]
    assert len(sink.of_type("reservation.confirmed")) == 1


def test_sink_failures_are_logged_not_raised(caplog):
    class BrokenSink(EventSink):
        def publish(self, event):
            raise ConnectionError("queue down")

    publisher = EventPublisher(BrokenSink())
    with caplog.at_level(logging.ERROR):
        event = publisher.emit("reservation.confirmed", {"reservation_id": 1})

    assert event["event_type"] == "reservation.confirmed"
    assert "Event sink failed" in caplog.text


def test_json_formatter_writes_event_fields():
    records = []

    class Capture(logging.Handler):
        def emit(self, record):
            records.append(self.format(record))

    logger = logging.getLogger("test.events.json")
    handler = Capture()
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    try:
        log_event(logger, build_event("reservation.no_show", {"license_plate": "AB*******"}))
    finally:
        logger.removeHandler(handler)

    entry = json.loads(records[0])
    assert entry["event_type"] == "reservation.no_show"
    assert entry["data"]["license_plate"] == "AB*******"
    assert entry["level"] == "INFO"
