import json
import logging
import uuid
from datetime import datetime, timezone
from typing import List

from .DataAccess.Logger import log_event, setup_logger

logger = logging.getLogger(__name__)

RESERVATION_CONFIRMED = "reservation.confirmed"
RESERVATION_WAITLISTED = "reservation.waitlisted"
RESERVATION_PROMOTED = "reservation.promoted"
RESERVATION_ACTIVATED = "reservation.activated"
RESERVATION_COMPLETED = "reservation.completed"
RESERVATION_CANCELLED = "reservation.cancelled"
RESERVATION_NO_SHOW = "reservation.no_show"
RESERVATION_EXPIRED = "reservation.expired"
RESERVATION_DISMISSED = "reservation.dismissed"


def build_event(event_type: str, data: dict) -> dict:
    return {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "data": data,
    }


def to_json(event: dict) -> str:
    return json.dumps(event, separators=(",", ":"), ensure_ascii=False, default=str)


class EventSink:
    """Receives lifecycle events for the notification and audit collaborators."""

    def publish(self, event: dict) -> None:
        raise NotImplementedError


class LoggingEventSink(EventSink):

    def __init__(self, log_dir: str = None):
        self.logger = setup_logger(log_dir)

    def publish(self, event: dict) -> None:
        log_event(self.logger, event)


class InMemoryEventSink(EventSink):

    def __init__(self):
        self.events: List[dict] = []

    def publish(self, event: dict) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> List[dict]:
        return [e for e in self.events if e["event_type"] == event_type]


class EventPublisher:
    """Builds events and hands them to a sink. Delivery problems never reach the caller."""

    def __init__(self, sink: EventSink):
        self.sink = sink

    def emit(self, event_type: str, data: dict) -> dict:
        event = build_event(event_type, data)
        try:
            self.sink.publish(event)
        except Exception:
            logger.error("Event sink failed for %s", event_type, exc_info=True)
        return event
