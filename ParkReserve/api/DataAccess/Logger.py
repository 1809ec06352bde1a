from logging.handlers import TimedRotatingFileHandler
import os
import logging
import json
from datetime import datetime, timezone

EVENT_LOGGER_NAME = "parkreserve.events"


def setup_logger(log_dir: str = None):
    logger = logging.getLogger(EVENT_LOGGER_NAME)
    logger.setLevel(logging.INFO)

    if logger.handlers:
        return logger

    if log_dir is None:
        # Zonder log map alleen doorgeven aan de root logger
        return logger

    os.makedirs(log_dir, exist_ok=True)
    handler = TimedRotatingFileHandler(
        os.path.join(log_dir, "events.log"),
        when="midnight",
        utc=True
    )
    handler.namer = lambda name: name.replace("events.log.", "events-") + ".log"

    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    logger.propagate = False

    return logger


def log_event(logger: logging.Logger, event: dict):
    logger.info(
        event.get("event_type", "event"),
        extra={
            "event_id": event.get("event_id"),
            "event_type": event.get("event_type"),
            "data": event.get("data", {}),
            "occurred_at": event.get("occurred_at"),
        }
    )


class JsonFormatter(logging.Formatter):
    def format(self, record):
        log_entry = {
            "event_id": getattr(record, "event_id", None),
            "event_type": getattr(record, "event_type", record.getMessage()),
            "data": getattr(record, "data", {}),
            "occurred_at": getattr(record, "occurred_at", None),
            "level": record.levelname,
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")
        }
        return json.dumps(log_entry, default=str)
