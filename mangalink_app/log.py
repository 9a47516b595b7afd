"""
Logging for the link engine.

Three outputs:
  - mangalink_app logger: rotating file + stdout; every module logger
    (mangalink_app.search.cache, ...) propagates here
  - msg_queue: short human-readable lines for a UI log panel, drained by
    GET /api/logs
  - events logger: one JSON object per line (requests, exceptions)

Environment:
    MANGALINK_LOG_DIR   directory for mangalink.log and events.log
    LOG_LEVEL           INFO by default
    DEBUG_LOGGING       false disables the events file
"""

import os
import sys
import time
import queue
import json
import logging
from logging.handlers import RotatingFileHandler
from typing import List

from flask import g, has_request_context

# UI feed; oldest lines are dropped when nobody drains it
MSG_QUEUE_SIZE = 500
msg_queue: queue.Queue = queue.Queue(maxsize=MSG_QUEUE_SIZE)

logger = logging.getLogger("mangalink_app")
logger.setLevel(getattr(logging, os.environ.get('LOG_LEVEL', 'INFO').upper(), logging.INFO))

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
LOG_DIR = os.environ.get('MANGALINK_LOG_DIR') or os.path.join(BASE_DIR, 'instance')
os.makedirs(LOG_DIR, exist_ok=True)
LOG_FILE = os.path.join(LOG_DIR, 'mangalink.log')

if not any(getattr(h, "baseFilename", None) == LOG_FILE for h in logger.handlers):
    file_handler = RotatingFileHandler(LOG_FILE, maxBytes=10*1024*1024, backupCount=5)
    file_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
    logger.addHandler(file_handler)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(logging.Formatter('%(levelname)s %(name)s: %(message)s'))
    logger.addHandler(stream_handler)

# Structured events (local-only file)
DEBUG_LOGGING = os.environ.get('DEBUG_LOGGING', 'true').lower() in ('1', 'true', 'yes', 'on')
EVENTS_LOG_FILE = os.path.join(LOG_DIR, 'events.log')

events_logger = logging.getLogger("mangalink_app.events")
events_logger.setLevel(logging.INFO)
events_logger.propagate = False
if not any(getattr(h, "baseFilename", None) == EVENTS_LOG_FILE for h in events_logger.handlers):
    events_handler = RotatingFileHandler(EVENTS_LOG_FILE, maxBytes=10 * 1024 * 1024, backupCount=10)
    events_handler.setFormatter(logging.Formatter('%(message)s'))
    events_logger.addHandler(events_handler)
if not DEBUG_LOGGING:
    events_logger.disabled = True


def _request_prefix() -> str:
    """Request id prefix inside a Flask request, empty elsewhere."""
    if has_request_context() and getattr(g, "request_id", None):
        return f"[{g.request_id}] "
    return ""


def _enqueue(line: str) -> None:
    while True:
        try:
            msg_queue.put_nowait(line)
            return
        except queue.Full:
            try:
                msg_queue.get_nowait()
            except queue.Empty:
                pass


def log(msg: str) -> None:
    """Log a message to console, file, and the UI feed."""
    full = f"{_request_prefix()}{msg}"
    logger.info(full)
    _enqueue(f"{time.strftime('[%H:%M:%S]')} {full}")


def drain_messages(limit: int = MSG_QUEUE_SIZE) -> List[str]:
    """Pop up to `limit` pending UI feed lines, oldest first."""
    messages = []
    while len(messages) < limit:
        try:
            messages.append(msg_queue.get_nowait())
        except queue.Empty:
            break
    return messages


def debug_log_event(event: dict) -> None:
    """Write one structured event as a JSON line."""
    if events_logger.disabled:
        return
    try:
        events_logger.info(json.dumps(event, ensure_ascii=True, separators=(',', ':'), default=str))
    except (TypeError, ValueError) as exc:
        logger.warning(f"Event log failure: {exc}")
