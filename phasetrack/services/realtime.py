"""
Real-time event publisher.

Connected clients subscribe to two kinds of channel:

  - ``project_<id>`` — everyone watching a project board
  - ``user_<id>``    — a single user's personal feed

Events are JSON documents ``{"event": name, "data": payload, "ts": ...}``
published over Redis pub/sub (via REDIS_URL).  Without Redis, an in-memory
recorder keeps the last events so development and tests can inspect them.

Publishing is best effort.  Services queue events while their transaction is
open; ``phasetrack.utils.helpers.atomic`` publishes the queue after a
successful commit and drops it on rollback, so subscribers never see state
that was not persisted.  A failed publish is logged and never re-raised.
"""

import json
import logging
import time
from collections import deque

import redis

logger = logging.getLogger(__name__)

# ── Event names ──────────────────────────────────────────────────────────

PHASE_UPDATED = "phase_updated"
PHASES_REORDERED = "phases_reordered"
EARLY_ACCESS_GRANTED = "early_access_granted"
EARLY_ACCESS_REVOKED = "early_access_revoked"
EARLY_ACCESS_PHASE_STARTED = "early_access_phase_started"
WORK_LOG_CREATED = "work_log_created"
WORK_LOG_UPDATED = "work_log_updated"
WORK_LOG_DELETED = "work_log_deleted"
PROGRESS_ADJUSTED = "progress_adjusted"
PROJECT_UPDATED = "project_updated"

_PENDING_KEY = "phasetrack.pending_events"


# ── In-memory fallback ───────────────────────────────────────────────────

class _MemoryBackend:
    """Records published messages for dev/testing."""

    def __init__(self, maxlen: int = 1000):
        self.messages: deque = deque(maxlen=maxlen)

    def publish(self, channel, message):
        self.messages.append((channel, message))
        return 1

    def ping(self):
        return True


_backend = None


def init_realtime(app):
    """Pick the publish backend for this app from REDIS_URL."""
    global _backend
    redis_url = app.config.get("REDIS_URL") or "memory://"
    if redis_url.startswith("memory://"):
        _backend = _MemoryBackend()
        return _backend
    client = redis.from_url(redis_url, decode_responses=True)
    try:
        client.ping()
    except redis.RedisError as exc:
        logger.warning("Redis unavailable (%s), real-time events kept in memory", exc)
        _backend = _MemoryBackend()
        return _backend
    _backend = client
    logger.info("Realtime: publishing via Redis at %s", redis_url.split("@")[-1])
    return _backend


def _get_backend():
    global _backend
    if _backend is None:
        _backend = _MemoryBackend()
    return _backend


def backend_status() -> dict:
    """Report which backend is active and whether it answers a ping."""
    backend = _get_backend()
    if isinstance(backend, _MemoryBackend):
        return {"status": "ok", "backend": "memory"}
    try:
        backend.ping()
    except redis.RedisError as exc:
        return {"status": "error", "backend": "redis", "detail": str(exc)}
    return {"status": "ok", "backend": "redis"}


# ── Channel names ────────────────────────────────────────────────────────

def project_channel(project_id) -> str:
    return f"project_{project_id}"


def user_channel(user_id) -> str:
    return f"user_{user_id}"


# ── Immediate publish ────────────────────────────────────────────────────

def _publish(channel: str, event: str, payload: dict | None) -> bool:
    message = json.dumps(
        {"event": event, "data": payload or {}, "ts": time.time()},
        default=str,
    )
    try:
        _get_backend().publish(channel, message)
    except redis.RedisError:
        logger.exception("Failed to publish %s to %s", event, channel)
        return False
    logger.debug("Published %s to %s", event, channel)
    return True


def publish_to_project(project_id, event: str, payload: dict | None = None) -> bool:
    """Broadcast ``event`` to everyone watching a project."""
    return _publish(project_channel(project_id), event, payload)


def publish_to_user(user_id, event: str, payload: dict | None = None) -> bool:
    """Send ``event`` to a single user's channel."""
    return _publish(user_channel(user_id), event, payload)


# ── Transaction-bound queue ──────────────────────────────────────────────

def queue_project_event(session, project_id, event: str, payload: dict | None = None):
    """Publish to the project channel once ``session`` commits."""
    session.info.setdefault(_PENDING_KEY, []).append((project_channel(project_id), event, payload))


def queue_user_event(session, user_id, event: str, payload: dict | None = None):
    """Publish to a user channel once ``session`` commits."""
    session.info.setdefault(_PENDING_KEY, []).append((user_channel(user_id), event, payload))


def flush_pending(session) -> int:
    """Publish and clear the events queued on ``session``. Returns the number sent."""
    pending = session.info.pop(_PENDING_KEY, [])
    sent = 0
    for channel, event, payload in pending:
        if _publish(channel, event, payload):
            sent += 1
    return sent


def discard_pending(session) -> None:
    dropped = session.info.pop(_PENDING_KEY, [])
    if dropped:
        logger.debug("Dropped %d real-time event(s) after rollback", len(dropped))


# ── Introspection (memory backend only) ──────────────────────────────────

def recorded_events(channel: str | None = None) -> list[dict]:
    """Return decoded events recorded by the memory backend, oldest first."""
    backend = _get_backend()
    if not isinstance(backend, _MemoryBackend):
        return []
    out = []
    for ch, raw in backend.messages:
        if channel is not None and ch != channel:
            continue
        msg = json.loads(raw)
        msg["channel"] = ch
        out.append(msg)
    return out


def clear_recorded_events() -> None:
    backend = _get_backend()
    if isinstance(backend, _MemoryBackend):
        backend.messages.clear()
