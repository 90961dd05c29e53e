"""Shared utility functions used by services and blueprints.

get_or_raise:  fetch by primary key or raise NotFoundError
parse_date:    lenient date parsing (returns None on bad input)
parse_date_input: strict date parsing (raises ValidationError)
atomic:        one-transaction context manager; publishes queued
               real-time events after commit
"""
import logging
from contextlib import contextmanager
from datetime import date, datetime

from sqlalchemy.exc import IntegrityError

from phasetrack.core.exceptions import ConflictError, NotFoundError, ValidationError
from phasetrack.models import db
from phasetrack.services import realtime

logger = logging.getLogger(__name__)


def get_or_raise(model, pk, label=None):
    """Fetch a model instance by primary key or raise NotFoundError."""
    obj = db.session.get(model, pk) if pk is not None else None
    if obj is None:
        raise NotFoundError(resource=label or model.__name__, resource_id=pk)
    return obj


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD.MM.YYYY
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def parse_date_input(value, field="date"):
    """Parse a date, raising ValidationError on bad input. Empty → None."""
    if value in (None, ""):
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError(
            f"Invalid {field}. Use YYYY-MM-DD or DD.MM.YYYY.",
            {field: "invalid date"},
        )
    return parsed


def parse_number(value, field, *, allow_none=False):
    """Coerce a JSON value to float, raising ValidationError if it is not numeric."""
    if value is None or value == "":
        if allow_none:
            return None
        raise ValidationError(f"{field} is required", {field: "required"})
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", {field: "not a number"})
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be a number", {field: "not a number"}) from exc
    if number != number:  # NaN
        raise ValidationError(f"{field} must be a number", {field: "not a number"})
    return number


# ── Transaction helper ───────────────────────────────────────────────────────

@contextmanager
def atomic():
    """Run the enclosed block as one transaction.

    Commits on success and then publishes any real-time events queued on the
    session.  On any exception the session is rolled back, the queued events
    are dropped and the exception propagates.  IntegrityError is re-raised as
    ConflictError.

    Usage::

        with atomic():
            phase.status = "approved"
            realtime.queue_project_event(db.session, phase.project_id, ...)
    """
    session = db.session
    try:
        yield session
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        realtime.discard_pending(session)
        logger.warning("Integrity error on commit: %s", exc.orig)
        raise ConflictError(
            resource="record", field="constraint",
            message="Duplicate or constraint violation",
        ) from exc
    except Exception:
        session.rollback()
        realtime.discard_pending(session)
        raise
    realtime.flush_pending(session)
