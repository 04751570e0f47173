"""Keyed writes and transient-failure handling for the game store.

Rows keyed by (subject, room, round) are written with ``INSERT .. ON CONFLICT``
so duplicate and racing client requests converge on a single row instead of
surfacing unique-key violations.
"""

import time
from functools import wraps

from flask import current_app
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from impostor import db
from impostor.errors import Conflict, Transient

_DIALECT_INSERTS = {
    'postgresql': postgresql.insert,
    'sqlite': sqlite.insert,
}


def _insert(model):
    dialect = db.engine.dialect.name
    try:
        return _DIALECT_INSERTS[dialect](model)
    except KeyError:
        raise RuntimeError(f"Keyed upserts are not supported on '{dialect}'") from None


def _execute(stmt, commit):
    """Run a keyed write. A unique violation outside ``key`` surfaces as ``Conflict``."""
    try:
        result = db.session.execute(stmt)
        if commit:
            db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise Conflict() from exc
    return result


def upsert(model, key, values, where=None, commit=True) -> int:
    """Insert ``key + values`` or update ``values`` on the row matching ``key``.

    ``where`` optionally receives the ``excluded`` row and returns a condition
    the existing row must satisfy to be updated. Returns the affected row
    count: 0 means the existing row was left untouched. With ``commit=False``
    the write joins the caller's transaction.
    """
    stmt = _insert(model).values(**key, **values)
    stmt = stmt.on_conflict_do_update(
        index_elements=list(key),
        set_=values,
        where=where(stmt.excluded) if where is not None else None,
    )
    return _execute(stmt, commit).rowcount


def insert_or_ignore(model, key, values) -> bool:
    """Insert the row unless ``key`` already exists. True if this call inserted it."""
    stmt = _insert(model).values(**key, **values).on_conflict_do_nothing(index_elements=list(key))
    return _execute(stmt, True).rowcount == 1


def _is_transient(exc):
    if isinstance(exc, OperationalError):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


def retry_transient(fn):
    """Retry ``fn`` on transient store failures, then raise ``Transient``.

    Only wrap operations that are safe to repeat (keyed writes and reads).
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        attempts = max(1, int(current_app.config.get('TRANSIENT_RETRY_ATTEMPTS', 3)))
        backoff = float(current_app.config.get('TRANSIENT_RETRY_BACKOFF_SEC', 0.2))
        for attempt in range(1, attempts + 1):
            try:
                return fn(*args, **kwargs)
            except DBAPIError as exc:
                if not _is_transient(exc):
                    raise
                db.session.rollback()
                current_app.logger.warning(
                    f"[store-retry] {fn.__name__} attempt={attempt}/{attempts} error={exc.orig!r}"
                )
                if attempt == attempts:
                    raise Transient() from exc
                if backoff:
                    time.sleep(backoff * attempt)
    return wrapper
