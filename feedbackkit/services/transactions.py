"""
Unit-of-work handling for service functions.

A function decorated with ``@transactional`` commits the Flask-SQLAlchemy
session when it returns and rolls it back when it raises. Nested calls join the
outermost unit so a service may call another service without committing half
of its work.
"""
import contextvars
from functools import wraps

from feedbackkit.extensions import db

_depth = contextvars.ContextVar("feedbackkit_tx_depth", default=0)


def transactional(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        depth = _depth.get()
        token = _depth.set(depth + 1)
        try:
            result = func(*args, **kwargs)
            if depth == 0:
                db.session.commit()
            return result
        except Exception:
            if depth == 0:
                db.session.rollback()
            raise
        finally:
            _depth.reset(token)
    return wrapper


def lock_row(query, skip_locked: bool = False):
    """SELECT ... FOR UPDATE; dialects without row locks (SQLite) ignore it."""
    return query.with_for_update(skip_locked=skip_locked)
