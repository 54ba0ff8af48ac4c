# Overview: Transaction boundary helpers shared by the order, voucher and payment services.

from __future__ import annotations

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrentUpdateError, ConflictError, StoreUnavailableError
from ..extensions import db
from ..signals import discard_pending_signals, send_pending_signals


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_in_transaction(func, *, commit: bool = True):
    """
    Run func() as one unit of work.

    Every write func() makes is committed together, or rolled back together
    when anything raises. Storage failures surface as StoreUnavailableError,
    optimistic version conflicts as ConcurrentUpdateError and constraint
    violations as ConflictError; domain errors are re-raised unchanged.
    Signals queued by func() are sent only after the commit. There is no
    retry here: callers decide.

    With commit=False the caller owns the transaction, so only a flush is
    issued and nothing is rolled back here.
    """
    if not commit:
        try:
            result = func()
            db.session.flush()
            return result
        except StaleDataError as exc:
            raise ConcurrentUpdateError(
                "Record was updated elsewhere, please refresh",
            ) from exc
        except IntegrityError as exc:
            raise ConflictError("Record conflicts with existing data") from exc
        except SQLAlchemyError as exc:
            raise StoreUnavailableError("Storage is unavailable") from exc

    try:
        result = func()
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        discard_pending_signals()
        raise ConcurrentUpdateError(
            "Record was updated elsewhere, please refresh",
        ) from exc
    except IntegrityError as exc:
        db.session.rollback()
        discard_pending_signals()
        raise ConflictError("Record conflicts with existing data") from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        discard_pending_signals()
        raise StoreUnavailableError("Storage is unavailable") from exc
    except Exception:
        db.session.rollback()
        discard_pending_signals()
        raise

    send_pending_signals()
    return result


def guarded_update(query, values: dict) -> bool:
    """
    Conditional UPDATE: apply values to the rows matched by query.

    Returns True when at least one row matched, i.e. the guard held at write time.
    """
    return query.update(values, synchronize_session=False) > 0
