"""
Commit helpers for service-layer writers.

Services own their transactions. These helpers turn the two ways a
write can lose a race into ConflictError after rolling back:

  StaleDataError  → the row's ``version`` moved since it was read
  IntegrityError  → a unique constraint rejected a duplicate

Either can surface at any flush (an audit row, an autoflushing lazy
load) and not only at commit, so writers wrap the whole mutation.

Usage:
    check_expected_version(item, expected_version, "ChecklistItem")
    with write_guard("ChecklistItem", item.id):
        ... mutate, write_audit(...) ...
        db.session.commit()

``commit_or_conflict`` is the one-line form for writers whose mutation
never flushes before commit.
"""

import logging
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from practicehub.core.exceptions import ConflictError
from practicehub.models import db
from practicehub.utils.errors import E

logger = logging.getLogger(__name__)


def check_expected_version(obj, expected_version, resource: str) -> None:
    """Reject a write whose caller read an older version of the row."""
    if expected_version is None:
        return
    if int(expected_version) != obj.version:
        raise ConflictError(
            f"{resource} {obj.id} has changed (expected version {expected_version}, "
            f"current {obj.version})",
            code=E.STALE_VERSION,
            details={"expected_version": int(expected_version), "current_version": obj.version},
        )


def stale_conflict(resource: str, resource_id) -> ConflictError:
    return ConflictError(
        f"{resource} {resource_id} was modified concurrently; re-read and retry",
        code=E.STALE_VERSION,
    )


@contextmanager
def write_guard(resource: str, resource_id, *, duplicate_code: str = E.CONFLICT_DUPLICATE):
    """Roll back and raise ConflictError if any flush or commit in the block loses a race."""
    try:
        yield
    except StaleDataError:
        db.session.rollback()
        logger.info("Stale write on %s %s rolled back", resource, resource_id)
        raise stale_conflict(resource, resource_id) from None
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on %s %s: %s", resource, resource_id, exc.orig)
        raise ConflictError(
            f"{resource} conflicts with an existing record", code=duplicate_code,
        ) from exc


def commit_or_conflict(resource: str, resource_id, *, duplicate_code: str = E.CONFLICT_DUPLICATE) -> None:
    """Commit the session, mapping lost races to ConflictError."""
    with write_guard(resource, resource_id, duplicate_code=duplicate_code):
        db.session.commit()
