"""
Revalidation state transitions.

Marking a detection as tuned or retrofitted resets its TTL clock and records
the action in its revalidation history. These are the only engine operations
that mutate the record they are handed.
"""

from datetime import datetime
from typing import Iterable, Sequence

from de_mainframe.core.logging import get_logger
from de_mainframe.engine.lifecycle import utcnow
from de_mainframe.schemas.detection import (
    DetectionRecord,
    RevalidationAction,
    RevalidationEntry,
    as_utc,
)


logger = get_logger(__name__)

DEFAULT_USER = "Current User"


def mark(
    record: DetectionRecord,
    action: RevalidationAction | str,
    now: datetime | None = None,
    user: str = DEFAULT_USER,
) -> DetectionRecord:
    """
    Apply a revalidation action to a record in place.

    Args:
        record: Detection to update
        action: Tuned or retrofitted
        now: Time of the action, defaults to the current UTC time
        user: User recorded in the history entry

    Returns:
        The same record, for chaining
    """
    action = RevalidationAction(action)
    now = as_utc(now) or utcnow()

    record.last_modified = now
    record.revalidation_history.append(
        RevalidationEntry(date=now, action=action.value, user=user)
    )

    logger.info("detection_marked", detection=record.name, action=action.value, user=user)
    return record


def mark_as_tuned(
    record: DetectionRecord, now: datetime | None = None, user: str = DEFAULT_USER
) -> DetectionRecord:
    return mark(record, RevalidationAction.TUNED, now, user)


def mark_as_retrofitted(
    record: DetectionRecord, now: datetime | None = None, user: str = DEFAULT_USER
) -> DetectionRecord:
    return mark(record, RevalidationAction.RETROFITTED, now, user)


def batch_mark(
    corpus: Sequence[DetectionRecord],
    names: Iterable[str],
    action: RevalidationAction | str,
    now: datetime | None = None,
    user: str = DEFAULT_USER,
) -> list[DetectionRecord]:
    """
    Mark every named detection, one after another.

    Names not present in the corpus are skipped. There is no rollback: if a
    later record fails, earlier records stay marked.

    Returns:
        The records that were marked, in ``names`` order
    """
    by_name = {}
    for record in corpus or []:
        by_name.setdefault(record.name, record)

    marked = []
    skipped = []
    for name in names:
        record = by_name.get(name)
        if record is None:
            logger.warning("batch_mark_unknown_detection", detection=name)
            skipped.append(name)
            continue
        marked.append(mark(record, action, now, user))

    logger.info(
        "batch_mark_complete",
        action=RevalidationAction(action).value,
        marked=len(marked),
        skipped=len(skipped),
    )
    return marked
