"""
Change history timeline derived from detection records.
"""

from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Iterable

from pydantic import BaseModel

from de_mainframe.schemas.detection import DetectionRecord, as_utc


MODIFIED_THRESHOLD = timedelta(minutes=1)
ANALYST_ROLE_PRIORITY = ("Technical Owner", "Business Owner", "Requestor")
UNKNOWN_ANALYST = "Unknown"


class ChangeType(str, Enum):
    CREATED = "created"
    TUNED = "tuned"
    RETROFITTED = "retrofitted"
    MODIFIED = "modified"


class HistoryEntry(BaseModel):
    """One event on the change timeline."""

    detection_name: str
    type: ChangeType
    date: datetime
    analyst: str
    severity: str = ""


def change_type_from_action(action: str | None) -> ChangeType:
    """Map free-text revalidation actions onto a change type."""
    text = (action or "").lower()
    if "tune" in text:
        return ChangeType.TUNED
    if "retrofit" in text:
        return ChangeType.RETROFITTED
    if "creat" in text:
        return ChangeType.CREATED
    return ChangeType.MODIFIED


def analyst_from_roles(record: DetectionRecord) -> str:
    for wanted in ANALYST_ROLE_PRIORITY:
        for role in record.roles:
            if role.role == wanted and role.name:
                return role.name
    return UNKNOWN_ANALYST


def build_history(corpus: Iterable[DetectionRecord] | None) -> list[HistoryEntry]:
    """
    Build the change timeline of a corpus, newest first.

    Each record contributes a ``created`` entry for its first-created time,
    one entry per revalidation history item, and a ``modified`` entry when it
    was changed later without a matching revalidation entry.
    """
    entries: list[HistoryEntry] = []

    for record in corpus or []:
        name = record.name or "Unnamed"

        def add(change_type: ChangeType, when: datetime, analyst: str) -> None:
            entries.append(
                HistoryEntry(
                    detection_name=name,
                    type=change_type,
                    date=when,
                    analyst=analyst,
                    severity=record.severity,
                )
            )

        if record.first_created:
            add(ChangeType.CREATED, record.first_created, analyst_from_roles(record))

        for item in record.revalidation_history:
            if item.date is None:
                continue
            add(change_type_from_action(item.action), item.date, item.user or UNKNOWN_ANALYST)

        if record.first_created and record.last_modified:
            if abs(record.last_modified - record.first_created) > MODIFIED_THRESHOLD:
                covered = any(
                    item.date is not None
                    and abs(item.date - record.last_modified) < MODIFIED_THRESHOLD
                    for item in record.revalidation_history
                )
                if not covered:
                    add(ChangeType.MODIFIED, record.last_modified, analyst_from_roles(record))

    entries.sort(key=lambda entry: entry.date, reverse=True)
    return entries


def history_type_counts(entries: Iterable[HistoryEntry]) -> dict[ChangeType, int]:
    counts = {change_type: 0 for change_type in ChangeType}
    for entry in entries:
        counts[entry.type] += 1
    return counts


def _bound(value: date | datetime | None, end_of_day: bool) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    return datetime.combine(value, time.max if end_of_day else time.min, tzinfo=timezone.utc)


def filter_history(
    entries: Iterable[HistoryEntry],
    date_from: date | datetime | None = None,
    date_to: date | datetime | None = None,
    change_types: Iterable[ChangeType | str] | None = None,
    name: str | None = None,
) -> list[HistoryEntry]:
    """
    Filter timeline entries.

    Args:
        entries: Timeline entries
        date_from: Earliest date; a plain date means the start of that day
        date_to: Latest date; a plain date means the end of that day
        change_types: Types to keep, all types when None
        name: Case-insensitive substring of the detection name

    Returns:
        Matching entries in their original order
    """
    start = _bound(date_from, end_of_day=False)
    end = _bound(date_to, end_of_day=True)
    types = {ChangeType(t) for t in change_types} if change_types is not None else None
    needle = (name or "").lower()

    return [
        entry
        for entry in entries
        if (types is None or entry.type in types)
        and needle in entry.detection_name.lower()
        and (start is None or entry.date >= start)
        and (end is None or entry.date <= end)
    ]
