"""
Lifecycle classification of detections.

A detection must be revalidated every ``ttl_days``. Its status is derived
from the time left before that deadline and from the completeness of its
mandatory metadata, in strict priority order:

1. expired -> needs-retrofit
2. within the tune window -> needs-tune
3. a mandatory field is empty -> incomplete
4. otherwise -> valid

Nothing is cached; ``now`` is an input, so the same record and ``now`` always
give the same result.
"""

import math
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterable

from pydantic import BaseModel, Field

from de_mainframe.core.config import (
    MANDATORY_FIELDS,
    TTL_DAYS,
    TUNE_WINDOW_DAYS,
    WARNING_WINDOW_DAYS,
    EngineConfig,
)
from de_mainframe.schemas.detection import DetectionRecord, as_utc


class LifecycleStatus(str, Enum):
    """Four-state lifecycle status of a detection."""

    VALID = "valid"
    INCOMPLETE = "incomplete"
    NEEDS_TUNE = "needs-tune"
    NEEDS_RETROFIT = "needs-retrofit"


class TTLClass(str, Enum):
    """Urgency band of the remaining TTL."""

    EXPIRED = "expired"
    CRITICAL = "critical"
    WARNING = "warning"
    OK = "ok"


class TTLStatus(BaseModel):
    days_remaining: int = Field(..., ge=0)
    expired: bool


class Classification(BaseModel):
    """Status of one detection at one point in time."""

    status: LifecycleStatus
    ttl_days_remaining: int = Field(..., ge=0)
    expired: bool
    missing_fields: list[str] = Field(default_factory=list)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LifecycleClassifier:
    """Computes TTL and lifecycle status for detection records."""

    def __init__(
        self,
        ttl_days: int = TTL_DAYS,
        tune_window_days: int = TUNE_WINDOW_DAYS,
        mandatory_fields: Iterable[str] = MANDATORY_FIELDS,
        warning_window_days: int = WARNING_WINDOW_DAYS,
    ):
        self.ttl_days = ttl_days
        self.tune_window_days = tune_window_days
        self.mandatory_fields = tuple(mandatory_fields)
        self.warning_window_days = warning_window_days

    @classmethod
    def from_config(cls, config: EngineConfig) -> "LifecycleClassifier":
        return cls(
            ttl_days=config.ttl_days,
            tune_window_days=config.tune_window_days,
            mandatory_fields=config.mandatory_fields,
            warning_window_days=config.warning_window_days,
        )

    def calculate_ttl(
        self, last_modified: datetime | None, now: datetime | None = None
    ) -> TTLStatus:
        """
        Calculate the days left before a detection must be revalidated.

        Args:
            last_modified: Last revalidation time, None for a fresh detection
            now: Evaluation time, defaults to the current UTC time

        Returns:
            TTLStatus with the remaining days floored at zero
        """
        if last_modified is None:
            return TTLStatus(days_remaining=self.ttl_days, expired=False)

        now = as_utc(now) or utcnow()
        expiry = as_utc(last_modified) + timedelta(days=self.ttl_days)
        days = math.ceil((expiry - now) / timedelta(days=1))
        return TTLStatus(days_remaining=max(0, days), expired=days <= 0)

    def classify(
        self, record: DetectionRecord, now: datetime | None = None
    ) -> Classification:
        """
        Derive the lifecycle status of a record.

        Args:
            record: Detection to classify
            now: Evaluation time, defaults to the current UTC time

        Returns:
            Classification with status, remaining TTL and missing mandatory fields
        """
        ttl = self.calculate_ttl(record.last_modified, now)
        missing = record.missing_fields(self.mandatory_fields)

        if ttl.expired:
            status = LifecycleStatus.NEEDS_RETROFIT
        elif ttl.days_remaining <= self.tune_window_days:
            status = LifecycleStatus.NEEDS_TUNE
        elif missing:
            status = LifecycleStatus.INCOMPLETE
        else:
            status = LifecycleStatus.VALID

        return Classification(
            status=status,
            ttl_days_remaining=ttl.days_remaining,
            expired=ttl.expired,
            missing_fields=missing,
        )

    def ttl_class(self, days_remaining: int) -> TTLClass:
        if days_remaining <= 0:
            return TTLClass.EXPIRED
        if days_remaining <= self.tune_window_days:
            return TTLClass.CRITICAL
        if days_remaining <= self.warning_window_days:
            return TTLClass.WARNING
        return TTLClass.OK
