"""
Detection record schemas.

Detections arrive as loosely shaped JSON documents keyed by display names
("Detection Name", "Search String", ...) and in more than one historical
layout. ``DetectionRecord`` accepts either layout and normalizes it once, when
the record is built, so the rest of the engine only ever sees one shape.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


LEGACY_RISK_KEYS = ("Risk Score", "Risk Object Field", "Risk Object Type")
LEGACY_DRILLDOWN_KEYS = {
    "name": "Drilldown Name (Legacy)",
    "search": "Drilldown Search (Legacy)",
    "earliest": "Drilldown Earliest Offset (Legacy)",
    "latest": "Drilldown Latest Offset (Legacy)",
}
NUMBERED_DRILLDOWN_KEY = re.compile(r"^Drilldown (Name|Search|Earliest|Latest) (\d+)$")


def as_utc(value: datetime | None) -> datetime | None:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _score(value: Any) -> int:
    # Leading integer of the value, 0 when there is none
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    match = re.match(r"\s*([+-]?\d+)", str(value or ""))
    return int(match.group(1)) if match else 0


class RevalidationAction(str, Enum):
    """Actions recorded by the revalidation operations."""

    TUNED = "Marked as Tuned"
    RETROFITTED = "Marked as Retrofitted"


class RiskEntry(BaseModel):
    """One risk object attached to a detection."""

    risk_object_field: str = ""
    risk_object_type: str = "user"
    risk_score: int = 0

    @field_validator("risk_object_field", "risk_object_type", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("risk_score", mode="before")
    @classmethod
    def coerce_score(cls, v: Any) -> int:
        return _score(v)


class Throttling(BaseModel):
    """Alert throttling settings."""

    enabled: int = 0
    fields: str = ""
    period: str = ""

    @field_validator("enabled", mode="before")
    @classmethod
    def coerce_enabled(cls, v: Any) -> int:
        return _score(v)

    @field_validator("fields", "period", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else str(v)


class Role(BaseModel):
    """A named owner of a detection."""

    model_config = ConfigDict(populate_by_name=True)

    role: str = Field(default="", alias="Role")
    name: str = Field(default="", alias="Name")
    title: str = Field(default="", alias="Title")

    @field_validator("role", "name", "title", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class Drilldown(BaseModel):
    """A drilldown search, either one of the numbered slots or the legacy one."""

    name: str = ""
    search: str = ""
    earliest: str | int | float | None = None
    latest: str | int | float | None = None
    slot: int | None = Field(default=None, description="Numbered slot, None for legacy")

    @property
    def legacy(self) -> bool:
        return self.slot is None


class RevalidationEntry(BaseModel):
    """One entry of a detection's append-only revalidation log."""

    date: datetime | None = None
    action: str = ""
    user: str = ""

    @field_validator("date", mode="before")
    @classmethod
    def empty_date(cls, v: Any) -> Any:
        return None if v == "" else v

    @field_validator("date")
    @classmethod
    def date_to_utc(cls, v: datetime | None) -> datetime | None:
        return as_utc(v)

    @field_validator("action", "user", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class DetectionRecord(BaseModel):
    """A detection rule with its SPL query and catalog metadata."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    # Canonical field names accepted by completeness checks
    COMPLETENESS_FIELDS: ClassVar[tuple[str, ...]] = (
        "name",
        "objective",
        "description",
        "assumptions",
        "severity",
        "domain",
        "search_string",
        "analyst_next_steps",
        "blind_spots",
        "required_data_sources",
        "notable_title",
        "notable_description",
        "cron_schedule",
        "trigger_condition",
        "mitre_ids",
        "risk",
        "throttling",
        "roles",
        "drilldowns",
    )

    name: str = Field(default="", alias="Detection Name")
    objective: str = Field(default="", alias="Objective")
    description: str = Field(default="", alias="Description")
    assumptions: str = Field(default="", alias="Assumptions")
    severity: str = Field(default="", alias="Severity/Priority")
    domain: str = Field(default="", alias="Security Domain")
    origin: str = Field(default="", alias="origin")
    search_string: str = Field(default="", alias="Search String")
    analyst_next_steps: str = Field(default="", alias="Analyst Next Steps")
    blind_spots: str = Field(default="", alias="Blind_Spots_False_Positives")
    required_data_sources: str = Field(default="", alias="Required_Data_Sources")
    notable_title: str = Field(default="", alias="Notable Title")
    notable_description: str = Field(default="", alias="Notable Description")
    cron_schedule: str = Field(default="", alias="Cron Schedule")
    trigger_condition: str = Field(default="", alias="Trigger Condition")
    first_created: datetime | None = Field(default=None, alias="First Created")
    last_modified: datetime | None = Field(default=None, alias="Last Modified")
    mitre_ids: list[str] = Field(default_factory=list, alias="Mitre ID")
    risk: list[RiskEntry] = Field(default_factory=list, alias="Risk")
    throttling: Throttling = Field(default_factory=Throttling, alias="Throttling")
    roles: list[Role] = Field(default_factory=list, alias="Roles")
    drilldowns: list[Drilldown] = Field(default_factory=list)
    revalidation_history: list[RevalidationEntry] = Field(
        default_factory=list, alias="Revalidation_History"
    )

    @model_validator(mode="before")
    @classmethod
    def normalize_legacy_shape(cls, data: Any) -> Any:
        """Fold legacy field layouts into the canonical shape."""
        if not isinstance(data, dict):
            return data
        data = dict(data)

        for name, info in cls.model_fields.items():
            if info.annotation is str:
                for key in (info.alias, name):
                    if key not in data:
                        continue
                    if data[key] is None:
                        data[key] = ""
                    elif isinstance(data[key], (bool, int, float)):
                        data[key] = str(data[key])

        legacy_risk = {key: data.pop(key) for key in LEGACY_RISK_KEYS if key in data}
        risk = data.pop("Risk", data.pop("risk", None))
        if isinstance(risk, list):
            data["risk"] = [entry for entry in risk if isinstance(entry, (dict, RiskEntry))]
        elif legacy_risk.get("Risk Score") or legacy_risk.get("Risk Object Field"):
            data["risk"] = [
                {
                    "risk_object_field": legacy_risk.get("Risk Object Field") or "",
                    "risk_object_type": legacy_risk.get("Risk Object Type") or "user",
                    "risk_score": legacy_risk.get("Risk Score"),
                }
            ]
        else:
            data["risk"] = []

        throttling = data.pop("Throttling", data.pop("throttling", None))
        if isinstance(throttling, (dict, Throttling)):
            data["throttling"] = throttling
        elif isinstance(throttling, str):
            data["throttling"] = {"enabled": 1 if throttling else 0}
        else:
            data["throttling"] = {}

        mitre = data.pop("Mitre ID", data.pop("mitre_ids", None))
        if isinstance(mitre, str):
            mitre = [part.strip() for part in mitre.split(",") if part.strip()]
        elif isinstance(mitre, list):
            mitre = [
                str(entry).strip()
                for entry in mitre
                if isinstance(entry, (str, int, float)) and str(entry).strip()
            ]
        data["mitre_ids"] = mitre or []

        if "drilldowns" not in data:
            data["drilldowns"] = cls._collect_drilldowns(data)

        return data

    @staticmethod
    def _collect_drilldowns(data: dict[str, Any]) -> list[dict[str, Any]]:
        """Pop legacy and numbered drilldown keys into an ordered list."""
        drilldowns = []

        legacy = {attr: data.pop(key, None) for attr, key in LEGACY_DRILLDOWN_KEYS.items()}
        if legacy["name"] or legacy["search"]:
            drilldowns.append(
                {
                    "name": legacy["name"] or "",
                    "search": legacy["search"] or "",
                    "earliest": legacy["earliest"],
                    "latest": legacy["latest"],
                }
            )

        slots: dict[int, dict[str, Any]] = {}
        for key in [k for k in data if isinstance(k, str)]:
            match = NUMBERED_DRILLDOWN_KEY.match(key)
            if match:
                part, slot = match.group(1).lower(), int(match.group(2))
                slots.setdefault(slot, {"slot": slot})[part] = data.pop(key)

        for slot in sorted(slots):
            entry = slots[slot]
            if entry.get("name") or entry.get("search"):
                entry["name"] = entry.get("name") or ""
                entry["search"] = entry.get("search") or ""
                drilldowns.append(entry)

        return drilldowns

    @field_validator("first_created", "last_modified", mode="before")
    @classmethod
    def empty_timestamp(cls, v: Any) -> Any:
        return None if v == "" else v

    @field_validator("first_created", "last_modified")
    @classmethod
    def timestamp_to_utc(cls, v: datetime | None) -> datetime | None:
        return as_utc(v)

    @property
    def risk_score(self) -> int:
        """Score of the first risk entry, 0 when there is none."""
        return self.risk[0].risk_score if self.risk else 0

    @property
    def has_valid_risk(self) -> bool:
        return any(entry.risk_score > 0 for entry in self.risk)

    def has_value(self, field: str) -> bool:
        """
        Check whether a canonical field counts as filled in.

        Args:
            field: One of ``COMPLETENESS_FIELDS``

        Returns:
            True if the field holds a meaningful value
        """
        if field == "risk":
            return self.has_valid_risk
        if field == "throttling":
            return bool(self.throttling.enabled or self.throttling.fields)
        if field == "roles":
            return any(role.name.strip() for role in self.roles)
        if field == "drilldowns":
            return any(drilldown.name for drilldown in self.drilldowns)

        value = getattr(self, field, None)
        if isinstance(value, str):
            return bool(value.strip())
        return bool(value)

    def missing_fields(self, fields: tuple[str, ...] | list[str]) -> list[str]:
        """Return the subset of ``fields`` that are not filled in, in order."""
        return [field for field in fields if not self.has_value(field)]

    def to_raw(self) -> dict[str, Any]:
        """Dump the record back into its JSON document layout."""
        data = self.model_dump(mode="json", by_alias=True, exclude={"drilldowns"})

        next_slot = 1
        for drilldown in self.drilldowns:
            if drilldown.legacy:
                data[LEGACY_DRILLDOWN_KEYS["name"]] = drilldown.name
                data[LEGACY_DRILLDOWN_KEYS["search"]] = drilldown.search
                data[LEGACY_DRILLDOWN_KEYS["earliest"]] = drilldown.earliest
                data[LEGACY_DRILLDOWN_KEYS["latest"]] = drilldown.latest
                continue
            slot = drilldown.slot or next_slot
            next_slot = slot + 1
            data[f"Drilldown Name {slot}"] = drilldown.name
            data[f"Drilldown Search {slot}"] = drilldown.search
            data[f"Drilldown Earliest {slot}"] = drilldown.earliest
            data[f"Drilldown Latest {slot}"] = drilldown.latest

        return data
