"""
Unit tests for detection record normalization.
"""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from de_mainframe.schemas.detection import DetectionRecord, RiskEntry
from tests.factories import DetectionDataFactory, LegacyDetectionDataFactory


class TestDetectionRecord:
    """Test suite for building records from catalog documents."""

    def test_aliases(self):
        data = DetectionDataFactory(
            detection_name="Kerberoasting",
            severity="High",
            security_domain="Identity",
            mitre_id=["T1558.003"],
        )

        record = DetectionRecord.model_validate(data)

        assert record.name == "Kerberoasting"
        assert record.severity == "High"
        assert record.domain == "Identity"
        assert record.mitre_ids == ["T1558.003"]
        assert record.last_modified.tzinfo is not None
        assert record.roles[0].role == "Technical Owner"

    def test_legacy_and_structured_risk_normalize_alike(self):
        legacy = DetectionRecord.model_validate(LegacyDetectionDataFactory())
        structured = DetectionRecord.model_validate(
            DetectionDataFactory(
                risk=[{"risk_object_field": "dest", "risk_object_type": "system", "risk_score": 75}]
            )
        )

        assert legacy.risk == structured.risk
        assert legacy.risk == [RiskEntry(risk_object_field="dest", risk_object_type="system", risk_score=75)]

    def test_legacy_risk_defaults(self):
        record = DetectionRecord.model_validate(
            {"Detection Name": "x", "Risk Score": "high", "Risk Object Field": "user"}
        )

        assert record.risk[0].risk_score == 0
        assert record.risk[0].risk_object_type == "user"
        assert record.has_value("risk") is False

    def test_string_throttling_and_numbered_drilldowns(self):
        record = DetectionRecord.model_validate(LegacyDetectionDataFactory())

        assert record.throttling.enabled == 1
        assert [d.name for d in record.drilldowns] == ["Failed logons for $user$"]
        assert record.drilldowns[0].slot == 1
        assert "Drilldown Name 1" not in record.model_extra

    def test_empty_drilldown_slots_dropped_and_legacy_first(self):
        record = DetectionRecord.model_validate(
            {
                "Drilldown Name 3": "Third",
                "Drilldown Search 3": "index=c",
                "Drilldown Name 2": "",
                "Drilldown Search 2": "",
                "Drilldown Name (Legacy)": "Legacy",
                "Drilldown Search (Legacy)": "index=l",
                "Drilldown Earliest Offset (Legacy)": "-24h",
            }
        )

        assert [(d.name, d.slot) for d in record.drilldowns] == [("Legacy", None), ("Third", 3)]
        assert record.drilldowns[0].earliest == "-24h"

    def test_comma_separated_mitre(self):
        record = DetectionRecord.model_validate({"Mitre ID": "T1110, T1078,"})

        assert record.mitre_ids == ["T1110", "T1078"]

    def test_empty_and_naive_timestamps(self):
        record = DetectionRecord.model_validate(
            {"First Created": "", "Last Modified": "2024-03-01T10:00:00"}
        )

        assert record.first_created is None
        assert record.last_modified == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)

    def test_invalid_timestamp_rejected(self):
        with pytest.raises(ValidationError):
            DetectionRecord.model_validate({"Last Modified": "last tuesday"})

    def test_null_strings_become_empty(self):
        record = DetectionRecord.model_validate({"Detection Name": None, "Objective": None})

        assert record.name == ""
        assert record.missing_fields(["name", "objective"]) == ["name", "objective"]

    def test_scalar_values_become_strings(self):
        record = DetectionRecord.model_validate(
            {"Detection Name": 42, "Severity/Priority": 3, "Mitre ID": ["T1110", 1078, None, {"x": 1}]}
        )

        assert record.name == "42"
        assert record.severity == "3"
        assert record.mitre_ids == ["T1110", "1078"]

    def test_unknown_keys_preserved(self):
        record = DetectionRecord.model_validate({"Detection Name": "x", "Custom Field": "kept"})

        assert record.to_raw()["Custom Field"] == "kept"

    def test_to_raw_round_trips_layout(self):
        record = DetectionRecord.model_validate(LegacyDetectionDataFactory(detection_name="Legacy"))

        raw = record.to_raw()
        again = DetectionRecord.model_validate(raw)

        assert raw["Detection Name"] == "Legacy"
        assert raw["Risk"][0]["risk_score"] == 75
        assert raw["Drilldown Name 1"] == "Failed logons for $user$"
        assert "Risk Score" not in raw
        assert again == record


class TestHasValue:
    """Test suite for completeness checks."""

    def test_structured_fields(self):
        record = DetectionRecord.model_validate(
            {
                "Roles": [{"Role": "Technical Owner", "Name": "  "}],
                "Throttling": {"enabled": 0, "fields": "user", "period": "1h"},
                "Mitre ID": [],
            }
        )

        assert record.has_value("roles") is False
        assert record.has_value("throttling") is True
        assert record.has_value("mitre_ids") is False
        assert record.has_value("drilldowns") is False

    def test_blank_string_is_missing(self):
        record = DetectionRecord(name="x", objective=" \n\t")

        assert record.missing_fields(("name", "objective")) == ["objective"]
