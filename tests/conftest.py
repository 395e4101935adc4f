"""
Pytest configuration and fixtures for DE-MainFrame tests.
"""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List

import pytest

from de_mainframe.core.logging import setup_logging
from de_mainframe.engine.corpus import CorpusIndexer
from de_mainframe.engine.lifecycle import LifecycleClassifier
from de_mainframe.engine.spl_parser import SplParser
from de_mainframe.schemas.detection import DetectionRecord
from tests.factories import DetectionDataFactory, DetectionRecordFactory

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def configure_logging():
    """Bind structured logging to the current stderr for every test."""
    setup_logging("WARNING")
    yield


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep DE_MAINFRAME_* variables from the developer shell out of tests."""
    import os

    for key in list(os.environ):
        if key.startswith("DE_MAINFRAME_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(Path(__file__).parent)


@pytest.fixture
def now() -> datetime:
    """Fixed evaluation time."""
    return NOW


@pytest.fixture
def parser() -> SplParser:
    return SplParser()


@pytest.fixture
def classifier() -> LifecycleClassifier:
    return LifecycleClassifier()


@pytest.fixture
def indexer(classifier, parser) -> CorpusIndexer:
    return CorpusIndexer(classifier=classifier, parser=parser)


@pytest.fixture
def make_record():
    """Build a complete record last modified ``age_days`` before NOW."""

    def _make(age_days: int | None = 10, **overrides: Any) -> DetectionRecord:
        if age_days is not None:
            overrides.setdefault("last_modified", NOW - timedelta(days=age_days))
        else:
            overrides.setdefault("last_modified", None)
        overrides.setdefault("first_created", NOW - timedelta(days=500))
        return DetectionRecordFactory(**overrides)

    return _make


@pytest.fixture
def sample_corpus(make_record) -> List[DetectionRecord]:
    """Small corpus covering every lifecycle status at NOW."""
    return [
        make_record(
            10,
            name="Brute Force Logons",
            severity="High",
            domain="Identity",
            search_string="`windows_security` EventCode=4625 | stats count by user | where count > 10",
            mitre_ids=["T1110"],
        ),
        make_record(
            20,
            name="Encoded PowerShell",
            severity="Critical",
            domain="Endpoint",
            objective="",
            search_string='`sysmon(1)` CommandLine="*-enc*" | table host, user, CommandLine',
            mitre_ids=["T1059.001"],
        ),
        make_record(
            340,
            name="Impossible Travel",
            severity="Medium",
            domain="Identity",
            search_string="index=azure_cloud sourcetype=azure:signin | iplocation src | stats dc(Country) by user",
            mitre_ids=["T1078"],
        ),
        make_record(
            400,
            name="Legacy Proxy Beaconing",
            severity="Low",
            domain="Network",
            search_string="`proxy_logs` | bucket _time span=1h | stats count by dest",
            mitre_ids=[],
        ),
    ]


@pytest.fixture
def raw_detections() -> List[Dict[str, Any]]:
    """Raw detection documents in the catalog JSON layout."""
    return DetectionDataFactory.build_batch(3)


@pytest.fixture
def corpus_file(tmp_path, raw_detections) -> Path:
    """Detection corpus written to a JSON file."""
    path = tmp_path / "detections.json"
    path.write_text(json.dumps(raw_detections), encoding="utf-8")
    return path


@pytest.fixture
def macros_file(tmp_path) -> Path:
    """Macro list mixing plain names and macro objects."""
    path = tmp_path / "macros.json"
    path.write_text(
        json.dumps(
            [
                "windows_security",
                {"name": "sysmon", "definition": "sourcetype=XmlWinEventLog:Microsoft-Windows-Sysmon/Operational", "arguments": "event_code"},
                {"name": "old_proxy", "definition": "index=proxy", "deprecated": True},
            ]
        ),
        encoding="utf-8",
    )
    return path
