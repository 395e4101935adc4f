"""
Corpus level indexes over a collection of detection records.
"""

from datetime import datetime
from enum import Enum
from typing import Iterable, Sequence

from pydantic import BaseModel, Field

from de_mainframe.core.logging import get_logger
from de_mainframe.engine.lifecycle import LifecycleClassifier, LifecycleStatus
from de_mainframe.engine.spl_parser import COMMENT_RE, SplParser, iter_macro_names
from de_mainframe.schemas.detection import DetectionRecord
from de_mainframe.schemas.macro import MacroUsage


logger = get_logger(__name__)


class DetectionSort(str, Enum):
    """Orderings supported by the detection list."""

    NAME_ASC = "name-asc"
    NAME_DESC = "name-desc"
    MODIFIED_DESC = "modified-desc"
    RISK_DESC = "risk-desc"


class DetectionFilter(BaseModel):
    """Search criteria for the detection list; unset criteria are inactive."""

    name: str | None = Field(None, description="Case-insensitive substring of the name")
    text: str | None = Field(
        None, description="Case-insensitive substring of name, objective, search or MITRE ids"
    )
    severity: str | None = None
    domain: str | None = None
    origin: str | None = None
    data_source: str | None = None
    mitre_id: str | None = None
    status: LifecycleStatus | None = None
    sourcetype: str | None = None
    main_search_field: str | None = None
    main_search_function: str | None = None
    drilldown_var: str | None = None

    @property
    def needs_parse(self) -> bool:
        return bool(
            self.data_source
            or self.sourcetype
            or self.main_search_field
            or self.main_search_function
            or self.drilldown_var
        )


def invokes_macro(search: str | None, macro_name: str) -> bool:
    """Whether ``search`` invokes ``macro_name``, read the same way the parser reads macros."""
    return macro_name in iter_macro_names(COMMENT_RE.sub("", search or ""))


def _same(value: str, wanted: str) -> bool:
    return (value or "").strip().lower() == wanted.strip().lower()


class CorpusIndexer:
    """Reverse indexes, filtering and sorting over a corpus of detections."""

    def __init__(
        self,
        classifier: LifecycleClassifier | None = None,
        parser: SplParser | None = None,
    ):
        self.classifier = classifier or LifecycleClassifier()
        self.parser = parser or SplParser()

    def count_macro_usage(
        self, macro_name: str, corpus: Iterable[DetectionRecord] | None
    ) -> int:
        """Number of detections whose search invokes ``macro_name``."""
        return len(self.detections_using_macro(macro_name, corpus))

    def detections_using_macro(
        self, macro_name: str, corpus: Iterable[DetectionRecord] | None
    ) -> list[MacroUsage]:
        """
        Detections whose search invokes ``macro_name``, in corpus order.

        Args:
            macro_name: Macro name, matched literally
            corpus: Detection records

        Returns:
            Identifying projection of every matching detection
        """
        if not macro_name:
            return []
        return [
            MacroUsage(name=record.name, severity=record.severity, domain=record.domain)
            for record in corpus or []
            if invokes_macro(record.search_string, macro_name)
        ]

    def status_counts(
        self, corpus: Iterable[DetectionRecord] | None, now: datetime | None = None
    ) -> dict[LifecycleStatus, int]:
        """Tally every record into the four lifecycle buckets."""
        counts = {status: 0 for status in LifecycleStatus}
        for record in corpus or []:
            counts[self.classifier.classify(record, now).status] += 1
        return counts

    def missing_macros(self, query: str | None, loaded_macro_names: Iterable[str] | None) -> list[str]:
        """
        Macros referenced by ``query`` but absent from the loaded macro list.

        With no macros loaded every referenced macro is reported.
        """
        loaded = set(loaded_macro_names or ())
        return [macro for macro in self.parser.parse(query).macros if macro not in loaded]

    def filter_detections(
        self,
        corpus: Iterable[DetectionRecord] | None,
        criteria: DetectionFilter,
        now: datetime | None = None,
    ) -> list[DetectionRecord]:
        """Records passing every active criterion, in corpus order."""
        return [record for record in corpus or [] if self._matches(record, criteria, now)]

    def _matches(
        self, record: DetectionRecord, criteria: DetectionFilter, now: datetime | None
    ) -> bool:
        if criteria.name and criteria.name.lower() not in record.name.lower():
            return False

        if criteria.text:
            haystack = " ".join(
                [record.name, record.objective, record.search_string, *record.mitre_ids]
            ).lower()
            if criteria.text.lower() not in haystack:
                return False

        if criteria.severity and not _same(record.severity, criteria.severity):
            return False
        if criteria.domain and not _same(record.domain, criteria.domain):
            return False
        if criteria.origin and not _same(record.origin, criteria.origin):
            return False

        if criteria.mitre_id and criteria.mitre_id not in record.mitre_ids:
            return False

        if criteria.status and self.classifier.classify(record, now).status != criteria.status:
            return False

        if criteria.needs_parse:
            parsed = self.parser.parse(record.search_string)

            if criteria.data_source:
                wanted = criteria.data_source
                in_field = wanted.lower() in record.required_data_sources.lower()
                if not in_field and wanted not in parsed.data_sources:
                    return False

            if criteria.sourcetype and criteria.sourcetype not in parsed.sourcetypes:
                return False
            if criteria.main_search_field and criteria.main_search_field not in parsed.main_search_fields:
                return False
            if criteria.main_search_function and criteria.main_search_function.lower() not in parsed.commands:
                return False

            if criteria.drilldown_var:
                variables = self.parser.parse_drilldown_variables(record)
                if criteria.drilldown_var not in variables.all_drilldown_vars:
                    return False

        return True

    @staticmethod
    def sort_detections(
        records: Sequence[DetectionRecord], order: DetectionSort | str = DetectionSort.NAME_ASC
    ) -> list[DetectionRecord]:
        """Return a sorted copy of ``records``; sorting is stable."""
        order = DetectionSort(order)
        if order is DetectionSort.NAME_ASC:
            return sorted(records, key=lambda r: r.name.lower())
        if order is DetectionSort.NAME_DESC:
            return sorted(records, key=lambda r: r.name.lower(), reverse=True)
        if order is DetectionSort.MODIFIED_DESC:
            dated = sorted(
                (r for r in records if r.last_modified is not None),
                key=lambda r: r.last_modified,
                reverse=True,
            )
            return dated + [r for r in records if r.last_modified is None]
        return sorted(records, key=lambda r: r.risk_score, reverse=True)

    @staticmethod
    def field_gaps(
        corpus: Iterable[DetectionRecord] | None, fields: Iterable[str]
    ) -> dict[str, int]:
        """Number of records missing each of ``fields``."""
        fields = list(fields)
        gaps = {field: 0 for field in fields}
        for record in corpus or []:
            for field in record.missing_fields(fields):
                gaps[field] += 1
        return gaps
