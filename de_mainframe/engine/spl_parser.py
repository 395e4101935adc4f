"""
SPL query parser.

Extracts the resources a Splunk search references (indexes, sourcetypes,
macros, lookups and pipe commands) plus a handful of supplementary field
lists. Extraction is a tolerant regex heuristic: it never raises, and a
malformed query simply yields partial or empty results.
"""

import re
from typing import Iterable, Iterator

from de_mainframe.core.logging import get_logger
from de_mainframe.schemas.detection import DetectionRecord
from de_mainframe.schemas.spl import CustomTag, DrilldownVariables, ParsedSPL, ParsingRule


logger = get_logger(__name__)


COMMENT_RE = re.compile(r"```(.*?)```", re.DOTALL)
QUOTED_RE = re.compile(r'"(?:[^"\\]|\\.)*"')

INDEX_RE = re.compile(
    r"""\bindex\s*(?:={1,2}\s*["']?([^"'\s|()]+)["']?|\s+IN\s*\(([^)]*)\))""", re.IGNORECASE
)
SOURCETYPE_RE = re.compile(
    r"""\bsourcetype\s*(?:={1,2}\s*["']?([^"'\s|()]+)["']?|\s+IN\s*\(([^)]*)\))""",
    re.IGNORECASE,
)
CATEGORY_RE = re.compile(r'\bcategory\s*={1,2}\s*(?:"([^"]+)"|([^\s|()"]+))', re.IGNORECASE)
EVENT_CODE_RE = re.compile(r'\bEventCode\s*[=!<>]+\s*"?(\d+)"?', re.IGNORECASE)
MACRO_RE = re.compile(r"`([^`]+)`")
LOOKUP_RE = re.compile(
    r"\|\s*(?:input|output)?lookup\s+(?:\w+=\S+\s+)*([\w.\-]+)", re.IGNORECASE
)
COMMAND_RE = re.compile(r"\|\s*([a-z_][a-z0-9_]*)", re.IGNORECASE)
EVAL_FIELD_RE = re.compile(r"\beval\s+([A-Za-z_][A-Za-z0-9_]*)\s*=", re.IGNORECASE)
TABLE_RE = re.compile(r"\|\s*table\s+([^|]+)", re.IGNORECASE)
BY_RE = re.compile(r"\bby\s+([A-Za-z_][A-Za-z0-9_,\s]*)", re.IGNORECASE)

MAIN_FIELD_COMPARE_RE = re.compile(r"\b([A-Za-z_][A-Za-z0-9_.]*)\s*(?:!=|={1,2})")
MAIN_FIELD_IN_RE = re.compile(r"\b([A-Za-z_][A-Za-z0-9_.]*)\s+IN\s*\(", re.IGNORECASE)
MAIN_FIELD_LIKE_RE = re.compile(r"\b([A-Za-z_][A-Za-z0-9_.]*)\s+like\s+", re.IGNORECASE)

DRILLDOWN_VAR_RE = re.compile(r"\$([a-zA-Z_][a-zA-Z0-9_]*)\$")

LOOKUP_COMMANDS = frozenset({"lookup", "inputlookup", "outputlookup"})
RESERVED_SEARCH_FIELDS = frozenset(
    {
        "index",
        "source",
        "sourcetype",
        "host",
        "_time",
        "_raw",
        "_indextime",
        "earliest",
        "latest",
        "_index_earliest",
        "_index_latest",
    }
)


def _add(values: list[str], value: str) -> None:
    if value and value not in values:
        values.append(value)


def _in_list(raw: str) -> list[str]:
    return [part.strip().strip("\"'") for part in raw.split(",") if part.strip().strip("\"'")]


def iter_macro_names(text: str) -> Iterator[str]:
    """Yield each macro invocation name in ``text``, arguments and padding removed.

    Triple-backtick comments must already be stripped from ``text``.
    """
    for match in MACRO_RE.finditer(text):
        name = match.group(1).split("(", 1)[0].strip()
        if name:
            yield name


class SplParser:
    """Regex based extractor for SPL queries."""

    def __init__(self, parsing_rules: Iterable[ParsingRule] = ()):
        """
        Initialize parser.

        Args:
            parsing_rules: Custom rules tagging queries whose ``field=value``
                matches; invalid rules are rejected when the rule is built
        """
        self.parsing_rules = tuple(parsing_rules)
        self._compiled_rules = [
            (re.compile(rule.pattern, re.IGNORECASE), CustomTag(category=rule.category, tag=rule.tag))
            for rule in self.parsing_rules
        ]

    def parse(self, query: str | None) -> ParsedSPL:
        """
        Parse an SPL query.

        Args:
            query: SPL search string; falsy values give an empty result

        Returns:
            ParsedSPL with every sequence in first-occurrence order
        """
        parsed = ParsedSPL()
        if not query:
            return parsed

        for comment in COMMENT_RE.findall(query):
            _add(parsed.comments, comment.strip())
        clean = COMMENT_RE.sub("", query)

        self._extract_indexed(INDEX_RE, clean, parsed.indexes)
        self._extract_indexed(SOURCETYPE_RE, clean, parsed.sourcetypes)

        for name in iter_macro_names(clean):
            _add(parsed.macros, name)

        for match in LOOKUP_RE.finditer(clean):
            _add(parsed.lookups, match.group(1))

        # Pipes inside quoted values are not command boundaries
        unquoted = QUOTED_RE.sub('""', clean)
        for match in COMMAND_RE.finditer(unquoted):
            command = match.group(1).lower()
            if command not in LOOKUP_COMMANDS:
                _add(parsed.commands, command)

        for match in CATEGORY_RE.finditer(clean):
            _add(parsed.categories, (match.group(1) or match.group(2) or "").strip())

        for match in EVENT_CODE_RE.finditer(clean):
            _add(parsed.event_codes, match.group(1))

        for match in EVAL_FIELD_RE.finditer(clean):
            _add(parsed.eval_fields, match.group(1))

        table = TABLE_RE.search(unquoted)
        if table:
            for field in re.split(r"[,\s]+", table.group(1)):
                if len(field) > 1:
                    _add(parsed.fields, field)

        for match in BY_RE.finditer(unquoted):
            for field in re.split(r"[,\s]+", match.group(1)):
                if len(field) > 1:
                    _add(parsed.fields, field)
                    _add(parsed.by_fields, field)

        parsed.main_search_fields = self._main_search_fields(unquoted)
        parsed.custom_tags = self._custom_tags(clean)

        logger.debug(
            "spl_parsed",
            indexes=len(parsed.indexes),
            macros=len(parsed.macros),
            commands=len(parsed.commands),
        )
        return parsed

    @staticmethod
    def _extract_indexed(pattern: re.Pattern, text: str, values: list[str]) -> None:
        for match in pattern.finditer(text):
            if match.group(1):
                _add(values, match.group(1))
            else:
                for value in _in_list(match.group(2) or ""):
                    _add(values, value)

    @staticmethod
    def _main_search_fields(text: str) -> list[str]:
        """Fields compared in the search phase, the text before the first pipe."""
        search_phase = text.split("|", 1)[0]
        found: list[tuple[int, str]] = []
        for pattern in (MAIN_FIELD_COMPARE_RE, MAIN_FIELD_IN_RE, MAIN_FIELD_LIKE_RE):
            for match in pattern.finditer(search_phase):
                found.append((match.start(), match.group(1)))

        fields: list[str] = []
        for _, field in sorted(found):
            if field.lower() in RESERVED_SEARCH_FIELDS or field.upper() in ("IN", "AND", "OR", "NOT"):
                continue
            _add(fields, field)
        return fields

    def _custom_tags(self, text: str) -> list[CustomTag]:
        tags: list[CustomTag] = []
        for pattern, tag in self._compiled_rules:
            if pattern.search(text) and tag not in tags:
                tags.append(tag)
        return tags

    def parse_drilldown_variables(self, record: DetectionRecord) -> DrilldownVariables:
        """
        Collect the main search fields and commands of a record together with
        the ``$token$`` variables used by each of its drilldowns.

        Drilldowns are keyed ``legacy`` or ``drilldown_<slot>``.
        """
        parsed = self.parse(record.search_string)
        variables = DrilldownVariables(
            main_search_fields=parsed.main_search_fields,
            main_search_functions=parsed.commands,
        )

        for position, drilldown in enumerate(record.drilldowns, start=1):
            if not drilldown.search:
                continue
            key = "legacy" if drilldown.legacy else f"drilldown_{drilldown.slot or position}"
            found: list[str] = []
            for match in DRILLDOWN_VAR_RE.finditer(drilldown.search):
                _add(found, match.group(1))
                _add(variables.all_drilldown_vars, match.group(1))
            variables.drilldown_vars[key] = found

        return variables


_default_parser = SplParser()


def parse_spl(query: str | None) -> ParsedSPL:
    """Parse ``query`` without custom parsing rules."""
    return _default_parser.parse(query)


def parse_drilldown_variables(record: DetectionRecord) -> DrilldownVariables:
    return _default_parser.parse_drilldown_variables(record)
