"""
Unit tests for SPL query parsing.
"""

import pytest

from de_mainframe.engine.spl_parser import SplParser, parse_drilldown_variables, parse_spl
from de_mainframe.schemas.detection import DetectionRecord
from de_mainframe.schemas.spl import CustomTag, ParsingRule


class TestCoreExtraction:
    """Test suite for the five core resource sequences."""

    def test_reference_query(self, parser):
        """Test the canonical example query."""
        result = parser.parse("index=main sourcetype=auth | lookup users | stats count by user")

        assert result.indexes == ["main"]
        assert result.sourcetypes == ["auth"]
        assert result.macros == []
        assert result.lookups == ["users"]
        assert result.commands == ["stats"]

    @pytest.mark.parametrize("query", [None, "", "error OR failure", "user=admin action=login"])
    def test_queries_without_resources_are_empty(self, parser, query):
        """Test that queries without resource syntax yield five empty sequences."""
        result = parser.parse(query)

        assert result.is_empty
        assert result.indexes == result.sourcetypes == result.macros == []
        assert result.lookups == result.commands == []

    def test_macro_arguments_are_stripped(self, parser):
        """Test that `foo(a,b)` is captured as foo."""
        result = parser.parse("`foo(a,b)` | search x=1")

        assert result.macros == ["foo"]

    def test_macros_keep_first_occurrence_order(self, parser):
        result = parser.parse("`b_macro` OR `a_macro` | append [search `b_macro`] | `c_macro(1)`")

        assert result.macros == ["b_macro", "a_macro", "c_macro"]

    def test_back_to_back_macros(self, parser):
        result = parser.parse("`a``b` | stats count")

        assert result.macros == ["a", "b"]

    def test_single_quoted_index_and_sourcetype(self, parser):
        result = parser.parse("index='main' sourcetype='auth' OR index IN ('edr', \"proxy\")")

        assert result.indexes == ["main", "edr", "proxy"]
        assert result.sourcetypes == ["auth"]

    def test_indexes_quoted_and_double_equals(self, parser):
        result = parser.parse('(index="firewall" OR index==proxy) index=firewall')

        assert result.indexes == ["firewall", "proxy"]

    def test_index_in_list(self, parser):
        """Test that index IN (a, b) yields both indexes in order."""
        result = parser.parse('index IN (wineventlog, "sysmon") sourcetype=x')

        assert result.indexes == ["wineventlog", "sysmon"]
        assert result.sourcetypes == ["x"]

    def test_field_names_case_insensitive_values_case_sensitive(self, parser):
        result = parser.parse("INDEX=Main SourceType=Auth index=main")

        assert result.indexes == ["Main", "main"]
        assert result.sourcetypes == ["Auth"]

    def test_commands_lowercased_and_deduplicated(self, parser):
        result = parser.parse("index=a | STATS count by host | Stats count | eval x=1 | TABLE x")

        assert result.commands == ["stats", "eval", "table"]

    def test_lookup_family_excluded_from_commands(self, parser):
        result = parser.parse(
            "| inputlookup assets.csv | lookup local=true identities identity AS user "
            "| outputlookup results_lookup | sort - count"
        )

        assert result.lookups == ["assets.csv", "identities", "results_lookup"]
        assert result.commands == ["sort"]

    def test_pipes_inside_quotes_are_not_commands(self, parser):
        result = parser.parse('index=web uri="*|shell*" | rex field=uri "(?<cmd>a|b)" | dedup cmd')

        assert result.commands == ["rex", "dedup"]

    def test_malformed_query_does_not_raise(self, parser):
        result = parser.parse('index= | `unterminated | lookup | "open quote')

        assert result.commands == []
        assert result.lookups == []

    def test_module_level_parse(self):
        assert parse_spl("index=main | head 5").commands == ["head"]


class TestSupplementaryExtraction:
    """Test suite for comments, fields and tags."""

    def test_triple_backtick_comments_are_not_macros(self, parser):
        query = "```Detects `bad_macro` usage``` `real_macro` index=main"
        result = parser.parse(query)

        assert result.macros == ["real_macro"]
        assert result.comments == ["Detects `bad_macro` usage"]

    def test_event_codes_and_categories(self, parser):
        result = parser.parse(
            'index=mde category="AdvancedHunting-DeviceNetworkEvents" EventCode=4624 OR EventCode!="4625"'
        )

        assert result.categories == ["AdvancedHunting-DeviceNetworkEvents"]
        assert result.event_codes == ["4624", "4625"]
        assert result.data_sources == ["mde", "AdvancedHunting-DeviceNetworkEvents"]

    def test_eval_table_and_by_fields(self, parser):
        result = parser.parse(
            "index=main | eval risk=score*2 | stats count by user, host | table user host risk"
        )

        assert result.eval_fields == ["risk"]
        assert result.by_fields == ["user", "host"]
        assert result.fields == ["user", "host", "risk"]

    def test_main_search_fields(self, parser):
        result = parser.parse(
            'index=main sourcetype=x user!=root process IN ("a", "b") CommandLine like "%x%" | where count=1'
        )

        assert result.main_search_fields == ["user", "process", "CommandLine"]


class TestParsingRules:
    """Test suite for custom parsing rules."""

    def test_matching_rules_add_tags_once(self):
        rules = [
            ParsingRule(field="index", value="azure_cloud|O365", category="datasource", tag="Microsoft Defender"),
            ParsingRule(field="index", value="O365", category="datasource", tag="Microsoft Defender"),
            ParsingRule(field="EventCode", value="1|3", category="technology", tag="Sysmon Events"),
        ]
        parser = SplParser(rules)

        result = parser.parse("index=o365 OR index=netskope")

        assert result.custom_tags == [CustomTag(category="datasource", tag="Microsoft Defender")]

    def test_invalid_rule_regex_rejected(self):
        with pytest.raises(ValueError):
            ParsingRule(field="index", value="(unclosed", category="datasource", tag="Broken")

    def test_invalid_rule_field_rejected(self):
        with pytest.raises(ValueError):
            ParsingRule(field="bad field", value="x", category="datasource", tag="Broken")


class TestDrilldownVariables:
    """Test suite for drilldown variable extraction."""

    def test_variables_per_drilldown(self):
        record = DetectionRecord.model_validate(
            {
                "Detection Name": "Lateral Movement",
                "Search String": "index=windows EventCode=4624 Logon_Type=3 | stats count by src, user",
                "Drilldown Name (Legacy)": "Legacy",
                "Drilldown Search (Legacy)": "index=windows src=$src$",
                "Drilldown Name 2": "By user",
                "Drilldown Search 2": "index=windows user=$user$ src=$src$ | table $user$",
            }
        )

        variables = parse_drilldown_variables(record)

        assert variables.main_search_fields == ["EventCode", "Logon_Type"]
        assert variables.main_search_functions == ["stats"]
        assert variables.drilldown_vars == {"legacy": ["src"], "drilldown_2": ["user", "src"]}
        assert variables.all_drilldown_vars == ["src", "user"]
