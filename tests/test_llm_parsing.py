"""Tests for oracle response parsing."""

import pytest

from pr_analyst.llm_parsing import (
    extract_json,
    parse_next_action,
    parse_response,
    parse_strategy,
)
from pr_analyst.models import Action, Strategy

PLAIN_REPLY = """Summary:
Adds a retry wrapper around the HTTP client.

Potential Risks:
- [File: src/http.py] Missing import of time (line 4)
- Retries are unbounded

Complexity: 4"""

MARKDOWN_REPLY = """### Summary
Refactors the cache layer into its own module.

### Potential Risks
1. `load()` renamed but still imported by `cli.py`

### Complexity
3

### Recommendations
- Update `cli.py`
- Add a regression test"""


class TestParseResponse:
    def test_plain_dialect(self):
        parsed = parse_response(PLAIN_REPLY)
        assert parsed.summary == "Adds a retry wrapper around the HTTP client."
        assert parsed.risks == [
            "[File: src/http.py] Missing import of time (line 4)",
            "Retries are unbounded",
        ]
        assert parsed.complexity == 4
        assert parsed.has_complexity

    def test_markdown_dialect(self):
        parsed = parse_response(MARKDOWN_REPLY)
        assert parsed.summary == "Refactors the cache layer into its own module."
        assert parsed.risks == ["`load()` renamed but still imported by `cli.py`"]
        assert parsed.complexity == 3
        assert parsed.recommendations == ["Update `cli.py`", "Add a regression test"]

    def test_none_means_no_risks(self):
        parsed = parse_response("Summary:\nTiny fix.\n\nPotential Risks:\nNone\n\nComplexity: 1")
        assert parsed.risks == []
        assert parsed.complexity == 1

    def test_none_check_uses_word_boundaries(self):
        parsed = parse_response("Summary:\nx\n\nRisks:\n- Calls a nonexistent helper\n")
        assert parsed.risks == ["Calls a nonexistent helper"]

    def test_plain_lines_count_when_no_bullets(self):
        parsed = parse_response("Risks:\nFirst problem\nSecond problem\n\nComplexity: 2")
        assert parsed.risks == ["First problem", "Second problem"]

    def test_defaults_for_free_text(self):
        parsed = parse_response("Looks fine to me overall.")
        assert parsed.summary == "Looks fine to me overall."
        assert parsed.risks == []
        assert parsed.complexity == 3
        assert not parsed.has_complexity
        assert parsed.recommendations == []

    @pytest.mark.parametrize("text", ["", None, "```\n```"])
    def test_empty_input_never_raises(self, text):
        parsed = parse_response(text)
        assert parsed.summary == ""
        assert parsed.complexity == 3

    def test_complexity_out_of_range_is_ignored(self):
        assert parse_response("Summary:\nx\n\nComplexity: 9").complexity == 3

    def test_rating_scale_is_not_read_as_value(self):
        parsed = parse_response("Summary:\nx\n\nComplexity (1-5): 4")
        assert parsed.complexity == 4

    def test_ratio_without_label_is_not_complexity(self):
        parsed = parse_response("Summary:\nTouches 3/5 handlers in the router.")
        assert parsed.complexity == 3
        assert not parsed.has_complexity

    def test_ratio_after_label(self):
        parsed = parse_response("Summary:\nx\n\nOverall complexity is 4/5 for this change.")
        assert parsed.complexity == 4
        assert parsed.has_complexity

    def test_bold_labels(self):
        parsed = parse_response("**Summary**: Bumps a version.\n\n**Complexity**: 2")
        assert parsed.summary == "Bumps a version."
        assert parsed.complexity == 2

    def test_code_fence_is_stripped(self):
        parsed = parse_response("```\n" + PLAIN_REPLY + "\n```")
        assert parsed.complexity == 4
        assert len(parsed.risks) == 2


class TestExtractJson:
    def test_fenced_object(self):
        text = 'Thinking...\n```json\n{"action": "synthesize"}\n```'
        assert extract_json(text) == {"action": "synthesize"}

    def test_bare_object_with_nesting(self):
        text = 'Decision: {"a": {"b": 1}, "c": [1, 2]} done'
        assert extract_json(text) == {"a": {"b": 1}, "c": [1, 2]}

    def test_invalid_json_returns_none(self):
        assert extract_json("{not json}") is None
        assert extract_json("") is None


class TestDecisions:
    def test_parse_strategy(self):
        assert parse_strategy('{"strategy": "deep-dive", "reasoning": "auth"}') == (
            Strategy.DEEP_DIVE,
            "auth",
        )

    def test_parse_strategy_unknown(self):
        assert parse_strategy('{"strategy": "yolo"}') is None
        assert parse_strategy("no json") is None

    def test_parse_next_action_list_targets(self):
        decision = parse_next_action(
            '{"action": "analyze_group", "targets": ["a.py", "b.py"], "reasoning": "related"}'
        )
        assert decision.action == Action.ANALYZE_GROUP
        assert decision.targets == ["a.py", "b.py"]
        assert decision.reasoning == "related"

    def test_parse_next_action_aliases_and_single_target(self):
        decision = parse_next_action('{"action": "analyzeFile", "target": "x.py"}')
        assert decision.action == Action.ANALYZE_FILE
        assert decision.targets == ["x.py"]

    def test_parse_next_action_unknown_action(self):
        assert parse_next_action('{"action": "delete_everything"}') is None

    def test_parse_next_action_missing_action(self):
        assert parse_next_action('{"targets": ["a.py"]}') is None
