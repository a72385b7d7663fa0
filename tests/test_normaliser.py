"""Tests for normalising generator output into canonical test cases."""

import pytest

from voice_promptimiser.core.suite_entities import (
    CriteriaType,
    EvaluatorType,
    Priority,
    TestCategory,
    TurnRole,
)
from voice_promptimiser.generation.normaliser import (
    AGENT_PLACEHOLDER,
    USER_PLACEHOLDER,
    extract_raw_cases,
    normalise_criteria,
    normalise_script,
    normalise_test_case,
    normalise_turn,
)
from voice_promptimiser.generation.suite_validator import validate_test_case
from tests.mocks.builders import generated_case


class TestTurns:
    def test_bot_speaker_becomes_expected_agent(self):
        """A turn written as {"speaker": "bot", "text": ...} is an expected-agent turn."""
        turn = normalise_turn({"speaker": "bot", "text": "We're open 9 to 5."})

        assert turn.role == TurnRole.EXPECTED_AGENT
        assert turn.content == "We're open 9 to 5."

    @pytest.mark.parametrize("role", ["agent", "assistant", "expected-agent", "expected_agent", "Bot", "AI"])
    def test_agent_synonyms(self, role):
        assert normalise_turn({"role": role, "content": "hi"}).role == TurnRole.EXPECTED_AGENT

    @pytest.mark.parametrize("role", ["user", "caller", "customer", None])
    def test_everything_else_is_a_user_turn(self, role):
        assert normalise_turn({"role": role, "content": "hi"}).role == TurnRole.USER

    def test_plain_string_is_a_user_turn(self):
        turn = normalise_turn("  Can I book for Tuesday?  ")
        assert turn.role == TurnRole.USER
        assert turn.content == "Can I book for Tuesday?"

    def test_content_taken_from_other_string_field(self):
        turn = normalise_turn({"role": "user", "utterance_text": "Do you take insurance?"})
        assert turn.content == "Do you take insurance?"

    def test_empty_turns_get_placeholders(self):
        assert normalise_turn({"role": "user"}).content == USER_PLACEHOLDER
        assert normalise_turn({"role": "agent", "content": "   "}).content == AGENT_PLACEHOLDER

    def test_script_starting_with_agent_gets_greeting(self):
        script = normalise_script([
            {"role": "agent", "content": "Welcome to the clinic"},
            {"role": "user", "content": "I need a cleaning"},
        ])

        assert len(script) == 3
        assert script[0].role == TurnRole.USER
        assert script[0].content == "Hello"
        assert script[1].role == TurnRole.EXPECTED_AGENT

    @pytest.mark.parametrize("raw", [None, [], 42])
    def test_missing_script_is_a_single_greeting(self, raw):
        script = normalise_script(raw)
        assert [(t.role, t.content) for t in script] == [(TurnRole.USER, "Hello")]

    def test_single_dict_script_is_wrapped(self):
        script = normalise_script({"role": "user", "content": "Hi"})
        assert [t.content for t in script] == ["Hi"]


class TestCriteriaWeights:
    def test_weights_are_rescaled_to_one(self):
        criteria = normalise_criteria([
            {"name": "A", "weight": 2},
            {"name": "B", "weight": 2},
        ])

        assert [c.weight for c in criteria] == pytest.approx([0.5, 0.5])

    def test_missing_weights_get_an_even_share(self):
        criteria = normalise_criteria([{"name": "A", "weight": 0.5}, {"name": "B"}])
        assert [c.weight for c in criteria] == pytest.approx([0.5, 0.5])

    @pytest.mark.parametrize("bad_weight", [True, "heavy", -1, "nan"])
    def test_unusable_weights_are_treated_as_missing(self, bad_weight):
        criteria = normalise_criteria([{"name": "A", "weight": bad_weight}, {"name": "B", "weight": None}])
        assert [c.weight for c in criteria] == pytest.approx([0.5, 0.5])

    def test_all_zero_weights_are_split_evenly(self):
        criteria = normalise_criteria([{"name": "A", "weight": 0}, {"name": "B", "weight": 0}, {"name": "C", "weight": 0}])
        assert [c.weight for c in criteria] == pytest.approx([1 / 3] * 3)

    def test_light_required_criterion_is_demoted(self):
        criteria = normalise_criteria([
            {"name": "Must greet", "weight": 0.2, "required": True},
            {"name": "Books slot", "weight": 0.8, "required": True},
        ])

        assert criteria[0].required is False
        assert criteria[1].required is True

    def test_no_criteria_falls_back_to_response_quality(self):
        criteria = normalise_criteria([])

        assert len(criteria) == 1
        assert criteria[0].name == "Response Quality"
        assert criteria[0].weight == 1.0
        assert criteria[0].required is True
        assert criteria[0].evaluator.type == EvaluatorType.LLM

    def test_unusable_entries_fall_back_too(self):
        criteria = normalise_criteria([42, None])
        assert criteria[0].name == "Response Quality"

    def test_string_criterion_is_judged(self):
        criteria = normalise_criteria(["Agent is polite"])

        assert criteria[0].name == "Agent is polite"
        assert criteria[0].evaluator.type == EvaluatorType.LLM
        assert criteria[0].weight == 1.0


class TestCriteriaEvaluators:
    def test_keyword_string_is_split_on_commas(self):
        [criterion] = normalise_criteria([
            {"name": "Hours", "evaluatorType": "keyword", "keywords": "hours, price ,", "matchAll": True},
        ])

        assert criterion.evaluator.type == EvaluatorType.KEYWORD
        assert criterion.evaluator.config == {"keywords": ["hours", "price"], "match_all": True}

    def test_keyword_without_keywords_becomes_llm(self):
        [criterion] = normalise_criteria([
            {"name": "Hours", "description": "Mentions opening hours", "evaluatorType": "keyword"},
        ])

        assert criterion.evaluator.type == EvaluatorType.LLM
        assert criterion.evaluator.config["prompt"] == "Mentions opening hours"

    def test_uncompilable_regex_becomes_llm(self):
        [criterion] = normalise_criteria([{"name": "Phone", "evaluatorType": "regex", "pattern": "(["}])
        assert criterion.evaluator.type == EvaluatorType.LLM

    def test_valid_regex_is_kept(self):
        [criterion] = normalise_criteria([{"name": "Phone", "evaluatorType": "regexp", "pattern": r"\d{3}"}])

        assert criterion.evaluator.type == EvaluatorType.REGEX
        assert criterion.evaluator.config == {"pattern": r"\d{3}", "flags": "i"}

    def test_nested_evaluator_object(self):
        [criterion] = normalise_criteria([
            {"name": "Price", "evaluator": {"type": "regex", "config": {"pattern": r"\$\d+"}}},
        ])

        assert criterion.evaluator.type == EvaluatorType.REGEX
        assert criterion.evaluator.config["pattern"] == r"\$\d+"

    def test_function_evaluator(self):
        [criterion] = normalise_criteria([
            {"name": "Asks", "evaluatorType": "function", "functionName": "asks_question"},
        ])

        assert criterion.evaluator.type == EvaluatorType.FUNCTION
        assert criterion.evaluator.config == {"function_name": "asks_question", "params": {}}

    def test_unknown_evaluator_and_type_default_to_judged(self):
        [criterion] = normalise_criteria([{"name": "Vibes", "evaluatorType": "magic", "type": "vibes"}])

        assert criterion.evaluator.type == EvaluatorType.LLM
        assert criterion.type == CriteriaType.CUSTOM_JUDGED

    @pytest.mark.parametrize("raw_type,expected", [
        ("includes", CriteriaType.CONTAINS),
        ("not_contains", CriteriaType.NOT_CONTAINS),
        ("Action Taken", CriteriaType.ACTION_TAKEN),
        ("info-collected", CriteriaType.INFORMATION_COLLECTED),
    ])
    def test_criteria_type_synonyms(self, raw_type, expected):
        [criterion] = normalise_criteria([{"name": "X", "type": raw_type}])
        assert criterion.type == expected


class TestTestCases:
    def test_generated_case_is_normalised(self):
        raw = generated_case("Book a cleaning", keywords=["cleaning"])
        raw["category"] = "happy-path"
        raw["tags"] = "booking"

        test_case = normalise_test_case(raw, "suite-x", TestCategory.EDGE_CASE)

        assert test_case.suite_id == "suite-x"
        assert test_case.category == TestCategory.EDGE_CASE
        assert test_case.priority == Priority.HIGH
        assert test_case.tags == ["booking"]
        assert test_case.user_turns == ["I want to book an appointment"]
        assert test_case.conversation_script[1].role == TurnRole.EXPECTED_AGENT
        assert test_case.success_criteria[0].evaluator.config["keywords"] == ["cleaning"]
        validate_test_case(test_case)

    @pytest.mark.parametrize("raw", [{}, "garbage", None])
    def test_empty_input_still_gives_a_valid_case(self, raw):
        test_case = normalise_test_case(raw, "suite-x", TestCategory.ADVERSARIAL)

        assert test_case.name == "Unnamed Test"
        assert test_case.priority == Priority.MEDIUM
        assert test_case.user_turns == ["Hello"]
        validate_test_case(test_case)

    def test_messy_case_passes_validation(self):
        raw = {
            "name": "Messy",
            "priority": "URGENT",
            "conversation": [
                {"speaker": "assistant", "message": "Hi!"},
                {"from": "caller", "text": "Book me in"},
                {"role": "bot"},
            ],
            "criteria": [
                {"name": "A", "weight": "0.3", "required": True},
                {"name": "B", "weight": 5, "evaluatorType": "keyword", "keyword": "book"},
                {"name": "C", "weight": False},
            ],
        }

        test_case = normalise_test_case(raw, "suite-x", TestCategory.EDGE_CASE)

        assert test_case.priority == Priority.MEDIUM
        assert test_case.total_weight == pytest.approx(1.0)
        validate_test_case(test_case)


class TestExtractRawCases:
    def test_bare_list(self):
        assert extract_raw_cases([{"name": "a"}]) == [{"name": "a"}]

    @pytest.mark.parametrize("key", ["testCases", "test_cases", "tests", "cases"])
    def test_wrapped_list(self, key):
        assert extract_raw_cases({key: [{"name": "a"}, {"name": "b"}]}) == [{"name": "a"}, {"name": "b"}]

    def test_single_case_object(self):
        raw = {"name": "one", "conversationScript": []}
        assert extract_raw_cases(raw) == [raw]

    @pytest.mark.parametrize("data", [{"unrelated": 1}, "text", None])
    def test_nothing_usable(self, data):
        assert extract_raw_cases(data) == []
