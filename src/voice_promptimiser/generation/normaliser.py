"""Turns untrusted generator output into canonical TestCase objects.

The rules run in a fixed order and never raise on a single malformed turn or criterion:
each one either resolves a synonym or falls back to a safe default. Hard invariants are
checked afterwards by suite_validator.
"""

import logging
import re
import uuid
from typing import Any

from voice_promptimiser.core.suite_entities import (
    REQUIRED_MIN_WEIGHT,
    WEIGHT_SUM_TOLERANCE,
    ConversationTurn,
    CriteriaType,
    EvaluatorConfig,
    EvaluatorType,
    Priority,
    SuccessCriterion,
    TestCase,
    TestCategory,
    TurnRole,
)

logger = logging.getLogger(__name__)

ROLE_KEYS = ("role", "speaker", "from")
AGENT_ROLE_SYNONYMS = {"agent", "assistant", "expected-agent", "expected_agent", "bot", "ai"}
CONTENT_KEYS = ("content", "text", "message", "utterance", "input", "output")
SCRIPT_KEYS = ("conversationScript", "conversation_script", "conversation", "script", "turns")
CRITERIA_KEYS = ("successCriteria", "success_criteria", "criteria", "rubric")

GREETING = "Hello"
USER_PLACEHOLDER = "Hello"
AGENT_PLACEHOLDER = "How can I help you?"

EVALUATOR_SYNONYMS: dict[str, EvaluatorType] = {
    "regex": EvaluatorType.REGEX,
    "regexp": EvaluatorType.REGEX,
    "pattern": EvaluatorType.REGEX,
    "keyword": EvaluatorType.KEYWORD,
    "keywords": EvaluatorType.KEYWORD,
    "keyword-match": EvaluatorType.KEYWORD,
    "contains": EvaluatorType.KEYWORD,
    "function": EvaluatorType.FUNCTION,
    "fn": EvaluatorType.FUNCTION,
    "code": EvaluatorType.FUNCTION,
    "programmatic": EvaluatorType.FUNCTION,
    "llm": EvaluatorType.LLM,
    "custom-llm": EvaluatorType.LLM,
    "llm-judge": EvaluatorType.LLM,
    "judge": EvaluatorType.LLM,
    "ai": EvaluatorType.LLM,
}

CRITERIA_TYPE_SYNONYMS: dict[str, CriteriaType] = {
    "contains": CriteriaType.CONTAINS,
    "includes": CriteriaType.CONTAINS,
    "not-contains": CriteriaType.NOT_CONTAINS,
    "not_contains": CriteriaType.NOT_CONTAINS,
    "excludes": CriteriaType.NOT_CONTAINS,
    "sentiment": CriteriaType.SENTIMENT,
    "action-taken": CriteriaType.ACTION_TAKEN,
    "action_taken": CriteriaType.ACTION_TAKEN,
    "action": CriteriaType.ACTION_TAKEN,
    "information-collected": CriteriaType.INFORMATION_COLLECTED,
    "information_collected": CriteriaType.INFORMATION_COLLECTED,
    "info-collected": CriteriaType.INFORMATION_COLLECTED,
    "tone": CriteriaType.TONE,
    "custom-judged": CriteriaType.CUSTOM_JUDGED,
    "custom-llm": CriteriaType.CUSTOM_JUDGED,
    "custom": CriteriaType.CUSTOM_JUDGED,
    "llm": CriteriaType.CUSTOM_JUDGED,
}


def _new_id() -> str:
    return str(uuid.uuid4())


def _first(raw: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def _key(value: Any) -> str:
    return str(value or "").strip().lower().replace(" ", "-")


# --- turns -----------------------------------------------------------------

def normalise_role(value: Any) -> TurnRole:
    if _key(value) in AGENT_ROLE_SYNONYMS:
        return TurnRole.EXPECTED_AGENT
    return TurnRole.USER


def _role_of(raw: dict[str, Any]) -> tuple[TurnRole, str | None]:
    for key in ROLE_KEYS:
        if key in raw:
            return normalise_role(raw[key]), key
    return TurnRole.USER, None


def normalise_turn(raw: Any) -> ConversationTurn:
    """Never raises: whatever comes in, a usable turn comes out."""
    if isinstance(raw, str):
        content = raw.strip()
        return ConversationTurn(role=TurnRole.USER, content=content or USER_PLACEHOLDER)

    if not isinstance(raw, dict):
        return ConversationTurn(role=TurnRole.USER, content=str(raw).strip() if raw is not None else USER_PLACEHOLDER)

    role, role_key = _role_of(raw)

    content = ""
    for key in CONTENT_KEYS:
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            content = value.strip()
            break

    if not content:
        for key, value in raw.items():
            if key == role_key or key in ROLE_KEYS:
                continue
            if isinstance(value, str) and value.strip():
                content = value.strip()
                break

    if not content:
        content = AGENT_PLACEHOLDER if role == TurnRole.EXPECTED_AGENT else USER_PLACEHOLDER

    return ConversationTurn(role=role, content=content)


def normalise_script(raw_script: Any) -> list[ConversationTurn]:
    if isinstance(raw_script, (str, dict)):
        raw_script = [raw_script]
    if not isinstance(raw_script, list):
        raw_script = []

    script = [normalise_turn(turn) for turn in raw_script]
    if not script or script[0].role != TurnRole.USER:
        script.insert(0, ConversationTurn(role=TurnRole.USER, content=GREETING))
    return script


# --- criteria --------------------------------------------------------------

def normalise_evaluator_type(value: Any) -> EvaluatorType:
    return EVALUATOR_SYNONYMS.get(_key(value), EvaluatorType.LLM)


def normalise_criteria_type(value: Any) -> CriteriaType:
    return CRITERIA_TYPE_SYNONYMS.get(_key(value), CriteriaType.CUSTOM_JUDGED)


def _parse_weight(value: Any) -> float | None:
    """A usable weight, or None when the generator gave nothing sensible."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        weight = float(value)
    except (TypeError, ValueError):
        return None
    if weight != weight or weight < 0:
        return None
    return weight


def _keywords_from(value: Any) -> list[str]:
    if isinstance(value, str):
        return [k.strip() for k in value.split(",") if k.strip()]
    if isinstance(value, list):
        return [str(k).strip() for k in value if str(k).strip()]
    return []


def _is_compilable(pattern: Any) -> bool:
    if not isinstance(pattern, str) or not pattern:
        return False
    try:
        re.compile(pattern)
    except re.error:
        return False
    return True


def _evaluator_from(raw: dict[str, Any], description: str) -> EvaluatorConfig:
    nested = raw.get("evaluator") if isinstance(raw.get("evaluator"), dict) else {}
    nested_config = nested.get("config") if isinstance(nested.get("config"), dict) else {}
    source = {**nested_config, **{k: v for k, v in raw.items() if k != "evaluator"}}

    evaluator_type = normalise_evaluator_type(
        raw.get("evaluatorType") or raw.get("evaluator_type") or nested.get("type")
    )

    if evaluator_type == EvaluatorType.REGEX:
        pattern = source.get("pattern") or source.get("regex")
        if _is_compilable(pattern):
            return EvaluatorConfig(EvaluatorType.REGEX, {"pattern": pattern, "flags": str(source.get("flags", "i"))})
        logger.debug(f"Regex criterion without a usable pattern, judging instead: {pattern!r}")

    elif evaluator_type == EvaluatorType.KEYWORD:
        keywords = _keywords_from(source.get("keywords") or source.get("keyword"))
        if keywords:
            return EvaluatorConfig(
                EvaluatorType.KEYWORD,
                {"keywords": keywords, "match_all": bool(source.get("matchAll", source.get("match_all", False)))},
            )
        logger.debug("Keyword criterion without keywords, judging instead")

    elif evaluator_type == EvaluatorType.FUNCTION:
        function_name = source.get("functionName") or source.get("function_name") or source.get("function")
        if isinstance(function_name, str) and function_name:
            params = source.get("params") if isinstance(source.get("params"), dict) else {}
            return EvaluatorConfig(EvaluatorType.FUNCTION, {"function_name": function_name, "params": params})

    prompt = source.get("prompt") or source.get("judgeInstruction") or description
    return EvaluatorConfig(EvaluatorType.LLM, {"prompt": str(prompt), "threshold": 0.7})


def normalise_criterion(raw: Any) -> tuple[SuccessCriterion, float | None] | None:
    """Returns the criterion plus its raw weight (None when missing), or None if unusable."""
    if isinstance(raw, str) and raw.strip():
        raw = {"name": raw.strip(), "description": raw.strip()}
    if not isinstance(raw, dict):
        return None

    name = raw.get("name") or raw.get("criterion") or "Unnamed Criterion"
    description = raw.get("description") or raw.get("criterion") or name
    weight = _parse_weight(raw.get("weight"))

    criterion = SuccessCriterion(
        id=_new_id(),
        name=str(name),
        description=str(description),
        type=normalise_criteria_type(raw.get("type")),
        evaluator=_evaluator_from(raw, str(description)),
        weight=weight if weight is not None else 0.0,
        required=bool(raw.get("required", False)),
    )
    return criterion, weight


def fallback_criterion() -> SuccessCriterion:
    return SuccessCriterion(
        id=_new_id(),
        name="Response Quality",
        description="Agent provides a helpful and appropriate response",
        type=CriteriaType.CUSTOM_JUDGED,
        evaluator=EvaluatorConfig(EvaluatorType.LLM, {"prompt": "Evaluate if the response is helpful", "threshold": 0.7}),
        weight=1.0,
        required=True,
    )


def balance_weights(criteria: list[SuccessCriterion], raw_weights: list[float | None]) -> list[SuccessCriterion]:
    """Give missing weights a 1/N placeholder, then rescale so the set sums to 1.

    A required criterion left below the required minimum after rescaling is demoted.
    """
    n = len(criteria)
    if n == 0:
        return criteria

    for criterion, raw_weight in zip(criteria, raw_weights):
        criterion.weight = raw_weight if raw_weight is not None else 1.0 / n

    total = sum(c.weight for c in criteria)
    if total <= 0:
        for criterion in criteria:
            criterion.weight = 1.0 / n
    elif abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
        logger.debug(f"Rescaling criteria weights summing to {total:.3f}")
        for criterion in criteria:
            criterion.weight = criterion.weight / total

    for criterion in criteria:
        if criterion.required and criterion.weight < REQUIRED_MIN_WEIGHT:
            logger.warning(
                f"⚠️ Criterion '{criterion.name}' has weight {criterion.weight:.2f} < {REQUIRED_MIN_WEIGHT}; "
                f"marking it not required"
            )
            criterion.required = False

    return criteria


def normalise_criteria(raw_criteria: Any) -> list[SuccessCriterion]:
    if isinstance(raw_criteria, dict):
        raw_criteria = [raw_criteria]
    if not isinstance(raw_criteria, list):
        raw_criteria = []

    parsed = [p for p in (normalise_criterion(raw) for raw in raw_criteria) if p is not None]
    if not parsed:
        return [fallback_criterion()]

    criteria = [c for c, _ in parsed]
    raw_weights = [w for _, w in parsed]
    return balance_weights(criteria, raw_weights)


# --- test cases ------------------------------------------------------------

def _priority(value: Any) -> Priority:
    try:
        return Priority(_key(value))
    except ValueError:
        return Priority.MEDIUM


def _tags(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [str(t) for t in value if t is not None]
    return []


def normalise_test_case(raw: Any, suite_id: str, category: TestCategory) -> TestCase:
    if not isinstance(raw, dict):
        raw = {}

    return TestCase(
        id=_new_id(),
        suite_id=suite_id,
        name=str(raw.get("name") or "Unnamed Test").strip(),
        description=str(raw.get("description") or ""),
        category=category,
        conversation_script=normalise_script(_first(raw, SCRIPT_KEYS)),
        success_criteria=normalise_criteria(_first(raw, CRITERIA_KEYS)),
        priority=_priority(raw.get("priority")),
        tags=_tags(raw.get("tags")),
    )


def extract_raw_cases(data: Any) -> list[Any]:
    """Find the list of test cases in a generator response of any reasonable shape."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ("testCases", "test_cases", "tests", "cases"):
            if isinstance(data.get(key), list):
                return data[key]
        if any(k in data for k in SCRIPT_KEYS):
            return [data]
    return []
