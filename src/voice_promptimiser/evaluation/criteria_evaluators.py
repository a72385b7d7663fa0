"""Scoring for the evaluator kinds that need no generator call: regex, keyword and named functions.

Each scorer looks only at the agent's replies in the transcript.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable

from voice_promptimiser.core.eval_entities import Transcript
from voice_promptimiser.core.suite_entities import CriteriaType, EvaluatorType, SuccessCriterion

logger = logging.getLogger(__name__)

_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}


@dataclass
class LocalScore:
    passed: bool
    score: float
    reasoning: str


EvaluatorFunction = Callable[[Transcript, dict[str, Any]], LocalScore]


class FunctionRegistry:
    """Named evaluator functions a `function` criterion can refer to."""

    def __init__(self):
        self._functions: dict[str, EvaluatorFunction] = {}

    def register(self, name: str, fn: EvaluatorFunction | None = None):
        """Register directly, or use as a decorator: `@registry.register("name")`."""
        if fn is not None:
            self._functions[name] = fn
            return fn

        def decorator(func: EvaluatorFunction) -> EvaluatorFunction:
            self._functions[name] = func
            return func

        return decorator

    def get(self, name: str) -> EvaluatorFunction | None:
        return self._functions.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._functions

    @property
    def names(self) -> list[str]:
        return sorted(self._functions)


def _agent_text(transcript: Transcript) -> str:
    return "\n".join(transcript.agent_replies)


def _asks_question(transcript: Transcript, params: dict[str, Any]) -> LocalScore:
    asked = any("?" in reply for reply in transcript.agent_replies)
    return LocalScore(
        passed=asked,
        score=1.0 if asked else 0.0,
        reasoning="Agent asked a question" if asked else "Agent never asked a question",
    )


def _response_length(transcript: Transcript, params: dict[str, Any]) -> LocalScore:
    max_words = int(params.get("max_words", 120))
    min_words = int(params.get("min_words", 1))
    lengths = [len(reply.split()) for reply in transcript.agent_replies]
    bad = [n for n in lengths if n < min_words or n > max_words]
    score = 1.0 - len(bad) / len(lengths) if lengths else 0.0
    return LocalScore(
        passed=not bad and bool(lengths),
        score=score,
        reasoning=f"{len(lengths) - len(bad)}/{len(lengths)} replies within {min_words}-{max_words} words",
    )


def _collected_email(transcript: Transcript, params: dict[str, Any]) -> LocalScore:
    asked = bool(re.search(r"\be-?mail\b", _agent_text(transcript), re.IGNORECASE))
    return LocalScore(
        passed=asked,
        score=1.0 if asked else 0.0,
        reasoning="Agent asked for an email address" if asked else "Agent did not ask for an email address",
    )


def default_registry() -> FunctionRegistry:
    registry = FunctionRegistry()
    registry.register("asks_question", _asks_question)
    registry.register("response_length", _response_length)
    registry.register("collected_email", _collected_email)
    return registry


def _compile(config: dict[str, Any]) -> re.Pattern | None:
    pattern = config.get("pattern")
    if not isinstance(pattern, str) or not pattern:
        return None
    flags = 0
    for char in str(config.get("flags", "")):
        flags |= _REGEX_FLAGS.get(char.lower(), 0)
    try:
        return re.compile(pattern, flags)
    except re.error:
        return None


def can_score_locally(criterion: SuccessCriterion, registry: FunctionRegistry) -> bool:
    """False means the criterion must go to the judge."""
    kind = criterion.evaluator.type
    config = criterion.evaluator.config
    if kind == EvaluatorType.REGEX:
        return _compile(config) is not None
    if kind == EvaluatorType.KEYWORD:
        return bool(config.get("keywords"))
    if kind == EvaluatorType.FUNCTION:
        return config.get("function_name") in registry
    return False


def score_locally(criterion: SuccessCriterion, transcript: Transcript, registry: FunctionRegistry) -> LocalScore:
    kind = criterion.evaluator.type
    config = criterion.evaluator.config
    negate = criterion.type == CriteriaType.NOT_CONTAINS

    if kind == EvaluatorType.REGEX:
        pattern = _compile(config)
        if pattern is None:
            raise ValueError(f"Criterion '{criterion.name}' has no usable regex pattern")
        matched = bool(pattern.search(_agent_text(transcript)))
        passed = not matched if negate else matched
        verb = "matched" if matched else "did not match"
        return LocalScore(passed=passed, score=1.0 if passed else 0.0, reasoning=f"Pattern /{pattern.pattern}/ {verb}")

    if kind == EvaluatorType.KEYWORD:
        keywords = [str(k) for k in config.get("keywords", [])]
        if not keywords:
            raise ValueError(f"Criterion '{criterion.name}' has no keywords")
        text = _agent_text(transcript).lower()
        found = [k for k in keywords if k.lower() in text]

        if negate:
            score = 1.0 - len(found) / len(keywords)
            passed = not found
        elif config.get("match_all"):
            score = len(found) / len(keywords)
            passed = len(found) == len(keywords)
        else:
            passed = bool(found)
            score = 1.0 if passed else 0.0
        return LocalScore(
            passed=passed,
            score=score,
            reasoning=f"Found {len(found)}/{len(keywords)} keywords: {', '.join(found) or 'none'}",
        )

    if kind == EvaluatorType.FUNCTION:
        name = config.get("function_name")
        fn = registry.get(name)
        if fn is None:
            raise ValueError(f"Unknown evaluator function '{name}'")
        result = fn(transcript, dict(config.get("params", {})))
        return LocalScore(passed=result.passed, score=max(0.0, min(1.0, result.score)), reasoning=result.reasoning)

    raise ValueError(f"Criterion '{criterion.name}' needs the judge, not a local evaluator")
