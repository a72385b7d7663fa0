"""Factories for suites, evaluations and generator payloads used across tests."""

import uuid
from typing import Any, Dict, List, Optional

from voice_promptimiser.core.eval_entities import (
    BatchResult,
    CriterionResult,
    Evaluation,
    PerformanceMetrics,
    Transcript,
    TranscriptTurn,
)
from voice_promptimiser.core.suite_entities import (
    ConversationTurn,
    CriteriaType,
    EvaluatorConfig,
    EvaluatorType,
    SuccessCriterion,
    SuiteStatus,
    TestCase,
    TestCategory,
    TestSuite,
    TurnRole,
)


def make_criterion(
    name: str = "Helpful",
    weight: float = 1.0,
    required: bool = False,
    evaluator: Optional[EvaluatorConfig] = None,
    criteria_type: CriteriaType = CriteriaType.CUSTOM_JUDGED,
) -> SuccessCriterion:
    return SuccessCriterion(
        id=str(uuid.uuid4()),
        name=name,
        description=f"{name} description",
        type=criteria_type,
        evaluator=evaluator or EvaluatorConfig(EvaluatorType.LLM, {"prompt": f"Is the agent {name.lower()}?"}),
        weight=weight,
        required=required,
    )


def keyword_criterion(
    keywords: List[str],
    name: str = "Mentions keyword",
    weight: float = 1.0,
    required: bool = False,
    criteria_type: CriteriaType = CriteriaType.CONTAINS,
) -> SuccessCriterion:
    return make_criterion(
        name=name,
        weight=weight,
        required=required,
        evaluator=EvaluatorConfig(EvaluatorType.KEYWORD, {"keywords": keywords, "match_all": False}),
        criteria_type=criteria_type,
    )


def make_test_case(
    name: str = "Book a cleaning",
    user_turns: Optional[List[str]] = None,
    criteria: Optional[List[SuccessCriterion]] = None,
    suite_id: str = "suite-1",
    category: TestCategory = TestCategory.HAPPY_PATH,
    expected: Optional[List[str]] = None,
) -> TestCase:
    script = []
    for i, turn in enumerate(user_turns or ["I'd like to book a cleaning"]):
        script.append(ConversationTurn(TurnRole.USER, turn))
        if expected and i < len(expected):
            script.append(ConversationTurn(TurnRole.EXPECTED_AGENT, expected[i]))
    return TestCase(
        id=str(uuid.uuid4()),
        suite_id=suite_id,
        name=name,
        description=f"{name} scenario",
        category=category,
        conversation_script=script,
        success_criteria=criteria if criteria is not None else [make_criterion()],
    )


def make_suite(test_cases: Optional[List[TestCase]] = None, agent_id: str = "agent-1", suite_id: str = "suite-1") -> TestSuite:
    cases = test_cases if test_cases is not None else [make_test_case()]
    for case in cases:
        case.suite_id = suite_id
    return TestSuite(
        id=suite_id,
        agent_id=agent_id,
        name="Test Suite",
        description="Suite for tests",
        test_cases=cases,
        status=SuiteStatus.ACTIVE,
    )


def make_evaluation(score: float, name: str = "case") -> Evaluation:
    return Evaluation(
        test_case_id=f"id-{name}",
        test_case_name=name,
        criteria_results=[CriterionResult("c1", "Helpful", score >= 0.7, score, f"{name} reasoning")],
        overall_score=score,
        metrics=PerformanceMetrics.uniform(score),
        reasoning=f"{name} reasoning",
        confidence=0.85,
        transcript=Transcript([TranscriptTurn("user", "hi"), TranscriptTurn("assistant", "hello")], "conv-1"),
    )


def make_batch(scores: List[float], prompt: str = "") -> BatchResult:
    return BatchResult([make_evaluation(s, f"case-{i}") for i, s in enumerate(scores)], prompt=prompt)


def judge_json(
    relevance: Any = 0.8,
    accuracy: Any = 0.8,
    completeness: Any = 0.8,
    helpfulness: Any = 0.8,
    reasoning: Any = "Reasonable answer",
    passed: Any = True,
) -> Dict[str, Any]:
    return {
        "passed": passed,
        "score": 0.5,
        "reasoning": reasoning,
        "metrics": {
            "relevance": relevance,
            "accuracy": accuracy,
            "completeness": completeness,
            "helpfulness": helpfulness,
        },
    }


def analysis_json(intents: int = 3, constraints: int = 2) -> Dict[str, Any]:
    return {
        "intents": [f"intent {i}" for i in range(1, intents + 1)],
        "constraints": [f"constraint {i}" for i in range(1, constraints + 1)],
        "expectedBehaviors": ["greet the caller", "confirm details"],
        "dataToCollect": ["name", "email"],
        "tone": "friendly",
        "summary": "Dental clinic scheduling agent",
    }


def generated_case(
    name: str,
    user_turn: str = "I want to book an appointment",
    keywords: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """A test case as a generator returns it: camelCase keys, keyword criterion."""
    return {
        "name": name,
        "description": f"{name} description",
        "priority": "high",
        "conversationScript": [
            {"role": "user", "content": user_turn},
            {"role": "agent", "content": "Helpful reply"},
        ],
        "successCriteria": [
            {
                "name": "Mentions key detail",
                "description": "The agent mentions the key detail",
                "type": "contains",
                "evaluatorType": "keyword",
                "keywords": keywords or ["service"],
                "weight": 1.0,
                "required": True,
            }
        ],
    }


def insights_json(description: str = "Agent lacks clinic details") -> Dict[str, Any]:
    return {
        "failurePatterns": [
            {
                "description": description,
                "affectedTestCases": ["case-0"],
                "frequency": 0.5,
                "severity": "high",
                "suggestedFix": "Add the clinic's services and hours",
            }
        ],
        "recommendations": ["Add services and prices", "Add working hours"],
        "prioritizedFixes": ["services", "hours"],
    }


def proposal_json(prompt: str, description: str = "Added clinic details") -> Dict[str, Any]:
    return {
        "optimizedPrompt": prompt,
        "changes": [
            {
                "type": "addition",
                "description": description,
                "targetedFailure": "Agent lacks clinic details",
                "before": None,
                "after": "Clinic details section",
            }
        ],
        "explanation": "Gave the agent the facts it was missing",
    }


# Satisfies every quality check of the built-in dental scenario.
RICH_DENTAL_PROMPT = (
    "You are the receptionist for Bright Smile Dental Clinic. "
    "Services and prices: cleaning $99, whitening $299, filling $150-$300, "
    "vaccination (flu shot $25, COVID vaccine free). "
    "Hours: Monday to Friday 8:00 AM to 6:00 PM, Saturday 9:00 AM to 2:00 PM. "
    "We are closed on Sunday and on every holiday, including New Year's Day. "
    "Always collect an email address to confirm the appointment. "
    "Reject invalid dates: February has only 28 or 29 days. "
    "If a request is ambiguous, ask a clarifying question about what type of appointment is needed."
)
