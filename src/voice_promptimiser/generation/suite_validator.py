from voice_promptimiser.core.errors import ValidationError
from voice_promptimiser.core.suite_entities import (
    REQUIRED_MIN_WEIGHT,
    WEIGHT_SUM_TOLERANCE,
    TestCase,
    TestSuite,
    TurnRole,
)


def validate_test_case(test_case: TestCase, path: str = "test_case") -> None:
    """Raise ValidationError if the test case breaks a data-model invariant."""
    if not test_case.name.strip():
        raise ValidationError(f"{path}.name", "name must not be empty")

    if not test_case.conversation_script:
        raise ValidationError(f"{path}.conversation_script", "script must not be empty")
    if test_case.conversation_script[0].role != TurnRole.USER:
        raise ValidationError(f"{path}.conversation_script[0].role", "first turn must be a user turn")
    if not test_case.user_turns:
        raise ValidationError(f"{path}.conversation_script", "script has no user turns")

    if not test_case.success_criteria:
        raise ValidationError(f"{path}.success_criteria", "at least one success criterion is required")

    for i, criterion in enumerate(test_case.success_criteria):
        criterion_path = f"{path}.success_criteria[{i}]"
        if not 0.0 <= criterion.weight <= 1.0:
            raise ValidationError(f"{criterion_path}.weight", f"weight {criterion.weight} is outside [0, 1]")
        if criterion.required and criterion.weight < REQUIRED_MIN_WEIGHT:
            raise ValidationError(
                f"{criterion_path}.weight",
                f"required criterion '{criterion.name}' needs weight >= {REQUIRED_MIN_WEIGHT}, got {criterion.weight}",
            )

    total = test_case.total_weight
    if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
        raise ValidationError(f"{path}.success_criteria", f"criteria weights sum to {total:.3f}, expected 1.0")


def validate_suite(suite: TestSuite) -> None:
    if not suite.test_cases:
        raise ValidationError("test_cases", "a suite needs at least one test case")

    seen: set[str] = set()
    for i, test_case in enumerate(suite.test_cases):
        path = f"test_cases[{i}]"
        if test_case.suite_id != suite.id:
            raise ValidationError(f"{path}.suite_id", "test case belongs to a different suite")
        if test_case.name in seen:
            raise ValidationError(f"{path}.name", f"duplicate test case name '{test_case.name}'")
        seen.add(test_case.name)
        validate_test_case(test_case, path)
