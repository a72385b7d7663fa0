"""Exception hierarchy for the test-generation / judging / optimisation pipeline."""


class PromptimiserError(Exception):
    """Base exception for all voice-promptimiser errors."""

    pass


class GenerationError(PromptimiserError):
    """An upstream generation call exhausted its retries or failed with a fatal 4xx.

    Attributes:
        status_code: HTTP status of the last failure, if one was known
        attempts: Number of attempts made before giving up
    """

    def __init__(self, message: str, status_code: int | None = None, attempts: int = 0):
        self.status_code = status_code
        self.attempts = attempts
        super().__init__(message)


class RateLimited(GenerationError):
    """The generator kept answering 429 after every permitted rate-limit wait."""

    def __init__(self, message: str, retry_after: float, waits: int):
        self.retry_after = retry_after
        self.waits = waits
        super().__init__(message, status_code=429, attempts=waits)


class ParseError(PromptimiserError):
    """A generation succeeded but its output was not valid structured data."""

    def __init__(self, message: str, raw: str = ""):
        self.raw = raw
        super().__init__(message)


class ValidationError(PromptimiserError):
    """A normalised test case or suite violates a data-model invariant.

    Attributes:
        field: Dotted path of the offending field (e.g. "test_cases[2].success_criteria")
    """

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"Validation error in '{field}': {message}")


class TargetAgentError(PromptimiserError):
    """The target agent could not be reached or rejected a request."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class AuditViolation(PromptimiserError):
    """Attempt to delete an applied optimisation record, make an invalid status
    transition, or regress a persisted best score."""

    pass


class NotFoundError(PromptimiserError):
    """A requested suite, agent or record does not exist."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class RunAlreadyActive(PromptimiserError):
    """An optimisation loop is already running for this agent."""

    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"An optimisation run is already active for agent {agent_id}")


class RunCancelled(PromptimiserError):
    """Raised inside a run when the caller's cancellation token fires."""

    pass


class OptimisationAborted(PromptimiserError):
    """An optimisation run stopped because a pipeline stage failed.

    Attributes:
        stage: Pipeline stage that failed (initial_run, insights, optimize, apply, rerun, restore)
        error: The underlying GenerationError, ParseError, TargetAgentError or NotFoundError
    """

    def __init__(self, stage: str, error: Exception):
        self.stage = stage
        self.error = error
        self.result = None  # OptimisationResult describing the run up to the failure, set by the loop
        super().__init__(f"Optimisation aborted during '{stage}': {type(error).__name__}: {error}")

    @property
    def error_kind(self) -> str:
        return type(self.error).__name__
