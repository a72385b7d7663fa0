from pydantic import BaseModel, ConfigDict


class LLMPayload(BaseModel):
    """Base class for structured payloads returned by the generator.

    Generators routinely add fields nobody asked for, so unknown keys are ignored
    rather than rejected.
    """

    model_config = ConfigDict(extra="ignore", validate_assignment=True, populate_by_name=True)
