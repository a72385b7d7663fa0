import json
import re
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from voice_promptimiser.core.errors import ParseError

T = TypeVar("T", bound=BaseModel)

_FENCE_RE = re.compile(r'```(?:json|JSON)?\s*')


def strip_code_fences(response: str) -> str:
    return _FENCE_RE.sub('', response).strip()


def extract_json(response: str) -> Any:
    """Extract the JSON document from a generator response.

    Accepts:
    1. A bare JSON object or array
    2. The same wrapped in markdown code fences
    3. A JSON object/array embedded in surrounding prose (the first one found is used)

    Raises ParseError when nothing parseable is found.
    """
    if response is None or not response.strip():
        raise ParseError("Empty response, expected JSON", raw=response or "")

    cleaned = strip_code_fences(response)

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    found = _find_first_json_value(cleaned)
    if found is None:
        raise ParseError("Response did not contain valid JSON", raw=response)
    return found


def _find_first_json_value(text: str) -> Any:
    """Scan for the first decodable JSON object or array inside arbitrary text."""
    decoder = json.JSONDecoder()
    idx = 0

    while idx < len(text):
        if text[idx] not in "{[":
            idx += 1
            continue
        try:
            obj, _ = decoder.raw_decode(text, idx)
            return obj
        except json.JSONDecodeError:
            idx += 1

    return None


def parse_payload(response: str | Any, payload_class: type[T]) -> T:
    """Parse (if needed) and validate a generator response against a pydantic model."""
    data = extract_json(response) if isinstance(response, str) else response
    if not isinstance(data, dict):
        raise ParseError(
            f"Expected a JSON object for {payload_class.__name__}, got {type(data).__name__}",
            raw=response if isinstance(response, str) else json.dumps(data),
        )
    try:
        return payload_class.model_validate(data)
    except PydanticValidationError as e:
        raise ParseError(
            f"Invalid {payload_class.__name__} payload: {e.error_count()} validation error(s)",
            raw=response if isinstance(response, str) else json.dumps(data),
        ) from e
