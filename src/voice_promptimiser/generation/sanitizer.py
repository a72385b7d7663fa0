import re

FILTERED_TOKEN = "[FILTERED]"

INJECTION_PATTERNS: list[re.Pattern] = [
    re.compile(r"ignore\s+(all\s+)?(previous|above|prior)\s+(instructions?|prompts?)", re.IGNORECASE),
    re.compile(r"disregard\s+(all\s+)?(previous|above|prior)", re.IGNORECASE),
    re.compile(r"forget\s+(everything|all)", re.IGNORECASE),
    re.compile(r"you\s+are\s+now", re.IGNORECASE),
    re.compile(r"new\s+instructions?:", re.IGNORECASE),
    re.compile(r"system\s*:\s*", re.IGNORECASE),
    re.compile(r"\[INST\]", re.IGNORECASE),
    re.compile(r"<<SYS>>", re.IGNORECASE),
]

# Everything below 0x20 except tab, newline and carriage return, plus DEL.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")


def sanitize(text: str | None) -> str:
    """Neutralise prompt-injection phrases and strip control characters.

    Never fails: None becomes an empty string and clean text comes back unchanged.
    """
    if not text:
        return ""
    # Strip control characters before matching; they can split an injection phrase.
    sanitized = _CONTROL_CHARS.sub("", text)
    for pattern in INJECTION_PATTERNS:
        sanitized = pattern.sub(FILTERED_TOKEN, sanitized)
    return sanitized


def sanitize_lines(items: list[str] | None) -> list[str]:
    return [sanitize(item) for item in items or []]
