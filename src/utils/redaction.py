"""Secret redaction utility for safe logging and job log persistence.

Platform credentials are cookies and API keys, and both have a habit of
showing up inside HTTP error messages (request URLs carry the Steam key,
cookie headers carry SESSDATA). Everything written to the job table or to
logs passes through here first.
"""

import re

# Substring patterns matched case-insensitively against dict keys
_DEFAULT_SENSITIVE_PATTERNS = frozenset({
    "secret", "token", "password", "api_key", "apikey",
    "credential", "cookie", "sessdata", "bili_jct", "buvid",
    "authorization",
})

# Keys whose entire value is redacted (regardless of content type)
_CONTAINER_KEYS = frozenset({"credentials", "headers", "cookies"})

_REDACTED = "***REDACTED***"


def _is_sensitive_key(key: str, sensitive_patterns: frozenset[str]) -> bool:
    key_lower = key.lower()
    return any(pattern in key_lower for pattern in sensitive_patterns)


def redact_for_logging(
    obj: dict,
    sensitive_patterns: frozenset[str] = _DEFAULT_SENSITIVE_PATTERNS,
) -> dict:
    """Redact sensitive values from a dict for safe logging.

    Args:
        obj: Dict to redact (not mutated, a copy is returned).
        sensitive_patterns: Substring patterns whose matching keys' values
            should be replaced. Matching is case-insensitive.

    Returns:
        New dict with sensitive values replaced by '***REDACTED***'.
    """
    result = {}
    for key, value in obj.items():
        if key.lower() in _CONTAINER_KEYS or _is_sensitive_key(key, sensitive_patterns):
            result[key] = _REDACTED
        elif isinstance(value, dict):
            result[key] = redact_for_logging(value, sensitive_patterns)
        elif isinstance(value, list):
            result[key] = [
                redact_for_logging(item, sensitive_patterns) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            result[key] = value
    return result


# Handles: key=value (including URL query params), Cookie: <header>,
# "key": "value" and key = "quoted value".
_SENSITIVE_KEYWORDS = (
    r"sessdata|bili_jct|buvid3|dbcl2|ck|key|api_key|secret|token|password"
)
_SENSITIVE_VALUE_PATTERNS = re.compile(
    r"(?i)"
    r"(?:"
    # Cookie: <whole header value>
    r"Cookie\s*:\s*[^\r\n]+"
    r"|"
    # JSON-style "key": "value"
    r'"(?:' + _SENSITIVE_KEYWORDS + r')"\s*:\s*"[^"]*"'
    r"|"
    # key = "quoted value"
    r"\b(?:" + _SENSITIVE_KEYWORDS + r")\s*[=:]\s*\"[^\"]*\""
    r"|"
    # key=value, stops at whitespace, '&' or ';'
    r"\b(?:" + _SENSITIVE_KEYWORDS + r")\s*=\s*[^\s&;]+"
    r")",
)


def sanitize_error_message(msg: str | None, max_length: int = 2000) -> str | None:
    """Sanitize an error message for safe DB persistence.

    Redacts sensitive-looking key=value pairs and cookie headers, then
    truncates to max_length.

    Args:
        msg: Error message to sanitize (None passes through).
        max_length: Maximum length of the sanitized message.

    Returns:
        Sanitized and truncated message, or None.
    """
    if msg is None:
        return None
    sanitized = _SENSITIVE_VALUE_PATTERNS.sub(_REDACTED, msg)
    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length - 3] + "..."
    return sanitized
