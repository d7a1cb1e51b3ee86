"""Security utilities for SQL injection prevention."""
import re
from typing import Any, Dict, Mapping, Optional, Tuple

# ":name" placeholders; "::type" casts are skipped by the lookbehind.
NAMED_PARAMETER = re.compile(r"(?<![:\w]):([A-Za-z_][A-Za-z0-9_]*)")

SENSITIVE_PARAM_KEYS = ("password", "passwd", "secret", "token", "key")

REDACTED = "***"


def sanitize_identifier(identifier: str) -> str:
    """Quote an identifier for interpolation into SQL text.

    Embedded double quotes are doubled, following PostgreSQL's
    quoted-identifier rules. This is the only way an identifier may enter a
    statement.
    """
    return '"' + str(identifier).replace('"', '""') + '"'


def bind_named_parameters(
    query: str, params: Optional[Mapping[str, Any]] = None
) -> Tuple[str, Optional[Dict[str, Any]]]:
    """Rewrite ":name" placeholders into psycopg2's "%(name)s" style.

    Queries without parameters are returned untouched so that literal text
    (such as a quoted DEFAULT value) is never reinterpreted.
    """
    if not params:
        return query, None

    escaped = query.replace("%", "%%")
    missing = [
        name for name in NAMED_PARAMETER.findall(escaped) if name not in params
    ]
    if missing:
        raise KeyError(f"Missing query parameters: {', '.join(sorted(set(missing)))}")

    return NAMED_PARAMETER.sub(r"%(\1)s", escaped), dict(params)


def redact_params(params: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Copy parameters for logs and error context, masking secret-looking keys."""
    redacted = {}
    for key, value in (params or {}).items():
        if any(marker in key.lower() for marker in SENSITIVE_PARAM_KEYS):
            redacted[key] = REDACTED
        else:
            redacted[key] = value
    return redacted
