"""
Logging utilities for safe log output.

Channel names, playlist lines and stream URLs all come from third-party
feeds. They can carry newlines that forge log entries (CWE-117) and query
strings that carry access tokens or DRM material. This module provides:

- a LogRecord factory that escapes CR/LF in log arguments, installed once
  at startup via install_safe_logging();
- redact_url(), which masks credential-like query parameters before a
  URL is written to the log.
"""

import logging
import re
from urllib.parse import urlsplit, urlunsplit, parse_qsl, urlencode

_ORIGINAL_FACTORY = logging.getLogRecordFactory()

# Query parameter names whose values never reach the log
_SECRET_PARAM_RE = re.compile(
    r"(token|key|auth|pass|password|secret|signature|sig|hdnts|hdnea|session|sid)",
    re.IGNORECASE,
)
_REDACTED = "***"


def _sanitize_value(value):
    """Strip newlines and carriage returns from a value for safe logging."""
    if isinstance(value, str):
        return value.replace('\r\n', '\\r\\n').replace('\r', '\\r').replace('\n', '\\n')
    return value


def _safe_record_factory(*args, **kwargs):
    """LogRecord factory that sanitizes args to prevent log injection."""
    record = _ORIGINAL_FACTORY(*args, **kwargs)
    if record.args:
        if isinstance(record.args, dict):
            record.args = {k: _sanitize_value(v) for k, v in record.args.items()}
        elif isinstance(record.args, tuple):
            record.args = tuple(_sanitize_value(a) for a in record.args)
    return record


def install_safe_logging():
    """
    Install a global LogRecord factory that sanitizes all log arguments.

    Call once during application startup, before any logging occurs.
    """
    logging.setLogRecordFactory(_safe_record_factory)


def redact_url(url, max_length: int = 120) -> str:
    """
    Return a log-safe rendition of a URL.

    Credential-like query values are replaced with '***', userinfo is
    dropped, and the result is truncated to max_length characters.
    Non-string input is rendered with repr() so callers can pass whatever
    a feed handed them.
    """
    if not isinstance(url, str):
        return repr(url)

    try:
        parts = urlsplit(url)
    except ValueError:
        return url[:max_length]

    netloc = parts.netloc.rsplit("@", 1)[-1]
    query = parts.query
    if query:
        pairs = parse_qsl(query, keep_blank_values=True)
        query = urlencode(
            [(k, _REDACTED if _SECRET_PARAM_RE.search(k) else v) for k, v in pairs],
            safe="*",
        )

    safe = urlunsplit((parts.scheme, netloc, parts.path, query, ""))
    if len(safe) > max_length:
        return safe[:max_length] + "..."
    return safe
