import math
import re

from feedbackkit.errors import ValidationError

# Simple, pragmatic patterns
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def clean_str(val: str | None, max_len: int = 255) -> str | None:
    """
    Collapse whitespace, trim, enforce max length. Returns None if empty after cleaning.
    """
    if val is None:
        return None
    s = re.sub(r"\s+", " ", str(val)).strip()
    if not s:
        return None
    return s[:max_len]


def clean_text(val: str | None) -> str | None:
    """Trim only; inner newlines are kept for multi-line bodies. None if blank."""
    if val is None:
        return None
    s = str(val).strip()
    return s or None


def require_text(val, field: str, max_len: int) -> str:
    """Trimmed, non-empty and at most max_len characters, else ValidationError."""
    s = clean_text(val)
    if s is None:
        raise ValidationError(f"{field} is required", field=field)
    if len(s) > max_len:
        raise ValidationError(f"{field} must be at most {max_len} characters", field=field)
    return s


def is_valid_email(val: str | None) -> bool:
    if not val:
        return True
    return bool(_EMAIL_RE.match(val))


def normalize_email(val: str | None, field: str = "email") -> str | None:
    s = clean_str(val, max_len=320)
    if s is None:
        return None
    if not is_valid_email(s):
        raise ValidationError("Invalid email address", field=field)
    return s.lower()


def parse_bool(val, default: bool = False) -> bool:
    """Accept JSON booleans and the usual query-string spellings."""
    if val is None:
        return default
    if isinstance(val, bool):
        return val
    s = str(val).strip().lower()
    if s in _TRUE:
        return True
    if s in _FALSE:
        return False
    return default


def parse_mrr(val) -> float | None:
    if val is None or val == "":
        return None
    try:
        mrr = float(val)
    except (TypeError, ValueError):
        raise ValidationError("mrr must be a number", field="mrr")
    if not math.isfinite(mrr):
        raise ValidationError("mrr must be a finite number", field="mrr")
    if mrr < 0:
        raise ValidationError("mrr must be zero or positive", field="mrr")
    return round(mrr, 2)


def pick(data: dict, *names, default=None):
    """First present key among snake_case and camelCase spellings."""
    for name in names:
        if name in data and data[name] is not None:
            return data[name]
    return default


def json_object(data) -> dict:
    """Parsed JSON body as a dict; no body is an empty dict, anything else is a 400."""
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data
