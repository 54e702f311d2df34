"""Input sanitisation helpers shared by the REST routes and the action executor."""
import re

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_valid_uuid(value) -> bool:
    return isinstance(value, str) and bool(_UUID_RE.match(value))


def sanitize_input(value: str) -> str:
    """Trim and strip angle brackets."""
    return value.strip().replace("<", "").replace(">", "")
