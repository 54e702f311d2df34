"""Prompt fragment builders shared by the pipeline stages."""
from typing import Iterable, Optional, Sequence

from models.intent import KnownRecord
from models.message import ChatMessage


def escape_text(text: str) -> str:
    """Escape XML-like tags in user text to reduce prompt injection."""
    return text.replace("<", "&lt;").replace(">", "&gt;")


def format_history(history: Optional[Sequence[ChatMessage]]) -> str:
    if not history:
        return ""
    lines = [
        f'<message role="{msg.role}">{escape_text(msg.content)}</message>'
        for msg in history
    ]
    return "\n<history>\n" + "\n".join(lines) + "\n</history>\n"


def format_known_names(label: str, names: Iterable[str]) -> str:
    names = [escape_text(n) for n in names if n]
    if not names:
        return ""
    return f"\n{label}: {', '.join(names)}"


def format_known_records(label: str, records: Iterable[KnownRecord]) -> str:
    parts = [f"{escape_text(r.name)} (ID: {r.id})" for r in records]
    if not parts:
        return ""
    return f"\n{label}: {', '.join(parts)}"
