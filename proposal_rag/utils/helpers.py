"""Small text, time and JSON helpers shared by ingestion, answering and diagnostics."""
from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import orjson

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_TRAILING_SPACE = re.compile(r"[ \t]+\n")
_BLANK_RUNS = re.compile(r"\n{3,}")
_SPACE_RUNS = re.compile(r"[ \t]{2,}")


# --- Text -----------------------------------------------------------------------

def clean_text(text: str) -> str:
    """
    Normalise proposal text exported from word processors.

    Control characters are dropped and line endings unified before
    whitespace runs are squeezed.
    """
    text = _CONTROL_CHARS.sub("", text.replace("\r\n", "\n").replace("\r", "\n"))
    text = text.replace("\u00a0", " ")
    text = _TRAILING_SPACE.sub("\n", text)
    text = _BLANK_RUNS.sub("\n\n", text)
    text = _SPACE_RUNS.sub(" ", text)
    return text.strip()


def truncate_text(text: str, max_chars: int = 300) -> str:
    """Shorten text for table cells, ending with an ellipsis when cut."""
    if len(text) <= max_chars:
        return text
    cut = text[:max_chars]
    return cut.rsplit(" ", 1)[0].rstrip() + "..." if " " in cut else cut + "..."


def estimate_tokens(text: str) -> int:
    """Rough token estimate for English prose (about 4 characters per token)."""
    return (len(text) + 3) // 4


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- JSON files -----------------------------------------------------------------

def save_json(data: Any, path: str | Path) -> None:
    """Write data as indented JSON with orjson, creating parent folders."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(orjson.dumps(data, option=orjson.OPT_INDENT_2 | orjson.OPT_NON_STR_KEYS))


def load_json(path: str | Path) -> Any:
    return orjson.loads(Path(path).read_bytes())
