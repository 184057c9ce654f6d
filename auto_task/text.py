import re
from typing import List, Optional, Tuple

# -----------------------------
# Observation shaping
# -----------------------------

# NBSP-like and typographic spaces that terminals render as plain blanks.
_RE_SPACE_LIKE = re.compile(r"[\u00A0\u2007\u202F\u2000-\u200A\u205F]")
_RE_RUN = re.compile(r"[ \t]{2,}|\t")

ELISION_MARKER = "..."


def _squeeze_line(line: str) -> str:
    body = line.lstrip(" \t")
    indent = line[:len(line) - len(body)]
    return indent + _RE_RUN.sub(" ", body.rstrip(" \t"))


def compress_for_llm(s: Optional[str], max_blank_lines: int = 2) -> str:
    """
    Tighten command output before it is shown to the model.

    Line endings become LF, runs of blanks inside a line shrink to one space
    and trailing blanks go. Leading indentation is left alone because it
    carries meaning in code and YAML. At most `max_blank_lines` empty lines
    are kept in a row.
    """
    if not s:
        return ""

    s = _RE_SPACE_LIKE.sub(" ", s.replace("\r\n", "\n").replace("\r", "\n"))
    kept: List[str] = []
    blanks = 0
    for line in s.split("\n"):
        line = _squeeze_line(line)
        blanks = blanks + 1 if not line.strip() else 0
        if blanks > max_blank_lines:
            continue
        kept.append(line if blanks == 0 else "")
    return "\n".join(kept).strip("\n")


def tail_lines(s: str, limit: int) -> Tuple[str, int]:
    """
    Keep the last `limit` lines of s, prefixed with an elision marker.

    Returns the text and the number of dropped lines. A limit of 0 or less
    keeps everything.
    """
    lines = s.split("\n")
    if limit <= 0 or len(lines) <= limit:
        return s, 0

    dropped = len(lines) - limit
    kept = [f"{ELISION_MARKER} ({dropped} lines omitted)"] + lines[-limit:]
    return "\n".join(kept), dropped
