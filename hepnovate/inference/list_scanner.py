"""Quote- and escape-aware scanner for string lists inside broken JSON."""

from __future__ import annotations

import re

_ESCAPES = {"n": " ", "t": " ", "r": " ", '"': '"', "\\": "\\", "/": "/"}
_CLOSERS = {",", "]", "}"}


def _closes_string(text: str, quote_index: int) -> bool:
    """A quote ends the item only when structure follows it.

    Unescaped quotes that model output leaves inside a value, as in
    ``"sign ("abbr": detail)"``, are followed by ordinary text or a colon and
    stay part of the item.
    """
    for ch in text[quote_index + 1 :]:
        if ch.isspace():
            continue
        return ch in _CLOSERS
    return True


def scan_string_list(text: str, start: int) -> list[str] | None:
    """Read list items from ``text[start]``, which must be ``[``.

    Commas inside quoted items never split them. Unquoted bare items are kept
    as trimmed text. A list cut off before its closing bracket yields whatever
    items were complete, plus a non-empty trailing quoted item.
    """
    if start >= len(text) or text[start] != "[":
        return None

    items: list[str] = []
    buf: list[str] = []
    in_string = False
    quoted = False
    depth = 0
    i = start + 1

    def flush() -> None:
        value = "".join(buf).strip()
        if not quoted:
            value = value.strip("'")
        if value:
            items.append(" ".join(value.split()))
        buf.clear()

    while i < len(text):
        ch = text[i]
        if in_string:
            if ch == "\\" and i + 1 < len(text):
                nxt = text[i + 1]
                buf.append(_ESCAPES.get(nxt, nxt))
                i += 2
                continue
            if ch == '"' and _closes_string(text, i):
                in_string = False
            else:
                buf.append(ch)
            i += 1
            continue

        if ch == '"' and depth == 0 and not "".join(buf).strip():
            in_string = True
            quoted = True
        elif ch in "[{":
            depth += 1
            buf.append(ch)
        elif ch in "]}" and depth > 0:
            depth -= 1
            buf.append(ch)
        elif ch == "," and depth == 0:
            flush()
            quoted = False
        elif ch == "]" and depth == 0:
            flush()
            return items
        elif not quoted:
            buf.append(ch)
        i += 1

    if in_string or buf:
        flush()
    return items


def find_string_list(text: str, key: str) -> list[str] | None:
    """Locate ``"key": [`` in ``text`` and scan the list that follows."""
    match = re.search(r'["\']?' + re.escape(key) + r'["\']?\s*:\s*\[', text)
    if match is None:
        return None
    return scan_string_list(text, match.end() - 1)
