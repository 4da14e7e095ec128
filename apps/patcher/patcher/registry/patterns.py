"""Compile verification patterns into Python regular expressions.

`grep` patterns use POSIX basic regular expression syntax, as the shell
checks they come from did (`grep -q "SystemPrompt.custom()))" file`). In a
BRE `( ) { } | + ?` are literal characters and their backslashed forms are
the operators; Python's `re` has it the other way round, so grep patterns
are translated before compiling.
"""

import re
from typing import Optional

from patcher.registry.types import MatchType

# Characters that are literal in a BRE but special in Python.
_BRE_LITERALS = set("(){}|+?")

# POSIX character classes usable inside bracket expressions.
_POSIX_CLASSES = {
    "[:alpha:]": "a-zA-Z",
    "[:digit:]": "0-9",
    "[:alnum:]": "a-zA-Z0-9",
    "[:upper:]": "A-Z",
    "[:lower:]": "a-z",
    "[:space:]": r" \t\n\r\f\v",
    "[:blank:]": r" \t",
    "[:xdigit:]": "0-9A-Fa-f",
    "[:punct:]": re.escape("!\"#$%&'()*+,-./:;<=>?@[\\]^_`{|}~"),
}


def translate_bre(pattern: str) -> str:
    """Rewrite a POSIX basic regular expression in Python `re` syntax."""
    out: list[str] = []
    i = 0
    n = len(pattern)
    # True at the start of the pattern or of a \( group / \| branch, where
    # `^` anchors and `*` has nothing to repeat.
    expr_start = True

    while i < n:
        ch = pattern[i]

        if ch == "\\" and i + 1 < n:
            nxt = pattern[i + 1]
            i += 2
            if nxt in _BRE_LITERALS:
                out.append(nxt)
                expr_start = nxt in "(|"
            elif nxt in "<>":
                out.append(r"\b")
                expr_start = False
            else:
                out.append("\\" + nxt)
                expr_start = False
            continue

        if ch == "[":
            end, body = _bracket_expression(pattern, i)
            if end is None:
                out.append(r"\[")
                i += 1
            else:
                out.append(body)
                i = end
            expr_start = False
            continue

        if ch == "^":
            out.append("^" if expr_start else r"\^")
            i += 1
            # `^*` matches a literal star at line start.
            continue
        if ch == "$":
            out.append("$" if _at_expr_end(pattern, i + 1) else r"\$")
        elif ch == "*" and expr_start:
            out.append(r"\*")
        elif ch in _BRE_LITERALS or ch == "\\":
            out.append("\\" + ch)
        else:
            out.append(ch)
        expr_start = False
        i += 1

    return "".join(out)


def _at_expr_end(pattern: str, i: int) -> bool:
    return i == len(pattern) or pattern.startswith(("\\)", "\\|"), i)


def _bracket_expression(pattern: str, start: int) -> tuple[Optional[int], str]:
    """Translate `[...]` beginning at `start`; return (index after `]`, text)."""
    i = start + 1
    parts = ["["]
    if i < len(pattern) and pattern[i] == "^":
        parts.append("^")
        i += 1
    # A leading `]` is a literal member.
    if i < len(pattern) and pattern[i] == "]":
        parts.append(r"\]")
        i += 1

    while i < len(pattern):
        ch = pattern[i]
        if ch == "]":
            parts.append("]")
            return i + 1, "".join(parts)
        if ch == "[":
            for name, members in _POSIX_CLASSES.items():
                if pattern.startswith(name, i):
                    parts.append(members)
                    i += len(name)
                    break
            else:
                parts.append(r"\[")
                i += 1
            continue
        # Backslash is not an escape inside a BRE bracket expression, and
        # Python reserves doubled `&~|` for set operations.
        parts.append("\\" + ch if ch in "\\&~|" else ch)
        i += 1

    return None, ""


def compile_pattern(pattern: str, match_type: MatchType) -> Optional[re.Pattern]:
    """Return the compiled regex for `pattern`, or None for substring checks.

    Raises re.error for a pattern that does not compile.
    """
    if match_type is MatchType.CONTAINS:
        return None
    if match_type is MatchType.GREP:
        pattern = translate_bre(pattern)
    return re.compile(pattern, flags=re.MULTILINE)
