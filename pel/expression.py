"""
Expression Parser
=================

Finds the property-access fragment that ends at a cursor position, so that
completion and inspection know which object to query and which member name
is being typed.

Supported shapes (``|`` marks the cursor)::

    fo|              bare identifier
    foo.ba|          attribute access
    foo["ba|         subscript with a string key (either quote)
    a.b['c'].d|      any chain of the above as scope

Calls and parenthesised expressions are not parsed; ``f().x|`` yields None.
"""

import re
from dataclasses import dataclass
from typing import Optional

_WHITESPACE_RE = re.compile(r"\s")

_SIMPLE_IDENTIFIER_RE = re.compile(r"[^\W\d]\w*\Z")

_COMPLEX_IDENTIFIER_RE = re.compile(
    r"[^\W\d]\w*(?:\.[^\W\d]\w*|\[\".*\"\]|\['.*'\])*\Z"
)

# (left operator, right operator) pairs, longest first
_SUBSCRIPT_OPERATORS = (('["', '"]'), ("['", "']"))


@dataclass(frozen=True)
class Expression:
    """Parsed fragment, e.g. for ``foo["bar|``:

    matched_text=``foo["bar``, scope=``foo``, left_op=``["``,
    selector=``bar``, right_op=``"]``.
    """

    matched_text: str = ""
    scope: str = ""
    left_op: str = ""
    selector: str = ""
    right_op: str = ""


def parse_expression(code: str, cursor_pos: int) -> Optional[Expression]:
    """Parse the expression that ends at ``cursor_pos``.

    Returns:
        An Expression (all fields empty when there is nothing to the left of
        the cursor), or None when an access operator is present but the text
        before it is not a plain identifier chain.
    """
    text = code[:cursor_pos]
    if not text or _WHITESPACE_RE.match(text[-1]):
        return Expression()

    selector = ""
    match = _SIMPLE_IDENTIFIER_RE.search(text)
    if match is not None:
        selector = match.group(0)
        text = text[: match.start()]

    if text.endswith("."):
        left_op, right_op = ".", ""
    else:
        for left_op, right_op in _SUBSCRIPT_OPERATORS:
            if text.endswith(left_op):
                break
        else:
            return Expression(
                matched_text=code[len(text):cursor_pos],
                selector=selector,
            )
    text = text[: len(text) - len(left_op)]

    match = _COMPLEX_IDENTIFIER_RE.search(text)
    if match is None:
        return None

    return Expression(
        matched_text=code[match.start():cursor_pos],
        scope=match.group(0),
        left_op=left_op,
        selector=selector,
        right_op=right_op,
    )
