"""
Kernel Query Expressions
========================

Python expressions evaluated inside the kernel (as ``user_expressions``) to
answer name-listing and inspection requests without touching the user's
namespace.

Each expression evaluates to a JSON string; the kernel returns its repr as
``text/plain``.
"""

# Scope target used when completing at top level
GLOBAL_SCOPE = "globals()"

_GLOBAL_NAMES_EXPRESSION = (
    "__import__('json').dumps({"
    "'names': sorted(set(globals()) | set(dir(__import__('builtins')))), "
    "'keys': []"
    "})"
)

_NAMES_EXPRESSION = (
    "(lambda o: __import__('json').dumps({{"
    "'names': sorted(dir(o)), "
    "'keys': sorted(k for k in o if isinstance(k, str)) "
    "if isinstance(o, __import__('collections.abc').abc.Mapping) else []"
    "}}))({scope})"
)

_INSPECTION_EXPRESSION = (
    "(lambda o: __import__('json').dumps({{"
    "'string': repr(o), "
    "'type': type(o).__name__, "
    "'constructorList': [c.__name__ for c in "
    "(o.__mro__ if isinstance(o, type) else type(o).__mro__)], "
    "'length': len(o) if isinstance(o, __import__('collections.abc').abc.Sized) else None"
    "}}, default=str))({code})"
)


def names_expression(scope: str) -> str:
    """Expression listing the attribute names of ``scope`` and, for a mapping, its string keys."""
    if scope == GLOBAL_SCOPE:
        return _GLOBAL_NAMES_EXPRESSION
    return _NAMES_EXPRESSION.format(scope=scope)


def inspection_expression(code: str) -> str:
    """Expression describing the value of ``code``."""
    return _INSPECTION_EXPRESSION.format(code=code)
