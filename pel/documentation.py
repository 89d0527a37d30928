"""
Builtin Documentation
=====================

Static documentation dictionary consulted by ``Session.inspect``.

Keys are ``name`` for builtins and ``Type.member`` for members a builtin type
defines itself. Lookups that miss are retried under a family key, so that
``KeyError.with_traceback`` resolves to ``BaseException.with_traceback``.
"""

import builtins
import inspect
import re
from functools import lru_cache
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

DOCS_URL = "https://docs.python.org/3/library"

# (pattern, replacement) applied to a missed name, in order
DEFAULT_FAMILY_RULES: Sequence[Tuple[str, str]] = (
    (r"^[A-Za-z]+Error\.", "BaseException."),
    (r"^[A-Za-z]+List\.", "list."),
)


class DocumentationIndex:
    """Name -> ``{description, usage?, url}`` mapping with family fallbacks."""

    def __init__(
        self,
        entries: Mapping[str, Dict[str, str]],
        family_rules: Sequence[Tuple[str, str]] = DEFAULT_FAMILY_RULES,
    ):
        self.entries = dict(entries)
        self._rules = [(re.compile(pattern), repl) for pattern, repl in family_rules]

    def lookup(self, name: str) -> Optional[Dict[str, str]]:
        if name in self.entries:
            return self.entries[name]

        for pattern, repl in self._rules:
            family_name = pattern.sub(repl, name, count=1)
            if family_name in self.entries:
                return self.entries[family_name]

        return None

    def __contains__(self, name: str) -> bool:
        return name in self.entries

    def __len__(self) -> int:
        return len(self.entries)


def _url(owner: str, obj: Any, member: Optional[str] = None) -> str:
    if isinstance(obj, type) and issubclass(obj, BaseException):
        return f"{DOCS_URL}/exceptions.html#{owner}"
    if member is not None:
        return f"{DOCS_URL}/stdtypes.html#{owner}.{member}"
    return f"{DOCS_URL}/functions.html#{owner}"


def _entry(name: str, obj: Any, doc: str, url: str) -> Dict[str, str]:
    entry = {"description": doc, "url": url}
    try:
        entry["usage"] = f"{name}{inspect.signature(obj)}"
    except (TypeError, ValueError):
        pass
    return entry


@lru_cache(maxsize=1)
def builtin_index() -> DocumentationIndex:
    """Build (once) the documentation index of the ``builtins`` module."""
    entries: Dict[str, Dict[str, str]] = {}
    for name, obj in vars(builtins).items():
        if name.startswith("_"):
            continue
        doc = inspect.getdoc(obj)
        if not doc:
            continue
        entries[name] = _entry(name, obj, doc, _url(name, obj))

        if not isinstance(obj, type):
            continue
        for member_name, member in vars(obj).items():
            if member_name.startswith("_"):
                continue
            member_doc = inspect.getdoc(member)
            if member_doc:
                qualified = f"{name}.{member_name}"
                entries[qualified] = _entry(
                    qualified, member, member_doc, _url(name, obj, member_name)
                )
    return DocumentationIndex(entries)


def get_documentation(name: str) -> Optional[Dict[str, str]]:
    """Look ``name`` up in the builtin documentation index."""
    return builtin_index().lookup(name)
