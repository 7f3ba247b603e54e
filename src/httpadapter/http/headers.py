"""
Case-insensitive, read-only header mapping for inbound requests.

HTTP header names are case-insensitive (RFC 7230 section 3.2), so the
parser normalizes names to lowercase once and every lookup folds the key
the same way:

    headers = Headers([("Content-Type", "text/html"), ("X-Id", "1")])
    headers["content-type"]   # "text/html"
    headers["CONTENT-TYPE"]   # "text/html"
    list(headers)             # ["content-type", "x-id"]

Repeated fields are combined with ", " in arrival order, which is the
equivalent single-field form the RFC allows.
"""

from collections.abc import Mapping
from typing import Iterable, Iterator, Optional, Tuple, Union


HeaderSource = Union[Mapping, Iterable[Tuple[str, str]], None]


class Headers(Mapping):
    """
    Immutable mapping of lowercase header name → value.

    Only the ``Mapping`` read API is exposed; there is no ``__setitem__``,
    so an Environment that holds one cannot be mutated by the application.
    """

    __slots__ = ("_items",)

    def __init__(self, source: HeaderSource = None):
        items: dict = {}
        if source is not None:
            pairs = source.items() if isinstance(source, Mapping) else source
            for name, value in pairs:
                key = str(name).strip().lower()
                value = str(value).strip()
                if key in items:
                    items[key] = items[key] + ", " + value
                else:
                    items[key] = value
        self._items = items

    def __getitem__(self, name: str) -> str:
        return self._items[name.lower()]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._items

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self._items.get(name.lower(), default)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Headers):
            return self._items == other._items
        if isinstance(other, Mapping):
            return self._items == {str(k).lower(): v for k, v in other.items()}
        return NotImplemented

    def __repr__(self) -> str:
        return f"Headers({self._items!r})"

    def to_dict(self) -> dict:
        """Return a plain (mutable) copy, e.g. for logging or JSON."""
        return dict(self._items)
