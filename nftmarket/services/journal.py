"""
Undo Journal

Rollback support for the in-memory stores. Before a store mutates a dict
entry or a counter it calls ``touch``; the first touch of each slot inside
a transaction saves the prior value. Rolling back puts only those slots
back, so the cost of an operation depends on what it changes and not on
how much state the stores hold.
"""

from collections.abc import MutableMapping
from typing import Any

from pydantic import BaseModel

_MISSING = object()


def _saved(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_copy(deep=True)
    return value


class UndoJournal:
    """Prior values of the slots touched since ``begin()``."""

    def __init__(self) -> None:
        self._items: dict[tuple[int, Any], tuple[MutableMapping[Any, Any], Any, Any]] = {}
        self._attrs: dict[tuple[int, str], tuple[object, str, Any]] = {}
        self._order: list[tuple[str, tuple[int, Any]]] = []
        self.active = False

    def __len__(self) -> int:
        return len(self._order)

    def begin(self) -> None:
        self._clear()
        self.active = True

    def commit(self) -> None:
        self._clear()
        self.active = False

    def rollback(self) -> None:
        """Restore every touched slot, most recent first."""
        for kind, slot in reversed(self._order):
            if kind == "item":
                mapping, key, value = self._items[slot]
                if value is _MISSING:
                    mapping.pop(key, None)
                else:
                    mapping[key] = value
            else:
                owner, name, value = self._attrs[slot]
                setattr(owner, name, value)
        self._clear()
        self.active = False

    def touch(self, mapping: MutableMapping[Any, Any], key: Any) -> None:
        """Save ``mapping[key]`` (or its absence) before it changes."""
        if not self.active:
            return
        slot = (id(mapping), key)
        if slot in self._items:
            return
        self._items[slot] = (mapping, key, _saved(mapping.get(key, _MISSING)))
        self._order.append(("item", slot))

    def touch_attr(self, owner: object, name: str) -> None:
        """Save an attribute such as an id counter before it changes."""
        if not self.active:
            return
        slot = (id(owner), name)
        if slot in self._attrs:
            return
        self._attrs[slot] = (owner, name, _saved(getattr(owner, name)))
        self._order.append(("attr", slot))

    def _clear(self) -> None:
        self._items = {}
        self._attrs = {}
        self._order = []
