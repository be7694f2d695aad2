"""Named models and the collection used to look them up by name."""

from __future__ import annotations

from abc import ABC
from collections.abc import Iterator
from typing import Any, TypeVar

from pydantic import BaseModel, PrivateAttr, RootModel


class NamedModel(BaseModel, ABC):
    """Model identified by a ``name`` (axes, parameters)."""

    name: str


T = TypeVar("T", bound=NamedModel)


class NamedCollection(RootModel[list[T]]):
    """
    Ordered list of named models with lookup by name or position.

    Names must be unique; the name index is built once after validation.
    Items are kept as given, so mutating an item is visible through the
    collection and through every other holder of the same object.
    """

    _index: dict[str, int] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: Any, /) -> None:
        """Build the name index, rejecting duplicate names."""
        index: dict[str, int] = {}
        duplicates = set()
        for position, item in enumerate(self.root):
            if item.name in index:
                duplicates.add(item.name)
            index[item.name] = position
        if duplicates:
            msg = f"{type(self).__name__} has duplicate names: {sorted(duplicates)}"
            raise ValueError(msg)
        self._index = index

    @property
    def names(self) -> list[str]:
        """Item names, in order."""
        return [item.name for item in self.root]

    def __getitem__(self, item: str | int) -> T:
        if isinstance(item, int):
            return self.root[item]
        return self.root[self._index[item]]

    def get(self, name: str, default: T | None = None) -> T | None:
        """Item called ``name``, or ``default``."""
        position = self._index.get(name)
        return default if position is None else self.root[position]

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def __iter__(self) -> Iterator[T]:  # type: ignore[override]
        return iter(self.root)

    def __len__(self) -> int:
        return len(self.root)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.names})"
