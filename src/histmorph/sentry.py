"""
Dirty-set tracking for cached templates.

A :class:`Sentry` watches a set of parameters and tells its owner whether any
of them moved since the last :meth:`Sentry.reset`. It is the only mechanism
by which a morphing engine decides to rebuild its cached template.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Protocol


class ValueSource(Protocol):
    """Anything exposing a name and a current scalar value."""

    @property
    def name(self) -> str: ...

    @property
    def value(self) -> float: ...


class Sentry:
    """
    Track a set of parameters and report whether any has changed.

    ``good()`` is true iff every tracked parameter still holds the value it
    had at the last ``reset()``. A freshly populated sentry is dirty until
    the first ``reset()``.
    """

    def __init__(self, params: Iterable[ValueSource] = ()) -> None:
        self._params: list[ValueSource] = []
        self._snapshot: list[float] = []
        self._dirty = True
        self.add_vars(params)

    def add_vars(self, params: Iterable[ValueSource]) -> None:
        """Start tracking ``params``; already tracked ones are ignored."""
        for param in params:
            if any(param is tracked for tracked in self._params):
                continue
            self._params.append(param)
            self._snapshot.append(float(param.value))
        self._dirty = True

    def good(self) -> bool:
        """True if no tracked parameter changed since the last reset."""
        if self._dirty:
            return False
        return all(
            param.value == seen
            for param, seen in zip(self._params, self._snapshot, strict=True)
        )

    def reset(self) -> None:
        """Snapshot the current values and mark the set clean."""
        self._snapshot = [float(param.value) for param in self._params]
        self._dirty = False

    def set_value_dirty(self) -> None:
        """Force the next ``good()`` to report a change."""
        self._dirty = True

    @property
    def empty(self) -> bool:
        """Whether no parameter is tracked."""
        return not self._params

    def __len__(self) -> int:
        return len(self._params)

    def __iter__(self) -> Iterator[ValueSource]:
        return iter(self._params)

    def __contains__(self, param: object) -> bool:
        return any(param is tracked for tracked in self._params)

    def __repr__(self) -> str:
        state = "good" if self.good() else "dirty"
        return f"Sentry({[param.name for param in self._params]}, {state})"
