"""
Context class for symbolic parameter resolution.

Provides a dictionary-like interface from parameter names to PyTensor
variables, used when a morphing engine is rendered as a tensor graph.
"""

from __future__ import annotations

from collections.abc import ItemsView, Iterable, KeysView, ValuesView

import pytensor.tensor as pt

from histmorph.typing.aliases import TensorVar


class Context:
    """
    Context for parameter resolution in symbolic expressions.

    Wraps a dictionary of parameter names to PyTensor variables.
    """

    def __init__(self, data: dict[str, TensorVar]) -> None:
        """
        Initialize context with parameter data.

        Args:
            data: Dictionary mapping parameter names to PyTensor variables
        """
        self._data = data

    @classmethod
    def scalars(cls, names: Iterable[str]) -> Context:
        """Context holding a fresh float64 scalar variable for each name."""
        return cls({name: pt.dscalar(name) for name in names})

    def __getitem__(self, key: str) -> TensorVar:
        """
        Get parameter value from context.

        Args:
            key: Parameter name (str)

        Returns:
            TensorVar: The parameter value
        """
        return self._data[key]

    def __contains__(self, key: str) -> bool:
        """Check if parameter name exists in context."""
        return key in self._data

    def keys(self) -> KeysView[str]:
        """Get parameter names."""
        return self._data.keys()

    def values(self) -> ValuesView[TensorVar]:
        """Get parameter values."""
        return self._data.values()

    def items(self) -> ItemsView[str, TensorVar]:
        """Get parameter name-value pairs."""
        return self._data.items()
