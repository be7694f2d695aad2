"""
Dataset implementation.

Provides the Pydantic class for an ordered set of weighted observations,
used both to fill templates and to plan bulk extraction of predicted bin
contents.
"""

from __future__ import annotations

import numpy as np
import numpy.typing as npt
from pydantic import BaseModel, ConfigDict, Field, model_validator


class Dataset(BaseModel):
    """
    Ordered observations with optional non-negative weights.

    Attributes:
        name: Custom string identifier for the dataset
        entries: One coordinate list per observation
        weights: Optional weight per observation (defaults to one)
    """

    model_config = ConfigDict()

    name: str = Field(default="data", repr=True)
    entries: list[list[float]] = Field(..., repr=False)
    weights: list[float] | None = Field(default=None, repr=False)

    @model_validator(mode="after")
    def validate_dataset(self) -> Dataset:
        """Validate consistency of entries and weights."""
        n_entries = len(self.entries)

        if self.weights is not None:
            if len(self.weights) != n_entries:
                msg = f"Weights array length ({len(self.weights)}) must match entries length ({n_entries})"
                raise ValueError(msg)
            if any(w < 0 for w in self.weights):
                msg = f"Dataset '{self.name}' has negative weights"
                raise ValueError(msg)

        if n_entries > 0:
            entry_dims = len(self.entries[0])
            for i, entry in enumerate(self.entries):
                if len(entry) != entry_dims:
                    msg = (
                        f"Entry[{i}] has {len(entry)} dimensions, expected {entry_dims}"
                    )
                    raise ValueError(msg)

        return self

    @classmethod
    def from_arrays(
        cls,
        *columns: npt.ArrayLike,
        weights: npt.ArrayLike | None = None,
        name: str = "data",
    ) -> Dataset:
        """Build a dataset from one array per coordinate."""
        stacked = np.column_stack([np.asarray(c, dtype=np.float64) for c in columns])
        return cls(
            name=name,
            entries=stacked.tolist(),
            weights=None if weights is None else np.asarray(weights, dtype=np.float64).tolist(),
        )

    @property
    def ndim(self) -> int:
        """Number of coordinates per observation (0 for an empty dataset)."""
        return len(self.entries[0]) if self.entries else 0

    def columns(self) -> list[npt.NDArray[np.float64]]:
        """Coordinates as one array per dimension."""
        if not self.entries:
            return []
        array = np.asarray(self.entries, dtype=np.float64)
        return [array[:, i] for i in range(array.shape[1])]

    def weight_array(self) -> npt.NDArray[np.float64]:
        """Weights as an array (ones when no weights were given)."""
        if self.weights is None:
            return np.ones(len(self), dtype=np.float64)
        return np.asarray(self.weights, dtype=np.float64)

    def __len__(self) -> int:
        return len(self.entries)
