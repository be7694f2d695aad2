"""
Binned axis implementations.

Provides Pydantic classes for the binning of templates, with regular
(min/max/nbins) or irregular (edges) binning, and the collection used to
address the bins of a 1-, 2- or 3-dimensional template by flat index.
"""

from __future__ import annotations

from collections.abc import Iterator
from itertools import pairwise
from typing import Annotated, Any

import hist
import numpy as np
import numpy.typing as npt
from pydantic import (
    ConfigDict,
    Discriminator,
    Field,
    PrivateAttr,
    RootModel,
    Tag,
    model_validator,
)

from histmorph.collections import NamedModel
from histmorph.exceptions import custom_error_msg


class Axis(NamedModel):
    """
    Base axis specification for template coordinates.

    The bin edges are materialized once, as a read-only float array, on
    first use; lookups and widths reuse it.

    Attributes:
        name: Name of the axis/variable
    """

    model_config = ConfigDict()

    _edge_array: npt.NDArray[np.float64] | None = PrivateAttr(default=None)

    def _build_edges(self) -> npt.NDArray[np.float64]:
        return np.asarray(self.edges, dtype=np.float64)

    @property
    def edge_array(self) -> npt.NDArray[np.float64]:
        """Bin edges as a read-only float array."""
        if self._edge_array is None:
            edges = self._build_edges()
            edges.flags.writeable = False
            self._edge_array = edges
        return self._edge_array

    @property
    def widths(self) -> npt.NDArray[np.float64]:
        """Bin widths along this axis."""
        return np.diff(self.edge_array)

    @property
    def centers(self) -> npt.NDArray[np.float64]:
        """Bin centers along this axis."""
        edges = self.edge_array
        return 0.5 * (edges[1:] + edges[:-1])

    def find_bin(self, value: Any) -> Any:
        """
        Locate the bin containing ``value``.

        Values outside the axis range are clamped to the first or last bin
        instead of being rejected. Accepts scalars or arrays.

        Args:
            value: coordinate(s) along this axis

        Returns:
            Bin index (or array of indices) in ``[0, nbins - 1]``
        """
        edges = self.edge_array
        idx = np.searchsorted(edges, value, side="right") - 1
        idx = np.clip(idx, 0, edges.size - 2)
        if np.ndim(idx) == 0:
            return int(idx)
        return idx


class RegularAxis(Axis):
    """
    Attributes:
        name: Name of the axis/variable
        min: Minimum value
        max: Maximum value
        nbins: Number of bins (for regular binning)
    """

    min: float = Field(..., repr=False)
    max: float = Field(..., repr=False)
    nbins: int = Field(repr=False)

    @model_validator(mode="after")
    def check_min_lt_max(self) -> RegularAxis:
        """Validate that max > min."""
        if self.max <= self.min:
            msg = f"Axis '{self.name}': max ({self.max}) must be > min ({self.min})"
            raise ValueError(msg)
        return self

    @model_validator(mode="after")
    def check_binning(self) -> RegularAxis:
        """Validate the number of bins."""
        if self.nbins <= 0:
            msg = f"RegularAxis '{self.name}' must have positive number of bins, got {self.nbins}"
            raise ValueError(msg)
        return self

    def _build_edges(self) -> npt.NDArray[np.float64]:
        return np.linspace(self.min, self.max, self.nbins + 1, dtype=np.float64)

    @property
    def edges(self) -> list[float]:
        """Bin edges as a list, generated with linspace."""
        return [float(e) for e in self.edge_array]

    def to_hist(self) -> hist.axis.Regular:
        """
        Convert this axis to a hist.axis object.

        Returns:
            A hist.axis.Regular object
        """
        return hist.axis.Regular(self.nbins, self.min, self.max, name=self.name)


class IrregularAxis(Axis):
    """
    Attributes:
        name: Name of the axis/variable
        edges: Bin edges array (length n+1)
    """

    edges: list[float] = Field(repr=False)

    @model_validator(mode="after")
    def validate_binning(self) -> IrregularAxis:
        """Ensure proper binning specification for binned data."""
        if len(self.edges) < 2:
            msg = f"IrregularAxis '{self.name}' must have at least 2 edges"
            raise ValueError(msg)
        # Check that edges are in ascending order
        for prev, curr in pairwise(self.edges):
            if curr <= prev:
                msg = f"IrregularAxis '{self.name}' edges must be in ascending order"
                raise ValueError(msg)
        return self

    @property
    def min(self) -> float:
        """Return lower edge."""
        return self.edges[0]

    @property
    def max(self) -> float:
        """Return upper edge."""
        return self.edges[-1]

    @property
    def nbins(self) -> int:
        """Get the nbins for this axis.

        Returns:
            Number of bins.
        """
        return len(self.edges) - 1

    def to_hist(self) -> hist.axis.Variable:
        """
        Convert this axis to a hist.axis object.

        Returns:
            A hist.axis.Variable object
        """
        return hist.axis.Variable(self.edges, name=self.name)


def binned_axis_discriminator(v: Any) -> str | None:
    if isinstance(v, dict):
        if "edges" in v and "nbins" not in v:
            return "irregular"
        if "nbins" in v and "edges" not in v:
            return "regular"
        return None

    # Already-constructed model case
    if isinstance(v, IrregularAxis):
        return "irregular"
    if isinstance(v, RegularAxis):
        return "regular"

    return None


BinnedAxisUnion = Annotated[
    (
        Annotated[RegularAxis, Tag("regular")]
        | Annotated[IrregularAxis, Tag("irregular")]
    ),
    Discriminator(binned_axis_discriminator),
    custom_error_msg(
        {
            "union_tag_not_found": "Unknown axis {input}'. You must specify either regular binning (nbins/min/max) or irregular binning (edges).",
        }
    ),
]


class BinnedAxis(RootModel[BinnedAxisUnion]):
    """
    Binned axis specification.

    Supports both regular binning (min/max/nbins) and irregular binning (edges)
    through a discriminated union. The discriminator automatically selects the
    correct type based on the presence of 'nbins' or 'edges' fields.
    """

    root: BinnedAxisUnion

    @property
    def name(self) -> str:
        """Get the axis name."""
        return self.root.name

    @property
    def nbins(self) -> int:
        """Get the number of bins."""
        return self.root.nbins

    @property
    def min(self) -> float:
        """Get the min."""
        return self.root.min

    @property
    def max(self) -> float:
        """Get the max."""
        return self.root.max

    @property
    def edges(self) -> list[float]:
        """Get the edges."""
        return self.root.edges

    @property
    def edge_array(self) -> npt.NDArray[np.float64]:
        """Get the edges as a read-only array."""
        return self.root.edge_array

    @property
    def widths(self) -> npt.NDArray[np.float64]:
        """Get the bin widths."""
        return self.root.widths

    @property
    def centers(self) -> npt.NDArray[np.float64]:
        """Get the bin centers."""
        return self.root.centers

    def find_bin(self, value: Any) -> Any:
        """Locate the (clamped) bin containing ``value``."""
        return self.root.find_bin(value)

    def to_hist(self) -> hist.axis.Variable | hist.axis.Regular:
        """
        Convert this axis to a hist.axis object.

        Returns:
            A hist.axis.Variable object
        """
        return self.root.to_hist()


class BinnedAxes(RootModel[list[BinnedAxis]]):
    """
    Collection of binned axes.

    Manages a list of BinnedAxis instances, providing list-like access and
    flat-index arithmetic. Bins are enumerated in C order: the first axis
    varies slowest, so each fixed value of the first axis owns a contiguous
    run of flat indices.
    """

    root: list[BinnedAxis] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_dimensions(self) -> BinnedAxes:
        """Templates are 1-, 2- or 3-dimensional."""
        if not 1 <= len(self.root) <= 3:
            msg = f"Templates support 1 to 3 axes, got {len(self.root)}"
            raise ValueError(msg)
        return self

    def __getitem__(self, index: int) -> BinnedAxis:
        """Get axis by index."""
        return self.root[index]

    def __len__(self) -> int:
        """Get number of axes."""
        return len(self.root)

    def __iter__(self) -> Iterator[BinnedAxis]:  # type: ignore[override]  # https://github.com/pydantic/pydantic/issues/8872
        """Iterate over axes."""
        return iter(self.root)

    @property
    def shape(self) -> tuple[int, ...]:
        """Number of bins along each axis."""
        return tuple(axis.nbins for axis in self.root)

    @property
    def names(self) -> list[str]:
        """Axis names, in order."""
        return [axis.name for axis in self.root]

    def get_total_bins(self) -> int:
        """Calculate total number of bins across all axes."""
        total_bins = 1
        for axis in self.root:
            total_bins *= axis.nbins
        return total_bins

    def bin_volumes(self, skip_first: bool = False) -> npt.NDArray[np.float64]:
        """
        Flat (C-order) array of bin volumes.

        Args:
            skip_first: leave the first axis out of the product, giving the
                volume element of a slice at fixed first-axis value

        Returns:
            Array of length ``get_total_bins()``
        """
        volume = np.ones(self.shape, dtype=np.float64)
        for i, axis in enumerate(self.root):
            if skip_first and i == 0:
                continue
            view = [1] * len(self.root)
            view[i] = axis.nbins
            volume = volume * axis.widths.reshape(view)
        return volume.ravel()

    def find_bin(self, *coordinate: Any) -> Any:
        """
        Flat bin index for a coordinate tuple, clamping each axis to range.

        Args:
            coordinate: one value (or array of values) per axis

        Returns:
            Flat index or array of flat indices
        """
        if len(coordinate) != len(self.root):
            msg = f"Expected {len(self.root)} coordinates, got {len(coordinate)}"
            raise ValueError(msg)
        indices = tuple(
            axis.find_bin(value)
            for axis, value in zip(self.root, coordinate, strict=True)
        )
        flat = np.ravel_multi_index(indices, self.shape)
        if np.ndim(flat) == 0:
            return int(flat)
        return flat

    def edges_match(self, other: BinnedAxes, rtol: float = 1e-9) -> bool:
        """Whether ``other`` has the same number of axes and the same bin edges."""
        if len(other) != len(self):
            return False
        for mine, theirs in zip(self.root, other.root, strict=True):
            if mine.nbins != theirs.nbins:
                return False
            if not np.allclose(mine.edge_array, theirs.edge_array, rtol=rtol, atol=0.0):
                return False
        return True

    def to_hist(self) -> list[hist.axis.Variable | hist.axis.Regular]:
        """Convert every axis to its hist.axis counterpart."""
        return [axis.to_hist() for axis in self.root]
