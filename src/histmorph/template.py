"""
Dense templates.

Provides the :class:`Template` class: a fixed-size, flat array of bin
contents over 1, 2 or 3 binned axes, with the in-place arithmetic used by
vertical morphing. Whole-template operations act on the first ``size`` bins
only (the active range, see :meth:`Template.set_active_size`).
"""

from __future__ import annotations

import logging
from typing import Any

import hist
import numpy as np
import numpy.typing as npt

from histmorph.axes import BinnedAxes, IrregularAxis
from histmorph.exceptions import BinningMismatchError

log = logging.getLogger(__name__)

#: value stored by :meth:`Template.log` for bins that are not positive
LOG_FLOOR = -999.0
#: default floor applied by :meth:`Template.crop_underflows`
UNDERFLOW_FLOOR = 1e-9


class Template:
    """
    Dense array of bin contents over a fixed binning.

    Bins are stored flat in C order (first axis slowest), matching
    :meth:`BinnedAxes.find_bin`.

    Args:
        axes: binning of the template
        values: optional initial contents, flat or shaped like ``axes.shape``
        name: optional label used in log messages
    """

    def __init__(
        self, axes: BinnedAxes, values: Any | None = None, name: str = ""
    ) -> None:
        self.axes = axes
        self.name = name
        nbins = axes.get_total_bins()
        if values is None:
            self._values = np.zeros(nbins, dtype=np.float64)
        else:
            self._values = np.array(values, dtype=np.float64).ravel()
            if self._values.size != nbins:
                msg = f"Template '{name}' has {self._values.size} bins, binning expects {nbins}"
                raise BinningMismatchError(msg)
        self._active = nbins
        self._volumes = axes.bin_volumes()

    # --- size and access -------------------------------------------------

    @property
    def size(self) -> int:
        """Number of active bins."""
        return self._active

    @property
    def full_size(self) -> int:
        """Number of bins, active or not."""
        return self._values.size

    @property
    def ndim(self) -> int:
        """Number of axes."""
        return len(self.axes)

    @property
    def values(self) -> npt.NDArray[np.float64]:
        """Writable view of the active bins."""
        return self._values[: self._active]

    @property
    def contents(self) -> npt.NDArray[np.float64]:
        """Writable view of all bins, including inactive ones."""
        return self._values

    def set_active_size(self, size: int) -> None:
        """
        Restrict whole-template operations to the first ``size`` bins.

        Args:
            size: number of active bins, ``1 <= size <= full_size``
        """
        if not 0 < size <= self.full_size:
            msg = f"Active size must be in [1, {self.full_size}], got {size}"
            raise ValueError(msg)
        self._active = size

    def find_bin(self, *coordinate: Any) -> Any:
        """Flat index of the bin containing ``coordinate`` (clamped to range)."""
        return self.axes.find_bin(*coordinate)

    def get_bin_content(self, index: int) -> float:
        """Content of flat bin ``index``; out-of-range indices clamp to the edge bins."""
        index = min(max(int(index), 0), self.full_size - 1)
        return float(self._values[index])

    def get_at(self, *coordinate: Any) -> float:
        """Content of the bin containing ``coordinate``."""
        return self.get_bin_content(self.find_bin(*coordinate))

    def copy(self) -> Template:
        """Independent copy with the same binning and active size."""
        other = Template(self.axes, self._values, name=self.name)
        other._active = self._active
        return other

    def _check_compatible(self, *others: Template) -> None:
        for other in others:
            if other.full_size != self.full_size or other.size < self.size:
                msg = (
                    f"Template '{other.name}' ({other.size}/{other.full_size} bins) "
                    f"is incompatible with '{self.name}' ({self.size}/{self.full_size} bins)"
                )
                raise BinningMismatchError(msg)

    # --- elementwise arithmetic -----------------------------------------

    def copy_values(self, other: Template) -> None:
        """Replace the active contents with those of ``other``."""
        self._check_compatible(other)
        self.values[:] = other._values[: self._active]

    def subtract(self, other: Template) -> None:
        """``this -= other``."""
        self._check_compatible(other)
        self.values[:] -= other._values[: self._active]

    def log_ratio(self, other: Template) -> None:
        """
        ``this = log(this / other)``.

        Bins where either side is not positive get a zero log-ratio, so the
        morphing formula stays finite where a variation has an empty bin.
        """
        self._check_compatible(other)
        mine = self.values
        theirs = other._values[: self._active]
        ratio = np.ones_like(mine)
        np.divide(mine, theirs, out=ratio, where=(mine > 0) & (theirs > 0))
        mine[:] = np.log(ratio, out=np.zeros_like(ratio), where=ratio > 0)

    @staticmethod
    def sum_diff(
        hi: Template, lo: Template, out_sum: Template, out_diff: Template
    ) -> None:
        """``out_sum = hi + lo`` and ``out_diff = hi - lo``."""
        hi._check_compatible(lo, out_sum, out_diff)
        n = hi.size
        np.add(hi._values[:n], lo._values[:n], out=out_sum._values[:n])
        np.subtract(hi._values[:n], lo._values[:n], out=out_diff._values[:n])

    def meld(self, diff: Template, sum_: Template, a: float, b: float) -> None:
        """``this += a * diff + a * b * sum``."""
        self._check_compatible(diff, sum_)
        n = self._active
        self.values[:] += a * (diff._values[:n] + b * sum_._values[:n])

    def log(self) -> None:
        """Elementwise natural log; non-positive bins become ``LOG_FLOOR``."""
        mine = self.values
        mine[:] = np.log(mine, out=np.full_like(mine, LOG_FLOOR), where=mine > 0)

    def exp(self) -> None:
        """Elementwise exponential."""
        np.exp(self.values, out=self.values)

    def crop_underflows(
        self, floor: float = UNDERFLOW_FLOOR, active_only: bool = True
    ) -> None:
        """
        Raise every bin below ``floor`` to ``floor``.

        Args:
            floor: smallest value kept
            active_only: if False, inactive trailing bins are cropped too
        """
        target = self.values if active_only else self._values
        np.maximum(target, floor, out=target)

    # --- normalization ---------------------------------------------------

    def integral(self) -> float:
        """Bin-volume weighted sum over the active bins."""
        return float(np.dot(self.values, self._volumes[: self._active]))

    def normalize(self) -> float:
        """
        Scale the active bins so that :meth:`integral` is one.

        A template with a non-positive integral is left untouched.

        Returns:
            The integral before scaling
        """
        norm = self.integral()
        if norm > 0:
            self.values[:] /= norm
        else:
            log.warning(
                "Template '%s' has non-positive integral %g, not normalized",
                self.name,
                norm,
            )
        return norm

    def normalize_x_slices(self) -> None:
        """
        Normalize independently at each bin of the first axis.

        After this call, the volume-weighted sum over the remaining axes is
        one for every first-axis bin, so the template is a density conditional
        on the first coordinate. Operates on the full grid; empty slices are
        left untouched.
        """
        if self.ndim < 2:
            msg = f"normalize_x_slices needs at least 2 axes, template '{self.name}' has {self.ndim}"
            raise ValueError(msg)
        nslices = self.axes[0].nbins
        grid = self._values.reshape(nslices, -1)
        volumes = self.axes.bin_volumes(skip_first=True).reshape(nslices, -1)
        norms = np.einsum("ij,ij->i", grid, volumes)
        good = norms > 0
        if not np.all(good):
            log.warning(
                "Template '%s' has %d empty slice(s) along '%s', left unnormalized",
                self.name,
                int(np.count_nonzero(~good)),
                self.axes[0].name,
            )
        grid[good] /= norms[good, np.newaxis]

    # --- maxima ----------------------------------------------------------

    def max_value(self) -> float:
        """Largest active bin content."""
        return float(np.max(self.values))

    def max_along(self, axis: int, *coordinate: Any) -> float:
        """
        Largest content along ``axis`` with the other axes held fixed.

        Args:
            axis: index of the axis to scan
            coordinate: one value per remaining axis, in axis order

        Returns:
            Maximum over the bins of ``axis`` at the given coordinate
        """
        if not 0 <= axis < self.ndim:
            msg = f"Axis {axis} out of range for a {self.ndim}-dimensional template"
            raise ValueError(msg)
        others = [i for i in range(self.ndim) if i != axis]
        if len(coordinate) != len(others):
            msg = f"Expected {len(others)} fixed coordinate(s), got {len(coordinate)}"
            raise ValueError(msg)
        index: list[Any] = [slice(None)] * self.ndim
        for i, value in zip(others, coordinate, strict=True):
            index[i] = self.axes[i].find_bin(value)
        return float(np.max(self._values.reshape(self.axes.shape)[tuple(index)]))

    # --- conversions -----------------------------------------------------

    @classmethod
    def from_hist(
        cls, histogram: hist.Hist, axes: BinnedAxes | None = None, name: str = ""
    ) -> Template:
        """
        Build a template from the in-range bins of a ``hist.Hist``.

        Args:
            histogram: source histogram with 1 to 3 axes
            axes: expected binning; if given, the histogram edges must match
            name: template label

        Returns:
            Template holding the histogram values
        """
        own = BinnedAxes(
            [
                IrregularAxis(name=ax.name or f"axis{i}", edges=[float(e) for e in ax.edges])
                for i, ax in enumerate(histogram.axes)
            ]
        )
        if axes is None:
            axes = own
        elif not axes.edges_match(own):
            msg = f"Histogram '{name}' binning does not match the template axes"
            raise BinningMismatchError(msg)
        return cls(axes, histogram.values(flow=False), name=name)

    def to_hist(self) -> hist.Hist:
        """Convert to a ``hist.Hist`` with double storage (all bins)."""
        histogram = hist.Hist(*self.axes.to_hist(), storage=hist.storage.Double())
        histogram.view(flow=False)[...] = self._values.reshape(self.axes.shape)
        return histogram

    def __len__(self) -> int:
        return self._active

    def __repr__(self) -> str:
        return f"Template(name={self.name!r}, shape={self.axes.shape}, active={self._active})"
