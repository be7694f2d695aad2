"""
Template sources.

A template source turns something histogram-like into a :class:`Template` on
a given binning. Sources form a discriminated union on their ``type`` field:

- ``histogram``: explicit bin contents (optionally with their own binning)
- ``density``: a vectorised callable sampled at bin centers
- ``dataset``: a weighted fill of a :class:`Dataset`

All sources are deterministic and leave their inputs untouched; negative
contents are clamped to zero.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Annotated, Any, Literal

import hist
import numpy as np
import numpy.typing as npt
from pydantic import BaseModel, ConfigDict, Field

from histmorph.axes import BinnedAxes
from histmorph.data import Dataset
from histmorph.exceptions import BinningMismatchError, custom_error_msg
from histmorph.template import Template

log = logging.getLogger(__name__)


class TemplateSource(BaseModel, ABC):
    """
    Base class for template sources.

    Attributes:
        type: Type identifier used to discriminate sources
        name: Optional label, carried over to the created template
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    type: str
    name: str = ""

    @abstractmethod
    def contents(self, axes: BinnedAxes) -> npt.NDArray[np.float64]:
        """Raw bin contents on ``axes``, shaped like ``axes.shape``."""

    def create_template(self, axes: BinnedAxes) -> Template:
        """
        Build a template on ``axes``.

        Args:
            axes: binning of the requested template

        Returns:
            A new template with non-negative contents

        Raises:
            BinningMismatchError: if the source cannot be expressed on ``axes``
        """
        values = np.asarray(self.contents(axes), dtype=np.float64)
        if values.size != axes.get_total_bins():
            msg = f"Template source '{self.name}' yields {values.size} bins, binning expects {axes.get_total_bins()}"
            raise BinningMismatchError(msg)
        if not np.all(np.isfinite(values)):
            msg = f"Template source '{self.name}' yields non-finite bin contents"
            raise BinningMismatchError(msg)
        negative = values < 0
        if np.any(negative):
            log.warning(
                "Template source '%s' has %d negative bin(s), clamped to zero",
                self.name,
                int(np.count_nonzero(negative)),
            )
            values = np.where(negative, 0.0, values)
        return Template(axes, values, name=self.name)


class HistogramSource(TemplateSource):
    """
    Explicit bin contents.

    Attributes:
        bin_contents: Flat bin contents in C order (first axis slowest)
        axes: Optional binning the contents were made on; must then match
    """

    type: Literal["histogram"] = "histogram"
    bin_contents: list[float] = Field(..., repr=False)
    axes: BinnedAxes | None = Field(default=None, repr=False)

    @classmethod
    def from_hist(cls, histogram: hist.Hist, name: str = "") -> HistogramSource:
        """Capture the in-range values and binning of a ``hist.Hist``."""
        template = Template.from_hist(histogram, name=name)
        return cls(
            name=name,
            bin_contents=template.contents.tolist(),
            axes=template.axes,
        )

    def contents(self, axes: BinnedAxes) -> npt.NDArray[np.float64]:
        if self.axes is not None and not axes.edges_match(self.axes):
            msg = f"Histogram '{self.name}' binning does not match the template axes"
            raise BinningMismatchError(msg)
        return np.asarray(self.bin_contents, dtype=np.float64)


class DensitySource(TemplateSource):
    """
    A density function sampled at the bin centers.

    The callable receives one array per axis (bin-center meshgrid, ``ij``
    indexing) and returns the density values on that grid.

    Attributes:
        function: Vectorised density, ``f(x[, y[, z]]) -> array``
    """

    type: Literal["density"] = "density"
    function: Callable[..., Any] = Field(..., exclude=True, repr=False)

    def contents(self, axes: BinnedAxes) -> npt.NDArray[np.float64]:
        grid = np.meshgrid(*[axis.centers for axis in axes], indexing="ij")
        values = np.asarray(self.function(*grid), dtype=np.float64)
        return np.broadcast_to(values, axes.shape).ravel()


class DatasetSource(TemplateSource):
    """
    Weighted fill of a dataset, as a density.

    Entries outside the axis range are dropped. Each bin holds the sum of
    weights divided by the bin volume.

    Attributes:
        data: The observations to histogram
    """

    type: Literal["dataset"] = "dataset"
    data: Dataset = Field(..., repr=False)

    def contents(self, axes: BinnedAxes) -> npt.NDArray[np.float64]:
        if len(self.data) and self.data.ndim != len(axes):
            msg = f"Dataset '{self.data.name}' has {self.data.ndim} coordinate(s), binning has {len(axes)} axes"
            raise BinningMismatchError(msg)
        histogram = hist.Hist(*axes.to_hist(), storage=hist.storage.Weight())
        if len(self.data):
            histogram.fill(*self.data.columns(), weight=self.data.weight_array())
        return histogram.values(flow=False).ravel() / axes.bin_volumes()


TemplateSourceType = Annotated[
    HistogramSource | DensitySource | DatasetSource,
    Field(discriminator="type"),
    custom_error_msg(
        {
            "union_tag_not_found": "Template source missing required 'type' field. Expected one of: 'histogram', 'density', 'dataset'",
            "union_tag_invalid": "Unknown template source type '{tag}' does not match any of the expected types: {expected_tags}",
        }
    ),
]


def coerce_source(value: Any) -> Any:
    """
    Wrap histogram-like shorthands into a source.

    ``hist.Hist`` objects become :class:`HistogramSource` with their binning,
    and numeric sequences or arrays, nested ones included, become
    :class:`HistogramSource` contents in C order. Anything else is returned
    unchanged for validation.
    """
    if isinstance(value, hist.Hist):
        return HistogramSource.from_hist(value)
    if isinstance(value, Template):
        return HistogramSource(name=value.name, bin_contents=value.contents.tolist(), axes=value.axes)
    if not isinstance(value, (np.ndarray, list, tuple)):
        return value
    try:
        array = np.asarray(value)
    except ValueError:
        # ragged nesting
        return value
    if array.dtype.kind not in "iuf":
        return value
    return HistogramSource(bin_contents=array.astype(np.float64).ravel().tolist())
