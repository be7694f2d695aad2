"""
histmorph: vertical template morphing with cached, normalized densities
"""

from __future__ import annotations

from histmorph._version import version as __version__
from histmorph.axes import BinnedAxes, IrregularAxis, RegularAxis
from histmorph.bulk import BulkView
from histmorph.data import Dataset
from histmorph.engine import MorphConfig, MorphingEngine, MorphRecord
from histmorph.parameters import Parameter, ParameterSet
from histmorph.sentry import Sentry
from histmorph.sources import DatasetSource, DensitySource, HistogramSource
from histmorph.template import Template

__all__ = [
    "BinnedAxes",
    "BulkView",
    "Dataset",
    "DatasetSource",
    "DensitySource",
    "HistogramSource",
    "IrregularAxis",
    "MorphConfig",
    "MorphRecord",
    "MorphingEngine",
    "Parameter",
    "ParameterSet",
    "RegularAxis",
    "Sentry",
    "Template",
    "__version__",
]
