"""
Vertical template morphing engine.

Provides :class:`MorphConfig`, the validated description of a morphed
template density, and :class:`MorphingEngine`, which precomputes the
per-parameter :class:`MorphRecord` deltas once and keeps a cached, normalized
total template that is rebuilt only when a tracked parameter moves.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Literal, cast

import numpy as np
import pytensor.tensor as pt
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from histmorph.axes import BinnedAxes
from histmorph.context import Context
from histmorph.data import Dataset
from histmorph.exceptions import MorphConfigurationError
from histmorph.interpolations import (
    vertical_coefficients,
    vertical_contribution_tensor,
)
from histmorph.parameters import Parameter, ParameterSet
from histmorph.sentry import Sentry
from histmorph.sources import TemplateSourceType, coerce_source
from histmorph.template import UNDERFLOW_FLOOR, Template
from histmorph.typing.aliases import MorphMode, TensorVar

log = logging.getLogger(__name__)

EngineState = Literal["uninitialized", "nominal_ready", "total_valid"]


class MorphConfig(BaseModel):
    """
    Configuration of a vertically morphed template density.

    ``templates`` lists the nominal template first, followed by the hi and lo
    variation of each coefficient in turn, so that
    ``len(templates) == 2 * len(coefficients) + 1``.

    Attributes:
        name: Name of the density
        axes: Binning shared by every template (1 to 3 axes)
        templates: Nominal, then (hi, lo) per coefficient
        coefficients: Names of the nuisance parameters, one per morphing dimension
        mode: ``additive`` blends differences, ``multiplicative`` blends log-ratios.
            An integer ``smooth_algo`` is accepted too (negative: multiplicative).
        smooth_region: Half-width of the polynomial region of the smooth step
        conditional: Normalize each slice of the first axis separately
        active_bins: Restrict the template to its first ``active_bins`` bins
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    axes: BinnedAxes
    templates: list[TemplateSourceType]
    coefficients: list[str] = Field(default_factory=list)
    mode: MorphMode = "additive"
    smooth_region: float = Field(default=1.0, gt=0)
    conditional: bool = False
    active_bins: int | None = None

    @field_validator("templates", mode="before")
    @classmethod
    def wrap_templates(cls, value: Any) -> Any:
        """Accept hist.Hist objects, templates and plain arrays as sources."""
        if isinstance(value, (list, tuple)):
            return [coerce_source(item) for item in value]
        return value

    @field_validator("mode", mode="before")
    @classmethod
    def smooth_algo(cls, value: Any) -> Any:
        """Translate an integer smoothing algorithm code into a mode."""
        if isinstance(value, int) and not isinstance(value, bool):
            return "multiplicative" if value < 0 else "additive"
        return value

    @model_validator(mode="after")
    def check_template_count(self) -> MorphConfig:
        """Validate that Nfunc = 2 * Ncoef + 1."""
        nfunc, ncoef = len(self.templates), len(self.coefficients)
        if nfunc != 2 * ncoef + 1:
            msg = (
                f"MorphConfig '{self.name}': number of templates and coefficients inconsistent, "
                f"must have Nfunc=1+2*Ncoef, got Nfunc={nfunc} and Ncoef={ncoef}"
            )
            raise ValueError(msg)
        duplicates = sorted({c for c in self.coefficients if self.coefficients.count(c) > 1})
        if duplicates:
            msg = f"MorphConfig '{self.name}': duplicate coefficients {duplicates}"
            raise ValueError(msg)
        return self

    @model_validator(mode="after")
    def check_conditional(self) -> MorphConfig:
        """Conditional normalization needs a second axis and the full grid."""
        if self.conditional and len(self.axes) < 2:
            msg = f"MorphConfig '{self.name}': conditional normalization needs at least 2 axes"
            raise ValueError(msg)
        if self.conditional and self.active_bins is not None:
            msg = f"MorphConfig '{self.name}': active_bins cannot be combined with conditional normalization"
            raise ValueError(msg)
        return self

    @model_validator(mode="after")
    def check_active_bins(self) -> MorphConfig:
        """Validate that active_bins fits in the binning."""
        total = self.axes.get_total_bins()
        if self.active_bins is not None and not 0 < self.active_bins <= total:
            msg = f"MorphConfig '{self.name}': active_bins must be in [1, {total}], got {self.active_bins}"
            raise ValueError(msg)
        return self

    @property
    def is_multiplicative(self) -> bool:
        """Whether variations are blended as log-ratios."""
        return self.mode == "multiplicative"


@dataclass(frozen=True)
class MorphRecord:
    """
    Precomputed ``(sum, diff)`` of one coefficient's hi/lo deltas.

    With ``hi'`` and ``lo'`` the hi/lo templates relative to nominal
    (differences, or log-ratios in multiplicative mode),
    ``sum = hi' + lo'`` and ``diff = hi' - lo'``.
    """

    sum: Template
    diff: Template

    def copy(self) -> MorphRecord:
        return MorphRecord(sum=self.sum.copy(), diff=self.diff.copy())


def _resolve_parameters(
    names: list[str],
    parameters: ParameterSet | Mapping[str, Parameter] | Iterable[Parameter],
) -> list[Parameter]:
    if isinstance(parameters, ParameterSet):
        lookup: Mapping[str, Parameter] = {p.name: p for p in parameters}
    elif isinstance(parameters, Mapping):
        lookup = parameters
    else:
        lookup = {p.name: p for p in parameters}
    missing = [name for name in names if name not in lookup]
    if missing:
        msg = f"No parameter provided for coefficient(s) {missing}"
        raise MorphConfigurationError(msg)
    return [lookup[name] for name in names]


class MorphingEngine:
    """
    Morphs a nominal template according to nuisance parameters, with caching.

    The engine moves through three states:

    - ``uninitialized``: nothing populated
    - ``nominal_ready``: nominal template and morph records built, cached
      total missing or stale
    - ``total_valid``: cached total matches the current parameter values

    :meth:`setup` reads every template source exactly once. Afterwards,
    :meth:`evaluate` rebuilds the cached total (see :meth:`recompute`) only
    if the :class:`~histmorph.sentry.Sentry` reports a changed parameter.

    The cached total is mutated in place: an engine must not be evaluated
    from several threads at once. Use :meth:`clone` to give each worker its
    own copy.

    Args:
        config: validated morph configuration
        parameters: parameters providing the coefficient values, looked up by name
        setup: build the templates immediately (configuration errors are then
            raised by the constructor)
    """

    def __init__(
        self,
        config: MorphConfig,
        parameters: ParameterSet | Mapping[str, Parameter] | Iterable[Parameter],
        setup: bool = True,
    ) -> None:
        self.config = config
        self._params = _resolve_parameters(config.coefficients, parameters)
        self._sentry = Sentry()
        self._nominal: Template | None = None
        self._nominal_log: Template | None = None
        self._morphs: list[MorphRecord] = []
        self._cache: Template | None = None
        self._valid = False
        self.recompute_count = 0
        if setup:
            self.setup()

    # --- state -----------------------------------------------------------

    @property
    def name(self) -> str:
        """Name of the morphed density."""
        return self.config.name

    @property
    def axes(self) -> BinnedAxes:
        """Binning shared by all templates."""
        return self.config.axes

    @property
    def parameters(self) -> list[Parameter]:
        """Coefficient parameters, in morphing-dimension order."""
        return list(self._params)

    @property
    def morphs(self) -> list[MorphRecord]:
        """Morph records, in morphing-dimension order."""
        return list(self._morphs)

    @property
    def nominal(self) -> Template:
        """The normalized nominal template."""
        if self._nominal is None:
            self.setup()
        return cast(Template, self._nominal)

    @property
    def state(self) -> EngineState:
        """Current cache state."""
        if self._nominal is None:
            return "uninitialized"
        if self._valid and self._sentry.good():
            return "total_valid"
        return "nominal_ready"

    @property
    def cache(self) -> Template:
        """The cached total template, refreshed if stale."""
        return self.refresh()

    # --- setup -----------------------------------------------------------

    def _normalize(self, template: Template) -> None:
        if self.config.conditional:
            template.normalize_x_slices()
        else:
            template.normalize()

    def _load(self, index: int, label: str) -> Template:
        template = self.config.templates[index].create_template(self.axes)
        template.name = template.name or f"{self.name}_{label}"
        self._normalize(template)
        return template

    def _make_morph(self, nominal: Template, hi: Template, lo: Template) -> MorphRecord:
        if self.config.is_multiplicative:
            hi.log_ratio(nominal)
            lo.log_ratio(nominal)
        else:
            hi.subtract(nominal)
            lo.subtract(nominal)
        record = MorphRecord(
            sum=Template(self.axes, name=f"{hi.name}_sum"),
            diff=Template(self.axes, name=f"{hi.name}_diff"),
        )
        Template.sum_diff(hi, lo, record.sum, record.diff)
        return record

    def setup(self) -> None:
        """
        Build the nominal template and every morph record.

        Reads each template source once, normalizes it (per first-axis slice
        when conditional) and derives the morph records. Registers every
        coefficient parameter with the sentry.

        Raises:
            BinningMismatchError: if a template does not fit the binning
        """
        nominal = self._load(0, "nominal")
        morphs = []
        for i, param in enumerate(self._params):
            hi = self._load(2 * i + 1, f"{param.name}_hi")
            lo = self._load(2 * i + 2, f"{param.name}_lo")
            morphs.append(self._make_morph(nominal, hi, lo))

        self._nominal = nominal
        self._morphs = morphs
        if self.config.is_multiplicative:
            self._nominal_log = nominal.copy()
            self._nominal_log.log()
        self._cache = nominal.copy()
        self._cache.name = f"{self.name}_total"
        self._valid = False
        self._sentry.add_vars(self._params)
        if self.config.active_bins is not None:
            self.set_active_bins(self.config.active_bins)
        log.debug(
            "Set up '%s': %d bin(s), %d morphing dimension(s), %s mode",
            self.name,
            nominal.full_size,
            len(morphs),
            self.config.mode,
        )

    def set_active_bins(self, bins: int) -> None:
        """
        Truncate every template to its first ``bins`` bins.

        Inactive bins are floored at :data:`~histmorph.template.UNDERFLOW_FLOOR`
        first, so that lookups outside the active range stay positive.
        """
        if self._nominal is None or self._cache is None:
            self.setup()
        nominal = cast(Template, self._nominal)
        cache = cast(Template, self._cache)
        if not 0 < bins <= nominal.full_size:
            msg = f"Active bins must be in [1, {nominal.full_size}], got {bins}"
            raise ValueError(msg)
        cache.crop_underflows(UNDERFLOW_FLOOR, active_only=False)
        nominal.crop_underflows(UNDERFLOW_FLOOR, active_only=False)
        templates = [cache, nominal]
        if self._nominal_log is not None:
            templates.append(self._nominal_log)
        for morph in self._morphs:
            templates.extend((morph.sum, morph.diff))
        for template in templates:
            template.set_active_size(bins)
        self._valid = False

    # --- evaluation ------------------------------------------------------

    def recompute(self) -> Template:
        """
        Rebuild the cached total from nominal and the current parameter values.

        Starts from the nominal (or its log), adds each dimension's smooth
        contribution in order, maps back to bin-content space (exponential,
        or a positive floor in additive mode), then normalizes.

        Returns:
            The cached total template
        """
        if self._nominal is None:
            self.setup()
        cache = cast(Template, self._cache)
        start = self._nominal_log if self.config.is_multiplicative else self._nominal
        cache.copy_values(cast(Template, start))

        for param, morph in zip(self._params, self._morphs, strict=True):
            a, b = vertical_coefficients(param.value, self.config.smooth_region)
            cache.meld(morph.diff, morph.sum, a, b)

        if self.config.is_multiplicative:
            cache.exp()
        else:
            cache.crop_underflows()
        self._normalize(cache)

        self._sentry.reset()
        self._valid = True
        self.recompute_count += 1
        log.debug("Recomputed '%s' (%d)", self.name, self.recompute_count)
        return cache

    def refresh(self) -> Template:
        """Make sure the cached total is valid and return it."""
        if self.state != "total_valid":
            return self.recompute()
        return cast(Template, self._cache)

    def evaluate(self, *coordinate: Any) -> float:
        """
        Density at ``coordinate`` for the current parameter values.

        Coordinates outside the binning are clamped to the edge bins.
        """
        return self.refresh().get_at(*coordinate)

    def evaluate_many(self, *columns: Any) -> np.ndarray:
        """Density at many coordinates, given as one array per axis."""
        cache = self.refresh()
        bins = self.axes.find_bin(*[np.asarray(c, dtype=np.float64) for c in columns])
        return np.asarray(cache.contents[bins], dtype=np.float64)

    def max_value(self, axis: int | None = None, *coordinate: Any) -> float:
        """
        Largest density value of the current total.

        Args:
            axis: if given, scan only this axis, holding the others at ``coordinate``
            coordinate: fixed values for the axes other than ``axis``
        """
        cache = self.refresh()
        if axis is None:
            return cache.max_value()
        return cache.max_along(axis, *coordinate)

    def clone(
        self,
        parameters: ParameterSet | Mapping[str, Parameter] | Iterable[Parameter] | None = None,
    ) -> MorphingEngine:
        """
        Independent copy with its own templates, cache and sentry.

        Args:
            parameters: parameters for the copy to read; defaults to the same
                parameter objects as this engine
        """
        if self._nominal is None:
            self.setup()
        other = MorphingEngine(
            self.config,
            self._params if parameters is None else parameters,
            setup=False,
        )
        other._nominal = self.nominal.copy()
        if self._nominal_log is not None:
            other._nominal_log = self._nominal_log.copy()
        other._morphs = [morph.copy() for morph in self._morphs]
        other._cache = cast(Template, self._cache).copy()
        other._sentry.add_vars(other._params)
        return other

    # --- symbolic rendition ----------------------------------------------

    def expression(self, context: Context) -> TensorVar:
        """
        PyTensor graph of the normalized total template (active bins, flat).

        Uses the same morph records as :meth:`recompute`, with each
        coefficient taken from ``context`` by name.

        Args:
            context: mapping of coefficient names to pytensor scalars

        Returns:
            TensorVar: vector of normalized bin contents
        """
        nominal = self.nominal
        start = self._nominal_log if self.config.is_multiplicative else nominal
        total: TensorVar = pt.as_tensor_variable(cast(Template, start).values.copy())
        for param, morph in zip(self._params, self._morphs, strict=True):
            total = total + vertical_contribution_tensor(
                context[param.name],
                morph.diff.values,
                morph.sum.values,
                self.config.smooth_region,
            )
        if self.config.is_multiplicative:
            total = pt.exp(total)
        else:
            total = pt.maximum(total, UNDERFLOW_FLOOR)

        if self.config.conditional:
            nslices = self.axes[0].nbins
            volumes = self.axes.bin_volumes(skip_first=True).reshape(nslices, -1)
            grid = total.reshape((nslices, -1))
            norms = pt.sum(grid * volumes, axis=1, keepdims=True)
            return cast(TensorVar, (grid / norms).flatten())
        volumes = self.axes.bin_volumes()[: nominal.size]
        return cast(TensorVar, total / pt.sum(total * volumes))

    def log_likelihood(self, context: Context, data: Dataset) -> TensorVar:
        """
        Weighted log-likelihood of ``data`` as a PyTensor expression.

        Args:
            context: mapping of coefficient names to pytensor scalars
            data: observations on this engine's axes

        Returns:
            TensorVar: ``sum_i w_i * log(f(x_i))``
        """
        density = self.expression(context)
        if not len(data):
            return cast(TensorVar, pt.constant(0.0))
        # bins past the active range read their stored, parameter-independent content
        tail = cast(Template, self._cache).contents[self.nominal.size :].copy()
        if tail.size:
            density = pt.concatenate([density, pt.as_tensor_variable(tail)])
        bins = np.atleast_1d(np.asarray(self.axes.find_bin(*data.columns()), dtype=np.int64))
        weights = data.weight_array()
        return cast(TensorVar, pt.sum(pt.log(density[bins]) * weights))

    def __repr__(self) -> str:
        return f"MorphingEngine(name={self.name!r}, dims={len(self._params)}, state={self.state!r})"
