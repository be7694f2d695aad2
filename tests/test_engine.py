"""
Tests for the morphing engine.

Covers configuration validation, the anchor and extrapolation behaviour of
additive and multiplicative morphing, normalization, caching through the
sentry, active bins, cloning and maxima.
"""

from __future__ import annotations

import numpy as np
import pytest
from pydantic import ValidationError

from histmorph.data import Dataset
from histmorph.engine import MorphConfig, MorphingEngine
from histmorph.exceptions import BinningMismatchError, MorphConfigurationError
from histmorph.parameters import Parameter, ParameterSet
from histmorph.sources import DatasetSource, DensitySource, HistogramSource
from histmorph.template import UNDERFLOW_FLOOR

NOMINAL = np.array([2.0, 4.0, 4.0, 2.0])
HI = np.array([1.0, 3.0, 5.0, 3.0])
LO = np.array([3.0, 5.0, 3.0, 1.0])


def make_engine(axes, templates, coefficients=("alpha",), values=None, **kwargs):
    params = ParameterSet.from_values(
        values if values is not None else dict.fromkeys(coefficients, 0.0)
    )
    config = MorphConfig(
        name="test",
        axes=axes,
        templates=templates,
        coefficients=list(coefficients),
        **kwargs,
    )
    return MorphingEngine(config, params), params


class TestMorphConfig:
    """Test MorphConfig validation."""

    def test_defaults(self, simple_config):
        """Test defaults and template coercion."""
        assert simple_config.mode == "additive"
        assert not simple_config.is_multiplicative
        assert simple_config.smooth_region == 1.0
        assert not simple_config.conditional
        assert simple_config.active_bins is None
        assert all(isinstance(t, HistogramSource) for t in simple_config.templates)

    def test_template_count(self, axes_1d):
        """Test Nfunc must equal 2 * Ncoef + 1."""
        with pytest.raises(
            ValidationError, match=r"must have Nfunc=1\+2\*Ncoef, got Nfunc=2 and Ncoef=1"
        ):
            MorphConfig(
                name="bad", axes=axes_1d, templates=[NOMINAL, HI], coefficients=["alpha"]
            )

    def test_duplicate_coefficients(self, axes_1d):
        """Test coefficients are unique."""
        with pytest.raises(ValidationError, match=r"duplicate coefficients \['alpha'\]"):
            MorphConfig(
                name="bad",
                axes=axes_1d,
                templates=[NOMINAL, HI, LO, HI, LO],
                coefficients=["alpha", "alpha"],
            )

    @pytest.mark.parametrize(
        ("smooth_algo", "mode"),
        [(1, "additive"), (0, "additive"), (-1, "multiplicative")],
    )
    def test_smooth_algo(self, axes_1d, smooth_algo, mode):
        """Test integer smoothing codes select the mode by sign."""
        config = MorphConfig(
            name="m", axes=axes_1d, templates=[NOMINAL], mode=smooth_algo
        )
        assert config.mode == mode

    def test_unknown_mode(self, axes_1d):
        """Test unknown mode names are rejected."""
        with pytest.raises(ValidationError):
            MorphConfig(name="m", axes=axes_1d, templates=[NOMINAL], mode="spline")

    def test_smooth_region_positive(self, axes_1d):
        """Test the smooth region must be positive."""
        with pytest.raises(ValidationError):
            MorphConfig(name="m", axes=axes_1d, templates=[NOMINAL], smooth_region=0.0)

    def test_conditional_needs_two_axes(self, axes_1d):
        """Test conditional normalization in one dimension is rejected."""
        with pytest.raises(ValidationError, match="needs at least 2 axes"):
            MorphConfig(name="m", axes=axes_1d, templates=[NOMINAL], conditional=True)

    def test_conditional_with_active_bins(self, axes_2d):
        """Test conditional normalization excludes active bins."""
        with pytest.raises(ValidationError, match="cannot be combined"):
            MorphConfig(
                name="m",
                axes=axes_2d,
                templates=[np.ones(12)],
                conditional=True,
                active_bins=4,
            )

    @pytest.mark.parametrize("active_bins", [0, 5])
    def test_active_bins_range(self, axes_1d, active_bins):
        """Test active bins must fit in the binning."""
        with pytest.raises(ValidationError, match=r"active_bins must be in \[1, 4\]"):
            MorphConfig(
                name="m", axes=axes_1d, templates=[NOMINAL], active_bins=active_bins
            )

    def test_templates_from_dicts(self, axes_1d):
        """Test serialized sources are accepted."""
        config = MorphConfig(
            name="m",
            axes=axes_1d,
            templates=[
                {"type": "histogram", "bin_contents": NOMINAL.tolist()},
                {"type": "dataset", "data": {"entries": [[0.5], [1.5]]}},
                {"type": "density", "function": lambda x: x},
            ],
            coefficients=["alpha"],
        )
        assert isinstance(config.templates[1], DatasetSource)
        assert isinstance(config.templates[2], DensitySource)

    def test_invalid_template(self, axes_1d):
        """Test values that are not template sources are rejected."""
        with pytest.raises(ValidationError):
            MorphConfig(name="m", axes=axes_1d, templates=["nominal"])


class TestEngineSetup:
    """Test engine construction and states."""

    def test_states(self, simple_config, alpha):
        """Test the uninitialized -> nominal_ready -> total_valid cycle."""
        engine = MorphingEngine(simple_config, ParameterSet([alpha]), setup=False)
        assert engine.state == "uninitialized"
        engine.setup()
        assert engine.state == "nominal_ready"
        engine.evaluate(0.5)
        assert engine.state == "total_valid"
        alpha.value = 0.3
        assert engine.state == "nominal_ready"
        engine.evaluate(0.5)
        assert engine.state == "total_valid"

    def test_missing_parameter(self, simple_config):
        """Test every coefficient needs a parameter."""
        with pytest.raises(MorphConfigurationError, match=r"\['alpha'\]"):
            MorphingEngine(simple_config, ParameterSet.from_values({"beta": 0.0}))

    def test_parameter_containers(self, simple_config, alpha):
        """Test parameters may be given as mapping or iterable."""
        assert MorphingEngine(simple_config, {"alpha": alpha}).parameters == [alpha]
        assert MorphingEngine(simple_config, [alpha]).parameters == [alpha]

    def test_binning_mismatch(self, axes_1d):
        """Test a template with the wrong number of bins fails setup."""
        config = MorphConfig(
            name="m", axes=axes_1d, templates=[NOMINAL, HI, [1.0, 2.0]], coefficients=["alpha"]
        )
        with pytest.raises(BinningMismatchError):
            MorphingEngine(config, ParameterSet.from_values({"alpha": 0.0}))

    def test_nominal_is_normalized(self, simple_engine):
        """Test the nominal template integrates to one."""
        np.testing.assert_allclose(simple_engine.nominal.values, NOMINAL / 12.0)
        assert simple_engine.nominal.integral() == pytest.approx(1.0)

    def test_morph_records(self, simple_engine):
        """Test records hold sum and difference of the normalized deltas."""
        (record,) = simple_engine.morphs
        hi = (HI - NOMINAL) / 12.0
        lo = (LO - NOMINAL) / 12.0
        np.testing.assert_allclose(record.sum.values, hi + lo)
        np.testing.assert_allclose(record.diff.values, hi - lo)

    def test_setup_reads_sources_once(self, axes_1d):
        """Test each source is evaluated once, during setup."""
        calls = []

        def density(x):
            calls.append(1)
            return np.ones_like(x)

        engine, params = make_engine(
            axes_1d, [{"type": "density", "function": density}], coefficients=()
        )
        engine.evaluate(0.5)
        engine.evaluate(2.5)
        assert len(calls) == 1

    def test_repr(self, simple_engine):
        """Test the representation."""
        assert repr(simple_engine) == "MorphingEngine(name='simple', dims=1, state='nominal_ready')"


class TestAdditiveMorphing:
    """Test additive vertical morphing."""

    def test_nominal_at_zero(self, simple_engine):
        """Test x = 0 reproduces the normalized nominal."""
        np.testing.assert_allclose(simple_engine.cache.values, NOMINAL / 12.0)

    @pytest.mark.parametrize(("x", "expected"), [(1.0, HI), (-1.0, LO)])
    def test_anchors(self, simple_engine, alpha, x, expected):
        """Test x = +-1 reproduces the normalized hi and lo templates."""
        alpha.value = x
        np.testing.assert_allclose(simple_engine.cache.values, expected / 12.0)

    def test_extrapolation_with_floor(self, simple_engine, alpha):
        """Test x = 2 extrapolates linearly, floors the empty bin and renormalizes."""
        alpha.value = 2.0
        values = simple_engine.cache.values
        np.testing.assert_allclose(values, np.array([0.0, 2.0, 6.0, 4.0]) / 12.0, atol=1e-8)
        assert values[0] == pytest.approx(UNDERFLOW_FLOOR, rel=1e-6)
        assert np.all(values > 0.0)
        assert simple_engine.cache.integral() == pytest.approx(1.0)

    def test_extrapolation_is_linear(self, axes_1d):
        """Test the density is linear in x beyond the smooth region."""
        engine, params = make_engine(
            axes_1d, [[4.0, 4.0, 4.0, 4.0], [5.0, 4.0, 4.0, 3.0], [3.0, 4.0, 4.0, 5.0]]
        )
        results = []
        for x in (1.0, 2.0, 3.0):
            params["alpha"].value = x
            results.append(engine.cache.values.copy())
        np.testing.assert_allclose(results[2] - results[1], results[1] - results[0])
        np.testing.assert_allclose(results[2], np.array([7.0, 4.0, 4.0, 1.0]) / 16.0)

    def test_smooth_through_anchor(self, axes_1d):
        """Test the slope is continuous across x = 1 for asymmetric variations."""
        engine, params = make_engine(
            axes_1d, [[4.0, 4.0, 4.0, 4.0], [6.0, 4.0, 3.0, 3.0], [3.0, 5.0, 4.0, 4.0]]
        )
        alpha = params["alpha"]
        h = 1e-6

        def at(x):
            alpha.value = x
            return engine.cache.values.copy()

        centre = at(1.0)
        left = (centre - at(1.0 - h)) / h
        right = (at(1.0 + h) - centre) / h
        np.testing.assert_allclose(left, right, atol=1e-4)

    def test_two_dimensions_of_morphing(self, axes_1d):
        """Test contributions of several coefficients add up."""
        flat = [4.0, 4.0, 4.0, 4.0]
        engine, params = make_engine(
            axes_1d,
            [flat, [5.0, 4.0, 4.0, 3.0], [3.0, 4.0, 4.0, 5.0], [4.0, 5.0, 3.0, 4.0], [4.0, 3.0, 5.0, 4.0]],
            coefficients=("alpha", "beta"),
        )
        params.update({"alpha": 1.0, "beta": 1.0})
        np.testing.assert_allclose(engine.cache.values, np.array([5.0, 5.0, 3.0, 3.0]) / 16.0)

    def test_evaluate_many(self, simple_engine, alpha):
        """Test vectorised evaluation matches per-point evaluation."""
        alpha.value = 0.4
        xs = np.array([0.5, 3.5, 1.2, -1.0, 10.0])
        expected = [simple_engine.evaluate(x) for x in xs]
        np.testing.assert_allclose(simple_engine.evaluate_many(xs), expected)


class TestMultiplicativeMorphing:
    """Test multiplicative (log-ratio) vertical morphing."""

    @pytest.fixture
    def engine(self, simple_config, alpha):
        config = simple_config.model_copy(update={"mode": "multiplicative"})
        return MorphingEngine(config, ParameterSet([alpha]))

    @pytest.mark.parametrize(("x", "expected"), [(0.0, NOMINAL), (1.0, HI), (-1.0, LO)])
    def test_anchors(self, engine, alpha, x, expected):
        """Test x = 0 and x = +-1 reproduce the normalized templates."""
        alpha.value = x
        np.testing.assert_allclose(engine.cache.values, expected / 12.0)

    def test_stays_positive(self, engine, alpha):
        """Test large extrapolations stay strictly positive."""
        alpha.value = 6.0
        assert np.all(engine.cache.values > 0.0)
        assert engine.cache.integral() == pytest.approx(1.0)

    def test_log_linear_extrapolation(self, engine, alpha):
        """Test the unnormalized log-density is linear beyond x = 1."""
        alpha.value = 3.0
        ratio = engine.cache.values / engine.cache.values[1]
        expected = (NOMINAL / 12.0) * ((HI / 12.0) / (NOMINAL / 12.0)) ** 3
        np.testing.assert_allclose(ratio, expected / expected[1])

    def test_empty_nominal_bin(self, axes_1d):
        """Test an empty nominal bin stays empty instead of producing NaNs."""
        config = MorphConfig(
            name="m",
            axes=axes_1d,
            templates=[[0.0, 4.0, 4.0, 2.0], HI, LO],
            coefficients=["alpha"],
            mode="multiplicative",
        )
        alpha = Parameter(name="alpha", value=0.5)
        engine = MorphingEngine(config, [alpha])
        values = engine.cache.values
        assert np.all(np.isfinite(values))
        assert values[0] < 1e-300


class TestConditional:
    """Test normalization per first-axis slice."""

    def test_slices_normalized(self, axes_2d):
        """Test every x slice integrates to one for any alpha."""
        rng = np.random.default_rng(42)
        nominal, hi, lo = (rng.uniform(1.0, 5.0, 12) for _ in range(3))
        engine, params = make_engine(axes_2d, [nominal, hi, lo], conditional=True)
        for x in (-2.0, -0.5, 0.0, 0.7, 1.0, 3.0):
            params["alpha"].value = x
            slices = engine.cache.values.reshape(3, 4).sum(axis=1)
            np.testing.assert_allclose(slices, 1.0)

    def test_nominal_at_zero(self, axes_2d):
        """Test x = 0 gives the slice-normalized nominal."""
        nominal = np.arange(1.0, 13.0)
        engine, _ = make_engine(axes_2d, [nominal, nominal * 2, nominal / 2], conditional=True)
        grid = nominal.reshape(3, 4)
        expected = grid / grid.sum(axis=1, keepdims=True)
        np.testing.assert_allclose(engine.cache.values, expected.ravel())

    def test_slices_normalized_3d(self, axes_3d):
        """Test volume-weighted slice integrals and the +1 anchor on a 2 x 2 x 3 grid."""
        rng = np.random.default_rng(3)
        nominal, hi, lo = (rng.uniform(0.5, 4.0, 12) for _ in range(3))
        engine, params = make_engine(axes_3d, [nominal, hi, lo], conditional=True)
        volumes = axes_3d.bin_volumes(skip_first=True).reshape(2, 6)
        for x in (-1.7, -1.0, 0.0, 0.4, 1.0, 2.2):
            params["alpha"].value = x
            grid = engine.cache.values.reshape(2, 6)
            np.testing.assert_allclose((grid * volumes).sum(axis=1), 1.0)

        params["alpha"].value = 1.0
        anchor = hi.reshape(2, 6)
        anchor = anchor / (anchor * volumes).sum(axis=1, keepdims=True)
        np.testing.assert_allclose(engine.cache.values, anchor.ravel())
        assert engine.evaluate(1.5, 2.0, 0.5) == pytest.approx(anchor.ravel()[9])
        assert engine.evaluate(0.5, 0.5, 2.5) == pytest.approx(anchor.ravel()[2])

    def test_evaluate_2d(self, axes_2d):
        """Test lookups by coordinate in two dimensions."""
        nominal = np.arange(1.0, 13.0)
        engine, _ = make_engine(axes_2d, [nominal], coefficients=())
        assert engine.evaluate(1.5, 2.5) == pytest.approx(7.0 / nominal.sum())


class TestCaching:
    """Test recomputation is driven by parameter changes only."""

    def test_no_recompute_without_change(self, simple_engine):
        """Test repeated evaluation recomputes once."""
        assert simple_engine.recompute_count == 0
        first = simple_engine.evaluate(0.5)
        second = simple_engine.evaluate(0.5)
        assert first == second
        assert simple_engine.recompute_count == 1

    def test_recompute_on_change(self, simple_engine, alpha):
        """Test a moved parameter triggers exactly one recompute."""
        simple_engine.evaluate(0.5)
        alpha.value = 0.5
        simple_engine.evaluate(0.5)
        simple_engine.evaluate(1.5)
        assert simple_engine.recompute_count == 2

    def test_same_value_does_not_recompute(self, simple_engine, alpha):
        """Test re-assigning the same value keeps the cache."""
        simple_engine.evaluate(0.5)
        alpha.value = 0.0
        simple_engine.evaluate(0.5)
        assert simple_engine.recompute_count == 1

    def test_recompute_is_deterministic(self, simple_engine, alpha):
        """Test forced recomputation reproduces the cache."""
        alpha.value = 0.7
        before = simple_engine.cache.values.copy()
        simple_engine.recompute()
        np.testing.assert_array_equal(simple_engine.cache.values, before)


class TestActiveBins:
    """Test restriction to the first bins."""

    def test_normalized_over_active_bins(self, axes_1d):
        """Test only the active bins enter the normalization."""
        engine, params = make_engine(axes_1d, [NOMINAL, HI, LO], active_bins=3)
        params["alpha"].value = 0.5
        cache = engine.cache
        assert cache.size == 3
        assert cache.values.sum() == pytest.approx(1.0)

    def test_set_active_bins_invalidates(self, simple_engine):
        """Test changing the active range forces a recompute."""
        simple_engine.evaluate(0.5)
        simple_engine.set_active_bins(2)
        assert simple_engine.state == "nominal_ready"
        np.testing.assert_allclose(simple_engine.cache.values, [1 / 3, 2 / 3])
        assert simple_engine.recompute_count == 2

    def test_inactive_bins_positive(self, axes_1d):
        """Test lookups outside the active range stay positive."""
        engine, _ = make_engine(axes_1d, [[1.0, 1.0, 0.0, 0.0]], coefficients=(), active_bins=2)
        assert engine.evaluate(3.5) >= UNDERFLOW_FLOOR

    @pytest.mark.parametrize("bins", [0, 5])
    def test_invalid(self, simple_engine, bins):
        """Test out-of-range active bins are rejected."""
        with pytest.raises(ValueError, match=r"Active bins must be in \[1, 4\]"):
            simple_engine.set_active_bins(bins)


class TestCloneAndMaxima:
    """Test cloning and maximum lookups."""

    def test_clone_shares_parameters(self, simple_engine, alpha):
        """Test a clone follows the same parameter with its own cache."""
        clone = simple_engine.clone()
        alpha.value = 1.0
        np.testing.assert_allclose(clone.cache.values, simple_engine.cache.values)
        assert clone.cache is not simple_engine.cache
        assert clone.recompute_count == 1

    def test_clone_with_new_parameters(self, simple_engine):
        """Test a clone may read its own parameters."""
        other = Parameter(name="alpha", value=-1.0)
        clone = simple_engine.clone([other])
        np.testing.assert_allclose(clone.cache.values, LO / 12.0)
        np.testing.assert_allclose(simple_engine.cache.values, NOMINAL / 12.0)

    def test_clone_is_independent(self, simple_engine):
        """Test changing the clone's active range leaves the original alone."""
        clone = simple_engine.clone()
        clone.set_active_bins(2)
        assert simple_engine.cache.size == 4

    def test_max_value(self, simple_engine, alpha):
        """Test the global maximum."""
        alpha.value = 1.0
        assert simple_engine.max_value() == pytest.approx(5.0 / 12.0)

    def test_max_along(self, axes_2d):
        """Test the maximum along one axis at fixed other coordinates."""
        nominal = np.arange(1.0, 13.0)
        engine, _ = make_engine(axes_2d, [nominal], coefficients=())
        assert engine.max_value(1, 0.5) == pytest.approx(4.0 / nominal.sum())
        assert engine.max_value(0, 0.5) == pytest.approx(9.0 / nominal.sum())


class TestDatasetTemplates:
    """Test engines built from weighted datasets."""

    def test_dataset_nominal(self, axes_1d):
        """Test a dataset nominal is filled and normalized."""
        data = Dataset(entries=[[0.5], [1.5], [1.5], [2.5]])
        engine, _ = make_engine(axes_1d, [DatasetSource(data=data)], coefficients=())
        np.testing.assert_allclose(engine.cache.values, [0.25, 0.5, 0.25, 0.0], atol=1e-8)
