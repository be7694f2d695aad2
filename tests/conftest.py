from __future__ import annotations

import pytest

from histmorph.axes import BinnedAxes
from histmorph.engine import MorphConfig, MorphingEngine
from histmorph.parameters import Parameter, ParameterSet


def pytest_addoption(parser):
    """Add command line options for test categories."""
    parser.addoption(
        "--runslow", action="store_true", default=False, help="run slow tests"
    )


def pytest_collection_modifyitems(config, items):
    """Skip tests based on command line options."""
    # Skip slow tests unless --runslow option is given
    if not config.getoption("--runslow"):
        skip_slow = pytest.mark.skip(reason="need --runslow option to run")
        for item in items:
            if "slow" in item.keywords:
                item.add_marker(skip_slow)


@pytest.fixture
def axes_1d():
    """Four unit-width bins on [0, 4]."""
    return BinnedAxes([{"name": "x", "min": 0.0, "max": 4.0, "nbins": 4}])


@pytest.fixture
def axes_2d():
    """3 x 4 unit-width bins."""
    return BinnedAxes(
        [
            {"name": "x", "min": 0.0, "max": 3.0, "nbins": 3},
            {"name": "y", "min": 0.0, "max": 4.0, "nbins": 4},
        ]
    )


@pytest.fixture
def axes_3d():
    """2 x 2 x 3 bins; the middle axis has edges [0, 1, 3]."""
    return BinnedAxes(
        [
            {"name": "x", "min": 0.0, "max": 2.0, "nbins": 2},
            {"name": "y", "edges": [0.0, 1.0, 3.0]},
            {"name": "z", "min": 0.0, "max": 3.0, "nbins": 3},
        ]
    )


@pytest.fixture
def alpha():
    """Single nuisance parameter at its nominal value."""
    return Parameter(name="alpha", value=0.0)


@pytest.fixture
def simple_config(axes_1d):
    """The 4-bin, one-dimension additive scenario."""
    return MorphConfig(
        name="simple",
        axes=axes_1d,
        templates=[[2, 4, 4, 2], [1, 3, 5, 3], [3, 5, 3, 1]],
        coefficients=["alpha"],
        mode="additive",
    )


@pytest.fixture
def simple_engine(simple_config, alpha):
    """Engine over the 4-bin scenario, driven by ``alpha``."""
    return MorphingEngine(simple_config, ParameterSet([alpha]))
