r"""
Vertical interpolation between a nominal template and its hi/lo variations.

For a nuisance value :math:`x` the per-bin shift is

.. math::

    \alpha(x) = \frac{x}{2} \left( (\delta^+ - \delta^-) + (\delta^+ + \delta^-) s(x) \right)

with :math:`\delta^\pm` the hi/lo deltas (differences or log-ratios to the
nominal) and :math:`s` the smooth step below. It satisfies
:math:`\alpha(0) = 0`, :math:`\alpha(\pm 1) = \delta^\pm`, grows as
:math:`|x| \delta^\pm` beyond :math:`|x| = 1` and has continuous first and
second derivatives.

Numeric versions operate on floats and numpy arrays, the ``*_tensor``
versions build the same expressions with PyTensor.
"""

from __future__ import annotations

from typing import cast

import numpy as np
import numpy.typing as npt
import pytensor.tensor as pt

from histmorph.typing.aliases import TensorVar


def smooth_step(x: float, smooth_region: float = 1.0) -> float:
    r"""
    Odd, saturating step with continuous first and second derivative.

    .. math::

        s(x) = \begin{cases}
        \operatorname{sign}(x) & \text{if } |x| \geq r \\
        \frac{t}{8} \left(15 + t^2 (3 t^2 - 10)\right) & \text{otherwise, } t = x / r
        \end{cases}

    Args:
        x: nuisance parameter value
        smooth_region: half-width :math:`r` of the polynomial region

    Returns:
        :math:`s(x)`, with :math:`s(0) = 0` and :math:`s(\pm r) = \pm 1`
    """
    if abs(x) >= smooth_region:
        return 1.0 if x > 0 else -1.0
    t = x / smooth_region
    t2 = t * t
    return 0.125 * t * (t2 * (3.0 * t2 - 10.0) + 15.0)


def vertical_coefficients(x: float, smooth_region: float = 1.0) -> tuple[float, float]:
    """
    The ``(a, b)`` pair of :meth:`Template.meld` for nuisance value ``x``.

    The contribution added to the running template is ``a * diff + a * b * sum``.
    """
    return 0.5 * x, smooth_step(x, smooth_region)


def vertical_contribution(
    x: float,
    diff: npt.ArrayLike,
    sum_: npt.ArrayLike,
    smooth_region: float = 1.0,
) -> npt.NDArray[np.float64]:
    r"""Per-bin shift :math:`\alpha(x)` from precomputed ``diff`` and ``sum`` arrays."""
    a, b = vertical_coefficients(x, smooth_region)
    return cast(
        npt.NDArray[np.float64],
        a * (np.asarray(diff, dtype=np.float64) + b * np.asarray(sum_, dtype=np.float64)),
    )


def smooth_step_tensor(x: TensorVar, smooth_region: float = 1.0) -> TensorVar:
    """PyTensor version of :func:`smooth_step`."""
    t = x / smooth_region
    t2 = t * t
    poly = 0.125 * t * (t2 * (3.0 * t2 - 10.0) + 15.0)
    return cast(
        TensorVar,
        pt.where(  # type: ignore[no-untyped-call]
            x >= smooth_region,
            1.0,
            pt.where(x <= -smooth_region, -1.0, poly),  # type: ignore[no-untyped-call]
        ),
    )


def vertical_contribution_tensor(
    x: TensorVar,
    diff: npt.ArrayLike,
    sum_: npt.ArrayLike,
    smooth_region: float = 1.0,
) -> TensorVar:
    """PyTensor version of :func:`vertical_contribution`."""
    diff_t = pt.as_tensor_variable(np.asarray(diff, dtype=np.float64))
    sum_t = pt.as_tensor_variable(np.asarray(sum_, dtype=np.float64))
    return cast(
        TensorVar,
        0.5 * x * (diff_t + smooth_step_tensor(x, smooth_region) * sum_t),
    )
