#!/usr/bin/env python3
"""
Example usage of histmorph: morphed template densities with caching.

This script demonstrates:
1. Building a morphing engine from histograms
2. Cached evaluation while a nuisance parameter moves
3. Bulk extraction of predicted bin contents for a dataset
4. Compiling the log-likelihood with PyTensor
"""

import time
from contextlib import contextmanager

import hist
import numpy as np
import pytensor
from pytensor import function

import histmorph as hm
from histmorph.context import Context
from histmorph.logging import setup


@contextmanager
def time_block(label):
    start = time.perf_counter()
    yield
    end = time.perf_counter()
    print(f"{label}: {end - start:.4f} seconds")


def main():
    """Main example function demonstrating histmorph features."""
    setup()
    print("=== histmorph Example: Vertical Morphing ===\n")

    rng = np.random.default_rng(1)
    axes = hm.BinnedAxes([{"name": "mass", "min": 100.0, "max": 150.0, "nbins": 50}])

    def sample(mean):
        histogram = hist.Hist(*axes.to_hist())
        histogram.fill(rng.normal(mean, 5.0, 100_000))
        return histogram

    # Example 1: Setup
    print("1. Engine setup")
    print("=" * 40)
    with time_block("Filling templates and building morph records"):
        config = hm.MorphConfig(
            name="signal",
            axes=axes,
            templates=[sample(125.0), sample(126.0), sample(124.0)],
            coefficients=["scale"],
            mode="multiplicative",
        )
        scale = hm.Parameter(name="scale", value=0.0)
        engine = hm.MorphingEngine(config, hm.ParameterSet([scale]))
    print(engine)
    print()

    # Example 2: Cached evaluation
    print("2. Cached evaluation")
    print("=" * 40)
    with time_block("1000 evaluations, parameter fixed"):
        for _ in range(1000):
            engine.evaluate(125.0)
    with time_block("1000 evaluations, parameter moving"):
        for value in np.linspace(-2.0, 2.0, 1000):
            scale.value = value
            engine.evaluate(125.0)
    print(f"Recomputations: {engine.recompute_count}")
    print()

    # Example 3: Bulk extraction
    print("3. Bulk extraction")
    print("=" * 40)
    data = hm.Dataset.from_arrays(np.sort(rng.normal(125.5, 5.0, 10_000)))
    view = hm.BulkView(engine, data)
    print(f"Plan: {view.kind} ({len(view.blocks)} block(s))")
    with time_block("Filling predicted contents"):
        predicted = view.fill()
    print(f"Sum of log-densities: {np.log(predicted).sum():.3f}")
    print()

    # Example 4: Symbolic log-likelihood
    print("4. PyTensor log-likelihood")
    print("=" * 40)
    context = Context.scalars(["scale"])
    nll = -engine.log_likelihood(context, data)
    with time_block("Compiling value and gradient"):
        f = function([context["scale"]], [nll, pytensor.grad(nll, context["scale"])])
    for value in (-1.0, 0.0, 0.5, 1.0):
        nll_value, slope = f(value)
        print(f"scale={value:+.1f}  nll={float(nll_value):.3f}  d/dscale={float(slope):+.3f}")


if __name__ == "__main__":
    main()
