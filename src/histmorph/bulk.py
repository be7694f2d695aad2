"""
Bulk extraction of predicted bin contents for a fixed dataset.

A :class:`BulkView` maps the observations of a dataset to bins of a
:class:`~histmorph.engine.MorphingEngine` once, and chooses the cheapest way
to copy the matching cached contents on every later :meth:`BulkView.fill`:

- ``contiguous``: the bins form one increasing run, a single slice copy
- ``blocks``: the bins split into a few increasing runs, one slice per run
- ``arbitrary``: an explicit index gather

The plan is only valid as long as neither the dataset nor the engine binning
change; build a new view otherwise.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

import numpy as np
import numpy.typing as npt

from histmorph.data import Dataset
from histmorph.engine import MorphingEngine

log = logging.getLogger(__name__)

PlanKind = Literal["empty", "contiguous", "blocks", "arbitrary"]


@dataclass(frozen=True)
class Block:
    """Run of consecutive bins ``[begin, end)`` written to ``out[index:]``."""

    index: int
    begin: int
    end: int

    def __len__(self) -> int:
        return self.end - self.begin


class BulkView:
    """
    Precomputed access plan from a dataset's events to cached bin contents.

    Args:
        engine: morphing engine whose cached total is read
        data: observations on the engine's axes
        include_zero_weights: keep events with zero weight (dropped otherwise)
        block_factor: use the block plan while the number of blocks is below
            ``block_factor`` times the number of events, the index gather
            otherwise
    """

    def __init__(
        self,
        engine: MorphingEngine,
        data: Dataset,
        include_zero_weights: bool = False,
        block_factor: float = 4.0,
    ) -> None:
        if len(data) and data.ndim != len(engine.axes):
            msg = f"Dataset '{data.name}' has {data.ndim} coordinate(s), engine '{engine.name}' has {len(engine.axes)} axes"
            raise ValueError(msg)
        self.engine = engine
        self.block_factor = block_factor
        self._begin = 0
        self._end = 0
        self._blocks: list[Block] = []
        self._bins: npt.NDArray[np.intp] = np.empty(0, dtype=np.intp)

        engine.refresh()
        if len(data):
            keep = np.ones(len(data), dtype=bool)
            if not include_zero_weights:
                keep = data.weight_array() != 0
            bins = np.atleast_1d(engine.axes.find_bin(*data.columns()))[keep]
        else:
            bins = np.empty(0, dtype=np.intp)
        self._size = int(bins.size)
        self.kind = self._plan(bins.astype(np.intp))
        log.debug(
            "Bulk view of '%s' on '%s': %s, %d event(s), %d block(s)",
            data.name,
            engine.name,
            self.kind,
            self._size,
            len(self._blocks),
        )

    def _plan(self, bins: npt.NDArray[np.intp]) -> PlanKind:
        if bins.size == 0:
            return "empty"
        breaks = np.flatnonzero(np.diff(bins) != 1) + 1
        if breaks.size == 0:
            self._begin = int(bins[0])
            self._end = int(bins[-1]) + 1
            return "contiguous"
        starts = np.concatenate(([0], breaks))
        stops = np.concatenate((breaks, [bins.size]))
        blocks = [
            Block(index=int(start), begin=int(bins[start]), end=int(bins[stop - 1]) + 1)
            for start, stop in zip(starts, stops, strict=True)
        ]
        if len(blocks) < self.block_factor * bins.size:
            self._blocks = blocks
            return "blocks"
        self._bins = bins
        return "arbitrary"

    @property
    def blocks(self) -> list[Block]:
        """Blocks of the ``blocks`` plan (empty for other plans)."""
        return list(self._blocks)

    def __len__(self) -> int:
        return self._size

    def fill(
        self, out: npt.NDArray[np.float64] | None = None
    ) -> npt.NDArray[np.float64]:
        """
        Write the cached bin content of every planned event, in event order.

        Refreshes the engine cache first if a parameter moved.

        Args:
            out: optional destination of length ``len(self)``

        Returns:
            The filled array
        """
        values = self.engine.refresh().contents
        if out is None:
            out = np.empty(self._size, dtype=np.float64)
        elif out.shape != (self._size,):
            msg = f"Output buffer has shape {out.shape}, expected ({self._size},)"
            raise ValueError(msg)

        if self.kind == "contiguous":
            out[:] = values[self._begin : self._end]
        elif self.kind == "blocks":
            for block in self._blocks:
                out[block.index : block.index + len(block)] = values[block.begin : block.end]
        elif self.kind == "arbitrary":
            np.take(values, self._bins, out=out)
        return out

    def __repr__(self) -> str:
        return f"BulkView(engine={self.engine.name!r}, kind={self.kind!r}, events={self._size})"
