"""
typing
"""

from __future__ import annotations

from histmorph.typing.aliases import MorphMode, TensorVar

__all__ = (
    "MorphMode",
    "TensorVar",
)
