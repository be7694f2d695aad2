"""
Parameter implementations.

Provides the Pydantic classes for the scalar nuisance parameters that drive
template morphing, and the named collection handed to a morphing engine.
"""

from __future__ import annotations

from collections.abc import Mapping

from pydantic import ConfigDict, Field, model_validator

from histmorph.collections import NamedCollection, NamedModel


class Parameter(NamedModel):
    """
    Scalar parameter with a mutable current value.

    A minimizer moves ``value`` between evaluations; morphing engines only
    ever read it. Assignments are validated, so ``value`` stays a float.

    Parameters:
        name: Name identifier for the parameter
        value: Current numeric value of the parameter
        min: Optional lower bound
        max: Optional upper bound
        const: Whether the parameter is held constant in a fit
    """

    model_config = ConfigDict(validate_assignment=True)

    value: float = 0.0
    min: float | None = Field(default=None, repr=False)
    max: float | None = Field(default=None, repr=False)
    const: bool = Field(default=False, repr=False)

    @model_validator(mode="after")
    def check_bounds(self) -> Parameter:
        """Validate that min <= max when both are given."""
        if self.min is not None and self.max is not None and self.max < self.min:
            msg = f"Parameter '{self.name}': max ({self.max}) must be >= min ({self.min})"
            raise ValueError(msg)
        return self


class ParameterSet(NamedCollection[Parameter]):
    """
    Named collection of parameters.

    Provides dict-like access by name (and list-like access by index) to the
    parameters a morphing engine reads.
    """

    @classmethod
    def from_values(cls, values: Mapping[str, float]) -> ParameterSet:
        """Build a set of parameters from a name-to-value mapping."""
        return cls([Parameter(name=name, value=value) for name, value in values.items()])

    def values(self) -> dict[str, float]:
        """Current values of all parameters, keyed by name."""
        return {param.name: param.value for param in self}

    def update(self, values: Mapping[str, float]) -> None:
        """Assign new values to the named parameters."""
        for name, value in values.items():
            self[name].value = value
