"""
Exception classes for histmorph.

Configuration failures of morphing engines derive from
:class:`MorphConfigurationError`, which is also a ``ValueError``.
"""

from __future__ import annotations

from typing import Any

from pydantic import (
    ValidationError,
    ValidationInfo,
    WrapValidator,
)
from pydantic_core import ErrorDetails, InitErrorDetails, PydanticCustomError


class HistMorphException(Exception):
    """Base class of every histmorph error."""


class MorphConfigurationError(HistMorphException, ValueError):
    """
    A morphing engine cannot be set up.

    Raised for a template count other than ``2 * n_coefficients + 1``, a
    coefficient without a matching parameter, or a source of the wrong
    dimensionality.
    """


class BinningMismatchError(MorphConfigurationError):
    """A template's binning disagrees with the engine axes."""


def custom_error_msg(custom_messages: dict[str, str]) -> Any:
    """
    Replace pydantic error messages by error type.

    Used on the discriminated unions of axes and template sources, so that a
    dict without ``type`` (or with both ``nbins`` and ``edges``) reports what
    was expected instead of pydantic's generic tag error. Messages are
    formatted with the error context plus ``input`` and the already
    validated fields of the enclosing model.

    Args:
        custom_messages: message template per pydantic error type, e.g.
            ``{"union_tag_invalid": "Unknown template source type '{tag}'"}``

    Returns:
        A ``WrapValidator`` to put in an ``Annotated`` type
    """

    def _rewrite(error: ErrorDetails, ctx: ValidationInfo) -> InitErrorDetails | ErrorDetails:
        message = custom_messages.get(error["type"])
        if message is None:
            return error
        err_ctx = {**error.get("ctx", {}), "input": error["input"]}
        if ctx.data:
            err_ctx.update(ctx.data)
        return InitErrorDetails(
            type=PydanticCustomError(error["type"], message, err_ctx),
            loc=error["loc"],
            input=error["input"],
        )

    def _validator(v: Any, next_: Any, ctx: ValidationInfo) -> Any:
        try:
            return next_(v, ctx)
        except ValidationError as exc:
            errors = []
            for error in exc.errors():
                # skip the current location
                error["loc"] = error["loc"][1:]
                errors.append(_rewrite(error, ctx))
            raise ValidationError.from_exception_data(
                title=exc.title,
                line_errors=errors,  # type: ignore[arg-type]
            ) from None

    return WrapValidator(_validator)
