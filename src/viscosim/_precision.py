from contextlib import contextmanager
from contextvars import ContextVar

import numpy as np


__all__ = [
    "get_dtype",
    "set_dtype",
    "with_precision",
    "use_64bit_precision",
    "use_32bit_precision",
    "get_solve_dtype",
    "set_solve_dtype",
    "with_solve_precision",
    "get_floating_point_info",
]

_field_dtype: ContextVar[np.typing.DTypeLike] = ContextVar(
    "_viscosim_field_dtype", default=np.float32
)
_solve_dtype: ContextVar[np.typing.DTypeLike] = ContextVar(
    "_viscosim_solve_dtype", default=np.float64
)


def get_dtype() -> np.typing.DTypeLike:
    """
    Get the data type used to store grid samples (velocities, level sets, viscosity).

    :return: The current field data type.
    """
    return _field_dtype.get()


def set_dtype(dtype: np.typing.DTypeLike) -> None:
    """
    Set the data type used to store grid samples in the current context.

    :param dtype: The data type to set as default.
    """
    _field_dtype.set(dtype)


@contextmanager
def with_precision(dtype: np.typing.DTypeLike):
    """
    Context manager to temporarily set the field data type.

    :param dtype: The data type to set within the context.
    """
    token = _field_dtype.set(dtype)
    try:
        yield
    finally:
        _field_dtype.reset(token)


def use_64bit_precision() -> None:
    """Store grid samples as float64."""
    set_dtype(np.float64)


def use_32bit_precision() -> None:
    """
    Store grid samples as float32.

    Default field precision.
    """
    set_dtype(np.float32)


def get_solve_dtype() -> np.typing.DTypeLike:
    """
    Get the data type used for control volumes, matrix coefficients and solve vectors.

    Kept separate from the field dtype so that single precision grids can
    still be solved in double precision.

    :return: The current solve data type.
    """
    return _solve_dtype.get()


def set_solve_dtype(dtype: np.typing.DTypeLike) -> None:
    """
    Set the solve data type in the current context.

    :param dtype: The data type to set as default.
    """
    _solve_dtype.set(dtype)


@contextmanager
def with_solve_precision(dtype: np.typing.DTypeLike):
    """
    Context manager to temporarily set the solve data type.

    :param dtype: The data type to set within the context.
    """
    token = _solve_dtype.set(dtype)
    try:
        yield
    finally:
        _solve_dtype.reset(token)


def get_floating_point_info() -> np.finfo[np.floating]:
    """
    Get the floating point information for the current solve data type.

    :return: The floating point information.
    """
    return np.finfo(get_solve_dtype())  # type: ignore
