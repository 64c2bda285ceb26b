__all__ = [
    "ViscosimError",
    "ValidationError",
    "GridMismatchError",
    "SolverError",
    "MatrixBuildError",
    "PreconditionerError",
    "ConvergenceError",
    "InvariantError",
]


class ViscosimError(Exception):
    """Base class for all viscosim-related errors."""

    pass


class ValidationError(ViscosimError, ValueError):
    """Raised when input data fails validation checks."""

    pass


class GridMismatchError(ValidationError):
    """Raised when grids operated on together do not share a transform or shape."""

    pass


class SolverError(ViscosimError):
    """Base class for recoverable failures of the linear solve."""

    pass


class MatrixBuildError(SolverError):
    """Raised when the coefficient matrix cannot be built or factorised."""

    pass


class PreconditionerError(MatrixBuildError):
    """Raised when there is an error related to preconditioners."""

    pass


class ConvergenceError(SolverError):
    """Raised when an iterative solver fails to reach the requested tolerance."""

    pass


class InvariantError(ViscosimError, RuntimeError):
    """
    Raised when face labels and liquid DOF indices disagree.

    This points at a bug in classification or indexing, not at bad input.
    """

    pass
