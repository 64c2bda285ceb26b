import logging
import threading
import typing

import attrs
import numpy as np
import pyamg  # type: ignore[import-untyped]
from scipy.sparse import coo_array, csr_array, csr_matrix, diags  # type: ignore[import-untyped]
from scipy.sparse.linalg import LinearOperator, cg, minres, spsolve  # type: ignore[import-untyped]

from viscosim._precision import get_floating_point_info, get_solve_dtype
from viscosim.errors import (
    ConvergenceError,
    MatrixBuildError,
    PreconditionerError,
    ValidationError,
)
from viscosim.types import Preconditioner, PreconditionerFactory, Solver, SolverFunc

logger = logging.getLogger(__name__)


__all__ = [
    "LinearSolveResult",
    "build_sparse_matrix",
    "build_diagonal_preconditioner",
    "build_amg_preconditioner",
    "solve_symmetric_system",
    "preconditioner_factory",
    "solver_func",
    "list_preconditioner_factories",
    "list_solver_funcs",
    "get_preconditioner_factory",
    "get_solver_func",
]


@attrs.frozen(eq=False)
class LinearSolveResult:
    """Solution of a linear system together with solver diagnostics."""

    solution: np.ndarray
    """Solution vector."""
    iterations: int
    """Number of solver iterations (0 for direct solves)."""
    residual: float
    """Relative residual ||b - A·x|| / ||b|| of the returned solution."""
    solver: str
    """Name of the solver that produced the solution."""


def build_sparse_matrix(
    rows: np.ndarray,
    cols: np.ndarray,
    values: np.ndarray,
    size: int,
) -> csr_array:
    """
    Build a square CSR matrix from coefficient triplets.

    Duplicate `(row, col)` pairs are summed, so contributions may arrive in any order.

    :param rows: Row index of each contribution.
    :param cols: Column index of each contribution.
    :param values: Value of each contribution.
    :param size: Number of rows and columns.
    :return: The summed matrix in CSR format.
    :raises MatrixBuildError: If the triplets are inconsistent or contain non-finite values.
    """
    if not (rows.shape == cols.shape == values.shape):
        raise MatrixBuildError(
            f"Triplet arrays differ in length: {rows.shape}, {cols.shape}, {values.shape}."
        )
    if values.size and not np.all(np.isfinite(values)):
        bad = int(np.count_nonzero(~np.isfinite(values)))
        raise MatrixBuildError(f"{bad} non-finite matrix coefficient(s).")
    if rows.size and (
        rows.min() < 0 or cols.min() < 0 or rows.max() >= size or cols.max() >= size
    ):
        raise MatrixBuildError(f"Triplet index outside a {size}x{size} matrix.")

    try:
        matrix = coo_array(
            (values.astype(get_solve_dtype(), copy=False), (rows, cols)),
            shape=(size, size),
        ).tocsr()
    except Exception as exc:
        raise MatrixBuildError(f"Failed to build sparse matrix: {exc}") from exc
    matrix.sum_duplicates()
    return matrix


def build_amg_preconditioner(
    A_csr: typing.Union[csr_array, csr_matrix], cycle: str = "V", **kwargs: typing.Any
) -> LinearOperator:
    """
    Creates an Algebraic Multigrid (AMG) preconditioner using PyAMG.

    Smoothed aggregation AMG is symmetric, so it can be used with conjugate gradients.

    :param A_csr: The coefficient matrix in CSR format.
    :param cycle: Multigrid cycle type ('V', 'W', 'F').
    :param kwargs: Additional arguments for `pyamg.smoothed_aggregation_solver`.
    :return: A SciPy `LinearOperator` that represents the AMG preconditioner.
    """
    ml_solver = pyamg.smoothed_aggregation_solver(csr_matrix(A_csr), **kwargs)
    return ml_solver.aspreconditioner(cycle=cycle)


def build_diagonal_preconditioner(
    A_csr: typing.Union[csr_array, csr_matrix],
) -> LinearOperator:
    """
    Creates a diagonal (Jacobi) preconditioner from the coefficient matrix.

    :param A_csr: The coefficient matrix in CSR format.
    :return: A SciPy `LinearOperator` that represents the diagonal preconditioner.
    """
    diag_elements = A_csr.diagonal()
    # Rows with a vanishing diagonal are left unscaled
    epsilon = get_floating_point_info().eps
    threshold = max(1e-10, 100 * epsilon)
    diag_elements = np.where(np.abs(diag_elements) < threshold, 1.0, diag_elements)
    M_diag = diags(1.0 / diag_elements, format="csr")
    return LinearOperator(shape=A_csr.shape, matvec=M_diag.dot, dtype=M_diag.dtype)  # type: ignore[arg-type]


def _cg(
    A: typing.Any,
    b: typing.Any,
    x0: typing.Optional[typing.Any],
    *,
    rtol: float,
    maxiter: typing.Optional[int],
    M: typing.Optional[typing.Any],
    callback: typing.Optional[typing.Callable[[np.typing.NDArray], None]],
) -> typing.Tuple[np.typing.NDArray, int]:
    return cg(A, b, x0=x0, rtol=rtol, atol=0.0, maxiter=maxiter, M=M, callback=callback)


def _minres(
    A: typing.Any,
    b: typing.Any,
    x0: typing.Optional[typing.Any],
    *,
    rtol: float,
    maxiter: typing.Optional[int],
    M: typing.Optional[typing.Any],
    callback: typing.Optional[typing.Callable[[np.typing.NDArray], None]],
) -> typing.Tuple[np.typing.NDArray, int]:
    return minres(A, b, x0=x0, rtol=rtol, maxiter=maxiter, M=M, callback=callback)


def _spsolve(
    A: typing.Any,
    b: typing.Any,
    x0: typing.Optional[typing.Any],
    *,
    rtol: float,
    maxiter: typing.Optional[int],
    M: typing.Optional[typing.Any],
    callback: typing.Optional[typing.Callable[[np.typing.NDArray], None]],
) -> typing.Tuple[np.typing.NDArray, int]:
    x = spsolve(A.tocsc(), b)
    info = 0 if np.all(np.isfinite(x)) else -1
    return np.atleast_1d(x), info


_registry_lock = threading.Lock()

_PRECONDITIONER_FACTORIES: typing.Dict[str, PreconditionerFactory] = {
    "amg": build_amg_preconditioner,
    "diagonal": build_diagonal_preconditioner,
}
"""Preconditioner factories by name."""

_SOLVER_FUNCS: typing.Dict[str, SolverFunc] = {
    "cg": _cg,
    "minres": _minres,
    "direct": _spsolve,
}
"""Symmetric solvers by name."""


def _register(
    registry: typing.Dict[str, typing.Any],
    kind: str,
    func: typing.Any,
    name: typing.Optional[str],
    override: bool,
) -> None:
    key = name or getattr(func, "__name__", None)
    if not key:
        raise ValueError(f"{kind} needs a `__name__` attribute or an explicit name.")
    with _registry_lock:
        if key in registry and not override:
            raise ValueError(
                f"{kind} {key!r} already exists. Pass `override=True` to replace it."
            )
        registry[key] = func


def _lookup(registry: typing.Dict[str, typing.Any], kind: str, name: str) -> typing.Any:
    with _registry_lock:
        try:
            return registry[name]
        except KeyError:
            raise ValidationError(
                f"Unknown {kind.lower()} {name!r}. Registered: {sorted(registry)}"
            ) from None


def preconditioner_factory(
    func: typing.Optional[PreconditionerFactory] = None,
    name: typing.Optional[str] = None,
    override: bool = False,
) -> typing.Any:
    """
    Register a preconditioner factory, directly or as a decorator.

    A factory takes the CSR matrix and returns a SciPy `LinearOperator`. Operators
    used with conjugate gradients must be symmetric positive definite.

    :param func: Factory to register.
    :param name: Registry key. Defaults to the factory's `__name__`.
    :param override: Replace an existing factory with the same key.
    :return: The factory itself, or a decorator when `func` is not given.
    """

    def decorator(func: PreconditionerFactory) -> PreconditionerFactory:
        _register(_PRECONDITIONER_FACTORIES, "Preconditioner", func, name, override)
        return func

    return decorator(func) if func is not None else decorator


def list_preconditioner_factories() -> typing.List[str]:
    with _registry_lock:
        return list(_PRECONDITIONER_FACTORIES)


def get_preconditioner_factory(name: str) -> PreconditionerFactory:
    """
    Look up a registered preconditioner factory.

    :raises ValidationError: If no factory is registered under `name`.
    """
    return _lookup(_PRECONDITIONER_FACTORIES, "Preconditioner", name)


def solver_func(
    func: typing.Optional[SolverFunc] = None,
    name: typing.Optional[str] = None,
    override: bool = False,
) -> typing.Any:
    """
    Register a symmetric solver, directly or as a decorator.

    Solvers follow the `SolverFunc` protocol: matrix, right-hand side and initial
    guess in, solution and a SciPy-style info flag out.

    :param func: Solver to register.
    :param name: Registry key. Defaults to the solver's `__name__`.
    :param override: Replace an existing solver with the same key.
    :return: The solver itself, or a decorator when `func` is not given.
    """

    def decorator(func: SolverFunc) -> SolverFunc:
        _register(_SOLVER_FUNCS, "Solver", func, name, override)
        return func

    return decorator(func) if func is not None else decorator


def list_solver_funcs() -> typing.List[str]:
    with _registry_lock:
        return list(_SOLVER_FUNCS)


def get_solver_func(name: str) -> SolverFunc:
    """
    Look up a registered solver.

    :raises ValidationError: If no solver is registered under `name`.
    """
    return _lookup(_SOLVER_FUNCS, "Solver", name)


def _get_preconditioner(
    A_csr: typing.Union[csr_array, csr_matrix],
    preconditioner: typing.Optional[Preconditioner],
) -> typing.Optional[LinearOperator]:
    """
    Resolve a preconditioner name, factory or operator against `A_csr`.

    :raises ValidationError: If the preconditioner is neither registered nor callable.
    """
    if isinstance(preconditioner, (type(None), LinearOperator)):
        return preconditioner
    if isinstance(preconditioner, str):
        return get_preconditioner_factory(preconditioner)(A_csr)
    if callable(preconditioner):
        factory = typing.cast(PreconditionerFactory, preconditioner)
        return factory(A_csr)
    raise ValidationError(f"Invalid preconditioner specification: {preconditioner!r}")


def _get_solver_func(solver: Solver) -> typing.Tuple[str, SolverFunc]:
    """
    Resolve a solver specification to a name and a solver function.

    :param solver: Registered solver name or a solver callable.
    :return: Tuple of (name, solver function).
    :raises ValidationError: If the solver is unknown.
    """
    if isinstance(solver, str):
        return solver, get_solver_func(solver)
    if callable(solver):
        return getattr(solver, "__name__", repr(solver)), solver
    raise ValidationError(f"Invalid solver specification: {solver!r}")


def solve_symmetric_system(
    A_csr: typing.Union[csr_array, csr_matrix],
    b: np.typing.NDArray,
    x0: typing.Optional[np.typing.NDArray] = None,
    rtol: float = 1e-3,
    max_iterations: typing.Optional[int] = None,
    solver: Solver = "cg",
    preconditioner: typing.Optional[Preconditioner] = "diagonal",
) -> LinearSolveResult:
    """
    Solves the symmetric linear system A·x = b, starting from an initial guess.

    Two failure points are kept apart: building the preconditioner (the
    factorisation step) raises `PreconditionerError`, a `MatrixBuildError`;
    an iterative solve that does not reach `rtol` within `max_iterations`, breaks
    down, or returns non-finite values raises `ConvergenceError`.

    :param A_csr: Symmetric coefficient matrix in CSR format.
    :param b: Right-hand side vector.
    :param x0: Initial guess. Zero if not given.
    :param rtol: Relative residual tolerance, ||b - A·x|| <= rtol·||b||.
    :param max_iterations: Maximum number of iterations. Defaults to twice the system size.
    :param solver: Registered solver name ("cg", "minres", "direct") or a solver callable.
    :param preconditioner: Preconditioner name ("diagonal", "amg"), factory, operator or None.
    :return: `LinearSolveResult` with the solution and diagnostics.
    :raises MatrixBuildError: If the preconditioner cannot be built.
    :raises ConvergenceError: If the solver fails.
    """
    name, solve = _get_solver_func(solver)
    is_direct = solve is _spsolve
    if is_direct:
        M = None
    else:
        try:
            M = _get_preconditioner(A_csr, preconditioner)
        except ValidationError:
            raise
        except Exception as exc:
            raise PreconditionerError(f"Error building preconditioner: {exc}") from exc

    n = A_csr.shape[0]
    max_iterations = max_iterations if max_iterations is not None else max(2 * n, 1)
    iterations = 0

    def count_iteration(_: np.typing.NDArray) -> None:
        nonlocal iterations
        iterations += 1

    try:
        x, info = solve(
            A_csr,
            b,
            x0,
            rtol=rtol,
            maxiter=max_iterations,
            M=M,
            callback=None if is_direct else count_iteration,
        )
    except Exception as exc:
        raise ConvergenceError(f"Solver {name!r} raised: {exc}") from exc

    if info > 0:
        raise ConvergenceError(
            f"Solver {name!r} failed to converge within {max_iterations} iterations."
        )
    if info < 0:
        raise ConvergenceError(f"Solver {name!r} broke down (info={info}).")

    x = np.ascontiguousarray(x)
    if not np.all(np.isfinite(x)):
        raise ConvergenceError(f"Solver {name!r} returned non-finite values.")

    b_norm = float(np.linalg.norm(b))
    residual_norm = float(np.linalg.norm(b - A_csr @ x))
    residual = residual_norm / b_norm if b_norm > 0 else residual_norm
    return LinearSolveResult(
        solution=x, iterations=iterations, residual=residual, solver=name
    )
