"""
Implicit viscosity solve for free-surface liquids on a staggered grid.

One call to `solve_viscosity` performs the viscous step of a liquid simulation:
it estimates liquid volume fractions, decides which faces are unknowns, builds a
symmetric positive definite system from the control volumes and solves it with a
preconditioned Krylov method. The velocity field is only written once the solve
has succeeded.
"""

import logging
import typing

import attrs
import numba  # type: ignore[import-untyped]
import numpy as np

from viscosim._precision import get_solve_dtype
from viscosim.config import Config
from viscosim.errors import (
    GridMismatchError,
    InvariantError,
    MatrixBuildError,
    SolverError,
    ValidationError,
)
from viscosim.grids import ScalarGrid, VectorGrid, unflatten_index
from viscosim.levelset import LevelSet
from viscosim.linalg import solve_symmetric_system
from viscosim.parallel import parallel_for
from viscosim.types import OneDimensionalGrid, SampleType, ThreeDimensionalGrid
from viscosim.viscosity.assembly import ViscositySystem, assemble_viscosity_system
from viscosim.viscosity.coefficients import scale_control_volumes
from viscosim.viscosity.materials import classify_faces, number_liquid_faces
from viscosim.volumes import (
    compute_center_volumes,
    compute_edge_volumes,
    compute_face_volumes,
)

logger = logging.getLogger(__name__)

__all__ = [
    "ViscositySolveResult",
    "ViscosityProblem",
    "validate_inputs",
    "prepare_viscosity_system",
    "apply_solution",
    "solve_viscosity",
]


@attrs.frozen
class ViscositySolveResult:
    """Outcome of a viscosity solve."""

    success: bool
    """Whether the velocity field was updated."""
    dof_count: int
    """Number of liquid faces that were solved for."""
    iterations: int = 0
    """Iterations used by the linear solver."""
    residual: float = 0.0
    """Relative residual of the accepted solution."""
    message: typing.Optional[str] = None
    """Reason for a failure, if any."""


@attrs.frozen(eq=False)
class ViscosityProblem:
    """Everything the linear solve needs, before it runs."""

    labels: VectorGrid
    """Staggered grid of `FaceMaterial` values."""
    indices: VectorGrid
    """Staggered grid of liquid DOF indices."""
    system: ViscositySystem
    """Assembled coefficient triplets and vectors."""

    @property
    def dof_count(self) -> int:
        return self.system.dof_count


def validate_inputs(
    time_step_size: float,
    liquid_surface: LevelSet,
    velocity: VectorGrid,
    solid_surface: LevelSet,
    solid_velocity: VectorGrid,
    viscosity: ScalarGrid,
) -> None:
    """
    Check that the inputs of a viscosity solve describe one consistent grid.

    :raises ValidationError: If the time step is not positive or a grid has the wrong layout.
    :raises GridMismatchError: If the grids do not line up.
    """
    if not time_step_size > 0:
        raise ValidationError(f"Time step size must be positive, got {time_step_size}.")

    if not liquid_surface.is_grid_matched(solid_surface):
        raise GridMismatchError("Liquid and solid surfaces must share a transform and shape.")
    if not liquid_surface.is_grid_matched(viscosity):
        raise GridMismatchError("Viscosity must share the liquid surface's transform and shape.")
    if viscosity.sample_type != SampleType.CENTER:
        raise ValidationError("Viscosity must be sampled at cell centres.")

    for name, field in (("Velocity", velocity), ("Solid velocity", solid_velocity)):
        if field.sample_type != SampleType.FACE:
            raise ValidationError(f"{name} must be a staggered (face-sampled) grid.")
        if field.transform != liquid_surface.transform:
            raise GridMismatchError(f"{name} must share the liquid surface's transform.")
        for axis in range(3):
            expected = tuple(
                n + 1 if a == axis else n for a, n in enumerate(liquid_surface.shape)
            )
            if field.size(axis) != expected:
                raise GridMismatchError(
                    f"{name} component {axis} has shape {field.size(axis)}, "
                    f"expected {expected} for a {liquid_surface.shape} cell grid."
                )

    if not velocity.is_grid_matched(solid_velocity):
        raise GridMismatchError("Solid velocity must match the velocity grid.")


def _enforce_invariants(system: ViscositySystem, strict: bool) -> None:
    if not system.invariant_violations:
        return
    message = (
        f"{system.invariant_violations} face(s) have inconsistent material labels "
        f"and liquid DOF indices."
    )
    if strict:
        raise InvariantError(message)
    logger.warning(f"{message} Treating the unindexed liquid faces as air.")


def prepare_viscosity_system(
    time_step_size: float,
    liquid_surface: LevelSet,
    velocity: VectorGrid,
    solid_surface: LevelSet,
    solid_velocity: VectorGrid,
    viscosity: ScalarGrid,
    config: typing.Optional[Config] = None,
    axis_order: typing.Sequence[int] = (0, 1, 2),
) -> ViscosityProblem:
    """
    Run every stage of the viscosity solve up to, but excluding, the linear solve.

    :param time_step_size: Time step Δt.
    :param liquid_surface: Liquid level set (negative inside the liquid).
    :param velocity: Staggered velocity field. Not modified.
    :param solid_surface: Solid level set (negative inside solids).
    :param solid_velocity: Staggered solid velocity field.
    :param viscosity: Cell-centred viscosity coefficient.
    :param config: Solve configuration.
    :param axis_order: Order in which the face axes are assembled.
    :return: The labelled, numbered and assembled `ViscosityProblem`.
    :raises ValidationError: If the inputs are inconsistent.
    :raises InvariantError: If labels and DOF indices disagree and the config is strict.
    """
    config = config or Config()
    validate_inputs(
        time_step_size, liquid_surface, velocity, solid_surface, solid_velocity, viscosity
    )

    dtype = get_solve_dtype()
    samples = config.volume_samples
    center_volumes = compute_center_volumes(liquid_surface, samples, dtype=dtype)
    edge_volumes = compute_edge_volumes(liquid_surface, samples, dtype=dtype)
    face_volumes = compute_face_volumes(liquid_surface, samples, dtype=dtype)

    labels = classify_faces(
        center_volumes,
        edge_volumes,
        solid_surface,
        boundary_material=config.boundary_material,
        grain_size=config.grain_size,
        max_workers=config.max_workers,
    )
    indices, dof_count = number_liquid_faces(labels)
    logger.debug(f"Viscosity solve has {dof_count} liquid DOFs")

    scale_control_volumes(
        center_volumes,
        edge_volumes,
        viscosity,
        time_step_size,
        grain_size=config.grain_size,
        max_workers=config.max_workers,
    )
    system = assemble_viscosity_system(
        labels,
        indices,
        dof_count,
        velocity,
        solid_velocity,
        face_volumes,
        center_volumes,
        edge_volumes,
        grain_size=config.grain_size,
        max_workers=config.max_workers,
        axis_order=axis_order,
    )
    _enforce_invariants(system, strict=config.fail_on_unindexed_liquid)
    return ViscosityProblem(labels=labels, indices=indices, system=system)


@numba.njit(cache=True, nogil=True)
def _apply_solution_range(
    velocity: ThreeDimensionalGrid,
    indices: ThreeDimensionalGrid,
    solution: OneDimensionalGrid,
    start: int,
    stop: int,
) -> None:
    _, count_y, count_z = velocity.shape
    for flat_index in range(start, stop):
        i, j, k = unflatten_index(flat_index, count_y, count_z)
        index = indices[i, j, k]
        if index >= 0:
            velocity[i, j, k] = solution[index]


def apply_solution(
    velocity: VectorGrid,
    indices: VectorGrid,
    solution: OneDimensionalGrid,
    grain_size: int = 1000,
    max_workers: typing.Optional[int] = None,
) -> None:
    """
    Copy solved values back onto the liquid faces of `velocity`, in place.

    Faces without a DOF index are left untouched.
    """
    for axis in range(3):
        velocity_values = velocity[axis]
        index_values = indices[axis]
        values = np.ascontiguousarray(solution, dtype=velocity_values.dtype)
        parallel_for(
            velocity_values.size,
            lambda start, stop: _apply_solution_range(
                velocity_values, index_values, values, start, stop
            ),
            grain_size,
            max_workers,
        )


def solve_viscosity(
    time_step_size: float,
    liquid_surface: LevelSet,
    velocity: VectorGrid,
    solid_surface: LevelSet,
    solid_velocity: VectorGrid,
    viscosity: ScalarGrid,
    config: typing.Optional[Config] = None,
) -> ViscositySolveResult:
    """
    Apply one implicit viscosity step to `velocity`, in place.

    Liquid faces are coupled through the viscous stress terms. Solid faces impose
    their velocity (no-slip), air faces impose zero stress (free surface). If the
    linear solve fails, `velocity` is left exactly as it was and an unsuccessful
    result is returned.

    :param time_step_size: Time step Δt.
    :param liquid_surface: Liquid level set (negative inside the liquid).
    :param velocity: Staggered velocity field, updated in place on success.
    :param solid_surface: Solid level set (negative inside solids).
    :param solid_velocity: Staggered solid velocity field.
    :param viscosity: Cell-centred viscosity coefficient.
    :param config: Solve configuration.
    :return: `ViscositySolveResult` describing the outcome.
    :raises ValidationError: If the inputs are inconsistent.
    :raises InvariantError: If labels and DOF indices disagree and the config is strict.
    """
    config = config or Config()
    problem = prepare_viscosity_system(
        time_step_size,
        liquid_surface,
        velocity,
        solid_surface,
        solid_velocity,
        viscosity,
        config=config,
    )
    system = problem.system
    if system.dof_count == 0:
        logger.debug("No liquid faces, skipping viscosity solve")
        return ViscositySolveResult(success=True, dof_count=0)

    try:
        A_csr = system.to_csr()
        if not (np.all(np.isfinite(system.rhs)) and np.all(np.isfinite(system.initial_guess))):
            raise MatrixBuildError("Right-hand side or initial guess is not finite.")

        result = solve_symmetric_system(
            A_csr,
            system.rhs,
            system.initial_guess,
            rtol=config.convergence_tolerance,
            max_iterations=config.max_iterations,
            solver=config.iterative_solver,
            preconditioner=config.preconditioner,
        )
    except SolverError as exc:
        logger.error(f"Viscosity solve failed, velocity left unchanged: {exc}")
        return ViscositySolveResult(
            success=False, dof_count=system.dof_count, message=str(exc)
        )

    apply_solution(
        velocity,
        problem.indices,
        result.solution.astype(get_solve_dtype(), copy=False),
        grain_size=config.grain_size,
        max_workers=config.max_workers,
    )
    logger.info(
        f"Viscosity solve: {system.dof_count} DOFs, {result.iterations} iterations, "
        f"relative residual {result.residual:.3e}"
    )
    return ViscositySolveResult(
        success=True,
        dof_count=system.dof_count,
        iterations=result.iterations,
        residual=result.residual,
    )
