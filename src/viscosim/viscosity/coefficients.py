import logging
import typing

import numba  # type: ignore[import-untyped]
import numpy as np

from viscosim.errors import ValidationError
from viscosim.grids import ScalarGrid, VectorGrid, interpolate_trilinear, unflatten_index
from viscosim.parallel import parallel_for
from viscosim.types import ThreeDimensionalGrid

logger = logging.getLogger(__name__)

__all__ = ["compute_discrete_scalar", "scale_control_volumes"]


@numba.njit(cache=True, nogil=True)
def _scale_center_volume_range(
    center_volumes: ThreeDimensionalGrid,
    viscosity_values: ThreeDimensionalGrid,
    discrete_scalar: float,
    start: int,
    stop: int,
) -> None:
    _, count_y, count_z = center_volumes.shape
    for flat_index in range(start, stop):
        i, j, k = unflatten_index(flat_index, count_y, count_z)
        if center_volumes[i, j, k] > 0.0:
            center_volumes[i, j, k] *= 2.0 * discrete_scalar * viscosity_values[i, j, k]


@numba.njit(cache=True, nogil=True)
def _scale_edge_volume_range(
    edge_volumes: ThreeDimensionalGrid,
    viscosity_values: ThreeDimensionalGrid,
    viscosity_shift: np.ndarray,
    discrete_scalar: float,
    start: int,
    stop: int,
) -> None:
    _, count_y, count_z = edge_volumes.shape
    for flat_index in range(start, stop):
        i, j, k = unflatten_index(flat_index, count_y, count_z)
        if edge_volumes[i, j, k] > 0.0:
            # Edges do not coincide with the cell-centred viscosity samples
            edge_viscosity = interpolate_trilinear(
                viscosity_values,
                i + viscosity_shift[0],
                j + viscosity_shift[1],
                k + viscosity_shift[2],
            )
            edge_volumes[i, j, k] *= discrete_scalar * edge_viscosity


def compute_discrete_scalar(time_step_size: float, spacing: float) -> float:
    """
    Discretisation constant κ = Δt / h² of the viscous stress operator.

    :param time_step_size: Time step Δt.
    :param spacing: Grid spacing h.
    :return: κ
    """
    if time_step_size <= 0:
        raise ValidationError(f"Time step size must be positive, got {time_step_size}.")
    if spacing <= 0:
        raise ValidationError(f"Grid spacing must be positive, got {spacing}.")
    return float(time_step_size) / (float(spacing) * float(spacing))


def scale_control_volumes(
    center_volumes: ScalarGrid,
    edge_volumes: VectorGrid,
    viscosity: ScalarGrid,
    time_step_size: float,
    grain_size: int = 1000,
    max_workers: typing.Optional[int] = None,
) -> float:
    """
    Pre-scale the control volumes, in place, by the discretisation constants and viscosity.

    Cell volumes become `2κ·μ(cell)·volume` and edge volumes `κ·μ(edge)·volume`, with
    μ(edge) interpolated at the edge midpoint. Volumes that are not strictly positive
    are left untouched, so they keep dropping out of the stencil.

    :param center_volumes: Cell-centred volume fractions.
    :param edge_volumes: Edge volume fractions.
    :param viscosity: Cell-centred viscosity coefficient.
    :param time_step_size: Time step Δt.
    :param grain_size: Voxels processed per parallel task.
    :param max_workers: Number of worker threads.
    :return: The discretisation constant κ that was applied.
    """
    discrete_scalar = compute_discrete_scalar(time_step_size, center_volumes.dx)

    parallel_for(
        center_volumes.voxel_count,
        lambda start, stop: _scale_center_volume_range(
            center_volumes.values, viscosity.values, discrete_scalar, start, stop
        ),
        grain_size,
        max_workers,
    )

    for edge_axis in range(3):
        edge_grid = edge_volumes.grid(edge_axis)
        viscosity_shift = edge_grid.index_shift_to(viscosity)
        parallel_for(
            edge_grid.voxel_count,
            lambda start, stop: _scale_edge_volume_range(
                edge_grid.values,
                viscosity.values,
                viscosity_shift,
                discrete_scalar,
                start,
                stop,
            ),
            grain_size,
            max_workers,
        )

    logger.debug(f"Scaled control volumes with discrete scalar {discrete_scalar:.6g}")
    return discrete_scalar
