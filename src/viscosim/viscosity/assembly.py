import logging
import typing

import attrs
import numba  # type: ignore[import-untyped]
import numpy as np
from scipy.sparse import csr_array  # type: ignore[import-untyped]

from viscosim._precision import get_solve_dtype
from viscosim.grids import (
    ScalarGrid,
    VectorGrid,
    cell_to_face,
    edge_to_face,
    face_to_cell,
    face_to_edge,
    select_axis,
    unflatten_index,
)
from viscosim.linalg import build_sparse_matrix
from viscosim.parallel import merge_triplet_buffers, parallel_for
from viscosim.types import FaceMaterial, ThreeDimensionalGrid

logger = logging.getLogger(__name__)

__all__ = ["ViscositySystem", "assemble_viscosity_system", "MAX_ROW_ENTRIES"]

_SOLID = int(FaceMaterial.SOLID)
_LIQUID = int(FaceMaterial.LIQUID)
_AIR = int(FaceMaterial.AIR)

MAX_ROW_ENTRIES = 21
"""
Upper bound on triplets emitted per liquid face: 4 normal-stress contributions
(2 cells x 2 gradient faces), 16 shear contributions (2 edge axes x 2 edges x
2 gradient axes x 2 directions) and the diagonal.
"""


@attrs.frozen(eq=False)
class ViscositySystem:
    """Assembled viscosity system over the liquid DOF index space."""

    rows: np.ndarray
    """Row index of each coefficient contribution."""
    cols: np.ndarray
    """Column index of each coefficient contribution."""
    values: np.ndarray
    """Value of each coefficient contribution. Duplicates are summed."""
    rhs: np.ndarray
    """Right-hand side, one entry per liquid DOF."""
    initial_guess: np.ndarray
    """Current face velocities, one entry per liquid DOF."""
    dof_count: int
    """Number of liquid DOFs."""
    invariant_violations: int = 0
    """Faces whose label and DOF index disagreed during assembly."""

    def to_csr(self) -> csr_array:
        """Sum the contributions into a CSR matrix."""
        return build_sparse_matrix(self.rows, self.cols, self.values, self.dof_count)


@numba.njit(cache=True, nogil=True)
def _in_bounds(array: ThreeDimensionalGrid, i: int, j: int, k: int) -> bool:
    count_x, count_y, count_z = array.shape
    return 0 <= i < count_x and 0 <= j < count_y and 0 <= k < count_z


@numba.njit(cache=True, nogil=True)
def _clamped(array: ThreeDimensionalGrid, i: int, j: int, k: int):
    count_x, count_y, count_z = array.shape
    return array[
        min(max(i, 0), count_x - 1),
        min(max(j, 0), count_y - 1),
        min(max(k, 0), count_z - 1),
    ]


@numba.njit(cache=True, nogil=True)
def _couple(
    row: int,
    coefficient: float,
    gi: int,
    gj: int,
    gk: int,
    labels: ThreeDimensionalGrid,
    indices: ThreeDimensionalGrid,
    solid_velocity: ThreeDimensionalGrid,
    rows: np.ndarray,
    cols: np.ndarray,
    values: np.ndarray,
    count: int,
) -> typing.Tuple[float, float, int, int]:
    """
    Apply one gradient-face contribution to the row of a liquid face.

    :return: Tuple of (diagonal change, rhs change, new triplet count, invariant violations)
    """
    # Gradient faces beyond the grid only exist for edges on the domain boundary,
    # which is a wall
    if not _in_bounds(labels, gi, gj, gk):
        return 0.0, coefficient * _clamped(solid_velocity, gi, gj, gk), count, 0

    column = indices[gi, gj, gk]
    if column >= 0:
        if column == row:
            return -coefficient, 0.0, count, 0
        rows[count] = row
        cols[count] = column
        values[count] = -coefficient
        return 0.0, 0.0, count + 1, 0

    material = labels[gi, gj, gk]
    if material == _SOLID:
        return 0.0, coefficient * solid_velocity[gi, gj, gk], count, 0
    elif material == _AIR:
        # Free surface: no stress across the liquid-air interface
        return 0.0, 0.0, count, 0
    # A LIQUID face without a DOF index
    return 0.0, 0.0, count, 1


@numba.njit(cache=True, nogil=True)
def _assemble_face_range(
    face_axis: int,
    start: int,
    stop: int,
    labels_x: ThreeDimensionalGrid,
    labels_y: ThreeDimensionalGrid,
    labels_z: ThreeDimensionalGrid,
    indices_x: ThreeDimensionalGrid,
    indices_y: ThreeDimensionalGrid,
    indices_z: ThreeDimensionalGrid,
    velocity_x: ThreeDimensionalGrid,
    velocity_y: ThreeDimensionalGrid,
    velocity_z: ThreeDimensionalGrid,
    solid_velocity_x: ThreeDimensionalGrid,
    solid_velocity_y: ThreeDimensionalGrid,
    solid_velocity_z: ThreeDimensionalGrid,
    face_volumes: ThreeDimensionalGrid,
    center_volumes: ThreeDimensionalGrid,
    edge_volumes_x: ThreeDimensionalGrid,
    edge_volumes_y: ThreeDimensionalGrid,
    edge_volumes_z: ThreeDimensionalGrid,
    rhs: np.ndarray,
    initial_guess: np.ndarray,
) -> typing.Tuple[np.ndarray, np.ndarray, np.ndarray, int]:
    """
    Build the matrix rows of the liquid faces in `[start, stop)` on `face_axis`.

    Triplets go to buffers owned by this call. `rhs` and `initial_guess` are shared,
    but only the entries of this range's own DOFs are written.

    :return: Tuple of (rows, cols, values, invariant violations)
    """
    labels = select_axis(face_axis, labels_x, labels_y, labels_z)
    indices = select_axis(face_axis, indices_x, indices_y, indices_z)
    velocity = select_axis(face_axis, velocity_x, velocity_y, velocity_z)
    _, count_y, count_z = labels.shape

    capacity = (stop - start) * MAX_ROW_ENTRIES
    rows = np.empty(capacity, dtype=np.int64)
    cols = np.empty(capacity, dtype=np.int64)
    values = np.empty(capacity, dtype=np.float64)
    count = 0
    violations = 0

    for flat_index in range(start, stop):
        i, j, k = unflatten_index(flat_index, count_y, count_z)
        row = indices[i, j, k]
        if row < 0:
            if labels[i, j, k] == _LIQUID:
                violations += 1
            continue
        if labels[i, j, k] != _LIQUID:
            violations += 1

        # The old velocity is the initial guess for the new one
        face_velocity = velocity[i, j, k]
        initial_guess[row] = face_velocity

        face_volume = face_volumes[i, j, k]
        rhs_value = face_volume * face_velocity
        diagonal = face_volume

        # Cell-centred (normal) stress terms
        for divergence_direction in range(2):
            ci, cj, ck = face_to_cell(i, j, k, face_axis, divergence_direction)
            cell_volume = center_volumes[ci, cj, ck]
            if not cell_volume > 0.0:
                continue
            divergence_sign = -1.0 if divergence_direction == 0 else 1.0

            for gradient_direction in range(2):
                gi, gj, gk = cell_to_face(ci, cj, ck, face_axis, gradient_direction)
                gradient_sign = -1.0 if gradient_direction == 0 else 1.0
                coefficient = divergence_sign * gradient_sign * cell_volume

                diagonal_change, rhs_change, count, violation = _couple(
                    row,
                    coefficient,
                    gi,
                    gj,
                    gk,
                    labels,
                    indices,
                    select_axis(
                        face_axis, solid_velocity_x, solid_velocity_y, solid_velocity_z
                    ),
                    rows,
                    cols,
                    values,
                    count,
                )
                diagonal += diagonal_change
                rhs_value += rhs_change
                violations += violation

        # Edge (shear) stress terms
        for edge_axis in range(3):
            if edge_axis == face_axis:
                continue
            edge_volumes = select_axis(
                edge_axis, edge_volumes_x, edge_volumes_y, edge_volumes_z
            )

            for divergence_direction in range(2):
                ei, ej, ek = face_to_edge(i, j, k, face_axis, edge_axis, divergence_direction)
                edge_volume = edge_volumes[ei, ej, ek]
                if not edge_volume > 0.0:
                    continue
                divergence_sign = -1.0 if divergence_direction == 0 else 1.0

                for gradient_axis in range(3):
                    if gradient_axis == edge_axis:
                        continue
                    gradient_face_axis = 3 - gradient_axis - edge_axis

                    for gradient_direction in range(2):
                        gi, gj, gk = edge_to_face(
                            ei, ej, ek, edge_axis, gradient_face_axis, gradient_direction
                        )
                        gradient_sign = -1.0 if gradient_direction == 0 else 1.0
                        coefficient = divergence_sign * gradient_sign * edge_volume

                        diagonal_change, rhs_change, count, violation = _couple(
                            row,
                            coefficient,
                            gi,
                            gj,
                            gk,
                            select_axis(gradient_face_axis, labels_x, labels_y, labels_z),
                            select_axis(gradient_face_axis, indices_x, indices_y, indices_z),
                            select_axis(
                                gradient_face_axis,
                                solid_velocity_x,
                                solid_velocity_y,
                                solid_velocity_z,
                            ),
                            rows,
                            cols,
                            values,
                            count,
                        )
                        diagonal += diagonal_change
                        rhs_value += rhs_change
                        violations += violation

        rows[count] = row
        cols[count] = row
        values[count] = diagonal
        count += 1
        rhs[row] = rhs_value

    return rows[:count].copy(), cols[:count].copy(), values[:count].copy(), violations


def assemble_viscosity_system(
    labels: VectorGrid,
    indices: VectorGrid,
    dof_count: int,
    velocity: VectorGrid,
    solid_velocity: VectorGrid,
    face_volumes: VectorGrid,
    center_volumes: ScalarGrid,
    edge_volumes: VectorGrid,
    grain_size: int = 1000,
    max_workers: typing.Optional[int] = None,
    axis_order: typing.Sequence[int] = (0, 1, 2),
) -> ViscositySystem:
    """
    Assemble the implicit viscosity system for every liquid face.

    Each liquid face row starts from the face volume (mass term) on the diagonal and
    `face volume * velocity` on the right-hand side. Normal stress terms are gathered
    from the two adjacent cells and shear terms from the four edges bounding the face.
    Every contribution is applied according to the material of the face it reaches:
    liquid faces couple through the matrix, solid faces move their known velocity
    to the right-hand side, and air faces are dropped (zero stress at the free surface).

    `center_volumes` and `edge_volumes` must already be scaled by `scale_control_volumes`.

    Rows are built independently per face, so the matrix is symmetric once duplicate
    triplets are summed, regardless of `axis_order` or how faces are split across tasks.

    :param labels: Staggered grid of `FaceMaterial` values.
    :param indices: Staggered grid of liquid DOF indices.
    :param dof_count: Number of liquid DOFs.
    :param velocity: Current face velocities.
    :param solid_velocity: Solid face velocities.
    :param face_volumes: Face volume fractions.
    :param center_volumes: Scaled cell volumes.
    :param edge_volumes: Scaled edge volumes.
    :param grain_size: Faces processed per parallel task.
    :param max_workers: Number of worker threads.
    :param axis_order: Order in which the face axes are visited.
    :return: The assembled `ViscositySystem`.
    """
    dtype = get_solve_dtype()
    rhs = np.zeros(dof_count, dtype=np.float64)
    initial_guess = np.zeros(dof_count, dtype=np.float64)

    labels_x, labels_y, labels_z = labels.arrays
    indices_x, indices_y, indices_z = indices.arrays
    velocity_x, velocity_y, velocity_z = velocity.arrays
    solid_x, solid_y, solid_z = solid_velocity.arrays
    edge_x, edge_y, edge_z = edge_volumes.arrays

    buffers = []
    violations = 0
    for face_axis in axis_order:
        face_volume_values = face_volumes[face_axis]
        results = parallel_for(
            labels.grid(face_axis).voxel_count,
            lambda start, stop: _assemble_face_range(
                face_axis,
                start,
                stop,
                labels_x,
                labels_y,
                labels_z,
                indices_x,
                indices_y,
                indices_z,
                velocity_x,
                velocity_y,
                velocity_z,
                solid_x,
                solid_y,
                solid_z,
                face_volume_values,
                center_volumes.values,
                edge_x,
                edge_y,
                edge_z,
                rhs,
                initial_guess,
            ),
            grain_size,
            max_workers,
        )
        for local_rows, local_cols, local_values, local_violations in results:
            buffers.append((local_rows, local_cols, local_values))
            violations += int(local_violations)

    rows, cols, values = merge_triplet_buffers(buffers, dtype=dtype)
    logger.debug(f"Assembled {rows.size} triplets for {dof_count} liquid DOFs")
    return ViscositySystem(
        rows=rows,
        cols=cols,
        values=values,
        rhs=rhs.astype(dtype, copy=False),
        initial_guess=initial_guess.astype(dtype, copy=False),
        dof_count=dof_count,
        invariant_violations=violations,
    )
