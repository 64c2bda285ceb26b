"""
Face material classification and liquid DOF numbering.

Every face of the staggered grid is labelled SOLID, LIQUID or AIR. LIQUID faces are
the unknowns of the viscosity solve and receive a dense DOF index.
"""

import logging
import typing

import numba  # type: ignore[import-untyped]
import numpy as np

from viscosim.grids import (
    ScalarGrid,
    VectorGrid,
    face_to_cell,
    face_to_edge,
    interpolate_trilinear,
    select_axis,
    unflatten_index,
)
from viscosim.levelset import LevelSet
from viscosim.parallel import parallel_for
from viscosim.types import FaceMaterial, SampleType, ThreeDimensionalGrid, UNLABELLED_FACE

logger = logging.getLogger(__name__)

__all__ = ["classify_faces", "number_liquid_faces"]

_SOLID = int(FaceMaterial.SOLID)
_LIQUID = int(FaceMaterial.LIQUID)


@numba.njit(cache=True, nogil=True)
def _classify_face_range(
    labels: ThreeDimensionalGrid,
    face_axis: int,
    start: int,
    stop: int,
    center_volumes: ThreeDimensionalGrid,
    edge_volumes_x: ThreeDimensionalGrid,
    edge_volumes_y: ThreeDimensionalGrid,
    edge_volumes_z: ThreeDimensionalGrid,
    solid_values: ThreeDimensionalGrid,
    solid_shift: np.ndarray,
    boundary_label: int,
) -> None:
    count_x, count_y, count_z = labels.shape
    boundary = select_axis(face_axis, count_x, count_y, count_z) - 1

    for flat_index in range(start, stop):
        i, j, k = unflatten_index(flat_index, count_y, count_z)

        coordinate = select_axis(face_axis, i, j, k)
        if coordinate == 0 or coordinate == boundary:
            labels[i, j, k] = np.int8(boundary_label)
            continue

        in_solve = False
        for direction in range(2):
            ci, cj, ck = face_to_cell(i, j, k, face_axis, direction)
            if center_volumes[ci, cj, ck] > 0.0:
                in_solve = True

        # Thin liquid slivers may miss every cell centre but still cover an edge
        if not in_solve:
            for edge_axis in range(3):
                if edge_axis == face_axis:
                    continue
                edge_volumes = select_axis(
                    edge_axis, edge_volumes_x, edge_volumes_y, edge_volumes_z
                )
                for direction in range(2):
                    ei, ej, ek = face_to_edge(i, j, k, face_axis, edge_axis, direction)
                    if edge_volumes[ei, ej, ek] > 0.0:
                        in_solve = True

        if in_solve:
            distance = interpolate_trilinear(
                solid_values,
                i + solid_shift[0],
                j + solid_shift[1],
                k + solid_shift[2],
            )
            if distance <= 0.0:
                labels[i, j, k] = np.int8(_SOLID)
            else:
                labels[i, j, k] = np.int8(_LIQUID)


def classify_faces(
    center_volumes: ScalarGrid,
    edge_volumes: VectorGrid,
    solid_surface: LevelSet,
    boundary_material: FaceMaterial = FaceMaterial.SOLID,
    grain_size: int = 1000,
    max_workers: typing.Optional[int] = None,
) -> VectorGrid:
    """
    Label every face of the staggered grid as SOLID, LIQUID or AIR.

    A face on one of the two outermost layers along its own axis gets `boundary_material`.
    Any other face takes part in the solve if one of its two adjacent cells, or one of
    the four edges bounding it, holds liquid. Such a face is SOLID when the solid level
    set at the face centre is <= 0 and LIQUID otherwise. All remaining faces are AIR.

    :param center_volumes: Cell-centred liquid volume fractions.
    :param edge_volumes: Liquid volume fractions on cell edges.
    :param solid_surface: Solid level set, sampled on the same cells.
    :param boundary_material: Label of the domain boundary faces (SOLID or AIR).
    :param grain_size: Faces processed per parallel task.
    :param max_workers: Number of worker threads.
    :return: Staggered `int8` grid of `FaceMaterial` values.
    """
    labels = VectorGrid.build(
        transform=center_volumes.transform,
        cell_shape=center_volumes.shape,
        value=int(FaceMaterial.AIR),
        sample_type=SampleType.FACE,
        dtype=np.int8,
    )
    edge_x, edge_y, edge_z = edge_volumes.arrays

    for face_axis in range(3):
        face_labels = labels.grid(face_axis)
        solid_shift = face_labels.index_shift_to(solid_surface)
        parallel_for(
            face_labels.voxel_count,
            lambda start, stop: _classify_face_range(
                face_labels.values,
                face_axis,
                start,
                stop,
                center_volumes.values,
                edge_x,
                edge_y,
                edge_z,
                solid_surface.values,
                solid_shift,
                int(boundary_material),
            ),
            grain_size,
            max_workers,
        )

    if logger.isEnabledFor(logging.DEBUG):
        counts = {
            material.name: sum(
                int(np.count_nonzero(array == material)) for array in labels.arrays
            )
            for material in FaceMaterial
        }
        logger.debug(f"Classified faces: {counts}")
    return labels


def number_liquid_faces(labels: VectorGrid) -> typing.Tuple[VectorGrid, int]:
    """
    Assign a dense DOF index to every LIQUID face.

    Faces are visited axis by axis (x, then y, then z) and in C order within an axis,
    so the numbering is reproducible for a given labelling. All other faces keep
    `UNLABELLED_FACE`.

    :param labels: Staggered grid of `FaceMaterial` values.
    :return: Tuple of (staggered `int32` index grid, number of liquid DOFs).
    """
    indices = VectorGrid.build(
        transform=labels.transform,
        cell_shape=labels.cell_shape,
        value=UNLABELLED_FACE,
        sample_type=SampleType.FACE,
        dtype=np.int32,
    )
    liquid_dof_count = 0
    for axis in range(3):
        liquid = labels[axis] == FaceMaterial.LIQUID
        count = int(np.count_nonzero(liquid))
        indices[axis][liquid] = np.arange(
            liquid_dof_count, liquid_dof_count + count, dtype=np.int32
        )
        liquid_dof_count += count

    logger.debug(f"Numbered {liquid_dof_count} liquid faces")
    return indices, liquid_dof_count
