import logging
import typing

import numba  # type: ignore[import-untyped]
import numpy as np

from viscosim._precision import get_dtype
from viscosim.errors import GridMismatchError, ValidationError
from viscosim.grids import ScalarGrid, VectorGrid, interpolate_trilinear, unflatten_index
from viscosim.levelset import LevelSet
from viscosim.types import SampleType, ThreeDimensionalGrid

logger = logging.getLogger(__name__)

__all__ = [
    "compute_supersampled_volumes",
    "compute_center_volumes",
    "compute_edge_volumes",
    "compute_face_volumes",
]


@numba.njit(parallel=True, cache=True)
def _supersample_volumes(
    volumes: ThreeDimensionalGrid,
    surface_values: ThreeDimensionalGrid,
    index_shift: np.ndarray,
    samples: int,
) -> None:
    """
    Fill `volumes` with the fraction of each sample's unit box lying inside the surface.

    The box around sample `(i, j, k)` spans `[i - 0.5, i + 0.5]` (and likewise in y and z)
    in the volume grid's index space. It is split into `samples³` sub-boxes whose centres
    are tested against the level set. `index_shift` maps volume grid indices into the
    level set's index space.

    :param volumes: Output array, one value per sample location.
    :param surface_values: Cell-centred signed distances.
    :param index_shift: Offset from volume grid indices to level set indices.
    :param samples: Sub-samples per axis.
    """
    _, count_y, count_z = volumes.shape
    sample_dx = 1.0 / samples
    sample_volume = 1.0 / (samples * samples * samples)

    for flat_index in numba.prange(volumes.size):
        i, j, k = unflatten_index(np.int64(flat_index), count_y, count_z)
        start_x = i - 0.5 + 0.5 * sample_dx + index_shift[0]
        start_y = j - 0.5 + 0.5 * sample_dx + index_shift[1]
        start_z = k - 0.5 + 0.5 * sample_dx + index_shift[2]

        volume = 0.0
        for si in range(samples):
            x = start_x + si * sample_dx
            for sj in range(samples):
                y = start_y + sj * sample_dx
                for sk in range(samples):
                    z = start_z + sk * sample_dx
                    if interpolate_trilinear(surface_values, x, y, z) <= 0.0:
                        volume += sample_volume

        volumes[i, j, k] = volume


def compute_supersampled_volumes(
    volumes: ScalarGrid, surface: LevelSet, samples: int = 3
) -> ScalarGrid:
    """
    Estimate, in place, the liquid volume fraction around every sample of `volumes`.

    Works for any sample type (cell centres, edges, faces), since the unit box is
    taken in the volume grid's own index space. Values are in [0, 1], i.e. fractions
    of a voxel's volume.

    :param volumes: Grid to fill. Must share the surface's transform.
    :param surface: Liquid level set.
    :param samples: Sub-samples per axis.
    :return: `volumes`, for chaining.
    """
    if volumes.transform != surface.transform:
        raise GridMismatchError("Volume grid and level set must share a transform.")
    if samples < 1:
        raise ValidationError(f"Sample count must be positive, got {samples}.")

    _supersample_volumes(
        volumes.values,
        surface.values,
        volumes.index_shift_to(surface),
        int(samples),
    )
    return volumes


def compute_center_volumes(
    surface: LevelSet,
    samples: int = 3,
    dtype: typing.Optional[np.typing.DTypeLike] = None,
) -> ScalarGrid:
    """Cell-centred liquid volume fractions."""
    volumes = ScalarGrid.build(
        transform=surface.transform,
        cell_shape=surface.shape,
        sample_type=SampleType.CENTER,
        dtype=dtype if dtype is not None else get_dtype(),
    )
    return compute_supersampled_volumes(volumes, surface, samples)


def compute_edge_volumes(
    surface: LevelSet,
    samples: int = 3,
    dtype: typing.Optional[np.typing.DTypeLike] = None,
) -> VectorGrid:
    """Liquid volume fractions around the midpoints of cell edges, per edge axis."""
    volumes = VectorGrid.build(
        transform=surface.transform,
        cell_shape=surface.shape,
        sample_type=SampleType.EDGE,
        dtype=dtype if dtype is not None else get_dtype(),
    )
    for axis in range(3):
        compute_supersampled_volumes(volumes.grid(axis), surface, samples)
    return volumes


def compute_face_volumes(
    surface: LevelSet,
    samples: int = 3,
    dtype: typing.Optional[np.typing.DTypeLike] = None,
) -> VectorGrid:
    """Liquid volume fractions around face centres, per face axis."""
    volumes = VectorGrid.build(
        transform=surface.transform,
        cell_shape=surface.shape,
        sample_type=SampleType.FACE,
        dtype=dtype if dtype is not None else get_dtype(),
    )
    for axis in range(3):
        compute_supersampled_volumes(volumes.grid(axis), surface, samples)
    logger.debug(f"Computed supersampled volumes at {samples}³ samples per voxel")
    return volumes
