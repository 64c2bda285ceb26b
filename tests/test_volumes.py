import numpy as np
import pytest

from viscosim.errors import GridMismatchError
from viscosim.grids import GridTransform, ScalarGrid
from viscosim.levelset import LevelSet
from viscosim.volumes import (
    compute_center_volumes,
    compute_edge_volumes,
    compute_face_volumes,
    compute_supersampled_volumes,
)


def test_full_and_empty_volumes(transform, cell_shape, liquid_everywhere, no_solid):
    full = compute_center_volumes(liquid_everywhere)
    np.testing.assert_allclose(full.values, 1.0, rtol=1e-6)
    assert np.all(compute_center_volumes(no_solid).values == 0.0)

    edge_volumes = compute_edge_volumes(liquid_everywhere)
    face_volumes = compute_face_volumes(no_solid)
    for axis in range(3):
        np.testing.assert_allclose(edge_volumes[axis], 1.0, rtol=1e-6)
        assert np.all(face_volumes[axis] == 0.0)


def test_partially_filled_cells(transform, cell_shape):
    # Liquid for x <= 4.2
    surface = LevelSet.half_space(
        transform, cell_shape, point=(4.2, 0.0, 0.0), normal=(1.0, 0.0, 0.0),
        dtype=np.float64,
    )
    volumes = compute_center_volumes(surface, samples=3, dtype=np.float64)

    np.testing.assert_allclose(volumes[1:4, 2:6, 2:6], 1.0)
    np.testing.assert_allclose(volumes[4, 2:6, 2:6], 1.0 / 3.0)
    np.testing.assert_allclose(volumes[5:7, 2:6, 2:6], 0.0)


def test_face_volumes_follow_face_positions(transform, cell_shape):
    surface = LevelSet.half_space(
        transform, cell_shape, point=(4.2, 0.0, 0.0), normal=(1.0, 0.0, 0.0),
        dtype=np.float64,
    )
    volumes = compute_face_volumes(surface, samples=3, dtype=np.float64)

    # x-faces sit at integer x, so the face at x = 4 is centred in a box spanning [3.5, 4.5]
    np.testing.assert_allclose(volumes[0][4, 2:6, 2:6], 2.0 / 3.0)
    np.testing.assert_allclose(volumes[0][5, 2:6, 2:6], 0.0)
    # y-faces share the cell centres' x positions
    np.testing.assert_allclose(volumes[1][4, 2:6, 2:6], 1.0 / 3.0)


def test_volume_grid_must_share_transform(cell_shape, liquid_everywhere):
    volumes = ScalarGrid.build(GridTransform(spacing=2.0), cell_shape)
    with pytest.raises(GridMismatchError):
        compute_supersampled_volumes(volumes, liquid_everywhere)
