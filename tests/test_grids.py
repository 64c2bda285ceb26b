import numpy as np
import pytest

from viscosim.errors import ValidationError
from viscosim.grids import (
    GridTransform,
    ScalarGrid,
    VectorGrid,
    cell_to_face,
    edge_to_face,
    face_to_cell,
    face_to_edge,
    flatten_index,
    sample_offset,
    sample_shape,
    unflatten_index,
)
from viscosim.levelset import LevelSet
from viscosim.types import SampleType


def test_flatten_is_c_order():
    values = np.arange(4 * 5 * 6).reshape(4, 5, 6)
    assert flatten_index(2, 3, 4, 5, 6) == values[2, 3, 4]
    assert tuple(unflatten_index(values[3, 1, 5], 5, 6)) == (3, 1, 5)


def test_grid_flatten_matches_ravel():
    grid = ScalarGrid.build(
        GridTransform(spacing=1.0), (4, 5, 6), sample_type=SampleType.FACE, axis=1
    )
    assert grid.shape == (4, 6, 6)
    grid.values[...] = np.arange(grid.voxel_count).reshape(grid.shape)

    for index in [(0, 0, 0), (1, 2, 3), (3, 5, 5)]:
        flat_index = grid.flatten(index)
        assert flat_index == grid.values[index]
        assert grid.unflatten(flat_index) == index


def test_face_and_cell_neighbours():
    assert tuple(face_to_cell(3, 2, 1, 0, 0)) == (2, 2, 1)
    assert tuple(face_to_cell(3, 2, 1, 0, 1)) == (3, 2, 1)
    assert tuple(cell_to_face(3, 2, 1, 1, 0)) == (3, 2, 1)
    assert tuple(cell_to_face(3, 2, 1, 1, 1)) == (3, 3, 1)


def test_face_and_edge_neighbours():
    # x-face bounded by z-edges, separated along y
    assert tuple(face_to_edge(3, 2, 1, 0, 2, 0)) == (3, 2, 1)
    assert tuple(face_to_edge(3, 2, 1, 0, 2, 1)) == (3, 3, 1)
    # z-edge shared by x-faces, separated along y
    assert tuple(edge_to_face(3, 2, 1, 2, 0, 0)) == (3, 1, 1)
    assert tuple(edge_to_face(3, 2, 1, 2, 0, 1)) == (3, 2, 1)


def test_sample_shapes_and_offsets():
    assert sample_shape((4, 5, 6), SampleType.CENTER) == (4, 5, 6)
    assert sample_shape((4, 5, 6), SampleType.NODE) == (5, 6, 7)
    assert sample_shape((4, 5, 6), SampleType.FACE, 1) == (4, 6, 6)
    assert sample_shape((4, 5, 6), SampleType.EDGE, 1) == (5, 5, 7)
    assert sample_offset(SampleType.FACE, 2) == (0.5, 0.5, 0.0)
    assert sample_offset(SampleType.EDGE, 2) == (0.0, 0.0, 0.5)

    with pytest.raises(ValidationError):
        sample_offset(SampleType.FACE)


def test_world_index_mapping():
    transform = GridTransform(spacing=0.5, origin=(1.0, 2.0, 3.0))
    grid = ScalarGrid.build(transform, (4, 4, 4))
    world = grid.index_to_world((1, 2, 3))
    np.testing.assert_allclose(world, [1.75, 3.25, 4.75])
    np.testing.assert_allclose(grid.world_to_index(world), [1.0, 2.0, 3.0])


def test_interpolation_is_exact_for_linear_fields():
    transform = GridTransform(spacing=1.0)
    level_set = LevelSet.from_function(
        transform, (6, 6, 6), lambda x, y, z: 2.0 * x - y + 0.5 * z, dtype=np.float64
    )
    assert level_set.distance((2.3, 3.1, 1.7)) == pytest.approx(
        2.0 * 2.3 - 3.1 + 0.5 * 1.7
    )


def test_interpolation_clamps_outside_grid():
    transform = GridTransform(spacing=1.0)
    level_set = LevelSet.from_function(
        transform, (4, 4, 4), lambda x, y, z: x, dtype=np.float64
    )
    assert level_set.distance((-10.0, 1.5, 1.5)) == pytest.approx(0.5)
    assert level_set.distance((40.0, 1.5, 1.5)) == pytest.approx(3.5)


def test_vector_grid_rejects_bad_component_shape():
    transform = GridTransform(spacing=1.0)
    arrays = [np.zeros((5, 4, 4)), np.zeros((4, 5, 4)), np.zeros((4, 4, 4))]
    with pytest.raises(ValidationError):
        VectorGrid.from_arrays(arrays, transform)


def test_vector_grid_unifies_component_dtypes():
    transform = GridTransform(spacing=1.0)
    arrays = [
        np.zeros((5, 4, 4), dtype=np.float32),
        np.zeros((4, 5, 4), dtype=np.float64),
        np.zeros((4, 4, 5), dtype=np.float32),
    ]
    grid = VectorGrid.from_arrays(arrays, transform)
    assert {array.dtype for array in grid.arrays} == {np.dtype(np.float64)}


def test_grid_matching():
    transform = GridTransform(spacing=1.0)
    a = VectorGrid.build(transform, (4, 4, 4))
    b = VectorGrid.build(transform, (4, 4, 4))
    c = VectorGrid.build(GridTransform(spacing=2.0), (4, 4, 4))
    d = VectorGrid.build(transform, (4, 4, 5))
    assert a.is_grid_matched(b)
    assert not a.is_grid_matched(c)
    assert not a.is_grid_matched(d)


def test_level_set_must_be_cell_centred():
    transform = GridTransform(spacing=1.0)
    with pytest.raises(ValidationError):
        LevelSet(
            values=np.zeros((4, 4, 4)),
            transform=transform,
            sample_type=SampleType.NODE,
        )
