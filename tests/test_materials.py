import numpy as np
import pytest

from viscosim.levelset import LevelSet
from viscosim.types import FaceMaterial, UNLABELLED_FACE
from viscosim.viscosity.materials import classify_faces, number_liquid_faces
from viscosim.volumes import compute_center_volumes, compute_edge_volumes


def _classify(liquid_surface, solid_surface, **kwargs):
    return classify_faces(
        compute_center_volumes(liquid_surface, dtype=np.float64),
        compute_edge_volumes(liquid_surface, dtype=np.float64),
        solid_surface,
        **kwargs,
    )


def _boundary_layers(array, axis):
    return np.concatenate(
        [np.take(array, [0], axis=axis).ravel(), np.take(array, [-1], axis=axis).ravel()]
    )


@pytest.mark.parametrize("boundary_material", [FaceMaterial.SOLID, FaceMaterial.AIR])
def test_boundary_layers_are_never_liquid(liquid_everywhere, no_solid, boundary_material):
    labels = _classify(liquid_everywhere, no_solid, boundary_material=boundary_material)
    for axis in range(3):
        layers = _boundary_layers(labels[axis], axis)
        assert np.all(layers == boundary_material)

        interior = np.delete(labels[axis], [0, labels[axis].shape[axis] - 1], axis=axis)
        assert np.all(interior == FaceMaterial.LIQUID)


def test_faces_inside_solid_are_solid(transform, cell_shape, liquid_everywhere):
    # Solid for x <= 2
    solid = LevelSet.half_space(
        transform, cell_shape, point=(2.0, 0.0, 0.0), normal=(1.0, 0.0, 0.0)
    )
    labels = _classify(liquid_everywhere, solid)

    assert np.all(labels[0][1:3] == FaceMaterial.SOLID)
    assert np.all(labels[0][3:-1] == FaceMaterial.LIQUID)
    # y-faces at x = 0.5 and 1.5 are inside the solid, x = 2.5 is not
    assert np.all(labels[1][0:2, 1:-1] == FaceMaterial.SOLID)
    assert np.all(labels[1][2:, 1:-1] == FaceMaterial.LIQUID)


def test_faces_away_from_liquid_are_air(liquid_ball, no_solid):
    labels = _classify(liquid_ball, no_solid)
    center_volumes = compute_center_volumes(liquid_ball, dtype=np.float64)

    assert np.any(labels[2] == FaceMaterial.AIR)
    # A face between two dry cells and away from wet edges cannot be liquid
    assert center_volumes[0, 0, 7] == 0.0
    assert labels[2][0, 0, 7] != FaceMaterial.LIQUID


def test_dof_numbering_covers_liquid_faces(liquid_ball, solid_floor):
    labels = _classify(liquid_ball, solid_floor)
    indices, dof_count = number_liquid_faces(labels)

    assert dof_count > 0
    numbered = np.concatenate([indices[axis][indices[axis] >= 0] for axis in range(3)])
    assert np.array_equal(np.sort(numbered), np.arange(dof_count))
    for axis in range(3):
        liquid = labels[axis] == FaceMaterial.LIQUID
        assert np.array_equal(indices[axis] >= 0, liquid)
        assert np.all(indices[axis][~liquid] == UNLABELLED_FACE)


def test_dof_numbering_is_axis_major(liquid_everywhere, no_solid):
    labels = _classify(liquid_everywhere, no_solid)
    indices, dof_count = number_liquid_faces(labels)

    x_count = int(np.count_nonzero(labels[0] == FaceMaterial.LIQUID))
    assert indices[0][1, 0, 0] == 0
    assert indices[1][0, 1, 0] == x_count
    assert indices[2].max() == dof_count - 1
    # C order within an axis
    assert indices[0][1, 0, 1] == 1
    assert indices[0][1, 1, 0] == labels[0].shape[2]


def test_no_liquid_means_no_dofs(no_solid):
    labels = _classify(no_solid, no_solid)
    _, dof_count = number_liquid_faces(labels)
    assert dof_count == 0


def test_face_touching_liquid_only_through_an_edge_is_liquid(transform, cell_shape, no_solid):
    # A single wet cell; its diagonal neighbours stay dry but share wet edges
    droplet = LevelSet.build(transform, cell_shape, value=1.0)
    droplet.values[4, 4, 4] = -1.0

    center_volumes = compute_center_volumes(droplet, dtype=np.float64)
    edge_volumes = compute_edge_volumes(droplet, dtype=np.float64)
    labels = _classify(droplet, no_solid)

    # y-face at x = 5.5, y = 5, z = 4.5 sits between two dry cells
    assert center_volumes[5, 4, 4] == 0.0
    assert center_volumes[5, 5, 4] == 0.0
    # but is bounded by the z-edge at x = 5, y = 5, which holds liquid
    assert edge_volumes[2][5, 5, 4] > 0.0
    assert labels[1][5, 5, 4] == FaceMaterial.LIQUID
