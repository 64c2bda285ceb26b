import numpy as np
import pytest

from viscosim.errors import ValidationError
from viscosim.grids import GridTransform, ScalarGrid
from viscosim.levelset import LevelSet
from viscosim.viscosity.coefficients import compute_discrete_scalar, scale_control_volumes
from viscosim.volumes import compute_center_volumes, compute_edge_volumes


def test_discrete_scalar():
    assert compute_discrete_scalar(0.5, 2.0) == pytest.approx(0.125)
    with pytest.raises(ValidationError):
        compute_discrete_scalar(0.0, 1.0)
    with pytest.raises(ValidationError):
        compute_discrete_scalar(1.0, -1.0)


def test_uniform_viscosity_scaling(liquid_everywhere, transform, cell_shape):
    center_volumes = compute_center_volumes(liquid_everywhere, dtype=np.float64)
    edge_volumes = compute_edge_volumes(liquid_everywhere, dtype=np.float64)
    viscosity = ScalarGrid.build(transform, cell_shape, value=2.0)

    discrete_scalar = scale_control_volumes(
        center_volumes, edge_volumes, viscosity, 0.25, grain_size=37
    )
    assert discrete_scalar == pytest.approx(0.25)
    np.testing.assert_allclose(center_volumes.values, 2.0 * 0.25 * 2.0)
    for axis in range(3):
        np.testing.assert_allclose(edge_volumes[axis], 0.25 * 2.0)


def test_edge_viscosity_is_interpolated(liquid_everywhere, transform, cell_shape):
    center_volumes = compute_center_volumes(liquid_everywhere, dtype=np.float64)
    edge_volumes = compute_edge_volumes(liquid_everywhere, dtype=np.float64)
    x = np.arange(cell_shape[0], dtype=np.float64)[:, None, None]
    viscosity = ScalarGrid(
        values=np.broadcast_to(1.0 + x, cell_shape).copy(), transform=transform
    )

    scale_control_volumes(center_volumes, edge_volumes, viscosity, 1.0)
    # Cell centres carry their own viscosity
    np.testing.assert_allclose(center_volumes[3, 4, 4], 2.0 * 4.0)
    # z-edges sit at integer x, halfway between two cell centres
    np.testing.assert_allclose(edge_volumes[2][3, 4, 4], 3.5)
    # x-edges sit at cell-centre x
    np.testing.assert_allclose(edge_volumes[0][3, 4, 4], 4.0)


def test_zero_volumes_stay_zero(transform, cell_shape, no_solid):
    center_volumes = compute_center_volumes(no_solid, dtype=np.float64)
    edge_volumes = compute_edge_volumes(no_solid, dtype=np.float64)
    viscosity = ScalarGrid.build(GridTransform(spacing=1.0), cell_shape, value=np.inf)

    scale_control_volumes(center_volumes, edge_volumes, viscosity, 1.0)
    assert np.all(center_volumes.values == 0.0)
    for axis in range(3):
        assert np.all(edge_volumes[axis] == 0.0)
