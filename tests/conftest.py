import numpy as np
import pytest

from viscosim.grids import GridTransform, ScalarGrid, VectorGrid
from viscosim.levelset import LevelSet
from viscosim.types import SampleType


CELL_SHAPE = (8, 8, 8)


@pytest.fixture
def transform():
    return GridTransform(spacing=1.0, origin=(0.0, 0.0, 0.0))


@pytest.fixture
def cell_shape():
    return CELL_SHAPE


def make_velocity(transform, cell_shape, components=(0.0, 0.0, 0.0), dtype=np.float32):
    """Staggered field with a uniform value per component."""
    arrays = [
        np.full(
            tuple(n + 1 if a == axis else n for a, n in enumerate(cell_shape)),
            components[axis],
            dtype=dtype,
        )
        for axis in range(3)
    ]
    return VectorGrid.from_arrays(arrays, transform, sample_type=SampleType.FACE)


def make_viscosity(transform, cell_shape, value=1.0):
    return ScalarGrid.build(transform, cell_shape, value=value)


@pytest.fixture
def liquid_everywhere(transform, cell_shape):
    return LevelSet.build(transform, cell_shape, value=-1.0)


@pytest.fixture
def no_solid(transform, cell_shape):
    return LevelSet.build(transform, cell_shape, value=1.0)


@pytest.fixture
def liquid_ball(transform, cell_shape):
    return LevelSet.sphere(transform, cell_shape, center=(4.0, 4.0, 3.5), radius=2.7)


@pytest.fixture
def solid_floor(transform, cell_shape):
    # Solid below z = 1.5
    return LevelSet.half_space(
        transform, cell_shape, point=(0.0, 0.0, 1.5), normal=(0.0, 0.0, 1.0)
    )


@pytest.fixture
def varying_viscosity(transform, cell_shape):
    x, y, z = np.meshgrid(*(np.arange(n) for n in cell_shape), indexing="ij")
    values = 0.5 + 0.1 * x + 0.05 * y + 0.02 * z
    return ScalarGrid(values=values.astype(np.float32), transform=transform)


@pytest.fixture
def random_velocity(transform, cell_shape):
    rng = np.random.default_rng(7)
    arrays = [
        rng.standard_normal(
            tuple(n + 1 if a == axis else n for a, n in enumerate(cell_shape))
        ).astype(np.float32)
        for axis in range(3)
    ]
    return VectorGrid.from_arrays(arrays, transform, sample_type=SampleType.FACE)
