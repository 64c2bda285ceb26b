import logging
import typing

import numpy as np

import viscosim

np.set_printoptions(precision=4, suppress=True)


def main():
    logging.basicConfig(level=logging.INFO)

    cell_shape = typing.cast(
        viscosim.ThreeDimensions, (24, 24, 24)
    )  # (x, y, z) dimensions of the grid in cells
    transform = viscosim.GridTransform(spacing=1.0 / 24, origin=(0.0, 0.0, 0.0))

    # A ball of honey resting on a tilted plate
    liquid_surface = viscosim.LevelSet.sphere(
        transform, cell_shape, center=(0.5, 0.5, 0.4), radius=0.25
    )
    solid_surface = viscosim.LevelSet.half_space(
        transform, cell_shape, point=(0.0, 0.0, 0.2), normal=(0.1, 0.0, 1.0)
    )

    # The liquid spins about the z-axis and the plate is at rest
    velocity = viscosim.VectorGrid.build(transform, cell_shape)
    for axis in (0, 1):
        grid = velocity.grid(axis)
        index = np.indices(grid.shape).reshape(3, -1).T
        world = grid.index_to_world(index)
        x, y = world[:, 0] - 0.5, world[:, 1] - 0.5
        spin = -y if axis == 0 else x
        grid.values[...] = spin.reshape(grid.shape)
    solid_velocity = viscosim.VectorGrid.build(transform, cell_shape)

    # Viscosity in Pa.s, thicker towards the top of the ball
    z = (np.arange(cell_shape[2]) + 0.5) * transform.spacing
    viscosity = viscosim.ScalarGrid.build(transform, cell_shape)
    viscosity.values[...] = 2.0 + 8.0 * z

    config = viscosim.Config(
        convergence_tolerance=1e-4,
        preconditioner="amg",
        volume_samples=3,
    )
    before = [array.copy() for array in velocity.arrays]
    result = viscosim.solve_viscosity(
        time_step_size=0.01,
        liquid_surface=liquid_surface,
        velocity=velocity,
        solid_surface=solid_surface,
        solid_velocity=solid_velocity,
        viscosity=viscosity,
        config=config,
    )
    print(result)
    for axis, (array, old) in enumerate(zip(velocity.arrays, before)):
        change = np.abs(array - old).max()
        print(f"Axis {axis}: max velocity change {change:.4e}")
    return result


if __name__ == "__main__":
    main()
