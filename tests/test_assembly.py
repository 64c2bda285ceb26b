import numpy as np

from conftest import make_velocity, make_viscosity
from viscosim.config import Config
from viscosim.types import UNLABELLED_FACE
from viscosim.viscosity.assembly import MAX_ROW_ENTRIES, assemble_viscosity_system
from viscosim.viscosity.coefficients import scale_control_volumes
from viscosim.viscosity.solve import prepare_viscosity_system
from viscosim.volumes import compute_center_volumes, compute_edge_volumes, compute_face_volumes


def _prepare(liquid, solid, velocity, viscosity, config=None, axis_order=(0, 1, 2)):
    return prepare_viscosity_system(
        0.05,
        liquid,
        velocity,
        solid,
        make_velocity(liquid.transform, liquid.shape, (0.0, 0.0, 0.0)),
        viscosity,
        config=config,
        axis_order=axis_order,
    )


def test_matrix_is_symmetric(liquid_ball, solid_floor, random_velocity, varying_viscosity):
    problem = _prepare(liquid_ball, solid_floor, random_velocity, varying_viscosity)
    A = problem.system.to_csr().toarray()

    assert problem.dof_count > 0
    assert A.shape == (problem.dof_count, problem.dof_count)
    np.testing.assert_allclose(A, A.T, rtol=0.0, atol=1e-12 * np.abs(A).max())


def test_diagonal_is_positive(liquid_ball, solid_floor, random_velocity, varying_viscosity):
    problem = _prepare(liquid_ball, solid_floor, random_velocity, varying_viscosity)
    A = problem.system.to_csr()
    assert np.all(A.diagonal() > 0.0)


def test_row_sparsity_is_bounded(liquid_ball, solid_floor, random_velocity, varying_viscosity):
    problem = _prepare(liquid_ball, solid_floor, random_velocity, varying_viscosity)
    system = problem.system
    A = system.to_csr()

    assert np.diff(A.indptr).max() <= 15
    triplets_per_row = np.bincount(system.rows, minlength=system.dof_count)
    assert triplets_per_row.max() <= MAX_ROW_ENTRIES


def test_vectors_hold_face_velocities(liquid_ball, solid_floor, random_velocity, varying_viscosity):
    problem = _prepare(liquid_ball, solid_floor, random_velocity, varying_viscosity)
    system = problem.system

    for axis in range(3):
        indices = problem.indices[axis]
        liquid = indices >= 0
        np.testing.assert_allclose(
            system.initial_guess[indices[liquid]], random_velocity[axis][liquid]
        )


def test_assembly_is_order_invariant(
    liquid_ball, solid_floor, random_velocity, varying_viscosity
):
    reference = _prepare(liquid_ball, solid_floor, random_velocity, varying_viscosity)
    shuffled = _prepare(
        liquid_ball,
        solid_floor,
        random_velocity,
        varying_viscosity,
        config=Config(grain_size=7, max_workers=4),
        axis_order=(2, 1, 0),
    )

    assert shuffled.dof_count == reference.dof_count
    np.testing.assert_allclose(
        shuffled.system.to_csr().toarray(),
        reference.system.to_csr().toarray(),
        rtol=1e-12,
        atol=1e-14,
    )
    assert np.array_equal(shuffled.system.rhs, reference.system.rhs)
    assert np.array_equal(shuffled.system.initial_guess, reference.system.initial_guess)


def test_unindexed_liquid_faces_are_counted(
    liquid_everywhere, no_solid, transform, cell_shape
):
    velocity = make_velocity(transform, cell_shape, (1.0, 0.0, 0.0))
    problem = _prepare(liquid_everywhere, no_solid, velocity, make_viscosity(transform, cell_shape))
    assert problem.system.invariant_violations == 0

    indices = problem.indices.copy()
    indices[0][4, 4, 4] = UNLABELLED_FACE
    system = assemble_viscosity_system(
        problem.labels,
        indices,
        problem.dof_count,
        velocity,
        make_velocity(transform, cell_shape),
        *_scaled_volumes(liquid_everywhere, make_viscosity(transform, cell_shape)),
    )
    assert system.invariant_violations > 0


def _scaled_volumes(liquid, viscosity):
    face_volumes = compute_face_volumes(liquid, dtype=np.float64)
    center_volumes = compute_center_volumes(liquid, dtype=np.float64)
    edge_volumes = compute_edge_volumes(liquid, dtype=np.float64)
    scale_control_volumes(center_volumes, edge_volumes, viscosity, 0.05)
    return face_volumes, center_volumes, edge_volumes


def test_systems_compare_by_identity(liquid_ball, solid_floor, random_velocity, varying_viscosity):
    first = _prepare(liquid_ball, solid_floor, random_velocity, varying_viscosity)
    second = _prepare(liquid_ball, solid_floor, random_velocity, varying_viscosity)
    assert first.system == first.system
    assert first.system != second.system
    assert first != second
