import typing

import attrs

from viscosim.types import FaceMaterial, Preconditioner, Solver

__all__ = ["Config"]


@attrs.frozen
class Config:
    """Viscosity solve configuration and parameters."""

    convergence_tolerance: float = attrs.field(
        default=1e-3,
        validator=attrs.validators.and_(
            attrs.validators.gt(0), attrs.validators.le(1e-1)
        ),
    )
    """Relative residual tolerance for the iterative solver (default is 1e-3)."""
    max_iterations: typing.Optional[int] = attrs.field(
        default=None,
        validator=attrs.validators.optional(attrs.validators.ge(1)),
    )
    """
    Maximum number of solver iterations.

    If None, twice the number of liquid degrees of freedom is used. Conjugate gradients
    converge in at most that many iterations in exact arithmetic, so hitting the cap
    usually means the system is badly conditioned rather than too large.
    """
    iterative_solver: Solver = "cg"
    """Registered symmetric solver ('cg', 'minres', 'direct') or a solver callable."""
    preconditioner: typing.Optional[Preconditioner] = "diagonal"
    """Preconditioner for the iterative solver ('diagonal', 'amg'), a factory, or None."""
    volume_samples: int = attrs.field(
        default=3,
        validator=attrs.validators.and_(
            attrs.validators.ge(1), attrs.validators.le(16)
        ),
    )
    """Supersampling resolution per axis used when estimating liquid volume fractions."""
    boundary_material: FaceMaterial = attrs.field(
        default=FaceMaterial.SOLID,
        converter=FaceMaterial,
        validator=attrs.validators.in_((FaceMaterial.SOLID, FaceMaterial.AIR)),
    )
    """
    Material of the two outermost face layers along each axis.

    SOLID treats the domain boundary as a wall moving with the solid velocity.
    AIR leaves the boundary free-slip.
    """
    fail_on_unindexed_liquid: bool = True
    """
    Whether a liquid face without a DOF index raises `InvariantError`.

    If False, the inconsistency is logged and the face is treated as air.
    """
    grain_size: int = attrs.field(default=1000, validator=attrs.validators.ge(1))
    """Number of voxels processed per parallel task."""
    max_workers: typing.Optional[int] = attrs.field(
        default=None,
        validator=attrs.validators.optional(attrs.validators.ge(1)),
    )
    """Number of worker threads. Defaults to the CPU count."""
