import enum
import typing

import numpy as np
from scipy.sparse import csr_array, csr_matrix
from scipy.sparse.linalg import LinearOperator
from typing_extensions import TypeAlias


__all__ = [
    "ThreeDimensions",
    "WorldPoint",
    "ThreeDimensionalGrid",
    "OneDimensionalGrid",
    "FaceMaterial",
    "SampleType",
    "UNLABELLED_FACE",
    "Preconditioner",
    "PreconditionerFactory",
    "Solver",
    "SolverFunc",
]

T = typing.TypeVar("T")

ThreeDimensions: TypeAlias = typing.Tuple[int, int, int]
"""3D indices"""
WorldPoint: TypeAlias = typing.Tuple[float, float, float]
"""A position in world coordinates"""

ThreeDimensionalGrid = np.ndarray[ThreeDimensions, np.dtype[typing.Any]]
"""3D grid of samples, represented as a C-ordered NumPy array"""
OneDimensionalGrid = np.ndarray[typing.Tuple[int], np.dtype[typing.Any]]
"""1D array, e.g. a vector over the liquid DOF index space"""


class FaceMaterial(enum.IntEnum):
    """
    Material label of a grid face.

    Stored as `int8` in label grids, so the values are fixed.
    """

    SOLID = 0
    LIQUID = 1
    AIR = 2


UNLABELLED_FACE = -1
"""DOF index of faces that are not part of the liquid solve."""


class SampleType(enum.Enum):
    """
    Where the samples of a grid live relative to the cells.

    - CENTER: cell centres
    - NODE: cell corners
    - FACE: centres of the faces perpendicular to the grid's axis
    - EDGE: midpoints of the cell edges parallel to the grid's axis
    """

    CENTER = "center"
    NODE = "node"
    FACE = "face"
    EDGE = "edge"


PreconditionerStr = typing.Literal["diagonal", "amg"]
PreconditionerFactory = typing.Callable[
    [typing.Union[csr_array, csr_matrix]], LinearOperator
]
Preconditioner = typing.Union[
    LinearOperator, PreconditionerStr, PreconditionerFactory, str
]

SolverStr = typing.Literal["cg", "minres", "direct"]


class SolverFunc(typing.Protocol):
    """
    Protocol for a symmetric linear solver function.

    Returns the solution and a SciPy-style info flag
    (0 = converged, > 0 = not converged, < 0 = breakdown).
    """

    def __call__(
        self,
        A: typing.Any,
        b: typing.Any,
        x0: typing.Optional[typing.Any],
        *,
        rtol: float,
        maxiter: typing.Optional[int],
        M: typing.Optional[typing.Any],
        callback: typing.Optional[typing.Callable[[np.typing.NDArray], None]],
    ) -> typing.Tuple[np.typing.NDArray, int]: ...


Solver = typing.Union[SolverFunc, SolverStr, str]
