import typing

import attrs
import numba  # type: ignore[import-untyped]
import numpy as np
from typing_extensions import Self

from viscosim._precision import get_dtype
from viscosim.errors import ValidationError
from viscosim.types import (
    SampleType,
    ThreeDimensionalGrid,
    ThreeDimensions,
    WorldPoint,
)

__all__ = [
    "GridTransform",
    "ScalarGrid",
    "VectorGrid",
    "sample_offset",
    "sample_shape",
    "flatten_index",
    "unflatten_index",
    "shift_index",
    "face_to_cell",
    "cell_to_face",
    "face_to_edge",
    "edge_to_face",
    "select_axis",
    "interpolate_trilinear",
]


@numba.njit(cache=True, nogil=True)
def flatten_index(i: int, j: int, k: int, count_y: int, count_z: int) -> int:
    """Row-major (C order) flat index of `(i, j, k)`."""
    return (i * count_y + j) * count_z + k


@numba.njit(cache=True, nogil=True)
def unflatten_index(
    index: int, count_y: int, count_z: int
) -> typing.Tuple[int, int, int]:
    """Inverse of `flatten_index`."""
    plane = count_y * count_z
    i = index // plane
    remainder = index - i * plane
    j = remainder // count_z
    k = remainder - j * count_z
    return i, j, k


@numba.njit(cache=True, nogil=True)
def shift_index(
    i: int, j: int, k: int, axis: int, delta: int
) -> typing.Tuple[int, int, int]:
    """Offset `(i, j, k)` by `delta` along `axis`."""
    if axis == 0:
        return i + delta, j, k
    if axis == 1:
        return i, j + delta, k
    return i, j, k + delta


@numba.njit(cache=True, nogil=True)
def face_to_cell(
    i: int, j: int, k: int, face_axis: int, direction: int
) -> typing.Tuple[int, int, int]:
    """
    Cell adjacent to a face along the face's own axis.

    Direction 0 is the cell on the low side, direction 1 the cell on the high side.
    """
    return shift_index(i, j, k, face_axis, direction - 1)


@numba.njit(cache=True, nogil=True)
def cell_to_face(
    i: int, j: int, k: int, face_axis: int, direction: int
) -> typing.Tuple[int, int, int]:
    """Low (direction 0) or high (direction 1) face of a cell along `face_axis`."""
    return shift_index(i, j, k, face_axis, direction)


@numba.njit(cache=True, nogil=True)
def face_to_edge(
    i: int, j: int, k: int, face_axis: int, edge_axis: int, direction: int
) -> typing.Tuple[int, int, int]:
    """
    One of the two edges along `edge_axis` that bound a face.

    The two edges are separated along the axis that is neither the face axis nor the edge axis.
    """
    return shift_index(i, j, k, 3 - face_axis - edge_axis, direction)


@numba.njit(cache=True, nogil=True)
def edge_to_face(
    i: int, j: int, k: int, edge_axis: int, face_axis: int, direction: int
) -> typing.Tuple[int, int, int]:
    """
    One of the two faces on `face_axis` that share an edge.

    The two faces are separated along the axis that is neither the edge axis nor the face axis.
    Indices may fall outside the face grid for edges on the domain boundary.
    """
    return shift_index(i, j, k, 3 - edge_axis - face_axis, direction - 1)


@numba.njit(cache=True, nogil=True)
def select_axis(axis: int, x, y, z):
    """Pick the x, y or z member of a per-axis triple."""
    if axis == 0:
        return x
    if axis == 1:
        return y
    return z


@numba.njit(cache=True, nogil=True)
def interpolate_trilinear(values: ThreeDimensionalGrid, x: float, y: float, z: float):
    """
    Trilinearly interpolate a grid at a point given in its index space.

    Points outside the grid are clamped to the nearest sample.
    """
    count_x, count_y, count_z = values.shape
    x = min(max(x, 0.0), count_x - 1.0)
    y = min(max(y, 0.0), count_y - 1.0)
    z = min(max(z, 0.0), count_z - 1.0)

    i0 = int(np.floor(x))
    j0 = int(np.floor(y))
    k0 = int(np.floor(z))
    i1 = min(i0 + 1, count_x - 1)
    j1 = min(j0 + 1, count_y - 1)
    k1 = min(k0 + 1, count_z - 1)
    fx = x - i0
    fy = y - j0
    fz = z - k0

    c00 = values[i0, j0, k0] * (1.0 - fx) + values[i1, j0, k0] * fx
    c10 = values[i0, j1, k0] * (1.0 - fx) + values[i1, j1, k0] * fx
    c01 = values[i0, j0, k1] * (1.0 - fx) + values[i1, j0, k1] * fx
    c11 = values[i0, j1, k1] * (1.0 - fx) + values[i1, j1, k1] * fx
    c0 = c00 * (1.0 - fy) + c10 * fy
    c1 = c01 * (1.0 - fy) + c11 * fy
    return c0 * (1.0 - fz) + c1 * fz


def sample_offset(
    sample_type: SampleType, axis: typing.Optional[int] = None
) -> typing.Tuple[float, float, float]:
    """
    Offset, in voxel units, of the sample with index `(0, 0, 0)` from the grid origin.

    :param sample_type: Where the samples live.
    :param axis: Axis of FACE or EDGE samples.
    :return: Offset along x, y and z.
    """
    if sample_type == SampleType.CENTER:
        return (0.5, 0.5, 0.5)
    if sample_type == SampleType.NODE:
        return (0.0, 0.0, 0.0)
    if axis not in (0, 1, 2):
        raise ValidationError(f"{sample_type.name} samples need an axis, got {axis!r}.")
    if sample_type == SampleType.FACE:
        return tuple(0.0 if a == axis else 0.5 for a in range(3))  # type: ignore[return-value]
    return tuple(0.5 if a == axis else 0.0 for a in range(3))  # type: ignore[return-value]


def sample_shape(
    cell_shape: ThreeDimensions,
    sample_type: SampleType,
    axis: typing.Optional[int] = None,
) -> ThreeDimensions:
    """
    Number of samples along each axis for a grid of `cell_shape` cells.

    :param cell_shape: Number of cells in x, y and z.
    :param sample_type: Where the samples live.
    :param axis: Axis of FACE or EDGE samples.
    :return: Sample counts along x, y and z.
    """
    if sample_type == SampleType.CENTER:
        return tuple(cell_shape)  # type: ignore[return-value]
    if sample_type == SampleType.NODE:
        return tuple(n + 1 for n in cell_shape)  # type: ignore[return-value]
    if axis not in (0, 1, 2):
        raise ValidationError(f"{sample_type.name} samples need an axis, got {axis!r}.")
    if sample_type == SampleType.FACE:
        return tuple(n + 1 if a == axis else n for a, n in enumerate(cell_shape))  # type: ignore[return-value]
    return tuple(n if a == axis else n + 1 for a, n in enumerate(cell_shape))  # type: ignore[return-value]


def _to_origin(value: typing.Any) -> typing.Tuple[float, float, float]:
    origin = tuple(float(v) for v in value)
    if len(origin) != 3:
        raise ValidationError(f"Grid origin must have 3 components, got {value!r}.")
    return origin  # type: ignore[return-value]


@attrs.frozen
class GridTransform:
    """Uniform voxel spacing and origin mapping voxel indices to world space."""

    spacing: float = attrs.field(converter=float, validator=attrs.validators.gt(0))
    """Edge length of a voxel in world units."""
    origin: typing.Tuple[float, float, float] = attrs.field(
        default=(0.0, 0.0, 0.0), converter=_to_origin
    )
    """World position of the low corner of cell (0, 0, 0)."""

    def index_to_world(
        self,
        index_point: typing.Sequence[float],
        offset: typing.Sequence[float] = (0.0, 0.0, 0.0),
    ) -> np.ndarray:
        return np.asarray(self.origin) + (
            np.asarray(index_point, dtype=np.float64) + np.asarray(offset)
        ) * self.spacing

    def world_to_index(
        self,
        world_point: typing.Sequence[float],
        offset: typing.Sequence[float] = (0.0, 0.0, 0.0),
    ) -> np.ndarray:
        return (
            np.asarray(world_point, dtype=np.float64) - np.asarray(self.origin)
        ) / self.spacing - np.asarray(offset)


def _to_grid_values(value: typing.Any) -> ThreeDimensionalGrid:
    values = np.ascontiguousarray(value)
    if values.ndim != 3:
        raise ValidationError(f"Grid values must be 3-dimensional, got {values.ndim}D.")
    return values


@attrs.define
class ScalarGrid:
    """
    Samples of a scalar quantity over a uniform grid.

    The values are a C-ordered 3D array indexed `[i, j, k]`. Sample `(i, j, k)` sits at
    `origin + ((i, j, k) + offset) * spacing` in world space, with the offset given
    by the sample type.
    """

    values: ThreeDimensionalGrid = attrs.field(converter=_to_grid_values)
    transform: GridTransform
    sample_type: SampleType = SampleType.CENTER
    axis: typing.Optional[int] = None

    def __attrs_post_init__(self) -> None:
        # Validates the axis for FACE and EDGE samples
        sample_offset(self.sample_type, self.axis)

    @classmethod
    def build(
        cls,
        transform: GridTransform,
        cell_shape: ThreeDimensions,
        value: float = 0.0,
        sample_type: SampleType = SampleType.CENTER,
        axis: typing.Optional[int] = None,
        dtype: typing.Optional[np.typing.DTypeLike] = None,
    ) -> Self:
        """
        Build a grid filled with a uniform value.

        :param transform: Grid transform.
        :param cell_shape: Number of cells in x, y and z. The number of samples is derived
            from it and the sample type.
        :param value: Initial value of every sample.
        :param sample_type: Where the samples live.
        :param axis: Axis of FACE or EDGE samples.
        :param dtype: Data type of the samples. Defaults to the field precision.
        :return: The new grid.
        """
        shape = sample_shape(cell_shape, sample_type, axis)
        values = np.full(
            shape,
            fill_value=value,
            dtype=dtype if dtype is not None else get_dtype(),
            order="C",
        )
        return cls(values=values, transform=transform, sample_type=sample_type, axis=axis)

    @property
    def shape(self) -> ThreeDimensions:
        return self.values.shape  # type: ignore[return-value]

    @property
    def voxel_count(self) -> int:
        return int(self.values.size)

    @property
    def dx(self) -> float:
        return self.transform.spacing

    @property
    def offset(self) -> typing.Tuple[float, float, float]:
        return sample_offset(self.sample_type, self.axis)

    def index_to_world(self, index_point: typing.Sequence[float]) -> np.ndarray:
        return self.transform.index_to_world(index_point, self.offset)

    def world_to_index(self, world_point: typing.Sequence[float]) -> np.ndarray:
        return self.transform.world_to_index(world_point, self.offset)

    def interp(self, world_point: typing.Union[WorldPoint, np.ndarray]) -> float:
        """
        Trilinearly interpolate the grid at a world position.

        :param world_point: Position in world coordinates.
        :return: Interpolated value, clamped to the grid's samples outside the grid.
        """
        x, y, z = self.world_to_index(world_point)
        return float(interpolate_trilinear(self.values, x, y, z))

    def index_shift_to(self, other: "ScalarGrid") -> np.ndarray:
        """
        Offset that maps an index of this grid into the index space of `other`.

        Both grids must share a transform.
        """
        return np.asarray(self.offset, dtype=np.float64) - np.asarray(
            other.offset, dtype=np.float64
        )

    def flatten(self, index: ThreeDimensions) -> int:
        _, count_y, count_z = self.shape
        return int(flatten_index(index[0], index[1], index[2], count_y, count_z))

    def unflatten(self, flat_index: int) -> ThreeDimensions:
        _, count_y, count_z = self.shape
        return tuple(int(v) for v in unflatten_index(flat_index, count_y, count_z))  # type: ignore[return-value]

    def is_grid_matched(self, other: "ScalarGrid") -> bool:
        """Whether `other` has the same transform and the same shape."""
        return self.transform == other.transform and self.shape == other.shape

    def copy(self) -> Self:
        return attrs.evolve(self, values=self.values.copy())

    def __getitem__(self, index: typing.Any) -> typing.Any:
        return self.values[index]

    def __setitem__(self, index: typing.Any, value: typing.Any) -> None:
        self.values[index] = value


@attrs.define
class VectorGrid:
    """
    Three scalar grids, one per axis, sharing a transform and a cell shape.

    STAGGERED grids (`SampleType.FACE`) store the component for axis `a` on the faces
    perpendicular to `a`. EDGE grids store per-axis samples on cell edges.
    """

    grids: typing.Tuple[ScalarGrid, ScalarGrid, ScalarGrid]
    transform: GridTransform
    cell_shape: ThreeDimensions
    sample_type: SampleType = SampleType.FACE

    def __attrs_post_init__(self) -> None:
        if self.sample_type not in (SampleType.FACE, SampleType.EDGE):
            raise ValidationError(
                f"Vector grids are sampled on faces or edges, got {self.sample_type.name}."
            )
        if len(self.grids) != 3:
            raise ValidationError("Vector grids need exactly three component grids.")

        dtype = np.result_type(*(grid.values.dtype for grid in self.grids))
        for axis, grid in enumerate(self.grids):
            expected = sample_shape(self.cell_shape, self.sample_type, axis)
            if grid.shape != expected:
                raise ValidationError(
                    f"Component {axis} has shape {grid.shape}, expected {expected}."
                )
            if grid.transform != self.transform:
                raise ValidationError(
                    f"Component {axis} does not share the vector grid's transform."
                )
            # Kernels select components by axis, so all three must share one array type
            grid.values = np.ascontiguousarray(grid.values, dtype=dtype)
            grid.sample_type = self.sample_type
            grid.axis = axis

    @classmethod
    def build(
        cls,
        transform: GridTransform,
        cell_shape: ThreeDimensions,
        value: float = 0.0,
        sample_type: SampleType = SampleType.FACE,
        dtype: typing.Optional[np.typing.DTypeLike] = None,
    ) -> Self:
        """
        Build a vector grid filled with a uniform value.

        :param transform: Grid transform.
        :param cell_shape: Number of cells in x, y and z.
        :param value: Initial value of every sample of every component.
        :param sample_type: `SampleType.FACE` (staggered) or `SampleType.EDGE`.
        :param dtype: Data type of the samples. Defaults to the field precision.
        :return: The new vector grid.
        """
        grids = tuple(
            ScalarGrid.build(
                transform=transform,
                cell_shape=cell_shape,
                value=value,
                sample_type=sample_type,
                axis=axis,
                dtype=dtype,
            )
            for axis in range(3)
        )
        return cls(
            grids=grids,  # type: ignore[arg-type]
            transform=transform,
            cell_shape=tuple(cell_shape),  # type: ignore[arg-type]
            sample_type=sample_type,
        )

    @classmethod
    def from_arrays(
        cls,
        arrays: typing.Sequence[np.ndarray],
        transform: GridTransform,
        sample_type: SampleType = SampleType.FACE,
    ) -> Self:
        """
        Wrap three per-axis arrays. The cell shape is inferred from the x component.

        :param arrays: Component arrays for x, y and z.
        :param transform: Grid transform.
        :param sample_type: `SampleType.FACE` (staggered) or `SampleType.EDGE`.
        :return: The new vector grid.
        """
        x_shape = np.shape(arrays[0])
        if sample_type == SampleType.FACE:
            cell_shape = (x_shape[0] - 1, x_shape[1], x_shape[2])
        else:
            cell_shape = (x_shape[0], x_shape[1] - 1, x_shape[2] - 1)
        grids = tuple(
            ScalarGrid(values=array, transform=transform, sample_type=sample_type, axis=axis)
            for axis, array in enumerate(arrays)
        )
        return cls(
            grids=grids,  # type: ignore[arg-type]
            transform=transform,
            cell_shape=cell_shape,
            sample_type=sample_type,
        )

    def grid(self, axis: int) -> ScalarGrid:
        return self.grids[axis]

    def size(self, axis: int) -> ThreeDimensions:
        return self.grids[axis].shape

    @property
    def arrays(self) -> typing.Tuple[np.ndarray, np.ndarray, np.ndarray]:
        return tuple(grid.values for grid in self.grids)  # type: ignore[return-value]

    @property
    def dx(self) -> float:
        return self.transform.spacing

    def index_to_world(self, index_point: typing.Sequence[float], axis: int) -> np.ndarray:
        return self.grids[axis].index_to_world(index_point)

    def is_grid_matched(self, other: "VectorGrid") -> bool:
        """Whether `other` has the same transform and the same per-axis shapes."""
        return self.transform == other.transform and all(
            self.size(axis) == other.size(axis) for axis in range(3)
        )

    def copy(self) -> Self:
        return attrs.evolve(self, grids=tuple(grid.copy() for grid in self.grids))

    def __getitem__(self, axis: int) -> np.ndarray:
        return self.grids[axis].values
