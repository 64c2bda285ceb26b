import typing

import attrs
import numpy as np
from typing_extensions import Self

from viscosim._precision import get_dtype
from viscosim.errors import ValidationError
from viscosim.grids import GridTransform, ScalarGrid
from viscosim.types import SampleType, ThreeDimensions

__all__ = ["LevelSet"]


@attrs.define
class LevelSet(ScalarGrid):
    """
    Cell-centred signed distance field.

    Negative (or zero) distances are inside the represented body, positive
    distances are outside.
    """

    def __attrs_post_init__(self) -> None:
        if self.sample_type != SampleType.CENTER:
            raise ValidationError("Level sets are sampled at cell centres.")

    @classmethod
    def build(  # type: ignore[override]
        cls,
        transform: GridTransform,
        cell_shape: ThreeDimensions,
        value: float = 0.0,
        dtype: typing.Optional[np.typing.DTypeLike] = None,
    ) -> Self:
        """
        Build a level set with a uniform distance everywhere.

        A negative value makes the whole domain inside, a positive one makes it outside.
        """
        values = np.full(
            tuple(cell_shape),
            fill_value=value,
            dtype=dtype if dtype is not None else get_dtype(),
            order="C",
        )
        return cls(values=values, transform=transform, sample_type=SampleType.CENTER)

    @classmethod
    def from_function(
        cls,
        transform: GridTransform,
        cell_shape: ThreeDimensions,
        distance_func: typing.Callable[[np.ndarray, np.ndarray, np.ndarray], np.ndarray],
        dtype: typing.Optional[np.typing.DTypeLike] = None,
    ) -> Self:
        """
        Sample a signed distance function at every cell centre.

        :param transform: Grid transform.
        :param cell_shape: Number of cells in x, y and z.
        :param distance_func: Vectorised function of world x, y, z arrays returning distances.
        :param dtype: Data type of the samples. Defaults to the field precision.
        :return: The sampled level set.
        """
        axes = [
            transform.origin[a] + (np.arange(n, dtype=np.float64) + 0.5) * transform.spacing
            for a, n in enumerate(cell_shape)
        ]
        x, y, z = np.meshgrid(*axes, indexing="ij")
        distances = np.asarray(distance_func(x, y, z), dtype=np.float64)
        distances = np.broadcast_to(distances, tuple(cell_shape))
        return cls(
            values=distances.astype(dtype if dtype is not None else get_dtype()),
            transform=transform,
            sample_type=SampleType.CENTER,
        )

    @classmethod
    def sphere(
        cls,
        transform: GridTransform,
        cell_shape: ThreeDimensions,
        center: typing.Sequence[float],
        radius: float,
        dtype: typing.Optional[np.typing.DTypeLike] = None,
    ) -> Self:
        """Level set of a ball of `radius` around `center`."""
        cx, cy, cz = (float(c) for c in center)
        return cls.from_function(
            transform,
            cell_shape,
            lambda x, y, z: np.sqrt((x - cx) ** 2 + (y - cy) ** 2 + (z - cz) ** 2)
            - radius,
            dtype=dtype,
        )

    @classmethod
    def half_space(
        cls,
        transform: GridTransform,
        cell_shape: ThreeDimensions,
        point: typing.Sequence[float],
        normal: typing.Sequence[float],
        dtype: typing.Optional[np.typing.DTypeLike] = None,
    ) -> Self:
        """
        Level set of the half space behind a plane.

        Points with `dot(p - point, normal) <= 0` are inside.
        """
        n = np.asarray(normal, dtype=np.float64)
        length = np.linalg.norm(n)
        if length == 0:
            raise ValidationError("Half space normal must be non-zero.")
        nx, ny, nz = n / length
        px, py, pz = (float(p) for p in point)
        return cls.from_function(
            transform,
            cell_shape,
            lambda x, y, z: (x - px) * nx + (y - py) * ny + (z - pz) * nz,
            dtype=dtype,
        )

    def distance(self, world_point: typing.Sequence[float]) -> float:
        """Signed distance at a world position."""
        return self.interp(world_point)  # type: ignore[arg-type]
