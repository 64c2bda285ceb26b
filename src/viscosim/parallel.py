from concurrent.futures import ThreadPoolExecutor
import logging
import os
import typing

import numpy as np

from viscosim.errors import ValidationError
from viscosim.types import T

logger = logging.getLogger(__name__)

__all__ = [
    "blocked_ranges",
    "parallel_for",
    "merge_triplet_buffers",
    "TripletBuffer",
]

TripletBuffer = typing.Tuple[np.ndarray, np.ndarray, np.ndarray]
"""Thread-private (rows, cols, values) coefficient contributions."""


def blocked_ranges(count: int, grain_size: int) -> typing.List[typing.Tuple[int, int]]:
    """
    Split `[0, count)` into consecutive half-open ranges of at most `grain_size` items.

    :param count: Number of items.
    :param grain_size: Maximum number of items per range.
    :return: List of `(start, stop)` pairs covering `[0, count)` in order.
    """
    if grain_size < 1:
        raise ValidationError(f"Grain size must be positive, got {grain_size}.")
    return [
        (start, min(start + grain_size, count)) for start in range(0, count, grain_size)
    ]


def parallel_for(
    count: int,
    body: typing.Callable[[int, int], T],
    grain_size: int = 1000,
    max_workers: typing.Optional[int] = None,
) -> typing.List[T]:
    """
    Run `body(start, stop)` over blocked ranges of `[0, count)` on a thread pool.

    Bodies are expected to call numba kernels compiled with `nogil=True`, so the
    ranges execute concurrently. The call returns only once every range has finished,
    which makes each call a barrier between pipeline stages. Exceptions raised by a
    body propagate to the caller.

    :param count: Number of items (usually a flattened voxel count).
    :param body: Callable processing the half-open range `[start, stop)`.
    :param grain_size: Maximum number of items per range.
    :param max_workers: Number of worker threads. Defaults to the CPU count.
    :return: The per-range results, in range order.
    """
    ranges = blocked_ranges(count, grain_size)
    max_workers = max_workers or os.cpu_count() or 1
    if len(ranges) <= 1 or max_workers == 1:
        return [body(start, stop) for start, stop in ranges]

    workers = min(max_workers, len(ranges))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        return list(executor.map(lambda r: body(*r), ranges))


def merge_triplet_buffers(
    buffers: typing.Sequence[TripletBuffer],
    dtype: np.typing.DTypeLike = np.float64,
) -> TripletBuffer:
    """
    Concatenate thread-private triplet buffers into one global list.

    The buffers are concatenated, not sorted: duplicate `(row, col)` pairs are
    summed when the matrix is built, so the result does not depend on the order
    in which the buffers were produced.

    :param buffers: Per-range `(rows, cols, values)` arrays.
    :param dtype: Data type of the merged values.
    :return: Merged `(rows, cols, values)`.
    """
    if not buffers:
        return (
            np.empty(0, dtype=np.int64),
            np.empty(0, dtype=np.int64),
            np.empty(0, dtype=dtype),
        )
    rows = np.concatenate([buffer[0] for buffer in buffers])
    cols = np.concatenate([buffer[1] for buffer in buffers])
    values = np.concatenate([buffer[2] for buffer in buffers]).astype(dtype, copy=False)
    logger.debug(f"Merged {len(buffers)} triplet buffers into {rows.size} entries")
    return rows, cols, values
