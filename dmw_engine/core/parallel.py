#!/usr/bin/env python
# coding: utf-8

"""
Thread-pool helpers shared by the tiling and testing stages.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


def run_parallel(func: Callable[[T], R], units: Iterable[T], workers: int = 1) -> List[R]:
    """
    Apply ``func`` to every unit, returning results in submission order.

    With ``workers == 1`` the units are processed inline. Exceptions raised
    by ``func`` propagate to the caller.
    """
    units = list(units)
    if workers <= 1 or len(units) <= 1:
        return [func(unit) for unit in units]

    with ThreadPoolExecutor(max_workers=min(workers, len(units))) as executor:
        futures = [executor.submit(func, unit) for unit in units]
        return [future.result() for future in futures]


def chunked(items: Sequence[T], n_chunks: int) -> List[Sequence[T]]:
    """Split ``items`` into at most ``n_chunks`` contiguous, near-equal slices."""
    n_chunks = max(1, min(n_chunks, len(items)))
    size, extra = divmod(len(items), n_chunks)
    chunks = []
    start = 0
    for i in range(n_chunks):
        end = start + size + (1 if i < extra else 0)
        chunks.append(items[start:end])
        start = end
    return chunks
