#!/usr/bin/env python
# coding: utf-8

"""
Window tiling and cross-sample uniting.

Sites are summed into fixed-size windows starting at 0, S, 2S, ... on each
chromosome; windows are then inner-joined across samples.
"""

from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from dmw_engine.core.exceptions import ConfigError
from dmw_engine.core.parallel import run_parallel
from dmw_engine.core.records import (
    ExclusionReport,
    Group,
    SiteRecord,
    UnitedWindow,
    WindowAggregate,
    WindowKey,
)


# ============================================================================
# TILING
# ============================================================================


def _check_tiling(window_size: int, step_size: int, min_sites: int):
    if window_size < 1:
        raise ConfigError('window_size', window_size, "integer >= 1")
    if step_size < 1:
        raise ConfigError('step_size', step_size, "integer >= 1")
    if min_sites < 0:
        raise ConfigError('min_sites', min_sites, "integer >= 0")


def n_windows(max_position: int, window_size: int, step_size: int) -> int:
    """
    Number of windows tiled on a chromosome.

    The last window start is the largest multiple of ``step_size`` for which
    the window still reaches past ``max_position``; at least one window is
    always produced.
    """
    return max(1, (max_position - (window_size - step_size)) // step_size + 1)


def _tile_unit(unit) -> List[WindowAggregate]:
    """Tile one (sample, chromosome) block of sites."""
    (sample_id, group, chromosome, positions, coverage, methylated,
     window_size, step_size, min_sites) = unit

    n_tiles = n_windows(int(positions.max()), window_size, step_size)

    # a site can fall in at most ceil(W / S) windows, the last one being p // S
    last = positions // step_size
    span = -(-window_size // step_size)
    tile_idx, site_idx = [], []
    for offset in range(span):
        k = last - offset
        inside = (k >= 0) & (k < n_tiles) & (positions < k * step_size + window_size)
        tile_idx.append(k[inside])
        site_idx.append(np.flatnonzero(inside))
    tile_idx = np.concatenate(tile_idx)
    site_idx = np.concatenate(site_idx)

    # accumulate over touched windows only
    tiles, slot = np.unique(tile_idx, return_inverse=True)
    cov_sum = np.zeros(len(tiles), dtype=np.int64)
    meth_sum = np.zeros(len(tiles), dtype=np.int64)
    site_count = np.zeros(len(tiles), dtype=np.int64)
    np.add.at(cov_sum, slot, coverage[site_idx])
    np.add.at(meth_sum, slot, methylated[site_idx])
    np.add.at(site_count, slot, (coverage[site_idx] > 0).astype(np.int64))

    keep = np.flatnonzero((cov_sum > 0) & (site_count >= min_sites))
    return [
        WindowAggregate(
            key=WindowKey(
                chromosome,
                int(tiles[i]) * step_size,
                int(tiles[i]) * step_size + window_size,
            ),
            sample_id=sample_id,
            group=group,
            coverage=int(cov_sum[i]),
            methylated=int(meth_sum[i]),
            n_sites=int(site_count[i]),
        )
        for i in keep
    ]


def _sample_units(
    sample_id: str,
    sites: Sequence[SiteRecord],
    window_size: int,
    step_size: int,
    min_sites: int,
) -> List[tuple]:
    """Split one sample's sites into per-chromosome tiling units."""
    by_chrom: Dict[str, List[SiteRecord]] = {}
    group: Optional[Group] = None
    for site in sites:
        if site.sample_id != sample_id:
            raise ValueError(
                f"Site of sample {site.sample_id} passed for sample {sample_id}"
            )
        group = site.group
        by_chrom.setdefault(site.chromosome, []).append(site)

    units = []
    for chromosome, chrom_sites in by_chrom.items():
        units.append((
            sample_id,
            group,
            chromosome,
            np.array([s.position for s in chrom_sites], dtype=np.int64),
            np.array([s.coverage for s in chrom_sites], dtype=np.int64),
            np.array([s.methylated for s in chrom_sites], dtype=np.int64),
            window_size,
            step_size,
            min_sites,
        ))
    return units


def tile_windows(
    sites: Sequence[SiteRecord],
    window_size: int,
    step_size: int,
    min_sites: int = 0,
) -> List[WindowAggregate]:
    """
    Aggregate one sample's sites into tiling windows.

    Parameters
    ----------
    sites : sequence of SiteRecord
        Normalized records of a single sample
    window_size : int
        Window width W
    step_size : int
        Distance S between consecutive window starts; S > W leaves gaps
    min_sites : int
        Minimum number of covered sites a window must contain

    Returns
    -------
    List[WindowAggregate]
        Windows with non-zero coverage, sorted by (chromosome, start)

    Examples
    --------
    >>> windows = tile_windows(sites, window_size=1000, step_size=1000)
    """
    _check_tiling(window_size, step_size, min_sites)
    sites = list(sites)
    if not sites:
        return []

    units = _sample_units(sites[0].sample_id, sites, window_size, step_size, min_sites)
    windows = [w for unit in units for w in _tile_unit(unit)]
    return sorted(windows, key=lambda w: w.key)


def tile_samples(
    sites_by_sample: Mapping[str, Sequence[SiteRecord]],
    window_size: int,
    step_size: int,
    min_sites: int = 0,
    workers: int = 1,
) -> Dict[str, List[WindowAggregate]]:
    """
    Tile every sample, parallelized over (sample, chromosome) units.

    Returns
    -------
    Dict[str, List[WindowAggregate]]
        Sorted windows per sample; samples without sites map to an empty list
    """
    _check_tiling(window_size, step_size, min_sites)

    units = []
    for sample_id, sites in sites_by_sample.items():
        units.extend(_sample_units(sample_id, sites, window_size, step_size, min_sites))

    tiled: Dict[str, List[WindowAggregate]] = {sample_id: [] for sample_id in sites_by_sample}
    for unit, windows in zip(units, run_parallel(_tile_unit, units, workers=workers)):
        tiled[unit[0]].extend(windows)

    return {
        sample_id: sorted(windows, key=lambda w: w.key)
        for sample_id, windows in tiled.items()
    }


# ============================================================================
# UNITING
# ============================================================================


def unite_windows(
    tiled: Mapping[str, Iterable[WindowAggregate]],
    sample_ids: Optional[Sequence[str]] = None,
) -> Tuple[List[UnitedWindow], ExclusionReport]:
    """
    Inner-join windows across samples.

    Parameters
    ----------
    tiled : Mapping[str, Iterable[WindowAggregate]]
        Windows per sample, e.g. from ``tile_samples``
    sample_ids : sequence of str, optional
        Samples that must all cover a window (default: every key of ``tiled``)

    Returns
    -------
    Tuple[List[UnitedWindow], ExclusionReport]
        (windows covered in every sample sorted by (chromosome, start),
        count of windows dropped because some sample lacked them)
    """
    sample_ids = list(sample_ids) if sample_ids is not None else list(tiled)
    if not sample_ids:
        return [], ExclusionReport()

    indexed = {
        sample_id: {agg.key: agg for agg in tiled.get(sample_id, ())}
        for sample_id in sample_ids
    }

    seen = set()
    for windows in indexed.values():
        seen.update(windows)

    common = set.intersection(*(set(windows) for windows in indexed.values()))

    united = [
        UnitedWindow(
            key=key,
            aggregates={sample_id: indexed[sample_id][key] for sample_id in sample_ids},
        )
        for key in sorted(common)
    ]
    return united, ExclusionReport(missing_in_samples=len(seen) - len(common))
