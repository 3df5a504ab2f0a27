#!/usr/bin/env python
# coding: utf-8

"""
Site-level preprocessing: validation, context/coverage filtering,
coverage normalization and replicate pooling.
"""

import dataclasses
import warnings
from typing import Dict, Iterable, List, Mapping, Optional

import numpy as np

from dmw_engine.core.exceptions import ConfigError, InputError
from dmw_engine.core.records import Context, Group, SiteRecord


# ============================================================================
# INPUT VALIDATION
# ============================================================================


def validate_sites(sites: Iterable[SiteRecord]) -> List[SiteRecord]:
    """
    Reject the whole input if any record is malformed.

    Raises
    ------
    InputError
        If a record has negative counts, methylated > coverage or a
        position below 1.
    """
    sites = list(sites)
    invalid = [
        s for s in sites
        if s.coverage < 0
        or s.methylated < 0
        or s.methylated > s.coverage
        or s.position < 1
    ]
    if invalid:
        first = invalid[0]
        raise InputError(
            f"{len(invalid)} malformed site record(s); first: sample "
            f"{first.sample_id} {first.chromosome}:{first.position} "
            f"(coverage={first.coverage}, methylated={first.methylated})",
            n_invalid=len(invalid),
        )
    return sites


def group_by_sample(sites: Iterable[SiteRecord]) -> Dict[str, List[SiteRecord]]:
    """Split records by sample, keeping first-seen sample order."""
    by_sample: Dict[str, List[SiteRecord]] = {}
    for site in sites:
        by_sample.setdefault(site.sample_id, []).append(site)
    return by_sample


def sample_groups(sites: Iterable[SiteRecord]) -> Dict[str, Group]:
    """Map each sample to its group; a sample may belong to one group only."""
    groups: Dict[str, Group] = {}
    for site in sites:
        known = groups.setdefault(site.sample_id, site.group)
        if known != site.group:
            raise InputError(
                f"Sample {site.sample_id} is labelled both {known.value} "
                f"and {site.group.value}"
            )
    return groups


# ============================================================================
# FILTERS
# ============================================================================


def filter_by_context(sites: Iterable[SiteRecord], context) -> List[SiteRecord]:
    """Keep records of a single cytosine context."""
    context = Context.from_label(context)
    return [s for s in sites if s.context == context]


def filter_by_coverage(
    sites: Iterable[SiteRecord],
    min_cov: int = 0,
    hi_perc: Optional[float] = None,
) -> List[SiteRecord]:
    """
    Discard low-confidence sites.

    Parameters
    ----------
    sites : iterable of SiteRecord
        Records of any number of samples
    min_cov : int
        Minimum coverage; 0 disables the lower bound
    hi_perc : float, optional
        Per-sample coverage percentile above which sites are discarded
        (guards against PCR duplicates)

    Returns
    -------
    List[SiteRecord]
        Surviving records in input order. With ``min_cov=0`` and no
        ``hi_perc`` the input is returned unchanged.
    """
    if min_cov < 0:
        raise ConfigError('min_cov', min_cov, "integer >= 0")
    if hi_perc is not None and not 0 < hi_perc <= 100:
        raise ConfigError('hi_perc', hi_perc, "None or a percentile in (0, 100]")

    sites = list(sites)
    if min_cov == 0 and hi_perc is None:
        return sites

    upper: Dict[str, float] = {}
    if hi_perc is not None:
        for sample_id, sample_sites in group_by_sample(sites).items():
            coverage = np.array([s.coverage for s in sample_sites], dtype=float)
            upper[sample_id] = float(np.percentile(coverage, hi_perc))

    return [
        s for s in sites
        if s.coverage >= min_cov
        and (hi_perc is None or s.coverage <= upper[s.sample_id])
    ]


# ============================================================================
# NORMALIZATION
# ============================================================================


def _coverage_level(sites: List[SiteRecord], method: str) -> float:
    """Median or mean coverage over sites with reads."""
    coverage = np.array([s.coverage for s in sites], dtype=float)
    coverage = coverage[coverage > 0]
    if coverage.size == 0:
        return 0.0
    if method == "median":
        return float(np.median(coverage))
    return float(np.mean(coverage))


def _scale_sites(sites: List[SiteRecord], factor: float) -> List[SiteRecord]:
    """Scale counts by ``factor``, rounding half up and keeping methylated <= coverage."""
    if factor == 1.0:
        return list(sites)

    coverage = np.array([s.coverage for s in sites], dtype=float)
    methylated = np.array([s.methylated for s in sites], dtype=float)

    new_cov = np.floor(coverage * factor + 0.5).astype(np.int64)
    new_meth = np.floor(methylated * factor + 0.5).astype(np.int64)
    new_cov = np.maximum(new_cov, 0)
    new_meth = np.clip(new_meth, 0, new_cov)

    return [
        dataclasses.replace(site, coverage=int(c), methylated=int(m))
        for site, c, m in zip(sites, new_cov, new_meth)
    ]


def normalize_coverage(
    sites_by_sample: Mapping[str, List[SiteRecord]],
    method: str = "median",
    reference: str = "min",
) -> Dict[str, List[SiteRecord]]:
    """
    Rescale per-sample coverage to a common level.

    Each sample's level is the median (or mean) coverage of its covered
    sites. All samples are scaled by ``reference_level / sample_level``,
    where the reference level is the smallest (or largest) sample level.

    Parameters
    ----------
    sites_by_sample : Mapping[str, List[SiteRecord]]
        Filtered records per sample
    method : str
        'median' or 'mean'
    reference : str
        'min' or 'max'

    Returns
    -------
    Dict[str, List[SiteRecord]]
        Normalized records per sample. Samples without sites are reported
        with a warning and left out.
    """
    if method not in ("median", "mean"):
        raise ConfigError('normalization', method, "'median' or 'mean'")
    if reference not in ("min", "max"):
        raise ConfigError('normalization_reference', reference, "'min' or 'max'")

    levels: Dict[str, float] = {}
    for sample_id, sites in sites_by_sample.items():
        if len(sites) == 0:
            warnings.warn(f"insufficient data for sample {sample_id}")
            continue
        levels[sample_id] = _coverage_level(sites, method)

    usable = [level for level in levels.values() if level > 0]
    if not usable:
        return {sample_id: list(sites_by_sample[sample_id]) for sample_id in levels}

    ref_level = min(usable) if reference == "min" else max(usable)

    normalized = {}
    for sample_id, level in levels.items():
        factor = ref_level / level if level > 0 else 1.0
        normalized[sample_id] = _scale_sites(sites_by_sample[sample_id], factor)

    return normalized


# ============================================================================
# REPLICATE POOLING
# ============================================================================


def pool_replicates(
    sites_by_sample: Mapping[str, List[SiteRecord]],
    pooled_ids: Mapping[Group, str],
) -> Dict[str, List[SiteRecord]]:
    """
    Collapse the replicates of each group into one pseudo-sample.

    Counts of the same cytosine (chromosome, position, strand, context) are
    summed across the group's samples. Sites seen in only some replicates
    keep the counts of those replicates.

    Parameters
    ----------
    sites_by_sample : Mapping[str, List[SiteRecord]]
        Normalized records per sample
    pooled_ids : Mapping[Group, str]
        Sample id given to each group's pseudo-sample

    Returns
    -------
    Dict[str, List[SiteRecord]]
        One entry per non-empty group, sites sorted by position
    """
    totals: Dict[Group, Dict[tuple, List[int]]] = {group: {} for group in Group}

    for sites in sites_by_sample.values():
        for site in sites:
            key = (site.chromosome, site.position, site.strand, site.context)
            counts = totals[site.group].setdefault(key, [0, 0])
            counts[0] += site.coverage
            counts[1] += site.methylated

    pooled: Dict[str, List[SiteRecord]] = {}
    for group, acc in totals.items():
        if not acc:
            continue
        pooled_id = pooled_ids[group]
        pooled[pooled_id] = [
            SiteRecord(
                chromosome=chrom,
                position=pos,
                strand=strand,
                context=context,
                coverage=cov,
                methylated=meth,
                sample_id=pooled_id,
                group=group,
            )
            for (chrom, pos, strand, context), (cov, meth) in sorted(acc.items())
        ]

    return pooled
