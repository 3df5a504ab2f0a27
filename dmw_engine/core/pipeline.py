#!/usr/bin/env python
# coding: utf-8

"""
End-to-end differential methylation window calling.

records -> validate -> context filter -> coverage filter -> normalize
        -> (pool) -> tile -> unite -> test + FDR -> classify
"""

import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

import pandas as pd

from dmw_engine.core.config import AnalysisConfig, get_config
from dmw_engine.core.engine import (
    calculate_diff_meth,
    classify_results,
    results_to_frame,
    select_test,
    summarize_diff_results,
    validate_groups,
)
from dmw_engine.core.exceptions import InsufficientDataError
from dmw_engine.core.preprocess import (
    filter_by_context,
    filter_by_coverage,
    group_by_sample,
    normalize_coverage,
    pool_replicates,
    sample_groups,
    validate_sites,
)
from dmw_engine.core.records import (
    ClassifiedResults,
    DiffResult,
    ExclusionReport,
    Group,
    SiteRecord,
)
from dmw_engine.core.tiling import tile_samples, unite_windows


@dataclass
class AnalysisResult:
    """Everything a run produces; written out only after it is complete."""

    config: AnalysisConfig
    results: List[DiffResult]
    classified: ClassifiedResults
    exclusions: ExclusionReport
    sample_groups: Dict[str, Group]
    method: str
    stage_counts: Dict[str, int] = field(default_factory=dict)

    def summary(self) -> Dict:
        return summarize_diff_results(
            self.results, min_diff=self.config.min_diff, q_threshold=self.config.q_value
        )

    def to_frames(self) -> Dict[str, pd.DataFrame]:
        return {
            "all": results_to_frame(self.classified.all),
            "hyper": results_to_frame(self.classified.hyper),
            "hypo": results_to_frame(self.classified.hypo),
        }


def _require_sites(by_sample: Dict[str, List[SiteRecord]], samples: Iterable[str], stage: str):
    for sample_id in samples:
        if not by_sample.get(sample_id):
            raise InsufficientDataError(
                f"insufficient data for sample {sample_id}: no sites left after {stage}",
                sample_id=sample_id,
            )


def run_analysis(
    sites: Iterable[SiteRecord],
    config: Optional[AnalysisConfig] = None,
    verbose: bool = False,
) -> AnalysisResult:
    """
    Call differentially methylated windows between control and experimental
    samples.

    Parameters
    ----------
    sites : iterable of SiteRecord
        Parsed per-cytosine records of every sample
    config : AnalysisConfig, optional
        Run parameters (default: global configuration)
    verbose : bool
        Print progress messages

    Returns
    -------
    AnalysisResult

    Raises
    ------
    InputError
        If any record is malformed
    InsufficientDataError
        If a group has no samples, or a sample has no sites after filtering
        or no windows after tiling
    """
    config = config or get_config()
    start_time = time.time()

    sites = validate_sites(sites)
    groups = sample_groups(sites)
    validate_groups(groups)
    counts = {"input_sites": len(sites)}

    sites = filter_by_context(sites, config.context)
    _require_sites(group_by_sample(sites), groups, f"{config.context} context filtering")
    counts["context_sites"] = len(sites)

    sites = filter_by_coverage(sites, min_cov=config.min_coverage, hi_perc=config.hi_perc)
    by_sample = group_by_sample(sites)
    _require_sites(by_sample, groups, "coverage filtering")
    counts["filtered_sites"] = len(sites)

    by_sample = normalize_coverage(
        {sample_id: by_sample[sample_id] for sample_id in groups},
        method=config.normalization,
        reference=config.normalization_reference,
    )

    if config.pool:
        by_sample = pool_replicates(
            by_sample,
            {Group.CONTROL: config.control_id, Group.EXPERIMENTAL: config.experimental_id},
        )
        groups = {
            config.control_id: Group.CONTROL,
            config.experimental_id: Group.EXPERIMENTAL,
        }

    if verbose:
        print(
            f"Tiling {len(by_sample)} samples into {config.window_size} bp windows "
            f"(step {config.step_size})..."
        )

    tiled = tile_samples(
        by_sample,
        window_size=config.window_size,
        step_size=config.step_size,
        min_sites=config.min_sites,
        workers=config.workers,
    )
    for sample_id in groups:
        if not tiled.get(sample_id):
            raise InsufficientDataError(
                f"insufficient data for sample {sample_id}: no windows after tiling",
                sample_id=sample_id,
            )
    counts["tiled_windows"] = sum(len(w) for w in tiled.values())

    united, unite_exclusions = unite_windows(tiled, sample_ids=list(groups))
    counts["united_windows"] = len(united)

    method = select_test(groups, config.test)
    results, test_exclusions = calculate_diff_meth(
        united,
        groups,
        method=method,
        overdispersion=config.overdispersion,
        test=config.overdispersion_test,
        adjust=config.adjust,
        workers=config.workers,
        verbose=verbose,
    )
    counts["tested_windows"] = len(results)

    classified = classify_results(results, config.min_diff, config.q_value)
    exclusions = unite_exclusions.merge(test_exclusions)

    if verbose:
        elapsed = time.time() - start_time
        print(exclusions.summary())
        print(
            f"✔ {config.context} DMWs: {len(classified.all)} "
            f"(hyper {len(classified.hyper)}, hypo {len(classified.hypo)}) "
            f"in {elapsed:.1f}s"
        )

    return AnalysisResult(
        config=config,
        results=results,
        classified=classified,
        exclusions=exclusions,
        sample_groups=dict(groups),
        method=method,
        stage_counts=counts,
    )
