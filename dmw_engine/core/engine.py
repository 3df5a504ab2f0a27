#!/usr/bin/env python
# coding: utf-8

"""
Differential Methylation Calculator
Per-window binomial tests, batch FDR correction and result classification
"""

import time
import warnings
from dataclasses import dataclass
from functools import partial
from typing import Dict, List, Mapping, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy import stats
from scipy.special import xlogy
from statsmodels.stats.multitest import multipletests

from dmw_engine.core.exceptions import ConfigError, InsufficientDataError
from dmw_engine.core.parallel import chunked, run_parallel
from dmw_engine.core.records import (
    ClassifiedResults,
    DiffResult,
    Direction,
    ExclusionReport,
    Group,
    UnitedWindow,
    WindowKey,
)

RESULT_COLUMNS = [
    "chromosome",
    "window_start",
    "window_end",
    "pvalue",
    "qvalue",
    "meth_diff",
    "direction",
]


# ============================================================================
# INPUT VALIDATION
# ============================================================================


def validate_groups(sample_groups: Mapping[str, Group]) -> Tuple[List[str], List[str]]:
    """Split samples into (control, experimental); both must be non-empty."""
    control = [s for s, g in sample_groups.items() if g == Group.CONTROL]
    experimental = [s for s, g in sample_groups.items() if g == Group.EXPERIMENTAL]

    if not control:
        raise InsufficientDataError(
            "Group 'control' has no samples; a two-group test needs both groups",
            group=Group.CONTROL.value,
        )
    if not experimental:
        raise InsufficientDataError(
            "Group 'experimental' has no samples; a two-group test needs both groups",
            group=Group.EXPERIMENTAL.value,
        )
    return control, experimental


def select_test(sample_groups: Mapping[str, Group], method: str = "auto") -> str:
    """
    Choose the test used for every window of a run.

    'auto' picks Fisher's exact test when each group holds a single
    (possibly pooled) sample and the logistic-regression likelihood-ratio
    test otherwise.
    """
    control, experimental = validate_groups(sample_groups)

    if method == "auto":
        return "fisher" if len(control) == 1 and len(experimental) == 1 else "lrt"
    if method not in ("fisher", "lrt"):
        raise ConfigError('test', method, "'auto', 'fisher' or 'lrt'")
    return method


# ============================================================================
# CORE STATISTICAL FUNCTIONS
# ============================================================================


def fisher_test(ctrl_meth: int, ctrl_cov: int, exp_meth: int, exp_cov: int) -> float:
    """Two-sided Fisher's exact test on the pooled 2x2 methylation table."""
    table = [
        [ctrl_meth, ctrl_cov - ctrl_meth],
        [exp_meth, exp_cov - exp_meth],
    ]
    _, pval = stats.fisher_exact(table, alternative="two-sided")
    return float(min(1.0, pval))


def _binomial_loglik(meth: np.ndarray, cov: np.ndarray, prob) -> float:
    return float(np.sum(xlogy(meth, prob) + xlogy(cov - meth, 1.0 - prob)))


def logistic_lrt(
    methylated: np.ndarray,
    coverage: np.ndarray,
    treatment: np.ndarray,
    overdispersion: str = "none",
    test: str = "Chisq",
) -> float:
    """
    Likelihood-ratio test of a logistic regression with group as predictor.

    With a single binary predictor the maximum-likelihood fit is the pooled
    methylation ratio of each group, so both models are solved in closed form.

    Parameters
    ----------
    methylated, coverage : np.ndarray
        Per-sample counts of one window
    treatment : np.ndarray
        Boolean mask, True for experimental samples
    overdispersion : str
        'none' or 'MN' (McCullagh-Nelder scaling by Pearson chi2 / df)
    test : str
        Reference distribution when overdispersion='MN': 'Chisq' or 'F'

    Returns
    -------
    float
        p-value
    """
    m = np.asarray(methylated, dtype=float)
    c = np.asarray(coverage, dtype=float)
    t = np.asarray(treatment, dtype=bool)

    p_ctrl = m[~t].sum() / c[~t].sum()
    p_exp = m[t].sum() / c[t].sum()
    p_null = m.sum() / c.sum()
    fitted = np.where(t, p_exp, p_ctrl)

    deviance = 2.0 * (_binomial_loglik(m, c, fitted) - _binomial_loglik(m, c, p_null))
    deviance = max(deviance, 0.0)

    df_resid = len(m) - 2
    if overdispersion == "MN" and df_resid > 0:
        variance = c * fitted * (1.0 - fitted)
        resid_sq = (m - c * fitted) ** 2
        pearson = np.sum(
            np.divide(resid_sq, variance, out=np.zeros_like(variance), where=variance > 0)
        )
        phi = max(1.0, pearson / df_resid)
        statistic = deviance / phi
        if test == "F":
            return float(stats.f.sf(statistic, 1, df_resid))
        return float(stats.chi2.sf(statistic, 1))

    return float(stats.chi2.sf(deviance, 1))


def adjust_pvalues(pvalues: Sequence[float], method: str = "fdr_bh") -> np.ndarray:
    """
    Multiple-testing correction over the p-values of a whole run.

    Returns an empty array when no p-values are given.
    """
    pvals = np.asarray(pvalues, dtype=float)
    if pvals.size == 0:
        return np.array([], dtype=float)

    _, padj, _, _ = multipletests(pvals, method=method)
    return np.clip(padj, 0.0, 1.0)


def _direction(meth_diff: float) -> Direction:
    if meth_diff > 0:
        return Direction.HYPER
    if meth_diff < 0:
        return Direction.HYPO
    return Direction.NONE


# ============================================================================
# MAIN DIFFERENTIAL ANALYSIS
# ============================================================================


@dataclass(frozen=True)
class _TestDesign:
    method: str
    overdispersion: str
    test: str
    samples: Tuple[str, ...]
    treatment: np.ndarray


@dataclass(frozen=True)
class _WindowTest:
    key: WindowKey
    pvalue: float
    meth_diff: float
    status: str  # "ok", "zero_coverage" or "failed"


def _test_window(window: UnitedWindow, design: _TestDesign) -> _WindowTest:
    meth = np.array([window.aggregates[s].methylated for s in design.samples], dtype=np.int64)
    cov = np.array([window.aggregates[s].coverage for s in design.samples], dtype=np.int64)
    t = design.treatment

    ctrl_meth, ctrl_cov = int(meth[~t].sum()), int(cov[~t].sum())
    exp_meth, exp_cov = int(meth[t].sum()), int(cov[t].sum())

    if ctrl_cov == 0 or exp_cov == 0:
        return _WindowTest(window.key, np.nan, np.nan, "zero_coverage")

    # identical ratios, compared exactly on integers
    if ctrl_meth * exp_cov == exp_meth * ctrl_cov:
        return _WindowTest(window.key, 1.0, 0.0, "ok")

    meth_diff = 100.0 * (exp_meth / exp_cov - ctrl_meth / ctrl_cov)

    try:
        if design.method == "fisher":
            pval = fisher_test(ctrl_meth, ctrl_cov, exp_meth, exp_cov)
        else:
            pval = logistic_lrt(meth, cov, t, design.overdispersion, design.test)
    except (ValueError, ArithmeticError) as e:
        warnings.warn(f"Test failed for window {window.key}: {e}")
        return _WindowTest(window.key, np.nan, np.nan, "failed")

    if not np.isfinite(pval):
        warnings.warn(f"Test failed for window {window.key}: non-finite p-value")
        return _WindowTest(window.key, np.nan, np.nan, "failed")

    return _WindowTest(window.key, float(pval), meth_diff, "ok")


def _test_chunk(windows: Sequence[UnitedWindow], design: _TestDesign) -> List[_WindowTest]:
    return [_test_window(window, design) for window in windows]


def calculate_diff_meth(
    united: Sequence[UnitedWindow],
    sample_groups: Mapping[str, Group],
    method: str = "auto",
    overdispersion: str = "none",
    test: str = "Chisq",
    adjust: str = "fdr_bh",
    workers: int = 1,
    verbose: bool = False,
) -> Tuple[List[DiffResult], ExclusionReport]:
    """
    Test every united window for a control vs experimental difference.

    Runs in two passes: each window is tested independently (in parallel
    chunks), then all raw p-values are corrected together.

    Parameters
    ----------
    united : sequence of UnitedWindow
        Windows covered in every sample
    sample_groups : Mapping[str, Group]
        Group of each sample in the run
    method : str
        'auto', 'fisher' or 'lrt'; one test is used for the whole run
    overdispersion : str
        'none' or 'MN' (logistic-regression test only)
    test : str
        'Chisq' or 'F' reference distribution under overdispersion='MN'
    adjust : str
        statsmodels ``multipletests`` method (default Benjamini-Hochberg)
    workers : int
        Number of worker threads
    verbose : bool
        Print progress messages

    Returns
    -------
    Tuple[List[DiffResult], ExclusionReport]
        (results in window order, counts of windows that could not be tested)

    Examples
    --------
    >>> results, excluded = calculate_diff_meth(united, groups, workers=4)
    """
    if overdispersion not in ("none", "MN"):
        raise ConfigError('overdispersion', overdispersion, "'none' or 'MN'")
    if test not in ("Chisq", "F"):
        raise ConfigError('overdispersion_test', test, "'Chisq' or 'F'")

    chosen = select_test(sample_groups, method)
    samples = tuple(sample_groups)
    design = _TestDesign(
        method=chosen,
        overdispersion=overdispersion,
        test=test,
        samples=samples,
        treatment=np.array([sample_groups[s] == Group.EXPERIMENTAL for s in samples]),
    )

    start_time = time.time()
    chunks = chunked(list(united), workers)
    if verbose:
        print(
            f"Testing {len(united):,} windows with '{chosen}' "
            f"in {len(chunks)} chunk(s)..."
        )

    # Pass 1: per-window tests, accumulated per worker
    per_worker = run_parallel(partial(_test_chunk, design=design), chunks, workers=workers)
    tested = [t for chunk in per_worker for t in chunk]

    ok = [t for t in tested if t.status == "ok"]
    exclusions = ExclusionReport(
        zero_coverage_groups=sum(t.status == "zero_coverage" for t in tested),
        failed_tests=sum(t.status == "failed" for t in tested),
    )

    # Pass 2: correction over the full p-value distribution
    qvalues = adjust_pvalues([t.pvalue for t in ok], method=adjust)

    results = [
        DiffResult(
            key=t.key,
            pvalue=t.pvalue,
            qvalue=float(q),
            meth_diff=t.meth_diff,
            direction=_direction(t.meth_diff),
        )
        for t, q in zip(ok, qvalues)
    ]

    if verbose:
        elapsed = time.time() - start_time
        print(f"✔ Tested {len(results):,} windows in {elapsed:.1f}s")
        if exclusions.total:
            print(f"  {exclusions.summary()}")

    return results, exclusions


# ============================================================================
# RESULTS ANALYSIS
# ============================================================================


def _check_thresholds(difference: float, qvalue: float):
    if not 0.0 <= difference <= 100.0:
        raise ConfigError('min_diff', difference, "[0, 100]")
    if not 0.0 <= qvalue <= 1.0:
        raise ConfigError('q_value', qvalue, "[0, 1]")


def get_methyl_diff(
    results: Sequence[DiffResult],
    difference: float = 25.0,
    qvalue: float = 0.01,
    type: str = "all",
) -> List[DiffResult]:
    """
    Select differentially methylated windows.

    Parameters
    ----------
    results : sequence of DiffResult
        Output of calculate_diff_meth
    difference : float
        Minimum absolute methylation difference (percentage points)
    qvalue : float
        Maximum q-value
    type : str
        'all', 'hyper' or 'hypo'

    Returns
    -------
    List[DiffResult]
        Passing windows in input order. Windows with a difference of exactly
        zero are never selected.
    """
    _check_thresholds(difference, qvalue)

    sig = [
        r for r in results
        if r.qvalue <= qvalue and abs(r.meth_diff) >= difference and r.meth_diff != 0
    ]

    if type == "hyper":
        return [r for r in sig if r.meth_diff > 0]
    if type == "hypo":
        return [r for r in sig if r.meth_diff < 0]
    if type == "all":
        return sig
    raise ValueError(f"Unknown type: {type}. Use 'all', 'hyper' or 'hypo'.")


def classify_results(
    results: Sequence[DiffResult], min_diff: float, q_threshold: float
) -> ClassifiedResults:
    """Split significant windows into all / hyper / hypo views."""
    selected = get_methyl_diff(results, difference=min_diff, qvalue=q_threshold)
    return ClassifiedResults(
        all=selected,
        hyper=[r for r in selected if r.meth_diff > 0],
        hypo=[r for r in selected if r.meth_diff < 0],
    )


def summarize_diff_results(
    results: Sequence[DiffResult], min_diff: float = 25.0, q_threshold: float = 0.05
) -> Dict:
    """Generate summary statistics."""
    classified = classify_results(results, min_diff, q_threshold)
    sig_diff = np.abs([r.meth_diff for r in classified.all])
    all_diff = np.abs([r.meth_diff for r in results])

    summary = {
        "total_tested": len(results),
        "significant": len(classified.all),
        "pct_significant": (
            len(classified.all) / len(results) * 100 if len(results) > 0 else 0
        ),
        "hypermethylated": len(classified.hyper),
        "hypomethylated": len(classified.hypo),
        "mean_abs_diff_sig": float(sig_diff.mean()) if sig_diff.size else 0,
        "median_abs_diff_sig": float(np.median(sig_diff)) if sig_diff.size else 0,
        "max_abs_diff": float(all_diff.max()) if all_diff.size else 0,
        "min_pval": min((r.pvalue for r in results), default=1),
    }

    return summary


def results_to_frame(results: Sequence[DiffResult]) -> pd.DataFrame:
    """Tabular view of DiffResults, one row per window."""
    return pd.DataFrame(
        {
            "chromosome": [r.chromosome for r in results],
            "window_start": [r.start for r in results],
            "window_end": [r.end for r in results],
            "pvalue": [r.pvalue for r in results],
            "qvalue": [r.qvalue for r in results],
            "meth_diff": [r.meth_diff for r in results],
            "direction": [r.direction.value for r in results],
        },
        columns=RESULT_COLUMNS,
    )


def export_results(
    res: Union[Sequence[DiffResult], pd.DataFrame],
    output_path: str,
    format: str = "csv",
    verbose: bool = True,
):
    """Export results to file."""
    if isinstance(res, pd.DataFrame):
        res_export = res
    else:
        res_export = results_to_frame(res)

    if format == "csv":
        res_export.to_csv(output_path, index=False)
    elif format == "excel":
        res_export.to_excel(output_path, index=False, engine="openpyxl")
    elif format == "tsv":
        res_export.to_csv(output_path, sep="\t", index=False)
    else:
        raise ValueError(f"Unsupported format: {format}")

    if verbose:
        print(f"✔ Results exported to {output_path}")
