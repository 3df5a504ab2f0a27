#!/usr/bin/env python
# coding: utf-8

"""
Reading MethylDackel methylKit coverage files and writing DMW tables.
"""

import os
from pathlib import Path
from typing import Dict, List, Sequence, Union

import numpy as np
import pandas as pd

from dmw_engine.core.engine import results_to_frame
from dmw_engine.core.exceptions import InputError
from dmw_engine.core.records import Context, Group, SiteRecord, Strand

METHYLKIT_COLUMNS = ["chrBase", "chr", "base", "strand", "coverage", "freqC", "freqT"]
SITE_COLUMNS = [
    "chromosome", "position", "strand", "context",
    "coverage", "methylated", "sample_id", "group",
]


# ============================================================================
# INPUT
# ============================================================================


def sites_from_frame(df: pd.DataFrame) -> List[SiteRecord]:
    """Build SiteRecords from a DataFrame with ``SITE_COLUMNS``."""
    missing = [c for c in SITE_COLUMNS if c not in df.columns]
    if missing:
        raise InputError(f"Site table is missing columns: {missing}")

    try:
        return [
            SiteRecord(
                chromosome=str(row.chromosome),
                position=int(row.position),
                strand=Strand.from_label(row.strand),
                context=Context.from_label(row.context),
                coverage=int(row.coverage),
                methylated=int(row.methylated),
                sample_id=str(row.sample_id),
                group=Group.from_label(row.group),
            )
            for row in df[SITE_COLUMNS].itertuples(index=False)
        ]
    except ValueError as e:
        raise InputError(f"Invalid site record: {e}")


def read_methylkit_file(
    path: Union[str, Path],
    sample_id: str,
    group: Union[Group, str],
    context: Union[Context, str] = Context.CPG,
) -> List[SiteRecord]:
    """
    Read one MethylDackel ``*.methylKit`` file.

    The file is tab-separated with a header
    ``chrBase chr base strand coverage freqC freqT``; strand is F/R and
    freqC is the methylated percentage. The cytosine context is not stored
    in the file and must be given.

    Returns
    -------
    List[SiteRecord]
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Coverage file not found: {path}")

    try:
        df = pd.read_csv(path, sep="\t")
    except (pd.errors.EmptyDataError, pd.errors.ParserError) as e:
        raise InputError(f"{path} could not be parsed as a methylKit file: {e}")

    missing = [c for c in ("chr", "base", "strand", "coverage", "freqC") if c not in df.columns]
    if missing:
        raise InputError(f"{path} is not a methylKit file; missing columns {missing}")

    numeric = df[["base", "coverage", "freqC"]].apply(pd.to_numeric, errors="coerce")
    bad = numeric.isna().any(axis=1)
    if bad.any():
        first = int(np.flatnonzero(bad.to_numpy())[0])
        raise InputError(
            f"{path}: {int(bad.sum())} row(s) with blank or non-numeric "
            f"base/coverage/freqC; first at data row {first + 1}",
            n_invalid=int(bad.sum()),
        )

    df = df.assign(
        chromosome=df["chr"].astype(str),
        position=numeric["base"].astype(np.int64),
        coverage=numeric["coverage"].astype(np.int64),
        methylated=np.round(numeric["coverage"] * numeric["freqC"] / 100.0).astype(np.int64),
        context=Context.from_label(context).value,
        sample_id=sample_id,
        group=Group.from_label(group).value,
    )
    return sites_from_frame(df)


def load_samples(
    control_files: Sequence[Union[str, Path]],
    experimental_files: Sequence[Union[str, Path]],
    control_id: str = "control",
    experimental_id: str = "experimental",
    context: Union[Context, str] = Context.CPG,
) -> List[SiteRecord]:
    """
    Read the files of both groups.

    Replicates are named ``<group id>_<n>`` when a group has more than one
    file, otherwise the group id itself.
    """
    sites: List[SiteRecord] = []
    for files, group_id, group in (
        (control_files, control_id, Group.CONTROL),
        (experimental_files, experimental_id, Group.EXPERIMENTAL),
    ):
        for i, path in enumerate(files, start=1):
            sample_id = group_id if len(files) == 1 else f"{group_id}_{i}"
            sites.extend(read_methylkit_file(path, sample_id, group, context))
    return sites


# ============================================================================
# OUTPUT
# ============================================================================


def _fmt(value) -> str:
    return f"{value:g}" if isinstance(value, float) else str(value)


def result_basename(
    experimental_id: str,
    control_id: str,
    context: str,
    window_size: int,
    step_size: int,
    min_diff: float,
    q_value: float,
) -> str:
    """File stem shared by the all/hyper/hypo tables of one comparison."""
    return (
        f"{experimental_id}_{control_id}_{context}_norm_window_"
        f"{window_size}_{step_size}_d{_fmt(min_diff)}_q{_fmt(q_value)}"
    )


def write_results(
    result,
    output_dir: Union[str, Path] = "methylkit_analyze",
    context_label: str = None,
) -> Dict[str, Path]:
    """
    Write the all / hyper / hypo tables of an ``AnalysisResult`` as CSV.

    All three tables are written to temporary files first and moved into
    place together.

    Returns
    -------
    Dict[str, Path]
        Output path per view
    """
    config = result.config
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    stem = result_basename(
        config.experimental_id,
        config.control_id,
        context_label or config.context,
        config.window_size,
        config.step_size,
        config.min_diff,
        config.q_value,
    )
    views = {
        "all": result.classified.all,
        "hyper": result.classified.hyper,
        "hypo": result.classified.hypo,
    }

    paths = {
        name: output_dir / (f"{stem}.csv" if name == "all" else f"{stem}_{name}.csv")
        for name in views
    }
    staged = {}
    for name, subset in views.items():
        tmp_path = paths[name].with_suffix(".csv.tmp")
        results_to_frame(subset).to_csv(tmp_path, index=False)
        staged[name] = tmp_path

    for name, tmp_path in staged.items():
        os.replace(tmp_path, paths[name])

    return paths
