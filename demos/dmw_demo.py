#!/usr/bin/env python
# coding: utf-8

"""
Differentially Methylated Windows Demo
Simulated replicates with planted hyper- and hypomethylated regions
"""

import os
import time
from datetime import datetime

import numpy as np

from dmw_engine.core.config import AnalysisConfig
from dmw_engine.core.engine import export_results, results_to_frame
from dmw_engine.core.io import result_basename, write_results
from dmw_engine.core.pipeline import run_analysis
from dmw_engine.core.records import Context, Group, SiteRecord, Strand
from dmw_engine.core.report import PDFLogger

# ============================================================================
# CONFIGURATION
# ============================================================================

CONFIG = {
    "random_seed": 1500,
    "n_chromosomes": 3,
    "chrom_length": 2_000_000,
    "cpg_per_kb": 10,
    "n_control": 3,
    "n_experimental": 3,
    "mean_coverage": 15,
    "base_methylation": 0.7,
    "n_dmr": 40,  # planted regions per chromosome
    "dmr_length": 2000,
    "effect": 0.35,
}

ANALYSIS = {
    "window_size": 1000,
    "step_size": 500,
    "min_coverage": 5,
    "hi_perc": 99.9,
    "min_diff": 25.0,
    "q_value": 0.01,
    "workers": 4,
    "control_id": "WT",
    "experimental_id": "KO",
}

# Configure logger
timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
report_path = f"log/{timestamp}"
os.makedirs(report_path, exist_ok=True)
pdf = PDFLogger(f"{report_path}/report.pdf", echo=True)

pdf.log_text("# Differentially Methylated Windows Demo")
pdf.log_text(f"**Generated**: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

pdf.log_text("\n## Simulation Parameters")
pdf.log_mapping(CONFIG)

# ============================================================================
# SECTION 1: DATA SIMULATION
# ============================================================================

print("=" * 70)
pdf.log_text("\n## 1. Data Simulation")
print("=" * 70)

start_time = time.time()
np.random.seed(CONFIG["random_seed"])

samples = [(f"WT_{i + 1}", Group.CONTROL) for i in range(CONFIG["n_control"])] + [
    (f"KO_{i + 1}", Group.EXPERIMENTAL) for i in range(CONFIG["n_experimental"])
]

sites = []
planted = {}
for c in range(CONFIG["n_chromosomes"]):
    chrom = f"chr{c + 1}"
    n_cpg = CONFIG["chrom_length"] // 1000 * CONFIG["cpg_per_kb"]
    positions = np.sort(
        np.random.choice(np.arange(1, CONFIG["chrom_length"]), n_cpg, replace=False)
    )

    # half of the planted regions gain methylation, half lose it
    starts = np.random.choice(
        np.arange(0, CONFIG["chrom_length"] - CONFIG["dmr_length"], CONFIG["dmr_length"]),
        CONFIG["n_dmr"],
        replace=False,
    )
    shift = np.zeros(len(positions))
    for i, s in enumerate(starts):
        inside = (positions >= s) & (positions < s + CONFIG["dmr_length"])
        shift[inside] = CONFIG["effect"] if i % 2 == 0 else -CONFIG["effect"]
    planted[chrom] = starts

    for sample_id, group in samples:
        rate = np.full(len(positions), CONFIG["base_methylation"])
        if group == Group.EXPERIMENTAL:
            rate = np.clip(rate + shift, 0.02, 0.98)
        coverage = np.random.poisson(CONFIG["mean_coverage"], len(positions))
        methylated = np.random.binomial(coverage, rate)
        sites.extend(
            SiteRecord(chrom, int(p), Strand.PLUS, Context.CPG, int(cv), int(m), sample_id, group)
            for p, cv, m in zip(positions, coverage, methylated)
        )

pdf.log_text("\n### Simulated Data")
pdf.log_text(f"- **Samples**: {len(samples)} ({CONFIG['n_control']} WT, {CONFIG['n_experimental']} KO)")
pdf.log_text(f"- **Site records**: {len(sites):,}")
pdf.log_text(f"- **Planted regions**: {CONFIG['n_dmr'] * CONFIG['n_chromosomes']}")

elapsed = time.time() - start_time
pdf.log_text(f"\n✔ Completed in {elapsed:.2f} seconds")

# ============================================================================
# SECTION 2: WINDOW CALLING
# ============================================================================

print("\n" + "=" * 70)
pdf.log_text("\n## 2. Window Calling (Replicates)")
print("=" * 70)

config = AnalysisConfig(**ANALYSIS)
pdf.log_mapping(config.to_dict(), title="Analysis Configuration")

start_time_2 = time.time()
result = run_analysis(sites, config, verbose=True)
elapsed_2 = time.time() - start_time_2

pdf.log_text(f"**Test**: `{result.method}`")
pdf.log_mapping(result.stage_counts, title="Pipeline")
pdf.log_text(result.exclusions.summary())

summary = result.summary()
pdf.log_mapping(summary, title="Summary")

# windows overlapping a planted region
truth = set()
for chrom, starts in planted.items():
    for s in starts:
        truth.add((chrom, s))


def _overlaps_planted(r):
    return any(
        r.chromosome == chrom and r.start < s + CONFIG["dmr_length"] and s < r.end
        for chrom, s in truth
    )


called = result.classified.all
true_calls = sum(_overlaps_planted(r) for r in called)
precision = true_calls / len(called) * 100 if called else 0.0

pdf.log_text("\n### Accuracy")
pdf.log_text(f"- **Called windows**: {len(called):,}")
pdf.log_text(f"- **Overlapping a planted region**: {true_calls:,} ({precision:.1f}%)")
pdf.log_text(f"\n✔ Completed in {elapsed_2:.2f} seconds")

if result.classified.hyper:
    top = results_to_frame(result.classified.hyper).sort_values("qvalue")
    pdf.log_dataframe(top, title="Top Hypermethylated Windows", max_rows=10)
if result.classified.hypo:
    top = results_to_frame(result.classified.hypo).sort_values("qvalue")
    pdf.log_dataframe(top, title="Top Hypomethylated Windows", max_rows=10)

# ============================================================================
# SECTION 3: POOLED REPLICATES
# ============================================================================

print("\n" + "=" * 70)
pdf.log_text("\n## 3. Window Calling (Pooled)")
print("=" * 70)

pooled = run_analysis(sites, AnalysisConfig(pool=True, **ANALYSIS))
pdf.log_text(f"**Test**: `{pooled.method}`")
pdf.log_mapping(pooled.classified.counts(), title="Pooled DMWs")

shared = {r.key for r in pooled.classified.all} & {r.key for r in called}
pdf.log_text(f"- **Shared with replicate calls**: {len(shared):,}")

# ============================================================================
# SECTION 4: EXPORT
# ============================================================================

print("\n" + "=" * 70)
pdf.log_text("\n## 4. Export")
print("=" * 70)

paths = write_results(result, f"{report_path}/tables")
for view, path in paths.items():
    pdf.log_text(f"- **{view}**: `{path}`")

stem = result_basename(
    config.experimental_id, config.control_id, config.context,
    config.window_size, config.step_size, config.min_diff, config.q_value,
)
export_results(result.results, f"{report_path}/{stem}_tested.tsv", format="tsv")

total_time = time.time() - start_time

print("\n" + "=" * 70)
print("ANALYSIS COMPLETE!")
print("=" * 70)
print(f"Total runtime: {total_time:.1f}s ({total_time/60:.1f} minutes)")
print(f"Results saved to: {report_path}/")

pdf.save()
