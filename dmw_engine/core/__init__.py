#!/usr/bin/env python
# coding: utf-8

"""
Differentially Methylated Windows

Toolkit for calling differentially methylated genomic windows between a
control and an experimental group from per-cytosine coverage tables.

Modules
-------
records : Site, window and result record types
config : Analysis parameters and JSON configuration
preprocess : Validation, filtering, normalization, replicate pooling
tiling : Window tiling and cross-sample uniting
engine : Per-window statistical tests, FDR correction, classification
pipeline : End-to-end run
io : methylKit file reader and result table writer
report : PDF run reports
"""

__version__ = "0.1.0"

# Records
from dmw_engine.core.records import (
    ClassifiedResults,
    Context,
    DiffResult,
    Direction,
    ExclusionReport,
    Group,
    SiteRecord,
    Strand,
    UnitedWindow,
    WindowAggregate,
    WindowKey,
)

# Errors
from dmw_engine.core.exceptions import (
    ConfigError,
    DMWEngineError,
    InputError,
    InsufficientDataError,
)

# Configuration
from dmw_engine.core.config import (
    AnalysisConfig,
    export_default_config,
    get_config,
    load_config,
    reset_config,
)

# Preprocessing
from dmw_engine.core.preprocess import (
    filter_by_context,
    filter_by_coverage,
    normalize_coverage,
    pool_replicates,
    validate_sites,
)

# Tiling
from dmw_engine.core.tiling import (
    n_windows,
    tile_samples,
    tile_windows,
    unite_windows,
)

# Differential Analysis
from dmw_engine.core.engine import (
    adjust_pvalues,
    calculate_diff_meth,
    classify_results,
    export_results,
    fisher_test,
    get_methyl_diff,
    logistic_lrt,
    results_to_frame,
    select_test,
    summarize_diff_results,
)

# Pipeline and I/O
from dmw_engine.core.pipeline import AnalysisResult, run_analysis
from dmw_engine.core.io import (
    load_samples,
    read_methylkit_file,
    result_basename,
    sites_from_frame,
    write_results,
)
from dmw_engine.core.report import PDFLogger, write_analysis_report

__all__ = [
    # Version
    "__version__",
    # Records
    "SiteRecord",
    "WindowKey",
    "WindowAggregate",
    "UnitedWindow",
    "DiffResult",
    "ExclusionReport",
    "ClassifiedResults",
    "Context",
    "Strand",
    "Group",
    "Direction",
    # Errors
    "DMWEngineError",
    "InputError",
    "InsufficientDataError",
    "ConfigError",
    # Config
    "AnalysisConfig",
    "get_config",
    "load_config",
    "reset_config",
    "export_default_config",
    # Preprocessing
    "validate_sites",
    "filter_by_context",
    "filter_by_coverage",
    "normalize_coverage",
    "pool_replicates",
    # Tiling
    "n_windows",
    "tile_windows",
    "tile_samples",
    "unite_windows",
    # Engine
    "select_test",
    "fisher_test",
    "logistic_lrt",
    "adjust_pvalues",
    "calculate_diff_meth",
    "get_methyl_diff",
    "classify_results",
    "summarize_diff_results",
    "results_to_frame",
    "export_results",
    # Pipeline
    "AnalysisResult",
    "run_analysis",
    # I/O
    "sites_from_frame",
    "read_methylkit_file",
    "load_samples",
    "result_basename",
    "write_results",
    # Reporting
    "PDFLogger",
    "write_analysis_report",
]
