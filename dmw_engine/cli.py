#!/usr/bin/env python
# coding: utf-8

"""
Command-line entry point: call differentially methylated windows from
MethylDackel methylKit files and write all / hyper / hypo CSV tables.

Usage:
    dmw-analyze --control c1.methylKit,c2.methylKit \\
        --experimental e1.methylKit,e2.methylKit \\
        --control_id WT --experimental_id KO --context CG
"""

import argparse
import os
import sys

from dmw_engine.core.config import AnalysisConfig
from dmw_engine.core.exceptions import DMWEngineError
from dmw_engine.core.io import load_samples, write_results
from dmw_engine.core.pipeline import run_analysis
from dmw_engine.core.report import write_analysis_report


def get_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Determine differentially methylated windows between two groups."
    )
    parser.add_argument("--control", required=True,
                        help="Control sample files, comma separated")
    parser.add_argument("--experimental", required=True,
                        help="Experimental sample files, comma separated")
    parser.add_argument("--control_id", default=None,
                        help="Sample ID for the control sample")
    parser.add_argument("--experimental_id", default=None,
                        help="Sample ID for the experimental sample")
    parser.add_argument("--context", default=None,
                        help="The cytosine context for the comparison to be done")
    parser.add_argument("--min_cov", type=int, default=None,
                        help="Minimum number of reads to filter sites by")
    parser.add_argument("--window_size", type=int, default=None,
                        help="Size of the window to use for DMR calling")
    parser.add_argument("--step_size", type=int, default=None,
                        help="How far the windows should tile during DMR calling")
    parser.add_argument("--threads", type=int, default=None,
                        help="Number of threads to use for DMR calling")
    parser.add_argument("--q_val", type=float, default=None,
                        help="FDR-corrected p-value (q-value) for DMR calls")
    parser.add_argument("--diff_meth", type=float, default=None,
                        help="Difference in methylation (%%) for DMR calls")
    parser.add_argument("--pool", action="store_true",
                        help="Combine replicates")
    parser.add_argument("--output_dir", default="methylkit_analyze",
                        help="Directory for the result tables")
    parser.add_argument("--config", default=None,
                        help="JSON file with further analysis parameters")
    parser.add_argument("--report", default=None,
                        help="Write a PDF run report to this path")
    parser.add_argument("--verbose", action="store_true",
                        help="Print progress messages")
    return parser.parse_args(argv)


# maps command-line option -> configuration key
OPTION_KEYS = {
    "context": "context",
    "min_cov": "min_coverage",
    "window_size": "window_size",
    "step_size": "step_size",
    "threads": "workers",
    "q_val": "q_value",
    "diff_meth": "min_diff",
    "control_id": "control_id",
    "experimental_id": "experimental_id",
}


def build_config(args: argparse.Namespace) -> AnalysisConfig:
    """Defaults, then the JSON file, then options given on the command line."""
    overrides = {
        key: getattr(args, option)
        for option, key in OPTION_KEYS.items()
        if getattr(args, option) is not None
    }
    if args.pool:
        overrides["pool"] = True
    if args.config and not os.path.exists(args.config):
        raise FileNotFoundError(f"Config file not found: {args.config}")
    return AnalysisConfig(config_file=args.config, **overrides)


def main(argv=None) -> int:
    args = get_args(argv)

    try:
        config = build_config(args)
        sites = load_samples(
            args.control.split(","),
            args.experimental.split(","),
            control_id=config.control_id,
            experimental_id=config.experimental_id,
            context=config.context,
        )
        result = run_analysis(sites, config=config, verbose=args.verbose)
    except (DMWEngineError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    label = args.context or config.context
    print(f"{label} DMWs:{len(result.classified.all)}")
    print(f"{label} Hyper-DMWs:{len(result.classified.hyper)}")
    print(f"{label} Hypo-DMWs:{len(result.classified.hypo)}")
    print(result.exclusions.summary())

    write_results(result, args.output_dir, context_label=label)

    if args.report:
        write_analysis_report(result, args.report, echo=args.verbose)

    return 0


if __name__ == "__main__":
    sys.exit(main())
