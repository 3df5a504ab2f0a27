#!/usr/bin/env python
# coding: utf-8

"""
Tests for methylKit file reading, result writing and the command line

Run with:
    pytest tests/test_io_cli.py -v --cov=dmw_engine.core.io --cov=dmw_engine.cli
"""

import pandas as pd
import pytest

from dmw_engine.cli import build_config, get_args, main
from dmw_engine.core.config import AnalysisConfig
from dmw_engine.core.engine import RESULT_COLUMNS
from dmw_engine.core.exceptions import InputError
from dmw_engine.core.io import (
    load_samples,
    read_methylkit_file,
    result_basename,
    sites_from_frame,
    write_results,
)
from dmw_engine.core.pipeline import run_analysis
from dmw_engine.core.records import Context, Group, Strand

HEADER = "chrBase\tchr\tbase\tstrand\tcoverage\tfreqC\tfreqT\n"


def _write_methylkit(path, freq_c, coverage=10, positions=range(10, 300, 10), chrom="chr1"):
    lines = [HEADER]
    for p in positions:
        strand = "F" if p % 20 else "R"
        lines.append(
            f"{chrom}.{p}\t{chrom}\t{p}\t{strand}\t{coverage}\t{freq_c:.2f}\t{100 - freq_c:.2f}\n"
        )
    path.write_text("".join(lines))
    return path


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def methylkit_pair(tmp_path):
    """Control at 20% and experimental at 80% methylation."""
    control = _write_methylkit(tmp_path / "wt.methylKit", 20.0)
    experimental = _write_methylkit(tmp_path / "ko.methylKit", 80.0)
    return control, experimental


# ============================================================================
# INPUT
# ============================================================================


class TestReader:
    """Test methylKit parsing."""

    def test_read_methylkit_file(self, methylkit_pair):
        control, _ = methylkit_pair
        sites = read_methylkit_file(control, "WT", "control", context="CG")

        assert len(sites) == 29
        first = sites[0]
        assert first.chromosome == "chr1"
        assert first.position == 10
        assert first.strand == Strand.PLUS
        assert first.context == Context.CPG
        assert (first.coverage, first.methylated) == (10, 2)
        assert first.group == Group.CONTROL
        assert sites[1].strand == Strand.MINUS

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_methylkit_file(tmp_path / "absent.methylKit", "WT", "control")

    def test_not_a_methylkit_file(self, tmp_path):
        path = tmp_path / "bad.methylKit"
        path.write_text("chr\tpos\nchr1\t5\n")
        with pytest.raises(InputError, match="missing columns"):
            read_methylkit_file(path, "WT", "control")

    def test_blank_freqc(self, tmp_path):
        """Test a row with an empty freqC field is rejected."""
        path = tmp_path / "blank.methylKit"
        path.write_text(HEADER + "chr1.10\tchr1\t10\tF\t10\t\t80.00\n")
        with pytest.raises(InputError, match="non-numeric") as exc_info:
            read_methylkit_file(path, "WT", "control")
        assert exc_info.value.n_invalid == 1

    def test_non_numeric_coverage(self, tmp_path):
        """Test a text coverage value is rejected."""
        path = tmp_path / "text.methylKit"
        path.write_text(
            HEADER
            + "chr1.10\tchr1\t10\tF\t10\t20.00\t80.00\n"
            + "chr1.20\tchr1\t20\tF\tten\t20.00\t80.00\n"
        )
        with pytest.raises(InputError, match="data row 2"):
            read_methylkit_file(path, "WT", "control")

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.methylKit"
        path.write_text("")
        with pytest.raises(InputError, match="could not be parsed"):
            read_methylkit_file(path, "WT", "control")

    def test_load_samples_naming(self, tmp_path, methylkit_pair):
        control, experimental = methylkit_pair
        second = _write_methylkit(tmp_path / "wt2.methylKit", 25.0)

        sites = load_samples([control, second], [experimental], "WT", "KO")
        assert {s.sample_id for s in sites} == {"WT_1", "WT_2", "KO"}
        assert {s.group for s in sites if s.sample_id == "KO"} == {Group.EXPERIMENTAL}

    def test_sites_from_frame(self):
        df = pd.DataFrame({
            "chromosome": ["chr2"],
            "position": [42],
            "strand": ["-"],
            "context": ["CHH"],
            "coverage": [7],
            "methylated": [3],
            "sample_id": ["S1"],
            "group": ["treatment"],
        })
        (site,) = sites_from_frame(df)
        assert site.context == Context.CHH
        assert site.group == Group.EXPERIMENTAL
        assert site.unmethylated == 4

    def test_sites_from_frame_errors(self):
        with pytest.raises(InputError, match="missing columns"):
            sites_from_frame(pd.DataFrame({"chromosome": ["chr1"]}))

        df = pd.DataFrame({
            "chromosome": ["chr1"], "position": [1], "strand": ["?"], "context": ["CpG"],
            "coverage": [1], "methylated": [0], "sample_id": ["S1"], "group": ["control"],
        })
        with pytest.raises(InputError, match="Unknown strand"):
            sites_from_frame(df)


# ============================================================================
# OUTPUT
# ============================================================================


class TestWriter:
    """Test result table naming and writing."""

    def test_result_basename(self):
        name = result_basename("KO", "WT", "CG", 300, 100, 25.0, 0.05)
        assert name == "KO_WT_CG_norm_window_300_100_d25_q0.05"

    def test_write_results(self, methylkit_pair, tmp_path):
        control, experimental = methylkit_pair
        config = AnalysisConfig(control_id="WT", experimental_id="KO")
        sites = load_samples([control], [experimental], "WT", "KO")
        result = run_analysis(sites, config)

        paths = write_results(result, tmp_path / "out", context_label="CG")

        stem = "KO_WT_CG_norm_window_300_100_d25_q0.05"
        assert paths["all"].name == f"{stem}.csv"
        assert paths["hyper"].name == f"{stem}_hyper.csv"
        assert paths["hypo"].name == f"{stem}_hypo.csv"

        hyper = pd.read_csv(paths["hyper"])
        assert list(hyper.columns) == RESULT_COLUMNS
        assert len(hyper) == 1
        assert pd.read_csv(paths["hypo"]).empty
        assert not list((tmp_path / "out").glob("*.tmp"))


# ============================================================================
# COMMAND LINE
# ============================================================================


class TestCommandLine:
    """Test argument handling and the entry point."""

    def test_build_config_only_given_options(self, tmp_path):
        conf_file = tmp_path / "conf.json"
        conf_file.write_text('{"window_size": 1000, "step_size": 500}')

        args = get_args([
            "--control", "a", "--experimental", "b",
            "--config", str(conf_file), "--step_size", "250", "--pool",
        ])
        config = build_config(args)

        assert config.window_size == 1000
        assert config.step_size == 250
        assert config.pool is True

    def test_build_config_missing_file(self, tmp_path):
        args = get_args(["--control", "a", "--experimental", "b",
                         "--config", str(tmp_path / "absent.json")])
        with pytest.raises(FileNotFoundError):
            build_config(args)

    def test_main(self, methylkit_pair, tmp_path, capsys):
        control, experimental = methylkit_pair
        out_dir = tmp_path / "results"
        report = tmp_path / "report.pdf"

        code = main([
            "--control", str(control),
            "--experimental", str(experimental),
            "--control_id", "WT",
            "--experimental_id", "KO",
            "--context", "CG",
            "--output_dir", str(out_dir),
            "--report", str(report),
        ])

        assert code == 0
        out = capsys.readouterr().out
        assert "CG DMWs:1" in out
        assert "CG Hyper-DMWs:1" in out
        assert "CG Hypo-DMWs:0" in out
        assert "0 windows excluded" in out
        assert (out_dir / "KO_WT_CG_norm_window_300_100_d25_q0.05.csv").exists()
        assert report.exists()

    def test_main_missing_input(self, tmp_path, capsys):
        code = main([
            "--control", str(tmp_path / "absent.methylKit"),
            "--experimental", str(tmp_path / "absent2.methylKit"),
        ])
        assert code == 1
        assert "Error:" in capsys.readouterr().err

    def test_main_malformed_file(self, methylkit_pair, tmp_path, capsys):
        """Test a malformed coverage file exits with status 1."""
        _, experimental = methylkit_pair
        broken = tmp_path / "broken.methylKit"
        broken.write_text(HEADER + "chr1.10\tchr1\t10\tF\t10\t\t80.00\n")

        code = main([
            "--control", str(broken),
            "--experimental", str(experimental),
            "--output_dir", str(tmp_path / "out"),
        ])
        assert code == 1
        assert "non-numeric" in capsys.readouterr().err

    def test_main_invalid_config_type(self, methylkit_pair, tmp_path, capsys):
        """Test a text threshold in the JSON config exits with status 1."""
        control, experimental = methylkit_pair
        conf_file = tmp_path / "conf.json"
        conf_file.write_text('{"q_value": "0.05"}')

        code = main([
            "--control", str(control),
            "--experimental", str(experimental),
            "--config", str(conf_file),
            "--output_dir", str(tmp_path / "out"),
        ])
        assert code == 1
        assert "q_value" in capsys.readouterr().err

    def test_main_invalid_option(self, methylkit_pair, tmp_path, capsys):
        control, experimental = methylkit_pair
        code = main([
            "--control", str(control),
            "--experimental", str(experimental),
            "--step_size", "0",
            "--output_dir", str(tmp_path),
        ])
        assert code == 1
        assert "step_size" in capsys.readouterr().err
