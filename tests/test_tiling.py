#!/usr/bin/env python
# coding: utf-8

"""
Test suite for window tiling and uniting

Run with:
    pytest tests/test_tiling.py -v --cov=dmw_engine.core.tiling
"""

import numpy as np
import pytest

from dmw_engine.core.exceptions import ConfigError
from dmw_engine.core.records import Context, Group, SiteRecord, Strand, WindowKey
from dmw_engine.core.tiling import n_windows, tile_samples, tile_windows, unite_windows


def _site(pos, cov, meth, sample="S1", group=Group.CONTROL, chrom="chr1"):
    return SiteRecord(chrom, pos, Strand.PLUS, Context.CPG, cov, meth, sample, group)


@pytest.fixture
def dense_sites():
    """One sample with random coverage on two chromosomes."""
    np.random.seed(1500)
    sites = []
    for chrom in ("chr1", "chr2"):
        positions = np.sort(np.random.choice(np.arange(1, 5000), size=200, replace=False))
        for p in positions:
            cov = int(np.random.randint(1, 40))
            sites.append(_site(int(p), cov, int(np.random.randint(0, cov + 1)), chrom=chrom))
    return sites


# ============================================================================
# TILING
# ============================================================================


class TestWindowCount:
    """Test the number of windows per chromosome."""

    def test_single_window_when_max_inside_first(self):
        """Test maxPos=290, W=300, S=100 yields one window."""
        assert n_windows(290, 300, 100) == 1

    def test_non_overlapping(self):
        """Test S == W."""
        assert n_windows(250, 100, 100) == 3

    def test_at_least_one(self):
        """Test tiny chromosomes still get a window."""
        assert n_windows(1, 1000, 10) == 1

    @pytest.mark.parametrize("max_pos,w,s", [(999, 300, 100), (12345, 1000, 250), (77, 50, 100)])
    def test_last_window_reaches_max(self, max_pos, w, s):
        """Test the last window is the first one reaching past maxPos."""
        n = n_windows(max_pos, w, s)
        last_start = (n - 1) * s
        assert last_start + w > max_pos
        assert (n - 2) * s + w <= max_pos


class TestTiling:
    """Test per-sample window aggregation."""

    def test_step_equals_window(self):
        """Test each site lands in exactly one window when S == W."""
        sites = [_site(5, 10, 2), _site(150, 20, 5), _site(250, 4, 4)]
        windows = tile_windows(sites, 100, 100)

        assert [w.key.start for w in windows] == [0, 100, 200]
        assert [w.coverage for w in windows] == [10, 20, 4]
        assert [w.methylated for w in windows] == [2, 5, 4]

    def test_overlapping_windows(self):
        """Test a site away from the edges lands in ceil(W/S) windows."""
        sites = [_site(1000, 10, 3), _site(5000, 1, 0)]
        windows = tile_windows(sites, 300, 100)

        containing = [w for w in windows if w.key.start <= 1000 < w.key.end]
        assert [w.key.start for w in containing] == [800, 900, 1000]
        assert all(w.coverage == 10 and w.methylated == 3 for w in containing)

    def test_gaps_when_step_exceeds_window(self):
        """Test sites between windows are not counted when S > W."""
        sites = [_site(10, 5, 1), _site(70, 50, 50), _site(120, 8, 2)]
        windows = tile_windows(sites, 50, 100)

        assert [w.key for w in windows] == [WindowKey("chr1", 0, 50), WindowKey("chr1", 100, 150)]
        assert windows[0].coverage == 5
        assert windows[1].coverage == 8

    def test_half_open_boundaries(self):
        """Test a site at the window end belongs to the next window."""
        windows = tile_windows([_site(100, 7, 1), _site(150, 1, 1)], 100, 100)
        assert [w.key.start for w in windows] == [100]

    def test_zero_coverage_windows_dropped(self):
        """Test windows whose summed coverage is zero are not emitted."""
        sites = [_site(10, 0, 0), _site(110, 3, 1)]
        windows = tile_windows(sites, 100, 100)
        assert [w.key.start for w in windows] == [100]

    def test_min_sites(self):
        """Test windows with too few covered sites are dropped."""
        sites = [_site(10, 5, 1), _site(20, 5, 1), _site(110, 5, 1), _site(120, 0, 0)]
        windows = tile_windows(sites, 100, 100, min_sites=2)
        assert [w.key.start for w in windows] == [0]
        assert windows[0].n_sites == 2

    def test_sorted_by_chromosome_then_start(self, dense_sites):
        """Test output order."""
        windows = tile_windows(dense_sites, 500, 250)
        keys = [w.key for w in windows]
        assert keys == sorted(keys)
        assert {k.chromosome for k in keys} == {"chr1", "chr2"}

    def test_coverage_conserved_without_overlap(self, dense_sites):
        """Test total coverage is preserved when S == W."""
        windows = tile_windows(dense_sites, 400, 400)
        assert sum(w.coverage for w in windows) == sum(s.coverage for s in dense_sites)
        assert sum(w.methylated for w in windows) == sum(s.methylated for s in dense_sites)

    def test_matches_brute_force(self, dense_sites):
        """Test vectorized tiling against a direct per-window sum."""
        w_size, step = 300, 70
        windows = tile_windows(dense_sites, w_size, step)
        for w in windows[:50]:
            inside = [
                s for s in dense_sites
                if s.chromosome == w.key.chromosome and w.key.start <= s.position < w.key.end
            ]
            assert w.coverage == sum(s.coverage for s in inside)
            assert w.methylated == sum(s.methylated for s in inside)

    def test_sparse_sites_on_long_chromosome(self):
        """Test unit step over 250 Mb only materializes touched windows."""
        sites = [_site(10, 3, 1), _site(250_000_000, 5, 2)]
        windows = tile_windows(sites, 300, 1)

        assert len(windows) == 12
        assert [w.key.start for w in windows[:11]] == list(range(11))
        assert windows[-1].key == WindowKey("chr1", 249_999_701, 250_000_001)
        assert windows[-1].coverage == 5

    def test_sites_only_in_gaps(self):
        """Test sites that fall between windows produce nothing."""
        assert tile_windows([_site(70, 5, 1), _site(170, 5, 1)], 50, 100) == []

    def test_empty_input(self):
        """Test no sites gives no windows."""
        assert tile_windows([], 100, 100) == []

    def test_invalid_parameters(self):
        """Test window and step validation."""
        with pytest.raises(ConfigError, match="window_size"):
            tile_windows([_site(1, 1, 1)], 0, 100)
        with pytest.raises(ConfigError, match="step_size"):
            tile_windows([_site(1, 1, 1)], 100, 0)

    def test_tile_samples_parallel_matches_serial(self, dense_sites):
        """Test thread-pooled tiling gives the same windows."""
        other = [
            SiteRecord(s.chromosome, s.position, s.strand, s.context,
                       s.coverage, 0, "S2", Group.EXPERIMENTAL)
            for s in dense_sites
        ]
        by_sample = {"S1": dense_sites, "S2": other}

        serial = tile_samples(by_sample, 300, 100, workers=1)
        threaded = tile_samples(by_sample, 300, 100, workers=4)
        assert serial == threaded
        assert all(w.group == Group.EXPERIMENTAL for w in threaded["S2"])

    def test_tile_samples_empty_sample(self):
        """Test a sample without sites maps to no windows."""
        tiled = tile_samples({"S1": [_site(5, 1, 1)], "S2": []}, 100, 100)
        assert tiled["S2"] == []
        assert len(tiled["S1"]) == 1


# ============================================================================
# UNITING
# ============================================================================


class TestUnite:
    """Test cross-sample inner join."""

    def test_inner_join(self):
        """Test only windows present in every sample are kept."""
        tiled = {
            "C": tile_windows([_site(5, 10, 1, "C"), _site(150, 10, 1, "C")], 100, 100),
            "E": tile_windows(
                [_site(150, 10, 9, "E", Group.EXPERIMENTAL)], 100, 100
            ),
        }
        united, report = unite_windows(tiled)

        assert [u.key.start for u in united] == [100]
        assert set(united[0].aggregates) == {"C", "E"}
        assert report.missing_in_samples == 1

    def test_window_missing_in_experimental(self):
        """Test a window absent from the experimental sample is excluded."""
        tiled = {
            "C": tile_windows([_site(5, 10, 1, "C")], 100, 100),
            "E": tile_windows([_site(250, 10, 1, "E", Group.EXPERIMENTAL)], 100, 100),
        }
        united, report = unite_windows(tiled)
        assert united == []
        assert report.missing_in_samples == 2

    def test_united_not_larger_than_smallest(self, dense_sites):
        """Test |united| <= min per-sample window count and sorted output."""
        half = [
            SiteRecord(s.chromosome, s.position, s.strand, s.context,
                       s.coverage, s.methylated, "S2", Group.EXPERIMENTAL)
            for s in dense_sites[::2]
        ]
        tiled = tile_samples({"S1": dense_sites, "S2": half}, 200, 100)
        united, _ = unite_windows(tiled)

        assert len(united) <= min(len(w) for w in tiled.values())
        keys = [u.key for u in united]
        assert keys == sorted(keys)

    def test_group_counts(self):
        """Test per-group sums of a united window."""
        tiled = {
            "C1": tile_windows([_site(5, 10, 1, "C1")], 100, 100),
            "C2": tile_windows([_site(6, 20, 4, "C2")], 100, 100),
            "E1": tile_windows([_site(7, 10, 9, "E1", Group.EXPERIMENTAL)], 100, 100),
        }
        united, _ = unite_windows(tiled)
        assert united[0].group_counts(Group.CONTROL) == (5, 30)
        assert united[0].group_counts(Group.EXPERIMENTAL) == (9, 10)

    def test_explicit_sample_ids(self):
        """Test a required sample with no windows empties the join."""
        tiled = {"C": tile_windows([_site(5, 10, 1, "C")], 100, 100)}
        united, report = unite_windows(tiled, sample_ids=["C", "E"])
        assert united == []
        assert report.missing_in_samples == 1

    def test_no_samples(self):
        """Test empty input."""
        united, report = unite_windows({})
        assert united == []
        assert report.total == 0
