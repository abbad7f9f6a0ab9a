"""
Tests for Credible-Set Calculation

Tests cover:
- Per-locus posterior probabilities and credible sets
- Invalid variant handling (lead variant excluded, all invalid)
- Empty windows ("no data for locus")
- Concurrent execution and per-locus timeouts
"""

import time

import pytest
import numpy as np
import pandas as pd

from gwas_finemap.finemapping.credible_sets import (
    CREDIBLE_SET_COLUMNS,
    CredibleSetCalculator,
    LocusDataError,
    combine_results,
    run_finemapping,
)
from gwas_finemap.finemapping.locus import Locus
from gwas_finemap.utils.config import FinemapConfig


def make_locus(locus_id="chr1_1000", lead_variant="v0", chrom="1", lead_pos=1000, radius=500):
    return Locus(
        locus_id=locus_id,
        chr=chrom,
        lead_variant=lead_variant,
        lead_pos=lead_pos,
        lead_pval=1e-12,
        start=lead_pos - radius,
        end=lead_pos + radius,
    )


def make_window(z, se=0.02, chrom="1", start_pos=600, locus_id="chr1_1000", eaf=0.3, n_eff=50000.0):
    z = np.asarray(z, dtype=float)
    n = z.size
    se = np.broadcast_to(np.asarray(se, dtype=float), (n,)).copy()
    return pd.DataFrame({
        "locus_id": locus_id,
        "chr": chrom,
        "pos": pd.array(start_pos + 10 * np.arange(n), dtype="Int64"),
        "variant_id": [f"v{i}" for i in range(n)],
        "effect_allele": "T",
        "other_allele": "C",
        "beta": z * se,
        "se": se,
        "pval": 0.01,
        "eaf": eaf,
        "n_eff": n_eff,
    })


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def calculator():
    return CredibleSetCalculator(prior_variance=0.04, coverage=0.95)


@pytest.fixture
def locus():
    return make_locus()


class TestFinemapLocus:
    """Tests for a single locus."""

    def test_posteriors_sum_to_one(self, calculator, locus):
        window = make_window([9.0, 8.5, 3.0, 1.0, 0.5, -2.0])

        result = calculator.finemap_locus(locus, window)

        assert result.table["pip"].sum() == pytest.approx(1.0, abs=1e-6)
        assert result.n_variants == 6
        assert list(result.table.columns) == CREDIBLE_SET_COLUMNS
        assert (result.table["locus_id"] == locus.locus_id).all()

    def test_table_ordered_by_rank(self, calculator, locus):
        window = make_window([1.0, 9.0, 3.0, 8.0])

        table = calculator.finemap_locus(locus, window).table

        assert list(table["rank"]) == [1, 2, 3, 4]
        assert list(table["variant_id"]) == ["v1", "v3", "v2", "v0"]
        assert table["pip"].is_monotonic_decreasing
        assert table["cumulative_pip"].is_monotonic_increasing
        np.testing.assert_allclose(table["cumulative_pip"], table["pip"].cumsum())

    def test_credible_set_is_minimal_prefix(self, calculator, locus):
        window = make_window([7.0, 6.8, 6.5, 6.0, 2.0, 1.0, 0.0])

        result = calculator.finemap_locus(locus, window)
        members = result.table[result.table["in_credible_set"]]

        assert len(members) == result.credible_set_size
        assert list(members["rank"]) == list(range(1, result.credible_set_size + 1))
        assert members["pip"].sum() >= 0.95
        assert members["pip"].iloc[:-1].sum() < 0.95
        assert result.coverage == pytest.approx(members["pip"].sum())

    def test_strong_signal_singleton(self, calculator, locus):
        window = make_window([15.0, 3.0, 2.0, 1.0])

        result = calculator.finemap_locus(locus, window)

        assert result.credible_set_size == 1
        assert result.top_variant == "v0"
        assert result.max_pip > 0.95

    def test_equal_signals_need_whole_window(self, calculator, locus):
        window = make_window([6.0] * 10)

        result = calculator.finemap_locus(locus, window)

        np.testing.assert_allclose(result.table["pip"], 0.1)
        assert result.credible_set_size == 10

    def test_extreme_z_scores(self, calculator, locus):
        window = make_window([400.0, 350.0, 10.0], se=0.001)

        result = calculator.finemap_locus(locus, window)

        assert np.isfinite(result.table["log_abf"]).all()
        assert result.table["pip"].sum() == pytest.approx(1.0, abs=1e-6)
        assert result.credible_set_size == 1
        assert np.isfinite(result.log10_bf)

    def test_input_not_modified(self, calculator, locus):
        window = make_window([5.0, 2.0])
        before = window.copy()

        calculator.finemap_locus(locus, window)

        pd.testing.assert_frame_equal(window, before)


class TestInvalidData:
    """Tests for per-variant and per-locus failures."""

    def test_empty_window_is_no_data(self, calculator, locus):
        with pytest.raises(LocusDataError) as exc:
            calculator.finemap_locus(locus, make_window([]))

        assert exc.value.reason == "no_data"
        assert exc.value.locus_id == locus.locus_id

    def test_missing_window_is_no_data(self, calculator, locus):
        with pytest.raises(LocusDataError) as exc:
            calculator.finemap_locus(locus, None)

        assert exc.value.reason == "no_data"

    def test_lead_with_zero_se_excluded(self, calculator, locus):
        window = make_window([9.0, 4.0, 2.0])
        window.loc[0, "se"] = 0.0

        result = calculator.finemap_locus(locus, window)

        assert result.lead_dropped
        assert result.dropped == {"nonpositive_se": 1}
        assert result.n_variants == 2
        assert "v0" not in set(result.table["variant_id"])
        assert result.table["pip"].sum() == pytest.approx(1.0, abs=1e-6)

    def test_nonfinite_beta_excluded(self, calculator, locus):
        window = make_window([9.0, 4.0, 2.0])
        window.loc[1, "beta"] = np.inf

        result = calculator.finemap_locus(locus, window)

        assert result.dropped == {"nonfinite_beta": 1}
        assert not result.lead_dropped

    def test_all_invalid_aborts_locus(self, calculator, locus):
        window = make_window([9.0, 4.0])
        window["se"] = 0.0

        with pytest.raises(LocusDataError) as exc:
            calculator.finemap_locus(locus, window)

        assert exc.value.reason == "no_valid_variants"
        assert exc.value.n_dropped == 2

    def test_neff_variance_requires_frequency(self, locus):
        calculator = CredibleSetCalculator(variance_source="neff")
        window = make_window([9.0, 4.0, 2.0])
        window.loc[2, "eaf"] = np.nan

        result = calculator.finemap_locus(locus, window)

        assert result.dropped == {"missing_sample_size": 1}
        assert result.n_variants == 2
        expected_z = window.loc[0, "beta"] * np.sqrt(2 * 50000.0 * 0.3 * 0.7)
        assert result.table.set_index("variant_id").loc["v0", "z"] == pytest.approx(expected_z)

    def test_invalid_parameters(self):
        with pytest.raises(ValueError):
            CredibleSetCalculator(coverage=0.0)
        with pytest.raises(ValueError):
            CredibleSetCalculator(variance_source="ld")
        with pytest.raises(ValueError):
            CredibleSetCalculator(n_workers=0)
        with pytest.raises(ValueError):
            CredibleSetCalculator(executor="gpu")


class TestFinemapAllLoci:
    """Tests for running many loci."""

    @pytest.fixture
    def loci_and_windows(self):
        loci = [
            make_locus("chr1_1000", lead_pos=1000),
            make_locus("chr2_5000", chrom="2", lead_pos=5000),
            make_locus("chr3_800", chrom="3", lead_pos=800),
        ]
        windows = {
            "chr1_1000": make_window([9.0, 3.0, 1.0], locus_id="chr1_1000"),
            "chr2_5000": make_window([6.0, 6.0, 5.5], chrom="2", start_pos=4800, locus_id="chr2_5000"),
            # chr3_800 has no window
        }
        return loci, windows

    def test_no_data_locus_recorded(self, calculator, loci_and_windows):
        loci, windows = loci_and_windows

        results, failures = calculator.finemap_all_loci(loci, windows)

        assert [r.locus_id for r in results] == ["chr1_1000", "chr2_5000"]
        assert len(failures) == 1
        assert failures[0].locus_id == "chr3_800"
        assert failures[0].reason == "no_data"

        table = combine_results(results)
        assert "chr3_800" not in set(table["locus_id"])
        for _, group in table.groupby("locus_id"):
            assert group["pip"].sum() == pytest.approx(1.0, abs=1e-6)

    def test_threaded_matches_sequential(self, loci_and_windows):
        loci, windows = loci_and_windows
        sequential = CredibleSetCalculator(n_workers=1)
        threaded = CredibleSetCalculator(n_workers=4)

        seq_results, seq_failures = sequential.finemap_all_loci(loci, windows)
        thr_results, thr_failures = threaded.finemap_all_loci(loci, windows)

        pd.testing.assert_frame_equal(combine_results(seq_results), combine_results(thr_results))
        assert [f.to_dict() for f in seq_failures] == [f.to_dict() for f in thr_failures]

    def test_process_pool(self, loci_and_windows):
        loci, windows = loci_and_windows
        calculator = CredibleSetCalculator(n_workers=2, executor="process")

        results, failures = calculator.finemap_all_loci(loci, windows)

        assert len(results) == 2
        assert failures[0].reason == "no_data"

    def test_timeout_reported(self, loci_and_windows):
        loci, windows = loci_and_windows

        class SlowCalculator(CredibleSetCalculator):
            def finemap_locus(self, locus, window):
                if locus.locus_id == "chr1_1000":
                    time.sleep(2.0)
                return super().finemap_locus(locus, window)

        calculator = SlowCalculator(n_workers=3, locus_timeout=0.5)

        results, failures = calculator.finemap_all_loci(loci, windows)

        reasons = {f.locus_id: f.reason for f in failures}
        assert reasons["chr1_1000"] == "timeout"
        assert reasons["chr3_800"] == "no_data"
        assert [r.locus_id for r in results] == ["chr2_5000"]

    def test_queued_locus_not_timed_out(self, loci_and_windows):
        # One worker: the fast loci wait behind the slow one
        loci, windows = loci_and_windows

        class SlowCalculator(CredibleSetCalculator):
            def finemap_locus(self, locus, window):
                if locus.locus_id == "chr1_1000":
                    time.sleep(2.0)
                return super().finemap_locus(locus, window)

        calculator = SlowCalculator(n_workers=1, locus_timeout=0.5)

        results, failures = calculator.finemap_all_loci(loci, windows)

        assert [(f.locus_id, f.reason) for f in failures] == [
            ("chr1_1000", "timeout"),
            ("chr3_800", "no_data"),
        ]
        assert [r.locus_id for r in results] == ["chr2_5000"]

    def test_results_in_locus_order(self, loci_and_windows):
        loci, windows = loci_and_windows

        class ReversedCalculator(CredibleSetCalculator):
            def finemap_locus(self, locus, window):
                if locus.locus_id == "chr1_1000":
                    time.sleep(0.2)
                return super().finemap_locus(locus, window)

        calculator = ReversedCalculator(n_workers=3, locus_timeout=5.0)

        results, failures = calculator.finemap_all_loci(loci, windows)

        assert [r.locus_id for r in results] == ["chr1_1000", "chr2_5000"]
        assert [f.locus_id for f in failures] == ["chr3_800"]

    def test_run_finemapping_from_config(self, loci_and_windows):
        loci, windows = loci_and_windows
        config = FinemapConfig(coverage=0.5, n_workers=1)

        results, failures = run_finemapping(loci, windows, config=config)

        assert results[0].coverage >= 0.5
        assert len(failures) == 1

    def test_summary(self, calculator, loci_and_windows):
        loci, windows = loci_and_windows

        result = calculator.finemap_locus(loci[0], windows["chr1_1000"])
        summary = result.summary()

        assert summary["locus_id"] == "chr1_1000"
        assert summary["n_window_variants"] == 3
        assert summary["credible_set_size"] == result.credible_set_size
