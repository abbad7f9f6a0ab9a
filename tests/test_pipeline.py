"""
Tests for the End-to-End Pipeline, Configuration and CLI
"""

import pytest
import numpy as np
import pandas as pd
from scipy import stats

from gwas_finemap import CONFIG_DIR
from gwas_finemap.cli import build_config, build_parser, main
from gwas_finemap.finemapping.window import DataFrameSource
from gwas_finemap.pipeline import (
    CREDIBLE_SETS_FILE,
    LOCI_FILE,
    REPORT_FILE,
    SIGNIFICANT_FILE,
    FinemapPipeline,
    open_source,
    run_pipeline,
)
from gwas_finemap.utils.config import ColumnMapping, FinemapConfig
from gwas_finemap.utils.io import read_json


SIGNALS = {
    ("1", 500_000): 10.0,
    ("1", 505_000): 8.0,
    ("1", 495_000): 8.0,
    ("1", 1_500_000): 7.0,
    ("2", 300_000): 9.0,
}


def make_sumstats():
    """Two chromosomes with three association signals on a weak background."""
    rows = []
    for chrom, positions in [("1", range(5_000, 2_000_001, 5_000)), ("2", range(100_000, 900_001, 5_000))]:
        for i, pos in enumerate(positions):
            z = SIGNALS.get((chrom, pos), 2.5 * np.sin(i))
            rows.append({
                "CHR": f"chr{chrom}",
                "BP": pos,
                "SNP": f"rs{chrom}_{pos}",
                "A1": "A",
                "A2": "G",
                "BETA": z * 0.02,
                "SE": 0.02,
                "P": 2 * stats.norm.sf(abs(z)),
                "EAF": 0.3,
                "N": 50_000,
            })
    return pd.DataFrame(rows)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def sumstats():
    return make_sumstats()


@pytest.fixture
def config():
    return FinemapConfig(n_workers=1, chunksize=97)


@pytest.fixture
def sumstats_file(sumstats, tmp_path):
    path = tmp_path / "sumstats.tsv.gz"
    sumstats.to_csv(path, sep="\t", index=False, compression="gzip")
    return path


class TestPipeline:
    """Locus definition through credible sets."""

    def test_end_to_end(self, sumstats, config):
        result = FinemapPipeline(config).run(DataFrameSource(sumstats, chunksize=config.chunksize))

        assert [l.locus_id for l in result.loci] == ["chr1_500000", "chr2_300000", "chr1_1500000"]
        assert [l.rank for l in result.loci] == [1, 2, 3]

        table = result.loci_table.set_index("locus_id")
        assert (table["status"] == "finemapped").all()
        assert table.loc["chr1_500000", "n_significant"] == 3
        assert table.loc["chr1_500000", "top_variant"] == "rs1_500000"
        assert table.loc["chr1_500000", "credible_set_size"] == 1
        assert table.loc["chr1_500000", "n_window_variants"] == 101
        assert (table["genome_build"] == "GRCh38").all()

        for _, group in result.credible_sets.groupby("locus_id"):
            assert group["pip"].sum() == pytest.approx(1.0, abs=1e-6)

    def test_report_counts(self, sumstats, config):
        result = FinemapPipeline(config).run(DataFrameSource(sumstats))
        report = result.report

        assert report.n_input_variants == len(sumstats)
        assert report.n_valid_variants == len(sumstats)
        assert report.n_significant == 5
        assert report.n_loci == 3
        assert report.n_finemapped == 3
        assert report.locus_failures == []
        assert report.qc["n_variants"] == len(sumstats)

    def test_invalid_input_rows_counted(self, sumstats, config):
        broken = sumstats.copy()
        broken.loc[0, "SE"] = 0.0
        broken.loc[1, "CHR"] = "chrUn"
        broken = pd.concat([broken, broken.iloc[[10]]], ignore_index=True)

        report = FinemapPipeline(config).run(DataFrameSource(broken)).report

        assert dict(report.dropped_variants) == {
            "nonpositive_se": 1,
            "invalid_chromosome": 1,
            "duplicate_variant": 1,
        }
        assert report.n_valid_variants == len(broken) - 3

    def test_duplicates_across_chunks(self, sumstats, config):
        # Row 10 is not significant and its copy lands in the last chunk
        repeated = pd.concat([sumstats, sumstats.iloc[[10]]], ignore_index=True)

        report = FinemapPipeline(config).run(DataFrameSource(repeated, chunksize=config.chunksize)).report

        assert dict(report.dropped_variants) == {"duplicate_variant": 1}
        assert report.n_valid_variants == len(sumstats)
        assert report.qc["n_variants"] == len(sumstats)
        assert report.n_significant == 5

    def test_failed_locus_reported(self, sumstats):
        # Fine-mapping from sample size needs allele frequencies
        sumstats.loc[sumstats["CHR"] == "chr2", "EAF"] = np.nan
        config = FinemapConfig(n_workers=1, variance_source="neff")

        result = FinemapPipeline(config).run(DataFrameSource(sumstats, require_sample_size=True))

        assert result.report.n_loci == 3
        assert result.report.n_finemapped == 2
        assert result.report.failure_counts() == {"no_valid_variants": 1}

        status = result.loci_table.set_index("locus_id")["status"]
        assert status["chr2_300000"] == "no_valid_variants"
        assert "chr2_300000" not in set(result.credible_sets["locus_id"])

    def test_no_significant_variants(self, sumstats):
        config = FinemapConfig(n_workers=1, p_threshold=1e-40)

        result = FinemapPipeline(config).run(DataFrameSource(sumstats))

        assert result.loci == []
        assert len(result.loci_table) == 0
        assert len(result.credible_sets) == 0
        assert result.report.n_loci == 0

    def test_threaded_matches_sequential(self, sumstats):
        sequential = FinemapPipeline(FinemapConfig(n_workers=1)).run(DataFrameSource(sumstats))
        threaded = FinemapPipeline(FinemapConfig(n_workers=4)).run(DataFrameSource(sumstats))

        pd.testing.assert_frame_equal(sequential.credible_sets, threaded.credible_sets)
        pd.testing.assert_frame_equal(sequential.loci_table, threaded.loci_table)

    def test_outputs_written(self, sumstats, config, tmp_path):
        out = tmp_path / "results"

        FinemapPipeline(config).run(DataFrameSource(sumstats), output_dir=out)

        loci = pd.read_csv(out / LOCI_FILE, sep="\t")
        credible_sets = pd.read_csv(out / CREDIBLE_SETS_FILE, sep="\t")
        significant = pd.read_csv(out / SIGNIFICANT_FILE, sep="\t")
        report = read_json(out / REPORT_FILE)

        assert len(loci) == 3
        assert credible_sets["in_credible_set"].any()
        assert significant["is_lead"].sum() == 3
        assert report["n_loci"] == 3
        assert report["config"]["p_threshold"] == 5e-8

    def test_define_loci_only(self, sumstats, config, tmp_path):
        result = FinemapPipeline(config).define_loci(DataFrameSource(sumstats), output_dir=tmp_path)

        assert len(result.loci) == 3
        assert len(result.credible_sets) == 0
        assert (tmp_path / LOCI_FILE).exists()


class TestFileInput:

    def test_open_source_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            open_source(tmp_path / "absent.tsv.gz")

    def test_run_pipeline_from_file(self, sumstats_file, tmp_path):
        result = run_pipeline(sumstats_file, tmp_path / "out", n_workers=1, coverage=0.99)

        assert len(result.loci) == 3
        assert result.report.config["coverage"] == 0.99
        assert (tmp_path / "out" / CREDIBLE_SETS_FILE).exists()

    def test_numeric_chromosome_with_missing_value(self, tmp_path):
        n = 50
        z = 10.0
        table = pd.DataFrame({
            "#CHROM": ["1"] * (n - 1) + ["NA"],
            "POS": 1000 + 100 * np.arange(n),
            "REF": "C",
            "ALT": "T",
            "BETA": z * 0.02,
            "SE": 0.02,
            "P": 2 * stats.norm.sf(z),
        })
        path = tmp_path / "sumstats.tsv"
        table.to_csv(path, sep="\t", index=False)

        result = run_pipeline(path, n_workers=1)

        assert dict(result.report.dropped_variants) == {"invalid_chromosome": 1}
        assert [l.locus_id for l in result.loci] == ["chr1_1000"]

    def test_parquet_matches_delimited(self, sumstats, sumstats_file, tmp_path):
        parquet = tmp_path / "sumstats.parquet"
        sumstats.to_parquet(parquet, index=False)
        config = FinemapConfig(n_workers=1)

        from_text = run_pipeline(sumstats_file, config=config)
        from_parquet = run_pipeline(parquet, config=config)

        pd.testing.assert_frame_equal(from_text.loci_table, from_parquet.loci_table)


class TestConfig:

    def test_shipped_config_matches_defaults(self):
        assert FinemapConfig.from_yaml(CONFIG_DIR / "config.yaml") == FinemapConfig()

    def test_yaml_overrides(self, tmp_path):
        path = tmp_path / "run.yaml"
        path.write_text(
            "finemapping:\n"
            "  p_threshold: 1.0e-6\n"
            "  coverage: 0.99\n"
            "  columns:\n"
            "    beta: Effect\n"
        )

        config = FinemapConfig.from_yaml(path)

        assert config.p_threshold == 1e-6
        assert config.coverage == 0.99
        assert config.columns == ColumnMapping(beta="Effect")
        assert config.locus_radius_bp == 250_000

    @pytest.mark.parametrize("overrides", [
        {"coverage": 0.0},
        {"coverage": 1.5},
        {"prior_variance": -1.0},
        {"p_threshold": 0.0},
        {"locus_radius_bp": -1},
        {"variance_source": "ld"},
        {"genome_build": "hg19"},
        {"executor": "gpu"},
        {"n_workers": 0},
    ])
    def test_invalid_values(self, overrides):
        with pytest.raises(ValueError):
            FinemapConfig(**overrides)

    def test_unknown_keys_rejected(self):
        with pytest.raises(ValueError, match="Unknown"):
            FinemapConfig.from_dict({"ld_panel": "1kg"})
        with pytest.raises(ValueError, match="Unknown"):
            FinemapConfig.from_dict({"columns": {"rsid": "SNP"}})

    def test_replace_skips_none(self):
        config = FinemapConfig(coverage=0.9).replace(coverage=None, p_threshold=1e-6)

        assert config.coverage == 0.9
        assert config.p_threshold == 1e-6

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            FinemapConfig.from_yaml(tmp_path / "absent.yaml")


class TestCLI:

    def test_build_config(self):
        args = build_parser().parse_args([
            "finemap", "--sumstats", "x.tsv", "--output", "out",
            "--radius-kb", "100", "--coverage", "0.9", "--column", "beta=Effect",
            "--no-qc",
        ])

        config = build_config(args)

        assert config.locus_radius_bp == 100_000
        assert config.coverage == 0.9
        assert config.columns.beta == "Effect"
        assert not config.run_qc
        assert config.prior_variance == 0.04

    def test_finemap_command(self, sumstats_file, tmp_path):
        out = tmp_path / "cli"

        code = main([
            "finemap", "--sumstats", str(sumstats_file), "--output", str(out),
            "--workers", "2",
        ])

        assert code == 0
        loci = pd.read_csv(out / LOCI_FILE, sep="\t")
        assert list(loci["locus_id"]) == ["chr1_500000", "chr2_300000", "chr1_1500000"]

    def test_loci_command(self, sumstats_file, tmp_path):
        code = main([
            "loci", "--sumstats", str(sumstats_file), "--output", str(tmp_path),
            "--p-threshold", "1e-13",
        ])

        assert code == 0
        loci = pd.read_csv(tmp_path / LOCI_FILE, sep="\t")
        assert list(loci["locus_id"]) == ["chr1_500000", "chr2_300000"]

    def test_missing_input_exits(self, tmp_path):
        with pytest.raises(SystemExit) as exc:
            main(["finemap", "--sumstats", str(tmp_path / "absent.tsv"), "--output", str(tmp_path)])

        assert exc.value.code == 2

    def test_invalid_option_exits(self, sumstats_file, tmp_path):
        with pytest.raises(SystemExit) as exc:
            main([
                "finemap", "--sumstats", str(sumstats_file), "--output", str(tmp_path),
                "--coverage", "2",
            ])

        assert exc.value.code == 2

    def test_bad_column_mapping_exits(self, sumstats_file, tmp_path):
        with pytest.raises(SystemExit) as exc:
            main([
                "finemap", "--sumstats", str(sumstats_file), "--output", str(tmp_path),
                "--column", "beta=Effect",
            ])

        assert exc.value.code == 2
