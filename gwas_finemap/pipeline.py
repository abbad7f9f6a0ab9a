"""
Fine-Mapping Pipeline

Streams summary statistics once to define loci, extracts locus windows in
a second pass, and fine-maps loci concurrently.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from .finemapping.credible_sets import LOCUS_SUMMARY_COLUMNS, CredibleSetCalculator, combine_results
from .finemapping.locus import Locus, LocusDefinition, loci_to_frame
from .finemapping.window import (
    DelimitedFileSource,
    ParquetSource,
    SumstatsSource,
    WindowExtractor,
    empty_sumstats,
)
from .harmonization.qc import VARIANT_KEY, QualityControl, StreamingQC
from .report import RunReport
from .utils.config import FinemapConfig
from .utils.io import write_table
from .utils.logging import get_logger


logger = get_logger("pipeline")


LOCI_FILE = "loci.tsv"
CREDIBLE_SETS_FILE = "credible_sets.tsv.gz"
SIGNIFICANT_FILE = "significant_variants.tsv.gz"
REPORT_FILE = "run_report.json"


@dataclass
class PipelineResult:
    """
    Outputs of a pipeline run.

    Attributes
    ----------
    loci : list of Locus
        Loci ordered by lead significance.
    loci_table : pd.DataFrame
        One row per locus, with fine-mapping summary columns.
    credible_sets : pd.DataFrame
        One row per (locus, variant) pair.
    significant : pd.DataFrame
        Significant variants with their locus assignment.
    report : RunReport
        Dropped-variant counts, locus failures and QC.
    """

    loci: List[Locus]
    loci_table: pd.DataFrame
    credible_sets: pd.DataFrame
    significant: pd.DataFrame = field(repr=False)
    report: RunReport = field(repr=False)


def open_source(
    path: str | Path,
    config: Optional[FinemapConfig] = None,
) -> SumstatsSource:
    """
    Open a summary-statistics file as a streaming source.

    Parquet files (or directories of them) use pyarrow; everything else is
    read as delimited text.
    """
    config = config or FinemapConfig()
    path = Path(path)
    require_n = config.variance_source == "neff"

    if path.is_dir() or path.suffix.lower() in (".parquet", ".pq"):
        return ParquetSource(
            path,
            columns=config.columns,
            batch_size=config.chunksize,
            require_sample_size=require_n,
        )

    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    return DelimitedFileSource(
        path,
        columns=config.columns,
        chunksize=config.chunksize,
        require_sample_size=require_n,
    )


class FinemapPipeline:
    """
    Locus definition followed by ABF fine-mapping of every locus.
    """

    def __init__(self, config: Optional[FinemapConfig] = None):
        """
        Parameters
        ----------
        config : FinemapConfig, optional
            Run configuration. Defaults are used when omitted.
        """
        self.config = config or FinemapConfig()
        self.qc = QualityControl()
        self.definer = LocusDefinition.from_config(self.config)
        self.calculator = CredibleSetCalculator.from_config(self.config)

    def scan_significant(
        self,
        source: SumstatsSource,
        report: RunReport,
    ) -> pd.DataFrame:
        """
        Stream the source once, validating every chunk and keeping only
        significant variants.

        Parameters
        ----------
        source : SumstatsSource
            Summary statistics.
        report : RunReport
            Receives input/drop counts and QC metrics.

        Returns
        -------
        pd.DataFrame
            Valid significant variants.
        """
        streaming_qc = StreamingQC(self.qc) if self.config.run_qc else None
        significant = []
        seen = set()

        for chunk in source.iter_chunks():
            report.n_input_variants += len(chunk)

            valid, dropped = self.qc.filter_variants(chunk)

            # Chunks are validated independently; catch duplicates across them
            keys = pd.util.hash_pandas_object(valid[VARIANT_KEY], index=False).tolist()
            repeated = np.fromiter((k in seen for k in keys), dtype=bool, count=len(keys))
            seen.update(keys)
            if repeated.any():
                dropped["duplicate_variant"] = dropped.get("duplicate_variant", 0) + int(repeated.sum())
                valid = valid[~repeated]

            report.add_dropped(dropped)
            report.n_valid_variants += len(valid)

            if streaming_qc is not None:
                streaming_qc.update(valid)

            significant.append(valid[valid["pval"] < self.config.p_threshold])

        significant = [s for s in significant if len(s)]
        if significant:
            sig_df = pd.concat(significant, ignore_index=True)
        else:
            sig_df = empty_sumstats()

        if streaming_qc is not None:
            report.qc = streaming_qc.results()

        report.n_significant = len(sig_df)
        logger.info(
            f"Scanned {report.n_input_variants:,} variants: {report.n_valid_variants:,} valid, "
            f"{report.n_significant:,} with p < {self.config.p_threshold:.1e}"
        )

        return sig_df

    def define_loci(
        self,
        source: SumstatsSource,
        output_dir: Optional[str | Path] = None,
    ) -> PipelineResult:
        """
        Run locus definition only.

        The returned result has an empty credible-set table.
        """
        report = RunReport(config=self.config.to_dict())

        sig_df = self.scan_significant(source, report)
        locus_result = self.definer.define_loci(sig_df)
        report.n_loci = len(locus_result.loci)

        result = PipelineResult(
            loci=locus_result.loci,
            loci_table=self._loci_table(locus_result.loci, [], []),
            credible_sets=combine_results([]),
            significant=locus_result.assignments,
            report=report,
        )

        report.log_summary()

        if output_dir is not None:
            self.write_outputs(result, output_dir)

        return result

    def run(
        self,
        source: SumstatsSource,
        output_dir: Optional[str | Path] = None,
    ) -> PipelineResult:
        """
        Run locus definition and fine-mapping.

        Parameters
        ----------
        source : SumstatsSource
            Summary statistics.
        output_dir : str or Path, optional
            Directory for result tables and the run report.

        Returns
        -------
        PipelineResult
            Loci, credible sets and the run report.
        """
        report = RunReport(config=self.config.to_dict())

        sig_df = self.scan_significant(source, report)
        locus_result = self.definer.define_loci(sig_df)
        loci = locus_result.loci
        report.n_loci = len(loci)

        windows = WindowExtractor(source).extract_all(loci) if loci else {}
        results, failures = self.calculator.finemap_all_loci(loci, windows)
        report.add_finemap_results(results, failures)

        result = PipelineResult(
            loci=loci,
            loci_table=self._loci_table(loci, results, failures),
            credible_sets=combine_results(results),
            significant=locus_result.assignments,
            report=report,
        )

        report.log_summary()

        if output_dir is not None:
            self.write_outputs(result, output_dir)

        return result

    def _loci_table(self, loci, results, failures) -> pd.DataFrame:
        table = loci_to_frame(loci)
        table["genome_build"] = self.config.genome_build

        summaries = pd.DataFrame([r.summary() for r in results], columns=LOCUS_SUMMARY_COLUMNS)
        table = table.merge(summaries, on="locus_id", how="left")

        status: Dict[str, str] = {r.locus_id: "finemapped" for r in results}
        status.update({f.locus_id: f.reason for f in failures})
        table["status"] = table["locus_id"].map(status)

        return table

    def write_outputs(self, result: PipelineResult, output_dir: str | Path) -> Dict[str, Path]:
        """
        Write loci, credible sets, significant variants and the run report.
        """
        output_dir = Path(output_dir)
        paths = {
            "loci": write_table(result.loci_table, output_dir / LOCI_FILE),
            "credible_sets": write_table(result.credible_sets, output_dir / CREDIBLE_SETS_FILE),
            "significant": write_table(result.significant, output_dir / SIGNIFICANT_FILE),
            "report": result.report.write(output_dir / REPORT_FILE),
        }
        logger.info(f"Results written to {output_dir}")
        return paths


def run_pipeline(
    sumstats: str | Path,
    output_dir: Optional[str | Path] = None,
    config: Optional[FinemapConfig] = None,
    config_path: Optional[str | Path] = None,
    **overrides,
) -> PipelineResult:
    """
    Convenience function to run the full pipeline on a file.

    Parameters
    ----------
    sumstats : str or Path
        Summary statistics file (delimited or parquet).
    output_dir : str or Path, optional
        Directory for outputs.
    config : FinemapConfig, optional
        Configuration object.
    config_path : str or Path, optional
        YAML configuration, used when ``config`` is not given.
    **overrides
        Configuration fields to override (``None`` values are ignored).

    Returns
    -------
    PipelineResult
        Pipeline outputs.
    """
    if config is None:
        config = FinemapConfig.from_yaml(config_path) if config_path else FinemapConfig()
    if overrides:
        config = config.replace(**overrides)

    source = open_source(sumstats, config)
    return FinemapPipeline(config).run(source, output_dir=output_dir)
