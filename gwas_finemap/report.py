"""
Run Report

Aggregates recoverable problems (dropped variants, loci that could not be
fine-mapped) and summary QC into one record surfaced at the end of a run.
"""

from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .finemapping.credible_sets import LocusFailure, LocusFinemapResult
from .utils.io import write_json
from .utils.logging import get_logger


logger = get_logger("report")


@dataclass
class RunReport:
    """
    Summary of one pipeline run.

    Attributes
    ----------
    config : dict
        Configuration the run used.
    n_input_variants : int
        Rows read from the source.
    n_valid_variants : int
        Rows eligible for locus definition.
    dropped_variants : Counter
        Reason -> rows excluded from locus definition.
    n_significant : int
        Valid variants below the significance threshold.
    n_loci : int
        Loci defined.
    n_finemapped : int
        Loci with a credible set.
    window_dropped : Counter
        Reason -> window rows excluded from fine-mapping, over all loci.
    loci_with_lead_dropped : list
        Loci fine-mapped without their lead variant.
    locus_failures : list of LocusFailure
        Loci without a credible set and why.
    qc : dict
        Summary QC metrics.
    """

    config: Dict[str, Any] = field(default_factory=dict)
    n_input_variants: int = 0
    n_valid_variants: int = 0
    dropped_variants: Counter = field(default_factory=Counter)
    n_significant: int = 0
    n_loci: int = 0
    n_finemapped: int = 0
    window_dropped: Counter = field(default_factory=Counter)
    loci_with_lead_dropped: List[str] = field(default_factory=list)
    locus_failures: List[LocusFailure] = field(default_factory=list)
    qc: Optional[Dict[str, Any]] = None

    @property
    def n_dropped_variants(self) -> int:
        return sum(self.dropped_variants.values())

    def add_dropped(self, counts: Dict[str, int]):
        self.dropped_variants.update(counts)

    def add_finemap_results(
        self,
        results: List[LocusFinemapResult],
        failures: List[LocusFailure],
    ):
        self.n_finemapped += len(results)
        for result in results:
            self.window_dropped.update(result.dropped)
            if result.lead_dropped:
                self.loci_with_lead_dropped.append(result.locus_id)
        for failure in failures:
            self.window_dropped["in_failed_loci"] += failure.n_dropped
        self.locus_failures.extend(failures)

    def failure_counts(self) -> Dict[str, int]:
        return dict(Counter(f.reason for f in self.locus_failures))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "config": self.config,
            "n_input_variants": self.n_input_variants,
            "n_valid_variants": self.n_valid_variants,
            "n_dropped_variants": self.n_dropped_variants,
            "dropped_variants": dict(self.dropped_variants),
            "n_significant": self.n_significant,
            "n_loci": self.n_loci,
            "n_finemapped": self.n_finemapped,
            "window_dropped": dict(self.window_dropped),
            "loci_with_lead_dropped": list(self.loci_with_lead_dropped),
            "locus_failures": [f.to_dict() for f in self.locus_failures],
            "failure_counts": self.failure_counts(),
            "qc": self.qc,
        }

    def write(self, filepath: str | Path) -> Path:
        return write_json(self.to_dict(), filepath)

    def log_summary(self):
        logger.info(
            f"Variants: {self.n_input_variants:,} read, {self.n_valid_variants:,} valid, "
            f"{self.n_dropped_variants:,} dropped {dict(self.dropped_variants)}"
        )
        logger.info(
            f"Loci: {self.n_loci} defined from {self.n_significant:,} significant variants, "
            f"{self.n_finemapped} fine-mapped"
        )
        if self.locus_failures:
            logger.warning(
                f"{len(self.locus_failures)} loci without credible sets: {self.failure_counts()}"
            )
        if self.qc and not self.qc.get("passed", True):
            logger.warning(f"Summary QC flagged: {self.qc.get('message', self.qc)}")
