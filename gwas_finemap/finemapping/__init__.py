"""
Fine-Mapping Module

Defines independent GWAS loci and fine-maps them with approximate
Bayes factors under a single-causal-variant model.
"""

from .locus import Locus, LocusDefinition, LocusResult, define_loci, loci_to_frame
from .window import (
    DataFrameSource,
    DelimitedFileSource,
    ParquetSource,
    SumstatsSource,
    WindowExtractor,
)
from .abf import (
    credible_set_from_posteriors,
    log_approximate_bayes_factor,
    posterior_probabilities,
)
from .credible_sets import (
    CREDIBLE_SET_COLUMNS,
    LOCUS_SUMMARY_COLUMNS,
    CredibleSetCalculator,
    LocusDataError,
    LocusFailure,
    LocusFinemapResult,
    combine_results,
    run_finemapping,
)

__all__ = [
    "Locus",
    "LocusDefinition",
    "LocusResult",
    "define_loci",
    "loci_to_frame",
    "DataFrameSource",
    "DelimitedFileSource",
    "ParquetSource",
    "SumstatsSource",
    "WindowExtractor",
    "credible_set_from_posteriors",
    "log_approximate_bayes_factor",
    "posterior_probabilities",
    "CREDIBLE_SET_COLUMNS",
    "LOCUS_SUMMARY_COLUMNS",
    "CredibleSetCalculator",
    "LocusDataError",
    "LocusFailure",
    "LocusFinemapResult",
    "combine_results",
    "run_finemapping",
]
