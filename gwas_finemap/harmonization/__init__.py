"""
GWAS Harmonization Module

Provides tools for standardizing and quality-controlling GWAS summary statistics.
"""

from .harmonizer import STANDARD_COLUMNS, SchemaError, SumstatsHarmonizer, harmonize_sumstats
from .qc import DROP_REASONS, QualityControl, StreamingQC

__all__ = [
    "STANDARD_COLUMNS",
    "SchemaError",
    "SumstatsHarmonizer",
    "harmonize_sumstats",
    "DROP_REASONS",
    "QualityControl",
    "StreamingQC",
]
