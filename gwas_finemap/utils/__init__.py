"""
Utility functions for the fine-mapping pipeline.
"""

from .config import ColumnMapping, FinemapConfig, load_config, validate_config
from .io import read_sumstats, read_header, write_table, write_json, read_json
from .genomics import (
    standardize_chromosome,
    chromosome_sort_key,
    effective_sample_size,
    make_variant_id,
)
from .logging import setup_logger, get_logger, ProgressLogger

__all__ = [
    "ColumnMapping",
    "FinemapConfig",
    "load_config",
    "validate_config",
    "read_sumstats",
    "read_header",
    "write_table",
    "write_json",
    "read_json",
    "standardize_chromosome",
    "chromosome_sort_key",
    "effective_sample_size",
    "make_variant_id",
    "setup_logger",
    "get_logger",
    "ProgressLogger",
]
