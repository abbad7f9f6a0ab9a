"""
gwas-finemap

Genome-wide locus definition and approximate-Bayes-factor fine-mapping
of GWAS summary statistics.
"""

__version__ = "1.0.0"

from pathlib import Path

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"

from . import harmonization
from . import finemapping
from . import utils
from .utils.config import ColumnMapping, FinemapConfig
from .pipeline import FinemapPipeline, PipelineResult, run_pipeline
from .report import RunReport

__all__ = [
    "harmonization",
    "finemapping",
    "utils",
    "ColumnMapping",
    "FinemapConfig",
    "FinemapPipeline",
    "PipelineResult",
    "RunReport",
    "run_pipeline",
    "PROJECT_ROOT",
    "CONFIG_DIR",
]
