"""
Configuration management utilities.

Every tunable parameter of locus definition and fine-mapping lives on
:class:`FinemapConfig`, which is passed explicitly into each component.
YAML files map onto it through :func:`load_config`.
"""

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


VALID_ASSEMBLIES = ["GRCh37", "GRCh38"]
VALID_VARIANCE_SOURCES = ["se", "neff"]
VALID_EXECUTORS = ["thread", "process"]


def load_config(config_path: str | Path) -> Dict[str, Any]:
    """
    Load a YAML configuration file.

    Parameters
    ----------
    config_path : str or Path
        Path to the YAML configuration file.

    Returns
    -------
    dict
        Configuration dictionary.
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f)

    return config or {}


@dataclass
class ColumnMapping:
    """
    Input column names for each standard summary-statistics field.

    Unset (``None``) fields are auto-detected from common naming
    conventions by the harmonizer.
    """

    chr: Optional[str] = None
    pos: Optional[str] = None
    variant_id: Optional[str] = None
    effect_allele: Optional[str] = None
    other_allele: Optional[str] = None
    beta: Optional[str] = None
    se: Optional[str] = None
    pval: Optional[str] = None
    eaf: Optional[str] = None
    n: Optional[str] = None
    n_cases: Optional[str] = None
    n_controls: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ColumnMapping":
        data = data or {}
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown column mapping keys: {sorted(unknown)}")
        return cls(**data)

    def explicit(self) -> Dict[str, str]:
        """Return only the fields that were set."""
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class FinemapConfig:
    """
    Parameters for locus definition and ABF fine-mapping.

    Attributes
    ----------
    p_threshold : float
        Variants with p-value strictly below this are significant.
    locus_radius_bp : int
        Half-width of a locus window around its lead variant.
    prior_variance : float
        Prior variance W of the true effect size (beta scale).
    variance_source : str
        ``"se"`` uses se^2 as the variance of beta; ``"neff"`` derives it
        from effective sample size and allele frequency.
    coverage : float
        Target cumulative posterior mass of each credible set.
    genome_build : str
        Genome build of the input coordinates. Recorded in outputs only.
    n_workers : int, optional
        Worker pool size. Defaults to the number of available cores.
    executor : str
        ``"thread"`` or ``"process"`` pool for per-locus fine-mapping.
    locus_timeout : float, optional
        Seconds to wait for a single locus before reporting a timeout.
    chunksize : int
        Rows per chunk when streaming summary statistics.
    run_qc : bool
        Whether to compute summary QC metrics during the scan.
    columns : ColumnMapping
        Input column names.
    """

    p_threshold: float = 5e-8
    locus_radius_bp: int = 250_000
    prior_variance: float = 0.04
    variance_source: str = "se"
    coverage: float = 0.95
    genome_build: str = "GRCh38"
    n_workers: Optional[int] = None
    executor: str = "thread"
    locus_timeout: Optional[float] = None
    chunksize: int = 500_000
    run_qc: bool = True
    columns: ColumnMapping = field(default_factory=ColumnMapping)

    def __post_init__(self):
        if isinstance(self.columns, dict):
            self.columns = ColumnMapping.from_dict(self.columns)
        validate_config(self)

    @property
    def workers(self) -> int:
        """Resolved worker pool size."""
        return self.n_workers or os.cpu_count() or 1

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "FinemapConfig":
        """
        Build a configuration from a (YAML-derived) dictionary.

        Accepts either the flat parameter mapping or a document with a
        top-level ``finemapping`` section.
        """
        data = dict(data or {})
        if "finemapping" in data and isinstance(data["finemapping"], dict):
            data = dict(data["finemapping"])

        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")

        if "columns" in data:
            data["columns"] = ColumnMapping.from_dict(data["columns"])

        return cls(**data)

    @classmethod
    def from_yaml(cls, config_path: str | Path) -> "FinemapConfig":
        return cls.from_dict(load_config(config_path))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def replace(self, **overrides) -> "FinemapConfig":
        """Return a copy with ``overrides`` applied, skipping ``None`` values."""
        data = asdict(self)
        data.update({k: v for k, v in overrides.items() if v is not None})
        return FinemapConfig.from_dict(data)


def validate_config(config: FinemapConfig) -> bool:
    """
    Validate a configuration.

    Parameters
    ----------
    config : FinemapConfig
        Configuration to validate.

    Returns
    -------
    bool
        True if valid, raises exception otherwise.
    """
    if not 0 < config.p_threshold <= 1:
        raise ValueError(f"p_threshold must be in (0, 1], got {config.p_threshold}")

    if config.locus_radius_bp < 0:
        raise ValueError(f"locus_radius_bp must be >= 0, got {config.locus_radius_bp}")

    if config.prior_variance <= 0:
        raise ValueError(f"prior_variance must be > 0, got {config.prior_variance}")

    if config.variance_source not in VALID_VARIANCE_SOURCES:
        raise ValueError(
            f"Invalid variance_source: {config.variance_source}. "
            f"Must be one of {VALID_VARIANCE_SOURCES}"
        )

    if not 0 < config.coverage <= 1:
        raise ValueError(f"coverage must be in (0, 1], got {config.coverage}")

    if config.genome_build not in VALID_ASSEMBLIES:
        raise ValueError(
            f"Invalid assembly: {config.genome_build}. Must be one of {VALID_ASSEMBLIES}"
        )

    if config.n_workers is not None and config.n_workers < 1:
        raise ValueError(f"n_workers must be >= 1, got {config.n_workers}")

    if config.executor not in VALID_EXECUTORS:
        raise ValueError(
            f"Invalid executor: {config.executor}. Must be one of {VALID_EXECUTORS}"
        )

    if config.locus_timeout is not None and config.locus_timeout <= 0:
        raise ValueError(f"locus_timeout must be > 0, got {config.locus_timeout}")

    if config.chunksize < 1:
        raise ValueError(f"chunksize must be >= 1, got {config.chunksize}")

    return True
