"""
GWAS Summary Statistics Harmonizer

Maps consortium-specific column names onto the standard variant record and
coerces each field to its expected type.
"""

from typing import Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from ..utils.config import ColumnMapping
from ..utils.genomics import effective_sample_size, make_variant_id, standardize_chromosome
from ..utils.logging import get_logger


logger = get_logger("harmonization")


STANDARD_COLUMNS = [
    "chr",
    "pos",
    "variant_id",
    "effect_allele",
    "other_allele",
    "beta",
    "se",
    "pval",
    "eaf",
    "n_eff",
]


class SchemaError(ValueError):
    """A required column is missing or has the wrong type."""


class SumstatsHarmonizer:
    """
    Harmonizes GWAS summary statistics to a standard format.

    The standard format includes:
    - chr: Chromosome (1-22, X, Y, MT)
    - pos: Position (1-based)
    - variant_id: Identifier (rsID, or chr:pos:other:effect when absent)
    - effect_allele: Effect allele (the allele that beta refers to)
    - other_allele: Non-effect allele
    - beta: Effect size (log-OR for binary traits)
    - se: Standard error of beta
    - pval: P-value
    - eaf: Effect allele frequency (NaN when not supplied)
    - n_eff: Effective sample size (NaN when not supplied)
    """

    # Column name mappings for common formats
    COLUMN_MAPPINGS = {
        "chr": ["chr", "chrom", "chromosome", "#chr", "#chrom", "CHR", "CHROM"],
        "pos": ["pos", "position", "bp", "BP", "POS", "base_pair_location"],
        "variant_id": ["variant_id", "rsid", "snp", "SNP", "RSID", "rs_id",
                       "MarkerName", "ID", "SNPID"],
        "effect_allele": ["effect_allele", "a1", "A1", "alt", "ALT", "allele1", "ea",
                          "EA", "Allele1", "tested_allele"],
        "other_allele": ["other_allele", "a2", "A2", "ref", "REF", "allele2", "oa", "OA",
                         "Allele2", "non_effect_allele", "nea", "NEA"],
        "beta": ["beta", "effect", "b", "BETA", "Effect", "effect_size", "log_odds"],
        "se": ["se", "stderr", "standard_error", "SE", "StdErr"],
        "pval": ["pval", "p", "pvalue", "p_value", "P", "Pvalue", "p-value", "P-value"],
        "eaf": ["eaf", "freq", "af", "maf", "MAF", "effect_allele_frequency", "EAF",
                "frequency", "Freq1"],
        "n": ["n_eff", "neff", "n", "N", "n_total", "sample_size", "TotalSampleSize"],
        "n_cases": ["n_cases", "Ncases", "N_cases", "cases", "n_case"],
        "n_controls": ["n_controls", "Ncontrols", "N_controls", "controls", "n_control"],
    }

    REQUIRED = ["chr", "pos", "effect_allele", "other_allele", "beta", "se", "pval"]

    NUMERIC = ["pos", "beta", "se", "pval", "eaf", "n", "n_cases", "n_controls"]

    def __init__(
        self,
        columns: Optional[ColumnMapping] = None,
        require_sample_size: bool = False,
    ):
        """
        Initialize the harmonizer.

        Parameters
        ----------
        columns : ColumnMapping, optional
            Explicit column names. Fields left unset are auto-detected.
        require_sample_size : bool
            Whether allele frequency and a sample size (``n`` or
            ``n_cases`` + ``n_controls``) must be present.
        """
        self.columns = columns or ColumnMapping()
        self.require_sample_size = require_sample_size

    def resolve_columns(self, input_columns: Iterable[str]) -> Dict[str, str]:
        """
        Map input column names to standard names.

        Parameters
        ----------
        input_columns : iterable of str
            Column names of the input table.

        Returns
        -------
        dict
            Mapping from standard name to actual column name.

        Raises
        ------
        SchemaError
            If an explicitly configured column is absent or a required
            field cannot be found.
        """
        input_columns = list(input_columns)
        column_map = {}

        explicit = self.columns.explicit()
        absent = {k: v for k, v in explicit.items() if v not in input_columns}
        if absent:
            raise SchemaError(f"Configured columns not found in input: {absent}")
        column_map.update(explicit)

        input_cols_lower = {c.lower(): c for c in input_columns}
        claimed = set(column_map.values())

        for standard_name, variants in self.COLUMN_MAPPINGS.items():
            if standard_name in column_map:
                continue
            for variant in variants:
                actual = input_cols_lower.get(variant.lower())
                if actual is not None and actual not in claimed:
                    column_map[standard_name] = actual
                    claimed.add(actual)
                    break

        missing = [c for c in self.REQUIRED if c not in column_map]

        if self.require_sample_size:
            if "eaf" not in column_map:
                missing.append("eaf")
            has_n = "n" in column_map
            has_case_control = "n_cases" in column_map and "n_controls" in column_map
            if not (has_n or has_case_control):
                missing.append("n (or n_cases + n_controls)")

        if missing:
            raise SchemaError(
                f"Missing required columns: {missing}. Available: {input_columns}"
            )

        return column_map

    @staticmethod
    def _to_numeric(raw: pd.Series, standard_name: str, required: bool) -> pd.Series:
        if pd.api.types.is_bool_dtype(raw):
            raise SchemaError(f"Column '{raw.name}' ({standard_name}) is boolean, expected numeric")

        if pd.api.types.is_numeric_dtype(raw):
            return raw.astype(float)

        values = pd.to_numeric(raw, errors="coerce")

        # A column with content but no parseable numbers is a type error, not bad rows
        if required and raw.notna().any() and values.isna().all():
            raise SchemaError(
                f"Column '{raw.name}' ({standard_name}) is not numeric "
                f"(dtype {raw.dtype})"
            )

        return values.astype(float)

    @staticmethod
    def _standardize_chromosomes(raw: pd.Series) -> pd.Series:
        if pd.api.types.is_float_dtype(raw):
            # Integer codes come back as floats when the column has missing values
            raw = raw.map(lambda c: str(int(c)) if pd.notna(c) and float(c).is_integer() else str(c))
        raw = raw.astype(str)
        mapping = {c: standardize_chromosome(c) for c in raw.unique()}
        return raw.map(mapping)

    @staticmethod
    def _standardize_alleles(raw: pd.Series) -> pd.Series:
        return raw.astype("string").str.strip().str.upper().fillna("").astype(str)

    def harmonize(
        self,
        df: pd.DataFrame,
        column_map: Optional[Dict[str, str]] = None,
    ) -> pd.DataFrame:
        """
        Harmonize GWAS summary statistics.

        Parameters
        ----------
        df : pd.DataFrame
            Input summary statistics.
        column_map : dict, optional
            Pre-resolved column mapping (from :meth:`resolve_columns`);
            resolved from ``df`` when omitted.

        Returns
        -------
        pd.DataFrame
            New table with :data:`STANDARD_COLUMNS`. Rows are not filtered.
        """
        if column_map is None:
            column_map = self.resolve_columns(df.columns)

        numeric = {}
        for name in self.NUMERIC:
            if name in column_map:
                numeric[name] = self._to_numeric(
                    df[column_map[name]], name, required=name in self.REQUIRED
                )

        harmonized = pd.DataFrame(index=df.index)

        harmonized["chr"] = self._standardize_chromosomes(df[column_map["chr"]])

        pos = numeric["pos"]
        harmonized["pos"] = pos.where(pos % 1 == 0).astype("Int64")

        harmonized["effect_allele"] = self._standardize_alleles(df[column_map["effect_allele"]])
        harmonized["other_allele"] = self._standardize_alleles(df[column_map["other_allele"]])

        synthesized = make_variant_id(
            harmonized["chr"],
            harmonized["pos"],
            harmonized["effect_allele"],
            harmonized["other_allele"],
        )
        if "variant_id" in column_map:
            ids = df[column_map["variant_id"]].astype("string").str.strip()
            # Rows without an identifier fall back to chr:pos:other:effect
            missing = ids.fillna("") == ""
            harmonized["variant_id"] = ids.astype(object).mask(missing, synthesized).astype(str)
        else:
            harmonized["variant_id"] = synthesized

        harmonized["beta"] = numeric["beta"]
        harmonized["se"] = numeric["se"]
        harmonized["pval"] = numeric["pval"]
        harmonized["eaf"] = numeric.get("eaf", np.nan)

        if "n" in numeric:
            harmonized["n_eff"] = numeric["n"]
        elif "n_cases" in numeric and "n_controls" in numeric:
            harmonized["n_eff"] = effective_sample_size(numeric["n_cases"], numeric["n_controls"])
        else:
            harmonized["n_eff"] = np.nan

        return harmonized[STANDARD_COLUMNS]


def harmonize_sumstats(
    df: pd.DataFrame,
    columns: Optional[ColumnMapping] = None,
    **kwargs,
) -> pd.DataFrame:
    """
    Convenience function for harmonizing GWAS summary statistics.

    Parameters
    ----------
    df : pd.DataFrame
        Input summary statistics.
    columns : ColumnMapping, optional
        Explicit column names.
    **kwargs
        Additional arguments for SumstatsHarmonizer.

    Returns
    -------
    pd.DataFrame
        Harmonized summary statistics.
    """
    harmonizer = SumstatsHarmonizer(columns=columns, **kwargs)
    return harmonizer.harmonize(df)
