"""
Quality Control for GWAS Summary Statistics

Implements per-variant validation and summary-level checks:
- Variant validity (coordinates, effect size, standard error, p-value)
- Duplicate variants
- Z-score extremes
- P-value recomputation
- Genomic inflation
"""

import warnings
from collections import Counter
from typing import Any, Dict, List, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from ..utils.genomics import VALID_CHROMOSOMES
from ..utils.logging import get_logger


logger = get_logger("qc")


# Order matters: each dropped variant is counted under its first failing reason
DROP_REASONS = [
    "invalid_chromosome",
    "missing_coordinates",
    "nonfinite_beta",
    "nonpositive_se",
    "invalid_pval",
    "duplicate_variant",
]

VARIANT_KEY = ["chr", "pos", "effect_allele", "other_allele"]


class QualityControl:
    """
    Quality control checks for harmonized GWAS summary statistics.
    """

    def __init__(
        self,
        z_threshold: float = 37.0,
        max_pval_error: float = 0.1,
    ):
        """
        Initialize QC checks.

        Parameters
        ----------
        z_threshold : float
            Maximum plausible |Z| score.
        max_pval_error : float
            Maximum relative error for p-value recomputation (log10 scale).
        """
        self.z_threshold = z_threshold
        self.max_pval_error = max_pval_error

    def invalid_masks(
        self,
        df: pd.DataFrame,
        require_pval: bool = True,
    ) -> Dict[str, pd.Series]:
        """
        Boolean masks of invalid rows, one per drop reason.

        Parameters
        ----------
        df : pd.DataFrame
            Harmonized summary statistics.
        require_pval : bool
            Whether a missing or out-of-range p-value invalidates a variant.

        Returns
        -------
        dict
            Reason -> mask (True = invalid for that reason).
        """
        beta = df["beta"].astype(float)
        se = df["se"].astype(float)

        masks = {
            "invalid_chromosome": ~df["chr"].isin(VALID_CHROMOSOMES),
            "missing_coordinates": df["pos"].isna() | (df["pos"].fillna(0) < 0),
            "nonfinite_beta": ~np.isfinite(beta),
            "nonpositive_se": ~(np.isfinite(se) & (se > 0)),
        }

        if require_pval:
            pval = df["pval"].astype(float)
            masks["invalid_pval"] = ~((pval >= 0) & (pval <= 1))

        masks["duplicate_variant"] = df.duplicated(subset=VARIANT_KEY, keep="first")

        return masks

    def filter_variants(
        self,
        df: pd.DataFrame,
        require_pval: bool = True,
    ) -> Tuple[pd.DataFrame, Dict[str, int]]:
        """
        Drop invalid variants and count them by reason.

        Parameters
        ----------
        df : pd.DataFrame
            Harmonized summary statistics.
        require_pval : bool
            Whether p-value validity is checked.

        Returns
        -------
        tuple
            (valid rows as a new DataFrame, reason -> number dropped).
        """
        masks = self.invalid_masks(df, require_pval=require_pval)

        dropped = pd.Series(False, index=df.index)
        counts = {}

        for reason in DROP_REASONS:
            if reason not in masks:
                continue
            newly = masks[reason] & ~dropped
            n = int(newly.sum())
            if n:
                counts[reason] = n
            dropped |= newly

        return df.loc[~dropped].copy(), counts

    def check_z_scores(
        self,
        df: pd.DataFrame,
    ) -> Dict[str, Any]:
        """
        Check for implausibly extreme Z = beta/SE values.

        Parameters
        ----------
        df : pd.DataFrame
            Summary statistics with beta, se columns.

        Returns
        -------
        dict
            QC results including flag counts.
        """
        results = {
            "check": "z_scores",
            "passed": True,
            "n_variants": len(df),
        }

        z = df["beta"] / df["se"]
        z_extreme = np.abs(z) > self.z_threshold
        results["n_extreme_z"] = int(z_extreme.sum())

        if results["n_extreme_z"] > 0:
            results["message"] = f"{results['n_extreme_z']} variants with |Z| > {self.z_threshold}"
            logger.warning(results["message"])

        return results

    def check_pvalue_consistency(
        self,
        df: pd.DataFrame,
    ) -> Dict[str, Any]:
        """
        Check p-value consistency with Z-score.

        Parameters
        ----------
        df : pd.DataFrame
            Summary statistics with pval, beta, se columns.

        Returns
        -------
        dict
            QC results.
        """
        results = {
            "check": "pvalue_consistency",
            "passed": True,
            "n_variants": len(df),
        }

        if len(df) == 0:
            results["n_inconsistent"] = 0
            return results

        # log10 p from |Z| computed via logsf to stay finite for extreme Z
        z = np.abs(df["beta"] / df["se"]).to_numpy(dtype=float)
        log_pval_expected = (np.log(2) + stats.norm.logsf(z)) / np.log(10)

        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            log_pval_reported = np.log10(df["pval"].clip(lower=1e-300).to_numpy(dtype=float))

        log_diff = np.abs(log_pval_reported - log_pval_expected)

        # Allow larger differences for very small p-values
        relative_error = log_diff / np.clip(np.abs(log_pval_expected), 1, None)

        results["log_pval_diff_median"] = float(np.median(log_diff))
        results["log_pval_diff_max"] = float(np.max(log_diff))
        results["n_inconsistent"] = int((relative_error > self.max_pval_error).sum())

        if results["n_inconsistent"] > 0.01 * len(df):
            results["passed"] = False
            results["message"] = f"{results['n_inconsistent']} variants with p-value inconsistency"

        return results

    def check_genomic_inflation(
        self,
        chi2: np.ndarray,
    ) -> Dict[str, Any]:
        """
        Calculate genomic inflation factor (lambda_GC).

        Parameters
        ----------
        chi2 : np.ndarray
            Chi-square (Z^2) statistics of all variants.

        Returns
        -------
        dict
            QC results including lambda_GC.
        """
        results = {
            "check": "genomic_inflation",
            "passed": True,
            "n_variants": int(len(chi2)),
        }

        if len(chi2) == 0:
            results["lambda_gc"] = None
            results["message"] = "No variants"
            return results

        # Lambda GC is median chi2 / expected median
        lambda_gc = float(np.median(chi2) / stats.chi2.ppf(0.5, df=1))
        results["lambda_gc"] = lambda_gc

        if lambda_gc > 1.2:
            results["passed"] = False
            results["message"] = f"High genomic inflation (lambda = {lambda_gc:.3f})"
            logger.warning(results["message"])
        elif lambda_gc < 0.9:
            results["passed"] = False
            results["message"] = f"Deflation detected (lambda = {lambda_gc:.3f})"
            logger.warning(results["message"])

        return results

    def run_all_checks(
        self,
        df: pd.DataFrame,
    ) -> Dict[str, Any]:
        """
        Run all summary-level QC checks on an in-memory table.

        Parameters
        ----------
        df : pd.DataFrame
            Valid (already filtered) summary statistics.

        Returns
        -------
        dict
            All QC results.
        """
        chi2 = ((df["beta"] / df["se"]) ** 2).to_numpy(dtype=float)

        results = {
            "z_scores": self.check_z_scores(df),
            "pvalue": self.check_pvalue_consistency(df),
            "genomic_inflation": self.check_genomic_inflation(chi2),
        }
        results["overall_passed"] = all(r["passed"] for r in results.values())

        return results


class StreamingQC:
    """
    Accumulates QC statistics over chunks of a summary-statistics stream.
    """

    def __init__(self, qc: QualityControl):
        self.qc = qc
        self._chi2: List[np.ndarray] = []
        self._counts: Counter = Counter()

    def update(self, chunk: pd.DataFrame):
        """Add a chunk of valid variants."""
        if len(chunk) == 0:
            return

        z = (chunk["beta"] / chunk["se"]).to_numpy(dtype=float)
        self._chi2.append((z ** 2).astype(np.float32))

        self._counts["n_variants"] += len(chunk)
        self._counts["n_extreme_z"] += int((np.abs(z) > self.qc.z_threshold).sum())
        self._counts["n_pval_inconsistent"] += self.qc.check_pvalue_consistency(chunk)["n_inconsistent"]

    def results(self) -> Dict[str, Any]:
        chi2 = np.concatenate(self._chi2) if self._chi2 else np.array([], dtype=np.float32)
        inflation = self.qc.check_genomic_inflation(chi2)

        n = self._counts["n_variants"]
        results = {
            "n_variants": n,
            "n_extreme_z": self._counts["n_extreme_z"],
            "n_pval_inconsistent": self._counts["n_pval_inconsistent"],
            "lambda_gc": inflation["lambda_gc"],
            "passed": inflation["passed"]
            and self._counts["n_pval_inconsistent"] <= 0.01 * max(n, 1),
        }

        if "message" in inflation:
            results["message"] = inflation["message"]

        return results
