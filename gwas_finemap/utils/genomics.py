"""
Genomics utility functions.
"""

from typing import Tuple, Union

import numpy as np
import pandas as pd


VALID_CHROMOSOMES = [str(i) for i in range(1, 23)] + ["X", "Y", "MT"]

_CHROM_ORDER = {c: i for i, c in enumerate(VALID_CHROMOSOMES)}


def standardize_chromosome(chrom: Union[str, int]) -> str:
    """
    Standardize chromosome notation.

    Parameters
    ----------
    chrom : str or int
        Input chromosome.

    Returns
    -------
    str
        Standardized chromosome (e.g., "1", "X", "MT").
    """
    chrom = str(chrom).strip()

    # Remove 'chr' prefix
    if chrom.lower().startswith("chr"):
        chrom = chrom[3:]

    chrom_upper = chrom.upper()
    if chrom_upper in ["23", "X"]:
        return "X"
    elif chrom_upper in ["24", "Y"]:
        return "Y"
    elif chrom_upper in ["25", "26", "MT", "M", "MITO"]:
        return "MT"

    # "01" -> "1"
    if chrom_upper.isdigit():
        return str(int(chrom_upper))

    return chrom_upper


def chromosome_sort_key(chrom: str) -> Tuple[int, str]:
    """
    Sort key placing autosomes numerically, then X, Y, MT, then anything else.
    """
    return (_CHROM_ORDER.get(chrom, len(_CHROM_ORDER)), chrom)


def interval_bounds(position: int, radius: int) -> Tuple[int, int]:
    """Closed interval [position - radius, position + radius]."""
    return position - radius, position + radius


def intervals_overlap(
    start_a: int,
    end_a: int,
    start_b: int,
    end_b: int,
) -> bool:
    """Whether two closed intervals on the same chromosome overlap."""
    return start_a <= end_b and start_b <= end_a


def effective_sample_size(
    n_cases: Union[float, np.ndarray, pd.Series],
    n_controls: Union[float, np.ndarray, pd.Series],
):
    """
    Effective sample size of a case/control study.

    ``n_eff = 4 / (1/cases + 1/controls)``, which equals the total sample
    size for a balanced design. Non-positive counts give NaN.

    Parameters
    ----------
    n_cases, n_controls : float or array-like
        Case and control counts.

    Returns
    -------
    float or array-like
        Effective sample size, same shape as the inputs.
    """
    cases = np.asarray(n_cases, dtype=float)
    controls = np.asarray(n_controls, dtype=float)

    with np.errstate(divide="ignore", invalid="ignore"):
        n_eff = 4.0 / (1.0 / cases + 1.0 / controls)

    n_eff = np.where((cases > 0) & (controls > 0), n_eff, np.nan)

    if isinstance(n_cases, pd.Series):
        return pd.Series(n_eff, index=n_cases.index)
    if n_eff.ndim == 0:
        return float(n_eff)
    return n_eff


def make_variant_id(
    chrom: pd.Series,
    pos: pd.Series,
    effect_allele: pd.Series,
    other_allele: pd.Series,
) -> pd.Series:
    """
    Build ``chr:pos:other:effect`` identifiers.
    """
    return (
        chrom.astype(str)
        + ":"
        + pos.astype("Int64").astype(str)
        + ":"
        + other_allele.astype(str)
        + ":"
        + effect_allele.astype(str)
    )
