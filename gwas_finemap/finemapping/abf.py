"""
Approximate Bayes Factor Fine-Mapping

Wakefield approximate Bayes factors under a single-causal-variant model,
computed entirely in log space.

References
----------
Wakefield J. (2009) Bayes factors for genome-wide association studies:
comparison with P-values. Genet Epidemiol 33:79-86.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy.special import logsumexp


DEFAULT_PRIOR_VARIANCE = 0.04


def log_approximate_bayes_factor(
    beta: np.ndarray,
    variance: np.ndarray,
    prior_variance: float = DEFAULT_PRIOR_VARIANCE,
) -> np.ndarray:
    """
    Natural-log Wakefield approximate Bayes factor (H1 vs H0).

    ``log ABF = 0.5 * log(V / (V + W)) + 0.5 * z^2 * W / (V + W)``
    with ``z^2 = beta^2 / V``.

    Parameters
    ----------
    beta : np.ndarray
        Estimated effect sizes.
    variance : np.ndarray
        Variance V of each estimate (se^2 or derived from sample size).
    prior_variance : float
        Prior variance W of the true effect.

    Returns
    -------
    np.ndarray
        log ABF per variant. Finite for any finite beta and V > 0.
    """
    if prior_variance <= 0:
        raise ValueError(f"prior_variance must be > 0, got {prior_variance}")

    beta = np.asarray(beta, dtype=float)
    variance = np.asarray(variance, dtype=float)

    shrinkage = prior_variance / (variance + prior_variance)
    z2 = beta ** 2 / variance

    return 0.5 * (np.log(variance) - np.log(variance + prior_variance)) + 0.5 * z2 * shrinkage


def variance_from_sample_size(
    n_eff: np.ndarray,
    eaf: np.ndarray,
) -> np.ndarray:
    """
    Approximate variance of beta from effective sample size and allele frequency.

    ``V = 1 / (2 * n_eff * f * (1 - f))`` for a standardized trait. Invalid
    inputs (non-positive n, f outside (0, 1)) give NaN.
    """
    n_eff = np.asarray(n_eff, dtype=float)
    eaf = np.asarray(eaf, dtype=float)

    with np.errstate(divide="ignore", invalid="ignore"):
        variance = 1.0 / (2.0 * n_eff * eaf * (1.0 - eaf))

    valid = (n_eff > 0) & (eaf > 0) & (eaf < 1)
    return np.where(valid, variance, np.nan)


def posterior_probabilities(log_abf: np.ndarray) -> np.ndarray:
    """
    Posterior probability of causality per variant, uniform prior.

    ``pp_i = ABF_i / sum_j ABF_j``, normalized with log-sum-exp so that
    large log ABFs never overflow.
    """
    log_abf = np.asarray(log_abf, dtype=float)
    if log_abf.size == 0:
        return log_abf.copy()
    return np.exp(log_abf - logsumexp(log_abf))


def locus_log10_bayes_factor(log_abf: np.ndarray) -> float:
    """
    log10 Bayes factor of the locus against the null.

    Averages the per-variant ABFs, i.e. a uniform prior over which
    variant is causal.
    """
    log_abf = np.asarray(log_abf, dtype=float)
    return float((logsumexp(log_abf) - np.log(log_abf.size)) / np.log(10))


@dataclass
class CredibleSetOrdering:
    """
    Descending-posterior ordering of a locus.

    Attributes
    ----------
    rank : np.ndarray
        1-based rank of each variant (input order).
    cumulative : np.ndarray
        Cumulative posterior at each variant's rank (input order).
    in_credible_set : np.ndarray
        Membership flag (input order).
    size : int
        Number of variants in the credible set.
    coverage : float
        Cumulative posterior of the credible set.
    """

    rank: np.ndarray
    cumulative: np.ndarray
    in_credible_set: np.ndarray
    size: int
    coverage: float


def credible_set_from_posteriors(
    posteriors: np.ndarray,
    coverage: float = 0.95,
    positions: Optional[np.ndarray] = None,
) -> CredibleSetOrdering:
    """
    Smallest descending-posterior prefix reaching ``coverage``.

    Parameters
    ----------
    posteriors : np.ndarray
        Posterior probabilities of one locus, summing to 1.
    coverage : float
        Target cumulative posterior.
    positions : np.ndarray, optional
        Tie-break key for equal posteriors (smaller first). Input order
        is used when omitted.

    Returns
    -------
    CredibleSetOrdering
        Ranks, cumulative sums and membership aligned with the input.
    """
    posteriors = np.asarray(posteriors, dtype=float)
    n = posteriors.size
    if n == 0:
        raise ValueError("Cannot build a credible set from zero variants")

    if positions is None:
        positions = np.arange(n)

    # lexsort: last key is primary
    order = np.lexsort((np.arange(n), np.asarray(positions), -posteriors))
    cumulative_sorted = np.cumsum(posteriors[order])

    reached = np.nonzero(cumulative_sorted >= coverage)[0]
    # Rounding can leave the full sum a hair below a coverage of 1.0
    size = int(reached[0]) + 1 if reached.size else n

    rank = np.empty(n, dtype=np.int64)
    rank[order] = np.arange(1, n + 1)

    cumulative = np.empty(n, dtype=float)
    cumulative[order] = cumulative_sorted

    in_credible_set = rank <= size

    return CredibleSetOrdering(
        rank=rank,
        cumulative=cumulative,
        in_credible_set=in_credible_set,
        size=size,
        coverage=float(cumulative_sorted[size - 1]),
    )
