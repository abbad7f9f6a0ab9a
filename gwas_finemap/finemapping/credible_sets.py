"""
Credible-Set Calculation

Per-locus ABF fine-mapping and credible-set construction, run
concurrently across loci.
"""

import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, ProcessPoolExecutor, ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from ..harmonization.qc import QualityControl
from ..utils.config import FinemapConfig
from ..utils.logging import ProgressLogger, get_logger
from .abf import (
    DEFAULT_PRIOR_VARIANCE,
    credible_set_from_posteriors,
    locus_log10_bayes_factor,
    log_approximate_bayes_factor,
    posterior_probabilities,
    variance_from_sample_size,
)
from .locus import Locus


logger = get_logger("credible_sets")

# Seconds between checks of running loci against the timeout
TIMEOUT_POLL_INTERVAL = 0.05


CREDIBLE_SET_COLUMNS = [
    "locus_id",
    "variant_id",
    "chr",
    "pos",
    "effect_allele",
    "other_allele",
    "beta",
    "se",
    "pval",
    "z",
    "log_abf",
    "pip",
    "rank",
    "cumulative_pip",
    "in_credible_set",
]


LOCUS_SUMMARY_COLUMNS = [
    "locus_id",
    "n_window_variants",
    "n_dropped",
    "lead_dropped",
    "credible_set_size",
    "credible_set_coverage",
    "max_pip",
    "top_variant",
    "log10_bf",
]


class LocusDataError(ValueError):
    """A locus cannot be fine-mapped (``no_data``, ``no_valid_variants``, ``timeout``)."""

    def __init__(self, locus_id: str, reason: str, message: str, n_dropped: int = 0):
        super().__init__(f"{locus_id}: {message}")
        self.locus_id = locus_id
        self.reason = reason
        self.detail = message
        self.n_dropped = n_dropped

    def __reduce__(self):
        # Survive the trip back from a process pool worker
        return (self.__class__, (self.locus_id, self.reason, self.detail, self.n_dropped))


@dataclass
class LocusFailure:
    locus_id: str
    reason: str
    message: str
    n_dropped: int = 0

    @classmethod
    def from_error(cls, error: LocusDataError) -> "LocusFailure":
        return cls(
            locus_id=error.locus_id,
            reason=error.reason,
            message=error.detail,
            n_dropped=error.n_dropped,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class LocusFinemapResult:
    """
    Fine-mapping output for one locus.

    Attributes
    ----------
    locus_id : str
        Owning locus.
    table : pd.DataFrame
        One row per window variant (:data:`CREDIBLE_SET_COLUMNS`),
        ordered by rank.
    n_variants : int
        Variants fine-mapped.
    dropped : dict
        Reason -> number of window variants excluded.
    lead_dropped : bool
        Whether the lead variant was excluded as invalid.
    credible_set_size : int
        Number of variants in the credible set.
    coverage : float
        Cumulative posterior of the credible set.
    max_pip : float
        Largest posterior in the locus.
    top_variant : str
        Variant with the largest posterior.
    log10_bf : float
        Locus log10 Bayes factor against the null.
    """

    locus_id: str
    table: pd.DataFrame = field(repr=False)
    n_variants: int
    dropped: Dict[str, int]
    lead_dropped: bool
    credible_set_size: int
    coverage: float
    max_pip: float
    top_variant: str
    log10_bf: float

    @property
    def n_dropped(self) -> int:
        return sum(self.dropped.values())

    def summary(self) -> Dict[str, Any]:
        return {
            "locus_id": self.locus_id,
            "n_window_variants": self.n_variants,
            "n_dropped": self.n_dropped,
            "lead_dropped": self.lead_dropped,
            "credible_set_size": self.credible_set_size,
            "credible_set_coverage": self.coverage,
            "max_pip": self.max_pip,
            "top_variant": self.top_variant,
            "log10_bf": self.log10_bf,
        }


class CredibleSetCalculator:
    """
    Approximate-Bayes-factor fine-mapping under a single causal variant.
    """

    def __init__(
        self,
        prior_variance: float = DEFAULT_PRIOR_VARIANCE,
        coverage: float = 0.95,
        variance_source: str = "se",
        n_workers: int = 1,
        executor: str = "thread",
        locus_timeout: Optional[float] = None,
    ):
        """
        Initialize fine-mapping parameters.

        Parameters
        ----------
        prior_variance : float
            Prior variance W of the causal effect size.
        coverage : float
            Target coverage for credible sets.
        variance_source : str
            ``"se"`` (V = se^2) or ``"neff"`` (V from n_eff and eaf).
        n_workers : int
            Loci fine-mapped concurrently.
        executor : str
            ``"thread"`` or ``"process"`` pool.
        locus_timeout : float, optional
            Seconds a locus may run, counted from when it starts,
            before it is reported as a timeout.
        """
        if variance_source not in ("se", "neff"):
            raise ValueError(f"Invalid variance_source: {variance_source}")
        if not 0 < coverage <= 1:
            raise ValueError(f"coverage must be in (0, 1], got {coverage}")
        if n_workers < 1:
            raise ValueError(f"n_workers must be >= 1, got {n_workers}")
        if executor not in ("thread", "process"):
            raise ValueError(f"Invalid executor: {executor}")

        self.prior_variance = prior_variance
        self.coverage = coverage
        self.variance_source = variance_source
        self.n_workers = n_workers
        self.executor = executor
        self.locus_timeout = locus_timeout
        self.qc = QualityControl()

    @classmethod
    def from_config(cls, config: FinemapConfig) -> "CredibleSetCalculator":
        return cls(
            prior_variance=config.prior_variance,
            coverage=config.coverage,
            variance_source=config.variance_source,
            n_workers=config.workers,
            executor=config.executor,
            locus_timeout=config.locus_timeout,
        )

    def _valid_variants(
        self,
        window: pd.DataFrame,
    ) -> Tuple[pd.DataFrame, np.ndarray, Dict[str, int]]:
        """Drop unusable rows; return (rows, variance of beta, drop counts)."""
        valid, dropped = self.qc.filter_variants(window, require_pval=False)

        if self.variance_source == "neff":
            variance = variance_from_sample_size(valid["n_eff"], valid["eaf"])
            usable = np.isfinite(variance)
            if not usable.all():
                dropped["missing_sample_size"] = int((~usable).sum())
                valid = valid[usable]
                variance = variance[usable]
        else:
            variance = valid["se"].to_numpy(dtype=float) ** 2

        return valid, variance, dropped

    def finemap_locus(
        self,
        locus: Locus,
        window: Optional[pd.DataFrame],
    ) -> LocusFinemapResult:
        """
        Fine-map a single locus.

        Parameters
        ----------
        locus : Locus
            Locus being fine-mapped.
        window : pd.DataFrame
            All variants in the locus window.

        Returns
        -------
        LocusFinemapResult
            Posterior probabilities and credible set.

        Raises
        ------
        LocusDataError
            If the window is empty or no variant survives validation.
        """
        if window is None or len(window) == 0:
            raise LocusDataError(locus.locus_id, "no_data", "no data for locus window")

        valid, variance, dropped = self._valid_variants(window)
        n_dropped = sum(dropped.values())

        if len(valid) == 0:
            raise LocusDataError(
                locus.locus_id,
                "no_valid_variants",
                f"all {len(window)} window variants failed validation {dropped}",
                n_dropped=n_dropped,
            )

        lead_dropped = locus.lead_variant not in set(valid["variant_id"])
        if lead_dropped:
            logger.warning(
                f"Locus {locus.locus_id}: lead variant {locus.lead_variant} excluded "
                f"from fine-mapping ({len(valid)} variants remain)"
            )

        beta = valid["beta"].to_numpy(dtype=float)
        log_abf = log_approximate_bayes_factor(beta, variance, self.prior_variance)
        pip = posterior_probabilities(log_abf)
        ordering = credible_set_from_posteriors(
            pip,
            coverage=self.coverage,
            positions=valid["pos"].to_numpy(dtype=np.int64),
        )

        table = valid.assign(
            locus_id=locus.locus_id,
            z=beta / np.sqrt(variance),
            log_abf=log_abf,
            pip=pip,
            rank=ordering.rank,
            cumulative_pip=ordering.cumulative,
            in_credible_set=ordering.in_credible_set,
        )
        table = table.sort_values("rank")[CREDIBLE_SET_COLUMNS].reset_index(drop=True)

        return LocusFinemapResult(
            locus_id=locus.locus_id,
            table=table,
            n_variants=len(table),
            dropped=dropped,
            lead_dropped=lead_dropped,
            credible_set_size=ordering.size,
            coverage=ordering.coverage,
            max_pip=float(table["pip"].iloc[0]),
            top_variant=str(table["variant_id"].iloc[0]),
            log10_bf=locus_log10_bayes_factor(log_abf),
        )

    def finemap_all_loci(
        self,
        loci: List[Locus],
        windows: Dict[str, pd.DataFrame],
    ) -> Tuple[List[LocusFinemapResult], List[LocusFailure]]:
        """
        Fine-map all loci, concurrently when more than one worker is set.

        Parameters
        ----------
        loci : list of Locus
            Loci to fine-map.
        windows : dict
            locus_id -> window variants. Missing entries count as empty.

        Returns
        -------
        tuple
            (results in locus order, failures in locus order).
        """
        results = []
        failures = []
        progress = ProgressLogger(
            total=len(loci),
            desc="Fine-mapping loci",
            logger=logger,
            log_every=max(1, len(loci) // 10),
        )

        def record_failure(failure: LocusFailure):
            logger.warning(f"Locus {failure.locus_id} not fine-mapped ({failure.reason}): {failure.message}")
            failures.append(failure)
            progress.update(failed=True)

        if self.n_workers == 1 and self.locus_timeout is None:
            for locus in loci:
                try:
                    results.append(self.finemap_locus(locus, windows.get(locus.locus_id)))
                except LocusDataError as e:
                    record_failure(LocusFailure.from_error(e))
                else:
                    progress.update()
            progress.close()
            return results, failures

        order = {locus.locus_id: i for i, locus in enumerate(loci)}
        pool_cls = ProcessPoolExecutor if self.executor == "process" else ThreadPoolExecutor
        pools = [pool_cls(max_workers=self.n_workers)]
        poll = None if self.locus_timeout is None else TIMEOUT_POLL_INTERVAL
        queue = deque(loci)
        pending = {}
        slots = set()
        started = {}
        timed_out = False

        try:
            while queue or pending:
                # One locus per free worker, so a submitted locus starts right away
                while queue and len(slots) < self.n_workers:
                    locus = queue.popleft()
                    future = pools[-1].submit(self.finemap_locus, locus, windows.get(locus.locus_id))
                    pending[future] = locus
                    slots.add(future)

                done, _ = wait(pending, timeout=poll, return_when=FIRST_COMPLETED)
                for future in done:
                    pending.pop(future)
                    slots.discard(future)
                    try:
                        result = future.result()
                    except LocusDataError as e:
                        record_failure(LocusFailure.from_error(e))
                    else:
                        results.append(result)
                        progress.update()

                if self.locus_timeout is None:
                    continue

                # The clock of a locus starts when it starts running
                now = time.monotonic()
                worker_lost = False
                for future, locus in list(pending.items()):
                    if not future.running():
                        continue
                    if now - started.setdefault(future, now) <= self.locus_timeout:
                        continue
                    del pending[future]
                    timed_out = True
                    worker_lost = worker_lost or future in slots
                    record_failure(LocusFailure(
                        locus_id=locus.locus_id,
                        reason="timeout",
                        message=f"no result within {self.locus_timeout}s of starting",
                    ))

                if worker_lost:
                    # Expired loci keep their workers busy; queued loci go to a fresh pool
                    pools[-1].shutdown(wait=False)
                    pools.append(pool_cls(max_workers=self.n_workers))
                    slots = set()
        finally:
            for pool in pools:
                pool.shutdown(wait=not timed_out, cancel_futures=True)

        results.sort(key=lambda r: order[r.locus_id])
        failures.sort(key=lambda f: order[f.locus_id])
        progress.close()
        return results, failures


def run_finemapping(
    loci: List[Locus],
    windows: Dict[str, pd.DataFrame],
    config: Optional[FinemapConfig] = None,
    **kwargs,
) -> Tuple[List[LocusFinemapResult], List[LocusFailure]]:
    """
    Convenience function to run fine-mapping.

    Parameters
    ----------
    loci : list of Locus
        Loci to fine-map.
    windows : dict
        locus_id -> window variants.
    config : FinemapConfig, optional
        Configuration. Ignored when keyword arguments are given.
    **kwargs
        Arguments for CredibleSetCalculator.

    Returns
    -------
    tuple
        (results, failures).
    """
    if config is not None and not kwargs:
        calculator = CredibleSetCalculator.from_config(config)
    else:
        calculator = CredibleSetCalculator(**kwargs)
    return calculator.finemap_all_loci(loci, windows)


def combine_results(results: List[LocusFinemapResult]) -> pd.DataFrame:
    """Concatenate per-locus tables into the credible-set table."""
    tables = [r.table for r in results if len(r.table)]
    if not tables:
        return pd.DataFrame(columns=CREDIBLE_SET_COLUMNS)
    return pd.concat(tables, ignore_index=True)
