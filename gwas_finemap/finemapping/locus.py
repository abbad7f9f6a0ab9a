"""
Locus Definition

Defines GWAS loci by greedy distance-based clumping of genome-wide
significant variants.
"""

from bisect import bisect_left, insort
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from ..utils.config import FinemapConfig
from ..utils.genomics import chromosome_sort_key, interval_bounds
from ..utils.logging import get_logger


logger = get_logger("locus_definition")


LOCUS_COLUMNS = [
    "locus_id",
    "rank",
    "chr",
    "lead_variant",
    "lead_pos",
    "lead_pval",
    "start",
    "end",
    "n_significant",
]


@dataclass(frozen=True)
class Locus:
    """
    A genomic interval anchored by its lead variant.

    ``start`` and ``end`` are ``lead_pos -/+ radius`` (closed interval) and
    may extend below position 1 near chromosome starts.
    """

    locus_id: str
    chr: str
    lead_variant: str
    lead_pos: int
    lead_pval: float
    start: int
    end: int
    rank: int = 0
    n_significant: int = 1

    def contains(self, chrom: str, pos: int) -> bool:
        return chrom == self.chr and self.start <= pos <= self.end

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class LocusResult:
    """
    Output of a locus definition run.

    Attributes
    ----------
    loci : list of Locus
        Loci ordered by lead significance (``rank`` 1 first).
    assignments : pd.DataFrame
        Copy of the input with ``is_significant``, ``locus_id``, ``is_lead``
        and ``distance_to_lead`` columns.
    """

    loci: List[Locus]
    assignments: pd.DataFrame = field(repr=False)

    def to_frame(self) -> pd.DataFrame:
        return loci_to_frame(self.loci)


def loci_to_frame(loci: List[Locus]) -> pd.DataFrame:
    """One row per locus."""
    if not loci:
        return pd.DataFrame(columns=LOCUS_COLUMNS)
    return pd.DataFrame([locus.to_dict() for locus in loci])[LOCUS_COLUMNS]


def make_locus_id(chrom: str, lead_pos: int) -> str:
    return f"chr{chrom}_{lead_pos}"


def _clump_chromosome(
    chrom: str,
    positions: np.ndarray,
    pvals: np.ndarray,
    variant_ids: np.ndarray,
    radius: int,
) -> Tuple[List[Dict], np.ndarray, np.ndarray]:
    """
    Greedy clumping of one chromosome's significant variants.

    Inputs must already be in significance order. A variant starts a new
    locus only if its interval would not overlap any existing locus
    interval (i.e. it is more than ``2 * radius`` from every lead);
    otherwise it joins the locus with the nearest lead, the more
    significant lead winning equal distances.

    Returns
    -------
    tuple
        (lead records, per-variant lead index, per-variant is_lead flags),
        per-variant arrays aligned with the inputs.
    """
    span = 2 * radius

    leads: List[Dict] = []
    lead_positions: List[int] = []
    lead_at: Dict[int, int] = {}

    assigned = np.empty(len(positions), dtype=np.int64)
    is_lead = np.zeros(len(positions), dtype=bool)

    for i in range(len(positions)):
        pos = int(positions[i])

        # Nearest existing leads on either side
        j = bisect_left(lead_positions, pos)
        best = None
        for k in (j - 1, j):
            if 0 <= k < len(lead_positions):
                distance = abs(lead_positions[k] - pos)
                if distance > span:
                    continue
                lead_idx = lead_at[lead_positions[k]]
                if best is None or (distance, lead_idx) < best:
                    best = (distance, lead_idx)

        if best is not None:
            assigned[i] = best[1]
            leads[best[1]]["n_significant"] += 1
            continue

        start, end = interval_bounds(pos, radius)
        leads.append({
            "chr": chrom,
            "lead_variant": str(variant_ids[i]),
            "lead_pos": pos,
            "lead_pval": float(pvals[i]),
            "start": start,
            "end": end,
            "n_significant": 1,
        })
        insort(lead_positions, pos)
        lead_at[pos] = len(leads) - 1
        assigned[i] = len(leads) - 1
        is_lead[i] = True

    return leads, assigned, is_lead


class LocusDefinition:
    """
    Defines independent loci from GWAS summary statistics.
    """

    def __init__(
        self,
        p_threshold: float = 5e-8,
        radius_bp: int = 250_000,
        n_workers: int = 1,
        executor: str = "thread",
    ):
        """
        Initialize locus definition parameters.

        Parameters
        ----------
        p_threshold : float
            P-value threshold for significance (strict ``<``).
        radius_bp : int
            Half-width of each locus interval in base pairs.
        n_workers : int
            Chromosomes clumped concurrently.
        executor : str
            ``"thread"`` or ``"process"`` pool for per-chromosome clumping.
        """
        if radius_bp < 0:
            raise ValueError(f"radius_bp must be >= 0, got {radius_bp}")
        if n_workers < 1:
            raise ValueError(f"n_workers must be >= 1, got {n_workers}")
        if executor not in ("thread", "process"):
            raise ValueError(f"Invalid executor: {executor}")

        self.p_threshold = p_threshold
        self.radius_bp = radius_bp
        self.n_workers = n_workers
        self.executor = executor

    @classmethod
    def from_config(cls, config: FinemapConfig, **overrides) -> "LocusDefinition":
        params = dict(
            p_threshold=config.p_threshold,
            radius_bp=config.locus_radius_bp,
            n_workers=config.workers,
            executor=config.executor,
        )
        params.update(overrides)
        return cls(**params)

    @staticmethod
    def sort_by_significance(df: pd.DataFrame) -> pd.DataFrame:
        """
        Sort by p-value, breaking ties by chromosome, position and id.
        """
        order = df["chr"].map(lambda c: chromosome_sort_key(c)[0])
        keyed = df.assign(_chr_order=order)
        keyed = keyed.sort_values(
            ["pval", "_chr_order", "chr", "pos", "variant_id"],
            kind="mergesort",
        )
        return keyed.drop(columns="_chr_order")

    def identify_significant(
        self,
        df: pd.DataFrame,
    ) -> pd.DataFrame:
        """
        Identify genome-wide significant variants.

        Parameters
        ----------
        df : pd.DataFrame
            Harmonized summary statistics.

        Returns
        -------
        pd.DataFrame
            Significant variants in significance order.
        """
        sig_df = df[df["pval"] < self.p_threshold]
        sig_df = self.sort_by_significance(sig_df)

        logger.info(f"Found {len(sig_df):,} variants with p < {self.p_threshold:.1e}")

        return sig_df

    def clump_variants(
        self,
        sig_df: pd.DataFrame,
    ) -> Tuple[List[Locus], pd.DataFrame]:
        """
        Clump significant variants into non-overlapping loci.

        Uses a greedy algorithm per chromosome:
        1. Take the most significant unassigned variant as a lead
        2. Its locus spans lead +/- radius
        3. Less significant variants whose own interval would overlap an
           existing locus join that locus instead of starting a new one

        Parameters
        ----------
        sig_df : pd.DataFrame
            Significant variants.

        Returns
        -------
        tuple
            (loci ordered by lead significance, assignment table indexed
            like ``sig_df`` with ``locus_id``, ``is_lead`` and
            ``distance_to_lead``).
        """
        sig_df = self.sort_by_significance(sig_df)

        groups = [
            (chrom, group)
            for chrom, group in sig_df.groupby("chr", sort=False)
        ]
        groups.sort(key=lambda item: chromosome_sort_key(item[0]))

        args = [
            (
                chrom,
                group["pos"].to_numpy(dtype=np.int64),
                group["pval"].to_numpy(dtype=float),
                group["variant_id"].to_numpy(dtype=object),
                self.radius_bp,
            )
            for chrom, group in groups
        ]

        if self.n_workers > 1 and len(args) > 1:
            pool_cls = ProcessPoolExecutor if self.executor == "process" else ThreadPoolExecutor
            with pool_cls(max_workers=min(self.n_workers, len(args))) as pool:
                clumped = list(pool.map(_clump_chromosome, *zip(*args)))
        else:
            clumped = [_clump_chromosome(*a) for a in args]

        records = []
        parts = []
        for (chrom, group), (leads, assigned, is_lead) in zip(groups, clumped):
            ids = [make_locus_id(chrom, lead["lead_pos"]) for lead in leads]
            lead_pos = np.array([lead["lead_pos"] for lead in leads], dtype=np.int64)

            parts.append(pd.DataFrame(
                {
                    "locus_id": np.array(ids, dtype=object)[assigned],
                    "is_lead": is_lead,
                    "distance_to_lead": group["pos"].to_numpy(dtype=np.int64) - lead_pos[assigned],
                },
                index=group.index,
            ))
            for locus_id, lead in zip(ids, leads):
                records.append(dict(lead, locus_id=locus_id))

        records.sort(key=lambda r: (
            r["lead_pval"],
            chromosome_sort_key(r["chr"]),
            r["lead_pos"],
            r["lead_variant"],
        ))
        loci = [Locus(rank=i + 1, **r) for i, r in enumerate(records)]

        if parts:
            assignments = pd.concat(parts).loc[sig_df.index]
        else:
            assignments = pd.DataFrame(
                {
                    "locus_id": pd.Series(dtype=object),
                    "is_lead": pd.Series(dtype=bool),
                    "distance_to_lead": pd.Series(dtype=np.int64),
                },
                index=sig_df.index,
            )

        logger.info(f"Identified {len(loci)} independent loci (radius: {self.radius_bp:,} bp)")

        return loci, assignments

    def define_loci(
        self,
        df: pd.DataFrame,
    ) -> LocusResult:
        """
        Full pipeline to define loci from summary statistics.

        Parameters
        ----------
        df : pd.DataFrame
            Harmonized, validated summary statistics.

        Returns
        -------
        LocusResult
            Loci and a per-variant assignment for every input row.
        """
        logger.info("Defining loci from summary statistics")

        annotated = df.copy() if df.index.is_unique else df.reset_index(drop=True)

        sig_df = self.identify_significant(annotated)

        annotated["is_significant"] = annotated.index.isin(sig_df.index)
        annotated["locus_id"] = pd.Series(None, index=annotated.index, dtype=object)
        annotated["is_lead"] = False
        annotated["distance_to_lead"] = pd.Series(pd.NA, index=annotated.index, dtype="Int64")

        if len(sig_df) == 0:
            logger.warning("No genome-wide significant variants found")
            return LocusResult(loci=[], assignments=annotated)

        loci, assignments = self.clump_variants(sig_df)

        annotated.loc[assignments.index, "locus_id"] = assignments["locus_id"]
        annotated.loc[assignments.index, "is_lead"] = assignments["is_lead"]
        annotated.loc[assignments.index, "distance_to_lead"] = assignments["distance_to_lead"]

        return LocusResult(loci=loci, assignments=annotated)


def define_loci(
    df: pd.DataFrame,
    config: Optional[FinemapConfig] = None,
    **kwargs,
) -> LocusResult:
    """
    Convenience function to define loci.

    Parameters
    ----------
    df : pd.DataFrame
        Summary statistics.
    config : FinemapConfig, optional
        Configuration; keyword arguments override it.
    **kwargs
        Arguments for LocusDefinition.

    Returns
    -------
    LocusResult
        Defined loci and variant assignments.
    """
    if config is not None:
        definer = LocusDefinition.from_config(config, **kwargs)
    else:
        definer = LocusDefinition(**kwargs)
    return definer.define_loci(df)
