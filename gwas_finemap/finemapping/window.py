"""
Window Extraction

Streams summary statistics from a data source and collects every variant
inside each locus window.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterator, List, Optional

import numpy as np
import pandas as pd
import pyarrow.dataset as ds

from ..harmonization.harmonizer import STANDARD_COLUMNS, SumstatsHarmonizer
from ..harmonization.qc import VARIANT_KEY
from ..utils.config import ColumnMapping
from ..utils.io import read_header, read_sumstats
from ..utils.logging import get_logger
from .locus import Locus


logger = get_logger("window")


class SumstatsSource(ABC):
    """
    Read-only access to harmonized summary statistics.

    Implementations yield chunks with the standard columns and must be
    safe to iterate from several threads at once.
    """

    @abstractmethod
    def iter_chunks(
        self,
        chrom: Optional[str] = None,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> Iterator[pd.DataFrame]:
        """
        Yield harmonized chunks, optionally restricted to a region.

        Parameters
        ----------
        chrom : str, optional
            Standardized chromosome to keep.
        start, end : int, optional
            Closed position range to keep.
        """

    def fetch(
        self,
        chrom: Optional[str] = None,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> pd.DataFrame:
        """Materialize a region as one DataFrame."""
        chunks = [c for c in self.iter_chunks(chrom, start, end) if len(c)]
        if not chunks:
            return empty_sumstats()
        return pd.concat(chunks, ignore_index=True)


def empty_sumstats() -> pd.DataFrame:
    return pd.DataFrame({c: pd.Series(dtype=object) for c in STANDARD_COLUMNS})


def filter_region(
    df: pd.DataFrame,
    chrom: Optional[str] = None,
    start: Optional[int] = None,
    end: Optional[int] = None,
) -> pd.DataFrame:
    """Keep rows on ``chrom`` with ``start <= pos <= end``."""
    mask = pd.Series(True, index=df.index)
    if chrom is not None:
        mask &= df["chr"] == chrom
    if start is not None:
        mask &= df["pos"] >= start
    if end is not None:
        mask &= df["pos"] <= end
    return df[mask.fillna(False).astype(bool)]


class DataFrameSource(SumstatsSource):
    """
    In-memory source, chunked to mimic streaming.
    """

    def __init__(
        self,
        df: pd.DataFrame,
        columns: Optional[ColumnMapping] = None,
        chunksize: int = 500_000,
        require_sample_size: bool = False,
    ):
        harmonizer = SumstatsHarmonizer(columns=columns, require_sample_size=require_sample_size)
        self.df = harmonizer.harmonize(df).reset_index(drop=True)
        self.chunksize = chunksize

    def iter_chunks(self, chrom=None, start=None, end=None):
        region = filter_region(self.df, chrom, start, end)
        for offset in range(0, len(region), self.chunksize):
            yield region.iloc[offset:offset + self.chunksize].copy()


class DelimitedFileSource(SumstatsSource):
    """
    Tab/comma-delimited (optionally gzipped) summary statistics file read
    in chunks with pandas.

    The column mapping is resolved from the header on construction, so a
    schema error surfaces before any work starts.
    """

    def __init__(
        self,
        filepath: str | Path,
        columns: Optional[ColumnMapping] = None,
        chunksize: int = 500_000,
        sep: Optional[str] = None,
        require_sample_size: bool = False,
    ):
        self.filepath = Path(filepath)
        self.chunksize = chunksize
        self.sep = sep
        self.harmonizer = SumstatsHarmonizer(columns=columns, require_sample_size=require_sample_size)
        self.column_map = self.harmonizer.resolve_columns(read_header(self.filepath, sep=sep))

    def _string_columns(self):
        # A numeric chromosome column with a missing value would parse as float
        names = [self.column_map[key] for key in ("chr", "variant_id") if key in self.column_map]
        return {name: str for name in names}

    def iter_chunks(self, chrom=None, start=None, end=None):
        reader = read_sumstats(
            self.filepath,
            sep=self.sep,
            usecols=sorted(set(self.column_map.values())),
            dtype=self._string_columns(),
            chunksize=self.chunksize,
        )
        with reader:
            for raw in reader:
                chunk = self.harmonizer.harmonize(raw, self.column_map)
                yield filter_region(chunk, chrom, start, end)


class ParquetSource(SumstatsSource):
    """
    Parquet file or directory scanned with pyarrow, pushing position
    filters down to the reader.
    """

    def __init__(
        self,
        path: str | Path,
        columns: Optional[ColumnMapping] = None,
        batch_size: int = 500_000,
        require_sample_size: bool = False,
    ):
        self.path = Path(path)
        if not self.path.exists():
            raise FileNotFoundError(f"File not found: {self.path}")
        self.batch_size = batch_size
        self.dataset = ds.dataset(str(self.path), format="parquet")
        self.harmonizer = SumstatsHarmonizer(columns=columns, require_sample_size=require_sample_size)
        self.column_map = self.harmonizer.resolve_columns(self.dataset.schema.names)

    def iter_chunks(self, chrom=None, start=None, end=None):
        pos_field = ds.field(self.column_map["pos"])
        expression = None
        if start is not None:
            expression = pos_field >= start
        if end is not None:
            upper = pos_field <= end
            expression = upper if expression is None else expression & upper

        scanner = self.dataset.scanner(
            columns=sorted(set(self.column_map.values())),
            filter=expression,
            batch_size=self.batch_size,
        )
        for batch in scanner.to_batches():
            if batch.num_rows == 0:
                continue
            chunk = self.harmonizer.harmonize(batch.to_pandas(), self.column_map)
            yield filter_region(chunk, chrom, start, end)


class WindowExtractor:
    """
    Collects all variants within each locus window from a source.
    """

    def __init__(self, source: SumstatsSource):
        """
        Parameters
        ----------
        source : SumstatsSource
            Summary statistics to read from.
        """
        self.source = source

    @staticmethod
    def _finalize(window: pd.DataFrame, locus_id: str) -> pd.DataFrame:
        window = window.drop_duplicates(subset=VARIANT_KEY, keep="first")
        window = window.sort_values("pos", kind="mergesort").reset_index(drop=True)
        window.insert(0, "locus_id", locus_id)
        return window

    def extract(self, locus: Locus) -> pd.DataFrame:
        """
        All variants within one locus window, tagged with its ``locus_id``.

        Parameters
        ----------
        locus : Locus
            Locus to extract.

        Returns
        -------
        pd.DataFrame
            Window variants (possibly empty).
        """
        window = self.source.fetch(locus.chr, locus.start, locus.end)
        return self._finalize(window, locus.locus_id)

    def extract_all(self, loci: List[Locus]) -> Dict[str, pd.DataFrame]:
        """
        Extract every locus window in a single pass over the source.

        Parameters
        ----------
        loci : list of Locus
            Loci with non-overlapping windows per chromosome.

        Returns
        -------
        dict
            locus_id -> window variants. Every locus has an entry, empty
            when no variant fell inside its window.
        """
        by_chrom: Dict[str, List[Locus]] = {}
        for locus in loci:
            by_chrom.setdefault(locus.chr, []).append(locus)

        index = {}
        for chrom, chrom_loci in by_chrom.items():
            chrom_loci = sorted(chrom_loci, key=lambda l: l.start)
            index[chrom] = (
                np.array([l.start for l in chrom_loci], dtype=np.int64),
                np.array([l.end for l in chrom_loci], dtype=np.int64),
                np.array([l.locus_id for l in chrom_loci], dtype=object),
            )

        pieces: Dict[str, List[pd.DataFrame]] = {l.locus_id: [] for l in loci}

        for chunk in self.source.iter_chunks():
            chunk = chunk[chunk["chr"].isin(list(index)) & chunk["pos"].notna()]
            for chrom, rows in chunk.groupby("chr", sort=False):
                starts, ends, ids = index[chrom]
                pos = rows["pos"].to_numpy(dtype=np.int64)

                # Windows are disjoint, so the candidate is the last start <= pos
                slot = np.searchsorted(starts, pos, side="right") - 1
                inside = slot >= 0
                inside[inside] &= pos[inside] <= ends[slot[inside]]

                if not inside.any():
                    continue

                hits = rows[inside]
                for locus_id, window in hits.groupby(ids[slot[inside]], sort=False):
                    pieces[locus_id].append(window)

        windows = {}
        for locus in loci:
            parts = pieces[locus.locus_id]
            window = pd.concat(parts, ignore_index=True) if parts else empty_sumstats()
            windows[locus.locus_id] = self._finalize(window, locus.locus_id)

        n_empty = sum(1 for w in windows.values() if len(w) == 0)
        logger.info(
            f"Extracted windows for {len(loci)} loci "
            f"({sum(len(w) for w in windows.values()):,} variants, {n_empty} empty)"
        )

        return windows
