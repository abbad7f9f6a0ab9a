"""
Input/Output utilities for summary statistics and fine-mapping results.
"""

import json
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

import pandas as pd
import numpy as np


def _infer_sep(filepath: Path) -> str:
    name = filepath.name.lower()
    if name.endswith(".gz"):
        name = name[:-3]
    return "," if name.endswith(".csv") else "\t"


def read_sumstats(
    filepath: str | Path,
    sep: Optional[str] = None,
    compression: str = "infer",
    usecols: Optional[List[str]] = None,
    dtype: Optional[Dict[str, Any]] = None,
    nrows: Optional[int] = None,
    chunksize: Optional[int] = None,
) -> Union[pd.DataFrame, Iterator[pd.DataFrame]]:
    """
    Read GWAS summary statistics file.

    Parameters
    ----------
    filepath : str or Path
        Path to the summary statistics file.
    sep : str, optional
        Column separator. Inferred from the suffix (``.csv`` vs anything
        else) when omitted.
    compression : str
        Compression type ('gzip', 'infer', None).
    usecols : list, optional
        Columns to read.
    dtype : dict, optional
        Column data types.
    nrows : int, optional
        Number of rows to read.
    chunksize : int, optional
        If given, return an iterator of DataFrames of this many rows.

    Returns
    -------
    pd.DataFrame or iterator of pd.DataFrame
        Summary statistics.
    """
    filepath = Path(filepath)

    if not filepath.exists():
        raise FileNotFoundError(f"File not found: {filepath}")

    if sep is None:
        sep = _infer_sep(filepath)

    # Chromosome and identifier columns stay strings
    default_dtype = {
        "chr": str,
        "chrom": str,
        "chromosome": str,
        "CHR": str,
        "rsid": str,
        "SNP": str,
        "variant_id": str,
    }

    if dtype:
        default_dtype.update(dtype)

    return pd.read_csv(
        filepath,
        sep=sep,
        compression=compression,
        usecols=usecols,
        dtype=default_dtype,
        nrows=nrows,
        chunksize=chunksize,
        low_memory=False,
    )


def read_header(filepath: str | Path, sep: Optional[str] = None) -> List[str]:
    """Return the column names of a delimited file without reading rows."""
    return list(read_sumstats(filepath, sep=sep, nrows=0).columns)


def write_table(
    df: pd.DataFrame,
    filepath: str | Path,
    sep: str = "\t",
    index: bool = False,
) -> Path:
    """
    Write a result table, gzip-compressed when the path ends in ``.gz``.

    Parameters
    ----------
    df : pd.DataFrame
        Table to write.
    filepath : str or Path
        Output file path.
    sep : str
        Column separator.
    index : bool
        Whether to write row index.

    Returns
    -------
    Path
        Path written.
    """
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    compression = 'gzip' if str(filepath).endswith('.gz') else None

    df.to_csv(
        filepath,
        sep=sep,
        compression=compression,
        index=index,
    )

    return filepath


def to_jsonable(obj: Any) -> Any:
    """
    Convert numpy scalars and arrays, paths and non-finite floats into
    plain JSON values (NaN and inf become ``null``).
    """
    if isinstance(obj, dict):
        return {str(k): to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [to_jsonable(v) for v in obj]
    if isinstance(obj, np.ndarray):
        return [to_jsonable(v) for v in obj.tolist()]
    if isinstance(obj, (bool, np.bool_)):
        return bool(obj)
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, (float, np.floating)):
        return float(obj) if np.isfinite(obj) else None
    if isinstance(obj, Path):
        return str(obj)
    return obj


def write_json(
    data: Union[Dict, List],
    filepath: str | Path,
    indent: int = 2,
) -> Path:
    """
    Write data to a JSON file, creating parent directories.

    Parameters
    ----------
    data : dict or list
        Data to write; passed through :func:`to_jsonable`.
    filepath : str or Path
        Output file path.
    indent : int
        JSON indentation level.

    Returns
    -------
    Path
        Path written.
    """
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    with open(filepath, 'w') as f:
        json.dump(to_jsonable(data), f, indent=indent, allow_nan=False)

    return filepath


def read_json(filepath: str | Path) -> Union[Dict, List]:
    with open(filepath, 'r') as f:
        return json.load(f)
