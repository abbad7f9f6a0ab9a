"""
Logging utilities.

All module loggers live under the ``gwas_finemap`` namespace, so a single
:func:`setup_logger` call configures the whole package.
"""

import sys
import time
import logging
from pathlib import Path
from typing import Optional


ROOT_LOGGER = "gwas_finemap"

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logger(
    name: str = ROOT_LOGGER,
    log_file: Optional[str | Path] = None,
    level: str = "INFO",
    format_str: Optional[str] = None,
) -> logging.Logger:
    """
    Attach a console handler (and optionally a file handler) to a logger.

    Handlers from a previous call are closed and replaced.

    Parameters
    ----------
    name : str
        Logger name, the package root by default.
    log_file : str or Path, optional
        Also write records to this file.
    level : str
        Logging level name (DEBUG, INFO, WARNING, ERROR).
    format_str : str, optional
        Record format; :data:`DEFAULT_FORMAT` when omitted.

    Returns
    -------
    logging.Logger
        Configured logger.

    Raises
    ------
    ValueError
        If ``level`` is not a logging level name.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level}")

    logger = logging.getLogger(name)
    logger.setLevel(numeric_level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(format_str or DEFAULT_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """
    Get a logger in the package namespace.

    Parameters
    ----------
    name : str
        Logger name. Names outside the ``gwas_finemap`` namespace are
        nested under it.

    Returns
    -------
    logging.Logger
        Logger instance.
    """
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


class ProgressLogger:
    """
    Periodic progress records for a fixed number of work items, counting
    items that failed separately.
    """

    def __init__(
        self,
        total: int,
        desc: str = "Processing",
        logger: Optional[logging.Logger] = None,
        log_every: int = 100,
    ):
        """
        Parameters
        ----------
        total : int
            Number of items expected.
        desc : str
            Task label used in each record.
        logger : logging.Logger, optional
            Destination logger; the package root by default.
        log_every : int
            Emit a record every this many items (and on the last one).
        """
        self.total = total
        self.desc = desc
        self.logger = logger or get_logger()
        self.log_every = max(1, log_every)
        self.done = 0
        self.failed = 0
        self._started = time.monotonic()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._started

    def update(self, n: int = 1, failed: bool = False):
        """Mark ``n`` items finished; ``failed`` counts them as failures."""
        self.done += n
        if failed:
            self.failed += n

        if self.done % self.log_every == 0 or self.done == self.total:
            pct = 100 * self.done / self.total if self.total else 100.0
            rate = self.done / self.elapsed if self.elapsed > 0 else 0.0
            self.logger.info(
                f"{self.desc}: {self.done}/{self.total} ({pct:.1f}%), "
                f"{self.failed} failed, {rate:.1f}/s"
            )

    def close(self):
        self.logger.info(
            f"{self.desc} complete: {self.done - self.failed} succeeded, "
            f"{self.failed} failed in {self.elapsed:.1f}s"
        )
