"""
CLI Module for GWAS locus definition and fine-mapping
"""

import argparse
import sys

from .harmonization.harmonizer import SchemaError
from .pipeline import FinemapPipeline, open_source
from .utils.config import FinemapConfig
from .utils.logging import setup_logger


def _add_common_arguments(parser: argparse.ArgumentParser):
    parser.add_argument("--sumstats", required=True, help="Summary statistics (TSV/CSV[.gz] or parquet)")
    parser.add_argument("--output", required=True, help="Output directory")
    parser.add_argument("--config", help="YAML configuration file")
    parser.add_argument("--p-threshold", type=float, help="Significance threshold (default 5e-8)")
    parser.add_argument("--radius-kb", type=float, help="Locus half-width in kb (default 250)")
    parser.add_argument("--genome-build", choices=["GRCh37", "GRCh38"], help="Genome build")
    parser.add_argument("--workers", type=int, help="Worker pool size (default: all cores)")
    parser.add_argument("--executor", choices=["thread", "process"], help="Worker pool type")
    parser.add_argument("--chunksize", type=int, help="Rows per streamed chunk")
    parser.add_argument(
        "--column",
        action="append",
        default=[],
        metavar="FIELD=NAME",
        help="Input column for a standard field, e.g. --column beta=Effect (repeatable)",
    )
    parser.add_argument("--no-qc", action="store_true", help="Skip summary QC metrics")
    parser.add_argument("--log-file", help="Also log to this file")
    parser.add_argument(
        "--log-level",
        default="INFO",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )


def _parse_columns(pairs):
    columns = {}
    for pair in pairs:
        field_name, sep, column = pair.partition("=")
        if not sep or not field_name or not column:
            raise ValueError(f"Invalid --column '{pair}', expected FIELD=NAME")
        columns[field_name.strip()] = column.strip()
    return columns


def build_config(args: argparse.Namespace) -> FinemapConfig:
    """Merge the YAML configuration (if any) with command-line overrides."""
    config = FinemapConfig.from_yaml(args.config) if args.config else FinemapConfig()

    overrides = {
        "p_threshold": args.p_threshold,
        "locus_radius_bp": int(round(args.radius_kb * 1000)) if args.radius_kb is not None else None,
        "genome_build": args.genome_build,
        "n_workers": args.workers,
        "executor": args.executor,
        "chunksize": args.chunksize,
        "prior_variance": getattr(args, "prior_variance", None),
        "coverage": getattr(args, "coverage", None),
        "variance_source": getattr(args, "variance_source", None),
        "locus_timeout": getattr(args, "timeout", None),
    }
    if args.no_qc:
        overrides["run_qc"] = False

    columns = _parse_columns(args.column)
    if columns:
        merged = config.columns.explicit()
        merged.update(columns)
        overrides["columns"] = merged

    return config.replace(**overrides)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gwas-finemap",
        description="Locus definition and ABF fine-mapping of GWAS summary statistics",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Define loci only
    gwas-finemap loci --sumstats ldl.tsv.gz --output results/

    # Define loci and fine-map them
    gwas-finemap finemap --sumstats ldl.tsv.gz --output results/ --coverage 0.99

    # Non-standard column names
    gwas-finemap finemap --sumstats cad.tsv --output results/ \\
        --column beta=Effect --column se=StdErr --column pval=P-value
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    loci_parser = subparsers.add_parser("loci", help="Define independent loci")
    _add_common_arguments(loci_parser)

    finemap_parser = subparsers.add_parser("finemap", help="Define loci and compute credible sets")
    _add_common_arguments(finemap_parser)
    finemap_parser.add_argument("--prior-variance", type=float, help="Prior variance W (default 0.04)")
    finemap_parser.add_argument("--coverage", type=float, help="Credible set coverage (default 0.95)")
    finemap_parser.add_argument(
        "--variance-source",
        choices=["se", "neff"],
        help="Variance of beta from SE or from effective sample size",
    )
    finemap_parser.add_argument("--timeout", type=float, help="Per-locus timeout in seconds")

    return parser


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    logger = setup_logger(log_file=args.log_file, level=args.log_level)

    try:
        config = build_config(args)
        source = open_source(args.sumstats, config)
    except (SchemaError, ValueError, FileNotFoundError) as e:
        logger.error(str(e))
        sys.exit(2)

    pipeline = FinemapPipeline(config)

    if args.command == "loci":
        pipeline.define_loci(source, output_dir=args.output)

    elif args.command == "finemap":
        pipeline.run(source, output_dir=args.output)

    return 0


if __name__ == "__main__":
    main()
