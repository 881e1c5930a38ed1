#!/usr/bin/env python3
"""
Command line interface for literature enrichment scoring.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import numba as nb
import tomli

from .config import PubScoreConfig
from .data import load_gene_list
from .exceptions import PubScoreError
from .pipeline import pubscore
from .provider import EntrezCountProvider, TableCountProvider
from .utils import setup_logging


def parse_args(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Score a gene set against literature terms and test it against random panels"
    )

    parser.add_argument(
        "config_file",
        type=str,
        help="Path to TOML configuration file"
    )

    # Input overrides
    input_group = parser.add_argument_group("Input overrides")
    input_group.add_argument(
        "--genes",
        type=str,
        help="Override gene list file"
    )
    input_group.add_argument(
        "--universe",
        type=str,
        help="Override universe gene list file"
    )
    input_group.add_argument(
        "--terms",
        type=str,
        nargs="+",
        help="Override terms of interest"
    )
    input_group.add_argument(
        "--counts-file",
        type=str,
        help="Read counts from a gene/term/count TSV instead of querying PubMed"
    )

    # Analysis parameter overrides
    analysis_group = parser.add_argument_group("Analysis parameter overrides")
    analysis_group.add_argument(
        "--nsim",
        type=int,
        help="Override number of simulations"
    )
    analysis_group.add_argument(
        "--max-score",
        type=float,
        help="Override maximum count per gene/term pair"
    )
    analysis_group.add_argument(
        "--keep-ambiguous",
        action="store_true",
        help="Keep ambiguously named genes in the simulations"
    )
    analysis_group.add_argument(
        "--seed",
        type=int,
        help="Override random seed"
    )
    analysis_group.add_argument(
        "--num-threads",
        type=int,
        help="Override number of simulation threads"
    )

    # Output overrides
    output_group = parser.add_argument_group("Output overrides")
    output_group.add_argument(
        "--log-dir",
        type=str,
        help="Write a log file to this directory"
    )
    output_group.add_argument(
        "--no-progress",
        action="store_true",
        help="Disable progress bars"
    )
    output_group.add_argument(
        "--plot",
        type=str,
        help="Save a plot of the null distribution to this file"
    )

    return parser.parse_args(argv)


def update_config(config: dict, args: argparse.Namespace) -> dict:
    """Update configuration with command line overrides."""
    for section in ('query', 'universe', 'analysis', 'entrez', 'output'):
        config.setdefault(section, {})

    if args.genes:
        config['query']['genes_file'] = args.genes
        config['query'].pop('genes', None)
    if args.terms:
        config['query']['terms'] = args.terms
    if args.universe:
        config['universe']['genes_file'] = args.universe
        config['universe'].pop('genes', None)
    if args.counts_file:
        config['entrez']['counts_file'] = args.counts_file

    if args.nsim is not None:
        config['analysis']['nsim'] = args.nsim
    if args.max_score is not None:
        config['analysis']['max_score'] = args.max_score
    if args.keep_ambiguous:
        config['analysis']['remove_ambiguous'] = False
    if args.seed is not None:
        config['analysis']['seed'] = args.seed
    if args.num_threads is not None:
        config['analysis']['num_threads'] = args.num_threads

    if args.log_dir:
        config['output']['log_dir'] = args.log_dir

    return config


def _resolve_genes(genes: Optional[List[str]], genes_file: Optional[str]) -> List[str]:
    return list(genes) if genes else load_gene_list(genes_file)


def run(config: PubScoreConfig, show_progress: bool = True, plot_path: Optional[str] = None) -> dict:
    """Score the configured gene set and, if a universe is configured, test it."""
    if config.counts_file:
        provider = TableCountProvider.from_file(config.counts_file)
    else:
        provider = EntrezCountProvider(**config.get_provider_kwargs())

    if config.num_threads:
        nb.set_num_threads(min(int(config.num_threads), nb.config.NUMBA_NUM_THREADS))

    genes = _resolve_genes(config.genes, config.genes_file)
    pub = pubscore(
        config.terms,
        genes,
        provider=provider,
        max_workers=config.max_workers,
        show_progress=show_progress,
    )

    if config.has_universe:
        universe = _resolve_genes(config.universe_genes, config.universe_file)
        pub.test_score(
            universe,
            max_score=config.max_score,
            remove_ambiguous=config.remove_ambiguous,
            nsim=config.nsim,
            seed=config.seed,
            batch_size=config.batch_size,
        )
        if plot_path:
            from .visualise import plot_null_distribution
            fig = plot_null_distribution(pub.null_scores, pub.literature_score, pub.p_value)
            fig.savefig(plot_path, dpi=150)
            logging.info(f"Saved null distribution plot to {plot_path}")
    else:
        logging.info("No universe configured; skipping the significance test")

    return pub.summary()


def main(argv: Optional[List[str]] = None):
    """Main entry point for the CLI."""
    args = parse_args(argv)

    try:
        with open(args.config_file, 'rb') as f:
            raw_config = tomli.load(f)
    except Exception as e:
        print(f"Error loading configuration file: {str(e)}", file=sys.stderr)
        sys.exit(1)

    raw_config = update_config(raw_config, args)

    try:
        config = PubScoreConfig.from_dict(raw_config)
    except ValueError as e:
        print(f"Invalid configuration: {str(e)}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.get_log_dir())
    logging.info(f"Using configuration file: {args.config_file}")

    try:
        summary = run(config, show_progress=not args.no_progress, plot_path=args.plot)
    except (PubScoreError, ValueError, FileNotFoundError) as e:
        logging.error(f"PubScore failed: {str(e)}")
        sys.exit(1)

    print(json.dumps(summary, indent=2))


if __name__ == "__main__":
    main()
