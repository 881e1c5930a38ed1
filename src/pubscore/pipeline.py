"""Literature enrichment scoring sessions and their significance test."""

import hashlib
import logging
import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import polars as pl

from pubscore.data import (
    COUNTS_SCHEMA,
    LookupReport,
    build_counts_table,
    filter_ambiguous,
    normalise_symbols,
)
from pubscore.exceptions import (
    EmptyInputError,
    InsufficientUniverseError,
    InvalidSimulationCount,
    LookupCancelled,
)
from pubscore.provider import EntrezCountProvider, LiteratureCountProvider
from pubscore.stats import (
    build_null_distribution,
    calculate_significance,
    compute_literature_score,
    gene_totals,
    summarise_null_distribution,
    validate_max_score,
)

CacheKey = Tuple[str, Tuple[str, ...], bool]


def universe_identity(genes: Sequence[str]) -> str:
    """Order-independent digest of a set of gene symbols."""
    digest = hashlib.sha1()
    for gene in sorted(set(genes)):
        digest.update(gene.encode("utf-8"))
        digest.update(b"\n")
    return digest.hexdigest()


@dataclass
class UniverseCache:
    """Counts for every gene of a universe, valid for one key only.

    The key is (universe identity, sorted terms, ambiguous filter flag); a
    request with any other key needs a new cache.
    """
    key: CacheKey
    universe: List[str]
    genes: List[str]
    table: pl.DataFrame
    report: LookupReport

    @property
    def complete(self) -> bool:
        return not self.report.cancelled

    @property
    def pool(self) -> List[str]:
        """Genes with a successful lookup, in universe order."""
        succeeded = set(self.report.succeeded)
        return [gene for gene in self.genes if gene in succeeded]


class PubScore:
    """Literature enrichment of a gene set for a set of terms of interest.

    Creating the object looks up every gene/term pair and computes the
    observed literature score. ``test_score`` later compares that score
    against random gene panels of the same size drawn from a universe.
    """

    def __init__(
        self,
        genes: Sequence[str],
        terms_of_interest: Sequence[str],
        provider: Optional[LiteratureCountProvider] = None,
        max_workers: int = 3,
        show_progress: bool = True,
        cancel_event: Optional[threading.Event] = None,
    ):
        """Initialise the session and score the gene set.

        Args:
            genes: Gene symbols to score
            terms_of_interest: Terms related to the topic of interest
            provider: Literature count provider, PubMed E-utilities by default
            max_workers: Number of concurrent lookups
            show_progress: Display progress bars
            cancel_event: Optional event to stop the lookups early
        """
        self.logger = logging.getLogger(__name__)
        self.genes = normalise_symbols(genes, kind="gene")
        self.terms_of_interest = normalise_symbols(terms_of_interest, kind="term")
        self.provider = provider if provider is not None else EntrezCountProvider()
        self.max_workers = max_workers
        self.show_progress = show_progress

        self.logger.info(f"Initializing PubScore for {len(self.genes)} genes "
                         f"and {len(self.terms_of_interest)} terms")
        self.date = datetime.now()
        self.counts, self.lookup_report = build_counts_table(
            self.genes,
            self.terms_of_interest,
            self.provider,
            max_workers=max_workers,
            cancel_event=cancel_event,
            show_progress=show_progress,
            desc="Scoring genes",
        )
        if self.lookup_report.cancelled:
            raise LookupCancelled(
                f"Scoring cancelled with {len(self.lookup_report.skipped)} genes not looked up"
            )

        self.max_score = math.inf
        self.literature_score = compute_literature_score(
            self.counts, len(self.genes), len(self.terms_of_interest)
        )
        self.logger.info(f"Literature score: {self.literature_score:.4f}")

        self._universe_cache: Optional[UniverseCache] = None
        self.null_scores: Optional[np.ndarray] = None
        self.p_value: Optional[float] = None

    def __repr__(self) -> str:
        p_value = "untested" if self.p_value is None else f"{self.p_value:.4g}"
        return (f"PubScore(genes={len(self.genes)}, terms={len(self.terms_of_interest)}, "
                f"literature_score={self.literature_score:.4f}, p_value={p_value})")

    @property
    def all_counts(self) -> pl.DataFrame:
        """Counts of the universe used by the last significance test."""
        if self._universe_cache is None:
            return pl.DataFrame(schema=COUNTS_SCHEMA)
        return self._universe_cache.table

    @property
    def total_genes(self) -> Optional[List[str]]:
        """Universe of the last significance test, None before any test."""
        if self._universe_cache is None:
            return None
        return list(self._universe_cache.universe)

    @property
    def universe_report(self) -> Optional[LookupReport]:
        if self._universe_cache is None:
            return None
        return self._universe_cache.report

    def _cache_key(self, universe: Sequence[str], remove_ambiguous: bool) -> CacheKey:
        return (
            universe_identity(universe),
            tuple(sorted(self.terms_of_interest)),
            bool(remove_ambiguous),
        )

    def _universe_counts(
        self,
        universe: List[str],
        candidates: List[str],
        remove_ambiguous: bool,
        cancel_event: Optional[threading.Event],
        show_progress: bool,
    ) -> UniverseCache:
        """Return the universe cache for this request, building it if needed."""
        key = self._cache_key(universe, remove_ambiguous)
        cache = self._universe_cache

        if cache is not None and cache.key == key and cache.complete:
            self.logger.info(f"Reusing cached counts for {len(cache.genes)} universe genes")
            return cache

        if cache is not None and cache.key == key:
            pending = cache.report.skipped
            self.logger.info(f"Resuming universe lookups for {len(pending)} remaining genes")
            table, report = build_counts_table(
                pending, self.terms_of_interest, self.provider,
                max_workers=self.max_workers, cancel_event=cancel_event,
                show_progress=show_progress, desc="Universe lookups",
            )
            cache = UniverseCache(
                key=key,
                universe=cache.universe,
                genes=cache.genes,
                table=pl.concat([cache.table, table]),
                report=cache.report.merge(report),
            )
        else:
            if cache is not None:
                self.logger.info("Universe, terms or ambiguous filter changed; rebuilding universe counts")
            self.logger.info(f"Running PubScore for all {len(candidates)} universe genes. Might take a while!")
            start_time = time.time()
            table, report = build_counts_table(
                candidates, self.terms_of_interest, self.provider,
                max_workers=self.max_workers, cancel_event=cancel_event,
                show_progress=show_progress, desc="Universe lookups",
            )
            cache = UniverseCache(key=key, universe=universe, genes=candidates,
                                  table=table, report=report)
            self.logger.info(f"Universe lookups finished in {time.time() - start_time:.2f} seconds "
                             f"({len(report.succeeded)} succeeded, {report.n_failed} failed)")

        # Partial results are kept so a later call with the same key can resume
        self._universe_cache = cache
        if not cache.complete:
            raise LookupCancelled(
                f"Universe lookups cancelled with {len(cache.report.skipped)} genes not looked up"
            )
        return cache

    def test_score(
        self,
        total_genes: Sequence[str],
        max_score: float = math.inf,
        remove_ambiguous: bool = True,
        nsim: int = 100000,
        seed: Optional[int] = None,
        batch_size: int = 10000,
        show_progress: Optional[bool] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> "PubScore":
        """Test the literature score against random panels from a universe.

        Args:
            total_genes: All the genes that could have been selected, usually
                every gene measured in the experiment
            max_score: Maximum count of a gene/term pair. Reduces the
                contribution of genes with very large literatures.
            remove_ambiguous: Remove ambiguously named genes (such as "MARS")
                from the sampled panels and the universe
            nsim: Number of simulations
            seed: Random seed for reproducible simulations
            batch_size: Simulations between progress and cancellation checks
            show_progress: Display progress bars, defaults to the session setting
            cancel_event: Optional event to stop lookups or simulations early

        Returns:
            This session with p_value and null_scores set
        """
        if nsim is None or int(nsim) <= 0:
            raise InvalidSimulationCount(f"Number of simulations must be positive, got {nsim}")
        nsim = int(nsim)
        max_score = validate_max_score(max_score)
        show_progress = self.show_progress if show_progress is None else show_progress

        universe = normalise_symbols(total_genes, kind="universe gene")
        sample_genes = filter_ambiguous(self.genes, enabled=remove_ambiguous)
        sample_size = len(sample_genes)
        if sample_size == 0:
            raise EmptyInputError("No genes left to sample after removing ambiguous genes")

        candidates = filter_ambiguous(universe, enabled=remove_ambiguous)
        if len(candidates) < sample_size:
            raise InsufficientUniverseError(len(candidates), sample_size)

        self.p_value = None
        self.null_scores = None

        cache = self._universe_counts(universe, candidates, remove_ambiguous,
                                      cancel_event, show_progress)
        pool = cache.pool
        if len(pool) < sample_size:
            raise InsufficientUniverseError(len(pool), sample_size)

        literature_score = compute_literature_score(
            self.counts, len(self.genes), len(self.terms_of_interest), max_score
        )

        totals = gene_totals(cache.table, pool, max_score)
        self.logger.info(f"Running {nsim} simulations of {sample_size} genes "
                         f"drawn from {len(pool)} universe genes")
        null_scores = build_null_distribution(
            totals,
            sample_size,
            len(self.terms_of_interest),
            nsim=nsim,
            seed=seed,
            batch_size=batch_size,
            cancel_event=cancel_event,
            show_progress=show_progress,
        )

        p_value, _ = calculate_significance(literature_score, null_scores)
        self.max_score = max_score
        self.literature_score = literature_score
        self.null_scores = null_scores
        self.p_value = p_value
        self.logger.info(f"The p-value by simulation is: {p_value:.4g}")
        return self

    def summary(self) -> Dict[str, Any]:
        """Plain dictionary of the session results."""
        summary = {
            'date': self.date.isoformat(timespec='seconds'),
            'genes': len(self.genes),
            'terms_of_interest': list(self.terms_of_interest),
            'literature_score': self.literature_score,
            'max_score': 'inf' if math.isinf(self.max_score) else self.max_score,
            'p_value': self.p_value,
            'lookups': self.lookup_report.to_dict(),
        }
        if self._universe_cache is not None:
            summary['universe_genes'] = len(self._universe_cache.universe)
            summary['universe_lookups'] = self._universe_cache.report.to_dict()
        if self.null_scores is not None:
            summary['null_distribution'] = summarise_null_distribution(
                self.literature_score, self.null_scores
            )
        return summary


def pubscore(
    terms_of_interest: Sequence[str],
    genes: Sequence[str],
    provider: Optional[LiteratureCountProvider] = None,
    **kwargs,
) -> PubScore:
    """Score a gene set against terms of interest.

    Args:
        terms_of_interest: Terms related to the topic of interest
        genes: Gene symbols to score
        provider: Literature count provider, PubMed E-utilities by default
        **kwargs: Passed on to PubScore

    Returns:
        A scored PubScore session
    """
    return PubScore(genes, terms_of_interest, provider=provider, **kwargs)


def evaluate_significance(pub: PubScore, total_genes: Sequence[str], **kwargs) -> PubScore:
    """Run the significance test of a session; see ``PubScore.test_score``."""
    return pub.test_score(total_genes, **kwargs)
