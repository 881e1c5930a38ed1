"""
Statistical functions for literature enrichment scoring.
"""

import logging
import math
import threading
from typing import Dict, Optional, Sequence, Tuple

import numba as nb
import numpy as np
import polars as pl
from tqdm.auto import tqdm

from pubscore.exceptions import (
    EmptyCountsError,
    EmptyInputError,
    InsufficientUniverseError,
    InvalidSimulationCount,
    SimulationCancelled,
)
from pubscore.utils import TQDM_KWARGS

logger = logging.getLogger(__name__)

UINT32_MOD = 2 ** 32

# Relative tolerance for treating a null score as tied with the observed score
TIE_TOLERANCE = 1e-9


#  Core numba-optimised functions for the resampling loop

@nb.njit
def _mean(arr):
    """Calculate mean of array using Numba"""
    if len(arr) == 0:
        return 0.0
    return np.sum(arr) / len(arr)

@nb.njit
def _std(arr, ddof=0):
    """Calculate standard deviation using Numba"""
    if len(arr) <= ddof:
        return 0.0
    mean = np.sum(arr) / len(arr)
    sq_diff = 0.0
    for i in range(len(arr)):
        diff = arr[i] - mean
        sq_diff += diff * diff
    return np.sqrt(sq_diff / (len(arr) - ddof))

@nb.njit
def _sample_without_replacement(pool_size, k, marks, stamp, out):
    """
    Draw k distinct indices from range(pool_size) with Floyd's algorithm.

    ``marks`` holds, for every pool index, the stamp of the draw that last
    picked it, so membership checks are O(1) without clearing the array
    between draws. ``stamp`` must differ from every earlier draw using the
    same ``marks``.
    """
    filled = 0
    for j in range(pool_size - k, pool_size):
        t = np.random.randint(0, j + 1)
        if marks[t] == stamp:
            t = j
        marks[t] = stamp
        out[filled] = t
        filled += 1

@nb.njit(parallel=True)
def _draw_panels(pool_size, k, start, n_draws, seed, n_chunks):
    """
    Draw n_draws panels of k distinct pool indices.

    Draw i is seeded with seed + start + i, so results do not depend on the
    number of threads or on how trials are split into batches.

    Returns:
        2D array of shape (n_draws, k)
    """
    panels = np.empty((n_draws, k), dtype=np.int64)
    chunk = (n_draws + n_chunks - 1) // n_chunks
    for c in nb.prange(n_chunks):
        marks = np.full(pool_size, -1, dtype=np.int64)
        lo = c * chunk
        hi = min(lo + chunk, n_draws)
        for i in range(lo, hi):
            np.random.seed((seed + start + i) % UINT32_MOD)
            _sample_without_replacement(pool_size, k, marks, i, panels[i])
    return panels

@nb.njit(parallel=True)
def _simulate_scores(gene_totals, k, start, n_draws, denominator, seed, n_chunks):
    """
    Score n_draws random panels of k genes.

    Uses the same draws as ``_draw_panels`` for the same arguments, but keeps
    only the panel score.

    Returns:
        Array of n_draws scores
    """
    pool_size = gene_totals.shape[0]
    scores = np.empty(n_draws, dtype=np.float64)
    chunk = (n_draws + n_chunks - 1) // n_chunks
    for c in nb.prange(n_chunks):
        marks = np.full(pool_size, -1, dtype=np.int64)
        panel = np.empty(k, dtype=np.int64)
        lo = c * chunk
        hi = min(lo + chunk, n_draws)
        for i in range(lo, hi):
            np.random.seed((seed + start + i) % UINT32_MOD)
            _sample_without_replacement(pool_size, k, marks, i, panel)
            total = 0.0
            for m in range(k):
                total += gene_totals[panel[m]]
            scores[i] = total / denominator
    return scores

@nb.njit(parallel=True)
def _calculate_significance_counts(observed_score: float, null_scores) -> int:
    """
    Count how many null scores are greater than or equal to the observed score.
    Uses parallel processing for large arrays.

    Args:
        observed_score: Observed score
        null_scores: Array of null distribution scores

    Returns:
        Count of scores >= observed
    """
    # For small arrays, direct counting is faster than parallelisation overhead
    if len(null_scores) < 10000:
        count = 0
        for i in range(len(null_scores)):
            if null_scores[i] >= observed_score:
                count += 1
        return count

    count = 0
    for i in nb.prange(len(null_scores)):
        if null_scores[i] >= observed_score:
            count += 1
    return count


def validate_max_score(max_score: float) -> float:
    """
    Check a per-pair cap.

    Args:
        max_score: Positive number, or math.inf for no cap

    Returns:
        The cap as a float
    """
    max_score = float(max_score)
    if math.isnan(max_score) or max_score <= 0:
        raise ValueError(f"max_score must be a positive number or inf, got {max_score}")
    return max_score


def compute_literature_score(
    counts: pl.DataFrame,
    n_genes: int,
    n_terms: int,
    max_score: float = math.inf
) -> float:
    """
    Compute the literature enrichment score of a counts table.

    Each gene/term count is capped at max_score, the capped counts are summed
    and the sum divided by n_genes * n_terms. Pairs missing from the table
    add nothing to the sum but still count in the denominator.

    Args:
        counts: DataFrame with gene, term and count columns
        n_genes: Number of genes scored
        n_terms: Number of terms scored
        max_score: Cap applied to every count, math.inf for no cap

    Returns:
        Literature score
    """
    max_score = validate_max_score(max_score)
    if n_genes <= 0 or n_terms <= 0:
        raise EmptyInputError("Cannot score an empty gene set or term set")
    if counts.height == 0:
        raise EmptyCountsError("No literature counts available; the score is undefined")

    values = counts["count"].to_numpy().astype(np.float64)
    capped_sum = np.minimum(values, max_score).sum()
    return float(capped_sum / (n_genes * n_terms))


def gene_totals(
    counts: pl.DataFrame,
    genes: Sequence[str],
    max_score: float = math.inf
) -> np.ndarray:
    """
    Sum capped counts per gene.

    Args:
        counts: DataFrame with gene, term and count columns
        genes: Genes to report, in output order
        max_score: Cap applied to every count before summing

    Returns:
        Array of per-gene totals aligned with genes (0 for genes without rows)
    """
    max_score = validate_max_score(max_score)
    capped = pl.col("count").cast(pl.Float64)
    if math.isfinite(max_score):
        capped = capped.clip(upper_bound=max_score)

    per_gene = counts.group_by("gene").agg(capped.sum().alias("total"))
    totals = dict(zip(per_gene["gene"].to_list(), per_gene["total"].to_list()))
    return np.array([totals.get(gene, 0.0) for gene in genes], dtype=np.float64)


def resolve_seed(seed: Optional[int] = None) -> int:
    """Return seed as a 32-bit value, drawing a fresh one if it is None."""
    if seed is None:
        return int(np.random.SeedSequence().generate_state(1)[0])
    return int(seed) % UINT32_MOD


def _check_sampling(pool_size: int, sample_size: int, nsim: int) -> None:
    if nsim is None or int(nsim) <= 0:
        raise InvalidSimulationCount(f"Number of simulations must be positive, got {nsim}")
    if sample_size <= 0:
        raise EmptyInputError("Sample size must be at least one gene")
    if pool_size < sample_size:
        raise InsufficientUniverseError(pool_size, sample_size)


def draw_null_panels(
    pool_size: int,
    sample_size: int,
    nsim: int,
    seed: Optional[int] = None,
    start: int = 0
) -> np.ndarray:
    """
    Draw random panels as indices into the universe pool.

    These are exactly the panels scored by ``simulate_null_scores`` with the
    same seed and start.

    Args:
        pool_size: Number of genes in the pool
        sample_size: Genes per panel
        nsim: Number of panels
        seed: Random seed
        start: Index of the first trial

    Returns:
        Integer array of shape (nsim, sample_size)
    """
    _check_sampling(pool_size, sample_size, nsim)
    return _draw_panels(pool_size, sample_size, start, int(nsim),
                        resolve_seed(seed), nb.get_num_threads())


def simulate_null_scores(
    totals: np.ndarray,
    sample_size: int,
    n_terms: int,
    nsim: int,
    seed: Optional[int] = None,
    start: int = 0
) -> np.ndarray:
    """
    Score random same-size panels drawn without replacement from the pool.

    Args:
        totals: Per-gene capped count totals of the pool
        sample_size: Genes per panel
        n_terms: Number of terms, part of the score denominator
        nsim: Number of panels
        seed: Random seed
        start: Index of the first trial

    Returns:
        Array of nsim null scores
    """
    totals = np.ascontiguousarray(totals, dtype=np.float64)
    _check_sampling(totals.shape[0], sample_size, nsim)
    denominator = float(sample_size * n_terms)
    return _simulate_scores(totals, sample_size, start, int(nsim), denominator,
                            resolve_seed(seed), nb.get_num_threads())


def build_null_distribution(
    totals: np.ndarray,
    sample_size: int,
    n_terms: int,
    nsim: int = 100000,
    seed: Optional[int] = None,
    batch_size: int = 10000,
    cancel_event: Optional[threading.Event] = None,
    show_progress: bool = False
) -> np.ndarray:
    """
    Build the null distribution of literature scores in batches.

    Cancellation is checked between batches; a cancelled run raises
    SimulationCancelled and returns nothing.

    Args:
        totals: Per-gene capped count totals of the pool
        sample_size: Genes per panel
        n_terms: Number of terms
        nsim: Number of simulations
        seed: Random seed; a fresh one is drawn if None
        batch_size: Simulations per batch
        cancel_event: Optional event checked between batches
        show_progress: Display a tqdm progress bar

    Returns:
        Array of nsim null scores
    """
    totals = np.ascontiguousarray(totals, dtype=np.float64)
    _check_sampling(totals.shape[0], sample_size, nsim)
    nsim = int(nsim)
    batch_size = max(1, int(batch_size))
    seed = resolve_seed(seed)

    logger.debug(f"Simulating {nsim} panels of {sample_size} genes from a pool of "
                 f"{totals.shape[0]} (seed={seed})")

    scores = np.empty(nsim, dtype=np.float64)
    with tqdm(total=nsim, desc="Simulations", unit="panel",
              disable=not show_progress, **TQDM_KWARGS) as pbar:
        for start in range(0, nsim, batch_size):
            if cancel_event is not None and cancel_event.is_set():
                raise SimulationCancelled(f"Simulation cancelled after {start} of {nsim} panels")
            n_draws = min(batch_size, nsim - start)
            scores[start:start + n_draws] = simulate_null_scores(
                totals, sample_size, n_terms, n_draws, seed=seed, start=start
            )
            pbar.update(n_draws)

    return scores


def calculate_significance(
    observed_score: float,
    null_scores: Sequence[float],
    alpha: float = 0.05
) -> Tuple[float, bool]:
    """
    Calculate significance of observed score against null distribution.

    Ties count as at least as extreme as the observed score. The observed
    and null scores sum the same counts in a different order, so scores
    within TIE_TOLERANCE (relative) of the observed score are ties.

    Args:
        observed_score: Observed literature score
        null_scores: Scores from random panels
        alpha: Significance level

    Returns:
        Tuple of (p-value, is_significant)
    """
    null_scores_array = np.asarray(null_scores, dtype=np.float64)
    if null_scores_array.size == 0:
        raise InvalidSimulationCount("Null scores array cannot be empty")

    observed_score = float(observed_score)
    threshold = observed_score - TIE_TOLERANCE * max(1.0, abs(observed_score))
    count_greater_equal = _calculate_significance_counts(threshold, null_scores_array)
    p_value = count_greater_equal / len(null_scores_array)

    return float(p_value), bool(p_value <= alpha)


def summarise_null_distribution(observed_score: float, null_scores: Sequence[float]) -> Dict[str, float]:
    """
    Describe the null distribution relative to the observed score.

    Args:
        observed_score: Observed literature score
        null_scores: Scores from random panels

    Returns:
        Dictionary with null mean and standard deviation, z-score and
        enrichment ratio (observed / null mean)
    """
    null_scores_array = np.asarray(null_scores, dtype=np.float64)
    if null_scores_array.size == 0:
        raise InvalidSimulationCount("Null scores array cannot be empty")

    null_mean = float(_mean(null_scores_array))
    null_std = float(_std(null_scores_array, ddof=1))
    z_score = (observed_score - null_mean) / null_std if null_std > 1e-10 else float('nan')
    ratio = observed_score / null_mean if null_mean > 0 else float('nan')

    return {
        'null_mean': null_mean,
        'null_std': null_std,
        'z_score': float(z_score),
        'enrichment_ratio': float(ratio),
        'nsim': int(null_scores_array.size),
    }
