"""
Plots of literature counts and null distributions.
"""

from typing import Optional, Sequence

import matplotlib.pyplot as plt
import numpy as np
import polars as pl
import seaborn as sns


def counts_matrix(
    counts: pl.DataFrame,
    genes: Optional[Sequence[str]] = None,
    terms: Optional[Sequence[str]] = None
) -> np.ndarray:
    """
    Reshape a long-form counts table into a gene x term matrix.

    Pairs without a count are NaN, not zero.

    Args:
        counts: DataFrame with gene, term and count columns
        genes: Row order, defaults to order of first appearance
        terms: Column order, defaults to order of first appearance

    Returns:
        2D float array of shape (len(genes), len(terms))
    """
    if genes is None:
        genes = counts["gene"].unique(maintain_order=True).to_list()
    if terms is None:
        terms = counts["term"].unique(maintain_order=True).to_list()

    row = {gene: i for i, gene in enumerate(genes)}
    col = {term: j for j, term in enumerate(terms)}
    matrix = np.full((len(genes), len(terms)), np.nan)
    for gene, term, hits in counts.select(["gene", "term", "count"]).iter_rows():
        if gene in row and term in col:
            matrix[row[gene], col[term]] = hits
    return matrix


def plot_literature_heatmap(
    counts: pl.DataFrame,
    genes: Optional[Sequence[str]] = None,
    terms: Optional[Sequence[str]] = None,
    max_score: Optional[float] = None,
    ax: Optional[plt.Axes] = None,
    cmap: str = "Reds"
) -> plt.Figure:
    """
    Heatmap of literature counts per gene and term.

    Args:
        counts: DataFrame with gene, term and count columns
        genes: Genes to show, in row order
        terms: Terms to show, in column order
        max_score: Upper limit of the colour scale
        ax: Axes to draw on; a new figure is created if None
        cmap: Colour map name

    Returns:
        The matplotlib figure
    """
    if counts.height == 0:
        raise ValueError("Input data cannot be empty")

    if genes is None:
        genes = counts["gene"].unique(maintain_order=True).to_list()
    if terms is None:
        terms = counts["term"].unique(maintain_order=True).to_list()
    matrix = counts_matrix(counts, genes, terms)

    if ax is None:
        fig, ax = plt.subplots(figsize=(max(4, 0.8 * len(terms) + 2), max(3, 0.35 * len(genes) + 1)))
    else:
        fig = ax.figure

    sns.heatmap(
        matrix,
        mask=np.isnan(matrix),
        vmin=0,
        vmax=max_score,
        cmap=cmap,
        annot=len(genes) * len(terms) <= 400,
        fmt=".0f",
        xticklabels=list(terms),
        yticklabels=list(genes),
        ax=ax,
    )
    ax.set_xlabel("Term")
    ax.set_ylabel("Gene")
    ax.set_title("Literature counts")
    fig.tight_layout()
    return fig


def plot_null_distribution(
    null_scores: Sequence[float],
    observed_score: float,
    p_value: Optional[float] = None,
    bins: int = 50,
    ax: Optional[plt.Axes] = None
) -> plt.Figure:
    """
    Histogram of null literature scores with the observed score marked.

    Args:
        null_scores: Scores from random panels
        observed_score: Observed literature score
        p_value: Empirical p-value to show in the legend
        bins: Number of histogram bins
        ax: Axes to draw on; a new figure is created if None

    Returns:
        The matplotlib figure
    """
    null_scores = np.asarray(null_scores, dtype=np.float64)
    if null_scores.size == 0:
        raise ValueError("Null scores array cannot be empty")

    if ax is None:
        fig, ax = plt.subplots(figsize=(6, 4))
    else:
        fig = ax.figure

    sns.histplot(null_scores, bins=bins, color="grey", ax=ax)
    label = f"Observed = {observed_score:.3g}"
    if p_value is not None:
        label += f" (p = {p_value:.3g})"
    ax.axvline(observed_score, color="#B30000", linestyle="--", linewidth=2, label=label)
    ax.set_xlabel("Literature score of random panels")
    ax.set_ylabel("Simulations")
    ax.legend()
    fig.tight_layout()
    return fig
