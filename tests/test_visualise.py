import matplotlib
matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import polars as pl
import pytest

from pubscore.visualise import counts_matrix, plot_literature_heatmap, plot_null_distribution


@pytest.fixture
def counts():
    """Counts table with one missing pair (IL2, cancer)."""
    return pl.DataFrame({
        'gene': ['CD4', 'CD4', 'IL2'],
        'term': ['immunity', 'cancer', 'immunity'],
        'count': [120, 30, 45]
    })


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close('all')


def test_counts_matrix(counts):
    """Test reshaping counts into a gene x term matrix."""
    matrix = counts_matrix(counts)

    assert matrix.shape == (2, 2)
    assert matrix[0, 0] == 120
    assert matrix[0, 1] == 30
    assert matrix[1, 0] == 45
    assert np.isnan(matrix[1, 1])

    # Explicit order, unknown gene gets an empty row
    matrix = counts_matrix(counts, genes=['IL2', 'CD4', 'MYC'], terms=['cancer'])
    assert matrix.shape == (3, 1)
    assert np.isnan(matrix[0, 0])
    assert matrix[1, 0] == 30
    assert np.isnan(matrix[2, 0])


def test_plot_literature_heatmap(counts):
    """Test the heatmap of counts."""
    fig = plot_literature_heatmap(counts, max_score=100)
    assert isinstance(fig, plt.Figure)
    assert fig.axes[0].get_title() == "Literature counts"

    fig, ax = plt.subplots()
    assert plot_literature_heatmap(counts, ax=ax) is fig

    empty = pl.DataFrame(schema={'gene': pl.Utf8, 'term': pl.Utf8, 'count': pl.Int64})
    with pytest.raises(ValueError, match="Input data cannot be empty"):
        plot_literature_heatmap(empty)


def test_plot_null_distribution(tmp_path):
    """Test the null distribution histogram."""
    rng = np.random.default_rng(0)
    null_scores = rng.gamma(2.0, 2.0, size=1000)

    fig = plot_null_distribution(null_scores, observed_score=12.5, p_value=0.01)
    assert isinstance(fig, plt.Figure)
    ax = fig.axes[0]
    assert "p = 0.01" in ax.get_legend().get_texts()[0].get_text()
    assert ax.get_xlabel() == "Literature score of random panels"

    output = tmp_path / "null.png"
    fig.savefig(output)
    assert output.exists()

    with pytest.raises(ValueError, match="Null scores array cannot be empty"):
        plot_null_distribution([], observed_score=1.0)
